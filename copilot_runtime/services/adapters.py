"""Service adapter boundary used for direct completion turns."""
from __future__ import annotations

import abc

from copilot_runtime.core.models import ServiceAdapterRequest, ServiceAdapterResponse, random_uuid


class ServiceAdapter(abc.ABC):
    """Turns messages and actions into events on the request's event source."""

    @abc.abstractmethod
    async def process(self, request: ServiceAdapterRequest) -> ServiceAdapterResponse:
        """Feed ``request.event_source`` and report the resolved thread/run ids."""


class EmptyAdapter(ServiceAdapter):
    """Placeholder adapter for agent-lock mode, where no LLM is called directly."""

    async def process(self, request: ServiceAdapterRequest) -> ServiceAdapterResponse:
        return ServiceAdapterResponse(thread_id=request.thread_id or random_uuid())
