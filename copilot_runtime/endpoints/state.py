"""Load the current state of a discovered agent from its owning endpoint."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict

from copilot_runtime.core.errors import AgentDiscoveryError
from copilot_runtime.core.messages import langchain_messages_to_copilot, serialize_messages
from copilot_runtime.core.models import Agent, AgentStateSnapshot, RequestContext
from copilot_runtime.endpoints.definitions import PlatformEndpoint, create_headers, endpoint_url
from copilot_runtime.endpoints.registry import EndpointRegistry

logger = logging.getLogger(__name__)


class AgentStateLoader:
    """Normalize both endpoint variants into an ``AgentStateSnapshot``."""

    def __init__(self, registry: EndpointRegistry) -> None:
        self._registry = registry

    async def load_state(self, context: RequestContext, thread_id: str, agent_name: str) -> AgentStateSnapshot:
        agents = await self._registry.discover_agents(context)
        agent = next((candidate for candidate in agents if candidate.name == agent_name), None)
        if agent is None:
            raise AgentDiscoveryError(agent_name)

        if isinstance(agent.endpoint, PlatformEndpoint):
            return await self._load_platform_state(context, thread_id, agent)
        return await self._load_direct_state(context, thread_id, agent)

    async def _load_platform_state(
        self, context: RequestContext, thread_id: str, agent: Agent
    ) -> AgentStateSnapshot:
        state: Dict[str, Any] = {}
        try:
            async with self._registry.platform_session(agent.endpoint, context) as client:
                state = dict((await client.threads.get_state(thread_id)).get("values") or {})
        except Exception as exc:
            # A failed fetch is reported as a missing thread.
            logger.warning(
                "Thread state fetch failed, treating thread as empty",
                extra={"thread_id": thread_id, "agent_name": agent.name, "error": str(exc)},
            )

        if not state:
            return AgentStateSnapshot(
                thread_id=thread_id or "",
                thread_exists=False,
                state=json.dumps({}),
                messages=json.dumps([]),
            )

        messages = state.pop("messages", None)
        return AgentStateSnapshot(
            thread_id=thread_id or "",
            thread_exists=True,
            state=json.dumps(state),
            messages=serialize_messages(langchain_messages_to_copilot(messages)),
        )

    async def _load_direct_state(self, context: RequestContext, thread_id: str, agent: Agent) -> AgentStateSnapshot:
        endpoint = agent.endpoint
        data = await self._registry.post_json(
            endpoint_url(endpoint.url, "agents/state"),
            headers=create_headers(endpoint.on_before_request, context),
            body={"properties": context.properties, "threadId": thread_id, "name": agent.name},
        )
        data = data or {}
        return AgentStateSnapshot(
            thread_id=data.get("threadId") or thread_id or "",
            thread_exists=bool(data.get("threadExists", False)),
            state=json.dumps(data.get("state", {})),
            messages=json.dumps(data.get("messages", [])),
        )
