"""Typed failures raised by the runtime and its endpoint integrations."""
from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCode(Enum):
    """Stable identifiers for the error taxonomy."""

    MISUSE = "misuse"
    API_DISCOVERY = "api_discovery"
    TRANSPORT = "transport"
    AGENT_DISCOVERY = "agent_discovery"


class CopilotError(Exception):
    """Base class for errors that already carry caller-actionable detail."""

    code: ErrorCode = ErrorCode.MISUSE

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MisuseError(CopilotError):
    """Raised when the runtime configuration contradicts the request."""

    code = ErrorCode.MISUSE


class ApiDiscoveryError(CopilotError):
    """The endpoint does not implement the expected routes (HTTP 404)."""

    code = ErrorCode.API_DISCOVERY

    def __init__(self, url: str) -> None:
        super().__init__(
            f"Failed to find a CopilotKit-compatible endpoint at {url}. "
            "Check the endpoint URL and that the remote service is running."
        )
        self.url = url


class LowLevelTransportError(CopilotError):
    """Network failure or non-2xx status while talking to an endpoint."""

    code = ErrorCode.TRANSPORT

    def __init__(
        self,
        url: str,
        *,
        status: Optional[int] = None,
        cause: Optional[BaseException] = None,
        is_remote_endpoint: bool = True,
    ) -> None:
        if status is not None:
            message = f"Remote endpoint {url} responded with status {status}"
        elif cause is not None:
            message = f"Failed to reach {url}: {cause}"
        else:
            message = f"Request to {url} failed"
        super().__init__(message)
        self.url = url
        self.status = status
        self.cause = cause
        self.is_remote_endpoint = is_remote_endpoint
        if cause is not None:
            self.__cause__ = cause


class AgentDiscoveryError(CopilotError):
    """A requested agent is not among the resolved server-side actions."""

    code = ErrorCode.AGENT_DISCOVERY

    def __init__(self, agent_name: str) -> None:
        super().__init__(f"Agent '{agent_name}' was not found on any configured endpoint")
        self.agent_name = agent_name
