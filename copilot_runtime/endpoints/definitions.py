"""Remote endpoint definitions and their normalization."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

from copilot_runtime.core.errors import MisuseError
from copilot_runtime.core.models import RequestContext

HeaderHook = Callable[[RequestContext], Optional[Mapping[str, str]]]


class EndpointType(Enum):
    COPILOT_KIT = "copilotKit"
    LANGGRAPH_PLATFORM = "langgraph-platform"


@dataclass(frozen=True, slots=True)
class DirectEndpoint:
    """Plain HTTP service exposing ``/info`` and ``/agents/state``."""

    url: str
    on_before_request: Optional[HeaderHook] = None

    @property
    def type(self) -> EndpointType:
        return EndpointType.COPILOT_KIT


@dataclass(frozen=True, slots=True)
class PlatformAgentDefinition:
    name: str
    description: str = ""
    assistant_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class PlatformEndpoint:
    """Managed agent-hosting deployment reached through the LangGraph SDK."""

    deployment_url: str
    agents: Tuple[PlatformAgentDefinition, ...] = ()
    api_key: Optional[str] = None

    @property
    def type(self) -> EndpointType:
        return EndpointType.LANGGRAPH_PLATFORM


EndpointDefinition = Union[DirectEndpoint, PlatformEndpoint]


def copilot_kit_endpoint(url: str, on_before_request: Optional[HeaderHook] = None) -> DirectEndpoint:
    return DirectEndpoint(url=url, on_before_request=on_before_request)


def langgraph_platform_endpoint(
    deployment_url: str,
    agents: Sequence[Union[PlatformAgentDefinition, Mapping[str, Any]]],
    api_key: Optional[str] = None,
) -> PlatformEndpoint:
    return PlatformEndpoint(
        deployment_url=deployment_url,
        agents=tuple(_platform_agent(agent) for agent in agents),
        api_key=api_key,
    )


def _platform_agent(agent: Union[PlatformAgentDefinition, Mapping[str, Any]]) -> PlatformAgentDefinition:
    if isinstance(agent, PlatformAgentDefinition):
        return agent
    return PlatformAgentDefinition(
        name=agent["name"],
        description=agent.get("description", ""),
        assistant_id=agent.get("assistant_id") or agent.get("assistantId"),
    )


def resolve_endpoint(raw: Union[EndpointDefinition, Mapping[str, Any]]) -> EndpointDefinition:
    """Normalize a possibly untagged endpoint definition into its typed variant.

    Untagged mappings carrying both a deployment URL and an agent list are
    platform endpoints; anything else is a direct endpoint.
    """
    if isinstance(raw, (DirectEndpoint, PlatformEndpoint)):
        return raw
    if not isinstance(raw, Mapping):
        raise MisuseError(f"Unsupported endpoint definition: {raw!r}")

    data: Dict[str, Any] = dict(raw)
    deployment_url = data.get("deployment_url") or data.get("deploymentUrl")
    tag = data.get("type")
    if tag is None:
        tag = (
            EndpointType.LANGGRAPH_PLATFORM.value
            if deployment_url and "agents" in data
            else EndpointType.COPILOT_KIT.value
        )

    try:
        endpoint_type = EndpointType(tag)
    except ValueError as exc:
        raise MisuseError(f"Unknown endpoint type: {tag}") from exc

    if endpoint_type is EndpointType.LANGGRAPH_PLATFORM:
        if not deployment_url:
            raise MisuseError("LangGraph Platform endpoints require a deployment URL")
        return langgraph_platform_endpoint(
            deployment_url=deployment_url,
            agents=data.get("agents") or [],
            api_key=data.get("api_key") or data.get("langsmithApiKey"),
        )

    if not data.get("url"):
        raise MisuseError("CopilotKit endpoints require a url")
    return copilot_kit_endpoint(url=data["url"], on_before_request=data.get("on_before_request"))


def endpoint_url(base: str, path: str) -> str:
    return f"{base.rstrip('/')}/{path.lstrip('/')}"


def create_headers(on_before_request: Optional[HeaderHook], context: RequestContext) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if on_before_request is not None:
        additional = on_before_request(context)
        if additional:
            headers.update(additional)
    return headers


def authorization_headers(context: RequestContext) -> Dict[str, str]:
    """Forward the caller's ``authorization`` property as a bearer header."""
    token = context.properties.get("authorization")
    return {"authorization": f"Bearer {token}"} if token else {}
