"""Registry of remote endpoints: agent discovery and remote action contribution."""
from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, List, Mapping, Optional, Sequence, Tuple, Union

import httpx
from langgraph_sdk import get_client

from copilot_runtime.core.errors import ApiDiscoveryError, LowLevelTransportError
from copilot_runtime.core.events import RuntimeEvent
from copilot_runtime.core.models import Action, Agent, AgentStateInput, Message, RequestContext, random_id
from copilot_runtime.endpoints import remote_actions
from copilot_runtime.endpoints.definitions import (
    EndpointDefinition,
    PlatformEndpoint,
    authorization_headers,
    create_headers,
    endpoint_url,
    resolve_endpoint,
)

logger = logging.getLogger(__name__)

PlatformClientFactory = Callable[..., Any]


class EndpointRegistry:
    """Read-only view over the configured endpoints.

    Endpoint definitions are normalized once on construction; discovery
    results are recomputed on every call and never cached.
    """

    def __init__(
        self,
        endpoints: Sequence[Union[EndpointDefinition, Mapping[str, Any]]] = (),
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        platform_client_factory: PlatformClientFactory = get_client,
    ) -> None:
        self._endpoints: Tuple[EndpointDefinition, ...] = tuple(resolve_endpoint(e) for e in endpoints)
        self._timeout = timeout
        self._transport = transport
        self._platform_client_factory = platform_client_factory

    @property
    def endpoints(self) -> Tuple[EndpointDefinition, ...]:
        return self._endpoints

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def platform_client(self, endpoint: PlatformEndpoint, context: RequestContext) -> Any:
        return self._platform_client_factory(
            url=endpoint.deployment_url,
            api_key=endpoint.api_key,
            headers=authorization_headers(context) or None,
        )

    @asynccontextmanager
    async def platform_session(self, endpoint: PlatformEndpoint, context: RequestContext) -> AsyncIterator[Any]:
        """Yield a platform client whose connection pool is closed on exit."""
        client = self.platform_client(endpoint, context)
        try:
            yield client
        finally:
            await client.aclose()

    async def post_json(self, url: str, *, headers: Mapping[str, str], body: Mapping[str, Any]) -> Any:
        """POST a JSON body and classify failures into the error taxonomy."""
        try:
            async with self.http_client() as client:
                response = await client.post(url, headers=dict(headers), json=body)
        except httpx.HTTPError as exc:
            raise LowLevelTransportError(url, cause=exc) from exc

        _raise_for_status(url, response)
        try:
            return response.json()
        except ValueError as exc:
            raise LowLevelTransportError(url, cause=exc) from exc

    async def stream_events(
        self,
        url: str,
        *,
        headers: Mapping[str, str],
        body: Mapping[str, Any],
    ) -> AsyncIterator[RuntimeEvent]:
        """POST a JSON body and yield the newline-delimited events of the response."""
        try:
            async with self.http_client() as client:
                async with client.stream("POST", url, headers=dict(headers), json=body) as response:
                    _raise_for_status(url, response)
                    async for line in response.aiter_lines():
                        if line.strip():
                            yield _parse_event(url, line)
        except httpx.HTTPError as exc:
            raise LowLevelTransportError(url, cause=exc) from exc

    async def discover_agents(self, context: RequestContext) -> List[Agent]:
        """Query every endpoint, in configuration order, for its agents."""
        agents: List[Agent] = []
        for endpoint in self._endpoints:
            agents.extend(await self._discover_endpoint_agents(endpoint, context))
        return agents

    async def _discover_endpoint_agents(self, endpoint: EndpointDefinition, context: RequestContext) -> List[Agent]:
        if isinstance(endpoint, PlatformEndpoint):
            logger.debug("Listing platform assistants", extra={"url": endpoint.deployment_url})
            try:
                async with self.platform_session(endpoint, context) as client:
                    assistants = await client.assistants.search()
            except httpx.HTTPError as exc:
                raise LowLevelTransportError(endpoint.deployment_url, cause=exc) from exc
            return [
                Agent(name=entry["graph_id"], id=entry["assistant_id"], description="", endpoint=endpoint)
                for entry in assistants or []
            ]

        url = endpoint_url(endpoint.url, "info")
        logger.debug("Fetching endpoint info", extra={"url": url})
        data = await self.post_json(
            url,
            headers=create_headers(endpoint.on_before_request, context),
            body={"properties": context.properties},
        )
        return [
            Agent(
                name=entry["name"],
                id=entry.get("id") or random_id(),
                description=entry.get("description") or "",
                endpoint=endpoint,
            )
            for entry in (data or {}).get("agents") or []
        ]

    async def setup_remote_actions(
        self,
        context: RequestContext,
        messages: Sequence[Message],
        agent_states: Sequence[AgentStateInput] = (),
        frontend_url: Optional[str] = None,
    ) -> List[Action]:
        """Collect the actions and agent actions contributed by every endpoint."""
        actions: List[Action] = []
        for endpoint in self._endpoints:
            if isinstance(endpoint, PlatformEndpoint):
                actions.extend(
                    remote_actions.platform_agent_actions(self, endpoint, context, messages, agent_states)
                )
            else:
                actions.extend(
                    await remote_actions.direct_endpoint_actions(
                        self, endpoint, context, messages, agent_states, frontend_url
                    )
                )
        return actions


def _parse_event(url: str, line: str) -> RuntimeEvent:
    try:
        return RuntimeEvent.from_dict(json.loads(line))
    except (KeyError, TypeError, ValueError) as exc:
        raise LowLevelTransportError(url, cause=exc) from exc


def _raise_for_status(url: str, response: httpx.Response) -> None:
    if response.status_code == 404:
        raise ApiDiscoveryError(url)
    if not response.is_success:
        raise LowLevelTransportError(url, status=response.status_code)
