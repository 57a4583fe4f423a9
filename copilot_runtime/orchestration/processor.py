"""Runtime request processor coordinating actions, backends and hooks for a turn."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import httpx
from langgraph_sdk import get_client

from copilot_runtime.actions.dedupe import flatten_tool_calls_no_duplicates
from copilot_runtime.core.errors import AgentDiscoveryError, CopilotError, MisuseError
from copilot_runtime.core.events import RuntimeEventSource
from copilot_runtime.core.models import (
    Action,
    ActionInputAvailability,
    Agent,
    AgentStateMessage,
    AgentStateSnapshot,
    Message,
    RequestContext,
    ServiceAdapterRequest,
    TurnRequest,
    TurnResponse,
    is_remote_agent_action,
    random_uuid,
)
from copilot_runtime.endpoints.definitions import EndpointDefinition
from copilot_runtime.endpoints.registry import EndpointRegistry, PlatformClientFactory
from copilot_runtime.endpoints.state import AgentStateLoader
from copilot_runtime.orchestration.middleware import (
    AfterRequestOptions,
    BeforeRequestOptions,
    Middleware,
    MiddlewareDispatcher,
)
from copilot_runtime.services.adapters import EmptyAdapter
from copilot_runtime.services.langserve import RemoteChain, resolve_chains

logger = logging.getLogger(__name__)

ActionsFactory = Callable[..., Sequence[Action]]
ActionsConfiguration = Union[Sequence[Action], ActionsFactory]

EMPTY_ADAPTER_MESSAGE = (
    "Invalid adapter configuration: EmptyAdapter is only meant to be used with agent lock mode. "
    "For non-agent components like chat suggestions, textareas or tasks, use an LLM adapter instead."
)


class CopilotRuntime:
    """Assemble the action surface for a turn and dispatch it to the right backend.

    Configuration (actions, endpoints, resolved chain actions, middleware) is
    fixed at construction and only read while processing turns.
    """

    def __init__(
        self,
        *,
        actions: Optional[ActionsConfiguration] = None,
        remote_endpoints: Sequence[Union[EndpointDefinition, Mapping[str, Any]]] = (),
        langserve_actions: Sequence[Action] = (),
        middleware: Optional[Middleware] = None,
        delegate_agent_processing_to_service_adapter: bool = False,
        http_timeout: float = 30.0,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        platform_client_factory: PlatformClientFactory = get_client,
    ) -> None:
        if actions and remote_endpoints:
            logger.warning("Actions set in runtime instance will be ignored when remote endpoints are set")
            actions = None
        self._actions: Union[Tuple[Action, ...], ActionsFactory] = (
            actions if callable(actions) else tuple(actions or ())
        )
        self._langserve_actions: Tuple[Action, ...] = tuple(langserve_actions)
        self._registry = EndpointRegistry(
            remote_endpoints,
            timeout=http_timeout,
            transport=http_transport,
            platform_client_factory=platform_client_factory,
        )
        self._state_loader = AgentStateLoader(self._registry)
        self._middleware = MiddlewareDispatcher(middleware)
        self._delegate_agent_processing = delegate_agent_processing_to_service_adapter

    @classmethod
    async def create(
        cls,
        *,
        langserve: Sequence[RemoteChain] = (),
        http_timeout: float = 30.0,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs: Any,
    ) -> "CopilotRuntime":
        """Build a runtime after resolving every LangServe chain into an action."""
        langserve_actions = await resolve_chains(langserve, timeout=http_timeout, transport=http_transport)
        return cls(
            langserve_actions=langserve_actions,
            http_timeout=http_timeout,
            http_transport=http_transport,
            **kwargs,
        )

    @property
    def registry(self) -> EndpointRegistry:
        return self._registry

    async def process_runtime_request(self, request: TurnRequest) -> TurnResponse:
        event_source = RuntimeEventSource()
        try:
            if request.agent_session is not None and not self._delegate_agent_processing:
                return await self._process_agent_request(request, event_source)
            if request.service_adapter is None or isinstance(request.service_adapter, EmptyAdapter):
                raise MisuseError(EMPTY_ADAPTER_MESSAGE)
            return await self._process_direct_request(request, event_source)
        except CopilotError:
            raise
        except Exception:
            logger.exception("Error getting response", extra={"thread_id": request.thread_id})
            event_source.send_error_message_to_chat()
            raise

    async def discover_agents_from_endpoints(self, context: RequestContext) -> List[Agent]:
        return await self._registry.discover_agents(context)

    async def load_agent_state(self, context: RequestContext, thread_id: str, agent_name: str) -> AgentStateSnapshot:
        return await self._state_loader.load_state(context, thread_id, agent_name)

    async def get_server_side_actions(self, request: TurnRequest) -> List[Action]:
        """Configured actions, then chain actions, then endpoint-contributed actions."""
        if callable(self._actions):
            configured = list(self._actions(properties=request.context.properties, url=request.url))
        else:
            configured = list(self._actions)
        remote_actions = await self._registry.setup_remote_actions(
            request.context,
            request.messages,
            request.agent_states,
            request.url,
        )
        return [*configured, *self._langserve_actions, *remote_actions]

    async def _process_direct_request(self, request: TurnRequest, event_source: RuntimeEventSource) -> TurnResponse:
        input_messages = [message for message in request.messages if not isinstance(message, AgentStateMessage)]
        server_side_actions = await self.get_server_side_actions(request)

        action_inputs = flatten_tool_calls_no_duplicates(
            [
                *(action.to_input() for action in server_side_actions),
                *(action for action in request.actions if action.available is not ActionInputAvailability.REMOTE),
            ]
        )

        await self._middleware.before(
            BeforeRequestOptions(
                thread_id=request.thread_id,
                run_id=request.run_id,
                input_messages=input_messages,
                properties=request.context.properties,
                url=request.url,
            )
        )

        result = await request.service_adapter.process(
            ServiceAdapterRequest(
                messages=input_messages,
                actions=action_inputs,
                event_source=event_source,
                thread_id=request.thread_id,
                run_id=request.run_id,
                forwarded_parameters=request.forwarded_parameters,
                extensions=request.extensions,
                agent_session=request.agent_session,
                agent_states=request.agent_states,
            )
        )

        thread_id = request.thread_id or result.thread_id or random_uuid()
        self._schedule_after_request(request, input_messages, thread_id, result.run_id)

        server_side_names = {action.name for action in server_side_actions}
        return TurnResponse(
            thread_id=thread_id,
            run_id=result.run_id,
            event_source=event_source,
            server_side_actions=server_side_actions,
            action_inputs_without_agents=[
                action for action in action_inputs if action.name not in server_side_names
            ],
            extensions=result.extensions,
        )

    async def _process_agent_request(self, request: TurnRequest, event_source: RuntimeEventSource) -> TurnResponse:
        session = request.agent_session
        agent_name = session.agent_name
        thread_id = request.thread_id or session.thread_id or random_uuid()

        server_side_actions = await self.get_server_side_actions(request)
        current_agent = next(
            (
                action
                for action in server_side_actions
                if action.name == agent_name and is_remote_agent_action(action)
            ),
            None,
        )
        if current_agent is None:
            raise AgentDiscoveryError(agent_name)

        # Regular actions plus every other agent; never the agent itself.
        delegated_actions = flatten_tool_calls_no_duplicates(
            [
                *(action.to_input() for action in server_side_actions if action.name != agent_name),
                *(action for action in request.actions if action.name != agent_name),
            ]
        )

        await self._middleware.before(
            BeforeRequestOptions(
                thread_id=thread_id,
                run_id=None,
                input_messages=list(request.messages),
                properties=request.context.properties,
                url=request.url,
            )
        )

        logger.info("Delegating turn to remote agent", extra={"agent_name": agent_name, "thread_id": thread_id})
        stream = await current_agent.remote_agent_handler(
            name=agent_name,
            thread_id=thread_id,
            node_name=session.node_name,
            meta_events=request.meta_events,
            actions=delegated_actions,
        )
        event_source.forward(stream)
        self._schedule_after_request(request, list(request.messages), thread_id, None)

        return TurnResponse(
            thread_id=thread_id,
            run_id=None,
            event_source=event_source,
            server_side_actions=server_side_actions,
            action_inputs_without_agents=delegated_actions,
        )

    def _schedule_after_request(
        self,
        request: TurnRequest,
        input_messages: List[Message],
        thread_id: str,
        run_id: Optional[str],
    ) -> None:
        properties: Dict[str, Any] = request.context.properties

        def build_options(output_messages: List[Message]) -> AfterRequestOptions:
            return AfterRequestOptions(
                thread_id=thread_id,
                run_id=run_id,
                input_messages=input_messages,
                output_messages=output_messages,
                properties=properties,
                url=request.url,
            )

        self._middleware.schedule_after(request.output_messages, build_options)
