"""Actions and agent actions built from remote endpoint definitions."""
from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence

import httpx

from copilot_runtime.core.errors import AgentDiscoveryError, LowLevelTransportError
from copilot_runtime.core.events import (
    RuntimeEvent,
    action_execution_events,
    agent_state_event,
    text_message_events,
)
from copilot_runtime.core.messages import copilot_messages_to_langchain, langchain_messages_to_copilot
from copilot_runtime.core.models import (
    Action,
    ActionExecutionMessage,
    ActionInput,
    AgentStateInput,
    AgentStateMessage,
    Message,
    MetaEvent,
    Parameter,
    RemoteAgentAction,
    RequestContext,
    TextMessage,
)
from copilot_runtime.endpoints.definitions import (
    DirectEndpoint,
    PlatformAgentDefinition,
    PlatformEndpoint,
    create_headers,
    endpoint_url,
)

if TYPE_CHECKING:
    from copilot_runtime.endpoints.registry import EndpointRegistry

logger = logging.getLogger(__name__)

INTERRUPT_EVENT = "LangGraphInterruptEvent"


def parameter_from_dict(data: Mapping[str, Any]) -> Parameter:
    return Parameter(
        name=data["name"],
        type=data.get("type", "string"),
        description=data.get("description", ""),
        required=data.get("required", True),
        enum=data.get("enum"),
        attributes=[parameter_from_dict(item) for item in data.get("attributes") or []],
    )


def parse_agent_state(agent_states: Sequence[AgentStateInput], agent_name: str) -> Dict[str, Any]:
    for agent_state in agent_states:
        if agent_state.agent_name == agent_name:
            return json.loads(agent_state.state or "{}")
    return {}


def _conversation(messages: Sequence[Message]) -> List[Message]:
    return [message for message in messages if not isinstance(message, AgentStateMessage)]


# ---------------------------------------------------------------------------
# Direct (CopilotKit-compatible) endpoints
# ---------------------------------------------------------------------------


async def direct_endpoint_actions(
    registry: "EndpointRegistry",
    endpoint: DirectEndpoint,
    context: RequestContext,
    messages: Sequence[Message],
    agent_states: Sequence[AgentStateInput],
    frontend_url: Optional[str],
) -> List[Action]:
    data = await registry.post_json(
        endpoint_url(endpoint.url, "info"),
        headers=create_headers(endpoint.on_before_request, context),
        body={"properties": context.properties, "frontendUrl": frontend_url},
    )
    data = data or {}
    actions: List[Action] = [
        _direct_action(registry, endpoint, context, entry) for entry in data.get("actions") or []
    ]
    actions.extend(
        _direct_agent_action(registry, endpoint, context, messages, agent_states, entry)
        for entry in data.get("agents") or []
    )
    return actions


def _direct_action(
    registry: "EndpointRegistry",
    endpoint: DirectEndpoint,
    context: RequestContext,
    entry: Mapping[str, Any],
) -> Action:
    name = entry["name"]

    async def handler(**arguments: Any) -> Any:
        data = await registry.post_json(
            endpoint_url(endpoint.url, "actions/execute"),
            headers=create_headers(endpoint.on_before_request, context),
            body={"name": name, "arguments": arguments, "properties": context.properties},
        )
        return (data or {}).get("result")

    return Action(
        name=name,
        description=entry.get("description", ""),
        parameters=[parameter_from_dict(item) for item in entry.get("parameters") or []],
        handler=handler,
    )


def _direct_agent_action(
    registry: "EndpointRegistry",
    endpoint: DirectEndpoint,
    context: RequestContext,
    messages: Sequence[Message],
    agent_states: Sequence[AgentStateInput],
    entry: Mapping[str, Any],
) -> RemoteAgentAction:
    async def remote_agent_handler(
        *,
        name: str,
        thread_id: Optional[str],
        node_name: Optional[str] = None,
        meta_events: Sequence[MetaEvent] = (),
        actions: Sequence[ActionInput] = (),
    ) -> AsyncIterator[RuntimeEvent]:
        logger.debug("Starting remote agent run", extra={"agent_name": name, "thread_id": thread_id})
        return registry.stream_events(
            endpoint_url(endpoint.url, "agents/execute"),
            headers=create_headers(endpoint.on_before_request, context),
            body={
                "name": name,
                "threadId": thread_id,
                "nodeName": node_name,
                "messages": [message.to_dict() for message in _conversation(messages)],
                "state": parse_agent_state(agent_states, name),
                "properties": context.properties,
                "actions": [action.to_dict() for action in actions],
                "metaEvents": [event.to_dict() for event in meta_events],
            },
        )

    return RemoteAgentAction(
        name=entry["name"],
        description=entry.get("description", ""),
        remote_agent_handler=remote_agent_handler,
    )


# ---------------------------------------------------------------------------
# LangGraph Platform endpoints
# ---------------------------------------------------------------------------


def platform_agent_actions(
    registry: "EndpointRegistry",
    endpoint: PlatformEndpoint,
    context: RequestContext,
    messages: Sequence[Message],
    agent_states: Sequence[AgentStateInput],
) -> List[Action]:
    return [
        _platform_agent_action(registry, endpoint, agent, context, messages, agent_states)
        for agent in endpoint.agents
    ]


def _platform_agent_action(
    registry: "EndpointRegistry",
    endpoint: PlatformEndpoint,
    agent: PlatformAgentDefinition,
    context: RequestContext,
    messages: Sequence[Message],
    agent_states: Sequence[AgentStateInput],
) -> RemoteAgentAction:
    async def remote_agent_handler(
        *,
        name: str,
        thread_id: Optional[str],
        node_name: Optional[str] = None,
        meta_events: Sequence[MetaEvent] = (),
        actions: Sequence[ActionInput] = (),
    ) -> AsyncIterator[RuntimeEvent]:
        return _stream_platform_run(
            registry,
            endpoint,
            agent,
            context,
            thread_id=thread_id,
            node_name=node_name,
            messages=_conversation(messages),
            state=parse_agent_state(agent_states, name),
            actions=actions,
            meta_events=meta_events,
        )

    return RemoteAgentAction(
        name=agent.name,
        description=agent.description,
        remote_agent_handler=remote_agent_handler,
    )


async def _resolve_assistant_id(client: Any, agent: PlatformAgentDefinition) -> str:
    if agent.assistant_id:
        return agent.assistant_id
    assistants = await client.assistants.search(graph_id=agent.name)
    if not assistants:
        raise AgentDiscoveryError(agent.name)
    return assistants[0]["assistant_id"]


async def _stream_platform_run(
    registry: "EndpointRegistry",
    endpoint: PlatformEndpoint,
    agent: PlatformAgentDefinition,
    context: RequestContext,
    *,
    thread_id: Optional[str],
    node_name: Optional[str],
    messages: Sequence[Message],
    state: Mapping[str, Any],
    actions: Sequence[ActionInput],
    meta_events: Sequence[MetaEvent],
) -> AsyncIterator[RuntimeEvent]:
    # The session also closes when the run is cancelled or abandoned mid-stream.
    async with registry.platform_session(endpoint, context) as client:
        try:
            if thread_id:
                await client.threads.create(thread_id=thread_id, if_exists="do_nothing")
            else:
                thread = await client.threads.create()
                thread_id = thread["thread_id"]
            assistant_id = await _resolve_assistant_id(client, agent)

            input_messages = copilot_messages_to_langchain(messages)
            known_ids = {message["id"] for message in input_messages}
            known_ids.update(
                tool_call["id"] for message in input_messages for tool_call in message.get("tool_calls", [])
            )
            run_kwargs: Dict[str, Any] = {"stream_mode": "values"}
            interrupt = next((event for event in meta_events if event.name == INTERRUPT_EVENT), None)
            if interrupt is not None:
                run_kwargs["command"] = {"resume": interrupt.payload.get("response")}
            else:
                run_kwargs["input"] = {
                    **state,
                    "messages": input_messages,
                    "copilotkit": {"actions": [action.to_dict() for action in actions]},
                }

            values: Dict[str, Any] = dict(state)
            async for chunk in client.runs.stream(thread_id, assistant_id, **run_kwargs):
                if chunk.event == "error":
                    raise LowLevelTransportError(endpoint.deployment_url, cause=RuntimeError(str(chunk.data)))
                if chunk.event != "values":
                    continue
                values = dict(chunk.data or {})
                yield agent_state_event(
                    thread_id=thread_id,
                    agent_name=agent.name,
                    node_name=node_name,
                    state={key: value for key, value in values.items() if key != "messages"},
                    running=True,
                )
        except httpx.HTTPError as exc:
            raise LowLevelTransportError(endpoint.deployment_url, cause=exc) from exc

    for message in langchain_messages_to_copilot(values.get("messages")):
        if message.id in known_ids:
            continue
        if isinstance(message, TextMessage):
            for event in text_message_events(message.id, message.content):
                yield event
        elif isinstance(message, ActionExecutionMessage):
            for event in action_execution_events(
                message.id, message.name, json.dumps(message.arguments), message.parent_message_id
            ):
                yield event

    yield agent_state_event(
        thread_id=thread_id,
        agent_name=agent.name,
        node_name=node_name,
        state={key: value for key, value in values.items() if key != "messages"},
        running=False,
    )
