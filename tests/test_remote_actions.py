"""Tests for actions and agent actions contributed by remote endpoints."""
from __future__ import annotations

import asyncio

import pytest

from conftest import EndpointServer, FakePlatformClient, json_route, stream_part
from copilot_runtime.core.errors import AgentDiscoveryError, LowLevelTransportError
from copilot_runtime.core.events import RuntimeEventSource, RuntimeEventType
from copilot_runtime.core.models import (
    ActionInput,
    AgentStateInput,
    MessageRole,
    MetaEvent,
    RequestContext,
    TextMessage,
    is_remote_agent_action,
)
from copilot_runtime.endpoints.registry import EndpointRegistry

PLATFORM = {"deploymentUrl": "https://lg.example", "agents": [{"name": "planner", "description": "Plans"}]}
ASSISTANTS = [{"graph_id": "planner", "assistant_id": "asst-1"}]
MESSAGES = [TextMessage(id="m1", role=MessageRole.USER, content="Plan my week")]


async def _platform_handler(client: FakePlatformClient, agent_states=()):
    registry = EndpointRegistry([PLATFORM], platform_client_factory=client.factory)
    actions = await registry.setup_remote_actions(RequestContext(), MESSAGES, list(agent_states))
    assert len(actions) == 1 and is_remote_agent_action(actions[0])
    return actions[0].remote_agent_handler


@pytest.mark.anyio
async def test_direct_endpoint_contributes_actions_and_agents() -> None:
    server = EndpointServer(
        {
            "/info": json_route(
                {
                    "actions": [
                        {
                            "name": "lookup",
                            "description": "Look up a record",
                            "parameters": [{"name": "id", "type": "number"}],
                        }
                    ],
                    "agents": [{"name": "writer", "description": "Drafts text"}],
                }
            ),
            "/actions/execute": json_route({"result": {"id": 7, "title": "Q3 report"}}),
        }
    )
    registry = EndpointRegistry([{"url": "https://agents.example"}], transport=server.transport())

    actions = await registry.setup_remote_actions(
        RequestContext(properties={"user": "u1"}), MESSAGES, frontend_url="https://app.example"
    )
    result = await actions[0].handler(id=7)

    assert [action.name for action in actions] == ["lookup", "writer"]
    assert is_remote_agent_action(actions[1]) and not is_remote_agent_action(actions[0])
    assert actions[0].json_schema()["properties"] == {"id": {"type": "number"}}
    assert result == {"id": 7, "title": "Q3 report"}
    assert server.bodies("/info") == [{"properties": {"user": "u1"}, "frontendUrl": "https://app.example"}]
    assert server.bodies("/actions/execute") == [
        {"name": "lookup", "arguments": {"id": 7}, "properties": {"user": "u1"}}
    ]


@pytest.mark.anyio
async def test_platform_run_streams_state_then_new_messages() -> None:
    client = FakePlatformClient(
        assistants=ASSISTANTS,
        chunks=[
            stream_part("metadata", {"run_id": "r-1"}),
            stream_part(
                "values",
                {
                    "plan": ["gym"],
                    "messages": [
                        {"type": "human", "id": "m1", "content": "Plan my week"},
                        {
                            "type": "ai",
                            "id": "m2",
                            "content": "Here is the plan",
                            "tool_calls": [{"id": "call-1", "name": "add_event", "args": {"day": "mon"}}],
                        },
                    ],
                },
            ),
        ],
    )
    handler = await _platform_handler(client, [AgentStateInput(agent_name="planner", state='{"plan": []}')])

    stream = await handler(
        name="planner", thread_id="t-1", node_name=None, meta_events=[], actions=[ActionInput(name="navigate")]
    )
    events = [event async for event in stream]

    types = [event.type for event in events]
    assert types[0] is RuntimeEventType.AGENT_STATE_MESSAGE
    assert events[0].data["running"] is True
    assert events[0].data["state"] == {"plan": ["gym"]}
    assert types[1:7] == [
        RuntimeEventType.TEXT_MESSAGE_START,
        RuntimeEventType.TEXT_MESSAGE_CONTENT,
        RuntimeEventType.TEXT_MESSAGE_END,
        RuntimeEventType.ACTION_EXECUTION_START,
        RuntimeEventType.ACTION_EXECUTION_ARGS,
        RuntimeEventType.ACTION_EXECUTION_END,
    ]
    assert events[2].data["content"] == "Here is the plan"
    assert events[4].data["actionName"] == "add_event"
    assert events[-1].data["running"] is False

    assert client.threads.created == [{"thread_id": "t-1", "if_exists": "do_nothing"}]
    run = client.runs.calls[0]
    assert run["assistant_id"] == "asst-1"
    assert run["stream_mode"] == "values"
    assert run["input"]["plan"] == []
    assert run["input"]["messages"] == [{"type": "human", "id": "m1", "content": "Plan my week"}]
    assert run["input"]["copilotkit"]["actions"][0]["name"] == "navigate"
    assert client.open_sessions == 0


@pytest.mark.anyio
async def test_platform_interrupt_response_resumes_the_run() -> None:
    client = FakePlatformClient(assistants=ASSISTANTS, chunks=[])
    handler = await _platform_handler(client)

    stream = await handler(
        name="planner",
        thread_id="t-1",
        meta_events=[MetaEvent(name="LangGraphInterruptEvent", payload={"response": "approve"})],
    )
    events = [event async for event in stream]

    run = client.runs.calls[0]
    assert run["command"] == {"resume": "approve"}
    assert "input" not in run
    assert [event.data["running"] for event in events] == [False]


@pytest.mark.anyio
async def test_platform_run_error_chunk_is_transport_error() -> None:
    client = FakePlatformClient(assistants=ASSISTANTS, chunks=[stream_part("error", {"message": "graph failed"})])
    handler = await _platform_handler(client)

    stream = await handler(name="planner", thread_id="t-1")

    with pytest.raises(LowLevelTransportError):
        async for _ in stream:
            pass
    assert client.open_sessions == 0


@pytest.mark.anyio
async def test_platform_run_without_assistant_is_agent_discovery_error() -> None:
    client = FakePlatformClient(assistants=[], chunks=[])
    handler = await _platform_handler(client)

    stream = await handler(name="planner", thread_id=None)

    with pytest.raises(AgentDiscoveryError):
        async for _ in stream:
            pass
    assert client.threads.created == [{}]


@pytest.mark.anyio
async def test_abandoned_platform_run_closes_the_client() -> None:
    client = FakePlatformClient(
        assistants=ASSISTANTS,
        chunks=[stream_part("values", {"step": 1}), stream_part("values", {"step": 2})],
    )
    handler = await _platform_handler(client)

    stream = await handler(name="planner", thread_id="t-1")
    first = await stream.__anext__()
    await stream.aclose()

    assert first.data["state"] == {"step": 1}
    assert client.open_sessions == 0


@pytest.mark.anyio
async def test_cancelled_platform_run_closes_the_client() -> None:
    client = FakePlatformClient(assistants=ASSISTANTS)
    never = asyncio.Event()

    async def hanging_run(thread_id, assistant_id, **kwargs):
        yield stream_part("values", {"step": 1})
        await never.wait()

    client.runs.stream = hanging_run
    handler = await _platform_handler(client)
    source = RuntimeEventSource()
    source.forward(await handler(name="planner", thread_id="t-1"))

    subscription = source.subscribe()
    first = await subscription.__anext__()
    await subscription.aclose()
    await asyncio.wait_for(source.wait_closed(), timeout=1)

    assert first.data["running"] is True
    assert client.open_sessions == 0
