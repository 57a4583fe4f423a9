"""HTTP API exposing the runtime's turn, discovery and state operations."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from copilot_runtime.core.errors import CopilotError, ErrorCode
from copilot_runtime.core.events import RuntimeEvent, RuntimeEventType
from copilot_runtime.core.messages import message_from_dict
from copilot_runtime.core.models import (
    ActionExecutionMessage,
    ActionInput,
    ActionInputAvailability,
    AgentSession,
    AgentStateInput,
    AgentStateMessage,
    Message,
    MessageRole,
    MetaEvent,
    RequestContext,
    ResultMessage,
    TextMessage,
    TurnRequest,
)
from copilot_runtime.orchestration.processor import CopilotRuntime
from copilot_runtime.runtime import get_runtime, get_service_adapter
from copilot_runtime.services.adapters import ServiceAdapter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["runtime"])

_STATUS_BY_CODE = {
    ErrorCode.MISUSE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.AGENT_DISCOVERY: status.HTTP_404_NOT_FOUND,
    ErrorCode.API_DISCOVERY: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.TRANSPORT: status.HTTP_502_BAD_GATEWAY,
}


class ActionInputModel(BaseModel):
    name: str
    description: str = ""
    json_schema: str = "{}"
    available: ActionInputAvailability = ActionInputAvailability.ENABLED


class AgentSessionModel(BaseModel):
    agent_name: str
    node_name: Optional[str] = None
    thread_id: Optional[str] = None


class AgentStateModel(BaseModel):
    agent_name: str
    state: str = "{}"
    config: Optional[str] = None


class MetaEventModel(BaseModel):
    name: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class TurnRequestModel(BaseModel):
    messages: List[Dict[str, Any]] = Field(default_factory=list)
    actions: List[ActionInputModel] = Field(default_factory=list)
    agent_session: Optional[AgentSessionModel] = None
    agent_states: List[AgentStateModel] = Field(default_factory=list)
    thread_id: Optional[str] = None
    run_id: Optional[str] = None
    forwarded_parameters: Optional[Dict[str, Any]] = None
    extensions: Optional[Dict[str, Any]] = None
    meta_events: List[MetaEventModel] = Field(default_factory=list)
    properties: Dict[str, Any] = Field(default_factory=dict)
    url: Optional[str] = None


class DiscoverAgentsRequest(BaseModel):
    properties: Dict[str, Any] = Field(default_factory=dict)


class AgentResponse(BaseModel):
    name: str
    id: str
    description: str


class LoadAgentStateRequest(BaseModel):
    thread_id: str
    agent_name: str
    properties: Dict[str, Any] = Field(default_factory=dict)


class AgentStateResponse(BaseModel):
    thread_id: str
    thread_exists: bool
    state: str
    messages: str


class OutputMessageCollector:
    """Rebuild output messages from the event stream of a turn."""

    def __init__(self) -> None:
        self.messages: List[Message] = []
        self._text: Dict[str, List[str]] = {}
        self._actions: Dict[str, Dict[str, Any]] = {}

    def add(self, event: RuntimeEvent) -> None:
        data = event.data
        if event.type is RuntimeEventType.TEXT_MESSAGE_START:
            self._text[data["messageId"]] = []
        elif event.type is RuntimeEventType.TEXT_MESSAGE_CONTENT:
            self._text.setdefault(data["messageId"], []).append(data["content"])
        elif event.type is RuntimeEventType.TEXT_MESSAGE_END:
            content = "".join(self._text.pop(data["messageId"], []))
            self.messages.append(TextMessage(id=data["messageId"], role=MessageRole.ASSISTANT, content=content))
        elif event.type is RuntimeEventType.ACTION_EXECUTION_START:
            self._actions[data["actionExecutionId"]] = {
                "name": data["actionName"],
                "parent": data.get("parentMessageId"),
                "args": [],
            }
        elif event.type is RuntimeEventType.ACTION_EXECUTION_ARGS:
            self._actions[data["actionExecutionId"]]["args"].append(data["args"])
        elif event.type is RuntimeEventType.ACTION_EXECUTION_END:
            pending = self._actions.pop(data["actionExecutionId"])
            try:
                arguments = json.loads("".join(pending["args"]) or "{}")
            except ValueError:
                arguments = {}
            self.messages.append(
                ActionExecutionMessage(
                    id=data["actionExecutionId"],
                    name=pending["name"],
                    arguments=arguments,
                    parent_message_id=pending["parent"],
                )
            )
        elif event.type is RuntimeEventType.ACTION_EXECUTION_RESULT:
            self.messages.append(
                ResultMessage(
                    action_execution_id=data["actionExecutionId"],
                    action_name=data["actionName"],
                    result=data["result"],
                )
            )
        elif event.type is RuntimeEventType.AGENT_STATE_MESSAGE:
            self.messages.append(
                AgentStateMessage(
                    agent_name=data["agentName"],
                    state=data.get("state") or {},
                    running=data.get("running", False),
                    thread_id=data.get("threadId"),
                    node_name=data.get("nodeName"),
                    run_id=data.get("runId"),
                    active=data.get("active", True),
                )
            )


def _http_error(exc: CopilotError) -> HTTPException:
    return HTTPException(status_code=_STATUS_BY_CODE[exc.code], detail=exc.message)


def _to_turn_request(
    body: TurnRequestModel,
    adapter: ServiceAdapter,
    output_messages: "asyncio.Future[List[Message]]",
) -> TurnRequest:
    try:
        messages = [message_from_dict(item) for item in body.messages]
    except (KeyError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return TurnRequest(
        service_adapter=adapter,
        messages=messages,
        output_messages=output_messages,
        context=RequestContext(properties=body.properties),
        actions=[ActionInput(**action.model_dump()) for action in body.actions],
        agent_session=AgentSession(**body.agent_session.model_dump()) if body.agent_session else None,
        agent_states=[AgentStateInput(**state.model_dump()) for state in body.agent_states],
        thread_id=body.thread_id,
        run_id=body.run_id,
        forwarded_parameters=body.forwarded_parameters,
        extensions=body.extensions,
        meta_events=[MetaEvent(name=event.name, payload=event.payload) for event in body.meta_events],
        url=body.url,
    )


@router.post("/turns")
async def process_turn(
    body: TurnRequestModel,
    runtime: CopilotRuntime = Depends(get_runtime),
    adapter: ServiceAdapter = Depends(get_service_adapter),
) -> StreamingResponse:
    """Process one turn and stream its events as newline-delimited JSON."""
    output_messages: asyncio.Future[List[Message]] = asyncio.get_running_loop().create_future()
    request = _to_turn_request(body, adapter, output_messages)
    try:
        response = await runtime.process_runtime_request(request)
    except CopilotError as exc:
        output_messages.cancel()
        raise _http_error(exc) from exc
    except Exception:
        output_messages.cancel()
        raise

    collector = OutputMessageCollector()

    async def event_lines() -> AsyncIterator[str]:
        failed = False
        try:
            async for event in response.event_source:
                collector.add(event)
                yield json.dumps(event.to_dict()) + "\n"
        except Exception as exc:
            # The RunError event was already emitted in-band.
            failed = True
            logger.error("Turn stream ended with an error", extra={"thread_id": response.thread_id, "error": str(exc)})
        finally:
            # Only a cleanly completed stream resolves the output messages.
            if not output_messages.done():
                if response.event_source.closed and not failed:
                    output_messages.set_result(collector.messages)
                else:
                    output_messages.cancel()

    headers = {"x-thread-id": response.thread_id}
    if response.run_id:
        headers["x-run-id"] = response.run_id
    return StreamingResponse(event_lines(), media_type="application/x-ndjson", headers=headers)


@router.post("/agents/discover", response_model=List[AgentResponse])
async def discover_agents(
    body: DiscoverAgentsRequest,
    runtime: CopilotRuntime = Depends(get_runtime),
) -> List[AgentResponse]:
    try:
        agents = await runtime.discover_agents_from_endpoints(RequestContext(properties=body.properties))
    except CopilotError as exc:
        raise _http_error(exc) from exc
    return [AgentResponse(**agent.to_dict()) for agent in agents]


@router.post("/agents/state", response_model=AgentStateResponse)
async def load_agent_state(
    body: LoadAgentStateRequest,
    runtime: CopilotRuntime = Depends(get_runtime),
) -> AgentStateResponse:
    try:
        snapshot = await runtime.load_agent_state(
            RequestContext(properties=body.properties),
            body.thread_id,
            body.agent_name,
        )
    except CopilotError as exc:
        raise _http_error(exc) from exc
    return AgentStateResponse(
        thread_id=snapshot.thread_id,
        thread_exists=snapshot.thread_exists,
        state=snapshot.state,
        messages=snapshot.messages,
    )
