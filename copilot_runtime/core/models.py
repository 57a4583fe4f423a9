"""Core data models shared across runtime components."""
from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Union,
)

if TYPE_CHECKING:
    from copilot_runtime.core.events import RuntimeEvent, RuntimeEventSource
    from copilot_runtime.endpoints.definitions import EndpointDefinition


def random_id() -> str:
    return f"ck-{uuid.uuid4()}"


def random_uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class Parameter:
    """Describes one argument of a server-side action."""

    name: str
    type: str = "string"
    description: str = ""
    required: bool = True
    enum: Optional[List[str]] = None
    attributes: List["Parameter"] = field(default_factory=list)


def _parameter_schema(parameter: Parameter) -> Dict[str, Any]:
    base_type = parameter.type[:-2] if parameter.type.endswith("[]") else parameter.type
    if base_type == "object":
        schema: Dict[str, Any] = parameters_to_json_schema(parameter.attributes)
    else:
        schema = {"type": base_type}
        if parameter.enum:
            schema["enum"] = list(parameter.enum)
    if parameter.description:
        schema["description"] = parameter.description
    if parameter.type.endswith("[]"):
        items = schema
        schema = {"type": "array", "items": items}
        if "description" in items:
            schema["description"] = items.pop("description")
    return schema


def parameters_to_json_schema(parameters: Sequence[Parameter]) -> Dict[str, Any]:
    """Convert a parameter list into a JSON schema object."""
    properties = {parameter.name: _parameter_schema(parameter) for parameter in parameters}
    required = [parameter.name for parameter in parameters if parameter.required]
    return {"type": "object", "properties": properties, "required": required}


class ActionInputAvailability(Enum):
    """Where a client-declared action may be executed."""

    ENABLED = "enabled"
    DISABLED = "disabled"
    REMOTE = "remote"


@dataclass(slots=True)
class ActionInput:
    """Action descriptor handed to adapters and agents; identity is ``name``."""

    name: str
    description: str = ""
    json_schema: str = "{}"
    available: ActionInputAvailability = ActionInputAvailability.ENABLED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "jsonSchema": self.json_schema,
        }


ActionHandler = Callable[..., Union[Any, Awaitable[Any]]]
RemoteAgentHandler = Callable[..., Awaitable[AsyncIterator["RuntimeEvent"]]]


@dataclass(slots=True)
class Action:
    """Server-side action the model may call as a tool."""

    name: str
    description: str = ""
    parameters: List[Parameter] = field(default_factory=list)
    handler: Optional[ActionHandler] = None

    def json_schema(self) -> Dict[str, Any]:
        return parameters_to_json_schema(self.parameters)

    def to_input(self) -> ActionInput:
        return ActionInput(
            name=self.name,
            description=self.description,
            json_schema=json.dumps(self.json_schema()),
        )


@dataclass(slots=True)
class RemoteAgentAction(Action):
    """Action backed by a remote agent that streams runtime events."""

    remote_agent_handler: Optional[RemoteAgentHandler] = None


def is_remote_agent_action(action: Optional[Action]) -> bool:
    return isinstance(action, RemoteAgentAction) and action.remote_agent_handler is not None


# ---------------------------------------------------------------------------
# Agents and sessions
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class RequestContext:
    """Caller-supplied properties forwarded to endpoints and hooks."""

    properties: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Agent:
    """Agent discovered on a remote endpoint. Recomputed on every discovery."""

    name: str
    id: str
    description: str
    endpoint: "EndpointDefinition"

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "id": self.id, "description": self.description}


@dataclass(slots=True)
class AgentSession:
    agent_name: str
    node_name: Optional[str] = None
    thread_id: Optional[str] = None


@dataclass(slots=True)
class AgentStateInput:
    """State the client last observed for an agent, serialized as JSON."""

    agent_name: str
    state: str = "{}"
    config: Optional[str] = None


@dataclass(slots=True)
class MetaEvent:
    name: str
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, **self.payload}


@dataclass(slots=True)
class AgentStateSnapshot:
    """Canonical agent state returned for both endpoint variants."""

    thread_id: str
    thread_exists: bool
    state: str
    messages: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "threadId": self.thread_id,
            "threadExists": self.thread_exists,
            "state": self.state,
            "messages": self.messages,
        }


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class MessageRole(Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(slots=True)
class TextMessage:
    role: MessageRole
    content: str
    id: str = field(default_factory=random_id)
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "text",
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(slots=True)
class ActionExecutionMessage:
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    parent_message_id: Optional[str] = None
    id: str = field(default_factory=random_id)
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "action_execution",
            "id": self.id,
            "name": self.name,
            "arguments": self.arguments,
            "parentMessageId": self.parent_message_id,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(slots=True)
class ResultMessage:
    action_execution_id: str
    action_name: str
    result: str
    id: str = field(default_factory=random_id)
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "result",
            "id": self.id,
            "actionExecutionId": self.action_execution_id,
            "actionName": self.action_name,
            "result": self.result,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(slots=True)
class AgentStateMessage:
    agent_name: str
    state: Dict[str, Any] = field(default_factory=dict)
    running: bool = False
    thread_id: Optional[str] = None
    node_name: Optional[str] = None
    run_id: Optional[str] = None
    active: bool = True
    role: MessageRole = MessageRole.ASSISTANT
    id: str = field(default_factory=random_id)
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "agent_state",
            "id": self.id,
            "agentName": self.agent_name,
            "state": self.state,
            "running": self.running,
            "threadId": self.thread_id,
            "nodeName": self.node_name,
            "runId": self.run_id,
            "active": self.active,
            "role": self.role.value,
            "createdAt": self.created_at.isoformat(),
        }


Message = Union[TextMessage, ActionExecutionMessage, ResultMessage, AgentStateMessage]


# ---------------------------------------------------------------------------
# Turns
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class ServiceAdapterRequest:
    messages: List[Message]
    actions: List[ActionInput]
    event_source: "RuntimeEventSource"
    thread_id: Optional[str] = None
    run_id: Optional[str] = None
    forwarded_parameters: Optional[Dict[str, Any]] = None
    extensions: Optional[Dict[str, Any]] = None
    agent_session: Optional[AgentSession] = None
    agent_states: Optional[List[AgentStateInput]] = None


@dataclass(slots=True)
class ServiceAdapterResponse:
    thread_id: str
    run_id: Optional[str] = None
    extensions: Optional[Dict[str, Any]] = None


@dataclass(slots=True)
class TurnRequest:
    """Everything needed to process a single conversational turn."""

    service_adapter: Any
    messages: List[Message]
    output_messages: Awaitable[List[Message]]
    context: RequestContext = field(default_factory=RequestContext)
    actions: List[ActionInput] = field(default_factory=list)
    agent_session: Optional[AgentSession] = None
    agent_states: List[AgentStateInput] = field(default_factory=list)
    thread_id: Optional[str] = None
    run_id: Optional[str] = None
    forwarded_parameters: Optional[Dict[str, Any]] = None
    extensions: Optional[Dict[str, Any]] = None
    meta_events: List[MetaEvent] = field(default_factory=list)
    url: Optional[str] = None


@dataclass(slots=True)
class TurnResponse:
    thread_id: str
    event_source: "RuntimeEventSource"
    server_side_actions: List[Action]
    action_inputs_without_agents: List[ActionInput]
    run_id: Optional[str] = None
    extensions: Optional[Mapping[str, Any]] = None
