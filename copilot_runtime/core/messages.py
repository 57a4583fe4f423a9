"""Conversions between transport payloads, platform messages and runtime messages."""
from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Mapping, Optional

from copilot_runtime.core.models import (
    ActionExecutionMessage,
    AgentStateMessage,
    Message,
    MessageRole,
    ResultMessage,
    TextMessage,
    random_id,
)


def _decode_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, str):
        return json.loads(raw) if raw else {}
    return dict(raw or {})


def message_from_dict(data: Mapping[str, Any]) -> Message:
    """Build a typed message from a transport payload keyed on ``type``."""
    kind = data.get("type", "text")
    message_id = data.get("id") or random_id()
    if kind == "text":
        return TextMessage(
            id=message_id,
            role=MessageRole(data.get("role", "user")),
            content=data.get("content", ""),
        )
    if kind == "action_execution":
        return ActionExecutionMessage(
            id=message_id,
            name=data["name"],
            arguments=_decode_arguments(data.get("arguments")),
            parent_message_id=data.get("parentMessageId"),
        )
    if kind == "result":
        return ResultMessage(
            id=message_id,
            action_execution_id=data["actionExecutionId"],
            action_name=data.get("actionName", ""),
            result=data.get("result", ""),
        )
    if kind == "agent_state":
        state = data.get("state") or {}
        return AgentStateMessage(
            id=message_id,
            agent_name=data["agentName"],
            state=json.loads(state) if isinstance(state, str) else dict(state),
            running=bool(data.get("running", False)),
            thread_id=data.get("threadId"),
            node_name=data.get("nodeName"),
            run_id=data.get("runId"),
            active=bool(data.get("active", True)),
        )
    raise ValueError(f"Unknown message type: {kind!r}")


def _text_content(content: Any) -> str:
    # Platform messages may carry a list of content parts.
    if isinstance(content, list):
        return "".join(
            part.get("text", "") if isinstance(part, Mapping) else str(part) for part in content
        )
    return "" if content is None else str(content)


def langchain_messages_to_copilot(messages: Optional[Iterable[Mapping[str, Any]]]) -> List[Message]:
    """Normalize LangChain-style state messages into runtime messages."""
    result: List[Message] = []
    for message in messages or []:
        kind = message.get("type")
        message_id = message.get("id") or random_id()
        if kind == "human":
            result.append(
                TextMessage(id=message_id, role=MessageRole.USER, content=_text_content(message.get("content")))
            )
        elif kind == "system":
            result.append(
                TextMessage(id=message_id, role=MessageRole.SYSTEM, content=_text_content(message.get("content")))
            )
        elif kind == "ai":
            content = _text_content(message.get("content"))
            if content:
                result.append(TextMessage(id=message_id, role=MessageRole.ASSISTANT, content=content))
            for tool_call in message.get("tool_calls") or []:
                result.append(
                    ActionExecutionMessage(
                        id=tool_call.get("id") or random_id(),
                        name=tool_call["name"],
                        arguments=dict(tool_call.get("args") or {}),
                        parent_message_id=message_id,
                    )
                )
        elif kind == "tool":
            result.append(
                ResultMessage(
                    id=message_id,
                    action_execution_id=message.get("tool_call_id", ""),
                    action_name=message.get("name") or "",
                    result=_text_content(message.get("content")),
                )
            )
    return result


def copilot_messages_to_langchain(messages: Iterable[Message]) -> List[Dict[str, Any]]:
    """Convert runtime messages into LangChain-style dicts for a platform run."""
    result: List[Dict[str, Any]] = []
    for message in messages:
        if isinstance(message, TextMessage):
            kind = {
                MessageRole.USER: "human",
                MessageRole.SYSTEM: "system",
                MessageRole.ASSISTANT: "ai",
            }[message.role]
            result.append({"type": kind, "id": message.id, "content": message.content})
        elif isinstance(message, ActionExecutionMessage):
            tool_call = {"id": message.id, "name": message.name, "args": message.arguments}
            parent = next(
                (
                    item
                    for item in result
                    if item["type"] == "ai" and item["id"] == message.parent_message_id
                ),
                None,
            )
            if parent is not None:
                parent.setdefault("tool_calls", []).append(tool_call)
            else:
                result.append(
                    {
                        "type": "ai",
                        "id": message.parent_message_id or random_id(),
                        "content": "",
                        "tool_calls": [tool_call],
                    }
                )
        elif isinstance(message, ResultMessage):
            result.append(
                {
                    "type": "tool",
                    "id": message.id,
                    "content": message.result,
                    "tool_call_id": message.action_execution_id,
                    "name": message.action_name,
                }
            )
    return result


def serialize_messages(messages: Iterable[Message]) -> str:
    return json.dumps([message.to_dict() for message in messages])
