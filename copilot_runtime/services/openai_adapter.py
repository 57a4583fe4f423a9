"""OpenAI-backed service adapter streaming completions into the event source."""
from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional, Sequence

from openai import AsyncAzureOpenAI, AsyncOpenAI

from copilot_runtime.config import AzureOpenAIConfig, OpenAIConfig
from copilot_runtime.core.events import RuntimeEventSubject
from copilot_runtime.core.models import (
    ActionExecutionMessage,
    ActionInput,
    Message,
    ResultMessage,
    ServiceAdapterRequest,
    ServiceAdapterResponse,
    TextMessage,
    random_id,
)
from copilot_runtime.services.adapters import ServiceAdapter

_FORWARDED_PARAMETERS = ("temperature", "max_tokens", "stop", "tool_choice")


def convert_message_to_openai(message: Message) -> Optional[Dict[str, Any]]:
    if isinstance(message, TextMessage):
        return {"role": message.role.value, "content": message.content}
    if isinstance(message, ActionExecutionMessage):
        return {
            "role": "assistant",
            "tool_calls": [
                {
                    "id": message.id,
                    "type": "function",
                    "function": {"name": message.name, "arguments": json.dumps(message.arguments)},
                }
            ],
        }
    if isinstance(message, ResultMessage):
        return {"role": "tool", "content": message.result, "tool_call_id": message.action_execution_id}
    return None


def convert_action_input_to_tool(action: ActionInput) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": action.name,
            "description": action.description,
            "parameters": json.loads(action.json_schema or "{}"),
        },
    }


class OpenAIAdapter(ServiceAdapter):
    """Streams chat completions as text and tool-call events."""

    def __init__(self, client: Any, model: str = "gpt-4o", *, max_concurrent: int = 50) -> None:
        self._client = client
        self.model = model
        self._semaphore = asyncio.Semaphore(max_concurrent)

    @classmethod
    def from_openai_config(cls, config: OpenAIConfig) -> "OpenAIAdapter":
        client = AsyncOpenAI(api_key=config.api_key, base_url=config.base_url)
        return cls(client, config.model, max_concurrent=config.max_concurrent)

    @classmethod
    def from_azure_config(cls, config: AzureOpenAIConfig) -> "OpenAIAdapter":
        client = AsyncAzureOpenAI(
            api_key=config.api_key,
            api_version=config.api_version,
            azure_endpoint=config.endpoint,
        )
        return cls(client, config.deployment_name, max_concurrent=config.max_concurrent)

    async def process(self, request: ServiceAdapterRequest) -> ServiceAdapterResponse:
        thread_id = request.thread_id or random_id()
        completion_kwargs = self._completion_kwargs(request.messages, request.actions, request.forwarded_parameters)

        async def _stream(subject: RuntimeEventSubject) -> None:
            await self._stream_completion(subject, completion_kwargs)

        request.event_source.stream(_stream)
        return ServiceAdapterResponse(thread_id=thread_id, run_id=request.run_id)

    def _completion_kwargs(
        self,
        messages: Sequence[Message],
        actions: Sequence[ActionInput],
        forwarded_parameters: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        forwarded = forwarded_parameters or {}
        openai_messages = [
            converted for converted in (convert_message_to_openai(m) for m in messages) if converted is not None
        ]
        kwargs: Dict[str, Any] = {
            "model": forwarded.get("model") or self.model,
            "messages": openai_messages,
            "stream": True,
        }
        tools: List[Dict[str, Any]] = [convert_action_input_to_tool(action) for action in actions]
        if tools:
            kwargs["tools"] = tools
        for name in _FORWARDED_PARAMETERS:
            if forwarded.get(name) is not None:
                kwargs[name] = forwarded[name]
        return kwargs

    async def _stream_completion(self, subject: RuntimeEventSubject, completion_kwargs: Dict[str, Any]) -> None:
        async with self._semaphore:
            stream = await self._client.chat.completions.create(**completion_kwargs)

            mode: Optional[str] = None
            message_id = ""
            tool_call_id = ""
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                tool_call = delta.tool_calls[0] if delta.tool_calls else None

                # A new tool call id, or text after a tool call, closes the open segment.
                if mode == "message" and tool_call is not None and tool_call.id:
                    subject.send_text_message_end(message_id)
                    mode = None
                elif mode == "function" and (tool_call is None or tool_call.id):
                    subject.send_action_execution_end(tool_call_id)
                    mode = None

                if mode is None:
                    if tool_call is not None and tool_call.id:
                        mode = "function"
                        tool_call_id = tool_call.id
                        subject.send_action_execution_start(tool_call_id, tool_call.function.name, chunk.id)
                    elif delta.content:
                        mode = "message"
                        message_id = chunk.id or random_id()
                        subject.send_text_message_start(message_id)

                if mode == "message" and delta.content:
                    subject.send_text_message_content(message_id, delta.content)
                elif mode == "function" and tool_call is not None and tool_call.function.arguments:
                    subject.send_action_execution_args(tool_call_id, tool_call.function.arguments)

            if mode == "message":
                subject.send_text_message_end(message_id)
            elif mode == "function":
                subject.send_action_execution_end(tool_call_id)

        subject.complete()
