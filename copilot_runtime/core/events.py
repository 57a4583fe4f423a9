"""Write-once, multi-subscriber event channel carrying a turn's output."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Awaitable, Callable, Coroutine, Dict, List, Mapping, Optional

from copilot_runtime.core.models import MessageRole, random_id

logger = logging.getLogger(__name__)

DEFAULT_CHAT_ERROR = "An error occurred. Please try again."


class RuntimeEventType(Enum):
    TEXT_MESSAGE_START = "TextMessageStart"
    TEXT_MESSAGE_CONTENT = "TextMessageContent"
    TEXT_MESSAGE_END = "TextMessageEnd"
    ACTION_EXECUTION_START = "ActionExecutionStart"
    ACTION_EXECUTION_ARGS = "ActionExecutionArgs"
    ACTION_EXECUTION_END = "ActionExecutionEnd"
    ACTION_EXECUTION_RESULT = "ActionExecutionResult"
    AGENT_STATE_MESSAGE = "AgentStateMessage"
    META_EVENT = "MetaEvent"
    RUN_ERROR = "RunError"


@dataclass(slots=True)
class RuntimeEvent:
    type: RuntimeEventType
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, **self.data}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RuntimeEvent":
        data = dict(payload)
        return cls(type=RuntimeEventType(data.pop("type")), data=data)


def text_message_events(message_id: str, content: str) -> List[RuntimeEvent]:
    return [
        RuntimeEvent(RuntimeEventType.TEXT_MESSAGE_START, {"messageId": message_id, "parentMessageId": None}),
        RuntimeEvent(RuntimeEventType.TEXT_MESSAGE_CONTENT, {"messageId": message_id, "content": content}),
        RuntimeEvent(RuntimeEventType.TEXT_MESSAGE_END, {"messageId": message_id}),
    ]


def action_execution_events(
    action_execution_id: str,
    action_name: str,
    args: str,
    parent_message_id: Optional[str] = None,
) -> List[RuntimeEvent]:
    return [
        RuntimeEvent(
            RuntimeEventType.ACTION_EXECUTION_START,
            {
                "actionExecutionId": action_execution_id,
                "actionName": action_name,
                "parentMessageId": parent_message_id,
            },
        ),
        RuntimeEvent(
            RuntimeEventType.ACTION_EXECUTION_ARGS,
            {"actionExecutionId": action_execution_id, "args": args},
        ),
        RuntimeEvent(RuntimeEventType.ACTION_EXECUTION_END, {"actionExecutionId": action_execution_id}),
    ]


def agent_state_event(
    *,
    thread_id: Optional[str],
    agent_name: str,
    state: Mapping[str, Any],
    running: bool,
    node_name: Optional[str] = None,
    run_id: Optional[str] = None,
    active: bool = True,
    role: MessageRole = MessageRole.ASSISTANT,
) -> RuntimeEvent:
    return RuntimeEvent(
        RuntimeEventType.AGENT_STATE_MESSAGE,
        {
            "threadId": thread_id,
            "agentName": agent_name,
            "nodeName": node_name,
            "runId": run_id,
            "active": active,
            "role": role.value,
            "state": dict(state),
            "running": running,
        },
    )


class RuntimeEventSubject:
    """Producer-side handle used to push events into a source."""

    def __init__(self, source: "RuntimeEventSource") -> None:
        self._source = source

    @property
    def closed(self) -> bool:
        return self._source.closed

    def next(self, event: RuntimeEvent) -> None:
        self._source._publish(event)

    def error(self, exc: BaseException) -> None:
        self._source._finish(exc)

    def complete(self) -> None:
        self._source._finish(None)

    def send_text_message_start(self, message_id: str, parent_message_id: Optional[str] = None) -> None:
        self.next(
            RuntimeEvent(
                RuntimeEventType.TEXT_MESSAGE_START,
                {"messageId": message_id, "parentMessageId": parent_message_id},
            )
        )

    def send_text_message_content(self, message_id: str, content: str) -> None:
        self.next(
            RuntimeEvent(RuntimeEventType.TEXT_MESSAGE_CONTENT, {"messageId": message_id, "content": content})
        )

    def send_text_message_end(self, message_id: str) -> None:
        self.next(RuntimeEvent(RuntimeEventType.TEXT_MESSAGE_END, {"messageId": message_id}))

    def send_text_message(self, message_id: str, content: str) -> None:
        for event in text_message_events(message_id, content):
            self.next(event)

    def send_action_execution_start(
        self,
        action_execution_id: str,
        action_name: str,
        parent_message_id: Optional[str] = None,
    ) -> None:
        self.next(
            RuntimeEvent(
                RuntimeEventType.ACTION_EXECUTION_START,
                {
                    "actionExecutionId": action_execution_id,
                    "actionName": action_name,
                    "parentMessageId": parent_message_id,
                },
            )
        )

    def send_action_execution_args(self, action_execution_id: str, args: str) -> None:
        self.next(
            RuntimeEvent(
                RuntimeEventType.ACTION_EXECUTION_ARGS,
                {"actionExecutionId": action_execution_id, "args": args},
            )
        )

    def send_action_execution_end(self, action_execution_id: str) -> None:
        self.next(
            RuntimeEvent(RuntimeEventType.ACTION_EXECUTION_END, {"actionExecutionId": action_execution_id})
        )

    def send_action_execution(
        self,
        action_execution_id: str,
        action_name: str,
        args: str,
        parent_message_id: Optional[str] = None,
    ) -> None:
        for event in action_execution_events(action_execution_id, action_name, args, parent_message_id):
            self.next(event)

    def send_action_execution_result(self, action_execution_id: str, action_name: str, result: str) -> None:
        self.next(
            RuntimeEvent(
                RuntimeEventType.ACTION_EXECUTION_RESULT,
                {"actionExecutionId": action_execution_id, "actionName": action_name, "result": result},
            )
        )

    def send_agent_state_message(
        self,
        *,
        thread_id: Optional[str],
        agent_name: str,
        state: Mapping[str, Any],
        running: bool,
        node_name: Optional[str] = None,
        run_id: Optional[str] = None,
        active: bool = True,
        role: MessageRole = MessageRole.ASSISTANT,
    ) -> None:
        self.next(
            agent_state_event(
                thread_id=thread_id,
                agent_name=agent_name,
                state=state,
                running=running,
                node_name=node_name,
                run_id=run_id,
                active=active,
                role=role,
            )
        )


_CLOSED = object()

StreamCallback = Callable[[RuntimeEventSubject], Awaitable[None]]


class RuntimeEventSource:
    """Event channel fed by exactly one producer and read by any number of subscribers.

    The producer is either an adapter callback (``stream``) or an external
    async sequence (``forward``). Every subscriber replays the events emitted
    so far and then follows the live stream; a terminal error is raised from
    each subscription after its events have been delivered.
    """

    def __init__(self) -> None:
        self._history: List[RuntimeEvent] = []
        self._subscribers: List[asyncio.Queue[Any]] = []
        self._producer: Optional[asyncio.Task[None]] = None
        self._attached = False
        self._closed = False
        self._error: Optional[BaseException] = None
        self._closed_event = asyncio.Event()
        self._subject = RuntimeEventSubject(self)

    @property
    def has_producer(self) -> bool:
        return self._attached

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def stream(self, callback: StreamCallback) -> None:
        """Attach an adapter callback that pushes events through a subject."""
        self._attach(self._run_callback(callback))

    def forward(self, source: AsyncIterable[RuntimeEvent]) -> None:
        """Attach an externally produced event sequence, forwarded verbatim."""
        self._attach(self._run_forward(source))

    def send_error_message_to_chat(self, message: str = DEFAULT_CHAT_ERROR) -> None:
        """Emit a single chat-visible error message and terminate the stream.

        Only effective while no producer is attached; an attached producer
        owns the stream and reports its own failures.
        """
        if self._attached:
            logger.debug("Skipping chat error message, a producer is already attached")
            return

        async def _send(subject: RuntimeEventSubject) -> None:
            subject.send_text_message(random_id(), message)

        self.stream(_send)

    async def cancel(self) -> None:
        """Cancel the producer and close the stream."""
        producer = self._producer
        if producer is not None and not producer.done():
            producer.cancel()
            try:
                await producer
            except asyncio.CancelledError:
                pass
        self._finish(None)

    async def wait_closed(self) -> None:
        await self._closed_event.wait()

    async def subscribe(self) -> AsyncIterator[RuntimeEvent]:
        queue: asyncio.Queue[Any] = asyncio.Queue()
        for event in self._history:
            queue.put_nowait(event)
        if self._closed:
            queue.put_nowait(_CLOSED)
        self._subscribers.append(queue)
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    if self._error is not None:
                        raise self._error
                    return
                yield item
        finally:
            self._subscribers.remove(queue)
            if not self._subscribers and not self._closed:
                # Last consumer left early; stop the upstream producer.
                self._cancel_producer()

    def __aiter__(self) -> AsyncIterator[RuntimeEvent]:
        return self.subscribe()

    def _attach(self, producer: Coroutine[Any, Any, None]) -> None:
        if self._attached:
            producer.close()
            raise RuntimeError("RuntimeEventSource already has a producer attached")
        self._attached = True
        self._producer = asyncio.create_task(producer)

    def _cancel_producer(self) -> None:
        if self._producer is not None and not self._producer.done():
            self._producer.cancel()

    def _publish(self, event: RuntimeEvent) -> None:
        if self._closed:
            return
        self._history.append(event)
        for queue in self._subscribers:
            queue.put_nowait(event)

    def _finish(self, error: Optional[BaseException]) -> None:
        if self._closed:
            return
        self._closed = True
        self._error = error
        self._closed_event.set()
        for queue in self._subscribers:
            queue.put_nowait(_CLOSED)

    def _fail(self, exc: BaseException) -> None:
        self._publish(RuntimeEvent(RuntimeEventType.RUN_ERROR, {"message": str(exc)}))
        self._finish(exc)

    async def _run_callback(self, callback: StreamCallback) -> None:
        try:
            await callback(self._subject)
        except asyncio.CancelledError:
            self._finish(None)
            raise
        except Exception as exc:
            logger.error("Error in event stream producer", exc_info=True)
            self._fail(exc)
        else:
            self._finish(None)

    async def _run_forward(self, source: AsyncIterable[RuntimeEvent]) -> None:
        iterator = source.__aiter__()
        try:
            async for event in iterator:
                self._publish(event)
        except asyncio.CancelledError:
            self._finish(None)
            raise
        except Exception as exc:
            logger.error("Error in forwarded agent stream", extra={"error": str(exc)})
            self._fail(exc)
        else:
            self._finish(None)
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()
