"""Before/after request hooks wrapped around each turn."""
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from copilot_runtime.core.models import Message

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BeforeRequestOptions:
    thread_id: Optional[str]
    run_id: Optional[str]
    input_messages: List[Message]
    properties: Dict[str, Any] = field(default_factory=dict)
    url: Optional[str] = None


@dataclass(slots=True)
class AfterRequestOptions:
    thread_id: str
    run_id: Optional[str]
    input_messages: List[Message]
    output_messages: List[Message]
    properties: Dict[str, Any] = field(default_factory=dict)
    url: Optional[str] = None


BeforeRequestHandler = Callable[[BeforeRequestOptions], Union[None, Awaitable[None]]]
AfterRequestHandler = Callable[[AfterRequestOptions], Union[None, Awaitable[None]]]


@dataclass(frozen=True, slots=True)
class Middleware:
    on_before_request: Optional[BeforeRequestHandler] = None
    on_after_request: Optional[AfterRequestHandler] = None


class MiddlewareDispatcher:
    """Invoke middleware hooks; after-hook failures never reach the caller."""

    def __init__(self, middleware: Optional[Middleware] = None) -> None:
        self._middleware = middleware or Middleware()
        self._pending: Set[asyncio.Task[None]] = set()

    async def before(self, options: BeforeRequestOptions) -> None:
        """Run the before-hook to completion; its errors abort the turn."""
        hook = self._middleware.on_before_request
        if hook is None:
            return
        result = hook(options)
        if inspect.isawaitable(result):
            await result

    def schedule_after(
        self,
        output_messages: Awaitable[List[Message]],
        build_options: Callable[[List[Message]], AfterRequestOptions],
    ) -> Optional[asyncio.Task[None]]:
        """Detach the after-hook until the output messages are known.

        The task is fire-and-forget: every exception raised while awaiting the
        output or running the hook is swallowed.
        """
        hook = self._middleware.on_after_request
        if hook is None:
            if inspect.iscoroutine(output_messages):
                output_messages.close()
            return None
        task = asyncio.ensure_future(self._run_after(hook, output_messages, build_options))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _run_after(
        self,
        hook: AfterRequestHandler,
        output_messages: Awaitable[List[Message]],
        build_options: Callable[[List[Message]], AfterRequestOptions],
    ) -> None:
        try:
            outputs = await output_messages
            result = hook(build_options(list(outputs)))
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.debug("After-request hook failed", exc_info=True)
