"""Tests for before/after request hooks."""
from __future__ import annotations

import asyncio
from typing import List

import pytest

from copilot_runtime.core.models import MessageRole, TextMessage
from copilot_runtime.orchestration.middleware import (
    AfterRequestOptions,
    BeforeRequestOptions,
    Middleware,
    MiddlewareDispatcher,
)


def _before_options() -> BeforeRequestOptions:
    return BeforeRequestOptions(
        thread_id="thread-1",
        run_id=None,
        input_messages=[TextMessage(role=MessageRole.USER, content="hi")],
        properties={"user": "u1"},
    )


def _after_options(outputs) -> AfterRequestOptions:
    return AfterRequestOptions(
        thread_id="thread-1",
        run_id=None,
        input_messages=[],
        output_messages=outputs,
    )


@pytest.mark.anyio
async def test_before_hook_may_be_sync_or_async() -> None:
    seen: List[str] = []

    async def async_hook(options: BeforeRequestOptions) -> None:
        seen.append(f"async:{options.thread_id}")

    await MiddlewareDispatcher(Middleware(on_before_request=lambda o: seen.append(f"sync:{o.thread_id}"))).before(
        _before_options()
    )
    await MiddlewareDispatcher(Middleware(on_before_request=async_hook)).before(_before_options())

    assert seen == ["sync:thread-1", "async:thread-1"]


@pytest.mark.anyio
async def test_before_hook_errors_propagate() -> None:
    async def reject(options: BeforeRequestOptions) -> None:
        raise PermissionError("blocked")

    with pytest.raises(PermissionError):
        await MiddlewareDispatcher(Middleware(on_before_request=reject)).before(_before_options())


@pytest.mark.anyio
async def test_missing_before_hook_is_a_no_op() -> None:
    await MiddlewareDispatcher().before(_before_options())


@pytest.mark.anyio
async def test_after_hook_runs_once_outputs_resolve() -> None:
    received: List[AfterRequestOptions] = []
    dispatcher = MiddlewareDispatcher(Middleware(on_after_request=received.append))
    outputs: asyncio.Future = asyncio.get_running_loop().create_future()
    reply = TextMessage(role=MessageRole.ASSISTANT, content="done")

    task = dispatcher.schedule_after(outputs, _after_options)
    await asyncio.sleep(0)
    assert received == []

    outputs.set_result([reply])
    await task

    assert len(received) == 1
    assert received[0].output_messages == [reply]


@pytest.mark.anyio
async def test_after_hook_failures_are_swallowed() -> None:
    async def explode(options: AfterRequestOptions) -> None:
        raise RuntimeError("audit sink down")

    dispatcher = MiddlewareDispatcher(Middleware(on_after_request=explode))
    outputs: asyncio.Future = asyncio.get_running_loop().create_future()
    outputs.set_result([])

    task = dispatcher.schedule_after(outputs, _after_options)
    await task

    assert task.exception() is None


@pytest.mark.anyio
async def test_rejected_outputs_are_swallowed() -> None:
    dispatcher = MiddlewareDispatcher(Middleware(on_after_request=lambda options: None))
    outputs: asyncio.Future = asyncio.get_running_loop().create_future()
    outputs.set_exception(ConnectionError("stream failed"))

    task = dispatcher.schedule_after(outputs, _after_options)
    await task

    assert task.exception() is None


@pytest.mark.anyio
async def test_no_after_hook_schedules_nothing() -> None:
    outputs: asyncio.Future = asyncio.get_running_loop().create_future()

    assert MiddlewareDispatcher().schedule_after(outputs, _after_options) is None
