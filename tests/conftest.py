"""Shared fixtures: fake platform client, scripted adapters and mock HTTP endpoints."""
from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from copilot_runtime.core.models import ServiceAdapterRequest, ServiceAdapterResponse
from copilot_runtime.services.adapters import ServiceAdapter


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeAssistants:
    def __init__(self, assistants: List[Dict[str, Any]]) -> None:
        self._assistants = assistants
        self.search_calls: List[Dict[str, Any]] = []

    async def search(self, **kwargs: Any) -> List[Dict[str, Any]]:
        self.search_calls.append(kwargs)
        graph_id = kwargs.get("graph_id")
        if graph_id is None:
            return list(self._assistants)
        return [entry for entry in self._assistants if entry["graph_id"] == graph_id]


class FakeThreads:
    def __init__(self, state: Optional[Dict[str, Any]] = None, error: Optional[Exception] = None) -> None:
        self._state = state
        self._error = error
        self.created: List[Dict[str, Any]] = []

    async def get_state(self, thread_id: str) -> Dict[str, Any]:
        if self._error is not None:
            raise self._error
        return {"values": self._state or {}}

    async def create(self, **kwargs: Any) -> Dict[str, Any]:
        self.created.append(kwargs)
        return {"thread_id": kwargs.get("thread_id") or "platform-thread"}


class FakeRuns:
    def __init__(self, chunks: List[Any]) -> None:
        self._chunks = chunks
        self.calls: List[Dict[str, Any]] = []

    async def stream(self, thread_id: str, assistant_id: str, **kwargs: Any):
        self.calls.append({"thread_id": thread_id, "assistant_id": assistant_id, **kwargs})
        for chunk in self._chunks:
            yield chunk


class FakePlatformClient:
    """Stands in for the client returned by ``langgraph_sdk.get_client``."""

    def __init__(
        self,
        *,
        assistants: Optional[List[Dict[str, Any]]] = None,
        state: Optional[Dict[str, Any]] = None,
        state_error: Optional[Exception] = None,
        chunks: Optional[List[Any]] = None,
    ) -> None:
        self.assistants = FakeAssistants(assistants or [])
        self.threads = FakeThreads(state, state_error)
        self.runs = FakeRuns(chunks or [])
        self.factory_calls: List[Dict[str, Any]] = []
        self.close_count = 0

    def factory(self, **kwargs: Any) -> "FakePlatformClient":
        self.factory_calls.append(kwargs)
        return self

    async def aclose(self) -> None:
        self.close_count += 1

    @property
    def open_sessions(self) -> int:
        return len(self.factory_calls) - self.close_count


def stream_part(event: str, data: Any) -> SimpleNamespace:
    return SimpleNamespace(event=event, data=data)


class ScriptedAdapter(ServiceAdapter):
    """Adapter that replies with a fixed text message."""

    def __init__(self, reply: str = "Hello!", thread_id: str = "adapter-thread", log: Optional[List[str]] = None):
        self.reply = reply
        self.thread_id = thread_id
        self.log = log if log is not None else []
        self.requests: List[ServiceAdapterRequest] = []

    async def process(self, request: ServiceAdapterRequest) -> ServiceAdapterResponse:
        self.log.append("adapter")
        self.requests.append(request)

        async def _send(subject) -> None:
            subject.send_text_message("reply-1", self.reply)
            subject.complete()

        request.event_source.stream(_send)
        return ServiceAdapterResponse(thread_id=self.thread_id, run_id="run-1")


class FailingAdapter(ServiceAdapter):
    """Adapter that fails before attaching a producer."""

    def __init__(self, error: Exception) -> None:
        self.error = error
        self.event_source = None

    async def process(self, request: ServiceAdapterRequest) -> ServiceAdapterResponse:
        self.event_source = request.event_source
        raise self.error


class EndpointServer:
    """Routes mock HTTP requests by path and records every call."""

    def __init__(self, routes: Dict[str, Callable[[httpx.Request], httpx.Response]]) -> None:
        self.routes = routes
        self.calls: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"detail": "not found"})
        return route(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def bodies(self, path: str) -> List[Dict[str, Any]]:
        return [json.loads(call.content) for call in self.calls if call.url.path == path]


def json_route(payload: Any, status: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(status, json=payload)


def ndjson_route(events: List[Dict[str, Any]]) -> Callable[[httpx.Request], httpx.Response]:
    body = "".join(json.dumps(event) + "\n" for event in events)
    return lambda request: httpx.Response(200, text=body, headers={"content-type": "application/x-ndjson"})
