"""Tests for endpoint normalization, header construction and configuration loading."""
from __future__ import annotations

import json

import pytest

from copilot_runtime.config import Config, _load_chains, _load_endpoints
from copilot_runtime.core.errors import MisuseError
from copilot_runtime.core.models import RequestContext
from copilot_runtime.endpoints.definitions import (
    DirectEndpoint,
    EndpointType,
    PlatformAgentDefinition,
    PlatformEndpoint,
    authorization_headers,
    create_headers,
    endpoint_url,
    resolve_endpoint,
)


def test_untagged_mapping_with_deployment_url_and_agents_is_platform() -> None:
    endpoint = resolve_endpoint(
        {"deploymentUrl": "https://lg.example", "agents": [{"name": "researcher", "description": "Finds things"}]}
    )

    assert isinstance(endpoint, PlatformEndpoint)
    assert endpoint.type is EndpointType.LANGGRAPH_PLATFORM
    assert endpoint.agents == (PlatformAgentDefinition(name="researcher", description="Finds things"),)


def test_untagged_mapping_with_url_is_direct() -> None:
    endpoint = resolve_endpoint({"url": "https://agents.example/copilotkit"})

    assert endpoint == DirectEndpoint(url="https://agents.example/copilotkit")
    assert endpoint.type is EndpointType.COPILOT_KIT


def test_typed_definitions_pass_through() -> None:
    endpoint = DirectEndpoint(url="https://agents.example")
    assert resolve_endpoint(endpoint) is endpoint


@pytest.mark.parametrize(
    "raw",
    [
        {"type": "langgraph-platform", "agents": []},
        {"type": "unknown", "url": "https://x"},
        {"description": "no url"},
        "https://not-a-mapping",
    ],
)
def test_malformed_definitions_are_misuse(raw) -> None:
    with pytest.raises(MisuseError):
        resolve_endpoint(raw)


def test_create_headers_merges_hook_output() -> None:
    context = RequestContext(properties={"tenant": "acme"})

    headers = create_headers(lambda ctx: {"x-tenant": ctx.properties["tenant"]}, context)

    assert headers == {"Content-Type": "application/json", "x-tenant": "acme"}
    assert create_headers(None, context) == {"Content-Type": "application/json"}


def test_authorization_headers_forward_bearer_token() -> None:
    assert authorization_headers(RequestContext(properties={"authorization": "abc"})) == {
        "authorization": "Bearer abc"
    }
    assert authorization_headers(RequestContext()) == {}


def test_endpoint_url_joins_without_double_slashes() -> None:
    assert endpoint_url("https://agents.example/", "/info") == "https://agents.example/info"


def test_load_endpoints_from_json() -> None:
    raw = json.dumps(
        [
            {"url": "https://agents.example"},
            {"type": "langgraph-platform", "deployment_url": "https://lg.example", "agents": [{"name": "a"}]},
        ]
    )

    endpoints = _load_endpoints(raw)

    assert isinstance(endpoints[0], DirectEndpoint)
    assert isinstance(endpoints[1], PlatformEndpoint)
    assert _load_endpoints(None) == ()


@pytest.mark.parametrize("raw", ["not json", '{"url": "https://x"}'])
def test_load_endpoints_rejects_malformed_values(raw: str) -> None:
    with pytest.raises(MisuseError):
        _load_endpoints(raw)


def test_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("OPENAI_MODEL", "gpt-4o-mini")
    monkeypatch.setenv("LOG_JSON", "true")
    monkeypatch.setenv("COPILOT_HTTP_TIMEOUT", "5")
    monkeypatch.setenv("COPILOT_DELEGATE_AGENT_PROCESSING", "1")
    monkeypatch.setenv("COPILOT_REMOTE_ENDPOINTS", '[{"url": "https://agents.example"}]')
    monkeypatch.setenv("COPILOT_LANGSERVE_CHAINS", '[{"chain_url": "https://chains.example/summarize", "name": "summarize"}]')
    monkeypatch.delenv("AZURE_OPENAI_KEY", raising=False)

    loaded = Config.from_env()

    assert loaded.openai is not None and loaded.openai.model == "gpt-4o-mini"
    assert loaded.azure_openai is None
    assert loaded.json_logs is True
    assert loaded.http_timeout == 5.0
    assert loaded.delegate_agent_processing_to_service_adapter is True
    assert loaded.remote_endpoints == (DirectEndpoint(url="https://agents.example"),)
    assert [chain.name for chain in loaded.langserve_chains] == ["summarize"]


def test_load_chains_from_json() -> None:
    raw = json.dumps(
        [
            {"chain_url": "https://chains.example/summarize", "name": "summarize", "description": "Summarize text"},
            {"chainUrl": "https://chains.example/translate", "name": "translate"},
        ]
    )

    chains = _load_chains(raw)

    assert [(chain.chain_url, chain.name, chain.description) for chain in chains] == [
        ("https://chains.example/summarize", "summarize", "Summarize text"),
        ("https://chains.example/translate", "translate", ""),
    ]
    assert all(chain.parameters is None for chain in chains)
    assert _load_chains(None) == ()


@pytest.mark.parametrize(
    "raw",
    ["not json", '{"name": "x"}', '["https://chains.example"]', '[{"name": "x"}]', '[{"chain_url": "https://c"}]'],
)
def test_load_chains_rejects_malformed_values(raw: str) -> None:
    with pytest.raises(MisuseError):
        _load_chains(raw)
