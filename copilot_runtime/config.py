"""Configuration management for the runtime."""
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Optional, Tuple

from copilot_runtime.core.errors import MisuseError
from copilot_runtime.endpoints.definitions import EndpointDefinition, resolve_endpoint
from copilot_runtime.services.langserve import RemoteChain


@dataclass(frozen=True)
class OpenAIConfig:
    """OpenAI service configuration."""

    api_key: str
    model: str = "gpt-4o"
    base_url: Optional[str] = None
    max_concurrent: int = 50


@dataclass(frozen=True)
class AzureOpenAIConfig:
    """Azure OpenAI service configuration."""

    api_key: str
    endpoint: str
    api_version: str = "2024-02-15-preview"
    deployment_name: str = "gpt-4"
    max_concurrent: int = 50


def _truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


def _load_endpoints(raw: Optional[str]) -> Tuple[EndpointDefinition, ...]:
    if not raw:
        return ()
    try:
        entries = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MisuseError(f"COPILOT_REMOTE_ENDPOINTS is not valid JSON: {exc}") from exc
    if not isinstance(entries, list):
        raise MisuseError("COPILOT_REMOTE_ENDPOINTS must be a JSON list")
    return tuple(resolve_endpoint(entry) for entry in entries)


def _load_chains(raw: Optional[str]) -> Tuple[RemoteChain, ...]:
    """Parse LangServe chains; their input schemas are fetched when the runtime starts."""
    if not raw:
        return ()
    try:
        entries = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MisuseError(f"COPILOT_LANGSERVE_CHAINS is not valid JSON: {exc}") from exc
    if not isinstance(entries, list):
        raise MisuseError("COPILOT_LANGSERVE_CHAINS must be a JSON list")
    chains = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise MisuseError(f"LangServe chain must be a JSON object: {entry!r}")
        chain_url = entry.get("chain_url") or entry.get("chainUrl")
        if not chain_url or not entry.get("name"):
            raise MisuseError(f"LangServe chain needs a chain_url and a name: {entry!r}")
        chains.append(RemoteChain(chain_url=chain_url, name=entry["name"], description=entry.get("description", "")))
    return tuple(chains)


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment variables."""

    openai: Optional[OpenAIConfig] = None
    azure_openai: Optional[AzureOpenAIConfig] = None
    environment: str = "development"
    log_level: str = "INFO"
    json_logs: bool = False
    http_timeout: float = 30.0
    remote_endpoints: Tuple[EndpointDefinition, ...] = ()
    langserve_chains: Tuple[RemoteChain, ...] = ()
    delegate_agent_processing_to_service_adapter: bool = False

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables."""
        openai_config = None
        openai_key = os.getenv("OPENAI_API_KEY")
        if openai_key:
            openai_config = OpenAIConfig(
                api_key=openai_key,
                model=os.getenv("OPENAI_MODEL", "gpt-4o"),
                base_url=os.getenv("OPENAI_BASE_URL") or None,
                max_concurrent=int(os.getenv("OPENAI_MAX_CONCURRENT", "50")),
            )

        azure_config = None
        azure_key = os.getenv("AZURE_OPENAI_KEY")
        azure_endpoint = os.getenv("AZURE_OPENAI_ENDPOINT")
        if azure_key and azure_endpoint:
            azure_config = AzureOpenAIConfig(
                api_key=azure_key,
                endpoint=azure_endpoint,
                api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-15-preview"),
                deployment_name=os.getenv("AZURE_OPENAI_DEPLOYMENT", "gpt-4"),
                max_concurrent=int(os.getenv("AZURE_OPENAI_MAX_CONCURRENT", "50")),
            )

        return cls(
            openai=openai_config,
            azure_openai=azure_config,
            environment=os.getenv("ENVIRONMENT", "development"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            json_logs=_truthy(os.getenv("LOG_JSON")),
            http_timeout=float(os.getenv("COPILOT_HTTP_TIMEOUT", "30")),
            remote_endpoints=_load_endpoints(os.getenv("COPILOT_REMOTE_ENDPOINTS")),
            langserve_chains=_load_chains(os.getenv("COPILOT_LANGSERVE_CHAINS")),
            delegate_agent_processing_to_service_adapter=_truthy(
                os.getenv("COPILOT_DELEGATE_AGENT_PROCESSING")
            ),
        )


# Global config instance
config = Config.from_env()
