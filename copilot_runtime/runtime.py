"""Application runtime composition helpers."""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from copilot_runtime.config import config
from copilot_runtime.orchestration.processor import CopilotRuntime
from copilot_runtime.services.adapters import EmptyAdapter, ServiceAdapter
from copilot_runtime.services.openai_adapter import OpenAIAdapter

# Global runtime (built on startup, once LangServe chains are resolved)
_runtime: Optional[CopilotRuntime] = None


@lru_cache
def get_service_adapter() -> ServiceAdapter:
    if config.openai:
        return OpenAIAdapter.from_openai_config(config.openai)
    if config.azure_openai:
        return OpenAIAdapter.from_azure_config(config.azure_openai)
    # Agent-lock deployments run without a direct LLM.
    return EmptyAdapter()


async def initialize_runtime() -> CopilotRuntime:
    """Build the runtime on application startup, resolving configured LangServe chains."""
    global _runtime

    _runtime = await CopilotRuntime.create(
        langserve=config.langserve_chains,
        remote_endpoints=config.remote_endpoints,
        delegate_agent_processing_to_service_adapter=config.delegate_agent_processing_to_service_adapter,
        http_timeout=config.http_timeout,
    )
    return _runtime


def get_runtime() -> CopilotRuntime:
    """Return the startup runtime, or build one without chain actions outside the app lifespan."""
    global _runtime

    if _runtime is None:
        _runtime = CopilotRuntime(
            remote_endpoints=config.remote_endpoints,
            delegate_agent_processing_to_service_adapter=config.delegate_agent_processing_to_service_adapter,
            http_timeout=config.http_timeout,
        )
    return _runtime
