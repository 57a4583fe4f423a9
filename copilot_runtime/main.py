"""FastAPI entry-point exposing the copilot runtime."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from copilot_runtime.api.routes import router as runtime_router
from copilot_runtime.config import config
from copilot_runtime.core.logging import configure_logging
from copilot_runtime.runtime import initialize_runtime

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for FastAPI application."""
    configure_logging(config.log_level, config.json_logs)
    runtime = await initialize_runtime()
    logger.info(
        "Copilot runtime started",
        extra={"endpoint_type": ",".join(endpoint.type.value for endpoint in runtime.registry.endpoints) or None},
    )
    yield


app = FastAPI(title="Copilot Runtime", lifespan=lifespan)
app.include_router(runtime_router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok", "environment": config.environment}
