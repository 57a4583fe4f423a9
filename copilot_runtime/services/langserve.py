"""Expose LangServe chains as server-side actions."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from copilot_runtime.core.errors import LowLevelTransportError
from copilot_runtime.core.models import Action, Parameter
from copilot_runtime.endpoints.definitions import endpoint_url

logger = logging.getLogger(__name__)

_SCALAR_TYPES = {"string", "number", "integer", "boolean"}


@dataclass(frozen=True)
class RemoteChain:
    """A LangServe chain reachable at ``chain_url``."""

    chain_url: str
    name: str
    description: str
    parameters: Optional[Tuple[Parameter, ...]] = None
    parameter_type: str = "multi"

    async def to_action(
        self,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> Action:
        if self.parameters is None:
            parameters, parameter_type = await self.infer_parameters(timeout=timeout, transport=transport)
        else:
            parameters, parameter_type = list(self.parameters), self.parameter_type

        invoke_url = endpoint_url(self.chain_url, "invoke")

        async def handler(**arguments: Any) -> Any:
            payload: Any = arguments
            if parameter_type == "single":
                payload = next(iter(arguments.values()), None)
            data = await _request(
                "POST", invoke_url, timeout=timeout, transport=transport, json={"input": payload}
            )
            return data.get("output")

        return Action(name=self.name, description=self.description, parameters=parameters, handler=handler)

    async def infer_parameters(
        self,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> Tuple[List[Parameter], str]:
        """Derive action parameters from the chain's published input schema."""
        schema = await _request(
            "GET", endpoint_url(self.chain_url, "input_schema"), timeout=timeout, transport=transport
        )
        schema_type = schema.get("type")
        if schema_type in _SCALAR_TYPES:
            return [Parameter(name="input", type=schema_type, description="The input to the chain")], "single"
        if schema_type == "object":
            required = set(schema.get("required") or [])
            parameters = [
                Parameter(
                    name=name,
                    type=prop.get("type", "string"),
                    description=prop.get("description", ""),
                    required=name in required,
                )
                for name, prop in (schema.get("properties") or {}).items()
            ]
            return parameters, "multi"
        raise ValueError(f"Unsupported LangServe input schema type: {schema_type!r}")


async def _request(
    method: str,
    url: str,
    *,
    timeout: float,
    transport: Optional[httpx.AsyncBaseTransport],
    json: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.request(method, url, json=json)
    except httpx.HTTPError as exc:
        raise LowLevelTransportError(url, cause=exc) from exc
    if not response.is_success:
        raise LowLevelTransportError(url, status=response.status_code)
    return response.json()


async def resolve_chains(
    chains: Sequence[RemoteChain],
    *,
    timeout: float = 30.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Tuple[Action, ...]:
    """Resolve every chain into an action, dropping the ones that fail."""
    actions: List[Action] = []
    for chain in chains:
        try:
            actions.append(await chain.to_action(timeout=timeout, transport=transport))
        except Exception as exc:
            logger.error(
                "Error loading langserve chain",
                extra={"chain_url": chain.chain_url, "error": str(exc)},
            )
    return tuple(actions)
