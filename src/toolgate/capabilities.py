"""Capability catalog and execution collaborators.

The pipeline reaches external tools only through ``CapabilityCatalog`` and
``CapabilityExecutor``. In-memory implementations serve tests and local
runs; the HTTP implementations talk to a tool server.
"""

import asyncio
import inspect
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Iterable, Union

import requests

from .models.capability import CapabilityDefinition, CapabilityInvocation, InvocationResult

logger = logging.getLogger(__name__)

Handler = Callable[..., Union[Any, Awaitable[Any]]]


class CapabilityCatalog(ABC):
    """Resolves the capability set available to an agent/session."""

    @abstractmethod
    async def resolve(
        self,
        agent_id: str,
        session_id: str,
        catalog_ref: Any = None,
    ) -> list[CapabilityDefinition]:
        """Return the capabilities for this agent and session.

        Must be idempotent; the pipeline calls it at most once per load.
        """
        pass


class CapabilityExecutor(ABC):
    """Runs one capability invocation."""

    @abstractmethod
    async def execute(self, invocation: CapabilityInvocation) -> InvocationResult:
        """Execute the invocation and return its result.

        Implementations report failures as ``ok=False`` results.
        """
        pass


def normalize_capabilities(raw: Iterable[Any]) -> list[CapabilityDefinition]:
    """Normalize capability entries and drop malformed ones.

    Accepts ``CapabilityDefinition`` instances, flat dicts
    (``name``/``description``/``parameters``) and OpenAI tool dicts
    (``{"type": "function", "function": {...}}``). Entries without a usable
    name are dropped; duplicates keep the first occurrence.
    """
    normalized: list[CapabilityDefinition] = []
    seen: set[str] = set()
    dropped = 0

    for item in raw:
        definition = _coerce_definition(item)
        if definition is None or definition.name in seen:
            dropped += 1
            continue
        seen.add(definition.name)
        normalized.append(definition)

    if dropped:
        logger.info(f"Dropped {dropped} malformed or duplicate capability definition(s)")
    return normalized


def _coerce_definition(item: Any) -> CapabilityDefinition | None:
    if isinstance(item, CapabilityDefinition):
        return item
    if not isinstance(item, dict):
        return None

    body = item.get("function") if isinstance(item.get("function"), dict) else item
    name = body.get("name")
    if not isinstance(name, str) or not name.strip():
        return None

    parameters = body.get("parameters") or body.get("input_schema")
    if not isinstance(parameters, dict):
        parameters = {"type": "object", "properties": {}}
    elif "type" not in parameters:
        parameters = {"type": "object", **parameters}

    description = body.get("description")
    return CapabilityDefinition(
        name=name.strip(),
        description=description if isinstance(description, str) else "",
        parameters=parameters,
    )


class StaticCapabilityCatalog(CapabilityCatalog):
    """In-memory catalog returning the same definitions for every agent."""

    def __init__(self, definitions: Iterable[Any] = ()):
        self.definitions = normalize_capabilities(definitions)
        self.resolve_calls = 0

    async def resolve(
        self,
        agent_id: str,
        session_id: str,
        catalog_ref: Any = None,
    ) -> list[CapabilityDefinition]:
        self.resolve_calls += 1
        return list(self.definitions)


class HandlerCapabilityExecutor(CapabilityExecutor):
    """Executes invocations with registered Python callables.

    Handlers receive the invocation arguments as keyword arguments and may
    be sync or async. Return values are stringified; exceptions and unknown
    names become failed results.
    """

    def __init__(self, handlers: dict[str, Handler] | None = None):
        self.handlers: dict[str, Handler] = dict(handlers or {})
        self.executed: list[CapabilityInvocation] = []

    def register(self, name: str, handler: Handler) -> None:
        self.handlers[name] = handler

    async def execute(self, invocation: CapabilityInvocation) -> InvocationResult:
        self.executed.append(invocation)
        start = time.perf_counter()
        handler = self.handlers.get(invocation.name)
        if handler is None:
            return InvocationResult.failure(invocation, f"Unknown capability: {invocation.name}")

        try:
            value = handler(**invocation.arguments)
            if inspect.isawaitable(value):
                value = await value
        except Exception as e:
            logger.warning(f"Capability {invocation.name} failed: {e}")
            return InvocationResult.failure(invocation, str(e), _elapsed_ms(start))

        return InvocationResult(
            invocation_id=invocation.id,
            name=invocation.name,
            ok=True,
            content=value if isinstance(value, str) else _to_text(value),
            elapsed_ms=_elapsed_ms(start),
        )


class HttpCapabilityCatalog(CapabilityCatalog):
    """Catalog backed by a tool server.

    ``GET {base_url}/agents/{agent_id}/tools?session_id=...`` returning a list
    of tool definitions (or ``{"tools": [...]}``).
    """

    def __init__(self, base_url: str, api_key: str | None = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    async def resolve(
        self,
        agent_id: str,
        session_id: str,
        catalog_ref: Any = None,
    ) -> list[CapabilityDefinition]:
        return await asyncio.to_thread(self._fetch, agent_id, session_id, catalog_ref)

    def _fetch(self, agent_id: str, session_id: str, catalog_ref: Any) -> list[CapabilityDefinition]:
        params: dict[str, Any] = {"session_id": session_id}
        if isinstance(catalog_ref, (str, int)):
            params["catalog"] = catalog_ref

        response = requests.get(
            f"{self.base_url}/agents/{agent_id}/tools",
            params=params,
            headers=_auth_headers(self.api_key),
            timeout=self.timeout,
        )
        response.raise_for_status()

        data = response.json()
        if isinstance(data, dict):
            data = data.get("tools", [])
        if not isinstance(data, list):
            data = []
        return normalize_capabilities(data)


class HttpCapabilityExecutor(CapabilityExecutor):
    """Executor backed by a tool server.

    ``POST {base_url}/tools/{name}/invoke`` with ``{"id", "arguments"}``;
    the reply's ``content`` (or the whole body) becomes the result.
    """

    def __init__(self, base_url: str, api_key: str | None = None, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    async def execute(self, invocation: CapabilityInvocation) -> InvocationResult:
        start = time.perf_counter()
        try:
            body = await asyncio.to_thread(self._post, invocation)
        except requests.RequestException as e:
            logger.warning(f"Capability {invocation.name} request failed: {e}")
            return InvocationResult.failure(invocation, str(e), _elapsed_ms(start))

        if isinstance(body, dict) and body.get("error"):
            return InvocationResult.failure(invocation, str(body["error"]), _elapsed_ms(start))

        content = body.get("content") if isinstance(body, dict) and "content" in body else body
        return InvocationResult(
            invocation_id=invocation.id,
            name=invocation.name,
            ok=True,
            content=content if isinstance(content, str) else _to_text(content),
            elapsed_ms=_elapsed_ms(start),
        )

    def _post(self, invocation: CapabilityInvocation) -> Any:
        response = requests.post(
            f"{self.base_url}/tools/{invocation.name}/invoke",
            json={"id": invocation.id, "arguments": invocation.arguments},
            headers=_auth_headers(self.api_key),
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()


def _auth_headers(api_key: str | None) -> dict[str, str]:
    return {"Authorization": f"Bearer {api_key}"} if api_key else {}


def _to_text(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
