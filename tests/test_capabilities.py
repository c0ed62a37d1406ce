"""Tests for capability catalogs, executors and normalization."""

import asyncio
import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from toolgate.capabilities import (
    HandlerCapabilityExecutor,
    HttpCapabilityCatalog,
    HttpCapabilityExecutor,
    StaticCapabilityCatalog,
    normalize_capabilities,
)
from toolgate.models import CapabilityDefinition, CapabilityInvocation


def _invocation(name="send_email", **arguments):
    return CapabilityInvocation(id="call_1", name=name, arguments=arguments)


class TestNormalize:
    """Normalization of raw capability entries."""

    def test_accepts_flat_and_openai_shapes(self):
        raw = [
            {"name": "send_email", "description": "Send", "parameters": {"properties": {"to": {}}}},
            {"type": "function", "function": {"name": "search_web", "description": "Search"}},
            CapabilityDefinition(name="read_file"),
        ]

        definitions = normalize_capabilities(raw)

        assert [d.name for d in definitions] == ["send_email", "search_web", "read_file"]
        assert definitions[0].parameters["type"] == "object"
        assert definitions[1].parameters == {"type": "object", "properties": {}}

    def test_drops_malformed_and_duplicates(self):
        raw = [
            {"name": "send_email"},
            {"description": "no name"},
            {"name": "   "},
            "not a dict",
            None,
            {"name": "send_email", "description": "duplicate"},
        ]

        definitions = normalize_capabilities(raw)

        assert [d.name for d in definitions] == ["send_email"]
        assert definitions[0].description == ""

    def test_anthropic_input_schema(self):
        definitions = normalize_capabilities(
            [{"name": "lookup", "input_schema": {"type": "object", "properties": {"q": {}}}}]
        )

        assert definitions[0].parameters["properties"] == {"q": {}}


class TestStaticCatalog:
    """In-memory catalog."""

    def test_resolve_counts_calls(self, catalog):
        first = asyncio.run(catalog.resolve("agent-1", "session-1"))
        asyncio.run(catalog.resolve("agent-1", "session-1"))

        assert [c.name for c in first] == ["send_email", "search_calendar"]
        assert catalog.resolve_calls == 2

    def test_resolve_returns_copy(self):
        catalog = StaticCapabilityCatalog([{"name": "a"}])

        result = asyncio.run(catalog.resolve("agent", "session"))
        result.clear()

        assert len(catalog.definitions) == 1


class TestHandlerExecutor:
    """Callable-backed executor."""

    def test_sync_handler(self, executor):
        result = asyncio.run(executor.execute(_invocation(to="a@b.com")))

        assert result.ok is True
        assert result.content == "sent to a@b.com"
        assert result.invocation_id == "call_1"

    def test_async_handler_and_structured_result(self):
        async def lookup(q):
            return {"hits": [q]}

        executor = HandlerCapabilityExecutor({"lookup": lookup})

        result = asyncio.run(executor.execute(_invocation("lookup", q="x")))

        assert result.ok is True
        assert json.loads(result.content) == {"hits": ["x"]}

    def test_unknown_capability_is_a_failed_result(self, executor):
        result = asyncio.run(executor.execute(_invocation("delete_everything")))

        assert result.ok is False
        assert "Unknown capability" in result.error

    def test_handler_exception_is_a_failed_result(self):
        def broken(**kwargs):
            raise RuntimeError("smtp down")

        executor = HandlerCapabilityExecutor()
        executor.register("send_email", broken)

        result = asyncio.run(executor.execute(_invocation()))

        assert result.ok is False
        assert result.error == "smtp down"
        message = result.to_message()
        assert message["role"] == "tool"
        assert json.loads(message["content"]) == {"error": "smtp down", "capability": "send_email"}


class TestHttpCatalog:
    """Tool-server backed catalog."""

    @patch("toolgate.capabilities.requests.get")
    def test_resolve_fetches_and_normalizes(self, mock_get):
        mock_response = MagicMock()
        mock_response.json.return_value = {
            "tools": [{"type": "function", "function": {"name": "send_email"}}, {"bad": True}]
        }
        mock_get.return_value = mock_response
        catalog = HttpCapabilityCatalog("https://tools.example.com/", api_key="secret")

        definitions = asyncio.run(catalog.resolve("agent-1", "session-1", catalog_ref="default"))

        assert [d.name for d in definitions] == ["send_email"]
        args, kwargs = mock_get.call_args
        assert args[0] == "https://tools.example.com/agents/agent-1/tools"
        assert kwargs["params"] == {"session_id": "session-1", "catalog": "default"}
        assert kwargs["headers"] == {"Authorization": "Bearer secret"}

    @patch("toolgate.capabilities.requests.get")
    def test_http_error_propagates(self, mock_get):
        mock_response = MagicMock()
        mock_response.raise_for_status.side_effect = requests.HTTPError("503")
        mock_get.return_value = mock_response
        catalog = HttpCapabilityCatalog("https://tools.example.com")

        with pytest.raises(requests.HTTPError):
            asyncio.run(catalog.resolve("agent-1", "session-1"))


class TestHttpExecutor:
    """Tool-server backed executor."""

    @patch("toolgate.capabilities.requests.post")
    def test_execute_returns_content(self, mock_post):
        mock_response = MagicMock()
        mock_response.json.return_value = {"content": "queued"}
        mock_post.return_value = mock_response
        executor = HttpCapabilityExecutor("https://tools.example.com")

        result = asyncio.run(executor.execute(_invocation(to="a@b.com")))

        assert result.ok is True
        assert result.content == "queued"
        args, kwargs = mock_post.call_args
        assert args[0] == "https://tools.example.com/tools/send_email/invoke"
        assert kwargs["json"] == {"id": "call_1", "arguments": {"to": "a@b.com"}}

    @patch("toolgate.capabilities.requests.post")
    def test_error_body_is_a_failed_result(self, mock_post):
        mock_response = MagicMock()
        mock_response.json.return_value = {"error": "quota exceeded"}
        mock_post.return_value = mock_response
        executor = HttpCapabilityExecutor("https://tools.example.com")

        result = asyncio.run(executor.execute(_invocation()))

        assert result.ok is False
        assert result.error == "quota exceeded"

    @patch("toolgate.capabilities.requests.post")
    def test_request_exception_is_a_failed_result(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("refused")
        executor = HttpCapabilityExecutor("https://tools.example.com")

        result = asyncio.run(executor.execute(_invocation()))

        assert result.ok is False
        assert "refused" in result.error
