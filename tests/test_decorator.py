"""Tests for the @klaviyo_tool decorator and response helpers."""

import asyncio
from unittest.mock import MagicMock

from klaviyo_mcp.exceptions import NoResponseError, UpstreamError
from klaviyo_mcp.tools._decorator import klaviyo_tool, _truncate_response
from klaviyo_mcp.tools._models import ClearCacheInput
from klaviyo_mcp.tools._response import (
    format_error_response,
    next_cursor,
    summarize_page,
    with_fallback_note,
)


class TestKlaviyoToolDecorator:
    """Tests for the @klaviyo_tool decorator."""

    def test_success_returns_result(self):
        mcp = MagicMock()

        @klaviyo_tool(mcp, read_only=True)
        async def my_tool() -> dict:
            return {"status": "ok"}

        assert asyncio.run(my_tool()) == {"status": "ok"}

    def test_klaviyo_error_returns_structured_response(self):
        mcp = MagicMock()

        @klaviyo_tool(mcp)
        async def my_tool() -> dict:
            raise UpstreamError(404, "Not found", endpoint="/lists/x/", reason="Not Found")

        result = asyncio.run(my_tool())
        assert result["isError"] is True
        assert result["error_type"] == "api_error"
        assert "404 Not Found" in result["error"]
        assert result["metadata"]["endpoint"] == "/lists/x/"
        assert len(result["suggestions"]) > 0

    def test_fallback_error_reaches_metadata(self):
        mcp = MagicMock()

        @klaviyo_tool(mcp)
        async def my_tool() -> dict:
            err = UpstreamError(500, "Server error")
            err.attach_fallback_error(RuntimeError("fallback broke"))
            raise err

        result = asyncio.run(my_tool())
        assert result["metadata"]["fallback_error"] == "fallback broke"

    def test_no_response_error(self):
        mcp = MagicMock()

        @klaviyo_tool(mcp)
        async def my_tool() -> dict:
            raise NoResponseError("GET", "/lists/", "ConnectError")

        result = asyncio.run(my_tool())
        assert result["error_type"] == "no_response"

    def test_validation_error_returns_error_dict(self):
        mcp = MagicMock()

        @klaviyo_tool(mcp)
        async def my_tool(cache_type: str = "") -> dict:
            ClearCacheInput(cache_type=cache_type)
            return {}

        result = asyncio.run(my_tool(cache_type="flows"))
        assert result["isError"] is True
        assert result["error_type"] == "validation"

    def test_unexpected_error_returns_error_dict(self):
        mcp = MagicMock()

        @klaviyo_tool(mcp)
        async def my_tool() -> dict:
            raise RuntimeError("Something broke")

        result = asyncio.run(my_tool())
        assert result["isError"] is True
        assert result["error_type"] == "unexpected"
        assert "Something broke" in result["error"]

    def test_kwargs_passed_through(self):
        mcp = MagicMock()

        @klaviyo_tool(mcp)
        async def my_tool(list_id: str = "", page_size: int = 10) -> dict:
            return {"id": list_id, "page_size": page_size}

        result = asyncio.run(my_tool(list_id="L1", page_size=5))
        assert result == {"id": "L1", "page_size": 5}

    def test_registers_with_mcp(self):
        mcp = MagicMock()

        @klaviyo_tool(mcp, read_only=True)
        async def my_tool() -> dict:
            """A test tool."""
            return {}

        mcp.tool.assert_called_once()
        assert mcp.tool.call_args.args[0] is my_tool
        assert my_tool.__name__ == "my_tool"
        assert my_tool.__doc__ == "A test tool."

    def test_annotations(self):
        mcp = MagicMock()

        @klaviyo_tool(mcp, destructive=True, idempotent=True, open_world=False)
        async def my_tool() -> dict:
            return {}

        annotations = mcp.tool.call_args.kwargs["annotations"]
        assert annotations["destructiveHint"] is True
        assert annotations["idempotentHint"] is True
        assert "openWorldHint" not in annotations
        assert "readOnlyHint" not in annotations

    def test_falls_back_when_annotations_unsupported(self):
        calls = []

        class OldMcp:
            def tool(self, fn, **kwargs):
                if kwargs:
                    raise TypeError("unexpected keyword argument 'annotations'")
                calls.append(fn)

        @klaviyo_tool(OldMcp(), read_only=True)
        async def my_tool() -> dict:
            return {}

        assert calls == [my_tool]


class TestTruncateResponse:
    """Tests for response truncation."""

    def test_small_response_unchanged(self):
        result = {"data": [1, 2, 3]}
        assert _truncate_response(result) == result

    def test_non_dict_unchanged(self):
        assert _truncate_response("hello") == "hello"

    def test_large_response_truncated(self):
        result = {"data": list(range(10000))}
        truncated = _truncate_response(result)
        assert truncated.get("_truncated") is True
        assert len(truncated["data"]) < 10000
        assert "next_cursor" in truncated["_note"]


class TestResponseHelpers:
    PAGE = {
        "data": [{"id": "P1"}, {"id": "P2"}],
        "links": {
            "self": "https://a.klaviyo.com/api/profiles/",
            "next": "https://a.klaviyo.com/api/profiles/?page%5Bcursor%5D=bmV4dA",
        },
    }

    def test_next_cursor(self):
        assert next_cursor(self.PAGE) == "bmV4dA"
        assert next_cursor({"links": {"next": None}}) is None
        assert next_cursor([]) is None

    def test_summarize_page(self):
        summary = summarize_page(self.PAGE)
        assert summary["count"] == 2
        assert summary["has_more"] is True
        assert summary["next_cursor"] == "bmV4dA"
        assert summary["data"] == self.PAGE["data"]

    def test_summarize_last_page(self):
        summary = summarize_page({"data": [], "links": {}})
        assert summary["count"] == 0
        assert summary["has_more"] is False
        assert "next_cursor" not in summary

    def test_with_fallback_note(self):
        assert with_fallback_note({"data": 1}, "note") == {"data": 1}
        noted = with_fallback_note({"data": 1, "degraded": True}, "simplified")
        assert noted["note"] == "simplified"

    def test_format_error_response(self):
        response = format_error_response(ValueError("bad"), "validation", ["fix it"])
        assert response == {
            "isError": True,
            "error_type": "validation",
            "error": "bad",
            "suggestions": ["fix it"],
        }
