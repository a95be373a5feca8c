"""Tests for KlaviyoClient: caching, rate-limit retry, error translation, fallbacks."""

import asyncio
import json
import random

import httpx
import pytest

from klaviyo_mcp.config import Settings
from klaviyo_mcp.core.api_client import (
    KlaviyoClient,
    build_query,
    cache_key,
    format_error_detail,
    is_rate_limited,
    mark_degraded,
)
from klaviyo_mcp.core.cache import ResponseCache
from klaviyo_mcp.exceptions import (
    ConfigurationError,
    NoResponseError,
    RateLimitError,
    SetupError,
    UpstreamError,
)

BASE_URL = "https://a.klaviyo.com/api"

RATE_LIMIT_429 = {"errors": [{"status": 429, "detail": "Request was throttled."}]}
RATE_LIMIT_400 = {
    "errors": [{"status": 400, "title": "Bad Request", "detail": "Rate limit exceeded"}]
}


def make_client(handler, cache=None, **overrides):
    """Client over a mock transport; returns (client, requests, sleeps)."""
    requests = []
    sleeps = []

    def recording_handler(request):
        requests.append(request)
        return handler(request)

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    settings = Settings(api_key="pk_test_1234567890", **overrides)
    http = httpx.AsyncClient(
        base_url=BASE_URL, transport=httpx.MockTransport(recording_handler)
    )
    client = KlaviyoClient(
        settings, cache, http=http, sleep=fake_sleep, rng=random.Random(7)
    )
    return client, requests, sleeps


def sequence(*responses):
    """Handler that replays *responses* in order, repeating the last one."""
    queue = list(responses)

    def handler(request):
        template = queue.pop(0) if len(queue) > 1 else queue[0]
        return httpx.Response(
            template.status_code,
            content=template.content,
            headers=template.headers,
        )

    return handler


def ok(body=None):
    return httpx.Response(200, json=body if body is not None else {"data": []})


# =========================================================================
# Helpers
# =========================================================================


class TestQueryHelpers:
    def test_build_query_aliases_and_drops_none(self):
        q = build_query({"page_size": 10, "page_cursor": None, "filter": "x"})
        assert q == {"page[size]": 10, "filter": "x"}

    def test_build_query_joins_lists(self):
        assert build_query({"fields[profile]": ["email", "phone_number"]}) == {
            "fields[profile]": "email,phone_number"
        }

    def test_build_query_empty(self):
        assert build_query(None) == {}

    def test_cache_key_without_params(self):
        assert cache_key("/metrics/") == "/metrics/"
        assert cache_key("/metrics/", {}) == "/metrics/"

    def test_cache_key_is_order_independent(self):
        a = cache_key("/profiles/", {"filter": "x", "page[size]": 5})
        b = cache_key("/profiles/", {"page[size]": 5, "filter": "x"})
        assert a == b

    def test_cache_key_distinguishes_params(self):
        a = cache_key("/profiles/", {"page[size]": 5})
        b = cache_key("/profiles/", {"page[size]": 6})
        assert a != b
        assert a != "/profiles/"


class TestClassification:
    def test_429_is_rate_limited(self):
        assert is_rate_limited(429, None) is True

    def test_400_with_rate_limit_text(self):
        assert is_rate_limited(400, RATE_LIMIT_400) is True

    def test_400_without_rate_limit_text(self):
        payload = {"errors": [{"detail": "Invalid filter"}]}
        assert is_rate_limited(400, payload) is False

    def test_other_status_not_rate_limited(self):
        assert is_rate_limited(500, RATE_LIMIT_400) is False

    def test_format_error_detail_aggregates(self):
        payload = {
            "errors": [
                {
                    "detail": "Invalid filter",
                    "source": {"pointer": "/data/attributes/filter"},
                    "code": "invalid",
                },
                {"title": "Missing field"},
            ]
        }
        assert format_error_detail(payload) == (
            "Invalid filter (source: /data/attributes/filter) [code: invalid], "
            "Missing field"
        )

    def test_format_error_detail_fallbacks(self):
        assert format_error_detail({"message": "nope"}) == "nope"
        assert format_error_detail("  plain text  ") == "plain text"
        assert format_error_detail(None) == "Unknown API error"

    def test_mark_degraded(self):
        assert mark_degraded({"data": [1]}) == {"data": [1], "degraded": True}
        assert mark_degraded([1, 2]) == {"data": [1, 2], "degraded": True}


# =========================================================================
# Construction
# =========================================================================


class TestClientConstruction:
    def test_missing_api_key_raises(self):
        with pytest.raises(ConfigurationError):
            KlaviyoClient(Settings(api_key=""))

    def test_default_headers(self):
        client = KlaviyoClient(Settings(api_key="pk_abc", api_revision="2024-06-15"))
        try:
            headers = client._http.headers
            assert headers["Authorization"] == "Klaviyo-API-Key pk_abc"
            assert headers["Revision"] == "2024-06-15"
            assert headers["Accept"] == "application/json"
            assert headers["Content-Type"] == "application/json"
        finally:
            asyncio.run(client.aclose())


# =========================================================================
# Request pipeline
# =========================================================================


class TestSuccessAndCaching:
    def test_get_returns_body_and_sends_query(self):
        client, requests, _ = make_client(sequence(ok({"data": [{"id": "L1"}]})))
        result = asyncio.run(client.get("/lists/", {"page_size": 10}))

        assert result == {"data": [{"id": "L1"}]}
        assert len(requests) == 1
        assert requests[0].method == "GET"
        assert requests[0].url.path == "/api/lists/"
        assert requests[0].url.params["page[size]"] == "10"

    def test_cache_hit_skips_dispatch(self):
        cache = ResponseCache()
        client, requests, _ = make_client(sequence(ok({"data": [1]})), cache)

        async def run():
            first = await client.get("/metrics/")
            second = await client.get("/metrics/")
            return first, second

        first, second = asyncio.run(run())
        assert first == second == {"data": [1]}
        assert len(requests) == 1

    def test_different_params_are_cached_separately(self):
        cache = ResponseCache()
        client, requests, _ = make_client(sequence(ok()), cache)

        async def run():
            await client.get("/profiles/", {"page_size": 5})
            await client.get("/profiles/", {"page_size": 6})
            await client.get("/profiles/", {"page_size": 5})

        asyncio.run(run())
        assert len(requests) == 2
        assert cache.size == 2

    def test_post_is_not_cached(self):
        cache = ResponseCache()
        client, requests, _ = make_client(sequence(ok({"data": {"id": "L1"}})), cache)

        async def run():
            await client.post("/lists/", {"data": {"type": "list"}})
            await client.post("/lists/", {"data": {"type": "list"}})

        asyncio.run(run())
        assert len(requests) == 2
        assert cache.size == 0
        assert json.loads(requests[0].content) == {"data": {"type": "list"}}

    def test_delete_no_content_is_success(self):
        client, _, _ = make_client(sequence(httpx.Response(204)))
        assert asyncio.run(client.delete("/lists/L1/")) == {"success": True}

    def test_disabled_cache_always_dispatches(self):
        cache = ResponseCache(enabled=False)
        client, requests, _ = make_client(sequence(ok()), cache)

        async def run():
            await client.get("/metrics/")
            await client.get("/metrics/")

        asyncio.run(run())
        assert len(requests) == 2


class TestRateLimitRetry:
    @pytest.mark.parametrize("k", [1, 2, 3])
    def test_retries_until_success(self, k):
        responses = [httpx.Response(429, json=RATE_LIMIT_429)] * k + [
            ok({"data": "done"})
        ]
        client, requests, sleeps = make_client(sequence(*responses), max_retries=3)

        result = asyncio.run(client.get("/metrics/"))

        assert result == {"data": "done"}
        assert len(requests) == k + 1
        assert len(sleeps) == k

    def test_sleeps_follow_backoff(self):
        responses = [httpx.Response(429, json=RATE_LIMIT_429)] * 3 + [ok()]
        client, _, sleeps = make_client(sequence(*responses), max_retries=3)

        asyncio.run(client.get("/metrics/"))

        assert 1.6 <= sleeps[0] <= 2.4
        assert 3.2 <= sleeps[1] <= 4.8
        assert 6.4 <= sleeps[2] <= 9.6

    @pytest.mark.parametrize("m", [0, 1, 3])
    def test_exhaustion_raises_after_m_plus_one_attempts(self, m):
        client, requests, sleeps = make_client(
            sequence(httpx.Response(429, json=RATE_LIMIT_429)), max_retries=m
        )

        with pytest.raises(RateLimitError) as exc_info:
            asyncio.run(client.get("/metrics/"))

        assert len(requests) == m + 1
        assert len(sleeps) == m
        assert exc_info.value.status == 429

    def test_400_rate_limit_is_retried(self):
        client, requests, _ = make_client(
            sequence(httpx.Response(400, json=RATE_LIMIT_400), ok({"ok": 1}))
        )
        assert asyncio.run(client.get("/metrics/")) == {"ok": 1}
        assert len(requests) == 2

    def test_rate_limited_result_is_cached_after_success(self):
        cache = ResponseCache()
        client, _, _ = make_client(
            sequence(httpx.Response(429, json=RATE_LIMIT_429), ok({"ok": 1})), cache
        )
        asyncio.run(client.get("/metrics/"))
        assert cache.get("/metrics/") == {"ok": 1}


class TestErrors:
    def test_plain_400_is_not_retried(self):
        payload = {
            "errors": [
                {"detail": "Invalid filter", "source": {"pointer": "/filter"},
                 "code": "invalid"}
            ]
        }
        client, requests, sleeps = make_client(
            sequence(httpx.Response(400, json=payload))
        )

        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(client.get("/campaigns/"))

        err = exc_info.value
        assert not isinstance(err, RateLimitError)
        assert len(requests) == 1
        assert sleeps == []
        assert str(err) == (
            "Klaviyo API Error (400 Bad Request): "
            "Invalid filter (source: /filter) [code: invalid]"
        )
        assert err.errors == payload["errors"]
        assert err.metadata["endpoint"] == "/campaigns/"

    def test_text_error_body(self):
        client, _, _ = make_client(
            sequence(httpx.Response(500, text="upstream exploded"))
        )
        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(client.get("/lists/"))
        assert "500 Internal Server Error" in str(exc_info.value)
        assert "upstream exploded" in str(exc_info.value)

    def test_failure_is_not_cached(self):
        cache = ResponseCache()
        client, _, _ = make_client(sequence(httpx.Response(404, json={})), cache)
        with pytest.raises(UpstreamError):
            asyncio.run(client.get("/lists/x/"))
        assert cache.size == 0

    def test_transport_error_is_no_response(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, _, _ = make_client(handler)
        with pytest.raises(NoResponseError) as exc_info:
            asyncio.run(client.get("/lists/"))
        assert exc_info.value.metadata == {"method": "GET", "endpoint": "/lists/"}

    def test_unserializable_body_is_setup_error(self):
        client, requests, _ = make_client(sequence(ok()))
        with pytest.raises(SetupError):
            asyncio.run(client.post("/lists/", {"bad": object()}))
        assert requests == []


class TestFallback:
    def test_fallback_result_is_degraded(self):
        seen = []

        async def fallback(error):
            seen.append(error)
            return {"data": "simplified"}

        cache = ResponseCache()
        client, _, _ = make_client(sequence(httpx.Response(404, json={})), cache)
        result = asyncio.run(client.get("/metrics/x/", fallback=fallback))

        assert result == {"data": "simplified", "degraded": True}
        assert isinstance(seen[0], UpstreamError)
        assert seen[0].status == 404
        assert cache.size == 0

    def test_fallback_runs_after_retry_exhaustion(self):
        async def fallback(error):
            assert isinstance(error, RateLimitError)
            return ["partial"]

        client, requests, _ = make_client(
            sequence(httpx.Response(429, json=RATE_LIMIT_429)), max_retries=2
        )
        result = asyncio.run(client.get("/metrics/", fallback=fallback))

        assert result == {"data": ["partial"], "degraded": True}
        assert len(requests) == 3

    def test_fallback_failure_raises_original(self):
        async def fallback(error):
            raise RuntimeError("fallback also broke")

        client, _, _ = make_client(sequence(httpx.Response(500, json={})))
        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(client.post("/metric-aggregates/", {}, fallback))

        err = exc_info.value
        assert err.status == 500
        assert err.fallback_error == "fallback also broke"
        assert err.metadata["fallback_error"] == "fallback also broke"

    def test_fallback_not_used_on_success(self):
        async def fallback(error):
            raise AssertionError("should not run")

        client, _, _ = make_client(sequence(ok({"fine": True})))
        assert asyncio.run(client.get("/lists/", fallback=fallback)) == {"fine": True}
