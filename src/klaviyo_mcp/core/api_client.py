"""Klaviyo REST client with caching, rate-limit retry, and error translation.

Owns the ``httpx.AsyncClient`` and the shared ``ResponseCache``, and
provides ``request()`` plus ``get`` / ``post`` / ``patch`` / ``delete``
helpers used by every tool.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from klaviyo_mcp.config import Settings
from klaviyo_mcp.core.backoff import backoff_delay
from klaviyo_mcp.core.cache import ResponseCache
from klaviyo_mcp.exceptions import (
    ConfigurationError,
    KlaviyoError,
    NoResponseError,
    RateLimitError,
    SetupError,
    UpstreamError,
)
from klaviyo_mcp.logging_config import (
    log_api_error,
    log_api_request,
    log_api_response,
)

logger = logging.getLogger(__name__)

Fallback = Callable[[KlaviyoError], Awaitable[Any]]

# Friendly parameter names mapped to Klaviyo's JSON:API query syntax
_QUERY_ALIASES = {
    "page_size": "page[size]",
    "page_cursor": "page[cursor]",
}


def build_query(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Translate tool parameters into Klaviyo query parameters.

    ``None`` values are dropped and list values are comma-joined.
    """
    query: Dict[str, Any] = {}
    for name, value in (params or {}).items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            value = ",".join(str(v) for v in value)
        query[_QUERY_ALIASES.get(name, name)] = value
    return query


def cache_key(endpoint: str, params: Optional[Dict[str, Any]] = None) -> str:
    """Stable cache key for a GET of *endpoint* with *params*."""
    if not params:
        return endpoint
    serialized = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    return f"{endpoint}?{serialized}"


def is_rate_limited(status: int, payload: Any) -> bool:
    """429, or a 400 whose errors say the caller hit a rate limit."""
    if status == 429:
        return True
    if status != 400 or not isinstance(payload, dict):
        return False
    for error in payload.get("errors") or []:
        if not isinstance(error, dict):
            continue
        text = f"{error.get('detail') or ''} {error.get('title') or ''}".lower()
        if "rate limit" in text:
            return True
    return False


def format_error_detail(payload: Any) -> str:
    """Aggregate a JSON:API error payload into one readable message."""
    if isinstance(payload, dict):
        errors = payload.get("errors")
        if isinstance(errors, list) and errors:
            parts: List[str] = []
            for e in errors:
                if not isinstance(e, dict):
                    parts.append(str(e))
                    continue
                detail = e.get("detail") or e.get("title") or ""
                pointer = (e.get("source") or {}).get("pointer")
                source = f" (source: {pointer})" if pointer else ""
                code = f" [code: {e['code']}]" if e.get("code") else ""
                parts.append(f"{detail}{source}{code}")
            return ", ".join(parts)
        if payload.get("message"):
            return str(payload["message"])
    elif isinstance(payload, str) and payload.strip():
        return payload.strip()[:500]
    return "Unknown API error"


def mark_degraded(result: Any) -> Dict[str, Any]:
    """Tag a fallback result so callers can tell it apart from a full one."""
    if isinstance(result, dict):
        tagged = dict(result)
    else:
        tagged = {"data": result}
    tagged["degraded"] = True
    return tagged


class KlaviyoClient:
    """Async Klaviyo API client.

    Args:
        settings: Server-wide configuration.
        cache: Shared response cache; ``None`` disables caching.
        http: Pre-built ``httpx.AsyncClient`` (tests inject a mock transport).
        sleep: Coroutine used to wait between retries.
        rng: Random source for backoff jitter.
    """

    def __init__(
        self,
        settings: Settings,
        cache: Optional[ResponseCache] = None,
        *,
        http: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self._settings = settings
        self._cache = cache
        self._sleep = sleep
        self._rng = rng
        if http is None:
            if not settings.api_key:
                raise ConfigurationError(
                    "KLAVIYO_API_KEY environment variable is required."
                )
            http = httpx.AsyncClient(
                base_url=settings.base_url,
                headers={
                    "Authorization": f"Klaviyo-API-Key {settings.api_key}",
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                    "Revision": settings.api_revision,
                },
                timeout=settings.request_timeout_seconds,
            )
        self._http = http

    @property
    def cache(self) -> Optional[ResponseCache]:
        return self._cache

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Verbs
    # ------------------------------------------------------------------

    async def get(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        fallback: Optional[Fallback] = None,
    ) -> Any:
        return await self.request("GET", endpoint, params=params, fallback=fallback)

    async def post(
        self, endpoint: str, data: Any = None, fallback: Optional[Fallback] = None
    ) -> Any:
        return await self.request("POST", endpoint, data, fallback=fallback)

    async def patch(
        self, endpoint: str, data: Any = None, fallback: Optional[Fallback] = None
    ) -> Any:
        return await self.request("PATCH", endpoint, data, fallback=fallback)

    async def delete(
        self, endpoint: str, data: Any = None, fallback: Optional[Fallback] = None
    ) -> Any:
        return await self.request("DELETE", endpoint, data, fallback=fallback)

    # ------------------------------------------------------------------
    # Core pipeline
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        endpoint: str,
        data: Any = None,
        *,
        params: Optional[Dict[str, Any]] = None,
        fallback: Optional[Fallback] = None,
    ) -> Any:
        """Send a request through the cache / retry / error pipeline.

        Only GETs are cached. Rate-limited responses are retried with
        exponential backoff up to ``settings.max_retries`` times; any other
        failure, or exhaustion, raises a ``KlaviyoError``. When *fallback*
        is given it is awaited with that error instead, and its result is
        returned tagged as degraded. If the fallback fails too, the original
        error is raised with the fallback's message attached.
        """
        method = method.upper()
        query = build_query(params) if method == "GET" else None
        key = cache_key(endpoint, query) if method == "GET" else None

        if key is not None and self._cache is not None and self._cache.has(key):
            logger.debug("Cache hit for %s %s", method, endpoint)
            return self._cache.get(key)

        attempt = 0
        while True:
            try:
                body = await self._dispatch(method, endpoint, query, data)
            except RateLimitError as e:
                if attempt < self._settings.max_retries:
                    attempt += 1
                    delay_ms = backoff_delay(
                        attempt,
                        self._settings.initial_delay_ms,
                        self._settings.max_delay_ms,
                        self._settings.backoff_factor,
                        self._rng,
                    )
                    logger.warning(
                        "Rate limit exceeded for %s %s. Retrying in %.1fs "
                        "(attempt %d/%d)",
                        method, endpoint, delay_ms / 1000,
                        attempt, self._settings.max_retries,
                    )
                    await self._sleep(delay_ms / 1000)
                    continue
                return await self._fail(method, endpoint, e, fallback)
            except KlaviyoError as e:
                return await self._fail(method, endpoint, e, fallback)

            if key is not None and self._cache is not None:
                self._cache.set(key, body)
            return body

    async def _dispatch(
        self,
        method: str,
        endpoint: str,
        query: Optional[Dict[str, Any]],
        data: Any,
    ) -> Any:
        """One HTTP round trip. Returns the decoded body or raises."""
        if self._settings.log_requests:
            log_api_request(method, endpoint, query if method == "GET" else data)

        try:
            request = self._http.build_request(
                method,
                endpoint,
                params=query or None,
                json=data if data is not None else None,
            )
        except (TypeError, ValueError, httpx.InvalidURL) as e:
            raise SetupError(method, endpoint, str(e)) from e

        try:
            response = await self._http.send(request)
        except httpx.TransportError as e:
            raise NoResponseError(method, endpoint, type(e).__name__) from e

        payload = _decode_body(response)
        log_api_response(
            method, endpoint, response.status_code, payload,
            include_body=self._settings.log_responses,
        )

        if response.is_success:
            if payload is None:
                return {"success": True}
            return payload

        detail = format_error_detail(payload)
        errors = payload.get("errors") if isinstance(payload, dict) else None
        kwargs = {
            "method": method,
            "endpoint": endpoint,
            "reason": response.reason_phrase,
            "errors": errors if isinstance(errors, list) else None,
        }
        if is_rate_limited(response.status_code, payload):
            raise RateLimitError(response.status_code, detail, **kwargs)
        raise UpstreamError(response.status_code, detail, **kwargs)

    async def _fail(
        self,
        method: str,
        endpoint: str,
        error: KlaviyoError,
        fallback: Optional[Fallback],
    ) -> Any:
        log_api_error(method, endpoint, error)
        if fallback is None:
            raise error

        logger.info("Attempting fallback for %s %s", method, endpoint)
        try:
            result = await fallback(error)
        except Exception as fallback_error:
            logger.error(
                "Fallback failed for %s %s: original=%s fallback=%s",
                method, endpoint, error, fallback_error,
            )
            error.attach_fallback_error(fallback_error)
            raise error
        logger.info("Fallback successful for %s %s", method, endpoint)
        return mark_degraded(result)


def _decode_body(response: httpx.Response) -> Any:
    """JSON body, raw text for non-JSON bodies, ``None`` when empty."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
