"""Shared behaviour for the upstream provider clients.

A provider client owns one ``RateLimiter``, one ``TTLCache`` and one aiohttp
session. Accessors come in two explicit forms:

* ``fetch_*`` raise ``ProviderError`` subclasses; the caller decides what to
  do (diagnostic endpoints, tests).
* ``get_*`` never raise; they return a ``ProviderResult`` holding either the
  live value or the provider's static fallback (aggregation path).
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Type, TypeVar

import aiohttp
from pydantic import BaseModel, ValidationError

from ..cache import TTLCache
from ..config import ProviderSettings
from ..errors import (
    ProviderAuthError,
    ProviderDisabledError,
    ProviderError,
    ProviderHTTPError,
    ProviderQuotaError,
    ProviderRateLimitedError,
    ProviderResponseError,
    ProviderTimeoutError,
)
from ..rate_limiter import RateLimiter
from ..schemas import ProviderResult

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

USER_AGENT = "CryptoDash/1.0"


class ProviderClient:
    """Base class for one upstream API."""

    name: str = "base"
    requires_credentials: bool = True
    # status -> message used for the raised error
    status_messages: Dict[int, str] = {}

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        cache: Optional[TTLCache] = None,
        rate_limiter: Optional[RateLimiter] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.clock = clock
        self.cache = cache if cache is not None else TTLCache(clock=clock)
        self.rate_limiter = rate_limiter or RateLimiter(
            settings.max_calls, settings.window_seconds, name=self.name, clock=clock
        )
        self._session = session
        self._owns_session = session is None
        self._inflight: Dict[str, asyncio.Future] = {}
        self.disabled_reason: Optional[str] = None
        self.metrics: Dict[str, int] = {
            "upstream_calls": 0,
            "upstream_errors": 0,
            "cache_hits": 0,
            "fallbacks": 0,
        }
        if self.requires_credentials and not self.has_credentials():
            self._disable("credentials not configured")

    # ----------------------------
    # Lifecycle
    # ----------------------------

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"User-Agent": USER_AGENT})
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    # ----------------------------
    # Fallback-only mode
    # ----------------------------

    def has_credentials(self) -> bool:
        return bool(self.settings.api_key)

    @property
    def fallback_only(self) -> bool:
        return self.disabled_reason is not None

    def _disable(self, reason: str) -> None:
        if self.disabled_reason is not None:
            return
        self.disabled_reason = reason
        logger.warning(
            "%s operating in fallback-only mode: %s", self.name, reason,
            extra={"event": "provider.disabled", "provider": self.name},
        )

    def _ensure_enabled(self) -> None:
        if self.disabled_reason is not None:
            logger.debug("%s call skipped (fallback-only)", self.name)
            raise ProviderDisabledError(self.name, self.disabled_reason)

    # ----------------------------
    # HTTP
    # ----------------------------

    def default_headers(self) -> Dict[str, str]:
        return {"User-Agent": USER_AGENT}

    def redact(self, text: str) -> str:
        for secret in (self.settings.api_key, self.settings.client_secret):
            if secret:
                text = text.replace(secret, "[REDACTED]")
        return text

    def _raise_for_status(self, status: int, endpoint: str) -> None:
        message = self.status_messages.get(status) or f"{endpoint} returned HTTP {status}"
        if status in (401, 403):
            self._disable(f"authentication rejected (HTTP {status})")
            raise ProviderAuthError(self.name, message, status)
        if status == 429:
            raise ProviderRateLimitedError(self.name, message, status)
        if status == 402:
            raise ProviderQuotaError(self.name, message, status)
        raise ProviderHTTPError(self.name, message, status)

    def _on_response(self, response: Any) -> None:
        """Hook for subclasses that read response headers."""

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        data: Any = None,
        headers: Optional[Dict[str, str]] = None,
        auth: Optional[aiohttp.BasicAuth] = None,
    ) -> Any:
        """Acquire a rate-limiter slot and perform one bounded upstream call."""
        await self.rate_limiter.acquire()
        session = await self._get_session()
        merged = {**self.default_headers(), **(headers or {})}
        timeout = aiohttp.ClientTimeout(total=self.settings.timeout_seconds)
        endpoint = self.redact(url)
        self.metrics["upstream_calls"] += 1
        try:
            async with session.request(
                method, url, params=params, json=json_body, data=data,
                headers=merged, auth=auth, timeout=timeout,
            ) as response:
                if not 200 <= response.status < 300:
                    self._raise_for_status(response.status, endpoint)
                self._on_response(response)
                try:
                    return await response.json(content_type=None)
                except (aiohttp.ContentTypeError, json.JSONDecodeError, ValueError) as exc:
                    raise ProviderResponseError(self.name, f"{endpoint} returned invalid JSON: {exc}") from exc
        except ProviderError as exc:
            self.metrics["upstream_errors"] += 1
            logger.error(
                "%s request failed: %s", self.name, exc.message,
                extra={"event": "provider.request_failed", "provider": self.name, "status": exc.status},
            )
            raise
        except asyncio.TimeoutError as exc:
            self.metrics["upstream_errors"] += 1
            logger.error("%s request to %s timed out", self.name, endpoint, extra={"event": "provider.timeout", "provider": self.name})
            raise ProviderTimeoutError(self.name, f"{endpoint} timed out after {self.settings.timeout_seconds}s") from exc
        except aiohttp.ClientError as exc:
            self.metrics["upstream_errors"] += 1
            logger.error("%s network error: %s", self.name, exc, extra={"event": "provider.network_error", "provider": self.name})
            raise ProviderHTTPError(self.name, f"{endpoint} network error: {exc}") from exc

    # ----------------------------
    # Cache + single-flight
    # ----------------------------

    async def _cached(self, key: str, ttl: float, loader: Callable[[], Awaitable[T]]) -> T:
        """Serve ``key`` from cache, else run ``loader`` once and cache its result.

        Concurrent callers for the same key share one upstream call.
        """
        hit = self.cache.get(key)
        if hit is not None:
            self.metrics["cache_hits"] += 1
            logger.debug("Cache hit for %s", key, extra={"event": "provider.cache_hit", "provider": self.name})
            return hit
        self._ensure_enabled()
        pending = self._inflight.get(key)
        if pending is not None:
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                if not pending.cancelled():
                    raise
                raise ProviderTimeoutError(self.name, f"shared call for {key} was cancelled") from None

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            value = await loader()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            future.exception()  # retrieved here so an unshared failure is not reported as unhandled
            raise
        else:
            if ttl > 0:
                self.cache.set(key, value, ttl)
            future.set_result(value)
            return value
        finally:
            self._inflight.pop(key, None)

    # ----------------------------
    # Transform helpers
    # ----------------------------

    def _validate(self, model: Type[M], payload: Any, what: str) -> M:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise ProviderResponseError(self.name, f"unexpected {what} shape: {exc.error_count()} validation error(s)") from exc

    def _validate_many(self, model: Type[M], payload: Any, what: str) -> List[M]:
        if not isinstance(payload, list):
            raise ProviderResponseError(self.name, f"expected a list for {what}, got {type(payload).__name__}")
        return [self._validate(model, item, what) for item in payload]

    # ----------------------------
    # Never-throw wrapper
    # ----------------------------

    async def _guard(self, label: str, fetch: Callable[[], Awaitable[T]], fallback: Callable[[], T]) -> ProviderResult[T]:
        try:
            value = await fetch()
        except ProviderDisabledError as exc:
            self.metrics["fallbacks"] += 1
            return ProviderResult.fallback(self.name, fallback(), exc.message)
        except ProviderError as exc:
            self.metrics["fallbacks"] += 1
            logger.warning(
                "%s.%s failed (%s); serving fallback", self.name, label, exc.message,
                extra={"event": "provider.fallback", "provider": self.name},
            )
            return ProviderResult.fallback(self.name, fallback(), exc.message)
        except Exception as exc:
            self.metrics["fallbacks"] += 1
            logger.exception(
                "%s.%s raised unexpectedly; serving fallback", self.name, label,
                extra={"event": "provider.fallback", "provider": self.name},
            )
            return ProviderResult.fallback(self.name, fallback(), repr(exc))
        return ProviderResult.live(self.name, value)

    # ----------------------------
    # Diagnostics
    # ----------------------------

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("%s cache cleared", self.name)

    def stats(self) -> Dict[str, Any]:
        return {
            "provider": self.name,
            "fallback_only": self.fallback_only,
            "disabled_reason": self.disabled_reason,
            **self.metrics,
            "cache": self.cache_stats(),
            "rate_limiter": self.rate_limiter.snapshot(),
        }


def first_present(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def uniq(items: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


__all__ = ["ProviderClient", "USER_AGENT", "first_present", "uniq"]
