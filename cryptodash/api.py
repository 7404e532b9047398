#!/usr/bin/env python3
"""FastAPI service exposing the dashboard provider layer."""
from __future__ import annotations

import argparse
import logging
import os
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .aggregator import DashboardAggregator, DashboardServices
from .config import Settings, load_settings, log_config
from .errors import ProviderError
from .logging_config import REQUEST_ID_CTX, setup_logging
from .metrics import collect_provider_stats, render_prometheus
from .schemas import (
    DashboardResponse,
    MemeCategory,
    NewsFilter,
    UserPreferenceSummary,
)

logger = logging.getLogger("cryptodash.api")


def _split(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def parse_preferences(
    interests: Optional[str],
    investor_type: Optional[str],
    content_preferences: Optional[str],
) -> UserPreferenceSummary:
    try:
        return UserPreferenceSummary(
            crypto_interests=[i.upper() for i in _split(interests)],
            investor_type=investor_type.upper() if investor_type else None,
            content_preferences=[c.upper() for c in _split(content_preferences)],
        )
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=f"Invalid preferences: {exc.error_count()} invalid value(s)") from exc


def create_app(services: Optional[DashboardServices] = None, settings: Optional[Settings] = None) -> FastAPI:
    app = FastAPI(title="CryptoDash API")
    owns_services = services is None
    # loaded here so CORS and the provider clients read the same config
    cfg = settings or load_settings()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[cfg.cors_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _install(svc: DashboardServices) -> None:
        app.state.services = svc
        app.state.aggregator = DashboardAggregator.from_settings(svc, cfg)

    if services is not None:
        _install(services)

    @app.on_event("startup")
    async def _startup_event() -> None:
        if getattr(app.state, "services", None) is not None:
            return
        setup_logging(cfg.log_level, cfg.log_format, cfg.log_dir)
        log_config(cfg)
        _install(DashboardServices.from_settings(cfg))

    @app.on_event("shutdown")
    async def _shutdown_event() -> None:
        svc = getattr(app.state, "services", None)
        if svc is not None and owns_services:
            await svc.close()

    @app.middleware("http")
    async def _request_id(request: Request, call_next):
        rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        token = REQUEST_ID_CTX.set(rid)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            REQUEST_ID_CTX.reset(token)
        response.headers["X-Request-ID"] = rid
        logger.debug("%s %s -> %s in %.3fs", request.method, request.url.path, response.status_code, time.perf_counter() - started)
        return response

    @app.exception_handler(ProviderError)
    async def _provider_error(request: Request, exc: ProviderError) -> JSONResponse:
        logger.error("Diagnostic call failed: %s", exc)
        return JSONResponse(status_code=502, content={"error": exc.message, "provider": exc.provider, "status": exc.status})

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = "Route not found" if exc.status_code == 404 else exc.detail
        return JSONResponse(status_code=exc.status_code, content={"error": message})

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    def _services() -> DashboardServices:
        return app.state.services

    # ----------------------------
    # Aggregate + never-failing routes
    # ----------------------------

    @app.get("/api/dashboard", response_model=DashboardResponse)
    async def get_dashboard(
        interests: Optional[str] = None,
        investor_type: Optional[str] = None,
        content_preferences: Optional[str] = None,
    ) -> DashboardResponse:
        prefs = parse_preferences(interests, investor_type, content_preferences)
        data = await app.state.aggregator.get_dashboard_snapshot(prefs)
        return DashboardResponse(message="Dashboard data retrieved successfully", data=data)

    @app.get("/api/dashboard/news")
    async def get_news(
        filter: NewsFilter = NewsFilter.HOT,
        limit: int = Query(10, ge=1, le=50),
        currencies: Optional[str] = None,
    ) -> Dict[str, Any]:
        result = await _services().cryptopanic.get_news(
            filter=filter, currencies=[c.upper() for c in _split(currencies)] or None, limit=limit,
        )
        return {"message": "News retrieved successfully", "data": jsonable_encoder(result.value), "source": result.source.value}

    @app.get("/api/dashboard/chart-data/{coin_id}")
    async def get_chart_data(coin_id: str, days: int = Query(7, ge=1, le=365)) -> Dict[str, Any]:
        result = await _services().coingecko.get_price_history(coin_id, days)
        return {"message": "Chart data retrieved successfully", "data": jsonable_encoder(result.value), "source": result.source.value}

    @app.get("/api/dashboard/meme")
    async def get_meme(category: Optional[MemeCategory] = None, tags: Optional[str] = None) -> Dict[str, Any]:
        memes = _services().memes
        if category is not None:
            result = await memes.get_meme_by_category(category)
        elif tags:
            result = await memes.get_meme_by_tags(_split(tags))
        else:
            result = await memes.get_random_meme()
        return {"message": "Meme retrieved successfully", "data": jsonable_encoder(result.value), "source": result.source.value}

    @app.get("/api/dashboard/ai-insight")
    async def get_ai_insight(
        interests: Optional[str] = None,
        investor_type: Optional[str] = None,
        content_preferences: Optional[str] = None,
    ) -> Dict[str, Any]:
        prefs = parse_preferences(interests, investor_type, content_preferences)
        result = await _services().openrouter.get_insight(prefs)
        return {"message": "AI insight generated successfully", "data": jsonable_encoder(result.value), "source": result.source.value}

    # ----------------------------
    # Diagnostics (may fail with 502)
    # ----------------------------

    @app.get("/api/dashboard/test-coingecko")
    async def test_coingecko() -> Dict[str, Any]:
        cg = _services().coingecko
        started = time.perf_counter()
        await cg.fetch_ping()
        coins = await cg.fetch_top_coins(3)
        return {
            "message": "CoinGecko API is reachable",
            "latency_ms": round((time.perf_counter() - started) * 1000, 1),
            "sample": jsonable_encoder(coins),
            "rate_limiter": cg.rate_limiter.snapshot(),
        }

    @app.get("/api/dashboard/test-cryptopanic")
    async def test_cryptopanic(limit: int = Query(3, ge=1, le=20)) -> Dict[str, Any]:
        cp = _services().cryptopanic
        items = await cp.fetch_news(filter=NewsFilter.HOT, limit=limit)
        return {"message": "CryptoPanic API is reachable", "count": len(items), "sample": jsonable_encoder(items), "cache": cp.cache_stats()}

    @app.get("/api/dashboard/reddit-status")
    async def reddit_status(check: bool = False) -> Dict[str, Any]:
        reddit = _services().reddit
        if check:
            await reddit.authenticate()
        return {"message": "Reddit status retrieved", "data": reddit.status()}

    @app.get("/api/dashboard/openrouter-status")
    async def openrouter_status() -> Dict[str, Any]:
        data = await _services().openrouter.fetch_key_status()
        return {"message": "OpenRouter status retrieved", "data": data}

    @app.get("/api/diagnostics/cache")
    async def cache_diagnostics() -> Dict[str, Any]:
        svc = _services()
        stats = {client.name: client.cache_stats() for client in svc.clients()}
        stats[svc.memes.name] = svc.memes.cache_stats()
        return {"data": stats, "providers": collect_provider_stats(svc.clients())}

    # ----------------------------
    # Health / metrics
    # ----------------------------

    @app.get("/health")
    async def health_check() -> JSONResponse:
        svc = _services()
        healthy = await svc.coingecko.ping()
        body = {
            "status": "OK" if healthy else "DEGRADED",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "services": {
                "coingecko": "up" if healthy else "down",
                **{c.name: ("fallback-only" if c.fallback_only else "configured") for c in svc.clients() if c is not svc.coingecko},
            },
        }
        return JSONResponse(status_code=200 if healthy else 503, content=body)

    @app.get("/metrics")
    async def metrics() -> PlainTextResponse:
        aggregator = app.state.aggregator
        text = render_prometheus(_services().clients(), {
            "dashboard_snapshots_total": aggregator.snapshots,
            "dashboard_degraded_fields_total": aggregator.degraded_fields,
        })
        return PlainTextResponse(text, media_type="text/plain; version=0.0.4")

    return app


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the CryptoDash API service")
    parser.add_argument("--host", default=os.getenv("CRYPTODASH_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("CRYPTODASH_PORT", "8000")))
    parser.add_argument("--log-level", default=os.getenv("CRYPTODASH_LOG_LEVEL", "info"))
    parser.add_argument("--reload", action="store_true", help="Enable uvicorn autoreload (dev only)")
    args = parser.parse_args()

    import uvicorn  # Imported lazily so cli tools don't require it

    uvicorn.run(
        "cryptodash.api:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        reload=args.reload,
    )


if __name__ == "__main__":
    main()
