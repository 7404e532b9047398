"""Dashboard aggregation.

``DashboardAggregator.get_dashboard_snapshot`` fans out to every provider at
once, bounds each call by ``call_timeout_seconds`` and fills any field whose
call failed or timed out with that field's static fallback. The returned
``AggregatedDashboard`` is always complete; ``sources`` says which fields are
live.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import aiohttp

from .config import Settings
from .providers.coingecko import CoinGeckoClient, fallback_coins, fallback_gainers, fallback_overview
from .providers.cryptopanic import CryptoPanicClient, fallback_news
from .providers.memes import MemeProvider, fallback_meme
from .providers.openrouter import OpenRouterClient, fallback_insight
from .providers.reddit import RedditClient
from .schemas import AggregatedDashboard, ContentPreference, NewsFilter, ProviderResult, UserPreferenceSummary

logger = logging.getLogger(__name__)

DEFAULT_CALL_TIMEOUT = 15.0


@dataclass
class DashboardServices:
    """Provider clients constructed once at startup and shared by every request."""

    coingecko: CoinGeckoClient
    cryptopanic: CryptoPanicClient
    openrouter: OpenRouterClient
    reddit: RedditClient
    memes: MemeProvider

    @classmethod
    def from_settings(cls, settings: Settings, session: Optional[aiohttp.ClientSession] = None) -> "DashboardServices":
        reddit = RedditClient(settings.provider("reddit"), session=session)
        return cls(
            coingecko=CoinGeckoClient(settings.provider("coingecko"), session=session),
            cryptopanic=CryptoPanicClient(settings.provider("cryptopanic"), session=session),
            openrouter=OpenRouterClient(settings.provider("openrouter"), session=session, referer=settings.cors_origin),
            reddit=reddit,
            memes=MemeProvider(reddit),
        )

    def clients(self) -> List[Any]:
        return [self.coingecko, self.cryptopanic, self.openrouter, self.reddit]

    async def close(self) -> None:
        for client in self.clients():
            await client.close()


def _consume_result(task: asyncio.Future) -> None:
    if not task.cancelled():
        task.exception()


class DashboardAggregator:
    def __init__(
        self,
        services: DashboardServices,
        *,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
        news_limit: int = 5,
        top_coins_limit: int = 10,
        top_gainers_limit: int = 3,
    ):
        self.services = services
        self.call_timeout = call_timeout
        self.news_limit = news_limit
        self.top_coins_limit = top_coins_limit
        self.top_gainers_limit = top_gainers_limit
        self.snapshots = 0
        self.degraded_fields = 0

    @classmethod
    def from_settings(cls, services: DashboardServices, settings: Settings) -> "DashboardAggregator":
        cfg = settings.aggregator
        return cls(
            services,
            call_timeout=float(cfg.get("call_timeout_seconds", DEFAULT_CALL_TIMEOUT)),
            news_limit=int(cfg.get("news_limit", 5)),
            top_coins_limit=int(cfg.get("top_coins_limit", 10)),
            top_gainers_limit=int(cfg.get("top_gainers_limit", 3)),
        )

    def _plan(self, prefs: UserPreferenceSummary) -> Dict[str, Tuple[Callable[[], Awaitable[ProviderResult]], Callable[[], Any]]]:
        s = self.services
        interests = [i.strip().upper() for i in prefs.crypto_interests if i.strip()]
        wants_fun = ContentPreference.FUN in prefs.content_preferences

        def news():
            return s.cryptopanic.get_news(filter=NewsFilter.HOT, currencies=interests or None, limit=self.news_limit)

        def meme():
            if wants_fun and interests:
                return s.memes.get_meme_by_tags(interests)
            return s.memes.get_random_meme()

        return {
            "market_overview": (s.coingecko.get_global_data, fallback_overview),
            "trending_coins": (s.coingecko.get_trending_coins, lambda: fallback_coins(7)),
            "top_gainers": (lambda: s.coingecko.get_top_gainers(self.top_gainers_limit),
                            lambda: fallback_gainers(self.top_gainers_limit)),
            "coin_prices": (lambda: s.coingecko.get_top_coins(self.top_coins_limit),
                            lambda: fallback_coins(self.top_coins_limit)),
            "news": (news, lambda: fallback_news(self.news_limit)),
            "ai_insight": (lambda: s.openrouter.get_insight(prefs), fallback_insight),
            "meme": (meme, fallback_meme),
        }

    async def _bounded(self, field: str, call: Callable[[], Awaitable[ProviderResult]], fallback: Callable[[], Any]) -> ProviderResult:
        async def run():
            return await call()

        # A call that outlives the timeout keeps running so its result can still land in the provider cache.
        task = asyncio.ensure_future(run())
        done, _ = await asyncio.wait({task}, timeout=self.call_timeout)
        if not done:
            task.add_done_callback(_consume_result)
            reason = f"timed out after {self.call_timeout}s"
        elif task.exception() is not None:
            exc = task.exception()
            logger.error("%s call raised %r", field, exc, exc_info=exc, extra={"event": "aggregator.error", "field": field})
            reason = repr(exc)
        else:
            result = task.result()
            if result.is_fallback:
                self.degraded_fields += 1
                logger.warning(
                    "Dashboard field %s degraded to fallback (%s)", field, result.error or "fallback content",
                    extra={"event": "aggregator.degraded", "field": field, "provider": result.provider},
                )
            return result
        self.degraded_fields += 1
        logger.warning(
            "Dashboard field %s degraded to fallback (%s)", field, reason,
            extra={"event": "aggregator.degraded", "field": field},
        )
        return ProviderResult.fallback("aggregator", fallback(), reason)

    async def get_dashboard_snapshot(self, prefs: Optional[UserPreferenceSummary] = None) -> AggregatedDashboard:
        """Complete, possibly degraded dashboard for ``prefs``."""
        prefs = prefs or UserPreferenceSummary()
        plan = self._plan(prefs)
        results = await asyncio.gather(*(self._bounded(field, call, fb) for field, (call, fb) in plan.items()))
        by_field = dict(zip(plan.keys(), results))
        self.snapshots += 1
        snapshot = AggregatedDashboard(
            **{field: result.value for field, result in by_field.items()},
            sources={field: result.source for field, result in by_field.items()},
        )
        live = sum(1 for r in results if not r.is_fallback)
        logger.info("Dashboard snapshot assembled (%d/%d fields live)", live, len(results))
        return snapshot


__all__ = ["DashboardAggregator", "DashboardServices"]
