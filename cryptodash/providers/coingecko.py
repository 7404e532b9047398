"""CoinGecko market-data client.

Endpoints used: ``/coins/markets``, ``/search/trending``, ``/global``,
``/coins/{id}``, ``/coins/{id}/market_chart`` and ``/ping``. The public tier
works without a key; a demo key is sent as ``x-cg-demo-api-key`` when set.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..cache import make_cache_key
from ..errors import ProviderError, ProviderResponseError
from ..schemas import CoinData, MarketOverview, PriceHistory, ProviderResult
from .base import ProviderClient

logger = logging.getLogger(__name__)

PRICE_CHANGE_WINDOWS = "1h,24h,7d"

# Static snapshot served when the market API cannot be reached.
FALLBACK_COINS: List[Dict[str, Any]] = [
    {"id": "bitcoin", "symbol": "btc", "name": "Bitcoin", "current_price": 65000.0, "market_cap": 1.28e12,
     "market_cap_rank": 1, "total_volume": 3.2e10, "price_change_percentage_24h": 1.2},
    {"id": "ethereum", "symbol": "eth", "name": "Ethereum", "current_price": 3200.0, "market_cap": 3.85e11,
     "market_cap_rank": 2, "total_volume": 1.5e10, "price_change_percentage_24h": 0.8},
    {"id": "tether", "symbol": "usdt", "name": "Tether", "current_price": 1.0, "market_cap": 1.1e11,
     "market_cap_rank": 3, "total_volume": 4.5e10, "price_change_percentage_24h": 0.01},
    {"id": "binancecoin", "symbol": "bnb", "name": "BNB", "current_price": 580.0, "market_cap": 8.5e10,
     "market_cap_rank": 4, "total_volume": 1.6e9, "price_change_percentage_24h": 0.5},
    {"id": "solana", "symbol": "sol", "name": "Solana", "current_price": 150.0, "market_cap": 6.9e10,
     "market_cap_rank": 5, "total_volume": 2.8e9, "price_change_percentage_24h": 2.4},
    {"id": "usd-coin", "symbol": "usdc", "name": "USDC", "current_price": 1.0, "market_cap": 3.3e10,
     "market_cap_rank": 6, "total_volume": 5.1e9, "price_change_percentage_24h": 0.0},
    {"id": "ripple", "symbol": "xrp", "name": "XRP", "current_price": 0.52, "market_cap": 2.9e10,
     "market_cap_rank": 7, "total_volume": 1.1e9, "price_change_percentage_24h": -0.4},
    {"id": "dogecoin", "symbol": "doge", "name": "Dogecoin", "current_price": 0.12, "market_cap": 1.7e10,
     "market_cap_rank": 8, "total_volume": 8.0e8, "price_change_percentage_24h": 3.1},
    {"id": "cardano", "symbol": "ada", "name": "Cardano", "current_price": 0.45, "market_cap": 1.6e10,
     "market_cap_rank": 9, "total_volume": 3.5e8, "price_change_percentage_24h": -0.9},
    {"id": "chainlink", "symbol": "link", "name": "Chainlink", "current_price": 14.5, "market_cap": 8.5e9,
     "market_cap_rank": 10, "total_volume": 3.0e8, "price_change_percentage_24h": 1.7},
]

FALLBACK_OVERVIEW: Dict[str, Any] = {
    "total_market_cap": 2.4e12,
    "total_volume_24h": 8.5e10,
    "market_cap_change_24h": 0.0,
    "volume_change_24h": 0.0,
}


def fallback_coins(limit: Optional[int] = None) -> List[CoinData]:
    coins = [CoinData(**c) for c in FALLBACK_COINS]
    return coins if limit is None else coins[:limit]


def fallback_gainers(limit: int = 5) -> List[CoinData]:
    coins = sorted(fallback_coins(), key=lambda c: c.price_change_percentage_24h or 0.0, reverse=True)
    return coins[:limit]


def fallback_overview() -> MarketOverview:
    return MarketOverview(**FALLBACK_OVERVIEW)


def fallback_coin(coin_id: str) -> CoinData:
    for coin in fallback_coins():
        if coin.id == coin_id:
            return coin
    return CoinData(id=coin_id, symbol=coin_id[:4], name=coin_id.replace("-", " ").title())


def fallback_history(coin_id: str, days: int, currency: str = "usd") -> PriceHistory:
    return PriceHistory(coin_id=coin_id, currency=currency, days=days)


def _dig(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


class CoinGeckoClient(ProviderClient):
    name = "coingecko"
    requires_credentials = False
    status_messages = {
        429: "API rate limit exceeded. Please try again later.",
        403: "API authentication failed",
    }

    def default_headers(self) -> Dict[str, str]:
        headers = super().default_headers()
        headers["Content-Type"] = "application/json"
        if self.settings.api_key:
            headers["x-cg-demo-api-key"] = self.settings.api_key
        return headers

    def _url(self, path: str) -> str:
        return f"{self.settings.base_url}{path}"

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._request("GET", self._url(path), params=params)

    def _markets_params(self, **overrides: Any) -> Dict[str, Any]:
        params = {
            "vs_currency": "usd",
            "order": "market_cap_desc",
            "page": 1,
            "sparkline": "false",
            "price_change_percentage": PRICE_CHANGE_WINDOWS,
        }
        params.update(overrides)
        return params

    # ----------------------------
    # fetch_* (raise ProviderError)
    # ----------------------------

    async def fetch_top_coins(self, limit: int = 10, currency: str = "usd") -> List[CoinData]:
        key = make_cache_key("top_coins", limit=limit, currency=currency)

        async def load():
            payload = await self._get("/coins/markets", self._markets_params(
                vs_currency=currency, per_page=limit, sparkline="true",
            ))
            return self._validate_many(CoinData, payload, "coins/markets")

        return await self._cached(key, self.settings.ttl("markets", 30), load)

    async def fetch_trending_coins(self) -> List[CoinData]:
        async def load_ids():
            payload = await self._get("/search/trending")
            coins = payload.get("coins") if isinstance(payload, dict) else None
            if not isinstance(coins, list):
                raise ProviderResponseError(self.name, "search/trending payload has no 'coins' list")
            ids = [_dig(c, "item", "id") for c in coins]
            return [i for i in ids if i]

        ids = await self._cached(make_cache_key("trending_ids"), self.settings.ttl("trending", 60), load_ids)
        if not ids:
            return []

        async def load_details():
            payload = await self._get("/coins/markets", self._markets_params(ids=",".join(ids), per_page=10))
            return self._validate_many(CoinData, payload, "coins/markets")

        key = make_cache_key("trending_details", ids=ids)
        return await self._cached(key, self.settings.ttl("markets", 30), load_details)

    async def fetch_top_gainers(self, limit: int = 5) -> List[CoinData]:
        key = make_cache_key("top_gainers", limit=limit)

        async def load():
            payload = await self._get("/coins/markets", self._markets_params(
                order="price_change_percentage_24h_desc", per_page=limit,
            ))
            return self._validate_many(CoinData, payload, "coins/markets")

        return await self._cached(key, self.settings.ttl("markets", 30), load)

    async def fetch_global_data(self) -> MarketOverview:
        async def load():
            payload = await self._get("/global")
            data = _dig(payload, "data")
            return self._validate(MarketOverview, {
                "total_market_cap": _dig(data, "total_market_cap", "usd"),
                "total_volume_24h": _dig(data, "total_volume", "usd"),
                "market_cap_change_24h": _dig(data, "market_cap_change_percentage_24h_usd"),
                "volume_change_24h": _dig(data, "total_volume", "usd_24h_change"),
            }, "global")

        return await self._cached(make_cache_key("global_data"), self.settings.ttl("global", 60), load)

    async def fetch_coin(self, coin_id: str) -> CoinData:
        key = make_cache_key("coin", coin_id=coin_id)

        async def load():
            payload = await self._get(f"/coins/{coin_id}", {
                "localization": "false",
                "tickers": "false",
                "market_data": "true",
                "community_data": "false",
                "developer_data": "false",
                "sparkline": "true",
            })
            market = _dig(payload, "market_data") or {}
            return self._validate(CoinData, {
                "id": _dig(payload, "id"),
                "symbol": _dig(payload, "symbol"),
                "name": _dig(payload, "name"),
                "image": _dig(payload, "image", "large"),
                "current_price": _dig(market, "current_price", "usd"),
                "market_cap": _dig(market, "market_cap", "usd"),
                "market_cap_rank": _dig(payload, "market_cap_rank"),
                "total_volume": _dig(market, "total_volume", "usd"),
                "high_24h": _dig(market, "high_24h", "usd"),
                "low_24h": _dig(market, "low_24h", "usd"),
                "price_change_24h": _dig(market, "price_change_24h"),
                "price_change_percentage_24h": _dig(market, "price_change_percentage_24h"),
                "price_change_percentage_1h_in_currency": _dig(market, "price_change_percentage_1h_in_currency", "usd"),
                "price_change_percentage_7d_in_currency": _dig(market, "price_change_percentage_7d_in_currency", "usd"),
                "sparkline_in_7d": _dig(market, "sparkline_7d"),
            }, f"coins/{coin_id}")

        return await self._cached(key, self.settings.ttl("coin", 60), load)

    async def fetch_price_history(self, coin_id: str, days: int = 7, currency: str = "usd") -> PriceHistory:
        key = make_cache_key("history", coin_id=coin_id, days=days, currency=currency)

        async def load():
            payload = await self._get(f"/coins/{coin_id}/market_chart", {"vs_currency": currency, "days": str(days)})
            if not isinstance(payload, dict):
                raise ProviderResponseError(self.name, "market_chart payload is not an object")
            return self._validate(PriceHistory, {
                "coin_id": coin_id,
                "currency": currency,
                "days": days,
                "prices": payload.get("prices"),
                "market_caps": payload.get("market_caps", []),
                "total_volumes": payload.get("total_volumes", []),
            }, "market_chart")

        return await self._cached(key, self.settings.ttl("history", 300), load)

    async def fetch_ping(self) -> bool:
        async def load():
            await self._get("/ping")
            return True

        return await self._cached(make_cache_key("ping"), self.settings.ttl("ping", 10), load)

    async def ping(self) -> bool:
        """Liveness check; ``False`` on any upstream failure."""
        try:
            return await self.fetch_ping()
        except ProviderError as exc:
            logger.error("CoinGecko API ping failed: %s", exc.message)
            return False

    # ----------------------------
    # get_* (never raise)
    # ----------------------------

    async def get_top_coins(self, limit: int = 10, currency: str = "usd") -> ProviderResult[List[CoinData]]:
        return await self._guard("top_coins", lambda: self.fetch_top_coins(limit, currency), lambda: fallback_coins(limit))

    async def get_trending_coins(self) -> ProviderResult[List[CoinData]]:
        return await self._guard("trending_coins", self.fetch_trending_coins, lambda: fallback_coins(7))

    async def get_top_gainers(self, limit: int = 5) -> ProviderResult[List[CoinData]]:
        return await self._guard("top_gainers", lambda: self.fetch_top_gainers(limit), lambda: fallback_gainers(limit))

    async def get_global_data(self) -> ProviderResult[MarketOverview]:
        return await self._guard("global_data", self.fetch_global_data, fallback_overview)

    async def get_coin(self, coin_id: str) -> ProviderResult[CoinData]:
        return await self._guard("coin", lambda: self.fetch_coin(coin_id), lambda: fallback_coin(coin_id))

    async def get_price_history(self, coin_id: str, days: int = 7, currency: str = "usd") -> ProviderResult[PriceHistory]:
        return await self._guard(
            "price_history",
            lambda: self.fetch_price_history(coin_id, days, currency),
            lambda: fallback_history(coin_id, days, currency),
        )


__all__ = [
    "CoinGeckoClient",
    "fallback_coins",
    "fallback_gainers",
    "fallback_overview",
    "fallback_coin",
    "fallback_history",
]
