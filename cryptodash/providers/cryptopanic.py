"""CryptoPanic news client.

The developer tier does not expose the publisher URL, so every item links back
to the CryptoPanic page for the post.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from ..cache import make_cache_key
from ..errors import ProviderResponseError
from ..schemas import MAX_NEWS_TAGS, DataSource, NewsFilter, NewsItem, NewsKind, ProviderResult
from .base import ProviderClient, uniq

logger = logging.getLogger(__name__)

POST_URL_TEMPLATE = "https://cryptopanic.com/news/{slug}/"
DEFAULT_SOURCE = "cryptopanic.com"

TAG_KEYWORDS = [
    "bitcoin", "btc", "ethereum", "eth", "cardano", "ada", "solana", "sol",
    "polkadot", "dot", "chainlink", "link", "uniswap", "uni", "dogecoin", "doge",
    "shiba", "shib", "ripple", "xrp", "litecoin", "ltc", "defi", "nft", "dao",
    "etf", "institutional", "regulation", "sec", "fed", "central bank",
]

# (tag, any of these substrings)
THEME_TAGS = [
    ("MARKET", ("price", "market")),
    ("ADOPTION", ("adoption", "institutional")),
    ("REGULATION", ("regulation", "sec")),
]

FALLBACK_NEWS: List[Dict[str, Any]] = [
    {
        "id": "fallback-1",
        "title": "Hong Kong Firm Allocates HK$450M for Crypto Ventures",
        "url": "https://coincu.com/news/hong-kong-firm-allocates-hk450m-for-crypto-ventures/",
        "source": "coincu.com",
        "age_minutes": 0,
        "tags": ["NYLA", "HONG KONG", "VENTURE CAPITAL"],
    },
    {
        "id": "fallback-2",
        "title": "Elon Musk's lawyer to chair $200M Dogecoin treasury: Report",
        "url": "https://theholycoins.com/news/elon-musk-lawyer-dogecoin-treasury/",
        "source": "theholycoins.com",
        "age_minutes": 10,
        "tags": ["DOGE", "BTC", "ELON MUSK"],
    },
    {
        "id": "fallback-3",
        "title": "Bitcoin ETF Inflows Continue as Institutional Adoption Grows",
        "url": "https://cryptonews.com/news/bitcoin-etf-inflows-institutional-adoption/",
        "source": "cryptonews.com",
        "age_minutes": 30,
        "tags": ["BTC", "ETF", "INSTITUTIONAL"],
    },
]


def fallback_news(limit: Optional[int] = None, now: Optional[datetime] = None) -> List[NewsItem]:
    now = now or datetime.now(timezone.utc)
    items = [
        NewsItem(
            id=raw["id"],
            title=raw["title"],
            url=raw["url"],
            source=raw["source"],
            published_at=now - timedelta(minutes=raw["age_minutes"]),
            tags=list(raw["tags"]),
            data_source=DataSource.FALLBACK,
        )
        for raw in FALLBACK_NEWS
    ]
    return items if limit is None else items[:limit]


def source_from_slug(slug: str) -> str:
    first = (slug or "").split("-")[0]
    return first.upper() if first else DEFAULT_SOURCE


def extract_tags(title: str, description: Optional[str]) -> List[str]:
    """Keyword tags for posts that carry no instrument data."""
    content = f"{title} {description or ''}".lower()
    tags = [term.upper() for term in TAG_KEYWORDS if term in content]
    for tag, needles in THEME_TAGS:
        if any(n in content for n in needles):
            tags.append(tag)
    return tags[:MAX_NEWS_TAGS]


def transform_post(post: Dict[str, Any]) -> Dict[str, Any]:
    source_info = post.get("source")
    source = source_info.get("title") if isinstance(source_info, dict) else None
    slug = post.get("slug") if isinstance(post.get("slug"), str) else ""
    instruments = post.get("instruments")
    if isinstance(instruments, list) and instruments:
        tags = uniq(i.get("code") for i in instruments if isinstance(i, dict) and i.get("code"))
    else:
        title = post.get("title")
        description = post.get("description")
        tags = extract_tags(
            title if isinstance(title, str) else "",
            description if isinstance(description, str) else None,
        )
    return {
        "id": str(post.get("id")) if post.get("id") is not None else None,
        "title": post.get("title"),
        "url": POST_URL_TEMPLATE.format(slug=slug) if slug else None,
        "source": source or source_from_slug(slug),
        "published_at": post.get("published_at") or post.get("created_at"),
        "tags": tags,
        "data_source": DataSource.LIVE,
    }


def _join(values: Optional[Iterable[str]]) -> Optional[str]:
    if not values:
        return None
    return ",".join(v.strip().upper() for v in values if v and v.strip()) or None


class CryptoPanicClient(ProviderClient):
    name = "cryptopanic"

    def _on_response(self, response: Any) -> None:
        remaining = response.headers.get("x-ratelimit-remaining", "unknown")
        logger.info("CryptoPanic response received (remaining requests: %s)", remaining)

    async def fetch_news(
        self,
        filter: Union[NewsFilter, str, None] = None,
        currencies: Optional[List[str]] = None,
        regions: Optional[List[str]] = None,
        kind: Union[NewsKind, str, None] = None,
        limit: Optional[int] = None,
    ) -> List[NewsItem]:
        filter_value = NewsFilter(filter).value if filter else None
        kind_value = NewsKind(kind).value if kind else None
        currency_value = _join(currencies)
        region_value = ",".join(regions) if regions else None
        key = make_cache_key(
            "news", filter=filter_value, currencies=currencies or None,
            regions=regions or None, kind=kind_value, limit=limit,
        )

        async def load():
            params = {"auth_token": self.settings.api_key, "public": "true"}
            for name, value in (("filter", filter_value), ("currencies", currency_value),
                                ("regions", region_value), ("kind", kind_value)):
                if value:
                    params[name] = value
            if limit:
                params["limit"] = str(limit)
            logger.info("Fetching news from CryptoPanic (filter=%s currencies=%s)", filter_value, currency_value)
            payload = await self._request("GET", f"{self.settings.base_url}/posts/", params=params)
            results = payload.get("results") if isinstance(payload, dict) else None
            if not isinstance(results, list):
                raise ProviderResponseError(self.name, "Invalid response structure from CryptoPanic API")
            items = [
                self._validate(NewsItem, transform_post(post), "post")
                for post in results if isinstance(post, dict)
            ]
            logger.info("Fetched %d news items from CryptoPanic", len(items))
            return items[:limit] if limit else items

        return await self._cached(key, self.settings.ttl("news", 300), load)

    async def get_news(self, filter=None, currencies=None, regions=None, kind=None, limit=None) -> ProviderResult[List[NewsItem]]:
        return await self._guard(
            "news",
            lambda: self.fetch_news(filter=filter, currencies=currencies, regions=regions, kind=kind, limit=limit),
            lambda: fallback_news(limit),
        )

    async def get_trending_news(self, limit: int = 10) -> ProviderResult[List[NewsItem]]:
        return await self.get_news(filter=NewsFilter.HOT, limit=limit)

    async def get_news_by_currencies(self, currencies: List[str], limit: int = 10) -> ProviderResult[List[NewsItem]]:
        return await self.get_news(currencies=currencies, limit=limit)

    async def get_bullish_news(self, limit: int = 10) -> ProviderResult[List[NewsItem]]:
        return await self.get_news(filter=NewsFilter.BULLISH, limit=limit)

    async def get_bearish_news(self, limit: int = 10) -> ProviderResult[List[NewsItem]]:
        return await self.get_news(filter=NewsFilter.BEARISH, limit=limit)

    async def get_important_news(self, limit: int = 10) -> ProviderResult[List[NewsItem]]:
        return await self.get_news(filter=NewsFilter.IMPORTANT, limit=limit)

    async def get_rising_news(self, limit: int = 10) -> ProviderResult[List[NewsItem]]:
        return await self.get_news(filter=NewsFilter.RISING, limit=limit)

    async def get_news_by_type(self, news_type: Union[NewsFilter, str], limit: int = 10) -> ProviderResult[List[NewsItem]]:
        return await self.get_news(filter=news_type, limit=limit)


__all__ = ["CryptoPanicClient", "FALLBACK_NEWS", "fallback_news", "transform_post", "extract_tags", "source_from_slug"]
