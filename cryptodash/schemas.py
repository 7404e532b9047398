"""Pydantic models for the internal data shapes and API responses.

Every upstream payload is validated into one of these models at the provider
boundary; a ``ValidationError`` there is treated as a malformed response.
"""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Generic, List, Optional, Tuple, TypeVar

from pydantic import BaseModel, Field, field_validator

MAX_NEWS_TAGS = 5


class DataSource(str, Enum):
    LIVE = "live"
    FALLBACK = "fallback"


class InvestorType(str, Enum):
    HODLER = "HODLER"
    DAY_TRADER = "DAY_TRADER"
    NFT_COLLECTOR = "NFT_COLLECTOR"
    DEFI_USER = "DEFI_USER"
    NEWBIE = "NEWBIE"


class ContentPreference(str, Enum):
    MARKET_NEWS = "MARKET_NEWS"
    CHARTS = "CHARTS"
    SOCIAL = "SOCIAL"
    FUN = "FUN"
    TECHNICAL_ANALYSIS = "TECHNICAL_ANALYSIS"
    FUNDAMENTAL_ANALYSIS = "FUNDAMENTAL_ANALYSIS"


class InsightType(str, Enum):
    MARKET_ANALYSIS = "MARKET_ANALYSIS"
    EDUCATIONAL = "EDUCATIONAL"
    PREDICTION = "PREDICTION"
    TIPS = "TIPS"


class MemeCategory(str, Enum):
    HODL = "HODL"
    PUMP = "PUMP"
    DUMP = "DUMP"
    FOMO = "FOMO"
    FUD = "FUD"
    GENERAL = "GENERAL"


class NewsFilter(str, Enum):
    HOT = "hot"
    RISING = "rising"
    BULLISH = "bullish"
    BEARISH = "bearish"
    IMPORTANT = "important"
    SAVED = "saved"
    LOL = "lol"


class NewsKind(str, Enum):
    NEWS = "news"
    MEDIA = "media"


# ----------------------------
# Market data
# ----------------------------


class Sparkline(BaseModel):
    price: List[float] = Field(default_factory=list)


class CoinData(BaseModel):
    id: str
    symbol: str
    name: str
    image: Optional[str] = None
    current_price: Optional[float] = None
    market_cap: Optional[float] = None
    market_cap_rank: Optional[int] = None
    total_volume: Optional[float] = None
    high_24h: Optional[float] = None
    low_24h: Optional[float] = None
    price_change_24h: Optional[float] = None
    price_change_percentage_24h: Optional[float] = None
    price_change_percentage_1h_in_currency: Optional[float] = None
    price_change_percentage_7d_in_currency: Optional[float] = None
    sparkline_in_7d: Optional[Sparkline] = None

    @field_validator("symbol")
    @classmethod
    def _canonical_symbol(cls, value: str) -> str:
        return value.strip().upper()


class MarketOverview(BaseModel):
    total_market_cap: float
    total_volume_24h: float
    market_cap_change_24h: Optional[float] = None
    volume_change_24h: Optional[float] = None


class PriceHistory(BaseModel):
    coin_id: str
    currency: str
    days: int
    prices: List[Tuple[float, float]] = Field(default_factory=list)
    market_caps: List[Tuple[float, float]] = Field(default_factory=list)
    total_volumes: List[Tuple[float, float]] = Field(default_factory=list)


# ----------------------------
# News / insight / memes
# ----------------------------


class NewsItem(BaseModel):
    id: str
    title: str
    url: str
    source: str
    published_at: datetime
    tags: List[str] = Field(default_factory=list)
    data_source: DataSource = DataSource.LIVE

    @field_validator("tags")
    @classmethod
    def _bounded_tags(cls, value: List[str]) -> List[str]:
        return value[:MAX_NEWS_TAGS]


class AIInsight(BaseModel):
    id: str
    content: str
    type: InsightType = InsightType.MARKET_ANALYSIS
    confidence: float = Field(ge=0.0, le=1.0)
    created_at: datetime


class Meme(BaseModel):
    id: str
    title: str
    url: str
    source: str
    tags: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    category: MemeCategory = MemeCategory.GENERAL


class UserPreferenceSummary(BaseModel):
    crypto_interests: List[str] = Field(default_factory=list)
    investor_type: Optional[InvestorType] = None
    content_preferences: List[ContentPreference] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.crypto_interests or self.investor_type or self.content_preferences)

    def signature(self) -> str:
        """Stable digest of the preferences; order and case of list entries do not matter."""
        if self.is_empty():
            return "default"
        payload = {
            "interests": sorted({s.strip().upper() for s in self.crypto_interests if s.strip()}),
            "investor_type": self.investor_type.value if self.investor_type else None,
            "content": sorted({p.value for p in self.content_preferences}),
        }
        raw = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.md5(raw.encode("utf-8")).hexdigest()[:16]


# ----------------------------
# Provider outcome + dashboard
# ----------------------------

T = TypeVar("T")


@dataclass
class ProviderResult(Generic[T]):
    """Live data or the provider's static fallback; never an error shape."""

    value: T
    source: DataSource
    provider: str
    error: Optional[str] = None

    @property
    def is_fallback(self) -> bool:
        return self.source is DataSource.FALLBACK

    @classmethod
    def live(cls, provider: str, value: T) -> "ProviderResult[T]":
        return cls(value=value, source=DataSource.LIVE, provider=provider)

    @classmethod
    def fallback(cls, provider: str, value: T, error: Optional[str] = None) -> "ProviderResult[T]":
        return cls(value=value, source=DataSource.FALLBACK, provider=provider, error=error)


class AggregatedDashboard(BaseModel):
    market_overview: MarketOverview
    trending_coins: List[CoinData]
    top_gainers: List[CoinData]
    coin_prices: List[CoinData]
    news: List[NewsItem]
    ai_insight: AIInsight
    meme: Meme
    sources: Dict[str, DataSource] = Field(default_factory=dict)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DashboardResponse(BaseModel):
    message: str
    data: AggregatedDashboard


__all__ = [
    "DataSource",
    "InvestorType",
    "ContentPreference",
    "InsightType",
    "MemeCategory",
    "NewsFilter",
    "NewsKind",
    "Sparkline",
    "CoinData",
    "MarketOverview",
    "PriceHistory",
    "NewsItem",
    "AIInsight",
    "Meme",
    "UserPreferenceSummary",
    "ProviderResult",
    "AggregatedDashboard",
    "DashboardResponse",
]
