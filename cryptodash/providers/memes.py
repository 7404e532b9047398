"""Meme selection: Reddit first, then the curated collection.

Curated memes are static content, so results drawn from them are tagged as
fallback data; only memes converted from live Reddit posts count as live.
"""
from __future__ import annotations

import logging
import random
import time
from typing import Any, Dict, Iterable, List, Optional, Union

from ..errors import ProviderDisabledError, ProviderError
from ..schemas import Meme, MemeCategory, ProviderResult
from .reddit import RedditClient, RedditPost

logger = logging.getLogger(__name__)

CURATED_SOURCE = "CryptoMemes.com"
_IMG = "https://images.unsplash.com/photo-{}?w=400&h=300&fit=crop&crop=center"

CURATED_MEMES: List[Dict[str, Any]] = [
    {"id": "hodl-1", "title": "HODL the Line! 💎🙌", "photo": "1639762681485-074b7f938ba0",
     "tags": ["HODL", "BTC", "DIAMOND_HANDS"], "description": "When the market dips but you stay strong", "category": "HODL"},
    {"id": "pump-1", "title": "To The Moon! 🚀", "photo": "1446776811953-b23d57bd21aa",
     "tags": ["PUMP", "MOON", "LAMBO"], "description": "Every crypto trader's dream", "category": "PUMP"},
    {"id": "fomo-1", "title": "FOMO is Real 😰", "photo": "1551288049-bebda4e38f71",
     "tags": ["FOMO", "PANIC", "BUY"], "description": "When you see everyone else making money", "category": "FOMO"},
    {"id": "dump-1", "title": "Paper Hands 📄", "photo": "1589820296150-ecf34d9c2e6a",
     "tags": ["DUMP", "PAPER_HANDS", "SELL"], "description": "Selling at the first sign of trouble", "category": "DUMP"},
    {"id": "fud-1", "title": "FUD Spreaders 🤡", "photo": "1518709268805-4e9042af2176",
     "tags": ["FUD", "BEAR", "NEGATIVE"], "description": "Spreading fear, uncertainty, and doubt", "category": "FUD"},
    {"id": "whale-1", "title": "Whale Watching 🐋", "photo": "1578662996442-48f60103fc96",
     "tags": ["WHALE", "BIG_MONEY", "MOVEMENT"], "description": "Following the big players", "category": "GENERAL"},
    {"id": "diamond-1", "title": "Diamond Hands 💎", "photo": "1606107557195-0e29a4b5b4aa",
     "tags": ["DIAMOND_HANDS", "HODL", "STRONG"], "description": "Unbreakable conviction", "category": "HODL"},
    {"id": "lambo-1", "title": "Lambo Dreams 🏎️", "photo": "1549317661-bd32c8ce0db2",
     "tags": ["LAMBO", "DREAMS", "RICH"], "description": "The ultimate crypto goal", "category": "PUMP"},
    {"id": "bear-1", "title": "Bear Market Blues 🐻", "photo": "1611974789855-9c2a0a7236a3",
     "tags": ["BEAR", "DOWN", "SAD"], "description": "When everything is red", "category": "DUMP"},
    {"id": "bull-1", "title": "Bull Run Energy 🐂", "photo": "1578662996442-48f60103fc96",
     "tags": ["BULL", "UP", "ENERGY"], "description": "Unstoppable upward momentum", "category": "PUMP"},
    {"id": "satoshi-1", "title": "Satoshi's Vision 👁️", "photo": "1639762681485-074b7f938ba0",
     "tags": ["SATOSHI", "BTC", "VISION"], "description": "The original crypto dream", "category": "GENERAL"},
    {"id": "altcoin-1", "title": "Altcoin Season 🌈", "photo": "1551288049-bebda4e38f71",
     "tags": ["ALTCOIN", "SEASON", "COLORS"], "description": "When alts start pumping", "category": "PUMP"},
    {"id": "degen-1", "title": "Degen Life 🎰", "photo": "1589820296150-ecf34d9c2e6a",
     "tags": ["DEGEN", "GAMBLE", "RISK"], "description": "Living on the edge", "category": "GENERAL"},
    {"id": "stack-1", "title": "Stack Sats 📚", "photo": "1518709268805-4e9042af2176",
     "tags": ["STACK", "SATS", "DCA"], "description": "Dollar cost averaging like a pro", "category": "HODL"},
    {"id": "moon-1", "title": "Moon Mission 🌙", "photo": "1446776811953-b23d57bd21aa",
     "tags": ["MOON", "MISSION", "SPACE"], "description": "Next stop: the moon!", "category": "PUMP"},
]

TITLE_TAGS = [
    "BTC", "ETH", "HODL", "MOON", "PUMP", "DUMP", "FOMO", "FUD",
    "DIAMOND", "PAPER", "WHALE", "BULL", "BEAR", "LAMBO", "SATOSHI",
]


def curated_memes() -> List[Meme]:
    return [
        Meme(id=m["id"], title=m["title"], url=_IMG.format(m["photo"]), source=CURATED_SOURCE,
             tags=list(m["tags"]), description=m["description"], category=MemeCategory(m["category"]))
        for m in CURATED_MEMES
    ]


def fallback_meme() -> Meme:
    return Meme(
        id="fallback-1",
        title="Crypto Life 🚀",
        url=_IMG.format("1639762681485-074b7f938ba0"),
        source=CURATED_SOURCE,
        tags=["CRYPTO", "LIFE", "FUN"],
        description="The crypto journey continues...",
        category=MemeCategory.GENERAL,
    )


def tags_from_title(title: str) -> List[str]:
    upper = title.upper()
    return [tag for tag in TITLE_TAGS if tag in upper]


def categorize(title: str, tags: Iterable[str]) -> MemeCategory:
    upper = title.upper()
    tags = set(tags)
    if "HODL" in tags or "HOLD" in upper or "DIAMOND" in upper:
        return MemeCategory.HODL
    if "PUMP" in tags or "MOON" in upper or "LAMBO" in upper:
        return MemeCategory.PUMP
    if "DUMP" in tags or "BEAR" in upper or "PAPER" in upper:
        return MemeCategory.DUMP
    if "FOMO" in tags or "FOMO" in upper:
        return MemeCategory.FOMO
    if "FUD" in tags or "FUD" in upper:
        return MemeCategory.FUD
    return MemeCategory.GENERAL


def meme_from_post(post: RedditPost) -> Meme:
    tags = tags_from_title(post.title)
    tags.append(post.subreddit.upper())
    return Meme(
        id=f"reddit-{post.id}",
        title=post.title,
        url=post.preview_url() or post.url.replace("&amp;", "&"),
        source=f"r/{post.subreddit} by u/{post.author}",
        tags=tags,
        description=f"Reddit meme with {post.score} upvotes",
        category=categorize(post.title, tags),
    )


def _normalize_tags(tags: Iterable[str]) -> List[str]:
    return [t.strip().upper() for t in tags if t and t.strip()]


class MemeProvider:
    name = "memes"

    def __init__(self, reddit: Optional[RedditClient] = None, *, rng: Optional[random.Random] = None):
        self.reddit = reddit
        self.rng = rng or random.Random()
        self._memes: Dict[str, Meme] = {m.id: m for m in curated_memes()}
        self.last_refresh = time.time()
        logger.info("Initialized meme collection with %d memes", len(self._memes))

    async def _reddit_candidates(self, limit: int = 5, trending: bool = False) -> List[Meme]:
        if self.reddit is None or not self.reddit.has_credentials():
            return []
        try:
            if trending:
                posts = await self.reddit.fetch_trending_memes(limit)
            else:
                posts = await self.reddit.fetch_crypto_memes(limit)
        except ProviderDisabledError as exc:
            logger.debug("Reddit is fallback-only, serving curated memes: %s", exc.message)
            return []
        except ProviderError as exc:
            logger.warning("Reddit meme fetch failed, falling back to curated memes: %s", exc.message)
            return []
        return [meme_from_post(p) for p in posts]

    def _curated(self, category: Optional[MemeCategory] = None, tags: Optional[List[str]] = None) -> List[Meme]:
        memes = list(self._memes.values())
        if category is not None:
            memes = [m for m in memes if m.category is category]
        if tags:
            wanted = set(tags)
            memes = [m for m in memes if wanted.intersection(m.tags)]
        return memes

    async def get_random_meme(self) -> ProviderResult[Meme]:
        try:
            candidates = await self._reddit_candidates(5)
            if candidates:
                meme = self.rng.choice(candidates)
                logger.info("Retrieved Reddit meme %s", meme.id)
                return ProviderResult.live("reddit", meme)
            meme = self.rng.choice(self._curated())
            logger.info("Retrieved curated meme %s", meme.id)
            return ProviderResult.fallback(self.name, meme)
        except Exception as exc:
            logger.exception("Error getting random meme")
            return ProviderResult.fallback(self.name, fallback_meme(), repr(exc))

    async def get_meme_by_category(self, category: Union[MemeCategory, str]) -> ProviderResult[Meme]:
        category = MemeCategory(category)
        matches = self._curated(category=category)
        if not matches:
            logger.warning("No memes found for category: %s, returning random meme", category.value)
            return await self.get_random_meme()
        meme = self.rng.choice(matches)
        logger.info("Retrieved meme %s for category %s", meme.id, category.value)
        return ProviderResult.fallback(self.name, meme)

    async def get_meme_by_tags(self, tags: Iterable[str]) -> ProviderResult[Meme]:
        """Prefer a live Reddit meme sharing a tag, then a curated one, then any meme."""
        wanted = _normalize_tags(tags)
        if not wanted:
            return await self.get_random_meme()
        try:
            live = [m for m in await self._reddit_candidates(10, trending=True) if set(wanted).intersection(m.tags)]
            if live:
                return ProviderResult.live("reddit", self.rng.choice(live))
            matches = self._curated(tags=wanted)
        except Exception as exc:
            logger.exception("Error getting meme by tags")
            return ProviderResult.fallback(self.name, fallback_meme(), repr(exc))
        if not matches:
            logger.warning("No memes found for tags: %s, returning random meme", ", ".join(wanted))
            return await self.get_random_meme()
        return ProviderResult.fallback(self.name, self.rng.choice(matches))

    def cache_stats(self) -> Dict[str, Any]:
        categories = sorted({m.category.value for m in self._memes.values()})
        return {"size": len(self._memes), "last_refresh": self.last_refresh, "categories": categories}

    async def close(self) -> None:
        if self.reddit is not None:
            await self.reddit.close()


__all__ = [
    "MemeProvider",
    "CURATED_MEMES",
    "curated_memes",
    "fallback_meme",
    "meme_from_post",
    "categorize",
    "tags_from_title",
]
