"""Reddit client for the meme communities.

Authentication uses the application-only client-credentials grant. The bearer
token is cached and exchanged again only once it has expired::

    UNAUTHENTICATED -> AUTHENTICATING -> AUTHENTICATED(expiry)
          ^                  |                   |
          +---- failure -----+                   +-- expired --> AUTHENTICATING
"""
from __future__ import annotations

import asyncio
import logging
import math
import random
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import aiohttp
from pydantic import BaseModel

from ..cache import make_cache_key
from ..errors import ProviderAuthError, ProviderError, ProviderHTTPError, ProviderResponseError
from .base import ProviderClient

logger = logging.getLogger(__name__)

DEFAULT_SUBREDDITS = ["cryptocurrencymemes", "bitcoinmemes", "cryptomemes"]
DEFAULT_USER_AGENT = "web:cryptodash:v1.0.0"
DEFAULT_AUTH_URL = "https://www.reddit.com/api/v1/access_token"
IMAGE_MARKERS = (".jpg", ".png", ".gif", ".jpeg", "i.redd.it", "imgur.com", "reddit.com/gallery")
BLOCKED_THUMBNAILS = {"nsfw", "default"}


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


class RedditPost(BaseModel):
    id: str
    title: str
    url: Optional[str] = None
    author: str = "[deleted]"
    subreddit: str
    score: int = 0
    created_utc: Optional[float] = None
    permalink: Optional[str] = None
    is_video: bool = False
    thumbnail: Optional[str] = None
    post_hint: Optional[str] = None
    preview: Optional[Dict[str, Any]] = None

    def preview_url(self) -> Optional[str]:
        try:
            url = self.preview["images"][0]["source"]["url"]
        except (KeyError, IndexError, TypeError):
            return None
        return url.replace("&amp;", "&") if isinstance(url, str) else None


def is_image_post(post: RedditPost) -> bool:
    if post.is_video or not post.url:
        return False
    if post.thumbnail in BLOCKED_THUMBNAILS:
        return False
    return post.post_hint == "image" or any(marker in post.url for marker in IMAGE_MARKERS)


class RedditClient(ProviderClient):
    name = "reddit"

    def __init__(self, settings, *, rng: Optional[random.Random] = None, **kwargs: Any):
        super().__init__(settings, **kwargs)
        self.rng = rng or random.Random()
        self.auth_state = AuthState.UNAUTHENTICATED
        self.auth_count = 0
        self._token: Optional[str] = None
        self._token_expiry = 0.0
        self._auth_lock: Optional[asyncio.Lock] = None

    @property
    def subreddits(self) -> List[str]:
        return list(self.settings.options.get("subreddits") or DEFAULT_SUBREDDITS)

    @property
    def user_agent(self) -> str:
        return self.settings.options.get("user_agent") or DEFAULT_USER_AGENT

    @property
    def auth_url(self) -> str:
        return self.settings.options.get("auth_url") or DEFAULT_AUTH_URL

    def has_credentials(self) -> bool:
        return bool(self.settings.client_id and self.settings.client_secret)

    def default_headers(self) -> Dict[str, str]:
        return {"User-Agent": self.user_agent}

    def _raise_for_status(self, status: int, endpoint: str) -> None:
        if endpoint.startswith(self.auth_url):
            return super()._raise_for_status(status, endpoint)
        if status == 401:
            # token revoked upstream; the next call authenticates again
            self._reset_token()
            raise ProviderAuthError(self.name, f"{endpoint} rejected the bearer token", status)
        if status == 403:
            raise ProviderHTTPError(self.name, f"{endpoint} is private or quarantined", status)
        return super()._raise_for_status(status, endpoint)

    # ----------------------------
    # Token state machine
    # ----------------------------

    def _token_valid(self) -> bool:
        return (
            self.auth_state is AuthState.AUTHENTICATED
            and self._token is not None
            and self.clock() < self._token_expiry
        )

    def _reset_token(self) -> None:
        self._token = None
        self._token_expiry = 0.0
        self.auth_state = AuthState.UNAUTHENTICATED

    async def authenticate(self) -> str:
        """Return a valid bearer token, exchanging credentials only when needed."""
        self._ensure_enabled()
        if self._token_valid():
            return self._token
        if self._auth_lock is None:
            self._auth_lock = asyncio.Lock()
        async with self._auth_lock:
            if self._token_valid():
                return self._token
            self.auth_state = AuthState.AUTHENTICATING
            self.auth_count += 1
            logger.info("Authenticating with Reddit API...")
            try:
                payload = await self._request(
                    "POST", self.auth_url,
                    data={"grant_type": "client_credentials"},
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    auth=aiohttp.BasicAuth(self.settings.client_id, self.settings.client_secret),
                )
                token = payload.get("access_token") if isinstance(payload, dict) else None
                expires_in = payload.get("expires_in") if isinstance(payload, dict) else None
                if not token or not isinstance(expires_in, (int, float)):
                    error = payload.get("error") if isinstance(payload, dict) else None
                    if error:
                        self._disable(f"token endpoint answered '{error}'")
                        raise ProviderAuthError(self.name, f"Reddit authentication failed: {error}")
                    raise ProviderResponseError(self.name, "token response missing access_token/expires_in")
            except BaseException:
                self._reset_token()
                logger.error("Reddit authentication failed")
                raise
            self._token = token
            self._token_expiry = self.clock() + float(expires_in)
            self.auth_state = AuthState.AUTHENTICATED
            logger.info("Reddit authentication successful")
            return token

    # ----------------------------
    # Listings
    # ----------------------------

    async def fetch_subreddit_memes(self, subreddit: str, limit: int = 10) -> List[RedditPost]:
        key = make_cache_key("hot", subreddit=subreddit, limit=limit)

        async def load():
            token = await self.authenticate()
            logger.info("Fetching memes from r/%s", subreddit)
            payload = await self._request(
                "GET", f"{self.settings.base_url}/r/{subreddit}/hot.json",
                params={"limit": str(limit)},
                headers={"Authorization": f"Bearer {token}"},
            )
            listing = payload.get("data") if isinstance(payload, dict) else None
            children = listing.get("children") if isinstance(listing, dict) else None
            if not isinstance(children, list):
                raise ProviderResponseError(self.name, f"r/{subreddit} listing has no children")
            posts = [
                self._validate(RedditPost, child.get("data"), "post")
                for child in children if isinstance(child, dict)
            ]
            images = [p for p in posts if is_image_post(p)][:limit]
            logger.info("Retrieved %d memes from r/%s", len(images), subreddit)
            return images

        return await self._cached(key, self.settings.ttl("hot", 300), load)

    async def fetch_crypto_memes(self, limit: int = 10) -> List[RedditPost]:
        return await self.fetch_subreddit_memes(self.rng.choice(self.subreddits), limit)

    async def fetch_trending_memes(self, limit: int = 10) -> List[RedditPost]:
        """Best-scored image posts across every community that answered."""
        communities = self.subreddits
        per_community = math.ceil(limit / len(communities))
        results = await asyncio.gather(
            *(self.fetch_subreddit_memes(sub, per_community) for sub in communities),
            return_exceptions=True,
        )
        posts: List[RedditPost] = []
        errors: List[BaseException] = []
        for sub, result in zip(communities, results):
            if isinstance(result, BaseException):
                if not isinstance(result, ProviderError):
                    raise result
                logger.warning("Failed to fetch from r/%s: %s", sub, result.message)
                errors.append(result)
                continue
            posts.extend(result)
        if errors and len(errors) == len(communities):
            raise errors[0]
        posts.sort(key=lambda p: p.score, reverse=True)
        logger.info("Retrieved %d trending memes from %d communities", len(posts[:limit]), len(communities))
        return posts[:limit]

    def status(self) -> Dict[str, Any]:
        authenticated = self._token_valid()
        expiry = None
        if self._token is not None:
            remaining = self._token_expiry - self.clock()
            expiry = (datetime.now(timezone.utc) + timedelta(seconds=remaining)).isoformat()
        return {
            "configured": self.has_credentials(),
            "authenticated": authenticated,
            "state": self.auth_state.value,
            "token_expiry": expiry,
            "fallback_only": self.fallback_only,
        }


__all__ = ["RedditClient", "RedditPost", "AuthState", "is_image_post"]
