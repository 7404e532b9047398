"""OpenRouter chat-completion client for the daily market insight."""
from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..cache import make_cache_key
from ..errors import ProviderError, ProviderResponseError
from ..schemas import AIInsight, InsightType, ProviderResult, UserPreferenceSummary
from .base import ProviderClient

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "google/gemini-2.5-flash-image-preview:free"
MAX_TOKENS = 150
TEMPERATURE = 0.7
LIVE_CONFIDENCE = 0.85
FALLBACK_CONFIDENCE = 0.5

SYSTEM_PROMPT = (
    "You are a knowledgeable cryptocurrency market analyst. Provide concise, accurate, "
    "and helpful insights about the crypto market. Focus on current trends and practical advice."
)
BASE_PROMPT = (
    "Provide a brief, insightful analysis of the current cryptocurrency market. Focus on key "
    "trends, notable movements, and actionable insights for crypto investors. Keep it concise "
    "(2-3 sentences) and engaging."
)
FALLBACK_CONTENT = (
    "The crypto market continues to show dynamic movements with Bitcoin maintaining its position "
    "as the leading cryptocurrency. Market sentiment appears mixed as investors navigate regulatory "
    "developments and technological advancements."
)


def _humanize(label: str) -> str:
    return label.lower().replace("_", " ")


def build_prompt(prefs: Optional[UserPreferenceSummary]) -> str:
    prompt = BASE_PROMPT
    if prefs is None:
        return prompt
    if prefs.crypto_interests:
        prompt += f" The user is particularly interested in: {', '.join(prefs.crypto_interests)}."
    if prefs.investor_type:
        prompt += f" They identify as a {_humanize(prefs.investor_type.value)}."
    if prefs.content_preferences:
        focus = ", ".join(_humanize(p.value) for p in prefs.content_preferences)
        prompt += f" They prefer content focused on: {focus}."
    return prompt


def fallback_insight(now: Optional[datetime] = None) -> AIInsight:
    now = now or datetime.now(timezone.utc)
    return AIInsight(
        id=f"fallback_{int(now.timestamp() * 1000)}",
        content=FALLBACK_CONTENT,
        type=InsightType.MARKET_ANALYSIS,
        confidence=FALLBACK_CONFIDENCE,
        created_at=now,
    )


class OpenRouterClient(ProviderClient):
    name = "openrouter"
    status_messages = {
        429: "AI service rate limit exceeded. Please try again later.",
        401: "AI service authentication failed",
        402: "AI service temporarily unavailable",
    }

    def __init__(self, settings, *, referer: str = "http://localhost:3000",
                 wall_clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc), **kwargs: Any):
        super().__init__(settings, **kwargs)
        self.referer = referer
        self.wall_clock = wall_clock

    @property
    def model(self) -> str:
        return self.settings.options.get("model") or DEFAULT_MODEL

    def default_headers(self) -> Dict[str, str]:
        headers = super().default_headers()
        headers.update({
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.settings.api_key}",
            "HTTP-Referer": self.referer,
            "X-Title": "Crypto Dashboard",
        })
        return headers

    def insight_cache_key(self, prefs: Optional[UserPreferenceSummary]) -> str:
        day = self.wall_clock().date().isoformat()
        signature = prefs.signature() if prefs is not None else "default"
        return make_cache_key("ai_insight", day=day, prefs=signature)

    async def generate_insight(self, prefs: Optional[UserPreferenceSummary] = None) -> AIInsight:
        """One insight per calendar day per preference signature."""

        async def load():
            body = {
                "model": self.model,
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_prompt(prefs)},
                ],
                "max_tokens": MAX_TOKENS,
                "temperature": TEMPERATURE,
            }
            started = time.perf_counter()
            payload = await self._request("POST", f"{self.settings.base_url}/chat/completions", json_body=body)
            try:
                content = payload["choices"][0]["message"]["content"]
            except (KeyError, IndexError, TypeError):
                content = None
            if not isinstance(content, str) or not content.strip():
                raise ProviderResponseError(self.name, "No content generated from AI model")
            now = self.wall_clock()
            logger.info("AI insight generated in %.2fs", time.perf_counter() - started)
            return AIInsight(
                id=f"insight_{uuid.uuid4().hex[:12]}",
                content=content.strip(),
                type=InsightType.MARKET_ANALYSIS,
                confidence=LIVE_CONFIDENCE,
                created_at=now,
            )

        return await self._cached(self.insight_cache_key(prefs), self.settings.ttl("insight", 86400), load)

    async def get_insight(self, prefs: Optional[UserPreferenceSummary] = None) -> ProviderResult[AIInsight]:
        return await self._guard("insight", lambda: self.generate_insight(prefs), lambda: fallback_insight(self.wall_clock()))

    async def fetch_key_status(self) -> Dict[str, Any]:
        self._ensure_enabled()
        payload = await self._request("GET", f"{self.settings.base_url}/key")
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise ProviderResponseError(self.name, "key status payload has no 'data' object")
        return {
            "is_valid": True,
            "usage": data.get("usage"),
            "limit": data.get("limit"),
            "is_free_tier": data.get("is_free_tier"),
        }

    async def check_key_status(self) -> Dict[str, Any]:
        try:
            return await self.fetch_key_status()
        except ProviderError as exc:
            logger.error("Failed to check API key status: %s", exc.message)
            return {"is_valid": False, "error": exc.message}


__all__ = ["OpenRouterClient", "build_prompt", "fallback_insight", "FALLBACK_CONTENT", "SYSTEM_PROMPT"]
