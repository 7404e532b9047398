"""
Shared pytest fixtures for the provider layer tests.

Nothing here touches the network or sleeps in real time: provider clients get
a ``FakeSession`` that answers from canned routes and a ``FakeClock`` whose
``sleep`` just advances time.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from cryptodash.config import ProviderSettings
from cryptodash.rate_limiter import RateLimiter

INVALID_JSON = object()


# ============================================================================
# Clock
# ============================================================================

class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


# ============================================================================
# aiohttp stand-ins
# ============================================================================

class FakeResponse:
    def __init__(self, payload: Any = None, status: int = 200, headers: Optional[Dict[str, str]] = None):
        self.payload = payload
        self.status = status
        self.headers = headers or {}

    async def json(self, content_type=None):
        if self.payload is INVALID_JSON:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self.payload

    async def text(self):
        return str(self.payload)


class _RequestContext:
    def __init__(self, outcome: Any):
        self.outcome = outcome

    async def __aenter__(self):
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Answers ``session.request`` from routes registered with ``add``.

    Each route holds a queue of outcomes (``FakeResponse`` or an exception);
    the last outcome repeats once the queue is drained.
    """

    def __init__(self):
        self.routes: List[Dict[str, Any]] = []
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def add(self, method: str, url_part: str, *outcomes: Any) -> "FakeSession":
        self.routes.append({"method": method.upper(), "url_part": url_part, "outcomes": list(outcomes)})
        return self

    def request(self, method: str, url: str, **kwargs: Any) -> _RequestContext:
        self.calls.append({"method": method.upper(), "url": url, **kwargs})
        for route in self.routes:
            if route["method"] == method.upper() and route["url_part"] in url:
                outcomes = route["outcomes"]
                outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
                return _RequestContext(outcome)
        return _RequestContext(FakeResponse({"error": "no route"}, status=404))

    def calls_to(self, url_part: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if url_part in c["url"]]

    async def close(self):
        self.closed = True


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def make_settings():
    def _make(name: str, **overrides: Any) -> ProviderSettings:
        base = {
            "coingecko": dict(base_url="https://cg.test/api/v3"),
            "cryptopanic": dict(base_url="https://cp.test/api/developer/v2", api_key="cp-secret"),
            "openrouter": dict(base_url="https://or.test/api/v1", api_key="or-secret",
                               options={"model": "test/model"}),
            "reddit": dict(base_url="https://oauth.reddit.test", client_id="rid", client_secret="rsecret",
                           options={"auth_url": "https://www.reddit.test/api/v1/access_token",
                                    "user_agent": "test-agent",
                                    "subreddits": ["cryptocurrencymemes", "bitcoinmemes", "cryptomemes"]}),
        }[name]
        base.update(overrides)
        base.setdefault("max_calls", 100)
        base.setdefault("window_seconds", 60.0)
        return ProviderSettings(name=name, **base)

    return _make


@pytest.fixture
def make_client(session, clock, make_settings):
    """Build a provider client wired to the fake session and clock."""

    def _make(cls, name: str, settings: Optional[ProviderSettings] = None, **kwargs: Any):
        settings = settings or make_settings(name)
        limiter = kwargs.pop("rate_limiter", None) or RateLimiter(
            settings.max_calls, settings.window_seconds, name=name, clock=clock, sleep=clock.sleep
        )
        return cls(settings, session=session, clock=clock, rate_limiter=limiter, **kwargs)

    return _make


# ============================================================================
# Canned upstream payloads
# ============================================================================

def market_coin(coin_id: str = "bitcoin", symbol: str = "btc", name: str = "Bitcoin", **extra: Any) -> Dict[str, Any]:
    coin = {
        "id": coin_id,
        "symbol": symbol,
        "name": name,
        "image": f"https://img.test/{coin_id}.png",
        "current_price": 43250.5,
        "market_cap": 845000000000,
        "market_cap_rank": 1,
        "total_volume": 25000000000,
        "high_24h": 44000.0,
        "low_24h": 42000.0,
        "price_change_24h": 1200.0,
        "price_change_percentage_24h": 2.85,
        "ath": 69000,
        "roi": None,
    }
    coin.update(extra)
    return coin


@pytest.fixture
def markets_payload():
    return [
        market_coin(price_change_percentage_1h_in_currency=0.4, price_change_percentage_7d_in_currency=5.1,
                    sparkline_in_7d={"price": [42000.0, 42500.0, 43250.5]}),
        market_coin("ethereum", "eth", "Ethereum", current_price=2300.1, market_cap_rank=2),
        # a young asset with no 1h/7d history
        market_coin("newcoin", "new", "New Coin", market_cap_rank=900, price_change_percentage_24h=None),
    ]


@pytest.fixture
def global_payload():
    return {
        "data": {
            "total_market_cap": {"usd": 1.65e12, "eur": 1.5e12},
            "total_volume": {"usd": 6.1e10, "usd_24h_change": -3.2},
            "market_cap_change_percentage_24h_usd": 1.9,
        }
    }


@pytest.fixture
def cryptopanic_payload():
    return {
        "count": 2,
        "next": None,
        "previous": None,
        "results": [
            {
                "id": 101,
                "slug": "bitcoin-breaks-record-high",
                "title": "Bitcoin breaks record high",
                "description": "Markets rally",
                "published_at": "2024-03-14T10:00:00Z",
                "created_at": "2024-03-14T10:00:00Z",
                "kind": "news",
                "source": {"title": "CoinDesk", "region": "en", "domain": "coindesk.com", "type": "feed"},
                "instruments": [{"code": "BTC", "title": "Bitcoin", "slug": "bitcoin", "url": "https://cp.test/btc"}],
            },
            {
                "id": 102,
                "slug": "decrypt-sec-delays-ethereum-etf",
                "title": "SEC delays Ethereum ETF decision",
                "description": "Regulation talk weighs on price",
                "published_at": "2024-03-14T09:30:00Z",
                "created_at": "2024-03-14T09:30:00Z",
                "kind": "news",
            },
        ],
    }


def reddit_child(post_id: str, title: str, score: int = 100, subreddit: str = "cryptocurrencymemes", **extra: Any):
    data = {
        "id": post_id,
        "title": title,
        "url": f"https://i.redd.it/{post_id}.jpg",
        "author": "hodler42",
        "subreddit": subreddit,
        "score": score,
        "created_utc": 1710400000.0,
        "permalink": f"/r/{subreddit}/comments/{post_id}/",
        "is_video": False,
        "thumbnail": "https://b.thumbs.redditmedia.com/x.jpg",
        "post_hint": "image",
        "preview": {"images": [{"source": {"url": f"https://preview.redd.it/{post_id}.jpg?width=640&amp;s=abc",
                                          "width": 640, "height": 480}}]},
    }
    data.update(extra)
    return {"kind": "t3", "data": data}


def reddit_listing(*children):
    return {"kind": "Listing", "data": {"children": list(children), "after": None, "before": None}}


def token_payload(token: str = "tok-1", expires_in: int = 3600):
    return {"access_token": token, "token_type": "bearer", "expires_in": expires_in, "scope": "*"}
