"""
Tests for the FastAPI routes, wired to provider clients over the fake session.
"""

import logging
import random

import pytest
from fastapi.testclient import TestClient

from cryptodash.aggregator import DashboardServices
from cryptodash.api import create_app, parse_preferences
from cryptodash.config import load_settings
from cryptodash.providers.coingecko import CoinGeckoClient
from cryptodash.providers.cryptopanic import CryptoPanicClient
from cryptodash.providers.memes import MemeProvider
from cryptodash.providers.openrouter import OpenRouterClient
from cryptodash.providers.reddit import RedditClient
from cryptodash.schemas import InvestorType

from .conftest import FakeResponse

FIELDS = {"market_overview", "trending_coins", "top_gainers", "coin_prices", "news", "ai_insight", "meme"}


@pytest.fixture
def services(make_client, make_settings):
    reddit = make_client(RedditClient, "reddit", make_settings("reddit", client_id=None))
    return DashboardServices(
        coingecko=make_client(CoinGeckoClient, "coingecko"),
        cryptopanic=make_client(CryptoPanicClient, "cryptopanic"),
        openrouter=make_client(OpenRouterClient, "openrouter"),
        reddit=reddit,
        memes=MemeProvider(reddit, rng=random.Random(2)),
    )


@pytest.fixture
def client(services):
    with TestClient(create_app(services, load_settings(env={}))) as test_client:
        yield test_client


class TestDashboard:

    @pytest.mark.unit
    def test_snapshot_is_complete_when_every_upstream_fails(self, client):
        response = client.get("/api/dashboard")

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Dashboard data retrieved successfully"
        data = body["data"]
        assert FIELDS <= set(data)
        assert data["sources"] == {field: "fallback" for field in FIELDS}
        assert data["coin_prices"][0]["symbol"] == "BTC"

    @pytest.mark.unit
    def test_live_field_is_reported(self, client, session, markets_payload):
        session.add("GET", "/coins/markets", FakeResponse(markets_payload))

        data = client.get("/api/dashboard").json()["data"]

        assert data["sources"]["coin_prices"] == "live"
        assert data["sources"]["news"] == "fallback"

    @pytest.mark.unit
    def test_preferences_are_parsed(self, client, session, cryptopanic_payload):
        session.add("GET", "/posts/", FakeResponse(cryptopanic_payload))

        response = client.get("/api/dashboard", params={
            "interests": "btc, eth", "investor_type": "day_trader", "content_preferences": "fun",
        })

        assert response.status_code == 200
        assert session.calls_to("/posts/")[0]["params"]["currencies"] == "BTC,ETH"

    @pytest.mark.unit
    def test_invalid_investor_type(self, client):
        response = client.get("/api/dashboard", params={"investor_type": "WHALE"})

        assert response.status_code == 422
        assert "Invalid preferences" in response.json()["error"]

    @pytest.mark.unit
    def test_parse_preferences(self):
        prefs = parse_preferences("sol,,btc ", "hodler", None)

        assert prefs.crypto_interests == ["SOL", "BTC"]
        assert prefs.investor_type is InvestorType.HODLER
        assert prefs.content_preferences == []


class TestFieldRoutes:

    @pytest.mark.unit
    def test_news_fallback(self, client):
        body = client.get("/api/dashboard/news", params={"limit": 2}).json()

        assert body["source"] == "fallback"
        assert len(body["data"]) == 2

    @pytest.mark.unit
    def test_news_rejects_unknown_filter(self, client):
        assert client.get("/api/dashboard/news", params={"filter": "spicy"}).status_code == 422

    @pytest.mark.unit
    def test_chart_data(self, client, session):
        session.add("GET", "/market_chart", FakeResponse({"prices": [[1.0, 2.0]], "market_caps": [], "total_volumes": []}))

        body = client.get("/api/dashboard/chart-data/bitcoin", params={"days": 30}).json()

        assert body["source"] == "live"
        assert body["data"]["coin_id"] == "bitcoin"
        assert session.calls[0]["params"]["days"] == "30"

    @pytest.mark.unit
    def test_meme_by_category(self, client):
        body = client.get("/api/dashboard/meme", params={"category": "HODL"}).json()

        assert body["data"]["category"] == "HODL"
        assert body["source"] == "fallback"

    @pytest.mark.unit
    def test_ai_insight_fallback(self, client, session):
        session.add("POST", "/chat/completions", FakeResponse(status=429))

        body = client.get("/api/dashboard/ai-insight").json()

        assert body["source"] == "fallback"
        assert body["data"]["confidence"] == 0.5


class TestDiagnostics:

    @pytest.mark.unit
    def test_coingecko_reachable(self, client, session, markets_payload):
        session.add("GET", "/ping", FakeResponse({"gecko_says": "(V3) To the Moon!"}))
        session.add("GET", "/coins/markets", FakeResponse(markets_payload))

        body = client.get("/api/dashboard/test-coingecko").json()

        assert body["message"] == "CoinGecko API is reachable"
        assert len(body["sample"]) == 3
        assert body["rate_limiter"]["max_calls"] == 100

    @pytest.mark.unit
    def test_coingecko_failure_is_502(self, client, session):
        session.add("GET", "/ping", FakeResponse(status=500))

        response = client.get("/api/dashboard/test-coingecko")

        assert response.status_code == 502
        assert response.json()["provider"] == "coingecko"
        assert response.json()["status"] == 500

    @pytest.mark.unit
    def test_cryptopanic(self, client, session, cryptopanic_payload):
        session.add("GET", "/posts/", FakeResponse(cryptopanic_payload))

        body = client.get("/api/dashboard/test-cryptopanic").json()

        assert body["count"] == 2
        assert body["cache"]["size"] == 1

    @pytest.mark.unit
    def test_reddit_status_without_credentials(self, client):
        body = client.get("/api/dashboard/reddit-status").json()

        assert body["data"]["configured"] is False
        assert body["data"]["fallback_only"] is True

    @pytest.mark.unit
    def test_reddit_check_without_credentials_is_502(self, client):
        assert client.get("/api/dashboard/reddit-status", params={"check": "true"}).status_code == 502

    @pytest.mark.unit
    def test_openrouter_status(self, client, session):
        session.add("GET", "/key", FakeResponse({"data": {"usage": 1.5, "limit": 10, "is_free_tier": False}}))

        body = client.get("/api/dashboard/openrouter-status").json()

        assert body["data"]["is_valid"] is True
        assert body["data"]["limit"] == 10

    @pytest.mark.unit
    def test_cache_diagnostics(self, client):
        client.get("/api/dashboard")

        body = client.get("/api/diagnostics/cache").json()

        assert set(body["data"]) == {"coingecko", "cryptopanic", "openrouter", "reddit", "memes"}
        assert body["data"]["memes"]["size"] == 15
        assert body["providers"]["coingecko"]["upstream_calls"] > 0


class TestServiceRoutes:

    @pytest.mark.unit
    def test_unknown_route(self, client):
        response = client.get("/api/nope")

        assert response.status_code == 404
        assert response.json() == {"error": "Route not found"}

    @pytest.mark.unit
    def test_health_ok(self, client, session):
        session.add("GET", "/ping", FakeResponse({"gecko_says": "ok"}))

        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "OK"
        assert body["services"]["reddit"] == "fallback-only"
        assert body["services"]["cryptopanic"] == "configured"

    @pytest.mark.unit
    def test_health_degraded(self, client, session):
        session.add("GET", "/ping", FakeResponse(status=503))

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["services"]["coingecko"] == "down"

    @pytest.mark.unit
    def test_metrics(self, client):
        client.get("/api/dashboard")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "# TYPE provider_coingecko_upstream_calls_total counter" in response.text
        assert "provider_reddit_fallback_only 1" in response.text
        assert "dashboard_snapshots_total 1" in response.text
        assert "dashboard_degraded_fields_total 7" in response.text

    @pytest.mark.unit
    def test_request_id_is_echoed(self, client):
        response = client.get("/api/dashboard/meme", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    @pytest.mark.unit
    def test_request_id_is_generated(self, client):
        response = client.get("/api/dashboard/meme")
        assert len(response.headers["X-Request-ID"]) == 32

    @pytest.mark.unit
    def test_injected_services_are_not_closed(self, services, session):
        with TestClient(create_app(services)):
            pass
        assert session.closed is False


CONFIG_WITH_ORIGIN = """
server:
  cors_origin: "https://dash.example"
logging:
  dir: ""
providers:
  coingecko: {base_url: "https://cg.test/api/v3"}
  cryptopanic: {base_url: "https://cp.test/api/developer/v2"}
  openrouter: {base_url: "https://or.test/api/v1"}
  reddit: {base_url: "https://oauth.reddit.test"}
"""


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "dashboard.yaml"
    path.write_text(CONFIG_WITH_ORIGIN)
    monkeypatch.setenv("CRYPTODASH_CONFIG", str(path))
    monkeypatch.delenv("CORS_ORIGIN", raising=False)
    return path


def preflight(test_client, origin):
    return test_client.options("/api/dashboard", headers={"Origin": origin, "Access-Control-Request-Method": "GET"})


class TestCors:

    @pytest.mark.unit
    def test_origin_from_config_file(self, services, config_file):
        with TestClient(create_app(services)) as test_client:
            allowed = preflight(test_client, "https://dash.example")
            refused = preflight(test_client, "https://elsewhere.example")

        assert allowed.status_code == 200
        assert allowed.headers["access-control-allow-origin"] == "https://dash.example"
        assert refused.status_code == 400

    @pytest.mark.unit
    def test_factory_path_shares_config_with_providers(self, config_file):
        root = logging.getLogger()
        saved = (root.handlers[:], root.level)
        try:
            app = create_app()
            with TestClient(app) as test_client:
                response = preflight(test_client, "https://dash.example")
                referer = app.state.services.openrouter.referer
        finally:
            root.handlers, level = saved
            root.setLevel(level)

        assert response.headers["access-control-allow-origin"] == "https://dash.example"
        assert referer == "https://dash.example"


class TestMalformedUpstream:

    @pytest.mark.unit
    def test_cryptopanic_diagnostic_reports_502(self, client, session):
        session.add("GET", "/posts/", FakeResponse({"results": [
            {"id": 1, "title": None, "slug": "s", "published_at": "2024-01-01T00:00:00Z", "source": "CoinDesk"},
        ]}))

        response = client.get("/api/dashboard/test-cryptopanic")

        assert response.status_code == 502
        assert response.json()["provider"] == "cryptopanic"
