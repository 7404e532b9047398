"""
Tests for the Reddit client and its token state machine.
"""

import asyncio
import random

import aiohttp
import pytest

from cryptodash.errors import ProviderAuthError, ProviderDisabledError, ProviderHTTPError, ProviderResponseError
from cryptodash.providers.reddit import AuthState, RedditClient, RedditPost, is_image_post

from .conftest import FakeResponse, reddit_child, reddit_listing, token_payload

TOKEN_URL = "access_token"


def hot(sub):
    return f"/r/{sub}/hot.json"


@pytest.fixture
def client(make_client):
    return make_client(RedditClient, "reddit", rng=random.Random(7))


class TestImageFilter:

    @pytest.mark.unit
    @pytest.mark.parametrize("overrides,expected", [
        ({}, True),
        ({"post_hint": None, "url": "https://imgur.com/abc"}, True),
        ({"post_hint": None, "url": "https://www.reddit.com/gallery/xyz"}, True),
        ({"is_video": True}, False),
        ({"url": None}, False),
        ({"thumbnail": "nsfw"}, False),
        ({"thumbnail": "default"}, False),
        ({"post_hint": "self", "url": "https://www.reddit.com/r/x/comments/1/"}, False),
    ])
    def test_is_image_post(self, overrides, expected):
        post = RedditPost.model_validate(reddit_child("p1", "Title", **overrides)["data"])
        assert is_image_post(post) is expected

    @pytest.mark.unit
    def test_preview_url_is_unescaped(self):
        post = RedditPost.model_validate(reddit_child("p1", "Title")["data"])
        assert post.preview_url() == "https://preview.redd.it/p1.jpg?width=640&s=abc"


class TestTokenStateMachine:

    @pytest.mark.unit
    async def test_first_fetch_authenticates(self, client, session):
        session.add("POST", TOKEN_URL, FakeResponse(token_payload("tok-1")))
        session.add("GET", hot("bitcoinmemes"), FakeResponse(reddit_listing(reddit_child("a", "HODL", subreddit="bitcoinmemes"))))
        assert client.auth_state is AuthState.UNAUTHENTICATED

        posts = await client.fetch_subreddit_memes("bitcoinmemes", 5)

        assert [p.id for p in posts] == ["a"]
        assert client.auth_state is AuthState.AUTHENTICATED
        auth_call, listing_call = session.calls
        assert auth_call["auth"] == aiohttp.BasicAuth("rid", "rsecret")
        assert auth_call["data"] == {"grant_type": "client_credentials"}
        assert auth_call["headers"]["User-Agent"] == "test-agent"
        assert listing_call["headers"]["Authorization"] == "Bearer tok-1"
        assert listing_call["params"] == {"limit": "5"}

    @pytest.mark.unit
    async def test_valid_token_is_reused(self, client, session):
        session.add("POST", TOKEN_URL, FakeResponse(token_payload("tok-1")))
        session.add("GET", "/hot.json", FakeResponse(reddit_listing(reddit_child("a", "meme"))))

        await client.fetch_subreddit_memes("cryptomemes", 5)
        await client.fetch_subreddit_memes("bitcoinmemes", 5)

        assert client.auth_count == 1
        assert len(session.calls_to(TOKEN_URL)) == 1

    @pytest.mark.unit
    async def test_expired_token_triggers_exactly_one_reauth_before_fetch(self, client, session, clock):
        session.add("POST", TOKEN_URL, FakeResponse(token_payload("tok-1", 3600)), FakeResponse(token_payload("tok-2", 3600)))
        session.add("GET", "/hot.json", FakeResponse(reddit_listing(reddit_child("a", "meme"))))
        await client.fetch_subreddit_memes("cryptomemes", 5)

        clock.advance(3600)
        assert client.status()["authenticated"] is False
        await client.fetch_subreddit_memes("cryptomemes", 5)

        assert client.auth_count == 2
        assert [c["method"] for c in session.calls] == ["POST", "GET", "POST", "GET"]
        assert session.calls[-1]["headers"]["Authorization"] == "Bearer tok-2"

    @pytest.mark.unit
    async def test_concurrent_fetches_share_one_authentication(self, client, session):
        session.add("POST", TOKEN_URL, FakeResponse(token_payload("tok-1")))
        session.add("GET", "/hot.json", FakeResponse(reddit_listing(reddit_child("a", "meme"))))

        await asyncio.gather(*(client.fetch_subreddit_memes(sub, 5) for sub in client.subreddits))

        assert client.auth_count == 1

    @pytest.mark.unit
    async def test_rejected_credentials_switch_to_fallback_only(self, client, session):
        session.add("POST", TOKEN_URL, FakeResponse(status=401))

        with pytest.raises(ProviderAuthError):
            await client.fetch_subreddit_memes("cryptomemes", 5)
        with pytest.raises(ProviderDisabledError):
            await client.fetch_subreddit_memes("bitcoinmemes", 5)

        assert client.auth_state is AuthState.UNAUTHENTICATED
        assert client.fallback_only
        assert len(session.calls) == 1

    @pytest.mark.unit
    async def test_grant_error_body_disables(self, client, session):
        session.add("POST", TOKEN_URL, FakeResponse({"error": "invalid_grant"}))

        with pytest.raises(ProviderAuthError):
            await client.authenticate()

        assert client.fallback_only
        assert client.auth_state is AuthState.UNAUTHENTICATED

    @pytest.mark.unit
    async def test_transient_auth_failure_stays_retryable(self, client, session):
        session.add("POST", TOKEN_URL, FakeResponse(status=503), FakeResponse(token_payload("tok-2")))
        session.add("GET", "/hot.json", FakeResponse(reddit_listing(reddit_child("a", "meme"))))

        with pytest.raises(ProviderHTTPError):
            await client.fetch_subreddit_memes("cryptomemes", 5)
        assert client.auth_state is AuthState.UNAUTHENTICATED

        posts = await client.fetch_subreddit_memes("cryptomemes", 5)
        assert len(posts) == 1

    @pytest.mark.unit
    async def test_revoked_token_on_listing_resets_state(self, client, session):
        session.add("POST", TOKEN_URL, FakeResponse(token_payload("tok-1")), FakeResponse(token_payload("tok-2")))
        session.add("GET", "/hot.json", FakeResponse(status=401), FakeResponse(reddit_listing(reddit_child("a", "meme"))))

        with pytest.raises(ProviderAuthError):
            await client.fetch_subreddit_memes("cryptomemes", 5)
        assert client.auth_state is AuthState.UNAUTHENTICATED
        assert not client.fallback_only

        await client.fetch_subreddit_memes("cryptomemes", 5)
        assert client.auth_count == 2

    @pytest.mark.unit
    async def test_missing_credentials(self, make_client, make_settings, session):
        client = make_client(RedditClient, "reddit", make_settings("reddit", client_secret=None))

        with pytest.raises(ProviderDisabledError):
            await client.fetch_crypto_memes(5)

        assert client.status()["configured"] is False
        assert session.calls == []


class TestListings:

    @pytest.mark.unit
    async def test_only_image_posts_are_returned(self, client, session):
        session.add("POST", TOKEN_URL, FakeResponse(token_payload()))
        session.add("GET", "/hot.json", FakeResponse(reddit_listing(
            reddit_child("img", "BTC to the moon"),
            reddit_child("vid", "video", is_video=True),
            reddit_child("txt", "discussion", post_hint="self", url="https://www.reddit.com/r/x/comments/txt/"),
            reddit_child("nsfw", "nope", thumbnail="nsfw"),
        )))

        posts = await client.fetch_crypto_memes(10)

        assert [p.id for p in posts] == ["img"]
        assert posts[0].subreddit == "cryptocurrencymemes"

    @pytest.mark.unit
    async def test_trending_merges_communities_by_score(self, client, session):
        session.add("POST", TOKEN_URL, FakeResponse(token_payload()))
        session.add("GET", hot("cryptocurrencymemes"), FakeResponse(reddit_listing(
            reddit_child("c1", "a", score=50), reddit_child("c2", "b", score=500))))
        session.add("GET", hot("bitcoinmemes"), FakeResponse(status=500))
        session.add("GET", hot("cryptomemes"), FakeResponse(reddit_listing(
            reddit_child("m1", "c", score=300, subreddit="cryptomemes"))))

        posts = await client.fetch_trending_memes(4)

        assert [p.id for p in posts] == ["c2", "m1", "c1"]
        # ceil(4 / 3) per community
        assert session.calls_to(hot("cryptomemes"))[0]["params"] == {"limit": "2"}

    @pytest.mark.unit
    async def test_trending_raises_when_every_community_fails(self, client, session):
        session.add("POST", TOKEN_URL, FakeResponse(token_payload()))
        session.add("GET", "/hot.json", FakeResponse(status=500))

        with pytest.raises(ProviderHTTPError):
            await client.fetch_trending_memes(6)

    @pytest.mark.unit
    async def test_status(self, client, session):
        session.add("POST", TOKEN_URL, FakeResponse(token_payload(expires_in=60)))
        before = client.status()

        await client.authenticate()
        after = client.status()

        assert before == {"configured": True, "authenticated": False, "state": "unauthenticated",
                          "token_expiry": None, "fallback_only": False}
        assert after["authenticated"] is True
        assert after["state"] == "authenticated"
        assert after["token_expiry"] is not None

    @pytest.mark.unit
    @pytest.mark.parametrize("payload", [{"kind": "Listing", "data": [{"children": []}]}, ["not", "a", "listing"], {"data": {"children": "none"}}])
    async def test_malformed_listing_is_a_response_error(self, client, session, payload):
        session.add("POST", TOKEN_URL, FakeResponse(token_payload()))
        session.add("GET", "/hot.json", FakeResponse(payload))

        with pytest.raises(ProviderResponseError):
            await client.fetch_subreddit_memes("cryptomemes", 5)
