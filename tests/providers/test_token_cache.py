"""
Tests for the bearer token cache.
"""

import httpx
import pytest

from tensession.config import Settings
from tensession.core.errors import TokenError
from tensession.providers.token import TOKEN_KEY, TOKEN_TIMESTAMP_KEY, BearerTokenCache
from tensession.storage import InMemoryStore


DAY_MS = 24 * 60 * 60 * 1000
NOW = 1_700_000_000.0


class Gateway:
    """Scripted join/revoke endpoints."""

    def __init__(self, join_responses):
        self.join_responses = list(join_responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/join/"):
            response = self.join_responses.pop(0) if len(self.join_responses) > 1 else self.join_responses[0]
            return response
        if request.url.path.endswith("/revoke/"):
            return httpx.Response(200)
        return httpx.Response(404)

    def paths(self):
        return [request.url.path for request in self.requests]


@pytest.fixture
def token_config() -> Settings:
    return Settings(rpc_url="https://rpc.test/v1", token_retry_delay_seconds=1.0)


def make_cache(gateway, store, config, sleep, now=NOW):
    client = httpx.AsyncClient(transport=httpx.MockTransport(gateway))
    return BearerTokenCache(store, config, client=client, clock=lambda: now, sleep=sleep)


class TestBearerTokenCache:

    @pytest.mark.asyncio
    async def test_fetches_and_stores_new_token(self, token_config, fake_sleep):
        store = InMemoryStore()
        gateway = Gateway([httpx.Response(200, text="tok-1\n")])
        cache = make_cache(gateway, store, token_config, fake_sleep)

        assert await cache.get_token() == "tok-1"
        assert store.get(TOKEN_KEY) == "tok-1"
        assert store.get(TOKEN_TIMESTAMP_KEY) == str(int(NOW * 1000))
        assert gateway.paths() == ["/v1/join/"]

    @pytest.mark.asyncio
    async def test_fresh_token_is_reused(self, token_config, fake_sleep):
        store = InMemoryStore({TOKEN_KEY: "cached", TOKEN_TIMESTAMP_KEY: str(int(NOW * 1000) - 1000)})
        gateway = Gateway([httpx.Response(200, text="unused")])
        cache = make_cache(gateway, store, token_config, fake_sleep)

        assert await cache.get_token() == "cached"
        assert gateway.requests == []

    @pytest.mark.asyncio
    async def test_expired_token_is_rotated_and_revoked(self, token_config, fake_sleep):
        store = InMemoryStore({TOKEN_KEY: "old", TOKEN_TIMESTAMP_KEY: str(int(NOW * 1000) - DAY_MS - 1)})
        gateway = Gateway([httpx.Response(200, text="new")])
        cache = make_cache(gateway, store, token_config, fake_sleep)

        assert await cache.get_token() == "new"
        assert store.get(TOKEN_KEY) == "new"
        assert gateway.paths() == ["/v1/join/", "/v1/revoke/"]
        assert gateway.requests[1].url.params["token"] == "old"

    @pytest.mark.asyncio
    async def test_expired_token_is_kept_when_refresh_fails(self, token_config, fake_sleep):
        store = InMemoryStore({TOKEN_KEY: "old", TOKEN_TIMESTAMP_KEY: str(int(NOW * 1000) - DAY_MS - 1)})
        gateway = Gateway([httpx.Response(500)])
        cache = make_cache(gateway, store, token_config, fake_sleep)

        assert await cache.get_token() == "old"
        assert store.get(TOKEN_KEY) == "old"

    @pytest.mark.asyncio
    async def test_retries_with_linear_backoff(self, token_config, fake_sleep, sleeps):
        gateway = Gateway([httpx.Response(500), httpx.Response(200, text=""), httpx.Response(200, text="tok")])
        cache = make_cache(gateway, InMemoryStore(), token_config, fake_sleep)

        assert await cache.get_token() == "tok"
        assert sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_total_failure_raises(self, token_config, fake_sleep, sleeps):
        gateway = Gateway([httpx.Response(500)])
        cache = make_cache(gateway, InMemoryStore(), token_config, fake_sleep)

        with pytest.raises(TokenError, match="Unable to initialize TEN network connection"):
            await cache.get_token()

        assert len(gateway.requests) == 3
        assert sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_authenticated_rpc_url(self, token_config, fake_sleep):
        gateway = Gateway([httpx.Response(200, text="abc")])
        cache = make_cache(gateway, InMemoryStore(), token_config, fake_sleep)

        assert await cache.authenticated_rpc_url() == "https://rpc.test/v1/?token=abc"

    def test_clear(self, token_config, fake_sleep):
        store = InMemoryStore({TOKEN_KEY: "t", TOKEN_TIMESTAMP_KEY: "1"})
        cache = make_cache(Gateway([httpx.Response(200)]), store, token_config, fake_sleep)

        cache.clear()

        assert store.get(TOKEN_KEY) is None
        assert store.get(TOKEN_TIMESTAMP_KEY) is None

    @pytest.mark.asyncio
    async def test_revoke_failure_is_not_fatal(self, token_config, fake_sleep):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        cache = BearerTokenCache(InMemoryStore(), token_config, client=client, sleep=fake_sleep)

        assert await cache.revoke_token("tok") is False
