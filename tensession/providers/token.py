"""
Bearer token cache for the TEN read-only RPC.

``GET {rpc_url}join/`` issues a token, ``GET {rpc_url}revoke/?token=...``
invalidates one. Tokens are persisted with their issue time and rotated once
they are older than the configured max age.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx

from ..config import Settings, settings as default_settings
from ..core.errors import TokenError
from ..storage import KeyValueStore

logger = logging.getLogger(__name__)

TOKEN_KEY = "TEN_PUBLIC_TOKEN"
TOKEN_TIMESTAMP_KEY = "TEN_PUBLIC_TOKEN_TIMESTAMP"


@dataclass
class StoredToken:
    token: str
    timestamp_ms: int


class BearerTokenCache:
    """TTL cache with a persistent backing store and opportunistic rotation."""

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        config = config or default_settings
        self.store = store
        self.rpc_url = config.rpc_url if config.rpc_url.endswith("/") else f"{config.rpc_url}/"
        self.max_age_ms = config.token_max_age_seconds * 1000
        self.retries = config.token_fetch_retries
        self.retry_delay_seconds = config.token_retry_delay_seconds
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.request_timeout_seconds)
        self._clock = clock
        self._sleep = sleep

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _load(self) -> Optional[StoredToken]:
        token = self.store.get(TOKEN_KEY)
        timestamp = self.store.get(TOKEN_TIMESTAMP_KEY)
        if not token or not timestamp:
            return None
        try:
            return StoredToken(token=token, timestamp_ms=int(timestamp))
        except ValueError:
            return None

    def _save(self, token: str) -> None:
        self.store.set(TOKEN_KEY, token)
        self.store.set(TOKEN_TIMESTAMP_KEY, str(self._now_ms()))

    def clear(self) -> None:
        self.store.remove(TOKEN_KEY)
        self.store.remove(TOKEN_TIMESTAMP_KEY)

    def is_expired(self, stored: StoredToken) -> bool:
        return self._now_ms() - stored.timestamp_ms > self.max_age_ms

    async def fetch_new_token(self) -> str:
        """Request a fresh token, retrying with a linear backoff."""
        last_error: Optional[Exception] = None

        for attempt in range(1, self.retries + 1):
            try:
                response = await self._client.get(f"{self.rpc_url}join/")
                response.raise_for_status()
                token = response.text.strip()
                if not token:
                    raise TokenError("Received empty token from server")
                logger.info(f"Fetched new token (attempt {attempt}/{self.retries})")
                return token
            except (httpx.HTTPError, TokenError) as exc:
                last_error = exc
                logger.warning(f"Failed to fetch token (attempt {attempt}/{self.retries}): {exc}")
                if attempt < self.retries:
                    await self._sleep(self.retry_delay_seconds * attempt)

        raise TokenError(f"Failed to fetch token after {self.retries} attempts: {last_error}")

    async def revoke_token(self, token: str) -> bool:
        """Best effort: a token that fails to revoke simply ages out server-side."""
        try:
            response = await self._client.get(f"{self.rpc_url}revoke/", params={"token": token})
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(f"Failed to revoke token: {exc}")
            return False
        return True

    async def get_token(self) -> str:
        stored = self._load()

        if stored is None:
            try:
                token = await self.fetch_new_token()
            except TokenError as exc:
                raise TokenError(f"Unable to initialize TEN network connection: {exc.message}") from exc
            self._save(token)
            return token

        if not self.is_expired(stored):
            return stored.token

        logger.info("Token expired, fetching new token")
        try:
            token = await self.fetch_new_token()
        except TokenError as exc:
            logger.warning(f"Falling back to expired token: {exc.message}")
            return stored.token

        await self.revoke_token(stored.token)
        self.clear()
        self._save(token)
        return token

    async def authenticated_rpc_url(self) -> str:
        token = await self.get_token()
        return f"{self.rpc_url}?token={token}"

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
