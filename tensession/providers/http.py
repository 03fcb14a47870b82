"""JSON-RPC over HTTP."""

import itertools
import logging
from typing import Any, List, Optional

import httpx

from ..config import settings
from ..core.errors import RpcError
from .base import EventedProvider

logger = logging.getLogger(__name__)


class HttpRpcProvider(EventedProvider):
    """
    EIP-1193 provider that posts JSON-RPC requests with httpx.

    Wallet events are not pushed over HTTP; callers that learn about an
    account or chain change out-of-band call ``emit`` themselves.
    """

    name = "http"

    def __init__(
        self,
        url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__()
        self.url = url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout or settings.request_timeout_seconds
        )
        self._ids = itertools.count(1)

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or [],
            "id": next(self._ids),
        }

        try:
            response = await self._client.post(self.url, json=payload)
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPError as exc:
            raise RpcError(f"{method} failed: {exc}", method=method) from exc
        except ValueError as exc:
            raise RpcError(f"{method} returned a non-JSON body", method=method) from exc

        if "error" in result:
            raise RpcError(f"RPC error: {result['error']}", method=method)

        return result.get("result")

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


async def fetch_latest_block_number(
    rpc_url: str,
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[str]:
    """
    Ask ``rpc_url`` for ``eth_blockNumber`` directly, bypassing any provider cache.

    Returns the hex block number, or None when the lookup fails.
    """
    payload = {
        "jsonrpc": "2.0",
        "method": "eth_blockNumber",
        "params": [],
        "id": 1,
    }

    try:
        if client is not None:
            response = await client.post(rpc_url, json=payload)
        else:
            async with httpx.AsyncClient(timeout=settings.request_timeout_seconds) as session:
                response = await session.post(rpc_url, json=payload)
        response.raise_for_status()
        data = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning(f"Failed to get latest block number: {exc}")
        return None

    result = data.get("result") if isinstance(data, dict) else None
    if not isinstance(result, str):
        logger.warning(f"Unexpected eth_blockNumber response: {data!r}")
        return None
    return result
