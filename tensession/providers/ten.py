"""
Typed RPC client for the TEN gateway.

Standard ``eth_*`` calls are thin wrappers that parse hex results. The
session-key operations are a TEN convention: they overload
``eth_getStorageAt`` with a well-known target address and a JSON-encoded
parameter in the slot position. That encoding lives here and nowhere else.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import Settings, settings as default_settings
from ..core.errors import RpcError, SessionKeyError
from ..core.execution.models import Receipt
from ..services.address import address_from_word
from ..services.units import hex_to_int, to_hex
from .base import EIP1193Provider
from .http import fetch_latest_block_number

logger = logging.getLogger(__name__)


class TenRpcClient:
    """Wraps a caller-supplied EIP-1193 provider. Every failure surfaces as RpcError."""

    def __init__(
        self,
        provider: EIP1193Provider,
        config: Optional[Settings] = None,
        direct_rpc_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.provider = provider
        self.config = config or default_settings
        # None disables the direct lookup; block numbers then come from the provider
        self.direct_rpc_url = direct_rpc_url
        self._http_client = http_client

    async def _request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        try:
            return await self.provider.request(method, params or [])
        except SessionKeyError:
            raise
        except Exception as exc:
            raise RpcError(f"{method} failed: {exc}", method=method) from exc

    # ------------------------------------------------------------------
    # Standard JSON-RPC
    # ------------------------------------------------------------------

    async def chain_id(self) -> int:
        return self._parse_int("eth_chainId", await self._request("eth_chainId"))

    async def block_number(self) -> str:
        result = await self._request("eth_blockNumber", [])
        if not isinstance(result, str):
            raise RpcError(f"Unexpected eth_blockNumber result: {result!r}", method="eth_blockNumber")
        return result

    async def latest_block_number(self) -> str:
        """Freshest block tag available: direct RPC first, provider as fallback."""
        if self.direct_rpc_url:
            block = await fetch_latest_block_number(self.direct_rpc_url, client=self._http_client)
            if block:
                return block
        return await self.block_number()

    async def get_transaction_count(self, address: str, block: str = "latest") -> int:
        result = await self._request("eth_getTransactionCount", [address, block])
        return self._parse_int("eth_getTransactionCount", result)

    async def fee_history(
        self,
        block_count: int,
        percentiles: List[int],
        newest_block: str = "latest",
    ) -> Dict[str, Any]:
        result = await self._request(
            "eth_feeHistory",
            [to_hex(block_count), newest_block, list(percentiles)],
        )
        if not isinstance(result, dict):
            raise RpcError(f"Unexpected eth_feeHistory result: {result!r}", method="eth_feeHistory")
        return result

    async def estimate_gas(self, call: Dict[str, Any]) -> int:
        return self._parse_int("eth_estimateGas", await self._request("eth_estimateGas", [call]))

    async def get_balance(self, address: str, block: str = "pending") -> int:
        return self._parse_int("eth_getBalance", await self._request("eth_getBalance", [address, block]))

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        result = await self._request("eth_getTransactionReceipt", [tx_hash])
        if not result:
            return None
        if not isinstance(result, dict):
            raise RpcError(
                f"Unexpected eth_getTransactionReceipt result: {result!r}",
                method="eth_getTransactionReceipt",
            )
        return Receipt.from_rpc(tx_hash, result)

    async def send_transaction(self, tx: Dict[str, Any]) -> str:
        result = await self._request("eth_sendTransaction", [tx])
        if not isinstance(result, str) or not result:
            raise RpcError(f"Unexpected eth_sendTransaction result: {result!r}", method="eth_sendTransaction")
        return result

    # ------------------------------------------------------------------
    # TEN delegated execution
    # ------------------------------------------------------------------

    async def _storage_call(self, target: str, slot: str) -> Any:
        return await self._request("eth_getStorageAt", [target, slot, "latest"])

    async def create_session_key(self) -> str:
        """Provision a session key. The address is the low 20 bytes of the response."""
        response = await self._storage_call(self.config.session_key_create_address, "0x0")
        if not isinstance(response, str):
            raise RpcError(f"Unexpected session key response: {response!r}", method="eth_getStorageAt")
        try:
            return address_from_word(response)
        except ValueError as exc:
            raise RpcError(str(exc), method="eth_getStorageAt") from exc

    async def delete_session_key(self, session_key: str) -> Any:
        return await self._storage_call(
            self.config.session_key_delete_address,
            json.dumps({"sessionKeyAddress": session_key}),
        )

    async def cleanup_session_keys(self) -> Any:
        """Destroy whatever session key the gateway holds for the connected account."""
        return await self._storage_call(self.config.session_key_delete_address, "0x0")

    async def execute_transaction(self, session_key: str, tx_base64: str) -> str:
        """Relay an unsigned, base64-encoded type-2 transaction for delegated signing."""
        result = await self._storage_call(
            self.config.session_key_execute_address,
            json.dumps({"sessionKeyAddress": session_key, "tx": tx_base64}),
        )
        if not isinstance(result, str) or not result:
            raise RpcError(f"Unexpected execute result: {result!r}", method="eth_getStorageAt")
        return result

    @staticmethod
    def _parse_int(method: str, value: Any) -> int:
        if value is None or isinstance(value, bool):
            raise RpcError(f"{method} returned no result", method=method)
        try:
            return hex_to_int(value)
        except (TypeError, ValueError) as exc:
            raise RpcError(f"Unexpected {method} result: {value!r}", method=method) from exc
