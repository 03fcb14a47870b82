"""
Receipt polling.

Fixed interval, no jitter, no backoff growth. A missing receipt or a
transient RPC failure is a missed attempt; only exhausting the attempt
budget is terminal.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from ..errors import ConfirmationTimeoutError, OnChainRevertError, RpcError
from .models import Receipt

if TYPE_CHECKING:
    from ...providers.ten import TenRpcClient


logger = logging.getLogger(__name__)


class ConfirmationPoller:
    def __init__(
        self,
        client: "TenRpcClient",
        interval_seconds: float = 2.0,
        max_attempts: int = 30,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts
        self._sleep = sleep

    async def await_receipt(
        self,
        tx_hash: str,
        interval_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> Receipt:
        """
        Wait for ``tx_hash`` to be mined.

        Args:
            tx_hash: Transaction to watch
            interval_seconds: Override the poll interval
            max_attempts: Override the attempt budget; 0 polls until a receipt appears

        Returns:
            The successful receipt

        Raises:
            OnChainRevertError: Receipt present with failure status
            ConfirmationTimeoutError: No receipt within ``max_attempts``
        """
        interval = self.interval_seconds if interval_seconds is None else interval_seconds
        budget = self.max_attempts if max_attempts is None else max_attempts

        attempt = 0
        while budget <= 0 or attempt < budget:
            if attempt > 0:
                await self._sleep(interval)
            attempt += 1

            try:
                receipt = await self.client.get_transaction_receipt(tx_hash)
            except RpcError as exc:
                logger.warning(f"Error checking transaction status (attempt {attempt}): {exc}")
                continue

            if receipt is None:
                continue

            if receipt.is_success:
                logger.info(f"Transaction {tx_hash} confirmed after {attempt} attempt(s)")
                return receipt

            logger.error(f"Transaction {tx_hash} reverted")
            raise OnChainRevertError(tx_hash, receipt.raw)

        logger.error(f"Transaction {tx_hash} confirmation timeout after {attempt} attempts")
        raise ConfirmationTimeoutError(tx_hash, attempt)


async def await_receipt(
    client: "TenRpcClient",
    tx_hash: str,
    interval_seconds: float = 2.0,
    max_attempts: int = 30,
) -> Receipt:
    return await ConfirmationPoller(client, interval_seconds, max_attempts).await_receipt(tx_hash)
