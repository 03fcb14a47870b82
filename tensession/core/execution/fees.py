"""
Dynamic EIP-1559 fee estimation from ``eth_feeHistory``.

Fee estimation never blocks a transaction: any RPC failure or malformed
history falls back to a fixed per-urgency table.
"""

import logging
from decimal import ROUND_DOWN, Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ...config import Settings, settings as default_settings
from ..errors import RpcError
from .models import FeeQuote, Urgency

if TYPE_CHECKING:
    from ...providers.ten import TenRpcClient


logger = logging.getLogger(__name__)


def _to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    raise TypeError(f"Expected a hex quantity, got {value!r}")


class FeeEstimator:
    """
    Turns recent fee history into a fee quote for an urgency tier.

    - Base fee: latest block's base fee times the tier multiplier, truncated
    - Priority fee: middle sample (upper middle for an even count) of the
      tier's reward percentile across the sampled blocks, floored at ``min_priority_fee_wei``
    """

    def __init__(self, client: "TenRpcClient", config: Optional[Settings] = None):
        self.client = client
        self.config = config or default_settings

    async def estimate_fees(self, urgency: Urgency = Urgency.MEDIUM) -> FeeQuote:
        urgency = Urgency(urgency)
        try:
            history = await self.client.fee_history(
                self.config.fee_history_blocks,
                self.config.priority_fee_percentiles,
            )
            return self.quote_from_history(history, urgency)
        except (RpcError, KeyError, IndexError, TypeError, ValueError) as exc:
            logger.warning(f"Failed to calculate gas fees, using defaults: {exc}")
            return self.fallback_quote(urgency)

    def quote_from_history(self, history: Dict[str, Any], urgency: Urgency) -> FeeQuote:
        """Pure computation over an ``eth_feeHistory`` result."""
        base_fees: List[Any] = history["baseFeePerGas"]
        latest_base_fee = _to_int(base_fees[-1])

        multiplier = Decimal(self.config.base_fee_multiplier(urgency.value))
        adjusted_base_fee = int(
            (Decimal(latest_base_fee) * multiplier).to_integral_value(rounding=ROUND_DOWN)
        )

        column = self.config.percentile_index(urgency.value)
        samples = sorted(_to_int(block[column]) for block in history["reward"])
        if not samples:
            raise ValueError("Fee history contains no reward samples")
        median_priority_fee = samples[len(samples) // 2]

        priority_fee = max(median_priority_fee, self.config.min_priority_fee_wei)

        return FeeQuote(
            max_fee_per_gas=adjusted_base_fee + priority_fee,
            max_priority_fee_per_gas=priority_fee,
        )

    def fallback_quote(self, urgency: Urgency) -> FeeQuote:
        priority_fee = self.config.fallback_priority_fees_wei[urgency.value]
        return FeeQuote(
            max_fee_per_gas=self.config.fallback_base_fee_wei + priority_fee,
            max_priority_fee_per_gas=priority_fee,
        )


async def estimate_fees(
    client: "TenRpcClient",
    urgency: Urgency = Urgency.MEDIUM,
    config: Optional[Settings] = None,
) -> FeeQuote:
    return await FeeEstimator(client, config).estimate_fees(urgency)
