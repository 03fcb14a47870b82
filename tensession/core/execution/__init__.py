"""
Transaction Execution Layer

Provides the building blocks for session-key transactions:
- FeeEstimator: EIP-1559 fee quote from recent fee history
- TransactionEncoder: Raw type-2 bytes for delegated execution
- ConfirmationPoller: Bounded receipt polling

Usage:
    from tensession.core.execution import (
        FeeEstimator,
        TransactionEncoder,
        TransactionIntent,
        Urgency,
    )

    fees = await FeeEstimator(client).estimate_fees(Urgency.HIGH)
    raw = TransactionEncoder.encode_base64(
        TransactionIntent(to="0x..."),
        chain_id=8443,
        nonce=0,
        fees=fees,
        gas_limit=21000,
    )
"""

from .models import (
    Urgency,
    ReceiptStatus,
    FeeQuote,
    TransactionIntent,
    EncodedTransaction,
    DecodedTransaction,
    Receipt,
)

from .fees import (
    FeeEstimator,
    estimate_fees,
)

from .tx_builder import (
    TransactionEncoder,
    EIP1559_TX_TYPE,
)

from .poller import (
    ConfirmationPoller,
    await_receipt,
)

__all__ = [
    # Models
    "Urgency",
    "ReceiptStatus",
    "FeeQuote",
    "TransactionIntent",
    "EncodedTransaction",
    "DecodedTransaction",
    "Receipt",
    # Fees
    "FeeEstimator",
    "estimate_fees",
    # Encoder
    "TransactionEncoder",
    "EIP1559_TX_TYPE",
    # Poller
    "ConfirmationPoller",
    "await_receipt",
]
