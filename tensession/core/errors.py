"""
Error Classification

Typed failures raised by the session-key core. Each error carries an
ErrorContext so callers (UI, CLI) can decide whether a retry makes sense.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(str, Enum):
    """Categories of errors for caller-side decisions."""

    PRECONDITION = "precondition"          # Wrong network, no provider, no key
    INSUFFICIENT_FUNDS = "insufficient_funds"
    ENCODING = "encoding"                  # Malformed intent or RLP output
    RPC = "rpc"                            # Transient provider/network failure
    TIMEOUT = "timeout"                    # No receipt within the attempt budget
    TRANSACTION_REVERTED = "transaction_reverted"
    LIFECYCLE = "lifecycle"                # Wrapped failure of a lifecycle operation
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Additional context about an error."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = False
    suggested_action: Optional[str] = None
    tx_hash: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class SessionKeyError(Exception):
    """Base class for every error raised by the session-key core."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = False

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext(
            category=self.category,
            recoverable=self.recoverable,
        )


class PreconditionError(SessionKeyError):
    """User-actionable precondition failure. Never retried automatically."""

    category = ErrorCategory.PRECONDITION


class InsufficientFundsError(SessionKeyError):
    """Balance does not cover the requested amount plus the gas reserve."""

    category = ErrorCategory.INSUFFICIENT_FUNDS

    def __init__(
        self,
        message: str = "Insufficient funds",
        available_wei: int = 0,
        required_wei: int = 0,
    ):
        self.available_wei = available_wei
        self.required_wei = required_wei
        super().__init__(
            message,
            context=ErrorContext(
                category=self.category,
                recoverable=False,
                suggested_action="Add funds to the session key or reduce the amount",
                details={
                    "available_wei": available_wei,
                    "required_wei": required_wei,
                    "shortfall_wei": max(0, required_wei - available_wei),
                },
            ),
        )

    @property
    def shortfall_wei(self) -> int:
        return max(0, self.required_wei - self.available_wei)


class EncodingError(SessionKeyError):
    """Transaction could not be encoded. Indicates a caller contract violation."""

    category = ErrorCategory.ENCODING


class RpcError(SessionKeyError):
    """Provider or network failure."""

    category = ErrorCategory.RPC
    recoverable = True

    def __init__(self, message: str, method: Optional[str] = None):
        self.method = method
        super().__init__(
            message,
            context=ErrorContext(
                category=self.category,
                recoverable=True,
                suggested_action="Retry once the provider is reachable",
                details={"method": method} if method else {},
            ),
        )


class ConfirmationTimeoutError(SessionKeyError):
    """No receipt appeared within the polling budget."""

    category = ErrorCategory.TIMEOUT

    def __init__(self, tx_hash: str, attempts: int):
        self.tx_hash = tx_hash
        self.attempts = attempts
        super().__init__(
            f"Transaction {tx_hash} not confirmed after {attempts} attempts",
            context=ErrorContext(
                category=self.category,
                recoverable=False,
                tx_hash=tx_hash,
                suggested_action="Check the explorer before retrying",
                details={"attempts": attempts},
            ),
        )


class OnChainRevertError(SessionKeyError):
    """Transaction was mined with a failure status."""

    category = ErrorCategory.TRANSACTION_REVERTED

    def __init__(self, tx_hash: str, receipt: Optional[Dict[str, Any]] = None):
        self.tx_hash = tx_hash
        self.receipt = receipt or {}
        super().__init__(
            f"Transaction {tx_hash} reverted on-chain",
            context=ErrorContext(
                category=self.category,
                recoverable=False,
                tx_hash=tx_hash,
            ),
        )


class InvalidTransitionError(PreconditionError):
    """Deletion state machine was asked for a transition it does not allow."""

    def __init__(self, from_state: Any, to_state: Any, message: Optional[str] = None):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(message or f"Invalid transition from {from_state} to {to_state}")


# Per-operation wrappers. Lifecycle operations raise these around untyped failures.
class LifecycleError(SessionKeyError):
    category = ErrorCategory.LIFECYCLE


class SessionCreationError(LifecycleError):
    """Session key could not be created."""


class FundingError(LifecycleError):
    """Funding transfer failed."""


class TransactionError(LifecycleError):
    """Session-key transaction could not be built or submitted."""


class WithdrawalError(LifecycleError):
    """Funds could not be withdrawn from the session key."""


class SessionDeletionError(LifecycleError):
    """Session key could not be deleted."""


class TokenError(SessionKeyError):
    """Bearer token could not be obtained."""

    category = ErrorCategory.RPC


def wrap_error(
    error: BaseException,
    wrapper: type[SessionKeyError],
    message: str,
) -> SessionKeyError:
    """Return typed errors unchanged, wrap anything else in ``wrapper``."""
    if isinstance(error, SessionKeyError):
        return error
    wrapped = wrapper(f"{message}: {error}" if str(error) else message)
    wrapped.__cause__ = error
    return wrapped


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "SessionKeyError",
    "PreconditionError",
    "InsufficientFundsError",
    "EncodingError",
    "RpcError",
    "ConfirmationTimeoutError",
    "OnChainRevertError",
    "InvalidTransitionError",
    "LifecycleError",
    "SessionCreationError",
    "FundingError",
    "TransactionError",
    "WithdrawalError",
    "SessionDeletionError",
    "TokenError",
    "wrap_error",
]
