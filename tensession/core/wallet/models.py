"""
Session key state models.

A session key is a delegate signer provisioned by the TEN gateway. The
client never holds its private key; it only tracks the address, a balance
snapshot and the lifecycle flags the UI renders.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class DeletionState(str, Enum):
    """Progress of the safe-deletion saga."""
    IDLE = "idle"
    ACTIVE = "active"
    WITHDRAWING = "withdrawing"
    DELETING = "deleting"
    COMPLETED = "completed"
    ERROR = "error"


class WithdrawalStatus(str, Enum):
    WITHDRAWN = "withdrawn"
    NOTHING_TO_WITHDRAW = "nothing_to_withdraw"  # Balance at or below the gas reserve


@dataclass(frozen=True)
class SessionBalance:
    """Balance snapshot. Replaced wholesale on every refresh."""
    eth: Decimal
    estimated_transactions: int = 0
    wei: int = 0
    fetched_at: datetime = field(default_factory=datetime.utcnow)


@dataclass(frozen=True)
class WithdrawalResult:
    status: WithdrawalStatus
    amount_wei: int = 0
    tx_hash: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status in (WithdrawalStatus.WITHDRAWN, WithdrawalStatus.NOTHING_TO_WITHDRAW)


@dataclass(frozen=True)
class SessionKeyState:
    """
    Everything the UI renders about the session, in one aggregate.

    Instances are immutable; the engine publishes a new one on every change.
    """
    session_key: Optional[str] = None
    is_active: bool = False
    balance: Optional[SessionBalance] = None
    is_loading: bool = False
    error: Optional[Exception] = None
    is_refreshing_balance: bool = False
    is_transacting: bool = False
    deletion_state: DeletionState = DeletionState.IDLE
    deletion_error: Optional[str] = None

    def evolve(self, **changes: Any) -> "SessionKeyState":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionKey": self.session_key,
            "isActive": self.is_active,
            "balance": (
                {
                    "eth": str(self.balance.eth),
                    "estimatedTransactions": self.balance.estimated_transactions,
                }
                if self.balance
                else None
            ),
            "isLoading": self.is_loading,
            "error": str(self.error) if self.error else None,
            "isRefreshingBalance": self.is_refreshing_balance,
            "isTransacting": self.is_transacting,
            "deletionState": self.deletion_state.value,
            "deletionError": self.deletion_error,
        }
