"""
Session Key Module

Manages the TEN session key that signs transactions on the user's behalf:
- SessionKeyEngine: Create, fund, transact, withdraw and delete
- DeletionStateMachine: Withdraw-then-destroy saga with forward-only transitions
- SessionKeyState: Immutable aggregate published to subscribers

Usage:
    from tensession.core.wallet import SessionKeyEngine
    from tensession.core.execution import TransactionIntent

    engine = SessionKeyEngine(provider=provider, store=store)
    unsubscribe = engine.subscribe(render)

    session_key = await engine.create_session_key()
    await engine.fund_session_key("0.01", from_address=wallet)

    tx_hash = await engine.send_transaction(
        TransactionIntent(to="0x...", data="0x..."),
    )

    # Sweep funds back, then destroy the key
    final_state = await engine.confirm_delete_session(wallet)
"""

from .models import (
    DeletionState,
    WithdrawalStatus,
    SessionBalance,
    WithdrawalResult,
    SessionKeyState,
)

from .deletion import (
    DeletionStateMachine,
    DeletionTransition,
)

from .session_manager import (
    SessionKeyEngine,
)

__all__ = [
    # Models
    "DeletionState",
    "WithdrawalStatus",
    "SessionBalance",
    "WithdrawalResult",
    "SessionKeyState",
    # Deletion
    "DeletionStateMachine",
    "DeletionTransition",
    # Engine
    "SessionKeyEngine",
]
