"""
Session key engine for TEN delegated execution.

Manages the lifecycle of a session key:
- Creation (idempotent against the persisted key)
- Funding from the primary wallet
- Transaction submission through the delegated-execution call
- Balance refresh (single-flight, pending tag)
- Withdrawal with a fixed gas reserve
- Safe deletion: withdraw first, destroy only once funds are out
"""

import asyncio
import logging
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional, Union

from ...config import Settings, settings as default_settings
from ...providers.base import EIP1193Provider
from ...providers.ten import TenRpcClient
from ...services.address import normalize_address
from ...services.units import (
    estimate_transactions,
    format_ether,
    hex_to_int,
    parse_ether,
    quick_amount,
    to_hex,
    validate_amount,
)
from ...storage import InMemoryStore, KeyValueStore, SessionStateStore
from ..errors import (
    EncodingError,
    FundingError,
    InsufficientFundsError,
    PreconditionError,
    RpcError,
    SessionCreationError,
    SessionDeletionError,
    SessionKeyError,
    TransactionError,
    WithdrawalError,
    wrap_error,
)
from ..execution.fees import FeeEstimator
from ..execution.models import FeeQuote, TransactionIntent, Urgency
from ..execution.poller import ConfirmationPoller
from ..execution.tx_builder import TransactionEncoder
from .deletion import DeletionStateMachine, DeletionTransition
from .models import (
    DeletionState,
    SessionBalance,
    SessionKeyState,
    WithdrawalResult,
    WithdrawalStatus,
)


logger = logging.getLogger(__name__)

StateSubscriber = Callable[[SessionKeyState], None]
Amount = Union[str, int, float, Decimal]

PROVIDER_EVENTS = ("accountsChanged", "chainChanged")


class SessionKeyEngine:
    """
    Owns one session key and all state the UI renders about it.

    The engine holds no mutex. Apart from balance refresh, callers must not
    run two operations concurrently on the same engine.
    """

    def __init__(
        self,
        provider: Optional[EIP1193Provider] = None,
        store: Optional[KeyValueStore] = None,
        config: Optional[Settings] = None,
        client: Optional[TenRpcClient] = None,
        encoder: Optional[TransactionEncoder] = None,
        fee_estimator: Optional[FeeEstimator] = None,
        poller: Optional[ConfirmationPoller] = None,
        direct_block_lookup: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or default_settings
        self.session_store = SessionStateStore(store or InMemoryStore(), self.config.storage_key)
        self.encoder = encoder or TransactionEncoder()
        self._direct_block_lookup = direct_block_lookup
        self._sleep = sleep

        self.provider: Optional[EIP1193Provider] = None
        self.client: Optional[TenRpcClient] = None
        self.fee_estimator: Optional[FeeEstimator] = None
        self.poller: Optional[ConfirmationPoller] = None
        self._listener_cleanup: Optional[Callable[[], None]] = None

        if client is not None:
            self._bind_client(client)
        elif provider is not None:
            self._bind_provider(provider)
        if fee_estimator is not None:
            self.fee_estimator = fee_estimator
        if poller is not None:
            self.poller = poller

        self._state = SessionKeyState(session_key=self.session_store.load_session_key())
        self._subscribers: List[StateSubscriber] = []
        self._last_fee_quote: Optional[FeeQuote] = None
        self.deletion = DeletionStateMachine(on_transition=self._on_deletion_transition)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionKeyState:
        return self._state

    @property
    def session_key(self) -> Optional[str]:
        return self._state.session_key

    @property
    def deletion_state(self) -> DeletionState:
        return self.deletion.current_state

    def subscribe(self, subscriber: StateSubscriber) -> Callable[[], None]:
        """Call ``subscriber`` with the new state after every change."""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def update_state(self, **changes) -> SessionKeyState:
        self._update(**changes)
        return self._state

    def _update(self, **changes) -> None:
        self._state = self._state.evolve(**changes)
        for subscriber in list(self._subscribers):
            subscriber(self._state)

    def _on_deletion_transition(self, transition: DeletionTransition) -> None:
        self._update(deletion_state=transition.to_state)

    def _fail(
        self,
        error: BaseException,
        wrapper: type,
        message: str,
    ) -> SessionKeyError:
        """Type the error, publish it on the state and hand it back for raising."""
        typed = wrap_error(error, wrapper, message)
        logger.error(f"{message}: {typed.message}")
        self._update(error=typed, is_loading=False)
        return typed

    def _reject(self, message: str) -> PreconditionError:
        error = PreconditionError(message)
        self._update(error=error)
        return error

    # ------------------------------------------------------------------
    # Provider wiring
    # ------------------------------------------------------------------

    def _bind_client(self, client: TenRpcClient) -> None:
        self.client = client
        self.provider = client.provider
        self.fee_estimator = FeeEstimator(client, self.config)
        self.poller = ConfirmationPoller(
            client,
            interval_seconds=self.config.confirmation_interval_seconds,
            max_attempts=self.config.confirmation_max_attempts,
            sleep=self._sleep,
        )

    def _bind_provider(self, provider: EIP1193Provider) -> None:
        # Listeners follow the provider across a reconnect
        was_subscribed = self._listener_cleanup is not None
        self._remove_provider_listeners()
        direct_url = self.config.rpc_url if self._direct_block_lookup else None
        self._bind_client(TenRpcClient(provider, self.config, direct_rpc_url=direct_url))
        if was_subscribed:
            self._subscribe_provider_events()

    def _require_client(self, action: str) -> TenRpcClient:
        if self.client is None:
            raise PreconditionError(f"Cannot {action}. No provider is available.")
        return self.client

    def _require_session_key(self, action: str) -> str:
        if not self._state.session_key:
            raise PreconditionError(f"Cannot {action}. No session key is available.")
        return self._state.session_key

    def _subscribe_provider_events(self) -> None:
        if self.provider is None or self._listener_cleanup is not None:
            return
        if not self.provider.supports_events:
            return

        provider = self.provider
        handler = self._handle_provider_change
        for event in PROVIDER_EVENTS:
            provider.on(event, handler)

        def cleanup() -> None:
            for event in PROVIDER_EVENTS:
                provider.remove_listener(event, handler)

        self._listener_cleanup = cleanup

    def _remove_provider_listeners(self) -> None:
        if self._listener_cleanup is not None:
            self._listener_cleanup()
            self._listener_cleanup = None

    def _handle_provider_change(self, *args) -> None:
        logger.info("Wallet account or chain changed, deactivating session")
        self._update(is_active=False)

    async def init_session(self, provider: EIP1193Provider) -> None:
        """Attach a provider and refresh the balance of a rehydrated key."""
        logger.info("Provider for session key set")
        self._bind_provider(provider)
        if self._state.session_key:
            await self.update_balance()

    async def ensure_network(self) -> int:
        """Return the provider's chain ID, or raise if it is not the TEN chain."""
        client = self._require_client("check network")
        chain_id = await client.chain_id()
        if chain_id != self.config.chain_id:
            raise PreconditionError(
                f"Please switch to {self.config.chain_name} network "
                f"(Chain ID: {self.config.chain_id})"
            )
        return chain_id

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_session_key(self) -> str:
        """
        Create (or reuse) the session key.

        A persisted key is reused without calling the gateway. Nothing is
        stored unless provisioning returned a valid address.

        Raises:
            PreconditionError: No provider or wrong network
            SessionCreationError: Provisioning failed
        """
        self._update(is_loading=True, error=None)
        try:
            client = self._require_client("create session key")
            self._subscribe_provider_events()
            await self.ensure_network()

            existing = self._state.session_key or self.session_store.load_session_key()
            if existing:
                session_key = existing
                logger.info(f"Reusing existing session key {session_key}")
            else:
                session_key = await client.create_session_key()
                logger.info(f"Created new session key {session_key}")

            self.session_store.save_session_key(session_key)
        except Exception as exc:
            raise self._fail(exc, SessionCreationError, "Session key creation failed")

        self._update(session_key=session_key, is_active=True, is_loading=False)
        await self.update_balance()
        return session_key

    async def fund_session_key(self, amount: Amount, from_address: str) -> str:
        """
        Transfer ``amount`` ETH from the primary wallet to the session key.

        Returns:
            The funding transaction hash, once confirmed
        """
        self._update(is_loading=True, error=None)
        try:
            client = self._require_client("fund session")
            session_key = self._require_session_key("fund session")
            await self.ensure_network()

            value_wei = self._parse_amount(amount)
            tx_hash = await client.send_transaction(
                {
                    "to": session_key,
                    "value": to_hex(value_wei),
                    "from": from_address,
                }
            )
            logger.info(f"Funding transaction submitted: {tx_hash}")

            await self.poller.await_receipt(
                tx_hash,
                max_attempts=self.config.fund_confirmation_max_attempts,
            )
            logger.info("Funding confirmed")
        except Exception as exc:
            raise self._fail(exc, FundingError, "Funding failed")

        await self.update_balance()
        self._update(is_loading=False)
        return tx_hash

    async def send_transaction(self, intent: TransactionIntent) -> str:
        """
        Build, encode and relay a transaction signed by the session key.

        Returns the transaction hash as soon as the gateway accepts it;
        callers that need finality await the receipt themselves.
        """
        self._update(is_loading=True, error=None)
        try:
            client = self._require_client("send transaction")
            chain_id = await self.ensure_network()
            if not self._state.session_key:
                raise PreconditionError(
                    "No active session key. Create and activate a session key first."
                )
            session_key = self._state.session_key
            intent.validate()

            if intent.nonce is not None:
                nonce = intent.nonce
            else:
                block = await client.latest_block_number()
                nonce = await client.get_transaction_count(session_key, block)

            fees = await self._resolve_fees(intent)

            if intent.gas_limit:
                gas_limit = intent.gas_limit
            else:
                gas_limit = await client.estimate_gas(intent.to_call_object(session_key))

            payload = self.encoder.encode_base64(intent, chain_id, nonce, fees, gas_limit)
            tx_hash = await client.execute_transaction(session_key, payload)
        except Exception as exc:
            raise self._fail(exc, TransactionError, "Transaction failed")

        self._last_fee_quote = fees
        logger.info(f"Session key transaction submitted: {tx_hash} (nonce {nonce})")
        self._update(is_loading=False)
        return tx_hash

    async def _resolve_fees(self, intent: TransactionIntent) -> FeeQuote:
        if intent.has_fees:
            try:
                return FeeQuote(
                    max_fee_per_gas=hex_to_int(intent.max_fee_per_gas),
                    max_priority_fee_per_gas=hex_to_int(intent.max_priority_fee_per_gas),
                )
            except ValueError as exc:
                raise EncodingError(f"Invalid fee fields: {exc}") from exc
        return await self.fee_estimator.estimate_fees(Urgency.MEDIUM)

    async def update_balance(self) -> Optional[SessionBalance]:
        """
        Refresh the balance snapshot from the pending block.

        Single-flight: while a refresh is running, further calls return the
        current snapshot without touching the network.
        """
        session_key = self._state.session_key
        if not session_key or self.client is None:
            logger.warning("Cannot update balance without a session key and provider")
            return None
        if self._state.is_refreshing_balance:
            return self._state.balance

        self._update(is_refreshing_balance=True)
        balance: Optional[SessionBalance] = None
        try:
            balance_wei = await self.client.get_balance(session_key, "pending")
            balance = self._snapshot(balance_wei)
        except RpcError as exc:
            logger.warning(f"Failed to update balance: {exc}")
        finally:
            changes = {"is_refreshing_balance": False}
            # A key deleted mid-refresh must not get a stale balance back
            if balance is not None and self._state.session_key == session_key:
                changes["balance"] = balance
            self._update(**changes)

        return balance

    def _snapshot(self, balance_wei: int) -> SessionBalance:
        estimated = 0
        if self._last_fee_quote is not None:
            estimated = estimate_transactions(
                balance_wei,
                self._last_fee_quote.max_fee_per_gas,
                self.config.default_gas_limit,
            )
        return SessionBalance(
            eth=format_ether(balance_wei),
            estimated_transactions=estimated,
            wei=balance_wei,
        )

    async def withdraw_from_session_key(
        self,
        recipient: str,
        amount: Optional[Amount] = None,
    ) -> WithdrawalResult:
        """
        Send funds from the session key back to ``recipient``.

        A fixed gas reserve always stays on the key. Without ``amount`` the
        whole balance above the reserve is swept; a balance at or below the
        reserve is a successful no-op.

        Raises:
            InsufficientFundsError: ``amount`` plus reserve exceeds the balance
            OnChainRevertError: Withdrawal mined with failure status
            ConfirmationTimeoutError: Withdrawal never confirmed
        """
        try:
            client = self._require_client("withdraw")
            session_key = self._require_session_key("withdraw")
            try:
                recipient = normalize_address(recipient)
            except ValueError as exc:
                raise PreconditionError(str(exc)) from exc

            balance_wei = await client.get_balance(session_key, "pending")
            reserve_wei = self.config.session_gas_reserve_wei

            if amount is not None:
                amount_wei = self._parse_amount(amount)
                required_wei = amount_wei + reserve_wei
                if balance_wei < required_wei:
                    raise InsufficientFundsError(
                        f"Insufficient balance. Available: {format_ether(balance_wei)} ETH, "
                        f"Required: {format_ether(required_wei)} ETH "
                        f"(includes {format_ether(reserve_wei)} ETH for gas)",
                        available_wei=balance_wei,
                        required_wei=required_wei,
                    )
            else:
                if balance_wei <= reserve_wei:
                    logger.info("Session key balance too low to cover gas costs, skipping withdrawal")
                    return WithdrawalResult(status=WithdrawalStatus.NOTHING_TO_WITHDRAW)
                amount_wei = balance_wei - reserve_wei

            tx_hash = await self.send_transaction(
                TransactionIntent(to=recipient, value=amount_wei)
            )
            logger.info(f"Withdrawal transaction submitted: {tx_hash}")

            await self.poller.await_receipt(tx_hash)
        except Exception as exc:
            raise self._fail(exc, WithdrawalError, "Withdrawal failed")

        logger.info(f"Withdrawal of {format_ether(amount_wei)} ETH confirmed")
        await self.update_balance()
        return WithdrawalResult(
            status=WithdrawalStatus.WITHDRAWN,
            amount_wei=amount_wei,
            tx_hash=tx_hash,
        )

    async def delete_session_key(self) -> None:
        """
        Destroy the key on the gateway and forget it locally.

        Funds are not withdrawn here; use ``confirm_delete_session`` for that.
        """
        self._update(is_loading=True, error=None)
        try:
            client = self._require_client("delete session")
            session_key = self._require_session_key("delete session")
            await self.ensure_network()
            await client.delete_session_key(session_key)
        except Exception as exc:
            raise self._fail(exc, SessionDeletionError, "Deletion failed")

        logger.info(f"Deleted session key {session_key}")
        self._forget_session()

    async def cleanup_session_key(self) -> None:
        """Destroy whatever key the gateway holds for this account, without needing its address."""
        self._update(is_loading=True, error=None)
        try:
            client = self._require_client("clean up session")
            await self.ensure_network()
            await client.cleanup_session_keys()
        except Exception as exc:
            raise self._fail(exc, SessionDeletionError, "Cleanup failed")

        logger.info("Cleaned up session keys")
        self._forget_session()

    def _forget_session(self) -> None:
        self._remove_provider_listeners()
        self.session_store.clear()
        self._update(session_key=None, is_active=False, balance=None, is_loading=False)

    async def confirm_delete_session(self, address: str) -> DeletionState:
        """
        Safe deletion: sweep funds to ``address``, then destroy the key.

        Never raises for failures inside the saga. They leave the machine in
        ERROR with the key intact, and the error is published on the state.

        Raises:
            PreconditionError: No address/provider
            InvalidTransitionError: A previous deletion was not reset
        """
        if not address:
            raise self._reject("Please connect your wallet first")
        self._require_client("delete session")

        self.deletion.transition_to(DeletionState.ACTIVE)
        self._update(deletion_error=None)

        try:
            self.deletion.transition_to(
                DeletionState.WITHDRAWING,
                reason="withdrawing funds before closing session",
            )
            result = await self.withdraw_from_session_key(address)

            if not result.succeeded:
                message = (
                    "Failed to withdraw funds from session key. "
                    "Please try again or use troubleshooting options."
                )
                self.deletion.fail(message)
                self._update(deletion_error=message, error=WithdrawalError(message), is_loading=False)
                return self.deletion.current_state

            self.deletion.transition_to(DeletionState.DELETING, reason=result.status.value)
            await self.delete_session_key()
            self.deletion.transition_to(DeletionState.COMPLETED)
        except Exception as exc:
            error = wrap_error(exc, SessionDeletionError, "Failed to delete session")
            logger.error(f"Failed to delete session: {error.message}")
            self.deletion.fail(error.message)
            self._update(deletion_error=error.message, error=error, is_loading=False)

        return self.deletion.current_state

    def reset_deletion_state(self) -> None:
        self.deletion.reset()
        self._update(deletion_error=None)

    # ------------------------------------------------------------------
    # Caller-facing actions
    # ------------------------------------------------------------------

    def set_transacting(self, is_transacting: bool) -> None:
        self._update(is_transacting=is_transacting)

    async def start_session(self, is_connected: bool = True) -> str:
        if self.client is None or not is_connected:
            raise self._reject("Please connect your wallet first")
        return await self.create_session_key()

    async def fund_session(
        self,
        amount: Amount,
        address: str,
        wallet_balance: Optional[Amount] = None,
    ) -> str:
        """Validated funding with the ``is_transacting`` flag held for the duration."""
        if self.client is None or not address:
            raise self._reject("Please connect your wallet first")
        if not self._state.session_key:
            raise self._reject("Please start a session first")
        problem = validate_amount(amount, wallet_balance, self.config.wallet_gas_reserve_eth)
        if problem:
            raise self._reject(problem)

        self.set_transacting(True)
        try:
            return await self.fund_session_key(amount, address)
        finally:
            self.set_transacting(False)

    async def withdraw_amount(self, amount: Amount, address: str) -> WithdrawalResult:
        if self.client is None or not address:
            raise self._reject("Please connect your wallet first")
        if not self._state.session_key:
            raise self._reject("Please start a session first")
        available = self._state.balance.eth if self._state.balance else None
        problem = validate_amount(amount, available, self.config.session_gas_reserve_eth)
        if problem:
            raise self._reject(problem)

        self.set_transacting(True)
        try:
            return await self.withdraw_from_session_key(address, amount)
        finally:
            self.set_transacting(False)

    def suggest_fund_amount(self, wallet_balance: Amount, percentage: Amount) -> str:
        return quick_amount(wallet_balance, percentage, self.config.wallet_gas_reserve_eth)

    def suggest_withdraw_amount(self, percentage: Amount) -> str:
        balance = self._state.balance.eth if self._state.balance else Decimal(0)
        return quick_amount(balance, percentage, self.config.session_gas_reserve_eth)

    def reset(self) -> None:
        """Back to the initial in-memory state. The persisted key is kept."""
        self._remove_provider_listeners()
        self.deletion.reset()
        self._state = SessionKeyState()
        self._update()

    def clear_state(self) -> None:
        """Forget everything, including the persisted key."""
        self.session_store.clear()
        self.reset()
        logger.info("Session key state cleared from storage")

    @staticmethod
    def _parse_amount(amount: Amount) -> int:
        try:
            value_wei = parse_ether(amount)
        except ValueError as exc:
            raise PreconditionError("Please enter a valid amount") from exc
        if value_wei <= 0:
            raise PreconditionError("Please enter a valid amount")
        return value_wei
