"""
Tests for safe deletion (withdraw, then destroy) and the caller-facing
session actions.
"""

from decimal import Decimal

import pytest
import pytest_asyncio

from tensession.core.errors import InvalidTransitionError, PreconditionError
from tensession.core.wallet import DeletionState, SessionKeyEngine
from tensession.storage import SessionStateStore


RECIPIENT = "0x" + "34" * 20
RESERVE_WEI = 200_000_000_000_000


@pytest_asyncio.fixture
async def active_engine(engine: SessionKeyEngine) -> SessionKeyEngine:
    await engine.create_session_key()
    return engine


# =============================================================================
# Deletion saga
# =============================================================================

class TestConfirmDeleteSession:

    @pytest.mark.asyncio
    async def test_happy_path(self, active_engine, ten_provider, config, store):
        seen = []
        active_engine.subscribe(lambda state: seen.append(state.deletion_state))

        final_state = await active_engine.confirm_delete_session(RECIPIENT)

        assert final_state == DeletionState.COMPLETED
        assert active_engine.state.deletion_state == DeletionState.COMPLETED
        assert active_engine.state.session_key is None
        assert store.get(config.storage_key) is None

        ordered = [state for i, state in enumerate(seen) if i == 0 or seen[i - 1] != state]
        assert ordered == [
            DeletionState.ACTIVE,
            DeletionState.WITHDRAWING,
            DeletionState.DELETING,
            DeletionState.COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_withdraws_before_deleting(self, active_engine, ten_provider, config):
        await active_engine.confirm_delete_session(RECIPIENT)

        storage_targets = [params[0] for params in ten_provider.calls_to("eth_getStorageAt")]
        execute_index = storage_targets.index(config.session_key_execute_address)
        delete_index = storage_targets.index(config.session_key_delete_address)
        assert execute_index < delete_index

    @pytest.mark.asyncio
    async def test_withdrawal_revert_halts_in_error(self, active_engine, ten_provider, config, session_key):
        """A reverted withdrawal never reaches the destroy call."""
        ten_provider.responses["eth_getTransactionReceipt"] = {"status": "0x0"}

        final_state = await active_engine.confirm_delete_session(RECIPIENT)

        assert final_state == DeletionState.ERROR
        assert active_engine.state.deletion_state == DeletionState.ERROR
        assert active_engine.state.session_key == session_key
        assert "reverted" in active_engine.state.deletion_error
        assert ten_provider.storage_calls_to(config.session_key_delete_address) == []

    @pytest.mark.asyncio
    async def test_withdrawal_timeout_halts_in_error(self, active_engine, ten_provider, config, sleeps):
        ten_provider.responses["eth_getTransactionReceipt"] = None

        final_state = await active_engine.confirm_delete_session(RECIPIENT)

        assert final_state == DeletionState.ERROR
        assert len(sleeps) == config.confirmation_max_attempts - 1
        assert ten_provider.storage_calls_to(config.session_key_delete_address) == []

    @pytest.mark.asyncio
    async def test_delete_failure_after_withdrawal(self, active_engine, ten_provider, config, session_key):
        def storage(params):
            if params[0] == config.session_key_delete_address:
                raise RuntimeError("gateway down")
            return "0x" + "e1" * 32

        ten_provider.responses["eth_getStorageAt"] = storage

        final_state = await active_engine.confirm_delete_session(RECIPIENT)

        assert final_state == DeletionState.ERROR
        assert active_engine.deletion.history[-1].from_state == DeletionState.DELETING
        assert active_engine.state.session_key == session_key

    @pytest.mark.asyncio
    async def test_nothing_to_withdraw_still_deletes(self, active_engine, ten_provider, config):
        ten_provider.responses["eth_getBalance"] = hex(RESERVE_WEI)

        final_state = await active_engine.confirm_delete_session(RECIPIENT)

        assert final_state == DeletionState.COMPLETED
        assert ten_provider.storage_calls_to(config.session_key_execute_address) == []
        assert len(ten_provider.storage_calls_to(config.session_key_delete_address)) == 1

    @pytest.mark.asyncio
    async def test_requires_address(self, active_engine):
        with pytest.raises(PreconditionError):
            await active_engine.confirm_delete_session("")

        assert active_engine.deletion_state == DeletionState.IDLE

    @pytest.mark.asyncio
    async def test_retry_requires_reset(self, active_engine, ten_provider):
        ten_provider.responses["eth_getTransactionReceipt"] = {"status": "0x0"}
        await active_engine.confirm_delete_session(RECIPIENT)

        with pytest.raises(InvalidTransitionError):
            await active_engine.confirm_delete_session(RECIPIENT)

        active_engine.reset_deletion_state()
        assert active_engine.state.deletion_state == DeletionState.IDLE
        assert active_engine.state.deletion_error is None

        ten_provider.responses["eth_getTransactionReceipt"] = {"status": "0x1"}
        assert await active_engine.confirm_delete_session(RECIPIENT) == DeletionState.COMPLETED


# =============================================================================
# Caller-facing actions
# =============================================================================

class TestSessionActions:

    @pytest.mark.asyncio
    async def test_start_session(self, engine, session_key):
        assert await engine.start_session() == session_key

    @pytest.mark.asyncio
    async def test_start_session_requires_connection(self, engine):
        with pytest.raises(PreconditionError, match="connect your wallet"):
            await engine.start_session(is_connected=False)

        assert isinstance(engine.state.error, PreconditionError)

    @pytest.mark.asyncio
    async def test_fund_session_toggles_transacting(self, active_engine, wallet):
        flags = []
        active_engine.subscribe(lambda state: flags.append(state.is_transacting))

        await active_engine.fund_session("0.5", wallet, wallet_balance="1.0")

        assert True in flags
        assert active_engine.state.is_transacting is False

    @pytest.mark.asyncio
    async def test_fund_session_keeps_wallet_reserve(self, active_engine, ten_provider, wallet):
        with pytest.raises(PreconditionError, match="exceeds available balance"):
            await active_engine.fund_session("1.0", wallet, wallet_balance="1.0")

        assert ten_provider.calls_to("eth_sendTransaction") == []

    @pytest.mark.asyncio
    async def test_fund_session_requires_started_session(self, engine, wallet):
        with pytest.raises(PreconditionError, match="start a session"):
            await engine.fund_session("0.1", wallet)

    def test_fund_suggestion(self, engine):
        """50% of a 1 ETH wallet after the 0.001 reserve, floored to 3 decimals."""
        assert engine.suggest_fund_amount("1.0", 50) == "0.499"

    @pytest.mark.asyncio
    async def test_suggested_amount_funds(self, active_engine, ten_provider, wallet):
        amount = active_engine.suggest_fund_amount("1.0", 50)

        await active_engine.fund_session(amount, wallet, wallet_balance="1.0")

        assert ten_provider.calls_to("eth_sendTransaction")[0][0]["value"] == hex(499 * 10**15)

    @pytest.mark.asyncio
    async def test_withdraw_amount_validates_against_session_balance(self, active_engine):
        with pytest.raises(PreconditionError, match="exceeds available balance"):
            await active_engine.withdraw_amount("1.0", RECIPIENT)

    @pytest.mark.asyncio
    async def test_withdraw_amount(self, active_engine):
        result = await active_engine.withdraw_amount("0.5", RECIPIENT)

        assert result.amount_wei == 5 * 10**17
        assert active_engine.state.is_transacting is False

    @pytest.mark.asyncio
    async def test_withdraw_suggestion(self, active_engine):
        assert active_engine.suggest_withdraw_amount(100) == "0.999"
        assert active_engine.state.balance.eth == Decimal(1)


# =============================================================================
# State management
# =============================================================================

class TestStateManagement:

    @pytest.mark.asyncio
    async def test_init_session_refreshes_rehydrated_key(self, ten_provider, store, config, session_key):
        SessionStateStore(store, config.storage_key).save_session_key(session_key)
        engine = SessionKeyEngine(store=store, config=config, direct_block_lookup=False)

        await engine.init_session(ten_provider)

        assert engine.state.balance.eth == Decimal(1)

    def test_unsubscribe(self, engine):
        seen = []
        unsubscribe = engine.subscribe(seen.append)

        engine.set_transacting(True)
        unsubscribe()
        engine.set_transacting(False)

        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_reset_keeps_persisted_key(self, active_engine, store, config):
        active_engine.reset()

        assert active_engine.state.session_key is None
        assert store.get(config.storage_key) is not None

    @pytest.mark.asyncio
    async def test_clear_state_forgets_everything(self, active_engine, ten_provider, store, config):
        active_engine.clear_state()

        assert active_engine.state.session_key is None
        assert store.get(config.storage_key) is None
        assert ten_provider.listener_count("chainChanged") == 0

    def test_to_dict(self, engine):
        engine.update_state(is_loading=True)

        snapshot = engine.state.to_dict()

        assert snapshot["isLoading"] is True
        assert snapshot["deletionState"] == "idle"
        assert snapshot["sessionKey"] is None
