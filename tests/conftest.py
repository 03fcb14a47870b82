"""
Shared fixtures: a scripted EIP-1193 provider and an engine wired to it.
"""

import inspect
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Tuple

import pytest

from tensession.config import GWEI, Settings
from tensession.core.wallet import SessionKeyEngine
from tensession.providers.base import EventedProvider
from tensession.storage import InMemoryStore


SESSION_KEY = "0x" + "ab" * 20
WALLET = "0x" + "12" * 20
FUND_TX_HASH = "0x" + "f1" * 32
EXECUTE_TX_HASH = "0x" + "e1" * 32


class FakeProvider(EventedProvider):
    """
    Provider whose answers are scripted per method.

    ``responses`` holds a fixed result per method (a callable receives the
    params and may return an awaitable). ``script`` queues results returned
    one by one, the last one repeating. Exceptions are raised instead of
    returned.
    """

    name = "fake"

    def __init__(self, responses: Optional[Dict[str, Any]] = None):
        super().__init__()
        self.responses: Dict[str, Any] = dict(responses or {})
        self.queues: Dict[str, Deque[Any]] = {}
        self.calls: List[Tuple[str, List[Any]]] = []

    def script(self, method: str, *results: Any) -> None:
        self.queues[method] = deque(results)

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        params = list(params or [])
        self.calls.append((method, params))

        queue = self.queues.get(method)
        if queue:
            result = queue.popleft() if len(queue) > 1 else queue[0]
        elif method in self.responses:
            result = self.responses[method]
        else:
            raise AssertionError(f"Unexpected RPC call: {method}")

        if callable(result):
            result = result(params)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, Exception):
            raise result
        return result

    def calls_to(self, method: str) -> List[List[Any]]:
        return [params for name, params in self.calls if name == method]

    def storage_calls_to(self, target: str) -> List[List[Any]]:
        return [params for params in self.calls_to("eth_getStorageAt") if params[0] == target]


def _storage_router(config: Settings):
    def route(params: List[Any]) -> Any:
        target = params[0]
        if target == config.session_key_create_address:
            return "0x" + "00" * 12 + SESSION_KEY[2:]
        if target == config.session_key_delete_address:
            return "0x1"
        if target == config.session_key_execute_address:
            return EXECUTE_TX_HASH
        raise AssertionError(f"Unexpected storage target: {target}")

    return route


@pytest.fixture
def config() -> Settings:
    return Settings(storage_path="")


@pytest.fixture
def ten_provider(config: Settings) -> FakeProvider:
    """Provider answering like a healthy TEN gateway with 1 ETH on the session key."""
    return FakeProvider(
        {
            "eth_chainId": hex(config.chain_id),
            "eth_blockNumber": "0x10",
            "eth_getTransactionCount": "0x0",
            "eth_feeHistory": {
                "oldestBlock": "0x6",
                "baseFeePerGas": [hex(100 * GWEI)] * 5,
                "reward": [[hex(GWEI), hex(2 * GWEI), hex(3 * GWEI)]] * 4,
            },
            "eth_estimateGas": "0x5208",
            "eth_getBalance": hex(10**18),
            "eth_getTransactionReceipt": {
                "status": "0x1",
                "blockNumber": "0x11",
                "gasUsed": "0x5208",
            },
            "eth_sendTransaction": FUND_TX_HASH,
            "eth_getStorageAt": _storage_router(config),
        }
    )


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps: List[float]):
    async def sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return sleep


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def engine(ten_provider: FakeProvider, store: InMemoryStore, config: Settings, fake_sleep) -> SessionKeyEngine:
    return SessionKeyEngine(
        provider=ten_provider,
        store=store,
        config=config,
        direct_block_lookup=False,
        sleep=fake_sleep,
    )


@pytest.fixture
def session_key() -> str:
    return SESSION_KEY


@pytest.fixture
def wallet() -> str:
    return WALLET


@pytest.fixture
def fund_tx_hash() -> str:
    return FUND_TX_HASH


@pytest.fixture
def execute_tx_hash() -> str:
    return EXECUTE_TX_HASH


@pytest.fixture
def make_provider():
    """Factory for providers that start with only the given responses."""
    return FakeProvider
