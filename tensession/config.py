from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]

GWEI = 10**9
WEI_PER_ETH = 10**18


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    log_level: str = Field(default="INFO", description="Logging level")

    # Network
    chain_id: int = Field(default=8443, description="Expected TEN chain ID")
    chain_name: str = Field(default="TEN PROTOCOL", description="Human-readable chain name")
    rpc_url: str = Field(
        default="https://testnet-rpc.ten.xyz/v1/",
        description="TEN RPC base URL (token endpoints hang off this path)",
    )
    explorer_url: str = Field(default="https://testnet.tenscan.io", description="Block explorer URL")
    request_timeout_seconds: int = Field(default=30, description="HTTP request timeout")

    # Delegated execution targets
    session_key_create_address: str = Field(
        default="0x0000000000000000000000000000000000000003",
        description="Well-known address that provisions a session key",
    )
    session_key_delete_address: str = Field(
        default="0x0000000000000000000000000000000000000004",
        description="Well-known address that destroys a session key",
    )
    session_key_execute_address: str = Field(
        default="0x0000000000000000000000000000000000000005",
        description="Well-known address that executes a session-key transaction",
    )

    # Fee estimation
    fee_history_blocks: int = Field(default=10, ge=1, description="Blocks of fee history to sample")
    priority_fee_percentiles: List[int] = Field(
        default_factory=lambda: [25, 50, 75],
        description="Reward percentiles mapped to LOW/MEDIUM/HIGH",
    )
    base_fee_multipliers: Dict[str, Decimal] = Field(
        default_factory=lambda: {
            "LOW": Decimal("1.1"),
            "MEDIUM": Decimal("1.2"),
            "HIGH": Decimal("1.5"),
        },
        description="Base fee multiplier per urgency tier",
    )
    min_priority_fee_wei: int = Field(default=GWEI, description="Priority fee floor")
    fallback_base_fee_wei: int = Field(default=GWEI, description="Base fee used when estimation fails")
    fallback_priority_fees_wei: Dict[str, int] = Field(
        default_factory=lambda: {"LOW": GWEI, "MEDIUM": 2 * GWEI, "HIGH": 3 * GWEI},
        description="Priority fee per urgency tier used when estimation fails",
    )

    # Confirmation polling
    confirmation_interval_seconds: float = Field(default=2.0, description="Seconds between receipt polls")
    confirmation_max_attempts: int = Field(default=30, ge=1, description="Receipt polls before timing out")
    fund_confirmation_max_attempts: int = Field(
        default=30,
        ge=0,
        description="Receipt polls for funding transfers (0 = poll until a receipt appears)",
    )

    # Balances
    session_gas_reserve_wei: int = Field(
        default=200_000_000_000_000,
        description="Wei kept on the session key to pay for its own withdrawal",
    )
    wallet_gas_reserve_eth: Decimal = Field(
        default=Decimal("0.001"),
        description="ETH kept on the primary wallet when suggesting funding amounts",
    )
    default_gas_limit: int = Field(default=21000, description="Gas limit used to estimate remaining transactions")

    # Persistence
    storage_path: str = Field(default="", description="JSON file for persisted state (empty = in-memory)")
    storage_key: str = Field(default="ten-session-key-state", description="Key of the persisted session blob")

    # Bearer token
    token_max_age_seconds: int = Field(default=24 * 60 * 60, description="Bearer token max age")
    token_fetch_retries: int = Field(default=3, ge=1, description="Attempts when fetching a bearer token")
    token_retry_delay_seconds: float = Field(default=1.0, description="Linear backoff step between token fetches")

    @property
    def has_storage_path(self) -> bool:
        return bool(self.storage_path)

    @property
    def session_gas_reserve_eth(self) -> Decimal:
        return Decimal(self.session_gas_reserve_wei) / Decimal(WEI_PER_ETH)

    def base_fee_multiplier(self, urgency: str) -> Decimal:
        return self.base_fee_multipliers[urgency.upper()]

    def percentile_index(self, urgency: str) -> int:
        """Column of the fee-history reward matrix that belongs to ``urgency``."""
        order = ["LOW", "MEDIUM", "HIGH"]
        return order.index(urgency.upper())

    def summary(self) -> Dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "rpc_url": self.rpc_url,
            "storage": self.storage_path or "memory",
        }


# Global settings instance
settings = Settings()
