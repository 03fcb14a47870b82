"""
Transaction execution models and types.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ...services.units import to_hex
from ..errors import EncodingError


class Urgency(str, Enum):
    """Inclusion-speed tier used for fee estimation."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class ReceiptStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class FeeQuote:
    """EIP-1559 fee pair. ``max_fee_per_gas`` always covers the priority fee."""
    max_fee_per_gas: int
    max_priority_fee_per_gas: int

    def __post_init__(self):
        if self.max_priority_fee_per_gas < 0:
            raise ValueError("Priority fee cannot be negative")
        if self.max_fee_per_gas < self.max_priority_fee_per_gas:
            raise ValueError(
                f"maxFeePerGas {self.max_fee_per_gas} is below "
                f"maxPriorityFeePerGas {self.max_priority_fee_per_gas}"
            )


@dataclass
class TransactionIntent:
    """
    Caller-supplied transaction. Optional fields are derived by the engine.

    ``value`` is wei, either as an int or a hex/decimal string.
    ``data`` is hex calldata.
    """
    to: Optional[str]
    value: Union[int, str, None] = None
    data: Optional[str] = None
    nonce: Optional[int] = None
    gas_limit: Optional[int] = None
    max_fee_per_gas: Union[int, str, None] = None
    max_priority_fee_per_gas: Union[int, str, None] = None

    def validate(self) -> None:
        if not self.to:
            raise EncodingError("Transaction intent is missing a 'to' address")

    @property
    def has_fees(self) -> bool:
        return self.max_fee_per_gas is not None and self.max_priority_fee_per_gas is not None

    def to_call_object(self, from_address: str) -> Dict[str, Any]:
        """Shape accepted by ``eth_estimateGas``."""
        value = to_hex(self.value) if self.value not in (None, "") else "0x0"
        return {
            "to": self.to,
            "data": self.data,
            "value": value,
            "from": from_address,
        }


@dataclass(frozen=True)
class EncodedTransaction:
    """
    The ordered EIP-1559 field tuple prior to RLP serialisation.

    Signature slots stay empty: the remote environment signs out-of-band.
    """
    chain_id: bytes
    nonce: bytes
    max_priority_fee_per_gas: bytes
    max_fee_per_gas: bytes
    gas_limit: bytes
    to: bytes
    value: bytes
    data: bytes
    access_list: List[Any] = field(default_factory=list)
    v: bytes = b""
    r: bytes = b""
    s: bytes = b""

    def as_list(self) -> List[Any]:
        return [
            self.chain_id,
            self.nonce,
            self.max_priority_fee_per_gas,
            self.max_fee_per_gas,
            self.gas_limit,
            self.to,
            self.value,
            self.data,
            list(self.access_list),
            self.v,
            self.r,
            self.s,
        ]


@dataclass
class DecodedTransaction:
    """Field values recovered from raw type-2 bytes."""
    chain_id: int
    nonce: int
    max_priority_fee_per_gas: int
    max_fee_per_gas: int
    gas_limit: int
    to: str
    value: int
    data: str


@dataclass
class Receipt:
    tx_hash: str
    status: ReceiptStatus
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.status == ReceiptStatus.SUCCESS

    @classmethod
    def from_rpc(cls, tx_hash: str, data: Dict[str, Any]) -> "Receipt":
        status = data.get("status")
        succeeded = status in ("0x1", 1, "1", True)
        return cls(
            tx_hash=tx_hash,
            status=ReceiptStatus.SUCCESS if succeeded else ReceiptStatus.FAILURE,
            block_number=_maybe_int(data.get("blockNumber")),
            gas_used=_maybe_int(data.get("gasUsed")),
            raw=data,
        )


def _maybe_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    try:
        return int(value, 16) if str(value).startswith("0x") else int(value)
    except ValueError:
        return None
