"""
Transaction encoder for TEN delegated execution.

Builds the raw EIP-1559 (type 2) byte stream the session-key execute call
expects: the RLP list of the twelve transaction fields, prefixed with the
type byte, then base64 encoded because the RPC only carries strings.
"""

import base64
from typing import Union

import rlp
from rlp.exceptions import DecodingError as RLPDecodingError
from eth_utils import big_endian_to_int, decode_hex, encode_hex, int_to_big_endian

from ...services.address import is_evm_address
from ..errors import EncodingError
from .models import DecodedTransaction, EncodedTransaction, FeeQuote, TransactionIntent


EIP1559_TX_TYPE = 0x02


def _encode_int(value: int) -> bytes:
    """Minimal big-endian bytes. Zero is the empty string, never 0x00."""
    if value < 0:
        raise EncodingError(f"Cannot encode negative integer {value}")
    if value == 0:
        return b""
    return int_to_big_endian(value)


def _encode_quantity(value: Union[int, str, None]) -> bytes:
    """Integer field given as int, hex string or decimal string."""
    if value is None or value == "" or value == "0x":
        return b""
    if isinstance(value, int):
        return _encode_int(value)
    text = value.strip().lower()
    try:
        number = int(text, 16) if text.startswith("0x") else int(text)
    except ValueError as exc:
        raise EncodingError(f"Invalid integer field: {value!r}") from exc
    return _encode_int(number)


def _encode_data(data: Union[str, None]) -> bytes:
    if not data:
        return b""
    text = data.strip().lower()
    if text in ("0x", ""):
        return b""
    if len(text.removeprefix("0x")) % 2:
        raise EncodingError(f"Calldata has an odd number of hex digits: {data!r}")
    try:
        return decode_hex(text)
    except ValueError as exc:
        raise EncodingError(f"Invalid calldata: {data!r}") from exc


def _encode_address(to: Union[str, None]) -> bytes:
    if not to:
        raise EncodingError("Transaction intent is missing a 'to' address")
    if not is_evm_address(to.strip()):
        raise EncodingError(f"Invalid 'to' address: {to!r}")
    return decode_hex(to.strip().lower())


class TransactionEncoder:
    """
    Serialises transaction intents into the canonical type-2 layout.

    Handles:
    - Minimal integer encoding (zero -> empty field, including nonce 0)
    - Lower-cased address and calldata
    - Empty access list and empty v/r/s slots
    - Type byte prefix and base64 transport encoding
    """

    @staticmethod
    def build_fields(
        intent: TransactionIntent,
        chain_id: int,
        nonce: int,
        fees: FeeQuote,
        gas_limit: int,
    ) -> EncodedTransaction:
        """
        Build the ordered field tuple for an intent.

        Args:
            intent: The caller's transaction
            chain_id: Target chain ID
            nonce: Session key nonce
            fees: EIP-1559 fee pair
            gas_limit: Gas limit

        Returns:
            EncodedTransaction ready for RLP

        Raises:
            EncodingError: If ``to`` is missing or a field cannot be encoded
        """
        intent.validate()

        return EncodedTransaction(
            chain_id=_encode_int(chain_id),
            nonce=_encode_int(nonce),
            max_priority_fee_per_gas=_encode_int(fees.max_priority_fee_per_gas),
            max_fee_per_gas=_encode_int(fees.max_fee_per_gas),
            gas_limit=_encode_int(gas_limit),
            to=_encode_address(intent.to),
            value=_encode_quantity(intent.value),
            data=_encode_data(intent.data),
        )

    @staticmethod
    def encode(
        intent: TransactionIntent,
        chain_id: int,
        nonce: int,
        fees: FeeQuote,
        gas_limit: int,
    ) -> bytes:
        """Raw type-2 transaction bytes: ``0x02 || rlp(fields)``."""
        fields = TransactionEncoder.build_fields(intent, chain_id, nonce, fees, gas_limit)
        encoded = rlp.encode(fields.as_list())
        if not isinstance(encoded, (bytes, bytearray)) or not encoded:
            raise EncodingError(f"Unexpected RLP encoding result: {type(encoded).__name__}")
        return bytes([EIP1559_TX_TYPE]) + bytes(encoded)

    @staticmethod
    def encode_base64(
        intent: TransactionIntent,
        chain_id: int,
        nonce: int,
        fees: FeeQuote,
        gas_limit: int,
    ) -> str:
        raw = TransactionEncoder.encode(intent, chain_id, nonce, fees, gas_limit)
        return base64.b64encode(raw).decode("ascii")

    @staticmethod
    def decode(raw: Union[bytes, str]) -> DecodedTransaction:
        """
        Recover field values from raw bytes (or their base64 transport form).

        Signature slots are ignored.
        """
        if isinstance(raw, str):
            try:
                raw = base64.b64decode(raw, validate=True)
            except ValueError as exc:
                raise EncodingError("Payload is not valid base64") from exc

        if not raw or raw[0] != EIP1559_TX_TYPE:
            raise EncodingError("Not an EIP-1559 typed transaction")

        try:
            items = rlp.decode(raw[1:])
        except RLPDecodingError as exc:
            raise EncodingError(f"Malformed RLP payload: {exc}") from exc

        if not isinstance(items, (list, tuple)) or len(items) != 12:
            raise EncodingError("Expected a 12-field transaction list")

        chain_id, nonce, priority, max_fee, gas_limit, to, value, data = items[:8]
        return DecodedTransaction(
            chain_id=big_endian_to_int(chain_id),
            nonce=big_endian_to_int(nonce),
            max_priority_fee_per_gas=big_endian_to_int(priority),
            max_fee_per_gas=big_endian_to_int(max_fee),
            gas_limit=big_endian_to_int(gas_limit),
            to=encode_hex(to),
            value=big_endian_to_int(value),
            data=encode_hex(data) if data else "",
        )
