"""Ether/wei conversion and amount helpers.

All arithmetic goes through Decimal so user-entered amounts such as "0.1"
convert to wei exactly.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Optional, Union

from eth_utils import is_hex, to_int

from ..config import WEI_PER_ETH

Amount = Union[str, int, float, Decimal]

_THREE_PLACES = Decimal("0.001")


def to_decimal(value: Amount) -> Decimal:
    """Parse a user-facing amount. Raises ValueError for anything non-numeric."""
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"Invalid amount: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return result


def parse_ether(value: Amount) -> int:
    """Convert an ETH amount to wei, truncating anything below 1 wei."""
    wei = to_decimal(value) * WEI_PER_ETH
    return int(wei.to_integral_value(rounding=ROUND_DOWN))


def format_ether(wei: int) -> Decimal:
    return Decimal(wei) / Decimal(WEI_PER_ETH)


def to_hex(value: Union[int, str]) -> str:
    """0x-prefixed hex. Hex strings pass through, decimal strings are parsed."""
    if isinstance(value, str):
        if value.startswith("0x"):
            return value
        return hex(int(value))
    return hex(value)


def hex_to_int(value: Union[int, str, None]) -> int:
    if value is None or value == "" or value == "0x":
        return 0
    if isinstance(value, int):
        return value
    if is_hex(value) and value.startswith("0x"):
        return to_int(hexstr=value)
    return int(value)


def estimate_transactions(balance_wei: int, gas_price_wei: int, gas_limit: int) -> int:
    """How many transactions of ``gas_limit`` at ``gas_price_wei`` the balance pays for."""
    if balance_wei <= 0 or gas_price_wei <= 0 or gas_limit <= 0:
        return 0
    return balance_wei // (gas_price_wei * gas_limit)


def quick_amount(balance: Amount, percentage: Amount, reserve: Amount) -> str:
    """
    Suggested transfer for a "25% / 50% / 75% / 100%" shortcut.

    The reserve is held back first, then the percentage is applied and the
    result is floored to three decimals.
    """
    available = max(Decimal(0), to_decimal(balance) - to_decimal(reserve))
    amount = available * to_decimal(percentage) / Decimal(100)
    return f"{amount.quantize(_THREE_PLACES, rounding=ROUND_DOWN):.3f}"


def validate_amount(
    amount: Optional[Amount],
    available: Optional[Amount] = None,
    reserve: Amount = 0,
) -> Optional[str]:
    """Return an error message for an unusable amount, or None when it is fine.

    ``available`` of None skips the balance check (balance not known yet).
    """
    if amount is None or (isinstance(amount, str) and not amount.strip()):
        return "Please enter a valid amount"
    try:
        value = to_decimal(amount)
    except ValueError:
        return "Please enter a valid amount"
    if value <= 0:
        return "Please enter a valid amount"
    if available is not None:
        reserve_value = to_decimal(reserve)
        if value > to_decimal(available) - reserve_value:
            return f"Amount exceeds available balance (reserves {reserve_value} ETH for gas)"
    return None


def format_balance(value: Amount, decimals: int = 4) -> str:
    number = to_decimal(value)
    if number == 0:
        return "0"
    if number < Decimal("0.0001"):
        return "< 0.0001"
    return f"{number:.{decimals}f}"


__all__ = [
    "parse_ether",
    "format_ether",
    "to_hex",
    "hex_to_int",
    "estimate_transactions",
    "quick_amount",
    "validate_amount",
    "format_balance",
]
