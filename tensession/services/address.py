"""Helpers for validating and normalising EVM addresses."""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Optional

from eth_utils import is_hex_address

_EVM_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


@lru_cache(maxsize=256)
def is_evm_address(address: Optional[str]) -> bool:
    if not address:
        return False
    return bool(_EVM_ADDRESS_RE.match(address)) and is_hex_address(address)


def normalize_address(address: str) -> str:
    """Lower-cased 0x address. Raises ValueError when ``address`` is not one."""
    candidate = (address or "").strip()
    if not is_evm_address(candidate):
        raise ValueError(f"Invalid EVM address: {address!r}")
    return candidate.lower()


def address_from_word(word: str) -> str:
    """Take the low 20 bytes of a hex word (e.g. a 32-byte storage slot) as an address."""
    clean = (word or "").strip()
    if clean.startswith("0x"):
        clean = clean[2:]
    if len(clean) < 40:
        raise ValueError(f"Response too short to hold an address: {word!r}")
    return normalize_address("0x" + clean[-40:])


def shorten_address(address: str, chars: int = 4) -> str:
    if not address:
        return ""
    return f"{address[:chars + 2]}...{address[-chars:]}"


__all__ = [
    "is_evm_address",
    "normalize_address",
    "address_from_word",
    "shorten_address",
]
