from .base import EIP1193Provider, EventedProvider
from .http import HttpRpcProvider, fetch_latest_block_number
from .ten import TenRpcClient
from .token import BearerTokenCache

__all__ = [
    "EIP1193Provider",
    "EventedProvider",
    "HttpRpcProvider",
    "fetch_latest_block_number",
    "TenRpcClient",
    "BearerTokenCache",
]
