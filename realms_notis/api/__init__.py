"""Solana RPC client package for the Realms Notification System."""

from .client import SolanaRPCClient
from .models import (
    AccountInfo,
    KeyedAccount,
    MemcmpFilter
)

__all__ = [
    "SolanaRPCClient",
    "AccountInfo",
    "KeyedAccount",
    "MemcmpFilter"
]
