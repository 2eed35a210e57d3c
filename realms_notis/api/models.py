"""
Pydantic models for Solana JSON-RPC response validation and type safety.
"""

import base64
import binascii
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from ..exceptions import DecodeError


class RPCErrorBody(BaseModel):
    """JSON-RPC error object."""
    code: int
    message: str
    data: Optional[Any] = None


class RPCResponse(BaseModel):
    """Envelope shared by every JSON-RPC response."""
    jsonrpc: str = "2.0"
    id: Optional[Any] = None
    result: Optional[Any] = None
    error: Optional[RPCErrorBody] = None


class RPCContext(BaseModel):
    slot: int
    apiVersion: Optional[str] = None


class AccountInfo(BaseModel):
    """Account as returned with ``encoding: base64``."""
    data: List[str]
    executable: bool = False
    lamports: int = 0
    owner: str
    rentEpoch: Optional[int] = None
    space: Optional[int] = None

    @property
    def raw_data(self) -> bytes:
        """Decoded account bytes."""
        if len(self.data) != 2 or self.data[1] != "base64":
            raise DecodeError(f"Unexpected account data encoding: {self.data[1:]}")
        try:
            return base64.b64decode(self.data[0])
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f"Invalid base64 account data: {e}") from e


class AccountInfoResult(BaseModel):
    """Result of ``getAccountInfo``."""
    context: RPCContext
    value: Optional[AccountInfo] = None


class KeyedAccount(BaseModel):
    """One entry of a ``getProgramAccounts`` result."""
    pubkey: str
    account: AccountInfo


class MemcmpFilter(BaseModel):
    """``memcmp`` filter for ``getProgramAccounts``; ``bytes`` is base58."""
    offset: int
    bytes_: str = Field(alias="bytes")

    def to_param(self) -> dict:
        return {"memcmp": {"offset": self.offset, "bytes": self.bytes_}}
