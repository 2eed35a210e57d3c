"""
Exception types for the Realms Notification System.

Every failure the poll loop can recover from maps onto one of these classes,
so callers can decide per error type whether to skip an account, abort a
cycle or leave store state untouched.
"""

from typing import Optional


class RealmsNotisError(RuntimeError):
    """Base class for realms-notis failures."""


class ConfigurationError(RealmsNotisError):
    """Raised when required configuration is missing or malformed."""


class TransportError(RealmsNotisError):
    """Raised when the RPC node or messaging gateway cannot be reached."""


class RPCError(TransportError):
    """Raised when the RPC node answers with a JSON-RPC error object."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class DecodeError(RealmsNotisError):
    """Raised when account data does not match the expected layout."""


class StorageError(RealmsNotisError):
    """Raised when the state file cannot be read or written."""


class NotificationDeliveryError(RealmsNotisError):
    """
    Raised when a notification could not be delivered.

    ``reason`` is one of ``rate_limited``, ``transport`` or ``permanent``.
    """

    RATE_LIMITED = "rate_limited"
    TRANSPORT = "transport"
    PERMANENT = "permanent"

    def __init__(self, message: str, reason: str = TRANSPORT):
        super().__init__(message)
        self.reason = reason
