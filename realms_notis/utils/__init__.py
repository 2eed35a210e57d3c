"""Utility helpers for account decoding and message formatting."""

from .account_layouts import (
    decode_governance,
    decode_mint_decimals,
    decode_proposal,
)
from .formatters import (
    format_hours_left,
    format_number,
    format_proposal_link,
    format_timestamp,
    to_ui_amount,
    truncate_description,
)

__all__ = [
    "decode_governance",
    "decode_mint_decimals",
    "decode_proposal",
    "format_hours_left",
    "format_number",
    "format_proposal_link",
    "format_timestamp",
    "to_ui_amount",
    "truncate_description",
]
