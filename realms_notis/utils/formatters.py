"""
Data formatting utilities for notification messages.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Union

DESCRIPTION_LIMIT = 512


def format_number(
    value: Union[str, int, float, Decimal],
    decimals: Optional[int] = None
) -> str:
    """
    Format number for display.

    Args:
        value: Numeric value
        decimals: Number of decimal places (None for auto)

    Returns:
        Formatted number string
    """
    try:
        if isinstance(value, (str, Decimal)):
            value = float(value)

        if decimals is None:
            # Auto-detect decimal places
            if value == int(value):
                return f"{int(value):,}"
            else:
                return f"{value:,.2f}"
        elif decimals == 0:
            return f"{int(value):,}"
        else:
            return f"{value:,.{decimals}f}"
    except (ValueError, TypeError):
        return "0"


def format_timestamp(
    timestamp: Optional[datetime],
    format_str: str = "%Y-%m-%d %H:%M:%S UTC"
) -> str:
    """
    Format an aware datetime for display.

    Returns:
        Formatted datetime string, or "unknown" for missing values
    """
    if timestamp is None:
        return "unknown"
    return timestamp.strftime(format_str)


def format_hours_left(remaining: Optional[timedelta]) -> str:
    """Whole hours left in a voting window."""
    if remaining is None:
        return "unknown"
    hours = int(remaining.total_seconds() // 3600)
    return f"{max(hours, 0)} hours"


def to_ui_amount(raw_amount: int, decimals: int) -> float:
    """Scale a raw token amount by the mint decimals."""
    if raw_amount == 0:
        return 0.0
    return raw_amount / 10 ** decimals


def truncate_description(description: str, limit: int = DESCRIPTION_LIMIT) -> str:
    """
    Shorten a description link for message embeds.

    Returns:
        The description cut to ``limit`` characters, or a placeholder when empty
    """
    if not description or not description.strip():
        return "no description provided"
    if len(description) > limit:
        return description[:limit]
    return description


def format_proposal_link(proposal_key: str, ui_base_url: str) -> str:
    """
    Markdown link to the proposal in the governance UI.

    Returns:
        ``[key](<base>/proposal/<key>)`` or the bare key when no UI is configured
    """
    if not ui_base_url:
        return proposal_key
    return f"[{proposal_key}]({ui_base_url.rstrip('/')}/proposal/{proposal_key})"
