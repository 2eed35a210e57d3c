"""
Notification System using Apprise.
Formats proposal notifications and delivers them to the configured channel.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import apprise

from .exceptions import NotificationDeliveryError
from .models import GovernanceRecord, ProposalRecord
from .utils.formatters import (
    format_hours_left,
    format_number,
    format_proposal_link,
    format_timestamp,
    truncate_description,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    """A composed message ready for delivery."""
    title: str
    body: str


def format_new_proposal_message(record: ProposalRecord, ui_base_url: str = "") -> Notification:
    """
    Format the "proposal entered voting" message.

    Args:
        record: Proposal that just entered the Voting state
        ui_base_url: Governance UI base URL used for links

    Returns:
        Notification for the channel
    """
    lines = [
        f"**proposal**: {format_proposal_link(record.key, ui_base_url)}",
        f"**name**: {record.name or 'unnamed proposal'}",
        f"**description**: {truncate_description(record.description_link)}",
        f"**voting started**: {format_timestamp(record.voting_started_at)}",
    ]
    return Notification(title="New Proposal Detected", body="\n".join(lines))


def format_left_voting_message(record: ProposalRecord, ui_base_url: str = "") -> Notification:
    """
    Format the "proposal left voting" message.

    Args:
        record: Proposal carrying its new, non-Voting state

    Returns:
        Notification for the channel
    """
    lines = [
        f"**proposal**: {format_proposal_link(record.key, ui_base_url)}",
        f"**name**: {record.name or 'unnamed proposal'}",
        f"**outcome**: {record.state.value}",
        f"**approval vote count**: {format_number(record.yes_votes)}",
        f"**deny vote count**: {format_number(record.deny_votes)}",
    ]
    return Notification(title="Proposal Voting Ended", body="\n".join(lines))


def vote_ends_at(
    record: ProposalRecord,
    governance: Optional[GovernanceRecord] = None
) -> Optional[datetime]:
    """End of the voting window, when both the start and the duration are known."""
    if record.voting_started_at is None:
        return None
    max_voting_time = record.max_voting_time
    if max_voting_time is None and governance is not None:
        max_voting_time = governance.max_voting_time
    if not max_voting_time:
        return None
    return record.voting_started_at + timedelta(seconds=max_voting_time)


def format_reminder_message(
    record: ProposalRecord,
    now: datetime,
    governance: Optional[GovernanceRecord] = None,
    ui_base_url: str = ""
) -> Notification:
    """
    Format the periodic voting stats reminder.

    Args:
        record: Proposal still in the Voting state
        now: Current time, used for the time-left field
        governance: Owning governance, for the voting window length

    Returns:
        Notification for the channel
    """
    ends_at = vote_ends_at(record, governance)
    remaining = ends_at - now if ends_at is not None else None

    lines = [
        "stats for proposals accepting votes",
        f"**proposal**: {format_proposal_link(record.key, ui_base_url)}",
        f"**name**: {record.name or 'unnamed proposal'}",
        f"**description**: {truncate_description(record.description_link)}",
        f"**approval vote count**: {format_number(record.yes_votes)}",
        f"**deny vote count**: {format_number(record.deny_votes)}",
        f"**time left**: {format_hours_left(remaining)}",
    ]
    return Notification(title="Proposal Voting Stats", body="\n".join(lines))


def format_status_message(realm_key: str) -> Notification:
    return Notification(title="Realms Notifier", body=f"listening for new proposals on realm {realm_key}")


def _with_timeouts(channel_url: str, timeout: int) -> str:
    """Add Apprise connect/read timeouts to a URL unless already present."""
    parts = urlsplit(channel_url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    query.setdefault("cto", str(timeout))
    query.setdefault("rto", str(timeout))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


class AppriseSink:
    """
    Message sink delivering notifications through Apprise.

    ``channel_id`` passed to ``send`` is an Apprise URL such as
    ``discord://webhook_id/webhook_token``.
    """

    def __init__(self, timeout: int = 15):
        self.timeout = timeout

    def send(self, channel_id: str, notification: Notification) -> None:
        """
        Send a notification.

        Raises:
            NotificationDeliveryError: If the channel is invalid or delivery failed
        """
        # Check if channel is configured
        if not channel_id or channel_id.startswith("PLACEHOLDER"):
            logger.warning("Notification channel not configured, skipping notification")
            logger.info(f"Message that would be sent:\n{notification.title}\n{notification.body}")
            return

        apobj = apprise.Apprise()

        # Add notification service
        if not apobj.add(_with_timeouts(channel_id, self.timeout)):
            raise NotificationDeliveryError(
                "Failed to add notification service, check NOTIFICATION_URL",
                reason=NotificationDeliveryError.PERMANENT
            )

        logger.info(f"Sending notification '{notification.title}'...")
        try:
            result = apobj.notify(
                body=notification.body,
                title=notification.title,
                body_format=apprise.NotifyFormat.MARKDOWN
            )
        except Exception as e:
            raise NotificationDeliveryError(f"Notification delivery raised: {e}") from e

        if not result:
            raise NotificationDeliveryError(f"Failed to deliver notification '{notification.title}'")

        logger.info(f"Successfully sent notification '{notification.title}'")
