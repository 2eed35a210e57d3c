"""
Notification Scheduling for Realms proposals.

Turns proposal transitions into channel notifications and keeps the store in
step with what has actually been delivered:

    Untracked --(enters Voting)--> Voting --(leaves Voting)--> Resolved
        |                                                         ^
        +------------------(first seen resolved, silent)----------+

A notification is always sent before the record that reflects it is
written. If delivery fails nothing is written, so the next poll re-derives
the same transition and retries it.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping, Optional

from .exceptions import NotificationDeliveryError, StorageError
from .models import (
    CycleReport,
    ProposalRecord,
    ProposalSnapshot,
    Transition,
)
from .notifier import (
    Notification,
    format_left_voting_message,
    format_new_proposal_message,
    format_reminder_message,
    vote_ends_at,
)
from .state_manager import StateStore
from .utils.formatters import to_ui_amount

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class NotificationScheduler:
    """
    State machine deciding which notifications to emit and when.

    Args:
        store: Durable store handle
        sink: Object with ``send(channel_id, notification)`` raising
            ``NotificationDeliveryError`` on failure
        channel_id: Target channel passed to the sink
        notification_frequency: Minimum spacing between reminders
        ui_base_url: Governance UI base URL for message links
        clock: Callable returning the current aware datetime
    """

    def __init__(
        self,
        store: StateStore,
        sink,
        channel_id: str,
        notification_frequency: timedelta,
        ui_base_url: str = "",
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.store = store
        self.sink = sink
        self.channel_id = channel_id
        self.notification_frequency = notification_frequency
        self.ui_base_url = ui_base_url
        self.clock = clock or utc_now
        # Serializes read-notify-persist between the poll cycle and the reminder sweep
        self._delivery_lock = threading.RLock()

    # ------------------------------------------------------------------
    # Record construction
    # ------------------------------------------------------------------

    def _apply_snapshot(
        self,
        current: Optional[ProposalRecord],
        snapshot: ProposalSnapshot,
        mint_decimals: Mapping[str, int],
        now: datetime
    ) -> ProposalRecord:
        """Copy display metadata from the snapshot; tracking fields are left as they are."""
        decimals = mint_decimals.get(snapshot.governing_token_mint, 0)
        metadata = {
            "governance_key": snapshot.governance_key,
            "name": snapshot.name,
            "description_link": snapshot.description_link,
            "governing_token_mint": snapshot.governing_token_mint,
            "yes_votes": to_ui_amount(snapshot.yes_vote_weight, decimals),
            "deny_votes": to_ui_amount(snapshot.deny_vote_weight, decimals),
            "max_voting_time": snapshot.max_voting_time,
        }

        if current is None:
            return ProposalRecord(
                key=snapshot.key,
                state=snapshot.state,
                voting_started_at=snapshot.voting_at,
                first_seen_at=now,
                updated_at=now,
                **metadata
            )

        if all(getattr(current, field) == value for field, value in metadata.items()):
            return current
        return current.model_copy(update={**metadata, "updated_at": now})

    def _transitioned_record(
        self,
        current: Optional[ProposalRecord],
        snapshot: ProposalSnapshot,
        mint_decimals: Mapping[str, int],
        now: datetime
    ) -> ProposalRecord:
        """Record as it should be stored once the transition is processed."""
        record = self._apply_snapshot(current, snapshot, mint_decimals, now)
        update = {
            "state": snapshot.state,
            "last_notified_state": snapshot.state,
            "last_reminder_at": None,
            "updated_at": now,
        }
        if snapshot.state.is_voting:
            update["voting_started_at"] = snapshot.voting_at or record.voting_started_at or now
        return record.model_copy(update=update)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _deliver(self, notification: Notification, proposal_key: str) -> bool:
        try:
            self.sink.send(self.channel_id, notification)
            return True
        except NotificationDeliveryError as e:
            logger.warning(
                f"Failed to send '{notification.title}' for proposal {proposal_key} "
                f"({e.reason}): {e}. Will retry next cycle"
            )
            return False

    # ------------------------------------------------------------------
    # Fetch-diff-notify cycle
    # ------------------------------------------------------------------

    def handle_transition(
        self,
        transition: Transition,
        snapshot: ProposalSnapshot,
        mint_decimals: Mapping[str, int],
        report: CycleReport,
        now: datetime
    ) -> None:
        """
        Process one transition: notify if it crosses the Voting boundary, then persist.
        """
        current = self.store.get(transition.key)
        pending = self._transitioned_record(current, snapshot, mint_decimals, now)

        notification = None
        if transition.entered_voting:
            notification = format_new_proposal_message(pending, self.ui_base_url)
        elif transition.left_voting:
            notification = format_left_voting_message(pending, self.ui_base_url)

        if notification is not None:
            logger.info(
                f"Proposal {transition.key} crossed the voting boundary: "
                f"{transition.previous_state.value if transition.previous_state else 'untracked'} -> "
                f"{transition.new_state.value}"
            )
            if not self._deliver(notification, transition.key):
                report.notifications_failed += 1
                return
            report.notifications_sent += 1
        else:
            report.silent_updates += 1
            logger.debug(f"Recording {transition.key} as {transition.new_state.value} without notification")

        try:
            self.store.update_proposal(
                transition.key,
                lambda cur: self._transitioned_record(cur, snapshot, mint_decimals, now)
            )
        except StorageError as e:
            report.storage_errors += 1
            if notification is not None:
                logger.error(
                    f"Notification for {transition.key} was delivered but persisting failed: {e}. "
                    "It will be sent again next cycle"
                )
            else:
                logger.error(f"Failed to persist {transition.key}: {e}")

    def refresh_metadata(
        self,
        snapshot: ProposalSnapshot,
        mint_decimals: Mapping[str, int],
        report: CycleReport,
        now: datetime
    ) -> None:
        """Update display fields of a proposal whose state did not change."""
        def mutate(cur: Optional[ProposalRecord]) -> Optional[ProposalRecord]:
            # Only refresh records whose state still matches; anything else is a transition
            if cur is None or cur.state != snapshot.state:
                return None
            return self._apply_snapshot(cur, snapshot, mint_decimals, now)

        try:
            before = self.store.get(snapshot.key)
            after = self.store.update_proposal(snapshot.key, mutate)
        except StorageError as e:
            report.storage_errors += 1
            logger.error(f"Failed to refresh {snapshot.key}: {e}")
            return
        if after != before:
            report.metadata_refreshed += 1

    def process_transitions(
        self,
        transitions,
        proposals: Mapping[str, ProposalSnapshot],
        mint_decimals: Optional[Mapping[str, int]] = None
    ) -> CycleReport:
        """
        Process a cycle's transitions and refresh the remaining proposals.

        Args:
            transitions: Ordered transitions from the differ
            proposals: The full proposal snapshot of this cycle
            mint_decimals: Governing mint -> decimals for vote tallies

        Returns:
            CycleReport with counters for this cycle
        """
        mint_decimals = mint_decimals or {}
        now = self.clock()
        report = CycleReport(transitions=len(transitions))

        transitioned = set()
        for transition in transitions:
            transitioned.add(transition.key)
            snapshot = proposals.get(transition.key)
            if snapshot is None:
                logger.error(f"Transition for {transition.key} has no matching snapshot, skipping")
                continue
            try:
                with self._delivery_lock:
                    self.handle_transition(transition, snapshot, mint_decimals, report, now)
            except StorageError as e:
                report.storage_errors += 1
                logger.error(f"Could not read stored record for {transition.key}: {e}")

        for key, snapshot in proposals.items():
            if key not in transitioned:
                self.refresh_metadata(snapshot, mint_decimals, report, now)

        logger.info(
            f"Cycle summary: {report.transitions} transitions, {report.notifications_sent} sent, "
            f"{report.notifications_failed} failed, {report.silent_updates} silent, "
            f"{report.metadata_refreshed} refreshed"
        )
        return report

    def record_baseline(
        self,
        proposals: Mapping[str, ProposalSnapshot],
        mint_decimals: Optional[Mapping[str, int]] = None
    ) -> int:
        """
        Store every not yet known proposal without notifying.

        Proposals already in Voting become tracked, so they receive reminders
        but no "new proposal" message.

        Returns:
            Number of proposals recorded
        """
        mint_decimals = mint_decimals or {}
        now = self.clock()
        recorded = 0

        for snapshot in proposals.values():
            def mutate(cur: Optional[ProposalRecord], snapshot=snapshot) -> Optional[ProposalRecord]:
                if cur is not None:
                    return None
                return self._transitioned_record(None, snapshot, mint_decimals, now)

            before = self.store.get(snapshot.key)
            self.store.update_proposal(snapshot.key, mutate)
            if before is None:
                recorded += 1

        logger.info(f"Recorded {recorded} proposals as baseline")
        return recorded

    # ------------------------------------------------------------------
    # Reminder sweep
    # ------------------------------------------------------------------

    def is_reminder_due(self, record: ProposalRecord, now: datetime) -> bool:
        """True when at least ``notification_frequency`` passed since the later of last reminder and voting start."""
        if not record.is_active:
            return False
        anchor = record.reminder_anchor()
        if anchor is None:
            return True
        return now - anchor >= self.notification_frequency

    def _remind(self, key: str, now: datetime, report: CycleReport) -> None:
        try:
            # Re-read: the poll cycle may have resolved the proposal since the scan
            record = self.store.get(key)
            if record is None or not self.is_reminder_due(record, now):
                return
            governance = self.store.get_governance(record.governance_key)
        except StorageError as e:
            report.storage_errors += 1
            logger.error(f"Could not read stored records for {key}, skipping its reminder: {e}")
            return

        ends_at = vote_ends_at(record, governance)
        if ends_at is not None and now >= ends_at:
            logger.info(f"Voting window of {key} ended at {ends_at}, awaiting on-chain finalization")
            return

        notification = format_reminder_message(record, now, governance, self.ui_base_url)
        if not self._deliver(notification, key):
            report.notifications_failed += 1
            return
        report.notifications_sent += 1

        def mark_reminded(cur: Optional[ProposalRecord]) -> Optional[ProposalRecord]:
            if cur is None or not cur.is_active:
                return None
            return cur.model_copy(update={"last_reminder_at": now})

        try:
            self.store.update_proposal(key, mark_reminded)
        except StorageError as e:
            report.storage_errors += 1
            logger.error(f"Reminder for {key} was sent but persisting failed: {e}")

    def sweep_reminders(self) -> CycleReport:
        """
        Send a reminder for every Voting proposal that is due one.

        Returns:
            CycleReport with reminder counters
        """
        now = self.clock()
        report = CycleReport()
        active = self.store.scan_active()
        logger.info(f"Reminder sweep over {len(active)} voting proposals")

        for candidate in active:
            with self._delivery_lock:
                self._remind(candidate.key, now, report)

        logger.info(f"Reminder sweep: {report.notifications_sent} sent, {report.notifications_failed} failed")
        return report
