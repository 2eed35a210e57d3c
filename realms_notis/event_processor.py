"""
Event Processing for Realms Notifications.
Compares a fetched proposal snapshot with stored records and derives state transitions.

Nothing in this module performs I/O: both inputs are plain mappings, which
keeps the diff deterministic and easy to test.
"""

import logging
from datetime import datetime, timezone
from typing import List, Mapping

from .models import ProposalRecord, ProposalSnapshot, Transition

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _snapshot_order(snapshot: ProposalSnapshot):
    # Oldest proposals first, key as tie breaker
    return (snapshot.draft_at or _EPOCH, snapshot.key)


def diff_snapshot(
    snapshot: Mapping[str, ProposalSnapshot],
    stored: Mapping[str, ProposalRecord]
) -> List[Transition]:
    """
    Derive proposal transitions between stored state and a chain snapshot.

    Steps:
    1. Keys in the snapshot but not in the store become first observations
    2. Keys whose stored state differs from the snapshot become transitions
    3. Keys only in the store are ignored (see ``find_disappeared``)

    Args:
        snapshot: Proposal key -> decoded proposal from this poll cycle
        stored: Proposal key -> persisted record

    Returns:
        Transitions ordered oldest proposal first
    """
    transitions = []

    for proposal in sorted(snapshot.values(), key=_snapshot_order):
        record = stored.get(proposal.key)

        if record is None:
            transitions.append(Transition(key=proposal.key, previous_state=None, new_state=proposal.state))
            logger.debug(f"  First observation of {proposal.key} in state {proposal.state.value}")
        elif record.state != proposal.state:
            transitions.append(Transition(key=proposal.key, previous_state=record.state, new_state=proposal.state))
            logger.debug(f"  {proposal.key}: {record.state.value} -> {proposal.state.value}")

    logger.info(f"Diff complete: {len(transitions)} transitions across {len(snapshot)} proposals")
    return transitions


def find_disappeared(
    snapshot: Mapping[str, ProposalSnapshot],
    stored: Mapping[str, ProposalRecord]
) -> List[str]:
    """
    Keys that are stored but missing from the snapshot.

    A missing account may be a closed proposal or a gap in the RPC response;
    the two cannot be told apart, so these are reported and never treated as
    state changes.
    """
    return sorted(key for key in stored if key not in snapshot)
