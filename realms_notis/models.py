"""
Pydantic models for proposal tracking and on-chain snapshots.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProposalState(str, Enum):
    """Proposal lifecycle, in on-chain discriminant order."""
    DRAFT = "Draft"
    SIGNING_OFF = "SigningOff"
    VOTING = "Voting"
    SUCCEEDED = "Succeeded"
    EXECUTING = "Executing"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    DEFEATED = "Defeated"
    EXECUTING_WITH_ERRORS = "ExecutingWithErrors"
    VETOED = "Vetoed"

    @classmethod
    def from_discriminant(cls, value: int) -> "ProposalState":
        """Map the borsh enum tag to a state."""
        members = list(cls)
        if value < 0 or value >= len(members):
            raise ValueError(f"Unknown proposal state discriminant: {value}")
        return members[value]

    @property
    def is_voting(self) -> bool:
        return self is ProposalState.VOTING


class ProposalKind(str, Enum):
    """Proposal account layouts understood by the decoder."""
    V1 = "ProposalV1"
    V2 = "ProposalV2"


class GovernanceKind(str, Enum):
    """Governance account layouts understood by the decoder."""
    GOVERNANCE_V1 = "GovernanceV1"
    PROGRAM_GOVERNANCE_V1 = "ProgramGovernanceV1"
    MINT_GOVERNANCE_V1 = "MintGovernanceV1"
    TOKEN_GOVERNANCE_V1 = "TokenGovernanceV1"
    GOVERNANCE_V2 = "GovernanceV2"
    PROGRAM_GOVERNANCE_V2 = "ProgramGovernanceV2"
    MINT_GOVERNANCE_V2 = "MintGovernanceV2"
    TOKEN_GOVERNANCE_V2 = "TokenGovernanceV2"


class RealmConfig(BaseModel):
    """Accounts that scope what the bot polls. Fixed once a store is seeded."""
    model_config = ConfigDict(frozen=True)

    realm_key: str
    council_mint_key: str
    community_mint_key: str
    governance_key: str

    @property
    def governing_mints(self) -> List[str]:
        return [self.community_mint_key, self.council_mint_key]


class ProposalSnapshot(BaseModel):
    """Decoded proposal account, projected onto the fields the bot uses."""
    model_config = ConfigDict(frozen=True)

    key: str
    kind: ProposalKind
    governance_key: str
    governing_token_mint: str
    state: ProposalState
    name: str = ""
    description_link: str = ""
    draft_at: Optional[datetime] = None
    voting_at: Optional[datetime] = None
    # Raw token weights, scaled later with the governing mint decimals
    yes_vote_weight: int = 0
    deny_vote_weight: int = 0
    max_voting_time: Optional[int] = None


class GovernanceSnapshot(BaseModel):
    """Decoded governance account."""
    model_config = ConfigDict(frozen=True)

    key: str
    kind: GovernanceKind
    realm: str
    governed_account: str
    proposals_count: int
    max_voting_time: int


@dataclass
class ChainSnapshot:
    """Everything fetched from chain during one poll cycle."""
    governance: GovernanceSnapshot
    proposals: Dict[str, ProposalSnapshot]
    mint_decimals: Dict[str, int]


class GovernanceRecord(BaseModel):
    """Persisted governance metadata."""
    key: str
    kind: GovernanceKind
    realm: str
    governed_account: str
    proposals_count: int = 0
    max_voting_time: int = 0
    updated_at: Optional[datetime] = None

    @classmethod
    def from_snapshot(cls, snapshot: GovernanceSnapshot, now: datetime) -> "GovernanceRecord":
        return cls(
            key=snapshot.key,
            kind=snapshot.kind,
            realm=snapshot.realm,
            governed_account=snapshot.governed_account,
            proposals_count=snapshot.proposals_count,
            max_voting_time=snapshot.max_voting_time,
            updated_at=now,
        )

    def differs_from(self, snapshot: GovernanceSnapshot) -> bool:
        return (
            self.kind != snapshot.kind
            or self.realm != snapshot.realm
            or self.governed_account != snapshot.governed_account
            or self.proposals_count != snapshot.proposals_count
            or self.max_voting_time != snapshot.max_voting_time
        )


class ProposalRecord(BaseModel):
    """
    Persisted tracking state for one proposal.

    ``state`` mirrors the chain; ``last_notified_state`` and
    ``last_reminder_at`` record what the bot has already told the channel.
    """
    key: str
    governance_key: str
    state: ProposalState
    voting_started_at: Optional[datetime] = None
    last_notified_state: Optional[ProposalState] = None
    last_reminder_at: Optional[datetime] = None

    # Display metadata
    name: str = ""
    description_link: str = ""
    governing_token_mint: str = ""
    yes_votes: float = 0.0
    deny_votes: float = 0.0
    max_voting_time: Optional[int] = None
    first_seen_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.state.is_voting

    def reminder_anchor(self) -> Optional[datetime]:
        """Later of ``last_reminder_at`` and ``voting_started_at``."""
        candidates = [ts for ts in (self.last_reminder_at, self.voting_started_at) if ts is not None]
        if not candidates:
            return self.first_seen_at
        return max(candidates)


@dataclass(frozen=True)
class Transition:
    """A change of a proposal's state between the store and a snapshot."""
    key: str
    previous_state: Optional[ProposalState]
    new_state: ProposalState

    @property
    def is_first_observation(self) -> bool:
        return self.previous_state is None

    @property
    def _was_voting(self) -> bool:
        return self.previous_state is not None and self.previous_state.is_voting

    @property
    def entered_voting(self) -> bool:
        return self.new_state.is_voting and not self._was_voting

    @property
    def left_voting(self) -> bool:
        return self._was_voting and not self.new_state.is_voting


class CycleReport(BaseModel):
    """Counters for one fetch-diff-notify cycle or reminder sweep."""
    transitions: int = 0
    notifications_sent: int = 0
    notifications_failed: int = 0
    silent_updates: int = 0
    metadata_refreshed: int = 0
    storage_errors: int = 0
    disappeared: List[str] = Field(default_factory=list)
