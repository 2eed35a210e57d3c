"""
Borsh decoders for SPL Governance accounts.

Only the fields the notifier reads are surfaced; everything else is read
and skipped so that offsets stay correct. Decoding is dispatched on the
leading ``GovernanceAccountType`` byte, so supporting another account
version means adding one entry to the decoder tables below.
"""

import struct
from datetime import datetime, timezone
from enum import IntEnum
from typing import Callable, Dict, Optional

import base58

from ..exceptions import DecodeError
from ..models import (
    GovernanceKind,
    GovernanceSnapshot,
    ProposalKind,
    ProposalSnapshot,
    ProposalState,
)

PUBKEY_LENGTH = 32
MINT_ACCOUNT_LENGTH = 82
MINT_DECIMALS_OFFSET = 44

# Offset of the governance key used in getProgramAccounts memcmp filters
PROPOSAL_GOVERNANCE_OFFSET = 1


class GovernanceAccountType(IntEnum):
    """Leading discriminator byte of every spl-governance account."""
    UNINITIALIZED = 0
    REALM_V1 = 1
    TOKEN_OWNER_RECORD_V1 = 2
    GOVERNANCE_V1 = 3
    PROGRAM_GOVERNANCE_V1 = 4
    PROPOSAL_V1 = 5
    SIGNATORY_RECORD_V1 = 6
    VOTE_RECORD_V1 = 7
    PROPOSAL_INSTRUCTION_V1 = 8
    MINT_GOVERNANCE_V1 = 9
    TOKEN_GOVERNANCE_V1 = 10
    REALM_CONFIG = 11
    VOTE_RECORD_V2 = 12
    PROPOSAL_TRANSACTION_V2 = 13
    PROPOSAL_V2 = 14
    PROGRAM_METADATA = 15
    REALM_V2 = 16
    TOKEN_OWNER_RECORD_V2 = 17
    GOVERNANCE_V2 = 18
    PROGRAM_GOVERNANCE_V2 = 19
    MINT_GOVERNANCE_V2 = 20
    TOKEN_GOVERNANCE_V2 = 21
    SIGNATORY_RECORD_V2 = 22


GOVERNANCE_KINDS: Dict[int, GovernanceKind] = {
    GovernanceAccountType.GOVERNANCE_V1: GovernanceKind.GOVERNANCE_V1,
    GovernanceAccountType.PROGRAM_GOVERNANCE_V1: GovernanceKind.PROGRAM_GOVERNANCE_V1,
    GovernanceAccountType.MINT_GOVERNANCE_V1: GovernanceKind.MINT_GOVERNANCE_V1,
    GovernanceAccountType.TOKEN_GOVERNANCE_V1: GovernanceKind.TOKEN_GOVERNANCE_V1,
    GovernanceAccountType.GOVERNANCE_V2: GovernanceKind.GOVERNANCE_V2,
    GovernanceAccountType.PROGRAM_GOVERNANCE_V2: GovernanceKind.PROGRAM_GOVERNANCE_V2,
    GovernanceAccountType.MINT_GOVERNANCE_V2: GovernanceKind.MINT_GOVERNANCE_V2,
    GovernanceAccountType.TOKEN_GOVERNANCE_V2: GovernanceKind.TOKEN_GOVERNANCE_V2,
}


class BorshReader:
    """Sequential little-endian reader over account bytes."""

    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def _take(self, size: int) -> bytes:
        if size < 0 or self.offset + size > len(self.data):
            raise DecodeError(
                f"Account data too short: need {size} bytes at offset {self.offset}, "
                f"have {self.remaining}"
            )
        chunk = self.data[self.offset:self.offset + size]
        self.offset += size
        return chunk

    def _unpack(self, fmt: str) -> int:
        return struct.unpack(fmt, self._take(struct.calcsize(fmt)))[0]

    def u8(self) -> int:
        return self._unpack("<B")

    def u16(self) -> int:
        return self._unpack("<H")

    def u32(self) -> int:
        return self._unpack("<I")

    def u64(self) -> int:
        return self._unpack("<Q")

    def i64(self) -> int:
        return self._unpack("<q")

    def pubkey(self) -> str:
        return base58.b58encode(self._take(PUBKEY_LENGTH)).decode("ascii")

    def string(self) -> str:
        length = self.u32()
        try:
            return self._take(length).decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"Invalid utf-8 string at offset {self.offset}: {e}") from e

    def option(self, read: Callable[[], object]) -> Optional[object]:
        tag = self.u8()
        if tag == 0:
            return None
        if tag == 1:
            return read()
        raise DecodeError(f"Invalid Option tag {tag} at offset {self.offset - 1}")

    def skip(self, size: int) -> None:
        self._take(size)

    def vote_threshold(self) -> None:
        """Skip a VoteThreshold / VoteThresholdPercentage enum."""
        tag = self.u8()
        # YesVotePercentage(u8) and QuorumPercentage(u8) carry a payload, Disabled does not
        if tag in (0, 1):
            self.u8()
        elif tag != 2:
            raise DecodeError(f"Unknown vote threshold variant {tag}")


def timestamp_to_datetime(value: Optional[int]) -> Optional[datetime]:
    """Convert a unix timestamp to an aware UTC datetime."""
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise DecodeError(f"Invalid unix timestamp {value}") from e


def _read_state(reader: BorshReader) -> ProposalState:
    discriminant = reader.u8()
    try:
        return ProposalState.from_discriminant(discriminant)
    except ValueError as e:
        raise DecodeError(str(e)) from e


def _decode_proposal_v1(key: str, reader: BorshReader) -> ProposalSnapshot:
    governance = reader.pubkey()
    governing_token_mint = reader.pubkey()
    state = _read_state(reader)
    reader.pubkey()  # token_owner_record
    reader.u8()  # signatories_count
    reader.u8()  # signatories_signed_off_count
    yes_votes = reader.u64()
    no_votes = reader.u64()
    reader.u16()  # instructions_executed_count
    reader.u16()  # instructions_count
    reader.u16()  # instructions_next_index
    draft_at = reader.i64()
    reader.option(reader.i64)  # signing_off_at
    voting_at = reader.option(reader.i64)
    reader.option(reader.u64)  # voting_at_slot
    reader.option(reader.i64)  # voting_completed_at
    reader.option(reader.i64)  # executing_at
    reader.option(reader.i64)  # closed_at
    reader.u8()  # execution_flags
    reader.option(reader.u64)  # max_vote_weight
    reader.option(reader.vote_threshold)
    name = reader.string()
    description_link = reader.string()

    return ProposalSnapshot(
        key=key,
        kind=ProposalKind.V1,
        governance_key=governance,
        governing_token_mint=governing_token_mint,
        state=state,
        name=name,
        description_link=description_link,
        draft_at=timestamp_to_datetime(draft_at),
        voting_at=timestamp_to_datetime(voting_at),
        yes_vote_weight=yes_votes,
        deny_vote_weight=no_votes,
    )


def _decode_proposal_v2(key: str, reader: BorshReader) -> ProposalSnapshot:
    governance = reader.pubkey()
    governing_token_mint = reader.pubkey()
    state = _read_state(reader)
    reader.pubkey()  # token_owner_record
    reader.u8()  # signatories_count
    reader.u8()  # signatories_signed_off_count

    vote_type = reader.u8()
    if vote_type == 1:
        # MultiChoice { choice_type, min_voter_options, max_voter_options, max_winning_options }
        reader.skip(4)
    elif vote_type != 0:
        raise DecodeError(f"Unknown vote type variant {vote_type}")

    option_count = reader.u32()
    yes_votes = 0
    for index in range(option_count):
        reader.string()  # label
        vote_weight = reader.u64()
        reader.u8()  # vote_result
        reader.u16()  # transactions_executed_count
        reader.u16()  # transactions_count
        reader.u16()  # transactions_next_index
        # Single choice proposals carry the approve weight on the first option
        if index == 0:
            yes_votes = vote_weight

    deny_votes = reader.option(reader.u64) or 0
    reader.u8()  # reserved1
    reader.option(reader.u64)  # abstain_vote_weight
    reader.option(reader.i64)  # start_voting_at
    draft_at = reader.i64()
    reader.option(reader.i64)  # signing_off_at
    voting_at = reader.option(reader.i64)
    reader.option(reader.u64)  # voting_at_slot
    reader.option(reader.i64)  # voting_completed_at
    reader.option(reader.i64)  # executing_at
    reader.option(reader.i64)  # closed_at
    reader.u8()  # execution_flags
    reader.option(reader.u64)  # max_vote_weight
    max_voting_time = reader.option(reader.u32)
    reader.option(reader.vote_threshold)
    reader.skip(64)  # reserved
    name = reader.string()
    description_link = reader.string()

    return ProposalSnapshot(
        key=key,
        kind=ProposalKind.V2,
        governance_key=governance,
        governing_token_mint=governing_token_mint,
        state=state,
        name=name,
        description_link=description_link,
        draft_at=timestamp_to_datetime(draft_at),
        voting_at=timestamp_to_datetime(voting_at),
        yes_vote_weight=yes_votes,
        deny_vote_weight=deny_votes,
        max_voting_time=max_voting_time,
    )


PROPOSAL_DECODERS: Dict[int, Callable[[str, BorshReader], ProposalSnapshot]] = {
    GovernanceAccountType.PROPOSAL_V1: _decode_proposal_v1,
    GovernanceAccountType.PROPOSAL_V2: _decode_proposal_v2,
}


def decode_proposal(key: str, data: bytes) -> ProposalSnapshot:
    """
    Decode a proposal account.

    Args:
        key: Base58 account address
        data: Raw account data

    Returns:
        ProposalSnapshot projection of the account

    Raises:
        DecodeError: If the account is not a supported proposal layout
    """
    reader = BorshReader(data)
    account_type = reader.u8()
    decoder = PROPOSAL_DECODERS.get(account_type)
    if decoder is None:
        raise DecodeError(f"Account {key} is not a proposal (account type {account_type})")
    return decoder(key, reader)


def decode_governance(key: str, data: bytes) -> GovernanceSnapshot:
    """
    Decode any governance account variant (plain, program, mint, token; V1 or V2).

    The config prefix shared by every version is read up to ``max_voting_time``
    (named ``voting_base_time`` by newer program versions).

    Raises:
        DecodeError: If the account is not a governance account
    """
    reader = BorshReader(data)
    account_type = reader.u8()
    kind = GOVERNANCE_KINDS.get(account_type)
    if kind is None:
        raise DecodeError(f"Account {key} is not a governance account (account type {account_type})")

    realm = reader.pubkey()
    governed_account = reader.pubkey()
    proposals_count = reader.u32()
    reader.vote_threshold()
    reader.u64()  # min_community_weight_to_create_proposal
    reader.u32()  # min_transaction_hold_up_time
    max_voting_time = reader.u32()

    return GovernanceSnapshot(
        key=key,
        kind=kind,
        realm=realm,
        governed_account=governed_account,
        proposals_count=proposals_count,
        max_voting_time=max_voting_time,
    )


def decode_mint_decimals(key: str, data: bytes) -> int:
    """Read ``decimals`` from an SPL token mint account."""
    if len(data) < MINT_ACCOUNT_LENGTH:
        raise DecodeError(f"Account {key} is too short to be a mint ({len(data)} bytes)")
    return data[MINT_DECIMALS_OFFSET]
