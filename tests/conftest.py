"""
Shared fixtures and builders for the realms-notis test suite.
"""

import base64
import struct
from datetime import datetime, timedelta, timezone
from typing import Optional

import base58
import pytest

from realms_notis.api.models import AccountInfo
from realms_notis.exceptions import NotificationDeliveryError
from realms_notis.models import ProposalKind, ProposalSnapshot, ProposalState, RealmConfig
from realms_notis.scheduler import NotificationScheduler
from realms_notis.state_manager import StateStore


def pubkey_bytes(seed: int) -> bytes:
    return bytes([seed]) * 32


def pubkey(seed: int) -> str:
    return base58.b58encode(pubkey_bytes(seed)).decode("ascii")


T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

PROGRAM_ID = pubkey(9)
REALM_KEY = pubkey(1)
GOVERNANCE_KEY = pubkey(2)
COMMUNITY_MINT = pubkey(3)
COUNCIL_MINT = pubkey(4)
UI_BASE_URL = f"https://app.realms.today/dao/{REALM_KEY}"

REALM_CONFIG = RealmConfig(
    realm_key=REALM_KEY,
    council_mint_key=COUNCIL_MINT,
    community_mint_key=COMMUNITY_MINT,
    governance_key=GOVERNANCE_KEY,
)


# ----------------------------------------------------------------------
# Domain builders
# ----------------------------------------------------------------------

def make_snapshot(
    key: str,
    state: ProposalState,
    voting_at: Optional[datetime] = None,
    draft_at: Optional[datetime] = T0,
    yes: int = 0,
    deny: int = 0,
    name: Optional[str] = None,
    description_link: str = "https://forum.example.org/proposal",
    max_voting_time: Optional[int] = None,
    mint: str = COMMUNITY_MINT,
) -> ProposalSnapshot:
    return ProposalSnapshot(
        key=key,
        kind=ProposalKind.V2,
        governance_key=GOVERNANCE_KEY,
        governing_token_mint=mint,
        state=state,
        name=name if name is not None else f"Proposal {key}",
        description_link=description_link,
        draft_at=draft_at,
        voting_at=voting_at,
        yes_vote_weight=yes,
        deny_vote_weight=deny,
        max_voting_time=max_voting_time,
    )


# ----------------------------------------------------------------------
# Borsh encoders
# ----------------------------------------------------------------------

def borsh_string(value: str) -> bytes:
    encoded = value.encode("utf-8")
    return struct.pack("<I", len(encoded)) + encoded


def borsh_option(fmt: str, value) -> bytes:
    if value is None:
        return b"\x00"
    return b"\x01" + struct.pack(fmt, value)


# Some(YesVotePercentage(60))
SOME_VOTE_THRESHOLD = b"\x01\x00\x3c"


def encode_proposal_v1(
    state: int,
    governance: bytes = pubkey_bytes(2),
    mint: bytes = pubkey_bytes(3),
    yes: int = 0,
    no: int = 0,
    draft_at: int = 1_700_000_000,
    voting_at: Optional[int] = None,
    name: str = "Fund the treasury",
    description: str = "https://forum.example.org/1",
) -> bytes:
    return b"".join([
        bytes([5]),
        governance,
        mint,
        bytes([state]),
        pubkey_bytes(7),
        bytes([1, 1]),
        struct.pack("<QQ", yes, no),
        struct.pack("<HHH", 0, 0, 0),
        struct.pack("<q", draft_at),
        borsh_option("<q", None),
        borsh_option("<q", voting_at),
        borsh_option("<Q", None),
        borsh_option("<q", None),
        borsh_option("<q", None),
        borsh_option("<q", None),
        bytes([0]),
        borsh_option("<Q", None),
        SOME_VOTE_THRESHOLD,
        borsh_string(name),
        borsh_string(description),
    ])


def encode_proposal_v2(
    state: int,
    governance: bytes = pubkey_bytes(2),
    mint: bytes = pubkey_bytes(3),
    yes: int = 0,
    deny: Optional[int] = 0,
    draft_at: int = 1_700_000_000,
    voting_at: Optional[int] = None,
    max_voting_time: Optional[int] = 259_200,
    name: str = "Upgrade the program",
    description: str = "https://forum.example.org/2",
    multi_choice: bool = False,
) -> bytes:
    vote_type = bytes([1, 0, 1, 1, 1]) if multi_choice else bytes([0])
    return b"".join([
        bytes([14]),
        governance,
        mint,
        bytes([state]),
        pubkey_bytes(7),
        bytes([1, 1]),
        vote_type,
        struct.pack("<I", 1),
        borsh_string("Approve"),
        struct.pack("<Q", yes),
        bytes([0]),
        struct.pack("<HHH", 0, 0, 0),
        borsh_option("<Q", deny),
        bytes([0]),
        borsh_option("<Q", None),
        borsh_option("<q", None),
        struct.pack("<q", draft_at),
        borsh_option("<q", None),
        borsh_option("<q", voting_at),
        borsh_option("<Q", None),
        borsh_option("<q", None),
        borsh_option("<q", None),
        borsh_option("<q", None),
        bytes([0]),
        borsh_option("<Q", None),
        borsh_option("<I", max_voting_time),
        SOME_VOTE_THRESHOLD,
        bytes(64),
        borsh_string(name),
        borsh_string(description),
    ])


def encode_governance(
    account_type: int = 18,
    realm: bytes = pubkey_bytes(1),
    proposals_count: int = 3,
    max_voting_time: int = 259_200,
) -> bytes:
    return b"".join([
        bytes([account_type]),
        realm,
        pubkey_bytes(8),
        struct.pack("<I", proposals_count),
        bytes([0, 60]),
        struct.pack("<Q", 1),
        struct.pack("<I", 0),
        struct.pack("<I", max_voting_time),
        # Remaining config fields are not read
        bytes(16),
    ])


def encode_mint(decimals: int) -> bytes:
    data = bytearray(82)
    data[44] = decimals
    return bytes(data)


def account_info(data: bytes, owner: str = PROGRAM_ID) -> AccountInfo:
    return AccountInfo(
        data=[base64.b64encode(data).decode("ascii"), "base64"],
        owner=owner,
        lamports=1_000_000,
    )


# ----------------------------------------------------------------------
# Collaborator fakes
# ----------------------------------------------------------------------

class FakeSink:
    """Records sent notifications; can be told to fail, for all proposals or only some."""

    def __init__(self):
        self.sent = []
        self.fail = False
        self.fail_for = set()
        self.on_send = None

    def send(self, channel_id, notification):
        if self.fail or any(f"[{key}](" in notification.body for key in self.fail_for):
            raise NotificationDeliveryError("gateway unavailable")
        if self.on_send is not None:
            self.on_send(notification)
        self.sent.append((channel_id, notification))

    @property
    def titles(self):
        return [notification.title for _, notification in self.sent]


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def state_path(tmp_path):
    return tmp_path / "state.json"


@pytest.fixture
def store(state_path):
    return StateStore(state_path)


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(store, sink, clock):
    return NotificationScheduler(
        store=store,
        sink=sink,
        channel_id="discord://webhook_id/webhook_token",
        notification_frequency=timedelta(hours=6),
        ui_base_url=UI_BASE_URL,
        clock=clock,
    )
