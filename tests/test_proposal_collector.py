"""
Tests for the chain snapshot collector.
"""

import pytest

from conftest import (
    COMMUNITY_MINT,
    COUNCIL_MINT,
    GOVERNANCE_KEY,
    PROGRAM_ID,
    REALM_CONFIG,
    account_info,
    encode_governance,
    encode_mint,
    encode_proposal_v1,
    encode_proposal_v2,
    pubkey,
    pubkey_bytes,
)
from realms_notis.api.models import KeyedAccount
from realms_notis.exceptions import DecodeError, TransportError
from realms_notis.models import ProposalState
from realms_notis.proposal_collector import ProposalCollector


class FakeClient:
    """In-memory stand-in for SolanaRPCClient."""

    def __init__(self, accounts=None, program_accounts=None):
        self.accounts = accounts or {}
        self.program_accounts = program_accounts or []
        self.account_requests = []
        self.filters = None

    def get_account_info(self, pubkey):
        self.account_requests.append(pubkey)
        return self.accounts.get(pubkey)

    def get_program_accounts(self, program_id, filters=None):
        self.filters = filters
        return self.program_accounts


def keyed(key, data):
    return KeyedAccount(pubkey=key, account=account_info(data))


@pytest.fixture
def client():
    return FakeClient(
        accounts={
            GOVERNANCE_KEY: account_info(encode_governance(proposals_count=3)),
            COMMUNITY_MINT: account_info(encode_mint(6)),
            COUNCIL_MINT: account_info(encode_mint(0)),
        },
        program_accounts=[
            keyed("P1", encode_proposal_v2(2, voting_at=1_700_000_100)),
            keyed("P2", encode_proposal_v1(3)),
            keyed("P3", encode_proposal_v2(2, mint=pubkey_bytes(4))),
        ],
    )


class TestFetch:

    def test_snapshot(self, client):
        snapshot = ProposalCollector(client, PROGRAM_ID).fetch(REALM_CONFIG)

        assert snapshot.governance.key == GOVERNANCE_KEY
        assert snapshot.governance.proposals_count == 3
        assert sorted(snapshot.proposals) == ["P1", "P2", "P3"]
        assert snapshot.proposals["P1"].state is ProposalState.VOTING
        assert snapshot.proposals["P2"].state is ProposalState.SUCCEEDED
        assert snapshot.mint_decimals == {COMMUNITY_MINT: 6, COUNCIL_MINT: 0}

    def test_filters_by_governance(self, client):
        ProposalCollector(client, PROGRAM_ID).fetch(REALM_CONFIG)

        assert client.filters[0].to_param() == {"memcmp": {"offset": 1, "bytes": GOVERNANCE_KEY}}

    def test_skips_non_proposal_accounts(self, client):
        client.program_accounts.append(keyed("TOR", bytes([17]) + bytes(80)))

        snapshot = ProposalCollector(client, PROGRAM_ID).fetch(REALM_CONFIG)

        assert "TOR" not in snapshot.proposals

    def test_skips_unrelated_mint(self, client):
        client.program_accounts.append(keyed("P4", encode_proposal_v2(2, mint=pubkey_bytes(30))))

        snapshot = ProposalCollector(client, PROGRAM_ID).fetch(REALM_CONFIG)

        assert "P4" not in snapshot.proposals

    def test_skips_other_governance(self, client):
        client.program_accounts.append(keyed("P5", encode_proposal_v2(2, governance=pubkey_bytes(31))))

        snapshot = ProposalCollector(client, PROGRAM_ID).fetch(REALM_CONFIG)

        assert "P5" not in snapshot.proposals

    def test_mint_decimals_cached(self, client):
        collector = ProposalCollector(client, PROGRAM_ID)

        collector.fetch(REALM_CONFIG)
        collector.fetch(REALM_CONFIG)

        assert client.account_requests.count(COMMUNITY_MINT) == 1
        assert client.account_requests.count(GOVERNANCE_KEY) == 2

    def test_missing_mint_is_not_fatal(self, client):
        del client.accounts[COUNCIL_MINT]

        snapshot = ProposalCollector(client, PROGRAM_ID).fetch(REALM_CONFIG)

        assert snapshot.mint_decimals == {COMMUNITY_MINT: 6}


class TestGovernanceErrors:

    def test_missing_governance(self, client):
        del client.accounts[GOVERNANCE_KEY]

        with pytest.raises(DecodeError):
            ProposalCollector(client, PROGRAM_ID).fetch(REALM_CONFIG)

    def test_wrong_owner(self, client):
        client.accounts[GOVERNANCE_KEY] = account_info(encode_governance(), owner=pubkey(50))

        with pytest.raises(DecodeError):
            ProposalCollector(client, PROGRAM_ID).fetch(REALM_CONFIG)

    def test_transport_error_propagates(self, client):
        def unreachable(pubkey):
            raise TransportError("connection refused")

        client.get_account_info = unreachable

        with pytest.raises(TransportError):
            ProposalCollector(client, PROGRAM_ID).fetch(REALM_CONFIG)
