"""
Proposal Collection.
Fetches the realm's governance account and every proposal it owns from chain.
"""

import logging
from typing import Dict, Optional

from .api.client import SolanaRPCClient
from .api.models import MemcmpFilter
from .exceptions import DecodeError
from .models import ChainSnapshot, GovernanceSnapshot, ProposalSnapshot, RealmConfig
from .utils.account_layouts import (
    PROPOSAL_GOVERNANCE_OFFSET,
    decode_governance,
    decode_mint_decimals,
    decode_proposal,
)

logger = logging.getLogger(__name__)


class ProposalCollector:
    """
    Chain snapshot source for one realm.

    ``fetch`` raises ``TransportError`` when the node cannot be reached and
    ``DecodeError`` when the governance account itself is unreadable; a
    single undecodable proposal is logged and skipped.
    """

    def __init__(self, client: SolanaRPCClient, program_id: str):
        self.client = client
        self.program_id = program_id
        self._mint_decimals: Dict[str, int] = {}

    def fetch_governance(self, governance_key: str) -> GovernanceSnapshot:
        """
        Fetch and decode the governance account.

        Raises:
            DecodeError: If the account is missing or not a governance account
        """
        account = self.client.get_account_info(governance_key)
        if account is None:
            raise DecodeError(f"Governance account {governance_key} not found")
        if account.owner != self.program_id:
            raise DecodeError(
                f"Governance account {governance_key} is owned by {account.owner}, expected {self.program_id}"
            )
        return decode_governance(governance_key, account.raw_data)

    def get_mint_decimals(self, mint_key: str) -> int:
        """
        Decimals of a governing token mint, cached for the process lifetime.

        Raises:
            DecodeError: If the mint account is missing or malformed
        """
        if mint_key in self._mint_decimals:
            return self._mint_decimals[mint_key]

        account = self.client.get_account_info(mint_key)
        if account is None:
            raise DecodeError(f"Mint account {mint_key} not found")

        decimals = decode_mint_decimals(mint_key, account.raw_data)
        self._mint_decimals[mint_key] = decimals
        logger.info(f"Mint {mint_key} uses {decimals} decimals")
        return decimals

    def fetch_proposals(self, realm_config: RealmConfig) -> Dict[str, ProposalSnapshot]:
        """
        Fetch all proposals owned by the realm's governance account.

        Returns:
            Mapping of proposal key -> ProposalSnapshot
        """
        accounts = self.client.get_program_accounts(
            self.program_id,
            filters=[MemcmpFilter(offset=PROPOSAL_GOVERNANCE_OFFSET, bytes=realm_config.governance_key)]
        )

        allowed_mints = set(realm_config.governing_mints)
        proposals = {}
        skipped = 0

        for keyed in accounts:
            try:
                snapshot = decode_proposal(keyed.pubkey, keyed.account.raw_data)
            except DecodeError as e:
                # The governance filter also matches non-proposal accounts
                logger.debug(f"Skipping account {keyed.pubkey}: {e}")
                skipped += 1
                continue

            if snapshot.governance_key != realm_config.governance_key:
                logger.warning(f"Proposal {keyed.pubkey} belongs to governance {snapshot.governance_key}, skipping")
                skipped += 1
                continue

            if snapshot.governing_token_mint not in allowed_mints:
                logger.debug(f"Proposal {keyed.pubkey} uses unrelated mint {snapshot.governing_token_mint}, skipping")
                skipped += 1
                continue

            proposals[snapshot.key] = snapshot

        logger.info(f"Decoded {len(proposals)} proposals ({skipped} accounts skipped)")
        return proposals

    def fetch(self, realm_config: RealmConfig) -> ChainSnapshot:
        """
        Take a snapshot of the realm's governance state.

        Args:
            realm_config: Realm scope to poll

        Returns:
            ChainSnapshot with the governance account, proposals and mint decimals

        Raises:
            TransportError: If the RPC node cannot be reached
            DecodeError: If the governance account cannot be decoded
        """
        logger.info(f"Fetching governance {realm_config.governance_key}...")
        governance = self.fetch_governance(realm_config.governance_key)
        logger.info(f"Governance {governance.key} ({governance.kind.value}) reports {governance.proposals_count} proposals")

        proposals = self.fetch_proposals(realm_config)

        mint_decimals = {}
        for mint_key in realm_config.governing_mints:
            decimals = self._lookup_decimals(mint_key)
            if decimals is not None:
                mint_decimals[mint_key] = decimals

        return ChainSnapshot(governance=governance, proposals=proposals, mint_decimals=mint_decimals)

    def _lookup_decimals(self, mint_key: str) -> Optional[int]:
        try:
            return self.get_mint_decimals(mint_key)
        except DecodeError as e:
            logger.warning(f"Could not read decimals for mint {mint_key}, vote tallies will be raw: {e}")
            return None
