"""
Solana JSON-RPC client for the Realms Notification System.
Handles all RPC communication with error handling, retries and timeouts.
"""

import itertools
import logging
import time
from typing import Any, Dict, List, Optional

import requests
from pydantic import ValidationError
from requests.adapters import HTTPAdapter
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
from urllib3.util.retry import Retry

from ..exceptions import RPCError, TransportError
from .models import AccountInfo, AccountInfoResult, KeyedAccount, MemcmpFilter, RPCResponse

logger = logging.getLogger(__name__)

DEFAULT_COMMITMENT = "confirmed"


class SolanaRPCClient:
    """
    Minimal JSON-RPC client covering the calls the collector needs.
    Handles retries, timeouts and response validation.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: int = 30,
        max_retries: int = 3,
        commitment: str = DEFAULT_COMMITMENT,
        session: Optional[requests.Session] = None
    ):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.commitment = commitment
        self.session = session or self._create_session()
        self._request_ids = itertools.count(1)

        logger.info("SolanaRPCClient initialized")
        logger.info(f"RPC URL: {self.rpc_url}")

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry strategy."""
        session = requests.Session()

        # JSON-RPC reads go over POST, so POST must be retryable here
        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["POST"]
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        session.headers.update({"Content-Type": "application/json"})

        return session

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=4, max=10),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        reraise=True
    )
    def _make_request(self, payload: Dict[str, Any]) -> requests.Response:
        return self.session.post(self.rpc_url, json=payload, timeout=self.timeout)

    def _call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """
        Perform one JSON-RPC call.

        Args:
            method: RPC method name
            params: Positional parameters

        Returns:
            The ``result`` member of the response

        Raises:
            TransportError: On network/HTTP failures or malformed responses
            RPCError: When the node returns a JSON-RPC error
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": method,
            "params": params or [],
        }

        try:
            logger.debug(f"Calling {method} on {self.rpc_url}")
            start_time = time.time()
            response = self._make_request(payload)
            request_duration = time.time() - start_time
            logger.debug(f"{method} completed in {request_duration:.2f}s - Status: {response.status_code}")

            response.raise_for_status()
            envelope = RPCResponse.model_validate(response.json())

        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else "unknown"
            raise TransportError(f"HTTP {status} error calling {method}") from e
        except requests.RequestException as e:
            raise TransportError(f"Request failed for {method}: {e}") from e
        except (ValueError, ValidationError) as e:
            raise TransportError(f"Malformed response for {method}: {e}") from e

        if envelope.error is not None:
            logger.warning(f"RPC returned error for {method}: {envelope.error.message}")
            raise RPCError(f"{method} failed: {envelope.error.message}", code=envelope.error.code)

        return envelope.result

    def get_health(self) -> str:
        """Node health, ``ok`` when the node is caught up."""
        return str(self._call("getHealth"))

    def get_account_info(self, pubkey: str) -> Optional[AccountInfo]:
        """
        Fetch one account.

        Args:
            pubkey: Base58 account address

        Returns:
            AccountInfo or None if the account does not exist
        """
        result = self._call(
            "getAccountInfo",
            [pubkey, {"encoding": "base64", "commitment": self.commitment}]
        )
        try:
            parsed = AccountInfoResult.model_validate(result)
        except ValidationError as e:
            raise TransportError(f"Unexpected getAccountInfo result for {pubkey}: {e}") from e
        return parsed.value

    def get_program_accounts(
        self,
        program_id: str,
        filters: Optional[List[MemcmpFilter]] = None
    ) -> List[KeyedAccount]:
        """
        Fetch all accounts owned by a program, optionally filtered.

        Args:
            program_id: Owning program address
            filters: memcmp filters applied server side

        Returns:
            List of keyed accounts
        """
        options = {"encoding": "base64", "commitment": self.commitment}
        if filters:
            options["filters"] = [f.to_param() for f in filters]

        result = self._call("getProgramAccounts", [program_id, options])
        if not isinstance(result, list):
            raise TransportError(f"Unexpected getProgramAccounts result type: {type(result).__name__}")

        accounts = []
        for entry in result:
            try:
                accounts.append(KeyedAccount.model_validate(entry))
            except ValidationError as e:
                logger.warning(f"Skipping malformed getProgramAccounts entry: {e}")

        logger.info(f"getProgramAccounts returned {len(accounts)} accounts for {program_id}")
        return accounts
