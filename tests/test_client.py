"""
Tests for the Solana JSON-RPC client against a mocked HTTP session.
"""

import base64
from unittest.mock import Mock

import pytest
import requests
from tenacity import wait_none

from conftest import PROGRAM_ID
from realms_notis.api.client import SolanaRPCClient
from realms_notis.api.models import MemcmpFilter
from realms_notis.exceptions import RPCError, TransportError

RPC_URL = "https://rpc.example.org"


def rpc_response(payload, status_code=200):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    return response


def account_payload(data: bytes):
    return {
        "data": [base64.b64encode(data).decode("ascii"), "base64"],
        "executable": False,
        "lamports": 1_000_000,
        "owner": PROGRAM_ID,
        "rentEpoch": 0,
        "space": len(data),
    }


@pytest.fixture
def session():
    return Mock()


@pytest.fixture
def client(session):
    return SolanaRPCClient(RPC_URL, timeout=5, session=session)


@pytest.fixture
def no_wait(monkeypatch):
    monkeypatch.setattr(SolanaRPCClient._make_request.retry, "wait", wait_none())


class TestGetAccountInfo:

    def test_returns_decoded_account(self, client, session):
        session.post.return_value = rpc_response({
            "jsonrpc": "2.0",
            "id": 1,
            "result": {"context": {"slot": 10}, "value": account_payload(b"\x0e\x01\x02")},
        })

        account = client.get_account_info("Acc111")

        assert account.owner == PROGRAM_ID
        assert account.raw_data == b"\x0e\x01\x02"
        payload = session.post.call_args.kwargs["json"]
        assert payload["method"] == "getAccountInfo"
        assert payload["params"][0] == "Acc111"
        assert payload["params"][1]["encoding"] == "base64"
        assert session.post.call_args.kwargs["timeout"] == 5

    def test_missing_account_is_none(self, client, session):
        session.post.return_value = rpc_response({
            "jsonrpc": "2.0", "id": 1, "result": {"context": {"slot": 10}, "value": None}
        })

        assert client.get_account_info("Acc111") is None

    def test_rpc_error(self, client, session):
        session.post.return_value = rpc_response({
            "jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "Invalid param"}
        })

        with pytest.raises(RPCError) as excinfo:
            client.get_account_info("bad")

        assert excinfo.value.code == -32602

    def test_http_error(self, client, session):
        response = rpc_response({}, status_code=503)
        response.raise_for_status.side_effect = requests.HTTPError(response=response)
        session.post.return_value = response

        with pytest.raises(TransportError, match="HTTP 503"):
            client.get_account_info("Acc111")

    def test_malformed_json(self, client, session):
        response = rpc_response(None)
        response.json.side_effect = ValueError("not json")
        session.post.return_value = response

        with pytest.raises(TransportError):
            client.get_account_info("Acc111")

    def test_connection_error_retried_then_raised(self, client, session, no_wait):
        session.post.side_effect = requests.ConnectionError("connection refused")

        with pytest.raises(TransportError):
            client.get_account_info("Acc111")

        assert session.post.call_count == 3

    def test_recovers_after_timeout(self, client, session, no_wait):
        session.post.side_effect = [
            requests.Timeout("slow"),
            rpc_response({"jsonrpc": "2.0", "id": 1, "result": {"context": {"slot": 1}, "value": None}}),
        ]

        assert client.get_account_info("Acc111") is None
        assert session.post.call_count == 2


class TestGetProgramAccounts:

    def test_passes_memcmp_filter(self, client, session):
        session.post.return_value = rpc_response({"jsonrpc": "2.0", "id": 1, "result": []})

        client.get_program_accounts(PROGRAM_ID, filters=[MemcmpFilter(offset=1, bytes="Gov111")])

        params = session.post.call_args.kwargs["json"]["params"]
        assert params[0] == PROGRAM_ID
        assert params[1]["filters"] == [{"memcmp": {"offset": 1, "bytes": "Gov111"}}]

    def test_skips_malformed_entries(self, client, session):
        session.post.return_value = rpc_response({
            "jsonrpc": "2.0",
            "id": 1,
            "result": [
                {"pubkey": "P1", "account": account_payload(b"\x0e")},
                {"pubkey": "P2"},
            ],
        })

        accounts = client.get_program_accounts(PROGRAM_ID)

        assert [account.pubkey for account in accounts] == ["P1"]

    def test_unexpected_result_type(self, client, session):
        session.post.return_value = rpc_response({"jsonrpc": "2.0", "id": 1, "result": {"oops": True}})

        with pytest.raises(TransportError):
            client.get_program_accounts(PROGRAM_ID)


def test_get_health(client, session):
    session.post.return_value = rpc_response({"jsonrpc": "2.0", "id": 1, "result": "ok"})

    assert client.get_health() == "ok"
