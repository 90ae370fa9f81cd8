# tests/test_alchemy.py
"""
Unit tests for the Alchemy JSON-RPC ledger client.
"""
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests

from app.services.alchemy import (
    TRANSFER_TOPIC,
    AlchemyClient,
    hex_to_int,
    is_transaction_hash,
    parse_transfer_logs,
    topic_to_address,
)
from app.x402.errors import LedgerTimeout, LedgerUnavailable, ProviderError
from app.x402.ledger import TransactionStatus
from app.x402.requirements import Network
from conftest import PAYER, PAY_TO, SEPOLIA_USDC, TX_HASH


def pad_topic(address):
    return "0x" + "0" * 24 + address[2:].lower()


def transfer_log(token=SEPOLIA_USDC, sender=PAYER, recipient=PAY_TO, raw_amount=10_000):
    return {
        "address": token.lower(),
        "topics": [TRANSFER_TOPIC, pad_topic(sender), pad_topic(recipient)],
        "data": hex(raw_amount),
        "transactionHash": TX_HASH,
    }


def rpc_response(result):
    response = MagicMock()
    response.json.return_value = {"jsonrpc": "2.0", "id": 1, "result": result}
    response.raise_for_status.return_value = None
    return response


def rpc_router(results):
    """Answer each JSON-RPC call by method name."""
    def post(url, json=None, timeout=None):
        return rpc_response(results[json["method"]])
    return post


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def client(session):
    return AlchemyClient(api_key="test-key", timeout=5, session=session)


class TestHelpers:

    def test_is_transaction_hash(self):
        assert is_transaction_hash(TX_HASH) is True
        assert is_transaction_hash("0x1234") is False
        assert is_transaction_hash("demo") is False
        assert is_transaction_hash("") is False

    def test_hex_to_int(self):
        assert hex_to_int(None) is None
        assert hex_to_int("0x") == 0
        assert hex_to_int("0x2710") == 10_000

    def test_topic_to_address(self):
        assert topic_to_address(pad_topic(PAY_TO)) == PAY_TO.lower()

    def test_parse_transfer_logs(self):
        transfers = parse_transfer_logs([transfer_log()])

        assert len(transfers) == 1
        assert transfers[0].token_contract == SEPOLIA_USDC.lower()
        assert transfers[0].recipient == PAY_TO.lower()
        assert transfers[0].sender == PAYER.lower()
        assert transfers[0].raw_amount == 10_000

    def test_parse_transfer_logs_skips_other_events(self):
        nft = transfer_log()
        nft["topics"] = nft["topics"] + [pad_topic(PAYER)]
        approval = transfer_log()
        approval["topics"] = ["0x" + "8c" * 32] + approval["topics"][1:]

        assert parse_transfer_logs([nft, approval, {}]) == []

    def test_parse_transfer_logs_skips_log_without_address(self):
        log = transfer_log()
        log["address"] = None

        assert parse_transfer_logs([log]) == []


class TestRpc:
    """Test transport and RPC error mapping."""

    def test_rpc_url(self, client):
        assert client.rpc_url(Network.BASE_SEPOLIA) == "https://base-sepolia.g.alchemy.com/v2/test-key"
        assert client.rpc_url(Network.BASE) == "https://base-mainnet.g.alchemy.com/v2/test-key"

    def test_timeout_maps_to_ledger_timeout(self, client, session):
        session.post.side_effect = requests.exceptions.Timeout("slow")

        with pytest.raises(LedgerTimeout):
            client.get_transaction(TX_HASH, Network.BASE)

    def test_connection_error_maps_to_unavailable(self, client, session):
        session.post.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(LedgerUnavailable) as exc_info:
            client.get_transaction(TX_HASH, Network.BASE)
        assert not isinstance(exc_info.value, LedgerTimeout)
        assert exc_info.value.network == "base"

    def test_rpc_error_maps_to_unavailable(self, client, session):
        response = MagicMock()
        response.json.return_value = {"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "rate limited"}}
        session.post.return_value = response

        with pytest.raises(LedgerUnavailable, match="rate limited"):
            client.get_transaction(TX_HASH, Network.BASE)

    def test_missing_result_maps_to_unavailable(self, client, session):
        response = MagicMock()
        response.json.return_value = {"jsonrpc": "2.0", "id": 1}
        session.post.return_value = response

        with pytest.raises(LedgerUnavailable, match="missing 'result'"):
            client.get_transaction(TX_HASH, Network.BASE)

    def test_invalid_json(self, client, session):
        response = MagicMock()
        response.json.side_effect = ValueError("not json")
        session.post.return_value = response

        with pytest.raises(LedgerUnavailable):
            client.get_transaction(TX_HASH, Network.BASE)

    def test_null_body_maps_to_unavailable(self, client, session):
        response = MagicMock()
        response.json.return_value = None
        session.post.return_value = response

        with pytest.raises(LedgerUnavailable, match="non-object"):
            client.get_transaction(TX_HASH, Network.BASE)

    def test_request_ids_are_unique(self, client, session):
        session.post.return_value = rpc_response(None)

        client.get_transaction(TX_HASH, Network.BASE)
        client.get_transaction(TX_HASH, Network.BASE)

        ids = [c.kwargs["json"]["id"] for c in session.post.call_args_list]
        assert len(set(ids)) == 2

class TestGetTransaction:
    """Test transaction lookups."""

    def test_malformed_hash_not_found_without_rpc(self, client, session):
        assert client.get_transaction("not-a-hash", Network.BASE) is None
        session.post.assert_not_called()

    def test_unknown_transaction(self, client, session):
        session.post.side_effect = rpc_router({"eth_getTransactionByHash": None})

        assert client.get_transaction(TX_HASH, Network.BASE) is None

    def test_pending_transaction(self, client, session):
        session.post.side_effect = rpc_router({"eth_getTransactionByHash": {"hash": TX_HASH, "blockNumber": None}})

        tx = client.get_transaction(TX_HASH, Network.BASE)

        assert tx.status == TransactionStatus.PENDING
        assert tx.transfers == []

    def test_successful_transaction(self, client, session):
        session.post.side_effect = rpc_router({
            "eth_getTransactionByHash": {"hash": TX_HASH, "blockNumber": "0x64"},
            "eth_getTransactionReceipt": {"status": "0x1", "logs": [transfer_log()]},
            "eth_getBlockByNumber": {"number": "0x64", "timestamp": hex(1740830400)},
            "eth_blockNumber": "0x6d",
        })

        tx = client.get_transaction(TX_HASH, Network.BASE_SEPOLIA)

        assert tx.status == TransactionStatus.SUCCESS
        assert tx.block_number == 100
        assert tx.confirmations == 10
        assert tx.timestamp == datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
        assert len(tx.transfers) == 1
        assert tx.transfers[0].raw_amount == 10_000

        url = session.post.call_args_list[0].args[0]
        assert url.startswith("https://base-sepolia.g.alchemy.com/v2/")
        assert session.post.call_args_list[0].kwargs["timeout"] == 5

    def test_failed_transaction(self, client, session):
        session.post.side_effect = rpc_router({
            "eth_getTransactionByHash": {"hash": TX_HASH, "blockNumber": "0x64"},
            "eth_getTransactionReceipt": {"status": "0x0", "logs": []},
            "eth_getBlockByNumber": {"number": "0x64", "timestamp": hex(1740830400)},
            "eth_blockNumber": "0x64",
        })

        tx = client.get_transaction(TX_HASH, Network.BASE)

        assert tx.status == TransactionStatus.FAILED
        assert tx.confirmations == 1

    def test_mined_without_receipt_is_pending(self, client, session):
        session.post.side_effect = rpc_router({
            "eth_getTransactionByHash": {"hash": TX_HASH, "blockNumber": "0x64"},
            "eth_getTransactionReceipt": None,
        })

        tx = client.get_transaction(TX_HASH, Network.BASE)

        assert tx.status == TransactionStatus.PENDING
        assert tx.block_number == 100

    def test_malformed_receipt_maps_to_unavailable(self, client, session):
        """Undecodable ledger fields surface as an outage, not a crash."""
        session.post.side_effect = rpc_router({
            "eth_getTransactionByHash": {"hash": TX_HASH, "blockNumber": "0x64"},
            "eth_getTransactionReceipt": {"status": "0xzz", "logs": []},
        })

        with pytest.raises(LedgerUnavailable, match="Malformed"):
            client.get_transaction(TX_HASH, Network.BASE)

    def test_malformed_block_timestamp_maps_to_unavailable(self, client, session):
        session.post.side_effect = rpc_router({
            "eth_getTransactionByHash": {"hash": TX_HASH, "blockNumber": "0x64"},
            "eth_getTransactionReceipt": {"status": "0x1", "logs": []},
            "eth_getBlockByNumber": {"number": "0x64", "timestamp": "nothex"},
            "eth_blockNumber": "0x64",
        })

        with pytest.raises(LedgerUnavailable):
            client.get_transaction(TX_HASH, Network.BASE)


class TestGetTransferHistory:
    """Test asset transfer history queries."""

    def test_filters_forwarded(self, client, session):
        session.post.return_value = rpc_response({"transfers": [], "pageKey": "next"})

        result = client.get_transfer_history(
            {"fromAddress": PAYER, "toAddress": None, "maxCount": "0x64"},
            Network.BASE,
            page_key="prev",
        )

        assert result == {"transfers": [], "pageKey": "next"}
        payload = session.post.call_args.kwargs["json"]
        assert payload["method"] == "alchemy_getAssetTransfers"
        assert payload["params"] == [{"fromAddress": PAYER, "maxCount": "0x64", "pageKey": "prev"}]

    def test_failure_maps_to_provider_error(self, client, session):
        session.post.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(ProviderError) as exc_info:
            client.get_transfer_history({"fromAddress": PAYER}, Network.BASE, page_key="prev")
        assert exc_info.value.page_key == "prev"

    def test_unexpected_shape(self, client, session):
        session.post.return_value = rpc_response({"items": []})

        with pytest.raises(ProviderError, match="Unexpected"):
            client.get_transfer_history({"fromAddress": PAYER}, Network.BASE)

    def test_null_body_maps_to_provider_error(self, client, session):
        response = MagicMock()
        response.json.return_value = None
        session.post.return_value = response

        with pytest.raises(ProviderError):
            client.get_transfer_history({"fromAddress": PAYER}, Network.BASE)
