# app/services/alchemy.py
"""
Alchemy JSON-RPC client.

Implements the ledger lookups used to verify payments (transaction, receipt,
block timestamp) and the paginated asset-transfer history served to paying
clients. Network selection is always an explicit argument.
"""
import itertools
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests
from requests.exceptions import RequestException, Timeout

from app.x402.errors import LedgerTimeout, LedgerUnavailable, ProviderError
from app.x402.ledger import LedgerClient, LedgerTransaction, TokenTransfer, TransactionStatus
from app.x402.requirements import NETWORKS, Network

logger = logging.getLogger(__name__)

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

TX_HASH_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")


def is_transaction_hash(value: str) -> bool:
    """Check whether a value is shaped like an EVM transaction hash."""
    return bool(value) and TX_HASH_PATTERN.match(value) is not None


def hex_to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    if value in ("0x", ""):
        return 0
    return int(value, 16)


def topic_to_address(topic: str) -> str:
    """Indexed address topics are left-padded to 32 bytes."""
    return "0x" + topic[-40:].lower()


def parse_transfer_logs(logs: List[Dict[str, Any]]) -> List[TokenTransfer]:
    """
    Extract ERC-20 Transfer events from receipt logs.

    ERC-721 transfers share the topic but index the token id as a fourth
    topic; they are skipped.
    """
    transfers = []
    for log in logs or []:
        topics = log.get("topics") or []
        if len(topics) != 3 or str(topics[0]).lower() != TRANSFER_TOPIC:
            continue
        if not log.get("address"):
            logger.warning(f"Skipping Transfer log without a token contract in {log.get('transactionHash')}")
            continue
        try:
            transfers.append(TokenTransfer(
                token_contract=log["address"].lower(),
                sender=topic_to_address(topics[1]),
                recipient=topic_to_address(topics[2]),
                raw_amount=hex_to_int(log.get("data")) or 0,
            ))
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Skipping malformed Transfer log in {log.get('transactionHash')}: {e}")
    return transfers


class AlchemyClient(LedgerClient):
    """Ledger Query Adapter backed by Alchemy's JSON-RPC endpoints."""

    def __init__(
        self,
        api_key: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self._session = session or requests.Session()
        self._request_ids = itertools.count(1)

    def rpc_url(self, network: Network) -> str:
        return f"{NETWORKS[network].alchemy_host}{self.api_key}"

    def _rpc(self, network: Network, method: str, params: list) -> Any:
        """
        Perform one JSON-RPC call.

        Raises:
            LedgerTimeout: if the call timed out
            LedgerUnavailable: on HTTP, transport or RPC-level errors
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._request_ids),
        }
        try:
            response = self._session.post(self.rpc_url(network), json=payload, timeout=self.timeout)
            response.raise_for_status()
            result = response.json()
        except Timeout as e:
            logger.warning(f"Alchemy {method} timed out on {network.value} after {self.timeout}s")
            raise LedgerTimeout(f"{method} timed out after {self.timeout}s", network=network.value) from e
        except RequestException as e:
            logger.error(f"Error calling Alchemy {method} on {network.value}: {e}")
            raise LedgerUnavailable(f"{method} failed: {e}", network=network.value) from e
        except ValueError as e:
            logger.error(f"Invalid JSON from Alchemy {method}: {e}")
            raise LedgerUnavailable(f"{method} returned invalid JSON", network=network.value) from e

        if not isinstance(result, dict):
            raise LedgerUnavailable(f"{method} returned a non-object response", network=network.value)

        if "error" in result:
            error = result["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise LedgerUnavailable(f"RPC error from {method}: {message}", network=network.value)

        if "result" not in result:
            raise LedgerUnavailable("Invalid RPC response: missing 'result' field", network=network.value)

        return result["result"]

    def get_transaction(self, transaction_hash: str, network: Network) -> Optional[LedgerTransaction]:
        try:
            return self._get_transaction(transaction_hash, network)
        except (TypeError, ValueError, KeyError, AttributeError, OverflowError) as e:
            logger.error(f"Malformed ledger data for {transaction_hash} on {network.value}: {e}")
            raise LedgerUnavailable(f"Malformed ledger response: {e}", network=network.value) from e

    def _get_transaction(self, transaction_hash: str, network: Network) -> Optional[LedgerTransaction]:
        if not is_transaction_hash(transaction_hash):
            # Alchemy rejects malformed hashes as invalid params; no ledger
            # has ever seen such a hash.
            logger.info(f"Not a transaction hash, treating as not found: {transaction_hash[:80]!r}")
            return None

        tx = self._rpc(network, "eth_getTransactionByHash", [transaction_hash])
        if tx is None:
            return None

        block_number = hex_to_int(tx.get("blockNumber"))
        if block_number is None:
            return LedgerTransaction(transaction_hash=transaction_hash, status=TransactionStatus.PENDING)

        receipt = self._rpc(network, "eth_getTransactionReceipt", [transaction_hash])
        if receipt is None:
            return LedgerTransaction(
                transaction_hash=transaction_hash,
                status=TransactionStatus.PENDING,
                block_number=block_number,
            )

        status = TransactionStatus.SUCCESS if hex_to_int(receipt.get("status")) == 1 else TransactionStatus.FAILED

        timestamp = None
        block = self._rpc(network, "eth_getBlockByNumber", [hex(block_number), False])
        if block and block.get("timestamp"):
            timestamp = datetime.fromtimestamp(hex_to_int(block["timestamp"]), tz=timezone.utc)

        latest = hex_to_int(self._rpc(network, "eth_blockNumber", []))
        confirmations = max(0, latest - block_number + 1) if latest is not None else None

        return LedgerTransaction(
            transaction_hash=transaction_hash,
            status=status,
            block_number=block_number,
            timestamp=timestamp,
            confirmations=confirmations,
            transfers=parse_transfer_logs(receipt.get("logs", [])),
        )

    def get_transfer_history(
        self,
        filters: Dict[str, Any],
        network: Network,
        page_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = {key: value for key, value in filters.items() if value is not None}
        if page_key is not None:
            params["pageKey"] = page_key

        try:
            result = self._rpc(network, "alchemy_getAssetTransfers", [params])
        except LedgerUnavailable as e:
            raise ProviderError(f"Transfer history request failed: {e}", page_key=page_key) from e

        if not isinstance(result, dict) or not isinstance(result.get("transfers"), list):
            raise ProviderError("Unexpected transfer history response from provider", page_key=page_key)

        return result
