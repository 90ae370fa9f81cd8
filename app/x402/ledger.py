# app/x402/ledger.py
"""
Ledger Query Adapter interface.

The verifier and query executor only talk to the ledger through this narrow
interface. Implementations raise LedgerTimeout / LedgerUnavailable for
infrastructure faults and never return partial results.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from app.x402.requirements import Network


class TransactionStatus(Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class TokenTransfer:
    """A fungible-token transfer effected by a transaction (raw smallest units)."""
    token_contract: str
    sender: str
    recipient: str
    raw_amount: int


@dataclass(frozen=True)
class LedgerTransaction:
    transaction_hash: str
    status: TransactionStatus
    block_number: Optional[int] = None
    timestamp: Optional[datetime] = None
    confirmations: Optional[int] = None
    transfers: List[TokenTransfer] = field(default_factory=list)


class LedgerClient:
    """Base class for ledger/data-provider clients."""

    def get_transaction(self, transaction_hash: str, network: Network) -> Optional[LedgerTransaction]:
        """
        Look up a transaction by hash on an explicit network.

        Returns:
            LedgerTransaction, or None if the ledger has never seen the hash

        Raises:
            LedgerTimeout: if the lookup timed out
            LedgerUnavailable: for any other infrastructure fault
        """
        raise NotImplementedError

    def get_transfer_history(
        self,
        filters: Dict[str, Any],
        network: Network,
        page_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Fetch one page of asset transfers.

        Returns:
            Dict with "transfers" (list) and optionally "pageKey" (opaque str)

        Raises:
            ProviderError: if the provider rejected or failed the page
        """
        raise NotImplementedError
