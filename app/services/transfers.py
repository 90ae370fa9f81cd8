# app/services/transfers.py
"""
Query executor for paid transfer-history requests.

Runs once the payment gate has admitted a request. Filters are forwarded to
the provider unchanged and the provider's pageKey is returned verbatim: it is
an opaque cursor owned by the provider and is never parsed here.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from app.api.models.transfers import TransferQuery
from app.x402.ledger import LedgerClient
from app.x402.requirements import Network

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResultPage:
    """One page of provider results plus its continuation cursor."""
    data: Dict[str, Any]
    page_key: Optional[str]
    count: int

    @property
    def has_more(self) -> bool:
        return self.page_key is not None

    def pagination(self) -> Dict[str, Any]:
        return {"hasMore": self.has_more, "pageKey": self.page_key, "count": self.count}


class TransferQueryExecutor:
    """Executes transfer history queries against the data provider."""

    def __init__(self, provider: LedgerClient, network: Network):
        self.provider = provider
        self.network = network

    def execute(self, query: TransferQuery) -> ResultPage:
        """
        Fetch one page of transfers.

        Raises:
            ProviderError: if the provider failed the page (retryable, never swallowed)
        """
        result = self.provider.get_transfer_history(
            query.to_provider_filters(),
            self.network,
            page_key=query.pageKey,
        )

        # An empty cursor is not a cursor
        page_key = result.get("pageKey") or None
        transfers = result.get("transfers") or []

        logger.info(
            f"Fetched {len(transfers)} transfers on {self.network.value}"
            f"{' (more available)' if page_key else ''}"
        )
        return ResultPage(data=result, page_key=page_key, count=len(transfers))
