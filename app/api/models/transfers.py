# app/api/models/transfers.py
import re
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, Field

from app.x402.errors import QueryValidationError

ALLOWED_CATEGORIES = ("external", "internal", "erc20", "erc721", "erc1155", "specialnft")
DEFAULT_CATEGORIES = ["external", "erc20"]
DEFAULT_MAX_COUNT = 100
MAX_COUNT_LIMIT = 1000

ADDRESS_FILTERS = ("address", "fromAddress", "toAddress")
EXAMPLE_QUERY = "/api/transfers?address=0x..."

# Accepted query parameters and their meaning (echoed by /api/transfers/info)
QUERY_PARAMETERS = {
    "address": "Wallet address to query (fills fromAddress and toAddress when they are not given)",
    "fromAddress": "Filter by sender address",
    "toAddress": "Filter by recipient address",
    "category": "Transfer types, comma-separated: " + ", ".join(ALLOWED_CATEGORIES)
                + " (default: external,erc20)",
    "fromBlock": "Start block (hex or number, default: 0x0)",
    "toBlock": 'End block (hex, number, or "latest")',
    "maxCount": f"Max results per page (1-{MAX_COUNT_LIMIT}, default: {DEFAULT_MAX_COUNT})",
    "pageKey": "Pagination key from previous response",
    "order": "Sort order: asc or desc (default: desc)",
    "contractAddresses": "Token contract addresses (comma-separated)",
}

HEX_BLOCK = re.compile(r"0x[0-9a-fA-F]+")
DECIMAL_BLOCK = re.compile(r"[0-9]+")


class TransferQuery(BaseModel):
    """Validated, normalized filters for an asset transfer history query."""
    fromAddress: Optional[str] = Field(None, description="Sender address filter")
    toAddress: Optional[str] = Field(None, description="Recipient address filter")
    category: List[str] = Field(default_factory=lambda: list(DEFAULT_CATEGORIES))
    contractAddresses: Optional[List[str]] = None
    fromBlock: str = "0x0"
    toBlock: str = "latest"
    maxCount: int = Field(DEFAULT_MAX_COUNT, ge=1, le=MAX_COUNT_LIMIT)
    order: Literal["asc", "desc"] = "desc"
    pageKey: Optional[str] = Field(None, description="Opaque provider cursor, passed through unchanged")

    def to_provider_filters(self) -> Dict[str, Any]:
        """Filters in the provider's wire format (pageKey travels separately)."""
        filters = {
            "fromBlock": self.fromBlock,
            "toBlock": self.toBlock,
            "fromAddress": self.fromAddress,
            "toAddress": self.toAddress,
            "category": list(self.category),
            "contractAddresses": list(self.contractAddresses) if self.contractAddresses else None,
            "maxCount": hex(self.maxCount),
            "order": self.order,
            "withMetadata": True,
        }
        return filters


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def clamp_max_count(raw: Optional[str]) -> int:
    """Parse maxCount and clamp it into [1, MAX_COUNT_LIMIT]."""
    if raw is None or not raw.strip():
        return DEFAULT_MAX_COUNT
    try:
        value = int(raw.strip(), 10)
    except ValueError:
        raise QueryValidationError(f"maxCount must be an integer, got '{raw}'", example=EXAMPLE_QUERY)
    return min(max(value, 1), MAX_COUNT_LIMIT)


def normalize_block(raw: Optional[str], name: str, default: str, allow_latest: bool) -> str:
    """Accept hex, decimal (converted to hex) or, for toBlock, 'latest'."""
    value = _clean(raw)
    if value is None:
        return default
    if allow_latest and value.lower() == "latest":
        return "latest"
    if HEX_BLOCK.fullmatch(value):
        return value.lower()
    if DECIMAL_BLOCK.fullmatch(value):
        return hex(int(value))
    expected = 'hex, number, or "latest"' if allow_latest else "hex or number"
    raise QueryValidationError(f"{name} must be {expected}, got '{raw}'", example=EXAMPLE_QUERY)


def parse_transfer_query(params: Mapping[str, str]) -> TransferQuery:
    """
    Validate raw query parameters into a TransferQuery.

    Raises:
        QueryValidationError: if the parameters are missing or malformed
    """
    address = _clean(params.get("address"))
    from_address = _clean(params.get("fromAddress"))
    to_address = _clean(params.get("toAddress"))

    if not (address or from_address or to_address):
        raise QueryValidationError(
            "At least one of: address, fromAddress, or toAddress is required",
            example=EXAMPLE_QUERY,
        )

    categories = split_csv(params.get("category")) or list(DEFAULT_CATEGORIES)
    unknown = [c for c in categories if c not in ALLOWED_CATEGORIES]
    if unknown:
        raise QueryValidationError(
            f"Unknown category: {', '.join(unknown)}. Allowed: {', '.join(ALLOWED_CATEGORIES)}",
            example=EXAMPLE_QUERY,
        )

    order = (_clean(params.get("order")) or "desc").lower()
    if order not in ("asc", "desc"):
        raise QueryValidationError(f"order must be 'asc' or 'desc', got '{order}'", example=EXAMPLE_QUERY)

    return TransferQuery(
        fromAddress=from_address or address,
        toAddress=to_address or address,
        category=categories,
        contractAddresses=split_csv(params.get("contractAddresses")) or None,
        fromBlock=normalize_block(params.get("fromBlock"), "fromBlock", "0x0", allow_latest=False),
        toBlock=normalize_block(params.get("toBlock"), "toBlock", "latest", allow_latest=True),
        maxCount=clamp_max_count(params.get("maxCount")),
        order=order,
        pageKey=params.get("pageKey") or None,
    )


class PaymentInfo(BaseModel):
    hash: str = Field(..., description="Transaction hash of the accepted payment (or 'demo').")
    amount: Optional[str] = Field(None, description="Amount observed on-chain, in token units.")
    timestamp: Optional[str] = Field(None, description="Transaction timestamp (ISO 8601, UTC).")


class PaginationInfo(BaseModel):
    hasMore: bool = Field(..., description="True exactly when pageKey is present.")
    pageKey: Optional[str] = Field(None, description="Opaque provider cursor for the next page.")
    count: int = Field(..., description="Number of transfers in this page.")


class TransfersResponse(BaseModel):
    """Response model for a paid transfer history query."""
    success: bool = True
    data: Dict[str, Any] = Field(..., description="Provider result set (transfers and pageKey).")
    payment: PaymentInfo
    pagination: PaginationInfo


class ErrorResponse(BaseModel):
    error: str
    status: int
    message: str


class PaymentChallengeResponse(BaseModel):
    """Body of the 402 Payment Required challenge."""
    error: str = "Payment Required"
    status: int = 402
    message: str
    amount: str
    currency: str
    network: str
    recipientAddress: str
    tokenContract: str
    header: str
    instructions: str
