# app/x402/models.py
"""
Value types shared by the payment gate, verifier and cache.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Mapping, Optional

# Reserved proof value that skips ledger verification in development mode
BYPASS_TOKEN = "demo"

X_PAYMENT_HASH_HEADER = "X-Payment-Hash"
X_PAYMENT_AMOUNT_HEADER = "X-Payment-Amount"


class VerificationStatus(Enum):
    """Outcome categories of checking a proof against a requirement."""
    VERIFIED = "verified"
    DEV_MODE_BYPASS = "dev_mode_bypass"
    NOT_FOUND = "not_found"
    PENDING = "pending"
    WRONG_RECIPIENT = "wrong_recipient"
    INSUFFICIENT_AMOUNT = "insufficient_amount"
    TRANSACTION_FAILED = "transaction_failed"
    BYPASS_NOT_ALLOWED = "bypass_not_allowed"
    LEDGER_UNAVAILABLE = "ledger_unavailable"


# Only these verdicts may ever be written to the verified-payment cache.
# A failed or pending proof may still confirm later and must stay retryable.
CACHE_ELIGIBLE_STATUSES = frozenset({
    VerificationStatus.VERIFIED,
    VerificationStatus.DEV_MODE_BYPASS,
})

RETRYABLE_STATUSES = frozenset({
    VerificationStatus.PENDING,
    VerificationStatus.LEDGER_UNAVAILABLE,
})


@dataclass(frozen=True)
class PaymentProof:
    """Client-supplied evidence of payment."""
    transaction_hash: str
    claimed_amount: Optional[Decimal] = None

    @property
    def is_bypass(self) -> bool:
        return self.transaction_hash == BYPASS_TOKEN

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> Optional["PaymentProof"]:
        """
        Build a proof from request headers.

        Returns None when the proof header is absent or blank. A claimed
        amount that does not parse is ignored, it is never trusted anyway.
        """
        tx_hash = (headers.get(X_PAYMENT_HASH_HEADER) or "").strip()
        if not tx_hash:
            return None

        claimed = None
        raw_amount = headers.get(X_PAYMENT_AMOUNT_HEADER)
        if raw_amount:
            try:
                claimed = Decimal(raw_amount.strip())
            except InvalidOperation:
                claimed = None

        return cls(transaction_hash=tx_hash, claimed_amount=claimed)


@dataclass(frozen=True)
class VerificationVerdict:
    """The verifier's typed decision about a proof."""
    status: VerificationStatus
    transaction_hash: str
    amount: Optional[Decimal] = None
    timestamp: Optional[datetime] = None
    message: Optional[str] = None

    @property
    def is_admitted(self) -> bool:
        return self.status in CACHE_ELIGIBLE_STATUSES

    @property
    def is_cache_eligible(self) -> bool:
        return self.status in CACHE_ELIGIBLE_STATUSES

    @property
    def retryable(self) -> bool:
        return self.status in RETRYABLE_STATUSES

    @classmethod
    def bypass(cls, amount: Decimal) -> "VerificationVerdict":
        """Synthetic verdict for the development-mode bypass token."""
        return cls(
            status=VerificationStatus.DEV_MODE_BYPASS,
            transaction_hash=BYPASS_TOKEN,
            amount=amount,
            timestamp=datetime.now(timezone.utc),
            message="Development mode bypass, no ledger verification performed",
        )

    def payment_info(self) -> Dict[str, Any]:
        """Payment metadata exposed to downstream handlers and clients."""
        return {
            "hash": self.transaction_hash,
            "amount": str(self.amount) if self.amount is not None else None,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }
