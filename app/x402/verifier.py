# app/x402/verifier.py
"""
On-chain payment verification.

Checks a claimed transaction against a PaymentRequirement:
1. The transaction exists and is final (else NotFound / Pending)
2. It executed successfully (else TransactionFailed)
3. It moved the accepted token to the configured recipient (else WrongRecipient)
4. The amount is at least minimum - tolerance (else InsufficientAmount)

The only side effect is the ledger read. Infrastructure faults are retried
with exponential backoff and then reported as a LedgerUnavailable verdict;
timeouts are reported as Pending. Nothing raised by the ledger escapes.
"""
import logging
import time
from decimal import Decimal
from typing import Callable, List, Optional

from app.x402.errors import LedgerTimeout, LedgerUnavailable
from app.x402.ledger import LedgerClient, LedgerTransaction, TokenTransfer, TransactionStatus
from app.x402.models import VerificationStatus, VerificationVerdict
from app.x402.requirements import PaymentRequirement, addresses_equal

logger = logging.getLogger(__name__)


def raw_to_token_amount(raw_amount: int, decimals: int) -> Decimal:
    """Convert smallest token units to whole-token Decimal (USDC: 6 decimals)."""
    return Decimal(raw_amount).scaleb(-decimals)


class PaymentVerifier:
    """Verifies payment proofs against the ledger."""

    def __init__(
        self,
        ledger: LedgerClient,
        max_retries: int = 2,
        retry_backoff_seconds: float = 0.5,
        min_confirmations: int = 1,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.ledger = ledger
        self.max_retries = max(0, max_retries)
        self.retry_backoff_seconds = retry_backoff_seconds
        self.min_confirmations = max(1, min_confirmations)
        self._sleep = sleep

    def verify(self, transaction_hash: str, requirement: PaymentRequirement) -> VerificationVerdict:
        try:
            tx = self._fetch_transaction(transaction_hash, requirement)
        except LedgerTimeout as e:
            logger.warning(f"x402: Ledger lookup timed out for {transaction_hash}: {e}")
            return self._verdict(
                VerificationStatus.PENDING, transaction_hash,
                "Ledger lookup timed out. Retry shortly.",
            )
        except LedgerUnavailable as e:
            logger.error(f"x402: Ledger unavailable while verifying {transaction_hash}: {e}")
            return self._verdict(
                VerificationStatus.LEDGER_UNAVAILABLE, transaction_hash,
                "Payment ledger is temporarily unavailable. Retry later.",
            )

        if tx is None:
            return self._verdict(
                VerificationStatus.NOT_FOUND, transaction_hash,
                f"Transaction not found on {requirement.network_label}",
            )

        if tx.status == TransactionStatus.PENDING or not self._is_final(tx):
            return self._verdict(
                VerificationStatus.PENDING, transaction_hash,
                "Transaction is not yet confirmed. Retry shortly.",
            )

        if tx.status == TransactionStatus.FAILED:
            return self._verdict(
                VerificationStatus.TRANSACTION_FAILED, transaction_hash,
                "Transaction failed on-chain",
            )

        token_transfers = [
            t for t in tx.transfers
            if addresses_equal(t.token_contract, requirement.token_contract)
        ]
        if not token_transfers:
            return self._verdict(
                VerificationStatus.WRONG_RECIPIENT, transaction_hash,
                f"Transaction contains no {requirement.token_symbol} transfer "
                f"on {requirement.network_label} (token contract {requirement.token_contract})",
            )

        to_recipient = [
            t for t in token_transfers
            if addresses_equal(t.recipient, requirement.recipient_address)
        ]
        if not to_recipient:
            return self._verdict(
                VerificationStatus.WRONG_RECIPIENT, transaction_hash,
                f"Payment was not sent to {requirement.recipient_address}",
            )

        amount = self._total_amount(to_recipient, requirement.token_decimals)
        if amount < requirement.minimum_accepted:
            return self._verdict(
                VerificationStatus.INSUFFICIENT_AMOUNT, transaction_hash,
                f"Paid {amount} {requirement.token_symbol}, "
                f"required {requirement.minimum_amount} {requirement.token_symbol}",
                amount=amount,
                timestamp=tx.timestamp,
            )

        logger.info(f"x402: Verified payment {transaction_hash}: {amount} {requirement.token_symbol}")
        return self._verdict(
            VerificationStatus.VERIFIED, transaction_hash,
            "Payment verified",
            amount=amount,
            timestamp=tx.timestamp,
        )

    def _fetch_transaction(
        self,
        transaction_hash: str,
        requirement: PaymentRequirement,
    ) -> Optional[LedgerTransaction]:
        """Query the ledger, retrying infrastructure faults (not timeouts)."""
        attempt = 0
        while True:
            try:
                return self.ledger.get_transaction(transaction_hash, requirement.network)
            except LedgerTimeout:
                raise
            except LedgerUnavailable as e:
                if attempt >= self.max_retries:
                    raise
                delay = self.retry_backoff_seconds * (2 ** attempt)
                attempt += 1
                logger.warning(
                    f"x402: Ledger lookup failed ({e}), retry {attempt}/{self.max_retries} in {delay:.2f}s"
                )
                self._sleep(delay)

    def _is_final(self, tx: LedgerTransaction) -> bool:
        if self.min_confirmations <= 1:
            return True
        if tx.confirmations is None:
            return False
        return tx.confirmations >= self.min_confirmations

    @staticmethod
    def _total_amount(transfers: List[TokenTransfer], decimals: int) -> Decimal:
        return sum(
            (raw_to_token_amount(t.raw_amount, decimals) for t in transfers),
            Decimal(0),
        )

    @staticmethod
    def _verdict(status, transaction_hash, message, amount=None, timestamp=None) -> VerificationVerdict:
        return VerificationVerdict(
            status=status,
            transaction_hash=transaction_hash,
            amount=amount,
            timestamp=timestamp,
            message=message,
        )
