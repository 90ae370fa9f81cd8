# app/x402/errors.py
"""
Error taxonomy for the payment-gated request protocol.

Verification outcomes (wrong recipient, insufficient amount, ...) are not
exceptions: they are carried as VerificationVerdict values. The classes here
cover configuration faults, infrastructure faults and malformed requests.
"""
from typing import Optional


class X402Error(Exception):
    """Base class for all x402 gateway errors."""


class ConfigurationError(X402Error):
    """Raised at startup when the payment configuration is unusable."""


class LedgerUnavailable(X402Error):
    """The ledger could not be queried. Retryable with backoff."""

    def __init__(self, message: str, network: Optional[str] = None):
        super().__init__(message)
        self.network = network


class LedgerTimeout(LedgerUnavailable):
    """A ledger query exceeded its timeout. Treated like a pending transaction."""


class QueryValidationError(X402Error):
    """Malformed or missing query parameters (HTTP 400)."""

    def __init__(self, message: str, example: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.example = example


class ProviderError(X402Error):
    """The data provider failed to serve a page. Retryable."""

    def __init__(self, message: str, page_key: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.page_key = page_key
