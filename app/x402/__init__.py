# app/x402/__init__.py
"""
x402 Payment Protocol Integration Module.

Gates API routes behind an on-chain payment: a request without proof gets
HTTP 402 with payment instructions; a request carrying the hash of a USDC
transfer to the configured address is verified against the ledger and then
served.

Key components:
- requirements: per-network token table and the PaymentRequirement
- verifier: on-chain proof verification (amount, recipient, status)
- cache: verified-payment cache keyed by transaction hash
- gate: challenge/admit/reject state machine
- middleware: FastAPI binding of the gate
- audit: JSON-lines audit log of payment decisions

Configuration is loaded from environment variables via app.core.config.
"""

__version__ = "0.2.0"
