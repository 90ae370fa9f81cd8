# tests/conftest.py
"""
Shared test configuration.

Sets the minimal environment app.main needs at import time, and provides
factories for requirements and ledger transactions.
"""
import os
from datetime import datetime, timezone
from decimal import Decimal

import pytest

PAY_TO = "0x1234567890AbcdEF1234567890aBcdef12345678"
PAYER = "0x9999999999999999999999999999999999999999"
SEPOLIA_USDC = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
BASE_USDC = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
TX_HASH = "0x" + "ab" * 32
TX_TIMESTAMP = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

os.environ.setdefault("X402_PAY_TO_ADDRESS", PAY_TO)
os.environ.setdefault("X402_NETWORK", "base-sepolia")
os.environ.setdefault("X402_DEVELOPMENT_MODE", "true")
os.environ.setdefault("X402_AUDIT_ENABLED", "false")
os.environ.setdefault("LEDGER_RETRY_BACKOFF_SECONDS", "0")


@pytest.fixture
def requirement_factory():
    from app.x402.requirements import build_payment_requirement

    def make(network="base-sepolia", price="0.01", tolerance="0.000001", pay_to=PAY_TO):
        return build_payment_requirement(
            network=network,
            recipient_address=pay_to,
            minimum_amount=Decimal(price),
            tolerance=Decimal(tolerance),
        )
    return make


@pytest.fixture
def requirement(requirement_factory):
    return requirement_factory()


@pytest.fixture
def tx_factory():
    from app.x402.ledger import LedgerTransaction, TokenTransfer, TransactionStatus

    def make(
        raw_amount=10_000,
        recipient=PAY_TO,
        token=SEPOLIA_USDC,
        status=TransactionStatus.SUCCESS,
        tx_hash=TX_HASH,
        confirmations=12,
        transfers=None,
    ):
        if transfers is None:
            transfers = [TokenTransfer(
                token_contract=token.lower(),
                sender=PAYER,
                recipient=recipient.lower(),
                raw_amount=raw_amount,
            )]
        return LedgerTransaction(
            transaction_hash=tx_hash,
            status=status,
            block_number=100,
            timestamp=TX_TIMESTAMP,
            confirmations=confirmations,
            transfers=transfers,
        )
    return make
