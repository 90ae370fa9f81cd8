# app/x402/gate.py
"""
Payment gate: the x402 challenge/response state machine.

    no proof                      -> Challenge (HTTP 402, expected protocol step)
    "demo" + development mode     -> Admitted (DevModeBypass, ledger untouched)
    "demo" otherwise              -> Rejected (BypassNotAllowed)
    hash in verified cache        -> Admitted (no ledger query)
    hash verified by the ledger   -> Admitted, verdict cached
    anything else                 -> Rejected with the verifier's reason

The gate is transport-agnostic; app.x402.middleware binds it to HTTP.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Union

from app.x402.cache import VerifiedPaymentCache
from app.x402.models import (
    BYPASS_TOKEN,
    X_PAYMENT_HASH_HEADER,
    PaymentProof,
    VerificationStatus,
    VerificationVerdict,
)
from app.x402.requirements import PaymentRequirement
from app.x402.verifier import PaymentVerifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Challenge:
    """402 payload telling the client how to pay."""
    requirement: PaymentRequirement

    @property
    def instructions(self) -> str:
        r = self.requirement
        return (
            f"Send {r.minimum_amount} {r.token_symbol} on {r.network_label} "
            f"(token contract {r.token_contract}) to {r.recipient_address}, "
            f"then retry this request with the transaction hash in the "
            f"{X_PAYMENT_HASH_HEADER} header."
        )

    def to_dict(self) -> dict:
        body = self.requirement.to_dict()
        body["header"] = X_PAYMENT_HASH_HEADER
        body["instructions"] = self.instructions
        return body


@dataclass(frozen=True)
class Admitted:
    verdict: VerificationVerdict
    from_cache: bool = False


@dataclass(frozen=True)
class Rejected:
    verdict: VerificationVerdict

    @property
    def reason(self) -> VerificationStatus:
        return self.verdict.status


GateDecision = Union[Challenge, Admitted, Rejected]


class PaymentGate:
    """
    Decides whether a request may proceed.

    Args:
        verifier: Ledger-backed verifier for real proofs
        cache: Verified-payment cache shared across requests
        development_mode: Enables the bypass token. Must be False in production.
    """

    def __init__(
        self,
        verifier: PaymentVerifier,
        cache: VerifiedPaymentCache,
        development_mode: bool = False,
    ):
        self.verifier = verifier
        self.cache = cache
        self.development_mode = bool(development_mode)
        if self.development_mode:
            logger.warning(
                f"x402: Development mode is ON, proof '{BYPASS_TOKEN}' is accepted without payment"
            )

    def admit(self, proof: Optional[PaymentProof], requirement: PaymentRequirement) -> GateDecision:
        if proof is None:
            return Challenge(requirement=requirement)

        if proof.is_bypass:
            return self._admit_bypass(requirement)

        cached = self.cache.get(proof.transaction_hash, scope=requirement.cache_scope)
        if cached is not None and self._covers(cached, requirement):
            logger.info(f"x402: Payment {proof.transaction_hash} admitted from cache")
            return Admitted(verdict=cached, from_cache=True)

        if proof.claimed_amount is not None:
            logger.debug(f"x402: Client claims {proof.claimed_amount} for {proof.transaction_hash}")

        verdict = self.verifier.verify(proof.transaction_hash, requirement)

        if verdict.status == VerificationStatus.VERIFIED:
            self.cache.put(proof.transaction_hash, verdict, scope=requirement.cache_scope)
            return Admitted(verdict=verdict)

        logger.warning(
            f"x402: Payment {proof.transaction_hash} rejected: {verdict.status.value} ({verdict.message})"
        )
        return Rejected(verdict=verdict)

    @staticmethod
    def _covers(verdict: VerificationVerdict, requirement: PaymentRequirement) -> bool:
        # Routes sharing a scope may still differ in price
        return verdict.amount is not None and verdict.amount >= requirement.minimum_accepted

    def _admit_bypass(self, requirement: PaymentRequirement) -> GateDecision:
        if not self.development_mode:
            logger.warning("x402: Bypass token presented outside development mode")
            return Rejected(verdict=VerificationVerdict(
                status=VerificationStatus.BYPASS_NOT_ALLOWED,
                transaction_hash=BYPASS_TOKEN,
                message="Demo payments are only accepted in development mode",
            ))

        logger.warning("x402: Admitting request with development-mode bypass token")
        return Admitted(verdict=VerificationVerdict.bypass(requirement.minimum_amount))
