# app/x402/middleware.py
"""
FastAPI middleware binding the payment gate to HTTP.

For each request to a protected route this middleware:
1. Validates the query string (malformed queries get 400 and never reach
   the verifier)
2. Reads the X-Payment-Hash proof header
3. Runs the payment gate in the threadpool (ledger lookups block)
4. Returns 402 with payment instructions, a specific rejection, or lets the
   request through with the verdict attached as request.state.payment

Unprotected routes pass through untouched.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional

from fastapi import Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from app.x402 import audit
from app.x402.errors import QueryValidationError
from app.x402.gate import Challenge, PaymentGate, Rejected
from app.x402.models import X_PAYMENT_HASH_HEADER, PaymentProof, VerificationStatus, VerificationVerdict
from app.x402.requirements import PaymentRequirement

logger = logging.getLogger(__name__)

X_PAYMENT_STATUS_HEADER = "X-Payment-Status"

# Seconds a client should wait before retrying a pending or unverifiable proof
PENDING_RETRY_AFTER_SECONDS = 5
LEDGER_RETRY_AFTER_SECONDS = 30


@dataclass(frozen=True)
class ProtectedRoute:
    """A route that requires payment, with its requirement attached."""
    method: str
    path: str
    requirement: PaymentRequirement
    validate_query: Optional[Callable[[Mapping[str, str]], Any]] = None

    def matches(self, method: str, path: str) -> bool:
        return method == self.method and path.rstrip("/") == self.path.rstrip("/")


def find_protected_route(routes: List[ProtectedRoute], method: str, path: str) -> Optional[ProtectedRoute]:
    for route in routes:
        if route.matches(method, path):
            return route
    return None


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


def create_402_response(challenge: Challenge) -> JSONResponse:
    body = {
        "error": "Payment Required",
        "status": 402,
        "message": f"Payment required. Provide the transaction hash in the {X_PAYMENT_HASH_HEADER} header.",
    }
    body.update(challenge.to_dict())
    return JSONResponse(status_code=402, content=body)


def rejection_status_code(status: VerificationStatus) -> int:
    if status == VerificationStatus.LEDGER_UNAVAILABLE:
        return 503
    return 402


def create_rejection_response(verdict: VerificationVerdict, requirement: PaymentRequirement) -> JSONResponse:
    """Rejections always name the specific reason so clients can act on it."""
    status_code = rejection_status_code(verdict.status)
    body = {
        "error": "Payment Verification Failed" if status_code == 402 else "Service Unavailable",
        "status": status_code,
        "message": verdict.message or verdict.status.value,
        "reason": verdict.status.value,
        "transactionHash": verdict.transaction_hash,
        "retryable": verdict.retryable,
    }
    if verdict.amount is not None:
        body["paidAmount"] = str(verdict.amount)
    body.update(requirement.to_dict())

    headers = {}
    if verdict.status == VerificationStatus.PENDING:
        headers["Retry-After"] = str(PENDING_RETRY_AFTER_SECONDS)
    elif verdict.status == VerificationStatus.LEDGER_UNAVAILABLE:
        headers["Retry-After"] = str(LEDGER_RETRY_AFTER_SECONDS)

    return JSONResponse(status_code=status_code, content=body, headers=headers)


def create_bad_request_response(error: QueryValidationError) -> JSONResponse:
    body = {"error": "Bad Request", "status": 400, "message": error.message}
    if error.example:
        body["example"] = error.example
    return JSONResponse(status_code=400, content=body)


class X402Middleware(BaseHTTPMiddleware):
    """
    x402 payment middleware for FastAPI.

    Args:
        app: ASGI app
        gate: Payment gate shared by all requests
        routes: Protected routes and their payment requirements
    """

    def __init__(self, app, gate: PaymentGate, routes: List[ProtectedRoute]):
        super().__init__(app)
        self.gate = gate
        self.routes = list(routes)

    async def dispatch(self, request: Request, call_next: Callable[[Request], Response]) -> Response:
        route = find_protected_route(self.routes, request.method, request.url.path)
        if route is None:
            return await call_next(request)

        client_ip = get_client_ip(request)
        path = request.url.path
        logger.info(f"x402: Processing protected request from {client_ip}: {request.method} {path}")

        if route.validate_query is not None:
            try:
                route.validate_query(request.query_params)
            except QueryValidationError as e:
                logger.info(f"x402: Rejecting malformed query from {client_ip}: {e.message}")
                audit.log_query_rejected(client_ip, path, e.message)
                return create_bad_request_response(e)

        proof = PaymentProof.from_headers(request.headers)
        requirement = route.requirement

        try:
            # The ledger call may outlive a disconnected client; its verdict
            # still lands in the cache for the client's next retry.
            decision = await run_in_threadpool(self.gate.admit, proof, requirement)
        except Exception as e:
            logger.exception(f"x402: Payment verification crashed for {client_ip}")
            audit.log_error(client_ip, type(e).__name__, str(e), {"path": path})
            return JSONResponse(
                status_code=502,
                content={"error": "Bad Gateway", "status": 502, "message": "Payment verification failed"},
            )

        if isinstance(decision, Challenge):
            logger.info(f"x402: No payment proof from {client_ip}, returning 402")
            audit.log_payment_required_sent(
                client_ip, str(request.url), str(requirement.minimum_amount),
                requirement.network.value, requirement.recipient_address,
            )
            return create_402_response(decision)

        if isinstance(decision, Rejected):
            if decision.reason == VerificationStatus.BYPASS_NOT_ALLOWED:
                audit.log_bypass(client_ip, allowed=False, path=path)
            else:
                audit.log_payment_rejected(
                    client_ip, decision.verdict.transaction_hash,
                    decision.reason.value, decision.verdict.message,
                )
            return create_rejection_response(decision.verdict, requirement)

        verdict = decision.verdict
        if verdict.status == VerificationStatus.DEV_MODE_BYPASS:
            audit.log_bypass(client_ip, allowed=True, path=path)
            payment_source = "bypass"
        else:
            audit.log_payment_verified(
                client_ip, verdict.transaction_hash,
                str(verdict.amount) if verdict.amount is not None else None,
                requirement.network.value, from_cache=decision.from_cache,
            )
            payment_source = "cached" if decision.from_cache else "verified"

        request.state.payment = verdict

        response = await call_next(request)
        response.headers[X_PAYMENT_STATUS_HEADER] = payment_source
        return response
