# app/api/endpoints/transfers.py
from fastapi import APIRouter, Query, Request
from typing import Any, Optional
import logging

from app.api.models.transfers import (
    QUERY_PARAMETERS,
    ErrorResponse,
    PaymentChallengeResponse,
    TransfersResponse,
    parse_transfer_query,
)
from app.x402.errors import X402Error
from app.x402.models import X_PAYMENT_AMOUNT_HEADER, X_PAYMENT_HASH_HEADER

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get(
    "",
    response_model=TransfersResponse,
    summary="Fetch Wallet Transfer History (x402 payment required)",
    responses={
        400: {"model": ErrorResponse, "description": "Malformed query parameters"},
        402: {"model": PaymentChallengeResponse, "description": "Payment required or rejected"},
        502: {"model": ErrorResponse, "description": "Data provider failed, retry"},
        503: {"model": ErrorResponse, "description": "Payment ledger unavailable, retry"},
    },
)
def get_transfers(
    request: Request,
    address: Optional[str] = Query(None, description=QUERY_PARAMETERS["address"]),
    fromAddress: Optional[str] = Query(None, description=QUERY_PARAMETERS["fromAddress"]),
    toAddress: Optional[str] = Query(None, description=QUERY_PARAMETERS["toAddress"]),
    category: Optional[str] = Query(None, description=QUERY_PARAMETERS["category"]),
    fromBlock: Optional[str] = Query(None, description=QUERY_PARAMETERS["fromBlock"]),
    toBlock: Optional[str] = Query(None, description=QUERY_PARAMETERS["toBlock"]),
    maxCount: Optional[str] = Query(None, description=QUERY_PARAMETERS["maxCount"]),
    pageKey: Optional[str] = Query(None, description=QUERY_PARAMETERS["pageKey"]),
    order: Optional[str] = Query(None, description=QUERY_PARAMETERS["order"]),
    contractAddresses: Optional[str] = Query(None, description=QUERY_PARAMETERS["contractAddresses"]),
) -> Any:
    """
    Fetch blockchain transfer history for a wallet address.

    Requires an x402 payment: send the transaction hash of your payment in the
    X-Payment-Hash header. Without it the response is 402 with payment
    instructions.

    The provider's pageKey is returned unchanged in pagination.pageKey; pass
    it back as the pageKey query parameter to fetch the next page.
    """
    # Declared parameters document the API; validation works on the raw
    # query string so it behaves exactly like the middleware's pre-check.
    query = parse_transfer_query(request.query_params)

    payment = getattr(request.state, "payment", None)
    if payment is None:
        # Only reachable if the route is mounted without the x402 middleware
        logger.error("Transfers endpoint reached without a verified payment")
        raise X402Error("Payment gate is not installed for this route")

    logger.info(
        f"Processing transfers request for from={query.fromAddress} to={query.toAddress} "
        f"(payment {payment.transaction_hash})"
    )

    page = request.app.state.query_executor.execute(query)

    return TransfersResponse(
        success=True,
        data=page.data,
        payment=payment.payment_info(),
        pagination=page.pagination(),
    )


@router.get("/info", summary="Transfers Endpoint Information")
def transfers_info(request: Request) -> Any:
    """
    Describe the transfers endpoint and its payment requirement.

    Free endpoint (no payment required).
    """
    requirement = request.app.state.payment_requirement
    prefix = request.url.path[: -len("/info")]

    return {
        "endpoint": prefix,
        "description": "Fetch blockchain transaction history for any wallet address",
        "payment": {
            "required": True,
            "price": f"{requirement.minimum_amount} {requirement.token_symbol}",
            "network": requirement.network_label,
            **requirement.to_dict(),
        },
        "parameters": QUERY_PARAMETERS,
        "headers": {
            X_PAYMENT_HASH_HEADER: "Transaction hash of your payment (required)",
            X_PAYMENT_AMOUNT_HEADER: "Amount paid (optional, informational only)",
        },
        "example": {
            "curl": f'curl -H "{X_PAYMENT_HASH_HEADER}: 0x..." "{request.base_url}{prefix.lstrip("/")}?address=0x..."',
            "payment": (
                f"Send {requirement.minimum_amount} {requirement.token_symbol} on "
                f"{requirement.network_label} to {requirement.recipient_address} to receive access"
            ),
        },
    }
