"""Fee preview endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Request

from gig_market_service.core.exceptions import ServiceError, ValidationError
from gig_market_service.core.state import get_app_state
from gig_market_service.schemas import FeeQuoteResponse

router = APIRouter()


@router.get("/fees/quote", response_model=FeeQuoteResponse)
async def quote_fees(request: Request) -> FeeQuoteResponse:
    """Preview what the provider pays and the tasker receives for an amount."""
    amount_raw = request.query_params.get("amount")
    if amount_raw is None:
        raise ServiceError("INVALID_PAYLOAD", "Missing required query parameter: amount", 400, {})
    try:
        amount = int(amount_raw)
    except ValueError as exc:
        raise ValidationError("amount must be an integer number of minor units") from exc

    state = get_app_state()
    if state.payment_manager is None:
        msg = "PaymentManager not initialized"
        raise RuntimeError(msg)

    return FeeQuoteResponse(**state.payment_manager.quote_fees(amount))
