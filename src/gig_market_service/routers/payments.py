"""Payment processor callback endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from gig_market_service.core.state import get_app_state
from gig_market_service.routers.validation import token_from_body

router = APIRouter()


@router.post("/payments/{payment_id}/status")
async def record_payment_status(payment_id: str, request: Request) -> JSONResponse:
    """Record a processor status change; funding a payment activates its contract."""
    token = token_from_body(await request.body())

    state = get_app_state()
    if state.payment_manager is None:
        msg = "PaymentManager not initialized"
        raise RuntimeError(msg)

    result = await state.payment_manager.record_payment_status(payment_id, token)
    return JSONResponse(status_code=200, content=result)
