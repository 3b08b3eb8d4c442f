"""Offer endpoints: accept, decline, withdraw."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from gig_market_service.core.state import get_app_state
from gig_market_service.routers.validation import token_from_body

if TYPE_CHECKING:
    from gig_market_service.services.gig_manager import GigManager

router = APIRouter()


def _gig_manager() -> GigManager:
    state = get_app_state()
    if state.gig_manager is None:
        msg = "GigManager not initialized"
        raise RuntimeError(msg)
    return state.gig_manager


@router.post("/offers/{offer_id}/accept")
async def accept_offer(offer_id: str, request: Request) -> JSONResponse:
    """Tasker accepts the offer; returns the new contract awaiting payment."""
    token = token_from_body(await request.body())
    contract = await _gig_manager().accept_offer(offer_id, token)
    return JSONResponse(status_code=201, content=contract)


@router.post("/offers/{offer_id}/decline")
async def decline_offer(offer_id: str, request: Request) -> JSONResponse:
    """Tasker declines the offer."""
    token = token_from_body(await request.body())
    result = await _gig_manager().decline_offer(offer_id, token)
    return JSONResponse(status_code=200, content=result)


@router.post("/offers/{offer_id}/withdraw")
async def withdraw_offer(offer_id: str, request: Request) -> JSONResponse:
    """Provider withdraws the offer."""
    token = token_from_body(await request.body())
    result = await _gig_manager().withdraw_offer(offer_id, token)
    return JSONResponse(status_code=200, content=result)
