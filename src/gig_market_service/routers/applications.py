"""Application endpoints: hire, reject, cancel, and make an offer."""

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


@router.post("/applications/{application_id}/accept")
async def accept_application(application_id: str, request: Request) -> JSONResponse:
    """Hire the applicant; returns the new contract awaiting payment."""
    token = token_from_body(await request.body())
    contract = await _gig_manager().accept_application(application_id, token)
    return JSONResponse(status_code=201, content=contract)


@router.post("/applications/{application_id}/reject")
async def reject_application(application_id: str, request: Request) -> JSONResponse:
    """Reject a pending application."""
    token = token_from_body(await request.body())
    result = await _gig_manager().reject_application(application_id, token)
    return JSONResponse(status_code=200, content=result)


@router.post("/applications/{application_id}/cancel")
async def cancel_application(application_id: str, request: Request) -> JSONResponse:
    """Cancel one's own pending application."""
    token = token_from_body(await request.body())
    result = await _gig_manager().cancel_application(application_id, token)
    return JSONResponse(status_code=200, content=result)


@router.post("/applications/{application_id}/offers")
async def create_offer(application_id: str, request: Request) -> JSONResponse:
    """Make an offer to the applicant."""
    token = token_from_body(await request.body())
    result = await _gig_manager().create_offer(application_id, token)
    return JSONResponse(status_code=201, content=result)
