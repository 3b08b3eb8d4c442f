"""Gig endpoints: posting, browsing, applying, and the gig's offer."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from gig_market_service.core.state import get_app_state
from gig_market_service.routers.validation import extract_bearer_token, token_from_body

if TYPE_CHECKING:
    from gig_market_service.services.gig_manager import GigManager

router = APIRouter()


def _gig_manager() -> GigManager:
    state = get_app_state()
    if state.gig_manager is None:
        msg = "GigManager not initialized"
        raise RuntimeError(msg)
    return state.gig_manager


# ---------------------------------------------------------------------------
# POST /gigs, GET /gigs (MUST be before GET /gigs/{gig_id})
# ---------------------------------------------------------------------------


@router.post("/gigs", status_code=201)
async def create_gig(request: Request) -> JSONResponse:
    """Post a new gig."""
    token = token_from_body(await request.body())
    result = await _gig_manager().create_gig(token)
    return JSONResponse(status_code=201, content=result)


@router.get("/gigs")
async def list_gigs(request: Request) -> dict[str, Any]:
    """List gigs with optional status and provider filters."""
    gigs = await _gig_manager().list_gigs(
        status=request.query_params.get("status"),
        provider_id=request.query_params.get("provider_id"),
    )
    return {"gigs": gigs}


@router.get("/gigs/{gig_id}")
async def get_gig(gig_id: str) -> dict[str, Any]:
    """Get a single gig."""
    return await _gig_manager().get_gig(gig_id)


# ---------------------------------------------------------------------------
# Applications on a gig
# ---------------------------------------------------------------------------


@router.post("/gigs/{gig_id}/applications")
async def apply_to_gig(gig_id: str, request: Request) -> JSONResponse:
    """Apply to a gig. Reapplying after a cancellation reopens the old application."""
    token = token_from_body(await request.body())
    application, created = await _gig_manager().apply_to_gig(gig_id, token)
    return JSONResponse(status_code=201 if created else 200, content=application)


@router.get("/gigs/{gig_id}/applications")
async def list_gig_applications(
    gig_id: str,
    authorization: str | None = Header(default=None),
) -> dict[str, Any]:
    """List live applications for the caller's gig."""
    token = extract_bearer_token(authorization)
    applications = await _gig_manager().list_gig_applications(gig_id, token)
    return {"applications": applications}


@router.get("/gigs/{gig_id}/offer")
async def get_gig_offer(
    gig_id: str,
    authorization: str | None = Header(default=None),
) -> dict[str, Any]:
    """Get the latest offer made on a gig."""
    token = extract_bearer_token(authorization)
    return await _gig_manager().get_offer_for_gig(gig_id, token)
