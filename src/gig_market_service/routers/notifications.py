"""Notification feed endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Header

from gig_market_service.core.state import get_app_state
from gig_market_service.routers.validation import extract_bearer_token
from gig_market_service.schemas import NotificationListResponse

router = APIRouter()


@router.get("/notifications", response_model=NotificationListResponse)
async def list_notifications(
    authorization: str | None = Header(default=None),
) -> NotificationListResponse:
    """List the caller's notifications, newest first."""
    token = extract_bearer_token(authorization)

    state = get_app_state()
    if state.token_validator is None or state.notifier is None:
        msg = "Notifier not initialized"
        raise RuntimeError(msg)

    payload = await state.token_validator.validate_jws_token(token, "list_notifications")
    notifications = state.notifier.list_notifications(payload["_signer_id"])
    return NotificationListResponse.model_validate({"notifications": notifications})
