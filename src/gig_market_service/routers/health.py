"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from gig_market_service.core.state import get_app_state
from gig_market_service.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health and return contract statistics."""
    state = get_app_state()
    total_contracts = 0
    contracts_by_status: dict[str, int] = {}
    if state.contract_manager is not None:
        stats = state.contract_manager.get_stats()
        total_contracts = stats["total_contracts"]
        contracts_by_status = stats["contracts_by_status"]
    return HealthResponse(
        status="ok",
        uptime_seconds=state.uptime_seconds,
        started_at=state.started_at,
        total_contracts=total_contracts,
        contracts_by_status=contracts_by_status,
    )
