"""Contract lifecycle endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from gig_market_service.core.state import get_app_state
from gig_market_service.routers.validation import extract_bearer_token, token_from_body

if TYPE_CHECKING:
    from gig_market_service.services.contract_manager import ContractManager
    from gig_market_service.services.payment_manager import PaymentManager

router = APIRouter()


def _contract_manager() -> ContractManager:
    state = get_app_state()
    if state.contract_manager is None:
        msg = "ContractManager not initialized"
        raise RuntimeError(msg)
    return state.contract_manager


def _payment_manager() -> PaymentManager:
    state = get_app_state()
    if state.payment_manager is None:
        msg = "PaymentManager not initialized"
        raise RuntimeError(msg)
    return state.payment_manager


# ---------------------------------------------------------------------------
# Reads (GET /contracts MUST be before GET /contracts/{contract_id})
# ---------------------------------------------------------------------------


@router.get("/contracts")
async def list_contracts(
    request: Request,
    authorization: str | None = Header(default=None),
) -> dict[str, Any]:
    """List the caller's contracts."""
    token = extract_bearer_token(authorization)
    contracts = await _contract_manager().list_contracts(
        token, status=request.query_params.get("status")
    )
    return {"contracts": contracts}


@router.get("/contracts/{contract_id}")
async def get_contract(
    contract_id: str,
    authorization: str | None = Header(default=None),
) -> dict[str, Any]:
    """Get a contract the caller is party to."""
    token = extract_bearer_token(authorization)
    return await _contract_manager().get_contract(contract_id, token)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


@router.post("/contracts/{contract_id}/submit")
async def submit_work(contract_id: str, request: Request) -> JSONResponse:
    """Tasker submits the work for review."""
    token = token_from_body(await request.body())
    result = await _contract_manager().submit_work(contract_id, token)
    return JSONResponse(status_code=200, content=result)


@router.post("/contracts/{contract_id}/approve")
async def approve_completion(contract_id: str, request: Request) -> JSONResponse:
    """Provider approves the work and completes the contract."""
    token = token_from_body(await request.body())
    result = await _contract_manager().approve_completion(contract_id, token)
    return JSONResponse(status_code=200, content=result)


@router.post("/contracts/{contract_id}/revision")
async def request_revision(contract_id: str, request: Request) -> JSONResponse:
    """Provider sends the work back with a reason."""
    token = token_from_body(await request.body())
    result = await _contract_manager().request_revision(contract_id, token)
    return JSONResponse(status_code=200, content=result)


@router.post("/contracts/{contract_id}/cancel")
async def cancel_contract(contract_id: str, request: Request) -> JSONResponse:
    """Either party cancels the contract."""
    token = token_from_body(await request.body())
    result = await _contract_manager().cancel_contract(contract_id, token)
    return JSONResponse(status_code=200, content=result)


@router.delete("/contracts/{contract_id}")
async def delete_contract(
    contract_id: str,
    authorization: str | None = Header(default=None),
) -> JSONResponse:
    """Provider deletes the contract; the gig and application are reset."""
    token = extract_bearer_token(authorization)
    result = await _contract_manager().delete_contract(contract_id, token)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# Contract payment
# ---------------------------------------------------------------------------


@router.post("/contracts/{contract_id}/payment")
async def create_payment(contract_id: str, request: Request) -> JSONResponse:
    """Provider creates the payment record with its fee breakdown."""
    token = token_from_body(await request.body())
    result = await _payment_manager().create_payment(contract_id, token)
    return JSONResponse(status_code=201, content=result)


@router.get("/contracts/{contract_id}/payment")
async def get_contract_payment(
    contract_id: str,
    authorization: str | None = Header(default=None),
) -> dict[str, Any]:
    """Get the payment attached to a contract."""
    token = extract_bearer_token(authorization)
    return await _payment_manager().get_payment_for_contract(contract_id, token)
