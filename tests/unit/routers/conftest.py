"""Router test fixtures with a mocked Identity service."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from gig_market_service.app import create_app
from gig_market_service.config import clear_settings_cache
from gig_market_service.core.exceptions import ServiceError
from gig_market_service.core.lifespan import lifespan
from gig_market_service.core.state import get_app_state, reset_app_state
from tests.helpers import decode_jws_unverified, generate_keypair, make_jws_token

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

    Keypair = tuple[Ed25519PrivateKey, str]

# ---------------------------------------------------------------------------
# Fixed agent IDs
# ---------------------------------------------------------------------------
PLATFORM_AGENT_ID = "a-platform-test-id"
PROVIDER_AGENT_ID = "a-provider-uuid"
TASKER_AGENT_ID = "a-tasker-uuid"
OTHER_TASKER_AGENT_ID = "a-other-tasker-uuid"

GIG_COST = 10000


# ---------------------------------------------------------------------------
# Keypair fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def platform_keypair() -> Keypair:
    """Generate the platform operator's keypair."""
    return generate_keypair()


@pytest.fixture
def provider_keypair() -> Keypair:
    """Generate the gig provider's keypair."""
    return generate_keypair()


@pytest.fixture
def tasker_keypair() -> Keypair:
    """Generate the tasker's keypair."""
    return generate_keypair()


@pytest.fixture
def other_tasker_keypair() -> Keypair:
    """Generate a second tasker's keypair."""
    return generate_keypair()


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
def _config_content(db_path: Path, log_dir: Path) -> str:
    return f"""\
service:
  name: "gig-market"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{log_dir}"
database:
  path: "{db_path}"
identity:
  base_url: "http://localhost:8001"
  verify_jws_path: "/agents/verify-jws"
  timeout_seconds: 10
platform:
  agent_id: "{PLATFORM_AGENT_ID}"
  admin_ids: []
fees:
  fixed_fee_minor_units: 500
  fee_rate: 0.10
  tax_rate: 0.13
  currency: "cad"
request:
  max_body_size: 1048576
"""


@pytest.fixture
async def app(tmp_path: Path) -> AsyncIterator[Any]:
    """Create a test app with a temp database and a mocked Identity service.

    The Identity mock accepts every well-formed token: the signer is the
    token's ``kid`` and the payload is returned as signed.
    """
    config_path = tmp_path / "config.yaml"
    config_path.write_text(_config_content(tmp_path / "test.db", tmp_path / "logs"))

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        state = get_app_state()

        mock_identity = AsyncMock()
        mock_identity.close = AsyncMock()
        mock_identity.verify_jws = AsyncMock(side_effect=_verified)
        # AppState forwards the new client to the token validator
        state.identity_client = mock_identity

        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ---------------------------------------------------------------------------
# Mock override fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_identity_unavailable(_app: Any) -> None:
    """Configure the Identity mock to simulate service unavailability."""
    state = get_app_state()
    state.identity_client.verify_jws = AsyncMock(
        side_effect=ConnectionError("Identity service unreachable")
    )


@pytest.fixture
def mock_identity_rejects_signature(_app: Any) -> None:
    """Configure the Identity mock to answer that the signature is invalid."""
    state = get_app_state()
    state.identity_client.verify_jws = AsyncMock(
        side_effect=ServiceError("FORBIDDEN", "JWS signature verification failed", 403, {})
    )


def _verified(token: str) -> dict[str, Any]:
    header, payload = decode_jws_unverified(token)
    return {"valid": True, "agent_id": header.get("kid", "unknown"), "payload": payload}


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------
def sign(keypair: Keypair, agent_id: str, payload: dict[str, Any]) -> str:
    """Sign a payload as the given agent."""
    return make_jws_token(keypair[0], agent_id, payload)


def bearer(keypair: Keypair, agent_id: str, payload: dict[str, Any]) -> dict[str, str]:
    """Authorization header carrying a signed token."""
    return {"Authorization": f"Bearer {sign(keypair, agent_id, payload)}"}


async def signed_post(
    client: AsyncClient,
    path: str,
    keypair: Keypair,
    agent_id: str,
    payload: dict[str, Any],
) -> Any:
    """POST {"token": <jws>} to a path."""
    return await client.post(path, json={"token": sign(keypair, agent_id, payload)})


# ---------------------------------------------------------------------------
# Marketplace helper functions
# ---------------------------------------------------------------------------
async def create_gig(
    client: AsyncClient,
    provider_keypair: Keypair,
    provider_id: str = PROVIDER_AGENT_ID,
    *,
    cost: Any = GIG_COST,
    title: str = "Design a logo",
    description: str = "A vector logo for a bakery",
) -> Any:
    """Create a gig via POST /gigs and return the response."""
    payload = {
        "action": "create_gig",
        "provider_id": provider_id,
        "title": title,
        "description": description,
        "cost": cost,
    }
    return await signed_post(client, "/gigs", provider_keypair, provider_id, payload)


async def apply_to_gig(
    client: AsyncClient,
    tasker_keypair: Keypair,
    tasker_id: str,
    gig_id: str,
    *,
    message: str | None = "I can do this",
) -> Any:
    """Apply via POST /gigs/{gig_id}/applications."""
    payload = {"action": "apply_to_gig", "gig_id": gig_id, "message": message}
    return await signed_post(
        client, f"/gigs/{gig_id}/applications", tasker_keypair, tasker_id, payload
    )


async def application_action(
    client: AsyncClient,
    keypair: Keypair,
    agent_id: str,
    application_id: str,
    verb: str,
    **extra: Any,
) -> Any:
    """POST /applications/{id}/{verb} with the matching signed action."""
    actions = {
        "accept": "accept_application",
        "reject": "reject_application",
        "cancel": "cancel_application",
        "offers": "create_offer",
    }
    payload = {"action": actions[verb], "application_id": application_id, **extra}
    return await signed_post(
        client, f"/applications/{application_id}/{verb}", keypair, agent_id, payload
    )


async def offer_action(
    client: AsyncClient,
    keypair: Keypair,
    agent_id: str,
    offer_id: str,
    verb: str,
) -> Any:
    """POST /offers/{id}/{verb} with the matching signed action."""
    payload = {"action": f"{verb}_offer", "offer_id": offer_id}
    return await signed_post(client, f"/offers/{offer_id}/{verb}", keypair, agent_id, payload)


async def contract_action(
    client: AsyncClient,
    keypair: Keypair,
    agent_id: str,
    contract_id: str,
    verb: str,
    **extra: Any,
) -> Any:
    """POST /contracts/{id}/{verb} with the matching signed action."""
    actions = {
        "submit": "submit_work",
        "approve": "approve_completion",
        "revision": "request_revision",
        "cancel": "cancel_contract",
        "payment": "create_payment",
    }
    payload = {"action": actions[verb], "contract_id": contract_id, **extra}
    return await signed_post(
        client, f"/contracts/{contract_id}/{verb}", keypair, agent_id, payload
    )


async def delete_contract(
    client: AsyncClient,
    keypair: Keypair,
    agent_id: str,
    contract_id: str,
) -> Any:
    """DELETE /contracts/{id} with Bearer auth."""
    headers = bearer(keypair, agent_id, {"action": "delete_contract", "contract_id": contract_id})
    return await client.delete(f"/contracts/{contract_id}", headers=headers)


async def get_contract(
    client: AsyncClient,
    keypair: Keypair,
    agent_id: str,
    contract_id: str,
) -> Any:
    """GET /contracts/{id} with Bearer auth."""
    headers = bearer(keypair, agent_id, {"action": "get_contract"})
    return await client.get(f"/contracts/{contract_id}", headers=headers)


async def set_payment_status(
    client: AsyncClient,
    keypair: Keypair,
    agent_id: str,
    payment_id: str,
    status: str,
) -> Any:
    """Processor callback via POST /payments/{id}/status."""
    payload = {"action": "update_payment_status", "payment_id": payment_id, "status": status}
    return await signed_post(client, f"/payments/{payment_id}/status", keypair, agent_id, payload)


async def hire(
    client: AsyncClient,
    provider_keypair: Keypair,
    tasker_keypair: Keypair,
    *,
    tasker_id: str = TASKER_AGENT_ID,
) -> tuple[dict[str, Any], dict[str, Any], dict[str, Any]]:
    """Post a gig, apply, and accept. Returns (gig, application, contract)."""
    gig_response = await create_gig(client, provider_keypair)
    assert gig_response.status_code == 201
    gig = gig_response.json()

    app_response = await apply_to_gig(client, tasker_keypair, tasker_id, gig["gig_id"])
    assert app_response.status_code == 201
    application = app_response.json()

    accept_response = await application_action(
        client, provider_keypair, PROVIDER_AGENT_ID, application["application_id"], "accept"
    )
    assert accept_response.status_code == 201
    return gig, application, accept_response.json()


async def fund(
    client: AsyncClient,
    provider_keypair: Keypair,
    platform_keypair: Keypair,
    contract_id: str,
    *,
    status: str = "succeeded",
) -> dict[str, Any]:
    """Create the payment and mark it funded. Returns the status response body."""
    payment_response = await contract_action(
        client, provider_keypair, PROVIDER_AGENT_ID, contract_id, "payment"
    )
    assert payment_response.status_code == 201
    status_response = await set_payment_status(
        client,
        platform_keypair,
        PLATFORM_AGENT_ID,
        payment_response.json()["payment_id"],
        status,
    )
    assert status_response.status_code == 200
    return status_response.json()
