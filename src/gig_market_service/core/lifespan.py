"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from gig_market_service.clients.identity_client import IdentityClient
from gig_market_service.config import get_settings
from gig_market_service.core.state import init_app_state
from gig_market_service.logging import get_logger, setup_logging
from gig_market_service.services.contract_manager import ContractManager
from gig_market_service.services.fee_calculator import FeeConfig
from gig_market_service.services.gig_manager import GigManager
from gig_market_service.services.marketplace_store import MarketplaceStore
from gig_market_service.services.notifier import Notifier
from gig_market_service.services.payment_manager import PaymentManager
from gig_market_service.services.token_validator import TokenValidator

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    # Out-of-domain fee parameters abort startup with ConfigurationError
    fee_config = FeeConfig.from_settings(settings.fees)

    state = init_app_state()
    state.fee_config = fee_config

    identity_client = IdentityClient(
        base_url=settings.identity.base_url,
        verify_jws_path=settings.identity.verify_jws_path,
        timeout_seconds=settings.identity.timeout_seconds,
    )
    token_validator = TokenValidator(identity_client=identity_client)
    state.token_validator = token_validator
    state.identity_client = identity_client

    store = MarketplaceStore(db_path=settings.database.path)
    state.store = store
    notifier = Notifier(store=store)
    state.notifier = notifier

    admin_ids = [settings.platform.agent_id, *settings.platform.admin_ids]
    contract_manager = ContractManager(
        store=store,
        token_validator=token_validator,
        notifier=notifier,
        fee_config=fee_config,
        admin_ids=admin_ids,
    )
    state.contract_manager = contract_manager
    state.gig_manager = GigManager(
        store=store,
        token_validator=token_validator,
        notifier=notifier,
        default_currency=settings.fees.currency,
    )
    state.payment_manager = PaymentManager(
        store=store,
        token_validator=token_validator,
        contract_manager=contract_manager,
        fee_config=fee_config,
        currency=settings.fees.currency,
    )

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": settings.database.path,
            "identity_base_url": settings.identity.base_url,
            "fixed_fee_minor_units": fee_config.fixed_fee_minor_units,
            "fee_rate": str(fee_config.fee_rate),
            "tax_rate": str(fee_config.tax_rate),
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    store.close()
    if state.identity_client is not None:
        await state.identity_client.close()
