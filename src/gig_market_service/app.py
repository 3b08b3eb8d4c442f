"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from gig_market_service.config import get_settings
from gig_market_service.core.exceptions import register_exception_handlers
from gig_market_service.core.lifespan import lifespan
from gig_market_service.core.middleware import RequestValidationMiddleware
from gig_market_service.routers import (
    applications,
    contracts,
    fees,
    gigs,
    health,
    notifications,
    offers,
    payments,
)


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        Configured FastAPI instance with all routers registered.
    """
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.service.name} Service",
        version=settings.service.version,
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Operations"])
    app.include_router(fees.router, tags=["Fees"])
    app.include_router(gigs.router, tags=["Gigs"])
    app.include_router(applications.router, tags=["Applications"])
    app.include_router(offers.router, tags=["Offers"])
    app.include_router(contracts.router, tags=["Contracts"])
    app.include_router(payments.router, tags=["Payments"])
    app.include_router(notifications.router, tags=["Notifications"])

    app.add_middleware(
        RequestValidationMiddleware,
        max_body_size=settings.request.max_body_size,
    )

    return app
