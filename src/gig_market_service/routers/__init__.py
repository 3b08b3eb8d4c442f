"""API routers."""

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

__all__ = [
    "applications",
    "contracts",
    "fees",
    "gigs",
    "health",
    "notifications",
    "offers",
    "payments",
]
