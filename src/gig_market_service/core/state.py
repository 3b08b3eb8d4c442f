"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from gig_market_service.clients.identity_client import IdentityClient
    from gig_market_service.services.contract_manager import ContractManager
    from gig_market_service.services.fee_calculator import FeeConfig
    from gig_market_service.services.gig_manager import GigManager
    from gig_market_service.services.marketplace_store import MarketplaceStore
    from gig_market_service.services.notifier import Notifier
    from gig_market_service.services.payment_manager import PaymentManager
    from gig_market_service.services.token_validator import TokenValidator


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    store: MarketplaceStore | None = None
    fee_config: FeeConfig | None = None
    identity_client: IdentityClient | None = None
    token_validator: TokenValidator | None = None
    notifier: Notifier | None = None
    gig_manager: GigManager | None = None
    contract_manager: ContractManager | None = None
    payment_manager: PaymentManager | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        """Keep the token validator pointed at the current identity client."""
        super().__setattr__(name, value)

        token_validator = self.__dict__.get("token_validator")
        if name == "identity_client" and value is not None and token_validator is not None:
            token_validator.set_identity_client(value)

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None
