"""Service layer components."""

from gig_market_service.services.contract_manager import ContractManager
from gig_market_service.services.fee_calculator import FeeBreakdown, FeeConfig
from gig_market_service.services.gig_manager import GigManager
from gig_market_service.services.marketplace_store import MarketplaceStore
from gig_market_service.services.notifier import Notifier
from gig_market_service.services.payment_manager import PaymentManager
from gig_market_service.services.token_validator import TokenValidator

__all__ = [
    "ContractManager",
    "FeeBreakdown",
    "FeeConfig",
    "GigManager",
    "MarketplaceStore",
    "Notifier",
    "PaymentManager",
    "TokenValidator",
]
