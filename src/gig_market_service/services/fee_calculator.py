"""
Platform fee and sales-tax breakdown for a service amount.

All money is in integer minor units (cents). Percentage products are
computed in ``decimal.Decimal`` and rounded half-up to whole minor units,
so the result never depends on binary float artifacts:

    platform_fee            = round(amount * fee_rate) + fixed_fee
    provider_taxable_amount = amount + platform_fee
    provider_tax            = round(provider_taxable_amount * tax_rate)
    total_provider_payment  = amount + platform_fee + provider_tax
    amount_received_by_payee = amount

The tasker never bears tax and always receives exactly the service amount.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

from gig_market_service.core.exceptions import ConfigurationError, ValidationError

if TYPE_CHECKING:
    from gig_market_service.config import FeesConfig

_ONE = Decimal("1")
_ZERO = Decimal("0")


def _to_decimal(value: Decimal | float | int) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps 0.1 as 0.1 instead of 0.1000000000000000055...
    return Decimal(str(value))


def _round_minor_units(value: Decimal) -> int:
    return int(value.quantize(_ONE, rounding=ROUND_HALF_UP))


def _is_strict_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class FeeConfig:
    """Immutable fee/tax parameters, passed explicitly to every calculation."""

    fixed_fee_minor_units: int
    fee_rate: Decimal | float
    tax_rate: Decimal | float

    def __post_init__(self) -> None:
        for name in ("fee_rate", "tax_rate"):
            rate = getattr(self, name)
            if isinstance(rate, (int, float)) and not isinstance(rate, bool):
                object.__setattr__(self, name, _to_decimal(rate))

    @classmethod
    def build(
        cls,
        fixed_fee_minor_units: int,
        fee_rate: Decimal | float | int,
        tax_rate: Decimal | float | int,
    ) -> FeeConfig:
        """Create and validate a FeeConfig from loose numeric inputs."""
        if not _is_strict_int(fixed_fee_minor_units):
            raise ConfigurationError(
                "fixed_fee_minor_units must be an integer",
                details={"fixed_fee_minor_units": repr(fixed_fee_minor_units)},
            )
        config = cls(
            fixed_fee_minor_units=fixed_fee_minor_units,
            fee_rate=_to_decimal(fee_rate),
            tax_rate=_to_decimal(tax_rate),
        )
        validate_fee_config(config)
        return config

    @classmethod
    def from_settings(cls, fees: FeesConfig) -> FeeConfig:
        """Build from the ``fees`` section of the YAML configuration."""
        return cls.build(fees.fixed_fee_minor_units, fees.fee_rate, fees.tax_rate)


@dataclass(frozen=True)
class FeeBreakdown:
    """Result of one fee/tax computation. Every field is in minor units."""

    service_amount: int
    platform_fee: int
    provider_taxable_amount: int
    provider_tax: int
    tasker_tax: int
    total_tax: int
    total_provider_payment: int
    amount_received_by_payee: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "service_amount": self.service_amount,
            "platform_fee": self.platform_fee,
            "provider_taxable_amount": self.provider_taxable_amount,
            "provider_tax": self.provider_tax,
            "tasker_tax": self.tasker_tax,
            "total_tax": self.total_tax,
            "total_provider_payment": self.total_provider_payment,
            "amount_received_by_payee": self.amount_received_by_payee,
        }


def validate_fee_config(config: FeeConfig) -> None:
    """
    Check that every fee parameter is inside its valid domain.

    Raises:
        ConfigurationError: fixed fee negative or non-integer, or a rate
            outside the closed interval [0, 1]
    """
    if not _is_strict_int(config.fixed_fee_minor_units):
        raise ConfigurationError(
            "fixed_fee_minor_units must be an integer",
            details={"fixed_fee_minor_units": repr(config.fixed_fee_minor_units)},
        )
    if config.fixed_fee_minor_units < 0:
        raise ConfigurationError(
            "fixed_fee_minor_units must be >= 0",
            details={"fixed_fee_minor_units": config.fixed_fee_minor_units},
        )
    for name in ("fee_rate", "tax_rate"):
        rate = getattr(config, name)
        if not isinstance(rate, Decimal) or not rate.is_finite() or not _ZERO <= rate <= _ONE:
            raise ConfigurationError(
                f"{name} must be between 0 and 1 inclusive",
                details={name: str(rate)},
            )


def compute_fee_breakdown(service_amount: int, config: FeeConfig) -> FeeBreakdown:
    """
    Compute the fee and tax breakdown for a service amount.

    Args:
        service_amount: Agreed cost of the gig, in minor units (> 0)
        config: Validated fee parameters

    Raises:
        ValidationError: INVALID_AMOUNT when the amount is not a positive integer
        ConfigurationError: INVALID_FEE_CONFIG when the config is out of domain
    """
    if not _is_strict_int(service_amount):
        raise ValidationError(
            "Service amount must be an integer number of minor units",
            details={"service_amount": repr(service_amount)},
        )
    if service_amount <= 0:
        raise ValidationError(
            "Service amount must be positive",
            details={"service_amount": service_amount},
        )
    validate_fee_config(config)

    amount = Decimal(service_amount)
    platform_fee = _round_minor_units(amount * config.fee_rate) + config.fixed_fee_minor_units
    provider_taxable_amount = service_amount + platform_fee
    provider_tax = _round_minor_units(Decimal(provider_taxable_amount) * config.tax_rate)
    tasker_tax = 0

    return FeeBreakdown(
        service_amount=service_amount,
        platform_fee=platform_fee,
        provider_taxable_amount=provider_taxable_amount,
        provider_tax=provider_tax,
        tasker_tax=tasker_tax,
        total_tax=provider_tax + tasker_tax,
        total_provider_payment=service_amount + platform_fee + provider_tax,
        amount_received_by_payee=service_amount,
    )
