"""Payment records: creation with a fee breakdown, processor status updates, quotes."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from gig_market_service.core.exceptions import ServiceError
from gig_market_service.logging import get_logger
from gig_market_service.services.contract_lifecycle import (
    FUNDED_PAYMENT_STATUSES,
    ActorRole,
    ContractEvent,
    ContractStatus,
    PaymentStatus,
)
from gig_market_service.services.fee_calculator import compute_fee_breakdown
from gig_market_service.services.marketplace_store import DuplicatePaymentError
from gig_market_service.services.token_validator import require_field, require_path_match

if TYPE_CHECKING:
    from gig_market_service.services.contract_manager import ContractManager
    from gig_market_service.services.fee_calculator import FeeConfig
    from gig_market_service.services.marketplace_store import MarketplaceStore
    from gig_market_service.services.token_validator import TokenValidator

# Processor status moves a payment may make.
_PAYMENT_TRANSITIONS: dict[str, frozenset[str]] = {
    PaymentStatus.PENDING.value: frozenset(
        {
            PaymentStatus.SUCCEEDED.value,
            PaymentStatus.FAILED.value,
            PaymentStatus.ESCROW_FUNDED.value,
        }
    ),
    PaymentStatus.ESCROW_FUNDED.value: frozenset(
        {PaymentStatus.SUCCEEDED.value, PaymentStatus.REFUNDED.value}
    ),
    PaymentStatus.SUCCEEDED.value: frozenset({PaymentStatus.REFUNDED.value}),
    PaymentStatus.FAILED.value: frozenset(),
    PaymentStatus.REFUNDED.value: frozenset(),
}


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


class PaymentManager:
    """
    Creates payment records and applies processor status callbacks.

    The fee breakdown is computed once when the payment is created and
    stored with it; it is never recomputed. A failed payment may be voided
    and recreated, which computes a fresh breakdown.
    """

    def __init__(
        self,
        store: MarketplaceStore,
        token_validator: TokenValidator,
        contract_manager: ContractManager,
        fee_config: FeeConfig,
        currency: str,
    ) -> None:
        self._store = store
        self._token_validator = token_validator
        self._contract_manager = contract_manager
        self._fee_config = fee_config
        self._currency = currency
        self._logger = get_logger(__name__)

    def quote_fees(self, amount: int) -> dict[str, Any]:
        """Preview the breakdown for an amount without persisting anything."""
        breakdown = compute_fee_breakdown(amount, self._fee_config)
        return {"currency": self._currency, **breakdown.to_dict()}

    async def create_payment(self, contract_id: str, token: str) -> dict[str, Any]:
        """
        Create the payment for a contract awaiting payment.

        Error precedence:
        1. JWS verification, INVALID_PAYLOAD
        2. CONTRACT_NOT_FOUND
        3. FORBIDDEN - signer is not the contract's provider
        4. INVALID_STATUS - contract is not pending_payment
        5. PAYMENT_EXISTS - a non-failed payment already exists
        """
        payload = await self._token_validator.validate_jws_token(token, "create_payment")
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "contract_id", contract_id)

        contract = self._contract_manager.load_contract(contract_id)
        if self._contract_manager.role_of(contract, signer_id) is not ActorRole.PROVIDER:
            raise ServiceError("FORBIDDEN", "Only the contract's provider can pay", 403, {})

        if contract.status is not ContractStatus.PENDING_PAYMENT:
            raise ServiceError(
                "INVALID_STATUS",
                f"Cannot create payment for contract in '{contract.status.value}' status, "
                "must be 'pending_payment'",
                409,
                {},
            )

        existing = self._store.get_payment_for_contract(contract_id)
        replaces: str | None = None
        if existing is not None:
            if existing["status"] != PaymentStatus.FAILED.value:
                raise ServiceError(
                    "PAYMENT_EXISTS",
                    f"A payment with status '{existing['status']}' already exists",
                    409,
                    {"payment_id": existing["payment_id"]},
                )
            replaces = existing["payment_id"]

        breakdown = compute_fee_breakdown(contract.agreed_cost, self._fee_config)
        now = _now_iso()
        payment = {
            "payment_id": f"pay-{uuid.uuid4()}",
            "contract_id": contract_id,
            "payer_id": contract.provider_id,
            "payee_id": contract.tasker_id,
            "service_amount": breakdown.service_amount,
            "currency": contract.currency,
            "platform_fee": breakdown.platform_fee,
            "provider_tax": breakdown.provider_tax,
            "tasker_tax": breakdown.tasker_tax,
            "total_tax": breakdown.total_tax,
            "total_provider_payment": breakdown.total_provider_payment,
            "amount_received_by_payee": breakdown.amount_received_by_payee,
            "status": PaymentStatus.PENDING.value,
            "created_at": now,
            "updated_at": now,
        }
        try:
            self._store.insert_payment(payment, replaces_payment_id=replaces)
        except DuplicatePaymentError as exc:
            raise ServiceError(
                "PAYMENT_EXISTS", "A payment already exists for this contract", 409, {}
            ) from exc

        self._logger.info(
            "Payment created",
            extra={
                "payment_id": payment["payment_id"],
                "contract_id": contract_id,
                "total_provider_payment": breakdown.total_provider_payment,
                "replaced_payment_id": replaces,
            },
        )
        return payment

    async def record_payment_status(self, payment_id: str, token: str) -> dict[str, Any]:
        """
        Apply a processor status callback. Admin only.

        Moving a payment to succeeded or escrow_funded while its contract is
        still pending_payment also funds the contract, in the same transaction.

        Error precedence:
        1. JWS verification, INVALID_PAYLOAD (status missing or unknown)
        2. FORBIDDEN - signer is not a platform admin
        3. PAYMENT_NOT_FOUND
        4. INVALID_STATUS - processor move not allowed
        5. CONFLICT
        """
        payload = await self._token_validator.validate_jws_token(token, "update_payment_status")
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "payment_id", payment_id)
        new_status = require_field(payload, "status")
        if new_status not in _PAYMENT_TRANSITIONS:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"status must be one of {sorted(_PAYMENT_TRANSITIONS)}",
                400,
                {},
            )

        if not self._contract_manager.is_admin(signer_id):
            raise ServiceError("FORBIDDEN", "Only platform admins can update payments", 403, {})

        payment = self._store.get_payment(payment_id)
        if payment is None:
            raise ServiceError("PAYMENT_NOT_FOUND", "Payment not found", 404, {})
        contract = self._contract_manager.load_contract(payment["contract_id"])

        old_status = payment["status"]
        if new_status not in _PAYMENT_TRANSITIONS[old_status]:
            raise ServiceError(
                "INVALID_STATUS",
                f"Cannot move payment from '{old_status}' to '{new_status}'",
                409,
                {},
            )

        funds_contract = (
            new_status in FUNDED_PAYMENT_STATUSES
            and contract.status is ContractStatus.PENDING_PAYMENT
        )
        if funds_contract:
            contract_result = self._contract_manager.apply_event(
                ContractEvent.CONFIRM_FUNDING,
                contract,
                signer_id,
                payment_lookup=lambda _contract_id: new_status,
                payment_update=(payment_id, old_status, new_status),
            )
        else:
            self._store.update_payment_status(payment_id, old_status, new_status)
            contract_result = contract.to_row()

        if old_status in FUNDED_PAYMENT_STATUSES and new_status == PaymentStatus.REFUNDED.value:
            self._logger.warning(
                "Payment refunded",
                extra={"payment_id": payment_id, "contract_status": contract.status.value},
            )

        updated = self._store.get_payment(payment_id)
        if updated is None:
            msg = f"Payment {payment_id} not found after update"
            raise RuntimeError(msg)
        return {"payment": updated, "contract": contract_result}

    async def get_payment_for_contract(self, contract_id: str, token: str) -> dict[str, Any]:
        """Return a contract's payment to its parties or an admin."""
        payload = await self._token_validator.validate_jws_token(token, "get_payment")
        contract = self._contract_manager.load_contract(contract_id)
        if self._contract_manager.role_of(contract, payload["_signer_id"]) is ActorRole.NONE:
            raise ServiceError("FORBIDDEN", "Only contract parties can view its payment", 403, {})

        payment = self._store.get_payment_for_contract(contract_id)
        if payment is None:
            raise ServiceError("PAYMENT_NOT_FOUND", "No payment exists for this contract", 404, {})
        return payment
