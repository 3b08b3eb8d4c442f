"""Contract lifecycle flows: read, transition, and delete contracts."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from gig_market_service.core.exceptions import ServiceError
from gig_market_service.logging import get_logger
from gig_market_service.services.contract_lifecycle import (
    ActorRole,
    ContractEvent,
    ContractState,
    ContractStatus,
    apply_contract_transition,
    resolve_actor_role,
)
from gig_market_service.services.token_validator import require_path_match

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from gig_market_service.services.contract_lifecycle import TransitionResult
    from gig_market_service.services.fee_calculator import FeeConfig
    from gig_market_service.services.marketplace_store import MarketplaceStore
    from gig_market_service.services.notifier import Notifier
    from gig_market_service.services.token_validator import TokenValidator

_VALID_STATUSES = frozenset(status.value for status in ContractStatus)


class ContractManager:
    """
    Drives contracts through the lifecycle state machine.

    Every mutation follows the same steps: verify the signed request, load
    the contract, resolve the signer's role, ask the state machine for the
    next state, then commit the state and its effects in one transaction
    guarded by the contract's status and version.
    """

    def __init__(
        self,
        store: MarketplaceStore,
        token_validator: TokenValidator,
        notifier: Notifier,
        fee_config: FeeConfig,
        admin_ids: Iterable[str],
    ) -> None:
        self._store = store
        self._token_validator = token_validator
        self._notifier = notifier
        self._fee_config = fee_config
        self._admin_ids = frozenset(admin_ids)
        self._logger = get_logger(__name__)

    def load_contract(self, contract_id: str) -> ContractState:
        row = self._store.get_contract(contract_id)
        if row is None:
            raise ServiceError("CONTRACT_NOT_FOUND", "Contract not found", 404, {})
        return ContractState.from_row(row)

    def role_of(self, contract: ContractState, actor_id: str) -> ActorRole:
        return resolve_actor_role(contract, actor_id, self._admin_ids)

    def is_admin(self, actor_id: str) -> bool:
        return actor_id in self._admin_ids

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_contract(self, contract_id: str, token: str) -> dict[str, Any]:
        """Return a contract to one of its parties or an admin."""
        payload = await self._token_validator.validate_jws_token(token, "get_contract")
        contract = self.load_contract(contract_id)
        if self.role_of(contract, payload["_signer_id"]) is ActorRole.NONE:
            raise ServiceError("FORBIDDEN", "Only contract parties can view this contract", 403, {})
        return contract.to_row()

    async def list_contracts(self, token: str, status: str | None) -> list[dict[str, Any]]:
        """List the signer's contracts, as provider or tasker."""
        payload = await self._token_validator.validate_jws_token(token, "list_contracts")
        if status is not None and status not in _VALID_STATUSES:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"status must be one of {sorted(_VALID_STATUSES)}",
                400,
                {},
            )
        return self._store.list_contracts(party_id=payload["_signer_id"], status=status)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def submit_work(self, contract_id: str, token: str) -> dict[str, Any]:
        """Tasker hands in the work: active -> submitted."""
        return await self._signed_transition(
            ContractEvent.SUBMIT_WORK, "submit_work", contract_id, token
        )

    async def approve_completion(self, contract_id: str, token: str) -> dict[str, Any]:
        """Provider accepts the work: submitted/active -> completed. Needs a succeeded payment."""
        return await self._signed_transition(
            ContractEvent.APPROVE_COMPLETION, "approve_completion", contract_id, token
        )

    async def request_revision(self, contract_id: str, token: str) -> dict[str, Any]:
        """Provider sends the work back with a reason: submitted -> active."""
        return await self._signed_transition(
            ContractEvent.REQUEST_REVISION, "request_revision", contract_id, token
        )

    async def cancel_contract(self, contract_id: str, token: str) -> dict[str, Any]:
        """Either party cancels; offers on the gig are purged and the gig is released."""
        return await self._signed_transition(
            ContractEvent.CANCEL, "cancel_contract", contract_id, token
        )

    async def delete_contract(self, contract_id: str, token: str) -> dict[str, Any]:
        """Provider removes the contract; gig and application are reset."""
        return await self._signed_transition(
            ContractEvent.DELETE, "delete_contract", contract_id, token
        )

    async def _signed_transition(
        self,
        event: ContractEvent,
        action: str,
        contract_id: str,
        token: str,
    ) -> dict[str, Any]:
        """
        Error precedence:
        1. JWS verification, INVALID_PAYLOAD (action, contract_id mismatch)
        2. CONTRACT_NOT_FOUND
        3. FORBIDDEN - signer's role is not allowed for the event
        4. INVALID_STATUS - current status is not a legal source
        5. Precondition codes (PAYMENT_NOT_SUCCEEDED, REASON_REQUIRED, ...)
        6. CONFLICT - contract changed between read and commit
        """
        payload = await self._token_validator.validate_jws_token(token, action)
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "contract_id", contract_id)

        contract = self.load_contract(contract_id)
        event_payload = {key: value for key, value in payload.items() if key == "reason"}
        return self.apply_event(event, contract, signer_id, event_payload)

    def apply_event(
        self,
        event: ContractEvent,
        contract: ContractState,
        actor_id: str,
        payload: dict[str, Any] | None = None,
        *,
        payment_lookup: Callable[[str], str | None] | None = None,
        payment_update: tuple[str, str, str] | None = None,
    ) -> dict[str, Any]:
        """
        Run one event through the state machine and commit it atomically.

        ``payment_lookup`` overrides the stored payment status, and
        ``payment_update`` is committed in the same transaction; together they
        let a payment status change and the funding it implies land at once.
        """
        stored_payment = None
        if event is ContractEvent.CONFIRM_FUNDING:
            stored_payment = self._store.get_payment_for_contract(contract.contract_id)
        result = apply_contract_transition(
            event,
            contract,
            actor_id,
            self.role_of(contract, actor_id),
            payload,
            payment_lookup=payment_lookup or self._store.get_payment_status,
            payment=stored_payment,
            fee_config=self._fee_config,
        )
        self._commit(result, contract, payment_update)

        self._logger.info(
            "Contract transition applied",
            extra={
                "contract_id": contract.contract_id,
                "event": event.value,
                "actor_id": actor_id,
                "from_status": contract.status.value,
                "to_status": result.next_state.status.value if result.next_state else None,
            },
        )

        if result.next_state is None:
            return {"contract_id": contract.contract_id, "deleted": True}
        return result.next_state.to_row()

    def _commit(
        self,
        result: TransitionResult,
        contract: ContractState,
        payment_update: tuple[str, str, str] | None,
    ) -> None:
        for warning in result.warnings:
            self._logger.warning(
                warning,
                extra={"contract_id": contract.contract_id, "event": result.event.value},
            )

        updates = {
            column: value for column, value in result.changes().items() if column != "contract_id"
        }
        expected_status = (
            result.expected_status.value if result.expected_status else contract.status.value
        )
        expected_version = (
            result.expected_version if result.expected_version is not None else contract.version
        )
        self._store.commit_contract_transition(
            contract.contract_id,
            expected_status,
            expected_version,
            updates,
            result.effects,
            payment_update=payment_update,
        )
        self._notifier.published(result.effects)

    def get_stats(self) -> dict[str, Any]:
        by_status = self._store.count_contracts_by_status()
        return {"total_contracts": sum(by_status.values()), "contracts_by_status": by_status}
