"""
Contract lifecycle state machine.

One canonical transition table (``TRANSITIONS``) decides, for every event,
which actor roles may trigger it, which source statuses are legal, and the
target status. ``apply_contract_transition`` consults it and returns the
next contract state plus the effects the caller must persist atomically.

No I/O happens here. Payment status is read through the ``payment_lookup``
callable supplied by the caller, and the resulting effects are plain
dataclasses that the store applies in a single transaction.

Check order for every event:
1. AuthorizationError - actor role not allowed, or identity is not that party
2. StateError         - current status is not a legal source for the event
3. PreconditionError  - auxiliary condition fails (payment, reason, ...)
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from gig_market_service.core.exceptions import (
    AuthorizationError,
    ConfigurationError,
    PreconditionError,
    StateError,
    ValidationError,
)
from gig_market_service.services.fee_calculator import compute_fee_breakdown

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from gig_market_service.services.fee_calculator import FeeConfig


class ContractStatus(str, Enum):
    """Stored contract statuses."""

    PENDING_PAYMENT = "pending_payment"
    ACTIVE = "active"
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    # Never written by this machine. Legacy rows may carry it and it is
    # accepted wherever "submitted" is.
    APPROVED = "approved"


class ContractEvent(str, Enum):
    """Events that drive a contract through its lifecycle."""

    ACCEPT_APPLICATION = "accept_application"
    CONFIRM_FUNDING = "confirm_funding"
    SUBMIT_WORK = "submit_work"
    APPROVE_COMPLETION = "approve_completion"
    REQUEST_REVISION = "request_revision"
    CANCEL = "cancel"
    DELETE = "delete"


class ActorRole(str, Enum):
    """Role of the acting identity relative to one contract."""

    PROVIDER = "provider"
    TASKER = "tasker"
    ADMIN = "admin"
    NONE = "none"


class PaymentStatus(str, Enum):
    """Processor status of a Payment record."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ESCROW_FUNDED = "escrow_funded"
    REFUNDED = "refunded"


FUNDED_PAYMENT_STATUSES: frozenset[str] = frozenset(
    {PaymentStatus.SUCCEEDED.value, PaymentStatus.ESCROW_FUNDED.value}
)


@dataclass(frozen=True)
class TransitionRule:
    """
    One row of the transition table.

    ``sources`` of None means any stored status; an empty set means the
    event only applies when no contract exists yet. ``target`` of None
    means the contract is removed.
    """

    sources: frozenset[ContractStatus] | None
    roles: frozenset[ActorRole]
    target: ContractStatus | None


TRANSITIONS: dict[ContractEvent, TransitionRule] = {
    ContractEvent.ACCEPT_APPLICATION: TransitionRule(
        sources=frozenset(),
        roles=frozenset({ActorRole.PROVIDER}),
        target=ContractStatus.PENDING_PAYMENT,
    ),
    ContractEvent.CONFIRM_FUNDING: TransitionRule(
        sources=frozenset({ContractStatus.PENDING_PAYMENT}),
        roles=frozenset({ActorRole.ADMIN}),
        target=ContractStatus.ACTIVE,
    ),
    ContractEvent.SUBMIT_WORK: TransitionRule(
        sources=frozenset({ContractStatus.ACTIVE}),
        roles=frozenset({ActorRole.TASKER}),
        target=ContractStatus.SUBMITTED,
    ),
    ContractEvent.APPROVE_COMPLETION: TransitionRule(
        sources=frozenset(
            {ContractStatus.SUBMITTED, ContractStatus.APPROVED, ContractStatus.ACTIVE}
        ),
        roles=frozenset({ActorRole.PROVIDER}),
        target=ContractStatus.COMPLETED,
    ),
    ContractEvent.REQUEST_REVISION: TransitionRule(
        sources=frozenset({ContractStatus.SUBMITTED}),
        roles=frozenset({ActorRole.PROVIDER}),
        target=ContractStatus.ACTIVE,
    ),
    ContractEvent.CANCEL: TransitionRule(
        sources=frozenset(
            {
                ContractStatus.PENDING_PAYMENT,
                ContractStatus.ACTIVE,
                ContractStatus.SUBMITTED,
                ContractStatus.APPROVED,
            }
        ),
        roles=frozenset({ActorRole.PROVIDER, ActorRole.TASKER}),
        target=ContractStatus.CANCELLED,
    ),
    ContractEvent.DELETE: TransitionRule(
        sources=None,
        roles=frozenset({ActorRole.PROVIDER}),
        target=None,
    ),
}

_EVENT_VERBS: dict[ContractEvent, str] = {
    ContractEvent.ACCEPT_APPLICATION: "accept application for",
    ContractEvent.CONFIRM_FUNDING: "confirm funding for",
    ContractEvent.SUBMIT_WORK: "submit work for",
    ContractEvent.APPROVE_COMPLETION: "approve",
    ContractEvent.REQUEST_REVISION: "request revision for",
    ContractEvent.CANCEL: "cancel",
    ContractEvent.DELETE: "delete",
}


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Entity snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContractState:
    """Fully resolved contract snapshot handed to the state machine."""

    contract_id: str
    gig_id: str
    application_id: str | None
    provider_id: str
    tasker_id: str
    agreed_cost: int
    currency: str
    status: ContractStatus
    version: int
    created_at: str
    funded_at: str | None = None
    submitted_at: str | None = None
    completed_at: str | None = None
    revision_reason: str | None = None
    cancellation_reason: str | None = None
    cancelled_at: str | None = None
    cancelled_by: str | None = None
    platform_fee_amount: int | None = None
    tax_amount: int | None = None
    payout_to_tasker: int | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ContractState:
        values = {name: row[name] for name in _CONTRACT_FIELDS}
        values["status"] = ContractStatus(row["status"])
        return cls(**values)

    def to_row(self) -> dict[str, Any]:
        row = {name: getattr(self, name) for name in _CONTRACT_FIELDS}
        row["status"] = self.status.value
        return row


_CONTRACT_FIELDS: tuple[str, ...] = tuple(f.name for f in fields(ContractState))


@dataclass(frozen=True)
class ApplicationState:
    """Snapshot of a tasker's application to a gig."""

    application_id: str
    gig_id: str
    applicant_id: str
    status: str


@dataclass(frozen=True)
class GigState:
    """Snapshot of a gig as far as contract creation cares."""

    gig_id: str
    provider_id: str
    cost: int
    currency: str
    status: str
    assigned_tasker_id: str | None


# ---------------------------------------------------------------------------
# Effects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DeleteOffersForGig:
    gig_id: str


@dataclass(frozen=True)
class ReleaseGig:
    """Gig goes back to ``unassigned``, but only while ``tasker_id`` still holds it."""

    gig_id: str
    tasker_id: str


@dataclass(frozen=True)
class AssignGig:
    gig_id: str
    tasker_id: str


@dataclass(frozen=True)
class CompleteGig:
    gig_id: str


@dataclass(frozen=True)
class ResetApplication:
    """Application goes back to ``pending``."""

    application_id: str


@dataclass(frozen=True)
class MarkApplicationAccepted:
    application_id: str


@dataclass(frozen=True)
class MarkOfferAccepted:
    offer_id: str


@dataclass(frozen=True)
class DeleteContract:
    contract_id: str


@dataclass(frozen=True)
class DeletePaymentForContract:
    contract_id: str


@dataclass(frozen=True)
class Notify:
    """Event emission hook: one message for one recipient."""

    recipient_id: str
    kind: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)


Effect = (
    DeleteOffersForGig
    | ReleaseGig
    | AssignGig
    | CompleteGig
    | ResetApplication
    | MarkApplicationAccepted
    | MarkOfferAccepted
    | DeleteContract
    | DeletePaymentForContract
    | Notify
)


@dataclass(frozen=True)
class TransitionResult:
    """
    Outcome of a legal transition.

    ``next_state`` is None when the contract is removed. ``expected_status``
    and ``expected_version`` are what the store must still find when it
    commits, otherwise the commit is a conflict.
    """

    event: ContractEvent
    next_state: ContractState | None
    effects: tuple[Effect, ...]
    warnings: tuple[str, ...]
    expected_status: ContractStatus | None
    expected_version: int | None

    def changes(self) -> dict[str, Any]:
        """Full column set of the next state, ready for the store."""
        if self.next_state is None:
            return {}
        return self.next_state.to_row()


# ---------------------------------------------------------------------------
# Role resolution and checks
# ---------------------------------------------------------------------------


def resolve_actor_role(
    contract: ContractState,
    actor_id: str | None,
    admin_ids: Iterable[str],
) -> ActorRole:
    """Map an authenticated identity to its role on the given contract."""
    if not actor_id:
        return ActorRole.NONE
    if actor_id == contract.provider_id:
        return ActorRole.PROVIDER
    if actor_id == contract.tasker_id:
        return ActorRole.TASKER
    if actor_id in set(admin_ids):
        return ActorRole.ADMIN
    return ActorRole.NONE


def _check_authorized(
    event: ContractEvent,
    rule: TransitionRule,
    actor_id: str,
    actor_role: ActorRole,
    provider_id: str,
    tasker_id: str | None,
) -> None:
    allowed = ", ".join(sorted(role.value for role in rule.roles))
    if actor_role not in rule.roles:
        raise AuthorizationError(
            f"Only the contract's {allowed} can {_EVENT_VERBS[event]} this contract",
            details={"event": event.value, "allowed_roles": sorted(r.value for r in rule.roles)},
        )
    # A claimed party role must match the identity on the contract.
    if actor_role is ActorRole.PROVIDER and actor_id != provider_id:
        raise AuthorizationError(f"Only the contract's provider can {_EVENT_VERBS[event]} it")
    if actor_role is ActorRole.TASKER and actor_id != tasker_id:
        raise AuthorizationError(f"Only the contract's tasker can {_EVENT_VERBS[event]} it")


def _check_source(event: ContractEvent, rule: TransitionRule, status: ContractStatus) -> None:
    if rule.sources is None or status in rule.sources:
        return
    legal = sorted(source.value for source in rule.sources)
    must_be = ", ".join(f"'{value}'" for value in legal) if legal else "no existing contract"
    raise StateError(
        f"Cannot {_EVENT_VERBS[event]} contract in '{status.value}' status, must be {must_be}",
        details={"event": event.value, "status": status.value, "legal_sources": legal},
    )


def _payment_status(
    contract: ContractState,
    payment_lookup: Callable[[str], str | None] | None,
) -> str | None:
    if payment_lookup is None:
        return None
    return payment_lookup(contract.contract_id)


# ---------------------------------------------------------------------------
# Per-event effects
# ---------------------------------------------------------------------------


@dataclass
class _Plan:
    updates: dict[str, Any] = field(default_factory=dict)
    effects: list[Effect] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _plan_confirm_funding(
    contract: ContractState,
    payment_status: str | None,
    payment: Mapping[str, Any] | None,
    fee_config: FeeConfig | None,
    now: str,
) -> _Plan:
    if payment_status not in FUNDED_PAYMENT_STATUSES:
        raise PreconditionError(
            "PAYMENT_NOT_FUNDED",
            "Contract cannot be activated until its payment has succeeded or is in escrow",
            details={"payment_status": payment_status},
        )
    plan = _Plan()
    if payment is not None:
        # The payment's breakdown was fixed when it was created.
        plan.updates = {
            "funded_at": now,
            "platform_fee_amount": payment["platform_fee"],
            "tax_amount": payment["total_tax"],
            "payout_to_tasker": payment["amount_received_by_payee"],
        }
    else:
        if fee_config is None:
            raise ConfigurationError("Fee configuration is required to fund a contract")
        breakdown = compute_fee_breakdown(contract.agreed_cost, fee_config)
        plan.updates = {
            "funded_at": now,
            "platform_fee_amount": breakdown.platform_fee,
            "tax_amount": breakdown.total_tax,
            "payout_to_tasker": breakdown.amount_received_by_payee,
        }
    plan.effects.append(
        Notify(
            recipient_id=contract.tasker_id,
            kind="contract_funded",
            message="Payment confirmed. You can start working on the gig.",
            data={"contract_id": contract.contract_id, "gig_id": contract.gig_id},
        )
    )
    return plan


def _plan_submit_work(contract: ContractState, now: str) -> _Plan:
    plan = _Plan(updates={"submitted_at": now})
    plan.effects.append(
        Notify(
            recipient_id=contract.provider_id,
            kind="work_submitted",
            message="The tasker has submitted work for your review.",
            data={"contract_id": contract.contract_id, "gig_id": contract.gig_id},
        )
    )
    return plan


def _plan_approve_completion(
    contract: ContractState,
    payment_status: str | None,
    now: str,
) -> _Plan:
    if payment_status != PaymentStatus.SUCCEEDED.value:
        message = (
            "No payment exists for this contract"
            if payment_status is None
            else f"Payment status is '{payment_status}', must be 'succeeded'"
        )
        raise PreconditionError(
            "PAYMENT_NOT_SUCCEEDED",
            f"Cannot approve completion: {message}",
            details={"payment_status": payment_status},
        )
    plan = _Plan(updates={"completed_at": now})
    plan.effects.append(CompleteGig(gig_id=contract.gig_id))
    plan.effects.append(
        Notify(
            recipient_id=contract.tasker_id,
            kind="contract_completed",
            message="The provider approved your work. The contract is complete.",
            data={"contract_id": contract.contract_id, "gig_id": contract.gig_id},
        )
    )
    return plan


def _plan_request_revision(contract: ContractState, payload: dict[str, Any]) -> _Plan:
    reason = payload.get("reason")
    if not isinstance(reason, str) or not reason.strip():
        raise PreconditionError(
            "REASON_REQUIRED",
            "A non-empty reason is required to request a revision",
        )
    plan = _Plan(updates={"revision_reason": reason})
    plan.effects.append(
        Notify(
            recipient_id=contract.tasker_id,
            kind="revision_requested",
            message="The provider requested a revision.",
            data={"contract_id": contract.contract_id, "reason": reason},
        )
    )
    return plan


def _plan_cancel(
    contract: ContractState,
    actor_id: str,
    payload: dict[str, Any],
    payment_status: str | None,
    now: str,
) -> _Plan:
    reason = payload.get("reason")
    if reason is not None and not isinstance(reason, str):
        raise ValidationError("reason must be a string", error="INVALID_PAYLOAD")

    plan = _Plan(
        updates={
            "cancellation_reason": reason if reason else None,
            "cancelled_at": now,
            "cancelled_by": actor_id,
        }
    )
    if payment_status in FUNDED_PAYMENT_STATUSES:
        plan.warnings.append(
            f"Contract {contract.contract_id} has a payment with status "
            f"'{payment_status}'. Consider a refund."
        )
    plan.effects.append(DeleteOffersForGig(gig_id=contract.gig_id))
    plan.effects.append(ReleaseGig(gig_id=contract.gig_id, tasker_id=contract.tasker_id))

    counterparty = contract.tasker_id if actor_id == contract.provider_id else contract.provider_id
    plan.effects.append(
        Notify(
            recipient_id=counterparty,
            kind="contract_cancelled",
            message="The contract was cancelled.",
            data={"contract_id": contract.contract_id, "reason": reason},
        )
    )
    return plan


def _plan_delete(contract: ContractState, payment_status: str | None) -> _Plan:
    plan = _Plan()
    if payment_status is not None:
        plan.warnings.append(
            f"Deleting contract {contract.contract_id} also removes its payment "
            f"record with status '{payment_status}'"
        )
    plan.effects.extend(
        [
            DeletePaymentForContract(contract_id=contract.contract_id),
            DeleteContract(contract_id=contract.contract_id),
        ]
    )
    # A cancelled contract already gave the gig back; it may be hired again since.
    if contract.status is not ContractStatus.CANCELLED:
        plan.effects.extend(
            [
                DeleteOffersForGig(gig_id=contract.gig_id),
                ReleaseGig(gig_id=contract.gig_id, tasker_id=contract.tasker_id),
            ]
        )
    if contract.application_id is not None:
        plan.effects.append(ResetApplication(application_id=contract.application_id))
    return plan


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def apply_contract_transition(
    event: ContractEvent,
    contract: ContractState,
    actor_id: str,
    actor_role: ActorRole,
    payload: dict[str, Any] | None = None,
    *,
    payment_lookup: Callable[[str], str | None] | None = None,
    payment: Mapping[str, Any] | None = None,
    fee_config: FeeConfig | None = None,
    now: str | None = None,
) -> TransitionResult:
    """
    Validate ``event`` against ``contract`` and compute the next state.

    Args:
        event: The lifecycle event to apply
        contract: Current contract snapshot
        actor_id: Authenticated identity triggering the event
        actor_role: Role of ``actor_id`` on this contract (see resolve_actor_role)
        payload: Event data, e.g. ``{"reason": ...}`` for cancel and revision
        payment_lookup: Returns the payment status for a contract id, or None
        payment: Stored payment record; confirm_funding copies its breakdown
        fee_config: Used by confirm_funding when no payment record is given
        now: Timestamp to stamp on the contract; defaults to the current time

    Raises:
        AuthorizationError, StateError, PreconditionError, ConfigurationError
    """
    rule = TRANSITIONS[event]
    _check_authorized(event, rule, actor_id, actor_role, contract.provider_id, contract.tasker_id)
    _check_source(event, rule, contract.status)

    data = payload or {}
    timestamp = now or _now_iso()

    if event is ContractEvent.CONFIRM_FUNDING:
        plan = _plan_confirm_funding(
            contract, _payment_status(contract, payment_lookup), payment, fee_config, timestamp
        )
    elif event is ContractEvent.SUBMIT_WORK:
        plan = _plan_submit_work(contract, timestamp)
    elif event is ContractEvent.APPROVE_COMPLETION:
        plan = _plan_approve_completion(
            contract, _payment_status(contract, payment_lookup), timestamp
        )
    elif event is ContractEvent.REQUEST_REVISION:
        plan = _plan_request_revision(contract, data)
    elif event is ContractEvent.CANCEL:
        plan = _plan_cancel(
            contract, actor_id, data, _payment_status(contract, payment_lookup), timestamp
        )
    elif event is ContractEvent.DELETE:
        plan = _plan_delete(contract, _payment_status(contract, payment_lookup))
    else:
        msg = f"Unhandled contract event: {event}"
        raise RuntimeError(msg)

    next_state: ContractState | None = None
    if rule.target is not None:
        next_state = replace(
            contract,
            status=rule.target,
            version=contract.version + 1,
            **plan.updates,
        )

    return TransitionResult(
        event=event,
        next_state=next_state,
        effects=tuple(plan.effects),
        warnings=tuple(plan.warnings),
        expected_status=contract.status,
        expected_version=contract.version,
    )


def plan_contract_creation(
    application: ApplicationState,
    gig: GigState,
    actor_id: str,
    actor_role: ActorRole,
    contract_id: str,
    *,
    agreed_cost: int | None = None,
    offer_id: str | None = None,
    now: str | None = None,
) -> TransitionResult:
    """
    Validate acceptance of an application and build the new contract.

    The contract starts at ``pending_payment``; it becomes ``active`` only
    once its payment is confirmed.

    Raises:
        AuthorizationError: actor is not the gig's provider
        PreconditionError: application already accepted or not pending,
            gig already assigned or closed, application for another gig
        ValidationError: agreed cost is not a positive integer
    """
    event = ContractEvent.ACCEPT_APPLICATION
    rule = TRANSITIONS[event]
    _check_authorized(event, rule, actor_id, actor_role, gig.provider_id, None)

    if application.gig_id != gig.gig_id:
        raise PreconditionError(
            "APPLICATION_GIG_MISMATCH",
            "Application does not belong to this gig",
        )
    if application.status == "accepted":
        raise PreconditionError(
            "APPLICATION_ALREADY_ACCEPTED",
            "This application has already been accepted",
        )
    if application.status != "pending":
        raise PreconditionError(
            "APPLICATION_NOT_PENDING",
            f"Cannot accept application in '{application.status}' status, must be 'pending'",
        )
    if gig.status == "assigned" or gig.assigned_tasker_id is not None:
        raise PreconditionError(
            "GIG_ALREADY_ASSIGNED",
            "This gig has already been assigned to a tasker",
        )
    if gig.status not in ("open", "unassigned"):
        raise PreconditionError(
            "GIG_NOT_OPEN",
            f"Cannot hire for gig in '{gig.status}' status",
        )

    cost = gig.cost if agreed_cost is None else agreed_cost
    if not isinstance(cost, int) or isinstance(cost, bool) or cost <= 0:
        raise ValidationError("Agreed cost must be a positive integer of minor units")

    timestamp = now or _now_iso()
    target = rule.target if rule.target is not None else ContractStatus.PENDING_PAYMENT
    contract = ContractState(
        contract_id=contract_id,
        gig_id=gig.gig_id,
        application_id=application.application_id,
        provider_id=gig.provider_id,
        tasker_id=application.applicant_id,
        agreed_cost=cost,
        currency=gig.currency,
        status=target,
        version=1,
        created_at=timestamp,
    )

    effects: list[Effect] = [
        MarkApplicationAccepted(application_id=application.application_id),
        AssignGig(gig_id=gig.gig_id, tasker_id=application.applicant_id),
    ]
    if offer_id is not None:
        effects.append(MarkOfferAccepted(offer_id=offer_id))
    effects.append(
        Notify(
            recipient_id=application.applicant_id,
            kind="application_accepted",
            message="Your application was accepted. A contract has been created.",
            data={"contract_id": contract_id, "gig_id": gig.gig_id},
        )
    )

    return TransitionResult(
        event=event,
        next_state=contract,
        effects=tuple(effects),
        warnings=(),
        expected_status=None,
        expected_version=None,
    )
