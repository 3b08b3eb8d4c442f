"""Unit tests for the contract lifecycle state machine."""

from __future__ import annotations

from dataclasses import replace

import pytest

from gig_market_service.core.exceptions import (
    AuthorizationError,
    PreconditionError,
    StateError,
    ValidationError,
)
from gig_market_service.services.contract_lifecycle import (
    TRANSITIONS,
    ActorRole,
    ApplicationState,
    AssignGig,
    CompleteGig,
    ContractEvent,
    ContractState,
    ContractStatus,
    DeleteContract,
    DeleteOffersForGig,
    DeletePaymentForContract,
    GigState,
    MarkApplicationAccepted,
    MarkOfferAccepted,
    Notify,
    ReleaseGig,
    ResetApplication,
    apply_contract_transition,
    plan_contract_creation,
    resolve_actor_role,
)
from gig_market_service.services.fee_calculator import FeeConfig

PROVIDER = "a-provider"
TASKER = "a-tasker"
ADMIN = "a-platform"
NOW = "2026-03-01T12:00:00.000000Z"

# Role a well-behaved caller would use for each event.
_EVENT_ACTORS: dict[ContractEvent, tuple[str, ActorRole]] = {
    ContractEvent.CONFIRM_FUNDING: (ADMIN, ActorRole.ADMIN),
    ContractEvent.SUBMIT_WORK: (TASKER, ActorRole.TASKER),
    ContractEvent.APPROVE_COMPLETION: (PROVIDER, ActorRole.PROVIDER),
    ContractEvent.REQUEST_REVISION: (PROVIDER, ActorRole.PROVIDER),
    ContractEvent.CANCEL: (PROVIDER, ActorRole.PROVIDER),
}


def make_contract(status: ContractStatus = ContractStatus.ACTIVE, **overrides) -> ContractState:
    values = {
        "contract_id": "c-1",
        "gig_id": "g-1",
        "application_id": "app-1",
        "provider_id": PROVIDER,
        "tasker_id": TASKER,
        "agreed_cost": 10000,
        "currency": "cad",
        "status": status,
        "version": 3,
        "created_at": "2026-03-01T00:00:00.000000Z",
    }
    values.update(overrides)
    return ContractState(**values)


def payment(status: str | None):
    return lambda _contract_id: status


def make_application(status: str = "pending", **overrides) -> ApplicationState:
    values = {"application_id": "app-1", "gig_id": "g-1", "applicant_id": TASKER, "status": status}
    values.update(overrides)
    return ApplicationState(**values)


def make_gig(status: str = "open", **overrides) -> GigState:
    values = {
        "gig_id": "g-1",
        "provider_id": PROVIDER,
        "cost": 10000,
        "currency": "cad",
        "status": status,
        "assigned_tasker_id": None,
    }
    values.update(overrides)
    return GigState(**values)


@pytest.mark.unit
class TestResolveActorRole:
    def test_parties_and_admin(self):
        contract = make_contract()

        assert resolve_actor_role(contract, PROVIDER, [ADMIN]) is ActorRole.PROVIDER
        assert resolve_actor_role(contract, TASKER, [ADMIN]) is ActorRole.TASKER
        assert resolve_actor_role(contract, ADMIN, [ADMIN]) is ActorRole.ADMIN
        assert resolve_actor_role(contract, "a-stranger", [ADMIN]) is ActorRole.NONE
        assert resolve_actor_role(contract, None, [ADMIN]) is ActorRole.NONE

    def test_party_role_wins_over_admin(self):
        contract = make_contract()

        assert resolve_actor_role(contract, PROVIDER, [PROVIDER]) is ActorRole.PROVIDER


@pytest.mark.unit
class TestIllegalTransitions:
    """Every (status, event) pair outside the table is rejected without effects."""

    @pytest.mark.parametrize(
        ("event", "status"),
        [
            (event, status)
            for event, (_actor, _role) in _EVENT_ACTORS.items()
            for status in ContractStatus
            if status not in (TRANSITIONS[event].sources or frozenset())
        ],
    )
    def test_state_error_leaves_contract_untouched(self, event, status):
        contract = make_contract(status)
        actor_id, role = _EVENT_ACTORS[event]

        with pytest.raises(StateError) as exc_info:
            apply_contract_transition(
                event,
                contract,
                actor_id,
                role,
                {"reason": "x"},
                payment_lookup=payment("succeeded"),
                fee_config=FeeConfig.build(500, 0.10, 0.13),
                now=NOW,
            )

        assert exc_info.value.error == "INVALID_STATUS"
        assert exc_info.value.status_code == 409
        assert contract.status is status
        assert contract.version == 3

    def test_completed_contract_cannot_be_cancelled(self):
        with pytest.raises(StateError):
            apply_contract_transition(
                ContractEvent.CANCEL, make_contract(ContractStatus.COMPLETED), TASKER,
                ActorRole.TASKER,
            )


@pytest.mark.unit
class TestAuthorization:
    def test_provider_cannot_submit_work(self):
        with pytest.raises(AuthorizationError) as exc_info:
            apply_contract_transition(
                ContractEvent.SUBMIT_WORK, make_contract(), PROVIDER, ActorRole.PROVIDER
            )

        assert exc_info.value.error == "FORBIDDEN"
        assert exc_info.value.status_code == 403

    def test_authorization_is_checked_before_status(self):
        # A tasker approving a cancelled contract is a role problem first.
        with pytest.raises(AuthorizationError):
            apply_contract_transition(
                ContractEvent.APPROVE_COMPLETION,
                make_contract(ContractStatus.CANCELLED),
                TASKER,
                ActorRole.TASKER,
            )

    def test_claimed_role_must_match_identity(self):
        with pytest.raises(AuthorizationError):
            apply_contract_transition(
                ContractEvent.SUBMIT_WORK, make_contract(), "a-impostor", ActorRole.TASKER
            )

    def test_admin_cannot_cancel(self):
        with pytest.raises(AuthorizationError):
            apply_contract_transition(
                ContractEvent.CANCEL, make_contract(), ADMIN, ActorRole.ADMIN
            )

    def test_stranger_cannot_delete(self):
        with pytest.raises(AuthorizationError):
            apply_contract_transition(
                ContractEvent.DELETE, make_contract(), "a-stranger", ActorRole.NONE
            )

    def test_tasker_cannot_delete(self):
        with pytest.raises(AuthorizationError):
            apply_contract_transition(
                ContractEvent.DELETE, make_contract(), TASKER, ActorRole.TASKER
            )


@pytest.mark.unit
class TestConfirmFunding:
    def test_funding_activates_and_records_fees(self):
        contract = make_contract(ContractStatus.PENDING_PAYMENT)

        result = apply_contract_transition(
            ContractEvent.CONFIRM_FUNDING,
            contract,
            ADMIN,
            ActorRole.ADMIN,
            payment_lookup=payment("escrow_funded"),
            fee_config=FeeConfig.build(500, 0.10, 0.13),
            now=NOW,
        )

        assert result.next_state is not None
        assert result.next_state.status is ContractStatus.ACTIVE
        assert result.next_state.version == 4
        assert result.next_state.funded_at == NOW
        assert result.next_state.platform_fee_amount == 1500
        assert result.next_state.tax_amount == 1495
        assert result.next_state.payout_to_tasker == 10000
        assert result.expected_status is ContractStatus.PENDING_PAYMENT
        assert result.expected_version == 3

    @pytest.mark.parametrize("status", [None, "pending", "failed", "refunded"])
    def test_unfunded_payment_blocks_activation(self, status):
        with pytest.raises(PreconditionError) as exc_info:
            apply_contract_transition(
                ContractEvent.CONFIRM_FUNDING,
                make_contract(ContractStatus.PENDING_PAYMENT),
                ADMIN,
                ActorRole.ADMIN,
                payment_lookup=payment(status),
                fee_config=FeeConfig.build(500, 0.10, 0.13),
            )

        assert exc_info.value.error == "PAYMENT_NOT_FUNDED"


@pytest.mark.unit
class TestSubmitAndRevision:
    def test_submit_work(self):
        result = apply_contract_transition(
            ContractEvent.SUBMIT_WORK, make_contract(), TASKER, ActorRole.TASKER, now=NOW
        )

        assert result.next_state is not None
        assert result.next_state.status is ContractStatus.SUBMITTED
        assert result.next_state.submitted_at == NOW
        assert result.effects == (
            Notify(
                recipient_id=PROVIDER,
                kind="work_submitted",
                message="The tasker has submitted work for your review.",
                data={"contract_id": "c-1", "gig_id": "g-1"},
            ),
        )

    def test_revision_returns_to_active_with_reason(self):
        result = apply_contract_transition(
            ContractEvent.REQUEST_REVISION,
            make_contract(ContractStatus.SUBMITTED),
            PROVIDER,
            ActorRole.PROVIDER,
            {"reason": "Missing the appendix"},
        )

        assert result.next_state is not None
        assert result.next_state.status is ContractStatus.ACTIVE
        assert result.next_state.revision_reason == "Missing the appendix"

    @pytest.mark.parametrize("payload", [None, {}, {"reason": ""}, {"reason": "   "}, {"reason": 7}])
    def test_revision_requires_reason(self, payload):
        with pytest.raises(PreconditionError) as exc_info:
            apply_contract_transition(
                ContractEvent.REQUEST_REVISION,
                make_contract(ContractStatus.SUBMITTED),
                PROVIDER,
                ActorRole.PROVIDER,
                payload,
            )

        assert exc_info.value.error == "REASON_REQUIRED"


@pytest.mark.unit
class TestApproveCompletion:
    @pytest.mark.parametrize(
        "status", [ContractStatus.SUBMITTED, ContractStatus.APPROVED, ContractStatus.ACTIVE]
    )
    def test_approval_completes_gig(self, status):
        result = apply_contract_transition(
            ContractEvent.APPROVE_COMPLETION,
            make_contract(status),
            PROVIDER,
            ActorRole.PROVIDER,
            payment_lookup=payment("succeeded"),
            now=NOW,
        )

        assert result.next_state is not None
        assert result.next_state.status is ContractStatus.COMPLETED
        assert result.next_state.completed_at == NOW
        assert CompleteGig(gig_id="g-1") in result.effects

    @pytest.mark.parametrize("status", [None, "pending", "escrow_funded", "failed", "refunded"])
    def test_approval_requires_succeeded_payment(self, status):
        contract = make_contract(ContractStatus.SUBMITTED)

        with pytest.raises(PreconditionError) as exc_info:
            apply_contract_transition(
                ContractEvent.APPROVE_COMPLETION,
                contract,
                PROVIDER,
                ActorRole.PROVIDER,
                payment_lookup=payment(status),
            )

        assert exc_info.value.error == "PAYMENT_NOT_SUCCEEDED"
        assert exc_info.value.status_code == 400
        assert contract.status is ContractStatus.SUBMITTED


@pytest.mark.unit
class TestCancel:
    def test_tasker_cancel_releases_gig_and_purges_offers(self):
        result = apply_contract_transition(
            ContractEvent.CANCEL,
            make_contract(),
            TASKER,
            ActorRole.TASKER,
            {"reason": "Schedule conflict"},
            payment_lookup=payment(None),
            now=NOW,
        )

        assert result.next_state is not None
        assert result.next_state.status is ContractStatus.CANCELLED
        assert result.next_state.cancellation_reason == "Schedule conflict"
        assert result.next_state.cancelled_by == TASKER
        assert result.next_state.cancelled_at == NOW
        assert result.effects[:2] == (
            DeleteOffersForGig(gig_id="g-1"),
            ReleaseGig(gig_id="g-1", tasker_id=TASKER),
        )
        notify = result.effects[2]
        assert isinstance(notify, Notify)
        assert notify.recipient_id == PROVIDER
        assert result.warnings == ()

    def test_reason_is_stored_verbatim(self):
        result = apply_contract_transition(
            ContractEvent.CANCEL,
            make_contract(),
            PROVIDER,
            ActorRole.PROVIDER,
            {"reason": "  padded  "},
        )

        assert result.next_state is not None
        assert result.next_state.cancellation_reason == "  padded  "

    def test_missing_reason_is_none(self):
        result = apply_contract_transition(
            ContractEvent.CANCEL, make_contract(), PROVIDER, ActorRole.PROVIDER
        )

        assert result.next_state is not None
        assert result.next_state.cancellation_reason is None

    def test_non_string_reason_is_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            apply_contract_transition(
                ContractEvent.CANCEL,
                make_contract(),
                PROVIDER,
                ActorRole.PROVIDER,
                {"reason": ["no"]},
            )

        assert exc_info.value.error == "INVALID_PAYLOAD"

    @pytest.mark.parametrize("status", ["succeeded", "escrow_funded"])
    def test_funded_payment_warns_but_proceeds(self, status):
        result = apply_contract_transition(
            ContractEvent.CANCEL,
            make_contract(),
            PROVIDER,
            ActorRole.PROVIDER,
            payment_lookup=payment(status),
        )

        assert result.next_state is not None
        assert result.next_state.status is ContractStatus.CANCELLED
        assert len(result.warnings) == 1
        assert "refund" in result.warnings[0]


@pytest.mark.unit
class TestDelete:
    @pytest.mark.parametrize(
        "status", [status for status in ContractStatus if status is not ContractStatus.CANCELLED]
    )
    def test_delete_from_any_status(self, status):
        result = apply_contract_transition(
            ContractEvent.DELETE, make_contract(status), PROVIDER, ActorRole.PROVIDER
        )

        assert result.next_state is None
        assert result.changes() == {}
        assert result.effects == (
            DeletePaymentForContract(contract_id="c-1"),
            DeleteContract(contract_id="c-1"),
            DeleteOffersForGig(gig_id="g-1"),
            ReleaseGig(gig_id="g-1", tasker_id=TASKER),
            ResetApplication(application_id="app-1"),
        )

    def test_delete_cancelled_contract_leaves_gig_and_offers_alone(self):
        result = apply_contract_transition(
            ContractEvent.DELETE,
            make_contract(ContractStatus.CANCELLED),
            PROVIDER,
            ActorRole.PROVIDER,
        )

        assert result.next_state is None
        assert result.effects == (
            DeletePaymentForContract(contract_id="c-1"),
            DeleteContract(contract_id="c-1"),
            ResetApplication(application_id="app-1"),
        )

    def test_delete_without_application_skips_reset(self):
        result = apply_contract_transition(
            ContractEvent.DELETE,
            make_contract(application_id=None),
            PROVIDER,
            ActorRole.PROVIDER,
        )

        assert not any(isinstance(effect, ResetApplication) for effect in result.effects)

    def test_delete_warns_about_payment(self):
        result = apply_contract_transition(
            ContractEvent.DELETE,
            make_contract(),
            PROVIDER,
            ActorRole.PROVIDER,
            payment_lookup=payment("succeeded"),
        )

        assert len(result.warnings) == 1


@pytest.mark.unit
class TestContractCreation:
    def test_creates_pending_payment_contract(self):
        result = plan_contract_creation(
            make_application(), make_gig(), PROVIDER, ActorRole.PROVIDER, "c-new", now=NOW
        )

        contract = result.next_state
        assert contract is not None
        assert contract.status is ContractStatus.PENDING_PAYMENT
        assert contract.version == 1
        assert contract.tasker_id == TASKER
        assert contract.agreed_cost == 10000
        assert contract.created_at == NOW
        assert MarkApplicationAccepted(application_id="app-1") in result.effects
        assert AssignGig(gig_id="g-1", tasker_id=TASKER) in result.effects

    def test_offer_is_marked_accepted_and_sets_cost(self):
        result = plan_contract_creation(
            make_application(),
            make_gig(),
            PROVIDER,
            ActorRole.PROVIDER,
            "c-new",
            agreed_cost=8000,
            offer_id="off-1",
        )

        assert result.next_state is not None
        assert result.next_state.agreed_cost == 8000
        assert MarkOfferAccepted(offer_id="off-1") in result.effects

    def test_only_provider_can_accept(self):
        with pytest.raises(AuthorizationError):
            plan_contract_creation(
                make_application(), make_gig(), TASKER, ActorRole.TASKER, "c-new"
            )

    def test_provider_role_must_match_gig_owner(self):
        with pytest.raises(AuthorizationError):
            plan_contract_creation(
                make_application(), make_gig(), "a-other", ActorRole.PROVIDER, "c-new"
            )

    @pytest.mark.parametrize(
        ("application", "gig", "error"),
        [
            (make_application(gig_id="g-2"), make_gig(), "APPLICATION_GIG_MISMATCH"),
            (make_application("accepted"), make_gig(), "APPLICATION_ALREADY_ACCEPTED"),
            (make_application("rejected"), make_gig(), "APPLICATION_NOT_PENDING"),
            (make_application(), make_gig("assigned"), "GIG_ALREADY_ASSIGNED"),
            (make_application(), make_gig(assigned_tasker_id="a-x"), "GIG_ALREADY_ASSIGNED"),
            (make_application(), make_gig("completed"), "GIG_NOT_OPEN"),
        ],
    )
    def test_preconditions(self, application, gig, error):
        with pytest.raises(PreconditionError) as exc_info:
            plan_contract_creation(application, gig, PROVIDER, ActorRole.PROVIDER, "c-new")

        assert exc_info.value.error == error

    def test_unassigned_gig_can_be_rehired(self):
        result = plan_contract_creation(
            make_application(), make_gig("unassigned"), PROVIDER, ActorRole.PROVIDER, "c-new"
        )

        assert result.next_state is not None

    def test_non_positive_cost_rejected(self):
        with pytest.raises(ValidationError):
            plan_contract_creation(
                make_application(),
                replace(make_gig(), cost=0),
                PROVIDER,
                ActorRole.PROVIDER,
                "c-new",
            )
