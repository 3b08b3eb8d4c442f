"""Gig, application, and offer flows up to the creation of a contract."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from gig_market_service.core.exceptions import ConflictError, ServiceError, ValidationError
from gig_market_service.logging import get_logger
from gig_market_service.services.contract_lifecycle import (
    ActorRole,
    ApplicationState,
    GigState,
    Notify,
    plan_contract_creation,
)
from gig_market_service.services.marketplace_store import (
    DuplicateApplicationError,
    DuplicateOfferError,
)
from gig_market_service.services.token_validator import require_field, require_path_match

if TYPE_CHECKING:
    from gig_market_service.services.marketplace_store import MarketplaceStore
    from gig_market_service.services.notifier import Notifier
    from gig_market_service.services.token_validator import TokenValidator

_HIREABLE_GIG_STATUSES = frozenset({"open", "unassigned"})
_REOPENABLE_APPLICATION_STATUSES = frozenset({"cancelled", "withdrawn"})
_VALID_GIG_STATUSES = frozenset({"open", "assigned", "unassigned", "completed"})


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _is_positive_int(value: object) -> bool:
    """Check if value is a positive integer (not float, not bool)."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _gig_state(gig: dict[str, Any]) -> GigState:
    return GigState(
        gig_id=gig["gig_id"],
        provider_id=gig["provider_id"],
        cost=gig["cost"],
        currency=gig["currency"],
        status=gig["status"],
        assigned_tasker_id=gig["assigned_tasker_id"],
    )


def _application_state(application: dict[str, Any]) -> ApplicationState:
    return ApplicationState(
        application_id=application["application_id"],
        gig_id=application["gig_id"],
        applicant_id=application["applicant_id"],
        status=application["status"],
    )


class GigManager:
    """
    Manages gigs and everything that happens before work starts:
    applying, rejecting or cancelling applications, making offers, and
    hiring, which creates the contract.
    """

    def __init__(
        self,
        store: MarketplaceStore,
        token_validator: TokenValidator,
        notifier: Notifier,
        default_currency: str,
    ) -> None:
        self._store = store
        self._token_validator = token_validator
        self._notifier = notifier
        self._default_currency = default_currency
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Loaders
    # ------------------------------------------------------------------

    def _load_gig(self, gig_id: str) -> dict[str, Any]:
        gig = self._store.get_gig(gig_id)
        if gig is None:
            raise ServiceError("GIG_NOT_FOUND", "Gig not found", 404, {})
        return gig

    def _load_application(self, application_id: str) -> dict[str, Any]:
        application = self._store.get_application(application_id)
        if application is None:
            raise ServiceError("APPLICATION_NOT_FOUND", "Application not found", 404, {})
        return application

    def _load_offer(self, offer_id: str) -> dict[str, Any]:
        offer = self._store.get_offer(offer_id)
        if offer is None:
            raise ServiceError("OFFER_NOT_FOUND", "Offer not found", 404, {})
        return offer

    # ------------------------------------------------------------------
    # Gigs
    # ------------------------------------------------------------------

    async def create_gig(self, token: str) -> dict[str, Any]:
        """
        Post a new gig.

        Error precedence:
        1. JWS verification
        2. INVALID_PAYLOAD - missing fields, bad title/description/currency
        3. FORBIDDEN - signer != provider_id in payload
        4. INVALID_AMOUNT - cost is not a positive integer
        """
        payload = await self._token_validator.validate_jws_token(token, "create_gig")
        signer_id: str = payload["_signer_id"]

        provider_id = require_field(payload, "provider_id")
        title = require_field(payload, "title")
        description = require_field(payload, "description")
        cost = require_field(payload, "cost")
        currency = payload.get("currency", self._default_currency)

        if not isinstance(title, str) or not title.strip():
            raise ServiceError("INVALID_PAYLOAD", "title must be a non-empty string", 400, {})
        if not isinstance(description, str):
            raise ServiceError("INVALID_PAYLOAD", "description must be a string", 400, {})
        if not isinstance(currency, str) or not currency:
            raise ServiceError("INVALID_PAYLOAD", "currency must be a non-empty string", 400, {})

        if signer_id != provider_id:
            raise ServiceError("FORBIDDEN", "Signer does not match provider_id", 403, {})

        if not _is_positive_int(cost):
            raise ValidationError("cost must be a positive integer of minor units")

        now = _now_iso()
        gig = {
            "gig_id": f"g-{uuid.uuid4()}",
            "provider_id": signer_id,
            "title": title,
            "description": description,
            "cost": cost,
            "currency": currency.lower(),
            "status": "open",
            "assigned_tasker_id": None,
            "created_at": now,
            "updated_at": now,
        }
        self._store.insert_gig(gig)
        self._logger.info(
            "Gig created",
            extra={"gig_id": gig["gig_id"], "provider_id": signer_id, "cost": cost},
        )
        return gig

    async def get_gig(self, gig_id: str) -> dict[str, Any]:
        return self._load_gig(gig_id)

    async def list_gigs(self, status: str | None, provider_id: str | None) -> list[dict[str, Any]]:
        if status is not None and status not in _VALID_GIG_STATUSES:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"status must be one of {sorted(_VALID_GIG_STATUSES)}",
                400,
                {},
            )
        return self._store.list_gigs(status=status, provider_id=provider_id)

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    async def apply_to_gig(self, gig_id: str, token: str) -> tuple[dict[str, Any], bool]:
        """
        Apply to a gig, or reopen an earlier cancelled/withdrawn application.

        Returns the application and whether a new row was created.

        Error precedence:
        1. JWS verification
        2. INVALID_PAYLOAD - gig_id missing or mismatched
        3. GIG_NOT_FOUND
        4. SELF_APPLICATION - provider applying to their own gig
        5. INVALID_STATUS - gig is not open for applications
        6. ALREADY_APPLIED - a live application already exists
        """
        payload = await self._token_validator.validate_jws_token(token, "apply_to_gig")
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "gig_id", gig_id)
        message = payload.get("message")
        if message is not None and not isinstance(message, str):
            raise ServiceError("INVALID_PAYLOAD", "message must be a string", 400, {})

        gig = self._load_gig(gig_id)

        if gig["provider_id"] == signer_id:
            raise ServiceError("SELF_APPLICATION", "You cannot apply to your own gig", 400, {})

        if gig["status"] not in _HIREABLE_GIG_STATUSES:
            raise ServiceError(
                "INVALID_STATUS",
                f"Cannot apply to gig in '{gig['status']}' status",
                409,
                {},
            )

        now = _now_iso()
        existing = self._store.find_application(gig_id, signer_id)
        if existing is not None:
            if existing["status"] not in _REOPENABLE_APPLICATION_STATUSES:
                raise ServiceError(
                    "ALREADY_APPLIED",
                    "You have already applied to this gig",
                    409,
                    {"application_id": existing["application_id"]},
                )
            updated = self._store.update_application(
                existing["application_id"],
                {"status": "pending", "message": message, "updated_at": now},
                expected_status=existing["status"],
            )
            if updated == 0:
                raise ConflictError("Application changed concurrently")
            self._logger.info(
                "Application reopened",
                extra={"application_id": existing["application_id"], "gig_id": gig_id},
            )
            reopened = self._store.get_application(existing["application_id"])
            if reopened is None:
                msg = f"Application {existing['application_id']} not found after update"
                raise RuntimeError(msg)
            return reopened, False

        application = {
            "application_id": f"app-{uuid.uuid4()}",
            "gig_id": gig_id,
            "applicant_id": signer_id,
            "message": message,
            "status": "pending",
            "created_at": now,
            "updated_at": now,
        }
        try:
            self._store.insert_application(application)
        except DuplicateApplicationError as exc:
            raise ServiceError(
                "ALREADY_APPLIED", "You have already applied to this gig", 409, {}
            ) from exc

        self._notifier.emit(
            Notify(
                recipient_id=gig["provider_id"],
                kind="application_received",
                message="A tasker applied to your gig.",
                data={"gig_id": gig_id, "application_id": application["application_id"]},
            )
        )
        return application, True

    async def list_gig_applications(self, gig_id: str, token: str) -> list[dict[str, Any]]:
        """List live applications for a gig. Only the gig's provider may look."""
        payload = await self._token_validator.validate_jws_token(token, "list_applications")
        signer_id: str = payload["_signer_id"]

        gig = self._load_gig(gig_id)
        if gig["provider_id"] != signer_id:
            raise ServiceError(
                "FORBIDDEN", "Only the gig's provider can view its applications", 403, {}
            )
        return self._store.list_applications_for_gig(gig_id)

    async def reject_application(self, application_id: str, token: str) -> dict[str, Any]:
        """
        Reject a pending application.

        Error precedence:
        1. JWS verification, INVALID_PAYLOAD
        2. APPLICATION_NOT_FOUND
        3. FORBIDDEN - signer is not the gig's provider
        4. INVALID_STATUS - application is not pending
        """
        payload = await self._token_validator.validate_jws_token(token, "reject_application")
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "application_id", application_id)

        application = self._load_application(application_id)
        gig = self._load_gig(application["gig_id"])
        if gig["provider_id"] != signer_id:
            raise ServiceError(
                "FORBIDDEN", "Only the gig's provider can reject applications", 403, {}
            )
        return self._move_application(application, "rejected", verb="reject")

    async def cancel_application(self, application_id: str, token: str) -> dict[str, Any]:
        """Withdraw one's own pending application (it can be reopened later)."""
        payload = await self._token_validator.validate_jws_token(token, "cancel_application")
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "application_id", application_id)

        application = self._load_application(application_id)
        if application["applicant_id"] != signer_id:
            raise ServiceError(
                "FORBIDDEN", "Only the applicant can cancel this application", 403, {}
            )
        return self._move_application(application, "cancelled", verb="cancel")

    def _move_application(
        self,
        application: dict[str, Any],
        new_status: str,
        *,
        verb: str,
    ) -> dict[str, Any]:
        if application["status"] != "pending":
            raise ServiceError(
                "INVALID_STATUS",
                f"Cannot {verb} application in '{application['status']}' status, "
                "must be 'pending'",
                409,
                {},
            )
        updated = self._store.update_application(
            application["application_id"],
            {"status": new_status, "updated_at": _now_iso()},
            expected_status="pending",
        )
        if updated == 0:
            raise ConflictError("Application changed concurrently")

        result = self._store.get_application(application["application_id"])
        if result is None:
            msg = f"Application {application['application_id']} not found after update"
            raise RuntimeError(msg)
        return result

    async def accept_application(self, application_id: str, token: str) -> dict[str, Any]:
        """
        Hire the applicant directly: creates the contract at pending_payment.

        Error precedence:
        1. JWS verification, INVALID_PAYLOAD
        2. APPLICATION_NOT_FOUND, GIG_NOT_FOUND
        3. FORBIDDEN - signer is not the gig's provider
        4. APPLICATION_ALREADY_ACCEPTED, APPLICATION_NOT_PENDING,
           GIG_ALREADY_ASSIGNED, GIG_NOT_OPEN
        5. CONFLICT - a concurrent hire won the race
        """
        payload = await self._token_validator.validate_jws_token(token, "accept_application")
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "application_id", application_id)

        application = self._load_application(application_id)
        gig = self._load_gig(application["gig_id"])
        role = ActorRole.PROVIDER if signer_id == gig["provider_id"] else ActorRole.NONE

        offer = self._store.find_offer_for_application(application_id)
        offer_id = offer["offer_id"] if offer is not None and offer["status"] == "pending" else None
        return self._hire(application, gig, signer_id, role, offer_id)

    # ------------------------------------------------------------------
    # Offers
    # ------------------------------------------------------------------

    async def create_offer(self, application_id: str, token: str) -> dict[str, Any]:
        """
        Make a formal offer to a pending applicant. One offer per application.

        Error precedence:
        1. JWS verification, INVALID_PAYLOAD
        2. APPLICATION_NOT_FOUND, GIG_NOT_FOUND
        3. FORBIDDEN - signer is not the gig's provider
        4. INVALID_STATUS - application not pending
        5. GIG_ALREADY_ASSIGNED - gig no longer hiring
        6. OFFER_ALREADY_EXISTS
        """
        payload = await self._token_validator.validate_jws_token(token, "create_offer")
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "application_id", application_id)
        message = payload.get("message")
        if message is not None and not isinstance(message, str):
            raise ServiceError("INVALID_PAYLOAD", "message must be a string", 400, {})

        application = self._load_application(application_id)
        gig = self._load_gig(application["gig_id"])
        if gig["provider_id"] != signer_id:
            raise ServiceError("FORBIDDEN", "Only the gig's provider can make offers", 403, {})

        if application["status"] != "pending":
            raise ServiceError(
                "INVALID_STATUS",
                f"Cannot make an offer for application in '{application['status']}' status, "
                "must be 'pending'",
                409,
                {},
            )
        if gig["status"] not in _HIREABLE_GIG_STATUSES:
            raise ServiceError(
                "GIG_ALREADY_ASSIGNED",
                "This gig is no longer open for offers",
                400,
                {},
            )

        now = _now_iso()
        offer = {
            "offer_id": f"off-{uuid.uuid4()}",
            "application_id": application_id,
            "gig_id": gig["gig_id"],
            "provider_id": signer_id,
            "tasker_id": application["applicant_id"],
            "message": message,
            "status": "pending",
            "created_at": now,
            "updated_at": now,
        }
        try:
            self._store.insert_offer(offer)
        except DuplicateOfferError as exc:
            raise ServiceError(
                "OFFER_ALREADY_EXISTS",
                "An offer already exists for this application",
                409,
                {},
            ) from exc

        self._notifier.emit(
            Notify(
                recipient_id=offer["tasker_id"],
                kind="offer_received",
                message="You received an offer for a gig.",
                data={"gig_id": gig["gig_id"], "offer_id": offer["offer_id"]},
            )
        )
        return offer

    async def get_offer_for_gig(self, gig_id: str, token: str) -> dict[str, Any]:
        """Return the latest offer on a gig to its provider or the offered tasker."""
        payload = await self._token_validator.validate_jws_token(token, "get_offer")
        signer_id: str = payload["_signer_id"]

        self._load_gig(gig_id)
        offer = self._store.get_latest_offer_for_gig(gig_id)
        if offer is None:
            raise ServiceError("OFFER_NOT_FOUND", "No offer found for this gig", 404, {})
        if signer_id not in (offer["provider_id"], offer["tasker_id"]):
            raise ServiceError("FORBIDDEN", "Only the offer's parties can view it", 403, {})
        return offer

    async def accept_offer(self, offer_id: str, token: str) -> dict[str, Any]:
        """
        The offered tasker accepts: the contract is created exactly as when the
        provider accepts the application directly. The provider's own offer is
        what authorizes the hire.
        """
        payload = await self._token_validator.validate_jws_token(token, "accept_offer")
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "offer_id", offer_id)

        offer = self._load_offer(offer_id)
        if offer["tasker_id"] != signer_id:
            raise ServiceError("FORBIDDEN", "Only the offered tasker can accept", 403, {})
        if offer["status"] != "pending":
            raise ServiceError(
                "INVALID_STATUS",
                f"Cannot accept offer in '{offer['status']}' status, must be 'pending'",
                409,
                {},
            )

        application = self._load_application(offer["application_id"])
        gig = self._load_gig(offer["gig_id"])
        role = ActorRole.PROVIDER if offer["provider_id"] == gig["provider_id"] else ActorRole.NONE
        return self._hire(application, gig, offer["provider_id"], role, offer_id)

    async def decline_offer(self, offer_id: str, token: str) -> dict[str, Any]:
        """The offered tasker declines; their application is withdrawn with it."""
        payload = await self._token_validator.validate_jws_token(token, "decline_offer")
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "offer_id", offer_id)

        offer = self._load_offer(offer_id)
        if offer["tasker_id"] != signer_id:
            raise ServiceError("FORBIDDEN", "Only the offered tasker can decline", 403, {})
        if offer["status"] != "pending":
            raise ServiceError(
                "INVALID_STATUS",
                f"Cannot decline offer in '{offer['status']}' status, must be 'pending'",
                409,
                {},
            )

        self._store.decline_offer(offer_id, offer["application_id"], _now_iso())
        self._notifier.emit(
            Notify(
                recipient_id=offer["provider_id"],
                kind="offer_declined",
                message="The tasker declined your offer.",
                data={"gig_id": offer["gig_id"], "offer_id": offer_id},
            )
        )
        return self._load_offer(offer_id)

    async def withdraw_offer(self, offer_id: str, token: str) -> dict[str, Any]:
        """The provider takes back a pending offer."""
        payload = await self._token_validator.validate_jws_token(token, "withdraw_offer")
        signer_id: str = payload["_signer_id"]
        require_path_match(payload, "offer_id", offer_id)

        offer = self._load_offer(offer_id)
        if offer["provider_id"] != signer_id:
            raise ServiceError("FORBIDDEN", "Only the offering provider can withdraw", 403, {})
        if offer["status"] != "pending":
            raise ServiceError(
                "INVALID_STATUS",
                f"Cannot withdraw offer in '{offer['status']}' status, must be 'pending'",
                409,
                {},
            )

        updated = self._store.update_offer(
            offer_id,
            {"status": "withdrawn", "updated_at": _now_iso()},
            expected_status="pending",
        )
        if updated == 0:
            raise ConflictError("Offer changed concurrently")
        return self._load_offer(offer_id)

    # ------------------------------------------------------------------
    # Hiring
    # ------------------------------------------------------------------

    def _hire(
        self,
        application: dict[str, Any],
        gig: dict[str, Any],
        actor_id: str,
        role: ActorRole,
        offer_id: str | None,
    ) -> dict[str, Any]:
        result = plan_contract_creation(
            _application_state(application),
            _gig_state(gig),
            actor_id,
            role,
            f"c-{uuid.uuid4()}",
            offer_id=offer_id,
        )
        contract = result.next_state
        if contract is None:
            msg = "Contract creation produced no contract"
            raise RuntimeError(msg)

        self._store.commit_contract_creation(contract.to_row(), result.effects)
        self._notifier.published(result.effects)
        self._logger.info(
            "Contract created",
            extra={
                "contract_id": contract.contract_id,
                "gig_id": contract.gig_id,
                "tasker_id": contract.tasker_id,
                "offer_id": offer_id,
            },
        )

        created = self._store.get_contract(contract.contract_id)
        if created is None:
            msg = f"Contract {contract.contract_id} not found after insert"
            raise RuntimeError(msg)
        return created
