"""SQLite-backed storage for gigs, applications, offers, contracts, and payments."""

from __future__ import annotations

import contextlib
import json
import sqlite3
import uuid
from datetime import UTC, datetime
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

from gig_market_service.core.exceptions import ConflictError
from gig_market_service.services.contract_lifecycle import (
    AssignGig,
    CompleteGig,
    DeleteContract,
    DeleteOffersForGig,
    DeletePaymentForContract,
    MarkApplicationAccepted,
    MarkOfferAccepted,
    Notify,
    ReleaseGig,
    ResetApplication,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from gig_market_service.services.contract_lifecycle import Effect


class DuplicateApplicationError(Exception):
    """Raised when an applicant already has an application row for a gig."""


class DuplicateOfferError(Exception):
    """Raised when an application already has an offer."""


class DuplicatePaymentError(Exception):
    """Raised when a contract already has a payment record."""


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


class MarketplaceStore:
    """
    SQLite-backed storage for the marketplace entities.

    Contract transitions are committed with a compare-and-swap on the
    contract's ``status`` and ``version``; every effect of a transition is
    applied in the same ``BEGIN IMMEDIATE`` transaction, so either all of
    them become visible or none do.
    """

    _GIG_COLUMNS: tuple[str, ...] = (
        "gig_id",
        "provider_id",
        "title",
        "description",
        "cost",
        "currency",
        "status",
        "assigned_tasker_id",
        "created_at",
        "updated_at",
    )
    _APPLICATION_COLUMNS: tuple[str, ...] = (
        "application_id",
        "gig_id",
        "applicant_id",
        "message",
        "status",
        "created_at",
        "updated_at",
    )
    _OFFER_COLUMNS: tuple[str, ...] = (
        "offer_id",
        "application_id",
        "gig_id",
        "provider_id",
        "tasker_id",
        "message",
        "status",
        "created_at",
        "updated_at",
    )
    _CONTRACT_COLUMNS: tuple[str, ...] = (
        "contract_id",
        "gig_id",
        "application_id",
        "provider_id",
        "tasker_id",
        "agreed_cost",
        "currency",
        "status",
        "version",
        "created_at",
        "funded_at",
        "submitted_at",
        "completed_at",
        "revision_reason",
        "cancellation_reason",
        "cancelled_at",
        "cancelled_by",
        "platform_fee_amount",
        "tax_amount",
        "payout_to_tasker",
    )
    _PAYMENT_COLUMNS: tuple[str, ...] = (
        "payment_id",
        "contract_id",
        "payer_id",
        "payee_id",
        "service_amount",
        "currency",
        "platform_fee",
        "provider_tax",
        "tasker_tax",
        "total_tax",
        "total_provider_payment",
        "amount_received_by_payee",
        "status",
        "created_at",
        "updated_at",
    )

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS gigs (
                    gig_id TEXT PRIMARY KEY,
                    provider_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    cost INTEGER NOT NULL,
                    currency TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'open',
                    assigned_tasker_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS applications (
                    application_id TEXT PRIMARY KEY,
                    gig_id TEXT NOT NULL REFERENCES gigs(gig_id),
                    applicant_id TEXT NOT NULL,
                    message TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE(gig_id, applicant_id)
                );

                CREATE TABLE IF NOT EXISTS offers (
                    offer_id TEXT PRIMARY KEY,
                    application_id TEXT NOT NULL UNIQUE REFERENCES applications(application_id),
                    gig_id TEXT NOT NULL REFERENCES gigs(gig_id),
                    provider_id TEXT NOT NULL,
                    tasker_id TEXT NOT NULL,
                    message TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS contracts (
                    contract_id TEXT PRIMARY KEY,
                    gig_id TEXT NOT NULL REFERENCES gigs(gig_id),
                    application_id TEXT,
                    provider_id TEXT NOT NULL,
                    tasker_id TEXT NOT NULL,
                    agreed_cost INTEGER NOT NULL,
                    currency TEXT NOT NULL,
                    status TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    funded_at TEXT,
                    submitted_at TEXT,
                    completed_at TEXT,
                    revision_reason TEXT,
                    cancellation_reason TEXT,
                    cancelled_at TEXT,
                    cancelled_by TEXT,
                    platform_fee_amount INTEGER,
                    tax_amount INTEGER,
                    payout_to_tasker INTEGER
                );

                CREATE UNIQUE INDEX IF NOT EXISTS contracts_one_live_per_gig
                    ON contracts(gig_id) WHERE status != 'cancelled';

                CREATE TABLE IF NOT EXISTS payments (
                    payment_id TEXT PRIMARY KEY,
                    contract_id TEXT NOT NULL UNIQUE REFERENCES contracts(contract_id),
                    payer_id TEXT NOT NULL,
                    payee_id TEXT NOT NULL,
                    service_amount INTEGER NOT NULL,
                    currency TEXT NOT NULL,
                    platform_fee INTEGER NOT NULL,
                    provider_tax INTEGER NOT NULL,
                    tasker_tax INTEGER NOT NULL,
                    total_tax INTEGER NOT NULL,
                    total_provider_payment INTEGER NOT NULL,
                    amount_received_by_payee INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS notifications (
                    notification_id TEXT PRIMARY KEY,
                    recipient_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    message TEXT NOT NULL,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS notifications_by_recipient
                    ON notifications(recipient_id, created_at);
                """
            )

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_dict(row: sqlite3.Row, columns: tuple[str, ...]) -> dict[str, Any]:
        return {column: row[column] for column in columns}

    def _insert(self, table: str, columns: tuple[str, ...], data: dict[str, Any]) -> None:
        placeholders = ", ".join("?" for _ in columns)
        query = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"  # nosec B608
        self._db.execute(query, tuple(data[column] for column in columns))

    def _select_one(
        self,
        table: str,
        columns: tuple[str, ...],
        where: str,
        params: tuple[object, ...],
    ) -> dict[str, Any] | None:
        query = f"SELECT {', '.join(columns)} FROM {table} WHERE {where}"  # nosec B608
        with self._lock:
            row = self._db.execute(query, params).fetchone()
        if row is None:
            return None
        return self._row_to_dict(row, columns)

    def _update(
        self,
        table: str,
        key_column: str,
        key: str,
        allowed_columns: tuple[str, ...],
        updates: dict[str, Any],
        expected_status: str | None,
    ) -> int:
        if len(updates) == 0:
            return 0
        if any(column not in allowed_columns for column in updates):
            msg = f"Attempted to update unknown {table} column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = list(updates.values())
        query = f"UPDATE {table} SET {set_clause} WHERE {key_column} = ?"  # nosec B608
        params.append(key)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)

        with self._lock:
            cursor = self._db.execute(query, params)
        return int(cursor.rowcount)

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[None]:
        with self._lock:
            self._db.execute("BEGIN IMMEDIATE")
            try:
                yield
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
            self._db.execute("COMMIT")

    # ------------------------------------------------------------------
    # Gigs
    # ------------------------------------------------------------------

    def insert_gig(self, gig_data: dict[str, Any]) -> None:
        """Insert a new gig row."""
        with self._transaction():
            self._insert("gigs", self._GIG_COLUMNS, gig_data)

    def get_gig(self, gig_id: str) -> dict[str, Any] | None:
        """Fetch a gig by ID."""
        return self._select_one("gigs", self._GIG_COLUMNS, "gig_id = ?", (gig_id,))

    def list_gigs(self, status: str | None, provider_id: str | None) -> list[dict[str, Any]]:
        """List gigs with optional filters, newest first."""
        query = f"SELECT {', '.join(self._GIG_COLUMNS)} FROM gigs"  # nosec B608
        clauses: list[str] = []
        params: list[object] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if provider_id is not None:
            clauses.append("provider_id = ?")
            params.append(provider_id)
        if len(clauses) > 0:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC"

        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [self._row_to_dict(row, self._GIG_COLUMNS) for row in rows]

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    def insert_application(self, application_data: dict[str, Any]) -> None:
        """Insert an application; one row per (gig, applicant)."""
        try:
            with self._transaction():
                self._insert("applications", self._APPLICATION_COLUMNS, application_data)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateApplicationError(
                    "This applicant already has an application for this gig"
                ) from exc
            raise

    def get_application(self, application_id: str) -> dict[str, Any] | None:
        """Fetch an application by ID."""
        return self._select_one(
            "applications",
            self._APPLICATION_COLUMNS,
            "application_id = ?",
            (application_id,),
        )

    def find_application(self, gig_id: str, applicant_id: str) -> dict[str, Any] | None:
        """Fetch the application row of one applicant for one gig."""
        return self._select_one(
            "applications",
            self._APPLICATION_COLUMNS,
            "gig_id = ? AND applicant_id = ?",
            (gig_id, applicant_id),
        )

    def list_applications_for_gig(self, gig_id: str) -> list[dict[str, Any]]:
        """List non-cancelled applications for a gig, oldest first."""
        query = (
            f"SELECT {', '.join(self._APPLICATION_COLUMNS)} FROM applications "  # nosec B608
            "WHERE gig_id = ? AND status != 'cancelled' ORDER BY created_at"
        )
        with self._lock:
            rows = self._db.execute(query, (gig_id,)).fetchall()
        return [self._row_to_dict(row, self._APPLICATION_COLUMNS) for row in rows]

    def update_application(
        self,
        application_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        """Update application columns and return the number of affected rows."""
        return self._update(
            "applications",
            "application_id",
            application_id,
            self._APPLICATION_COLUMNS,
            updates,
            expected_status,
        )

    # ------------------------------------------------------------------
    # Offers
    # ------------------------------------------------------------------

    def insert_offer(self, offer_data: dict[str, Any]) -> None:
        """Insert an offer; at most one per application."""
        try:
            with self._transaction():
                self._insert("offers", self._OFFER_COLUMNS, offer_data)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateOfferError("An offer already exists for this application") from exc
            raise

    def get_offer(self, offer_id: str) -> dict[str, Any] | None:
        """Fetch an offer by ID."""
        return self._select_one("offers", self._OFFER_COLUMNS, "offer_id = ?", (offer_id,))

    def find_offer_for_application(self, application_id: str) -> dict[str, Any] | None:
        """Fetch the offer made for an application, if any."""
        return self._select_one(
            "offers", self._OFFER_COLUMNS, "application_id = ?", (application_id,)
        )

    def get_latest_offer_for_gig(self, gig_id: str) -> dict[str, Any] | None:
        """Fetch the most recent offer made for a gig."""
        return self._select_one(
            "offers",
            self._OFFER_COLUMNS,
            "gig_id = ? ORDER BY created_at DESC LIMIT 1",
            (gig_id,),
        )

    def count_offers_for_gig(self, gig_id: str) -> int:
        """Count offers currently stored for a gig."""
        with self._lock:
            row = self._db.execute(
                "SELECT COUNT(*) FROM offers WHERE gig_id = ?", (gig_id,)
            ).fetchone()
        return int(row[0]) if row is not None else 0

    def decline_offer(self, offer_id: str, application_id: str, now: str) -> None:
        """Reject a pending offer and withdraw its application atomically."""
        with self._transaction():
            cursor = self._db.execute(
                "UPDATE offers SET status = 'rejected', updated_at = ? "
                "WHERE offer_id = ? AND status = 'pending'",
                (now, offer_id),
            )
            if cursor.rowcount == 0:
                raise ConflictError("Offer changed concurrently")
            self._db.execute(
                "UPDATE applications SET status = 'withdrawn', updated_at = ? "
                "WHERE application_id = ?",
                (now, application_id),
            )

    def update_offer(
        self,
        offer_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        """Update offer columns and return the number of affected rows."""
        return self._update(
            "offers", "offer_id", offer_id, self._OFFER_COLUMNS, updates, expected_status
        )

    # ------------------------------------------------------------------
    # Contracts
    # ------------------------------------------------------------------

    def get_contract(self, contract_id: str) -> dict[str, Any] | None:
        """Fetch a contract by ID."""
        return self._select_one(
            "contracts", self._CONTRACT_COLUMNS, "contract_id = ?", (contract_id,)
        )

    def list_contracts(self, party_id: str | None, status: str | None) -> list[dict[str, Any]]:
        """List contracts where party_id is provider or tasker, newest first."""
        query = f"SELECT {', '.join(self._CONTRACT_COLUMNS)} FROM contracts"  # nosec B608
        clauses: list[str] = []
        params: list[object] = []
        if party_id is not None:
            clauses.append("(provider_id = ? OR tasker_id = ?)")
            params.extend([party_id, party_id])
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if len(clauses) > 0:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC"

        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [self._row_to_dict(row, self._CONTRACT_COLUMNS) for row in rows]

    def count_contracts_by_status(self) -> dict[str, int]:
        """Count contracts grouped by status."""
        with self._lock:
            rows = self._db.execute(
                "SELECT status, COUNT(*) FROM contracts GROUP BY status"
            ).fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    def commit_contract_creation(
        self,
        contract_row: dict[str, Any],
        effects: Iterable[Effect],
    ) -> None:
        """
        Insert a new contract and apply its creation effects atomically.

        Raises:
            ConflictError: the gig already has a live contract, or the gig,
                application or offer changed since it was read
        """
        try:
            with self._transaction():
                self._insert("contracts", self._CONTRACT_COLUMNS, contract_row)
                self._apply_effects(effects, contract_row["created_at"], None)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise ConflictError(
                    "This gig already has an active contract",
                    details={"gig_id": contract_row["gig_id"]},
                ) from exc
            raise

    def commit_contract_transition(
        self,
        contract_id: str,
        expected_status: str,
        expected_version: int,
        updates: dict[str, Any],
        effects: Iterable[Effect],
        *,
        payment_update: tuple[str, str, str] | None = None,
    ) -> None:
        """
        Apply a contract transition and its effects in one transaction.

        The contract row is only touched when it still has ``expected_status``
        and ``expected_version``. ``payment_update`` optionally moves a payment
        ``(payment_id, expected_status, new_status)`` in the same transaction.

        Raises:
            ConflictError: the contract or payment changed since it was read
        """
        now = _now_iso()
        with self._transaction():
            if payment_update is not None:
                self._set_payment_status(*payment_update, now)
            if len(updates) > 0:
                if any(column not in self._CONTRACT_COLUMNS for column in updates):
                    msg = "Attempted to update unknown contract column"
                    raise ValueError(msg)
                set_clause = ", ".join(f"{column} = ?" for column in updates)
                params: list[object] = list(updates.values())
                params.extend([contract_id, expected_status, expected_version])
                cursor = self._db.execute(
                    "UPDATE contracts SET " + set_clause  # nosec B608
                    + " WHERE contract_id = ? AND status = ? AND version = ?",
                    params,
                )
                if cursor.rowcount == 0:
                    raise ConflictError(
                        "Contract was modified concurrently",
                        details={"contract_id": contract_id},
                    )
            self._apply_effects(effects, now, (expected_status, expected_version))

    def _apply_effects(
        self,
        effects: Iterable[Effect],
        now: str,
        expected: tuple[str, int] | None,
    ) -> None:
        for effect in effects:
            if isinstance(effect, AssignGig):
                cursor = self._db.execute(
                    "UPDATE gigs SET status = 'assigned', assigned_tasker_id = ?, updated_at = ? "
                    "WHERE gig_id = ? AND status IN ('open', 'unassigned') "
                    "AND assigned_tasker_id IS NULL",
                    (effect.tasker_id, now, effect.gig_id),
                )
                if cursor.rowcount == 0:
                    raise ConflictError("Gig was assigned concurrently")
            elif isinstance(effect, MarkApplicationAccepted):
                cursor = self._db.execute(
                    "UPDATE applications SET status = 'accepted', updated_at = ? "
                    "WHERE application_id = ? AND status = 'pending'",
                    (now, effect.application_id),
                )
                if cursor.rowcount == 0:
                    raise ConflictError("Application changed concurrently")
            elif isinstance(effect, MarkOfferAccepted):
                cursor = self._db.execute(
                    "UPDATE offers SET status = 'accepted', updated_at = ? "
                    "WHERE offer_id = ? AND status = 'pending'",
                    (now, effect.offer_id),
                )
                if cursor.rowcount == 0:
                    raise ConflictError("Offer changed concurrently")
            elif isinstance(effect, ReleaseGig):
                self._db.execute(
                    "UPDATE gigs SET status = 'unassigned', assigned_tasker_id = NULL, "
                    "updated_at = ? WHERE gig_id = ? AND assigned_tasker_id = ?",
                    (now, effect.gig_id, effect.tasker_id),
                )
            elif isinstance(effect, CompleteGig):
                self._db.execute(
                    "UPDATE gigs SET status = 'completed', updated_at = ? WHERE gig_id = ?",
                    (now, effect.gig_id),
                )
            elif isinstance(effect, ResetApplication):
                self._db.execute(
                    "UPDATE applications SET status = 'pending', updated_at = ? "
                    "WHERE application_id = ?",
                    (now, effect.application_id),
                )
            elif isinstance(effect, DeleteOffersForGig):
                self._db.execute("DELETE FROM offers WHERE gig_id = ?", (effect.gig_id,))
            elif isinstance(effect, DeletePaymentForContract):
                self._db.execute(
                    "DELETE FROM payments WHERE contract_id = ?", (effect.contract_id,)
                )
            elif isinstance(effect, DeleteContract):
                if expected is None:
                    msg = "Deleting a contract requires an expected status and version"
                    raise ValueError(msg)
                cursor = self._db.execute(
                    "DELETE FROM contracts WHERE contract_id = ? AND status = ? AND version = ?",
                    (effect.contract_id, expected[0], expected[1]),
                )
                if cursor.rowcount == 0:
                    raise ConflictError(
                        "Contract was modified concurrently",
                        details={"contract_id": effect.contract_id},
                    )
            elif isinstance(effect, Notify):
                self._db.execute(
                    "INSERT INTO notifications "
                    "(notification_id, recipient_id, kind, message, data, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        f"n-{uuid.uuid4()}",
                        effect.recipient_id,
                        effect.kind,
                        effect.message,
                        json.dumps(effect.data, default=str),
                        now,
                    ),
                )
            else:
                msg = f"Unknown effect type: {type(effect).__name__}"
                raise TypeError(msg)

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def insert_payment(
        self,
        payment_data: dict[str, Any],
        *,
        replaces_payment_id: str | None = None,
    ) -> None:
        """
        Insert a payment record, optionally voiding a failed one first.

        Raises:
            DuplicatePaymentError: the contract already has a payment
            ConflictError: the payment being replaced is no longer failed
        """
        try:
            with self._transaction():
                if replaces_payment_id is not None:
                    cursor = self._db.execute(
                        "DELETE FROM payments WHERE payment_id = ? AND status = 'failed'",
                        (replaces_payment_id,),
                    )
                    if cursor.rowcount == 0:
                        raise ConflictError("Payment changed concurrently")
                self._insert("payments", self._PAYMENT_COLUMNS, payment_data)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicatePaymentError("A payment already exists for this contract") from exc
            raise

    def get_payment(self, payment_id: str) -> dict[str, Any] | None:
        """Fetch a payment by ID."""
        return self._select_one(
            "payments", self._PAYMENT_COLUMNS, "payment_id = ?", (payment_id,)
        )

    def get_payment_for_contract(self, contract_id: str) -> dict[str, Any] | None:
        """Fetch the payment attached to a contract."""
        return self._select_one(
            "payments", self._PAYMENT_COLUMNS, "contract_id = ?", (contract_id,)
        )

    def get_payment_status(self, contract_id: str) -> str | None:
        """Return the status of the contract's payment, or None if there is none."""
        payment = self.get_payment_for_contract(contract_id)
        return None if payment is None else str(payment["status"])

    def update_payment_status(self, payment_id: str, expected_status: str, new_status: str) -> None:
        """
        Move a payment to a new processor status.

        Raises:
            ConflictError: the payment is no longer in expected_status
        """
        with self._transaction():
            self._set_payment_status(payment_id, expected_status, new_status, _now_iso())

    def _set_payment_status(
        self,
        payment_id: str,
        expected_status: str,
        new_status: str,
        now: str,
    ) -> None:
        cursor = self._db.execute(
            "UPDATE payments SET status = ?, updated_at = ? WHERE payment_id = ? AND status = ?",
            (new_status, now, payment_id, expected_status),
        )
        if cursor.rowcount == 0:
            raise ConflictError(
                "Payment was modified concurrently",
                details={"payment_id": payment_id},
            )

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def record_notifications(self, notifications: Iterable[Notify]) -> None:
        """Persist notifications that are not part of a contract transition."""
        with self._transaction():
            self._apply_effects(notifications, _now_iso(), None)

    def list_notifications(self, recipient_id: str) -> list[dict[str, Any]]:
        """List notifications for a recipient, newest first."""
        with self._lock:
            rows = self._db.execute(
                "SELECT notification_id, recipient_id, kind, message, data, created_at "
                "FROM notifications WHERE recipient_id = ? ORDER BY created_at DESC",
                (recipient_id,),
            ).fetchall()
        return [
            {
                "notification_id": row["notification_id"],
                "recipient_id": row["recipient_id"],
                "kind": row["kind"],
                "message": row["message"],
                "data": json.loads(row["data"]),
                "created_at": row["created_at"],
            }
            for row in rows
        ]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
