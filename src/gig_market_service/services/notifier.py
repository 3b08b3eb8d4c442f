"""Event emission hook: persists and logs user-facing notifications."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from gig_market_service.logging import get_logger
from gig_market_service.services.contract_lifecycle import Notify

if TYPE_CHECKING:
    from collections.abc import Iterable

    from gig_market_service.services.contract_lifecycle import Effect
    from gig_market_service.services.marketplace_store import MarketplaceStore


class Notifier:
    """
    Emits Notify effects.

    Notifications produced by a contract transition are written by the store
    inside the transition's own transaction; ``published`` only logs them.
    Notifications raised outside a transition go through ``emit``.
    """

    def __init__(self, store: MarketplaceStore) -> None:
        self._store = store
        self._logger = get_logger(__name__)

    def published(self, effects: Iterable[Effect]) -> None:
        """Log the Notify effects of an already committed transition."""
        for effect in effects:
            if isinstance(effect, Notify):
                self._log(effect)

    def emit(self, notification: Notify) -> None:
        """Persist and log a standalone notification."""
        self._store.record_notifications([notification])
        self._log(notification)

    def list_notifications(self, recipient_id: str) -> list[dict[str, Any]]:
        return self._store.list_notifications(recipient_id)

    def _log(self, notification: Notify) -> None:
        self._logger.info(
            "Notification emitted",
            extra={
                "recipient_id": notification.recipient_id,
                "kind": notification.kind,
                "data": notification.data,
            },
        )
