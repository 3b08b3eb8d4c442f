"""Pytest fixture aliases used by unit test fixture helpers."""

from __future__ import annotations

from typing import Any

import freezegun
import freezegun.config
import pytest

# freezegun's default ignore list holds the bare prefix "gi" (PyGObject), which
# also matches "gig_market_service" and would leave its clocks unfrozen.
freezegun.configure(
    default_ignore_list=[
        "gi." if name == "gi" else name for name in freezegun.config.DEFAULT_IGNORE_LIST
    ]
)


@pytest.fixture(name="_app")
def fixture_app_alias(app: Any) -> Any:
    """Alias for fixtures that only need the app to be running."""
    return app
