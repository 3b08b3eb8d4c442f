"""Configuration loading tests for the gig market service."""

from __future__ import annotations

import os

import pytest

from gig_market_service.config import (
    Settings,
    clear_settings_cache,
    get_settings,
)

VALID_CONFIG = """\
service:
  name: "gig-market"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "INFO"
  directory: "data/logs"
database:
  path: "data/gig-market.db"
identity:
  base_url: "http://localhost:8001"
  verify_jws_path: "/agents/verify-jws"
  timeout_seconds: 10
platform:
  agent_id: "a-platform"
  admin_ids:
    - "a-platform"
    - "a-support"
fees:
  fixed_fee_minor_units: 500
  fee_rate: 0.10
  tax_rate: 0.13
  currency: "cad"
request:
  max_body_size: 1048576
"""


def _load(tmp_path, content: str) -> Settings:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(content)
    os.environ["CONFIG_PATH"] = str(config_path)
    clear_settings_cache()
    try:
        return get_settings()
    finally:
        os.environ.pop("CONFIG_PATH", None)


@pytest.mark.unit
def test_config_loads_from_yaml(tmp_path):
    """Valid config loads without error."""
    settings = _load(tmp_path, VALID_CONFIG)

    assert isinstance(settings, Settings)
    assert settings.service.name == "gig-market"
    assert settings.server.port == 8010
    assert settings.database.path == "data/gig-market.db"
    assert settings.identity.base_url == "http://localhost:8001"
    assert settings.platform.agent_id == "a-platform"
    assert settings.platform.admin_ids == ["a-platform", "a-support"]
    assert settings.fees.fixed_fee_minor_units == 500
    assert settings.fees.fee_rate == pytest.approx(0.10)
    assert settings.fees.currency == "cad"


@pytest.mark.unit
def test_config_is_cached(tmp_path):
    """Settings are loaded once until the cache is cleared."""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(VALID_CONFIG)
    os.environ["CONFIG_PATH"] = str(config_path)
    clear_settings_cache()

    first = get_settings()
    config_path.write_text(VALID_CONFIG.replace("port: 8010", "port: 9999"))
    assert get_settings() is first

    clear_settings_cache()
    assert get_settings().server.port == 9999

    os.environ.pop("CONFIG_PATH", None)


@pytest.mark.unit
def test_config_rejects_extra_fields(tmp_path):
    """Extra keys raise ValidationError (extra='forbid')."""
    content = VALID_CONFIG.replace('  currency: "cad"', '  currency: "cad"\n  surcharge: 5')

    with pytest.raises(Exception):  # noqa: B017
        _load(tmp_path, content)


@pytest.mark.unit
def test_config_missing_required_section(tmp_path):
    """Missing required sections raise ValidationError."""
    content = VALID_CONFIG.split("fees:")[0]

    with pytest.raises(Exception):  # noqa: B017
        _load(tmp_path, content)


@pytest.mark.unit
def test_config_rejects_non_mapping(tmp_path):
    """A YAML document that is not a mapping is rejected."""
    with pytest.raises(ValueError, match="Invalid config file"):
        _load(tmp_path, "- just\n- a list\n")
