from __future__ import annotations

import pytest
from pydantic import ValidationError

from inventoria.config import Settings
from inventoria.logging_config import build_logging_config


def test_settings_reject_relative_sqlite_urls() -> None:
    with pytest.raises(ValidationError):
        Settings(database_url="sqlite+aiosqlite:inventory.db")


def test_settings_bound_expiry_threshold() -> None:
    assert Settings(expires_soon_threshold=30).expires_soon_threshold == 30
    with pytest.raises(ValidationError):
        Settings(expires_soon_threshold=0)
    with pytest.raises(ValidationError):
        Settings(expires_soon_threshold=400)


def test_logging_config_follows_settings() -> None:
    config = build_logging_config(Settings(log_level="debug", echo_sql=True))

    assert config["loggers"]["inventoria"]["level"] == "DEBUG"
    assert config["handlers"]["console"]["level"] == "DEBUG"
    assert config["loggers"]["sqlalchemy.engine"]["level"] == "INFO"
