"""Dictionary logging configuration driven by LEARNPATH_* variables."""

from __future__ import annotations

import pytest

from learnpath.logging_config import build_logging_config


def test_defaults_to_info_and_quiet_sql(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("LEARNPATH_LOG_LEVEL", "LEARNPATH_TELEMETRY_LOG_LEVEL", "LEARNPATH_DEBUG_SQL"):
        monkeypatch.delenv(name, raising=False)

    config = build_logging_config()

    assert config["root"]["level"] == "INFO"
    assert config["loggers"]["learnpath.telemetry"]["level"] == "INFO"
    assert config["loggers"]["sqlalchemy.engine"]["level"] == "WARNING"
    assert config["disable_existing_loggers"] is False


def test_telemetry_level_is_independent(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LEARNPATH_LOG_LEVEL", "debug")
    monkeypatch.setenv("LEARNPATH_TELEMETRY_LOG_LEVEL", "warning")
    monkeypatch.setenv("LEARNPATH_DEBUG_SQL", "true")

    config = build_logging_config()

    assert config["root"]["level"] == "DEBUG"
    assert config["loggers"]["learnpath.telemetry"]["level"] == "WARNING"
    assert config["loggers"]["sqlalchemy.engine"]["level"] == "INFO"
