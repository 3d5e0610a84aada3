"""Alembic migration runner: URL resolution, readiness wait and upgrade."""

from __future__ import annotations

import types
from pathlib import Path

import pytest
from alembic import command

from scripts import run_migrations as runner

ALEMBIC_INI = str(runner.BACKEND_ROOT / "alembic.ini")


def test_resolve_database_url_prefers_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LEARNPATH_DATABASE_URL", "sqlite://")
    config = runner.get_alembic_config(ALEMBIC_INI)
    assert runner.resolve_database_url(config) == "sqlite://"
    assert config.get_main_option("sqlalchemy.url") == "sqlite://"


def test_resolve_database_url_uses_explicit_url(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv("LEARNPATH_DATABASE_URL", raising=False)
    url = f"sqlite:///{tmp_path / 'explicit.db'}"
    config = runner.get_alembic_config(ALEMBIC_INI, database_url=url)
    assert runner.resolve_database_url(config) == url


def test_resolve_database_url_requires_configuration(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LEARNPATH_DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError):
        runner.resolve_database_url(runner.get_alembic_config(ALEMBIC_INI))


def test_wait_for_database_succeeds_with_sqlite(tmp_path: Path) -> None:
    runner.wait_for_database(f"sqlite:///{tmp_path / 'test.sqlite'}", timeout=2, poll_interval=0.1)


def test_wait_for_database_times_out(monkeypatch: pytest.MonkeyPatch) -> None:
    attempts: list[int] = []

    class DummyEngine:
        def connect(self) -> types.SimpleNamespace:
            attempts.append(1)
            raise runner.OperationalError("SELECT 1", {}, Exception("boom"))

        def dispose(self) -> None:
            pass

    monkeypatch.setattr(runner, "create_engine", lambda *_, **__: DummyEngine())
    with pytest.raises(RuntimeError):
        runner.wait_for_database("postgresql://example", timeout=0, poll_interval=0)
    assert len(attempts) == 1


def test_upgrade_to_head_creates_learning_path_tables(tmp_path: Path) -> None:
    url = f"sqlite:///{tmp_path / 'migrated.db'}"
    config = runner.get_alembic_config(ALEMBIC_INI, database_url=url)

    runner.run_migrations("head", timeout=2, poll_interval=0.1, config=config)
    assert runner.missing_tables(url) == []

    command.downgrade(config, "base")
    assert runner.missing_tables(url) == list(runner.REQUIRED_TABLES)


def test_main_reports_failure_without_database(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LEARNPATH_DATABASE_URL", raising=False)
    assert runner.main(["--config", ALEMBIC_INI, "--timeout", "0"]) == 1


def test_check_mode_reports_schema_state(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    url = f"sqlite:///{tmp_path / 'checked.db'}"
    monkeypatch.setenv("LEARNPATH_DATABASE_URL", url)

    assert runner.main(["--config", ALEMBIC_INI, "--check"]) == 1
    command.upgrade(runner.get_alembic_config(ALEMBIC_INI, database_url=url), "head")
    assert runner.main(["--config", ALEMBIC_INI, "--check"]) == 0
