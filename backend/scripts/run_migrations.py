"""Apply the learning-path Alembic migrations once the database answers.

Run before the API process starts so the schedule and progress tables exist.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from pathlib import Path
from typing import List, Optional

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError

LOGGER = logging.getLogger("learnpath.migrations")
DEFAULT_TIMEOUT = int(os.getenv("LEARNPATH_DB_MIGRATION_TIMEOUT", "60"))
DEFAULT_POLL_INTERVAL = float(os.getenv("LEARNPATH_DB_MIGRATION_POLL_INTERVAL", "3"))
BACKEND_ROOT = Path(__file__).resolve().parent.parent
URL_PLACEHOLDER = "%(LEARNPATH_DATABASE_URL)s"
REQUIRED_TABLES = (
    "content_items",
    "path_templates",
    "learning_paths",
    "path_slots",
    "learner_path_progress",
    "completion_events",
)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Upgrade the learning-path schema.")
    parser.add_argument("--revision", default=os.getenv("LEARNPATH_DB_MIGRATION_REVISION", "head"))
    parser.add_argument("--timeout", type=int, default=DEFAULT_TIMEOUT)
    parser.add_argument("--poll-interval", type=float, default=DEFAULT_POLL_INTERVAL)
    parser.add_argument("--config", default=str(BACKEND_ROOT / "alembic.ini"))
    parser.add_argument("--check", action="store_true", help="Only report missing tables; do not upgrade.")
    return parser.parse_args(argv)


def get_alembic_config(config_path: str, database_url: Optional[str] = None) -> Config:
    config = Config(config_path)
    config.set_main_option("script_location", str(BACKEND_ROOT / "alembic"))
    if database_url:
        config.set_main_option("sqlalchemy.url", database_url)
    return config


def resolve_database_url(config: Config) -> str:
    url = config.get_main_option("sqlalchemy.url")
    if url and url != URL_PLACEHOLDER:
        return url
    env_url = os.getenv("LEARNPATH_DATABASE_URL")
    if not env_url:
        raise RuntimeError("LEARNPATH_DATABASE_URL must be set before running migrations.")
    config.set_main_option("sqlalchemy.url", env_url)
    return env_url


def wait_for_database(database_url: str, *, timeout: int, poll_interval: float) -> None:
    deadline = time.time() + timeout
    engine: Optional[Engine] = None
    last_error: Optional[Exception] = None

    try:
        engine = create_engine(database_url, future=True, pool_pre_ping=True)
        while True:
            try:
                with engine.connect() as connection:
                    connection.execute(text("SELECT 1"))
                LOGGER.info("Database is reachable.")
                return
            except OperationalError as exc:
                last_error = exc
                LOGGER.warning("Database not ready yet: %s", exc)
            except SQLAlchemyError as exc:
                last_error = exc
                LOGGER.error("Database error during readiness check: %s", exc)
                break
            if time.time() >= deadline:
                break
            time.sleep(poll_interval)
    finally:
        if engine is not None:
            engine.dispose()

    raise RuntimeError("Database did not become ready in time.") from last_error


def missing_tables(database_url: str) -> List[str]:
    engine = create_engine(database_url, future=True)
    try:
        present = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    return [table for table in REQUIRED_TABLES if table not in present]


def run_migrations(
    revision: str,
    *,
    timeout: int,
    poll_interval: float,
    config: Optional[Config] = None,
) -> None:
    config = config or get_alembic_config(str(BACKEND_ROOT / "alembic.ini"))
    database_url = resolve_database_url(config)
    LOGGER.info("Upgrading learning-path schema to %s", revision)
    wait_for_database(database_url, timeout=timeout, poll_interval=poll_interval)
    command.upgrade(config, revision)
    if revision == "head":
        absent = missing_tables(database_url)
        if absent:
            raise RuntimeError(f"Schema is missing tables after upgrade: {', '.join(absent)}")
    LOGGER.info("Migrations complete.")


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=os.getenv("LEARNPATH_DB_MIGRATION_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = parse_args(argv)
    try:
        config = get_alembic_config(args.config)
        if args.check:
            absent = missing_tables(resolve_database_url(config))
            if absent:
                LOGGER.error("Learning-path schema is missing tables: %s", ", ".join(absent))
                return 1
            LOGGER.info("Learning-path schema is complete.")
            return 0
        run_migrations(args.revision, timeout=args.timeout, poll_interval=args.poll_interval, config=config)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Migration run failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
