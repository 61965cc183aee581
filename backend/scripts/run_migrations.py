"""Upgrade the planner schema once the database answers a readiness probe.

Run before starting the API so the plan and milestone tables exist::

    python -m scripts.run_migrations --revision head
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from pathlib import Path
from typing import Optional

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from learning_gps.config import get_settings

LOGGER = logging.getLogger("learning_gps.migrations")
BACKEND_ROOT = Path(__file__).resolve().parent.parent


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Apply planner migrations after the database is reachable.")
    parser.add_argument("--revision", default=os.getenv("LEARNING_GPS_DB_MIGRATION_REVISION", "head"))
    parser.add_argument(
        "--timeout",
        type=int,
        default=int(os.getenv("LEARNING_GPS_DB_MIGRATION_TIMEOUT", "60")),
        help="Seconds to wait for the database before giving up.",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=float(os.getenv("LEARNING_GPS_DB_MIGRATION_POLL_INTERVAL", "3")),
    )
    parser.add_argument("--config", default=str(BACKEND_ROOT / "alembic.ini"))
    return parser.parse_args(argv)


def get_alembic_config(config_path: str) -> Config:
    config = Config(config_path)
    config.set_main_option("script_location", str(BACKEND_ROOT / "alembic"))
    return config


def resolve_database_url(config: Config) -> str:
    """Explicit ``sqlalchemy.url`` wins, then the environment, then the settings file."""
    url = config.get_main_option("sqlalchemy.url")
    if url:
        return url
    url = os.getenv("LEARNING_GPS_DATABASE_URL") or get_settings().database_url
    if not url:
        raise RuntimeError("LEARNING_GPS_DATABASE_URL must be set before running migrations.")
    config.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    return url


def wait_for_database(database_url: str, *, timeout: int, poll_interval: float) -> None:
    deadline = time.monotonic() + timeout
    engine: Optional[Engine] = None
    last_error: Optional[Exception] = None
    attempts = 0
    try:
        engine = create_engine(database_url, future=True, pool_pre_ping=True)
        while True:
            attempts += 1
            try:
                with engine.connect() as connection:
                    connection.execute(text("SELECT 1"))
                LOGGER.info("Database reachable after %d probe(s).", attempts)
                return
            except OperationalError as exc:
                last_error = exc
                LOGGER.warning("Database not ready (probe %d): %s", attempts, exc)
            except SQLAlchemyError as exc:
                last_error = exc
                LOGGER.error("Database probe failed: %s", exc)
                break
            if time.monotonic() + poll_interval > deadline:
                break
            time.sleep(poll_interval)
    finally:
        if engine is not None:
            engine.dispose()
    raise RuntimeError(f"Database did not become ready within {timeout}s.") from last_error


def run_migrations(
    revision: str,
    *,
    timeout: int,
    poll_interval: float,
    config: Optional[Config] = None,
) -> None:
    config = config or get_alembic_config(str(BACKEND_ROOT / "alembic.ini"))
    database_url = resolve_database_url(config)
    wait_for_database(database_url, timeout=timeout, poll_interval=poll_interval)
    LOGGER.info("Upgrading planner schema to %s", revision)
    command.upgrade(config, revision)
    LOGGER.info("Planner schema is at %s.", revision)


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=os.getenv("LEARNING_GPS_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = parse_args(argv)
    try:
        run_migrations(
            args.revision,
            timeout=args.timeout,
            poll_interval=args.poll_interval,
            config=get_alembic_config(args.config),
        )
    except Exception:  # noqa: BLE001
        LOGGER.exception("Migration run failed")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
