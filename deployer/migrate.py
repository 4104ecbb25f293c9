"""Schema migration: applies every SQL file under ``schema/`` in name order.

Statements use ``IF NOT EXISTS`` so running the migration on every start
is safe.
"""

from __future__ import annotations

import logging
from pathlib import Path

from deployer.clickhouse_writer import ClickHouseWriter

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).parent / "schema"


def schema_files() -> list[Path]:
    return sorted(SCHEMA_DIR.glob("*.sql"))


def run_migration(writer: ClickHouseWriter | None = None) -> None:
    files = schema_files()
    if not files:
        raise FileNotFoundError(f"no schema files found in {SCHEMA_DIR}")

    writer = writer or ClickHouseWriter.get_instance()
    for path in files:
        writer.run_migration(path.read_text())
        logger.info("migration_applied", extra={"file": path.name})
