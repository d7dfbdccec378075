from __future__ import annotations

import logging

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from examforge.db.base import Base
from examforge.db.session import engine as default_engine

import examforge.models  # noqa: F401

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: dict[str, set[str]] = {
    "evolution_runs": {"id", "status", "generations", "best_fitness", "convergence_rate"},
    "fitness_history_entries": {"id", "run_id", "generation", "chromosome_id", "combined_score"},
}


def missing_schema_parts(engine: Engine | None = None) -> tuple[list[str], dict[str, list[str]]]:
    target = engine or default_engine
    missing_tables: list[str] = []
    missing_columns: dict[str, list[str]] = {}
    with target.connect() as connection:
        inspector = inspect(connection)
        table_names = set(inspector.get_table_names())
        for table_name, columns in REQUIRED_COLUMNS.items():
            if table_name not in table_names:
                missing_tables.append(table_name)
                continue
            existing = {item["name"] for item in inspector.get_columns(table_name)}
            missing = sorted(columns - existing)
            if missing:
                missing_columns[table_name] = missing
    return missing_tables, missing_columns


def ensure_runtime_schema(engine: Engine | None = None) -> None:
    target = engine or default_engine
    Base.metadata.create_all(bind=target)
    missing_tables, missing_columns = missing_schema_parts(target)
    if missing_tables or missing_columns:
        logger.warning(
            "Runtime schema incomplete | missing_tables=%s | missing_columns=%s",
            missing_tables,
            missing_columns,
        )
