# inspection_api/schema_guard.py
#
# Startup comparison of the live database with qc.meta.json. Additive only:
# missing tables and columns are reported; types, keys and extra columns are not.
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.engine import Engine

from inspection_api.meta_models import ModelMeta


@dataclass
class SchemaDiff:
    checked_tables: int = 0
    missing_tables: List[str] = field(default_factory=list)
    missing_columns: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def has_changes(self) -> bool:
        return bool(self.missing_tables or self.missing_columns)

    def format_plan(self) -> str:
        """The additions needed, one line per table or column."""
        if not self.has_changes:
            return f"All {self.checked_tables} tables match the metadata."
        lines = [f"  create table {name}" for name in sorted(self.missing_tables)]
        for name in sorted(self.missing_columns):
            lines.extend(f"  add column {name}.{col}" for col in self.missing_columns[name])
        return "\n".join(lines)


def diff_schema(engine: Engine, meta: ModelMeta) -> SchemaDiff:
    inspector = sa_inspect(engine)
    live_tables = set(inspector.get_table_names())
    diff = SchemaDiff(checked_tables=len(meta.tables))

    for table in meta.tables:
        if table.tableName not in live_tables:
            diff.missing_tables.append(table.tableName)
            continue
        live_columns = {c["name"] for c in inspector.get_columns(table.tableName)}
        absent = [name for name in table.column_names() if name not in live_columns]
        if absent:
            diff.missing_columns[table.tableName] = absent
    return diff
