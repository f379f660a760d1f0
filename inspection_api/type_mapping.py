# inspection_api/type_mapping.py
#
# Metadata data types -> SQLAlchemy column types. Only BLOB depends on the
# dialect: defect images are BYTEA on PostgreSQL and VARBINARY(max) on MSSQL.
from __future__ import annotations
from typing import Callable, Dict

from sqlalchemy import types
from sqlalchemy.dialects import mssql, postgresql

DEFAULT_VARCHAR_LENGTH = 255
DEFAULT_DECIMAL_PRECISION = 18
DEFAULT_DECIMAL_SCALE = 6

_PLAIN_TYPES: Dict[str, Callable[[], types.TypeEngine]] = {
    # Integer, not BigInteger, so SQLite makes SERIAL keys ROWID aliases
    "SERIAL": types.Integer,
    "INTEGER": types.Integer,
    "BIGINT": types.BigInteger,
    "TEXT": types.Text,
    "BOOLEAN": types.Boolean,
    "DATE": types.Date,
    "TIMESTAMP": types.DateTime,
}


def _binary_type(dialect: str) -> types.TypeEngine:
    if dialect.startswith("postgres"):
        return postgresql.BYTEA()
    if dialect.startswith("mssql"):
        return mssql.VARBINARY("max")
    return types.LargeBinary()


def sqlalchemy_type(
    data_type: str,
    *,
    length: int | None = None,
    precision: int | None = None,
    scale: int | None = None,
    dialect: str = "generic",
) -> types.TypeEngine:
    """`dialect` is an engine dialect name (sqlite, postgresql, mssql) or 'postgres'/'generic'."""
    dt = (data_type or "").upper()
    if dt in _PLAIN_TYPES:
        return _PLAIN_TYPES[dt]()
    if dt == "VARCHAR":
        return types.String(length or DEFAULT_VARCHAR_LENGTH)
    if dt == "DECIMAL":
        return types.Numeric(
            precision or DEFAULT_DECIMAL_PRECISION,
            DEFAULT_DECIMAL_SCALE if scale is None else scale,
        )
    if dt == "BLOB":
        return _binary_type((dialect or "generic").lower())
    raise ValueError(f"Unsupported data type '{data_type}'")
