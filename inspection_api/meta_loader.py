# inspection_api/meta_loader.py
import json
from pathlib import Path
from typing import Optional

from jsonschema import ValidationError
from jsonschema.validators import Draft7Validator
from pydantic import ValidationError as PydanticValidationError

from inspection_api.meta_models import ModelMeta

SCHEMA_DIR = Path(__file__).resolve().parent / "schema"
DEFAULT_META_PATH = SCHEMA_DIR / "qc.meta.json"
META_SCHEMA_PATH = SCHEMA_DIR / "meta.schema.json"

class InvalidMetaError(Exception):
    pass

def load_meta(path: Optional[str] = None) -> ModelMeta:
    """
    Read the table metadata file, check it against the JSON-Schema in
    schema/meta.schema.json, then parse it into ModelMeta.
    """
    meta_path = Path(path) if path else DEFAULT_META_PATH
    if not meta_path.exists():
        raise InvalidMetaError(f"Meta file not found at {meta_path}")

    try:
        data = json.loads(meta_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise InvalidMetaError(f"Meta file {meta_path} is not valid JSON: {e}") from e

    try:
        schema = json.loads(META_SCHEMA_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidMetaError(f"Failed to read meta schema at {META_SCHEMA_PATH}: {e}") from e

    try:
        Draft7Validator.check_schema(schema)
        Draft7Validator(schema).validate(data)
    except ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise InvalidMetaError(f"Meta validation failed at {where}: {e.message}") from e

    try:
        meta = ModelMeta.model_validate(data)
    except PydanticValidationError as e:
        raise InvalidMetaError(f"Meta could not be parsed: {e}") from e

    _check_references(meta)
    return meta

def _check_references(meta: ModelMeta) -> None:
    """Keys, foreign keys and indexes must name declared columns and tables."""
    tables = set(meta.table_names())
    for t in meta.tables:
        cols = set(t.column_names())
        for pk in t.primaryKey:
            if pk not in cols:
                raise InvalidMetaError(f"{t.tableName}: primary key column '{pk}' is not declared")
        for fk in t.foreignKeys:
            if fk.columnName not in cols:
                raise InvalidMetaError(f"{t.tableName}: foreign key column '{fk.columnName}' is not declared")
            if fk.referencedTable not in tables:
                raise InvalidMetaError(
                    f"{t.tableName}.{fk.columnName} references unknown table '{fk.referencedTable}'"
                )
        for idx in t.indexes:
            unknown = [c for c in idx.columns if c not in cols]
            if unknown:
                raise InvalidMetaError(f"{t.tableName}: index {idx.name} uses unknown columns {unknown}")
