# pyright: reportInvalidTypeForm=false
# inspection_api/generic/payloads.py
#
# Request payload models built from the table meta:
# - CREATE/UPDATE bodies never accept server-managed fields (audit columns, SERIAL ids)
# - client-supplied keys (codes, part numbers) are accepted on CREATE only
# - UPDATE is always partial
from __future__ import annotations
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model

from inspection_api.meta_models import Table, Column as MetaCol

SERVER_MANAGED_FIELDS: Set[str] = {
    "created_at", "updated_at", "created_by", "updated_by",
    "createdAt", "updatedAt", "createdBy", "updatedBy",
}

_PAYLOAD_CONFIG = ConfigDict(extra="ignore", str_strip_whitespace=True)


def _sqltype_to_pytype(dt: str) -> Any:
    dt = (dt or "").upper()
    if dt in ("VARCHAR", "TEXT"):
        return str
    if dt in ("SERIAL", "INTEGER", "BIGINT"):
        return int
    if dt == "DECIMAL":
        return Decimal
    if dt == "BOOLEAN":
        return bool
    if dt == "DATE":
        return date
    if dt == "TIMESTAMP":
        return datetime
    if dt == "BLOB":
        return bytes
    return Any


def _is_required_for_create(col: MetaCol) -> bool:
    if col.isNullable:
        return False
    if col.defaultValue is not None:
        return False
    return True


def _field(col: MetaCol, required: bool) -> Tuple[Any, Any]:
    pytype = _sqltype_to_pytype(col.data_type)
    constraints: Dict[str, Any] = {}
    if pytype is str:
        if col.length:
            constraints["max_length"] = col.length
        if required:
            constraints["min_length"] = 1
    if required:
        return pytype, Field(..., **constraints)
    return Optional[pytype], Field(None, **constraints)


@dataclass
class PayloadModels:
    create: Type[BaseModel]
    update: Type[BaseModel]


def build_payload_models(
    table: Table,
    client_keys: bool = False,
    exclude: Iterable[str] = (),
    optional: Iterable[str] = (),
) -> PayloadModels:
    """
    Returns (CreateModel, UpdateModel) for one table.

    - CreateModel: required iff non-nullable & no default; keys only when client_keys
    - UpdateModel: every editable column optional, keys excluded
    - `optional` relaxes columns the service fills in itself
    """
    pk = set(table.primaryKey)
    skip = set(exclude) | SERVER_MANAGED_FIELDS
    relaxed = set(optional)

    create_fields: Dict[str, Tuple[Any, Any]] = {}
    update_fields: Dict[str, Tuple[Any, Any]] = {}

    for col in table.columns:
        name = col.columnName
        if name in skip or col.is_serial:
            continue
        if name in pk:
            if client_keys:
                create_fields[name] = _field(col, required=True)
            continue
        create_fields[name] = _field(col, required=_is_required_for_create(col) and name not in relaxed)
        update_fields[name] = _field(col, required=False)

    base = "".join(part.capitalize() for part in table.tableName.split("_"))
    CreateModel = create_model(f"{base}Create", __config__=_PAYLOAD_CONFIG, **create_fields)
    UpdateModel = create_model(f"{base}Update", __config__=_PAYLOAD_CONFIG, **update_fields)
    return PayloadModels(create=CreateModel, update=UpdateModel)


def format_validation_errors(exc: ValidationError) -> List[str]:
    errors = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
        errors.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return errors


def validate_payload(model_cls: Type[BaseModel], data: Any) -> Tuple[Dict[str, Any], List[str]]:
    """Returns (clean_data, errors); clean_data only holds fields the client sent."""
    if not isinstance(data, dict):
        return {}, ["Request body must be a JSON object"]
    try:
        obj = model_cls.model_validate(data)
    except ValidationError as e:
        return {}, format_validation_errors(e)
    return obj.model_dump(exclude_unset=True), []


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def apply_audit_on_create(obj: Any, actor_id: int) -> None:
    ts = _now()
    for name in ("created_at", "updated_at"):
        if hasattr(obj, name) and getattr(obj, name, None) is None:
            setattr(obj, name, ts)
    for name in ("created_by", "updated_by"):
        if hasattr(obj, name):
            setattr(obj, name, actor_id)


def apply_audit_on_update(obj: Any, actor_id: int) -> None:
    if hasattr(obj, "updated_at"):
        setattr(obj, "updated_at", _now())
    if hasattr(obj, "updated_by"):
        setattr(obj, "updated_by", actor_id)


def serialize_row(obj, exclude: Iterable[str] = ()) -> Dict[str, Any]:
    skip = set(exclude)
    return {col.name: getattr(obj, col.name) for col in obj.__table__.columns if col.name not in skip}
