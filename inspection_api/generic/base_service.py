# inspection_api/generic/base_service.py
from __future__ import annotations
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from inspection_api.generic.base_model import GenericEntityModel
from inspection_api.generic.config import PatternType
from inspection_api.generic.payloads import PayloadModels, serialize_row, validate_payload
from inspection_api.generic.query_builder import ListQuery, coerce_for_column
from inspection_api.responses import ErrorKind, Pagination, ServiceResult

logger = logging.getLogger(__name__)


def integrity_error_kind(exc: IntegrityError) -> str:
    """'unique', 'foreign_key' or 'other' for PostgreSQL and SQLite drivers."""
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code == "23505":
        return "unique"
    if code == "23503":
        return "foreign_key"
    msg = str(orig or exc).lower()
    if "unique" in msg or "duplicate" in msg:
        return "unique"
    if "foreign key" in msg:
        return "foreign_key"
    return "other"


class GenericEntityService:
    """
    Validation and result wrapping around a GenericEntityModel.
    Every public method returns a ServiceResult and never raises for
    database problems; those are logged and reported as failures.
    """

    reference_message = "Invalid reference"

    def __init__(self, model: GenericEntityModel, payloads: PayloadModels):
        self.model = model
        self.config = model.config
        self.payloads = payloads

    @property
    def label(self) -> str:
        name = self.config.display_name
        return name[:1].upper() + name[1:]

    # ------------------------------------------------------------ hooks

    def serialize(self, obj: Any) -> Dict[str, Any]:
        return serialize_row(obj, exclude=self.config.hidden_fields)

    def serialize_many(self, rows: List[Any]) -> List[Dict[str, Any]]:
        return [self.serialize(r) for r in rows]

    def check_rules(self, data: Dict[str, Any], creating: bool) -> List[str]:
        errors = []
        if creating:
            for name in self.config.required_fields:
                value = data.get(name)
                if value is None or (isinstance(value, str) and not value.strip()):
                    errors.append(f"{name} is required")
        return errors

    def prepare_create(self, data: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
        """Last chance to derive or resolve fields after validation."""
        return data, []

    def prepare_update(self, keys: Mapping[str, Any], data: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
        return data, []

    def has_conflict(self, data: Dict[str, Any], exclude_keys: Optional[Mapping[str, Any]] = None) -> bool:
        """Duplicate check run before writing; unique indexes still back it up."""
        return False

    def conflict_message(self, data: Dict[str, Any]) -> str:
        return f"{self.label} already exists"

    # ---------------------------------------------------------- parsing

    def parse_keys(self, raw: Mapping[str, Any]) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
        keys: Dict[str, Any] = {}
        for name in self.config.primary_key:
            value = raw.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                return None, f"{name} is required"
            try:
                value = coerce_for_column(self.model.model, name, value.strip() if isinstance(value, str) else value)
            except ValueError:
                return None, f"Invalid {name} provided"
            keys[name] = value
        return keys, None

    def validate(self, data: Any, creating: bool) -> Tuple[Dict[str, Any], List[str]]:
        schema = self.payloads.create if creating else self.payloads.update
        clean, errors = validate_payload(schema, data)
        if errors:
            return clean, errors
        return clean, self.check_rules(clean, creating)

    # ---------------------------------------------------------- failures

    def _failure(self, action: str, exc: Exception, data: Optional[Dict[str, Any]] = None) -> ServiceResult:
        if isinstance(exc, IntegrityError):
            kind = integrity_error_kind(exc)
            logger.warning("Integrity error on %s %s: %s", action, self.config.entity_name, exc.orig)
            if kind == "unique":
                return ServiceResult.fail(ErrorKind.VALIDATION, self.conflict_message(data or {}))
            if kind == "foreign_key":
                return ServiceResult.fail(ErrorKind.VALIDATION, self.reference_message)
        logger.error("Failed to %s %s: %s", action, self.config.entity_name, exc)
        return ServiceResult.fail(ErrorKind.FAILURE, f"Failed to {action} {self.config.display_name}")

    # -------------------------------------------------------------- CRUD

    def get_all(self, query: ListQuery) -> ServiceResult:
        try:
            rows, total, window = self.model.get_all(query)
        except ValueError as e:
            return ServiceResult.invalid([str(e)])
        except SQLAlchemyError as e:
            return self._failure("retrieve", e)
        return ServiceResult.ok(
            self.serialize_many(rows),
            pagination=Pagination.build(window.page, window.limit, total),
        )

    def get_by_key(self, keys: Mapping[str, Any]) -> ServiceResult:
        try:
            obj = self.model.get_by_key(keys)
        except SQLAlchemyError as e:
            return self._failure("retrieve", e)
        if obj is None:
            return ServiceResult.not_found(f"{self.label} not found")
        return ServiceResult.ok(self.serialize(obj))

    def create(self, data: Any, actor_id: int = 0) -> ServiceResult:
        clean, errors = self.validate(data, creating=True)
        if errors:
            return ServiceResult.invalid(errors)
        try:
            clean, errors = self.prepare_create(clean)
            if errors:
                return ServiceResult.invalid(errors)
            if self.config.pattern is not PatternType.SERIAL_ID and all(k in clean for k in self.config.primary_key):
                keys = {k: clean[k] for k in self.config.primary_key}
                if self.model.exists(keys):
                    return ServiceResult.fail(ErrorKind.VALIDATION, self.conflict_message(clean))
            if self.has_conflict(clean):
                return ServiceResult.fail(ErrorKind.VALIDATION, self.conflict_message(clean))
            obj = self.model.create(clean, actor_id)
        except SQLAlchemyError as e:
            return self._failure("create", e, clean)
        logger.info("Created %s %s", self.config.entity_name, {k: getattr(obj, k) for k in self.config.primary_key})
        return ServiceResult.ok(self.serialize(obj), message=f"{self.label} created successfully")

    def update(self, keys: Mapping[str, Any], data: Any, actor_id: int = 0) -> ServiceResult:
        clean, errors = self.validate(data, creating=False)
        if errors:
            return ServiceResult.invalid(errors)
        if not clean:
            return ServiceResult.invalid(["No fields to update"])
        try:
            clean, errors = self.prepare_update(keys, clean)
            if errors:
                return ServiceResult.invalid(errors)
            if self.has_conflict(clean, exclude_keys=keys):
                return ServiceResult.fail(ErrorKind.VALIDATION, self.conflict_message(clean))
            obj = self.model.update(keys, clean, actor_id)
        except SQLAlchemyError as e:
            return self._failure("update", e, clean)
        if obj is None:
            return ServiceResult.not_found(f"{self.label} not found")
        return ServiceResult.ok(self.serialize(obj), message=f"{self.label} updated successfully")

    def bulk_upsert(self, records: Any, key_fields, actor_id: int = 0) -> ServiceResult:
        """
        Validate every record first; only a fully valid batch is written,
        in a single transaction.
        """
        if not isinstance(records, list) or not records:
            return ServiceResult.invalid(["No records provided"])

        cleaned: List[Dict[str, Any]] = []
        errors: List[str] = []
        try:
            for index, record in enumerate(records, start=1):
                clean, row_errors = self.validate(record, creating=True)
                if not row_errors:
                    clean, row_errors = self.prepare_create(clean)
                if row_errors:
                    errors.extend(f"Row {index}: {e}" for e in row_errors)
                else:
                    cleaned.append(clean)
            if errors:
                return ServiceResult.invalid(errors)
            inserted, updated = self.model.upsert_many(cleaned, key_fields, actor_id)
        except SQLAlchemyError as e:
            return self._failure("import", e)

        logger.info("Bulk upsert into %s: inserted=%d updated=%d", self.config.table_name, inserted, updated)
        return ServiceResult.ok(
            {"total": len(cleaned), "inserted": inserted, "updated": updated},
            message=f"Processed {len(cleaned)} {self.config.display_name} records",
        )

    def delete(self, keys: Mapping[str, Any]) -> ServiceResult:
        try:
            deleted = self.model.delete(keys)
        except SQLAlchemyError as e:
            return self._failure("delete", e)
        if not deleted:
            return ServiceResult.not_found(f"{self.label} not found")
        logger.info("Deleted %s %s", self.config.entity_name, dict(keys))
        return ServiceResult.ok(dict(keys), message=f"{self.label} deleted successfully")

    def toggle_status(self, keys: Mapping[str, Any], actor_id: int = 0) -> ServiceResult:
        if not self.config.has_status:
            return ServiceResult.fail(ErrorKind.VALIDATION, f"{self.label} has no status field")
        try:
            obj = self.model.toggle_status(keys, actor_id)
        except SQLAlchemyError as e:
            return self._failure("update status of", e)
        if obj is None:
            return ServiceResult.not_found(f"{self.label} not found")
        state = "activated" if obj.is_active else "deactivated"
        return ServiceResult.ok(self.serialize(obj), message=f"{self.label} {state} successfully")

    # --------------------------------------------------------- reporting

    def health(self) -> ServiceResult:
        report = self.model.health()
        if report["status"] == "unhealthy":
            return ServiceResult.fail(ErrorKind.UNAVAILABLE, report.get("message", "Unhealthy"), data=report)
        return ServiceResult.ok(report)

    def statistics(self) -> ServiceResult:
        try:
            stats = self.model.statistics()
        except SQLAlchemyError as e:
            return self._failure("retrieve statistics for", e)
        return ServiceResult.ok(stats)
