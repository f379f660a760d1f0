# inspection_api/generic/base_model.py
from __future__ import annotations
import logging
import time
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import func, inspect as sa_inspect, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inspection_api.generic.config import EntityConfig
from inspection_api.generic.payloads import apply_audit_on_create, apply_audit_on_update
from inspection_api.generic.query_builder import (
    ListQuery,
    PageWindow,
    build_conditions,
    clamp_pagination,
    resolve_sort,
)

logger = logging.getLogger(__name__)

RECENT_ACTIVITY_DAYS = 7


class GenericEntityModel:
    """
    Data access for one entity table. All writes commit on success and
    roll back before re-raising on any error.
    """

    def __init__(self, db: Session, model: type, config: EntityConfig):
        self.db = db
        self.model = model
        self.config = config

    # ------------------------------------------------------------------ helpers

    @contextmanager
    def _timed(self, operation: str):
        started = time.perf_counter()
        try:
            yield
        finally:
            logger.debug(
                "%s.%s took %.1fms", self.config.table_name, operation, (time.perf_counter() - started) * 1000
            )

    @contextmanager
    def _write(self, operation: str):
        with self._timed(operation):
            try:
                yield
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

    def key_conditions(self, keys: Mapping[str, Any]) -> List:
        return [getattr(self.model, k) == keys[k] for k in self.config.primary_key]

    def _has_status(self) -> bool:
        return self.config.has_status and hasattr(self.model, "is_active")

    # -------------------------------------------------------------------- reads

    def count(self, *conditions) -> int:
        stmt = select(func.count()).select_from(self.model)
        if conditions:
            stmt = stmt.where(*conditions)
        with self._timed("count"):
            return self.db.execute(stmt).scalar_one()

    def list_page(self, conditions: List, window: PageWindow, order_by: List) -> Tuple[List[Any], int]:
        stmt = select(self.model).where(*conditions)
        with self._timed("list"):
            total = self.db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
            rows = self.db.execute(
                stmt.order_by(*order_by).limit(window.limit).offset(window.offset)
            ).scalars().all()
        return list(rows), total

    def get_all(self, query: ListQuery) -> Tuple[List[Any], int, PageWindow]:
        window = clamp_pagination(query.page, query.limit, self.config.default_limit, self.config.max_limit)
        conditions = build_conditions(self.model, self.config, query) + self.extra_conditions(query)
        order_by = resolve_sort(self.model, self.config, query.sort_by, query.sort_order)
        rows, total = self.list_page(conditions, window, order_by)
        return rows, total, window

    def extra_conditions(self, query: ListQuery) -> List:
        """Entity-specific predicates on top of the configured filters."""
        return []

    def get_by_key(self, keys: Mapping[str, Any]) -> Optional[Any]:
        with self._timed("get_by_key"):
            return self.db.execute(
                select(self.model).where(*self.key_conditions(keys))
            ).scalars().first()

    def exists(self, keys: Mapping[str, Any]) -> bool:
        return self.count(*self.key_conditions(keys)) > 0

    def find_by(self, **values) -> List[Any]:
        stmt = select(self.model).where(*[getattr(self.model, k) == v for k, v in values.items()])
        stmt = stmt.order_by(*resolve_sort(self.model, self.config, None, None))
        with self._timed("find_by"):
            return list(self.db.execute(stmt).scalars().all())

    def distinct_values(self, field_name: str, *conditions) -> List[Any]:
        col = getattr(self.model, field_name)
        stmt = select(col).where(col.is_not(None), *conditions).distinct().order_by(col)
        with self._timed("distinct"):
            return list(self.db.execute(stmt).scalars().all())

    def max_value(self, field_name: str, *conditions) -> Any:
        stmt = select(func.max(getattr(self.model, field_name)))
        if conditions:
            stmt = stmt.where(*conditions)
        with self._timed("max"):
            return self.db.execute(stmt).scalar()

    # ------------------------------------------------------------------- writes

    def create(self, data: Dict[str, Any], actor_id: int = 0) -> Any:
        obj = self.model(**data)
        apply_audit_on_create(obj, actor_id)
        with self._write("create"):
            self.db.add(obj)
            self.db.flush()
            self.db.refresh(obj)
        return obj

    def update(self, keys: Mapping[str, Any], data: Dict[str, Any], actor_id: int = 0) -> Optional[Any]:
        obj = self.get_by_key(keys)
        if obj is None:
            return None
        with self._write("update"):
            for k, v in data.items():
                if hasattr(obj, k):
                    setattr(obj, k, v)
            apply_audit_on_update(obj, actor_id)
            self.db.flush()
            self.db.refresh(obj)
        return obj

    def delete(self, keys: Mapping[str, Any]) -> bool:
        obj = self.get_by_key(keys)
        if obj is None:
            return False
        with self._write("delete"):
            self.db.delete(obj)
        return True

    def find_one(self, values: Mapping[str, Any]) -> Optional[Any]:
        conds = []
        for name, value in values.items():
            col = getattr(self.model, name)
            conds.append(col.is_(None) if value is None else col == value)
        return self.db.execute(select(self.model).where(*conds).limit(1)).scalars().first()

    def upsert_many(self, records: List[Dict[str, Any]], key_fields, actor_id: int = 0) -> Tuple[int, int]:
        """
        Insert or update each record, matched on `key_fields`, in one transaction.
        Returns (inserted, updated). Any failure rolls back the whole batch.
        """
        inserted = updated = 0
        pending: Dict[Tuple, Any] = {}
        with self._write("upsert_many"):
            for data in records:
                key = tuple(data.get(k) for k in key_fields)
                obj = pending.get(key)
                if obj is None:
                    obj = self.find_one({k: data.get(k) for k in key_fields})
                    if obj is not None:
                        updated += 1
                if obj is None:
                    obj = self.model(**data)
                    apply_audit_on_create(obj, actor_id)
                    self.db.add(obj)
                    inserted += 1
                else:
                    for k, v in data.items():
                        setattr(obj, k, v)
                    apply_audit_on_update(obj, actor_id)
                pending[key] = obj
        return inserted, updated

    def toggle_status(self, keys: Mapping[str, Any], actor_id: int = 0) -> Optional[Any]:
        obj = self.get_by_key(keys)
        if obj is None:
            return None
        with self._write("toggle_status"):
            obj.is_active = not bool(obj.is_active)
            apply_audit_on_update(obj, actor_id)
            self.db.flush()
            self.db.refresh(obj)
        return obj

    # --------------------------------------------------------------- reporting

    def table_exists(self) -> bool:
        bind = self.db.get_bind()
        return sa_inspect(bind).has_table(self.config.table_name)

    def _recent_condition(self, days: int = RECENT_ACTIVITY_DAYS):
        field = self.config.activity_field
        if not field or not hasattr(self.model, field):
            return None
        since = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=days)
        return getattr(self.model, field) >= since

    def statistics(self) -> Dict[str, Any]:
        total = self.count()
        stats: Dict[str, Any] = {"total": total}
        if self._has_status():
            active = self.count(self.model.is_active == True)  # noqa: E712
            stats["active"] = active
            stats["inactive"] = total - active
        recent = self._recent_condition()
        if recent is not None:
            stats["recent"] = self.count(recent)
        return stats

    def health(self) -> Dict[str, Any]:
        """
        Never raises: a dead connection is reported as 'unhealthy'.
        'warning' means the table is reachable but empty or fully inactive.
        """
        checked_at = datetime.now(timezone.utc).isoformat()
        try:
            self.db.execute(text("SELECT 1"))
            checks = {"tableExists": self.table_exists()}
            if not checks["tableExists"]:
                return {
                    "status": "unhealthy",
                    "entity": self.config.entity_name,
                    "checks": checks,
                    "message": f"Table {self.config.table_name} does not exist",
                    "timestamp": checked_at,
                }
            stats = self.statistics()
            checks["hasData"] = stats["total"] > 0
            if "active" in stats:
                checks["hasActiveRecords"] = stats["active"] > 0
            if "recent" in stats:
                checks["recentActivity"] = stats["recent"] > 0
        except SQLAlchemyError as e:
            logger.error("Health check failed for %s: %s", self.config.entity_name, e)
            self.db.rollback()
            return {
                "status": "unhealthy",
                "entity": self.config.entity_name,
                "message": "Database connection failed",
                "timestamp": checked_at,
            }

        issues = []
        if not checks["hasData"]:
            issues.append("No records found")
        elif checks.get("hasActiveRecords") is False:
            issues.append("No active records")
        return {
            "status": "warning" if issues else "healthy",
            "entity": self.config.entity_name,
            "table": self.config.table_name,
            "checks": checks,
            "statistics": stats,
            "issues": issues,
            "timestamp": checked_at,
        }
