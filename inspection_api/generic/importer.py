# inspection_api/generic/importer.py
#
# Pulls rows from the external interface database and upserts them by
# natural primary key. One import is one transaction on the target side.
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from fastapi import APIRouter, Body, Depends
from sqlalchemy import and_, column, func, or_, select, table, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inspection_api.db import Settings, get_settings
from inspection_api.external_source import SourceConnection, get_source
from inspection_api.generic.query_builder import DateValue, parse_date_value
from inspection_api.generic.special import SpecialService
from inspection_api.responses import ErrorKind, ServiceResult, respond

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceMapping:
    """
    columns:  target column -> source column
    derived:  target column -> function of the mapped target values
    """
    source_table: str
    columns: Mapping[str, str]
    date_column: str
    target_date_field: str
    derived: Mapping[str, Callable[[Dict[str, Any]], Any]] = field(default_factory=dict)


@dataclass
class ImportOutcome:
    fetched: int = 0
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "fetched": self.fetched,
            "imported": self.imported,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


class SourceUnavailableError(Exception):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class InterfaceImporter:
    def __init__(self, db: Session, model: type, mapping: SourceMapping, source: SourceConnection):
        self.db = db
        self.model = model
        self.mapping = mapping
        self.source = source
        self.key_name = list(model.__table__.primary_key.columns)[0].name

    def _source_table(self):
        target_cols = self.model.__table__.c
        cols = [column(src, target_cols[target].type) for target, src in self.mapping.columns.items()]
        return table(self.mapping.source_table, *cols, schema=self.source.schema)

    def last_marker(self) -> Optional[Tuple[datetime, Any]]:
        """(newest imported date, highest key at that date), or None before the first import."""
        date_col = getattr(self.model, self.mapping.target_date_field)
        key_col = getattr(self.model, self.key_name)
        newest = self.db.execute(select(func.max(date_col))).scalar()
        if newest is None:
            return None
        key = self.db.execute(select(func.max(key_col)).where(date_col == newest)).scalar()
        return newest, key

    def fetch_rows(
        self,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        after: Optional[Tuple[datetime, Any]] = None,
    ) -> List[Mapping[str, Any]]:
        src = self._source_table()
        date_col = src.c[self.mapping.date_column]
        key_col = src.c[self.mapping.columns[self.key_name]]
        stmt = select(*src.c)
        if after is not None:
            after_date, after_key = after
            stmt = stmt.where(or_(date_col > after_date, and_(date_col == after_date, key_col > after_key)))
        if date_from is not None:
            stmt = stmt.where(date_col >= date_from)
        if date_to is not None:
            stmt = stmt.where(date_col <= date_to)
        # key breaks date ties so a batch boundary never splits rows sharing a timestamp
        stmt = stmt.order_by(date_col, key_col).limit(self.source.batch_limit)
        try:
            with self.source.engine.connect() as conn:
                return list(conn.execute(stmt).mappings().all())
        except SQLAlchemyError as e:
            raise SourceUnavailableError(str(e)) from e

    def _target_values(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        values = {target: row[src] for target, src in self.mapping.columns.items()}
        for target, derive in self.mapping.derived.items():
            values[target] = derive(values)
        return values

    def upsert(self, rows: List[Mapping[str, Any]]) -> ImportOutcome:
        outcome = ImportOutcome(fetched=len(rows))
        stamped_at = _utcnow()
        seen: Dict[Any, Any] = {}
        try:
            for index, row in enumerate(rows):
                values = self._target_values(row)
                key = values.get(self.key_name)
                if key is None or (isinstance(key, str) and not key.strip()):
                    outcome.skipped += 1
                    outcome.errors.append(f"Row {index + 1}: missing {self.key_name}")
                    continue
                values["imported_at"] = stamped_at
                obj = seen.get(key) or self.db.get(self.model, key)
                if obj is None:
                    obj = self.model(**values)
                    self.db.add(obj)
                    outcome.imported += 1
                else:
                    for name, value in values.items():
                        setattr(obj, name, value)
                    if key not in seen:
                        outcome.updated += 1
                seen[key] = obj
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return outcome

    def run(self, date_from: Optional[datetime] = None, date_to: Optional[datetime] = None) -> ImportOutcome:
        """Explicit range when given; otherwise continue after the newest imported row."""
        after = None
        if date_from is None and date_to is None:
            after = self.last_marker()
        rows = self.fetch_rows(date_from=date_from, date_to=date_to, after=after)
        outcome = self.upsert(rows)
        logger.info(
            "Imported %s from %s: fetched=%d imported=%d updated=%d skipped=%d",
            self.model.__tablename__, self.mapping.source_table,
            outcome.fetched, outcome.imported, outcome.updated, outcome.skipped,
        )
        return outcome


def _range_start(value: DateValue) -> datetime:
    return value if isinstance(value, datetime) else datetime.combine(value, time.min)


def _range_end(value: DateValue) -> datetime:
    return value if isinstance(value, datetime) else datetime.combine(value, time.max)


class InterfaceEntityService(SpecialService):
    """SpecialService plus import and sync for tables fed by the interface database."""

    source_mapping: SourceMapping

    def _importer(self, source: SourceConnection) -> InterfaceImporter:
        return InterfaceImporter(self.model.db, self.model.model, self.source_mapping, source)

    def import_from_source(
        self,
        source: Optional[SourceConnection],
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> ServiceResult:
        if source is None:
            return ServiceResult.fail(ErrorKind.UNAVAILABLE, "External source is not configured")
        try:
            start = _range_start(parse_date_value(date_from)) if date_from else None
            end = _range_end(parse_date_value(date_to)) if date_to else None
        except ValueError as e:
            return ServiceResult.invalid([str(e)])
        if start and end and start > end:
            return ServiceResult.invalid(["date_from must not be after date_to"])

        try:
            outcome = self._importer(source).run(start, end)
        except SourceUnavailableError as e:
            logger.error("External source query failed for %s: %s", self.config.entity_name, e)
            return ServiceResult.fail(ErrorKind.UNAVAILABLE, "External source is unavailable")
        except SQLAlchemyError as e:
            return self._failure("import", e)

        if outcome.fetched == 0:
            return ServiceResult.ok(outcome.as_dict(), message="No records found to import")
        return ServiceResult.ok(
            outcome.as_dict(),
            message=f"Imported {outcome.imported} new and updated {outcome.updated} records",
        )

    def import_today(self, source: Optional[SourceConnection]) -> ServiceResult:
        today = date.today().isoformat()
        return self.import_from_source(source, today, today)

    def test_connection(self, source: Optional[SourceConnection], refresh: bool = False) -> ServiceResult:
        """`refresh` drops pooled connections first, so the check opens a new one."""
        if source is None:
            return ServiceResult.fail(ErrorKind.UNAVAILABLE, "External source is not configured")
        if refresh:
            source.engine.dispose()
        try:
            with source.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error("External source connection check failed: %s", e)
            return ServiceResult.fail(ErrorKind.UNAVAILABLE, "External source is unavailable")
        action = "refreshed" if refresh else "tested"
        return ServiceResult.ok({"connected": True}, message=f"External source connection {action} successfully")

    def sync_status(self, interval_minutes: Optional[int]) -> ServiceResult:
        try:
            last_import = self.model.max_value("imported_at")
        except SQLAlchemyError as e:
            return self._failure("read sync status of", e)
        status: Dict[str, Any] = {
            "lastImport": last_import,
            "nextImport": None,
            "intervalMinutes": interval_minutes,
            "shouldImport": False,
        }
        if not interval_minutes:
            return ServiceResult.ok(status, message="Sync interval not configured")
        if last_import is None:
            status["shouldImport"] = True
        else:
            next_import = last_import + timedelta(minutes=interval_minutes)
            status["nextImport"] = next_import
            status["shouldImport"] = _utcnow() >= next_import
        return ServiceResult.ok(status)

    def sync(self, source: Optional[SourceConnection], interval_minutes: Optional[int]) -> ServiceResult:
        status = self.sync_status(interval_minutes)
        if not status.success or not status.data["shouldImport"]:
            return status
        result = self.import_from_source(source)
        if result.success:
            result.data = {**status.data, "import": result.data, "shouldImport": False}
        return result


def add_import_routes(router: APIRouter, provide: Callable) -> None:
    """POST /import, /import/range and /import/today plus GET|POST /sync for an InterfaceEntityService."""

    @router.post("/import")
    def import_records(
        payload: Any = Body(None),
        source: Optional[SourceConnection] = Depends(get_source),
        service: InterfaceEntityService = Depends(provide),
    ):
        payload = payload if isinstance(payload, dict) else {}
        return respond(service.import_from_source(source, payload.get("date_from"), payload.get("date_to")))

    @router.post("/import/range")
    def import_range(
        payload: Any = Body(None),
        source: Optional[SourceConnection] = Depends(get_source),
        service: InterfaceEntityService = Depends(provide),
    ):
        payload = payload if isinstance(payload, dict) else {}
        date_from, date_to = payload.get("dateFrom"), payload.get("dateTo")
        if not date_from or not date_to:
            return respond(ServiceResult.fail(
                ErrorKind.VALIDATION, "Missing required parameters: dateFrom and dateTo are required",
            ))
        return respond(service.import_from_source(source, date_from, date_to))

    @router.post("/import/today")
    def import_today(
        source: Optional[SourceConnection] = Depends(get_source),
        service: InterfaceEntityService = Depends(provide),
    ):
        return respond(service.import_today(source))

    @router.get("/sync")
    def sync_status(
        settings: Settings = Depends(get_settings),
        service: InterfaceEntityService = Depends(provide),
    ):
        return respond(service.sync_status(settings.SOURCE_SYNC_MINUTES))

    @router.post("/sync")
    def sync(
        source: Optional[SourceConnection] = Depends(get_source),
        settings: Settings = Depends(get_settings),
        service: InterfaceEntityService = Depends(provide),
    ):
        return respond(service.sync(source, settings.SOURCE_SYNC_MINUTES))
