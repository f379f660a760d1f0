# inspection_api/entities/inf_checkin.py
#
# Operator check-ins copied from the plant interface database (CheckIn table).
# Rows are owned by the source; the API reads them and triggers imports.
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError

from inspection_api.ddl_builder import ModelRegistry
from inspection_api.generic.config import EntityConfig, PatternType
from inspection_api.generic.importer import InterfaceEntityService, SourceMapping, add_import_routes
from inspection_api.generic.query_builder import ListQuery, build_conditions, parse_date_value, search_condition
from inspection_api.generic.special import SpecialModel, build_special_router, special_provider
from inspection_api.responses import ErrorKind, ServiceResult, respond

CONFIG = EntityConfig(
    entity_name="inf-checkin",
    table_name="inf_checkin",
    api_path="/api/inf-checkin",
    pattern=PatternType.SPECIAL,
    primary_key=("id",),
    searchable_fields=("username", "oprname", "line_no_id", "gr_code", "group_code", "team"),
    filter_fields=("username", "line_no_id", "work_shift_id", "gr_code", "group_code", "team"),
    date_fields=("created_on", "checked_out", "imported_at"),
    sortable_fields=(
        "id", "created_on", "checked_out", "username", "oprname", "line_no_id",
        "work_shift_id", "group_code", "team", "imported_at",
    ),
    default_sort="created_on",
    default_order="DESC",
    default_limit=50,
    max_limit=200,
    has_status=False,
    activity_field="created_on",
)

SOURCE_MAPPING = SourceMapping(
    source_table="CheckIn",
    columns={
        "id": "Id",
        "line_no_id": "LineNoId",
        "work_shift_id": "WorkShiftId",
        "gr_code": "GrCode",
        "username": "Username",
        "oprname": "Firstname",
        "created_on": "CreatedOn",
        "checked_out": "CheckedOut",
        "date_time_start_work": "DateTimeStartWork",
        "date_time_off_work": "DateTimeOffWork",
        "time_start_work": "TimeStartWork",
        "time_off_work": "TimeOffWork",
        "group_code": "Group",
        "team": "Team",
    },
    date_column="CreatedOn",
    target_date_field="created_on",
)

STATUS_WORKING = "working"
STATUS_CHECKED_OUT = "checked_out"
FILTER_OPTION_FIELDS = ("line_no_id", "work_shift_id", "group_code", "team")
SEARCH_FIELDS = ("username", "oprname", "line_no_id", "group_code", "team")
SEARCH_LIMIT = 100
SEARCH_PARAMS = ("searchTerm", "username", "oprname", "lineId", "groupCode", "team", "dateFrom", "dateTo")


def _parse_day(raw: str) -> date:
    value = parse_date_value(raw)
    return value.date() if isinstance(value, datetime) else value


class InfCheckinModel(SpecialModel):
    def working_condition(self):
        col = self.model.time_off_work
        return or_(col.is_(None), col == "")

    def extra_conditions(self, query: ListQuery) -> List:
        if query.status == STATUS_WORKING:
            return [self.working_condition()]
        if query.status == STATUS_CHECKED_OUT:
            return [~self.working_condition()]
        return []

    def active(self) -> List[Any]:
        stmt = select(self.model).where(self.working_condition()).order_by(self.model.created_on.desc())
        with self._timed("active"):
            return list(self.db.execute(stmt).scalars().all())

    def operators(self) -> List[Dict[str, Any]]:
        M = self.model
        stmt = (
            select(M.username, func.max(M.oprname))
            .where(M.username.is_not(None))
            .group_by(M.username)
            .order_by(M.username)
        )
        return [{"username": u, "oprname": name} for u, name in self.db.execute(stmt).all()]

    def counts_by_line(self) -> List[Dict[str, Any]]:
        M = self.model
        rows = self.db.execute(
            select(M.line_no_id, func.count()).group_by(M.line_no_id).order_by(M.line_no_id)
        ).all()
        return [{"line": line, "count": count} for line, count in rows]

    def search(self, conditions: List, limit: int = SEARCH_LIMIT) -> List[Any]:
        stmt = select(self.model).where(*conditions).order_by(self.model.created_on.desc()).limit(limit)
        with self._timed("search"):
            return list(self.db.execute(stmt).scalars().all())

    def _work_day(self, on: date):
        start = datetime.combine(on, time.min)
        col = self.model.date_time_start_work
        return and_(col >= start, col < start + timedelta(days=1))

    def line_mapping(self, line: str, on: date, shift: str) -> List[Dict[str, Any]]:
        M = self.model
        stmt = (
            select(M.gr_code, M.group_code, M.username)
            .where(M.line_no_id == line, M.work_shift_id == shift, self._work_day(on))
            .order_by(M.gr_code)
        )
        with self._timed("line_mapping"):
            return [dict(row._mapping) for row in self.db.execute(stmt).all()]

    def lines_on(self, on: date) -> List[Dict[str, Any]]:
        col = self.model.line_no_id
        stmt = select(col).where(col.is_not(None), self._work_day(on)).group_by(col).order_by(col)
        with self._timed("lines_on"):
            return [{"line_no_id": line} for line in self.db.execute(stmt).scalars().all()]


class InfCheckinService(InterfaceEntityService):
    model: InfCheckinModel
    source_mapping = SOURCE_MAPPING

    def list_by(self, field_name: str, value: str) -> ServiceResult:
        try:
            rows = self.model.find_by(**{field_name: value.strip()})
        except SQLAlchemyError as e:
            return self._failure("retrieve", e)
        return ServiceResult.ok(self.serialize_many(rows))

    def active(self) -> ServiceResult:
        try:
            rows = self.model.active()
        except SQLAlchemyError as e:
            return self._failure("retrieve", e)
        return ServiceResult.ok(self.serialize_many(rows))

    def operators(self) -> ServiceResult:
        try:
            return ServiceResult.ok(self.model.operators())
        except SQLAlchemyError as e:
            return self._failure("retrieve operators for", e)

    def filter_options(self) -> ServiceResult:
        try:
            options = {name: self.model.distinct_values(name) for name in FILTER_OPTION_FIELDS}
        except SQLAlchemyError as e:
            return self._failure("retrieve filter options for", e)
        options["status"] = [STATUS_WORKING, STATUS_CHECKED_OUT]
        return ServiceResult.ok(options)

    def search(self, params: Dict[str, Optional[str]]) -> ServiceResult:
        query = ListQuery(filters={
            field_name: params[key].strip()
            for key, field_name in (("lineId", "line_no_id"), ("groupCode", "group_code"), ("team", "team"))
            if params.get(key)
        })
        try:
            if params.get("dateFrom"):
                query.date_from["created_on"] = parse_date_value(params["dateFrom"])
            if params.get("dateTo"):
                query.date_to["created_on"] = parse_date_value(params["dateTo"])
        except ValueError as e:
            return ServiceResult.invalid([str(e)])

        M = self.model.model
        conditions = build_conditions(M, self.config, query)
        for cond in (
            search_condition(M, SEARCH_FIELDS, params.get("searchTerm")),
            search_condition(M, ("username",), params.get("username")),
            search_condition(M, ("oprname",), params.get("oprname")),
        ):
            if cond is not None:
                conditions.append(cond)
        try:
            rows = self.model.search(conditions)
        except SQLAlchemyError as e:
            return self._failure("search", e)
        return ServiceResult.ok(self.serialize_many(rows))

    def line_mapping(self, line: Optional[str], raw_date: Optional[str], shift: Optional[str]) -> ServiceResult:
        if not line or not raw_date or not shift:
            return ServiceResult.fail(
                ErrorKind.VALIDATION, "Missing required parameters: line, date, and shift are required"
            )
        try:
            on = _parse_day(raw_date)
        except ValueError as e:
            return ServiceResult.invalid([str(e)])
        try:
            return ServiceResult.ok(self.model.line_mapping(line.strip(), on, shift.strip()))
        except SQLAlchemyError as e:
            return self._failure("retrieve FVI line mapping for", e)

    def lines_on(self, raw_date: Optional[str]) -> ServiceResult:
        if not raw_date:
            return ServiceResult.fail(ErrorKind.VALIDATION, "Missing required parameter: date is required")
        try:
            on = _parse_day(raw_date)
        except ValueError as e:
            return ServiceResult.invalid([str(e)])
        try:
            return ServiceResult.ok(self.model.lines_on(on))
        except SQLAlchemyError as e:
            return self._failure("retrieve FVI lines for", e)

    def statistics(self) -> ServiceResult:
        M = self.model.model
        today = datetime.combine(date.today(), time.min)
        try:
            total = self.model.count()
            working = self.model.count(self.model.working_condition())
            stats = {
                "total": total,
                "working": working,
                "checkedOut": total - working,
                "today": self.model.count(M.created_on >= today, M.created_on < today + timedelta(days=1)),
                "operators": len(self.model.operators()),
                "lastImport": self.model.max_value("imported_at"),
                "byLine": self.model.counts_by_line(),
            }
        except SQLAlchemyError as e:
            return self._failure("retrieve statistics for", e)
        return ServiceResult.ok(stats)


def build_router(registry: ModelRegistry) -> APIRouter:
    provide = special_provider(registry, CONFIG, InfCheckinModel, InfCheckinService)

    def extra_routes(router: APIRouter) -> None:
        @router.get("/user/{username}")
        def list_by_user(username: str, service: InfCheckinService = Depends(provide)):
            return respond(service.list_by("username", username))

        @router.get("/line/{line_id}")
        def list_by_line(line_id: str, service: InfCheckinService = Depends(provide)):
            return respond(service.list_by("line_no_id", line_id))

        @router.get("/active")
        def list_active(service: InfCheckinService = Depends(provide)):
            return respond(service.active())

        @router.get("/operators")
        def list_operators(service: InfCheckinService = Depends(provide)):
            return respond(service.operators())

        @router.get("/filter-options")
        def filter_options(service: InfCheckinService = Depends(provide)):
            return respond(service.filter_options())

        @router.get("/search")
        def search_checkins(request: Request, service: InfCheckinService = Depends(provide)):
            params = request.query_params
            return respond(service.search({key: params.get(key) for key in SEARCH_PARAMS}))

        @router.get("/fvi-line-mapping")
        def fvi_line_mapping(
            line: Optional[str] = Query(None),
            on: Optional[str] = Query(None, alias="date"),
            shift: Optional[str] = Query(None),
            service: InfCheckinService = Depends(provide),
        ):
            return respond(service.line_mapping(line, on, shift))

        @router.get("/fvi-lines-by-date")
        def fvi_lines_by_date(
            on: Optional[str] = Query(None, alias="date"),
            service: InfCheckinService = Depends(provide),
        ):
            return respond(service.lines_on(on))

        add_import_routes(router, provide)

    return build_special_router(registry, CONFIG, provide=provide, extra_routes=extra_routes)
