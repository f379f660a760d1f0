# inspection_api/entities/inf_lotinput.py
#
# Lot inputs copied from the plant interface database (Input table).
# A lot is IN_PROGRESS until the source records finish_on.
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError

from inspection_api.ddl_builder import ModelRegistry
from inspection_api.external_source import SourceConnection, get_source
from inspection_api.generic.config import EntityConfig, PatternType
from inspection_api.generic.importer import InterfaceEntityService, SourceMapping, add_import_routes
from inspection_api.generic.query_builder import ListQuery
from inspection_api.generic.special import SpecialModel, build_special_router, special_provider
from inspection_api.responses import ServiceResult, respond

CONFIG = EntityConfig(
    entity_name="inf-lotinput",
    table_name="inf_lotinput",
    api_path="/api/inf-lotinput",
    pattern=PatternType.SPECIAL,
    primary_key=("id",),
    searchable_fields=("lotno", "itemno", "model", "partsite", "lineno"),
    filter_fields=("lotno", "partsite", "lineno", "itemno", "model", "version"),
    date_fields=("inputdate", "finish_on", "imported_at"),
    sortable_fields=(
        "id", "lotno", "partsite", "lineno", "itemno", "model", "version",
        "inputdate", "finish_on", "imported_at",
    ),
    default_sort="inputdate",
    default_order="DESC",
    default_limit=50,
    max_limit=200,
    has_status=False,
    activity_field="inputdate",
)

LINE_PREFIX_LENGTH = 3


def line_from_lot(values: Dict[str, Any]) -> Any:
    lotno = (values.get("lotno") or "").strip()
    return lotno[:LINE_PREFIX_LENGTH] or None


SOURCE_MAPPING = SourceMapping(
    source_table="Input",
    columns={
        "id": "Id",
        "lotno": "LotNo",
        "partsite": "PartSite",
        "itemno": "ItemNo",
        "model": "Model",
        "version": "Version",
        "inputdate": "InputDate",
        "finish_on": "FinishOn",
    },
    date_column="InputDate",
    target_date_field="inputdate",
    derived={"lineno": line_from_lot},
)

STATUS_IN_PROGRESS = "IN_PROGRESS"
STATUS_FINISHED = "FINISHED"
FILTER_OPTION_FIELDS = ("partsite", "lineno", "model", "version")


class InfLotInputModel(SpecialModel):
    def extra_conditions(self, query: ListQuery) -> List:
        status = (query.status or "").upper()
        if status == STATUS_IN_PROGRESS:
            return [self.model.finish_on.is_(None)]
        if status == STATUS_FINISHED:
            return [self.model.finish_on.is_not(None)]
        return []

    def count_since(self, since: datetime) -> int:
        return self.count(self.model.inputdate >= since)


class InfLotInputService(InterfaceEntityService):
    model: InfLotInputModel
    source_mapping = SOURCE_MAPPING

    def prepare_create(self, data):
        if data.get("lotno") and not data.get("lineno"):
            data["lineno"] = line_from_lot(data)
        return data, []

    def prepare_update(self, keys, data):
        # a new lot number moves the row to that lot's line unless lineno is sent too
        if data.get("lotno") and "lineno" not in data:
            data["lineno"] = line_from_lot(data)
        return data, []

    def by_lot(self, lotno: str) -> ServiceResult:
        try:
            rows = self.model.find_by(lotno=lotno.strip())
        except SQLAlchemyError as e:
            return self._failure("retrieve", e)
        if not rows:
            return ServiceResult.not_found(f"Lot {lotno.strip()} not found")
        return ServiceResult.ok(self.serialize_many(rows))

    def filter_options(self) -> ServiceResult:
        try:
            options = {name: self.model.distinct_values(name) for name in FILTER_OPTION_FIELDS}
        except SQLAlchemyError as e:
            return self._failure("retrieve filter options for", e)
        options["status"] = [STATUS_IN_PROGRESS, STATUS_FINISHED]
        return ServiceResult.ok(options)

    def statistics(self) -> ServiceResult:
        today = date.today()
        M = self.model.model
        try:
            total = self.model.count()
            finished = self.model.count(M.finish_on.is_not(None))
            stats = {
                "total": total,
                "inProgress": total - finished,
                "finished": finished,
                "today": self.model.count_since(datetime.combine(today, time.min)),
                "thisMonth": self.model.count_since(datetime.combine(today.replace(day=1), time.min)),
                "thisYear": self.model.count_since(datetime.combine(today.replace(month=1, day=1), time.min)),
                "lastImport": self.model.max_value("imported_at"),
            }
        except SQLAlchemyError as e:
            return self._failure("retrieve statistics for", e)
        return ServiceResult.ok(stats)


def build_router(registry: ModelRegistry) -> APIRouter:
    provide = special_provider(registry, CONFIG, InfLotInputModel, InfLotInputService)

    def extra_routes(router: APIRouter) -> None:
        @router.get("/lot/{lotno}")
        def get_by_lot(lotno: str, service: InfLotInputService = Depends(provide)):
            return respond(service.by_lot(lotno))

        @router.get("/filter-options")
        def filter_options(service: InfLotInputService = Depends(provide)):
            return respond(service.filter_options())

        @router.post("/sync/today-finished")
        def sync_today(
            source: Optional[SourceConnection] = Depends(get_source),
            service: InfLotInputService = Depends(provide),
        ):
            return respond(service.import_today(source))

        @router.post("/connection/test")
        def test_connection(
            source: Optional[SourceConnection] = Depends(get_source),
            service: InfLotInputService = Depends(provide),
        ):
            return respond(service.test_connection(source))

        @router.post("/connection/refresh")
        def refresh_connection(
            source: Optional[SourceConnection] = Depends(get_source),
            service: InfLotInputService = Depends(provide),
        ):
            return respond(service.test_connection(source, refresh=True))

        add_import_routes(router, provide)

    return build_special_router(registry, CONFIG, provide=provide, extra_routes=extra_routes)
