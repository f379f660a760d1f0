# inspection_api/entities/defectdata.py
#
# Defects found during an inspection, one row per defect type and tray spot.
# The customer-side copy (defectdata_customer) has the same shape, so both
# are built by build_defectdata_router.
from functools import partial
from typing import Any, Dict, Iterable, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from inspection_api.ddl_builder import ModelRegistry
from inspection_api.generic.config import EntityConfig, PatternType
from inspection_api.generic.query_builder import ListQuery, parse_date_value
from inspection_api.generic.special import SpecialModel, SpecialService, build_special_router, special_provider
from inspection_api.responses import ServiceResult, respond


def defectdata_config(entity_name: str, table_name: str, api_path: str, description: str = "") -> EntityConfig:
    return EntityConfig(
        entity_name=entity_name,
        table_name=table_name,
        api_path=api_path,
        pattern=PatternType.SPECIAL,
        primary_key=("id",),
        searchable_fields=("inspection_no", "inspector", "qc_name", "defect_detail"),
        filter_fields=("inspection_no", "station", "inspector", "linevi", "groupvi", "defect_id", "color"),
        date_fields=("defect_date",),
        sortable_fields=("id", "inspection_no", "defect_date", "station", "inspector", "defect_id", "ng_qty"),
        default_sort="defect_date",
        default_order="DESC",
        has_status=False,
        activity_field="defect_date",
        description=description,
    )


CONFIG = defectdata_config(
    "defectdata", "defectdata", "/api/defectdata",
    description="Defects recorded against inspections",
)


class DefectDataModel(SpecialModel):
    def __init__(self, db, model, config, defect_model=None):
        super().__init__(db, model, config)
        self.defect_model = defect_model

    def defect_names(self, ids: Iterable[int]) -> Dict[int, str]:
        ids = sorted({i for i in ids if i is not None})
        if not ids:
            return {}
        D = self.defect_model
        return dict(self.db.execute(select(D.id, D.name).where(D.id.in_(ids))).all())

    def defect_exists(self, defect_id: int) -> bool:
        D = self.defect_model
        return self.db.execute(select(func.count()).select_from(D).where(D.id == defect_id)).scalar_one() > 0


class DefectDataService(SpecialService):
    model: DefectDataModel
    reference_message = "Invalid defect reference"

    def serialize_many(self, rows: List[Any]) -> List[Dict[str, Any]]:
        names = self.model.defect_names(r.defect_id for r in rows)
        out = []
        for r in rows:
            item = super().serialize(r)
            item["defect_name"] = names.get(r.defect_id)
            out.append(item)
        return out

    def serialize(self, obj: Any) -> Dict[str, Any]:
        return self.serialize_many([obj])[0]

    def check_rules(self, data: Dict[str, Any], creating: bool) -> List[str]:
        errors = super().check_rules(data, creating)
        ng_qty = data.get("ng_qty")
        if ng_qty is not None and ng_qty < 0:
            errors.append("ng_qty cannot be negative")
        return errors

    def _check_defect(self, data: Dict[str, Any]) -> List[str]:
        defect_id = data.get("defect_id")
        if defect_id is not None and not self.model.defect_exists(defect_id):
            return [self.reference_message]
        return []

    def prepare_create(self, data):
        return data, self._check_defect(data)

    def prepare_update(self, keys, data):
        return data, self._check_defect(data)

    def list_by(self, field_name: str, value: str) -> ServiceResult:
        try:
            rows = self.model.find_by(**{field_name: value.strip()})
        except SQLAlchemyError as e:
            return self._failure("retrieve", e)
        return ServiceResult.ok(self.serialize_many(rows))

    def for_station(self, station: str, date_from: Optional[str], date_to: Optional[str]) -> ServiceResult:
        query = ListQuery(filters={"station": station.strip()}, limit=self.config.max_limit)
        try:
            if date_from:
                query.date_from["defect_date"] = parse_date_value(date_from)
            if date_to:
                query.date_to["defect_date"] = parse_date_value(date_to)
        except ValueError as e:
            return ServiceResult.invalid([str(e)])
        return self.get_all(query)


def build_defectdata_router(registry: ModelRegistry, config: EntityConfig) -> APIRouter:
    model_cls = partial(DefectDataModel, defect_model=registry.model("defects"))
    provide = special_provider(registry, config, model_cls, DefectDataService)

    def extra_routes(router: APIRouter) -> None:
        @router.get("/inspection/{inspection_no}")
        def list_by_inspection(inspection_no: str, service: DefectDataService = Depends(provide)):
            return respond(service.list_by("inspection_no", inspection_no))

        @router.get("/station/{station}")
        def list_by_station(
            station: str,
            date_from: Optional[str] = Query(None, alias="dateFrom"),
            date_to: Optional[str] = Query(None, alias="dateTo"),
            service: DefectDataService = Depends(provide),
        ):
            return respond(service.for_station(station, date_from, date_to))

        @router.get("/inspector/{inspector}")
        def list_by_inspector(inspector: str, service: DefectDataService = Depends(provide)):
            return respond(service.list_by("inspector", inspector))

    return build_special_router(registry, config, provide=provide, extra_routes=extra_routes)


def build_router(registry: ModelRegistry) -> APIRouter:
    return build_defectdata_router(registry, CONFIG)
