# inspection_api/entities/iqadata.py
#
# Incoming quality assurance records. Fiscal year/week are always derived
# from date_iqa; bulk loads upsert on the natural key below.
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError

from inspection_api.db import get_actor_id
from inspection_api.ddl_builder import ModelRegistry
from inspection_api.fiscal_week import fiscal_week_number, fiscal_year
from inspection_api.generic.config import EntityConfig, PatternType
from inspection_api.generic.special import SpecialModel, SpecialService, build_special_router, special_provider
from inspection_api.responses import ServiceResult, respond

NATURAL_KEY = ("fy", "ww", "fw", "date_iqa", "model", "lotno", "location", "supplier_do", "age", "ref_code")

CONFIG = EntityConfig(
    entity_name="iqadata",
    table_name="iqadata",
    api_path="/api/iqadata",
    pattern=PatternType.SPECIAL,
    primary_key=("id",),
    searchable_fields=("ww", "model", "supplier", "qc_owner", "item", "lotno", "defect"),
    filter_fields=("fy", "ww", "fw", "model", "lotno", "supplier", "location", "qc_owner", "disposition_code", "age"),
    date_fields=("date_iqa", "receipt_date"),
    default_sort="date_iqa",
    default_order="DESC",
    default_limit=20,
    max_limit=100,
    has_status=False,
)


class IqaDataModel(SpecialModel):
    def delete_all(self) -> int:
        with self._write("delete_all"):
            result = self.db.execute(delete(self.model))
        return result.rowcount or 0


class IqaDataService(SpecialService):
    model: IqaDataModel

    @staticmethod
    def derive_fiscal_fields(data: Dict[str, Any]) -> Dict[str, Any]:
        if data.get("date_iqa"):
            data["fy"] = str(fiscal_year(data["date_iqa"]))
            data["ww"] = f"{fiscal_week_number(data['date_iqa']):02d}"
        return data

    def prepare_create(self, data):
        return self.derive_fiscal_fields(data), []

    def prepare_update(self, keys, data):
        return self.derive_fiscal_fields(data), []

    def distinct(self, field_name: str, fy: Optional[str] = None) -> ServiceResult:
        conditions = []
        if fy:
            conditions.append(self.model.model.fy == fy)
        try:
            values = self.model.distinct_values(field_name, *conditions)
        except SQLAlchemyError as e:
            return self._failure(f"retrieve distinct {field_name} for", e)
        return ServiceResult.ok(values)

    def delete_all(self) -> ServiceResult:
        try:
            deleted = self.model.delete_all()
        except SQLAlchemyError as e:
            return self._failure("delete all", e)
        return ServiceResult.ok({"deleted": deleted}, message=f"Deleted {deleted} iqadata records")


def build_router(registry: ModelRegistry) -> APIRouter:
    provide = special_provider(registry, CONFIG, IqaDataModel, IqaDataService, optional=("fy", "ww"))

    def extra_routes(router: APIRouter) -> None:
        @router.post("/bulk")
        def bulk_upsert_iqadata(
            payload: Any = Body(None),
            actor_id: int = Depends(get_actor_id),
            service: IqaDataService = Depends(provide),
        ):
            records: Optional[List[Any]] = payload.get("records") if isinstance(payload, dict) else payload
            return respond(service.bulk_upsert(records, NATURAL_KEY, actor_id))

        @router.post("/upsert")
        def upsert_iqadata(
            payload: Any = Body(None),
            actor_id: int = Depends(get_actor_id),
            service: IqaDataService = Depends(provide),
        ):
            return respond(service.bulk_upsert([payload] if payload else [], NATURAL_KEY, actor_id))

        @router.get("/distinct-fy")
        def distinct_fiscal_years(service: IqaDataService = Depends(provide)):
            return respond(service.distinct("fy"))

        @router.get("/distinct-ww")
        def distinct_work_weeks(fy: Optional[str] = Query(None), service: IqaDataService = Depends(provide)):
            return respond(service.distinct("ww", fy))

        @router.delete("/all")
        def delete_all_iqadata(service: IqaDataService = Depends(provide)):
            return respond(service.delete_all())

    return build_special_router(registry, CONFIG, provide=provide, extra_routes=extra_routes)
