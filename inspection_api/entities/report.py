# inspection_api/entities/report.py
#
# Read-only reports over inspection data. The LAR (lot acceptance rate)
# chart groups inspections by fiscal year and work week; lots with no
# judgment yet count as inspected but neither passed nor failed.
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, Query
from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError

from inspection_api.ddl_builder import ModelRegistry
from inspection_api.fiscal_week import MAX_WEEK
from inspection_api.generic.config import EntityConfig, PatternType
from inspection_api.generic.special import SpecialModel, SpecialService, special_provider
from inspection_api.responses import ServiceResult, respond

CONFIG = EntityConfig(
    entity_name="report",
    table_name="inspectiondata",
    api_path="/api/report",
    pattern=PatternType.SPECIAL,
    primary_key=("id",),
    has_status=False,
    activity_field="inspection_date",
    description="Lot acceptance reports built from inspection data",
)

WeekKey = Tuple[int, int]


class ReportModel(SpecialModel):
    def weekly_judgments(self, model_name: Optional[str] = None) -> List[Dict[str, Any]]:
        M = self.model
        stmt = select(
            M.fy,
            M.ww,
            func.count().label("total_inspection"),
            func.count(func.distinct(M.lotno)).label("total_lot"),
            func.sum(case((M.judgment == True, 1), else_=0)).label("total_pass_lot"),  # noqa: E712
            func.sum(case((M.judgment == False, 1), else_=0)).label("total_fail_lot"),  # noqa: E712
        )
        if model_name:
            stmt = stmt.where(M.model == model_name)
        stmt = stmt.group_by(M.fy, M.ww).order_by(M.fy, M.ww)
        with self._timed("weekly_judgments"):
            return [dict(row._mapping) for row in self.db.execute(stmt).all()]


def _week_bound(year: Optional[str], week: Optional[str], default_week: int) -> Optional[WeekKey]:
    if not year:
        return None
    return int(year), int(week) if week else default_week


def lar_percent(passed: int, failed: int) -> float:
    judged = passed + failed
    return round(passed * 100.0 / judged, 2) if judged else 0.0


class ReportService(SpecialService):
    model: ReportModel

    def distinct(self, field_name: str, fy: Optional[str] = None) -> ServiceResult:
        conditions = [self.model.model.fy == fy] if fy else []
        try:
            return ServiceResult.ok(self.model.distinct_values(field_name, *conditions))
        except SQLAlchemyError as e:
            return self._failure(f"retrieve {field_name} values for", e)

    def lar_chart(self, year_from: Optional[str] = None, ww_from: Optional[str] = None,
                  year_to: Optional[str] = None, ww_to: Optional[str] = None,
                  model_name: Optional[str] = None) -> ServiceResult:
        try:
            lower = _week_bound(year_from, ww_from, 1)
            upper = _week_bound(year_to, ww_to, MAX_WEEK)
        except ValueError:
            return ServiceResult.invalid(["yearFrom, wwFrom, yearTo and wwTo must be numbers"])
        try:
            rows = self.model.weekly_judgments(model_name)
        except SQLAlchemyError as e:
            return self._failure("build LAR chart for", e)

        out = []
        for row in rows:
            if not (row["fy"] or "").isdigit() or not (row["ww"] or "").isdigit():
                continue
            key = (int(row["fy"]), int(row["ww"]))
            if (lower and key < lower) or (upper and key > upper):
                continue
            passed, failed = int(row["total_pass_lot"] or 0), int(row["total_fail_lot"] or 0)
            out.append({**row, "total_pass_lot": passed, "total_fail_lot": failed, "lar": lar_percent(passed, failed)})
        return ServiceResult.ok(out)


def build_router(registry: ModelRegistry) -> APIRouter:
    provide = special_provider(registry, CONFIG, ReportModel, ReportService)
    router = APIRouter(tags=[CONFIG.entity_name])

    @router.get("/health")
    def health(service: ReportService = Depends(provide)):
        return respond(service.health())

    @router.get("/lar-chart")
    def lar_chart(
        year_from: Optional[str] = Query(None, alias="yearFrom"),
        ww_from: Optional[str] = Query(None, alias="wwFrom"),
        year_to: Optional[str] = Query(None, alias="yearTo"),
        ww_to: Optional[str] = Query(None, alias="wwTo"),
        model: Optional[str] = Query(None),
        service: ReportService = Depends(provide),
    ):
        return respond(service.lar_chart(year_from, ww_from, year_to, ww_to, model))

    @router.get("/models")
    def list_models(service: ReportService = Depends(provide)):
        return respond(service.distinct("model"))

    @router.get("/fiscal-years")
    def list_fiscal_years(service: ReportService = Depends(provide)):
        return respond(service.distinct("fy"))

    @router.get("/work-weeks")
    def list_work_weeks(fy: Optional[str] = Query(None), service: ReportService = Depends(provide)):
        return respond(service.distinct("ww", fy))

    return router
