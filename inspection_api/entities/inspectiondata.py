# inspection_api/entities/inspectiondata.py
#
# One sampling inspection of a lot at a station (OQA, SIV...).
# Inspection numbers look like OQA260702-150001:
#   station, fiscal year (2 digits), calendar month, work week, '-', day,
#   then a 4-digit running number that restarts for every prefix.
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from inspection_api.ddl_builder import ModelRegistry
from inspection_api.fiscal_week import fiscal_year
from inspection_api.generic.config import EntityConfig, PatternType
from inspection_api.generic.special import SpecialModel, SpecialService, build_special_router, special_provider
from inspection_api.responses import ErrorKind, ServiceResult, respond

CONFIG = EntityConfig(
    entity_name="inspectiondata",
    table_name="inspectiondata",
    api_path="/api/inspectiondata",
    pattern=PatternType.SPECIAL,
    primary_key=("id",),
    searchable_fields=("inspection_no", "lotno", "model", "itemno", "version"),
    filter_fields=("station", "fy", "ww", "shift", "lotno", "model", "partsite", "fvilineno", "mclineno"),
    date_fields=("inspection_date",),
    sortable_fields=(
        "id", "station", "inspection_no", "inspection_date", "fy", "ww", "lotno", "model", "round", "created_at",
    ),
    default_sort="inspection_date",
    default_order="DESC",
    has_status=False,
    activity_field="inspection_date",
    description="Sampling inspection records per lot and station",
)

RUNNING_DIGITS = 4


def inspection_prefix(station: str, on: date, ww: str) -> str:
    fy = fiscal_year(on)
    return f"{station}{fy % 100:02d}{on.month:02d}{int(ww):02d}-{on.day:02d}"


def next_running_number(numbers: List[str]) -> int:
    running = [int(n[-RUNNING_DIGITS:]) for n in numbers if n[-RUNNING_DIGITS:].isdigit()]
    return max(running, default=0) + 1


class InspectionDataModel(SpecialModel):
    def numbers_with_prefix(self, prefix: str) -> List[str]:
        col = self.model.inspection_no
        with self._timed("numbers_with_prefix"):
            return list(self.db.execute(select(col).where(col.startswith(prefix, autoescape=True))).scalars().all())

    def judgment_counts(self, station: str) -> Dict[Any, int]:
        M = self.model
        rows = self.db.execute(
            select(M.judgment, func.count()).where(M.station == station).group_by(M.judgment)
        ).all()
        return {judgment: count for judgment, count in rows}


class InspectionDataService(SpecialService):
    model: InspectionDataModel

    @property
    def label(self) -> str:
        return "Inspection data"

    def conflict_message(self, data: Dict[str, Any]) -> str:
        if data.get("inspection_no"):
            return f"Inspection number '{data['inspection_no']}' already exists"
        return super().conflict_message(data)

    def sampling_round(self, station: Optional[str], lotno: Optional[str]) -> ServiceResult:
        if not station or not lotno:
            return ServiceResult.fail(ErrorKind.VALIDATION, "Station and lotno are required")
        M = self.model.model
        try:
            current = self.model.max_value("round", M.station == station, M.lotno == lotno) or 0
        except SQLAlchemyError as e:
            return self._failure("retrieve sampling round for", e)
        return ServiceResult.ok(
            {"nextRound": current + 1, "currentRound": current},
            message="Sampling round retrieved successfully",
        )

    def generate_inspection_number(self, station: Optional[str], raw_date: Optional[str],
                                   ww: Optional[str]) -> ServiceResult:
        if not station or not raw_date or not ww:
            return ServiceResult.fail(ErrorKind.VALIDATION, "Station, date, and ww are required")
        try:
            on = date.fromisoformat(raw_date.strip()[:10])
            prefix = inspection_prefix(station.strip(), on, ww.strip())
        except ValueError:
            return ServiceResult.fail(ErrorKind.VALIDATION, "Invalid date or ww provided")
        try:
            running = next_running_number(self.model.numbers_with_prefix(prefix))
        except SQLAlchemyError as e:
            return self._failure("generate inspection number for", e)
        return ServiceResult.ok(
            {"inspectionNo": f"{prefix}{running:0{RUNNING_DIGITS}d}"},
            message="Inspection number generated successfully",
        )

    def station_stats(self, station: str) -> ServiceResult:
        try:
            counts = self.model.judgment_counts(station.strip())
        except SQLAlchemyError as e:
            return self._failure("retrieve statistics for", e)
        return ServiceResult.ok({
            "station": station.strip(),
            "total": sum(counts.values()),
            "passed": counts.get(True, 0),
            "failed": counts.get(False, 0),
            "pending": counts.get(None, 0),
        })


def build_router(registry: ModelRegistry) -> APIRouter:
    provide = special_provider(registry, CONFIG, InspectionDataModel, InspectionDataService)

    def extra_routes(router: APIRouter) -> None:
        @router.get("/sampling-round")
        def sampling_round(
            station: Optional[str] = Query(None),
            lotno: Optional[str] = Query(None),
            service: InspectionDataService = Depends(provide),
        ):
            return respond(service.sampling_round(station, lotno))

        @router.get("/generate-inspection-number")
        def generate_inspection_number(
            station: Optional[str] = Query(None),
            on: Optional[str] = Query(None, alias="date"),
            ww: Optional[str] = Query(None),
            service: InspectionDataService = Depends(provide),
        ):
            return respond(service.generate_inspection_number(station, on, ww))

        @router.get("/stats/{station}")
        def station_stats(station: str, service: InspectionDataService = Depends(provide)):
            return respond(service.station_stats(station))

    return build_special_router(registry, CONFIG, provide=provide, extra_routes=extra_routes)
