# inspection_api/entities/defect.py
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import SQLAlchemyError

from inspection_api.ddl_builder import ModelRegistry
from inspection_api.generic.config import serial_id_config
from inspection_api.generic.controller import service_provider
from inspection_api.generic.query_builder import to_int
from inspection_api.generic.serial_id import SerialIdModel, SerialIdService, build_serial_id_router
from inspection_api.responses import ServiceResult, respond

CONFIG = serial_id_config(
    "defect",
    "defects",
    "/api/defects",
    searchable_fields=("name", "description", "defect_group"),
    filter_fields=("defect_group",),
    sortable_fields=("id", "name", "description", "defect_group", "is_active", "created_at", "updated_at"),
    description="Defect types recorded during sampling inspection",
)


class DefectService(SerialIdService):
    def by_group(self, group: str) -> ServiceResult:
        try:
            rows = self.model.find_by(defect_group=group.strip())
        except SQLAlchemyError as e:
            return self._failure("retrieve", e)
        return ServiceResult.ok(self.serialize_many(rows))


def build_router(registry: ModelRegistry) -> APIRouter:
    provide = service_provider(registry, CONFIG, SerialIdModel, DefectService, client_keys=False)
    router = APIRouter(tags=[CONFIG.entity_name])

    @router.get("/validate/name/{name}")
    def validate_defect_name(
        name: str,
        exclude_id: Optional[str] = Query(None),
        service: DefectService = Depends(provide),
    ):
        excluded = to_int(exclude_id)
        return respond(service.name_available(name, {"id": excluded} if excluded else None))

    @router.get("/group/{group}")
    def list_by_group(group: str, service: DefectService = Depends(provide)):
        return respond(service.by_group(group))

    router.include_router(build_serial_id_router(registry, CONFIG, provide=provide))
    return router
