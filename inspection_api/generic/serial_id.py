# inspection_api/generic/serial_id.py
#
# SERIAL_ID pattern: integer id, unique name, optional description, is_active.
# The name/status helpers here are shared with the VARCHAR_CODE pattern.
from __future__ import annotations
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from inspection_api.ddl_builder import ModelRegistry
from inspection_api.generic.base_model import GenericEntityModel
from inspection_api.generic.base_service import GenericEntityService
from inspection_api.generic.config import EntityConfig
from inspection_api.generic.controller import add_collection_routes, add_item_routes, service_provider
from inspection_api.generic.query_builder import search_condition, to_bool, to_int
from inspection_api.responses import ServiceResult, respond

PATTERN_RESULT_LIMIT = 50


class NamedEntityModel(GenericEntityModel):
    def find_by_name(self, name: str, exclude_keys: Optional[Mapping[str, Any]] = None) -> Optional[Any]:
        stmt = select(self.model).where(func.lower(self.model.name) == name.strip().lower())
        if exclude_keys:
            for k, v in exclude_keys.items():
                stmt = stmt.where(getattr(self.model, k) != v)
        with self._timed("find_by_name"):
            return self.db.execute(stmt).scalars().first()

    def search_by_pattern(self, pattern: str, limit: int = PATTERN_RESULT_LIMIT) -> List[Any]:
        cond = search_condition(self.model, self.config.searchable_fields, pattern)
        stmt = select(self.model)
        if cond is not None:
            stmt = stmt.where(cond)
        stmt = stmt.order_by(getattr(self.model, self.config.sort_field)).limit(limit)
        with self._timed("search_by_pattern"):
            return list(self.db.execute(stmt).scalars().all())


class NamedEntityService(GenericEntityService):
    model: NamedEntityModel

    def get_by_name(self, name: Optional[str]) -> ServiceResult:
        if not name or not name.strip():
            return ServiceResult.invalid(["name is required"])
        try:
            obj = self.model.find_by_name(name)
        except SQLAlchemyError as e:
            return self._failure("retrieve", e)
        if obj is None:
            return ServiceResult.not_found(f"{self.label} not found")
        return ServiceResult.ok(self.serialize(obj))

    def filter_by_status(self, status: Optional[str]) -> ServiceResult:
        active = to_bool(status)
        if active is None:
            return ServiceResult.invalid(["status must be 'active' or 'inactive'"])
        try:
            rows = self.model.find_by(is_active=active)
        except SQLAlchemyError as e:
            return self._failure("retrieve", e)
        return ServiceResult.ok(self.serialize_many(rows))

    def search_by_pattern(self, pattern: Optional[str]) -> ServiceResult:
        if not pattern or not pattern.strip():
            return ServiceResult.invalid(["pattern is required"])
        try:
            rows = self.model.search_by_pattern(pattern)
        except SQLAlchemyError as e:
            return self._failure("search", e)
        return ServiceResult.ok(self.serialize_many(rows))

    def name_available(self, name: str, exclude_keys: Optional[Mapping[str, Any]] = None) -> ServiceResult:
        if not name or not name.strip():
            return ServiceResult.invalid(["name is required"])
        try:
            taken = self.model.find_by_name(name, exclude_keys) is not None
        except SQLAlchemyError as e:
            return self._failure("validate", e)
        return ServiceResult.ok({"name": name.strip(), "available": not taken})

    def conflict_message(self, data: Dict[str, Any]) -> str:
        if data.get("name"):
            return f"{self.label} with name '{data['name']}' already exists"
        return super().conflict_message(data)


class SerialIdModel(NamedEntityModel):
    pass


class SerialIdService(NamedEntityService):
    def parse_keys(self, raw: Mapping[str, Any]) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
        item_id = to_int(raw.get("id"))
        if item_id is None or item_id <= 0:
            return None, "Invalid ID provided"
        return {"id": item_id}, None

    def has_conflict(self, data: Dict[str, Any], exclude_keys: Optional[Mapping[str, Any]] = None) -> bool:
        # names are unique regardless of case, matching /validate/name
        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            return False
        return self.model.find_by_name(name, exclude_keys) is not None


def add_named_routes(router: APIRouter, provide) -> None:
    """Lookup routes shared by SERIAL_ID and VARCHAR_CODE entities."""

    @router.get("/search/name")
    def search_by_name(name: Optional[str] = Query(None), service: NamedEntityService = Depends(provide)):
        return respond(service.get_by_name(name))

    @router.get("/filter/status")
    def filter_by_status(status: Optional[str] = Query(None), service: NamedEntityService = Depends(provide)):
        return respond(service.filter_by_status(status))

    @router.get("/search/pattern")
    def search_by_pattern(pattern: Optional[str] = Query(None), service: NamedEntityService = Depends(provide)):
        return respond(service.search_by_pattern(pattern))


def build_serial_id_router(
    registry: ModelRegistry,
    config: EntityConfig,
    model_cls: Type[SerialIdModel] = SerialIdModel,
    service_cls: Type[SerialIdService] = SerialIdService,
    provide=None,
) -> APIRouter:
    provide = provide or service_provider(registry, config, model_cls, service_cls, client_keys=False)
    router = APIRouter(tags=[config.entity_name])
    add_collection_routes(router, config, provide)
    add_named_routes(router, provide)
    add_item_routes(router, config, provide)
    return router
