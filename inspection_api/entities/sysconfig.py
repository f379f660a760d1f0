# inspection_api/entities/sysconfig.py
#
# System configuration rows. Most settings are comma-separated lists
# (sampling quantities, shifts, sites...) that clients read pre-split via
# the /parsed routes. Only one row is active at a time.
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from inspection_api.db import get_actor_id
from inspection_api.ddl_builder import ModelRegistry
from inspection_api.generic.config import EntityConfig, PatternType
from inspection_api.generic.controller import list_query_dependency, resolve_keys
from inspection_api.generic.payloads import apply_audit_on_update
from inspection_api.generic.query_builder import ListQuery
from inspection_api.generic.special import SpecialModel, SpecialService, build_special_router, special_provider
from inspection_api.responses import Pagination, ServiceResult, respond

logger = logging.getLogger(__name__)

CONFIG = EntityConfig(
    entity_name="sysconfig",
    table_name="sysconfig",
    api_path="/api/sysconfig",
    pattern=PatternType.SPECIAL,
    primary_key=("id",),
    searchable_fields=("system_name", "site", "product_type"),
    filter_fields=("system_name",),
    sortable_fields=("id", "system_name", "is_active", "created_at", "updated_at"),
    hidden_fields=("smtp_password", "mssql_password"),
    default_sort="id",
    description="System-wide settings and option lists",
)

QTY_LIST_FIELDS = ("fvi_lot_qty", "general_oqa_qty", "crack_oqa_qty", "general_siv_qty", "crack_siv_qty")
TEXT_LIST_FIELDS = (
    "defect_type", "defect_group", "defect_color", "shift", "site", "tabs", "product_type", "product_families",
)
MAX_QTY_VALUE = 1_000_000


def split_list(value: Optional[str]) -> List[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


def parse_values(obj: Any) -> Dict[str, List[Any]]:
    """Split every list setting; quantity lists drop entries that are not integers."""
    parsed: Dict[str, List[Any]] = {}
    for name in QTY_LIST_FIELDS:
        parsed[name] = [int(v) for v in split_list(getattr(obj, name)) if v.lstrip("-").isdigit()]
    for name in TEXT_LIST_FIELDS:
        parsed[name] = split_list(getattr(obj, name))
    return parsed


class SysconfigModel(SpecialModel):
    def active(self) -> Optional[Any]:
        stmt = select(self.model).where(self.model.is_active == True).order_by(self.model.id.desc())  # noqa: E712
        with self._timed("active"):
            return self.db.execute(stmt).scalars().first()

    def activate(self, keys, actor_id: int = 0) -> Optional[Any]:
        obj = self.get_by_key(keys)
        if obj is None:
            return None
        with self._write("activate"):
            self.db.execute(update(self.model).where(self.model.id != obj.id).values(is_active=False))
            obj.is_active = True
            apply_audit_on_update(obj, actor_id)
            self.db.flush()
            self.db.refresh(obj)
        return obj


class SysconfigService(SpecialService):
    model: SysconfigModel

    @property
    def label(self) -> str:
        return "System configuration"

    def check_rules(self, data: Dict[str, Any], creating: bool) -> List[str]:
        errors = super().check_rules(data, creating)
        for name in QTY_LIST_FIELDS:
            if data.get(name) is None:
                continue
            values = [v.strip() for v in data[name].split(",")]
            if any(not v.lstrip("-").isdigit() for v in values):
                errors.append(f"{name} contains invalid numeric values")
            elif any(int(v) < 0 for v in values):
                errors.append(f"{name} cannot contain negative values")
            elif any(int(v) > MAX_QTY_VALUE for v in values):
                errors.append(f"{name} contains values that are too large (max: {MAX_QTY_VALUE})")
        return errors

    def with_parsed(self, obj: Any) -> Dict[str, Any]:
        item = self.serialize(obj)
        item["parsed"] = parse_values(obj)
        return item

    def active(self, parsed: bool = False) -> ServiceResult:
        try:
            obj = self.model.active()
        except SQLAlchemyError as e:
            return self._failure("retrieve", e)
        if obj is None:
            return ServiceResult.not_found("No active system configuration found")
        return ServiceResult.ok(self.with_parsed(obj) if parsed else self.serialize(obj))

    def get_parsed(self, keys) -> ServiceResult:
        try:
            obj = self.model.get_by_key(keys)
        except SQLAlchemyError as e:
            return self._failure("retrieve", e)
        if obj is None:
            return ServiceResult.not_found(f"{self.label} not found")
        return ServiceResult.ok(self.with_parsed(obj))

    def list_parsed(self, query: ListQuery) -> ServiceResult:
        try:
            rows, total, window = self.model.get_all(query)
        except ValueError as e:
            return ServiceResult.invalid([str(e)])
        except SQLAlchemyError as e:
            return self._failure("retrieve", e)
        return ServiceResult.ok(
            [self.with_parsed(r) for r in rows],
            pagination=Pagination.build(window.page, window.limit, total),
        )

    def activate(self, keys, actor_id: int = 0) -> ServiceResult:
        try:
            obj = self.model.activate(keys, actor_id)
        except SQLAlchemyError as e:
            return self._failure("activate", e)
        if obj is None:
            return ServiceResult.not_found(f"{self.label} not found")
        logger.info("Activated system configuration %s", obj.id)
        return ServiceResult.ok(self.serialize(obj), message="System configuration activated successfully")


def build_router(registry: ModelRegistry) -> APIRouter:
    provide = special_provider(registry, CONFIG, SysconfigModel, SysconfigService)
    parse_list = list_query_dependency(CONFIG)

    def extra_routes(router: APIRouter) -> None:
        @router.get("/active")
        def get_active(service: SysconfigService = Depends(provide)):
            return respond(service.active())

        @router.get("/active/parsed")
        def get_active_parsed(service: SysconfigService = Depends(provide)):
            return respond(service.active(parsed=True))

        @router.get("/parsed")
        def list_parsed(query: ListQuery = Depends(parse_list), service: SysconfigService = Depends(provide)):
            return respond(service.list_parsed(query))

        @router.get("/{id}/parsed")
        def get_parsed(request: Request, service: SysconfigService = Depends(provide)):
            return respond(service.get_parsed(resolve_keys(service, request)))

        @router.put("/{id}/activate")
        def activate(
            request: Request,
            actor_id: int = Depends(get_actor_id),
            service: SysconfigService = Depends(provide),
        ):
            return respond(service.activate(resolve_keys(service, request), actor_id))

    return build_special_router(registry, CONFIG, provide=provide, extra_routes=extra_routes)
