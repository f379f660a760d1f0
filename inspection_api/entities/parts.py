# inspection_api/entities/parts.py
#
# Part master. Clients may send `customer_site_code` instead of the
# customer/part_site pair; it is resolved against customers_site.
from functools import partial
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from inspection_api.db import get_actor_id
from inspection_api.ddl_builder import ModelRegistry
from inspection_api.generic.config import EntityConfig, PatternType
from inspection_api.generic.special import SpecialModel, SpecialService, build_special_router, special_provider
from inspection_api.responses import ServiceResult, respond

CONFIG = EntityConfig(
    entity_name="parts",
    table_name="parts",
    api_path="/api/parts",
    pattern=PatternType.SPECIAL,
    primary_key=("partno",),
    searchable_fields=("partno", "product_families", "versions", "customer", "customer_driver"),
    filter_fields=("customer", "part_site", "production_site", "product_type", "tab"),
    sortable_fields=(
        "partno", "product_families", "versions", "production_site", "part_site",
        "customer", "product_type", "is_active", "created_at", "updated_at",
    ),
    required_fields=("partno",),
    default_sort="partno",
)

SITE_CODE_MAX_LENGTH = 10


class PartsModel(SpecialModel):
    def __init__(self, db, model, config, site_model=None):
        super().__init__(db, model, config)
        self.site_model = site_model

    def resolve_site(self, code: str) -> Optional[Any]:
        S = self.site_model
        return self.db.execute(select(S).where(S.code == code)).scalars().first()

    def site_options(self) -> List[Any]:
        S = self.site_model
        return list(self.db.execute(select(S).where(S.is_active == True).order_by(S.code)).scalars().all())  # noqa: E712


class PartsService(SpecialService):
    model: PartsModel

    def validate(self, data: Any, creating: bool):
        clean, errors = super().validate(data, creating)
        if isinstance(data, dict) and data.get("customer_site_code") not in (None, ""):
            code = data["customer_site_code"]
            if not isinstance(code, str) or len(code.strip()) > SITE_CODE_MAX_LENGTH:
                errors.append(f"customer_site_code must be at most {SITE_CODE_MAX_LENGTH} characters")
            else:
                clean["customer_site_code"] = code.strip()
        return clean, errors

    def _resolve(self, data: Dict[str, Any]):
        code = data.pop("customer_site_code", None)
        if not code:
            return data, []
        site = self.model.resolve_site(code)
        if site is None:
            return data, ["Invalid customer-site code"]
        data["customer"] = site.customers
        data["part_site"] = site.site
        return data, []

    def prepare_create(self, data):
        return self._resolve(data)

    def prepare_update(self, keys, data):
        return self._resolve(data)

    def conflict_message(self, data: Dict[str, Any]) -> str:
        if data.get("partno"):
            return f"Part '{data['partno']}' already exists"
        return super().conflict_message(data)

    def customer_sites(self) -> ServiceResult:
        try:
            sites = self.model.site_options()
        except SQLAlchemyError as e:
            return self._failure("retrieve customer sites for", e)
        return ServiceResult.ok([
            {"code": s.code, "customer": s.customers, "site": s.site, "label": f"{s.code} ({s.customers}/{s.site})"}
            for s in sites
        ])


def build_router(registry: ModelRegistry) -> APIRouter:
    model_cls = partial(PartsModel, site_model=registry.model("customers_site"))
    provide = special_provider(registry, CONFIG, model_cls, PartsService)

    def extra_routes(router: APIRouter) -> None:
        @router.get("/customer-sites")
        def list_customer_sites(service: PartsService = Depends(provide)):
            return respond(service.customer_sites())

        @router.post("/import")
        def import_parts(
            payload: Any = Body(None),
            actor_id: int = Depends(get_actor_id),
            service: PartsService = Depends(provide),
        ):
            records = payload.get("parts") if isinstance(payload, dict) else payload
            return respond(service.bulk_upsert(records, CONFIG.primary_key, actor_id))

    return build_special_router(registry, CONFIG, provide=provide, extra_routes=extra_routes)
