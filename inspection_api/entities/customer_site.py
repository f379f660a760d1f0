# inspection_api/entities/customer_site.py
#
# Customer/site pairs. `code` is the site code used on part numbers;
# `customers` references customers.code. Reads carry the customer's name.
import re
from functools import partial
from typing import Any, Dict, Iterable, List

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from inspection_api.ddl_builder import ModelRegistry
from inspection_api.generic.config import CODE_PATTERN, EntityConfig, PatternType
from inspection_api.generic.special import SpecialModel, SpecialService, build_special_router, special_provider
from inspection_api.responses import ServiceResult, respond

CONFIG = EntityConfig(
    entity_name="customer-site",
    table_name="customers_site",
    api_path="/api/customer-sites",
    pattern=PatternType.SPECIAL,
    primary_key=("code",),
    searchable_fields=("code", "customers", "site"),
    filter_fields=("customers", "site"),
    sortable_fields=("code", "customers", "site", "is_active", "created_at", "updated_at"),
    required_fields=("code", "customers", "site"),
    default_sort="code",
)

_CODE_RE = re.compile(CODE_PATTERN)


class CustomerSiteModel(SpecialModel):
    def __init__(self, db, model, config, customer_model=None):
        super().__init__(db, model, config)
        self.customer_model = customer_model

    def customer_names(self, codes: Iterable[str]) -> Dict[str, str]:
        codes = sorted({c for c in codes if c})
        if not codes:
            return {}
        C = self.customer_model
        rows = self.db.execute(select(C.code, C.name).where(C.code.in_(codes))).all()
        return {code: name for code, name in rows}

    def customer_exists(self, code: str) -> bool:
        C = self.customer_model
        return self.db.execute(select(func.count()).select_from(C).where(C.code == code)).scalar_one() > 0

    def counts_by_customer(self) -> List[Dict[str, Any]]:
        rows = self.db.execute(
            select(self.model.customers, func.count())
            .group_by(self.model.customers)
            .order_by(self.model.customers)
        ).all()
        return [{"customer": customer, "count": count} for customer, count in rows]


class CustomerSiteService(SpecialService):
    model: CustomerSiteModel
    reference_message = "Invalid customer or site reference"

    @property
    def label(self) -> str:
        return "Customer-site relationship"

    def serialize_many(self, rows: List[Any]) -> List[Dict[str, Any]]:
        names = self.model.customer_names(r.customers for r in rows)
        out = []
        for r in rows:
            item = super().serialize(r)
            item["customer_name"] = names.get(r.customers)
            out.append(item)
        return out

    def serialize(self, obj: Any) -> Dict[str, Any]:
        return self.serialize_many([obj])[0]

    def check_rules(self, data: Dict[str, Any], creating: bool) -> List[str]:
        errors = super().check_rules(data, creating)
        code = data.get("code")
        if creating and isinstance(code, str) and code and not _CODE_RE.match(code):
            errors.append("code may only contain letters, numbers, underscores and hyphens")
        return errors

    def _check_customer(self, data: Dict[str, Any]) -> List[str]:
        customer = data.get("customers")
        if customer and not self.model.customer_exists(customer):
            return [self.reference_message]
        return []

    def prepare_create(self, data):
        return data, self._check_customer(data)

    def prepare_update(self, keys, data):
        return data, self._check_customer(data)

    def conflict_message(self, data: Dict[str, Any]) -> str:
        if data.get("code"):
            return f"Customer-site code '{data['code']}' already exists"
        return super().conflict_message(data)

    def list_by(self, field_name: str, value: str) -> ServiceResult:
        try:
            rows = self.model.find_by(**{field_name: value.strip()})
        except SQLAlchemyError as e:
            return self._failure("retrieve", e)
        return ServiceResult.ok(self.serialize_many(rows))

    def statistics(self) -> ServiceResult:
        result = super().statistics()
        if not result.success:
            return result
        try:
            result.data["byCustomer"] = self.model.counts_by_customer()
        except SQLAlchemyError as e:
            return self._failure("retrieve statistics for", e)
        return result


def build_router(registry: ModelRegistry) -> APIRouter:
    model_cls = partial(CustomerSiteModel, customer_model=registry.model("customers"))
    provide = special_provider(registry, CONFIG, model_cls, CustomerSiteService)

    def extra_routes(router: APIRouter) -> None:
        @router.get("/customer/{customer_code}")
        def list_by_customer(customer_code: str, service: CustomerSiteService = Depends(provide)):
            return respond(service.list_by("customers", customer_code))

        @router.get("/site/{site_code}")
        def list_by_site(site_code: str, service: CustomerSiteService = Depends(provide)):
            return respond(service.list_by("site", site_code))

    return build_special_router(registry, CONFIG, provide=provide, extra_routes=extra_routes)
