# inspection_api/entities/defectdata_customer.py
#
# Defects reported back by the customer, kept apart from in-house findings.
from fastapi import APIRouter

from inspection_api.ddl_builder import ModelRegistry
from inspection_api.entities.defectdata import build_defectdata_router, defectdata_config

CONFIG = defectdata_config(
    "defectdata-customer", "defectdata_customer", "/api/defectdata-customer",
    description="Defects reported by customers against inspections",
)


def build_router(registry: ModelRegistry) -> APIRouter:
    return build_defectdata_router(registry, CONFIG)
