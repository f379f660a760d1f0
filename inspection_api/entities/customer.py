# inspection_api/entities/customer.py
from fastapi import APIRouter

from inspection_api.ddl_builder import ModelRegistry
from inspection_api.generic.config import varchar_code_config
from inspection_api.generic.varchar_code import build_varchar_code_router

CONFIG = varchar_code_config("customer", "customers", "/api/customers", code_length=5)


def build_router(registry: ModelRegistry) -> APIRouter:
    return build_varchar_code_router(registry, CONFIG)
