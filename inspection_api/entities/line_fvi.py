# inspection_api/entities/line_fvi.py
from fastapi import APIRouter

from inspection_api.ddl_builder import ModelRegistry
from inspection_api.generic.config import varchar_code_config
from inspection_api.generic.varchar_code import build_varchar_code_router

# final visual inspection lines
CONFIG = varchar_code_config("line-fvi", "line_fvi", "/api/line-fvi", code_length=10)


def build_router(registry: ModelRegistry) -> APIRouter:
    return build_varchar_code_router(registry, CONFIG)
