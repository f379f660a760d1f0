# inspection_api/entities/sampling_reason.py
from fastapi import APIRouter

from inspection_api.ddl_builder import ModelRegistry
from inspection_api.generic.config import serial_id_config
from inspection_api.generic.serial_id import build_serial_id_router

CONFIG = serial_id_config(
    "sampling-reason",
    "sampling_reasons",
    "/api/sampling-reasons",
    description="Reasons a lot is pulled for sampling inspection",
)


def build_router(registry: ModelRegistry) -> APIRouter:
    return build_serial_id_router(registry, CONFIG)
