# inspection_api/entities/defect_customer_image.py
#
# Images attached to customer-reported defects (defectdata_customer rows).
from dataclasses import replace

from fastapi import APIRouter

from inspection_api.ddl_builder import ModelRegistry
from inspection_api.entities.defect_image import CONFIG as DEFECT_IMAGE_CONFIG
from inspection_api.entities.defect_image import DefectImageService, build_image_router

CONFIG = replace(
    DEFECT_IMAGE_CONFIG,
    entity_name="defect-customer-image",
    table_name="defect_image_customer",
    api_path="/api/defect-customer-image",
    description="Images attached to customer-reported defects",
)


class DefectCustomerImageService(DefectImageService):
    parent_label = "Customer defect record"


def build_router(registry: ModelRegistry) -> APIRouter:
    return build_image_router(registry, CONFIG, "defectdata_customer", DefectCustomerImageService)
