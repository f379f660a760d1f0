# pyright: reportInvalidTypeForm=false
# inspection_api/entities/defect_image.py
#
# Images attached to defect records, stored in the database as bytes.
# Uploads are multipart; list/metadata reads never include the image bytes.
from __future__ import annotations
import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Dict, List, Optional, Sequence, Type

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import Response
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from inspection_api.db import Settings, get_actor_id, get_settings
from inspection_api.ddl_builder import ModelRegistry
from inspection_api.generic.config import EntityConfig, PatternType
from inspection_api.generic.controller import list_query_dependency, resolve_keys
from inspection_api.generic.payloads import apply_audit_on_create
from inspection_api.generic.query_builder import ListQuery, to_int
from inspection_api.generic.special import SpecialModel, SpecialService, special_provider
from inspection_api.responses import ServiceResult, respond

logger = logging.getLogger(__name__)

CONFIG = EntityConfig(
    entity_name="defect-image",
    table_name="defect_images",
    api_path="/api/defect-image",
    pattern=PatternType.SPECIAL,
    primary_key=("id",),
    searchable_fields=("file_name", "mime_type"),
    filter_fields=("defect_id", "mime_type"),
    date_fields=("created_at",),
    sortable_fields=("id", "defect_id", "file_name", "file_size", "created_at"),
    hidden_fields=("image_data",),
    default_sort="created_at",
    default_order="DESC",
    has_status=False,
)


@dataclass
class UploadedImage:
    content: bytes
    content_type: Optional[str]
    filename: Optional[str]

    @property
    def label(self) -> str:
        return self.filename or "file"


def read_uploads(files: Sequence[Optional[UploadFile]], max_bytes: int) -> List[UploadedImage]:
    """Reads at most max_bytes + 1 per file; anything longer is rejected later anyway."""
    out = []
    for f in files:
        if f is None or (not f.filename and not f.content_type):
            continue
        out.append(UploadedImage(f.file.read(max_bytes + 1), f.content_type, f.filename))
    return out


class DefectImageModel(SpecialModel):
    def __init__(self, db, model, config, defect_model=None):
        super().__init__(db, model, config)
        self.defect_model = defect_model

    def defect_exists(self, defect_id: int) -> bool:
        D = self.defect_model
        return self.db.execute(select(func.count()).select_from(D).where(D.id == defect_id)).scalar_one() > 0

    def add_images(self, defect_id: int, images: List[UploadedImage], actor_id: int = 0) -> List[Any]:
        objs = []
        with self._write("add_images"):
            for image in images:
                obj = self.model(
                    defect_id=defect_id,
                    image_data=image.content,
                    mime_type=image.content_type,
                    file_name=image.filename,
                    file_size=len(image.content),
                )
                apply_audit_on_create(obj, actor_id)
                self.db.add(obj)
                objs.append(obj)
            self.db.flush()
            for obj in objs:
                self.db.refresh(obj)
        return objs

    def list_for_defect(self, defect_id: int) -> List[Any]:
        stmt = select(self.model).where(self.model.defect_id == defect_id).order_by(self.model.id)
        with self._timed("list_for_defect"):
            return list(self.db.execute(stmt).scalars().all())

    def delete_for_defect(self, defect_id: int) -> int:
        with self._write("delete_for_defect"):
            result = self.db.execute(delete(self.model).where(self.model.defect_id == defect_id))
        return result.rowcount or 0


class DefectImageService(SpecialService):
    model: DefectImageModel
    parent_label = "Defect"

    def _check_images(self, images: List[UploadedImage], settings: Settings) -> List[str]:
        errors = []
        if len(images) > settings.UPLOAD_MAX_FILES:
            errors.append(f"Maximum {settings.UPLOAD_MAX_FILES} images allowed per upload")
        for image in images:
            if image.content_type not in settings.UPLOAD_ALLOWED_TYPES:
                errors.append(f"{image.label}: file type {image.content_type} is not allowed")
            if not image.content:
                errors.append(f"{image.label}: file is empty")
            elif len(image.content) > settings.UPLOAD_MAX_IMAGE_BYTES:
                errors.append(f"{image.label}: file exceeds {settings.UPLOAD_MAX_IMAGE_BYTES} bytes")
        return errors

    @staticmethod
    def parse_defect_id(raw: Any) -> Optional[int]:
        value = to_int(raw)
        return value if value and value > 0 else None

    def upload(self, raw_defect_id: Any, images: List[UploadedImage], settings: Settings,
               actor_id: int = 0) -> ServiceResult:
        if not images:
            return ServiceResult.invalid(["No images provided"])
        defect_id = self.parse_defect_id(raw_defect_id)
        if defect_id is None:
            return ServiceResult.invalid(["Invalid defect ID provided"])
        errors = self._check_images(images, settings)
        if errors:
            return ServiceResult.invalid(errors)

        try:
            if not self.model.defect_exists(defect_id):
                return ServiceResult.not_found(f"{self.parent_label} not found")
            objs = self.model.add_images(defect_id, images, actor_id)
        except SQLAlchemyError as e:
            return self._failure("upload", e)
        logger.info("Stored %d image(s) for defect %s", len(objs), defect_id)
        return ServiceResult.ok(
            self.serialize_many(objs),
            message=f"{len(objs)} image(s) uploaded successfully",
        )

    def image_content(self, keys) -> ServiceResult:
        try:
            obj = self.model.get_by_key(keys)
        except SQLAlchemyError as e:
            return self._failure("retrieve", e)
        if obj is None:
            return ServiceResult.not_found(f"{self.label} not found")
        return ServiceResult.ok(obj)

    def list_for_defect(self, raw_defect_id: Any) -> ServiceResult:
        defect_id = self.parse_defect_id(raw_defect_id)
        if defect_id is None:
            return ServiceResult.invalid(["Invalid defect ID provided"])
        try:
            rows = self.model.list_for_defect(defect_id)
        except SQLAlchemyError as e:
            return self._failure("retrieve", e)
        return ServiceResult.ok(self.serialize_many(rows))

    def delete_for_defect(self, raw_defect_id: Any) -> ServiceResult:
        defect_id = self.parse_defect_id(raw_defect_id)
        if defect_id is None:
            return ServiceResult.invalid(["Invalid defect ID provided"])
        try:
            deleted = self.model.delete_for_defect(defect_id)
        except SQLAlchemyError as e:
            return self._failure("delete", e)
        return ServiceResult.ok(
            {"defect_id": defect_id, "deleted": deleted},
            message=f"Deleted {deleted} image(s) for defect {defect_id}",
        )


def build_image_router(
    registry: ModelRegistry,
    config: EntityConfig,
    parent_table: str,
    service_cls: Type[DefectImageService] = DefectImageService,
) -> APIRouter:
    """
    Custom route set: POST takes multipart instead of JSON, and GET /{id}
    streams the stored bytes. There is no PUT; images are replaced by
    deleting and uploading again.
    """
    model_cls = partial(DefectImageModel, defect_model=registry.model(parent_table))
    provide = special_provider(registry, config, model_cls, service_cls)
    parse_list = list_query_dependency(config)
    router = APIRouter(tags=[config.entity_name])

    @router.get("/health")
    def health(service: DefectImageService = Depends(provide)):
        return respond(service.health())

    @router.get("/statistics")
    def statistics(service: DefectImageService = Depends(provide)):
        return respond(service.statistics())

    @router.get("/")
    def list_images(query: ListQuery = Depends(parse_list), service: DefectImageService = Depends(provide)):
        return respond(service.get_all(query))

    @router.post("/")
    def upload_image(
        image: Optional[UploadFile] = File(None),
        defect_id: Optional[str] = Form(None),
        actor_id: int = Depends(get_actor_id),
        settings: Settings = Depends(get_settings),
        service: DefectImageService = Depends(provide),
    ):
        images = read_uploads([image], settings.UPLOAD_MAX_IMAGE_BYTES)
        return respond(service.upload(defect_id, images, settings, actor_id), success_status=201)

    @router.post("/bulk")
    def upload_images(
        images: Optional[List[UploadFile]] = File(None),
        defect_id: Optional[str] = Form(None),
        actor_id: int = Depends(get_actor_id),
        settings: Settings = Depends(get_settings),
        service: DefectImageService = Depends(provide),
    ):
        uploaded = read_uploads(images or [], settings.UPLOAD_MAX_IMAGE_BYTES)
        return respond(service.upload(defect_id, uploaded, settings, actor_id), success_status=201)

    @router.get("/defect/{defect_id}")
    def list_for_defect(defect_id: str, service: DefectImageService = Depends(provide)):
        return respond(service.list_for_defect(defect_id))

    @router.delete("/defect/{defect_id}")
    def delete_for_defect(defect_id: str, service: DefectImageService = Depends(provide)):
        return respond(service.delete_for_defect(defect_id))

    @router.get("/{id}/info")
    def get_image_info(request: Request, service: DefectImageService = Depends(provide)):
        return respond(service.get_by_key(resolve_keys(service, request)))

    @router.get("/{id}")
    def get_image(request: Request, service: DefectImageService = Depends(provide)):
        result = service.image_content(resolve_keys(service, request))
        if not result.success:
            return respond(result)
        obj = result.data
        headers: Dict[str, str] = {"Cache-Control": "private, max-age=3600"}
        if obj.file_name and obj.file_name.isascii():
            headers["Content-Disposition"] = f'inline; filename="{obj.file_name}"'
        return Response(content=obj.image_data, media_type=obj.mime_type, headers=headers)

    @router.delete("/{id}")
    def delete_image(request: Request, service: DefectImageService = Depends(provide)):
        return respond(service.delete(resolve_keys(service, request)))

    return router


def build_router(registry: ModelRegistry) -> APIRouter:
    return build_image_router(registry, CONFIG, "defects")
