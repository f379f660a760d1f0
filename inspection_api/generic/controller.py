# pyright: reportInvalidTypeForm=false
# inspection_api/generic/controller.py
#
# Glue between FastAPI routes and the generic services:
# - one service instance per request, bound to the request's Session
# - list query parsing from the raw query string
# - the CRUD route set shared by all patterns
import logging
from typing import Any, Callable, Iterable, Optional, Type

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from inspection_api.db import get_actor_id, get_db
from inspection_api.ddl_builder import ModelRegistry
from inspection_api.generic.base_model import GenericEntityModel
from inspection_api.generic.base_service import GenericEntityService
from inspection_api.generic.config import EntityConfig
from inspection_api.generic.payloads import build_payload_models
from inspection_api.generic.query_builder import ListQuery
from inspection_api.responses import respond

logger = logging.getLogger(__name__)


def service_provider(
    registry: ModelRegistry,
    config: EntityConfig,
    model_cls: Type[GenericEntityModel] = GenericEntityModel,
    service_cls: Type[GenericEntityService] = GenericEntityService,
    client_keys: bool = True,
    exclude: Iterable[str] = (),
    optional: Iterable[str] = (),
) -> Callable[..., GenericEntityService]:
    """
    Build the FastAPI dependency that yields a ready service for one request.
    ORM class and payload models are resolved once, at router build time.
    """
    orm_model = registry.model(config.table_name)
    payloads = build_payload_models(
        registry.table_meta(config.table_name),
        client_keys=client_keys,
        exclude=exclude,
        optional=optional,
    )

    def provide(db: Session = Depends(get_db)) -> GenericEntityService:
        return service_cls(model_cls(db, orm_model, config), payloads)

    provide.__name__ = f"provide_{config.table_name}_service"
    return provide


def list_query_dependency(config: EntityConfig) -> Callable[[Request], ListQuery]:
    def parse(request: Request) -> ListQuery:
        try:
            return ListQuery.from_params(request.query_params, config)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    return parse


def key_path(config: EntityConfig) -> str:
    return "/" + "/".join("{%s}" % k for k in config.primary_key)


def resolve_keys(service: GenericEntityService, request: Request):
    keys, error = service.parse_keys(request.path_params)
    if error:
        raise HTTPException(status_code=400, detail=error)
    return keys


def add_collection_routes(router: APIRouter, config: EntityConfig, provide: Callable) -> None:
    """GET /, POST /, /health and /statistics; register before any keyed route."""
    parse_list = list_query_dependency(config)

    @router.get("/health")
    def health(service: GenericEntityService = Depends(provide)):
        return respond(service.health())

    @router.get("/statistics")
    def statistics(service: GenericEntityService = Depends(provide)):
        return respond(service.statistics())

    @router.get("/")
    def list_items(
        query: ListQuery = Depends(parse_list),
        service: GenericEntityService = Depends(provide),
    ):
        return respond(service.get_all(query))

    @router.post("/")
    def create_item(
        payload: Any = Body(None),
        actor_id: int = Depends(get_actor_id),
        service: GenericEntityService = Depends(provide),
    ):
        return respond(service.create(payload, actor_id), success_status=201)


def add_item_routes(
    router: APIRouter,
    config: EntityConfig,
    provide: Callable,
    keys_from: Optional[Callable[[GenericEntityService, Request], Any]] = None,
) -> None:
    """GET/PUT/DELETE on the key path, plus PATCH .../status for entities with is_active."""
    path = key_path(config)
    keys_from = keys_from or resolve_keys

    @router.get(path)
    def get_item(request: Request, service: GenericEntityService = Depends(provide)):
        return respond(service.get_by_key(keys_from(service, request)))

    @router.put(path)
    def update_item(
        request: Request,
        payload: Any = Body(None),
        actor_id: int = Depends(get_actor_id),
        service: GenericEntityService = Depends(provide),
    ):
        return respond(service.update(keys_from(service, request), payload, actor_id))

    if config.has_status:
        @router.patch(path + "/status")
        def toggle_item_status(
            request: Request,
            actor_id: int = Depends(get_actor_id),
            service: GenericEntityService = Depends(provide),
        ):
            return respond(service.toggle_status(keys_from(service, request), actor_id))

    @router.delete(path)
    def delete_item(request: Request, service: GenericEntityService = Depends(provide)):
        return respond(service.delete(keys_from(service, request)))
