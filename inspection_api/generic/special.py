# inspection_api/generic/special.py
#
# SPECIAL pattern: any key shape (string, integer or composite) and
# per-entity searchable/filter/date fields taken from EntityConfig.
from typing import Callable, Iterable, Optional, Type

from fastapi import APIRouter

from inspection_api.ddl_builder import ModelRegistry
from inspection_api.generic.base_model import GenericEntityModel
from inspection_api.generic.base_service import GenericEntityService
from inspection_api.generic.config import EntityConfig
from inspection_api.generic.controller import add_collection_routes, add_item_routes, service_provider


class SpecialModel(GenericEntityModel):
    pass


class SpecialService(GenericEntityService):
    pass


def special_provider(
    registry: ModelRegistry,
    config: EntityConfig,
    model_cls: Type[SpecialModel] = SpecialModel,
    service_cls: Type[SpecialService] = SpecialService,
    exclude: Iterable[str] = (),
    optional: Iterable[str] = (),
) -> Callable[..., SpecialService]:
    return service_provider(
        registry, config, model_cls, service_cls, client_keys=True, exclude=exclude, optional=optional
    )


def build_special_router(
    registry: ModelRegistry,
    config: EntityConfig,
    model_cls: Type[SpecialModel] = SpecialModel,
    service_cls: Type[SpecialService] = SpecialService,
    provide: Optional[Callable[..., SpecialService]] = None,
    extra_routes: Optional[Callable[[APIRouter], None]] = None,
) -> APIRouter:
    """
    Collection routes first, then `extra_routes`, then the keyed routes,
    so fixed paths like /statistics never get captured as a key.
    """
    provide = provide or special_provider(registry, config, model_cls, service_cls)
    router = APIRouter(tags=[config.entity_name])
    add_collection_routes(router, config, provide)
    if extra_routes is not None:
        extra_routes(router)
    add_item_routes(router, config, provide)
    return router
