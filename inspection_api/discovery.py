# inspection_api/discovery.py
#
# Mounts entity routers from the static registration table.
# A factory that raises, or returns something that is not router-shaped,
# gets a stub router in its place; startup always continues.
from __future__ import annotations
import logging
import time
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from fastapi import APIRouter, FastAPI
from fastapi.responses import JSONResponse

from inspection_api.ddl_builder import ModelRegistry
from inspection_api.generic.config import EntityConfig, PatternType
from inspection_api.responses import error_body

logger = logging.getLogger(__name__)

REQUIRED_ROUTER_METHODS = ("get", "post", "put", "delete", "include_router")

RouterFactory = Callable[[ModelRegistry], Any]


@dataclass(frozen=True)
class EntityRegistration:
    config: EntityConfig
    factory: RouterFactory


@dataclass
class RegistrationResult:
    entity_name: str
    pattern: str
    api_path: str
    success: bool
    fallback: bool = False
    error: Optional[str] = None
    route_count: int = 0


@dataclass
class RegistrationSummary:
    total_entities: int = 0
    successful: int = 0
    failed: int = 0
    results: List[RegistrationResult] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_ms: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "totalEntities": self.total_entities,
            "successful": self.successful,
            "failed": self.failed,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "durationMs": round(self.duration_ms, 2),
            "results": [asdict(r) for r in self.results],
        }


def is_valid_router(candidate: Any) -> bool:
    return candidate is not None and all(
        callable(getattr(candidate, name, None)) for name in REQUIRED_ROUTER_METHODS
    )


def stub_router(config: EntityConfig) -> APIRouter:
    router = APIRouter(tags=[config.entity_name])
    body = error_body(f"{config.entity_name} endpoints are not implemented", code="NOT_IMPLEMENTED")
    body["pattern"] = config.pattern.value

    def not_implemented():
        return JSONResponse(status_code=501, content=body)

    router.add_api_route("/", not_implemented, methods=["GET", "POST"], name=f"{config.table_name}_stub")
    if config.pattern is not PatternType.SPECIAL or len(config.primary_key) == 1:
        router.add_api_route(
            "/{key}", not_implemented, methods=["GET", "PUT", "DELETE"], name=f"{config.table_name}_stub_item"
        )
    return router


class EntityAutoDiscoveryFactory:
    def __init__(self, registrations: Sequence[EntityRegistration], registry: ModelRegistry):
        self.registrations = list(registrations)
        self.registry = registry

    def validate_configurations(self) -> List[str]:
        """Report duplicate names and paths. Registration still proceeds."""
        problems: List[str] = []
        for label, values in (
            ("entity name", [r.config.entity_name for r in self.registrations]),
            ("API path", [r.config.api_path for r in self.registrations]),
        ):
            for value, count in Counter(values).items():
                if count > 1:
                    problems.append(f"Duplicate {label} '{value}' registered {count} times")
        for problem in problems:
            logger.warning(problem)
        return problems

    def register_entity(self, app: FastAPI, registration: EntityRegistration) -> RegistrationResult:
        config = registration.config
        result = RegistrationResult(
            entity_name=config.entity_name,
            pattern=config.pattern.value,
            api_path=config.api_path,
            success=True,
        )
        try:
            router = registration.factory(self.registry)
            if not is_valid_router(router):
                raise TypeError(f"factory returned {type(router).__name__}, not a router")
        except Exception as e:
            logger.warning(
                "Using fallback router for %s at %s: %s", config.entity_name, config.api_path, e
            )
            router = stub_router(config)
            result.success = False
            result.fallback = True
            result.error = str(e)

        app.include_router(router, prefix=config.api_path)
        result.route_count = len(getattr(router, "routes", []))
        return result

    def discover_and_register(self, app: FastAPI) -> RegistrationSummary:
        summary = RegistrationSummary(
            total_entities=len(self.registrations),
            started_at=datetime.now(timezone.utc),
        )
        started = time.perf_counter()
        self.validate_configurations()

        for registration in self.registrations:
            result = self.register_entity(app, registration)
            summary.results.append(result)
            if result.success:
                summary.successful += 1
                logger.info(
                    "Registered %s (%s) at %s with %d routes",
                    result.entity_name, result.pattern, result.api_path, result.route_count,
                )
            else:
                summary.failed += 1

        summary.finished_at = datetime.now(timezone.utc)
        summary.duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Entity registration finished: %d/%d registered, %d failed in %.1fms",
            summary.successful, summary.total_entities, summary.failed, summary.duration_ms,
        )
        return summary
