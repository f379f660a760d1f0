# inspection_api/app_factory.py
from __future__ import annotations
import logging
import time
from datetime import datetime, timezone
from typing import Optional, Sequence

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from inspection_api import db as db_module
from inspection_api.db import Settings, get_db, get_settings
from inspection_api.ddl_builder import build_registry
from inspection_api.discovery import EntityAutoDiscoveryFactory, EntityRegistration
from inspection_api.meta_loader import load_meta
from inspection_api.responses import error_body
from inspection_api.schema_guard import diff_schema

logger = logging.getLogger(__name__)

SERVICE_NAME = "Sampling Inspection QC API"


def _unique_op_id(route: APIRoute) -> str:
    method = next(iter(route.methods or {"GET"})).lower()
    tag = (route.tags[0] if route.tags else "default").lower().replace(" ", "_").replace("-", "_")
    name = (route.name or route.endpoint.__name__).lower().replace(" ", "_")
    path = route.path_format.strip("/").replace("/", "_").replace("{", "").replace("}", "").replace("-", "_")
    return f"{tag}__{name}__{method}__{path}"


def _validation_messages(exc: RequestValidationError):
    out = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path"))
        out.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return out


def _session_dependency(db_engine: Engine):
    factory = sessionmaker(bind=db_engine, autocommit=False, autoflush=False, future=True)

    def get_bound_db():
        session = factory()
        try:
            yield session
        finally:
            session.close()

    return get_bound_db


def prepare_schema(db_engine: Engine, registry, settings: Settings) -> None:
    """
    Create missing tables when allowed, then compare the live schema with
    the metadata. Strict mode refuses to start on any remaining difference.
    """
    if settings.ENGINE_CREATE_TABLES:
        registry.create_all(db_engine)
    diff = diff_schema(db_engine, registry.meta)
    if not diff.has_changes:
        logger.info("Schema matches metadata (%d tables)", len(registry.meta.tables))
        return
    if settings.ENGINE_SCHEMA_STRICT:
        raise SystemExit("Refusing to start: database schema does not match metadata.\n" + diff.format_plan())
    logger.warning("Database schema differs from metadata:\n%s", diff.format_plan())


def create_app(
    settings: Optional[Settings] = None,
    db_engine: Optional[Engine] = None,
    registrations: Optional[Sequence[EntityRegistration]] = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    meta = load_meta(settings.MODEL_META_PATH)
    db_engine = db_engine or db_module.engine
    registry = build_registry(meta, dialect=db_engine.dialect.name)
    logger.info("Loaded metadata version %s with %d tables", meta.version, len(meta.tables))
    prepare_schema(db_engine, registry, settings)

    if registrations is None:
        from inspection_api.entities.registry import ENTITY_REGISTRATIONS
        registrations = ENTITY_REGISTRATIONS

    app = FastAPI(
        title=SERVICE_NAME,
        version=settings.APP_VERSION,
        generate_unique_id_function=_unique_op_id,
    )
    if db_engine is not db_module.engine:
        app.dependency_overrides[get_db] = _session_dependency(db_engine)
    app.dependency_overrides[get_settings] = lambda: settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed = (time.perf_counter() - started) * 1000
        level = logging.WARNING if response.status_code >= 400 else logging.INFO
        logger.log(level, "%s %s -> %d (%.1fms)", request.method, request.url.path, response.status_code, elapsed)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            body = error_body(f"Route not found: {request.method} {request.url.path}", code="ROUTE_NOT_FOUND")
        else:
            body = error_body(str(exc.detail))
        return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = _validation_messages(exc)
        return JSONResponse(
            status_code=400,
            content=error_body(f"Validation failed: {', '.join(errors)}", code="VALIDATION_ERROR", errors=errors),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=error_body("Internal server error", code="INTERNAL_ERROR"))

    discovery = EntityAutoDiscoveryFactory(registrations, registry)
    summary = discovery.discover_and_register(app)
    app.state.registry = registry
    app.state.registration_summary = summary

    prefix = settings.API_PREFIX

    @app.get("/health", tags=["system"])
    def health():
        checked_at = datetime.now(timezone.utc).isoformat()
        try:
            with db_engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error("Database health check failed: %s", e)
            return JSONResponse(
                status_code=503,
                content={"success": False, "status": "unhealthy", "database": "disconnected",
                         "message": "Database connection failed", "timestamp": checked_at},
            )
        return {"success": True, "status": "healthy", "database": "connected",
                "version": settings.APP_VERSION, "timestamp": checked_at}

    @app.get(prefix or "/", tags=["system"])
    def api_info():
        return {
            "success": True,
            "data": {
                "name": SERVICE_NAME,
                "version": settings.APP_VERSION,
                "entities": [
                    {"name": r.entity_name, "path": r.api_path, "pattern": r.pattern, "available": r.success}
                    for r in summary.results
                ],
            },
        }

    @app.get(f"{prefix}/version", tags=["system"])
    def api_version():
        return {
            "success": True,
            "data": {"name": SERVICE_NAME, "version": settings.APP_VERSION, "metaVersion": meta.version},
        }

    @app.get(f"{prefix}/debug/routes", tags=["system"])
    def debug_routes():
        routes = [
            {"path": route.path, "methods": sorted(route.methods or []), "name": route.name}
            for route in app.routes
            if isinstance(route, APIRoute)
        ]
        return JSONResponse(content=jsonable_encoder({
            "success": True,
            "data": {"routes": routes, "registration": summary.as_dict()},
        }))

    return app
