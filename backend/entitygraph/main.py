"""
HTTP entry point: app factory, error-to-status mapping and router wiring.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from entitygraph.core.config import get_settings
from entitygraph.core.errors import (
    ConflictError,
    EntityGraphError,
    NotFoundError,
    PermissionDeniedError,
    ScopeViolationError,
    ValidationError,
)
from entitygraph.core.logging import configure_logging, get_logger
from entitygraph.core.middleware import SecurityHeadersMiddleware
from entitygraph.db.session import (
    close_db,
    create_schema,
    get_db_session,
    get_session_factory,
    init_db,
)
from entitygraph.modules.audit.router import router as audit_router
from entitygraph.modules.availability.router import router as availability_router
from entitygraph.modules.entities.router import router as entities_router
from entitygraph.modules.links.router import router as links_router
from entitygraph.modules.permissions.router import router as permissions_router
from entitygraph.modules.tenants.router import router as tenants_router
from entitygraph.modules.tenants.service import ensure_system_tenant

# Before any module-level logger emits
configure_logging()
logger = get_logger(__name__)

ERROR_STATUS: dict[type[EntityGraphError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    PermissionDeniedError: status.HTTP_403_FORBIDDEN,
    ScopeViolationError: status.HTTP_403_FORBIDDEN,
    ConflictError: status.HTTP_409_CONFLICT,
}


def status_for(exc: EntityGraphError) -> int:
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


async def entity_graph_error_handler(_request: Request, exc: EntityGraphError) -> JSONResponse:
    code = status_for(exc)
    logger.info("request_rejected", code=exc.code, status_code=code)
    return JSONResponse(status_code=code, content=exc.to_dict())


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the engine, create missing tables and seed the system tenant."""
    settings = get_settings()
    logger.info(
        "starting_application",
        environment=settings.environment,
        version=settings.version,
    )

    await init_db()
    await create_schema()
    async with get_session_factory()() as session:
        await ensure_system_tenant(session)
    logger.info("database_initialized")

    yield

    await close_db()
    logger.info("application_shutdown_complete")


def create_application() -> FastAPI:
    """Build the FastAPI app; tests call this and override its dependencies."""
    settings = get_settings()

    app = FastAPI(
        title=settings.project_name,
        version=settings.version,
        openapi_url=f"{settings.api_v1_prefix}/openapi.json",
        docs_url=f"{settings.api_v1_prefix}/docs",
        redoc_url=f"{settings.api_v1_prefix}/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Accept",
            "Origin",
            "X-Request-ID",
            settings.actor_header,
            settings.tenant_header,
        ],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(SecurityHeadersMiddleware)

    app.add_exception_handler(EntityGraphError, entity_graph_error_handler)  # type: ignore[arg-type]

    @app.get("/health", tags=["Health"])
    async def health_check() -> dict[str, object]:
        checks: dict[str, str] = {}
        try:
            async for session in get_db_session():
                await session.execute(text("SELECT 1"))
            checks["db"] = "ok"
        except (SQLAlchemyError, RuntimeError, OSError):
            checks["db"] = "unavailable"
        healthy = all(value == "ok" for value in checks.values())
        return {"status": "healthy" if healthy else "degraded", "checks": checks}

    app.include_router(entities_router, prefix=f"{settings.api_v1_prefix}/entities", tags=["Entities"])
    app.include_router(links_router, prefix=f"{settings.api_v1_prefix}/links", tags=["Links"])
    app.include_router(
        availability_router,
        prefix=f"{settings.api_v1_prefix}/availability",
        tags=["Availability"],
    )
    app.include_router(tenants_router, prefix=f"{settings.api_v1_prefix}/tenants", tags=["Tenants"])
    app.include_router(audit_router, prefix=f"{settings.api_v1_prefix}/audit", tags=["Audit"])
    app.include_router(
        permissions_router,
        prefix=f"{settings.api_v1_prefix}/permissions",
        tags=["Permissions"],
    )

    return app


app = create_application()
