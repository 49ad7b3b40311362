# FastAPI entrypoint: app factory, lifecycle and health endpoint

import asyncio
import os
import sys
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from apps.api.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from apps.config import PortalConfig
from auth.auth_routes import router as auth_router
from auth.identity_provider import IdentityProvider, build_identity_provider
from auth.policy import AuthPolicy, Unauthenticated, build_auth_policy
from documents.doc_routes import router as document_router
from documents.service import DocumentService
from storage.errors import PoolExhausted, PortalError
from storage.object_store.buckets import ObjectStore, build_object_store
from storage.relational.credentials import credential_provider_from_config
from storage.relational.pool import ConnectionPoolManager
from storage.relational.reset import reset_connections


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_app(
    config: Optional[PortalConfig] = None,
    pool: Optional[ConnectionPoolManager] = None,
    object_store: Optional[ObjectStore] = None,
    auth_policy: Optional[AuthPolicy] = None,
    identity_provider: Optional[IdentityProvider] = None,
) -> FastAPI:
    """
    Build the portal app. Every collaborator can be injected; anything not
    given is built from ``config``.
    """
    config = config or PortalConfig()

    app = FastAPI(
        title="Document Portal API",
        description="List, upload and delete documents backed by a SQL table and a blob container",
        version="1.0.0",
    )

    # ==================== MIDDLEWARE ====================

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.frontend_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Accept", "Origin"],
        max_age=86400,
    )

    # ==================== RESOURCES ====================

    pool = pool or ConnectionPoolManager(
        config.database, credential_provider_from_config(config.database)
    )
    object_store = object_store or build_object_store(config.blob_store)

    app.state.config = config
    app.state.pool = pool
    app.state.object_store = object_store
    app.state.auth_policy = auth_policy or build_auth_policy(config.auth)
    app.state.identity_provider = identity_provider or build_identity_provider(config.auth)
    app.state.document_service = DocumentService(
        pool, object_store, url_ttl=config.blob_store.access_url_ttl
    )

    # ==================== ERROR HANDLERS ====================

    @app.exception_handler(PortalError)
    async def portal_error_handler(request: Request, exc: PortalError):
        headers = {}
        if isinstance(exc, PoolExhausted):
            headers["Retry-After"] = str(exc.retry_after)
        if isinstance(exc, Unauthenticated):
            headers["WWW-Authenticate"] = "Bearer"
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message},
            headers=headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            field = errors[0].get("loc", ["request"])[-1]
            message = f"Invalid {field}: {errors[0].get('msg', 'invalid value')}"
        else:
            message = "Invalid request"
        logger.warning(f"Rejected {request.method} {request.url.path}: {message}")
        return JSONResponse(status_code=400, content={"error": message})

    # ==================== ROUTERS ====================

    app.include_router(document_router)     # /api/documents, /api/upload
    app.include_router(auth_router)         # /api/signup, /api/check-admin

    @app.get("/api/health")
    async def health_check(request: Request):
        """Exercise one pooled connection and report pool statistics."""
        try:
            stats = await asyncio.to_thread(request.app.state.pool.health)
            return {"status": "healthy", "database": stats, "timestamp": _timestamp()}
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return JSONResponse(
                status_code=500,
                content={"status": "unhealthy", "error": str(e), "timestamp": _timestamp()},
            )

    @app.get("/")
    async def root():
        return {
            "message": "Document Portal API",
            "status": "running",
            "environment": config.environment,
            "docs_url": "/docs",
        }

    # ==================== STARTUP / SHUTDOWN ====================

    @app.on_event("startup")
    async def startup_event():
        """Create the pool, reset leaked sessions, bootstrap the schema."""
        pool.initialize()

        killed = await asyncio.to_thread(
            reset_connections, config.database.admin_url, config.database.reset_users
        )
        if killed:
            logger.info(f"Connection reset terminated {killed} stale session(s)")

        try:
            await asyncio.to_thread(pool.ensure_schema)
        except Exception as e:
            logger.error(f"Failed to connect to database: {e}")
            raise

        await asyncio.to_thread(object_store.ensure_container)
        pool.start_liveness_probe()

        logger.info(f"Environment: {config.environment}")
        logger.info(f"Object store: {object_store.name}")
        logger.info(f"Auth: {'enforced' if app.state.auth_policy.enforced else 'BYPASSED'}")

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Closing all database connections...")
        await asyncio.to_thread(pool.shutdown)

    return app


def main():
    import uvicorn

    logger.remove()
    logger.add(sys.stderr, level=os.getenv("LOG_LEVEL", "INFO"))

    uvicorn.run(
        "apps.api.main:create_app",
        factory=True,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "5001")),
    )


if __name__ == "__main__":
    main()
