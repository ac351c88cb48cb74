"""
FastAPI Application Entry Point
-------------------------------
Builds the identity API: the authentication gate as an application-wide
dependency, the auth, organization and health routers, error rendering and
the startup checks run by the lifespan handler.
"""

import os
from contextlib import asynccontextmanager
from typing import List

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from app.api import health_endpoints, organization_endpoints
from app.auth.dependencies import authenticate_request
from app.auth.endpoints import router as auth_router
from app.core.config_manager import settings
from app.core.database_connection import db_manager
from app.core.exceptions import register_exception_handlers
from app.core.logger_setup import configure_logger
from app.core.startup_diagnostics import (
    ServiceStatus,
    display_service_info,
    display_startup_failure,
    verify_database_connectivity,
    verify_security_configuration,
)

configure_logger()


async def run_startup_checks() -> List[ServiceStatus]:
    """Check the signing and encryption keys, then open the database pool."""
    statuses = [verify_security_configuration()]

    await db_manager.initialize()
    statuses.append(await verify_database_connectivity())

    for status in statuses:
        if status.status == "connected":
            logger.info(f"[SUCCESS] {status.name} ready")
        else:
            logger.error(f"[FAILED] {status.name}: {status.error_message}")
    return statuses


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    failed = [s for s in await run_startup_checks() if s.status == "failed"]
    if failed:
        display_startup_failure(failed)
        logger.error(f"Application startup failed: {len(failed)} check(s) failed")
        os._exit(1)

    display_service_info()
    yield

    logger.info("Shutting down application")
    try:
        await db_manager.close()
    except Exception as e:
        logger.error(f"Shutdown error: {e}")


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Multi-tenant identity and access layer: authentication, refresh sessions and tenant permissions",
        lifespan=lifespan,
        debug=settings.debug,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        # Allow-listed paths pass through the gate untouched
        dependencies=[Depends(authenticate_request)],
    )

    # The refresh cookie needs credentialed CORS
    application.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(application)

    application.include_router(health_endpoints.router)
    application.include_router(auth_router)
    application.include_router(organization_endpoints.router)

    @application.get("/")
    async def root():
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "docs": "/api/docs",
        }

    return application


app = create_app()
