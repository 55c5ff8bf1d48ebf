"""
AMSF XBRL Reporting Backend - FastAPI Application

Main application entry point for the AMSF real-estate AML/CFT reporting
engine: taxonomy registry, submission population, XBRL generation and
external validation.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from amsf_xbrl.api.routes_submissions import SERVICE_VERSION, router as submissions_router
from amsf_xbrl.services.section_catalog import SectionCatalog
from amsf_xbrl.services.taxonomy_registry import TaxonomyRegistry, load_registry_for_startup
from amsf_xbrl.services.validation_client import ValidationClient
from amsf_xbrl.utils.config_loader import AppSettings, load_settings
from amsf_xbrl.utils.db import Database
from amsf_xbrl.utils.logging import setup_logging
from amsf_xbrl.utils.metrics import Metrics

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[AppSettings] = None,
    database: Optional[Database] = None,
    registry: Optional[TaxonomyRegistry] = None,
    validation_client: Optional[ValidationClient] = None,
    config_path: Optional[Path] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Components not passed in are constructed from configuration at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        startup(app, settings, database, registry, validation_client, config_path)
        try:
            yield
        finally:
            shutdown(app)

    app = FastAPI(
        title="AMSF XBRL Reporting",
        description="AML/CFT survey reporting engine for Monaco real-estate professionals",
        version=SERVICE_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(submissions_router, prefix="/api/v1")
    return app


def startup(app: FastAPI, settings, database, registry, validation_client, config_path) -> None:
    """Initialize application state on startup."""
    settings = settings or load_settings(config_path)
    setup_logging(settings.logging.level, settings.logging.file)
    logger.info(f"Starting AMSF XBRL reporting backend (environment={settings.environment})")
    app.state.settings = settings

    prom = settings.prometheus
    app.state.metrics = Metrics(enabled=prom.enabled, namespace=prom.namespace)
    app.state.metrics.mount_endpoint(app, path=prom.path)

    app.state.owns_database = database is None
    if database is None:
        database = Database(settings.database.url, echo=settings.database.echo)
        database.create_all()
    app.state.database = database

    # Fatal in production, degraded otherwise
    if registry is None:
        registry = TaxonomyRegistry.from_settings(settings.taxonomy)
    if load_registry_for_startup(registry, production=settings.is_production):
        app.state.metrics.set_taxonomy_elements_loaded(len(registry.elements()))
    else:
        logger.warning("Taxonomy not loaded; taxonomy-dependent routes will answer 503")
    app.state.registry = registry

    app.state.section_catalog = SectionCatalog()
    app.state.section_catalog.validate(registry)

    if validation_client is None:
        validation_client = ValidationClient.from_config(settings.validator, metrics=app.state.metrics)
    app.state.validation_client = validation_client
    logger.info(f"Validator configured at {app.state.validation_client.base_url}")


def shutdown(app: FastAPI) -> None:
    logger.info("Shutting down AMSF XBRL reporting backend")
    client = getattr(app.state, "validation_client", None)
    if client is not None:
        client.close()
    database = getattr(app.state, "database", None)
    if database is not None and getattr(app.state, "owns_database", False):
        database.dispose()


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "amsf_xbrl.main:app",
        host="0.0.0.0",
        port=8080,
        reload=True,
        log_level="info",
    )
