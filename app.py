"""
app.py — FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the stores, the allocation engine and the view projector, registers
routers, and prepares the database on startup.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from labreserve.controllers.allocation_controller import router as allocation_router
from labreserve.controllers.dashboard_controller import router as dashboard_router
from labreserve.controllers.request_controller import router as request_router
from labreserve.repository.data_repository import DataRepository
from labreserve.repository.inventory_store import InventoryStore
from labreserve.repository.request_store import RequestStore
from labreserve.services.allocation_service import AllocationEngine
from labreserve.services.auth_service import AuthService
from labreserve.services.dashboard_service import ViewProjector
from labreserve.services.notification_service import NotificationService
from labreserve.utils.config import Settings, get_settings
from labreserve.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every service is constructed here and exposed through app.state, so each
    dependency is traceable from this function.
    """
    settings = settings or get_settings()

    # --- Storage (one repository shared by both stores) ---
    repository = DataRepository(settings)
    inventory = InventoryStore(repository)
    requests = RequestStore(repository)

    # --- Services ---
    notifier = NotificationService(settings=settings)
    engine = AllocationEngine(
        repository=repository,
        inventory=inventory,
        requests=requests,
        notifier=notifier,
        settings=settings,
    )
    projector = ViewProjector(repository, inventory=inventory, requests=requests)
    auth_service = AuthService(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _startup(app)
        yield
        _shutdown(app)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(dashboard_router)
    app.include_router(request_router)
    app.include_router(allocation_router)

    app.state.repository = repository
    app.state.notification_service = notifier
    app.state.allocation_engine = engine
    app.state.view_projector = projector
    app.state.auth_service = auth_service

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Schema must exist before the inventory is seeded; seeding is skipped when
    the systems collection already holds records.
    """
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    logger.info("Startup: seeding system inventory")
    repository.seed_systems()

    logger.info("Startup complete — system ready")


def _shutdown(app: FastAPI) -> None:
    notifier: NotificationService = app.state.notification_service
    repository: DataRepository = app.state.repository
    notifier.close()
    repository.close()
    logger.info("Shutdown complete")


# Module-level app object for uvicorn
app = create_app()
