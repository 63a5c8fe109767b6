"""FastAPI application for OLX / Otodom listing synchronization."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
from fastapi import FastAPI

from rental_sync.api import state as state_module
from rental_sync.api.routes import router as api_router
from rental_sync.api.routes import sync_error_handler
from rental_sync.api.state import AppState
from rental_sync.config import Settings, get_settings
from rental_sync.core.listings import ListingService
from rental_sync.core.reconciler import Reconciler
from rental_sync.core.worker import ReconciliationWorker
from rental_sync.feeds import FeedGenerator
from rental_sync.models.domain import Platform
from rental_sync.partners.errors import SyncError
from rental_sync.partners.oauth import AuthorizationFlow, TokenManager, endpoints_from_settings
from rental_sync.partners.olx_client import OLXClient
from rental_sync.partners.otodom_client import OtodomClient
from rental_sync.storage.sqlite import SQLiteStorage

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_app_state(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AppState:
    """Wire all components.

    Args:
        settings: Application settings.
        transport: Optional httpx transport for every outbound call (used by tests).
    """
    storage = SQLiteStorage(database_path=settings.database_path)

    endpoints = endpoints_from_settings(settings)
    token_manager = TokenManager(
        storage=storage,
        endpoints=endpoints,
        timeout=settings.http_timeout,
        user_agent=settings.user_agent,
        transport=transport,
    )
    authorization_flow = AuthorizationFlow(
        storage=storage,
        token_manager=token_manager,
        endpoints=endpoints,
        public_base_url=settings.public_base_url,
    )

    client_options = dict(
        public_base_url=settings.public_base_url,
        timeout=settings.http_timeout,
        user_agent=settings.user_agent,
        transport=transport,
    )
    clients = {
        Platform.OLX: OLXClient(
            token_manager,
            settings.olx_api_base,
            contact_name=settings.olx_contact_name,
            contact_email=settings.olx_contact_email,
            contact_phone=settings.olx_contact_phone,
            **client_options,
        ),
        Platform.OTODOM: OtodomClient(
            token_manager,
            settings.otodom_api_base,
            taxonomy_url=settings.otodom_taxonomy_url,
            **client_options,
        ),
    }

    return AppState(
        settings=settings,
        storage=storage,
        token_manager=token_manager,
        authorization_flow=authorization_flow,
        listing_service=ListingService(storage=storage, clients=clients),
        feed_generator=FeedGenerator(storage, settings.placeholder_image_url),
        worker=ReconciliationWorker(Reconciler(storage, Platform.OTODOM), storage),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for initialization and cleanup.

    Uses a state pre-set with set_app_state (tests) or builds one from settings.
    """
    logger.info("Starting listing synchronization service...")

    state = state_module.app_state
    if state is None:
        state = build_app_state(get_settings())
        state_module.set_app_state(state)
    logger.info("Configuration loaded")

    await state.storage._ensure_initialized()
    logger.info(f"Storage initialized: {state.storage.database_path}")

    if not state.settings.otodom_webhook_secret:
        logger.warning(
            "OTODOM_WEBHOOK_SECRET is not set: webhook notifications are processed unverified"
        )

    state.worker.start()
    logger.info("Listing synchronization service started successfully")

    yield

    # Cleanup
    logger.info("Shutting down listing synchronization service...")
    await state.worker.stop()
    state_module.set_app_state(None)
    logger.info("Shutdown complete")


app = FastAPI(
    title="Rental Sync",
    description="OLX and Otodom listing synchronization for a rental dashboard",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_exception_handler(SyncError, sync_error_handler)
app.include_router(api_router)


@app.get("/health")
async def health_check() -> dict:
    """Health check endpoint.

    Returns:
        Health status information.
    """
    state = state_module.app_state
    initialized = state is not None
    return {
        "status": "healthy" if initialized else "starting",
        "service": "rental-sync",
        "version": "1.0.0",
        "initialized": initialized,
        "worker_running": bool(state and state.worker.is_running),
    }
