"""Application state container shared by the app and its routers."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends

from rental_sync.config import Settings
from rental_sync.core.listings import ListingService
from rental_sync.core.worker import ReconciliationWorker
from rental_sync.feeds import FeedGenerator
from rental_sync.partners.oauth import AuthorizationFlow, TokenManager
from rental_sync.storage.sqlite import SQLiteStorage


@dataclass
class AppState:
    """Application state container for dependency injection."""

    settings: Settings
    storage: SQLiteStorage
    token_manager: TokenManager
    authorization_flow: AuthorizationFlow
    listing_service: ListingService
    feed_generator: FeedGenerator
    worker: ReconciliationWorker


# Global app state (initialized in lifespan)
app_state: Optional[AppState] = None


def set_app_state(state: Optional[AppState]) -> None:
    global app_state
    app_state = state


def get_app_state() -> AppState:
    """Dependency to get application state."""
    if app_state is None:
        raise RuntimeError("Application not initialized")
    return app_state


def get_listing_service(state: AppState = Depends(get_app_state)) -> ListingService:
    """Dependency to get listing service instance."""
    return state.listing_service
