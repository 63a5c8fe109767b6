"""Abstract storage interface for the rental listing synchronization service."""

from abc import ABC, abstractmethod
from typing import Optional

from rental_sync.models.domain import (
    Apartment,
    ApartmentStatus,
    AppCredential,
    ExternalRef,
    Platform,
    SyncFailure,
    UserToken,
)


class StorageInterface(ABC):
    """Abstract interface for storage implementations.

    Holds the two shared mutable stores: apartment records (with their
    external listing references) and partner credentials.
    """

    # Apartment methods
    @abstractmethod
    async def create_apartment(self, apartment: Apartment) -> Apartment:
        """Create a new apartment record.

        Args:
            apartment: The apartment to create. An id is generated when missing.

        Returns:
            The stored apartment.
        """
        ...

    @abstractmethod
    async def get_apartment(self, apartment_id: str) -> Optional[Apartment]:
        """Get an apartment by ID.

        Args:
            apartment_id: The apartment ID.

        Returns:
            The apartment with its external references, or None if not found.
        """
        ...

    @abstractmethod
    async def update_apartment(self, apartment: Apartment) -> Apartment:
        """Update an existing apartment's own fields.

        External references are not touched; use set_external_ref.

        Args:
            apartment: The apartment to update (must have ID).

        Returns:
            The updated apartment.
        """
        ...

    @abstractmethod
    async def list_apartments(
        self, status: Optional[ApartmentStatus] = None
    ) -> list[Apartment]:
        """List apartments in insertion order.

        Args:
            status: Filter by rental status (optional).

        Returns:
            List of apartments.
        """
        ...

    # External reference methods
    @abstractmethod
    async def set_external_ref(
        self,
        apartment_id: str,
        platform: Platform,
        ref: Optional[ExternalRef],
    ) -> None:
        """Store or clear the external listing reference of an apartment.

        Args:
            apartment_id: The apartment ID.
            platform: Target platform.
            ref: New reference, or None to clear it.
        """
        ...

    @abstractmethod
    async def find_apartments_by_pending_ref(
        self, platform: Platform, transaction_id: str
    ) -> list[Apartment]:
        """Find apartments whose reference is pending on the given transaction id.

        Args:
            platform: Target platform.
            transaction_id: Transaction id returned by the publish call.

        Returns:
            Matching apartments (normally zero or one).
        """
        ...

    @abstractmethod
    async def confirm_pending_ref(
        self,
        platform: Platform,
        transaction_id: str,
        listing_id: str,
        url: Optional[str] = None,
    ) -> Optional[str]:
        """Promote a pending reference to a confirmed listing id.

        The update only applies while the reference is still pending on
        transaction_id.

        Args:
            platform: Target platform.
            transaction_id: Transaction id currently stored.
            listing_id: Durable listing id.
            url: Listing URL, if known.

        Returns:
            ID of the updated apartment, or None when nothing matched.
        """
        ...

    # Credential methods
    @abstractmethod
    async def get_app_credential(self, platform: Platform) -> Optional[AppCredential]:
        """Get the application-level credential of a platform."""
        ...

    @abstractmethod
    async def save_app_credential(self, credential: AppCredential) -> AppCredential:
        """Create or replace the application-level credential of a platform."""
        ...

    @abstractmethod
    async def list_app_credentials(self) -> list[AppCredential]:
        """List application-level credentials of all platforms."""
        ...

    @abstractmethod
    async def get_user_token(
        self, platform: Platform, principal_id: str
    ) -> Optional[UserToken]:
        """Get the tokens of a principal for a platform."""
        ...

    @abstractmethod
    async def save_user_token(self, token: UserToken) -> UserToken:
        """Create or replace the tokens of a principal (natural key upsert)."""
        ...

    @abstractmethod
    async def mark_token_error(
        self, platform: Platform, principal_id: str, error: str
    ) -> None:
        """Record the last error of a principal's tokens without touching them."""
        ...

    @abstractmethod
    async def list_user_tokens(self, principal_id: str) -> list[UserToken]:
        """List the tokens of a principal across platforms."""
        ...

    # Failure log methods
    @abstractmethod
    async def record_sync_failure(self, failure: SyncFailure) -> SyncFailure:
        """Append an entry to the synchronization failure log."""
        ...

    @abstractmethod
    async def list_sync_failures(self, limit: int = 50) -> list[SyncFailure]:
        """List failure log entries, most recent first."""
        ...
