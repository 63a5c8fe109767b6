"""Publish, update, delete and status orchestration for external listings.

Checks apartment state and the stored external reference before calling a
partner client, and writes the resulting reference back to storage.
"""

import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from rental_sync.models.domain import (
    Apartment,
    ApartmentStatus,
    ConfirmedRef,
    PendingRef,
    Platform,
)
from rental_sync.partners.base import PartnerClient
from rental_sync.partners.errors import (
    AlreadyPublished,
    ApartmentNotAvailable,
    ApartmentNotFound,
    NotPublished,
    StatusQueryFailed,
    StillPending,
    TaxonomyQueryFailed,
)
from rental_sync.partners.otodom_client import OtodomClient, TaxonomyAttributes
from rental_sync.storage.base import StorageInterface

logger = logging.getLogger(__name__)


class SyncOutcome(BaseModel):
    """Structured success payload of a listing operation."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str
    url: Optional[str] = None
    advert_id: Optional[str] = Field(default=None, alias="advertId")


class StatusOutcome(SyncOutcome):
    """Success payload of the status probe."""

    confirmed: bool = False
    state: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)


class ListingService:
    """Runs listing operations for one acting principal per call."""

    def __init__(self, storage: StorageInterface, clients: dict[Platform, PartnerClient]):
        self._storage = storage
        self._clients = clients

    async def _get_apartment(self, apartment_id: str) -> Apartment:
        apartment = await self._storage.get_apartment(apartment_id)
        if apartment is None:
            raise ApartmentNotFound(f"Apartment {apartment_id} not found")
        return apartment

    def _confirmed_ref(self, apartment: Apartment, platform: Platform) -> ConfirmedRef:
        """Get the durable reference, rejecting empty and pending ones.

        Raises:
            NotPublished: Never published on the platform
            StillPending: Publish not confirmed yet
        """
        ref = apartment.external_ref(platform)
        if ref is None:
            raise NotPublished(f"Apartment {apartment.id} is not published on {platform.label}")
        if isinstance(ref, PendingRef):
            raise StillPending(
                f"Apartment {apartment.id} is still pending on {platform.label} "
                f"(transaction {ref.transaction_id})"
            )
        return ref

    async def publish(
        self, apartment_id: str, platform: Platform, principal_id: str
    ) -> SyncOutcome:
        """Publish an AVAILABLE apartment and store the returned reference.

        Raises:
            ApartmentNotFound, ApartmentNotAvailable, AlreadyPublished, StillPending,
            token manager errors, PublishRejected
        """
        apartment = await self._get_apartment(apartment_id)
        if apartment.status != ApartmentStatus.AVAILABLE:
            raise ApartmentNotAvailable(
                f"Apartment {apartment_id} has status {apartment.status.value}"
            )

        existing = apartment.external_ref(platform)
        if isinstance(existing, ConfirmedRef):
            raise AlreadyPublished(
                f"Apartment {apartment_id} is already published on {platform.label} "
                f"as {existing.listing_id}"
            )
        if isinstance(existing, PendingRef):
            raise StillPending(
                f"Apartment {apartment_id} already has a pending {platform.label} "
                f"publish (transaction {existing.transaction_id})"
            )

        result = await self._clients[platform].publish(apartment, principal_id)
        await self._storage.set_external_ref(apartment_id, platform, result.ref)

        if isinstance(result.ref, PendingRef):
            message = (
                f"Listing submitted to {platform.label}. "
                "It will be visible once the marketplace confirms it."
            )
        else:
            message = f"Listing published on {platform.label}."

        logger.info(
            f"Apartment {apartment_id} published on {platform.value} by {principal_id} "
            f"({result.ref.state} {result.advert_id})"
        )
        return SyncOutcome(message=message, url=result.url, advert_id=result.advert_id)

    async def update(
        self, apartment_id: str, platform: Platform, principal_id: str
    ) -> SyncOutcome:
        """Push the apartment's current data to its confirmed listing.

        Raises:
            ApartmentNotFound, NotPublished, StillPending, token manager errors,
            UpdateRejected
        """
        apartment = await self._get_apartment(apartment_id)
        ref = self._confirmed_ref(apartment, platform)

        url = await self._clients[platform].update(ref.listing_id, apartment, principal_id)
        if url and url != ref.url:
            ref = ref.model_copy(update={"url": url})
            await self._storage.set_external_ref(apartment_id, platform, ref)

        logger.info(f"Apartment {apartment_id} updated on {platform.value} by {principal_id}")
        return SyncOutcome(
            message=f"Listing updated on {platform.label}.",
            url=ref.url,
            advert_id=ref.listing_id,
        )

    async def delete(
        self, apartment_id: str, platform: Platform, principal_id: str
    ) -> SyncOutcome:
        """Remove the confirmed listing and clear the stored reference.

        Raises:
            ApartmentNotFound, NotPublished, StillPending, token manager errors,
            DeleteRejected
        """
        apartment = await self._get_apartment(apartment_id)
        ref = self._confirmed_ref(apartment, platform)

        await self._clients[platform].delete(ref.listing_id, principal_id)
        await self._storage.set_external_ref(apartment_id, platform, None)

        logger.info(f"Apartment {apartment_id} removed from {platform.value} by {principal_id}")
        return SyncOutcome(
            message=f"Listing removed from {platform.label}.",
            advert_id=ref.listing_id,
        )

    async def status(self, apartment_id: str, principal_id: str) -> StatusOutcome:
        """Probe the Otodom listing of an apartment.

        A pending reference is promoted when the probe reports the advert id.

        Raises:
            ApartmentNotFound, NotPublished, StillPending (probe failed on a
            pending reference), token manager errors, StatusQueryFailed
        """
        platform = Platform.OTODOM
        client = self._clients[platform]
        if not isinstance(client, OtodomClient):
            raise StatusQueryFailed("Status probe is only available for Otodom")

        apartment = await self._get_apartment(apartment_id)
        ref = apartment.external_ref(platform)
        if ref is None:
            raise NotPublished(f"Apartment {apartment_id} is not published on {platform.label}")

        try:
            status = await client.get_status(ref.value, principal_id)
        except StatusQueryFailed as e:
            if isinstance(ref, PendingRef):
                raise StillPending(
                    f"Status of pending transaction {ref.transaction_id} unavailable: {e.message}"
                ) from e
            raise

        if isinstance(ref, PendingRef) and status.listing_id:
            confirmed_id = await self._storage.confirm_pending_ref(
                platform, ref.transaction_id, status.listing_id, url=status.url
            )
            if confirmed_id is not None:
                logger.info(
                    f"Apartment {apartment_id} confirmed by status probe: "
                    f"{ref.transaction_id} -> {status.listing_id}"
                )
                ref = ConfirmedRef(listing_id=status.listing_id, url=status.url or ref.url)

        confirmed = isinstance(ref, ConfirmedRef)
        return StatusOutcome(
            message=(
                f"Listing is active on {platform.label}."
                if confirmed
                else f"Listing is still being processed by {platform.label}."
            ),
            url=ref.url,
            advert_id=ref.value,
            confirmed=confirmed,
            state=status.state,
            data=status.data,
        )

    async def otodom_taxonomy(self, principal_id: str) -> TaxonomyAttributes:
        """Attribute taxonomy of the Otodom rental category.

        Raises:
            NotConfigured, token manager errors, TaxonomyQueryFailed
        """
        client = self._clients[Platform.OTODOM]
        if not isinstance(client, OtodomClient):
            raise TaxonomyQueryFailed("Taxonomy lookup is only available for Otodom")
        return await client.get_taxonomy(principal_id)
