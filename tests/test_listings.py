"""Tests for ListingService publish/update/delete/status orchestration."""

import pytest

from conftest import OLX_API, OTODOM_API, PRINCIPAL, PUBLIC_BASE_URL, configure_platform, make_apartment
from rental_sync.core.listings import ListingService
from rental_sync.models.domain import ApartmentStatus, ConfirmedRef, PendingRef, Platform
from rental_sync.partners.errors import (
    AlreadyPublished,
    ApartmentNotAvailable,
    ApartmentNotFound,
    NotPublished,
    PublishRejected,
    RefreshFailed,
    StatusQueryFailed,
    StillPending,
)
from rental_sync.partners.olx_client import OLXClient
from rental_sync.partners.otodom_client import OtodomClient


@pytest.fixture
def service(storage, token_manager, partner) -> ListingService:
    common = dict(
        public_base_url=PUBLIC_BASE_URL,
        user_agent="RentalSyncTest",
        transport=partner.transport,
    )
    return ListingService(
        storage,
        {
            Platform.OLX: OLXClient(token_manager, api_base=OLX_API, **common),
            Platform.OTODOM: OtodomClient(token_manager, api_base=OTODOM_API, **common),
        },
    )


async def create_with_ref(storage, platform, ref) -> str:
    apartment = await storage.create_apartment(make_apartment())
    await storage.set_external_ref(apartment.id, platform, ref)
    return apartment.id


class TestPublish:
    """Publish preconditions and stored references."""

    async def test_olx_publish_stores_confirmed_ref(self, storage, service, partner):
        await configure_platform(storage, Platform.OLX)
        partner.add("POST", f"{OLX_API}/adverts", json={"id": "olx-1"})
        apartment = await storage.create_apartment(make_apartment())

        outcome = await service.publish(apartment.id, Platform.OLX, PRINCIPAL)

        assert outcome.success is True
        assert outcome.advert_id == "olx-1"
        assert outcome.url == "https://www.olx.pl/oferta/olx-1"
        stored = await storage.get_apartment(apartment.id)
        assert stored.external_ref(Platform.OLX) == ConfirmedRef(
            listing_id="olx-1", url="https://www.olx.pl/oferta/olx-1"
        )

    async def test_otodom_publish_stores_pending_ref(self, storage, service, partner):
        await configure_platform(storage, Platform.OTODOM)
        partner.add("POST", OTODOM_API, json={"transaction_id": "txn-1"})
        apartment = await storage.create_apartment(make_apartment())

        outcome = await service.publish(apartment.id, Platform.OTODOM, PRINCIPAL)

        assert outcome.advert_id == "txn-1"
        assert "confirms" in outcome.message
        stored = await storage.get_apartment(apartment.id)
        assert stored.external_ref(Platform.OTODOM) == PendingRef(transaction_id="txn-1")

    async def test_outcome_serialized_with_alias(self, storage, service, partner):
        await configure_platform(storage, Platform.OLX)
        partner.add("POST", f"{OLX_API}/adverts", json={"id": "olx-1"})
        apartment = await storage.create_apartment(make_apartment())

        outcome = await service.publish(apartment.id, Platform.OLX, PRINCIPAL)

        assert outcome.model_dump(by_alias=True, exclude_none=True)["advertId"] == "olx-1"

    async def test_missing_apartment(self, service):
        with pytest.raises(ApartmentNotFound):
            await service.publish("missing", Platform.OLX, PRINCIPAL)

    async def test_only_available_apartments(self, storage, service, partner):
        apartment = await storage.create_apartment(make_apartment(status=ApartmentStatus.RENTED))

        with pytest.raises(ApartmentNotAvailable):
            await service.publish(apartment.id, Platform.OLX, PRINCIPAL)
        assert partner.requests == []

    async def test_already_published(self, storage, service, partner):
        apartment_id = await create_with_ref(storage, Platform.OLX, ConfirmedRef(listing_id="x"))

        with pytest.raises(AlreadyPublished):
            await service.publish(apartment_id, Platform.OLX, PRINCIPAL)
        assert partner.requests == []

    async def test_pending_blocks_republish(self, storage, service, partner):
        apartment_id = await create_with_ref(
            storage, Platform.OTODOM, PendingRef(transaction_id="txn-1")
        )

        with pytest.raises(StillPending):
            await service.publish(apartment_id, Platform.OTODOM, PRINCIPAL)
        assert partner.requests == []

    async def test_rejection_leaves_ref_empty(self, storage, service, partner):
        await configure_platform(storage, Platform.OLX)
        partner.add("POST", f"{OLX_API}/adverts", status_code=400, json={"message": "bad"})
        apartment = await storage.create_apartment(make_apartment())

        with pytest.raises(PublishRejected):
            await service.publish(apartment.id, Platform.OLX, PRINCIPAL)

        stored = await storage.get_apartment(apartment.id)
        assert stored.external_ref(Platform.OLX) is None

    async def test_refresh_failure_propagates(self, storage, service, partner):
        await configure_platform(storage, Platform.OLX, expires_in=-60)
        partner.add("POST", "https://olx.test/api/open/oauth/token", status_code=401, json={})
        apartment = await storage.create_apartment(make_apartment())

        with pytest.raises(RefreshFailed):
            await service.publish(apartment.id, Platform.OLX, PRINCIPAL)
        assert partner.calls("POST", f"{OLX_API}/adverts") == []


class TestUpdateDelete:
    """Operations on confirmed listings."""

    async def test_update_refreshes_stored_url(self, storage, service, partner):
        await configure_platform(storage, Platform.OLX)
        apartment_id = await create_with_ref(
            storage, Platform.OLX, ConfirmedRef(listing_id="olx-1", url="https://old")
        )
        partner.add("PUT", f"{OLX_API}/adverts/olx-1", json={"url": "https://new"})

        outcome = await service.update(apartment_id, Platform.OLX, PRINCIPAL)

        assert outcome.url == "https://new"
        stored = await storage.get_apartment(apartment_id)
        assert stored.external_ref(Platform.OLX).url == "https://new"

    async def test_update_not_published(self, storage, service):
        apartment = await storage.create_apartment(make_apartment())

        with pytest.raises(NotPublished):
            await service.update(apartment.id, Platform.OLX, PRINCIPAL)

    async def test_update_pending(self, storage, service, partner):
        apartment_id = await create_with_ref(
            storage, Platform.OTODOM, PendingRef(transaction_id="txn-1")
        )

        with pytest.raises(StillPending):
            await service.update(apartment_id, Platform.OTODOM, PRINCIPAL)
        assert partner.requests == []

    async def test_delete_clears_ref(self, storage, service, partner):
        await configure_platform(storage, Platform.OTODOM)
        apartment_id = await create_with_ref(
            storage, Platform.OTODOM, ConfirmedRef(listing_id="uuid-1")
        )
        partner.add("DELETE", f"{OTODOM_API}/uuid-1", status_code=204)

        outcome = await service.delete(apartment_id, Platform.OTODOM, PRINCIPAL)

        assert outcome.advert_id == "uuid-1"
        stored = await storage.get_apartment(apartment_id)
        assert stored.external_ref(Platform.OTODOM) is None

    async def test_delete_pending(self, storage, service):
        apartment_id = await create_with_ref(
            storage, Platform.OTODOM, PendingRef(transaction_id="txn-1")
        )

        with pytest.raises(StillPending):
            await service.delete(apartment_id, Platform.OTODOM, PRINCIPAL)


class TestStatus:
    """Otodom status probe."""

    async def test_probe_promotes_pending_ref(self, storage, service, partner):
        await configure_platform(storage, Platform.OTODOM)
        apartment_id = await create_with_ref(
            storage, Platform.OTODOM, PendingRef(transaction_id="txn-1")
        )
        partner.add(
            "GET",
            f"{OTODOM_API}/txn-1/meta",
            json={"uuid": "uuid-1", "state": "active", "url": "https://otodom.pl/uuid-1"},
        )

        outcome = await service.status(apartment_id, PRINCIPAL)

        assert outcome.confirmed is True
        assert outcome.advert_id == "uuid-1"
        assert outcome.state == "active"
        stored = await storage.get_apartment(apartment_id)
        assert stored.external_ref(Platform.OTODOM) == ConfirmedRef(
            listing_id="uuid-1", url="https://otodom.pl/uuid-1"
        )

    async def test_probe_still_processing(self, storage, service, partner):
        await configure_platform(storage, Platform.OTODOM)
        apartment_id = await create_with_ref(
            storage, Platform.OTODOM, PendingRef(transaction_id="txn-1")
        )
        partner.add("GET", f"{OTODOM_API}/txn-1/meta", json={"state": "processing"})

        outcome = await service.status(apartment_id, PRINCIPAL)

        assert outcome.confirmed is False
        assert outcome.state == "processing"
        stored = await storage.get_apartment(apartment_id)
        assert isinstance(stored.external_ref(Platform.OTODOM), PendingRef)

    async def test_probe_failure_on_pending(self, storage, service, partner):
        await configure_platform(storage, Platform.OTODOM)
        apartment_id = await create_with_ref(
            storage, Platform.OTODOM, PendingRef(transaction_id="txn-1")
        )
        partner.add("GET", f"{OTODOM_API}/txn-1/meta", status_code=404, json={})

        with pytest.raises(StillPending):
            await service.status(apartment_id, PRINCIPAL)

    async def test_probe_failure_on_confirmed(self, storage, service, partner):
        await configure_platform(storage, Platform.OTODOM)
        apartment_id = await create_with_ref(
            storage, Platform.OTODOM, ConfirmedRef(listing_id="uuid-1")
        )
        partner.add("GET", f"{OTODOM_API}/uuid-1/meta", status_code=500, json={})

        with pytest.raises(StatusQueryFailed):
            await service.status(apartment_id, PRINCIPAL)

    async def test_probe_not_published(self, storage, service):
        apartment = await storage.create_apartment(make_apartment())

        with pytest.raises(NotPublished):
            await service.status(apartment.id, PRINCIPAL)
