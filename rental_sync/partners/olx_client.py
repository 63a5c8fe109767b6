"""OLX partner API client."""

import logging
from typing import Optional

from rental_sync.models.domain import Apartment, ConfirmedRef, Platform
from rental_sync.partners.base import PartnerClient, PublishResult, response_json
from rental_sync.partners.errors import DeleteRejected, PublishRejected, UpdateRejected

logger = logging.getLogger(__name__)

OLX_CATEGORY_ID = "5019"  # Apartments for rent
OLX_TITLE_MAX_LENGTH = 70
OLX_ADVERT_URL = "https://www.olx.pl/oferta/{advert_id}"

# No geocoding: every advert is pinned to central Warsaw
DEFAULT_LATITUDE = 52.2297
DEFAULT_LONGITUDE = 21.0122


class OLXClient(PartnerClient):
    """HTTP client for the OLX partner adverts API.

    OLX returns the durable advert id synchronously, so a successful publish
    yields a confirmed reference right away.
    """

    platform = Platform.OLX

    def __init__(
        self,
        *args,
        contact_name: str = "",
        contact_email: str = "",
        contact_phone: str = "",
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self._contact = {
            "name": contact_name,
            "email": contact_email,
            "phone": contact_phone,
        }

    def build_payload(self, apartment: Apartment) -> dict:
        """Translate an apartment into an OLX advert body."""
        return {
            "title": apartment.title[:OLX_TITLE_MAX_LENGTH],
            "description": apartment.description or apartment.title,
            "category_id": OLX_CATEGORY_ID,
            "price": {"value": apartment.price, "currency": "PLN"},
            "location": {
                "latitude": apartment.lat if apartment.lat is not None else DEFAULT_LATITUDE,
                "longitude": apartment.lon if apartment.lon is not None else DEFAULT_LONGITUDE,
            },
            "images": apartment.photo_urls(self._public_base_url),
            "contact": dict(self._contact),
        }

    async def publish(self, apartment: Apartment, principal_id: str) -> PublishResult:
        """Publish a new advert.

        POST /adverts

        Raises:
            PublishRejected: On any platform or transport failure
        """
        response = await self._send(
            "POST",
            "/adverts",
            principal_id,
            PublishRejected,
            json_data=self.build_payload(apartment),
        )

        data = response_json(response)
        if isinstance(data.get("data"), dict):
            data = data["data"]

        advert_id = data.get("id")
        if advert_id is None:
            raise PublishRejected("OLX accepted the advert but returned no id")

        advert_id = str(advert_id)
        url = data.get("url") or OLX_ADVERT_URL.format(advert_id=advert_id)
        logger.info(f"OLX advert {advert_id} published for apartment {apartment.id}")

        return PublishResult(ref=ConfirmedRef(listing_id=advert_id, url=url))

    async def update(
        self, advert_id: str, apartment: Apartment, principal_id: str
    ) -> Optional[str]:
        """Replace an existing advert with the apartment's current data.

        PUT /adverts/{advert_id}

        Returns:
            Advert URL if the platform reported one

        Raises:
            UpdateRejected: On any platform or transport failure
        """
        response = await self._send(
            "PUT",
            f"/adverts/{advert_id}",
            principal_id,
            UpdateRejected,
            json_data=self.build_payload(apartment),
        )
        logger.info(f"OLX advert {advert_id} updated")
        return response_json(response).get("url")

    async def delete(self, advert_id: str, principal_id: str) -> None:
        """Remove an advert.

        DELETE /adverts/{advert_id}

        Raises:
            DeleteRejected: On any platform or transport failure
        """
        await self._send("DELETE", f"/adverts/{advert_id}", principal_id, DeleteRejected)
        logger.info(f"OLX advert {advert_id} deleted")
