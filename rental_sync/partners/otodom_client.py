"""Otodom (OLX Group advert API) client.

Publishing is asynchronous on this platform: the publish call answers with a
transaction id and the durable advert uuid is delivered later by webhook,
unless the response already carries it in ``data.uuid``.
"""

import logging
import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from rental_sync.models.domain import Apartment, ConfirmedRef, PendingRef, Platform
from rental_sync.partners.base import PartnerClient, PublishResult, response_json
from rental_sync.partners.errors import (
    DeleteRejected,
    PublishRejected,
    StatusQueryFailed,
    TaxonomyQueryFailed,
    UpdateRejected,
)

logger = logging.getLogger(__name__)

OTODOM_SITE_URN = "urn:site:otodompl"
OTODOM_CATEGORY_URN = "urn:concept:apartments-for-rent"
OTODOM_ADVERT_URL = "https://www.otodom.pl/pl/oferta/{advert_id}"
OTODOM_TAXONOMY_URL = (
    "https://api.olxgroup.com/taxonomy/v1/category/urn:concept:apartments-for-rent/attributes"
)

# Attributes of interest when mapping rent charges and deposit
TAXONOMY_SEARCH_TERMS = ("deposit", "kaucja", "rent", "czynsz", "charge", "service")

TITLE_MIN_LENGTH = 5
TITLE_MAX_LENGTH = 70
TITLE_FALLBACK = "Mieszkanie do wynajęcia"
DESCRIPTION_MIN_LENGTH = 50
DESCRIPTION_MAX_LENGTH = 65535
DESCRIPTION_FILLER = "Mieszkanie do wynajęcia w doskonałej lokalizacji. Zapraszamy do kontaktu."

# No geocoding: missing location data falls back to central Warsaw
DEFAULT_CITY_ID = 26
DEFAULT_STREET_NAME = "Świętokrzyska"
DEFAULT_LATITUDE = 52.2297
DEFAULT_LONGITUDE = 21.0122

HEATING_TYPES = {"boiler-room", "gas", "electrical", "urban", "other", "tiled-stove"}
FLOORS = {
    "cellar",
    "ground-floor",
    "1st-floor",
    "2nd-floor",
    "3rd-floor",
    "4th-floor",
    "5th-floor",
    "6th-floor",
    "7th-floor",
    "8th-floor",
    "9th-floor",
    "10th-floor",
    "11th-floor-and-above",
    "garret",
}
FINISHING_STATUSES = {"to-complete", "ready-to-use", "in-renovation"}

ROOMS_IN_TITLE = re.compile(r"(\d+)[\s-]*pokoj", re.IGNORECASE)


class ListingStatus(BaseModel):
    """Metadata returned by the advert status probe."""

    ref: str
    listing_id: Optional[str] = None
    state: Optional[str] = None
    url: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)


class TaxonomyAttributes(BaseModel):
    """Category attribute taxonomy with the rent and deposit related subset."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    found_attributes: list[dict[str, Any]] = Field(alias="foundAttributes")
    all_attributes: list[dict[str, Any]] = Field(alias="allAttributes")
    total_count: int = Field(alias="totalCount")


def _matches_search_terms(attribute: dict[str, Any]) -> bool:
    urn = str(attribute.get("urn") or "").lower()
    label = str(attribute.get("label") or "").lower()
    return any(term in urn or term in label for term in TAXONOMY_SEARCH_TERMS)


def normalize_title(title: str) -> str:
    """Shape a title to the partner rules: 5..70 chars, only the first letter upper-case."""
    if len(title) < TITLE_MIN_LENGTH:
        title = TITLE_FALLBACK
    title = title[:TITLE_MAX_LENGTH]
    return title[:1].upper() + title[1:].lower()


def normalize_description(description: str) -> str:
    if len(description) < DESCRIPTION_MIN_LENGTH:
        description = f"{description} {DESCRIPTION_FILLER}"
    return description[:DESCRIPTION_MAX_LENGTH]


def number_of_rooms(apartment: Apartment) -> Optional[int]:
    """Explicit room count, else one parsed from a title like "3-pokojowe"."""
    if apartment.number_of_rooms:
        return apartment.number_of_rooms
    match = ROOMS_IN_TITLE.search(apartment.title or "")
    if match:
        rooms = int(match.group(1))
        if 1 <= rooms <= 10:
            return rooms
    return None


def _price(value: float) -> dict:
    return {"value": value, "currency": "PLN"}


def build_attributes(apartment: Apartment) -> list[dict[str, str]]:
    """Build the taxonomy attribute list of an apartment."""
    attributes = []

    if apartment.area > 0:
        attributes.append({"urn": "urn:concept:net-area-m2", "value": f"{apartment.area:g}"})

    rooms = number_of_rooms(apartment)
    if rooms is not None:
        value = f"urn:concept:{rooms}" if rooms <= 10 else "urn:concept:more"
        attributes.append({"urn": "urn:concept:number-of-rooms", "value": value})

    attributes.append({"urn": "urn:concept:market", "value": "urn:concept:secondary"})

    if apartment.heating in HEATING_TYPES:
        attributes.append(
            {"urn": "urn:concept:heating", "value": f"urn:concept:{apartment.heating}"}
        )
    if apartment.floor in FLOORS:
        attributes.append({"urn": "urn:concept:floor", "value": f"urn:concept:{apartment.floor}"})
    if apartment.finishing_status in FINISHING_STATUSES:
        attributes.append(
            {"urn": "urn:concept:status", "value": f"urn:concept:{apartment.finishing_status}"}
        )
    if apartment.available_from is not None:
        attributes.append(
            {"urn": "urn:concept:free-from", "value": apartment.available_from.isoformat()}
        )
    if apartment.has_elevator:
        attributes.append({"urn": "urn:concept:extras", "value": "urn:concept:lift"})
    if apartment.rent_charges:
        attributes.append(
            {"urn": "urn:concept:rent-charges", "value": f"{apartment.rent_charges:g}"}
        )
    if apartment.deposit:
        attributes.append({"urn": "urn:concept:deposit", "value": f"{apartment.deposit:g}"})

    return attributes


def build_location(apartment: Apartment) -> dict:
    """Location block with the required city id / street name custom fields."""
    street_name = (apartment.street or apartment.street_name).strip() or DEFAULT_STREET_NAME
    custom_fields: dict[str, Any] = {
        "city_id": apartment.city_id or DEFAULT_CITY_ID,
        "street_name": street_name,
    }
    if apartment.postal_code.strip():
        custom_fields["postal_code"] = apartment.postal_code.strip()

    return {
        "exact": True,
        "lat": apartment.lat if apartment.lat is not None else DEFAULT_LATITUDE,
        "lon": apartment.lon if apartment.lon is not None else DEFAULT_LONGITUDE,
        "custom_fields": custom_fields,
    }


class OtodomClient(PartnerClient):
    """HTTP client for the OLX Group advert API (Otodom site)."""

    platform = Platform.OTODOM

    def __init__(self, *args, taxonomy_url: str = OTODOM_TAXONOMY_URL, **kwargs):
        super().__init__(*args, **kwargs)
        self._taxonomy_url = taxonomy_url

    async def _headers(self, principal_id: str) -> dict[str, str]:
        headers = await super()._headers(principal_id)
        app_credential = await self._token_manager.get_app_credential(self.platform)
        headers["X-API-KEY"] = app_credential.api_key or ""
        headers["User-Agent"] = self._user_agent
        return headers

    def build_payload(self, apartment: Apartment) -> dict:
        """Translate an apartment into an advert body.

        Raises:
            PublishRejected: If the apartment lacks a required field
        """
        images = apartment.photo_urls(self._public_base_url)
        if not images:
            raise PublishRejected(
                "Otodom requires at least one photo",
                user_message="Add at least one photo before publishing on Otodom.",
            )
        if apartment.area <= 0:
            raise PublishRejected(
                "Otodom requires the apartment area",
                user_message="Fill in the apartment area before publishing on Otodom.",
            )
        if number_of_rooms(apartment) is None:
            raise PublishRejected(
                "Otodom requires the number of rooms",
                user_message="Fill in the number of rooms before publishing on Otodom.",
            )

        payload: dict[str, Any] = {
            "site_urn": OTODOM_SITE_URN,
            "category_urn": OTODOM_CATEGORY_URN,
            "title": normalize_title(apartment.title),
            "description": normalize_description(apartment.description or apartment.title),
            "price": _price(apartment.price),
            "location": build_location(apartment),
            "images": [{"url": url} for url in images],
            "attributes": build_attributes(apartment),
            "custom_fields": {"id": apartment.id, "reference_id": apartment.id},
        }
        if apartment.rent_charges:
            payload["rent_price"] = _price(apartment.rent_charges)
        if apartment.deposit:
            payload["deposit_price"] = _price(apartment.deposit)
        return payload

    async def publish(self, apartment: Apartment, principal_id: str) -> PublishResult:
        """Submit a new advert.

        POST {api_base}

        Returns:
            PublishResult with a pending reference on the transaction id, or a
            confirmed one when the response already carries the advert uuid.

        Raises:
            PublishRejected: On validation, platform or transport failure
        """
        response = await self._send(
            "POST", "", principal_id, PublishRejected, json_data=self.build_payload(apartment)
        )

        data = response_json(response)
        transaction_id = data.get("transaction_id") or data.get("id")
        nested = data.get("data") if isinstance(data.get("data"), dict) else {}
        object_id = nested.get("uuid")

        if object_id:
            url = data.get("url") or OTODOM_ADVERT_URL.format(advert_id=object_id)
            logger.info(
                f"Otodom advert {object_id} published for apartment {apartment.id} "
                f"(transaction {transaction_id})"
            )
            return PublishResult(ref=ConfirmedRef(listing_id=str(object_id), url=url))

        if not transaction_id:
            raise PublishRejected("Otodom accepted the advert but returned no transaction id")

        logger.info(
            f"Otodom advert accepted for apartment {apartment.id}, "
            f"awaiting confirmation of transaction {transaction_id}"
        )
        return PublishResult(
            ref=PendingRef(transaction_id=str(transaction_id), url=data.get("url"))
        )

    async def update(
        self, advert_id: str, apartment: Apartment, principal_id: str
    ) -> Optional[str]:
        """Replace an existing advert with the apartment's current data.

        PUT {api_base}/{advert_id}

        Raises:
            UpdateRejected: On validation, platform or transport failure
        """
        try:
            payload = self.build_payload(apartment)
        except PublishRejected as e:
            raise UpdateRejected(e.message, user_message=e.user_message) from e

        # site and category are fixed at creation
        payload.pop("site_urn")
        payload.pop("category_urn")
        payload.pop("custom_fields")

        response = await self._send(
            "PUT", f"/{advert_id}", principal_id, UpdateRejected, json_data=payload
        )
        logger.info(f"Otodom advert {advert_id} updated")
        return response_json(response).get("url")

    async def delete(self, advert_id: str, principal_id: str) -> None:
        """Remove an advert.

        DELETE {api_base}/{advert_id}

        Raises:
            DeleteRejected: On platform or transport failure
        """
        await self._send("DELETE", f"/{advert_id}", principal_id, DeleteRejected)
        logger.info(f"Otodom advert {advert_id} deleted")

    async def get_status(self, advert_id: str, principal_id: str) -> ListingStatus:
        """Read advert metadata.

        GET {api_base}/{advert_id}/meta

        Args:
            advert_id: Transaction id or advert uuid

        Raises:
            StatusQueryFailed: On platform or transport failure
        """
        response = await self._send("GET", f"/{advert_id}/meta", principal_id, StatusQueryFailed)

        data = response_json(response)
        nested = data.get("data") if isinstance(data.get("data"), dict) else {}
        listing_id = (
            data.get("uuid") or data.get("object_id") or nested.get("uuid") or nested.get("object_id")
        )
        state = data.get("state") or data.get("status") or nested.get("state") or nested.get("status")

        return ListingStatus(
            ref=advert_id,
            listing_id=str(listing_id) if listing_id else None,
            state=str(state) if state else None,
            url=data.get("url") or nested.get("url"),
            data=data,
        )

    async def get_taxonomy(self, principal_id: str) -> TaxonomyAttributes:
        """Read the attribute taxonomy of the apartments-for-rent category.

        GET {taxonomy_url}

        The first attempt carries only the X-API-KEY; on 401/403 it is
        repeated with the principal's bearer token.

        Raises:
            NotConfigured: If the app credential or its api key is missing
            TaxonomyQueryFailed: On platform or transport failure
        """
        app_credential = await self._token_manager.get_app_credential(self.platform)
        headers = {
            "X-API-KEY": app_credential.api_key or "",
            "Accept": "application/json",
            "User-Agent": self._user_agent,
        }

        response = await self._request("GET", self._taxonomy_url, headers, TaxonomyQueryFailed)
        if response.status_code in (401, 403):
            logger.info(
                f"Otodom taxonomy refused the api key alone (HTTP {response.status_code}), "
                f"retrying with a bearer token"
            )
            headers = await self._headers(principal_id)
            response = await self._request(
                "GET", self._taxonomy_url, headers, TaxonomyQueryFailed
            )
        self._check_response(response, "GET", TaxonomyQueryFailed)

        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            data = data.get("attributes")
        attributes = [a for a in data if isinstance(a, dict)] if isinstance(data, list) else []

        return TaxonomyAttributes(
            found_attributes=[a for a in attributes if _matches_search_terms(a)],
            all_attributes=attributes,
            total_count=len(attributes),
        )
