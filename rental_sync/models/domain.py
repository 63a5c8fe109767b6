"""Domain models for the rental listing synchronization service."""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator


class Platform(str, Enum):
    """External marketplaces an apartment can be listed on."""

    OLX = "olx"
    OTODOM = "otodom"

    @property
    def label(self) -> str:
        return "OLX" if self is Platform.OLX else "Otodom"


class ApartmentStatus(str, Enum):
    """Rental status of an apartment."""

    AVAILABLE = "AVAILABLE"
    RENTED = "RENTED"
    INVENTORY = "INVENTORY"


class PendingRef(BaseModel):
    """Publish request accepted, durable listing id not known yet."""

    state: Literal["pending"] = "pending"
    transaction_id: str
    url: Optional[str] = None

    @property
    def value(self) -> str:
        return self.transaction_id


class ConfirmedRef(BaseModel):
    """Durable listing id, usable for update and delete."""

    state: Literal["confirmed"] = "confirmed"
    listing_id: str
    url: Optional[str] = None

    @property
    def value(self) -> str:
        return self.listing_id


ExternalRef = Annotated[Union[PendingRef, ConfirmedRef], Field(discriminator="state")]


class Apartment(BaseModel):
    """Represents one rental unit."""

    id: Optional[str] = None
    title: str
    address: str = ""
    street: str = ""
    street_number: str = ""
    postal_code: str = ""
    city: str = ""
    price: float = Field(default=0, ge=0)
    area: float = Field(default=0, ge=0)
    description: str = ""
    photos: list[str] = Field(default_factory=list)
    status: ApartmentStatus = ApartmentStatus.AVAILABLE
    contract_end_date: Optional[date] = None
    available_from: Optional[date] = None

    # Otodom listing attributes
    number_of_rooms: Optional[int] = Field(default=None, ge=1)
    heating: Optional[str] = None
    floor: Optional[str] = None
    finishing_status: Optional[str] = None
    rent_charges: Optional[float] = Field(default=None, ge=0)
    deposit: Optional[float] = Field(default=None, ge=0)
    has_elevator: bool = False

    # Otodom geocoding inputs
    city_id: Optional[int] = None
    street_name: str = ""
    lat: Optional[float] = None
    lon: Optional[float] = None

    external_ids: dict[Platform, ExternalRef] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _contract_end_only_when_rented(self) -> "Apartment":
        if self.contract_end_date is not None and self.status != ApartmentStatus.RENTED:
            raise ValueError("contract_end_date is only allowed for RENTED apartments")
        return self

    def external_ref(self, platform: Platform) -> Optional[Union[PendingRef, ConfirmedRef]]:
        """Get the external reference for a platform, None when never published."""
        return self.external_ids.get(platform)

    def photo_urls(self, base_url: Optional[str] = None) -> list[str]:
        """Photo URLs in order, relative ones resolved against base_url."""
        return [absolute_url(photo, base_url) for photo in self.photos if photo]


def absolute_url(url: str, base_url: Optional[str] = None) -> str:
    """Join a relative URL with base_url, keeping exactly one slash between them.

    Absolute (http/https) URLs and relative URLs without a base are returned as-is.
    """
    if url.startswith(("http://", "https://")) or not base_url:
        return url
    return f"{base_url.rstrip('/')}/{url.lstrip('/')}"


class AppCredential(BaseModel):
    """Application-level OAuth client credentials, one per platform."""

    platform: Platform
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    api_key: Optional[str] = None  # Otodom X-API-KEY
    updated_at: Optional[datetime] = None

    @property
    def is_configured(self) -> bool:
        if not (self.client_id and self.client_secret):
            return False
        if self.platform == Platform.OTODOM:
            return bool(self.api_key)
        return True


class UserToken(BaseModel):
    """Principal-level OAuth tokens for one platform."""

    platform: Platform
    principal_id: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    is_active: bool = False
    last_sync_at: Optional[datetime] = None
    last_error: Optional[str] = None
    updated_at: Optional[datetime] = None

    def has_valid_token(self, now: Optional[datetime] = None) -> bool:
        """Check the stored access token against the current time (strict)."""
        if not self.access_token or self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return self.expires_at > now


class SyncFailure(BaseModel):
    """Failure log entry for operator attention."""

    id: Optional[int] = None
    platform: Platform
    transaction_id: Optional[str] = None
    object_id: Optional[str] = None
    event_type: Optional[str] = None
    error: str
    created_at: Optional[datetime] = None
