"""Pydantic models for OLX Group (Otodom) webhook payloads."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

PUBLISH_FLOW = "publish_advert"
EVENT_POSTED_SUCCESS = "advert_posted_success"
EVENT_POSTED_ERROR = "advert_posted_error"
EVENT_LOCATION_ERROR = "advert_location_error"

ERROR_EVENTS = {EVENT_POSTED_ERROR, EVENT_LOCATION_ERROR}


class WebhookNotification(BaseModel):
    """Asynchronous outcome of a publish request.

    Example payload:
    {
        "flow": "publish_advert",
        "event_type": "advert_posted_success",
        "object_id": "4b1e6a0c-...",
        "transaction_id": "txn-123",
        "data": {"url": "https://www.otodom.pl/pl/oferta/..."}
    }
    """

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    flow: Optional[str] = None
    event_type: Optional[str] = None
    object_id: str = Field(min_length=1)
    transaction_id: str = Field(min_length=1)
    data: Optional[dict[str, Any]] = None

    @property
    def is_success(self) -> bool:
        return self.event_type == EVENT_POSTED_SUCCESS

    @property
    def is_error(self) -> bool:
        return self.event_type in ERROR_EVENTS

    @property
    def url(self) -> Optional[str]:
        """Advert URL from the event data, if present."""
        if self.data and isinstance(self.data.get("url"), str):
            return self.data["url"]
        return None

    @property
    def error_details(self) -> str:
        """Readable description of an error event."""
        if not self.data:
            return self.event_type or "unknown error"
        for key in ("message", "error", "errors", "reason"):
            if self.data.get(key):
                return f"{self.event_type}: {self.data[key]}"
        return f"{self.event_type}: {self.data}"
