"""Error taxonomy for the external listing synchronization flows.

Every error carries a technical ``message`` (logged, returned to API callers)
and a ``user_message`` worded for the dashboard, so that "already published",
"not confirmed yet" and "transient failure" read differently to the user.
"""

import json
from typing import Optional

import httpx


class SyncError(Exception):
    """Base exception for synchronization errors."""

    default_user_message = "Something went wrong. Please try again."

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.user_message = user_message or self.default_user_message


# Credentials and tokens


class NotConfigured(SyncError):
    """Raised when the application-level credential is missing or incomplete."""

    default_user_message = (
        "This marketplace has not been set up yet. Ask an administrator to add the API credentials."
    )


class NotAuthorized(SyncError):
    """Raised when the principal has no active token for the platform."""

    default_user_message = "Connect your marketplace account in API settings first."


class RefreshFailed(SyncError):
    """Raised when exchanging the refresh token is rejected or fails."""

    default_user_message = (
        "Your marketplace session has expired. Please connect your account again."
    )


class AuthorizationFailed(SyncError):
    """Raised when the authorization code exchange is rejected or fails."""

    default_user_message = "Connecting your marketplace account failed. Please try again."


class InvalidState(SyncError):
    """Raised when the OAuth callback state cannot be decoded."""

    default_user_message = (
        "The authorization link is invalid or incomplete. Start the connection again."
    )


# Partner API calls


class PartnerRequestError(SyncError):
    """Base exception for rejected partner API calls."""

    default_user_message = "The marketplace did not accept the request. Please try again."

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        user_message: Optional[str] = None,
    ):
        super().__init__(message, user_message)
        self.status_code = status_code


class PublishRejected(PartnerRequestError):
    """Raised when the platform rejects a publish call."""

    default_user_message = "Publishing failed. Please check the listing and try again."


class UpdateRejected(PartnerRequestError):
    """Raised when the platform rejects an update call."""

    default_user_message = "Updating the listing failed. Please try again."


class DeleteRejected(PartnerRequestError):
    """Raised when the platform rejects a delete call."""

    default_user_message = "Removing the listing failed. Please try again."


class StatusQueryFailed(PartnerRequestError):
    """Raised when the listing status probe fails."""

    default_user_message = "Checking the listing status failed. Please try again."


class TaxonomyQueryFailed(PartnerRequestError):
    """Raised when reading the category attribute taxonomy fails."""

    default_user_message = "Loading the Otodom attribute list failed. Please try again."


# Listing state


class StillPending(SyncError):
    """Raised when an operation targets a not yet confirmed transaction id."""

    default_user_message = (
        "The listing is still being processed by the marketplace. "
        "Try again in a few minutes, once it has been confirmed."
    )


class AlreadyPublished(SyncError):
    """Raised when publishing an apartment that already has a listing."""

    default_user_message = "This apartment is already published on this marketplace."


class NotPublished(SyncError):
    """Raised when updating or deleting an apartment without a listing."""

    default_user_message = "This apartment is not published on this marketplace."


class ApartmentNotFound(SyncError):
    """Raised when the apartment record does not exist."""

    default_user_message = "Apartment not found."


class ApartmentNotAvailable(SyncError):
    """Raised when publishing an apartment whose status is not AVAILABLE."""

    default_user_message = "Only available apartments can be published."


# Inbound notifications


class InvalidSignature(SyncError):
    """Raised when the webhook signature does not match."""

    default_user_message = "Invalid signature."


class MalformedPayload(SyncError):
    """Raised when the webhook payload lacks required fields."""

    default_user_message = "Invalid payload."


def describe_response_error(response: httpx.Response) -> str:
    """Extract a readable error description from a partner error response.

    Partners answer with one of: a list of validation ``errors``, a
    ``message``, an OAuth ``error_description``/``error`` pair, or plain text.
    """
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"

    if isinstance(data, str):
        return data
    if not isinstance(data, dict):
        return json.dumps(data)

    errors = data.get("errors")
    if isinstance(errors, list) and errors:
        parts = []
        for error in errors:
            if isinstance(error, dict) and error.get("field") and error.get("message"):
                parts.append(f"{error['field']}: {error['message']}")
            elif isinstance(error, dict) and error.get("message"):
                parts.append(str(error["message"]))
            else:
                parts.append(error if isinstance(error, str) else json.dumps(error))
        return "Validation errors: " + "; ".join(parts)

    for key in ("message", "error_description"):
        if data.get(key):
            return str(data[key])

    error = data.get("error")
    if error:
        return error if isinstance(error, str) else json.dumps(error)

    return json.dumps(data)
