# Partner (OLX, Otodom) API integration module

from rental_sync.partners.oauth import (
    AuthorizationFlow,
    OAuthEndpoints,
    TokenGrant,
    TokenManager,
    TokenRequestError,
)
from rental_sync.partners.base import PartnerClient, PublishResult
from rental_sync.partners.olx_client import OLXClient
from rental_sync.partners.otodom_client import ListingStatus, OtodomClient
from rental_sync.partners.signature import compute_signature, verify_signature
from rental_sync.partners.webhook_models import WebhookNotification

__all__ = [
    "AuthorizationFlow",
    "OAuthEndpoints",
    "TokenGrant",
    "TokenManager",
    "TokenRequestError",
    "PartnerClient",
    "PublishResult",
    "OLXClient",
    "ListingStatus",
    "OtodomClient",
    "compute_signature",
    "verify_signature",
    "WebhookNotification",
]
