"""OAuth2 token lifecycle for the OLX and Otodom partner APIs.

Tokens are stored per (platform, principal). Application-level client
credentials are shared by all principals of a platform.
"""

import base64
import binascii
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, Field

from rental_sync.config import Settings
from rental_sync.models.domain import AppCredential, Platform, UserToken
from rental_sync.partners.errors import (
    AuthorizationFailed,
    InvalidState,
    NotAuthorized,
    NotConfigured,
    RefreshFailed,
    describe_response_error,
)
from rental_sync.storage.base import StorageInterface

logger = logging.getLogger(__name__)

OAUTH_SCOPE = "read write"


class OAuthEndpoints(BaseModel):
    """Authorization and token endpoints of one platform."""

    authorize_url: str
    token_url: str


def endpoints_from_settings(settings: Settings) -> dict[Platform, OAuthEndpoints]:
    """Build the per-platform OAuth endpoints from settings."""
    return {
        Platform.OLX: OAuthEndpoints(
            authorize_url=settings.olx_authorize_url,
            token_url=settings.olx_token_url,
        ),
        Platform.OTODOM: OAuthEndpoints(
            authorize_url=settings.otodom_authorize_url,
            token_url=settings.otodom_token_url,
        ),
    }


class TokenGrant(BaseModel):
    """OAuth2 token response from a partner token endpoint."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int = 3600
    obtained_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def expires_at(self) -> datetime:
        return self.obtained_at + timedelta(seconds=self.expires_in)


class TokenRequestError(Exception):
    """Raised when a token endpoint call fails (network or rejection)."""

    pass


def encode_state(principal_id: str) -> str:
    """Encode the principal into the opaque OAuth state parameter."""
    payload = json.dumps({"principal_id": principal_id})
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def decode_state(state: Optional[str]) -> str:
    """Recover the principal from the OAuth state parameter.

    Raises:
        InvalidState: If the state is missing, undecodable or has no principal.
    """
    if not state:
        raise InvalidState("Missing state parameter in OAuth callback")

    try:
        decoded = json.loads(base64.b64decode(state, validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise InvalidState(f"Could not decode OAuth state: {e}") from e

    principal_id = decoded.get("principal_id") if isinstance(decoded, dict) else None
    if not principal_id or not isinstance(principal_id, str):
        raise InvalidState("OAuth state does not identify a principal")

    return principal_id


class TokenManager:
    """Resolves a live access token per (platform, principal).

    Features:
    - Stored token served without a network call while not expired
    - Synchronous refresh through the platform's token endpoint when expired
    - No retries: a failed refresh means re-authorization is required

    Concurrent refreshes for the same principal are not deduplicated; the
    last writer wins and a superseded token only costs one extra refresh.
    """

    def __init__(
        self,
        storage: StorageInterface,
        endpoints: dict[Platform, OAuthEndpoints],
        timeout: float = 15.0,
        user_agent: str = "RentalSync",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize TokenManager.

        Args:
            storage: Credential store.
            endpoints: OAuth endpoints per platform.
            timeout: Timeout for token endpoint calls (seconds).
            user_agent: User-Agent sent to OLX Group endpoints.
            transport: Optional httpx transport (used by tests).
        """
        self._storage = storage
        self._endpoints = endpoints
        self._timeout = timeout
        self._user_agent = user_agent
        self._transport = transport

    async def get_app_credential(self, platform: Platform) -> AppCredential:
        """Get the complete application-level credential of a platform.

        Raises:
            NotConfigured: If the credential is missing or incomplete.
        """
        credential = await self._storage.get_app_credential(platform)
        if credential is None or not credential.is_configured:
            raise NotConfigured(
                f"{platform.label} API is not configured: application credentials are missing"
            )
        return credential

    async def get_access_token(self, platform: Platform, principal_id: str) -> str:
        """Get a valid access token, refreshing it if necessary.

        Args:
            platform: Target platform.
            principal_id: Acting principal.

        Returns:
            Valid access token string

        Raises:
            NotConfigured: No complete application-level credential.
            NotAuthorized: Principal has not completed OAuth, or nothing to refresh.
            RefreshFailed: The refresh token exchange failed.
        """
        app_credential = await self.get_app_credential(platform)

        token = await self._storage.get_user_token(platform, principal_id)
        if token is None or not token.is_active:
            raise NotAuthorized(
                f"{platform.label} API is not authorized for principal {principal_id}"
            )

        if token.has_valid_token():
            return token.access_token  # type: ignore[return-value]

        if not token.refresh_token:
            raise NotAuthorized(
                f"No valid {platform.label} token for principal {principal_id}; "
                "OAuth authorization required"
            )

        try:
            grant = await self._request_token(
                platform,
                app_credential,
                {"grant_type": "refresh_token", "refresh_token": token.refresh_token},
            )
        except TokenRequestError as e:
            logger.error(f"Token refresh failed for {platform.value} principal {principal_id}: {e}")
            await self._storage.mark_token_error(platform, principal_id, str(e))
            raise RefreshFailed(
                f"Could not refresh {platform.label} token: {e}"
            ) from e

        refreshed = token.model_copy(
            update={
                "access_token": grant.access_token,
                "refresh_token": grant.refresh_token or token.refresh_token,
                "expires_at": grant.expires_at,
                "last_sync_at": grant.obtained_at,
                "last_error": None,
            }
        )
        await self._storage.save_user_token(refreshed)
        logger.info(
            f"Token refreshed for {platform.value} principal {principal_id}, "
            f"expires in {grant.expires_in}s"
        )
        return grant.access_token

    async def exchange_code(
        self,
        platform: Platform,
        app_credential: AppCredential,
        code: str,
        redirect_uri: str,
    ) -> TokenGrant:
        """Exchange an authorization code for a token pair.

        Raises:
            TokenRequestError: On network or platform errors.
        """
        return await self._request_token(
            platform,
            app_credential,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            },
        )

    async def _request_token(
        self,
        platform: Platform,
        app_credential: AppCredential,
        body: dict,
    ) -> TokenGrant:
        """Call the platform token endpoint.

        OLX expects the client credentials in the body. Otodom (OLX Group)
        expects HTTP Basic auth plus the X-API-KEY header.

        Raises:
            TokenRequestError: On network or platform errors.
        """
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        auth: Optional[tuple[str, str]] = None

        if platform == Platform.OTODOM:
            headers["X-API-KEY"] = app_credential.api_key or ""
            headers["User-Agent"] = self._user_agent
            auth = (app_credential.client_id or "", app_credential.client_secret or "")
        else:
            body = {
                **body,
                "client_id": app_credential.client_id,
                "client_secret": app_credential.client_secret,
            }

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.post(
                    self._endpoints[platform].token_url,
                    json=body,
                    headers=headers,
                    auth=auth,
                )
            except httpx.TimeoutException as e:
                raise TokenRequestError(f"Token request timed out: {e}")
            except httpx.RequestError as e:
                raise TokenRequestError(f"Network error: {e}")

        if not response.is_success:
            raise TokenRequestError(
                f"HTTP {response.status_code}: {describe_response_error(response)}"
            )

        try:
            data = response.json()
            return TokenGrant(
                access_token=data["access_token"],
                refresh_token=data.get("refresh_token"),
                expires_in=int(data.get("expires_in", 3600)),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise TokenRequestError(f"Unexpected token response: {e}")


class AuthorizationFlow:
    """Interactive authorize -> callback exchange for principal-level tokens."""

    def __init__(
        self,
        storage: StorageInterface,
        token_manager: TokenManager,
        endpoints: dict[Platform, OAuthEndpoints],
        public_base_url: str,
    ):
        self._storage = storage
        self._token_manager = token_manager
        self._endpoints = endpoints
        self._public_base_url = public_base_url.rstrip("/")

    def redirect_uri(self, platform: Platform) -> str:
        """Callback endpoint of this server for a platform."""
        return f"{self._public_base_url}/api/api-config/{platform.value}/callback"

    async def begin_authorization(self, platform: Platform, principal_id: str) -> str:
        """Build the partner authorization URL for a principal.

        Raises:
            NotConfigured: If the application-level credential is missing.
        """
        app_credential = await self._token_manager.get_app_credential(platform)

        query = urlencode(
            {
                "client_id": app_credential.client_id,
                "redirect_uri": self.redirect_uri(platform),
                "response_type": "code",
                "scope": OAUTH_SCOPE,
                "state": encode_state(principal_id),
            }
        )
        return f"{self._endpoints[platform].authorize_url}?{query}"

    async def complete_authorization(
        self, platform: Platform, code: Optional[str], state: Optional[str]
    ) -> UserToken:
        """Finish the OAuth flow started by begin_authorization.

        Either the principal-level record is upserted as active, or an
        explicit error is raised.

        Raises:
            InvalidState: The state does not identify a principal.
            NotConfigured: The application-level credential is missing.
            AuthorizationFailed: The code is missing or the exchange failed.
        """
        principal_id = decode_state(state)
        if not code:
            raise AuthorizationFailed("Missing authorization code")

        app_credential = await self._token_manager.get_app_credential(platform)

        try:
            grant = await self._token_manager.exchange_code(
                platform, app_credential, code, self.redirect_uri(platform)
            )
        except TokenRequestError as e:
            logger.error(
                f"Authorization code exchange failed for {platform.value} principal {principal_id}: {e}"
            )
            raise AuthorizationFailed(
                f"{platform.label} authorization failed: {e}"
            ) from e

        token = await self._storage.save_user_token(
            UserToken(
                platform=platform,
                principal_id=principal_id,
                access_token=grant.access_token,
                refresh_token=grant.refresh_token,
                expires_at=grant.expires_at,
                is_active=True,
                last_sync_at=grant.obtained_at,
            )
        )
        logger.info(f"Principal {principal_id} authorized {platform.value}")
        return token
