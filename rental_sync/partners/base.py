"""Shared HTTP plumbing for the partner API clients."""

import logging
from typing import Optional, Union

import httpx
from pydantic import BaseModel

from rental_sync.models.domain import ConfirmedRef, PendingRef, Platform
from rental_sync.partners.errors import PartnerRequestError, describe_response_error
from rental_sync.partners.oauth import TokenManager

logger = logging.getLogger(__name__)


class PublishResult(BaseModel):
    """Outcome of a successful publish call.

    ``ref`` is confirmed when the platform returned the durable listing id
    synchronously, pending when only a transaction id is known.
    """

    ref: Union[PendingRef, ConfirmedRef]

    @property
    def url(self) -> Optional[str]:
        return self.ref.url

    @property
    def advert_id(self) -> str:
        return self.ref.value


class PartnerClient:
    """Base HTTP client for a partner listing API.

    Resolves a live access token through TokenManager for every call and
    normalizes failures into the operation's own error class. Token manager
    errors propagate unchanged.
    """

    platform: Platform

    def __init__(
        self,
        token_manager: TokenManager,
        api_base: str,
        public_base_url: str,
        timeout: float = 20.0,
        user_agent: str = "RentalSync",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            token_manager: Token manager for principal-level tokens.
            api_base: Base URL of the partner API.
            public_base_url: This server's public URL, used to resolve photo paths.
            timeout: Timeout for every request (seconds).
            user_agent: User-Agent header value.
            transport: Optional httpx transport (used by tests).
        """
        self._token_manager = token_manager
        self._api_base = api_base.rstrip("/")
        self._public_base_url = public_base_url
        self._timeout = timeout
        self._user_agent = user_agent
        self._transport = transport

    async def _headers(self, principal_id: str) -> dict[str, str]:
        """Build request headers with a live bearer token."""
        token = await self._token_manager.get_access_token(self.platform, principal_id)
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    async def _send(
        self,
        method: str,
        path: str,
        principal_id: str,
        error_cls: type[PartnerRequestError],
        json_data: Optional[dict] = None,
    ) -> httpx.Response:
        """Make an authenticated request to the partner API.

        Args:
            method: HTTP method
            path: Path relative to the API base ("" targets the base itself)
            principal_id: Acting principal
            error_cls: Error raised on any failure of this operation
            json_data: JSON body

        Returns:
            Successful httpx.Response

        Raises:
            error_cls: On non-2xx responses, timeouts and network errors
        """
        headers = await self._headers(principal_id)
        response = await self._request(
            method, f"{self._api_base}{path}", headers, error_cls, json_data=json_data
        )
        return self._check_response(response, method, error_cls)

    async def _request(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        error_cls: type[PartnerRequestError],
        json_data: Optional[dict] = None,
    ) -> httpx.Response:
        """Send one request; only transport failures raise."""
        label = self.platform.label
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                return await client.request(method, url, headers=headers, json=json_data)
            except httpx.TimeoutException as e:
                logger.error(f"{label} {method} {url} timed out: {e}")
                raise error_cls(f"{label} request timed out: {e}")
            except httpx.RequestError as e:
                logger.error(f"{label} {method} {url} network error: {e}")
                raise error_cls(f"{label} network error: {e}")

    def _check_response(
        self,
        response: httpx.Response,
        method: str,
        error_cls: type[PartnerRequestError],
    ) -> httpx.Response:
        if response.is_success:
            return response

        label = self.platform.label
        details = describe_response_error(response)
        logger.error(
            f"{label} {method} {response.request.url} rejected: "
            f"HTTP {response.status_code}: {details}"
        )
        raise error_cls(
            f"{label} API error (HTTP {response.status_code}): {details}",
            status_code=response.status_code,
        )


def response_json(response: httpx.Response) -> dict:
    """Decode a JSON object body; empty and non-object bodies give {}."""
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
