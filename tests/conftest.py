"""Shared fixtures: temporary storage, settings and a fake partner API."""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional, Union

import httpx
import pytest

from rental_sync.config import Settings
from rental_sync.models.domain import Apartment, AppCredential, Platform, UserToken
from rental_sync.partners.oauth import TokenManager, endpoints_from_settings
from rental_sync.storage.sqlite import SQLiteStorage

OLX_TOKEN_URL = "https://olx.test/api/open/oauth/token"
OLX_API = "https://olx.test/api/partner"
OTODOM_TOKEN_URL = "https://api.otodom.test/oauth/v1/token"
OTODOM_API = "https://api.otodom.test/advert/v1"
OTODOM_TAXONOMY_URL = "https://api.otodom.test/taxonomy/v1/category/urn:concept:apartments-for-rent/attributes"
PUBLIC_BASE_URL = "https://rent.example.com"

PRINCIPAL = "user-1"

CannedResponse = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


def _without_query(url: httpx.URL) -> str:
    return str(url).split("?", 1)[0]


class FakePartnerAPI:
    """Serves canned responses through httpx.MockTransport and records requests.

    Responses registered for the same (method, url) are served in order; the
    last one repeats until a new response is registered for that route.
    Unregistered URLs answer 404.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], list[CannedResponse]] = {}
        self._served: set[tuple[str, str]] = set()

    def add(
        self,
        method: str,
        url: str,
        status_code: int = 200,
        json: Optional[object] = None,
        handler: Optional[Callable[[httpx.Request], httpx.Response]] = None,
    ) -> None:
        key = (method.upper(), url)
        response: CannedResponse = handler or httpx.Response(status_code, json=json)
        if key in self._served:
            # The repeating response was already used; the new one replaces it
            self._routes[key] = []
            self._served.discard(key)
        self._routes.setdefault(key, []).append(response)

    def add_token(self, url: str, access_token: str = "new-access", **extra) -> None:
        self.add(
            "POST",
            url,
            json={
                "access_token": access_token,
                "refresh_token": extra.pop("refresh_token", "new-refresh"),
                "expires_in": extra.pop("expires_in", 3600),
                **extra,
            },
        )

    def calls(self, method: str, url: str) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == method.upper() and _without_query(r.url) == url
        ]

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, _without_query(request.url))
        queue = self._routes.get(key)
        if not queue:
            return httpx.Response(404, json={"message": f"no route for {key}"})

        if len(queue) > 1:
            response = queue.pop(0)
        else:
            response = queue[0]
            self._served.add(key)
        if callable(response) and not isinstance(response, httpx.Response):
            return response(request)
        return response

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)


def make_settings(database_path: str, **overrides) -> Settings:
    values = dict(
        database_url=f"sqlite:///{database_path}",
        public_base_url=PUBLIC_BASE_URL,
        secret_key="test-secret-key",
        olx_authorize_url="https://olx.test/api/open/oauth/authorize",
        olx_token_url=OLX_TOKEN_URL,
        olx_api_base=OLX_API,
        otodom_authorize_url="https://otodom.test/api/open/oauth/authorize",
        otodom_token_url=OTODOM_TOKEN_URL,
        otodom_api_base=OTODOM_API,
        otodom_taxonomy_url=OTODOM_TAXONOMY_URL,
        otodom_webhook_secret=None,
        webhook_require_signature=False,
        http_timeout=5.0,
        user_agent="RentalSyncTest",
    )
    values.update(overrides)
    return Settings(**values)


def make_apartment(**overrides) -> Apartment:
    """Helper to create a publishable apartment."""
    values = dict(
        title="Przytulne 2-pokojowe mieszkanie na Mokotowie",
        address="ul. Puławska 10, 02-512 Warszawa",
        street="Puławska",
        street_number="10",
        postal_code="02-512",
        city="Warszawa",
        price=3200,
        area=48.5,
        description="Jasne mieszkanie z balkonem, blisko metra, w pełni umeblowane.",
        photos=["/uploads/a1.jpg", "https://cdn.example.com/a2.jpg"],
        number_of_rooms=2,
    )
    values.update(overrides)
    return Apartment(**values)


async def configure_platform(
    storage: SQLiteStorage,
    platform: Platform,
    principal_id: str = PRINCIPAL,
    expires_in: int = 3600,
    refresh_token: Optional[str] = "stored-refresh",
    authorize: bool = True,
) -> None:
    """Store a complete app credential and (optionally) an active user token."""
    await storage.save_app_credential(
        AppCredential(
            platform=platform,
            client_id=f"{platform.value}-client",
            client_secret=f"{platform.value}-secret",
            api_key="otodom-api-key" if platform == Platform.OTODOM else None,
        )
    )
    if authorize:
        await storage.save_user_token(
            UserToken(
                platform=platform,
                principal_id=principal_id,
                access_token="stored-access",
                refresh_token=refresh_token,
                expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
                is_active=True,
            )
        )


@pytest.fixture
async def storage():
    """Create a temporary SQLite storage for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        storage = SQLiteStorage(str(db_path))
        yield storage


@pytest.fixture
def settings(storage: SQLiteStorage) -> Settings:
    return make_settings(storage.database_path)


@pytest.fixture
def partner() -> FakePartnerAPI:
    return FakePartnerAPI()


@pytest.fixture
def token_manager(storage, settings, partner) -> TokenManager:
    return TokenManager(
        storage=storage,
        endpoints=endpoints_from_settings(settings),
        timeout=settings.http_timeout,
        user_agent=settings.user_agent,
        transport=partner.transport,
    )
