"""HTTP routes for credential configuration, publishing, webhooks and feeds."""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from rental_sync.api.state import AppState, get_app_state, get_listing_service
from rental_sync.auth import Principal, get_admin, get_principal
from rental_sync.core.listings import ListingService
from rental_sync.models.domain import AppCredential, Platform
from rental_sync.partners.errors import (
    AlreadyPublished,
    ApartmentNotAvailable,
    ApartmentNotFound,
    AuthorizationFailed,
    InvalidSignature,
    InvalidState,
    MalformedPayload,
    NotAuthorized,
    NotConfigured,
    NotPublished,
    PartnerRequestError,
    RefreshFailed,
    StillPending,
    SyncError,
)
from rental_sync.partners.signature import verify_signature
from rental_sync.partners.webhook_models import WebhookNotification

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["sync"])
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent / "templates"))

# Most specific class wins (looked up along the MRO)
ERROR_STATUS_CODES: dict[type[SyncError], int] = {
    NotConfigured: 400,
    InvalidState: 400,
    MalformedPayload: 400,
    InvalidSignature: 401,
    NotAuthorized: 403,
    RefreshFailed: 403,
    ApartmentNotFound: 404,
    AlreadyPublished: 409,
    NotPublished: 409,
    StillPending: 409,
    ApartmentNotAvailable: 409,
    AuthorizationFailed: 502,
    PartnerRequestError: 502,
}


def status_code_for(error: SyncError) -> int:
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 500


async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    """Map synchronization errors to JSON error responses."""
    status_code = status_code_for(exc)
    logger.warning(
        f"{request.method} {request.url.path} failed with {type(exc).__name__}: {exc.message}"
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": type(exc).__name__,
            "message": exc.user_message,
            "detail": exc.message,
        },
    )


# API credential configuration


class ApiConfigRequest(BaseModel):
    """Application-level credential submitted by an administrator."""

    model_config = ConfigDict(populate_by_name=True)

    platform: Platform
    client_id: str = Field(alias="clientId", min_length=1)
    client_secret: str = Field(alias="clientSecret", min_length=1)
    api_key: Optional[str] = Field(default=None, alias="apiKey")


@router.post("/api-config")
async def configure_api(
    body: ApiConfigRequest,
    principal: Principal = Depends(get_admin),
    state: AppState = Depends(get_app_state),
) -> dict:
    """Create or replace the application-level credential of a platform."""
    existing = await state.storage.get_app_credential(body.platform)
    api_key = body.api_key or (existing.api_key if existing else None)

    credential = await state.storage.save_app_credential(
        AppCredential(
            platform=body.platform,
            client_id=body.client_id,
            client_secret=body.client_secret,
            api_key=api_key,
        )
    )
    logger.info(f"App credential for {body.platform.value} updated by {principal.principal_id}")

    return {
        "success": True,
        "message": f"{body.platform.label} API credentials saved.",
        "platform": credential.platform.value,
        "isConfigured": credential.is_configured,
    }


@router.get("/api-config")
async def get_api_config(
    principal: Principal = Depends(get_principal),
    state: AppState = Depends(get_app_state),
) -> list[dict]:
    """Configuration status of every platform for the calling principal.

    Secrets and tokens are never returned.
    """
    credentials = {c.platform: c for c in await state.storage.list_app_credentials()}
    tokens = {t.platform: t for t in await state.storage.list_user_tokens(principal.principal_id)}

    result = []
    for platform in Platform:
        credential = credentials.get(platform)
        token = tokens.get(platform)
        result.append(
            {
                "platform": platform.value,
                "isConfigured": bool(credential and credential.is_configured),
                "clientId": credential.client_id if credential else None,
                "hasApiKey": bool(credential and credential.api_key),
                "isActive": bool(token and token.is_active),
                "tokenExpiresAt": token.expires_at.isoformat() if token and token.expires_at else None,
                "lastSyncAt": token.last_sync_at.isoformat() if token and token.last_sync_at else None,
                "lastError": token.last_error if token else None,
            }
        )
    return result


@router.post("/api-config/{platform}/authorize")
async def authorize(
    platform: Platform,
    principal: Principal = Depends(get_principal),
    state: AppState = Depends(get_app_state),
) -> dict:
    """Start the OAuth flow; the dashboard opens the returned URL."""
    auth_url = await state.authorization_flow.begin_authorization(
        platform, principal.principal_id
    )
    return {"authUrl": auth_url}


@router.get("/api-config/{platform}/callback", response_class=HTMLResponse)
async def oauth_callback(
    request: Request,
    platform: Platform,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    app_state: AppState = Depends(get_app_state),
) -> HTMLResponse:
    """OAuth redirect target. Public: the principal is recovered from state."""
    context = {"platform": platform.value, "platform_label": platform.label}

    if error:
        logger.warning(f"{platform.value} authorization denied: {error} {error_description}")
        return templates.TemplateResponse(
            request,
            "oauth_result.html",
            {
                **context,
                "success": False,
                "message": "Authorization was cancelled or denied.",
                "details": error_description or error,
            },
            status_code=400,
        )

    try:
        await app_state.authorization_flow.complete_authorization(platform, code, state)
    except SyncError as e:
        return templates.TemplateResponse(
            request,
            "oauth_result.html",
            {**context, "success": False, "message": e.user_message, "details": e.message},
            status_code=status_code_for(e),
        )

    return templates.TemplateResponse(request, "oauth_result.html", {**context, "success": True})


# Publishing


@router.post("/publish/{apartment_id}/{platform}")
async def publish_listing(
    apartment_id: str,
    platform: Platform,
    principal: Principal = Depends(get_principal),
    service: ListingService = Depends(get_listing_service),
) -> dict:
    outcome = await service.publish(apartment_id, platform, principal.principal_id)
    return outcome.model_dump(by_alias=True, exclude_none=True)


@router.put("/publish/{apartment_id}/{platform}")
async def update_listing(
    apartment_id: str,
    platform: Platform,
    principal: Principal = Depends(get_principal),
    service: ListingService = Depends(get_listing_service),
) -> dict:
    outcome = await service.update(apartment_id, platform, principal.principal_id)
    return outcome.model_dump(by_alias=True, exclude_none=True)


@router.delete("/publish/{apartment_id}/{platform}")
async def delete_listing(
    apartment_id: str,
    platform: Platform,
    principal: Principal = Depends(get_principal),
    service: ListingService = Depends(get_listing_service),
) -> dict:
    outcome = await service.delete(apartment_id, platform, principal.principal_id)
    return outcome.model_dump(by_alias=True, exclude_none=True)


@router.get("/publish/otodom/taxonomy")
async def otodom_taxonomy(
    principal: Principal = Depends(get_principal),
    service: ListingService = Depends(get_listing_service),
) -> dict:
    """Otodom category attributes, with the rent and deposit related ones picked out."""
    result = await service.otodom_taxonomy(principal.principal_id)
    return result.model_dump(by_alias=True)


@router.get("/publish/{apartment_id}/otodom/status")
async def listing_status(
    apartment_id: str,
    principal: Principal = Depends(get_principal),
    service: ListingService = Depends(get_listing_service),
) -> dict:
    outcome = await service.status(apartment_id, principal.principal_id)
    return outcome.model_dump(by_alias=True, exclude_none=True)


# Webhooks


@router.get("/webhooks/otodom")
async def otodom_webhook_probe() -> PlainTextResponse:
    """Callback URL validation probe."""
    return PlainTextResponse("OK")


@router.head("/webhooks/otodom")
async def otodom_webhook_head() -> Response:
    return Response(status_code=200)


@router.post("/webhooks/otodom")
async def otodom_webhook(
    request: Request,
    state: AppState = Depends(get_app_state),
) -> PlainTextResponse:
    """Receive a publish notification.

    Acknowledges immediately; reconciliation runs on the background worker.
    Without a configured secret or x-signature header the payload is processed
    unverified, unless webhook_require_signature is set.

    Raises:
        MalformedPayload: Body is not a JSON object with object_id and transaction_id
        InvalidSignature: Signature mismatch, or unsigned while signatures are required
    """
    try:
        body = await request.json()
    except ValueError as e:
        raise MalformedPayload(f"Webhook body is not valid JSON: {e}") from e
    if not isinstance(body, dict):
        raise MalformedPayload("Webhook body must be a JSON object")

    try:
        notification = WebhookNotification.model_validate(body)
    except ValidationError as e:
        raise MalformedPayload(f"Webhook payload missing required fields: {e}") from e

    signature = request.headers.get("x-signature")
    secret = state.settings.otodom_webhook_secret
    if secret and signature:
        if not verify_signature(body, signature, secret):
            raise InvalidSignature(
                f"Signature mismatch for transaction {notification.transaction_id}"
            )
    elif state.settings.webhook_require_signature:
        raise InvalidSignature("Unsigned notification rejected")
    else:
        reason = "no secret configured" if not secret else "no x-signature header"
        logger.warning(
            f"Processing unverified notification for transaction "
            f"{notification.transaction_id} ({reason})"
        )

    logger.info(
        f"Received webhook: flow={notification.flow}, event_type={notification.event_type}, "
        f"transaction_id={notification.transaction_id}, object_id={notification.object_id}"
    )
    state.worker.submit(notification)
    return PlainTextResponse("OK")


# Feeds

FEED_HEADERS = {"Access-Control-Allow-Origin": "*"}


def _feed_base_url(request: Request, base_url: Optional[str]) -> str:
    return base_url or str(request.base_url).rstrip("/")


@router.get("/feeds/olx")
async def olx_feed(
    request: Request,
    base_url: Optional[str] = Query(default=None, alias="baseUrl"),
    email: Optional[str] = None,
    state: AppState = Depends(get_app_state),
) -> Response:
    """Public OLX bulk feed."""
    xml = await state.feed_generator.generate_feed(
        Platform.OLX, _feed_base_url(request, base_url), email
    )
    return Response(content=xml, media_type="application/xml; charset=utf-8", headers=FEED_HEADERS)


@router.get("/feeds/otodom")
async def otodom_feed(
    request: Request,
    base_url: Optional[str] = Query(default=None, alias="baseUrl"),
    state: AppState = Depends(get_app_state),
) -> Response:
    """Public Otodom bulk feed."""
    xml = await state.feed_generator.generate_feed(
        Platform.OTODOM, _feed_base_url(request, base_url)
    )
    return Response(content=xml, media_type="application/xml; charset=utf-8", headers=FEED_HEADERS)
