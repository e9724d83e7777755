"""HubSpot OAuth authorization-code and refresh-token exchanges."""

import asyncio
import json
from typing import Tuple
from urllib.parse import urlencode

import aiohttp
import structlog

from .tokens import Tokens
from ..config.settings import settings
from ..errors import AuthError, CrmError

logger = structlog.get_logger()

TOKEN_PATH = "/oauth/v1/token"
AUTHORIZE_URL = "https://app.hubspot.com/oauth/authorize"
DEFAULT_SCOPES = ["crm.objects.companies.read", "crm.objects.companies.write", "crm.schemas.companies.write"]


def authorize_url(client_id: str = None, redirect_uri: str = None, scopes=None) -> str:
    """URL the user opens to install the app in a portal."""
    query = urlencode({
        "client_id": client_id or settings.hubspot_client_id or "",
        "redirect_uri": redirect_uri or settings.hubspot_redirect_uri or "",
        "scope": " ".join(scopes or DEFAULT_SCOPES),
    })
    return f"{AUTHORIZE_URL}?{query}"


async def _post_form(form: dict) -> Tuple[int, dict]:
    """POST a form-encoded body to the token endpoint."""
    url = f"{settings.hubspot_base_url.rstrip('/')}{TOKEN_PATH}"
    timeout = aiohttp.ClientTimeout(total=settings.hubspot_timeout_seconds)
    try:
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(url, data=form) as resp:
                text = await resp.text()
                status = resp.status
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise CrmError(f"HubSpot token endpoint unreachable: {e!r}") from e
    try:
        return status, json.loads(text) if text else {}
    except ValueError:
        return status, {"message": text[:500]}


async def _exchange(form: dict, grant: str) -> Tokens:
    status, data = await _post_form(form)
    if status != 200 or "access_token" not in data:
        message = data.get("message") or data.get("error_description") or f"HTTP {status}"
        logger.error("oauth_exchange_failed", grant=grant, status=status, error=message[:200])
        if status in (400, 401):
            raise AuthError(f"OAuth {grant} exchange rejected: {message}", status=status)
        raise CrmError(f"OAuth {grant} exchange failed: {message}", status=status)

    tokens = Tokens.from_oauth_response(data)
    logger.info("oauth_exchange_succeeded", grant=grant, portal_id=tokens.portal_id)
    return tokens


async def exchange_code(
    code: str,
    client_id: str = None,
    client_secret: str = None,
    redirect_uri: str = None,
) -> Tokens:
    """Trade an authorization code for access and refresh tokens."""
    return await _exchange({
        "grant_type": "authorization_code",
        "client_id": client_id or settings.hubspot_client_id,
        "client_secret": client_secret or settings.hubspot_client_secret,
        "redirect_uri": redirect_uri or settings.hubspot_redirect_uri,
        "code": code,
    }, grant="authorization_code")


async def refresh_access_token(
    refresh_token: str,
    client_id: str = None,
    client_secret: str = None,
) -> Tokens:
    """Get a new access token from a refresh token."""
    tokens = await _exchange({
        "grant_type": "refresh_token",
        "client_id": client_id or settings.hubspot_client_id,
        "client_secret": client_secret or settings.hubspot_client_secret,
        "refresh_token": refresh_token,
    }, grant="refresh_token")
    if tokens.refresh_token is None:
        tokens.refresh_token = refresh_token
    return tokens
