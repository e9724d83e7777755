"""Async HubSpot CRM client for company objects and company properties."""

import asyncio
import json
from typing import Optional, List, Tuple, Dict, Any

import aiohttp
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config.settings import settings
from ..errors import CrmError, AuthError, CompanyNotFound, SchemaError

logger = structlog.get_logger()

COMPANIES_PATH = "/crm/v3/objects/companies"
COMPANY_PROPERTIES_PATH = "/crm/v3/properties/companies"

DEFAULT_COMPANY_PROPERTIES = ["cnpj", "name", "domain", "website", "phone", "city", "state", "country"]


class _RetryableCrmError(CrmError):
    """429 or 5xx from HubSpot; retried before surfacing as CrmError."""


def _missing_properties(data: dict) -> List[str]:
    missing = []
    for err in data.get("errors") or []:
        name = (err.get("context") or {}).get("propertyName")
        if isinstance(name, list):
            missing.extend(name)
        elif name:
            missing.append(name)
    return missing


class HubSpotClient:
    """Thin wrapper over the HubSpot CRM v3 REST API."""

    def __init__(self, access_token: str, base_url: str = None, timeout_seconds: int = None):
        self.access_token = access_token
        self.base_url = (base_url or settings.hubspot_base_url).rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.hubspot_timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self._get_session()
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                headers={
                    "Authorization": f"Bearer {self.access_token}",
                    "Content-Type": "application/json",
                },
            )
        return self._session

    async def close(self):
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    @retry(
        retry=retry_if_exception_type(_RetryableCrmError),
        stop=stop_after_attempt(settings.hubspot_max_retries),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _send(self, method: str, path: str, payload: dict = None, params: dict = None) -> Tuple[int, dict]:
        """Perform one HTTP call. Returns (status, decoded body)."""
        session = await self._get_session()
        try:
            async with session.request(method, f"{self.base_url}{path}", json=payload, params=params) as resp:
                text = await resp.text()
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("hubspot_connection_error", method=method, path=path, error=repr(e))
            raise _RetryableCrmError(f"HubSpot unreachable: {e!r}") from e

        try:
            data = json.loads(text) if text else {}
        except ValueError:
            data = {"message": text[:500]}

        if status == 429 or status >= 500:
            logger.warning("hubspot_retryable_error", method=method, path=path, status=status)
            raise _RetryableCrmError(data.get("message") or f"HubSpot returned HTTP {status}", status=status)

        return status, data

    async def _request(self, method: str, path: str, payload: dict = None, params: dict = None) -> dict:
        status, data = await self._send(method, path, payload=payload, params=params)
        if status < 400:
            return data

        message = data.get("message") or f"HubSpot returned HTTP {status}"
        logger.error("hubspot_request_failed", method=method, path=path, status=status, error=message[:200])

        if status == 401:
            raise AuthError(status=status)
        if status == 400 and "does not exist" in message:
            raise SchemaError(message, missing=_missing_properties(data), status=status)
        if status == 404 and path.startswith(COMPANIES_PATH):
            raise CompanyNotFound(status=status, company_id=path.rsplit("/", 1)[-1])
        raise CrmError(message, status=status)

    # Companies

    async def get_company(self, company_id: str, properties: List[str] = None) -> dict:
        """Fetch a company with the default properties plus ``properties``."""
        names = list(dict.fromkeys(DEFAULT_COMPANY_PROPERTIES + list(properties or [])))
        return await self._request(
            "GET",
            f"{COMPANIES_PATH}/{company_id}",
            params={"properties": ",".join(names)},
        )

    async def update_company(self, company_id: str, properties: Dict[str, Any]) -> dict:
        """PATCH properties into a company; HubSpot merges them."""
        return await self._request("PATCH", f"{COMPANIES_PATH}/{company_id}", payload={"properties": properties})

    async def create_company(self, properties: Dict[str, Any]) -> dict:
        return await self._request("POST", COMPANIES_PATH, payload={"properties": properties})

    async def search_companies(
        self,
        property_name: str,
        value: str,
        properties: List[str] = None,
        limit: int = 10,
    ) -> List[dict]:
        """Return companies whose ``property_name`` equals ``value``."""
        body = {
            "filterGroups": [{
                "filters": [{"propertyName": property_name, "operator": "EQ", "value": value}]
            }],
            "properties": list(properties or DEFAULT_COMPANY_PROPERTIES),
            "limit": limit,
        }
        data = await self._request("POST", f"{COMPANIES_PATH}/search", payload=body)
        return data.get("results", [])

    # Properties

    async def create_property(self, definition: dict) -> dict:
        """Create a company property. An existing property is reported, not raised."""
        try:
            await self._request("POST", COMPANY_PROPERTIES_PATH, payload=definition)
        except CrmError as e:
            if e.status == 409:
                logger.info("hubspot_property_exists", name=definition["name"])
                return {"name": definition["name"], "status": "already_exists"}
            raise
        logger.info("hubspot_property_created", name=definition["name"])
        return {"name": definition["name"], "status": "created"}

    async def list_properties(self) -> List[dict]:
        data = await self._request("GET", COMPANY_PROPERTIES_PATH)
        return data.get("results", [])

    async def test_connection(self) -> dict:
        """Check that the token can read companies."""
        try:
            data = await self._request("GET", COMPANIES_PATH, params={"limit": 1})
        except CrmError as e:
            return {"success": False, "error": e.to_dict()}
        return {"success": True, "companies_found": len(data.get("results", []))}
