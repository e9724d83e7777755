"""HTTP API exposing enrichment, the OAuth callback and diagnostics."""

from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
import structlog

from ..crm import schema
from ..crm.hubspot import HubSpotClient
from ..crm.oauth import authorize_url, exchange_code, refresh_access_token
from ..crm.tokens import Tokens, TokenStore
from ..enrichment.interfaces import EnrichmentStatus
from ..enrichment.mapping import FIELD_MAPPING, FieldMapping, build_mapping, summarize
from ..enrichment.service import EnrichmentService, find_identifier
from ..errors import (
    AuthError,
    CompanyNotFound,
    EnrichmentError,
    RateLimitError,
    RegistryNotFound,
    SchemaError,
    TransientLookupError,
    ValidationError,
    IdentifierNotFound,
    MissingToken,
)
from ..factory import get_enrichment_service, get_lookup_client, get_poller, get_token_store
from ..identifier.validator import is_valid, validate
from ..lookup.client import RegistryLookupClient
from ..pipeline.poller import EnrichmentPoller

logger = structlog.get_logger()

# Registered CNPJ used by /create-test-company
TEST_COMPANY_CNPJ = "14665903000104"


class EnrichRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    company_id: str = Field(alias="companyId")


class AddCnpjRequest(BaseModel):
    cnpj: str


class MappingRequest(BaseModel):
    field_mappings: Dict[str, Optional[str]]


def http_status_for(error: EnrichmentError) -> int:
    """HTTP status code for an enrichment error."""
    if isinstance(error, (ValidationError, IdentifierNotFound, SchemaError)):
        return 400
    if isinstance(error, AuthError):
        return 401
    if isinstance(error, (CompanyNotFound, RegistryNotFound)):
        return 404
    if isinstance(error, RateLimitError):
        return 429
    if isinstance(error, TransientLookupError):
        return 503
    return 502 if error.code == "CRM_ERROR" else 500


def mapping_view(mapping: FieldMapping) -> Dict[str, Optional[str]]:
    """Default property name to its current HubSpot destination (None if dropped)."""
    destinations = {getter: name for name, getter in mapping}
    return {name: destinations.get(getter) for name, getter in FIELD_MAPPING}


def get_crm_factory() -> Callable[[Tokens], HubSpotClient]:
    return lambda tokens: HubSpotClient(tokens.access_token)


def create_app() -> FastAPI:
    """Create and configure the FastAPI app."""
    app = FastAPI(title="CNPJ Enricher", version="0.1.0")

    @app.exception_handler(EnrichmentError)
    async def enrichment_error_handler(request: Request, exc: EnrichmentError):
        status_code = http_status_for(exc)
        body = {"success": False, **exc.to_dict()}
        if isinstance(exc, AuthError):
            body["auth_url"] = authorize_url()
        headers = {}
        if exc.wait_seconds is not None:
            headers["Retry-After"] = str(body["retry_after"])
        logger.info("request_failed", path=request.url.path, status=status_code, code=exc.code)
        return JSONResponse(status_code=status_code, content=body, headers=headers)

    @app.get("/health")
    async def health(token_store: TokenStore = Depends(get_token_store)):
        tokens = token_store.get()
        return {
            "status": "ok",
            "app": "CNPJ Enricher",
            "authenticated": bool(tokens and tokens.access_token and not tokens.is_expired()),
            "portal_id": tokens.portal_id if tokens else None,
        }

    @app.get("/oauth/callback")
    async def oauth_callback(
        code: Optional[str] = None,
        error: Optional[str] = None,
        token_store: TokenStore = Depends(get_token_store),
    ):
        if error:
            return JSONResponse(status_code=400, content={"success": False, "code": "OAUTH_ERROR", "message": error})
        if not code:
            return JSONResponse(
                status_code=400,
                content={"success": False, "code": "MISSING_CODE", "message": "Authorization code missing"},
            )

        tokens = await exchange_code(code)
        token_store.set(tokens)
        return {"success": True, "portal_id": tokens.portal_id, "expires_at": tokens.expires_at}

    @app.get("/refresh")
    async def refresh(token_store: TokenStore = Depends(get_token_store)):
        current = token_store.get()
        if current is None or not current.refresh_token:
            raise MissingToken("No refresh token stored, install the app first")

        tokens = await refresh_access_token(current.refresh_token)
        if tokens.portal_id is None:
            tokens.portal_id = current.portal_id
        token_store.set(tokens)
        return {"success": True, "portal_id": tokens.portal_id, "expires_at": tokens.expires_at}

    @app.get("/test-token")
    async def test_token(
        token_store: TokenStore = Depends(get_token_store),
        crm_factory=Depends(get_crm_factory),
    ):
        tokens = token_store.require()
        crm = crm_factory(tokens)
        try:
            result = await crm.test_connection()
        finally:
            await crm.close()
        status_code = 200 if result["success"] else 502
        return JSONResponse(status_code=status_code, content={"portal_id": tokens.portal_id, **result})

    @app.post("/enrich")
    async def enrich(
        body: EnrichRequest,
        service: EnrichmentService = Depends(get_enrichment_service),
        token_store: TokenStore = Depends(get_token_store),
    ):
        outcome = await service.enrich(body.company_id, token_store.get())
        status = service.lookup.status()
        return {
            **outcome.to_dict(),
            "rate_limit": {
                "requests_remaining": status.requests_remaining,
                "next_request_in_ms": status.wait_ms,
            },
        }

    @app.get("/rate-limit-status")
    async def rate_limit_status(lookup: RegistryLookupClient = Depends(get_lookup_client)):
        return {
            "success": True,
            "rate_limit": lookup.status().to_dict(),
            "cache": lookup.cache_stats().to_dict(),
            "limits": {
                "max_requests_per_window": lookup.max_requests,
                "window_seconds": lookup.window_seconds,
                "min_interval_seconds": lookup.min_interval_seconds,
                "cache_ttl_seconds": lookup.cache_ttl_seconds,
            },
        }

    @app.get("/test-cnpj/{cnpj}")
    async def test_cnpj(cnpj: str, lookup: RegistryLookupClient = Depends(get_lookup_client)):
        record = await lookup.fetch(validate(cnpj))
        return {
            "success": True,
            "cnpj": record.cnpj,
            "company": summarize(record),
            "rate_limit": lookup.status().to_dict(),
        }

    @app.post("/add-cnpj/{company_id}")
    async def add_cnpj(
        company_id: str,
        body: AddCnpjRequest,
        token_store: TokenStore = Depends(get_token_store),
        crm_factory=Depends(get_crm_factory),
    ):
        cnpj = validate(body.cnpj)
        tokens = token_store.require()
        crm = crm_factory(tokens)
        try:
            await crm.update_company(company_id, {
                schema.CNPJ: cnpj,
                schema.SHOULD_ENRICH: schema.SHOULD_ENRICH_YES,
                schema.ENRICHMENT_STATUS: EnrichmentStatus.PENDING.value,
            })
        finally:
            await crm.close()
        return {"success": True, "company_id": company_id, "cnpj": cnpj}

    @app.post("/create-test-company")
    async def create_test_company(
        token_store: TokenStore = Depends(get_token_store),
        crm_factory=Depends(get_crm_factory),
    ):
        tokens = token_store.require()
        crm = crm_factory(tokens)
        try:
            company = await crm.create_company({
                "name": f"Empresa Teste CNPJ - {int(datetime.now(timezone.utc).timestamp())}",
                "domain": "teste.com.br",
                "phone": "11999999999",
                "website": "https://teste.com.br",
                schema.CNPJ: TEST_COMPANY_CNPJ,
                schema.SHOULD_ENRICH: schema.SHOULD_ENRICH_YES,
                schema.ENRICHMENT_STATUS: EnrichmentStatus.PENDING.value,
            })
        finally:
            await crm.close()
        company_id = company.get("id")
        logger.info("test_company_created", company_id=company_id)
        return {
            "success": True,
            "company_id": company_id,
            "cnpj": TEST_COMPANY_CNPJ,
            "next_step": f"POST /enrich with companyId={company_id}",
        }

    @app.post("/setup/create-fields")
    async def create_fields(
        dry_run: bool = Query(False),
        token_store: TokenStore = Depends(get_token_store),
        crm_factory=Depends(get_crm_factory),
    ):
        tokens = token_store.require()
        if dry_run:
            return {"ok": True, "mode": "dry_run", "portal_id": tokens.portal_id, "fields": schema.property_names()}

        crm = crm_factory(tokens)
        try:
            result = await schema.ensure_properties(crm)
        finally:
            await crm.close()
        return {"portal_id": tokens.portal_id, **result}

    @app.get("/debug-company/{company_id}")
    async def debug_company(
        company_id: str,
        token_store: TokenStore = Depends(get_token_store),
        crm_factory=Depends(get_crm_factory),
        lookup: RegistryLookupClient = Depends(get_lookup_client),
    ):
        tokens = token_store.require()
        crm = crm_factory(tokens)
        try:
            company = await crm.get_company(company_id, properties=schema.property_names())
        finally:
            await crm.close()

        properties = company.get("properties") or {}
        found = find_identifier(properties)
        return {
            "success": True,
            "company_id": company_id,
            "properties": properties,
            "cnpj_property": found[0] if found else None,
            "cnpj_found": found[1] if found else None,
            "cnpj_valid": is_valid(found[1]) if found else False,
            "rate_limit": lookup.status().to_dict(),
        }

    @app.get("/mapping")
    async def get_mapping(service: EnrichmentService = Depends(get_enrichment_service)):
        return {"success": True, "mapping": mapping_view(service.mapping)}

    @app.post("/mapping")
    async def set_mapping(body: MappingRequest, service: EnrichmentService = Depends(get_enrichment_service)):
        try:
            mapping = build_mapping(body.field_mappings)
        except ValueError as e:
            return JSONResponse(
                status_code=400,
                content={"success": False, "code": "INVALID_MAPPING", "message": str(e)},
            )
        service.mapping = mapping
        logger.info("field_mapping_updated", overrides=body.field_mappings)
        return {"success": True, "mapping": mapping_view(mapping)}

    @app.post("/poll")
    async def poll(poller: EnrichmentPoller = Depends(get_poller)):
        result = await poller.tick()
        return {
            "success": True,
            "ran_at": datetime.now(timezone.utc).isoformat(),
            **result.to_dict(),
        }

    return app


app = create_app()
