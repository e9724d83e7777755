"""Application settings with environment variable support."""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Dict, Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CE_",  # CE_HUBSPOT_CLIENT_ID, CE_RATE_LIMIT_MAX_REQUESTS, etc.
    )

    # HubSpot
    hubspot_base_url: str = "https://api.hubapi.com"
    hubspot_client_id: Optional[str] = None
    hubspot_client_secret: Optional[str] = None
    hubspot_redirect_uri: Optional[str] = None
    hubspot_access_token: Optional[str] = None  # seeds the token store for single-portal installs
    hubspot_refresh_token: Optional[str] = None
    hubspot_timeout_seconds: int = 30
    hubspot_max_retries: int = 3

    # Registry lookup
    cnpj_api_base_url: str = "https://publica.cnpj.ws/cnpj"
    lookup_timeout_seconds: float = 15.0
    user_agent: str = "CNPJ-Enricher/2.0"

    # Rate limiting (the public API allows 3 requests per minute)
    rate_limit_window_seconds: float = 60.0
    rate_limit_max_requests: int = 3
    rate_limit_min_interval_seconds: float = 20.0
    upstream_retry_after_seconds: float = 60.0
    cache_ttl_seconds: float = 3600.0

    # Destination overrides, e.g. CE_FIELD_MAPPING='{"cnpj_telefone": "phone"}'
    field_mapping: Dict[str, str] = {}

    # Polling worker
    poll_interval_seconds: int = 60
    poll_batch_size: int = 10
    alert_webhook_url: Optional[str] = None  # Slack-compatible incoming webhook

    # HTTP API
    api_host: str = "0.0.0.0"
    api_port: int = 3000


settings = Settings()
