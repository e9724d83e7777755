"""HubSpot CRM collaborators: REST client, OAuth, token store and property schema."""

from .hubspot import HubSpotClient
from .tokens import Tokens, TokenStore, InMemoryTokenStore, require_tokens
from .schema import COMPANY_PROPERTIES, ensure_properties

__all__ = [
    "HubSpotClient",
    "Tokens",
    "TokenStore",
    "InMemoryTokenStore",
    "require_tokens",
    "COMPANY_PROPERTIES",
    "ensure_properties",
]
