"""OAuth token storage.

Tokens live in process memory: a restart requires a new OAuth install unless
``CE_HUBSPOT_ACCESS_TOKEN`` seeds the store.
"""

import time
from dataclasses import dataclass
from typing import Optional

import structlog

from ..errors import MissingToken, TokenExpired

logger = structlog.get_logger()


@dataclass
class Tokens:
    """HubSpot credentials for one portal."""
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[float] = None  # epoch seconds
    portal_id: Optional[str] = None

    @classmethod
    def from_oauth_response(cls, data: dict, now: float = None) -> "Tokens":
        """Build from a ``POST /oauth/v1/token`` response body."""
        now = time.time() if now is None else now
        expires_in = data.get("expires_in")
        hub_id = data.get("hub_id")
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=now + int(expires_in) if expires_in else None,
            portal_id=str(hub_id) if hub_id is not None else None,
        )

    def is_expired(self, now: float = None) -> bool:
        if self.expires_at is None:
            return False
        now = time.time() if now is None else now
        return now >= self.expires_at


class TokenStore:
    """Interface for token storage."""

    def get(self) -> Optional[Tokens]:
        """Return the stored tokens, if any."""
        raise NotImplementedError

    def set(self, tokens: Tokens) -> None:
        """Replace the stored tokens."""
        raise NotImplementedError

    def require(self, now: float = None) -> Tokens:
        """Return usable tokens or raise MissingToken / TokenExpired."""
        return require_tokens(self.get(), now=now)


class InMemoryTokenStore(TokenStore):
    """Single-portal token store kept in process memory."""

    def __init__(self, tokens: Tokens = None):
        self._tokens = tokens

    def get(self) -> Optional[Tokens]:
        return self._tokens

    def set(self, tokens: Tokens) -> None:
        self._tokens = tokens
        logger.info("tokens_stored", portal_id=tokens.portal_id, expires_at=tokens.expires_at)


def require_tokens(tokens: Optional[Tokens], now: float = None) -> Tokens:
    """Fail fast when no usable token is available."""
    if tokens is None or not tokens.access_token:
        raise MissingToken()
    if tokens.is_expired(now):
        raise TokenExpired(portal_id=tokens.portal_id)
    return tokens
