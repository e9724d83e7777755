"""Unit tests for token storage and the OAuth exchanges."""

import pytest
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

# Add project root to path
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from cnpj_enricher.crm import oauth
from cnpj_enricher.crm.tokens import InMemoryTokenStore, Tokens, require_tokens
from cnpj_enricher.errors import AuthError, CrmError, MissingToken, TokenExpired


class TestTokens:
    """Tests for Tokens and the token store."""

    def test_from_oauth_response(self):
        tokens = Tokens.from_oauth_response(
            {"access_token": "a", "refresh_token": "r", "expires_in": 1800, "hub_id": 42},
            now=1000.0,
        )

        assert tokens.access_token == "a"
        assert tokens.expires_at == 2800.0
        assert tokens.portal_id == "42"

    def test_is_expired(self):
        tokens = Tokens(access_token="a", expires_at=2000.0)

        assert not tokens.is_expired(now=1999.0)
        assert tokens.is_expired(now=2000.0)

    def test_no_expiry_never_expires(self):
        assert not Tokens(access_token="a").is_expired()

    def test_require_tokens(self):
        with pytest.raises(MissingToken):
            require_tokens(None)
        with pytest.raises(MissingToken):
            require_tokens(Tokens(access_token=""))
        with pytest.raises(TokenExpired) as exc_info:
            require_tokens(Tokens(access_token="a", expires_at=10.0, portal_id="7"), now=20.0)
        assert exc_info.value.details["portal_id"] == "7"

    def test_in_memory_store(self):
        store = InMemoryTokenStore()
        with pytest.raises(MissingToken):
            store.require()

        store.set(Tokens(access_token="a"))

        assert store.require().access_token == "a"


class TestAuthorizeUrl:
    """Tests for the install URL."""

    def test_authorize_url(self):
        url = oauth.authorize_url(client_id="cid", redirect_uri="https://app.test/oauth/callback")
        query = parse_qs(urlparse(url).query)

        assert url.startswith(oauth.AUTHORIZE_URL)
        assert query["client_id"] == ["cid"]
        assert query["redirect_uri"] == ["https://app.test/oauth/callback"]
        assert "crm.objects.companies.write" in query["scope"][0].split(" ")


@pytest.mark.asyncio
class TestExchange:
    """Tests for code and refresh-token exchanges."""

    async def test_exchange_code(self):
        post = AsyncMock(return_value=(200, {
            "access_token": "a", "refresh_token": "r", "expires_in": 1800, "hub_id": 42,
        }))
        with patch.object(oauth, "_post_form", post):
            tokens = await oauth.exchange_code("code-1", client_id="cid", client_secret="sec", redirect_uri="u")

        assert tokens.access_token == "a"
        assert tokens.portal_id == "42"
        form = post.await_args.args[0]
        assert form["grant_type"] == "authorization_code"
        assert form["code"] == "code-1"

    async def test_rejected_code(self):
        post = AsyncMock(return_value=(400, {"message": "invalid code"}))
        with patch.object(oauth, "_post_form", post):
            with pytest.raises(AuthError):
                await oauth.exchange_code("bad", client_id="cid", client_secret="sec", redirect_uri="u")

    async def test_server_failure(self):
        post = AsyncMock(return_value=(500, {}))
        with patch.object(oauth, "_post_form", post):
            with pytest.raises(CrmError) as exc_info:
                await oauth.exchange_code("code", client_id="cid", client_secret="sec", redirect_uri="u")

        assert not isinstance(exc_info.value, AuthError)

    async def test_refresh_keeps_old_refresh_token(self):
        post = AsyncMock(return_value=(200, {"access_token": "new", "expires_in": 1800}))
        with patch.object(oauth, "_post_form", post):
            tokens = await oauth.refresh_access_token("old-refresh", client_id="cid", client_secret="sec")

        assert tokens.access_token == "new"
        assert tokens.refresh_token == "old-refresh"
        assert post.await_args.args[0]["grant_type"] == "refresh_token"
