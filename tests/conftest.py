"""Pytest configuration and shared fixtures."""

import pytest
from unittest.mock import AsyncMock, MagicMock
from pathlib import Path

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from cnpj_enricher.crm.tokens import Tokens
from cnpj_enricher.lookup.client import RegistryLookupClient

VALID_CNPJ = "14665903000104"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry_payload():
    """Provide a registry API response body."""
    return {
        "razao_social": "ACME INDUSTRIA E COMERCIO LTDA",
        "capital_social": "150000.00",
        "porte": {"id": "03", "descricao": "Demais"},
        "natureza_juridica": {"id": "2062", "descricao": "Sociedade Empresária Limitada"},
        "socios": [
            {"nome": "MARIA DA SILVA", "qualificacao_socio": {"descricao": "Sócio-Administrador"}},
            {"nome": "JOAO SOUZA", "qualificacao_socio": None},
        ],
        "estabelecimento": {
            "cnpj": VALID_CNPJ,
            "nome_fantasia": "ACME",
            "situacao_cadastral": "Ativa",
            "data_situacao_cadastral": "2005-11-03",
            "data_inicio_atividade": "2001-05-20",
            "tipo_logradouro": "Rua",
            "logradouro": "das Flores",
            "numero": "100",
            "complemento": "Sala 2",
            "bairro": "Centro",
            "cep": "01001000",
            "ddd1": "11",
            "telefone1": "33334444",
            "email": "contato@acme.com.br",
            "atividade_principal": {"id": "6201501", "descricao": "Desenvolvimento de programas de computador sob encomenda"},
            "cidade": {"nome": "São Paulo"},
            "estado": {"sigla": "SP"},
        },
    }


@pytest.fixture
def lookup_client(clock):
    """Lookup client with a fake clock and no spacing between calls."""
    return RegistryLookupClient(
        base_url="https://registry.test/cnpj",
        window_seconds=60.0,
        max_requests=3,
        min_interval_seconds=0.0,
        cache_ttl_seconds=3600.0,
        upstream_retry_after=60.0,
        clock=clock,
    )


@pytest.fixture
def ok_response(registry_payload):
    """AsyncMock standing in for RegistryLookupClient._request."""
    return AsyncMock(return_value=(200, registry_payload))


@pytest.fixture
def tokens():
    return Tokens(access_token="test-token", refresh_token="refresh", portal_id="12345")


@pytest.fixture
def mock_crm():
    """HubSpot client double holding a company with a formatted CNPJ."""
    crm = MagicMock()
    crm.get_company = AsyncMock(return_value={
        "id": "101",
        "properties": {"name": "Acme", "cnpj": "14.665.903/0001-04"},
    })
    crm.update_company = AsyncMock(return_value={"id": "101"})
    crm.search_companies = AsyncMock(return_value=[])
    crm.create_property = AsyncMock()
    crm.close = AsyncMock()
    return crm
