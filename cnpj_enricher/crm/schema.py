"""Company properties written by the enrichment, and their one-time creation."""

from enum import Enum
from typing import List

import structlog

from .hubspot import HubSpotClient
from ..errors import CrmError, AuthError

logger = structlog.get_logger()

GROUP_NAME = "companyinformation"

# Property names
CNPJ = "cnpj_numero"
LEGAL_NAME = "cnpj_razao_social"
TRADE_NAME = "cnpj_nome_fantasia"
REGISTRATION_STATUS = "cnpj_situacao_cadastral"
SIZE = "cnpj_porte"
PRIMARY_ACTIVITY = "cnpj_atividade_principal"
FULL_ADDRESS = "cnpj_endereco_completo"
REGISTERED_CAPITAL = "cnpj_capital_social"
PHONE = "cnpj_telefone"
EMAIL = "cnpj_email"
LAST_UPDATED = "cnpj_ultima_atualizacao"
REPORT = "cnpj_relatorio"
SHOULD_ENRICH = "cnpj_enriquecer"
ENRICHMENT_STATUS = "cnpj_status_enriquecimento"

SHOULD_ENRICH_YES = "sim"
SHOULD_ENRICH_NO = "nao"


class EnrichmentStatus(str, Enum):
    """Values of the enrichment status property."""
    PENDING = "pending"              # flagged, not attempted yet
    ENRICHED = "enriched"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"
    NOT_PROCESSED = "not_processed"  # skipped: no CNPJ on the record


STATUS_LABELS = {
    EnrichmentStatus.PENDING: "Pendente",
    EnrichmentStatus.ENRICHED: "Enriquecido",
    EnrichmentStatus.RATE_LIMITED: "Aguardando limite de consultas",
    EnrichmentStatus.FAILED: "Erro",
    EnrichmentStatus.NOT_PROCESSED: "Não processado",
}


def _text(name: str, label: str, description: str, long: bool = False) -> dict:
    return {
        "name": name,
        "label": label,
        "type": "string",
        "fieldType": "textarea" if long else "text",
        "groupName": GROUP_NAME,
        "description": description,
    }


def _enum(name: str, label: str, description: str, options: List[tuple]) -> dict:
    return {
        "name": name,
        "label": label,
        "type": "enumeration",
        "fieldType": "select",
        "groupName": GROUP_NAME,
        "description": description,
        "options": [
            {"label": opt_label, "value": value, "displayOrder": i}
            for i, (value, opt_label) in enumerate(options)
        ],
    }


COMPANY_PROPERTIES = [
    _text(CNPJ, "CNPJ (número)", "CNPJ da empresa"),
    _text(LEGAL_NAME, "Razão Social", "Razão social na Receita Federal"),
    _text(TRADE_NAME, "Nome Fantasia", "Nome fantasia na Receita Federal"),
    _text(REGISTRATION_STATUS, "Situação Cadastral", "Situação cadastral na Receita Federal"),
    _text(SIZE, "Porte", "Porte da empresa"),
    _text(PRIMARY_ACTIVITY, "Atividade Principal", "Atividade principal (CNAE)", long=True),
    _text(FULL_ADDRESS, "Endereço Completo", "Endereço registrado na Receita Federal", long=True),
    _text(REGISTERED_CAPITAL, "Capital Social", "Capital social declarado"),
    _text(PHONE, "Telefone (CNPJ)", "Telefone registrado na Receita Federal"),
    _text(EMAIL, "Email (CNPJ)", "Email registrado na Receita Federal"),
    _text(LAST_UPDATED, "Última Atualização CNPJ", "Data da última consulta ao CNPJ"),
    _text(REPORT, "Relatório do CNPJ", "Dados do CNPJ em formato de relatório", long=True),
    _enum(SHOULD_ENRICH, "Enriquecer CNPJ", "Marque 'Sim' para enriquecer na próxima varredura", [
        (SHOULD_ENRICH_YES, "Sim"),
        (SHOULD_ENRICH_NO, "Não"),
    ]),
    _enum(ENRICHMENT_STATUS, "Status do Enriquecimento", "Resultado da última tentativa de enriquecimento", [
        (status.value, STATUS_LABELS[status]) for status in EnrichmentStatus
    ]),
]


def property_names() -> List[str]:
    return [p["name"] for p in COMPANY_PROPERTIES]


async def ensure_properties(client: HubSpotClient, definitions: List[dict] = None) -> dict:
    """Create every enrichment property; existing ones count as success."""
    definitions = definitions or COMPANY_PROPERTIES
    results = []
    errors = []

    for definition in definitions:
        try:
            results.append(await client.create_property(definition))
        except AuthError:
            raise
        except CrmError as e:
            logger.error("property_creation_failed", name=definition["name"], error=e.message)
            errors.append({"name": definition["name"], "error": e.message})

    summary = {
        "total": len(definitions),
        "created": sum(1 for r in results if r["status"] == "created"),
        "already_exists": sum(1 for r in results if r["status"] == "already_exists"),
        "errors": len(errors),
    }
    logger.info("properties_ensured", **summary)

    return {
        "ok": not errors,
        "summary": summary,
        "results": results,
        "errors": errors,
    }


async def missing_properties(client: HubSpotClient, names: List[str] = None) -> List[str]:
    """Names of enrichment properties the portal does not have yet."""
    existing = {p.get("name") for p in await client.list_properties()}
    return [n for n in (names or property_names()) if n not in existing]
