"""Map registry records onto HubSpot company properties.

``FIELD_MAPPING`` is the default table deciding which record attribute lands in
which property. ``build_mapping`` redirects fields to existing HubSpot
properties. Empty values are skipped so existing CRM data is never blanked.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple, Union

from ..crm import schema
from ..identifier.validator import format_display
from ..lookup.interfaces import LookupRecord

NOT_INFORMED = "Não informado"

Getter = Union[str, Callable[[LookupRecord], str]]

FieldMapping = List[Tuple[str, Getter]]

FIELD_MAPPING: FieldMapping = [
    (schema.CNPJ, "cnpj"),
    (schema.LEGAL_NAME, "legal_name"),
    (schema.TRADE_NAME, "trade_name"),
    (schema.REGISTRATION_STATUS, "registration_status"),
    (schema.SIZE, "size"),
    (schema.PRIMARY_ACTIVITY, lambda r: (
        f"{r.primary_activity_code} - {r.primary_activity}"
        if r.primary_activity_code and r.primary_activity else r.primary_activity
    )),
    (schema.FULL_ADDRESS, "full_address"),
    (schema.REGISTERED_CAPITAL, "registered_capital"),
    (schema.PHONE, "phone"),
    (schema.EMAIL, "email"),
]


def build_mapping(overrides: Dict[str, Optional[str]] = None) -> FieldMapping:
    """Apply destination overrides to ``FIELD_MAPPING``.

    ``overrides`` maps a default property name (``cnpj_telefone``) to the
    HubSpot property that should receive it (``phone``). An empty destination
    drops the field. Unknown names and duplicate destinations raise ValueError.
    """
    overrides = overrides or {}
    known = {name for name, _ in FIELD_MAPPING}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ValueError(f"Unknown CNPJ fields: {', '.join(unknown)}")

    mapping = []
    for name, getter in FIELD_MAPPING:
        destination = overrides.get(name, name)
        if destination:
            mapping.append((destination.strip(), getter))

    destinations = [name for name, _ in mapping]
    duplicates = sorted({d for d in destinations if destinations.count(d) > 1})
    if duplicates:
        raise ValueError(f"Several fields mapped to: {', '.join(duplicates)}")
    return mapping


def _value(record: LookupRecord, getter: Getter) -> str:
    value = getter(record) if callable(getter) else getattr(record, getter)
    return "" if value is None else str(value).strip()


def map_record(
    record: LookupRecord,
    now: datetime = None,
    include_report: bool = True,
    mapping: FieldMapping = None,
) -> Dict[str, str]:
    """Build the PATCH payload for a company from a registry record."""
    now = now or datetime.now(timezone.utc)
    properties = {}

    for name, getter in (FIELD_MAPPING if mapping is None else mapping):
        value = _value(record, getter)
        if value:
            properties[name] = value

    properties[schema.LAST_UPDATED] = now.isoformat(timespec="seconds")
    if include_report:
        properties[schema.REPORT] = format_report(record, now)

    return properties


def summarize(record: LookupRecord) -> dict:
    """Short company summary returned to callers."""
    return {
        "legal_name": record.legal_name,
        "trade_name": record.trade_name,
        "registration_status": record.registration_status,
        "size": record.size,
        "city": record.city,
        "state": record.state,
        "primary_activity": record.primary_activity,
        "email": record.email,
        "phone": record.phone,
        "address": record.full_address,
        "postal_code": record.postal_code,
        "registered_capital": record.registered_capital,
        "activity_start_date": record.activity_start_date,
        "legal_nature": record.legal_nature,
    }


def format_report(record: LookupRecord, now: datetime = None) -> str:
    """Human-readable report stored in the long-text report property."""
    now = now or datetime.now(timezone.utc)

    def v(value: str) -> str:
        return value or NOT_INFORMED

    if record.partners:
        partners = "\n".join(f"• {p.name} - {v(p.qualification)}" for p in record.partners)
    else:
        partners = NOT_INFORMED

    capital = f"R$ {record.registered_capital}" if record.registered_capital else NOT_INFORMED

    lines = [
        "=== DADOS DA RECEITA FEDERAL ===",
        f"CNPJ: {format_display(record.cnpj)}",
        f"Razão Social: {v(record.legal_name)}",
        f"Nome Fantasia: {v(record.trade_name)}",
        f"Situação Cadastral: {v(record.registration_status)}",
        f"Data Situação: {v(record.status_date)}",
        f"Porte: {v(record.size)}",
        f"Capital Social: {capital}",
        "",
        "=== ATIVIDADE ===",
        f"Atividade Principal: {v(record.primary_activity)}",
        f"Código CNAE: {v(record.primary_activity_code)}",
        "",
        "=== ENDEREÇO ===",
        f"Endereço: {v(record.full_address)}",
        f"Bairro: {v(record.district)}",
        f"Cidade: {v(record.city)}",
        f"Estado: {v(record.state)}",
        f"CEP: {v(record.postal_code)}",
        "",
        "=== CONTATO ===",
        f"Telefone: {v(record.phone)}",
        f"Email: {v(record.email)}",
        "",
        "=== INFORMAÇÕES ADICIONAIS ===",
        f"Data Início Atividade: {v(record.activity_start_date)}",
        f"Natureza Jurídica: {v(record.legal_nature)}",
        "",
        "=== SÓCIOS ===",
        partners,
        "",
        f"Última atualização: {now.isoformat(timespec='minutes')}",
        "Fonte: Receita Federal do Brasil",
    ]
    return "\n".join(lines)
