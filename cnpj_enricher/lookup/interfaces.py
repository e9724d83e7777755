"""Data models for registry lookups."""

from dataclasses import dataclass, field
from typing import Optional, List, Tuple

from ..errors import format_wait


@dataclass(frozen=True)
class Partner:
    """A partner (socio) listed in the registry."""
    name: str
    qualification: str = ""


@dataclass(frozen=True)
class LookupRecord:
    """Registry data for one CNPJ, as returned by the public CNPJ API."""

    cnpj: str
    legal_name: str = ""           # razao_social
    trade_name: str = ""           # estabelecimento.nome_fantasia
    registration_status: str = ""  # estabelecimento.situacao_cadastral
    status_date: str = ""
    size: str = ""                 # porte.descricao
    legal_nature: str = ""
    registered_capital: str = ""

    # Activity
    primary_activity: str = ""
    primary_activity_code: str = ""
    activity_start_date: str = ""

    # Address
    street_type: str = ""
    street: str = ""
    number: str = ""
    complement: str = ""
    district: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""

    # Contact
    phone: str = ""
    email: str = ""

    partners: Tuple[Partner, ...] = ()
    raw: dict = field(default_factory=dict, compare=False, repr=False)

    @property
    def full_address(self) -> str:
        """Street line plus district, city/state and postal code."""
        if not self.street:
            return ""
        line = f"{self.street_type} {self.street}".strip()
        line = f"{line}, {self.number or 'S/N'}"
        if self.complement:
            line = f"{line}, {self.complement}"
        parts = [line]
        if self.district:
            parts.append(self.district)
        if self.city or self.state:
            parts.append("/".join(p for p in (self.city, self.state) if p))
        if self.postal_code:
            parts.append(f"CEP {self.postal_code}")
        return " - ".join(parts)

    @classmethod
    def from_api(cls, cnpj: str, payload: dict) -> "LookupRecord":
        """Parse a ``GET /cnpj/{cnpj}`` response body."""
        est = payload.get("estabelecimento") or {}
        activity = est.get("atividade_principal") or {}

        phone = ""
        if est.get("telefone1"):
            phone = f"({est.get('ddd1') or ''}) {est['telefone1']}"

        partners = tuple(
            Partner(
                name=s.get("nome") or "",
                qualification=(s.get("qualificacao_socio") or {}).get("descricao") or "",
            )
            for s in payload.get("socios") or []
        )

        capital = payload.get("capital_social")

        return cls(
            cnpj=cnpj,
            legal_name=payload.get("razao_social") or "",
            trade_name=est.get("nome_fantasia") or "",
            registration_status=est.get("situacao_cadastral") or "",
            status_date=est.get("data_situacao_cadastral") or "",
            size=(payload.get("porte") or {}).get("descricao") or "",
            legal_nature=(payload.get("natureza_juridica") or {}).get("descricao") or "",
            registered_capital="" if capital is None else str(capital),
            primary_activity=activity.get("descricao") or "",
            primary_activity_code=str(activity.get("id") or ""),
            activity_start_date=est.get("data_inicio_atividade") or "",
            street_type=est.get("tipo_logradouro") or "",
            street=est.get("logradouro") or "",
            number=est.get("numero") or "",
            complement=est.get("complemento") or "",
            district=est.get("bairro") or "",
            city=(est.get("cidade") or {}).get("nome") or "",
            state=(est.get("estado") or {}).get("sigla") or "",
            postal_code=est.get("cep") or "",
            phone=phone,
            email=est.get("email") or "",
            partners=partners,
            raw=payload,
        )


@dataclass
class RateLimitStatus:
    """Read-only snapshot of the limiter state."""

    can_request: bool
    wait_seconds: float
    requests_in_window: int
    max_requests: int
    window_remaining_seconds: float = 0.0

    @property
    def wait_ms(self) -> int:
        return int(round(self.wait_seconds * 1000))

    @property
    def wait_formatted(self) -> str:
        return format_wait(self.wait_seconds)

    @property
    def requests_remaining(self) -> int:
        return max(0, self.max_requests - self.requests_in_window)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "can_request": self.can_request,
            "wait_time_ms": self.wait_ms,
            "wait_time_formatted": self.wait_formatted,
            "requests_in_window": self.requests_in_window,
            "max_requests": self.max_requests,
            "requests_remaining": self.requests_remaining,
            "window_remaining_ms": int(round(self.window_remaining_seconds * 1000)),
        }


@dataclass
class CacheStats:
    """Cache and limiter counters for diagnostics."""
    cache_size: int
    cached_cnpjs: List[str]
    requests_in_window: int
    max_requests: int
    seconds_since_last_request: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "cache_size": self.cache_size,
            "cached_cnpjs": self.cached_cnpjs,
            "requests_in_window": self.requests_in_window,
            "max_requests": self.max_requests,
            "seconds_since_last_request": self.seconds_since_last_request,
        }
