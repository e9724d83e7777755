"""Error taxonomy shared by the lookup client, the CRM client and the enrichment service.

Every error carries a machine-readable ``code``, a human-readable message and,
for throttling errors, the number of seconds the caller should wait before
trying again.
"""

import math
from typing import Optional, List


def format_wait(seconds: float) -> str:
    """Render a wait time as e.g. ``"1 minute(s) and 5 second(s)"``."""
    if seconds is None or seconds <= 0:
        return "available now"
    total = math.ceil(seconds)
    minutes, secs = divmod(total, 60)
    if minutes:
        return f"{minutes} minute(s) and {secs} second(s)"
    return f"{secs} second(s)"


class EnrichmentError(Exception):
    """Base class for every failure surfaced to enrichment callers."""

    code = "INTERNAL_ERROR"
    retryable = False
    default_message = "Enrichment failed"

    def __init__(self, message: str = None, wait_seconds: Optional[float] = None, **details):
        self.message = message or self.default_message
        self.wait_seconds = wait_seconds
        self.details = details
        super().__init__(self.message)

    @property
    def wait_ms(self) -> Optional[int]:
        if self.wait_seconds is None:
            return None
        return int(math.ceil(self.wait_seconds * 1000))

    def to_dict(self) -> dict:
        """Convert to the JSON shape returned by the API and the CLI."""
        data = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.wait_seconds is not None:
            data["wait_time_ms"] = self.wait_ms
            data["wait_time_formatted"] = format_wait(self.wait_seconds)
            data["retry_after"] = int(math.ceil(self.wait_seconds))
        data.update(self.details)
        return data


# Identifier errors

class ValidationError(EnrichmentError):
    """Input could not be used as a CNPJ."""

    code = "INVALID_CNPJ"
    default_message = "Invalid CNPJ"


class InvalidIdentifier(ValidationError):
    """A CNPJ failed format validation."""

    WRONG_LENGTH = "wrong_length"
    REPEATED_DIGITS = "repeated_digits"

    _messages = {
        WRONG_LENGTH: "CNPJ must have 14 digits",
        REPEATED_DIGITS: "CNPJ cannot have all digits equal",
    }

    def __init__(self, reason: str, value: str = ""):
        self.reason = reason
        self.value = value
        super().__init__(self._messages.get(reason, "Invalid CNPJ"), reason=reason, cnpj_provided=value)


class IdentifierNotFound(EnrichmentError):
    """No property of the company holds something that looks like a CNPJ."""

    code = "CNPJ_NOT_FOUND_IN_COMPANY"
    default_message = "CNPJ not found in company properties"


# Lookup errors

class RegistryLookupError(EnrichmentError):
    """Base class for registry lookup failures."""

    code = "LOOKUP_ERROR"


class RateLimitError(RegistryLookupError):
    """Base class for every throttling outcome (internal or upstream)."""

    code = "RATE_LIMIT"
    retryable = True


class RateLimited(RateLimitError):
    """The limiter reported that no request can be made right now."""

    code = "RATE_LIMIT_WAIT"
    default_message = "CNPJ lookup rate limit reached, try again later"


class QuotaExceeded(RateLimitError):
    """The sliding window already holds the maximum number of requests."""

    code = "RATE_LIMIT_EXCEEDED"
    default_message = "CNPJ lookup quota for the current window exhausted"


class TooSoon(RateLimitError):
    """The minimum delay since the previous request has not elapsed."""

    code = "RATE_LIMIT_TOO_SOON"
    default_message = "Too soon since the previous CNPJ lookup"


class UpstreamRateLimited(RateLimitError):
    """The registry API itself answered HTTP 429."""

    code = "RATE_LIMIT_API"
    default_message = "CNPJ API returned rate limit (429)"


class RegistryNotFound(RegistryLookupError):
    """The registry has no record for the CNPJ."""

    code = "CNPJ_NOT_FOUND"
    default_message = "CNPJ not found in the federal registry"


class TransientLookupError(RegistryLookupError):
    """Timeout, connection failure or unexpected response from the registry."""

    code = "LOOKUP_UNAVAILABLE"
    retryable = True
    default_message = "CNPJ API unavailable"

    def __init__(self, message: str = None, underlying: Exception = None, **details):
        self.underlying = underlying
        if underlying is not None and message is None:
            message = f"CNPJ API unavailable: {underlying!r}"
        super().__init__(message, **details)


# CRM errors

class CrmError(EnrichmentError):
    """HubSpot answered with an unexpected error."""

    code = "CRM_ERROR"
    default_message = "HubSpot request failed"

    def __init__(self, message: str = None, status: Optional[int] = None, **details):
        self.status = status
        if status is not None:
            details["status"] = status
        super().__init__(message, **details)


class AuthError(CrmError):
    """HubSpot token missing, expired or rejected."""

    code = "INVALID_TOKEN"
    default_message = "HubSpot token invalid or expired, run OAuth again"


class MissingToken(AuthError):
    code = "MISSING_TOKEN"
    default_message = "HubSpot token not configured, install the app first"


class TokenExpired(AuthError):
    code = "TOKEN_EXPIRED"
    default_message = "HubSpot token expired, reinstall the app to get a new one"


class CompanyNotFound(CrmError):
    code = "COMPANY_NOT_FOUND"
    default_message = "Company not found in HubSpot"


class SchemaError(CrmError):
    """A property written by the enrichment does not exist in the portal."""

    code = "PROPERTIES_NOT_FOUND"
    default_message = "Properties do not exist in HubSpot, run create-fields first"

    def __init__(self, message: str = None, missing: List[str] = None, **details):
        self.missing = missing or []
        super().__init__(message, missing_properties=self.missing, **details)
