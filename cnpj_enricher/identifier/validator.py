"""Normalize and validate CNPJ identifiers."""
import re

from ..errors import InvalidIdentifier

CNPJ_LENGTH = 14

_NON_DIGITS = re.compile(r'[^0-9]')
_REPEATED = re.compile(r'^([0-9])\1{13}$')
_DISPLAY = re.compile(r'^([0-9]{2})([0-9]{3})([0-9]{3})([0-9]{4})([0-9]{2})$')


def normalize(raw) -> str:
    """Strip every non-digit character. Empty input gives an empty string."""
    if raw is None:
        return ""
    return _NON_DIGITS.sub("", str(raw).strip())


def validate(raw) -> str:
    """Return the 14-digit CNPJ or raise InvalidIdentifier.

    Accepts both ``14665903000104`` and ``14.665.903/0001-04``.
    """
    cleaned = normalize(raw)

    if len(cleaned) != CNPJ_LENGTH:
        raise InvalidIdentifier(InvalidIdentifier.WRONG_LENGTH, value="" if raw is None else str(raw))

    # Known-invalid pattern: 00000000000000, 11111111111111, ...
    if _REPEATED.match(cleaned):
        raise InvalidIdentifier(InvalidIdentifier.REPEATED_DIGITS, value=str(raw))

    return cleaned


def is_valid(raw) -> bool:
    """Check if the input normalizes to a valid CNPJ."""
    try:
        validate(raw)
    except InvalidIdentifier:
        return False
    return True


def format_display(raw) -> str:
    """Format as NN.NNN.NNN/NNNN-NN, or return the input as text if it is not 14 digits."""
    cleaned = normalize(raw)
    if len(cleaned) != CNPJ_LENGTH:
        return "" if raw is None else str(raw)
    return _DISPLAY.sub(r'\1.\2.\3/\4-\5', cleaned)
