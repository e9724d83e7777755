"""Unit tests for CNPJ validation."""

import pytest

# Add project root to path
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from cnpj_enricher.errors import InvalidIdentifier, ValidationError
from cnpj_enricher.identifier.validator import format_display, is_valid, normalize, validate


class TestNormalize:
    """Tests for normalize."""

    def test_strips_punctuation(self):
        assert normalize("14.665.903/0001-04") == "14665903000104"

    def test_none_is_empty(self):
        assert normalize(None) == ""

    def test_letters_removed(self):
        assert normalize("CNPJ: 14665903000104") == "14665903000104"


class TestValidate:
    """Tests for validate."""

    def test_formatted_input(self):
        """Should accept the usual punctuated form."""
        assert validate("14.665.903/0001-04") == "14665903000104"

    def test_digits_only(self):
        assert validate("14665903000104") == "14665903000104"

    @pytest.mark.parametrize("raw", ["", "123", "1466590300010", "146659030001040"])
    def test_wrong_length(self, raw):
        with pytest.raises(InvalidIdentifier) as exc_info:
            validate(raw)
        assert exc_info.value.reason == InvalidIdentifier.WRONG_LENGTH

    @pytest.mark.parametrize("raw", ["00000000000000", "11.111.111/1111-11", "99999999999999"])
    def test_repeated_digits(self, raw):
        with pytest.raises(InvalidIdentifier) as exc_info:
            validate(raw)
        assert exc_info.value.reason == InvalidIdentifier.REPEATED_DIGITS

    def test_error_shape(self):
        """Should expose code and the provided value."""
        with pytest.raises(ValidationError) as exc_info:
            validate("12.345")
        data = exc_info.value.to_dict()
        assert data["code"] == "INVALID_CNPJ"
        assert data["retryable"] is False
        assert data["cnpj_provided"] == "12.345"
        assert "wait_time_ms" not in data

    @pytest.mark.parametrize("raw", [
        "１４６６５９０３０００１０４",  # fullwidth
        "١٤٦٦٥٩٠٣٠٠٠١٠٤",  # Arabic-Indic
        "۱۴۶۶۵۹۰۳۰۰۰۱۰۴",  # Extended Arabic-Indic
    ])
    def test_non_ascii_digits_rejected(self, raw):
        """Only ASCII 0-9 count as CNPJ digits."""
        assert normalize(raw) == ""
        with pytest.raises(InvalidIdentifier) as exc_info:
            validate(raw)
        assert exc_info.value.reason == InvalidIdentifier.WRONG_LENGTH

    def test_mixed_ascii_and_fullwidth_rejected(self):
        with pytest.raises(InvalidIdentifier):
            validate("1466590300010４")

    def test_check_digits_not_verified(self):
        """Any 14 non-repeated digits pass."""
        assert validate("12345678000100") == "12345678000100"


class TestHelpers:
    """Tests for is_valid and format_display."""

    def test_is_valid(self):
        assert is_valid("14.665.903/0001-04")
        assert not is_valid("123")
        assert not is_valid(None)

    def test_format_display(self):
        assert format_display("14665903000104") == "14.665.903/0001-04"

    def test_format_display_passthrough(self):
        assert format_display("123") == "123"

    def test_format_display_none(self):
        assert format_display(None) == ""
