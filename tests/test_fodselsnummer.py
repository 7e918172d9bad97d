import pytest

from utilitysign.validation.fodselsnummer import (
    clean_fodselsnummer,
    format_fodselsnummer,
    validate_fodselsnummer,
)

VALID = "01019012480"


class TestFodselsnummer:
    """Validation of Norwegian national identity numbers."""

    def test_valid_number(self):
        """A number with correct date and control digits passes."""
        result = validate_fodselsnummer(VALID)
        assert result.is_valid
        assert result.formatted == VALID

    def test_separators_are_ignored(self):
        """Spaces, dashes and dots are stripped before checking."""
        assert validate_fodselsnummer("010190 124-80").is_valid
        assert validate_fodselsnummer("01.01.90.12480").is_valid

    @pytest.mark.parametrize(
        "value, error",
        [
            ("", "Fødselsnummer er påkrevd"),
            ("0101901248", "Fødselsnummer må være 11 siffer"),
            ("010190124800", "Fødselsnummer kan ikke være mer enn 11 siffer"),
            ("0101901248A", "Fødselsnummer kan bare inneholde siffer"),
            ("32019012480", "Ugyldig fødselsdato (dag)"),
            ("01139012480", "Ugyldig fødselsdato (måned)"),
            ("01019012490", "Ugyldig fødselsnummer (kontrollsiffer 1 stemmer ikke)"),
            ("01019012481", "Ugyldig fødselsnummer (kontrollsiffer 2 stemmer ikke)"),
            ("01019012300", "Ugyldig fødselsnummer (kontrollsiffer 1)"),
        ],
    )
    def test_invalid_numbers(self, value, error):
        """Each kind of malformed number gets its own message."""
        result = validate_fodselsnummer(value)
        assert result.is_valid is False
        assert result.error == error


class TestHelpers:
    """Cleaning and display formatting."""

    def test_clean(self):
        """Separators are removed."""
        assert clean_fodselsnummer("010190 124-80") == VALID

    def test_format(self):
        """Eleven digits are grouped as DDMMYY III CC."""
        assert format_fodselsnummer(VALID) == "010190 124 80"

    def test_format_leaves_other_input_alone(self):
        """Input that is not eleven digits is returned unchanged."""
        assert format_fodselsnummer("12345") == "12345"
