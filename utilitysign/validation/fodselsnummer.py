"""
Norwegian fødselsnummer (national identity number) validation.

Format is DDMMYYIIICC: date of birth, a three digit individual number and two
control digits computed with modulo 11.
"""

import re
from typing import Optional

from pydantic import BaseModel

_SEPARATORS = re.compile(r"[\s\-.]")
_ELEVEN_DIGITS = re.compile(r"^[0-9]{11}$")

WEIGHTS_FIRST = (3, 7, 6, 1, 8, 9, 4, 5, 2)
WEIGHTS_SECOND = (5, 4, 3, 2, 7, 6, 5, 4, 3, 2)


class FodselsnummerValidationResult(BaseModel):
    is_valid: bool
    error: Optional[str] = None
    formatted: Optional[str] = None


def clean_fodselsnummer(value: str) -> str:
    return _SEPARATORS.sub("", value)


def format_fodselsnummer(value: str) -> str:
    """Format as ``DDMMYY III CC``; anything that is not 11 digits is returned as is."""
    cleaned = clean_fodselsnummer(value)
    if not _ELEVEN_DIGITS.match(cleaned):
        return value
    return f"{cleaned[:6]} {cleaned[6:9]} {cleaned[9:]}"


def _control_digit(digits: list[int], weights: tuple[int, ...]) -> Optional[int]:
    control = 11 - (sum(d * w for d, w in zip(digits, weights)) % 11)
    if control == 11:
        return 0
    if control == 10:
        return None
    return control


def _invalid(error: str) -> FodselsnummerValidationResult:
    return FodselsnummerValidationResult(is_valid=False, error=error)


def validate_fodselsnummer(value: Optional[str]) -> FodselsnummerValidationResult:
    if not value:
        return _invalid("Fødselsnummer er påkrevd")

    cleaned = clean_fodselsnummer(value)
    if len(cleaned) != 11:
        if len(cleaned) < 11:
            return _invalid("Fødselsnummer må være 11 siffer")
        return _invalid("Fødselsnummer kan ikke være mer enn 11 siffer")
    if not _ELEVEN_DIGITS.match(cleaned):
        return _invalid("Fødselsnummer kan bare inneholde siffer")

    digits = [int(ch) for ch in cleaned]
    day = int(cleaned[0:2])
    month = int(cleaned[2:4])
    if not 1 <= day <= 31:
        return _invalid("Ugyldig fødselsdato (dag)")
    if not 1 <= month <= 12:
        return _invalid("Ugyldig fødselsdato (måned)")

    first = _control_digit(digits[:9], WEIGHTS_FIRST)
    if first is None:
        return _invalid("Ugyldig fødselsnummer (kontrollsiffer 1)")
    if first != digits[9]:
        return _invalid("Ugyldig fødselsnummer (kontrollsiffer 1 stemmer ikke)")

    second = _control_digit(digits[:10], WEIGHTS_SECOND)
    if second is None:
        return _invalid("Ugyldig fødselsnummer (kontrollsiffer 2)")
    if second != digits[10]:
        return _invalid("Ugyldig fødselsnummer (kontrollsiffer 2 stemmer ikke)")

    return FodselsnummerValidationResult(is_valid=True, formatted=cleaned)
