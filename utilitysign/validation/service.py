import logging
import re
from typing import Iterable, Optional

from utilitysign.config import settings
from utilitysign.validation.schemas import SigningFormData, ValidationResult

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
ORGANIZATION_NUMBER_PATTERN = re.compile(r"^[0-9]{9}$")
DIGITS_PATTERN = re.compile(r"^[0-9]+$")

# GS1 MålepunktID: 18 digits, Norwegian country code 70 followed by industry code 70575.
METER_NUMBER_PATTERN = re.compile(r"^[0-9]{18}$")
METER_NUMBER_PREFIX = "7070575"

# ── Messages ────────────────────────────────────────────────────────────────────

MSG_FIRST_NAME_REQUIRED = "Fornavn er påkrevd"
MSG_FIRST_NAME_TOO_SHORT = "Fornavn må være minst 2 tegn"
MSG_LAST_NAME_REQUIRED = "Etternavn er påkrevd"
MSG_LAST_NAME_TOO_SHORT = "Etternavn må være minst 2 tegn"
MSG_EMAIL_REQUIRED = "E-postadresse er påkrevd"
MSG_EMAIL_INVALID = "Vennligst skriv inn en gyldig e-postadresse"
MSG_PHONE_REQUIRED = "Telefonnummer er påkrevd"
MSG_ADDRESS_REQUIRED = "Gate er påkrevd"
MSG_CITY_REQUIRED = "Sted er påkrevd"
MSG_ZIP_REQUIRED = "Postnummer er påkrevd"
MSG_BILLING_ADDRESS_REQUIRED = "Fakturaadresse er påkrevd"
MSG_BILLING_ZIP_REQUIRED = "Faktura postnummer er påkrevd"
MSG_BILLING_CITY_REQUIRED = "Faktura sted er påkrevd"
MSG_METER_NUMBER_LENGTH = "MålepunktID må være nøyaktig 18 siffer"
MSG_METER_NUMBER_PREFIX = "MålepunktID må starte med 7070575 (norsk landkode + bransjekode)"
MSG_SERIAL_NUMBER_DIGITS = "Målenummer kan bare inneholde siffer"
MSG_COMPANY_NAME_REQUIRED = "Firmanavn er påkrevd"
MSG_COMPANY_NAME_TOO_SHORT = "Firmanavn må være minst 2 tegn"
MSG_ORGANIZATION_NUMBER_REQUIRED = "Organisasjonsnummer er påkrevd"
MSG_ORGANIZATION_NUMBER_INVALID = "Organisasjonsnummer må være 9 siffer"
MSG_SPORTS_TEAM_REQUIRED = "Vennligst velg idrettslag du vil støtte"


def is_business_product(product_id: Optional[str], business_product_ids: Optional[Iterable[str]] = None) -> bool:
    if not product_id:
        return False
    ids = settings.business_product_ids if business_product_ids is None else business_product_ids
    return product_id in set(ids)


def is_sports_team_product(product_id: Optional[str], sports_team_product_id: Optional[str] = None) -> bool:
    if not product_id:
        return False
    target = settings.sports_team_product_id if sports_team_product_id is None else sports_team_product_id
    return product_id == target


def validate_meter_number(value: Optional[str]) -> Optional[str]:
    """Return the error for a MålepunktID, or None when it is empty or valid."""
    cleaned = re.sub(r"\s", "", value or "")
    if not cleaned:
        return None
    if not METER_NUMBER_PATTERN.match(cleaned):
        return MSG_METER_NUMBER_LENGTH
    if not cleaned.startswith(METER_NUMBER_PREFIX):
        return MSG_METER_NUMBER_PREFIX
    return None


def _validate_name(value: str, required_msg: str, short_msg: str) -> Optional[str]:
    if not value:
        return required_msg
    if len(value) < 2:
        return short_msg
    return None


def validate_signing_form(
    data: SigningFormData,
    *,
    product_id: Optional[str] = None,
    business_product_ids: Optional[Iterable[str]] = None,
    sports_team_product_id: Optional[str] = None,
) -> ValidationResult:
    """Field-level validation of a signing form snapshot.

    Pure: the snapshot is never modified and the same input always yields the same
    errors. Billing fields are ignored when the delivery address doubles as billing
    address. Marketing consent is never validated.
    """
    errors: dict[str, str] = {}

    first_name = data.first_name.strip()
    last_name = data.last_name.strip()
    email = data.signer_email.strip()

    error = _validate_name(first_name, MSG_FIRST_NAME_REQUIRED, MSG_FIRST_NAME_TOO_SHORT)
    if error:
        errors["firstName"] = error
    error = _validate_name(last_name, MSG_LAST_NAME_REQUIRED, MSG_LAST_NAME_TOO_SHORT)
    if error:
        errors["lastName"] = error

    if not email:
        errors["signerEmail"] = MSG_EMAIL_REQUIRED
    elif not EMAIL_PATTERN.match(email):
        errors["signerEmail"] = MSG_EMAIL_INVALID

    required = (
        ("phone", data.phone, MSG_PHONE_REQUIRED),
        ("address", data.address, MSG_ADDRESS_REQUIRED),
        ("city", data.city, MSG_CITY_REQUIRED),
        ("zip", data.zip, MSG_ZIP_REQUIRED),
    )
    for field, value, message in required:
        if not value.strip():
            errors[field] = message

    if not data.use_same_address_for_billing:
        billing = (
            ("billingAddress", data.billing_address, MSG_BILLING_ADDRESS_REQUIRED),
            ("billingZip", data.billing_zip, MSG_BILLING_ZIP_REQUIRED),
            ("billingCity", data.billing_city, MSG_BILLING_CITY_REQUIRED),
        )
        for field, value, message in billing:
            if not value.strip():
                errors[field] = message

    error = validate_meter_number(data.meter_number)
    if error:
        errors["meterNumber"] = error

    serial_number = re.sub(r"\s", "", data.serial_number)
    if serial_number and not DIGITS_PATTERN.match(serial_number):
        errors["serialNumber"] = MSG_SERIAL_NUMBER_DIGITS

    if is_business_product(product_id, business_product_ids):
        error = _validate_name(data.company_name.strip(), MSG_COMPANY_NAME_REQUIRED, MSG_COMPANY_NAME_TOO_SHORT)
        if error:
            errors["companyName"] = error
        org_number = data.organization_number.strip()
        if not org_number:
            errors["organizationNumber"] = MSG_ORGANIZATION_NUMBER_REQUIRED
        elif not ORGANIZATION_NUMBER_PATTERN.match(org_number):
            errors["organizationNumber"] = MSG_ORGANIZATION_NUMBER_INVALID

    if is_sports_team_product(product_id, sports_team_product_id) and not data.sports_team.strip():
        errors["sportsTeam"] = MSG_SPORTS_TEAM_REQUIRED

    if errors:
        logger.debug("Signing form failed validation: %s", sorted(errors))
    return ValidationResult(errors=errors)
