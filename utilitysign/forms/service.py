import logging
from typing import Any, Mapping, Optional

from utilitysign.validation.schemas import SigningFormData

logger = logging.getLogger(__name__)

CHECKED_VALUES = {"on", "true", "1", "yes"}
BILLING_FIELDS = ("billing_address", "billing_city", "billing_zip")


def is_checked(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in CHECKED_VALUES


def reconcile_form_state(dom_values: Mapping[str, Any], state: SigningFormData) -> SigningFormData:
    """Merge the submitted form values with the last known in-memory state.

    Text fields prefer the submitted value when it is present and non-empty. Checkbox
    fields take the submitted checked state whenever the form reports one. With
    "same address for billing" set, billing fields are blanked no matter where a stale
    value came from.
    """
    values: dict[str, Any] = {}

    for field, attr in SigningFormData.text_fields().items():
        dom_value = dom_values.get(field)
        if dom_value is not None and not isinstance(dom_value, str):
            dom_value = str(dom_value)
        values[attr] = dom_value if dom_value else getattr(state, attr)

    for field, attr in SigningFormData.checkbox_fields().items():
        if field in dom_values:
            values[attr] = is_checked(dom_values[field])
        else:
            values[attr] = getattr(state, attr)

    if values["use_same_address_for_billing"]:
        for attr in BILLING_FIELDS:
            values[attr] = ""

    snapshot = SigningFormData(**values)
    if snapshot != state:
        logger.debug(
            "Form state out of sync with submitted values: %s",
            sorted(attr for attr in values if getattr(state, attr) != values[attr]),
        )
    return snapshot


def build_extra_fields(
    data: SigningFormData,
    *,
    product_id: Optional[str] = None,
    supplier_id: Optional[str] = None,
) -> dict[str, Any]:
    """Optional fields sent alongside a new signing request.

    Empty text fields are left out. Billing fields are left out entirely when the
    delivery address is also the billing address. Consent flags are always sent.
    """
    extra: dict[str, Any] = {
        "productId": product_id,
        "supplierId": supplier_id,
        "phone": data.phone,
        "firstName": data.first_name,
        "lastName": data.last_name,
        "address": data.address,
        "city": data.city,
        "zip": data.zip,
        "takeoverDate": data.takeover_date,
        "meterNumber": data.meter_number,
        "serialNumber": data.serial_number,
        "companyName": data.company_name,
        "organizationNumber": data.organization_number,
        "sportsTeam": data.sports_team,
    }
    if not data.use_same_address_for_billing:
        extra.update(
            billingAddress=data.billing_address,
            billingCity=data.billing_city,
            billingZip=data.billing_zip,
        )
    extra = {key: value for key, value in extra.items() if value}
    extra["marketingConsentEmail"] = data.marketing_consent_email
    extra["marketingConsentSms"] = data.marketing_consent_sms
    return extra
