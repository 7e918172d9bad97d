from pydantic import BaseModel, Field

# ── Form snapshot ───────────────────────────────────────────────────────────────


class SigningFormData(BaseModel):
    """Everything the signing form collects.

    Attributes are snake_case; the camelCase aliases are the form field names used by
    the presentation layer and in error maps.
    """

    signer_email: str = Field(default="", alias="signerEmail")
    first_name: str = Field(default="", alias="firstName")
    last_name: str = Field(default="", alias="lastName")
    phone: str = ""
    address: str = ""
    city: str = ""
    zip: str = ""
    billing_address: str = Field(default="", alias="billingAddress")
    billing_city: str = Field(default="", alias="billingCity")
    billing_zip: str = Field(default="", alias="billingZip")
    use_same_address_for_billing: bool = Field(default=True, alias="useSameAddressForBilling")
    takeover_date: str = Field(default="", alias="takeoverDate")
    meter_number: str = Field(default="", alias="meterNumber")
    serial_number: str = Field(default="", alias="serialNumber")
    company_name: str = Field(default="", alias="companyName")
    organization_number: str = Field(default="", alias="organizationNumber")
    sports_team: str = Field(default="", alias="sportsTeam")
    marketing_consent_email: bool = Field(default=False, alias="marketingConsentEmail")
    marketing_consent_sms: bool = Field(default=False, alias="marketingConsentSms")

    model_config = {"populate_by_name": True, "frozen": True}

    @classmethod
    def text_fields(cls) -> dict[str, str]:
        """Map form field name -> attribute name for every text input."""
        return {info.alias or name: name for name, info in cls.model_fields.items() if info.annotation is str}

    @classmethod
    def checkbox_fields(cls) -> dict[str, str]:
        return {info.alias or name: name for name, info in cls.model_fields.items() if info.annotation is bool}

    @classmethod
    def attribute_for(cls, field: str) -> str:
        fields = {**cls.text_fields(), **cls.checkbox_fields()}
        if field in fields:
            return fields[field]
        if field in cls.model_fields:
            return field
        raise KeyError(f"Unknown form field: {field}")

    @property
    def signer_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


# ── Validation result ───────────────────────────────────────────────────────────


class ValidationResult(BaseModel):
    errors: dict[str, str] = {}

    model_config = {"frozen": True}

    @property
    def is_valid(self) -> bool:
        return not self.errors
