import enum
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field, model_validator

# ── Signing request ─────────────────────────────────────────────────────────────


class SigningRequestStatus(str, enum.Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    expired = "expired"
    failed = "failed"
    cancelled = "cancelled"


TERMINAL_STATUSES = frozenset(
    {
        SigningRequestStatus.completed,
        SigningRequestStatus.expired,
        SigningRequestStatus.failed,
        SigningRequestStatus.cancelled,
    }
)

# Forward-only, except pending -> expired (timeout) and in_progress -> cancelled (abort).
ALLOWED_TRANSITIONS: dict[SigningRequestStatus, frozenset[SigningRequestStatus]] = {
    SigningRequestStatus.pending: frozenset(
        {
            SigningRequestStatus.in_progress,
            SigningRequestStatus.completed,
            SigningRequestStatus.failed,
            SigningRequestStatus.expired,
        }
    ),
    SigningRequestStatus.in_progress: frozenset(
        {
            SigningRequestStatus.completed,
            SigningRequestStatus.failed,
            SigningRequestStatus.cancelled,
        }
    ),
}


def can_transition(current: SigningRequestStatus, new: SigningRequestStatus) -> bool:
    return new == current or new in ALLOWED_TRANSITIONS.get(current, frozenset())


class SigningRequest(BaseModel):
    id: str
    document_id: str = Field(default="", validation_alias=AliasChoices("document_id", "documentId"))
    signer_email: str = Field(validation_alias=AliasChoices("signer_email", "signerEmail"))
    signer_name: str = Field(validation_alias=AliasChoices("signer_name", "signerName"))
    status: SigningRequestStatus = SigningRequestStatus.pending
    created_at: datetime = Field(validation_alias=AliasChoices("created_at", "createdAt"))
    expires_at: datetime = Field(validation_alias=AliasChoices("expires_at", "expiresAt"))
    completed_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("completed_at", "completedAt")
    )
    signing_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("signing_url", "signingUrl", "SigningUrl")
    )
    auth_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("bankid_auth_url", "authUrl", "auth_url")
    )
    bankid_session_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("bankid_session_id", "bankidSessionId")
    )
    correlation_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("correlation_id", "correlationId")
    )
    retry_count: int = Field(default=0, validation_alias=AliasChoices("retry_count", "retryCount"))

    model_config = {"populate_by_name": True}

    @model_validator(mode="before")
    @classmethod
    def coerce_identifiers(cls, values: Any) -> Any:
        if isinstance(values, dict):
            for key in ("id", "document_id", "documentId"):
                if values.get(key) is not None and not isinstance(values[key], str):
                    values = {**values, key: str(values[key])}
            if values.get("document_id") is None and values.get("documentId") is None:
                values = {k: v for k, v in values.items() if k not in ("document_id", "documentId")}
        return values

    @model_validator(mode="after")
    def check_expiry(self) -> "SigningRequest":
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be after created_at")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def signing_target(self) -> Optional[str]:
        """Provider URL to send the signer to, if the provider is already engaged."""
        return self.signing_url or self.auth_url or None

    @property
    def active_session_id(self) -> Optional[str]:
        if self.is_terminal:
            return None
        return self.bankid_session_id

    def with_session(self, session_id: str, auth_url: Optional[str] = None) -> "SigningRequest":
        update: dict[str, Any] = {"bankid_session_id": session_id}
        if auth_url:
            update["auth_url"] = auth_url
        return self.model_copy(update=update)

    def with_status(self, status: SigningRequestStatus, completed_at: Optional[datetime] = None) -> "SigningRequest":
        if not can_transition(self.status, status):
            raise ValueError(f"Cannot move signing request from {self.status.value} to {status.value}")
        update: dict[str, Any] = {"status": status}
        if status == SigningRequestStatus.completed:
            update["completed_at"] = completed_at or self.completed_at or datetime.now(timezone.utc)
        if status in TERMINAL_STATUSES:
            update["bankid_session_id"] = None
        return self.model_copy(update=update)


# ── BankID ──────────────────────────────────────────────────────────────────────


class BankIDSessionStatus(str, enum.Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"
    expired = "expired"


class BankIDSession(BaseModel):
    auth_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("auth_url", "authUrl"))
    session_id: str = Field(validation_alias=AliasChoices("session_id", "sessionId"))
    correlation_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("correlation_id", "correlationId")
    )

    model_config = {"populate_by_name": True}


class BankIDUserInfo(BaseModel):
    name: Optional[str] = None
    personal_number: Optional[str] = None
    bank: Optional[str] = None


class BankIDStatusResult(BaseModel):
    """One status read. ``success=False`` means the read itself failed, not the session."""

    success: bool = True
    status: Optional[str] = None
    user_info: Optional[BankIDUserInfo] = None
    correlation_id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def failed_read(cls, error: str) -> "BankIDStatusResult":
        return cls(success=False, error=error or "BankID status check failed")

    @property
    def session_status(self) -> Optional[BankIDSessionStatus]:
        if not self.success or self.status is None:
            return None
        try:
            return BankIDSessionStatus(self.status)
        except ValueError:
            return None
