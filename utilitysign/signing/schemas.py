import enum
from typing import Optional

from pydantic import BaseModel

from utilitysign.client.schemas import SigningRequest


class SubmissionStatus(str, enum.Enum):
    invalid = "invalid"
    created = "created"
    launched = "launched"
    redirected = "redirected"
    popup_declined = "popup_declined"
    failed = "failed"
    busy = "busy"
    refused = "refused"


class SubmissionResult(BaseModel):
    status: SubmissionStatus
    signing_request: Optional[SigningRequest] = None
    errors: dict[str, str] = {}
    message: Optional[str] = None


class SigningResult(BaseModel):
    """What a finished signing stage reports upwards."""

    success: bool
    request_id: str
    document_id: str = ""
    auth_url: Optional[str] = None
    signer_personal_number: Optional[str] = None
    error: Optional[str] = None
