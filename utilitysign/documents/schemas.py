import enum
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class DocumentStatus(str, enum.Enum):
    draft = "draft"
    pending = "pending"
    signed = "signed"
    rejected = "rejected"


class Document(BaseModel):
    id: str
    title: str = ""
    content: str = ""
    status: DocumentStatus = DocumentStatus.draft
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    signed_at: Optional[datetime] = None
    signer_email: Optional[str] = None
    signer_name: Optional[str] = None
    pdf_url: Optional[str] = None
    metadata: dict[str, Any] = {}


class UploadedFile(BaseModel):
    filename: str = Field(min_length=1)
    size_bytes: int = Field(ge=0)
    content_type: Optional[str] = None
