from datetime import datetime
from typing import Optional, Dict, Any
from pydantic import BaseModel, EmailStr, Field, field_validator

from doctrust.utils.hashing import generate_id
from doctrust.utils.timeutils import utcnow

class SignatureField(BaseModel):
    """
    Where a signature belongs: page (1-based) and a rectangle in a top-left-origin
    coordinate space measured in PDF points.
    """
    id: str = Field(default_factory=generate_id)
    doc_id: str
    recipient_email: EmailStr
    page: int = Field(..., ge=1)
    x: float = Field(..., ge=0)
    y: float = Field(..., ge=0)
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)
    order_index: int = 0

    @field_validator("recipient_email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()

class Signature(BaseModel):
    """Captured signature image submitted by a signer"""
    id: str = Field(default_factory=generate_id)
    doc_id: str
    signer_name: str
    signer_email: str
    storage_key: str
    created_by: str
    ip_hash: str
    signed_at: datetime = Field(default_factory=utcnow)
    metadata: Dict[str, Any] = {}

    @field_validator("signer_email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()

class SignedCopy(BaseModel):
    """One rendered composition of a document with its collected signatures"""
    id: str = Field(default_factory=generate_id)
    doc_id: str
    storage_key: str
    created_by: str
    fields_applied: int = 0
    fields_skipped: int = 0
    created_at: datetime = Field(default_factory=utcnow)

class SignedCopyResult(BaseModel):
    signed_copy: SignedCopy
    url: str
