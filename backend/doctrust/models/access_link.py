from datetime import datetime
from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from doctrust.models.certificate import Certificate
from doctrust.models.document import Document, Certifier
from doctrust.utils.hashing import generate_id
from doctrust.utils.timeutils import utcnow

class LinkScope(str, Enum):
    VIEW = "view"
    DOWNLOAD = "download"

class AccessLink(BaseModel):
    """Model for a scoped, time- and use-limited document access token"""
    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(default_factory=generate_id)
    token: str
    doc_id: str
    scope: LinkScope = Field(default=LinkScope.VIEW, validate_default=True)
    expires_at: datetime
    max_uses: Optional[int] = None  # None means unlimited
    used_count: int = Field(default=0, ge=0)
    revoked_at: Optional[datetime] = None
    recipient_email: Optional[EmailStr] = None
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("recipient_email")
    @classmethod
    def normalize_email(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else v

    def is_exhausted(self) -> bool:
        return self.max_uses is not None and self.used_count >= self.max_uses

    def is_active(self, now: datetime) -> bool:
        return self.revoked_at is None and now < self.expires_at and not self.is_exhausted()

    def to_public(self) -> dict:
        """Link fields that are safe to hand back to a link holder"""
        return {
            "scope": self.scope,
            "expires_at": self.expires_at.isoformat(),
            "max_uses": self.max_uses,
            "used_count": self.used_count,
        }

class ResolvedLink(BaseModel):
    """Outcome of a successful link resolution"""
    link: AccessLink
    document: Document
    certificate: Optional[Certificate] = None
    certifiers: List[Certifier] = []
