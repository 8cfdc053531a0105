from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from doctrust.utils.hashing import generate_id
from doctrust.utils.timeutils import utcnow

class AuditAction(str, Enum):
    LINK_CREATED = "link_created"
    INVITE_LINK_CREATED = "invite_link_created"
    DOCUMENT_ACCESSED = "document_accessed"
    LINK_REVOKED = "link_revoked"
    CERTIFICATE_GENERATED = "certificate_generated"
    DOCUMENT_SIGNED = "document_signed"
    SIGNED_COPY_RENDERED = "signed_copy_rendered"
    DOCUMENT_UPLOADED = "document_uploaded"
    DOCUMENT_SHARED = "document_shared"
    DOCUMENT_CERTIFIED = "document_certified"

class AuditLogEntry(BaseModel):
    """Append-only record of a security-relevant action"""
    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(default_factory=generate_id)
    action: AuditAction
    doc_id: str
    link_id: Optional[str] = None
    ip_hash: str
    user_agent: str = "unknown"
    created_at: datetime = Field(default_factory=utcnow)

@dataclass(frozen=True)
class RequestContext:
    """Caller metadata captured at the HTTP boundary; the IP is already hashed"""
    ip_hash: str
    user_agent: str = "unknown"
