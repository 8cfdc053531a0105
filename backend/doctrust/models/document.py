from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from doctrust.utils.hashing import generate_id
from doctrust.utils.timeutils import utcnow

class Document(BaseModel):
    """Stored document metadata; the bytes live in the documents container"""
    id: str = Field(default_factory=generate_id)
    filename: str
    mime_type: str
    size: int = Field(..., ge=0)
    content_hash: str
    storage_key: str
    owner_id: str
    created_at: datetime = Field(default_factory=utcnow)

class DocumentShare(BaseModel):
    """Sharing grant giving another user access to a document"""
    doc_id: str
    user_id: str
    created_at: datetime = Field(default_factory=utcnow)

class DocumentCertification(BaseModel):
    """A user vouching for a document; the ordered list forms its certifiers"""
    doc_id: str
    user_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

class Certifier(BaseModel):
    user_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    created_at: datetime
