from typing import Optional, List, Dict, Any
from pydantic import BaseModel, EmailStr, Field

from doctrust.models.access_link import LinkScope

class CreateLinkRequest(BaseModel):
    scope: LinkScope = LinkScope.VIEW
    ttl_hours: Optional[int] = Field(default=None, gt=0)
    max_uses: Optional[int] = Field(default=None, ge=1)
    recipient_email: Optional[EmailStr] = None

class CreateInviteRequest(BaseModel):
    recipient_email: EmailStr
    scope: LinkScope = LinkScope.VIEW

class SignatureFieldRequest(BaseModel):
    recipient_email: EmailStr
    page: int = Field(..., ge=1)
    x: float = Field(..., ge=0)
    y: float = Field(..., ge=0)
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)
    order_index: Optional[int] = None

class AddFieldsRequest(BaseModel):
    fields: List[SignatureFieldRequest]

class ShareDocumentRequest(BaseModel):
    user_id: str

def field_rows(request: AddFieldsRequest) -> List[Dict[str, Any]]:
    """Request fields as plain dicts, leaving order_index unset when not given"""
    return [f.model_dump(exclude_none=True) for f in request.fields]
