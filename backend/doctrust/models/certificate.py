from datetime import datetime
from pydantic import BaseModel, Field

from doctrust.utils.hashing import generate_id
from doctrust.utils.timeutils import utcnow

class Certificate(BaseModel):
    """
    Generated attestation for a document.

    cert_hash is the digest of the rendered certificate bytes, not the
    document's own content hash.
    """
    id: str = Field(default_factory=generate_id)
    doc_id: str
    cert_hash: str
    storage_key: str
    signer_key_id: str
    created_at: datetime = Field(default_factory=utcnow)
