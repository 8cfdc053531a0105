"""
Contracts for the two external stores.

Services only talk to these protocols; MongoMetadataStore and AzureStorageService
implement them in production and the test suite ships in-memory versions.

Rows cross the boundary as plain dicts shaped like the Pydantic models in
doctrust.models. Implementations raise DocTrustError(STORAGE) for store failures.
"""
from typing import Dict, List, Optional, Protocol, Sequence, Any


class MetadataStore(Protocol):
    # Documents and grants
    async def get_document(self, doc_id: str) -> Optional[Dict[str, Any]]: ...
    async def insert_document(self, row: Dict[str, Any]) -> None: ...
    async def delete_document(self, doc_id: str) -> None: ...
    async def insert_share(self, row: Dict[str, Any]) -> None: ...
    async def has_share(self, doc_id: str, user_id: str) -> bool: ...
    async def insert_certification(self, row: Dict[str, Any]) -> None: ...
    async def find_certification(self, doc_id: str, user_id: str) -> Optional[Dict[str, Any]]: ...
    async def list_certifications(self, doc_id: str) -> List[Dict[str, Any]]: ...

    # Access links
    async def insert_access_link(self, row: Dict[str, Any]) -> None: ...
    async def get_access_link_by_token(self, token: str) -> Optional[Dict[str, Any]]: ...
    async def list_access_links(self, doc_id: str) -> List[Dict[str, Any]]: ...
    async def update_access_link(self, link_id: str, fields: Dict[str, Any]) -> None: ...
    async def increment_link_usage_within_limit(self, link_id: str) -> Optional[Dict[str, Any]]:
        """
        Atomically add one use if the link is not revoked and still under max_uses.
        Returns the updated row, or None when the condition did not hold.
        """
        ...

    # Certificates
    async def insert_certificate(self, row: Dict[str, Any]) -> None: ...
    async def list_certificates(self, doc_id: str) -> List[Dict[str, Any]]: ...

    # Signature fields and signatures
    async def insert_signature_fields(self, rows: Sequence[Dict[str, Any]]) -> None: ...
    async def list_signature_fields(self, doc_id: str) -> List[Dict[str, Any]]: ...
    async def insert_signature(self, row: Dict[str, Any]) -> None:
        """Raises DocTrustError(CONFLICT) when (doc_id, signer_email) already exists"""
        ...
    async def find_signature(self, doc_id: str, signer_email: str) -> Optional[Dict[str, Any]]: ...
    async def list_signatures(self, doc_id: str) -> List[Dict[str, Any]]: ...
    async def count_signatures(self, doc_id: str) -> int: ...

    # Signed copies
    async def insert_signed_copy(self, row: Dict[str, Any]) -> None: ...
    async def list_signed_copies(self, doc_id: str) -> List[Dict[str, Any]]: ...

    # Audit log
    async def insert_audit_log(self, row: Dict[str, Any]) -> None: ...
    async def list_audit_logs(self, doc_id: str) -> List[Dict[str, Any]]: ...


class BlobStore(Protocol):
    async def upload(self, key: str, data: bytes, content_type: str) -> None: ...
    async def download(self, key: str) -> bytes: ...
    async def create_retrieval_url(self, key: str, ttl_seconds: int) -> str: ...
    async def remove(self, keys: Sequence[str]) -> None: ...
