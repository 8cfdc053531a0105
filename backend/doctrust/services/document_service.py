import logging
from datetime import datetime
from typing import Callable, Dict, List

from doctrust.core.config import settings
from doctrust.core.errors import DocTrustError, ErrorKind
from doctrust.core.store_protocols import BlobStore, MetadataStore
from doctrust.models.document import Document, DocumentCertification, DocumentShare
from doctrust.models.identity import Identity
from doctrust.models.signature import SignedCopy, SignedCopyResult
from doctrust.services.permission import require_access, require_owner
from doctrust.utils.hashing import generate_id, generate_secure_filename, sha256_hex
from doctrust.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


class DocumentService:
    """
    Document lifecycle: upload, sharing, certification and deletion.

    Deleting a document removes every row that belongs to it and then the blobs
    those rows point at, across all four containers.
    """

    def __init__(self, store: MetadataStore, documents: BlobStore, certificates: BlobStore,
                 signatures: BlobStore, signed_copies: BlobStore,
                 clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.documents = documents
        self.certificates = certificates
        self.signatures = signatures
        self.signed_copies = signed_copies
        self.clock = clock

    def _validate_upload(self, filename: str, content_type: str, data: bytes) -> None:
        if not filename:
            raise DocTrustError(ErrorKind.VALIDATION, "A filename is required")
        if content_type not in settings.ALLOWED_DOCUMENT_TYPES:
            raise DocTrustError(ErrorKind.VALIDATION, f"Unsupported document type '{content_type}', only PDF is accepted")
        if not data:
            raise DocTrustError(ErrorKind.VALIDATION, "Uploaded document is empty")
        if len(data) > settings.MAX_DOCUMENT_SIZE_MB * 1024 * 1024:
            raise DocTrustError(ErrorKind.VALIDATION, f"Document exceeds {settings.MAX_DOCUMENT_SIZE_MB}MB limit")

    async def upload(self, identity: Identity, filename: str, content_type: str, data: bytes) -> Document:
        self._validate_upload(filename, content_type, data)

        doc_id = generate_id()
        secure_name = generate_secure_filename(filename, identity.user_id).rsplit(".", 1)[0]
        key = f"{identity.user_id}/{doc_id}/{secure_name}.pdf"
        await self.documents.upload(key, data, content_type)

        document = Document(
            id=doc_id,
            filename=filename,
            mime_type=content_type,
            size=len(data),
            content_hash=sha256_hex(data),
            storage_key=key,
            owner_id=identity.user_id,
            created_at=self.clock(),
        )
        try:
            await self.store.insert_document(document.model_dump())
        except DocTrustError:
            logger.error(f"Document metadata write failed, removing uploaded blob {key}")
            try:
                await self.documents.remove([key])
            except DocTrustError as cleanup_error:
                logger.error(f"Could not remove orphaned document {key}: {cleanup_error.message}")
            raise

        logger.info(f"Uploaded document {doc_id} ({document.size} bytes, {document.content_hash})")
        return document

    async def get(self, doc_id: str, identity: Identity) -> Document:
        return await require_access(self.store, doc_id, identity)

    async def share(self, doc_id: str, identity: Identity, user_id: str) -> DocumentShare:
        await require_owner(self.store, doc_id, identity)
        if not user_id:
            raise DocTrustError(ErrorKind.VALIDATION, "A user id to share with is required")

        grant = DocumentShare(doc_id=doc_id, user_id=user_id, created_at=self.clock())
        await self.store.insert_share(grant.model_dump())
        logger.info(f"Document {doc_id} shared with user {user_id}")
        return grant

    async def certify(self, doc_id: str, identity: Identity) -> DocumentCertification:
        await require_access(self.store, doc_id, identity)

        if await self.store.find_certification(doc_id, identity.user_id) is not None:
            raise DocTrustError(ErrorKind.CONFLICT, "Document already certified by this user")

        certification = DocumentCertification(
            doc_id=doc_id,
            user_id=identity.user_id,
            name=identity.name,
            email=identity.normalized_email,
            created_at=self.clock(),
        )
        await self.store.insert_certification(certification.model_dump())
        logger.info(f"User {identity.user_id} certified document {doc_id}")
        return certification

    async def delete(self, doc_id: str, identity: Identity) -> Dict[str, int]:
        """
        Cascade delete. Rows go first so nothing references a missing blob; a blob
        that cannot be removed afterwards is logged and left behind.
        """
        document = await require_owner(self.store, doc_id, identity)

        certificate_keys = [row["storage_key"] for row in await self.store.list_certificates(doc_id)]
        signature_keys = [row["storage_key"] for row in await self.store.list_signatures(doc_id)]
        signed_copy_keys = [row["storage_key"] for row in await self.store.list_signed_copies(doc_id)]

        await self.store.delete_document(doc_id)

        removals = [
            (self.documents, [document.storage_key]),
            (self.certificates, certificate_keys),
            (self.signatures, signature_keys),
            (self.signed_copies, signed_copy_keys),
        ]
        for blob_store, keys in removals:
            try:
                await blob_store.remove(keys)
            except DocTrustError as e:
                logger.error(f"Failed to remove blobs {keys} for deleted document {doc_id}: {e.message}")

        logger.info(f"Deleted document {doc_id}")
        return {
            "certificates": len(certificate_keys),
            "signatures": len(signature_keys),
            "signed_copies": len(signed_copy_keys),
        }

    async def list_signed_copies(self, doc_id: str, identity: Identity) -> List[SignedCopyResult]:
        await require_access(self.store, doc_id, identity)
        rows = await self.store.list_signed_copies(doc_id)

        results = []
        for row in rows:
            signed_copy = SignedCopy(**row)
            url = await self.signed_copies.create_retrieval_url(
                signed_copy.storage_key, settings.RETRIEVAL_URL_TTL_SECONDS
            )
            results.append(SignedCopyResult(signed_copy=signed_copy, url=url))
        return results
