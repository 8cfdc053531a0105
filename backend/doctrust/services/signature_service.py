import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import ValidationError

from doctrust.core.config import settings
from doctrust.core.errors import DocTrustError, ErrorKind
from doctrust.core.store_protocols import BlobStore, MetadataStore
from doctrust.models.audit_log import AuditAction, RequestContext
from doctrust.models.identity import Identity
from doctrust.models.signature import Signature, SignatureField
from doctrust.services.audit_logger import AuditLogger
from doctrust.services.permission import can_access, load_document, require_access, require_owner
from doctrust.utils.hashing import generate_id
from doctrust.utils.pdf_overlay import verify_signature_image
from doctrust.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
}


class SignatureService:
    """
    Signature fields and signature capture.

    One signature per signer and document: submissions are checked before the
    insert and the store's unique index rejects the concurrent duplicate.
    """

    def __init__(self, store: MetadataStore, signatures: BlobStore, audit: AuditLogger,
                 clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.signatures = signatures
        self.audit = audit
        self.clock = clock

    async def add_fields(self, doc_id: str, identity: Identity,
                         fields: Sequence[Dict[str, Any]]) -> List[SignatureField]:
        await require_owner(self.store, doc_id, identity)

        if not fields:
            raise DocTrustError(ErrorKind.VALIDATION, "At least one signature field is required")

        # The document is frozen once anyone has signed it
        if await self.store.count_signatures(doc_id) > 0:
            raise DocTrustError(ErrorKind.CONFLICT, "Document already has signatures, fields can no longer change")

        existing = await self.store.list_signature_fields(doc_id)
        next_index = max((row.get("order_index", 0) for row in existing), default=-1) + 1

        models: List[SignatureField] = []
        for offset, field in enumerate(fields):
            try:
                models.append(SignatureField(
                    doc_id=doc_id,
                    recipient_email=field.get("recipient_email"),
                    page=field.get("page"),
                    x=field.get("x"),
                    y=field.get("y"),
                    width=field.get("width"),
                    height=field.get("height"),
                    order_index=field.get("order_index", next_index + offset),
                ))
            except ValidationError as e:
                raise DocTrustError(ErrorKind.VALIDATION, f"Invalid signature field: {e.errors()[0]['msg']}") from e

        await self.store.insert_signature_fields([m.model_dump() for m in models])
        logger.info(f"Added {len(models)} signature fields to document {doc_id}")
        return models

    async def list_fields(self, doc_id: str, identity: Identity) -> List[SignatureField]:
        await require_access(self.store, doc_id, identity)
        rows = await self.store.list_signature_fields(doc_id)
        return [SignatureField(**row) for row in rows]

    async def list_signatures(self, doc_id: str, identity: Identity) -> List[Signature]:
        await require_access(self.store, doc_id, identity)
        rows = await self.store.list_signatures(doc_id)
        return [Signature(**row) for row in rows]

    async def _is_assigned_signer(self, doc_id: str, email: Optional[str]) -> bool:
        if not email:
            return False
        rows = await self.store.list_signature_fields(doc_id)
        return any(row["recipient_email"] == email for row in rows)

    def _validate_image(self, image: bytes, content_type: str) -> None:
        if content_type not in settings.ALLOWED_IMAGE_TYPES:
            raise DocTrustError(
                ErrorKind.VALIDATION,
                f"Unsupported signature image type '{content_type}', expected PNG or JPEG",
            )
        if not image:
            raise DocTrustError(ErrorKind.VALIDATION, "Signature image is empty")
        if len(image) > settings.MAX_SIGNATURE_IMAGE_MB * 1024 * 1024:
            raise DocTrustError(
                ErrorKind.VALIDATION,
                f"Signature image exceeds {settings.MAX_SIGNATURE_IMAGE_MB}MB limit",
            )
        if not verify_signature_image(image):
            raise DocTrustError(ErrorKind.VALIDATION, "Signature image could not be read as PNG or JPEG")

    async def submit(self, doc_id: str, identity: Identity, signer_name: str, image: bytes,
                     content_type: str, context: RequestContext,
                     metadata: Optional[Dict[str, Any]] = None) -> Signature:
        """
        Store a captured signature for the calling user.

        The caller must own the document, hold a sharing grant or be assigned to
        one of its signature fields. If the metadata insert fails the uploaded
        image is deleted again.
        """
        document = await load_document(self.store, doc_id)
        email = identity.normalized_email
        if not email:
            raise DocTrustError(ErrorKind.VALIDATION, "Signing requires an email address on the caller identity")

        if not (await can_access(self.store, document, identity) or await self._is_assigned_signer(doc_id, email)):
            raise DocTrustError(ErrorKind.FORBIDDEN, "You are not a signer of this document")

        if not signer_name or not signer_name.strip():
            raise DocTrustError(ErrorKind.VALIDATION, "Signer name is required")
        self._validate_image(image, content_type)

        if await self.store.find_signature(doc_id, email) is not None:
            raise DocTrustError(ErrorKind.CONFLICT, "Signature already submitted for this signer")

        signature_id = generate_id()
        key = f"{doc_id}/{signature_id}.{IMAGE_EXTENSIONS[content_type]}"
        await self.signatures.upload(key, image, content_type)

        signature = Signature(
            id=signature_id,
            doc_id=doc_id,
            signer_name=signer_name.strip(),
            signer_email=email,
            storage_key=key,
            created_by=identity.user_id,
            ip_hash=context.ip_hash,
            signed_at=self.clock(),
            metadata=metadata or {},
        )

        try:
            await self.store.insert_signature(signature.model_dump())
        except DocTrustError as e:
            logger.error(f"Signature insert failed for document {doc_id} ({e.kind.value}), removing {key}")
            await self._discard_image(key)
            if e.kind == ErrorKind.CONFLICT:
                raise
            raise DocTrustError(ErrorKind.STORAGE, "Failed to record signature") from e

        await self.audit.record(AuditAction.DOCUMENT_SIGNED, doc_id, context.ip_hash, context.user_agent)
        logger.info(f"Signature {signature.id} recorded for {email} on document {doc_id}")
        return signature

    async def _discard_image(self, key: str):
        try:
            await self.signatures.remove([key])
        except DocTrustError as e:
            logger.error(f"Could not remove orphaned signature image {key}: {e.message}")
