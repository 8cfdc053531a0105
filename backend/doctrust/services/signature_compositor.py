import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from doctrust.core.config import settings
from doctrust.core.errors import DocTrustError, ErrorKind
from doctrust.core.store_protocols import BlobStore, MetadataStore
from doctrust.models.audit_log import AuditAction, RequestContext
from doctrust.models.identity import Identity
from doctrust.models.signature import Signature, SignatureField, SignedCopy, SignedCopyResult
from doctrust.services.audit_logger import AuditLogger
from doctrust.services.permission import require_access
from doctrust.utils.hashing import generate_id
from doctrust.utils.pdf_overlay import (
    ImagePlacement,
    compose_pdf,
    decode_signature_image,
    open_pdf,
    page_size,
    to_render_y,
)
from doctrust.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

DISCLAIMER_TEMPLATE = (
    "Visual signature rendering generated {timestamp} UTC. "
    "This is not a cryptographic signature."
)


class SignatureCompositor:
    """
    Overlays collected signature images onto a copy of the original document.

    Composition is lenient: a field without a matching signature, with an
    unreadable image or pointing at a page the document does not have is
    skipped, never fatal. Every call writes a new object under a fresh key.
    """

    def __init__(self, store: MetadataStore, documents: BlobStore, signatures: BlobStore,
                 signed_copies: BlobStore, audit: AuditLogger,
                 clock: Callable[[], datetime] = utcnow,
                 image_fetch_timeout: Optional[float] = None):
        self.store = store
        self.documents = documents
        self.signatures = signatures
        self.signed_copies = signed_copies
        self.audit = audit
        self.clock = clock
        self.image_fetch_timeout = image_fetch_timeout or settings.SIGNATURE_IMAGE_URL_TTL_SECONDS

    async def _load_inputs(self, doc_id: str, storage_key: str):
        try:
            original = await self.documents.download(storage_key)
            field_rows = await self.store.list_signature_fields(doc_id)
            signature_rows = await self.store.list_signatures(doc_id)
        except DocTrustError as e:
            logger.error(f"Failed to load composition inputs for document {doc_id}: {e.message}")
            raise DocTrustError(ErrorKind.INTERNAL, "Failed to load document for composition") from e

        try:
            reader = open_pdf(original)
        except ValueError as e:
            logger.error(f"Document {doc_id} cannot be opened for rendering: {str(e)}")
            raise DocTrustError(ErrorKind.INTERNAL, "Failed to load document for composition") from e

        fields = sorted((SignatureField(**row) for row in field_rows), key=lambda f: f.order_index)
        signatures = [Signature(**row) for row in signature_rows]
        return reader, fields, signatures

    async def _fetch_image(self, storage_key: str, cache: Dict[str, Optional[bytes]]) -> Optional[bytes]:
        """
        Fetch signature bytes once per storage key per composition. The fetch is
        bounded by the retrieval window; a failure is remembered as None so the
        remaining fields sharing that image skip without another attempt.
        """
        if storage_key in cache:
            return cache[storage_key]

        try:
            data = await asyncio.wait_for(self.signatures.download(storage_key), timeout=self.image_fetch_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Timed out fetching signature image {storage_key}")
            data = None
        except DocTrustError as e:
            logger.warning(f"Could not fetch signature image {storage_key}: {e.message}")
            data = None

        cache[storage_key] = data
        return data

    async def compose(self, doc_id: str, identity: Identity, context: RequestContext) -> SignedCopyResult:
        document = await require_access(self.store, doc_id, identity)
        reader, fields, signatures = await self._load_inputs(doc_id, document.storage_key)

        signatures_by_email = {s.signer_email.lower(): s for s in signatures}
        image_cache: Dict[str, Optional[bytes]] = {}
        placements: List[ImagePlacement] = []
        skipped = 0

        for field in fields:
            signature = signatures_by_email.get(field.recipient_email.lower())
            if signature is None:
                logger.info(f"No signature yet for field {field.id} ({field.recipient_email}), skipping")
                skipped += 1
                continue

            page_index = field.page - 1
            if page_index >= len(reader.pages):
                logger.warning(f"Field {field.id} targets page {field.page} but document has {len(reader.pages)}")
                skipped += 1
                continue

            data = await self._fetch_image(signature.storage_key, image_cache)
            image = decode_signature_image(data) if data else None
            if image is None:
                logger.warning(f"Signature image for field {field.id} could not be embedded, skipping")
                skipped += 1
                continue

            _, page_height = page_size(reader, page_index)
            placements.append(ImagePlacement(
                page_index=page_index,
                image=image,
                x=field.x,
                y=to_render_y(page_height, field.y, field.height),
                width=field.width,
                height=field.height,
            ))

        disclaimer = DISCLAIMER_TEMPLATE.format(timestamp=self.clock().strftime("%Y-%m-%d %H:%M:%S"))
        rendered = compose_pdf(reader, placements, disclaimer, settings.SIGNATURE_OPACITY)

        key = f"{doc_id}/{generate_id()}.pdf"
        try:
            await self.signed_copies.upload(key, rendered, "application/pdf")
        except DocTrustError as e:
            logger.error(f"Signed copy upload failed for document {doc_id}: {e.message}")
            raise DocTrustError(ErrorKind.STORAGE, "Failed to store signed copy") from e

        signed_copy = SignedCopy(
            doc_id=doc_id,
            storage_key=key,
            created_by=identity.user_id,
            fields_applied=len(placements),
            fields_skipped=skipped,
            created_at=self.clock(),
        )
        try:
            await self.store.insert_signed_copy(signed_copy.model_dump())
        except DocTrustError as e:
            logger.error(f"Signed copy insert failed for document {doc_id} ({e.kind.value}), removing {key}")
            try:
                await self.signed_copies.remove([key])
            except DocTrustError as remove_error:
                logger.error(f"Could not remove orphaned signed copy {key}: {remove_error.message}")
            raise
        await self.audit.record(AuditAction.SIGNED_COPY_RENDERED, doc_id, context.ip_hash, context.user_agent)

        url = await self.signed_copies.create_retrieval_url(key, settings.RETRIEVAL_URL_TTL_SECONDS)
        logger.info(f"Rendered signed copy {key}: {len(placements)} applied, {skipped} skipped")
        return SignedCopyResult(signed_copy=signed_copy, url=url)
