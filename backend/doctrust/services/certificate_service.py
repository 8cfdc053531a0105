import io
import logging
import unicodedata
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Tuple

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from doctrust.core.config import settings
from doctrust.core.errors import DocTrustError, ErrorKind
from doctrust.core.store_protocols import BlobStore, MetadataStore
from doctrust.models.certificate import Certificate
from doctrust.services.permission import load_document
from doctrust.utils.hashing import generate_id, sha256_hex
from doctrust.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

# Layout
PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 50
LINE_PITCH = 18
REGULAR_FONT = "Helvetica"
BOLD_FONT = "Helvetica-Bold"
BODY_SIZE = 10
TITLE_SIZE = 18

PLACEHOLDER = "?"


def normalize_filename(filename: str) -> str:
    """
    Make a filename safe for the standard PDF fonts: decompose accented
    characters, drop the combining marks and replace anything that is still not
    printable ASCII with a placeholder.
    """
    decomposed = unicodedata.normalize("NFKD", filename)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return "".join(ch if 32 <= ord(ch) < 127 else PLACEHOLDER for ch in stripped)


@dataclass
class CertificateContent:
    certificate_id: str
    document_id: str
    filename: str
    content_hash: str
    size: int
    mime_type: str
    generated_at: datetime
    signer_key_id: str


def render_certificate(content: CertificateContent) -> bytes:
    """
    Lay the certificate out on a single A4 page, one line per field at a
    constant pitch. The title, hash line and certificate id line use the bold
    weight; everything else is regular.
    """
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=A4)
    c.setTitle(f"Certificate {content.certificate_id}")
    c.setAuthor(settings.APP_NAME)

    y = PAGE_HEIGHT - MARGIN - TITLE_SIZE
    c.setFont(BOLD_FONT, TITLE_SIZE)
    c.drawString(MARGIN, y, "Document Integrity Certificate")
    y -= LINE_PITCH * 2

    lines = [
        (BOLD_FONT, f"Certificate ID: {content.certificate_id}"),
        (REGULAR_FONT, f"Document ID: {content.document_id}"),
        (REGULAR_FONT, f"File name: {content.filename}"),
        (BOLD_FONT, f"SHA-256: {content.content_hash}"),
        (REGULAR_FONT, f"Size: {content.size} bytes"),
        (REGULAR_FONT, f"MIME type: {content.mime_type}"),
        (REGULAR_FONT, f"Generated at: {content.generated_at.isoformat()}"),
        (REGULAR_FONT, f"Signer key: {content.signer_key_id}"),
    ]
    for font, text in lines:
        c.setFont(font, BODY_SIZE)
        c.drawString(MARGIN, y, text)
        y -= LINE_PITCH

    y -= LINE_PITCH
    c.setFont(REGULAR_FONT, 8)
    c.setFillColor(colors.grey)
    c.drawString(MARGIN, y, "This certificate records the fingerprint of the document as stored at upload time.")
    y -= LINE_PITCH
    c.drawString(MARGIN, y, "Recompute the SHA-256 of your copy and compare it with the value above.")

    c.showPage()
    c.save()
    return buffer.getvalue()


class CertificateGenerator:
    """
    Builds, hashes and stores certificates. Strict: any storage or metadata
    failure aborts the whole operation, and an uploaded certificate whose
    metadata could not be written is removed again.
    """

    def __init__(self, store: MetadataStore, blob_store: BlobStore,
                 signer_key_id: Optional[str] = None, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.blob_store = blob_store
        self.signer_key_id = signer_key_id or settings.CERTIFICATE_SIGNER_KEY_ID
        self.clock = clock

    @staticmethod
    def storage_key(doc_id: str, certificate_id: str) -> str:
        return f"{doc_id}/{certificate_id}.pdf"

    async def generate(self, doc_id: str) -> Tuple[Certificate, str]:
        document = await load_document(self.store, doc_id)

        content = CertificateContent(
            certificate_id=generate_id(),
            document_id=document.id,
            filename=normalize_filename(document.filename),
            content_hash=document.content_hash,
            size=document.size,
            mime_type=document.mime_type,
            generated_at=self.clock(),
            signer_key_id=self.signer_key_id,
        )

        pdf_bytes = render_certificate(content)
        cert_hash = sha256_hex(pdf_bytes)
        key = self.storage_key(doc_id, content.certificate_id)

        try:
            await self.blob_store.upload(key, pdf_bytes, "application/pdf")
        except DocTrustError as e:
            logger.error(f"Certificate upload failed for document {doc_id}: {e.message}")
            raise DocTrustError(ErrorKind.STORAGE, "Failed to store certificate") from e

        certificate = Certificate(
            id=content.certificate_id,
            doc_id=doc_id,
            cert_hash=cert_hash,
            storage_key=key,
            signer_key_id=self.signer_key_id,
            created_at=content.generated_at,
        )

        try:
            await self.store.insert_certificate(certificate.model_dump())
        except DocTrustError as e:
            logger.error(f"Certificate metadata write failed for document {doc_id}, removing {key}")
            await self._discard_blob(key)
            raise DocTrustError(ErrorKind.STORAGE, "Failed to record certificate") from e

        url = await self.blob_store.create_retrieval_url(key, settings.RETRIEVAL_URL_TTL_SECONDS)
        logger.info(f"Generated certificate {certificate.id} for document {doc_id} ({cert_hash})")
        return certificate, url

    async def _discard_blob(self, key: str):
        try:
            await self.blob_store.remove([key])
        except DocTrustError as e:
            logger.error(f"Could not remove orphaned certificate {key}: {e.message}")
