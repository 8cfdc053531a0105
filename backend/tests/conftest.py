"""Root conftest: shared stores, clock, identities and file fixtures."""

import io
import os

# Keep tests away from real infrastructure and secrets
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("IP_HASH_SECRET", "test-ip-secret")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("MONGO_URI", "mongodb://localhost:27017")

import pytest
from PIL import Image
from reportlab.pdfgen import canvas

from doctrust.models.audit_log import RequestContext
from doctrust.models.identity import Identity
from doctrust.services.rate_limiter import FixedWindowRateLimiter
from doctrust.controllers.document_trust import DocumentTrustController
from doctrust.utils.hashing import hash_ip

from fakes import InMemoryBlobStore, InMemoryMetadataStore, ManualClock


def make_pdf(pages: int = 1, pagesize=(595, 842)) -> bytes:
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=pagesize)
    for number in range(1, pages + 1):
        c.drawString(72, pagesize[1] - 72, f"Test agreement, page {number}")
        c.showPage()
    c.save()
    return buffer.getvalue()


def make_image(image_format: str = "PNG", size=(120, 40)) -> bytes:
    mode = "RGBA" if image_format == "PNG" else "RGB"
    image = Image.new(mode, size, (20, 40, 160, 255) if mode == "RGBA" else (20, 40, 160))
    buffer = io.BytesIO()
    image.save(buffer, format=image_format)
    return buffer.getvalue()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def store():
    return InMemoryMetadataStore()


@pytest.fixture
def blobs():
    return {
        "documents": InMemoryBlobStore("documents"),
        "certificates": InMemoryBlobStore("certificates"),
        "signatures": InMemoryBlobStore("signatures"),
        "signed_copies": InMemoryBlobStore("signed-copies"),
    }


@pytest.fixture
def owner():
    return Identity(user_id="owner-1", email="Owner@Example.com", name="Olivia Owner")


@pytest.fixture
def signer():
    return Identity(user_id="signer-1", email="signer@example.com", name="Sam Signer")


@pytest.fixture
def stranger():
    return Identity(user_id="stranger-1", email="stranger@example.com", name="Stan Stranger")


@pytest.fixture
def context():
    return RequestContext(ip_hash=hash_ip("203.0.113.7"), user_agent="pytest")


@pytest.fixture
def pdf_bytes():
    return make_pdf(pages=2)


@pytest.fixture
def png_bytes():
    return make_image("PNG")


@pytest.fixture(scope="session")
def oversized_png():
    """A small file whose pixel count is over Pillow's decompression bomb limit."""
    buffer = io.BytesIO()
    Image.new("1", (20000, 20000)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def jpeg_bytes():
    return make_image("JPEG")


@pytest.fixture
def controller(store, blobs, clock):
    return DocumentTrustController(
        store,
        blobs["documents"],
        blobs["certificates"],
        blobs["signatures"],
        blobs["signed_copies"],
        FixedWindowRateLimiter(),
        clock=clock,
    )


@pytest.fixture
async def document(controller, owner, context, pdf_bytes):
    """A stored two-page PDF owned by `owner`."""
    return await controller.document_service.upload(owner, "Lease Agreement.pdf", "application/pdf", pdf_bytes)


@pytest.fixture
def pdf_factory():
    return make_pdf


@pytest.fixture
def image_factory():
    return make_image
