"""Signed copy composition.

Invariants:
    - Field rectangles are given from the top of the page; drawing uses
      y = page_height - y_top - height
    - Every composition is stored under a fresh key with its own URL
    - Missing signers, unreadable images, failed fetches and out-of-range pages
      skip the field instead of failing the composition
    - JPEG signatures are accepted when PNG decoding fails
    - Only the owner or a grantee may compose
"""

import io

import pytest
from PyPDF2 import PdfReader

from doctrust.core.errors import DocTrustError, ErrorKind
from doctrust.services import signature_compositor as compositor_module
from doctrust.utils.pdf_overlay import compose_pdf, decode_signature_image, to_render_y


@pytest.fixture
def compositor(controller):
    return controller.compositor


@pytest.fixture
def placements_spy(monkeypatch):
    """Records the placements handed to the PDF composer."""
    captured = []

    def spy(reader, placements, disclaimer, opacity):
        captured.extend(placements)
        return compose_pdf(reader, placements, disclaimer, opacity)

    monkeypatch.setattr(compositor_module, "compose_pdf", spy)
    return captured


async def _add_field(store, doc_id, email, page=1, y=100, height=50, order_index=0):
    await store.insert_signature_fields([{
        "id": f"field-{order_index}",
        "doc_id": doc_id,
        "recipient_email": email,
        "page": page,
        "x": 72,
        "y": y,
        "width": 120,
        "height": height,
        "order_index": order_index,
    }])


async def _sign(controller, document, identity, context, image, content_type="image/png"):
    return await controller.signature_service.submit(
        document.id, identity, identity.name, image, content_type, context
    )


def test_to_render_y_converts_top_origin():
    assert to_render_y(842, 100, 50) == 692


def test_decode_signature_image_falls_back_to_jpeg(png_bytes, jpeg_bytes):
    assert decode_signature_image(png_bytes) is not None
    assert decode_signature_image(jpeg_bytes) is not None
    assert decode_signature_image(b"definitely not an image") is None


async def test_compose_places_signature_in_render_coordinates(
    compositor, controller, document, owner, context, store, png_bytes, placements_spy
):
    await _add_field(store, document.id, "owner@example.com", y=100, height=50)
    await _sign(controller, document, owner, context, png_bytes)

    result = await compositor.compose(document.id, owner, context)

    assert len(placements_spy) == 1
    placement = placements_spy[0]
    assert placement.page_index == 0
    assert placement.y == 692
    assert (placement.x, placement.width, placement.height) == (72, 120, 50)
    assert result.signed_copy.fields_applied == 1
    assert result.signed_copy.fields_skipped == 0


async def test_compose_writes_a_valid_pdf_with_all_pages(
    compositor, controller, document, owner, context, store, png_bytes, blobs
):
    await _add_field(store, document.id, "owner@example.com", page=2)
    await _sign(controller, document, owner, context, png_bytes)

    result = await compositor.compose(document.id, owner, context)

    rendered = blobs["signed_copies"].objects[result.signed_copy.storage_key]
    reader = PdfReader(io.BytesIO(rendered))
    assert len(reader.pages) == 2
    assert "not a cryptographic signature" in reader.pages[0].extract_text()


async def test_two_compositions_have_distinct_keys_and_urls(compositor, document, owner, context, store):
    first = await compositor.compose(document.id, owner, context)
    second = await compositor.compose(document.id, owner, context)

    assert first.signed_copy.storage_key != second.signed_copy.storage_key
    assert first.url != second.url
    assert len(store.tables["signed_copies"]) == 2


async def test_field_without_signature_is_skipped(compositor, document, owner, context, store, placements_spy):
    await _add_field(store, document.id, "nobody@example.com")

    result = await compositor.compose(document.id, owner, context)

    assert placements_spy == []
    assert result.signed_copy.fields_skipped == 1


async def test_signer_email_matches_case_insensitively(
    compositor, controller, document, owner, context, store, png_bytes, placements_spy
):
    await _add_field(store, document.id, "OWNER@EXAMPLE.COM")
    await _sign(controller, document, owner, context, png_bytes)

    result = await compositor.compose(document.id, owner, context)

    assert result.signed_copy.fields_applied == 1


async def test_jpeg_signature_is_embedded(
    compositor, controller, document, owner, context, store, jpeg_bytes, placements_spy
):
    await _add_field(store, document.id, "owner@example.com")
    await _sign(controller, document, owner, context, jpeg_bytes, content_type="image/jpeg")

    result = await compositor.compose(document.id, owner, context)

    assert result.signed_copy.fields_applied == 1


async def test_corrupt_image_is_skipped(
    compositor, controller, document, owner, context, store, png_bytes, blobs, placements_spy
):
    await _add_field(store, document.id, "owner@example.com")
    signature = await _sign(controller, document, owner, context, png_bytes)
    blobs["signatures"].objects[signature.storage_key] = b"\x89PNG garbage"

    result = await compositor.compose(document.id, owner, context)

    assert placements_spy == []
    assert result.signed_copy.fields_skipped == 1


async def test_image_over_pixel_limit_is_skipped(
    compositor, controller, document, owner, context, store, png_bytes, blobs, oversized_png, placements_spy
):
    await _add_field(store, document.id, "owner@example.com")
    signature = await _sign(controller, document, owner, context, png_bytes)
    blobs["signatures"].objects[signature.storage_key] = oversized_png

    result = await compositor.compose(document.id, owner, context)

    assert placements_spy == []
    assert result.signed_copy.fields_skipped == 1
    assert result.signed_copy.fields_applied == 0


def test_decode_rejects_image_over_pixel_limit(oversized_png):
    assert decode_signature_image(oversized_png) is None


async def test_missing_image_blob_is_skipped(
    compositor, controller, document, owner, context, store, png_bytes, blobs
):
    await _add_field(store, document.id, "owner@example.com")
    signature = await _sign(controller, document, owner, context, png_bytes)
    del blobs["signatures"].objects[signature.storage_key]

    result = await compositor.compose(document.id, owner, context)

    assert result.signed_copy.fields_skipped == 1


async def test_slow_image_fetch_times_out_and_is_skipped(
    compositor, controller, document, owner, context, store, png_bytes, blobs
):
    await _add_field(store, document.id, "owner@example.com")
    await _sign(controller, document, owner, context, png_bytes)
    blobs["signatures"].download_delay = 0.2
    compositor.image_fetch_timeout = 0.01

    result = await compositor.compose(document.id, owner, context)

    assert result.signed_copy.fields_skipped == 1


async def test_image_is_fetched_once_per_composition(
    compositor, controller, document, owner, context, store, png_bytes, blobs, monkeypatch
):
    await _add_field(store, document.id, "owner@example.com", page=1, order_index=0)
    await _add_field(store, document.id, "owner@example.com", page=2, order_index=1)
    await _sign(controller, document, owner, context, png_bytes)

    calls = []
    original_download = blobs["signatures"].download

    async def counting_download(key):
        calls.append(key)
        return await original_download(key)

    monkeypatch.setattr(blobs["signatures"], "download", counting_download)

    result = await compositor.compose(document.id, owner, context)

    assert len(calls) == 1
    assert result.signed_copy.fields_applied == 2


async def test_field_on_missing_page_is_skipped(
    compositor, controller, document, owner, context, store, png_bytes
):
    await _add_field(store, document.id, "owner@example.com", page=5)
    await _sign(controller, document, owner, context, png_bytes)

    result = await compositor.compose(document.id, owner, context)

    assert result.signed_copy.fields_skipped == 1


async def test_stranger_cannot_compose(compositor, document, stranger, context):
    with pytest.raises(DocTrustError) as exc_info:
        await compositor.compose(document.id, stranger, context)
    assert exc_info.value.kind == ErrorKind.FORBIDDEN


async def test_grantee_can_compose(compositor, controller, document, owner, signer, context):
    await controller.document_service.share(document.id, owner, signer.user_id)

    result = await compositor.compose(document.id, signer, context)

    assert result.signed_copy.created_by == signer.user_id


async def test_unreadable_original_is_internal_error(compositor, document, owner, context, blobs):
    blobs["documents"].objects[document.storage_key] = b"not a pdf"

    with pytest.raises(DocTrustError) as exc_info:
        await compositor.compose(document.id, owner, context)
    assert exc_info.value.kind == ErrorKind.INTERNAL
    assert exc_info.value.message == "Failed to load document for composition"


async def test_upload_failure_is_storage_error(compositor, document, owner, context, blobs, store):
    blobs["signed_copies"].fail_uploads = True

    with pytest.raises(DocTrustError) as exc_info:
        await compositor.compose(document.id, owner, context)
    assert exc_info.value.kind == ErrorKind.STORAGE
    assert store.tables["signed_copies"] == []


async def test_composition_is_audited(compositor, document, owner, context, store):
    await compositor.compose(document.id, owner, context)

    actions = [row["action"] for row in store.tables["audit_logs"]]
    assert actions == ["signed_copy_rendered"]


async def test_insert_failure_removes_rendered_copy(compositor, document, owner, context, blobs, store):
    store.failing.add("insert_signed_copy")

    with pytest.raises(DocTrustError) as exc_info:
        await compositor.compose(document.id, owner, context)

    assert exc_info.value.kind == ErrorKind.STORAGE
    assert blobs["signed_copies"].objects == {}
    assert len(blobs["signed_copies"].removed) == 1
    assert store.tables["audit_logs"] == []
