"""Document upload, sharing, certification and cascade deletion.

Invariants:
    - Only non-empty PDFs within the size limit are accepted
    - content_hash is the SHA-256 of the uploaded bytes
    - Deleting a document removes its rows from every collection and its blobs
      from every container; blob removal failures do not fail the delete
"""

import hashlib
from datetime import timedelta

import pytest

from doctrust.core.errors import DocTrustError, ErrorKind


@pytest.fixture
def service(controller):
    return controller.document_service


async def test_upload_hashes_and_stores_pdf(service, owner, pdf_bytes, store, blobs):
    document = await service.upload(owner, "contract.pdf", "application/pdf", pdf_bytes)

    assert document.content_hash == hashlib.sha256(pdf_bytes).hexdigest()
    assert document.size == len(pdf_bytes)
    assert document.owner_id == owner.user_id
    assert document.storage_key.startswith(f"{owner.user_id}/{document.id}/")
    assert document.storage_key.endswith(".pdf")
    assert blobs["documents"].objects[document.storage_key] == pdf_bytes
    assert store.tables["documents"][0]["id"] == document.id


@pytest.mark.parametrize("filename,content_type,payload", [
    ("notes.txt", "text/plain", b"hello"),
    ("empty.pdf", "application/pdf", b""),
    ("huge.pdf", "application/pdf", b"%PDF" + b"0" * (10 * 1024 * 1024)),
    ("", "application/pdf", b"%PDF-1.4"),
])
async def test_upload_validation(service, owner, filename, content_type, payload):
    with pytest.raises(DocTrustError) as exc_info:
        await service.upload(owner, filename, content_type, payload)
    assert exc_info.value.kind == ErrorKind.VALIDATION


async def test_upload_metadata_failure_removes_blob(service, owner, pdf_bytes, store, blobs):
    store.failing.add("insert_document")

    with pytest.raises(DocTrustError) as exc_info:
        await service.upload(owner, "contract.pdf", "application/pdf", pdf_bytes)

    assert exc_info.value.kind == ErrorKind.STORAGE
    assert blobs["documents"].objects == {}


async def test_get_requires_owner_or_grantee(service, document, owner, signer, stranger):
    assert (await service.get(document.id, owner)).id == document.id

    with pytest.raises(DocTrustError) as exc_info:
        await service.get(document.id, signer)
    assert exc_info.value.kind == ErrorKind.FORBIDDEN

    await service.share(document.id, owner, signer.user_id)
    assert (await service.get(document.id, signer)).id == document.id

    with pytest.raises(DocTrustError):
        await service.get(document.id, stranger)


async def test_get_missing_document_is_not_found(service, owner):
    with pytest.raises(DocTrustError) as exc_info:
        await service.get("missing", owner)
    assert exc_info.value.kind == ErrorKind.NOT_FOUND


async def test_share_is_owner_only_and_idempotent(service, document, owner, signer, store):
    await service.share(document.id, owner, signer.user_id)
    await service.share(document.id, owner, signer.user_id)
    assert len(store.tables["document_shares"]) == 1

    with pytest.raises(DocTrustError) as exc_info:
        await service.share(document.id, signer, "someone-else")
    assert exc_info.value.kind == ErrorKind.FORBIDDEN


async def test_certify_records_once_per_user(service, document, owner, signer, clock):
    await service.share(document.id, owner, signer.user_id)

    first = await service.certify(document.id, owner)
    clock.advance(minutes=1)
    await service.certify(document.id, signer)

    assert first.email == "owner@example.com"
    assert first.name == owner.name

    with pytest.raises(DocTrustError) as exc_info:
        await service.certify(document.id, owner)
    assert exc_info.value.kind == ErrorKind.CONFLICT


async def test_delete_cascades_rows_and_blobs(controller, service, document, owner, context, store, blobs, png_bytes):
    await controller.links.issue(document.id, "view", timedelta(hours=1))
    await controller.certificate_generator.generate(document.id)
    await controller.signature_service.submit(document.id, owner, "Olivia Owner", png_bytes, "image/png", context)
    await controller.compositor.compose(document.id, owner, context)
    await service.certify(document.id, owner)

    removed = await service.delete(document.id, owner)

    assert removed == {"certificates": 1, "signatures": 1, "signed_copies": 1}
    for table, rows in store.tables.items():
        assert rows == [], table
    for container in blobs.values():
        assert container.objects == {}, container.container


async def test_delete_is_owner_only(service, document, owner, signer, store):
    await service.share(document.id, owner, signer.user_id)

    with pytest.raises(DocTrustError) as exc_info:
        await service.delete(document.id, signer)
    assert exc_info.value.kind == ErrorKind.FORBIDDEN
    assert len(store.tables["documents"]) == 1


async def test_delete_survives_blob_removal_failure(service, document, owner, store, blobs):
    blobs["documents"].fail_removes = True

    await service.delete(document.id, owner)

    assert store.tables["documents"] == []


async def test_list_signed_copies_with_fresh_urls(controller, service, document, owner, context):
    await controller.compositor.compose(document.id, owner, context)
    await controller.compositor.compose(document.id, owner, context)

    copies = await service.list_signed_copies(document.id, owner)

    assert len(copies) == 2
    assert len({c.url for c in copies}) == 2
