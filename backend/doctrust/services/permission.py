from doctrust.core.errors import DocTrustError, ErrorKind
from doctrust.core.store_protocols import MetadataStore
from doctrust.models.document import Document
from doctrust.models.identity import Identity


async def load_document(store: MetadataStore, doc_id: str) -> Document:
    row = await store.get_document(doc_id)
    if row is None:
        raise DocTrustError(ErrorKind.NOT_FOUND, "Document not found")
    return Document(**row)


async def can_access(store: MetadataStore, document: Document, identity: Identity) -> bool:
    """Owner or holder of a sharing grant"""
    if document.owner_id == identity.user_id:
        return True
    return await store.has_share(document.id, identity.user_id)


async def require_owner(store: MetadataStore, doc_id: str, identity: Identity) -> Document:
    document = await load_document(store, doc_id)
    if document.owner_id != identity.user_id:
        raise DocTrustError(ErrorKind.FORBIDDEN, "Only the document owner can do this")
    return document


async def require_access(store: MetadataStore, doc_id: str, identity: Identity) -> Document:
    document = await load_document(store, doc_id)
    if not await can_access(store, document, identity):
        raise DocTrustError(ErrorKind.FORBIDDEN, "You do not have access to this document")
    return document
