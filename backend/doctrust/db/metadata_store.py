import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Sequence

from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from doctrust.core.errors import DocTrustError, ErrorKind

logger = logging.getLogger(__name__)

# Never hand Mongo's internal _id back to callers
NO_ID = {"_id": False}

# Collections whose rows belong to a single document and go with it on delete
CASCADE_COLLECTIONS = [
    "access_links",
    "certificates",
    "signature_fields",
    "signatures",
    "signed_copies",
    "document_shares",
    "document_certifications",
    "audit_logs",
]


@contextmanager
def _storage_errors(operation: str):
    try:
        yield
    except (DocTrustError, DuplicateKeyError):
        # Uniqueness violations are mapped to CONFLICT by the caller
        raise
    except PyMongoError as e:
        logger.error(f"Metadata store failed to {operation}: {str(e)}")
        raise DocTrustError(ErrorKind.STORAGE, f"Failed to {operation}") from e


class MongoMetadataStore:
    """
    MetadataStore backed by MongoDB through Motor.

    Every write touches a single document; there are no multi-document
    transactions, so cascade deletes are a sequence of independent deletes.
    """

    def __init__(self, database):
        self.db = database

    async def ensure_indexes(self):
        """Create the indexes the store relies on for lookups and uniqueness"""
        with _storage_errors("create indexes"):
            await self.db["documents"].create_index("id", unique=True)
            await self.db["access_links"].create_index("token", unique=True)
            await self.db["access_links"].create_index("id", unique=True)
            await self.db["access_links"].create_index("doc_id")
            await self.db["certificates"].create_index([("doc_id", ASCENDING), ("created_at", ASCENDING)])
            await self.db["signature_fields"].create_index([("doc_id", ASCENDING), ("order_index", ASCENDING)])
            # Backs the one-signature-per-signer rule against concurrent submissions
            await self.db["signatures"].create_index(
                [("doc_id", ASCENDING), ("signer_email", ASCENDING)], unique=True
            )
            await self.db["signed_copies"].create_index("doc_id")
            await self.db["document_shares"].create_index(
                [("doc_id", ASCENDING), ("user_id", ASCENDING)], unique=True
            )
            await self.db["document_certifications"].create_index(
                [("doc_id", ASCENDING), ("user_id", ASCENDING)], unique=True
            )
            await self.db["audit_logs"].create_index([("doc_id", ASCENDING), ("created_at", ASCENDING)])
        logger.info("MongoDB indexes ensured")

    async def _find_all(self, collection: str, query: Dict[str, Any], sort_field: str) -> List[Dict[str, Any]]:
        cursor = self.db[collection].find(query, NO_ID).sort(sort_field, ASCENDING)
        return await cursor.to_list(length=None)

    # Documents and grants

    async def get_document(self, doc_id: str) -> Optional[Dict[str, Any]]:
        with _storage_errors("load document"):
            return await self.db["documents"].find_one({"id": doc_id}, NO_ID)

    async def insert_document(self, row: Dict[str, Any]) -> None:
        with _storage_errors("save document"):
            await self.db["documents"].insert_one(dict(row))

    async def delete_document(self, doc_id: str) -> None:
        with _storage_errors("delete document"):
            for collection in CASCADE_COLLECTIONS:
                result = await self.db[collection].delete_many({"doc_id": doc_id})
                logger.info(f"Cascade deleted {result.deleted_count} rows from {collection} for document {doc_id}")
            await self.db["documents"].delete_one({"id": doc_id})

    async def insert_share(self, row: Dict[str, Any]) -> None:
        with _storage_errors("save sharing grant"):
            await self.db["document_shares"].update_one(
                {"doc_id": row["doc_id"], "user_id": row["user_id"]},
                {"$setOnInsert": dict(row)},
                upsert=True,
            )

    async def has_share(self, doc_id: str, user_id: str) -> bool:
        with _storage_errors("load sharing grant"):
            grant = await self.db["document_shares"].find_one({"doc_id": doc_id, "user_id": user_id}, NO_ID)
            return grant is not None

    async def insert_certification(self, row: Dict[str, Any]) -> None:
        try:
            with _storage_errors("save certification"):
                await self.db["document_certifications"].insert_one(dict(row))
        except DuplicateKeyError as e:
            raise DocTrustError(ErrorKind.CONFLICT, "Document already certified by this user") from e

    async def find_certification(self, doc_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        with _storage_errors("load certification"):
            return await self.db["document_certifications"].find_one({"doc_id": doc_id, "user_id": user_id}, NO_ID)

    async def list_certifications(self, doc_id: str) -> List[Dict[str, Any]]:
        with _storage_errors("load certifications"):
            return await self._find_all("document_certifications", {"doc_id": doc_id}, "created_at")

    # Access links

    async def insert_access_link(self, row: Dict[str, Any]) -> None:
        with _storage_errors("save access link"):
            await self.db["access_links"].insert_one(dict(row))

    async def get_access_link_by_token(self, token: str) -> Optional[Dict[str, Any]]:
        with _storage_errors("load access link"):
            return await self.db["access_links"].find_one({"token": token}, NO_ID)

    async def list_access_links(self, doc_id: str) -> List[Dict[str, Any]]:
        with _storage_errors("load access links"):
            return await self._find_all("access_links", {"doc_id": doc_id}, "created_at")

    async def update_access_link(self, link_id: str, fields: Dict[str, Any]) -> None:
        with _storage_errors("update access link"):
            await self.db["access_links"].update_one({"id": link_id}, {"$set": dict(fields)})

    async def increment_link_usage_within_limit(self, link_id: str) -> Optional[Dict[str, Any]]:
        with _storage_errors("update access link usage"):
            return await self.db["access_links"].find_one_and_update(
                {
                    "id": link_id,
                    "revoked_at": None,
                    "$or": [
                        {"max_uses": None},
                        {"$expr": {"$lt": ["$used_count", "$max_uses"]}},
                    ],
                },
                {"$inc": {"used_count": 1}},
                projection=NO_ID,
                return_document=ReturnDocument.AFTER,
            )

    # Certificates

    async def insert_certificate(self, row: Dict[str, Any]) -> None:
        with _storage_errors("save certificate"):
            await self.db["certificates"].insert_one(dict(row))

    async def list_certificates(self, doc_id: str) -> List[Dict[str, Any]]:
        with _storage_errors("load certificates"):
            return await self._find_all("certificates", {"doc_id": doc_id}, "created_at")

    # Signature fields and signatures

    async def insert_signature_fields(self, rows: Sequence[Dict[str, Any]]) -> None:
        if not rows:
            return
        with _storage_errors("save signature fields"):
            await self.db["signature_fields"].insert_many([dict(r) for r in rows])

    async def list_signature_fields(self, doc_id: str) -> List[Dict[str, Any]]:
        with _storage_errors("load signature fields"):
            return await self._find_all("signature_fields", {"doc_id": doc_id}, "order_index")

    async def insert_signature(self, row: Dict[str, Any]) -> None:
        try:
            with _storage_errors("save signature"):
                await self.db["signatures"].insert_one(dict(row))
        except DuplicateKeyError as e:
            raise DocTrustError(ErrorKind.CONFLICT, "Signature already submitted for this signer") from e

    async def find_signature(self, doc_id: str, signer_email: str) -> Optional[Dict[str, Any]]:
        with _storage_errors("load signature"):
            return await self.db["signatures"].find_one(
                {"doc_id": doc_id, "signer_email": signer_email.strip().lower()}, NO_ID
            )

    async def list_signatures(self, doc_id: str) -> List[Dict[str, Any]]:
        with _storage_errors("load signatures"):
            return await self._find_all("signatures", {"doc_id": doc_id}, "signed_at")

    async def count_signatures(self, doc_id: str) -> int:
        with _storage_errors("count signatures"):
            return await self.db["signatures"].count_documents({"doc_id": doc_id})

    # Signed copies

    async def insert_signed_copy(self, row: Dict[str, Any]) -> None:
        with _storage_errors("save signed copy"):
            await self.db["signed_copies"].insert_one(dict(row))

    async def list_signed_copies(self, doc_id: str) -> List[Dict[str, Any]]:
        with _storage_errors("load signed copies"):
            return await self._find_all("signed_copies", {"doc_id": doc_id}, "created_at")

    # Audit log

    async def insert_audit_log(self, row: Dict[str, Any]) -> None:
        with _storage_errors("write audit log"):
            await self.db["audit_logs"].insert_one(dict(row))

    async def list_audit_logs(self, doc_id: str) -> List[Dict[str, Any]]:
        with _storage_errors("load audit log"):
            return await self._find_all("audit_logs", {"doc_id": doc_id}, "created_at")
