import logging
import re
from datetime import datetime
from typing import Callable, List, Optional

from doctrust.core.errors import DocTrustError, ErrorKind
from doctrust.core.store_protocols import MetadataStore
from doctrust.models.audit_log import AuditAction, AuditLogEntry
from doctrust.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

_DIGEST_PATTERN = re.compile(r"^[0-9a-f]{64}$")

class AuditLogger:
    """
    Append-only audit trail.

    Only IP digests are accepted: anything that does not look like a hex
    SHA-256 digest is rejected before it reaches the store.
    """

    def __init__(self, store: MetadataStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    async def record(self, action: AuditAction, doc_id: str, ip_hash: str,
                     user_agent: Optional[str] = None, link_id: Optional[str] = None) -> AuditLogEntry:
        if not ip_hash or not _DIGEST_PATTERN.match(ip_hash):
            raise DocTrustError(ErrorKind.VALIDATION, "Audit entries require a hashed IP address")

        entry = AuditLogEntry(
            action=action,
            doc_id=doc_id,
            link_id=link_id,
            ip_hash=ip_hash,
            user_agent=(user_agent or "unknown")[:512],
            created_at=self.clock(),
        )
        await self.store.insert_audit_log(entry.model_dump())
        logger.info(f"Audit: {entry.action} on document {doc_id}" + (f" via link {link_id}" if link_id else ""))
        return entry

    async def list_for_document(self, doc_id: str) -> List[AuditLogEntry]:
        rows = await self.store.list_audit_logs(doc_id)
        return [AuditLogEntry(**row) for row in rows]
