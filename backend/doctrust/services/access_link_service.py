import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from pydantic import ValidationError

from doctrust.core.config import settings
from doctrust.core.errors import DocTrustError, ErrorKind
from doctrust.core.store_protocols import MetadataStore
from doctrust.models.access_link import AccessLink, LinkScope, ResolvedLink
from doctrust.models.certificate import Certificate
from doctrust.models.document import Certifier
from doctrust.services.permission import load_document
from doctrust.utils.hashing import generate_link_token
from doctrust.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

class AccessLinkManager:
    """
    Issues, resolves and revokes document access links.

    A link moves through: active -> (revoked | expired | exhausted). Resolution
    checks those states in that exact order because each maps to a different
    caller-facing status.

    Usage counting has two modes. The atomic mode (default) asks the store for a
    conditional increment that only succeeds while the link is under its limit.
    The legacy mode reads used_count and writes used_count + 1, which lets
    concurrent resolutions of the same token overrun max_uses.
    """

    def __init__(self, store: MetadataStore, clock: Callable[[], datetime] = utcnow,
                 atomic_usage: Optional[bool] = None):
        self.store = store
        self.clock = clock
        self.atomic_usage = settings.ACCESS_LINK_ATOMIC_USAGE if atomic_usage is None else atomic_usage

    async def issue(self, doc_id: str, scope: str, ttl: timedelta, max_uses: Optional[int] = None,
                    recipient_email: Optional[str] = None, created_by: Optional[str] = None) -> AccessLink:
        """
        Generate an unguessable token and persist a fresh link with used_count = 0
        """
        try:
            link_scope = LinkScope(scope)
        except ValueError:
            raise DocTrustError(ErrorKind.VALIDATION, f"Invalid scope '{scope}', expected 'view' or 'download'")

        if ttl <= timedelta(0):
            raise DocTrustError(ErrorKind.VALIDATION, "Link lifetime must be positive")
        if max_uses is not None and max_uses < 1:
            raise DocTrustError(ErrorKind.VALIDATION, "max_uses must be at least 1")

        await load_document(self.store, doc_id)

        now = self.clock()
        try:
            link = AccessLink(
                token=generate_link_token(),
                doc_id=doc_id,
                scope=link_scope,
                expires_at=now + ttl,
                max_uses=max_uses,
                used_count=0,
                recipient_email=recipient_email.strip().lower() if recipient_email else None,
                created_by=created_by,
                created_at=now,
            )
        except ValidationError as e:
            raise DocTrustError(ErrorKind.VALIDATION, f"Invalid access link: {e.errors()[0]['msg']}") from e
        await self.store.insert_access_link(link.model_dump())

        logger.info(f"Issued {link.scope} link {link.id} for document {doc_id}, expires {link.expires_at.isoformat()}")
        return link

    async def issue_invite(self, doc_id: str, recipient_email: str, scope: str = LinkScope.VIEW.value,
                           created_by: Optional[str] = None) -> AccessLink:
        """
        Invite links are restricted to one recipient and use a very long validity
        window in place of "never expires"
        """
        if not recipient_email:
            raise DocTrustError(ErrorKind.VALIDATION, "Invite links require a recipient email")
        return await self.issue(
            doc_id,
            scope,
            timedelta(days=settings.INVITE_LINK_TTL_DAYS),
            max_uses=None,
            recipient_email=recipient_email,
            created_by=created_by,
        )

    async def get_link(self, token: str) -> AccessLink:
        row = await self.store.get_access_link_by_token(token)
        if row is None:
            raise DocTrustError(ErrorKind.NOT_FOUND, "Access link not found")
        return AccessLink(**row)

    def check_usable(self, link: AccessLink, caller_email: Optional[str] = None) -> None:
        """
        Raise the error matching the first failing condition, in the order
        revoked, expired, exhausted, recipient mismatch
        """
        if link.revoked_at is not None:
            raise DocTrustError(ErrorKind.REVOKED, "Access link has been revoked")

        if self.clock() >= link.expires_at:
            raise DocTrustError(ErrorKind.EXPIRED, "Access link has expired")

        if link.is_exhausted():
            raise DocTrustError(ErrorKind.EXHAUSTED, "Access link usage limit exceeded")

        if link.recipient_email:
            if not caller_email or caller_email.strip().lower() != link.recipient_email:
                raise DocTrustError(ErrorKind.FORBIDDEN, "This access link was issued to a different recipient")

    async def resolve(self, token: str, caller_email: Optional[str] = None) -> ResolvedLink:
        """
        Validate a token, count one use and return the linked document together
        with its latest certificate and ordered certifiers
        """
        link = await self.get_link(token)
        self.check_usable(link, caller_email)

        document = await load_document(self.store, link.doc_id)

        if self.atomic_usage:
            updated = await self.store.increment_link_usage_within_limit(link.id)
            if updated is None:
                # Lost a race against another resolution or a revoke
                current = await self.get_link(token)
                if current.revoked_at is not None:
                    raise DocTrustError(ErrorKind.REVOKED, "Access link has been revoked")
                raise DocTrustError(ErrorKind.EXHAUSTED, "Access link usage limit exceeded")
            link = AccessLink(**updated)
        else:
            new_count = link.used_count + 1
            await self.store.update_access_link(link.id, {"used_count": new_count})
            link = link.model_copy(update={"used_count": new_count})

        certificate = await self.latest_certificate(link.doc_id)
        certifiers = await self.list_certifiers(link.doc_id)

        logger.info(f"Resolved link {link.id} for document {link.doc_id} ({link.used_count}/{link.max_uses or 'unlimited'})")
        return ResolvedLink(link=link, document=document, certificate=certificate, certifiers=certifiers)

    async def revoke(self, token: str) -> AccessLink:
        """
        Set revoked_at; revoking an already revoked link changes nothing
        """
        link = await self.get_link(token)
        if link.revoked_at is not None:
            logger.info(f"Link {link.id} already revoked at {link.revoked_at.isoformat()}")
            return link

        revoked_at = self.clock()
        await self.store.update_access_link(link.id, {"revoked_at": revoked_at})
        logger.info(f"Revoked link {link.id} for document {link.doc_id}")
        return link.model_copy(update={"revoked_at": revoked_at})

    async def list_links(self, doc_id: str) -> List[AccessLink]:
        rows = await self.store.list_access_links(doc_id)
        return [AccessLink(**row) for row in rows]

    async def latest_certificate(self, doc_id: str) -> Optional[Certificate]:
        rows = await self.store.list_certificates(doc_id)
        if not rows:
            return None
        # Several certificates may exist for one document; the newest wins, ties go to the last written
        return Certificate(**sorted(rows, key=lambda r: r["created_at"])[-1])

    async def list_certifiers(self, doc_id: str) -> List[Certifier]:
        rows = await self.store.list_certifications(doc_id)
        return [
            Certifier(user_id=r["user_id"], name=r.get("name"), email=r.get("email"), created_at=r["created_at"])
            for r in sorted(rows, key=lambda r: r["created_at"])
        ]
