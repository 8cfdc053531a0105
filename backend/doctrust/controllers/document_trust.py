import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from doctrust.core.config import settings
from doctrust.core.errors import DocTrustError, ErrorKind
from doctrust.core.store_protocols import BlobStore, MetadataStore
from doctrust.models.access_link import AccessLink, LinkScope
from doctrust.models.audit_log import AuditAction, RequestContext
from doctrust.models.identity import Identity
from doctrust.services.access_link_service import AccessLinkManager
from doctrust.services.audit_logger import AuditLogger
from doctrust.services.certificate_service import CertificateGenerator
from doctrust.services.document_service import DocumentService
from doctrust.services.permission import require_owner
from doctrust.services.rate_limiter import RateLimiter, enforce_rate_limit
from doctrust.services.signature_compositor import SignatureCompositor
from doctrust.services.signature_service import SignatureService
from doctrust.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

# Operation -> setting holding its per-window budget
RATE_LIMIT_SETTINGS = {
    "create_link": "RATE_LIMIT_CREATE_LINK",
    "resolve_link": "RATE_LIMIT_RESOLVE_LINK",
    "revoke_link": "RATE_LIMIT_REVOKE_LINK",
    "generate_certificate": "RATE_LIMIT_GENERATE_CERTIFICATE",
    "compose": "RATE_LIMIT_COMPOSE",
    "sign": "RATE_LIMIT_SIGN",
}

# Never returned to callers; blobs are reached through retrieval URLs
PRIVATE_FIELDS = {"storage_key"}


def _success(**payload) -> Dict[str, Any]:
    return {"success": True, **payload}


def _link_for_owner(link: AccessLink) -> Dict[str, Any]:
    return link.model_dump(mode="json")


class DocumentTrustController:
    """
    Caller-facing boundary for every document trust operation.

    Each operation is rate limited, runs its service calls, records the audit
    entry for the outcome and returns a success envelope. Errors that are not
    already a DocTrustError are logged and reported as INTERNAL.
    """

    def __init__(self, store: MetadataStore, documents: BlobStore, certificates: BlobStore,
                 signatures: BlobStore, signed_copies: BlobStore, rate_limiter: RateLimiter,
                 clock: Callable[[], datetime] = utcnow, atomic_usage: Optional[bool] = None):
        self.store = store
        self.documents = documents
        self.certificates = certificates
        self.rate_limiter = rate_limiter

        self.audit = AuditLogger(store, clock=clock)
        self.links = AccessLinkManager(store, clock=clock, atomic_usage=atomic_usage)
        self.certificate_generator = CertificateGenerator(store, certificates, clock=clock)
        self.compositor = SignatureCompositor(store, documents, signatures, signed_copies, self.audit, clock=clock)
        self.signature_service = SignatureService(store, signatures, self.audit, clock=clock)
        self.document_service = DocumentService(store, documents, certificates, signatures, signed_copies, clock=clock)

    async def _limit(self, operation: str, identity: Optional[Identity], context: RequestContext) -> None:
        setting_name = RATE_LIMIT_SETTINGS.get(operation, "RATE_LIMIT_DEFAULT")
        caller = identity.user_id if identity else context.ip_hash
        await enforce_rate_limit(
            self.rate_limiter,
            f"{operation}:{caller}",
            getattr(settings, setting_name),
            settings.RATE_LIMIT_WINDOW_MS,
        )

    async def _run(self, operation: str, action: Callable[[], Awaitable[Dict[str, Any]]]) -> Dict[str, Any]:
        try:
            return await action()
        except DocTrustError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error during {operation}: {str(e)}", exc_info=True)
            raise DocTrustError(ErrorKind.INTERNAL, f"Failed to {operation}") from e

    # Access links

    async def create_access_link(self, doc_id: str, identity: Identity, context: RequestContext,
                                 scope: str = LinkScope.VIEW.value, ttl_hours: Optional[int] = None,
                                 max_uses: Optional[int] = None,
                                 recipient_email: Optional[str] = None) -> Dict[str, Any]:
        async def action():
            await self._limit("create_link", identity, context)
            await require_owner(self.store, doc_id, identity)

            hours = settings.ACCESS_LINK_DEFAULT_TTL_HOURS if ttl_hours is None else ttl_hours
            if hours > settings.ACCESS_LINK_MAX_TTL_HOURS:
                raise DocTrustError(
                    ErrorKind.VALIDATION,
                    f"Link lifetime cannot exceed {settings.ACCESS_LINK_MAX_TTL_HOURS} hours",
                )

            link = await self.links.issue(
                doc_id, scope, timedelta(hours=hours), max_uses=max_uses,
                recipient_email=recipient_email, created_by=identity.user_id,
            )
            await self.audit.record(AuditAction.LINK_CREATED, doc_id, context.ip_hash, context.user_agent, link_id=link.id)
            return _success(link=_link_for_owner(link))

        return await self._run("create access link", action)

    async def create_invite_link(self, doc_id: str, identity: Identity, context: RequestContext,
                                 recipient_email: str, scope: str = LinkScope.VIEW.value) -> Dict[str, Any]:
        async def action():
            await self._limit("create_link", identity, context)
            await require_owner(self.store, doc_id, identity)

            link = await self.links.issue_invite(doc_id, recipient_email, scope=scope, created_by=identity.user_id)
            await self.audit.record(
                AuditAction.INVITE_LINK_CREATED, doc_id, context.ip_hash, context.user_agent, link_id=link.id
            )
            return _success(link=_link_for_owner(link))

        return await self._run("create invite link", action)

    async def resolve_access_link(self, token: str, identity: Optional[Identity],
                                  context: RequestContext) -> Dict[str, Any]:
        """
        Public entry point for link holders. Counts one use and returns the
        document with short-lived retrieval URLs for it and its latest certificate.
        """
        async def action():
            await self._limit("resolve_link", identity, context)

            caller_email = identity.normalized_email if identity else None
            resolved = await self.links.resolve(token, caller_email)
            link, document = resolved.link, resolved.document

            await self.audit.record(
                AuditAction.DOCUMENT_ACCESSED, document.id, context.ip_hash, context.user_agent, link_id=link.id
            )

            document_payload = document.model_dump(mode="json", exclude=PRIVATE_FIELDS)
            document_payload["url"] = await self.documents.create_retrieval_url(
                document.storage_key, settings.RETRIEVAL_URL_TTL_SECONDS
            )

            certificate_payload = None
            if resolved.certificate is not None:
                certificate_payload = resolved.certificate.model_dump(mode="json", exclude=PRIVATE_FIELDS)
                certificate_payload["url"] = await self.certificates.create_retrieval_url(
                    resolved.certificate.storage_key, settings.RETRIEVAL_URL_TTL_SECONDS
                )

            return _success(
                document=document_payload,
                certificate=certificate_payload,
                certifiers=[c.model_dump(mode="json") for c in resolved.certifiers],
                access_link=link.to_public(),
            )

        return await self._run("resolve access link", action)

    async def revoke_access_link(self, token: str, identity: Identity, context: RequestContext) -> Dict[str, Any]:
        async def action():
            await self._limit("revoke_link", identity, context)

            link = await self.links.get_link(token)
            await require_owner(self.store, link.doc_id, identity)

            already_revoked = link.revoked_at is not None
            revoked = await self.links.revoke(token)
            if not already_revoked:
                await self.audit.record(
                    AuditAction.LINK_REVOKED, revoked.doc_id, context.ip_hash, context.user_agent, link_id=revoked.id
                )
            return _success(link=_link_for_owner(revoked))

        return await self._run("revoke access link", action)

    async def list_access_links(self, doc_id: str, identity: Identity, context: RequestContext) -> Dict[str, Any]:
        async def action():
            await self._limit("list_links", identity, context)
            await require_owner(self.store, doc_id, identity)
            links = await self.links.list_links(doc_id)
            return _success(links=[_link_for_owner(link) for link in links])

        return await self._run("list access links", action)

    # Certificates and signed copies

    async def generate_certificate(self, doc_id: str, identity: Identity, context: RequestContext) -> Dict[str, Any]:
        async def action():
            await self._limit("generate_certificate", identity, context)
            await require_owner(self.store, doc_id, identity)

            certificate, url = await self.certificate_generator.generate(doc_id)
            await self.audit.record(AuditAction.CERTIFICATE_GENERATED, doc_id, context.ip_hash, context.user_agent)

            payload = certificate.model_dump(mode="json", exclude=PRIVATE_FIELDS)
            payload["url"] = url
            return _success(certificate=payload)

        return await self._run("generate certificate", action)

    async def render_signed_copy(self, doc_id: str, identity: Identity, context: RequestContext) -> Dict[str, Any]:
        async def action():
            await self._limit("compose", identity, context)
            result = await self.compositor.compose(doc_id, identity, context)
            return _success(
                signed_copy=result.signed_copy.model_dump(mode="json", exclude=PRIVATE_FIELDS),
                url=result.url,
            )

        return await self._run("render signed copy", action)

    async def list_signed_copies(self, doc_id: str, identity: Identity, context: RequestContext) -> Dict[str, Any]:
        async def action():
            await self._limit("list_signed_copies", identity, context)
            results = await self.document_service.list_signed_copies(doc_id, identity)
            copies = []
            for result in results:
                payload = result.signed_copy.model_dump(mode="json", exclude=PRIVATE_FIELDS)
                payload["url"] = result.url
                copies.append(payload)
            return _success(signed_copies=copies)

        return await self._run("list signed copies", action)

    # Signatures

    async def add_signature_fields(self, doc_id: str, identity: Identity, context: RequestContext,
                                   fields: List[Dict[str, Any]]) -> Dict[str, Any]:
        async def action():
            await self._limit("add_fields", identity, context)
            created = await self.signature_service.add_fields(doc_id, identity, fields)
            return _success(fields=[f.model_dump(mode="json") for f in created])

        return await self._run("add signature fields", action)

    async def list_signature_fields(self, doc_id: str, identity: Identity, context: RequestContext) -> Dict[str, Any]:
        async def action():
            await self._limit("list_fields", identity, context)
            fields = await self.signature_service.list_fields(doc_id, identity)
            return _success(fields=[f.model_dump(mode="json") for f in fields])

        return await self._run("list signature fields", action)

    async def submit_signature(self, doc_id: str, identity: Identity, context: RequestContext,
                               signer_name: str, image: bytes, content_type: str,
                               metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        async def action():
            await self._limit("sign", identity, context)
            signature = await self.signature_service.submit(
                doc_id, identity, signer_name, image, content_type, context, metadata=metadata
            )
            return _success(signature=signature.model_dump(mode="json", exclude=PRIVATE_FIELDS))

        return await self._run("sign document", action)

    async def list_signatures(self, doc_id: str, identity: Identity, context: RequestContext) -> Dict[str, Any]:
        async def action():
            await self._limit("list_signatures", identity, context)
            signatures = await self.signature_service.list_signatures(doc_id, identity)
            return _success(signatures=[s.model_dump(mode="json", exclude=PRIVATE_FIELDS) for s in signatures])

        return await self._run("list signatures", action)

    # Documents

    async def upload_document(self, identity: Identity, context: RequestContext, filename: str,
                              content_type: str, data: bytes) -> Dict[str, Any]:
        async def action():
            await self._limit("upload_document", identity, context)
            document = await self.document_service.upload(identity, filename, content_type, data)
            await self.audit.record(AuditAction.DOCUMENT_UPLOADED, document.id, context.ip_hash, context.user_agent)
            return _success(document=document.model_dump(mode="json", exclude=PRIVATE_FIELDS))

        return await self._run("upload document", action)

    async def get_document(self, doc_id: str, identity: Identity, context: RequestContext) -> Dict[str, Any]:
        async def action():
            await self._limit("get_document", identity, context)
            document = await self.document_service.get(doc_id, identity)
            payload = document.model_dump(mode="json", exclude=PRIVATE_FIELDS)
            payload["url"] = await self.documents.create_retrieval_url(
                document.storage_key, settings.RETRIEVAL_URL_TTL_SECONDS
            )
            return _success(document=payload)

        return await self._run("load document", action)

    async def share_document(self, doc_id: str, identity: Identity, context: RequestContext,
                             user_id: str) -> Dict[str, Any]:
        async def action():
            await self._limit("share_document", identity, context)
            grant = await self.document_service.share(doc_id, identity, user_id)
            await self.audit.record(AuditAction.DOCUMENT_SHARED, doc_id, context.ip_hash, context.user_agent)
            return _success(share=grant.model_dump(mode="json"))

        return await self._run("share document", action)

    async def certify_document(self, doc_id: str, identity: Identity, context: RequestContext) -> Dict[str, Any]:
        async def action():
            await self._limit("certify_document", identity, context)
            certification = await self.document_service.certify(doc_id, identity)
            await self.audit.record(AuditAction.DOCUMENT_CERTIFIED, doc_id, context.ip_hash, context.user_agent)
            return _success(certification=certification.model_dump(mode="json"))

        return await self._run("certify document", action)

    async def delete_document(self, doc_id: str, identity: Identity, context: RequestContext) -> Dict[str, Any]:
        async def action():
            await self._limit("delete_document", identity, context)
            # The audit trail is part of the cascade, so nothing is recorded here
            removed = await self.document_service.delete(doc_id, identity)
            return _success(doc_id=doc_id, removed=removed)

        return await self._run("delete document", action)

    async def list_audit_log(self, doc_id: str, identity: Identity, context: RequestContext) -> Dict[str, Any]:
        async def action():
            await self._limit("list_audit_log", identity, context)
            await require_owner(self.store, doc_id, identity)
            entries = await self.audit.list_for_document(doc_id)
            return _success(entries=[e.model_dump(mode="json") for e in entries])

        return await self._run("load audit log", action)
