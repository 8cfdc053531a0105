from fastapi import APIRouter, Depends, Path
from typing import Optional

from doctrust.controllers.document_trust import DocumentTrustController
from doctrust.middleware.auth_middleware import AuthHandler
from doctrust.models.audit_log import RequestContext
from doctrust.models.identity import Identity
from doctrust.models.requests import CreateInviteRequest, CreateLinkRequest
from doctrust.routes.dependencies import get_controller, get_request_context

router = APIRouter(tags=["Access Links"])

@router.post("/documents/{doc_id}/links", status_code=201)
async def create_access_link(
    body: CreateLinkRequest,
    doc_id: str = Path(...),
    identity: Identity = Depends(AuthHandler.auth_wrapper),
    context: RequestContext = Depends(get_request_context),
    controller: DocumentTrustController = Depends(get_controller),
):
    """
    Issue a scoped, time-limited access link for a document the caller owns
    """
    return await controller.create_access_link(
        doc_id,
        identity,
        context,
        scope=body.scope.value,
        ttl_hours=body.ttl_hours,
        max_uses=body.max_uses,
        recipient_email=body.recipient_email,
    )

@router.post("/documents/{doc_id}/invites", status_code=201)
async def create_invite_link(
    body: CreateInviteRequest,
    doc_id: str = Path(...),
    identity: Identity = Depends(AuthHandler.auth_wrapper),
    context: RequestContext = Depends(get_request_context),
    controller: DocumentTrustController = Depends(get_controller),
):
    return await controller.create_invite_link(
        doc_id, identity, context, recipient_email=body.recipient_email, scope=body.scope.value
    )

@router.get("/documents/{doc_id}/links")
async def list_access_links(
    doc_id: str = Path(...),
    identity: Identity = Depends(AuthHandler.auth_wrapper),
    context: RequestContext = Depends(get_request_context),
    controller: DocumentTrustController = Depends(get_controller),
):
    return await controller.list_access_links(doc_id, identity, context)

@router.post("/links/{token}/resolve")
async def resolve_access_link(
    token: str = Path(...),
    identity: Optional[Identity] = Depends(AuthHandler.auth_wrapper_optional),
    context: RequestContext = Depends(get_request_context),
    controller: DocumentTrustController = Depends(get_controller),
):
    """
    Verify a link and count one use. Authentication is only needed for links
    restricted to a recipient.
    """
    return await controller.resolve_access_link(token, identity, context)

@router.post("/links/{token}/revoke")
async def revoke_access_link(
    token: str = Path(...),
    identity: Identity = Depends(AuthHandler.auth_wrapper),
    context: RequestContext = Depends(get_request_context),
    controller: DocumentTrustController = Depends(get_controller),
):
    return await controller.revoke_access_link(token, identity, context)
