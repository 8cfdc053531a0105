from fastapi import APIRouter, Depends, File, Path, UploadFile

from doctrust.controllers.document_trust import DocumentTrustController
from doctrust.middleware.auth_middleware import AuthHandler
from doctrust.models.audit_log import RequestContext
from doctrust.models.identity import Identity
from doctrust.models.requests import ShareDocumentRequest
from doctrust.routes.dependencies import get_controller, get_request_context

router = APIRouter(prefix="/documents", tags=["Documents"])

@router.post("", status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    identity: Identity = Depends(AuthHandler.auth_wrapper),
    context: RequestContext = Depends(get_request_context),
    controller: DocumentTrustController = Depends(get_controller),
):
    """
    Upload a PDF; the caller becomes its owner
    """
    content = await file.read()
    return await controller.upload_document(
        identity, context, file.filename or "", file.content_type or "", content
    )

@router.get("/{doc_id}")
async def get_document(
    doc_id: str = Path(...),
    identity: Identity = Depends(AuthHandler.auth_wrapper),
    context: RequestContext = Depends(get_request_context),
    controller: DocumentTrustController = Depends(get_controller),
):
    return await controller.get_document(doc_id, identity, context)

@router.delete("/{doc_id}")
async def delete_document(
    doc_id: str = Path(...),
    identity: Identity = Depends(AuthHandler.auth_wrapper),
    context: RequestContext = Depends(get_request_context),
    controller: DocumentTrustController = Depends(get_controller),
):
    """
    Delete a document together with its links, certificates, signatures,
    signed copies and audit trail
    """
    return await controller.delete_document(doc_id, identity, context)

@router.post("/{doc_id}/shares", status_code=201)
async def share_document(
    body: ShareDocumentRequest,
    doc_id: str = Path(...),
    identity: Identity = Depends(AuthHandler.auth_wrapper),
    context: RequestContext = Depends(get_request_context),
    controller: DocumentTrustController = Depends(get_controller),
):
    return await controller.share_document(doc_id, identity, context, user_id=body.user_id)

@router.post("/{doc_id}/certify", status_code=201)
async def certify_document(
    doc_id: str = Path(...),
    identity: Identity = Depends(AuthHandler.auth_wrapper),
    context: RequestContext = Depends(get_request_context),
    controller: DocumentTrustController = Depends(get_controller),
):
    return await controller.certify_document(doc_id, identity, context)

@router.post("/{doc_id}/certificates", status_code=201)
async def generate_certificate(
    doc_id: str = Path(...),
    identity: Identity = Depends(AuthHandler.auth_wrapper),
    context: RequestContext = Depends(get_request_context),
    controller: DocumentTrustController = Depends(get_controller),
):
    return await controller.generate_certificate(doc_id, identity, context)

@router.post("/{doc_id}/signed-copies", status_code=201)
async def render_signed_copy(
    doc_id: str = Path(...),
    identity: Identity = Depends(AuthHandler.auth_wrapper),
    context: RequestContext = Depends(get_request_context),
    controller: DocumentTrustController = Depends(get_controller),
):
    """
    Composite the collected signatures onto a fresh copy of the document
    """
    return await controller.render_signed_copy(doc_id, identity, context)

@router.get("/{doc_id}/signed-copies")
async def list_signed_copies(
    doc_id: str = Path(...),
    identity: Identity = Depends(AuthHandler.auth_wrapper),
    context: RequestContext = Depends(get_request_context),
    controller: DocumentTrustController = Depends(get_controller),
):
    return await controller.list_signed_copies(doc_id, identity, context)

@router.get("/{doc_id}/audit-log")
async def list_audit_log(
    doc_id: str = Path(...),
    identity: Identity = Depends(AuthHandler.auth_wrapper),
    context: RequestContext = Depends(get_request_context),
    controller: DocumentTrustController = Depends(get_controller),
):
    return await controller.list_audit_log(doc_id, identity, context)
