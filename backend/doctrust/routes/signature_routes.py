from fastapi import APIRouter, Depends, File, Form, Path, UploadFile
from typing import Optional
import json

from doctrust.controllers.document_trust import DocumentTrustController
from doctrust.core.errors import DocTrustError, ErrorKind
from doctrust.middleware.auth_middleware import AuthHandler
from doctrust.models.audit_log import RequestContext
from doctrust.models.identity import Identity
from doctrust.models.requests import AddFieldsRequest, field_rows
from doctrust.routes.dependencies import get_controller, get_request_context

router = APIRouter(prefix="/documents", tags=["Signatures"])

@router.post("/{doc_id}/fields", status_code=201)
async def add_signature_fields(
    body: AddFieldsRequest,
    doc_id: str = Path(...),
    identity: Identity = Depends(AuthHandler.auth_wrapper),
    context: RequestContext = Depends(get_request_context),
    controller: DocumentTrustController = Depends(get_controller),
):
    """
    Declare where each recipient signs. Coordinates are PDF points measured
    from the top-left corner of a 1-based page.
    """
    return await controller.add_signature_fields(doc_id, identity, context, field_rows(body))

@router.get("/{doc_id}/fields")
async def list_signature_fields(
    doc_id: str = Path(...),
    identity: Identity = Depends(AuthHandler.auth_wrapper),
    context: RequestContext = Depends(get_request_context),
    controller: DocumentTrustController = Depends(get_controller),
):
    return await controller.list_signature_fields(doc_id, identity, context)

@router.post("/{doc_id}/signatures", status_code=201)
async def submit_signature(
    doc_id: str = Path(...),
    signer_name: str = Form(...),
    signature_image: UploadFile = File(...),
    metadata: Optional[str] = Form(None),
    identity: Identity = Depends(AuthHandler.auth_wrapper),
    context: RequestContext = Depends(get_request_context),
    controller: DocumentTrustController = Depends(get_controller),
):
    """
    Submit the caller's captured signature image (PNG or JPEG)
    """
    extra = None
    if metadata:
        try:
            extra = json.loads(metadata)
        except json.JSONDecodeError:
            raise DocTrustError(ErrorKind.VALIDATION, "metadata must be a JSON object")
        if not isinstance(extra, dict):
            raise DocTrustError(ErrorKind.VALIDATION, "metadata must be a JSON object")

    content = await signature_image.read()
    return await controller.submit_signature(
        doc_id,
        identity,
        context,
        signer_name=signer_name,
        image=content,
        content_type=signature_image.content_type or "",
        metadata=extra,
    )

@router.get("/{doc_id}/signatures")
async def list_signatures(
    doc_id: str = Path(...),
    identity: Identity = Depends(AuthHandler.auth_wrapper),
    context: RequestContext = Depends(get_request_context),
    controller: DocumentTrustController = Depends(get_controller),
):
    return await controller.list_signatures(doc_id, identity, context)
