from fastapi import Request

from doctrust.controllers.document_trust import DocumentTrustController
from doctrust.models.audit_log import RequestContext
from doctrust.utils.hashing import hash_ip


def get_controller(request: Request) -> DocumentTrustController:
    """The controller built during application startup"""
    return request.app.state.controller


def get_request_context(request: Request) -> RequestContext:
    """
    Hash the client address here so raw IPs never reach the services
    """
    ip_address = request.client.host if request.client else None
    return RequestContext(
        ip_hash=hash_ip(ip_address),
        user_agent=request.headers.get("user-agent", "unknown"),
    )
