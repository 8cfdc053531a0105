"""
Error taxonomy shared by every DocTrust operation.

Services raise DocTrustError with an ErrorKind; the HTTP layer maps the kind to a
status code through HTTP_STATUS. Nothing inspects error messages to decide how a
failure is reported.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    EXPIRED = "expired"
    REVOKED = "revoked"
    EXHAUSTED = "exhausted"
    RATE_LIMITED = "rate_limited"
    STORAGE = "storage"
    INTERNAL = "internal"


HTTP_STATUS: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.EXPIRED: 410,
    ErrorKind.REVOKED: 403,
    ErrorKind.EXHAUSTED: 429,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.STORAGE: 500,
    ErrorKind.INTERNAL: 500,
}


class DocTrustError(Exception):
    """Single exception type carrying an explicit error kind."""

    def __init__(self, kind: ErrorKind, message: str, retry_after_ms: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.retry_after_ms = retry_after_ms

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]

    @property
    def retry_after_seconds(self) -> Optional[int]:
        if self.retry_after_ms is None:
            return None
        # Round up so a client never retries inside the window
        return max(1, -(-self.retry_after_ms // 1000))

    def to_response(self) -> Dict[str, Any]:
        """Failure envelope returned to callers"""
        body: Dict[str, Any] = {
            "success": False,
            "error": self.message,
            "kind": self.kind.value,
        }
        if self.retry_after_seconds is not None:
            body["retry_after"] = self.retry_after_seconds
        return body

    def __repr__(self) -> str:
        return f"DocTrustError({self.kind.value!r}, {self.message!r})"
