"""Error kinds map structurally to status codes and the failure envelope."""

import pytest

from doctrust.core.errors import HTTP_STATUS, DocTrustError, ErrorKind


@pytest.mark.parametrize("kind,status", [
    (ErrorKind.VALIDATION, 400),
    (ErrorKind.UNAUTHENTICATED, 401),
    (ErrorKind.FORBIDDEN, 403),
    (ErrorKind.NOT_FOUND, 404),
    (ErrorKind.CONFLICT, 409),
    (ErrorKind.EXPIRED, 410),
    (ErrorKind.REVOKED, 403),
    (ErrorKind.EXHAUSTED, 429),
    (ErrorKind.RATE_LIMITED, 429),
    (ErrorKind.STORAGE, 500),
    (ErrorKind.INTERNAL, 500),
])
def test_status_mapping(kind, status):
    assert DocTrustError(kind, "x").status_code == status


def test_every_kind_has_a_status():
    assert set(HTTP_STATUS) == set(ErrorKind)


def test_failure_envelope():
    body = DocTrustError(ErrorKind.EXPIRED, "Access link has expired").to_response()
    assert body == {"success": False, "error": "Access link has expired", "kind": "expired"}


@pytest.mark.parametrize("retry_after_ms,seconds", [(1, 1), (999, 1), (1000, 1), (1001, 2), (45_000, 45)])
def test_retry_after_rounds_up(retry_after_ms, seconds):
    error = DocTrustError(ErrorKind.RATE_LIMITED, "slow down", retry_after_ms=retry_after_ms)
    assert error.retry_after_seconds == seconds
    assert error.to_response()["retry_after"] == seconds
