"""Audit trail and IP anonymization.

Invariants:
    - Raw IP addresses are never persisted; only HMAC-SHA256 digests are accepted
    - Entries are append-only and listed oldest first
"""

import pytest

from doctrust.core.errors import DocTrustError, ErrorKind
from doctrust.models.audit_log import AuditAction
from doctrust.services.audit_logger import AuditLogger
from doctrust.utils.hashing import hash_ip


@pytest.fixture
def audit(store, clock):
    return AuditLogger(store, clock=clock)


def test_hash_ip_is_keyed_and_stable():
    assert hash_ip("198.51.100.4", "secret-a") == hash_ip("198.51.100.4", "secret-a")
    assert hash_ip("198.51.100.4", "secret-a") != hash_ip("198.51.100.4", "secret-b")
    assert len(hash_ip("198.51.100.4")) == 64
    assert "198.51.100.4" not in hash_ip("198.51.100.4")


def test_hash_ip_without_address():
    assert hash_ip(None, "s") == hash_ip("unknown", "s")


async def test_record_persists_entry(audit, store, clock):
    ip_hash = hash_ip("198.51.100.4")

    entry = await audit.record(AuditAction.DOCUMENT_ACCESSED, "doc-1", ip_hash, "Mozilla/5.0", link_id="link-1")

    row = store.tables["audit_logs"][0]
    assert row["action"] == "document_accessed"
    assert row["ip_hash"] == ip_hash
    assert row["link_id"] == "link-1"
    assert row["user_agent"] == "Mozilla/5.0"
    assert row["created_at"] == clock.now
    assert entry.id == row["id"]


@pytest.mark.parametrize("value", ["198.51.100.4", "", "2001:db8::1", "A" * 64])
async def test_record_rejects_anything_but_a_digest(audit, store, value):
    with pytest.raises(DocTrustError) as exc_info:
        await audit.record(AuditAction.LINK_CREATED, "doc-1", value)

    assert exc_info.value.kind == ErrorKind.VALIDATION
    assert store.tables["audit_logs"] == []


async def test_missing_user_agent_is_recorded_as_unknown(audit, store):
    await audit.record(AuditAction.LINK_REVOKED, "doc-1", hash_ip("10.0.0.1"))
    assert store.tables["audit_logs"][0]["user_agent"] == "unknown"


async def test_list_for_document_is_oldest_first(audit, clock):
    ip_hash = hash_ip("10.0.0.1")
    await audit.record(AuditAction.LINK_CREATED, "doc-1", ip_hash)
    clock.advance(seconds=5)
    await audit.record(AuditAction.DOCUMENT_ACCESSED, "doc-1", ip_hash)
    await audit.record(AuditAction.LINK_CREATED, "doc-2", ip_hash)

    entries = await audit.list_for_document("doc-1")

    assert [e.action for e in entries] == ["link_created", "document_accessed"]
