"""Tests for the append-only audit log."""

import pytest

from claimrisk.audit import AuditAction, InMemoryAuditLog, SQLiteAuditLog


@pytest.fixture(params=["memory", "sqlite"])
def any_audit_log(request, tmp_path):
    if request.param == "memory":
        return InMemoryAuditLog()
    return SQLiteAuditLog(str(tmp_path / "audit" / "audit.db"))


class TestAuditLog:
    """Test audit entry recording and filtering."""

    def test_record_and_read_back(self, any_audit_log):
        """Test that an entry reads back with all fields."""
        entry_id = any_audit_log.record(
            tenant_id="acme",
            actor="claim-processor",
            action=AuditAction.CLAIM_FLAGGED,
            resource_type="claim",
            resource_id="claim-1",
            details={"risk_score": 90.0, "fraud_types": ["DUPLICATE_CLAIM"]},
        )

        entries = any_audit_log.entries()

        assert len(entries) == 1
        entry = entries[0]
        assert entry.id == entry_id
        assert entry.tenant_id == "acme"
        assert entry.actor == "claim-processor"
        assert entry.action is AuditAction.CLAIM_FLAGGED
        assert entry.resource_id == "claim-1"
        assert entry.details == {"risk_score": 90.0, "fraud_types": ["DUPLICATE_CLAIM"]}
        assert entry.timestamp

    def test_filters(self, any_audit_log):
        """Test filtering by tenant, action and resource."""
        any_audit_log.record("acme", "p", AuditAction.CLAIM_FLAGGED, "claim", "c1")
        any_audit_log.record("acme", "p", AuditAction.CLAIM_AUTO_APPROVED, "claim", "c2")
        any_audit_log.record("other", "s", AuditAction.NETWORK_ANALYZED, "network", "other")

        assert len(any_audit_log.entries(tenant_id="acme")) == 2
        assert [e.resource_id for e in any_audit_log.entries(action=AuditAction.CLAIM_AUTO_APPROVED)] == ["c2"]
        assert [e.action for e in any_audit_log.entries(resource_id="c1")] == [AuditAction.CLAIM_FLAGGED]

    def test_insertion_order(self, any_audit_log):
        """Test that entries come back in insertion order."""
        for resource_id in ("a", "b", "c"):
            any_audit_log.record("acme", "p", AuditAction.CLAIM_FLAGGED, "claim", resource_id)

        assert [e.resource_id for e in any_audit_log.entries()] == ["a", "b", "c"]

    def test_to_dict(self, any_audit_log):
        """Test entry serialization."""
        any_audit_log.record("acme", "p", AuditAction.NETWORK_ANALYZED)

        data = any_audit_log.entries()[0].to_dict()

        assert data["action"] == "network.analyzed"
        assert data["details"] == {}
