"""Append-only audit log for significant scoring decisions.

Every entry records tenant, actor, action and timestamp. The processor
writes an entry when a claim is flagged, auto-approved or sent to
investigation; the scheduler writes one per network analysis run.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any


class AuditAction(str, Enum):
    """Types of auditable actions."""

    CLAIM_FLAGGED = "claim.flagged"
    CLAIM_AUTO_APPROVED = "claim.auto_approved"
    CLAIM_INVESTIGATION_TRIGGERED = "claim.investigation_triggered"
    NETWORK_ANALYZED = "network.analyzed"


@dataclass(frozen=True)
class AuditEntry:
    id: str
    timestamp: str
    tenant_id: str
    actor: str
    action: AuditAction
    resource_type: str | None = None
    resource_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "tenant_id": self.tenant_id,
            "actor": self.actor,
            "action": self.action.value,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "details": self.details,
        }


class AuditLog(ABC):
    @abstractmethod
    def record(
        self,
        tenant_id: str,
        actor: str,
        action: AuditAction,
        resource_type: str | None = None,
        resource_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> str:
        """Append an entry and return its id."""

    @abstractmethod
    def entries(
        self,
        tenant_id: str | None = None,
        action: AuditAction | None = None,
        resource_id: str | None = None,
    ) -> list[AuditEntry]:
        """Entries in insertion order, optionally filtered."""


def _new_entry(
    tenant_id: str,
    actor: str,
    action: AuditAction,
    resource_type: str | None,
    resource_id: str | None,
    details: dict[str, Any] | None,
) -> AuditEntry:
    return AuditEntry(
        id=str(uuid.uuid4()),
        timestamp=datetime.now(timezone.utc).isoformat(),
        tenant_id=tenant_id,
        actor=actor,
        action=AuditAction(action),
        resource_type=resource_type,
        resource_id=resource_id,
        details=details or {},
    )


class InMemoryAuditLog(AuditLog):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: list[AuditEntry] = []

    def record(
        self,
        tenant_id: str,
        actor: str,
        action: AuditAction,
        resource_type: str | None = None,
        resource_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> str:
        entry = _new_entry(tenant_id, actor, action, resource_type, resource_id, details)
        with self._lock:
            self._entries.append(entry)
        return entry.id

    def entries(
        self,
        tenant_id: str | None = None,
        action: AuditAction | None = None,
        resource_id: str | None = None,
    ) -> list[AuditEntry]:
        with self._lock:
            entries = list(self._entries)
        return [
            e for e in entries
            if (tenant_id is None or e.tenant_id == tenant_id)
            and (action is None or e.action == action)
            and (resource_id is None or e.resource_id == resource_id)
        ]


class SQLiteAuditLog(AuditLog):
    """Audit entries in an append-only audit_logs table."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_table()

    def _init_table(self) -> None:
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS audit_logs (
                    id TEXT PRIMARY KEY,
                    timestamp TEXT NOT NULL,
                    tenant_id TEXT NOT NULL,
                    actor TEXT NOT NULL,
                    action TEXT NOT NULL,
                    resource_type TEXT,
                    resource_id TEXT,
                    details TEXT
                )
            """)
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_logs(timestamp)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_audit_action ON audit_logs(action)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_audit_resource ON audit_logs(resource_type, resource_id)"
            )
            conn.commit()

    def record(
        self,
        tenant_id: str,
        actor: str,
        action: AuditAction,
        resource_type: str | None = None,
        resource_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> str:
        entry = _new_entry(tenant_id, actor, action, resource_type, resource_id, details)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO audit_logs (
                    id, timestamp, tenant_id, actor, action,
                    resource_type, resource_id, details
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.id,
                    entry.timestamp,
                    entry.tenant_id,
                    entry.actor,
                    entry.action.value,
                    entry.resource_type,
                    entry.resource_id,
                    json.dumps(entry.details, default=str) if entry.details else None,
                ),
            )
            conn.commit()
        return entry.id

    def entries(
        self,
        tenant_id: str | None = None,
        action: AuditAction | None = None,
        resource_id: str | None = None,
    ) -> list[AuditEntry]:
        conditions = []
        params: list[Any] = []
        if tenant_id:
            conditions.append("tenant_id = ?")
            params.append(tenant_id)
        if action:
            conditions.append("action = ?")
            params.append(AuditAction(action).value)
        if resource_id:
            conditions.append("resource_id = ?")
            params.append(resource_id)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(
                f"""
                SELECT id, timestamp, tenant_id, actor, action, resource_type, resource_id, details
                FROM audit_logs {where}
                ORDER BY timestamp, rowid
                """,
                params,
            ).fetchall()

        return [
            AuditEntry(
                id=row[0],
                timestamp=row[1],
                tenant_id=row[2],
                actor=row[3],
                action=AuditAction(row[4]),
                resource_type=row[5],
                resource_id=row[6],
                details=json.loads(row[7]) if row[7] else {},
            )
            for row in rows
        ]
