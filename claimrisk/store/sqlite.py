"""SQLite-backed claims store."""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable

from ..errors import InvalidStatusTransitionError
from ..models import (
    Claim,
    ClaimStatus,
    FraudAlert,
    FraudType,
    LineItem,
    PatientRecord,
    ProviderRecord,
    ProviderType,
    RiskLevel,
)
from .base import ClaimStore

logger = logging.getLogger(__name__)


def _timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _optional_date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


class SQLiteClaimStore(ClaimStore):
    """Claims, providers, patients and alerts in a single SQLite file.

    Attributes:
        db_path: Path to the SQLite database
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        # Each call opens its own connection, so the path must be a file
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_tables()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_tables(self) -> None:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS providers (
                    id TEXT PRIMARY KEY,
                    npi TEXT,
                    name TEXT,
                    specialty TEXT,
                    provider_type TEXT,
                    address TEXT,
                    phone TEXT,
                    city TEXT,
                    state TEXT,
                    latitude REAL,
                    longitude REAL,
                    company_id TEXT NOT NULL
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS patients (
                    id TEXT PRIMARY KEY,
                    date_of_birth TEXT,
                    address TEXT,
                    phone TEXT,
                    city TEXT,
                    state TEXT,
                    latitude REAL,
                    longitude REAL
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS claims (
                    id TEXT PRIMARY KEY,
                    claim_number TEXT UNIQUE NOT NULL,
                    patient_id TEXT NOT NULL,
                    provider_id TEXT NOT NULL,
                    company_id TEXT NOT NULL,
                    service_date TEXT NOT NULL,
                    line_items TEXT NOT NULL,
                    billed_amount TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'PENDING',
                    risk_score REAL,
                    risk_level TEXT,
                    fraud_types TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS fraud_alerts (
                    id TEXT PRIMARY KEY,
                    claim_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    confidence REAL NOT NULL,
                    description TEXT,
                    details TEXT,
                    detection_model TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (claim_id) REFERENCES claims(id)
                )
            """)
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_claims_provider ON claims(provider_id, created_at)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_claims_patient ON claims(patient_id, created_at)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_alerts_claim ON fraud_alerts(claim_id)"
            )
            conn.commit()
        logger.info(f"Claim store tables initialized at {self.db_path}")

    # Reference data

    def add_provider(self, provider: ProviderRecord) -> ProviderRecord:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO providers (
                    id, npi, name, specialty, provider_type, address, phone,
                    city, state, latitude, longitude, company_id
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    provider.id, provider.npi, provider.name, provider.specialty,
                    provider.provider_type.value, provider.address, provider.phone,
                    provider.city, provider.state, provider.latitude, provider.longitude,
                    provider.company_id,
                ),
            )
        return provider

    def add_patient(self, patient: PatientRecord) -> PatientRecord:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO patients (
                    id, date_of_birth, address, phone, city, state, latitude, longitude
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    patient.id,
                    patient.date_of_birth.isoformat() if patient.date_of_birth else None,
                    patient.address, patient.phone, patient.city, patient.state,
                    patient.latitude, patient.longitude,
                ),
            )
        return patient

    @staticmethod
    def _provider_from_row(row: sqlite3.Row) -> ProviderRecord:
        return ProviderRecord(
            id=row["id"],
            npi=row["npi"] or "",
            name=row["name"] or "",
            specialty=row["specialty"] or "GENERAL_PRACTICE",
            provider_type=ProviderType(row["provider_type"] or ProviderType.PHYSICIAN.value),
            address=row["address"],
            phone=row["phone"],
            city=row["city"],
            state=row["state"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            company_id=row["company_id"],
        )

    def get_provider(self, provider_id: str) -> ProviderRecord | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM providers WHERE id = ?", (provider_id,)).fetchone()
        return self._provider_from_row(row) if row else None

    def get_patient(self, patient_id: str) -> PatientRecord | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM patients WHERE id = ?", (patient_id,)).fetchone()
        if row is None:
            return None
        return PatientRecord(
            id=row["id"],
            date_of_birth=_optional_date(row["date_of_birth"]),
            address=row["address"],
            phone=row["phone"],
            city=row["city"],
            state=row["state"],
            latitude=row["latitude"],
            longitude=row["longitude"],
        )

    def list_providers(self, company_id: str) -> list[ProviderRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM providers WHERE company_id = ? ORDER BY id", (company_id,)
            ).fetchall()
        return [self._provider_from_row(row) for row in rows]

    # Claims

    @staticmethod
    def _claim_from_row(row: sqlite3.Row) -> Claim:
        fraud_types = json.loads(row["fraud_types"]) if row["fraud_types"] else []
        return Claim(
            id=row["id"],
            claim_number=row["claim_number"],
            patient_id=row["patient_id"],
            provider_id=row["provider_id"],
            company_id=row["company_id"],
            service_date=date.fromisoformat(row["service_date"]),
            line_items=tuple(LineItem.from_dict(item) for item in json.loads(row["line_items"])),
            billed_amount=Decimal(row["billed_amount"]),
            status=ClaimStatus(row["status"]),
            risk_score=row["risk_score"],
            risk_level=RiskLevel(row["risk_level"]) if row["risk_level"] else None,
            fraud_types=frozenset(FraudType(t) for t in fraud_types),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def create_claim(self, claim: Claim) -> Claim:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO claims (
                    id, claim_number, patient_id, provider_id, company_id, service_date,
                    line_items, billed_amount, status, risk_score, risk_level,
                    fraud_types, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    claim.id,
                    claim.claim_number,
                    claim.patient_id,
                    claim.provider_id,
                    claim.company_id,
                    claim.service_date.isoformat(),
                    json.dumps([item.to_dict() for item in claim.line_items]),
                    str(claim.billed_amount),
                    claim.status.value,
                    claim.risk_score,
                    claim.risk_level.value if claim.risk_level else None,
                    json.dumps(sorted(t.value for t in claim.fraud_types)),
                    _timestamp(claim.created_at),
                ),
            )
        return claim

    def get_claim(self, claim_id: str) -> Claim | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM claims WHERE id = ?", (claim_id,)).fetchone()
        return self._claim_from_row(row) if row else None

    def _query_claims(self, where: str, params: tuple[Any, ...]) -> list[Claim]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM claims WHERE {where} ORDER BY created_at", params
            ).fetchall()
        return [self._claim_from_row(row) for row in rows]

    def _claims_in_window(
        self, column: str, value: str, since: datetime, until: datetime | None
    ) -> list[Claim]:
        where = f"{column} = ? AND created_at >= ?"
        params: tuple[Any, ...] = (value, _timestamp(since))
        if until is not None:
            where += " AND created_at <= ?"
            params += (_timestamp(until),)
        return self._query_claims(where, params)

    def provider_claims(
        self, provider_id: str, since: datetime, until: datetime | None = None
    ) -> list[Claim]:
        return self._claims_in_window("provider_id", provider_id, since, until)

    def patient_claims(
        self, patient_id: str, since: datetime, until: datetime | None = None
    ) -> list[Claim]:
        return self._claims_in_window("patient_id", patient_id, since, until)

    def find_matching_claims(
        self,
        provider_id: str,
        patient_id: str,
        service_date: date,
        billed_amount: Decimal,
        since: datetime,
        exclude_claim_id: str | None = None,
    ) -> list[Claim]:
        candidates = self._query_claims(
            "provider_id = ? AND patient_id = ? AND service_date = ? AND created_at >= ? AND id != ?",
            (
                provider_id,
                patient_id,
                service_date.isoformat(),
                _timestamp(since),
                exclude_claim_id or "",
            ),
        )
        # Amounts are stored as text; compare as Decimal so 150 == 150.00
        return [c for c in candidates if c.billed_amount == billed_amount]

    def record_analysis(
        self,
        claim_id: str,
        status: ClaimStatus,
        risk_score: float,
        risk_level: RiskLevel,
        fraud_types: Iterable[FraudType],
        alerts: Iterable[FraudAlert],
    ) -> None:
        now = _timestamp(datetime.now(timezone.utc))
        conn = self._connect()
        try:
            with conn:
                cursor = conn.execute(
                    """
                    UPDATE claims
                    SET status = ?, risk_score = ?, risk_level = ?, fraud_types = ?
                    WHERE id = ? AND status = 'PENDING'
                    """,
                    (
                        status.value,
                        risk_score,
                        risk_level.value,
                        json.dumps(sorted(t.value for t in fraud_types)),
                        claim_id,
                    ),
                )
                if cursor.rowcount == 0:
                    row = conn.execute(
                        "SELECT status FROM claims WHERE id = ?", (claim_id,)
                    ).fetchone()
                    if row is None:
                        raise KeyError(claim_id)
                    raise InvalidStatusTransitionError(
                        claim_id, ClaimStatus(row["status"]), status
                    )
                conn.executemany(
                    """
                    INSERT INTO fraud_alerts (
                        id, claim_id, type, severity, confidence, description,
                        details, detection_model, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            str(uuid.uuid4()),
                            claim_id,
                            alert.type.value,
                            alert.severity.value,
                            alert.confidence,
                            alert.description,
                            json.dumps(alert.details, default=str),
                            alert.detection_model,
                            now,
                        )
                        for alert in alerts
                    ],
                )
        finally:
            conn.close()

    def get_alerts(self, claim_id: str) -> list[FraudAlert]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM fraud_alerts WHERE claim_id = ? ORDER BY created_at, rowid",
                (claim_id,),
            ).fetchall()
        return [
            FraudAlert(
                type=FraudType(row["type"]),
                severity=RiskLevel(row["severity"]),
                confidence=row["confidence"],
                description=row["description"] or "",
                details=json.loads(row["details"]) if row["details"] else {},
                detection_model=row["detection_model"] or "",
            )
            for row in rows
        ]
