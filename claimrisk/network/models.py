"""Graph entities for provider network analysis.

Nodes, connections and clusters are built fresh for each analysis run and
are never persisted on their own.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from ..models import ProviderRecord

# Relationship types that make a connection suspicious regardless of strength
SUSPICIOUS_RELATIONSHIPS = frozenset({
    "SHARED_ADDRESS",
    "SHARED_PHONE",
    "SHARED_FACILITY",
    "REFERRAL_LOOP",
    "EXCESSIVE_REFERRALS",
    "PATTERN_MATCHING",
})


@dataclass(frozen=True)
class FraudRingArchetype:
    name: str
    indicators: frozenset[str]
    min_providers: int
    confidence: float

    def matches(self, provider_count: int, cluster_indicators: set[str] | frozenset[str]) -> bool:
        if provider_count < self.min_providers:
            return False
        return len(self.indicators & set(cluster_indicators)) >= 2


FRAUD_RING_ARCHETYPES: tuple[FraudRingArchetype, ...] = (
    FraudRingArchetype(
        "REFERRAL_MILL",
        frozenset({"CIRCULAR_REFERRALS", "HIGH_VOLUME_REFERRALS", "UNNECESSARY_SERVICES"}),
        3,
        90,
    ),
    FraudRingArchetype(
        "SHARED_FACILITY_SCHEME",
        frozenset({"SHARED_ADDRESS", "COORDINATED_BILLING", "PATTERN_ANOMALIES"}),
        4,
        85,
    ),
    FraudRingArchetype(
        "KICKBACK_RING",
        frozenset({"REFERRAL_CONCENTRATION", "HIGH_VALUE_SERVICES", "PATIENT_SHARING"}),
        2,
        95,
    ),
    FraudRingArchetype(
        "IDENTITY_THEFT_RING",
        frozenset({"FAKE_PATIENTS", "GEOGRAPHIC_SPREAD", "COORDINATED_BILLING"}),
        3,
        88,
    ),
)


@dataclass(frozen=True)
class ProviderNode:
    provider: ProviderRecord
    total_claims: int = 0
    flagged_claims: int = 0
    total_billed: Decimal = Decimal("0")
    claims_per_patient: dict[str, int] = field(default_factory=dict)
    service_dates: frozenset[date] = frozenset()

    @property
    def id(self) -> str:
        return self.provider.id

    @property
    def patient_ids(self) -> frozenset[str]:
        return frozenset(self.claims_per_patient)

    @property
    def risk_score(self) -> float:
        if self.total_claims == 0:
            return 0.0
        return self.flagged_claims / self.total_claims * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "npi": self.provider.npi,
            "name": self.provider.name,
            "specialty": self.provider.specialty,
            "total_claims": self.total_claims,
            "flagged_claims": self.flagged_claims,
            "total_billed": str(self.total_billed),
            "risk_score": round(self.risk_score, 1),
        }


@dataclass(frozen=True)
class ProviderConnection:
    provider1_id: str
    provider2_id: str
    relationship_types: tuple[str, ...]
    strength: float
    is_suspicious: bool
    risk_score: float
    indicators: tuple[str, ...] = ()
    indicator_codes: frozenset[str] = frozenset()
    shared_patients: int = 0
    referral_frequency: int = 0
    coordination_score: float = 0.0
    total_amount: Decimal = Decimal("0")

    def involves(self, provider_id: str) -> bool:
        return provider_id in (self.provider1_id, self.provider2_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider1_id": self.provider1_id,
            "provider2_id": self.provider2_id,
            "relationship_types": list(self.relationship_types),
            "strength": self.strength,
            "is_suspicious": self.is_suspicious,
            "risk_score": self.risk_score,
            "indicators": list(self.indicators),
            "shared_patients": self.shared_patients,
            "referral_frequency": self.referral_frequency,
            "coordination_score": round(self.coordination_score, 3),
            "total_amount": str(self.total_amount),
        }


@dataclass(frozen=True)
class NetworkCluster:
    id: str
    provider_ids: tuple[str, ...]
    connections: tuple[ProviderConnection, ...]
    cluster_risk_score: float
    suspicious_patterns: tuple[str, ...] = ()
    fraud_indicators: frozenset[str] = frozenset()
    total_billed: Decimal = Decimal("0")
    flagged_claims: int = 0
    total_claims: int = 0

    @property
    def size(self) -> int:
        return len(self.provider_ids)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "provider_ids": list(self.provider_ids),
            "connections": [c.to_dict() for c in self.connections],
            "cluster_risk_score": round(self.cluster_risk_score, 1),
            "suspicious_patterns": list(self.suspicious_patterns),
            "fraud_indicators": sorted(self.fraud_indicators),
            "total_billed": str(self.total_billed),
            "flagged_claims": self.flagged_claims,
            "total_claims": self.total_claims,
        }


@dataclass(frozen=True)
class FraudRing:
    cluster_id: str
    provider_ids: tuple[str, ...]
    pattern: str
    confidence: float
    total_amount: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "cluster_id": self.cluster_id,
            "provider_ids": list(self.provider_ids),
            "pattern": self.pattern,
            "confidence": self.confidence,
            "total_amount": str(self.total_amount),
        }


@dataclass(frozen=True)
class ProviderNetworkProfile:
    """Network view of a single provider, consumed by the risk engine."""

    provider_id: str
    network_risk_score: float = 0.0
    total_connections: int = 0
    suspicious_connections: int = 0
    cluster_ids: tuple[str, ...] = ()
    fraud_rings: tuple[str, ...] = ()
    referral_anomalies: int = 0
    recommendations: tuple[str, ...] = ()

    @property
    def in_cluster(self) -> bool:
        return bool(self.cluster_ids)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "network_risk_score": round(self.network_risk_score, 1),
            "total_connections": self.total_connections,
            "suspicious_connections": self.suspicious_connections,
            "cluster_ids": list(self.cluster_ids),
            "fraud_rings": list(self.fraud_rings),
            "referral_anomalies": self.referral_anomalies,
            "recommendations": list(self.recommendations),
        }


@dataclass
class NetworkAnalysisResult:
    company_id: str
    analyzed_at: datetime
    lookback_days: int
    nodes: dict[str, ProviderNode] = field(default_factory=dict)
    connections: list[ProviderConnection] = field(default_factory=list)
    clusters: list[NetworkCluster] = field(default_factory=list)
    fraud_rings: list[FraudRing] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    audit_triggers: list[str] = field(default_factory=list)

    @property
    def suspicious_clusters(self) -> list[NetworkCluster]:
        return [c for c in self.clusters if c.cluster_risk_score > 60]

    @property
    def high_risk_providers(self) -> list[ProviderNode]:
        return [n for n in self.nodes.values() if n.risk_score > 70]

    @property
    def suspicious_connections(self) -> list[ProviderConnection]:
        return [c for c in self.connections if c.is_suspicious]

    def provider_profile(self, provider_id: str) -> ProviderNetworkProfile:
        node = self.nodes.get(provider_id)
        if node is None:
            return ProviderNetworkProfile(provider_id=provider_id)

        connections = [c for c in self.connections if c.involves(provider_id)]
        suspicious = [c for c in connections if c.is_suspicious]
        clusters = [c for c in self.clusters if provider_id in c.provider_ids]
        rings = [r.pattern for r in self.fraud_rings if provider_id in r.provider_ids]
        referral_anomalies = sum(
            1 for c in connections if "HIGH_REFERRAL_FREQUENCY" in c.relationship_types
        )

        max_cluster_risk = max((c.cluster_risk_score for c in clusters), default=0.0)
        network_risk = min(
            100.0,
            node.risk_score
            + len(suspicious) * 10
            + max_cluster_risk
            + min(len(connections) * 2, 30),
        )

        recommendations: list[str] = []
        if node.risk_score > 70:
            recommendations.append("Individual provider audit recommended")
        if len(suspicious) > 3:
            recommendations.append("Review provider relationships and associations")
        if clusters:
            recommendations.append("Investigate cluster membership and network effects")

        return ProviderNetworkProfile(
            provider_id=provider_id,
            network_risk_score=network_risk,
            total_connections=len(connections),
            suspicious_connections=len(suspicious),
            cluster_ids=tuple(c.id for c in clusters),
            fraud_rings=tuple(dict.fromkeys(rings)),
            referral_anomalies=referral_anomalies,
            recommendations=tuple(recommendations),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "company_id": self.company_id,
            "analyzed_at": self.analyzed_at.isoformat(),
            "lookback_days": self.lookback_days,
            "total_providers": len(self.nodes),
            "suspicious_clusters": [c.to_dict() for c in self.suspicious_clusters],
            "high_risk_providers": [n.to_dict() for n in self.high_risk_providers],
            "suspicious_connections": [c.to_dict() for c in self.suspicious_connections],
            "fraud_rings": [r.to_dict() for r in self.fraud_rings],
            "recommendations": list(self.recommendations),
            "audit_triggers": list(self.audit_triggers),
        }
