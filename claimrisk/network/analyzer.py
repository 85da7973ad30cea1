"""Provider network analysis: relationship graph, clustering and fraud rings.

Pairwise comparison of providers is O(n^2), so analysis is always bounded
to one company and one lookback window and runs on its own schedule
rather than inline with claim scoring.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import combinations
from typing import Iterable

import networkx as nx

from ..config import DEFAULT_SCORING_CONFIG, ScoringConfig
from ..models import Claim, PatientRecord, ProviderRecord
from ..store.base import ClaimStore
from .models import (
    FRAUD_RING_ARCHETYPES,
    SUSPICIOUS_RELATIONSHIPS,
    FraudRing,
    NetworkAnalysisResult,
    NetworkCluster,
    ProviderConnection,
    ProviderNode,
)

logger = logging.getLogger(__name__)

CLUSTER_EDGE_MIN_STRENGTH = 30
REFERRAL_FREQUENCY_MIN = 5
COORDINATION_MIN = 0.7
REFERRAL_RELATIONSHIPS = frozenset({"SHARED_PATIENTS", "HIGH_REFERRAL_FREQUENCY"})


def _normalize_address(value: str | None) -> str:
    return " ".join((value or "").lower().split())


def _normalize_phone(value: str | None) -> str:
    return re.sub(r"\D", "", value or "")


def build_node(
    provider: ProviderRecord, claims: Iterable[Claim], flagged_score_min: float = 70
) -> ProviderNode:
    claims = list(claims)
    return ProviderNode(
        provider=provider,
        total_claims=len(claims),
        flagged_claims=sum(1 for c in claims if c.counts_as_flagged(flagged_score_min)),
        total_billed=sum((c.billed_amount for c in claims), Decimal("0")),
        claims_per_patient=dict(Counter(c.patient_id for c in claims)),
        service_dates=frozenset(c.service_date for c in claims),
    )


def build_connection(node1: ProviderNode, node2: ProviderNode) -> ProviderConnection | None:
    """Relationship between two providers, or None if they share nothing."""
    strength = 0.0
    relationship_types: list[str] = []
    indicators: list[str] = []
    codes: set[str] = set()

    address1 = _normalize_address(node1.provider.address)
    if address1 and address1 == _normalize_address(node2.provider.address):
        strength += 30
        relationship_types.append("SHARED_ADDRESS")
        indicators.append("Same business address")
        codes.add("SHARED_ADDRESS")

    phone1 = _normalize_phone(node1.provider.phone)
    if phone1 and phone1 == _normalize_phone(node2.provider.phone):
        strength += 25
        relationship_types.append("SHARED_PHONE")
        indicators.append("Same phone number")
        codes.add("SHARED_PHONE")

    shared = node1.patient_ids & node2.patient_ids
    if shared:
        strength += min(len(shared) * 5, 40)
        relationship_types.append("SHARED_PATIENTS")
        indicators.append(f"{len(shared)} shared patients")
        codes.add("PATIENT_SHARING")

    # Each shared patient moving between the two providers counts as a referral event
    referral_frequency = sum(
        min(node1.claims_per_patient[p], node2.claims_per_patient[p]) for p in shared
    )
    if referral_frequency > REFERRAL_FREQUENCY_MIN:
        strength += min(referral_frequency * 3, 35)
        relationship_types.append("HIGH_REFERRAL_FREQUENCY")
        indicators.append(f"{referral_frequency} referrals between providers")
        codes.add("HIGH_VOLUME_REFERRALS")

    coordination = 0.0
    if node1.service_dates and node2.service_dates:
        common = len(node1.service_dates & node2.service_dates)
        coordination = common / min(len(node1.service_dates), len(node2.service_dates))
    if coordination > COORDINATION_MIN:
        strength += 30
        relationship_types.append("COORDINATED_BILLING")
        indicators.append("Coordinated billing patterns detected")
        codes.add("COORDINATED_BILLING")

    if not relationship_types:
        return None

    strength = min(100.0, strength)
    is_suspicious = strength > 50 or bool(SUSPICIOUS_RELATIONSHIPS & set(relationship_types))
    return ProviderConnection(
        provider1_id=node1.id,
        provider2_id=node2.id,
        relationship_types=tuple(relationship_types),
        strength=strength,
        is_suspicious=is_suspicious,
        risk_score=min(100.0, strength + (20 if is_suspicious else 0)),
        indicators=tuple(indicators),
        indicator_codes=frozenset(codes),
        shared_patients=len(shared),
        referral_frequency=referral_frequency,
        coordination_score=coordination,
        total_amount=node1.total_billed + node2.total_billed,
    )


def cluster_patterns(
    nodes: list[ProviderNode], connections: list[ProviderConnection]
) -> list[str]:
    patterns: list[str] = []
    if len(nodes) > 5:
        patterns.append("LARGE_NETWORK")
    high_risk = sum(1 for n in nodes if n.risk_score > 70)
    if high_risk > len(nodes) * 0.5:
        patterns.append("HIGH_RISK_CONCENTRATION")
    suspicious = sum(1 for c in connections if c.is_suspicious)
    if connections and suspicious > len(connections) * 0.6:
        patterns.append("SUSPICIOUS_NETWORK_STRUCTURE")
    return patterns


def has_circular_referrals(connections: list[ProviderConnection]) -> bool:
    """True when patients circulate through a loop of three or more providers."""
    graph = nx.Graph()
    for connection in connections:
        if REFERRAL_RELATIONSHIPS & set(connection.relationship_types):
            graph.add_edge(connection.provider1_id, connection.provider2_id)
    return any(len(cycle) >= 3 for cycle in nx.cycle_basis(graph))


class ProviderNetworkAnalyzer:
    """Builds the provider relationship graph for one company."""

    def __init__(self, store: ClaimStore, config: ScoringConfig = DEFAULT_SCORING_CONFIG) -> None:
        self.store = store
        self.config = config

    def analyze(
        self,
        company_id: str,
        lookback_days: int | None = None,
        as_of: datetime | None = None,
    ) -> NetworkAnalysisResult:
        lookback_days = lookback_days or self.config.network_lookback_days
        as_of = as_of or datetime.now(timezone.utc)
        since = as_of - timedelta(days=lookback_days)

        nodes: dict[str, ProviderNode] = {}
        claims_by_provider: dict[str, list[Claim]] = {}
        for provider in self.store.list_providers(company_id):
            claims = self.store.provider_claims(provider.id, since, until=as_of)
            if not claims:
                continue
            claims_by_provider[provider.id] = claims
            nodes[provider.id] = build_node(provider, claims, self.config.flagged_score_min)

        connections: list[ProviderConnection] = []
        for id1, id2 in combinations(sorted(nodes), 2):
            connection = build_connection(nodes[id1], nodes[id2])
            if connection is not None:
                connections.append(connection)

        clusters = self._build_clusters(nodes, connections, claims_by_provider)
        fraud_rings = [
            FraudRing(
                cluster_id=cluster.id,
                provider_ids=cluster.provider_ids,
                pattern=archetype.name,
                confidence=archetype.confidence,
                total_amount=cluster.total_billed,
            )
            for cluster in clusters
            for archetype in FRAUD_RING_ARCHETYPES
            if archetype.matches(cluster.size, cluster.fraud_indicators)
        ]

        result = NetworkAnalysisResult(
            company_id=company_id,
            analyzed_at=as_of,
            lookback_days=lookback_days,
            nodes=nodes,
            connections=connections,
            clusters=clusters,
            fraud_rings=fraud_rings,
        )
        result.recommendations = self._recommendations(result)
        result.audit_triggers = self._audit_triggers(result)

        logger.info(
            f"Network analysis for {company_id}: {len(nodes)} providers, "
            f"{len(connections)} connections, {len(clusters)} clusters, "
            f"{len(fraud_rings)} fraud rings"
        )
        return result

    def _build_clusters(
        self,
        nodes: dict[str, ProviderNode],
        connections: list[ProviderConnection],
        claims_by_provider: dict[str, list[Claim]],
    ) -> list[NetworkCluster]:
        graph = nx.Graph()
        graph.add_nodes_from(nodes)
        for connection in connections:
            if connection.strength > CLUSTER_EDGE_MIN_STRENGTH:
                graph.add_edge(connection.provider1_id, connection.provider2_id)

        patient_cache: dict[str, PatientRecord | None] = {}
        clusters: list[NetworkCluster] = []
        for component in nx.connected_components(graph):
            if len(component) < 2:
                continue
            member_ids = tuple(sorted(component))
            members = [nodes[pid] for pid in member_ids]
            cluster_connections = [
                c for c in connections
                if c.provider1_id in component and c.provider2_id in component
            ]
            claims = [c for pid in member_ids for c in claims_by_provider.get(pid, [])]
            clusters.append(
                self._build_cluster(members, cluster_connections, claims, patient_cache)
            )

        clusters.sort(key=lambda c: c.cluster_risk_score, reverse=True)
        return clusters

    def _build_cluster(
        self,
        members: list[ProviderNode],
        connections: list[ProviderConnection],
        claims: list[Claim],
        patient_cache: dict[str, PatientRecord | None],
    ) -> NetworkCluster:
        total_claims = sum(n.total_claims for n in members)
        flagged_claims = sum(n.flagged_claims for n in members)
        total_billed = sum((n.total_billed for n in members), Decimal("0"))

        avg_node_risk = sum(n.risk_score for n in members) / len(members)
        suspicious_ratio = (
            sum(1 for c in connections if c.is_suspicious) / len(connections) if connections else 0.0
        )
        flagged_ratio = flagged_claims / (total_claims or 1)
        cluster_risk = max(avg_node_risk, suspicious_ratio * 100, flagged_ratio * 100)

        patterns = cluster_patterns(members, connections)

        indicators: set[str] = set()
        for connection in connections:
            indicators |= connection.indicator_codes
        referral_connections = [
            c for c in connections if "HIGH_REFERRAL_FREQUENCY" in c.relationship_types
        ]
        if connections and len(referral_connections) >= len(connections) * 0.5:
            indicators.add("REFERRAL_CONCENTRATION")
        if has_circular_referrals(connections):
            indicators.add("CIRCULAR_REFERRALS")
        if total_claims and total_billed / total_claims > 1000:
            indicators.add("HIGH_VALUE_SERVICES")
        if patterns:
            indicators.add("PATTERN_ANOMALIES")
        if flagged_ratio > 0.3:
            indicators.add("UNNECESSARY_SERVICES")
        indicators |= self._patient_indicators(claims, patient_cache)

        return NetworkCluster(
            id=f"cluster-{members[0].id}",
            provider_ids=tuple(n.id for n in members),
            connections=tuple(connections),
            cluster_risk_score=min(100.0, cluster_risk),
            suspicious_patterns=tuple(patterns),
            fraud_indicators=frozenset(indicators),
            total_billed=total_billed,
            flagged_claims=flagged_claims,
            total_claims=total_claims,
        )

    def _patient_indicators(
        self, claims: list[Claim], patient_cache: dict[str, PatientRecord | None]
    ) -> set[str]:
        records: list[PatientRecord] = []
        for patient_id in dict.fromkeys(c.patient_id for c in claims):
            if patient_id not in patient_cache:
                patient_cache[patient_id] = self.store.get_patient(patient_id)
            record = patient_cache[patient_id]
            if record is not None:
                records.append(record)

        indicators: set[str] = set()
        if not records:
            return indicators
        incomplete = sum(1 for p in records if not p.has_complete_demographics)
        if incomplete > len(records) * 0.2:
            indicators.add("FAKE_PATIENTS")
        cities = {p.city.strip().lower() for p in records if p.city}
        if len(cities) >= 5:
            indicators.add("GEOGRAPHIC_SPREAD")
        return indicators

    @staticmethod
    def _recommendations(result: NetworkAnalysisResult) -> list[str]:
        recommendations: list[str] = []
        if result.fraud_rings:
            recommendations.append("Immediate investigation of potential fraud rings")
            recommendations.append("Consider coordinated audit approach")
        if result.suspicious_clusters:
            recommendations.append("Review provider clusters for coordinated fraud")
            recommendations.append("Analyze referral patterns within clusters")
        high_risk = result.high_risk_providers
        if high_risk:
            recommendations.append(f"Enhanced monitoring of {len(high_risk)} high-risk providers")
            recommendations.append("Consider targeted audits for high-risk providers")
        return recommendations

    @staticmethod
    def _audit_triggers(result: NetworkAnalysisResult) -> list[str]:
        triggers: list[str] = []
        if result.fraud_rings:
            triggers.extend(["FRAUD_RING_DETECTED", "COORDINATED_INVESTIGATION_REQUIRED"])
        suspicious = result.suspicious_clusters
        if suspicious:
            triggers.append("SUSPICIOUS_CLUSTER_FOUND")
        if any(c.cluster_risk_score > 80 for c in suspicious):
            triggers.append("HIGH_RISK_CLUSTER_ALERT")
        return triggers
