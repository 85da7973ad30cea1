"""Provider relationship graph analysis."""

from .analyzer import ProviderNetworkAnalyzer
from .models import (
    FraudRing,
    NetworkAnalysisResult,
    NetworkCluster,
    ProviderConnection,
    ProviderNetworkProfile,
    ProviderNode,
)
from .snapshots import NetworkSnapshotCache

__all__ = [
    "FraudRing",
    "NetworkAnalysisResult",
    "NetworkCluster",
    "NetworkSnapshotCache",
    "ProviderConnection",
    "ProviderNetworkAnalyzer",
    "ProviderNetworkProfile",
    "ProviderNode",
]
