"""Latest network analysis per company.

Claim scoring reads provider network views from here; it never runs the
pairwise analysis inline.
"""

from __future__ import annotations

import threading

from .models import NetworkAnalysisResult, ProviderNetworkProfile


class NetworkSnapshotCache:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._results: dict[str, NetworkAnalysisResult] = {}

    def put(self, result: NetworkAnalysisResult) -> None:
        with self._lock:
            self._results[result.company_id] = result

    def get(self, company_id: str) -> NetworkAnalysisResult | None:
        with self._lock:
            return self._results.get(company_id)

    def provider_profile(self, company_id: str, provider_id: str) -> ProviderNetworkProfile:
        """Provider view from the latest snapshot, empty if none has run yet."""
        result = self.get(company_id)
        if result is None:
            return ProviderNetworkProfile(provider_id=provider_id)
        return result.provider_profile(provider_id)

    def clear(self) -> None:
        with self._lock:
            self._results.clear()
