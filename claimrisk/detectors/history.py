"""Claim history loading shared by all detectors of one scoring run.

The loader fetches the provider record, the provider's claims in the
lookback window and the patient records behind those claims once. Every
detector then works from the same ClaimHistory instead of querying the
store again.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from ..models import Claim, PatientRecord, ProviderRecord
from ..store.base import ClaimStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClaimHistory:
    provider_id: str
    as_of: datetime
    lookback_days: int
    provider: ProviderRecord | None = None
    claims: tuple[Claim, ...] = ()
    patients: dict[str, PatientRecord] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.claims

    @property
    def since(self) -> datetime:
        return self.as_of - timedelta(days=self.lookback_days)

    def window(self, lookback_days: int) -> ClaimHistory:
        """Narrow the history to a shorter lookback ending at as_of."""
        if lookback_days >= self.lookback_days:
            return self
        since = self.as_of - timedelta(days=lookback_days)
        return ClaimHistory(
            provider_id=self.provider_id,
            as_of=self.as_of,
            lookback_days=lookback_days,
            provider=self.provider,
            claims=tuple(c for c in self.claims if c.created_at >= since),
            patients=self.patients,
        )

    @property
    def patient_ids(self) -> list[str]:
        return list(dict.fromkeys(c.patient_id for c in self.claims))

    def claims_by_service_date(self) -> dict[date, list[Claim]]:
        grouped: dict[date, list[Claim]] = defaultdict(list)
        for claim in self.claims:
            grouped[claim.service_date].append(claim)
        return dict(grouped)

    def units_by_service_date(self) -> dict[date, int]:
        return {
            service_date: sum(c.total_units for c in claims)
            for service_date, claims in self.claims_by_service_date().items()
        }

    def claims_per_patient(self) -> dict[str, int]:
        counts: dict[str, int] = defaultdict(int)
        for claim in self.claims:
            counts[claim.patient_id] += 1
        return dict(counts)


class ClaimHistoryLoader:
    def __init__(self, store: ClaimStore) -> None:
        self.store = store

    def load(
        self,
        provider_id: str,
        lookback_days: int = 90,
        as_of: datetime | None = None,
    ) -> ClaimHistory:
        as_of = as_of or datetime.now(timezone.utc)
        since = as_of - timedelta(days=lookback_days)

        provider = self.store.get_provider(provider_id)
        if provider is None:
            logger.warning(f"Provider {provider_id} not found; detectors will run without it")

        claims = tuple(self.store.provider_claims(provider_id, since, until=as_of))

        patients: dict[str, PatientRecord] = {}
        for patient_id in dict.fromkeys(c.patient_id for c in claims):
            patient = self.store.get_patient(patient_id)
            if patient is not None:
                patients[patient_id] = patient

        return ClaimHistory(
            provider_id=provider_id,
            as_of=as_of,
            lookback_days=lookback_days,
            provider=provider,
            claims=claims,
            patients=patients,
        )
