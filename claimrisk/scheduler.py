"""APScheduler wrapper for periodic provider network analysis.

Pairwise provider analysis is too expensive to run per claim, so it runs
per company on a cron schedule and publishes its result to the snapshot
cache that the risk engine reads from.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from .audit import AuditAction, AuditLog
from .config import NETWORK_ANALYSIS_CRON
from .network import NetworkAnalysisResult, NetworkSnapshotCache, ProviderNetworkAnalyzer

logger = logging.getLogger(__name__)


def parse_cron(cron_expression: str) -> CronTrigger:
    """Parse a 5-field (or 6-field, with seconds) cron expression."""
    parts = cron_expression.strip().split()

    if len(parts) == 5:
        return CronTrigger.from_crontab(cron_expression, timezone="UTC")
    if len(parts) == 6:
        return CronTrigger(
            second=parts[0],
            minute=parts[1],
            hour=parts[2],
            day=parts[3],
            month=parts[4],
            day_of_week=parts[5],
            timezone="UTC",
        )
    raise ValueError(
        f"Invalid cron expression: {cron_expression}. "
        "Expected 5 or 6 space-separated fields."
    )


class NetworkAnalysisScheduler:
    """Runs ProviderNetworkAnalyzer per company on a cron schedule."""

    def __init__(
        self,
        analyzer: ProviderNetworkAnalyzer,
        snapshots: NetworkSnapshotCache,
        audit_log: AuditLog | None = None,
        cron_expression: str = NETWORK_ANALYSIS_CRON,
        actor: str = "network-scheduler",
    ) -> None:
        self.analyzer = analyzer
        self.snapshots = snapshots
        self.audit_log = audit_log
        self.cron_expression = cron_expression
        self.actor = actor
        self._scheduler: BackgroundScheduler | None = None
        self._started = False

    def _create_scheduler(self) -> BackgroundScheduler:
        job_defaults = {
            "coalesce": True,  # Combine missed runs into one
            "max_instances": 1,
            "misfire_grace_time": 3600,
        }
        return BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(max_workers=2)},
            job_defaults=job_defaults,
            timezone="UTC",
        )

    def start(self) -> None:
        if self._started:
            logger.warning("Network scheduler already started")
            return

        self._scheduler = self._create_scheduler()
        self._scheduler.start()
        self._started = True
        logger.info("Network scheduler started")

    def shutdown(self, wait: bool = True) -> None:
        if self._scheduler and self._started:
            self._scheduler.shutdown(wait=wait)
            self._started = False
            logger.info("Network scheduler shutdown")

    @property
    def is_running(self) -> bool:
        return self._started and self._scheduler is not None

    @staticmethod
    def job_id(company_id: str) -> str:
        return f"network_{company_id}"

    def schedule_company(self, company_id: str, cron_expression: str | None = None) -> str:
        """Add or replace the analysis job for a company."""
        if not self._scheduler:
            raise RuntimeError("Scheduler not started")

        cron_expression = cron_expression or self.cron_expression
        job_id = self.job_id(company_id)
        self._scheduler.add_job(
            self.run_now,
            trigger=parse_cron(cron_expression),
            id=job_id,
            kwargs={"company_id": company_id},
            replace_existing=True,
        )
        logger.info(f"Scheduled network analysis for {company_id} with schedule: {cron_expression}")
        return job_id

    def unschedule_company(self, company_id: str) -> bool:
        if not self._scheduler or self._scheduler.get_job(self.job_id(company_id)) is None:
            return False
        self._scheduler.remove_job(self.job_id(company_id))
        logger.info(f"Removed network analysis job for {company_id}")
        return True

    def get_jobs(self) -> list[dict[str, Any]]:
        if not self._scheduler:
            return []
        return [
            {
                "id": job.id,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger),
            }
            for job in self._scheduler.get_jobs()
        ]

    def run_now(self, company_id: str, as_of: datetime | None = None) -> NetworkAnalysisResult:
        """Analyze a company's provider network and publish the snapshot."""
        logger.info(f"Running provider network analysis for {company_id}")
        result = self.analyzer.analyze(company_id, as_of=as_of)
        self.snapshots.put(result)
        logger.info(
            f"Network analysis for {company_id}: {len(result.nodes)} providers, "
            f"{len(result.clusters)} clusters, {len(result.fraud_rings)} fraud rings"
        )

        if self.audit_log is not None:
            try:
                self.audit_log.record(
                    tenant_id=company_id,
                    actor=self.actor,
                    action=AuditAction.NETWORK_ANALYZED,
                    resource_type="network",
                    resource_id=company_id,
                    details={
                        "providers": len(result.nodes),
                        "clusters": len(result.clusters),
                        "suspicious_clusters": len(result.suspicious_clusters),
                        "fraud_rings": [ring.pattern for ring in result.fraud_rings],
                    },
                )
            except Exception as e:
                logger.warning(f"Audit log write failed for network analysis of {company_id}: {e}")

        return result
