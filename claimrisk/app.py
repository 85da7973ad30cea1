"""FastAPI service for claim risk scoring.

Run locally with:
    uvicorn claimrisk.app:app --reload --port 8080
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .audit import AuditAction, AuditLog, SQLiteAuditLog
from .claims import ClaimProcessor
from .config import (
    DB_PATH,
    LOG_LEVEL,
    NETWORK_ANALYSIS_COMPANIES,
    RATE_LIMIT,
    ScoringConfig,
    load_scoring_config,
)
from .detectors import PhantomBillingDetector, UpcodingDetector
from .errors import DataUnavailableError, InputValidationError, PersistenceError
from .models import Claim, ClaimSubmission, LineItem
from .network import NetworkSnapshotCache, ProviderNetworkAnalyzer
from .scheduler import NetworkAnalysisScheduler
from .scoring import ExternalRiskAdvisor, RiskScoringEngine, default_advisors
from .store import ClaimStore, SQLiteClaimStore

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 100

router = APIRouter()


@dataclass
class Services:
    """Collaborators shared by every request."""

    store: ClaimStore
    config: ScoringConfig
    snapshots: NetworkSnapshotCache
    engine: RiskScoringEngine
    processor: ClaimProcessor
    upcoding: UpcodingDetector
    phantom: PhantomBillingDetector
    scheduler: NetworkAnalysisScheduler
    audit_log: AuditLog | None = None


def build_services(
    store: ClaimStore | None = None,
    config: ScoringConfig | None = None,
    audit_log: AuditLog | None = None,
    advisors: list[ExternalRiskAdvisor] | None = None,
) -> Services:
    store = store or SQLiteClaimStore(DB_PATH)
    config = config or load_scoring_config()
    if audit_log is None:
        audit_log = SQLiteAuditLog(DB_PATH)
    advisors = default_advisors() if advisors is None else advisors

    snapshots = NetworkSnapshotCache()
    engine = RiskScoringEngine(store, config, snapshots=snapshots, advisors=advisors)
    return Services(
        store=store,
        config=config,
        snapshots=snapshots,
        engine=engine,
        processor=ClaimProcessor(
            store, config, engine=engine, snapshots=snapshots, audit_log=audit_log
        ),
        upcoding=UpcodingDetector(store, config),
        phantom=PhantomBillingDetector(store, config),
        scheduler=NetworkAnalysisScheduler(
            ProviderNetworkAnalyzer(store, config), snapshots, audit_log=audit_log
        ),
        audit_log=audit_log,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


# Pydantic models


class LineItemRequest(BaseModel):
    procedure_code: str
    modifiers: list[str] = []
    units: int = 1
    unit_cost: Decimal = Decimal("0")
    diagnosis_codes: list[str] = []

    @field_validator("procedure_code")
    @classmethod
    def validate_procedure_code(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("procedure_code is required")
        return v.strip()

    @field_validator("units")
    @classmethod
    def validate_units(cls, v: int) -> int:
        if v < 1:
            raise ValueError("units must be at least 1")
        return v

    @field_validator("unit_cost")
    @classmethod
    def validate_unit_cost(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("unit_cost must be non-negative")
        return v

    def to_line_item(self) -> LineItem:
        return LineItem(
            procedure_code=self.procedure_code,
            modifiers=frozenset(self.modifiers),
            units=self.units,
            unit_cost=self.unit_cost,
            diagnosis_codes=tuple(self.diagnosis_codes),
        )


class ClaimRequest(BaseModel):
    """Claim submission payload."""

    patient_id: str
    provider_id: str
    service_date: date
    line_items: list[LineItemRequest]
    company_id: str = "default"

    @field_validator("line_items")
    @classmethod
    def validate_line_items(cls, v: list[LineItemRequest]) -> list[LineItemRequest]:
        if not v:
            raise ValueError("At least one line item is required")
        return v

    def to_submission(self) -> ClaimSubmission:
        return ClaimSubmission(
            patient_id=self.patient_id,
            provider_id=self.provider_id,
            service_date=self.service_date,
            line_items=tuple(item.to_line_item() for item in self.line_items),
            company_id=self.company_id,
        )


class BatchClaimRequest(BaseModel):
    claims: list[ClaimRequest]

    @field_validator("claims")
    @classmethod
    def validate_batch_size(cls, v: list[ClaimRequest]) -> list[ClaimRequest]:
        if len(v) > MAX_BATCH_SIZE:
            raise ValueError(f"Batch size too large. Maximum {MAX_BATCH_SIZE} claims per request.")
        return v


class BatchRiskRequest(BaseModel):
    claim_ids: list[str]

    @field_validator("claim_ids")
    @classmethod
    def validate_batch_size(cls, v: list[str]) -> list[str]:
        if len(v) > MAX_BATCH_SIZE:
            raise ValueError(f"Batch size too large. Maximum {MAX_BATCH_SIZE} claims per request.")
        return v


def claim_to_dict(claim: Claim) -> dict[str, Any]:
    return {
        "id": claim.id,
        "claim_number": claim.claim_number,
        "company_id": claim.company_id,
        "patient_id": claim.patient_id,
        "provider_id": claim.provider_id,
        "service_date": claim.service_date.isoformat(),
        "billed_amount": str(claim.billed_amount),
        "status": claim.status.value,
        "risk_score": claim.risk_score,
        "risk_level": claim.risk_level.value if claim.risk_level else None,
        "fraud_types": sorted(t.value for t in claim.fraud_types),
        "line_items": [item.to_dict() for item in claim.line_items],
        "created_at": claim.created_at.isoformat(),
    }


def _submission(claim_request: ClaimRequest) -> ClaimSubmission:
    try:
        return claim_request.to_submission()
    except InputValidationError as e:
        raise HTTPException(status_code=400, detail={"message": str(e), "field": e.field})


# Endpoints


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    services = get_services(request)
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "advisors": [advisor.name for advisor in services.engine.advisors],
        "scheduler_running": services.scheduler.is_running,
    }


@router.post("/api/claims")
def submit_claim(request: Request, claim_request: ClaimRequest):
    """Score and persist a new claim."""
    services = get_services(request)
    submission = _submission(claim_request)
    try:
        result = services.processor.process_claim(submission)
    except PersistenceError as e:
        logger.error(f"Claim analysis not saved: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "detail": str(e),
                "analysis": e.result.to_dict() if e.result else None,
            },
        )
    return result.to_dict()


@router.post("/api/claims/batch")
def submit_claim_batch(request: Request, batch_request: BatchClaimRequest):
    """Score and persist several claims; failures are reported per item."""
    services = get_services(request)
    submissions: list[ClaimSubmission] = []
    errors: dict[int, str] = {}
    for index, claim_request in enumerate(batch_request.claims):
        try:
            submissions.append(claim_request.to_submission())
        except InputValidationError as e:
            errors[index] = str(e)

    valid_indexes = [i for i in range(len(batch_request.claims)) if i not in errors]
    outcomes = services.processor.process_batch(submissions)

    results: list[dict[str, Any]] = [
        {"index": index, "error": message} for index, message in errors.items()
    ]
    for outcome in outcomes:
        index = valid_indexes[outcome.index]
        if outcome.succeeded:
            results.append({"index": index, "result": outcome.result.to_dict()})
        else:
            results.append({"index": index, "error": outcome.error})
    results.sort(key=lambda item: item["index"])

    return {
        "total": len(batch_request.claims),
        "succeeded": sum(1 for item in results if "result" in item),
        "results": results,
    }


@router.post("/api/claims/realtime")
def realtime_risk(request: Request, claim_request: ClaimRequest):
    """Cheap risk estimate for a submission; nothing is persisted."""
    services = get_services(request)
    return services.engine.score_real_time(_submission(claim_request)).to_dict()


@router.post("/api/claims/batch-risk")
def batch_risk(request: Request, batch_request: BatchRiskRequest):
    services = get_services(request)
    scores = services.engine.batch_score(batch_request.claim_ids)
    return {
        "requested": len(batch_request.claim_ids),
        "scored": len(scores),
        "scores": {claim_id: score.to_dict() for claim_id, score in scores.items()},
    }


@router.get("/api/claims/{claim_id}")
def get_claim(request: Request, claim_id: str):
    services = get_services(request)
    claim = services.store.get_claim(claim_id)
    if claim is None:
        raise HTTPException(status_code=404, detail="Claim not found")
    data = claim_to_dict(claim)
    data["alerts"] = [alert.to_dict() for alert in services.store.get_alerts(claim_id)]
    return data


@router.get("/api/claims/{claim_id}/risk")
def get_claim_risk(request: Request, claim_id: str):
    """Full five-dimension risk score for a stored claim."""
    services = get_services(request)
    try:
        return services.engine.score_claim(claim_id).to_dict()
    except DataUnavailableError:
        raise HTTPException(status_code=404, detail="Claim not found")


@router.get("/api/providers/{provider_id}/upcoding")
def provider_upcoding(
    request: Request,
    provider_id: str,
    lookback_days: int = Query(default=90, ge=1, le=730),
):
    services = get_services(request)
    if services.store.get_provider(provider_id) is None:
        raise HTTPException(status_code=404, detail="Provider not found")
    return services.upcoding.detect(provider_id, lookback_days).to_dict()


@router.get("/api/providers/{provider_id}/phantom-billing")
def provider_phantom_billing(
    request: Request,
    provider_id: str,
    lookback_days: int = Query(default=90, ge=1, le=730),
):
    services = get_services(request)
    if services.store.get_provider(provider_id) is None:
        raise HTTPException(status_code=404, detail="Provider not found")
    return services.phantom.detect(provider_id, lookback_days).to_dict()


@router.get("/api/providers/{provider_id}/network-profile")
def provider_network_profile(request: Request, provider_id: str, company_id: str = "default"):
    services = get_services(request)
    return services.snapshots.provider_profile(company_id, provider_id).to_dict()


@router.post("/api/network/{company_id}/analyze")
def analyze_network(request: Request, company_id: str):
    """Run provider network analysis now and publish the snapshot."""
    services = get_services(request)
    return services.scheduler.run_now(company_id).to_dict()


@router.get("/api/network/{company_id}")
def get_network(request: Request, company_id: str):
    services = get_services(request)
    result = services.snapshots.get(company_id)
    if result is None:
        raise HTTPException(status_code=404, detail="No network analysis for company")
    return result.to_dict()


@router.get("/api/audit")
def list_audit_entries(
    request: Request,
    tenant_id: str | None = None,
    action: AuditAction | None = None,
    resource_id: str | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
):
    services = get_services(request)
    if services.audit_log is None:
        return {"entries": [], "total": 0}
    entries = services.audit_log.entries(tenant_id=tenant_id, action=action, resource_id=resource_id)
    return {
        "entries": [entry.to_dict() for entry in entries[-limit:]],
        "total": len(entries),
    }


async def _input_validation_handler(request: Request, exc: InputValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": {"message": str(exc), "field": exc.field}})


def create_app(
    services: Services | None = None,
    start_scheduler: bool = True,
    rate_limit_enabled: bool = True,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Build collaborators and start the network scheduler."""
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services()
        scheduler = app.state.services.scheduler

        if start_scheduler:
            try:
                scheduler.start()
                for company_id in NETWORK_ANALYSIS_COMPANIES:
                    scheduler.schedule_company(company_id)
            except Exception as e:
                logger.warning(f"Scheduler initialization failed: {e}")

        yield

        if scheduler.is_running:
            try:
                scheduler.shutdown(wait=True)
            except Exception as e:
                logger.warning(f"Scheduler shutdown error: {e}")

    app = FastAPI(
        title="Claim Risk Scoring",
        description="Fraud-risk scoring for healthcare insurance claims",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    # Each app owns its limiter and counters
    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[RATE_LIMIT],
        enabled=rate_limit_enabled,
    )
    limiter.exempt(health_check)
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(InputValidationError, _input_validation_handler)

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8080)
