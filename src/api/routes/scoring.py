"""Priority and risk scoring endpoints."""

from datetime import timedelta

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.db.database import get_session
from src.domains.scoring.batch import BatchJobCoordinator
from src.domains.scoring.enrichment import EnricherSettings, ExplanationEnricher
from src.domains.scoring.models import (
    AlertReviewRequest,
    AlertStatus,
    BatchRequest,
    BatchSummary,
    EntityKind,
    OverrideRequest,
    ScoreRequest,
    SimulationRequest,
    SimulationResult,
    config_kind_for,
)
from src.domains.scoring.pipeline import ScoringPipeline
from src.domains.scoring.repository import ScoringRepository, SqlScoringRepository

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/scoring", tags=["scoring"])

_enricher = ExplanationEnricher(
    EnricherSettings(
        api_key=settings.scoring_model_api_key,
        base_url=settings.scoring_model_base_url,
        model=settings.scoring_model_name,
        timeout_seconds=settings.scoring_model_timeout_seconds,
    )
)


async def get_repository(
    session: AsyncSession = Depends(get_session),  # noqa: B008
) -> ScoringRepository:
    return SqlScoringRepository(session)


def get_enricher() -> ExplanationEnricher:
    return _enricher


def get_pipeline(
    repo: ScoringRepository = Depends(get_repository),  # noqa: B008
    enricher: ExplanationEnricher = Depends(get_enricher),  # noqa: B008
) -> ScoringPipeline:
    return ScoringPipeline(repo, enricher=enricher)


def get_coordinator(
    repo: ScoringRepository = Depends(get_repository),  # noqa: B008
    pipeline: ScoringPipeline = Depends(get_pipeline),  # noqa: B008
) -> BatchJobCoordinator:
    return BatchJobCoordinator(
        repo,
        pipeline,
        chunk_size=settings.batch_chunk_size,
        error_log_cap=settings.batch_error_log_cap,
        stale_after=timedelta(seconds=settings.batch_stale_job_seconds),
    )


@router.post("/score")
async def score_entity(
    request: ScoreRequest,
    pipeline: ScoringPipeline = Depends(get_pipeline),  # noqa: B008
) -> dict:
    record = await pipeline.score(request.entity_kind, request.entity_id)
    return record.model_dump(mode="json")


@router.post("/batch")
async def run_batch(
    request: BatchRequest,
    coordinator: BatchJobCoordinator = Depends(get_coordinator),  # noqa: B008
) -> BatchSummary:
    return await coordinator.run(request.scope, resume_job_id=request.resume_job_id)


@router.get("/jobs/{job_id}")
async def get_job(
    job_id: str,
    coordinator: BatchJobCoordinator = Depends(get_coordinator),  # noqa: B008
) -> dict:
    job = await coordinator.get_job(job_id)
    return job.model_dump(mode="json", exclude={"config_snapshot"})


@router.post("/jobs/reap")
async def reap_stale_jobs(
    max_age_seconds: int | None = Query(default=None, ge=60),
    coordinator: BatchJobCoordinator = Depends(get_coordinator),  # noqa: B008
) -> dict:
    max_age = timedelta(seconds=max_age_seconds) if max_age_seconds else None
    return {"reaped": await coordinator.reap_stale_jobs(max_age)}


@router.get("/{entity_kind}/{entity_id}/history")
async def score_history(
    entity_kind: EntityKind,
    entity_id: str,
    limit: int = Query(default=20, ge=1, le=200),
    repo: ScoringRepository = Depends(get_repository),  # noqa: B008
) -> dict:
    records = await repo.score_history(entity_kind, entity_id, limit=limit)
    return {
        "entity_kind": entity_kind.value,
        "entity_id": entity_id,
        "records": [r.model_dump(mode="json") for r in records],
    }


@router.post("/{entity_kind}/{entity_id}/override")
async def override_score(
    entity_kind: EntityKind,
    entity_id: str,
    request: OverrideRequest,
    repo: ScoringRepository = Depends(get_repository),  # noqa: B008
    pipeline: ScoringPipeline = Depends(get_pipeline),  # noqa: B008
) -> dict:
    config = await repo.get_active_config(config_kind_for(entity_kind))
    # Overrides must target an entity that exists.
    await pipeline.fetch(entity_kind, entity_id)
    record = await pipeline.store.record_override(
        entity_kind,
        entity_id,
        band=request.band,
        reason=request.reason,
        actor_id=request.actor_id,
        config=config,
        score=request.score,
    )
    return record.model_dump(mode="json")


@router.get("/alerts")
async def list_alerts(
    status: AlertStatus | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    repo: ScoringRepository = Depends(get_repository),  # noqa: B008
) -> dict:
    alerts = await repo.list_alerts(status=status, limit=limit)
    return {"alerts": [a.model_dump(mode="json") for a in alerts], "count": len(alerts)}


@router.post("/alerts/{alert_id}/review")
async def review_alert(
    alert_id: str,
    request: AlertReviewRequest,
    pipeline: ScoringPipeline = Depends(get_pipeline),  # noqa: B008
) -> dict:
    alert = await pipeline.store.review_alert(
        alert_id, request.status, request.reviewer_id, request.notes
    )
    return alert.model_dump(mode="json")


@router.post("/simulate")
async def simulate_weights(
    request: SimulationRequest,
    pipeline: ScoringPipeline = Depends(get_pipeline),  # noqa: B008
) -> SimulationResult:
    result = await pipeline.simulate(request.entity_kind, request.entity_ids, request.weights)
    logger.info(
        "weights_simulated",
        entity_kind=request.entity_kind.value,
        scored=result.scored,
        average_score_change=result.average_score_change,
    )
    return result
