"""Batch scoring over a scope (period, plan or the scholar population)."""

import uuid
from datetime import UTC, datetime, timedelta

import structlog

from .config import WeightConfig
from .errors import JobNotFound, ScopeBusy, ScopeResolutionFailure
from .models import (
    BatchJob,
    BatchSummary,
    JobStatus,
    ScoringScope,
    config_kind_for,
)
from .pipeline import ScoringPipeline
from .repository import ScoringRepository

logger = structlog.get_logger()

DEFAULT_CHUNK_SIZE = 50
DEFAULT_ERROR_LOG_CAP = 100
DEFAULT_STALE_AFTER = timedelta(hours=2)


def _summary(job: BatchJob) -> BatchSummary:
    return BatchSummary(
        job_id=job.job_id,
        status=job.status,
        total_items=job.total_items,
        processed_items=job.processed_items,
        success_count=job.success_count,
        error_count=job.error_count,
    )


class BatchJobCoordinator:
    """Runs the scoring pipeline over every entity of a scope.

    Items are processed sequentially in chunks. A failing item is counted and
    logged but never aborts the run; progress is committed after each chunk so
    a crashed run can be resumed from its job id.
    """

    def __init__(
        self,
        repository: ScoringRepository,
        pipeline: ScoringPipeline,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        error_log_cap: int = DEFAULT_ERROR_LOG_CAP,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
    ) -> None:
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if error_log_cap < 1:
            raise ValueError(f"error_log_cap must be positive, got {error_log_cap}")
        self._repo = repository
        self._pipeline = pipeline
        self._chunk_size = chunk_size
        self._error_log_cap = error_log_cap
        self._stale_after = stale_after

    async def run(self, scope: ScoringScope, resume_job_id: str | None = None) -> BatchSummary:
        kind = scope.entity_kind

        if resume_job_id:
            job = await self._load_resumable(resume_job_id, scope)
            config = WeightConfig.from_row(job.config_snapshot)
        else:
            # Config problems are fatal before any job row exists.
            config = await self._repo.get_active_config(config_kind_for(kind))
            await self._guard_scope(scope)
            job = BatchJob(
                job_id=str(uuid.uuid4()),
                scope_key=scope.key,
                entity_kind=kind,
                config_version=config.version,
                config_snapshot=config.to_row(),
                started_at=datetime.now(UTC),
            )
            await self._repo.create_job(job)
            await self._repo.commit()

        log = logger.bind(job_id=job.job_id, scope=scope.key)

        try:
            entity_ids = await self._repo.resolve_scope(scope)
        except Exception as e:
            await self._repo.rollback()
            job.status = JobStatus.FAILED
            job.completed_at = datetime.now(UTC)
            self._log_error(job, None, e)
            await self._save(job)
            log.error("batch_scope_resolution_failed", error=str(e))
            raise ScopeResolutionFailure(f"Could not resolve scope {scope.key}: {e}") from e

        if resume_job_id:
            log.info(
                "batch_resumed",
                processed_items=job.processed_items,
                total_items=job.total_items,
            )
        else:
            job.total_items = len(entity_ids)
            await self._save(job)
            log.info("batch_started", total_items=job.total_items, config_version=config.version)

        # The id list is ordered, so positions before processed_items are done.
        remaining = entity_ids[job.processed_items : max(job.total_items, job.processed_items)]
        for start in range(0, len(remaining), self._chunk_size):
            chunk = remaining[start : start + self._chunk_size]
            for entity_id in chunk:
                try:
                    await self._pipeline.score_entity(kind, entity_id, config, job_id=job.job_id)
                    job.success_count += 1
                except Exception as e:
                    await self._repo.rollback()
                    job.error_count += 1
                    self._log_error(job, entity_id, e)
                    log.warning(
                        "batch_item_failed",
                        entity_id=entity_id,
                        error_type=type(e).__name__,
                        error=str(e),
                    )
                job.processed_items += 1

            await self._save(job)
            log.info(
                "batch_chunk_completed",
                processed_items=job.processed_items,
                total_items=job.total_items,
            )

        job.status = JobStatus.COMPLETED
        job.completed_at = datetime.now(UTC)
        await self._save(job)

        log.info(
            "batch_completed",
            total_items=job.total_items,
            success_count=job.success_count,
            error_count=job.error_count,
        )
        return _summary(job)

    async def get_job(self, job_id: str) -> BatchJob:
        job = await self._repo.get_job(job_id)
        if job is None:
            raise JobNotFound(f"Scoring job {job_id} not found")
        return job

    async def reap_stale_jobs(self, max_age: timedelta | None = None) -> int:
        """Mark running jobs older than ``max_age`` as failed. Returns the count."""
        cutoff = datetime.now(UTC) - (max_age or self._stale_after)
        reaped = 0
        for job in await self._repo.running_jobs():
            if job.started_at < cutoff:
                await self._abandon(job)
                reaped += 1
        if reaped:
            logger.warning("stale_jobs_reaped", count=reaped)
        return reaped

    async def _guard_scope(self, scope: ScoringScope) -> None:
        cutoff = datetime.now(UTC) - self._stale_after
        for job in await self._repo.running_jobs(scope.key):
            if job.started_at < cutoff:
                await self._abandon(job)
                continue
            raise ScopeBusy(f"Job {job.job_id} is already running for scope {scope.key}")

    async def _load_resumable(self, job_id: str, scope: ScoringScope) -> BatchJob:
        job = await self.get_job(job_id)
        if job.status != JobStatus.RUNNING:
            raise ValueError(f"Job {job_id} is {job.status.value}, only running jobs can resume")
        if job.scope_key != scope.key:
            raise ValueError(f"Job {job_id} belongs to scope {job.scope_key}, not {scope.key}")
        return job

    async def _abandon(self, job: BatchJob) -> None:
        job.status = JobStatus.FAILED
        job.completed_at = datetime.now(UTC)
        job.error_log = (job.error_log + [{"entity_id": None, "error": "abandoned"}])[
            -self._error_log_cap :
        ]
        await self._save(job)
        logger.warning("batch_job_abandoned", job_id=job.job_id, scope=job.scope_key)

    def _log_error(self, job: BatchJob, entity_id: str | None, error: Exception) -> None:
        entry = {"entity_id": entity_id, "error": f"{type(error).__name__}: {error}"}
        job.error_log = (job.error_log + [entry])[-self._error_log_cap :]

    async def _save(self, job: BatchJob) -> None:
        await self._repo.save_job_progress(job)
        await self._repo.commit()
