"""Data access for the scoring engine.

``ScoringRepository`` is the seam between the orchestration layer (store,
pipeline, batch coordinator) and persistence. ``SqlScoringRepository`` is the
PostgreSQL implementation over an async SQLAlchemy session.
"""

from abc import ABC, abstractmethod
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models import (
    AcademicEventDB,
    AcademicModuleDB,
    AcademicTermDB,
    CompetencyDB,
    CourseCategoryDB,
    CourseDB,
    ScholarRecordDB,
    ScoreAlertDB,
    ScoreRecordDB,
    ScoringJobDB,
    TnaItemDB,
    TnaSubmissionDB,
    TrainingPlanItemDB,
    WeightConfigDB,
)

from .config import WeightConfig
from .errors import ConfigMissing
from .models import (
    AlertStatus,
    BatchJob,
    ConfigKind,
    EntityKind,
    FactorContribution,
    JobStatus,
    ScopeType,
    ScoreAlert,
    ScoreRecord,
    ScoringScope,
)

logger = structlog.get_logger()

SUBMISSION_STATES_IN_SCOPE = ("approved", "locked")
SCHOLAR_STATES_IN_SCOPE = ("active", "on_leave")

# Denormalized "current band" column per entity kind.
_BAND_COLUMNS = {
    EntityKind.TRAINING_NEED: (TnaItemDB, "priority_band"),
    EntityKind.PLAN_ITEM: (TrainingPlanItemDB, "priority_band"),
    EntityKind.SCHOLAR: (ScholarRecordDB, "risk_level"),
}


class ScoringRepository(ABC):
    """Persistence operations the scoring engine depends on."""

    @abstractmethod
    async def get_active_config(self, kind: ConfigKind) -> WeightConfig: ...

    @abstractmethod
    async def fetch_entity(self, kind: EntityKind, entity_id: str) -> dict[str, Any] | None: ...

    @abstractmethod
    async def resolve_scope(self, scope: ScoringScope) -> list[str]: ...

    @abstractmethod
    async def latest_score(
        self, kind: EntityKind, entity_id: str, include_overrides: bool = False
    ) -> ScoreRecord | None: ...

    @abstractmethod
    async def score_history(
        self, kind: EntityKind, entity_id: str, limit: int = 20
    ) -> list[ScoreRecord]: ...

    @abstractmethod
    async def add_score(self, record: ScoreRecord) -> ScoreRecord: ...

    @abstractmethod
    async def add_alert(self, alert: ScoreAlert) -> ScoreAlert: ...

    @abstractmethod
    async def get_alert(self, alert_id: str) -> ScoreAlert | None: ...

    @abstractmethod
    async def save_alert_review(self, alert: ScoreAlert) -> None: ...

    @abstractmethod
    async def list_alerts(
        self, status: AlertStatus | None = None, limit: int = 100
    ) -> list[ScoreAlert]: ...

    @abstractmethod
    async def set_current_band(self, kind: EntityKind, entity_id: str, band: str) -> None: ...

    @abstractmethod
    async def create_job(self, job: BatchJob) -> None: ...

    @abstractmethod
    async def save_job_progress(self, job: BatchJob) -> None: ...

    @abstractmethod
    async def get_job(self, job_id: str) -> BatchJob | None: ...

    @abstractmethod
    async def running_jobs(self, scope_key: str | None = None) -> list[BatchJob]: ...

    @abstractmethod
    async def commit(self) -> None: ...

    @abstractmethod
    async def rollback(self) -> None: ...


def _record_from_row(row: ScoreRecordDB) -> ScoreRecord:
    return ScoreRecord(
        id=row.id,
        entity_kind=EntityKind(row.entity_kind),
        entity_id=row.entity_id,
        score=row.score,
        band=row.band,
        factors=[FactorContribution.model_validate(f) for f in row.factors or []],
        explanation=row.explanation or "",
        model_version=row.model_version,
        config_version=row.config_version,
        previous_band=row.previous_band,
        feature_snapshot=row.feature_snapshot or {},
        job_id=row.job_id,
        is_override=row.is_override,
        override_by=row.override_by,
        override_reason=row.override_reason,
        scored_at=row.scored_at,
    )


def _alert_from_row(row: ScoreAlertDB) -> ScoreAlert:
    return ScoreAlert(
        alert_id=row.alert_id,
        entity_kind=EntityKind(row.entity_kind),
        entity_id=row.entity_id,
        score_record_id=row.score_record_id,
        previous_band=row.previous_band,
        new_band=row.new_band,
        alert_type=row.alert_type,
        status=row.status,
        reviewed_by=row.reviewed_by,
        review_notes=row.review_notes,
        reviewed_at=row.reviewed_at,
        created_at=row.created_at,
    )


def _job_from_row(row: ScoringJobDB) -> BatchJob:
    return BatchJob(
        job_id=row.job_id,
        scope_key=row.scope_key,
        entity_kind=EntityKind(row.entity_kind),
        status=JobStatus(row.status),
        total_items=row.total_items,
        processed_items=row.processed_items,
        success_count=row.success_count,
        error_count=row.error_count,
        error_log=list(row.error_log or []),
        config_version=row.config_version,
        config_snapshot=row.config_snapshot or {},
        started_at=row.started_at,
        completed_at=row.completed_at,
    )


def _columns(row: Any, *names: str) -> dict[str, Any] | None:
    if row is None:
        return None
    return {name: getattr(row, name) for name in names}


class SqlScoringRepository(ScoringRepository):
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # --- config -----------------------------------------------------------

    async def get_active_config(self, kind: ConfigKind) -> WeightConfig:
        stmt = (
            select(WeightConfigDB)
            .where(WeightConfigDB.kind == kind.value, WeightConfigDB.is_active.is_(True))
            .order_by(WeightConfigDB.updated_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        row = result.scalars().first()
        if row is None:
            raise ConfigMissing(f"No active {kind.value} weight config found")

        config = WeightConfig.from_row(
            {
                "kind": row.kind,
                "version": row.version,
                "weights": row.weights,
                "thresholds": row.thresholds,
                "bands": row.bands,
                "alert_band": row.alert_band,
                **(
                    {"ai_overrides_score": row.ai_overrides_score}
                    if row.ai_overrides_score is not None
                    else {}
                ),
            }
        )
        logger.debug("weight_config_loaded", kind=kind.value, version=config.version)
        return config

    # --- source rows ------------------------------------------------------

    async def fetch_entity(self, kind: EntityKind, entity_id: str) -> dict[str, Any] | None:
        if kind == EntityKind.TRAINING_NEED:
            return await self._fetch_tna_item(entity_id)
        if kind == EntityKind.PLAN_ITEM:
            return await self._fetch_plan_item(entity_id)
        return await self._fetch_scholar(entity_id)

    async def _fetch_tna_item(self, item_id: str) -> dict[str, Any] | None:
        stmt = (
            select(TnaItemDB, TnaSubmissionDB, CourseDB, CompetencyDB)
            .join(TnaSubmissionDB, TnaItemDB.submission_id == TnaSubmissionDB.id)
            .outerjoin(CourseDB, TnaItemDB.course_id == CourseDB.id)
            .outerjoin(CompetencyDB, TnaItemDB.competency_id == CompetencyDB.id)
            .where(TnaItemDB.id == item_id)
        )
        result = await self._session.execute(stmt)
        found = result.first()
        if found is None:
            return None
        item, submission, course, competency = found
        return {
            "id": item.id,
            "priority": item.priority,
            "training_type": item.training_type,
            "training_location": item.training_location,
            "estimated_cost": item.estimated_cost,
            "strategic_theme": item.strategic_theme,
            "role_criticality": submission.role_criticality,
            "course": _columns(course, "name_en", "is_mandatory", "cost_amount"),
            "competency": _columns(competency, "name_en", "category"),
        }

    async def _fetch_plan_item(self, item_id: str) -> dict[str, Any] | None:
        stmt = (
            select(TrainingPlanItemDB, CourseDB, CourseCategoryDB)
            .outerjoin(CourseDB, TrainingPlanItemDB.course_id == CourseDB.id)
            .outerjoin(CourseCategoryDB, TrainingPlanItemDB.category_id == CourseCategoryDB.id)
            .where(TrainingPlanItemDB.id == item_id)
        )
        result = await self._session.execute(stmt)
        found = result.first()
        if found is None:
            return None
        item, course, category = found
        return {
            "id": item.id,
            "item_name": item.item_name,
            "priority": item.priority,
            "unit_cost": item.unit_cost,
            "training_type": item.training_type,
            "training_location": item.training_location,
            "role_criticality": item.role_criticality,
            "strategic_theme": item.strategic_theme,
            "course": _columns(course, "name_en", "is_mandatory", "cost_amount"),
            "category": _columns(category, "name_en"),
        }

    async def _fetch_scholar(self, scholar_id: str) -> dict[str, Any] | None:
        scholar = await self._session.get(ScholarRecordDB, scholar_id)
        if scholar is None:
            return None

        terms_result = await self._session.execute(
            select(AcademicTermDB)
            .where(AcademicTermDB.scholar_record_id == scholar_id)
            .order_by(AcademicTermDB.term_number)
        )
        terms = list(terms_result.scalars().all())

        modules: list[AcademicModuleDB] = []
        if terms:
            modules_result = await self._session.execute(
                select(AcademicModuleDB).where(
                    AcademicModuleDB.term_id.in_([t.id for t in terms])
                )
            )
            modules = list(modules_result.scalars().all())

        events_result = await self._session.execute(
            select(AcademicEventDB).where(AcademicEventDB.scholar_record_id == scholar_id)
        )
        events = list(events_result.scalars().all())

        row = _columns(
            scholar,
            "id",
            "program_name",
            "status",
            "cumulative_gpa",
            "gpa_scale",
            "credits_completed",
            "total_credits_required",
            "current_term_number",
            "total_terms",
            "actual_start_date",
            "expected_end_date",
        )
        row["terms"] = [_columns(t, "term_number", "term_gpa", "status") for t in terms]
        row["modules"] = [_columns(m, "passed", "module_type", "is_retake") for m in modules]
        row["events"] = [_columns(e, "event_type", "event_date") for e in events]
        return row

    async def resolve_scope(self, scope: ScoringScope) -> list[str]:
        if scope.scope_type == ScopeType.PERIOD:
            stmt = (
                select(TnaItemDB.id)
                .join(TnaSubmissionDB, TnaItemDB.submission_id == TnaSubmissionDB.id)
                .where(
                    TnaSubmissionDB.period_id == scope.scope_id,
                    TnaSubmissionDB.status.in_(SUBMISSION_STATES_IN_SCOPE),
                )
                .order_by(TnaItemDB.id)
            )
        elif scope.scope_type == ScopeType.PLAN:
            stmt = (
                select(TrainingPlanItemDB.id)
                .where(
                    TrainingPlanItemDB.plan_id == scope.scope_id,
                    TrainingPlanItemDB.item_status == "active",
                )
                .order_by(TrainingPlanItemDB.id)
            )
        else:
            stmt = (
                select(ScholarRecordDB.id)
                .where(ScholarRecordDB.status.in_(SCHOLAR_STATES_IN_SCOPE))
                .order_by(ScholarRecordDB.id)
            )
        result = await self._session.execute(stmt)
        return [str(v) for v in result.scalars().all()]

    # --- score records ----------------------------------------------------

    async def latest_score(
        self, kind: EntityKind, entity_id: str, include_overrides: bool = False
    ) -> ScoreRecord | None:
        stmt = select(ScoreRecordDB).where(
            ScoreRecordDB.entity_kind == kind.value,
            ScoreRecordDB.entity_id == entity_id,
        )
        if not include_overrides:
            stmt = stmt.where(ScoreRecordDB.is_override.is_(False))
        stmt = stmt.order_by(ScoreRecordDB.scored_at.desc(), ScoreRecordDB.id.desc()).limit(1)
        result = await self._session.execute(stmt)
        row = result.scalars().first()
        return _record_from_row(row) if row else None

    async def score_history(
        self, kind: EntityKind, entity_id: str, limit: int = 20
    ) -> list[ScoreRecord]:
        stmt = (
            select(ScoreRecordDB)
            .where(
                ScoreRecordDB.entity_kind == kind.value,
                ScoreRecordDB.entity_id == entity_id,
            )
            .order_by(ScoreRecordDB.scored_at.desc(), ScoreRecordDB.id.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [_record_from_row(r) for r in result.scalars().all()]

    async def add_score(self, record: ScoreRecord) -> ScoreRecord:
        row = ScoreRecordDB(
            entity_kind=record.entity_kind.value,
            entity_id=record.entity_id,
            score=record.score,
            band=record.band,
            factors=[f.model_dump(mode="json") for f in record.factors],
            explanation=record.explanation,
            model_version=record.model_version,
            config_version=record.config_version,
            previous_band=record.previous_band,
            feature_snapshot=record.feature_snapshot,
            job_id=record.job_id,
            is_override=record.is_override,
            override_by=record.override_by,
            override_reason=record.override_reason,
            scored_at=record.scored_at,
        )
        self._session.add(row)
        await self._session.flush()
        return record.model_copy(update={"id": row.id})

    # --- alerts -----------------------------------------------------------

    async def add_alert(self, alert: ScoreAlert) -> ScoreAlert:
        self._session.add(
            ScoreAlertDB(
                alert_id=alert.alert_id,
                entity_kind=alert.entity_kind.value,
                entity_id=alert.entity_id,
                score_record_id=alert.score_record_id,
                previous_band=alert.previous_band,
                new_band=alert.new_band,
                alert_type=alert.alert_type.value,
                status=alert.status.value,
                created_at=alert.created_at,
            )
        )
        await self._session.flush()
        return alert

    async def get_alert(self, alert_id: str) -> ScoreAlert | None:
        result = await self._session.execute(
            select(ScoreAlertDB).where(ScoreAlertDB.alert_id == alert_id)
        )
        row = result.scalars().first()
        return _alert_from_row(row) if row else None

    async def save_alert_review(self, alert: ScoreAlert) -> None:
        await self._session.execute(
            update(ScoreAlertDB)
            .where(ScoreAlertDB.alert_id == alert.alert_id)
            .values(
                status=alert.status.value,
                reviewed_by=alert.reviewed_by,
                review_notes=alert.review_notes,
                reviewed_at=alert.reviewed_at,
            )
        )

    async def list_alerts(
        self, status: AlertStatus | None = None, limit: int = 100
    ) -> list[ScoreAlert]:
        stmt = select(ScoreAlertDB).order_by(ScoreAlertDB.created_at.desc()).limit(limit)
        if status:
            stmt = stmt.where(ScoreAlertDB.status == status.value)
        result = await self._session.execute(stmt)
        return [_alert_from_row(r) for r in result.scalars().all()]

    async def set_current_band(self, kind: EntityKind, entity_id: str, band: str) -> None:
        table, column = _BAND_COLUMNS[kind]
        await self._session.execute(
            update(table).where(table.id == entity_id).values({column: band})
        )

    # --- jobs -------------------------------------------------------------

    async def create_job(self, job: BatchJob) -> None:
        self._session.add(
            ScoringJobDB(
                job_id=job.job_id,
                scope_key=job.scope_key,
                entity_kind=job.entity_kind.value,
                status=job.status.value,
                total_items=job.total_items,
                processed_items=job.processed_items,
                success_count=job.success_count,
                error_count=job.error_count,
                error_log=job.error_log,
                config_version=job.config_version,
                config_snapshot=job.config_snapshot,
                started_at=job.started_at,
            )
        )
        await self._session.flush()

    async def save_job_progress(self, job: BatchJob) -> None:
        await self._session.execute(
            update(ScoringJobDB)
            .where(ScoringJobDB.job_id == job.job_id)
            .values(
                status=job.status.value,
                total_items=job.total_items,
                processed_items=job.processed_items,
                success_count=job.success_count,
                error_count=job.error_count,
                error_log=job.error_log,
                completed_at=job.completed_at,
            )
        )

    async def get_job(self, job_id: str) -> BatchJob | None:
        result = await self._session.execute(
            select(ScoringJobDB).where(ScoringJobDB.job_id == job_id)
        )
        row = result.scalars().first()
        return _job_from_row(row) if row else None

    async def running_jobs(self, scope_key: str | None = None) -> list[BatchJob]:
        stmt = select(ScoringJobDB).where(ScoringJobDB.status == JobStatus.RUNNING.value)
        if scope_key:
            stmt = stmt.where(ScoringJobDB.scope_key == scope_key)
        result = await self._session.execute(stmt)
        return [_job_from_row(r) for r in result.scalars().all()]

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()
