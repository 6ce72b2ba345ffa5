"""SQLAlchemy ORM models.

Two groups of tables live here:

* Engine-owned state: weight configs, score records, score alerts and
  scoring jobs. Only the scoring engine writes these.
* Source tables owned by the surrounding application (training needs, plan
  items, scholars and their academic records). The engine reads them and
  writes only the denormalized current-band columns.
"""

from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Engine-owned state
# ---------------------------------------------------------------------------


class WeightConfigDB(Base):
    __tablename__ = "weight_configs"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String, index=True)
    version: Mapped[str] = mapped_column(String)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    weights: Mapped[dict] = mapped_column(JSONB, default=dict)
    thresholds: Mapped[dict] = mapped_column(JSONB, default=dict)
    bands: Mapped[dict] = mapped_column(JSONB, default=list)
    alert_band: Mapped[str | None] = mapped_column(String, nullable=True)
    ai_overrides_score: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class ScoreRecordDB(Base):
    __tablename__ = "score_records"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    entity_kind: Mapped[str] = mapped_column(String, index=True)
    entity_id: Mapped[str] = mapped_column(String, index=True)
    score: Mapped[int] = mapped_column(Integer)
    band: Mapped[str] = mapped_column(String, index=True)
    factors: Mapped[dict] = mapped_column(JSONB, default=list)
    explanation: Mapped[str] = mapped_column(String, default="")
    model_version: Mapped[str] = mapped_column(String)
    config_version: Mapped[str] = mapped_column(String)
    previous_band: Mapped[str | None] = mapped_column(String, nullable=True)
    feature_snapshot: Mapped[dict] = mapped_column(JSONB, default=dict)
    job_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    is_override: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    override_by: Mapped[str | None] = mapped_column(String, nullable=True)
    override_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    scored_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)


class ScoreAlertDB(Base):
    __tablename__ = "score_alerts"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    alert_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    entity_kind: Mapped[str] = mapped_column(String, index=True)
    entity_id: Mapped[str] = mapped_column(String, index=True)
    score_record_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    previous_band: Mapped[str | None] = mapped_column(String, nullable=True)
    new_band: Mapped[str] = mapped_column(String)
    alert_type: Mapped[str] = mapped_column(String, index=True)
    status: Mapped[str] = mapped_column(String, default="pending", index=True)
    reviewed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    review_notes: Mapped[str | None] = mapped_column(String, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class ScoringJobDB(Base):
    __tablename__ = "scoring_jobs"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    scope_key: Mapped[str] = mapped_column(String, index=True)
    entity_kind: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, default="running", index=True)
    total_items: Mapped[int] = mapped_column(Integer, default=0)
    processed_items: Mapped[int] = mapped_column(Integer, default=0)
    success_count: Mapped[int] = mapped_column(Integer, default=0)
    error_count: Mapped[int] = mapped_column(Integer, default=0)
    error_log: Mapped[dict] = mapped_column(JSONB, default=list)
    config_version: Mapped[str | None] = mapped_column(String, nullable=True)
    config_snapshot: Mapped[dict] = mapped_column(JSONB, default=dict)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Source tables (read-mostly)
# ---------------------------------------------------------------------------


class CourseDB(Base):
    __tablename__ = "courses"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name_en: Mapped[str | None] = mapped_column(String, nullable=True)
    is_mandatory: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    cost_amount: Mapped[float | None] = mapped_column(Float, nullable=True)


class CompetencyDB(Base):
    __tablename__ = "competencies"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name_en: Mapped[str | None] = mapped_column(String, nullable=True)
    category: Mapped[str | None] = mapped_column(String, nullable=True)


class CourseCategoryDB(Base):
    __tablename__ = "course_categories"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name_en: Mapped[str | None] = mapped_column(String, nullable=True)


class TnaSubmissionDB(Base):
    __tablename__ = "tna_submissions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    period_id: Mapped[str] = mapped_column(String, index=True)
    employee_id: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, index=True)
    # Criticality of the employee's job role, when known.
    role_criticality: Mapped[str | None] = mapped_column(String, nullable=True)


class TnaItemDB(Base):
    __tablename__ = "tna_items"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    submission_id: Mapped[str] = mapped_column(ForeignKey("tna_submissions.id"), index=True)
    course_id: Mapped[str | None] = mapped_column(ForeignKey("courses.id"), nullable=True)
    competency_id: Mapped[str | None] = mapped_column(
        ForeignKey("competencies.id"), nullable=True
    )
    priority: Mapped[str | None] = mapped_column(String, nullable=True)
    training_type: Mapped[str | None] = mapped_column(String, nullable=True)
    training_location: Mapped[str | None] = mapped_column(String, nullable=True)
    estimated_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    strategic_theme: Mapped[str | None] = mapped_column(String, nullable=True)
    priority_band: Mapped[str | None] = mapped_column(String, nullable=True)


class TrainingPlanItemDB(Base):
    __tablename__ = "training_plan_items"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    plan_id: Mapped[str] = mapped_column(String, index=True)
    item_name: Mapped[str | None] = mapped_column(String, nullable=True)
    item_status: Mapped[str] = mapped_column(String, default="active", index=True)
    course_id: Mapped[str | None] = mapped_column(ForeignKey("courses.id"), nullable=True)
    category_id: Mapped[str | None] = mapped_column(
        ForeignKey("course_categories.id"), nullable=True
    )
    priority: Mapped[str | None] = mapped_column(String, nullable=True)
    unit_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    training_type: Mapped[str | None] = mapped_column(String, nullable=True)
    training_location: Mapped[str | None] = mapped_column(String, nullable=True)
    role_criticality: Mapped[str | None] = mapped_column(String, nullable=True)
    strategic_theme: Mapped[str | None] = mapped_column(String, nullable=True)
    priority_band: Mapped[str | None] = mapped_column(String, nullable=True)


class ScholarRecordDB(Base):
    __tablename__ = "scholar_records"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    employee_id: Mapped[str | None] = mapped_column(String, nullable=True)
    program_name: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, index=True)
    cumulative_gpa: Mapped[float | None] = mapped_column(Float, nullable=True)
    gpa_scale: Mapped[float | None] = mapped_column(Float, nullable=True)
    credits_completed: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_credits_required: Mapped[float | None] = mapped_column(Float, nullable=True)
    current_term_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_terms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    actual_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    expected_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    risk_level: Mapped[str | None] = mapped_column(String, nullable=True)


class AcademicTermDB(Base):
    __tablename__ = "academic_terms"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    scholar_record_id: Mapped[str] = mapped_column(
        ForeignKey("scholar_records.id"), index=True
    )
    term_number: Mapped[int] = mapped_column(Integer)
    term_gpa: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[str | None] = mapped_column(String, nullable=True)


class AcademicModuleDB(Base):
    __tablename__ = "academic_modules"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    term_id: Mapped[str] = mapped_column(ForeignKey("academic_terms.id"), index=True)
    passed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    module_type: Mapped[str | None] = mapped_column(String, nullable=True)
    is_retake: Mapped[bool | None] = mapped_column(Boolean, nullable=True)


class AcademicEventDB(Base):
    __tablename__ = "academic_events"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    scholar_record_id: Mapped[str] = mapped_column(
        ForeignKey("scholar_records.id"), index=True
    )
    event_type: Mapped[str] = mapped_column(String)
    event_date: Mapped[date | None] = mapped_column(Date, nullable=True)
