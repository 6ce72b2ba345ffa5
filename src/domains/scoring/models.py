"""Pydantic models for the scoring domain."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

# --- Enums ---


class EntityKind(StrEnum):
    TRAINING_NEED = "training_need"
    PLAN_ITEM = "plan_item"
    SCHOLAR = "scholar"


class ConfigKind(StrEnum):
    PRIORITY = "priority"
    RISK = "risk"


class GapLevel(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


class ManagerPriority(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RoleCriticality(StrEnum):
    CRITICAL = "critical"
    KEY = "key"
    STANDARD = "standard"


class GpaTrend(StrEnum):
    DECLINING = "declining"
    STABLE = "stable"
    IMPROVING = "improving"


class Impact(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AlertType(StrEnum):
    ESCALATION = "escalation"
    CRITICAL_THRESHOLD = "critical_threshold"
    NEW_RISK = "new_risk"


class AlertStatus(StrEnum):
    PENDING = "pending"
    REVIEWED = "reviewed"
    ACTION_PLANNED = "action_planned"
    DISMISSED = "dismissed"


class JobStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ScopeType(StrEnum):
    PERIOD = "period"
    PLAN = "plan"
    SCHOLARS = "scholars"


def config_kind_for(kind: EntityKind) -> ConfigKind:
    if kind == EntityKind.SCHOLAR:
        return ConfigKind.RISK
    return ConfigKind.PRIORITY


# --- Factor sets ---


class TrainingNeedFactors(BaseModel):
    model_config = ConfigDict(frozen=True)

    hse_critical: bool = False
    competency_gap_level: GapLevel = GapLevel.NONE
    manager_priority: ManagerPriority = ManagerPriority.MEDIUM
    role_criticality: RoleCriticality = RoleCriticality.STANDARD
    compliance_overdue: bool = False
    estimated_cost: float = Field(default=0.0, ge=0)
    training_type: str = "short_term"
    training_location: str = "local"
    strategic_theme: str | None = None


class ScholarRiskFactors(BaseModel):
    model_config = ConfigDict(frozen=True)

    normalized_gpa: float | None = None
    gpa_trend: GpaTrend = GpaTrend.STABLE
    credits_behind: float = Field(default=0.0, ge=0)
    failed_modules: int = Field(default=0, ge=0)
    failed_core_modules: int = Field(default=0, ge=0)
    retakes: int = Field(default=0, ge=0)
    timeline_progress: int = 0
    negative_events: int = Field(default=0, ge=0)
    terms_completed: int = Field(default=0, ge=0)
    total_terms: int = Field(default=0, ge=0)


FactorSet = TrainingNeedFactors | ScholarRiskFactors


class ExtractedFeatures(BaseModel):
    """Factor set plus every source field that had to be defaulted."""

    model_config = ConfigDict(frozen=True)

    factors: TrainingNeedFactors | ScholarRiskFactors
    issues: tuple[str, ...] = ()
    # Free-text label (course or program name) used only in prompts.
    label: str = ""


# --- Rule output ---


class FactorContribution(BaseModel):
    model_config = ConfigDict(frozen=True)

    factor: str
    description: str
    impact: Impact
    contribution: int = 0


class RuleEvaluation(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int = Field(ge=0, le=100)
    contributions: tuple[FactorContribution, ...] = ()
    summary: str = ""


class ScoreOutcome(BaseModel):
    """Final score after optional enrichment, ready to be persisted."""

    score: int = Field(ge=0, le=100)
    band: str
    factors: list[FactorContribution] = Field(default_factory=list)
    explanation: str = ""
    model_version: str
    enriched: bool = False


# --- Persisted facts ---


class ScoreRecord(BaseModel):
    id: int | None = None
    entity_kind: EntityKind
    entity_id: str
    score: int = Field(ge=0, le=100)
    band: str
    factors: list[FactorContribution] = Field(default_factory=list)
    explanation: str = ""
    model_version: str
    config_version: str
    previous_band: str | None = None
    feature_snapshot: dict = Field(default_factory=dict)
    job_id: str | None = None
    is_override: bool = False
    override_by: str | None = None
    override_reason: str | None = None
    scored_at: datetime


class ScoreAlert(BaseModel):
    alert_id: str
    entity_kind: EntityKind
    entity_id: str
    score_record_id: int | None = None
    previous_band: str | None = None
    new_band: str
    alert_type: AlertType
    status: AlertStatus = AlertStatus.PENDING
    reviewed_by: str | None = None
    review_notes: str | None = None
    reviewed_at: datetime | None = None
    created_at: datetime


class ScoringScope(BaseModel):
    scope_type: ScopeType
    scope_id: str | None = None

    @property
    def key(self) -> str:
        return f"{self.scope_type.value}:{self.scope_id or '*'}"

    @property
    def entity_kind(self) -> EntityKind:
        return {
            ScopeType.PERIOD: EntityKind.TRAINING_NEED,
            ScopeType.PLAN: EntityKind.PLAN_ITEM,
            ScopeType.SCHOLARS: EntityKind.SCHOLAR,
        }[self.scope_type]


class BatchJob(BaseModel):
    job_id: str
    scope_key: str
    entity_kind: EntityKind
    status: JobStatus = JobStatus.RUNNING
    total_items: int = 0
    processed_items: int = 0
    success_count: int = 0
    error_count: int = 0
    error_log: list[dict] = Field(default_factory=list)
    config_version: str | None = None
    config_snapshot: dict = Field(default_factory=dict)
    started_at: datetime
    completed_at: datetime | None = None


# --- API request/response models ---


class ScoreRequest(BaseModel):
    entity_kind: EntityKind
    entity_id: str


class BatchRequest(BaseModel):
    scope: ScoringScope
    resume_job_id: str | None = None


class BatchSummary(BaseModel):
    job_id: str
    status: JobStatus
    total_items: int
    processed_items: int
    success_count: int
    error_count: int


class OverrideRequest(BaseModel):
    band: str
    score: int | None = Field(default=None, ge=0, le=100)
    reason: str = Field(min_length=1)
    actor_id: str


class AlertReviewRequest(BaseModel):
    status: AlertStatus
    reviewer_id: str
    notes: str | None = None


class SimulationRequest(BaseModel):
    entity_kind: EntityKind
    entity_ids: list[str] = Field(min_length=1, max_length=500)
    weights: dict[str, float]


class SimulationResult(BaseModel):
    scored: int
    failed: int
    current_distribution: dict[str, int]
    simulated_distribution: dict[str, int]
    average_score_change: float
