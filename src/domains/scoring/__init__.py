"""Priority and risk scoring for training needs, plan items and scholars."""

from .bands import BandClassifier
from .batch import BatchJobCoordinator
from .config import WeightConfig, default_priority_config, default_risk_config
from .enrichment import EnricherSettings, ExplanationEnricher
from .errors import (
    AlertNotFound,
    ConfigInvalid,
    ConfigMissing,
    ExternalServiceFailure,
    ItemFetchFailure,
    JobNotFound,
    PersistenceFailure,
    ScopeBusy,
    ScopeResolutionFailure,
    ScoringError,
)
from .features import FeatureExtractor
from .models import (
    BatchJob,
    BatchSummary,
    EntityKind,
    ScoreAlert,
    ScoreRecord,
    ScoringScope,
)
from .pipeline import ScoringPipeline
from .repository import ScoringRepository, SqlScoringRepository
from .rules_engine import RuleEngine
from .store import ScoreStore

__all__ = [
    "AlertNotFound",
    "BandClassifier",
    "BatchJob",
    "BatchJobCoordinator",
    "BatchSummary",
    "ConfigInvalid",
    "ConfigMissing",
    "EnricherSettings",
    "EntityKind",
    "ExplanationEnricher",
    "ExternalServiceFailure",
    "FeatureExtractor",
    "ItemFetchFailure",
    "JobNotFound",
    "PersistenceFailure",
    "RuleEngine",
    "ScopeBusy",
    "ScopeResolutionFailure",
    "ScoreAlert",
    "ScoreRecord",
    "ScoreStore",
    "ScoringError",
    "ScoringPipeline",
    "ScoringRepository",
    "ScoringScope",
    "SqlScoringRepository",
    "WeightConfig",
    "default_priority_config",
    "default_risk_config",
]
