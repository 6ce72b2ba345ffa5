"""Weight configuration for priority and risk scoring.

A WeightConfig is a frozen snapshot: it is built once (from the active config
row or the defaults below), validated at construction time and passed
explicitly through every scoring call. Nothing in the scoring path reads
configuration from the environment.

Default priority weights are points that sum to 110 before clamping:
  HSE criticality 30, competency gap 25, manager priority 20,
  role criticality 15, compliance 10, cost efficiency 10, strategic 0.

Default risk weights are points per factor (sum 130 before clamping):
  GPA 40, GPA trend 15, credits 20, failed modules 24, events 15, timeline 16.
"""

import dataclasses
from dataclasses import dataclass, field
from typing import Any

from .errors import ConfigInvalid
from .models import ConfigKind

SCORE_MIN = 0
SCORE_MAX = 100


@dataclass(frozen=True)
class BandDefinition:
    name: str
    min_score: int
    max_score: int


@dataclass(frozen=True)
class PriorityWeights:
    hse_criticality: float = 30.0
    competency_gap: float = 25.0
    manager_priority: float = 20.0
    role_criticality: float = 15.0
    compliance_status: float = 10.0
    cost_efficiency: float = 10.0
    strategic_alignment: float = 0.0


@dataclass(frozen=True)
class PriorityThresholds:
    # Cheaper training gets a larger efficiency boost; at or above this, none.
    cost_threshold: float = 5_000.0


@dataclass(frozen=True)
class RiskWeights:
    gpa: float = 40.0
    gpa_trend: float = 15.0
    credits: float = 20.0
    failed_modules: float = 24.0
    events: float = 15.0
    timeline: float = 16.0


@dataclass(frozen=True)
class RiskThresholds:
    gpa_threshold_low: float = 2.0
    gpa_threshold_medium: float = 2.5
    credits_behind_threshold: float = 0.20
    credits_behind_severe: float = 0.40
    max_failed_core_modules: int = 2
    # Share of the failed-modules weight added per failed (non-core) module.
    failed_module_step: float = 0.10
    # Share of the events weight added per negative event.
    event_step: float = 0.15


PRIORITY_BANDS: tuple[BandDefinition, ...] = (
    BandDefinition("low", 0, 39),
    BandDefinition("medium", 40, 59),
    BandDefinition("high", 60, 79),
    BandDefinition("critical", 80, 100),
)

RISK_BANDS: tuple[BandDefinition, ...] = (
    BandDefinition("on_track", 0, 39),
    BandDefinition("watch", 40, 59),
    BandDefinition("at_risk", 60, 79),
    BandDefinition("critical", 80, 100),
)


def validate_bands(bands: tuple[BandDefinition, ...]) -> None:
    """Bands must be ordered, contiguous and cover [0, 100] exactly."""
    if not bands:
        raise ConfigInvalid("Band table is empty")

    names = [b.name for b in bands]
    if len(set(names)) != len(names):
        raise ConfigInvalid(f"Band names must be unique, got {names}")

    expected_min = SCORE_MIN
    for band in bands:
        if band.min_score != expected_min:
            raise ConfigInvalid(
                f"Band '{band.name}' starts at {band.min_score}, expected {expected_min} "
                "(bands must be contiguous with no gaps or overlaps)"
            )
        if band.max_score < band.min_score:
            raise ConfigInvalid(
                f"Band '{band.name}' has max {band.max_score} below min {band.min_score}"
            )
        expected_min = band.max_score + 1

    if bands[-1].max_score != SCORE_MAX:
        raise ConfigInvalid(
            f"Bands must end at {SCORE_MAX}, last band '{bands[-1].name}' "
            f"ends at {bands[-1].max_score}"
        )


@dataclass(frozen=True)
class WeightConfig:
    """Versioned, immutable scoring configuration for one entity variant."""

    kind: ConfigKind = ConfigKind.PRIORITY
    version: str = "default-v1"
    weights: PriorityWeights | RiskWeights = field(default_factory=PriorityWeights)
    thresholds: PriorityThresholds | RiskThresholds = field(default_factory=PriorityThresholds)
    bands: tuple[BandDefinition, ...] = PRIORITY_BANDS
    # Lowest band that raises a "new_risk" alert on an entity's first record.
    alert_band: str = "high"
    # When True a well-formed model reply replaces the rule-based score.
    ai_overrides_score: bool = False

    def __post_init__(self) -> None:
        expected = (
            (PriorityWeights, PriorityThresholds)
            if self.kind == ConfigKind.PRIORITY
            else (RiskWeights, RiskThresholds)
        )
        if not isinstance(self.weights, expected[0]):
            raise ConfigInvalid(
                f"{self.kind.value} config requires {expected[0].__name__}, "
                f"got {type(self.weights).__name__}"
            )
        if not isinstance(self.thresholds, expected[1]):
            raise ConfigInvalid(
                f"{self.kind.value} config requires {expected[1].__name__}, "
                f"got {type(self.thresholds).__name__}"
            )

        negative = {k: v for k, v in dataclasses.asdict(self.weights).items() if v < 0}
        if negative:
            raise ConfigInvalid(f"Weights must be non-negative, got {negative}")

        validate_bands(self.bands)

        if self.alert_band not in self.band_names:
            raise ConfigInvalid(
                f"alert_band '{self.alert_band}' is not one of {list(self.band_names)}"
            )

    @property
    def band_names(self) -> tuple[str, ...]:
        return tuple(b.name for b in self.bands)

    def severity_rank(self, band: str) -> int:
        """Ordinal position of a band, -1 when the name is unknown."""
        try:
            return self.band_names.index(band)
        except ValueError:
            return -1

    def with_weights(self, overrides: dict[str, float]) -> "WeightConfig":
        """Return a copy with some weights replaced (used by what-if simulation)."""
        known = {f.name for f in dataclasses.fields(self.weights)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigInvalid(f"Unknown weight keys: {sorted(unknown)}")
        weights = dataclasses.replace(self.weights, **{k: float(v) for k, v in overrides.items()})
        return dataclasses.replace(self, weights=weights, version=f"{self.version}+simulated")

    def to_row(self) -> dict[str, Any]:
        """Serializable snapshot, the inverse of ``from_row``."""
        return {
            "kind": self.kind.value,
            "version": self.version,
            "weights": dataclasses.asdict(self.weights),
            "thresholds": dataclasses.asdict(self.thresholds),
            "bands": [
                {"name": b.name, "min": b.min_score, "max": b.max_score} for b in self.bands
            ],
            "alert_band": self.alert_band,
            "ai_overrides_score": self.ai_overrides_score,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "WeightConfig":
        """Build a config from a stored row.

        ``bands`` may be a list of ``{"name", "min", "max"}`` objects or a
        mapping ``{name: {"min", "max"}}``; mappings are ordered by ``min``.
        """
        try:
            kind = ConfigKind(row.get("kind", ConfigKind.PRIORITY))
        except ValueError as e:
            raise ConfigInvalid(f"Unknown config kind: {row.get('kind')!r}") from e

        if kind == ConfigKind.PRIORITY:
            weights_cls, thresholds_cls = PriorityWeights, PriorityThresholds
            default_bands, default_alert = PRIORITY_BANDS, "high"
        else:
            weights_cls, thresholds_cls = RiskWeights, RiskThresholds
            default_bands, default_alert = RISK_BANDS, "at_risk"

        weights = _build(weights_cls, row.get("weights") or {}, "weights")
        thresholds = _build(thresholds_cls, row.get("thresholds") or {}, "thresholds")
        raw_bands = row.get("bands")
        bands = _parse_bands(raw_bands) if raw_bands else default_bands

        return cls(
            kind=kind,
            version=str(row.get("version") or "unversioned"),
            weights=weights,
            thresholds=thresholds,
            bands=bands,
            alert_band=row.get("alert_band") or default_alert,
            ai_overrides_score=bool(
                row.get("ai_overrides_score", kind == ConfigKind.RISK)
            ),
        )


def _build(cls, values: dict[str, Any], label: str):
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = set(values) - known
    if unknown:
        raise ConfigInvalid(f"Unknown {label} keys: {sorted(unknown)}")
    try:
        return cls(**{k: type(getattr(cls(), k))(v) for k, v in values.items()})
    except (TypeError, ValueError) as e:
        raise ConfigInvalid(f"Invalid {label} value: {e}") from e


def _parse_bands(raw: Any) -> tuple[BandDefinition, ...]:
    try:
        if isinstance(raw, dict):
            items = [
                BandDefinition(name, int(v["min"]), int(v["max"])) for name, v in raw.items()
            ]
            items.sort(key=lambda b: b.min_score)
        else:
            items = [BandDefinition(b["name"], int(b["min"]), int(b["max"])) for b in raw]
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigInvalid(f"Malformed band table: {e}") from e
    return tuple(items)


# Module-level defaults, used when a caller builds a pipeline without a stored config.
default_priority_config = WeightConfig()
default_risk_config = WeightConfig(
    kind=ConfigKind.RISK,
    weights=RiskWeights(),
    thresholds=RiskThresholds(),
    bands=RISK_BANDS,
    alert_band="at_risk",
    ai_overrides_score=True,
)
