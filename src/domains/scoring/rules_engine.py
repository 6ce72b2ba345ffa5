"""Deterministic weighted rule evaluation.

Each applicable factor contributes ``round(weight * strength)`` points where
strength is in [0, 1]. Contributions are summed and clamped to [0, 100].

The engine is pure: no I/O, no clock, no randomness. Identical
(factor set, WeightConfig) pairs always produce identical output, including
the explanation text.
"""

import math

from .config import (
    SCORE_MAX,
    SCORE_MIN,
    PriorityThresholds,
    PriorityWeights,
    RiskThresholds,
    RiskWeights,
    WeightConfig,
)
from .errors import ConfigInvalid
from .models import (
    ConfigKind,
    FactorContribution,
    FactorSet,
    GapLevel,
    GpaTrend,
    Impact,
    ManagerPriority,
    RoleCriticality,
    RuleEvaluation,
    ScholarRiskFactors,
    TrainingNeedFactors,
)

GAP_STRENGTH = {
    GapLevel.HIGH: 1.0,
    GapLevel.MEDIUM: 0.6,
    GapLevel.LOW: 0.3,
    GapLevel.NONE: 0.0,
}
MANAGER_STRENGTH = {
    ManagerPriority.HIGH: 1.0,
    ManagerPriority.MEDIUM: 0.6,
    ManagerPriority.LOW: 0.3,
}
ROLE_STRENGTH = {
    RoleCriticality.CRITICAL: 1.0,
    RoleCriticality.KEY: 0.7,
    RoleCriticality.STANDARD: 0.4,
}
BELOW_AVERAGE_GPA_STRENGTH = 0.6


def _round(value: float) -> int:
    """Round half up, so 2.5 -> 3 regardless of parity."""
    return int(math.floor(value + 0.5))


def _impact_for(strength: float) -> Impact:
    if strength >= 0.8:
        return Impact.HIGH
    if strength >= 0.5:
        return Impact.MEDIUM
    return Impact.LOW


def _clamp(value: int) -> int:
    return max(SCORE_MIN, min(SCORE_MAX, value))


class RuleEngine:
    """Scores a factor set against a WeightConfig."""

    def evaluate(self, factors: FactorSet, config: WeightConfig) -> RuleEvaluation:
        if isinstance(factors, TrainingNeedFactors):
            if config.kind != ConfigKind.PRIORITY:
                raise ConfigInvalid("Training need factors require a priority config")
            return self.evaluate_priority(factors, config)
        if isinstance(factors, ScholarRiskFactors):
            if config.kind != ConfigKind.RISK:
                raise ConfigInvalid("Scholar factors require a risk config")
            return self.evaluate_risk(factors, config)
        raise TypeError(f"Unsupported factor set: {type(factors).__name__}")

    # ------------------------------------------------------------------
    # Priority variant
    # ------------------------------------------------------------------

    def evaluate_priority(
        self, factors: TrainingNeedFactors, config: WeightConfig
    ) -> RuleEvaluation:
        w: PriorityWeights = config.weights
        t: PriorityThresholds = config.thresholds
        contributions: list[FactorContribution] = []

        def add(factor: str, weight: float, strength: float, description: str) -> None:
            points = _round(weight * strength)
            if points:
                contributions.append(
                    FactorContribution(
                        factor=factor,
                        description=description,
                        impact=_impact_for(strength),
                        contribution=points,
                    )
                )

        if factors.hse_critical:
            add(
                "hse_critical",
                w.hse_criticality,
                1.0,
                "Training is safety-critical or HSE mandatory",
            )

        gap = factors.competency_gap_level
        add(
            "competency_gap",
            w.competency_gap,
            GAP_STRENGTH[gap],
            f"{gap.value.capitalize()} competency gap identified",
        )

        priority = factors.manager_priority
        add(
            "manager_priority",
            w.manager_priority,
            MANAGER_STRENGTH[priority],
            f"Manager marked as {priority.value} priority",
        )

        role = factors.role_criticality
        add(
            "role_criticality",
            w.role_criticality,
            ROLE_STRENGTH[role],
            f"Employee role is {role.value}",
        )

        if factors.compliance_overdue:
            add(
                "compliance_status",
                w.compliance_status,
                1.0,
                "Mandatory training or compliance requirement",
            )

        if t.cost_threshold > 0 and factors.estimated_cost < t.cost_threshold:
            add(
                "cost_efficiency",
                w.cost_efficiency,
                1.0 - factors.estimated_cost / t.cost_threshold,
                f"Cost-effective option: {factors.estimated_cost:,.2f} "
                f"(threshold {t.cost_threshold:,.2f})",
            )

        if factors.strategic_theme:
            add(
                "strategic_alignment",
                w.strategic_alignment,
                1.0,
                f"Aligned with strategic theme: {factors.strategic_theme}",
            )

        score = _clamp(sum(c.contribution for c in contributions))
        return RuleEvaluation(
            score=score,
            contributions=tuple(contributions),
            summary=self._priority_summary(factors, score),
        )

    @staticmethod
    def _priority_summary(factors: TrainingNeedFactors, score: int) -> str:
        parts: list[str] = []
        if factors.hse_critical:
            parts.append("HSE critical training")
        if factors.competency_gap_level == GapLevel.HIGH:
            parts.append("significant competency gap")
        if factors.manager_priority == ManagerPriority.HIGH:
            parts.append("high manager priority")
        if factors.compliance_overdue:
            parts.append("mandatory compliance requirement")

        if not parts:
            return f"Priority score {score}: Standard training need."
        return f"Priority score {score}: Prioritised due to {', '.join(parts)}."

    # ------------------------------------------------------------------
    # Risk variant
    # ------------------------------------------------------------------

    def evaluate_risk(self, factors: ScholarRiskFactors, config: WeightConfig) -> RuleEvaluation:
        w: RiskWeights = config.weights
        t: RiskThresholds = config.thresholds
        contributions: list[FactorContribution] = []

        def add(factor: str, weight: float, strength: float, impact: Impact, description: str):
            points = _round(weight * min(strength, 1.0))
            if points:
                contributions.append(
                    FactorContribution(
                        factor=factor,
                        description=description,
                        impact=impact,
                        contribution=points,
                    )
                )

        gpa = factors.normalized_gpa
        if gpa is not None:
            if gpa < t.gpa_threshold_low:
                add(
                    "low_gpa",
                    w.gpa,
                    1.0,
                    Impact.HIGH,
                    f"GPA ({gpa:.2f}) is below minimum threshold ({t.gpa_threshold_low})",
                )
            elif gpa < t.gpa_threshold_medium:
                add(
                    "below_average_gpa",
                    w.gpa,
                    BELOW_AVERAGE_GPA_STRENGTH,
                    Impact.MEDIUM,
                    f"GPA ({gpa:.2f}) is below recommended ({t.gpa_threshold_medium})",
                )

        if factors.gpa_trend == GpaTrend.DECLINING:
            add(
                "declining_gpa",
                w.gpa_trend,
                1.0,
                Impact.MEDIUM,
                "GPA has been declining over recent terms",
            )

        if factors.credits_behind > t.credits_behind_threshold:
            add(
                "credits_behind",
                w.credits,
                1.0,
                Impact.HIGH if factors.credits_behind > t.credits_behind_severe else Impact.MEDIUM,
                f"Credits completed are {_round(factors.credits_behind * 100)}% "
                "behind expected progress",
            )

        if factors.failed_core_modules > 0 and (
            factors.failed_core_modules >= t.max_failed_core_modules
        ):
            add(
                "failed_core_modules",
                w.failed_modules,
                1.0,
                Impact.HIGH,
                f"Failed {factors.failed_core_modules} core modules "
                f"(threshold: {t.max_failed_core_modules})",
            )
        elif factors.failed_modules > 0:
            add(
                "failed_modules",
                w.failed_modules,
                factors.failed_modules * t.failed_module_step,
                Impact.MEDIUM if factors.failed_modules > 2 else Impact.LOW,
                f"Failed {factors.failed_modules} module(s)",
            )

        if factors.negative_events > 0:
            add(
                "negative_events",
                w.events,
                factors.negative_events * t.event_step,
                Impact.HIGH if factors.negative_events > 1 else Impact.MEDIUM,
                f"{factors.negative_events} negative academic event(s) on record",
            )

        if factors.timeline_progress > 100:
            add(
                "timeline_exceeded",
                w.timeline,
                1.0,
                Impact.HIGH,
                "Program duration has exceeded expected completion date",
            )

        score = _clamp(sum(c.contribution for c in contributions))
        return RuleEvaluation(
            score=score,
            contributions=tuple(contributions),
            summary=self._risk_summary(contributions, score),
        )

    @staticmethod
    def _risk_summary(contributions: list[FactorContribution], score: int) -> str:
        if not contributions:
            return f"Risk score {score}: No risk factors identified."
        named = ", ".join(c.factor.replace("_", " ") for c in contributions)
        return f"Risk score {score}: Driven by {named}."
