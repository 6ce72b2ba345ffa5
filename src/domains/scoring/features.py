"""Feature extraction: joined source rows -> canonical factor sets.

Extraction never raises on bad data. A malformed field falls back to its
neutral value and the field is reported in ``ExtractedFeatures.issues`` so
callers can log and persist what was coerced.
"""

from datetime import UTC, date, datetime
from typing import Any

import structlog

from .models import (
    EntityKind,
    ExtractedFeatures,
    GapLevel,
    GpaTrend,
    ManagerPriority,
    RoleCriticality,
    ScholarRiskFactors,
    TrainingNeedFactors,
)

logger = structlog.get_logger()

HSE_KEYWORDS: tuple[str, ...] = ("hse", "safety")
NEGATIVE_EVENT_TYPES: frozenset[str] = frozenset(
    {"suspension", "warning", "probation", "academic_warning"}
)
GPA_TREND_DELTA = 0.3
GPA_TREND_WINDOW = 3
DEFAULT_GPA_SCALE = 4.0


class _Coercer:
    """Collects field-level issues while coercing loosely-typed values."""

    def __init__(self) -> None:
        self.issues: list[str] = []

    def number(self, value: Any, name: str, default: float = 0.0) -> float:
        if value is None or value == "":
            return default
        if isinstance(value, bool):
            self.issues.append(f"{name}: boolean is not a number")
            return default
        try:
            return float(value)
        except (TypeError, ValueError):
            self.issues.append(f"{name}: not a number ({value!r})")
            return default

    def optional_number(self, value: Any, name: str) -> float | None:
        """Like ``number`` but unparseable values come back as None."""
        issues = len(self.issues)
        number = self.number(value, name)
        if value is None or value == "" or len(self.issues) > issues:
            return None
        return number

    def non_negative(self, value: Any, name: str) -> float:
        number = self.number(value, name)
        if number < 0:
            self.issues.append(f"{name}: negative value {number}")
            return 0.0
        return number

    def flag(self, value: Any, name: str) -> bool:
        if value is None:
            return False
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        self.issues.append(f"{name}: not a boolean ({value!r})")
        return False

    def choice(self, value: Any, enum_cls, name: str, default):
        if value is None or value == "":
            return default
        try:
            return enum_cls(str(value).lower())
        except ValueError:
            self.issues.append(f"{name}: unknown value {value!r}")
            return default

    def moment(self, value: Any, name: str) -> datetime | None:
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            return value if value.tzinfo else value.replace(tzinfo=UTC)
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day, tzinfo=UTC)
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError:
            self.issues.append(f"{name}: not a date ({value!r})")
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _text(*values: Any) -> str:
    return " ".join(str(v).lower() for v in values if v)


def _gap_from_priority(priority: ManagerPriority | None) -> GapLevel:
    if priority is None:
        return GapLevel.NONE
    return GapLevel(priority.value)


class FeatureExtractor:
    """Builds TrainingNeedFactors / ScholarRiskFactors from joined rows."""

    def extract(
        self,
        kind: EntityKind,
        row: dict[str, Any],
        as_of: datetime | None = None,
    ) -> ExtractedFeatures:
        if kind == EntityKind.SCHOLAR:
            result = self.extract_scholar(row, as_of=as_of or datetime.now(UTC))
        else:
            result = self.extract_training_need(row, kind)

        if result.issues:
            logger.warning(
                "feature_fields_defaulted",
                entity_kind=kind.value,
                entity_id=row.get("id"),
                issues=list(result.issues),
            )
        return result

    def extract_training_need(
        self, row: dict[str, Any], kind: EntityKind = EntityKind.TRAINING_NEED
    ) -> ExtractedFeatures:
        """TNA items and plan items share a factor set but differ in field names.

        HSE criticality: competency/category or course/item name mentions a
        safety keyword, or the course is mandatory.
        """
        c = _Coercer()
        course = row.get("course") or {}
        mandatory = c.flag(course.get("is_mandatory"), "course.is_mandatory")

        if kind == EntityKind.PLAN_ITEM:
            category = row.get("category") or {}
            haystack = _text(category.get("name_en"), row.get("item_name"), course.get("name_en"))
            cost = c.non_negative(row.get("unit_cost"), "unit_cost")
            label = row.get("item_name") or course.get("name_en") or ""
        else:
            competency = row.get("competency") or {}
            haystack = _text(competency.get("category"), course.get("name_en"))
            raw_cost = row.get("estimated_cost") or course.get("cost_amount")
            cost = c.non_negative(raw_cost, "estimated_cost")
            label = course.get("name_en") or row.get("item_name") or ""

        hse = mandatory or any(k in haystack for k in HSE_KEYWORDS)

        raw_priority = row.get("priority") or "medium"
        known_issues = len(c.issues)
        priority = c.choice(raw_priority, ManagerPriority, "priority", ManagerPriority.MEDIUM)
        # An unrecognised priority says nothing about the competency gap.
        gap = (
            _gap_from_priority(priority) if len(c.issues) == known_issues else GapLevel.NONE
        )
        role = c.choice(
            row.get("role_criticality"), RoleCriticality, "role_criticality",
            RoleCriticality.STANDARD,
        )

        factors = TrainingNeedFactors(
            hse_critical=hse,
            competency_gap_level=gap,
            manager_priority=priority,
            role_criticality=role,
            compliance_overdue=mandatory,
            estimated_cost=cost,
            training_type=str(row.get("training_type") or "short_term"),
            training_location=str(row.get("training_location") or "local"),
            strategic_theme=row.get("strategic_theme") or None,
        )
        return ExtractedFeatures(factors=factors, issues=tuple(c.issues), label=str(label))

    def extract_scholar(self, row: dict[str, Any], as_of: datetime) -> ExtractedFeatures:
        c = _Coercer()
        terms = sorted(
            row.get("terms") or [],
            key=lambda t: c.number(t.get("term_number"), "term.term_number"),
        )
        modules = row.get("modules") or []
        events = row.get("events") or []

        # A stored 0 GPA means no graded terms yet, not a failing average.
        gpa = c.number(row.get("cumulative_gpa"), "cumulative_gpa")
        scale = c.number(row.get("gpa_scale"), "gpa_scale") or DEFAULT_GPA_SCALE
        normalized_gpa = round(gpa / scale * DEFAULT_GPA_SCALE, 4) if gpa else None

        factors = ScholarRiskFactors(
            normalized_gpa=normalized_gpa,
            gpa_trend=self._gpa_trend(terms, c),
            credits_behind=self._credits_behind(row, c),
            failed_modules=sum(1 for m in modules if m.get("passed") is False),
            failed_core_modules=sum(
                1
                for m in modules
                if m.get("passed") is False and str(m.get("module_type") or "").lower() == "core"
            ),
            retakes=sum(1 for m in modules if m.get("is_retake") is True),
            timeline_progress=self._timeline_progress(row, as_of, c),
            negative_events=sum(
                1 for e in events if str(e.get("event_type") or "").lower() in NEGATIVE_EVENT_TYPES
            ),
            terms_completed=sum(1 for t in terms if t.get("status") == "completed"),
            total_terms=int(c.non_negative(row.get("total_terms"), "total_terms")),
        )
        return ExtractedFeatures(
            factors=factors,
            issues=tuple(c.issues),
            label=str(row.get("program_name") or ""),
        )

    @staticmethod
    def _gpa_trend(terms: list[dict[str, Any]], c: _Coercer) -> GpaTrend:
        recent = terms[-GPA_TREND_WINDOW:]
        # Unparseable term GPAs are dropped, not read as 0.0.
        parsed = [c.optional_number(t.get("term_gpa"), "term.term_gpa") for t in recent]
        gpas = [g for g in parsed if g is not None]
        if len(gpas) < 2:
            return GpaTrend.STABLE
        delta = gpas[-1] - gpas[0]
        if delta < -GPA_TREND_DELTA:
            return GpaTrend.DECLINING
        if delta > GPA_TREND_DELTA:
            return GpaTrend.IMPROVING
        return GpaTrend.STABLE

    @staticmethod
    def _credits_behind(row: dict[str, Any], c: _Coercer) -> float:
        required = c.non_negative(row.get("total_credits_required"), "total_credits_required")
        if not required:
            return 0.0
        current_term = c.non_negative(row.get("current_term_number"), "current_term_number")
        total_terms = c.non_negative(row.get("total_terms"), "total_terms") or 1.0
        expected = current_term / total_terms * required
        if expected <= 0:
            return 0.0
        completed = c.non_negative(row.get("credits_completed"), "credits_completed")
        return round(max(0.0, (expected - completed) / expected), 4)

    @staticmethod
    def _timeline_progress(row: dict[str, Any], as_of: datetime, c: _Coercer) -> int:
        start = c.moment(row.get("actual_start_date"), "actual_start_date")
        end = c.moment(row.get("expected_end_date"), "expected_end_date")
        if start is None or end is None:
            return 0
        total = (end - start).total_seconds()
        if total <= 0:
            c.issues.append("expected_end_date: not after actual_start_date")
            return 0
        elapsed = (as_of - start).total_seconds()
        return round(elapsed / total * 100)
