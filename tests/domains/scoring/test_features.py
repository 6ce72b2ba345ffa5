"""Unit tests for feature extraction from joined source rows."""

from datetime import UTC, datetime

import pytest

from src.domains.scoring.features import FeatureExtractor
from src.domains.scoring.models import (
    EntityKind,
    GapLevel,
    GpaTrend,
    ManagerPriority,
    RoleCriticality,
)

AS_OF = datetime(2026, 3, 1, tzinfo=UTC)


@pytest.fixture
def extractor() -> FeatureExtractor:
    return FeatureExtractor()


class TestTrainingNeed:
    def test_hse_mandatory_course(self, extractor, hse_tna_row):
        result = extractor.extract(EntityKind.TRAINING_NEED, hse_tna_row)
        f = result.factors
        assert f.hse_critical is True
        assert f.compliance_overdue is True
        assert f.manager_priority == ManagerPriority.HIGH
        assert f.competency_gap_level == GapLevel.HIGH
        assert f.estimated_cost == 1000
        assert result.issues == ()
        assert result.label == "HSE Induction"

    def test_safety_keyword_without_mandatory_flag(self, extractor):
        row = {
            "priority": "medium",
            "course": {"name_en": "Working at Height Safety", "is_mandatory": False},
            "competency": {"category": "Operations"},
        }
        f = extractor.extract(EntityKind.TRAINING_NEED, row).factors
        assert f.hse_critical is True
        assert f.compliance_overdue is False

    def test_cost_falls_back_to_course_cost(self, extractor):
        row = {"course": {"name_en": "Leadership", "cost_amount": "2500"}}
        f = extractor.extract(EntityKind.TRAINING_NEED, row).factors
        assert f.estimated_cost == 2500
        assert f.manager_priority == ManagerPriority.MEDIUM

    def test_missing_relations_use_neutral_values(self, extractor):
        result = extractor.extract(EntityKind.TRAINING_NEED, {"id": "x"})
        f = result.factors
        assert f.hse_critical is False
        assert f.estimated_cost == 0
        assert f.role_criticality == RoleCriticality.STANDARD
        assert f.manager_priority == ManagerPriority.MEDIUM
        assert f.competency_gap_level == GapLevel.MEDIUM
        assert result.issues == ()

    def test_unknown_priority_reported(self, extractor):
        result = extractor.extract(EntityKind.TRAINING_NEED, {"priority": "urgent"})
        assert result.factors.manager_priority == ManagerPriority.MEDIUM
        assert result.factors.competency_gap_level == GapLevel.NONE
        assert any(issue.startswith("priority") for issue in result.issues)

    def test_negative_cost_coerced(self, extractor):
        result = extractor.extract(EntityKind.TRAINING_NEED, {"estimated_cost": -100})
        assert result.factors.estimated_cost == 0
        assert any("negative" in issue for issue in result.issues)

    def test_non_numeric_cost_coerced(self, extractor):
        result = extractor.extract(EntityKind.TRAINING_NEED, {"estimated_cost": "n/a"})
        assert result.factors.estimated_cost == 0
        assert result.issues

    def test_role_criticality_read_from_row(self, extractor):
        row = {"role_criticality": "Critical"}
        f = extractor.extract(EntityKind.TRAINING_NEED, row).factors
        assert f.role_criticality == RoleCriticality.CRITICAL

    def test_plan_item_fields(self, extractor):
        row = {
            "item_name": "Fire warden refresher",
            "priority": "low",
            "unit_cost": 400,
            "strategic_theme": "local content",
            "category": {"name_en": "HSE"},
            "course": None,
        }
        result = extractor.extract(EntityKind.PLAN_ITEM, row)
        f = result.factors
        assert f.hse_critical is True
        assert f.estimated_cost == 400
        assert f.strategic_theme == "local content"
        assert result.label == "Fire warden refresher"


class TestScholar:
    def test_struggling_scholar(self, extractor, struggling_scholar_row):
        f = extractor.extract(EntityKind.SCHOLAR, struggling_scholar_row, as_of=AS_OF).factors
        assert f.normalized_gpa == 1.8
        assert f.gpa_trend == GpaTrend.DECLINING
        assert f.credits_behind == 0.5
        assert f.terms_completed == 3
        assert 0 < f.timeline_progress < 100

    def test_gpa_normalized_to_four_point_scale(self, extractor):
        row = {"cumulative_gpa": 3.0, "gpa_scale": 5.0}
        f = extractor.extract(EntityKind.SCHOLAR, row, as_of=AS_OF).factors
        assert f.normalized_gpa == 2.4

    def test_zero_gpa_means_no_grades_yet(self, extractor):
        f = extractor.extract(EntityKind.SCHOLAR, {"cumulative_gpa": 0}, as_of=AS_OF).factors
        assert f.normalized_gpa is None

    def test_trend_needs_two_graded_terms(self, extractor):
        row = {
            "terms": [
                {"term_number": 1, "term_gpa": 3.5},
                {"term_number": 2, "term_gpa": None},
            ]
        }
        f = extractor.extract(EntityKind.SCHOLAR, row, as_of=AS_OF).factors
        assert f.gpa_trend == GpaTrend.STABLE

    def test_malformed_term_gpa_dropped_from_trend(self, extractor):
        row = {
            "terms": [
                {"term_number": 1, "term_gpa": 3.0},
                {"term_number": 2, "term_gpa": "n/a"},
            ]
        }
        extracted = extractor.extract(EntityKind.SCHOLAR, row, as_of=AS_OF)
        assert extracted.factors.gpa_trend == GpaTrend.STABLE
        assert extracted.issues == ("term.term_gpa: not a number ('n/a')",)

    def test_malformed_term_gpa_does_not_break_real_trend(self, extractor):
        row = {
            "terms": [
                {"term_number": 1, "term_gpa": 3.4},
                {"term_number": 2, "term_gpa": "abc"},
                {"term_number": 3, "term_gpa": 2.8},
            ]
        }
        f = extractor.extract(EntityKind.SCHOLAR, row, as_of=AS_OF).factors
        assert f.gpa_trend == GpaTrend.DECLINING

    def test_improving_trend(self, extractor):
        row = {
            "terms": [
                {"term_number": 2, "term_gpa": 3.2},
                {"term_number": 1, "term_gpa": 2.6},
            ]
        }
        f = extractor.extract(EntityKind.SCHOLAR, row, as_of=AS_OF).factors
        assert f.gpa_trend == GpaTrend.IMPROVING

    def test_modules_and_events_counted(self, extractor):
        row = {
            "modules": [
                {"passed": False, "module_type": "core", "is_retake": False},
                {"passed": False, "module_type": "Core", "is_retake": True},
                {"passed": False, "module_type": "elective", "is_retake": False},
                {"passed": None, "module_type": "core", "is_retake": False},
            ],
            "events": [
                {"event_type": "probation"},
                {"event_type": "award"},
                {"event_type": "Academic_Warning"},
            ],
        }
        f = extractor.extract(EntityKind.SCHOLAR, row, as_of=AS_OF).factors
        assert f.failed_modules == 3
        assert f.failed_core_modules == 2
        assert f.retakes == 1
        assert f.negative_events == 2

    def test_no_credit_requirement_means_not_behind(self, extractor):
        row = {"total_credits_required": 0, "credits_completed": 0, "current_term_number": 5}
        f = extractor.extract(EntityKind.SCHOLAR, row, as_of=AS_OF).factors
        assert f.credits_behind == 0.0

    def test_timeline_past_expected_end(self, extractor):
        row = {"actual_start_date": "2022-01-01", "expected_end_date": "2025-01-01"}
        f = extractor.extract(EntityKind.SCHOLAR, row, as_of=AS_OF).factors
        assert f.timeline_progress > 100

    def test_inverted_dates_reported(self, extractor):
        row = {"actual_start_date": "2026-01-01", "expected_end_date": "2025-01-01"}
        result = extractor.extract(EntityKind.SCHOLAR, row, as_of=AS_OF)
        assert result.factors.timeline_progress == 0
        assert any("expected_end_date" in issue for issue in result.issues)

    def test_unparseable_date_reported(self, extractor):
        row = {"actual_start_date": "soon", "expected_end_date": "2027-01-01"}
        result = extractor.extract(EntityKind.SCHOLAR, row, as_of=AS_OF)
        assert result.factors.timeline_progress == 0
        assert any("actual_start_date" in issue for issue in result.issues)
