"""Tests for the single-entity scoring pipeline and what-if simulation."""

import json

import httpx
import pytest

from src.domains.scoring.enrichment import EnricherSettings, ExplanationEnricher
from src.domains.scoring.errors import ConfigInvalid, ConfigMissing, ItemFetchFailure
from src.domains.scoring.models import AlertType, ConfigKind, EntityKind
from src.domains.scoring.pipeline import ScoringPipeline


@pytest.fixture
def pipeline(fake_repo) -> ScoringPipeline:
    return ScoringPipeline(fake_repo, enricher=ExplanationEnricher(EnricherSettings(api_key="")))


class TestScore:
    @pytest.mark.asyncio
    async def test_hse_need_scores_critical(self, fake_repo, pipeline, hse_tna_row):
        fake_repo.add_entity(EntityKind.TRAINING_NEED, "tna-1", hse_tna_row)

        record = await pipeline.score(EntityKind.TRAINING_NEED, "tna-1")

        assert record.score == 99
        assert record.band == "critical"
        assert record.model_version == "rules-v1"
        assert record.config_version == "default-v1"
        assert record.feature_snapshot["rule_score"] == 99
        assert record.feature_snapshot["factors"]["hse_critical"] is True
        assert fake_repo.bands[(EntityKind.TRAINING_NEED, "tna-1")] == "critical"
        assert fake_repo.alerts[0].alert_type == AlertType.NEW_RISK

    @pytest.mark.asyncio
    async def test_struggling_scholar_at_risk(self, fake_repo, pipeline, struggling_scholar_row):
        fake_repo.add_entity(EntityKind.SCHOLAR, "sch-1", struggling_scholar_row)

        record = await pipeline.score(EntityKind.SCHOLAR, "sch-1")

        assert record.score == 75
        assert record.band == "at_risk"
        assert {f.factor for f in record.factors} == {
            "low_gpa",
            "declining_gpa",
            "credits_behind",
        }
        assert len(fake_repo.alerts) == 1

    @pytest.mark.asyncio
    async def test_rescoring_same_input_is_stable(self, fake_repo, pipeline, routine_tna_row):
        fake_repo.add_entity(EntityKind.TRAINING_NEED, "tna-2", routine_tna_row)

        first = await pipeline.score(EntityKind.TRAINING_NEED, "tna-2")
        second = await pipeline.score(EntityKind.TRAINING_NEED, "tna-2")

        assert first.score == second.score == 20
        assert first.explanation == second.explanation
        assert second.previous_band == "low"
        assert fake_repo.alerts == []

    @pytest.mark.asyncio
    async def test_missing_entity(self, pipeline):
        with pytest.raises(ItemFetchFailure, match="not found"):
            await pipeline.score(EntityKind.PLAN_ITEM, "ghost")

    @pytest.mark.asyncio
    async def test_fetch_error_wrapped(self, fake_repo, pipeline, hse_tna_row):
        fake_repo.add_entity(EntityKind.TRAINING_NEED, "tna-1", hse_tna_row)
        fake_repo.failing_fetches.add("tna-1")
        with pytest.raises(ItemFetchFailure, match="source database unavailable"):
            await pipeline.score(EntityKind.TRAINING_NEED, "tna-1")

    @pytest.mark.asyncio
    async def test_missing_config(self, fake_repo, pipeline, hse_tna_row):
        fake_repo.add_entity(EntityKind.TRAINING_NEED, "tna-1", hse_tna_row)
        del fake_repo.configs[ConfigKind.PRIORITY]
        with pytest.raises(ConfigMissing):
            await pipeline.score(EntityKind.TRAINING_NEED, "tna-1")
        assert fake_repo.records == []

    @pytest.mark.asyncio
    async def test_model_score_replaces_rule_score_for_risk(
        self, fake_repo, struggling_scholar_row
    ):
        reply = {"score": 88, "band": "critical", "factors": [], "explanation": "Escalate."}
        transport = httpx.MockTransport(
            lambda r: httpx.Response(
                200, json={"choices": [{"message": {"content": json.dumps(reply)}}]}
            )
        )
        enricher = ExplanationEnricher(
            EnricherSettings(api_key="k", model="m1"), transport=transport
        )
        pipeline = ScoringPipeline(fake_repo, enricher=enricher)
        fake_repo.add_entity(EntityKind.SCHOLAR, "sch-1", struggling_scholar_row)

        record = await pipeline.score(EntityKind.SCHOLAR, "sch-1")

        assert record.score == 88
        assert record.band == "critical"
        assert record.model_version == "rules-v1+m1"
        assert record.feature_snapshot["rule_score"] == 75
        assert record.explanation == "Escalate."


class TestEvaluate:
    def test_pure_evaluation_has_no_side_effects(self, fake_repo, pipeline, hse_tna_row):
        config = fake_repo.configs[ConfigKind.PRIORITY]
        extracted, evaluation, band = pipeline.evaluate(
            EntityKind.TRAINING_NEED, hse_tna_row, config
        )
        assert evaluation.score == 99
        assert band == "critical"
        assert extracted.label == "HSE Induction"
        assert fake_repo.commits == 0


class TestSimulate:
    @pytest.mark.asyncio
    async def test_distribution_comparison(
        self, fake_repo, pipeline, hse_tna_row, routine_tna_row
    ):
        fake_repo.add_entity(EntityKind.TRAINING_NEED, "a", hse_tna_row)
        fake_repo.add_entity(EntityKind.TRAINING_NEED, "b", routine_tna_row)

        result = await pipeline.simulate(
            EntityKind.TRAINING_NEED, ["a", "b", "missing"], {"cost_efficiency": 0}
        )

        assert result.scored == 2
        assert result.failed == 1
        assert result.current_distribution == {"low": 1, "medium": 0, "high": 0, "critical": 1}
        assert result.simulated_distribution == result.current_distribution
        assert result.average_score_change == -4.0
        assert fake_repo.records == []
        assert fake_repo.commits == 0

    @pytest.mark.asyncio
    async def test_unknown_weight_rejected(self, pipeline):
        with pytest.raises(ConfigInvalid):
            await pipeline.simulate(EntityKind.SCHOLAR, ["s1"], {"hse_criticality": 10})
