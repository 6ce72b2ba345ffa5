"""Per-entity scoring pipeline.

extract -> rules -> band -> enrich -> store. ``evaluate`` is the pure part
(no I/O); ``score_entity`` adds fetching, enrichment and persistence.
"""

from collections import Counter
from datetime import UTC, datetime
from typing import Any

import structlog

from .bands import BandClassifier
from .config import WeightConfig
from .enrichment import ExplanationEnricher
from .errors import ItemFetchFailure, ScoringError
from .features import FeatureExtractor
from .models import (
    EntityKind,
    ExtractedFeatures,
    RuleEvaluation,
    ScoreAlert,
    ScoreRecord,
    SimulationResult,
    config_kind_for,
)
from .repository import ScoringRepository
from .rules_engine import RuleEngine
from .store import ScoreStore

logger = structlog.get_logger()


class ScoringPipeline:
    """Scores single entities; also used by the batch coordinator per item."""

    def __init__(
        self,
        repository: ScoringRepository,
        enricher: ExplanationEnricher | None = None,
        extractor: FeatureExtractor | None = None,
        engine: RuleEngine | None = None,
    ) -> None:
        self._repo = repository
        self._enricher = enricher or ExplanationEnricher()
        self._extractor = extractor or FeatureExtractor()
        self._engine = engine or RuleEngine()
        self._store = ScoreStore(repository)

    @property
    def store(self) -> ScoreStore:
        return self._store

    def evaluate(
        self,
        kind: EntityKind,
        row: dict[str, Any],
        config: WeightConfig,
        as_of: datetime | None = None,
    ) -> tuple[ExtractedFeatures, RuleEvaluation, str]:
        """Pure rule-based scoring of one source row."""
        extracted = self._extractor.extract(kind, row, as_of=as_of)
        evaluation = self._engine.evaluate(extracted.factors, config)
        band = BandClassifier.for_config(config).classify(evaluation.score)
        return extracted, evaluation, band

    async def fetch(self, kind: EntityKind, entity_id: str) -> dict[str, Any]:
        try:
            row = await self._repo.fetch_entity(kind, entity_id)
        except ScoringError:
            raise
        except Exception as e:
            raise ItemFetchFailure(f"Failed to load {kind.value} {entity_id}: {e}") from e
        if row is None:
            raise ItemFetchFailure(f"{kind.value} {entity_id} not found")
        return row

    async def score_entity(
        self,
        kind: EntityKind,
        entity_id: str,
        config: WeightConfig,
        job_id: str | None = None,
        as_of: datetime | None = None,
    ) -> tuple[ScoreRecord, ScoreAlert | None]:
        row = await self.fetch(kind, entity_id)
        extracted, evaluation, _ = self.evaluate(kind, row, config, as_of=as_of)
        outcome = await self._enricher.enrich(
            extracted, evaluation, config, BandClassifier.for_config(config)
        )

        record = ScoreRecord(
            entity_kind=kind,
            entity_id=entity_id,
            score=outcome.score,
            band=outcome.band,
            factors=outcome.factors,
            explanation=outcome.explanation,
            model_version=outcome.model_version,
            config_version=config.version,
            feature_snapshot={
                "factors": extracted.factors.model_dump(mode="json"),
                "issues": list(extracted.issues),
                "rule_score": evaluation.score,
            },
            job_id=job_id,
            scored_at=datetime.now(UTC),
        )
        saved, alert = await self._store.record(record, config)

        logger.info(
            "entity_scored",
            entity_kind=kind.value,
            entity_id=entity_id,
            score=saved.score,
            band=saved.band,
            rule_score=evaluation.score,
            enriched=outcome.enriched,
            config_version=config.version,
            alert_created=alert is not None,
        )
        return saved, alert

    async def score(self, kind: EntityKind, entity_id: str) -> ScoreRecord:
        """Single-entity entry point: loads the active config, then scores."""
        config = await self._repo.get_active_config(config_kind_for(kind))
        saved, _ = await self.score_entity(kind, entity_id, config)
        return saved

    async def simulate(
        self,
        kind: EntityKind,
        entity_ids: list[str],
        weights: dict[str, float],
    ) -> SimulationResult:
        """Compare band distributions under current vs. alternative weights.

        Rule-based only and nothing is persisted.
        """
        current = await self._repo.get_active_config(config_kind_for(kind))
        simulated = current.with_weights(weights)

        current_bands: Counter[str] = Counter()
        simulated_bands: Counter[str] = Counter()
        deltas: list[int] = []
        failed = 0
        as_of = datetime.now(UTC)

        for entity_id in entity_ids:
            try:
                row = await self.fetch(kind, entity_id)
            except ItemFetchFailure:
                logger.warning("simulation_item_skipped", entity_id=entity_id)
                failed += 1
                continue
            _, before, band_before = self.evaluate(kind, row, current, as_of=as_of)
            _, after, band_after = self.evaluate(kind, row, simulated, as_of=as_of)
            current_bands[band_before] += 1
            simulated_bands[band_after] += 1
            deltas.append(after.score - before.score)

        return SimulationResult(
            scored=len(deltas),
            failed=failed,
            current_distribution={b: current_bands[b] for b in current.band_names},
            simulated_distribution={b: simulated_bands[b] for b in simulated.band_names},
            average_score_change=round(sum(deltas) / len(deltas), 2) if deltas else 0.0,
        )
