"""Score persistence with escalation detection.

``ScoreStore.record`` performs three writes in order: the score record, an
optional alert, and the denormalized current band on the source entity. All
three go through one session and are committed together, so a failure leaves
none of them behind.
"""

import uuid
from datetime import UTC, datetime

import structlog

from .bands import BandClassifier
from .config import WeightConfig
from .errors import AlertNotFound, ConfigInvalid, PersistenceFailure, ScoringError
from .models import (
    AlertStatus,
    AlertType,
    EntityKind,
    ScoreAlert,
    ScoreRecord,
)
from .repository import ScoringRepository

logger = structlog.get_logger()

OVERRIDE_MODEL_VERSION = "manual-override"


def escalation_type(
    previous_band: str | None,
    new_band: str,
    config: WeightConfig,
) -> AlertType | None:
    """Decide whether moving from ``previous_band`` to ``new_band`` raises an alert.

    * No previous band: alert (new_risk) only if the new band is at or above
      the config's alert band.
    * Otherwise: alert only when severity strictly increases;
      critical_threshold when the new band is the top band, else escalation.

    A previous band missing from the current vocabulary is treated as no
    previous band.
    """
    new_rank = config.severity_rank(new_band)
    prev_rank = config.severity_rank(previous_band) if previous_band is not None else -1

    if prev_rank < 0:
        if new_rank >= config.severity_rank(config.alert_band):
            return AlertType.NEW_RISK
        return None

    if new_rank <= prev_rank:
        return None
    if new_rank == len(config.bands) - 1:
        return AlertType.CRITICAL_THRESHOLD
    return AlertType.ESCALATION


class ScoreStore:
    def __init__(self, repository: ScoringRepository) -> None:
        self._repo = repository

    async def record(
        self, record: ScoreRecord, config: WeightConfig
    ) -> tuple[ScoreRecord, ScoreAlert | None]:
        """Persist a score, raise an escalation alert if warranted, update the entity band."""
        try:
            previous = await self._repo.latest_score(record.entity_kind, record.entity_id)
            if previous is not None and previous.band not in config.band_names:
                logger.warning(
                    "previous_band_not_in_config",
                    entity_id=record.entity_id,
                    previous_band=previous.band,
                    config_version=config.version,
                )
            record = record.model_copy(
                update={"previous_band": previous.band if previous else None}
            )

            saved = await self._repo.add_score(record)

            alert: ScoreAlert | None = None
            alert_type = escalation_type(saved.previous_band, saved.band, config)
            if alert_type is not None:
                alert = await self._repo.add_alert(
                    ScoreAlert(
                        alert_id=str(uuid.uuid4()),
                        entity_kind=saved.entity_kind,
                        entity_id=saved.entity_id,
                        score_record_id=saved.id,
                        previous_band=saved.previous_band,
                        new_band=saved.band,
                        alert_type=alert_type,
                        created_at=datetime.now(UTC),
                    )
                )

            await self._repo.set_current_band(saved.entity_kind, saved.entity_id, saved.band)
            await self._repo.commit()
        except ScoringError:
            await self._repo.rollback()
            raise
        except Exception as e:
            await self._repo.rollback()
            raise PersistenceFailure(
                f"Failed to persist score for {record.entity_kind.value} {record.entity_id}: {e}"
            ) from e

        if alert is not None:
            logger.warning(
                "score_escalation_alert",
                alert_id=alert.alert_id,
                entity_kind=saved.entity_kind.value,
                entity_id=saved.entity_id,
                previous_band=alert.previous_band,
                new_band=alert.new_band,
                alert_type=alert.alert_type.value,
            )

        return saved, alert

    async def record_override(
        self,
        kind: EntityKind,
        entity_id: str,
        band: str,
        reason: str,
        actor_id: str,
        config: WeightConfig,
        score: int | None = None,
    ) -> ScoreRecord:
        """Store a manual override. Overrides never serve as the escalation baseline."""
        if band not in config.band_names:
            raise ConfigInvalid(f"Band '{band}' is not one of {list(config.band_names)}")

        current = await self._repo.latest_score(kind, entity_id, include_overrides=True)
        if score is None:
            if current is not None:
                score = current.score
            else:
                score = next(b.min_score for b in config.bands if b.name == band)
        elif BandClassifier(config.bands).classify(score) != band:
            logger.info("override_band_differs_from_score", entity_id=entity_id, score=score)

        override = ScoreRecord(
            entity_kind=kind,
            entity_id=entity_id,
            score=score,
            band=band,
            factors=list(current.factors) if current else [],
            explanation=f"Manual override: {reason}",
            model_version=OVERRIDE_MODEL_VERSION,
            config_version=config.version,
            previous_band=current.band if current else None,
            is_override=True,
            override_by=actor_id,
            override_reason=reason,
            scored_at=datetime.now(UTC),
        )
        try:
            saved = await self._repo.add_score(override)
            await self._repo.set_current_band(kind, entity_id, band)
            await self._repo.commit()
        except Exception as e:
            await self._repo.rollback()
            raise PersistenceFailure(f"Failed to persist override for {entity_id}: {e}") from e

        logger.info(
            "score_overridden",
            entity_kind=kind.value,
            entity_id=entity_id,
            previous_band=override.previous_band,
            new_band=band,
            actor_id=actor_id,
        )
        return saved

    async def review_alert(
        self,
        alert_id: str,
        status: AlertStatus,
        reviewer_id: str,
        notes: str | None = None,
    ) -> ScoreAlert:
        if status == AlertStatus.PENDING:
            raise ValueError("An alert cannot be moved back to pending")

        alert = await self._repo.get_alert(alert_id)
        if alert is None:
            raise AlertNotFound(f"Alert {alert_id} not found")

        reviewed = alert.model_copy(
            update={
                "status": status,
                "reviewed_by": reviewer_id,
                "review_notes": notes,
                "reviewed_at": datetime.now(UTC),
            }
        )
        try:
            await self._repo.save_alert_review(reviewed)
            await self._repo.commit()
        except Exception as e:
            await self._repo.rollback()
            raise PersistenceFailure(f"Failed to save review for alert {alert_id}: {e}") from e

        logger.info(
            "alert_reviewed",
            alert_id=alert_id,
            status=status.value,
            reviewer_id=reviewer_id,
        )
        return reviewed
