"""Severity band classification."""

from .config import SCORE_MAX, SCORE_MIN, BandDefinition, WeightConfig, validate_bands


class BandClassifier:
    """Maps a 0-100 score to the configured band, scanning in severity order.

    The band table is validated on construction, so ``classify`` is total
    over [0, 100].
    """

    def __init__(self, bands: tuple[BandDefinition, ...]) -> None:
        validate_bands(bands)
        self._bands = bands

    @classmethod
    def for_config(cls, config: WeightConfig) -> "BandClassifier":
        return cls(config.bands)

    @property
    def bands(self) -> tuple[BandDefinition, ...]:
        return self._bands

    def classify(self, score: int) -> str:
        if score < SCORE_MIN or score > SCORE_MAX:
            raise ValueError(f"Score {score} outside [{SCORE_MIN}, {SCORE_MAX}]")
        for band in self._bands:
            if band.max_score >= score:
                return band.name
        # Unreachable for a validated table.
        return self._bands[-1].name

    def rank(self, band: str) -> int:
        for idx, b in enumerate(self._bands):
            if b.name == band:
                return idx
        return -1

    @property
    def top_band(self) -> str:
        return self._bands[-1].name
