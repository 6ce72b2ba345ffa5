"""Optional natural-language enrichment through an external chat model.

The rule-based result is always computed first and is returned unchanged
whenever the model call fails in any way (timeout, transport error, non-2xx,
empty or schema-invalid body). Two policies exist, selected per config by
``WeightConfig.ai_overrides_score``:

* False: the model may only replace the explanation text.
* True: a strictly valid JSON reply supplies the authoritative score and
  factor list; the band is recomputed from that score.
"""

import asyncio
import json
from dataclasses import dataclass

import httpx
import structlog
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from .bands import BandClassifier
from .config import SCORE_MAX, SCORE_MIN, WeightConfig
from .errors import ExternalServiceFailure
from .models import (
    ExtractedFeatures,
    FactorContribution,
    Impact,
    RuleEvaluation,
    ScholarRiskFactors,
    ScoreOutcome,
)

logger = structlog.get_logger()

RULES_MODEL_VERSION = "rules-v1"


@dataclass
class EnricherSettings:
    api_key: str = ""
    base_url: str = "https://ai.gateway.lovable.dev/v1"
    model: str = "google/gemini-2.5-flash"
    timeout_seconds: float = 15.0
    max_tokens: int = 400
    temperature: float = 0.3


class ModelFactor(BaseModel):
    model_config = ConfigDict(extra="forbid")

    factor: str = Field(min_length=1)
    description: str
    impact: Impact


class ModelAssessment(BaseModel):
    """Strict schema for a score-bearing model reply."""

    model_config = ConfigDict(extra="forbid")

    score: float = Field(
        strict=True,
        allow_inf_nan=False,
        validation_alias=AliasChoices("score", "risk_score"),
    )
    band: str | None = Field(default=None, validation_alias=AliasChoices("band", "risk_band"))
    factors: list[ModelFactor] = Field(default_factory=list)
    explanation: str | None = None


def build_prompt(extracted: ExtractedFeatures, evaluation: RuleEvaluation, structured: bool) -> str:
    """Prompt embedding the factor set and the rule breakdown."""
    factors = extracted.factors
    is_risk = isinstance(factors, ScholarRiskFactors)
    subject = "scholar's non-completion risk" if is_risk else "training need's priority"

    breakdown = "\n".join(
        f"- {c.factor}: {c.contribution} points ({c.impact.value} impact) - {c.description}"
        for c in evaluation.contributions
    ) or "- no contributing factors"

    lines = [
        f"Assess this {subject}.",
        f"Subject: {extracted.label or 'unnamed'}",
        "",
        "Factors (JSON):",
        factors.model_dump_json(),
        "",
        "Rule-based breakdown:",
        breakdown,
        f"Rule-based score: {evaluation.score}/100",
        "",
    ]
    if structured:
        lines.append(
            "Respond ONLY with a JSON object with keys: "
            '"score" (number 0-100, 100 = highest severity), "band" (string), '
            '"factors" (array of {"factor", "description", "impact": "low"|"medium"|"high"}) '
            'and optionally "explanation" (string). No markdown.'
        )
    else:
        lines.append(
            "Explain in 2-3 sentences why it received this score. "
            "Be specific and actionable. Plain text only."
        )
    return "\n".join(lines)


class ExplanationEnricher:
    """Calls an OpenAI-compatible chat completions endpoint with a hard timeout."""

    def __init__(
        self,
        settings: EnricherSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or EnricherSettings()
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self._settings.api_key)

    @property
    def enriched_model_version(self) -> str:
        return f"{RULES_MODEL_VERSION}+{self._settings.model}"

    async def enrich(
        self,
        extracted: ExtractedFeatures,
        evaluation: RuleEvaluation,
        config: WeightConfig,
        classifier: BandClassifier,
    ) -> ScoreOutcome:
        baseline = ScoreOutcome(
            score=evaluation.score,
            band=classifier.classify(evaluation.score),
            factors=list(evaluation.contributions),
            explanation=evaluation.summary,
            model_version=RULES_MODEL_VERSION,
        )
        if not self.enabled:
            return baseline

        try:
            if config.ai_overrides_score:
                return await self._assess(extracted, evaluation, classifier, baseline)
            return await self._explain(extracted, evaluation, baseline)
        except ExternalServiceFailure as e:
            logger.warning(
                "enrichment_fallback",
                reason=str(e),
                policy="override" if config.ai_overrides_score else "explain",
                rule_score=evaluation.score,
            )
            return baseline

    async def _explain(
        self,
        extracted: ExtractedFeatures,
        evaluation: RuleEvaluation,
        baseline: ScoreOutcome,
    ) -> ScoreOutcome:
        content = await self._complete(
            build_prompt(extracted, evaluation, structured=False),
            system="You explain training prioritisation decisions briefly and clearly.",
        )
        text = content.strip()
        if not text:
            raise ExternalServiceFailure("empty explanation")
        return baseline.model_copy(
            update={
                "explanation": text,
                "model_version": self.enriched_model_version,
                "enriched": True,
            }
        )

    async def _assess(
        self,
        extracted: ExtractedFeatures,
        evaluation: RuleEvaluation,
        classifier: BandClassifier,
        baseline: ScoreOutcome,
    ) -> ScoreOutcome:
        content = await self._complete(
            build_prompt(extracted, evaluation, structured=True),
            system="You are a risk assessment model. Always respond with valid JSON only.",
            json_mode=True,
        )
        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            raise ExternalServiceFailure(f"reply is not JSON: {e}") from e
        if not isinstance(payload, dict):
            raise ExternalServiceFailure("reply is not a JSON object")
        try:
            assessment = ModelAssessment.model_validate(payload)
        except ValidationError as e:
            raise ExternalServiceFailure(f"reply failed schema validation: {e}") from e

        score = int(max(SCORE_MIN, min(SCORE_MAX, round(assessment.score))))
        band = classifier.classify(score)
        if assessment.band and assessment.band != band:
            logger.info("model_band_recomputed", model_band=assessment.band, band=band, score=score)

        factors = (
            [
                FactorContribution(factor=f.factor, description=f.description, impact=f.impact)
                for f in assessment.factors
            ]
            if assessment.factors
            else baseline.factors
        )
        explanation = assessment.explanation or (
            f"Model-assessed score {score} (rule-based score {evaluation.score})."
        )
        return ScoreOutcome(
            score=score,
            band=band,
            factors=factors,
            explanation=explanation,
            model_version=self.enriched_model_version,
            enriched=True,
        )

    async def _complete(self, prompt: str, system: str, json_mode: bool = False) -> str:
        cfg = self._settings
        body: dict = {
            "model": cfg.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": cfg.max_tokens,
            "temperature": cfg.temperature,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}

        try:
            response = await asyncio.wait_for(self._post(body), timeout=cfg.timeout_seconds)
        except TimeoutError as e:
            raise ExternalServiceFailure("model call timed out") from e
        except httpx.HTTPError as e:
            raise ExternalServiceFailure(f"model transport error: {type(e).__name__}") from e

        if not response.is_success:
            raise ExternalServiceFailure(f"model returned HTTP {response.status_code}")

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ExternalServiceFailure("model response envelope is malformed") from e
        if not isinstance(content, str):
            raise ExternalServiceFailure("model response content is not text")
        return content

    async def _post(self, body: dict) -> httpx.Response:
        cfg = self._settings
        async with httpx.AsyncClient(
            base_url=cfg.base_url,
            timeout=httpx.Timeout(cfg.timeout_seconds),
            transport=self._transport,
        ) as client:
            return await client.post(
                "/chat/completions",
                headers={
                    "Authorization": f"Bearer {cfg.api_key}",
                    "Content-Type": "application/json",
                },
                json=body,
            )
