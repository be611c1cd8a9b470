"""Predicts how much a drying window lowers an item's risk score.

The AI path asks a vision-capable chat model to judge a photo together with
the window's conditions. Any failure there degrades to a deterministic formula
built from the same window attributes, so a prediction is always available.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

import httpx

from mite_engine.domain.errors import InvariantViolationError, OutcomeUnavailableError
from mite_engine.domain.models import OptimalWindow, PredictedOutcome
from mite_engine.utils.config import Settings, get_settings
from mite_engine.utils.logger import get_logger


logger = get_logger(__name__)

MIN_REDUCTION = 10.0
MAX_REDUCTION = 40.0
BASE_REDUCTION = 15.0
# Scores are stored to two decimals.
SCORE_TOLERANCE = 0.01

_JSON_BLOCK = re.compile(r"```json\s*(.*?)\s*```", re.DOTALL)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _finalize(before_score: float, raw_reduction: float, effectiveness: float, source: str) -> PredictedOutcome:
    reduction = _clamp(raw_reduction, MIN_REDUCTION, MAX_REDUCTION)
    final_score = round(max(0.0, before_score - reduction), 2)
    applied = round(before_score - final_score, 2)
    return PredictedOutcome(
        effectiveness_score=round(_clamp(effectiveness, 0.0, 100.0), 2),
        score_reduction=applied,
        final_score=final_score,
        source=source,
    )


def fallback_outcome(
    before_score: float,
    window: OptimalWindow,
    duration_hours: Optional[float] = None,
) -> PredictedOutcome:
    """Deterministic reduction: base plus temperature, humidity, duration and dry-sky bonuses."""
    hours = window.duration_hours if duration_hours is None else duration_hours
    reduction = BASE_REDUCTION

    if window.avg_temperature > 25:
        reduction += 5
    elif window.avg_temperature > 20:
        reduction += 3
    elif window.avg_temperature > 15:
        reduction += 1

    if window.avg_humidity < 50:
        reduction += 5
    elif window.avg_humidity < 65:
        reduction += 3
    elif window.avg_humidity < 80:
        reduction += 1

    if hours > 6:
        reduction += 5
    elif hours > 4:
        reduction += 3
    elif hours > 2:
        reduction += 1

    if window.avg_precipitation_probability < 10:
        reduction += 3

    clamped = _clamp(reduction, MIN_REDUCTION, MAX_REDUCTION)
    applied = before_score - max(0.0, before_score - clamped)
    effectiveness = min(100.0, (applied - MIN_REDUCTION) * 3 + 60)
    return _finalize(before_score, clamped, effectiveness, "fallback")


def validate_outcome(before_score: float, outcome: PredictedOutcome) -> None:
    """Reject outcomes that would break the score invariants if committed."""
    if not 0.0 <= outcome.final_score <= 100.0:
        raise InvariantViolationError(
            f"final score {outcome.final_score} is outside [0, 100]"
        )
    if outcome.final_score > before_score:
        raise InvariantViolationError(
            "an intervention may not raise the risk score "
            f"({before_score} -> {outcome.final_score})"
        )
    if not 0.0 <= outcome.effectiveness_score <= 100.0:
        raise InvariantViolationError(
            f"effectiveness {outcome.effectiveness_score} is outside [0, 100]"
        )
    applied = before_score - outcome.final_score
    if abs(outcome.score_reduction - applied) > SCORE_TOLERANCE:
        raise InvariantViolationError(
            f"score reduction {outcome.score_reduction} does not match "
            f"{before_score} -> {outcome.final_score}"
        )
    # Below MIN_REDUCTION only when the score bottomed out at zero.
    floor_reached = outcome.final_score <= SCORE_TOLERANCE
    if outcome.score_reduction > MAX_REDUCTION or (
        outcome.score_reduction < MIN_REDUCTION and not floor_reached
    ):
        raise InvariantViolationError(
            f"score reduction {outcome.score_reduction} is outside "
            f"[{MIN_REDUCTION}, {MAX_REDUCTION}]"
        )


class OutcomePredictor:
    """AI-first outcome prediction with a deterministic fallback."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client or httpx.Client(timeout=self._settings.outcome_timeout_seconds)

    @property
    def ai_enabled(self) -> bool:
        return bool(self._settings.outcome_api_key)

    def _prompt(self, before_score: float, window: OptimalWindow, hours: float) -> str:
        low = max(0.0, before_score - MAX_REDUCTION)
        high = max(0.0, before_score - MIN_REDUCTION)
        return (
            "I have sun-dried my duvet and uploaded a photo of it. Assess the "
            "effectiveness of the sun-drying from the image and the conditions.\n\n"
            f"- Original mite risk score: {before_score}/100\n"
            f"- Sun-drying duration: {hours:.1f} hours\n"
            f"- Temperature: {window.avg_temperature:.1f}C\n"
            f"- Humidity: {window.avg_humidity:.0f}%\n"
            f"- Precipitation probability: {window.avg_precipitation_probability:.0f}%\n\n"
            "Give a mite score reduction between 10 and 40 points. Do not include "
            "calculation details. Answer only with:\n"
            "```json\n"
            "{\n"
            '  "effectiveness_score": 0-100,\n'
            '  "mite_score_reduction": 10-40,\n'
            f'  "final_mite_score": {low:.0f}-{high:.0f}\n'
            "}\n"
            "```"
        )

    def _request_ai(
        self,
        photo_ref: str,
        before_score: float,
        window: OptimalWindow,
        hours: float,
    ) -> PredictedOutcome:
        body: dict[str, Any] = {
            "model": self._settings.outcome_model,
            "max_tokens": 512,
            "temperature": 0.7,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": self._prompt(before_score, window, hours)},
                        {"type": "image_url", "image_url": {"url": photo_ref, "detail": "auto"}},
                    ],
                }
            ],
        }
        try:
            response = self._client.post(
                self._settings.outcome_api_url,
                json=body,
                headers={"Authorization": f"Bearer {self._settings.outcome_api_key}"},
            )
            response.raise_for_status()
            content = response.json()["choices"][0]["message"]["content"]
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as exc:
            raise OutcomeUnavailableError(f"Outcome model request failed: {exc}") from exc

        match = _JSON_BLOCK.search(content or "")
        if match is None:
            raise OutcomeUnavailableError("Outcome model reply carried no JSON block")
        try:
            parsed = json.loads(match.group(1))
            raw_reduction = float(parsed["mite_score_reduction"])
            effectiveness = float(parsed["effectiveness_score"])
        except (ValueError, KeyError, TypeError) as exc:
            raise OutcomeUnavailableError(f"Outcome model reply unreadable: {exc}") from exc
        return _finalize(before_score, raw_reduction, effectiveness, "ai")

    def predict(
        self,
        before_score: float,
        window: OptimalWindow,
        photo_ref: Optional[str] = None,
        duration_hours: Optional[float] = None,
    ) -> PredictedOutcome:
        hours = window.duration_hours if duration_hours is None else duration_hours
        if self.ai_enabled and photo_ref:
            try:
                outcome = self._request_ai(photo_ref, before_score, window, hours)
                logger.info(
                    "AI outcome: reduction %.2f, final %.2f",
                    outcome.score_reduction,
                    outcome.final_score,
                )
                return outcome
            except OutcomeUnavailableError as exc:
                logger.warning("Falling back to basic outcome analysis: %s", exc)
        return fallback_outcome(before_score, window, hours)
