from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from mite_engine.domain.errors import InvariantViolationError
from mite_engine.domain.models import OptimalWindow, PredictedOutcome
from mite_engine.services.outcome_service import (
    OutcomePredictor,
    fallback_outcome,
    validate_outcome,
)
from mite_engine.utils.config import get_settings


START = datetime(2026, 6, 1, 8, 0, tzinfo=timezone.utc)


def _window(temperature=24.0, humidity=50.0, precipitation=5.0, hours=11.0) -> OptimalWindow:
    return OptimalWindow(
        start_time=START,
        end_time=START + timedelta(hours=hours),
        avg_temperature=temperature,
        avg_humidity=humidity,
        avg_precipitation_probability=precipitation,
        suitability_score=66.0,
    )


def _ai_reply(payload: dict) -> dict:
    content = "Here is my assessment.\n```json\n" + json.dumps(payload) + "\n```"
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def test_fallback_rewards_warm_dry_long_windows():
    outcome = fallback_outcome(50.0, _window())
    assert outcome.score_reduction == 29.0
    assert outcome.final_score == 21.0
    assert outcome.effectiveness_score == 100.0
    assert outcome.source == "fallback"


def test_fallback_base_reduction_for_poor_conditions():
    outcome = fallback_outcome(50.0, _window(temperature=10.0, humidity=85.0, precipitation=30.0, hours=1.0))
    assert outcome.score_reduction == 15.0
    assert outcome.final_score == 35.0
    assert outcome.effectiveness_score == 75.0


def test_fallback_never_drops_below_zero_and_reports_applied_reduction():
    outcome = fallback_outcome(12.0, _window())
    assert outcome.final_score == 0.0
    assert outcome.score_reduction == 12.0
    assert outcome.effectiveness_score == 66.0


def test_fallback_reduction_stays_in_range():
    for temperature in (5.0, 16.0, 21.0, 30.0):
        for humidity in (30.0, 60.0, 70.0, 95.0):
            for hours in (0.5, 3.0, 5.0, 8.0):
                outcome = fallback_outcome(100.0, _window(temperature, humidity, 0.0, hours))
                assert 10.0 <= outcome.score_reduction <= 40.0
                validate_outcome(100.0, outcome)


def test_validate_outcome_rejects_score_increase():
    with pytest.raises(InvariantViolationError):
        validate_outcome(20.0, PredictedOutcome(80.0, 0.0, 25.0))


def test_validate_outcome_rejects_out_of_range_score():
    with pytest.raises(InvariantViolationError):
        validate_outcome(20.0, PredictedOutcome(80.0, 25.0, -5.0))


def test_ai_values_are_clamped():
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json=_ai_reply(
                {"effectiveness_score": 120, "mite_score_reduction": 55, "final_mite_score": 5}
            ),
        )

    settings = replace(get_settings(), outcome_api_key="test-key")
    predictor = OutcomePredictor(settings, client=httpx.Client(transport=httpx.MockTransport(handler)))
    outcome = predictor.predict(60.0, _window(), photo_ref="https://example.com/duvet.jpg")

    assert outcome.source == "ai"
    assert outcome.score_reduction == 40.0
    assert outcome.final_score == 20.0
    assert outcome.effectiveness_score == 100.0
    assert captured["auth"] == "Bearer test-key"
    image_part = captured["body"]["messages"][0]["content"][1]
    assert image_part["image_url"]["url"] == "https://example.com/duvet.jpg"


def test_ai_failure_falls_back_to_formula():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "overloaded"})

    settings = replace(get_settings(), outcome_api_key="test-key")
    predictor = OutcomePredictor(settings, client=httpx.Client(transport=httpx.MockTransport(handler)))
    outcome = predictor.predict(50.0, _window(), photo_ref="photo-1")

    assert outcome == fallback_outcome(50.0, _window())


def test_ai_reply_without_json_block_falls_back():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": [{"message": {"content": "Looks dry to me."}}]})

    settings = replace(get_settings(), outcome_api_key="test-key")
    predictor = OutcomePredictor(settings, client=httpx.Client(transport=httpx.MockTransport(handler)))
    assert predictor.predict(50.0, _window(), photo_ref="photo-1").source == "fallback"


def test_no_api_key_skips_the_network():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("the AI endpoint must not be called without a key")

    settings = replace(get_settings(), outcome_api_key=None)
    predictor = OutcomePredictor(settings, client=httpx.Client(transport=httpx.MockTransport(handler)))
    outcome = predictor.predict(50.0, _window(), photo_ref="photo-1")
    assert outcome.source == "fallback"


def test_validate_outcome_requires_final_score_to_follow_reduction():
    with pytest.raises(InvariantViolationError):
        validate_outcome(90.0, PredictedOutcome(60.0, 10.0, 0.0))
    validate_outcome(90.0, PredictedOutcome(60.0, 10.0, 80.0))


def test_validate_outcome_enforces_reduction_range_unless_floored():
    with pytest.raises(InvariantViolationError):
        validate_outcome(50.0, PredictedOutcome(60.0, 5.0, 45.0))
    with pytest.raises(InvariantViolationError):
        validate_outcome(90.0, PredictedOutcome(100.0, 45.0, 45.0))
    validate_outcome(6.0, PredictedOutcome(60.0, 6.0, 0.0))
