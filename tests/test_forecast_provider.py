from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime, timezone

import httpx
import pytest

from mite_engine.domain.errors import ForecastUnavailableError
from mite_engine.domain.models import Coordinates
from mite_engine.services.forecast_service import (
    TimelinesForecastProvider,
    parse_timelines_payload,
)
from mite_engine.utils.config import get_settings


SHANGHAI = Coordinates(latitude=31.2304, longitude=121.4737)


def _payload(*intervals: tuple[str, float, float, float]) -> dict:
    return {
        "data": {
            "timelines": [
                {
                    "timestep": "30m",
                    "intervals": [
                        {
                            "startTime": start,
                            "values": {
                                "temperature": temperature,
                                "humidity": humidity,
                                "precipitationProbability": precipitation,
                            },
                        }
                        for start, temperature, humidity, precipitation in intervals
                    ],
                }
            ]
        }
    }


def _provider(handler, api_key: str | None = "forecast-key") -> TimelinesForecastProvider:
    settings = replace(get_settings(), forecast_api_key=api_key)
    return TimelinesForecastProvider(
        settings,
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def test_parse_sorts_intervals_and_reads_utc_suffix():
    intervals = parse_timelines_payload(
        _payload(
            ("2026-06-01T08:30:00Z", 22.0, 55.0, 0.0),
            ("2026-06-01T08:00:00Z", 21.0, 60.0, 10.0),
        )
    )
    assert [interval.start_time for interval in intervals] == [
        datetime(2026, 6, 1, 8, 0, tzinfo=timezone.utc),
        datetime(2026, 6, 1, 8, 30, tzinfo=timezone.utc),
    ]
    assert intervals[0].precipitation_probability == 10.0


def test_parse_empty_timeline_is_empty_list():
    assert parse_timelines_payload({"data": {"timelines": []}}) == []


def test_parse_malformed_payload_raises_unavailable():
    with pytest.raises(ForecastUnavailableError):
        parse_timelines_payload({"data": {}})


def test_fetch_posts_location_and_fields():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["apikey"] = request.url.params["apikey"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_payload(("2026-06-01T08:00:00Z", 21.0, 60.0, 10.0)))

    intervals = _provider(handler).fetch(SHANGHAI)

    assert len(intervals) == 1
    assert seen["apikey"] == "forecast-key"
    assert seen["body"]["location"] == "31.2304, 121.4737"
    assert seen["body"]["timesteps"] == ["30m"]
    assert seen["body"]["endTime"] == "nowPlus12h"
    assert "precipitationProbability" in seen["body"]["fields"]


def test_fetch_http_error_is_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"message": "rate limited"})

    with pytest.raises(ForecastUnavailableError):
        _provider(handler).fetch(SHANGHAI)


def test_fetch_network_error_is_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ForecastUnavailableError):
        _provider(handler).fetch(SHANGHAI)


def test_fetch_without_key_is_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(ForecastUnavailableError):
        _provider(handler, api_key=None).fetch(SHANGHAI)
