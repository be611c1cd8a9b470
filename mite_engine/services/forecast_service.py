"""Weather forecast collaborator: timelines API client and payload parsing."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol

import httpx

from mite_engine.domain.errors import ForecastUnavailableError
from mite_engine.domain.models import Coordinates, WeatherInterval
from mite_engine.utils.config import Settings, get_settings
from mite_engine.utils.logger import get_logger


logger = get_logger(__name__)


class ForecastProvider(Protocol):
    def fetch(self, coordinates: Coordinates) -> list[WeatherInterval]:
        """Return ordered fixed-width intervals, or raise ForecastUnavailableError."""


def _parse_time(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def parse_timelines_payload(payload: Any) -> list[WeatherInterval]:
    """Extract `data.timelines[0].intervals` into WeatherInterval records."""
    try:
        timelines = payload["data"]["timelines"]
        if not timelines:
            return []
        intervals = timelines[0].get("intervals") or []
        parsed = [
            WeatherInterval(
                start_time=_parse_time(str(interval["startTime"])),
                temperature=float(interval["values"]["temperature"]),
                humidity=float(interval["values"]["humidity"]),
                precipitation_probability=float(
                    interval["values"].get("precipitationProbability", 0.0)
                ),
            )
            for interval in intervals
        ]
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise ForecastUnavailableError(f"Malformed forecast payload: {exc}") from exc
    return sorted(parsed, key=lambda interval: interval.start_time)


class TimelinesForecastProvider:
    """Fetches a 30-minute, 12-hour forecast from a timelines-style API."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client or httpx.Client(timeout=self._settings.forecast_timeout_seconds)

    def _request_body(self, coordinates: Coordinates) -> dict[str, Any]:
        return {
            "location": f"{coordinates.latitude}, {coordinates.longitude}",
            "fields": ["temperature", "humidity", "precipitationProbability"],
            "units": "metric",
            "timesteps": [f"{self._settings.forecast_timestep_minutes}m"],
            "startTime": "now",
            "endTime": f"nowPlus{self._settings.forecast_horizon_hours}h",
        }

    def fetch(self, coordinates: Coordinates) -> list[WeatherInterval]:
        if not self._settings.forecast_api_key:
            raise ForecastUnavailableError("FORECAST_API_KEY is not configured")
        try:
            response = self._client.post(
                self._settings.forecast_api_url,
                params={"apikey": self._settings.forecast_api_key},
                json=self._request_body(coordinates),
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Weather API request failed: %s %s",
                exc.response.status_code,
                exc.response.reason_phrase,
            )
            raise ForecastUnavailableError(
                f"Forecast provider returned {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Error fetching weather forecast: %s", exc)
            raise ForecastUnavailableError(f"Forecast provider unreachable: {exc}") from exc

        intervals = parse_timelines_payload(payload)
        logger.info(
            "Fetched %s forecast intervals for (%.4f, %.4f)",
            len(intervals),
            coordinates.latitude,
            coordinates.longitude,
        )
        return intervals
