"""Sun-drying window extraction from a fixed-width weather forecast.

A window is a maximal run of consecutive intervals that are warm enough, dry
enough, unlikely to rain and inside the daylight band. Runs are found by
counting "breaks" (a failing interval or a gap in the series) so that each
run shares one cumulative break id.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

import pandas as pd

from mite_engine.domain.constraints import (
    WindowScoringConfig,
    validate_window_scoring_config,
    window_scoring_config_from_settings,
)
from mite_engine.domain.models import (
    OptimalWindow,
    OverallConditions,
    WeatherAnalysis,
    WeatherInterval,
)
from mite_engine.utils.config import Settings, get_settings
from mite_engine.utils.logger import get_logger
from mite_engine.utils.timeutils import to_utc


logger = get_logger(__name__)

DEFAULT_CONFIG = WindowScoringConfig()


def _local(value: datetime, tz: Optional[tzinfo]) -> datetime:
    """Naive values are UTC, the same reading `to_utc` gives them in storage."""
    if tz is None:
        return value
    return to_utc(value).astimezone(tz)


def _build_frame(
    intervals: Sequence[WeatherInterval],
    config: WindowScoringConfig,
    tz: Optional[tzinfo],
) -> pd.DataFrame:
    frame = pd.DataFrame(
        {
            "position": range(len(intervals)),
            "start_utc": pd.to_datetime(
                [to_utc(interval.start_time) for interval in intervals],
                utc=True,
            ),
            "local_hour": [_local(interval.start_time, tz).hour for interval in intervals],
            "temperature": [float(interval.temperature) for interval in intervals],
            "humidity": [float(interval.humidity) for interval in intervals],
            "precipitation": [
                float(interval.precipitation_probability) for interval in intervals
            ],
        }
    )
    frame["suitable"] = (
        (frame["temperature"] >= config.min_temperature)
        & (frame["humidity"] <= config.max_humidity)
        & (frame["precipitation"] <= config.max_precipitation)
        & (frame["local_hour"] >= config.daylight_start_hour)
        & (frame["local_hour"] < config.daylight_end_hour)
    )
    gap = frame["start_utc"].diff() != pd.Timedelta(minutes=config.interval_minutes)
    frame["run_id"] = ((~frame["suitable"]) | gap).cumsum()
    return frame


def score_window(
    avg_temperature: float,
    avg_humidity: float,
    avg_precipitation: float,
    config: WindowScoringConfig = DEFAULT_CONFIG,
) -> float:
    """Warmer (up to the cap), drier and less rainy all raise the score."""
    temperature_term = (
        min(avg_temperature - config.min_temperature, config.temperature_cap)
        * config.temperature_weight
    )
    humidity_term = max(config.max_humidity - avg_humidity, 0.0) * config.humidity_weight
    precipitation_term = (
        max(config.max_precipitation - avg_precipitation, 0.0)
        * config.precipitation_weight
    )
    return float(round(temperature_term + humidity_term + precipitation_term))


def find_optimal_windows(
    intervals: Optional[Sequence[WeatherInterval]],
    config: WindowScoringConfig = DEFAULT_CONFIG,
    tz: Optional[tzinfo] = None,
) -> list[OptimalWindow]:
    """Return every suitable run as a window, best score first."""
    if not intervals:
        return []
    validate_window_scoring_config(config)

    intervals = sorted(intervals, key=lambda interval: to_utc(interval.start_time))
    frame = _build_frame(intervals, config, tz)
    suitable = frame[frame["suitable"]]
    if suitable.empty:
        return []

    width = timedelta(minutes=config.interval_minutes)
    windows: list[OptimalWindow] = []
    for _, run in suitable.groupby("run_id", sort=True):
        first = intervals[int(run["position"].iloc[0])]
        last = intervals[int(run["position"].iloc[-1])]
        avg_temperature = float(run["temperature"].mean())
        avg_humidity = float(run["humidity"].mean())
        avg_precipitation = float(run["precipitation"].mean())
        windows.append(
            OptimalWindow(
                start_time=first.start_time,
                end_time=last.start_time + width,
                avg_temperature=avg_temperature,
                avg_humidity=avg_humidity,
                avg_precipitation_probability=avg_precipitation,
                suitability_score=score_window(
                    avg_temperature,
                    avg_humidity,
                    avg_precipitation,
                    config,
                ),
            )
        )

    return sorted(windows, key=lambda window: window.suitability_score, reverse=True)


def _format_range(window: OptimalWindow, tz: Optional[tzinfo]) -> str:
    start = _local(window.start_time, tz)
    end = _local(window.end_time, tz)
    return f"{start:%H:%M}-{end:%H:%M}"


def analyze_forecast(
    intervals: Optional[Sequence[WeatherInterval]],
    config: WindowScoringConfig = DEFAULT_CONFIG,
    tz: Optional[tzinfo] = None,
) -> Optional[WeatherAnalysis]:
    """Classify a forecast for sun drying.

    Returns None when there is nothing to analyze; the caller decides whether
    that means the forecast is unavailable.
    """
    if not intervals:
        return None

    windows = find_optimal_windows(intervals, config, tz)
    total = len(intervals)
    average_temperature = sum(interval.temperature for interval in intervals) / total
    average_humidity = sum(interval.humidity for interval in intervals) / total
    rain_intervals = sum(
        1
        for interval in intervals
        if interval.precipitation_probability > config.rain_probability_cutoff
    )

    is_optimal = bool(windows) and windows[0].suitability_score >= config.optimal_threshold
    if is_optimal:
        reason = f"Best drying time: {_format_range(windows[0], tz)}"
    elif rain_intervals > total * config.rain_ratio_threshold:
        reason = "High precipitation probability in the forecast window, not suitable for drying"
    elif average_temperature < config.min_temperature:
        reason = "Temperature too low for effective drying"
    elif average_humidity > config.max_humidity:
        reason = "Humidity too high for optimal drying conditions"
    elif not windows:
        reason = (
            f"No suitable continuous {config.interval_minutes}-minute periods found"
        )
    else:
        reason = f"Marginal conditions; best available drying time: {_format_range(windows[0], tz)}"

    return WeatherAnalysis(
        is_optimal_for_sun_drying=is_optimal,
        optimal_windows=windows,
        reason=reason,
        overall_conditions=OverallConditions(
            average_temperature=round(average_temperature, 1),
            average_humidity=float(round(average_humidity)),
            rain_intervals=rain_intervals,
            total_intervals=total,
        ),
    )


class WindowFinderService:
    """Binds the scanner to configured thresholds and the local timezone."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._config = window_scoring_config_from_settings(self._settings)
        self._tz = (
            timezone.utc
            if self._settings.local_timezone.upper() == "UTC"
            else ZoneInfo(self._settings.local_timezone)
        )

    @property
    def config(self) -> WindowScoringConfig:
        return self._config

    def find_windows(self, intervals: Optional[Sequence[WeatherInterval]]) -> list[OptimalWindow]:
        return find_optimal_windows(intervals, self._config, self._tz)

    def analyze(self, intervals: Optional[Sequence[WeatherInterval]]) -> Optional[WeatherAnalysis]:
        analysis = analyze_forecast(intervals, self._config, self._tz)
        if analysis is not None:
            logger.info(
                "Forecast analysis: %s windows, optimal=%s (%s)",
                len(analysis.optimal_windows),
                analysis.is_optimal_for_sun_drying,
                analysis.reason,
            )
        return analysis
