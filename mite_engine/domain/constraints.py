"""Domain-level validation rules for window scanning and scoring."""

from __future__ import annotations

from dataclasses import dataclass

from mite_engine.utils.config import Settings


@dataclass(frozen=True)
class WindowScoringConfig:
    min_temperature: float = 8.0
    max_humidity: float = 90.0
    max_precipitation: float = 50.0
    daylight_start_hour: int = 7
    daylight_end_hour: int = 19
    interval_minutes: int = 30
    temperature_cap: float = 22.0
    temperature_weight: float = 1.5
    humidity_weight: float = 0.6
    precipitation_weight: float = 0.4
    optimal_threshold: float = 15.0
    rain_probability_cutoff: float = 20.0
    rain_ratio_threshold: float = 0.6


def validate_window_scoring_config(config: WindowScoringConfig) -> None:
    if not 0.0 <= config.max_humidity <= 100.0:
        raise ValueError("max_humidity must be between 0 and 100")
    if not 0.0 <= config.max_precipitation <= 100.0:
        raise ValueError("max_precipitation must be between 0 and 100")
    if not 0 <= config.daylight_start_hour < config.daylight_end_hour <= 24:
        raise ValueError("daylight band must satisfy 0 <= start < end <= 24")
    if config.interval_minutes <= 0:
        raise ValueError("interval_minutes must be > 0")
    if config.temperature_cap <= 0.0:
        raise ValueError("temperature_cap must be > 0")
    for name in ("temperature_weight", "humidity_weight", "precipitation_weight"):
        if getattr(config, name) < 0.0:
            raise ValueError(f"{name} must be >= 0")
    if config.optimal_threshold < 0.0:
        raise ValueError("optimal_threshold must be >= 0")
    if not 0.0 <= config.rain_probability_cutoff <= 100.0:
        raise ValueError("rain_probability_cutoff must be between 0 and 100")
    if not 0.0 < config.rain_ratio_threshold <= 1.0:
        raise ValueError("rain_ratio_threshold must be in (0, 1]")


def window_scoring_config_from_settings(settings: Settings) -> WindowScoringConfig:
    config = WindowScoringConfig(
        min_temperature=settings.window_min_temperature,
        max_humidity=settings.window_max_humidity,
        max_precipitation=settings.window_max_precipitation,
        daylight_start_hour=settings.window_daylight_start_hour,
        daylight_end_hour=settings.window_daylight_end_hour,
        interval_minutes=settings.window_interval_minutes,
        temperature_cap=settings.window_temperature_cap,
        temperature_weight=settings.window_temperature_weight,
        humidity_weight=settings.window_humidity_weight,
        precipitation_weight=settings.window_precipitation_weight,
        optimal_threshold=settings.window_optimal_threshold,
        rain_probability_cutoff=settings.window_rain_probability_cutoff,
        rain_ratio_threshold=settings.window_rain_ratio_threshold,
    )
    validate_window_scoring_config(config)
    return config
