"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_optional(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return float(value)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    cron_token: str | None
    local_timezone: str

    forecast_api_url: str
    forecast_api_key: str | None
    forecast_timeout_seconds: float
    forecast_timestep_minutes: int
    forecast_horizon_hours: int

    outcome_api_url: str
    outcome_api_key: str | None
    outcome_model: str
    outcome_timeout_seconds: float

    notification_api_url: str
    notification_api_key: str | None
    notification_sender: str

    growth_base_rate_per_hour: float
    growth_max_write_attempts: int

    window_min_temperature: float
    window_max_humidity: float
    window_max_precipitation: float
    window_daylight_start_hour: int
    window_daylight_end_hour: int
    window_interval_minutes: int
    window_temperature_cap: float
    window_temperature_weight: float
    window_humidity_weight: float
    window_precipitation_weight: float
    window_optimal_threshold: float
    window_rain_probability_cutoff: float
    window_rain_ratio_threshold: float

    matching_default_radius_km: float
    location_default_floor_number: int
    location_default_has_elevator: bool


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process; tests derive copies via `replace`."""
    return Settings(
        app_name=_env_str("APP_NAME", "Mite-Risk Drying Engine"),
        app_version=_env_str("APP_VERSION", "0.1.0"),
        log_level=_env_str("LOG_LEVEL", "INFO"),
        database_path=Path(_env_str("DATABASE_PATH", "data/mite_engine.db")),
        cron_token=_env_optional("CRON_TOKEN"),
        local_timezone=_env_str("LOCAL_TIMEZONE", "UTC"),
        forecast_api_url=_env_str(
            "FORECAST_API_URL",
            "https://api.tomorrow.io/v4/timelines",
        ),
        forecast_api_key=_env_optional("FORECAST_API_KEY"),
        forecast_timeout_seconds=_env_float("FORECAST_TIMEOUT_SECONDS", 10.0),
        forecast_timestep_minutes=_env_int("FORECAST_TIMESTEP_MINUTES", 30),
        forecast_horizon_hours=_env_int("FORECAST_HORIZON_HOURS", 12),
        outcome_api_url=_env_str(
            "OUTCOME_API_URL",
            "https://api.siliconflow.cn/v1/chat/completions",
        ),
        outcome_api_key=_env_optional("OUTCOME_API_KEY"),
        outcome_model=_env_str("OUTCOME_MODEL", "Qwen/Qwen2.5-VL-72B-Instruct"),
        outcome_timeout_seconds=_env_float("OUTCOME_TIMEOUT_SECONDS", 30.0),
        notification_api_url=_env_str(
            "NOTIFICATION_API_URL",
            "https://api.resend.com/emails",
        ),
        notification_api_key=_env_optional("NOTIFICATION_API_KEY"),
        notification_sender=_env_str(
            "NOTIFICATION_SENDER",
            "MiteSnap <hello@mitesnap.com>",
        ),
        growth_base_rate_per_hour=_env_float("GROWTH_BASE_RATE_PER_HOUR", 0.5),
        growth_max_write_attempts=_env_int("GROWTH_MAX_WRITE_ATTEMPTS", 3),
        window_min_temperature=_env_float("WINDOW_MIN_TEMPERATURE", 8.0),
        window_max_humidity=_env_float("WINDOW_MAX_HUMIDITY", 90.0),
        window_max_precipitation=_env_float("WINDOW_MAX_PRECIPITATION", 50.0),
        window_daylight_start_hour=_env_int("WINDOW_DAYLIGHT_START_HOUR", 7),
        window_daylight_end_hour=_env_int("WINDOW_DAYLIGHT_END_HOUR", 19),
        window_interval_minutes=_env_int("WINDOW_INTERVAL_MINUTES", 30),
        window_temperature_cap=_env_float("WINDOW_TEMPERATURE_CAP", 22.0),
        window_temperature_weight=_env_float("WINDOW_TEMPERATURE_WEIGHT", 1.5),
        window_humidity_weight=_env_float("WINDOW_HUMIDITY_WEIGHT", 0.6),
        window_precipitation_weight=_env_float("WINDOW_PRECIPITATION_WEIGHT", 0.4),
        window_optimal_threshold=_env_float("WINDOW_OPTIMAL_THRESHOLD", 15.0),
        window_rain_probability_cutoff=_env_float("WINDOW_RAIN_PROBABILITY_CUTOFF", 20.0),
        window_rain_ratio_threshold=_env_float("WINDOW_RAIN_RATIO_THRESHOLD", 0.6),
        matching_default_radius_km=_env_float("MATCHING_DEFAULT_RADIUS_KM", 10.0),
        location_default_floor_number=_env_int("LOCATION_DEFAULT_FLOOR_NUMBER", 1),
        location_default_has_elevator=_env_bool("LOCATION_DEFAULT_HAS_ELEVATOR", False),
    )
