"""Mite-risk growth model and the hourly batch that applies it."""

from __future__ import annotations

from typing import Iterable, Optional

from mite_engine.domain.errors import ExternalUnavailableError
from mite_engine.domain.models import GrowthTickReport, Item
from mite_engine.repository.data_repository import DataRepository
from mite_engine.services.forecast_service import ForecastProvider
from mite_engine.utils.config import Settings, get_settings
from mite_engine.utils.logger import get_logger


logger = get_logger(__name__)

BASE_GROWTH_RATE_PER_HOUR = 0.5
MIN_SCORE = 0.0
MAX_SCORE = 100.0

MATERIAL_MULTIPLIERS: dict[str, float] = {
    "Cotton": 1.2,
    "Polyester": 0.8,
    "Down": 1.1,
    "Soybean Fiber": 0.9,
    "Bamboo Fiber": 0.7,
    "Silk": 0.6,
    "Unknown": 1.0,
}

THICKNESS_MULTIPLIERS: dict[str, float] = {
    "Thin": 0.9,
    "Medium": 1.0,
    "Thick": 1.1,
    "Extra Thick": 1.2,
}


def _temperature_factor(temperature: float) -> float:
    if 20.0 <= temperature <= 30.0:
        return 1.0
    if 15.0 <= temperature < 20.0 or 30.0 < temperature <= 35.0:
        return 0.5
    return 0.1


def _humidity_factor(humidity: float) -> float:
    if 70.0 <= humidity <= 80.0:
        return 1.0
    if 60.0 <= humidity < 70.0 or 80.0 < humidity <= 90.0:
        return 0.7
    if 50.0 <= humidity < 60.0 or 90.0 < humidity <= 100.0:
        return 0.3
    return 0.1


def suitability(temperature: float, humidity: float) -> float:
    """Environment suitability for mites in [0, 1]; peaks at 20-30 C, 70-80 %."""
    return _temperature_factor(temperature) * _humidity_factor(humidity)


def material_multiplier(material: Optional[str]) -> float:
    return MATERIAL_MULTIPLIERS.get(material or "", 1.0)


def thickness_multiplier(thickness: Optional[str]) -> float:
    return THICKNESS_MULTIPLIERS.get(thickness or "", 1.0)


def hourly_growth(
    temperature: float,
    humidity: float,
    material: Optional[str],
    thickness: Optional[str],
    base_rate: float = BASE_GROWTH_RATE_PER_HOUR,
) -> float:
    growth = (
        base_rate
        * suitability(temperature, humidity)
        * material_multiplier(material)
        * thickness_multiplier(thickness)
    )
    return round(max(0.0, growth), 2)


def apply_growth(current_score: float, growth: float) -> float:
    """Clamp into [0, 100]; growth never lowers a score."""
    updated = current_score + max(0.0, growth)
    return round(min(MAX_SCORE, max(MIN_SCORE, updated)), 2)


def project_risk(
    current_score: float,
    hourly_conditions: Iterable[tuple[float, float]],
    material: Optional[str],
    thickness: Optional[str],
    base_rate: float = BASE_GROWTH_RATE_PER_HOUR,
) -> list[float]:
    """Score trajectory over successive hours of (temperature, humidity)."""
    trajectory: list[float] = []
    score = current_score
    for temperature, humidity in hourly_conditions:
        score = apply_growth(
            score,
            hourly_growth(temperature, humidity, material, thickness, base_rate),
        )
        trajectory.append(score)
    return trajectory


class RiskGrowthService:
    """Applies one hour of growth to every item with known coordinates."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        forecast_provider: Optional[ForecastProvider] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._forecast_provider = forecast_provider

    def _grow_item(self, item: Item) -> bool:
        """Return True when a new score was written, False when skipped."""
        if item.location_id is None:
            logger.warning("Item %s has no location; skipping growth tick", item.item_id)
            return False
        location = self._repository.get_location(item.location_id)
        coordinates = location.coordinates if location is not None else None
        if coordinates is None:
            logger.warning(
                "Item %s location has no coordinates; skipping growth tick",
                item.item_id,
            )
            return False
        if self._forecast_provider is None:
            logger.warning("No forecast provider configured; skipping item %s", item.item_id)
            return False

        try:
            intervals = self._forecast_provider.fetch(coordinates)
        except ExternalUnavailableError as exc:
            logger.warning("Weather unavailable for item %s: %s", item.item_id, exc)
            return False
        if not intervals:
            logger.warning("Empty forecast for item %s; skipping growth tick", item.item_id)
            return False

        current = intervals[0]
        growth = hourly_growth(
            current.temperature,
            current.humidity,
            item.material,
            item.thickness,
            self._settings.growth_base_rate_per_hour,
        )

        score = item.risk_score
        for _ in range(self._settings.growth_max_write_attempts):
            new_score = apply_growth(score, growth)
            if new_score == score:
                return True
            if self._repository.compare_and_set_risk_score(item.item_id, score, new_score):
                logger.info(
                    "Item %s risk %.2f -> %.2f (growth +%.2f at %.1fC/%.0f%%)",
                    item.item_id,
                    score,
                    new_score,
                    growth,
                    current.temperature,
                    current.humidity,
                )
                return True
            refreshed = self._repository.get_item(item.item_id)
            if refreshed is None:
                return False
            score = refreshed.risk_score
        raise RuntimeError(
            f"Risk score for item {item.item_id} kept changing during growth write"
        )

    def run_growth_tick(self) -> GrowthTickReport:
        processed = 0
        updated = 0
        skipped = 0
        errors: list[str] = []

        for item in self._repository.list_items():
            processed += 1
            try:
                if self._grow_item(item):
                    updated += 1
                else:
                    skipped += 1
            except Exception as exc:
                message = f"Error processing item {item.item_id}: {exc}"
                logger.exception(message)
                errors.append(message)

        logger.info(
            "Growth tick processed=%s updated=%s skipped=%s errors=%s",
            processed,
            updated,
            skipped,
            len(errors),
        )
        return GrowthTickReport(
            processed=processed,
            updated=updated,
            skipped=skipped,
            errors=errors,
        )
