from __future__ import annotations

from datetime import datetime, timedelta, timezone

from mite_engine.domain.constraints import WindowScoringConfig
from mite_engine.domain.models import WeatherInterval
from mite_engine.services.window_service import (
    analyze_forecast,
    find_optimal_windows,
    score_window,
)


DAY = datetime(2026, 6, 1, tzinfo=timezone.utc)


def _series(start_hour: float, count: int, temperature=24.0, humidity=50.0, precipitation=5.0):
    start = DAY + timedelta(hours=start_hour)
    return [
        WeatherInterval(
            start_time=start + timedelta(minutes=30 * index),
            temperature=temperature,
            humidity=humidity,
            precipitation_probability=precipitation,
        )
        for index in range(count)
    ]


def test_all_good_series_yields_single_window_clipped_to_daylight():
    intervals = _series(6, 24)
    windows = find_optimal_windows(intervals)

    assert len(windows) == 1
    assert windows[0].start_time == DAY + timedelta(hours=7)
    assert windows[0].end_time == DAY + timedelta(hours=18)
    assert windows[0].suitability_score == 66.0


def test_all_good_daylight_series_spans_whole_range():
    windows = find_optimal_windows(_series(7, 24))
    assert len(windows) == 1
    assert windows[0].start_time == DAY + timedelta(hours=7)
    assert windows[0].end_time == DAY + timedelta(hours=19)
    assert windows[0].duration_hours == 12.0


def test_all_bad_series_yields_no_windows_and_not_optimal():
    intervals = _series(7, 24, temperature=5.0, humidity=95.0, precipitation=80.0)
    analysis = analyze_forecast(intervals)

    assert find_optimal_windows(intervals) == []
    assert analysis is not None
    assert analysis.is_optimal_for_sun_drying is False
    assert analysis.optimal_windows == []
    assert "precipitation" in analysis.reason.lower()


def test_optimal_analysis_reports_best_time():
    analysis = analyze_forecast(_series(6, 24))
    assert analysis is not None
    assert analysis.is_optimal_for_sun_drying is True
    assert analysis.reason == "Best drying time: 07:00-18:00"
    assert analysis.best_window == analysis.optimal_windows[0]
    assert analysis.overall_conditions.total_intervals == 24
    assert analysis.overall_conditions.rain_intervals == 0


def test_empty_or_missing_forecast_is_not_an_analysis():
    assert analyze_forecast(None) is None
    assert analyze_forecast([]) is None
    assert find_optimal_windows(None) == []


def test_gap_in_series_splits_windows_and_sorts_by_score():
    morning = _series(8, 4, temperature=12.0, humidity=80.0, precipitation=30.0)
    afternoon = _series(13, 4, temperature=26.0, humidity=40.0, precipitation=0.0)
    windows = find_optimal_windows(morning + afternoon)

    assert len(windows) == 2
    assert windows[0].start_time == DAY + timedelta(hours=13)
    assert windows[1].start_time == DAY + timedelta(hours=8)
    assert windows[0].suitability_score > windows[1].suitability_score


def test_equal_scores_keep_chronological_order():
    first = _series(8, 2)
    bad = _series(9, 1, precipitation=90.0)
    second = _series(9.5, 2)
    windows = find_optimal_windows(first + bad + second)

    assert [window.start_time for window in windows] == [
        DAY + timedelta(hours=8),
        DAY + timedelta(hours=9, minutes=30),
    ]
    assert windows[0].suitability_score == windows[1].suitability_score


def test_window_search_is_idempotent():
    intervals = _series(6, 24) + _series(18, 6, humidity=95.0)
    assert find_optimal_windows(intervals) == find_optimal_windows(intervals)


def test_unsorted_input_is_handled_like_sorted_input():
    intervals = _series(8, 6)
    assert find_optimal_windows(list(reversed(intervals))) == find_optimal_windows(intervals)


def test_night_only_forecast_reports_no_periods():
    analysis = analyze_forecast(_series(20, 6, temperature=20.0, humidity=50.0, precipitation=0.0))
    assert analysis is not None
    assert analysis.optimal_windows == []
    assert analysis.reason == "No suitable continuous 30-minute periods found"


def test_cold_forecast_reports_temperature():
    analysis = analyze_forecast(_series(8, 6, temperature=5.0, humidity=60.0, precipitation=0.0))
    assert analysis is not None
    assert analysis.reason == "Temperature too low for effective drying"


def test_humid_forecast_reports_humidity():
    analysis = analyze_forecast(_series(8, 6, temperature=20.0, humidity=95.0, precipitation=0.0))
    assert analysis is not None
    assert analysis.reason == "Humidity too high for optimal drying conditions"


def test_marginal_window_is_reported_but_not_optimal():
    analysis = analyze_forecast(_series(8, 4, temperature=9.0, humidity=89.0, precipitation=20.0))
    assert analysis is not None
    assert analysis.is_optimal_for_sun_drying is False
    assert len(analysis.optimal_windows) == 1
    assert analysis.optimal_windows[0].suitability_score == 14.0
    assert analysis.reason == "Marginal conditions; best available drying time: 08:00-10:00"


def test_local_timezone_shifts_daylight_band():
    utc_plus_eight = timezone(timedelta(hours=8))
    intervals = _series(23, 4)  # 07:00-09:00 local on the next day
    assert find_optimal_windows(intervals) == []
    windows = find_optimal_windows(intervals, tz=utc_plus_eight)
    assert len(windows) == 1
    assert windows[0].start_time == DAY + timedelta(hours=23)


def test_score_is_monotonic_in_conditions():
    config = WindowScoringConfig()
    base = score_window(18.0, 60.0, 20.0, config)
    assert score_window(22.0, 60.0, 20.0, config) > base
    assert score_window(18.0, 40.0, 20.0, config) > base
    assert score_window(18.0, 60.0, 5.0, config) > base
    assert score_window(40.0, 60.0, 20.0, config) == score_window(35.0, 60.0, 20.0, config)


def test_naive_starts_are_read_as_utc_before_local_conversion():
    utc_plus_eight = timezone(timedelta(hours=8))
    naive_start = datetime(2026, 6, 1, 23, 0)
    intervals = [
        WeatherInterval(naive_start + timedelta(minutes=30 * index), 24.0, 50.0, 5.0)
        for index in range(4)
    ]

    windows = find_optimal_windows(intervals, tz=utc_plus_eight)

    assert len(windows) == 1
    assert windows[0].start_time == naive_start
    analysis = analyze_forecast(intervals, tz=utc_plus_eight)
    assert analysis.reason == "Best drying time: 07:00-09:00"
