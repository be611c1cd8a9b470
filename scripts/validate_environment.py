#!/usr/bin/env python3
"""Validate local drying-engine environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from mite_engine.domain.models import WeatherInterval
from mite_engine.repository.data_repository import DataRepository
from mite_engine.services.risk_service import hourly_growth
from mite_engine.services.window_service import find_optimal_windows
from mite_engine.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="mite-env-")

    # CHECK 1: Python version >= 3.11
    if sys.version_info >= (3, 11):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.11",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable with versions
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("numpy", "numpy"),
        ("pandas", "pandas"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    from importlib.metadata import PackageNotFoundError, version

    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except (ImportError, PackageNotFoundError) as exc:
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        validation_settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "mite_validation.db",
        )
        repository = DataRepository(validation_settings)

        # CHECK 3: Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Item round trip through the conditional write path
        try:
            item = repository.create_item("validator", "Duvet", "Cotton", "Medium", 40.0)
            if not repository.compare_and_set_risk_score(item.item_id, 40.0, 41.0):
                raise RuntimeError("compare-and-set did not apply")
            ok, line = _print_result("Item persistence", True)
        except Exception as exc:
            ok, line = _print_result("Item persistence", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Growth model sanity
        try:
            growth = hourly_growth(25.0, 75.0, "Silk", "Thin")
            if growth != 0.27:
                raise RuntimeError(f"expected 0.27, got {growth}")
            ok, line = _print_result("Risk growth model", True, f": {growth}")
        except Exception as exc:
            ok, line = _print_result("Risk growth model", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 6: Window finder on a synthetic sunny morning
        try:
            start = datetime(2026, 6, 1, 8, 0, tzinfo=timezone.utc)
            intervals = [
                WeatherInterval(start + timedelta(minutes=30 * index), 24.0, 50.0, 5.0)
                for index in range(8)
            ]
            windows = find_optimal_windows(intervals)
            if len(windows) != 1:
                raise RuntimeError(f"expected one window, got {len(windows)}")
            ok, line = _print_result(
                "Window finder",
                True,
                f": score={windows[0].suitability_score:.0f}",
            )
        except Exception as exc:
            ok, line = _print_result("Window finder", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Drying Engine Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
