#!/usr/bin/env python3
"""Validate local lab reservation environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from labreserve.domain.models import CallerIdentity, RequestStatus, Role, SystemStatus
from labreserve.repository.data_repository import DataRepository
from labreserve.services.allocation_service import AllocationEngine
from labreserve.services.dashboard_service import ViewProjector
from labreserve.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="labreserve-env-")

    # CHECK 1 — Python version >= 3.10
    if sys.version_info >= (3, 10):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.10",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2 — Required packages importable
    package_specs = ["fastapi", "uvicorn", "pydantic", "pandas", "httpx", "pytest"]
    import_errors: list[str] = []
    for module_name in package_specs:
        try:
            importlib.import_module(module_name)
        except ImportError as exc:
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

    repository = None
    try:
        validation_settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "labreserve_validation.db",
            notifications_enabled=False,
        )
        repository = DataRepository(validation_settings)

        # CHECK 3 — Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4 — Inventory seeding
        expected = validation_settings.inventory_system_count
        try:
            inserted = repository.seed_systems()
            if inserted != expected:
                raise RuntimeError(f"expected {expected} systems, got {inserted}")
            if repository.seed_systems() != 0:
                raise RuntimeError("second seed was not a no-op")
            ok, line = _print_result(f"Inventory seeding: {expected} systems", True)
        except Exception as exc:
            ok, line = _print_result("Inventory seeding", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5 — End-to-end allocation
        engine = AllocationEngine(repository=repository, settings=validation_settings)
        projector = ViewProjector(repository)
        try:
            student = CallerIdentity(uid="uid-check", login_id="S0001", role=Role.STUDENT)
            admin = CallerIdentity(uid="admin-check", login_id="A0001", role=Role.ADMIN)
            request = engine.submit_request(
                student,
                purpose="Environment check",
                date="2024-05-01",
                start="10:00",
                end="12:00",
            )
            result = engine.allocate(admin, request.request_id, [1, 2], "10:00-12:00")
            if result.request.status is not RequestStatus.APPROVED:
                raise RuntimeError("request was not approved")
            if any(system.status is not SystemStatus.RESERVED for system in result.systems):
                raise RuntimeError("systems were not reserved")
            stats = projector.stats()
            ok, line = _print_result(
                "End-to-end allocation",
                True,
                f": reserved={stats['systems_by_status']['reserved']}",
            )
        except Exception as exc:
            ok, line = _print_result("End-to-end allocation", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        if repository is not None:
            repository.close()
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Lab Reservation Environment Validation")
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
