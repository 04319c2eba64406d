#!/usr/bin/env python3
"""Document overview and integrity checks for RentalHub."""

from __future__ import annotations

import argparse
import json
import os
import sys
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable


EXPECTED_KEYS = ["admin", "users", "tools", "rentals", "logs"]
EXPECTED_FIELDS: dict[str, list[str]] = {
    "tools": ["id", "name", "price", "quantity", "rented", "available"],
    "rentals": ["rentalId", "toolId", "userId", "status", "rentalDate"],
    "users": ["id", "email", "role"],
    "logs": ["id", "toolId", "rentalId", "action", "timestamp"],
}


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str


def _print_section(title: str) -> None:
    print(f"\n=== {title} ===")


def load_document(path: Path) -> dict[str, Any]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("top-level value is not an object")
    return payload


def _rows(document: dict[str, Any], key: str) -> list[dict[str, Any]]:
    value = document.get(key)
    if not isinstance(value, list):
        return []
    return [row for row in value if isinstance(row, dict)]


def run_presence_checks(document: dict[str, Any]) -> list[CheckResult]:
    results: list[CheckResult] = []
    for key in EXPECTED_KEYS:
        expected_type = dict if key == "admin" else list
        present = isinstance(document.get(key), expected_type)
        results.append(CheckResult(f"key:{key}", present, "present" if present else "missing"))
    for key, fields in EXPECTED_FIELDS.items():
        incomplete = [row for row in _rows(document, key) if any(field not in row for field in fields)]
        results.append(
            CheckResult(f"fields:{key}", not incomplete, "ok" if not incomplete else f"incomplete={len(incomplete)}")
        )
    return results


def run_inventory_checks(document: dict[str, Any]) -> list[CheckResult]:
    checks: list[CheckResult] = []
    for tool in _rows(document, "tools"):
        quantity = int(tool.get("quantity") or 0)
        rented = int(tool.get("rented") or 0)
        available = int(tool.get("available") or 0)
        tool_id = tool.get("id")
        checks.append(
            CheckResult(
                f"tool:{tool_id}:available_matches",
                available == quantity - rented,
                f"quantity={quantity} rented={rented} available={available}",
            )
        )
        checks.append(
            CheckResult(f"tool:{tool_id}:rented_in_range", 0 <= rented <= quantity, f"rented={rented}")
        )

        open_rentals = sum(
            1
            for rental in _rows(document, "rentals")
            if rental.get("toolId") == tool_id and rental.get("status") == "RENTED"
        )
        checks.append(
            CheckResult(f"tool:{tool_id}:open_rentals_match", open_rentals == rented, f"openRentals={open_rentals}")
        )
    return checks


def _duplicates(values: Iterable[Any]) -> list[Any]:
    return [value for value, count in Counter(values).items() if count > 1]


def run_integrity_checks(document: dict[str, Any]) -> list[CheckResult]:
    checks: list[CheckResult] = []
    tool_ids = {tool.get("id") for tool in _rows(document, "tools")}
    rental_ids = {rental.get("rentalId") for rental in _rows(document, "rentals")}

    for key, field in (("tools", "id"), ("rentals", "rentalId"), ("users", "id"), ("logs", "id")):
        duplicated = _duplicates(row.get(field) for row in _rows(document, key))
        checks.append(CheckResult(f"{key}:duplicate_{field}", not duplicated, f"count={len(duplicated)}"))

    duplicated_emails = _duplicates(str(user.get("email") or "").lower() for user in _rows(document, "users"))
    checks.append(CheckResult("users:duplicate_email", not duplicated_emails, f"count={len(duplicated_emails)}"))

    orphan_rentals = [rental for rental in _rows(document, "rentals") if rental.get("toolId") not in tool_ids]
    checks.append(CheckResult("rentals:orphan_toolid", not orphan_rentals, f"count={len(orphan_rentals)}"))

    orphan_log_tools = [log for log in _rows(document, "logs") if log.get("toolId") not in tool_ids]
    checks.append(CheckResult("logs:orphan_toolid", not orphan_log_tools, f"count={len(orphan_log_tools)}"))

    orphan_log_rentals = [log for log in _rows(document, "logs") if log.get("rentalId") not in rental_ids]
    checks.append(CheckResult("logs:orphan_rentalid", not orphan_log_rentals, f"count={len(orphan_log_rentals)}"))
    return checks


def _print_results(title: str, rows: Iterable[CheckResult]) -> None:
    _print_section(title)
    for row in rows:
        status = "OK" if row.ok else "FAIL"
        print(f"[{status}] {row.name} :: {row.detail}")


def _print_row_counts(document: dict[str, Any]) -> None:
    _print_section("Row Counts")
    for key in EXPECTED_KEYS[1:]:
        print(f"{key}: {len(_rows(document, key))}")


def _print_samples(document: dict[str, Any], sample_size: int) -> None:
    _print_section("Sample Values")
    sample_size = max(1, sample_size)

    rentals = sorted(_rows(document, "rentals"), key=lambda row: str(row.get("rentalDate") or ""), reverse=True)
    print("Rentals (recent):")
    for row in rentals[:sample_size]:
        print(f"  - {(row.get('rentalId'), row.get('toolId'), row.get('userId'), row.get('status'))}")

    logs = sorted(_rows(document, "logs"), key=lambda row: int(row.get("id") or 0), reverse=True)
    print("Logs (recent):")
    for row in logs[:sample_size]:
        print(f"  - {(row.get('id'), row.get('toolId'), row.get('status'), row.get('action'))}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="RentalHub document overview")
    parser.add_argument("--db-path", default=os.environ.get("RENTAL_HUB_DB_PATH", ""))
    parser.add_argument("--samples", type=int, default=5)
    args = parser.parse_args(argv)

    db_path = (args.db_path or "").strip()
    if not db_path:
        print("RENTAL_HUB_DB_PATH is not set. Provide --db-path or export env first.")
        return 2

    try:
        document = load_document(Path(db_path))
    except (OSError, ValueError) as exc:
        print(f"Could not read document: {exc}")
        return 3

    _print_results("Document Keys", run_presence_checks(document))
    _print_results("Inventory Checks", run_inventory_checks(document))
    _print_results("Integrity Checks", run_integrity_checks(document))
    _print_row_counts(document)
    _print_samples(document, args.samples)
    return 0


if __name__ == "__main__":
    sys.exit(main())
