from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable

from db.store import DocumentStore
from schemas.rentals import RentRequest
from services.catalog_service import find_tool, tool_name
from services.errors import ConflictError, NotFoundError, ValidationError


RENTED = "RENTED"
RETURNED = "RETURNED"
AUTO_RESOLVED = "AUTO-RESOLVED"
RESOLVED = "RESOLVED"
RESOLUTION_ACTIONS = {"Repaired", "Remove", "MakeAvailable"}

RENTAL_LOGGER = logging.getLogger("rental_hub.rentals")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def next_int_id(rows: Iterable[dict[str, Any]]) -> int:
    max_id = 0
    for row in rows:
        try:
            value = int(row.get("id") or 0)
        except (TypeError, ValueError):
            continue
        if value > max_id:
            max_id = value
    return max_id + 1


def find_rental(document: dict[str, Any], rental_id: str | None) -> dict[str, Any] | None:
    if not rental_id:
        return None
    for rental in document.get("rentals", []):
        if rental.get("rentalId") == rental_id:
            return rental
    return None


def rent_tool(store: DocumentStore, payload: RentRequest) -> dict[str, Any]:
    with store.transaction() as document:
        tool = find_tool(document, payload.toolId)
        if not tool:
            raise NotFoundError("Tool not found.", code="ToolNotFound")
        if int(tool.get("available") or 0) <= 0:
            raise ConflictError("Tool is unavailable.", code="ToolUnavailable")

        tool["rented"] = int(tool.get("rented") or 0) + 1
        tool["available"] = int(tool["available"]) - 1

        total_price = payload.totalPrice
        if total_price is None:
            total_price = float(tool.get("price") or 0) * payload.rentDays

        rental = {
            "rentalId": str(uuid.uuid4()),
            "toolId": tool["id"],
            "userId": payload.userId,
            "userName": payload.userName,
            "userEmail": payload.userEmail,
            "rentDays": payload.rentDays,
            "totalPrice": float(total_price),
            "rentalDate": utc_now_iso(),
            "status": RENTED,
        }
        document["rentals"].append(rental)
        store.commit(document)

    RENTAL_LOGGER.info("Tool rented tool=%s user=%s rental=%s", rental["toolId"], rental["userId"], rental["rentalId"])
    return rental


def list_user_rentals(store: DocumentStore, user_id: int) -> list[dict[str, Any]]:
    document = store.load()
    rows = []
    for rental in document.get("rentals", []):
        if rental.get("userId") != user_id:
            continue
        tool = find_tool(document, rental.get("toolId"))
        reference = tool.get("beforeImageRef") if tool else None
        rows.append(
            {
                **rental,
                "toolName": tool_name(document, rental.get("toolId")),
                "toolImage": f"/uploads/before/{reference}" if reference else "",
            }
        )
    return rows


def list_logs(store: DocumentStore) -> list[dict[str, Any]]:
    document = store.load()
    rows = [
        {**log, "toolName": tool_name(document, log.get("toolId"))}
        for log in document.get("logs", [])
    ]
    rows.sort(key=lambda item: str(item.get("timestamp") or ""), reverse=True)
    return rows


def resolve_log(store: DocumentStore, log_id: int, action: str) -> dict[str, Any]:
    """Close a return log and apply its remediation to the tool's inventory.

    ``Repaired`` and ``MakeAvailable`` add one unit to ``available`` without
    capping it at ``quantity``. ``Remove`` retires one unit. A log whose tool is
    gone is still marked resolved before the missing tool is reported.
    """
    if action not in RESOLUTION_ACTIONS:
        raise ValidationError(f"Unknown resolution action: {action}.", code="InvalidAction")

    with store.transaction() as document:
        log = next((row for row in document["logs"] if row.get("id") == log_id), None)
        if not log:
            raise NotFoundError("Log not found.", code="LogNotFound")

        tool = find_tool(document, log.get("toolId"))
        if not tool:
            log["action"] = RESOLVED
            store.commit(document)
            RENTAL_LOGGER.warning("Log resolved without tool log=%s tool=%s", log_id, log.get("toolId"))
            raise NotFoundError("Tool not found.", code="ToolNotFound")

        if action in {"Repaired", "MakeAvailable"}:
            tool["available"] = int(tool.get("available") or 0) + 1
        elif action == "Remove":
            tool["quantity"] = max(0, int(tool.get("quantity") or 0) - 1)
            tool["available"] = min(int(tool.get("available") or 0), tool["quantity"])

        log["action"] = RESOLVED
        store.commit(document)

    RENTAL_LOGGER.info("Log resolved log=%s action=%s tool=%s", log_id, action, tool["id"])
    return log


def lookup_open_rental(document: dict[str, Any], rental_id: str | None, tool_id: str) -> dict[str, Any]:
    rental = find_rental(document, rental_id)
    if not rental:
        raise NotFoundError("Rental not found.", code="RentalNotFound")
    if rental.get("toolId") != tool_id:
        raise ValidationError("Rental does not belong to this tool.", code="RentalToolMismatch")
    if rental.get("status") == RETURNED:
        raise ConflictError("Rental has already been returned.", code="RentalAlreadyReturned")
    return rental


def close_rental(rental: dict[str, Any], tool: dict[str, Any], after_image: str) -> None:
    rental["status"] = RETURNED
    rental["returnDate"] = utc_now_iso()
    rental["afterImageRef"] = after_image
    tool["rented"] = max(0, int(tool.get("rented") or 0) - 1)
    tool["available"] = int(tool.get("available") or 0) + 1
