from __future__ import annotations

import logging
import re
from typing import Any, BinaryIO

from db.store import DocumentStore
from schemas.catalog import ToolUpsert
from services.errors import ConflictError, NotFoundError, ValidationError
from services.image_storage import ImageStorage, before_image_name


DEFAULT_DESCRIPTION = "New tool added."
DEFAULT_SPECS = {"power": "N/A", "rpm": "N/A", "weight": "N/A", "condition": "New"}
UNKNOWN_TOOL_NAME = "Unknown Tool"

CATALOG_LOGGER = logging.getLogger("rental_hub.catalog")


def slugify_tool_name(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "-", (name or "").strip().lower())


def find_tool(document: dict[str, Any], tool_id: str | None) -> dict[str, Any] | None:
    if not tool_id:
        return None
    for tool in document.get("tools", []):
        if tool.get("id") == tool_id:
            return tool
    return None


def tool_name(document: dict[str, Any], tool_id: str | None) -> str:
    tool = find_tool(document, tool_id)
    if not tool:
        return UNKNOWN_TOOL_NAME
    return tool.get("name") or UNKNOWN_TOOL_NAME


def require_tool(document: dict[str, Any], tool_id: str | None) -> dict[str, Any]:
    tool = find_tool(document, tool_id)
    if not tool:
        raise NotFoundError("Tool not found.", code="ToolNotFound")
    return tool


def list_tools(store: DocumentStore) -> list[dict[str, Any]]:
    return store.load().get("tools", [])


def get_tool(store: DocumentStore, tool_id: str) -> dict[str, Any]:
    return require_tool(store.load(), tool_id)


def upsert_tool(store: DocumentStore, payload: ToolUpsert) -> tuple[str, dict[str, Any]]:
    with store.transaction() as document:
        existing = find_tool(document, payload.id)
        if existing:
            message = _apply_tool_update(existing, payload)
            tool = existing
        else:
            tool = _build_new_tool(document, payload)
            document["tools"].append(tool)
            message = "New tool added successfully."
        store.commit(document)

    CATALOG_LOGGER.info("Tool saved id=%s quantity=%s available=%s", tool["id"], tool["quantity"], tool["available"])
    return message, tool


def _apply_tool_update(tool: dict[str, Any], payload: ToolUpsert) -> str:
    rented = int(tool.get("rented") or 0)
    if payload.quantity < rented:
        raise ConflictError(f"Cannot reduce quantity below rented ({rented}).", code="QuantityBelowRented")

    tool["name"] = payload.name
    tool["price"] = float(payload.price)
    tool["quantity"] = int(payload.quantity)
    tool["available"] = int(payload.quantity) - rented
    if payload.beforeImageRef is not None:
        tool["beforeImageRef"] = payload.beforeImageRef
    tool["description"] = payload.description or tool.get("description")
    tool["specs"] = payload.specs or tool.get("specs")
    return "Tool updated successfully."


def _build_new_tool(document: dict[str, Any], payload: ToolUpsert) -> dict[str, Any]:
    new_id = slugify_tool_name(payload.name)
    if not new_id.strip("-"):
        raise ValidationError("Tool name is required.", code="InvalidToolName")
    if find_tool(document, new_id):
        raise ConflictError("Tool name already exists.", code="DuplicateTool")

    return {
        "id": new_id,
        "name": payload.name,
        "beforeImageRef": payload.beforeImageRef,
        "price": float(payload.price),
        "quantity": int(payload.quantity),
        "rented": 0,
        "available": int(payload.quantity),
        "description": payload.description or DEFAULT_DESCRIPTION,
        "specs": payload.specs or dict(DEFAULT_SPECS),
    }


def delete_tool(store: DocumentStore, tool_id: str) -> None:
    with store.transaction() as document:
        remaining = [tool for tool in document["tools"] if tool.get("id") != tool_id]
        if len(remaining) == len(document["tools"]):
            raise NotFoundError("Tool not found.", code="ToolNotFound")
        document["tools"] = remaining
        store.commit(document)
    CATALOG_LOGGER.info("Tool deleted id=%s", tool_id)


def replace_before_image(
    store: DocumentStore,
    images: ImageStorage,
    tool_id: str,
    source: BinaryIO,
    original_name: str | None,
) -> dict[str, Any]:
    """Store a new reference photo for a tool and point the tool at it.

    The photo is staged under a temporary name and only moved over the live
    file once the document commit succeeds, all while the store lock is held.
    A failed commit leaves the previous photo and document untouched.
    """
    with store.transaction() as document:
        tool = require_tool(document, tool_id)
        previous = images.before_path(tool.get("beforeImageRef"))
        staged = images.stage_before(tool_id, source, original_name)
        tool["beforeImageRef"] = before_image_name(tool_id, staged.original_name)
        try:
            store.commit(document)
            saved = images.publish_before(staged, tool_id)
        except Exception:
            images.discard(staged.path)
            raise

        if previous is not None and previous.name != saved.filename:
            images.discard(previous)

    CATALOG_LOGGER.info("Reference image replaced tool=%s image=%s", tool_id, saved.filename)
    return tool
