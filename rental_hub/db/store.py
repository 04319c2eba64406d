from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from services.errors import StoreUnavailable


COLLECTIONS = ("users", "tools", "rentals", "logs")
DEFAULT_ADMIN = {
    "email": "admin@rentalhub.com",
    "password": "admin123",
    "role": "admin",
    "name": "System Administrator",
}

STORE_LOGGER = logging.getLogger("rental_hub.store")


def empty_document() -> dict[str, Any]:
    return {"admin": {}, "users": [], "tools": [], "rentals": [], "logs": []}


class DocumentStore:
    """Owns the on-disk JSON document holding admin, users, tools, rentals and logs.

    Every save rewrites the whole document through a temporary sibling file that is
    renamed over the canonical path, so readers only ever see a complete version.
    Load-mutate-save cycles go through ``transaction()``, which serializes writers
    behind one re-entrant lock acquired with a bounded timeout.
    """

    def __init__(self, path: str | Path, *, lock_timeout: float = 10.0, admin: dict[str, Any] | None = None):
        self.path = Path(path)
        self.lock_timeout = lock_timeout
        self.admin = dict(admin or DEFAULT_ADMIN)
        self.write_count = 0
        self._lock = threading.RLock()

    def default_document(self) -> dict[str, Any]:
        document = empty_document()
        document["admin"] = dict(self.admin)
        return document

    def load(self, strict: bool = False) -> dict[str, Any]:
        with self._lock:
            if not self.path.exists():
                STORE_LOGGER.info("Creating database file path=%s", self.path)
                document = self.default_document()
                if not self.save(document):
                    if strict:
                        raise StoreUnavailable(f"Could not initialize database file at {self.path}.")
                    STORE_LOGGER.error("Database file could not be initialized path=%s", self.path)
                return document

        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError, ValueError) as exc:
            return self._degraded(strict, f"unreadable: {exc}")
        if not isinstance(payload, dict):
            return self._degraded(strict, "top-level value is not an object")

        if not isinstance(payload.get("admin"), dict):
            payload["admin"] = {}
        for key in COLLECTIONS:
            if not isinstance(payload.get(key), list):
                payload[key] = []
        return payload

    def _degraded(self, strict: bool, reason: str) -> dict[str, Any]:
        STORE_LOGGER.error("Error reading database path=%s reason=%s", self.path, reason)
        if strict:
            raise StoreUnavailable("Database file is unreadable.")
        return empty_document()

    def save(self, document: dict[str, Any]) -> bool:
        with self._lock:
            STORE_LOGGER.info("Writing database (change #%s) path=%s", self.write_count + 1, self.path)
            temp_name = None
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                body = json.dumps(document, ensure_ascii=True, indent=2)
                with tempfile.NamedTemporaryFile(
                    "w",
                    encoding="utf-8",
                    dir=self.path.parent,
                    prefix=f"{self.path.name}.",
                    suffix=".tmp",
                    delete=False,
                ) as handle:
                    temp_name = handle.name
                    handle.write(body)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(temp_name, self.path)
            except (OSError, TypeError, ValueError) as exc:
                STORE_LOGGER.error("Error writing database path=%s error=%s", self.path, exc)
                if temp_name:
                    try:
                        os.unlink(temp_name)
                    except OSError:
                        pass
                return False

            self.write_count += 1
            STORE_LOGGER.info(
                "Database updated (write #%s) users=%s tools=%s rentals=%s logs=%s",
                self.write_count,
                len(document.get("users") or []),
                len(document.get("tools") or []),
                len(document.get("rentals") or []),
                len(document.get("logs") or []),
            )
            return True

    def commit(self, document: dict[str, Any]) -> None:
        if not self.save(document):
            raise StoreUnavailable("Could not save changes. Please try again.")

    @contextmanager
    def transaction(self) -> Iterator[dict[str, Any]]:
        if not self._lock.acquire(timeout=self.lock_timeout):
            STORE_LOGGER.error("Timed out waiting for database lock after %ss", self.lock_timeout)
            raise StoreUnavailable("Database is busy. Please try again.")
        try:
            yield self.load(strict=True)
        finally:
            self._lock.release()

    def status(self) -> dict[str, Any]:
        return {
            "dbPath": str(self.path),
            "exists": self.path.exists(),
            "changeCount": self.write_count,
        }
