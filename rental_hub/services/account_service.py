from __future__ import annotations

import logging
from typing import Any

from db.store import DocumentStore
from services.errors import AuthenticationError, ValidationError
from services.rental_service import next_int_id, utc_now_iso


ADMIN_ROLE = "admin"
USER_ROLE = "user"

AUTH_LOGGER = logging.getLogger("rental_hub.auth")


def _normalize_email(raw: str | None) -> str:
    return (raw or "").strip().lower()


def login(store: DocumentStore, email: str, password: str, role: str | None = USER_ROLE) -> dict[str, Any]:
    """Match admin credentials, or sign a user in, creating the account on first sight."""
    normalized = _normalize_email(email)
    if not normalized or not password:
        raise ValidationError("Email and password are required.", code="MissingCredentials")

    if (role or USER_ROLE).strip().lower() == ADMIN_ROLE:
        admin = store.load().get("admin") or {}
        if _normalize_email(admin.get("email")) == normalized and admin.get("password") == password:
            AUTH_LOGGER.info("Login success role=admin email=%s", normalized)
            return {"success": True, "role": ADMIN_ROLE, "userId": ADMIN_ROLE}
        AUTH_LOGGER.warning("Login failed role=admin email=%s reason=invalid_admin_credentials", normalized)
        raise AuthenticationError("Invalid admin credentials.")

    with store.transaction() as document:
        user = next((row for row in document["users"] if _normalize_email(row.get("email")) == normalized), None)
        if not user:
            user = {
                "id": next_int_id(document["users"]),
                "email": normalized,
                "password": password,
                "role": USER_ROLE,
                "name": normalized.split("@")[0],
                "joinedDate": utc_now_iso(),
            }
            document["users"].append(user)
            store.commit(document)
            AUTH_LOGGER.info("User provisioned id=%s email=%s", user["id"], normalized)
        elif user.get("password") != password:
            AUTH_LOGGER.warning("Login failed role=user email=%s reason=invalid_password", normalized)
            raise AuthenticationError("Invalid password.")

    return {"success": True, "role": USER_ROLE, "userId": user["id"]}
