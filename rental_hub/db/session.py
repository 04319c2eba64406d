import os
from pathlib import Path

from db.store import DEFAULT_ADMIN, DocumentStore


BASE_DIR = Path(__file__).resolve().parent.parent


def _env_path(name: str, default: Path) -> Path:
    value = (os.environ.get(name) or "").strip()
    return Path(value) if value else default


def _env_float(name: str, default: float) -> float:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be a number, got {raw!r}") from exc


DATA_DIR = _env_path("RENTAL_HUB_DATA_DIR", BASE_DIR / "data")
DB_PATH = _env_path("RENTAL_HUB_DB_PATH", DATA_DIR / "db.json")
UPLOAD_DIR = _env_path("RENTAL_HUB_UPLOAD_DIR", BASE_DIR / "uploads")
STORE_LOCK_TIMEOUT = _env_float("RENTAL_HUB_STORE_LOCK_TIMEOUT", 10.0)

LOCAL_ADMIN = {
    **DEFAULT_ADMIN,
    "email": (os.environ.get("LOCAL_ADMIN_EMAIL") or DEFAULT_ADMIN["email"]).strip(),
    "password": os.environ.get("LOCAL_ADMIN_PASSWORD") or DEFAULT_ADMIN["password"],
}

document_store = DocumentStore(DB_PATH, lock_timeout=STORE_LOCK_TIMEOUT, admin=LOCAL_ADMIN)
