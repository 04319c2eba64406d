from __future__ import annotations

import logging
import os
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO


ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}
IMAGE_LOGGER = logging.getLogger("rental_hub.images")


@dataclass(frozen=True)
class UploadedImage:
    path: Path
    original_name: str
    size: int

    @property
    def filename(self) -> str:
        return self.path.name


def _extension(original_name: str | None) -> str:
    return os.path.splitext(original_name or "")[1].lower()


def before_image_name(tool_id: str, original_name: str | None) -> str:
    return f"{tool_id}{_extension(original_name)}"


def after_image_name(user_id: int | str, tool_id: str, original_name: str | None, now_ms: int | None = None) -> str:
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{user_id}_{tool_id}_return_{timestamp}{_extension(original_name)}"


class ImageStorage:
    """Two flat buckets of uploaded photos: reference "before" shots and return "after" shots."""

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.before_dir = self.root / "before"
        self.after_dir = self.root / "after"

    def ensure_dirs(self) -> None:
        self.before_dir.mkdir(parents=True, exist_ok=True)
        self.after_dir.mkdir(parents=True, exist_ok=True)

    def before_path(self, reference: str | None) -> Path | None:
        if not reference:
            return None
        return self.before_dir / Path(reference).name

    def _write(self, target: Path, source: BinaryIO, original_name: str | None) -> UploadedImage:
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("wb") as output:
            output.write(source.read())
        return UploadedImage(path=target, original_name=original_name or target.name, size=target.stat().st_size)

    def stage_before(self, tool_id: str, source: BinaryIO, original_name: str | None) -> UploadedImage:
        """Write a reference photo under a hidden temporary name beside its final path."""
        final_name = before_image_name(tool_id, original_name)
        staged = self.before_dir / f".{final_name}.{uuid.uuid4().hex}.part"
        return self._write(staged, source, original_name or final_name)

    def publish_before(self, staged: UploadedImage, tool_id: str) -> UploadedImage:
        target = self.before_dir / before_image_name(tool_id, staged.original_name)
        os.replace(staged.path, target)
        return UploadedImage(path=target, original_name=staged.original_name, size=staged.size)

    def save_after(self, user_id: int | str, tool_id: str, source: BinaryIO, original_name: str | None) -> UploadedImage:
        target = self.after_dir / after_image_name(user_id, Path(tool_id).name or "temp", original_name)
        counter = 1
        while target.exists():
            # Same user, tool and millisecond; never overwrite an earlier return photo.
            target = target.with_name(f"{target.stem.rsplit('~', 1)[0]}~{counter}{target.suffix}")
            counter += 1
        return self._write(target, source, original_name)

    def discard(self, path: str | Path | None) -> bool:
        if not path:
            return False
        try:
            Path(path).unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            IMAGE_LOGGER.warning("Could not delete rejected upload path=%s error=%s", path, exc)
            return False
        IMAGE_LOGGER.info("Deleted rejected upload path=%s", path)
        return True
