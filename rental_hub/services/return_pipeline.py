"""
Return verification pipeline.

A return runs through fixed stages inside one store transaction:
upload received -> authenticity check -> similarity check -> rental lookup ->
state commit -> log commit. Any failure aborts the whole run, leaves the stored
document untouched and deletes the uploaded photo.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any

from db.store import DocumentStore
from services.catalog_service import require_tool
from services.errors import GateRejection, RentalHubError, ValidationError
from services.image_storage import ImageStorage, UploadedImage
from services.rental_service import AUTO_RESOLVED, close_rental, lookup_open_rental, next_int_id, utc_now_iso
from services.scoring import AuthenticityResult, AuthenticityScorer, SimilarityScorer, damage_score


MIN_SIMILARITY_SCORE = 60
REVIEW_CONFIDENCE = 70
REVIEW_STATUS = "AI Detected - Review Required"
AVAILABLE_STATUS = "Available"

RETURN_LOGGER = logging.getLogger("rental_hub.returns")


class ReturnStage(Enum):
    UPLOAD_RECEIVED = "upload_received"
    AUTHENTICITY_CHECK = "authenticity_check"
    SIMILARITY_CHECK = "similarity_check"
    RENTAL_LOOKUP = "rental_lookup"
    STATE_COMMIT = "state_commit"
    LOG_COMMIT = "log_commit"
    DONE = "done"


@dataclass
class ReturnSubmission:
    tool_id: str
    rental_id: str
    user_id: int | None = None


@dataclass
class _ReturnRun:
    submission: ReturnSubmission
    upload: UploadedImage
    stage: ReturnStage = ReturnStage.UPLOAD_RECEIVED


class ReturnPipeline:
    def __init__(
        self,
        store: DocumentStore,
        images: ImageStorage,
        authenticity: AuthenticityScorer,
        similarity: SimilarityScorer,
        rng: random.Random | None = None,
    ):
        self.store = store
        self.images = images
        self.authenticity = authenticity
        self.similarity = similarity
        self.rng = rng or random.Random()

    def process(self, submission: ReturnSubmission, upload: UploadedImage | None) -> dict[str, Any]:
        if upload is None:
            raise ValidationError("No image uploaded.", code="NoImage")

        run = _ReturnRun(submission=submission, upload=upload)
        try:
            with self.store.transaction() as document:
                result = self._run(run, document)
        except RentalHubError as exc:
            RETURN_LOGGER.warning(
                "Return aborted stage=%s code=%s rental=%s tool=%s",
                run.stage.value,
                exc.code,
                submission.rental_id,
                submission.tool_id,
            )
            self.images.discard(upload.path)
            raise
        except Exception:
            RETURN_LOGGER.exception("Return processing error stage=%s rental=%s", run.stage.value, submission.rental_id)
            self.images.discard(upload.path)
            raise

        RETURN_LOGGER.info(
            "Return completed rental=%s tool=%s log=%s",
            submission.rental_id,
            submission.tool_id,
            result["log"]["id"],
        )
        return result

    def _run(self, run: _ReturnRun, document: dict[str, Any]) -> dict[str, Any]:
        submission, upload = run.submission, run.upload
        tool = require_tool(document, submission.tool_id)

        run.stage = ReturnStage.AUTHENTICITY_CHECK
        authenticity = self.authenticity.score(upload.path, upload.original_name, upload.size)
        if not authenticity.allow_upload:
            raise GateRejection(
                "The uploaded image appears to be AI-generated. Please upload a real photo.",
                code="SyntheticImageRejected",
            )

        run.stage = ReturnStage.SIMILARITY_CHECK
        similarity_score = self._check_similarity(tool, upload)

        run.stage = ReturnStage.RENTAL_LOOKUP
        rental = lookup_open_rental(document, submission.rental_id, tool["id"])

        run.stage = ReturnStage.STATE_COMMIT
        close_rental(rental, tool, upload.filename)

        run.stage = ReturnStage.LOG_COMMIT
        entry = self._build_log_entry(document, run, tool, rental, authenticity, similarity_score)
        document["logs"].append(entry)
        self.store.commit(document)

        run.stage = ReturnStage.DONE
        needs_review = authenticity.confidence > REVIEW_CONFIDENCE
        return {
            "success": True,
            "message": (
                "Tool returned successfully. Image requires review."
                if needs_review
                else "Tool returned successfully and is available for rent."
            ),
            "rental": rental,
            "log": entry,
        }

    def _check_similarity(self, tool: dict[str, Any], upload: UploadedImage) -> int:
        reference = self.images.before_path(tool.get("beforeImageRef"))
        if reference is None:
            return 0
        if not reference.exists():
            RETURN_LOGGER.warning("Reference image missing, skipping comparison tool=%s path=%s", tool["id"], reference)
            return 0

        comparison = self.similarity.compare(reference, upload.path)
        if comparison.error:
            RETURN_LOGGER.warning("Image comparison failed tool=%s error=%s", tool["id"], comparison.error)
        if not comparison.similar or comparison.score < MIN_SIMILARITY_SCORE:
            raise GateRejection(
                "The uploaded image doesn't appear to show the same tool. "
                f"Please upload a clear photo of the actual {tool.get('name')}.",
                code="ImageMismatch",
            )
        return comparison.score

    def _build_log_entry(
        self,
        document: dict[str, Any],
        run: _ReturnRun,
        tool: dict[str, Any],
        rental: dict[str, Any],
        authenticity: AuthenticityResult,
        similarity_score: int,
    ) -> dict[str, Any]:
        user_id = run.submission.user_id
        return {
            "id": next_int_id(document["logs"]),
            "toolId": tool["id"],
            "userId": user_id if user_id is not None else rental.get("userId"),
            "userName": rental.get("userName"),
            "rentalId": rental["rentalId"],
            "beforeImageRef": tool.get("beforeImageRef"),
            "afterImageRef": run.upload.filename,
            "damageScore": damage_score(authenticity, self.rng),
            "aiDetected": authenticity.is_synthetic,
            "aiConfidence": authenticity.confidence,
            "damageDetected": authenticity.damage_detected,
            "damageConfidence": authenticity.damage_confidence,
            "imageSimilarity": similarity_score,
            "status": REVIEW_STATUS if authenticity.confidence > REVIEW_CONFIDENCE else AVAILABLE_STATUS,
            "timestamp": utc_now_iso(),
            "action": AUTO_RESOLVED,
        }
