from __future__ import annotations

import math
import os
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol


SYNTHETIC_THRESHOLD = 0.7
BLOCKING_CONFIDENCE = 80
MAX_CONFIDENCE = 98
SIMILARITY_THRESHOLD = 0.6
SIMILARITY_CEILING = 0.95
GENERATOR_KEYWORDS = ("ai", "generated", "stable", "dall", "midjourney")
FORMAT_BIAS = {".png": 0.2, ".webp": 0.15}


def _percent(value: float) -> int:
    return int(math.floor(value * 100 + 0.5))


@dataclass(frozen=True)
class AuthenticityResult:
    is_synthetic: bool
    confidence: int
    allow_upload: bool
    damage_detected: bool
    damage_confidence: int
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "is_ai_generated": self.is_synthetic,
            "confidence": self.confidence,
            "allow_upload": self.allow_upload,
            "damage_detected": self.damage_detected,
            "damage_confidence": self.damage_confidence,
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class SimilarityResult:
    similar: bool
    score: int
    error: str | None = None


class AuthenticityScorer(Protocol):
    def score(self, image: str | Path | None, file_name: str, file_size: int) -> AuthenticityResult:
        ...


class SimilarityScorer(Protocol):
    def compare(self, reference: str | Path, candidate: str | Path) -> SimilarityResult:
        ...


class HeuristicAuthenticityScorer:
    """Cheap stand-in for a synthetic-image classifier.

    Size bucket, generator keywords in the file name and container format give a
    baseline that is then perturbed at random. The damage judgment is drawn
    independently of the authenticity score.
    """

    def __init__(self, rng: random.Random | None = None):
        self.rng = rng or random.Random()

    def baseline(self, file_name: str, file_size: int) -> float:
        score = 0.0
        if file_size < 50_000:
            score += 0.3
        if file_size > 5_000_000:
            score += 0.1
        lowered = (file_name or "").lower()
        if any(keyword in lowered for keyword in GENERATOR_KEYWORDS):
            score += 0.4
        score += FORMAT_BIAS.get(os.path.splitext(lowered)[1], 0.0)
        return score

    def score(self, image: str | Path | None, file_name: str, file_size: int) -> AuthenticityResult:
        value = self.baseline(file_name, file_size)
        value += self.rng.random() * 0.4
        value += self.rng.random() * 0.2

        damage_detected = self.rng.random() < 0.2
        if damage_detected:
            damage_confidence = self.rng.randint(70, 99)
        else:
            damage_confidence = self.rng.randint(0, 19)

        is_synthetic = value > SYNTHETIC_THRESHOLD
        confidence = min(MAX_CONFIDENCE, _percent(value))
        return AuthenticityResult(
            is_synthetic=is_synthetic,
            confidence=confidence,
            allow_upload=not is_synthetic or confidence < BLOCKING_CONFIDENCE,
            damage_detected=damage_detected,
            damage_confidence=damage_confidence,
        )


class SizeRatioSimilarityScorer:
    """Blends how close two file sizes are (20%) with a random baseline (80%)."""

    def __init__(self, rng: random.Random | None = None):
        self.rng = rng or random.Random()

    def compare(self, reference: str | Path, candidate: str | Path) -> SimilarityResult:
        try:
            first = Path(reference).stat().st_size
            second = Path(candidate).stat().st_size
        except OSError as exc:
            return SimilarityResult(similar=False, score=0, error=str(exc))

        largest = max(first, second)
        size_similarity = 1 - abs(first - second) / largest if largest > 0 else 0.3
        base_similarity = 0.3 + self.rng.random() * 0.5
        final = min(SIMILARITY_CEILING, size_similarity * 0.2 + base_similarity * 0.8)
        return SimilarityResult(similar=final > SIMILARITY_THRESHOLD, score=_percent(final))


def damage_score(result: AuthenticityResult, rng: random.Random | None = None) -> int:
    if result.damage_detected:
        return max(70, result.damage_confidence)
    return (rng or random).randrange(30)
