import tempfile
import unittest
from pathlib import Path

from hub_fixtures import APP_DIR  # noqa: F401

from services.scoring import (
    AuthenticityResult,
    HeuristicAuthenticityScorer,
    SizeRatioSimilarityScorer,
    damage_score,
)


class ScriptedRandom:
    def __init__(self, floats=(), ints=()):
        self.floats = list(floats)
        self.ints = list(ints)

    def random(self):
        return self.floats.pop(0)

    def randint(self, low, high):
        value = self.ints.pop(0)
        assert low <= value <= high
        return value

    def randrange(self, stop):
        value = self.ints.pop(0)
        assert 0 <= value < stop
        return value


class AuthenticityScorerTests(unittest.TestCase):
    def test_baseline_signals(self):
        scorer = HeuristicAuthenticityScorer()
        self.assertAlmostEqual(scorer.baseline("photo.jpg", 200_000), 0.0)
        self.assertAlmostEqual(scorer.baseline("photo.jpg", 10_000), 0.3)
        self.assertAlmostEqual(scorer.baseline("photo.jpg", 6_000_000), 0.1)
        self.assertAlmostEqual(scorer.baseline("Midjourney_drill.PNG", 200_000), 0.6)
        self.assertAlmostEqual(scorer.baseline("drill.webp", 200_000), 0.15)

    def test_confident_synthetic_image_is_blocked(self):
        rng = ScriptedRandom(floats=[0.5, 0.5, 0.9], ints=[4])
        result = HeuristicAuthenticityScorer(rng).score(None, "generated.png", 10_000)

        self.assertTrue(result.is_synthetic)
        self.assertEqual(result.confidence, 98)
        self.assertFalse(result.allow_upload)
        self.assertFalse(result.damage_detected)
        self.assertEqual(result.damage_confidence, 4)

    def test_borderline_synthetic_image_is_allowed(self):
        rng = ScriptedRandom(floats=[0.9, 0.5, 0.1], ints=[88])
        result = HeuristicAuthenticityScorer(rng).score(None, "photo.jpg", 10_000)

        self.assertTrue(result.is_synthetic)
        self.assertEqual(result.confidence, 76)
        self.assertTrue(result.allow_upload)
        self.assertTrue(result.damage_detected)
        self.assertEqual(result.damage_confidence, 88)

    def test_real_looking_image_passes(self):
        rng = ScriptedRandom(floats=[0.5, 0.5, 0.5], ints=[10])
        result = HeuristicAuthenticityScorer(rng).score(None, "photo.jpg", 200_000)

        self.assertFalse(result.is_synthetic)
        self.assertEqual(result.confidence, 30)
        self.assertTrue(result.allow_upload)

    def test_result_payload_keys(self):
        result = AuthenticityResult(
            is_synthetic=False, confidence=12, allow_upload=True, damage_detected=False, damage_confidence=3
        )
        self.assertEqual(
            result.to_dict(),
            {
                "is_ai_generated": False,
                "confidence": 12,
                "allow_upload": True,
                "damage_detected": False,
                "damage_confidence": 3,
                "warnings": [],
            },
        )


class SimilarityScorerTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def _file(self, name, size):
        path = self.root / name
        path.write_bytes(b"a" * size)
        return path

    def test_equal_sizes_with_high_baseline_are_similar(self):
        scorer = SizeRatioSimilarityScorer(ScriptedRandom(floats=[0.9]))
        result = scorer.compare(self._file("a.jpg", 1000), self._file("b.jpg", 1000))
        self.assertTrue(result.similar)
        self.assertEqual(result.score, 80)
        self.assertIsNone(result.error)

    def test_distant_sizes_with_low_baseline_are_not_similar(self):
        scorer = SizeRatioSimilarityScorer(ScriptedRandom(floats=[0.0]))
        result = scorer.compare(self._file("a.jpg", 1000), self._file("b.jpg", 100))
        self.assertFalse(result.similar)
        self.assertEqual(result.score, 26)

    def test_unreadable_image_fails_softly(self):
        scorer = SizeRatioSimilarityScorer(ScriptedRandom())
        result = scorer.compare(self.root / "missing.jpg", self._file("b.jpg", 100))
        self.assertFalse(result.similar)
        self.assertEqual(result.score, 0)
        self.assertTrue(result.error)


class DamageScoreTests(unittest.TestCase):
    def test_flagged_damage_is_floored_at_seventy(self):
        flagged = AuthenticityResult(False, 10, True, damage_detected=True, damage_confidence=85)
        self.assertEqual(damage_score(flagged), 85)
        low = AuthenticityResult(False, 10, True, damage_detected=True, damage_confidence=40)
        self.assertEqual(damage_score(low), 70)

    def test_undamaged_return_scores_below_thirty(self):
        clean = AuthenticityResult(False, 10, True, damage_detected=False, damage_confidence=5)
        self.assertEqual(damage_score(clean, ScriptedRandom(ints=[17])), 17)
        for _ in range(50):
            self.assertLess(damage_score(clean), 30)


if __name__ == "__main__":
    unittest.main()
