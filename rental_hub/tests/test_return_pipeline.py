import random
import unittest
from unittest import mock

from hub_fixtures import StubAuthenticityScorer, StubSimilarityScorer, Workspace

from services.errors import ConflictError, GateRejection, NotFoundError, StoreUnavailable, ValidationError
from services.return_pipeline import ReturnPipeline, ReturnSubmission


class ReturnPipelineTests(unittest.TestCase):
    def setUp(self):
        self.workspace = Workspace()
        self.store = self.workspace.store
        self.workspace.add_tool(name="Drill", price=10, quantity=2)
        self.rental = self.workspace.rent(user_id=1)
        self.authenticity = StubAuthenticityScorer(confidence=20)
        self.similarity = StubSimilarityScorer(score=85)

    def tearDown(self):
        self.workspace.cleanup()

    def _pipeline(self):
        return ReturnPipeline(
            self.store,
            self.workspace.images,
            self.authenticity,
            self.similarity,
            rng=random.Random(7),
        )

    def _submission(self, rental_id=None, tool_id="drill"):
        return ReturnSubmission(tool_id=tool_id, rental_id=rental_id or self.rental["rentalId"], user_id=1)

    def test_valid_return_closes_rental_and_logs(self):
        self.workspace.add_before_image()
        upload = self.workspace.upload_after()

        result = self._pipeline().process(self._submission(), upload)

        self.assertTrue(result["success"])
        self.assertEqual(result["message"], "Tool returned successfully and is available for rent.")
        rental = self.workspace.rental(self.rental["rentalId"])
        self.assertEqual(rental["status"], "RETURNED")
        self.assertEqual(rental["afterImageRef"], upload.filename)
        self.assertTrue(rental["returnDate"])
        tool = self.workspace.tool()
        self.assertEqual((tool["rented"], tool["available"]), (0, 2))

        logs = self.store.load()["logs"]
        self.assertEqual(len(logs), 1)
        log = logs[0]
        self.assertEqual(log["id"], 1)
        self.assertEqual(log["action"], "AUTO-RESOLVED")
        self.assertEqual(log["status"], "Available")
        self.assertEqual(log["imageSimilarity"], 85)
        self.assertEqual(log["aiConfidence"], 20)
        self.assertEqual(log["afterImageRef"], upload.filename)
        self.assertEqual(log["beforeImageRef"], "drill.jpg")
        self.assertLess(log["damageScore"], 30)
        self.assertTrue(upload.path.exists())
        self.assertEqual(len(self.similarity.calls), 1)

    def test_high_confidence_allowed_upload_is_flagged_for_review(self):
        self.authenticity = StubAuthenticityScorer(confidence=76, damage_detected=True, damage_confidence=65)
        upload = self.workspace.upload_after()

        result = self._pipeline().process(self._submission(), upload)

        self.assertEqual(result["message"], "Tool returned successfully. Image requires review.")
        log = result["log"]
        self.assertEqual(log["status"], "AI Detected - Review Required")
        self.assertTrue(log["aiDetected"])
        self.assertEqual(log["damageScore"], 70)

    def test_synthetic_image_is_rejected_and_removed(self):
        self.authenticity = StubAuthenticityScorer(confidence=95, is_synthetic=True, allow_upload=False)
        upload = self.workspace.upload_after(name="midjourney.png")
        before = self.store.path.read_text(encoding="utf-8")

        with self.assertRaises(GateRejection) as ctx:
            self._pipeline().process(self._submission(), upload)

        self.assertEqual(ctx.exception.code, "SyntheticImageRejected")
        self.assertFalse(upload.path.exists())
        self.assertEqual(self.workspace.rental(self.rental["rentalId"])["status"], "RENTED")
        self.assertEqual(self.store.path.read_text(encoding="utf-8"), before)
        self.assertEqual(self.similarity.calls, [])

    def test_mismatched_image_is_rejected(self):
        self.workspace.add_before_image()
        self.similarity = StubSimilarityScorer(score=45)
        upload = self.workspace.upload_after()
        tool_before = self.workspace.tool()

        with self.assertRaises(GateRejection) as ctx:
            self._pipeline().process(self._submission(), upload)

        self.assertEqual(ctx.exception.code, "ImageMismatch")
        self.assertIn("Drill", ctx.exception.message)
        self.assertFalse(upload.path.exists())
        self.assertEqual(self.workspace.tool(), tool_before)

    def test_similar_flag_with_low_score_is_still_a_mismatch(self):
        self.workspace.add_before_image()
        self.similarity = StubSimilarityScorer(score=55, similar=True)
        upload = self.workspace.upload_after()

        with self.assertRaises(GateRejection):
            self._pipeline().process(self._submission(), upload)

    def test_comparison_skipped_without_reference_image(self):
        self.similarity = StubSimilarityScorer(score=10)
        upload = self.workspace.upload_after()

        result = self._pipeline().process(self._submission(), upload)

        self.assertEqual(result["log"]["imageSimilarity"], 0)
        self.assertEqual(self.similarity.calls, [])

    def test_comparison_skipped_when_reference_file_is_gone(self):
        reference = self.workspace.add_before_image()
        reference.path.unlink()
        self.similarity = StubSimilarityScorer(score=10)

        result = self._pipeline().process(self._submission(), self.workspace.upload_after())

        self.assertEqual(result["log"]["imageSimilarity"], 0)

    def test_missing_image(self):
        with self.assertRaises(ValidationError) as ctx:
            self._pipeline().process(self._submission(), None)
        self.assertEqual(ctx.exception.code, "NoImage")

    def test_unknown_tool_removes_upload(self):
        upload = self.workspace.upload_after(tool_id="ghost")

        with self.assertRaises(NotFoundError) as ctx:
            self._pipeline().process(self._submission(tool_id="ghost"), upload)

        self.assertEqual(ctx.exception.code, "ToolNotFound")
        self.assertFalse(upload.path.exists())
        self.assertEqual(self.authenticity.calls, [])

    def test_unknown_rental_removes_upload(self):
        upload = self.workspace.upload_after()

        with self.assertRaises(NotFoundError) as ctx:
            self._pipeline().process(self._submission(rental_id="missing"), upload)

        self.assertEqual(ctx.exception.code, "RentalNotFound")
        self.assertFalse(upload.path.exists())
        self.assertEqual(self.workspace.tool()["available"], 1)

    def test_rental_for_another_tool_is_rejected(self):
        self.workspace.add_tool(name="Saw", quantity=1)
        upload = self.workspace.upload_after(tool_id="saw")

        with self.assertRaises(ValidationError) as ctx:
            self._pipeline().process(self._submission(tool_id="saw"), upload)

        self.assertEqual(ctx.exception.code, "RentalToolMismatch")
        self.assertEqual(self.workspace.tool("saw")["available"], 1)

    def test_second_return_of_same_rental_does_not_double_increment(self):
        first_upload = self.workspace.upload_after()
        self._pipeline().process(self._submission(), first_upload)
        second_upload = self.workspace.upload_after()

        with self.assertRaises(ConflictError) as ctx:
            self._pipeline().process(self._submission(), second_upload)

        self.assertEqual(ctx.exception.code, "RentalAlreadyReturned")
        tool = self.workspace.tool()
        self.assertEqual((tool["rented"], tool["available"]), (0, 2))
        self.assertEqual(len(self.store.load()["logs"]), 1)
        self.assertTrue(first_upload.path.exists())
        self.assertFalse(second_upload.path.exists())

    def test_failed_persistence_discards_upload_and_state(self):
        upload = self.workspace.upload_after()

        with mock.patch.object(self.store, "save", return_value=False):
            with self.assertRaises(StoreUnavailable):
                self._pipeline().process(self._submission(), upload)

        self.assertFalse(upload.path.exists())
        self.assertEqual(self.workspace.rental(self.rental["rentalId"])["status"], "RENTED")
        self.assertEqual(self.workspace.tool()["available"], 1)
        self.assertEqual(self.store.load()["logs"], [])

    def test_failed_cleanup_is_not_escalated(self):
        self.authenticity = StubAuthenticityScorer(confidence=95, is_synthetic=True, allow_upload=False)
        upload = self.workspace.upload_after()

        with mock.patch("services.image_storage.Path.unlink", side_effect=PermissionError("locked")):
            with self.assertRaises(GateRejection):
                self._pipeline().process(self._submission(), upload)

        self.assertTrue(upload.path.exists())


if __name__ == "__main__":
    unittest.main()
