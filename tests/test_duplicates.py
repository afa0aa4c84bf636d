"""Tests for duplicate detection at target placements."""

from assembly_replicator.cad_transformations import translation_matrix
from assembly_replicator.config import ReplicationConfig
from assembly_replicator.duplicates import DuplicateDetector
from assembly_replicator.model_document import ModelDocument


class TestExistsAtTarget:
    """Tests for DuplicateDetector.exists_at_target."""

    def test_empty_target(self, translated_model, make_ctx):
        detector = DuplicateDetector(make_ctx(translated_model))
        payload = translated_model.get_member("payload")
        assert not detector.exists_at_target(payload, translation_matrix(10, 0))

    def test_existing_copy_detected(self, translated_model, make_ctx):
        payload = translated_model.get_member("payload")
        translated_model.copy_members([payload], translation_matrix(10, 0))
        detector = DuplicateDetector(make_ctx(translated_model))
        assert detector.exists_at_target(payload, translation_matrix(10, 0))

    def test_other_type_not_a_duplicate(self, translated_model, make_ctx):
        translated_model.add_point_member((12, 1, 0), category_id=5, type_id=51)
        detector = DuplicateDetector(make_ctx(translated_model))
        assert not detector.exists_at_target(translated_model.get_member("payload"), translation_matrix(10, 0))

    def test_other_category_not_a_duplicate(self, translated_model, make_ctx):
        translated_model.add_point_member((12, 1, 0), category_id=6, type_id=50)
        detector = DuplicateDetector(make_ctx(translated_model))
        assert not detector.exists_at_target(translated_model.get_member("payload"), translation_matrix(10, 0))

    def test_curve_needs_matching_endpoints(self, make_ctx):
        doc = ModelDocument()
        pipe = doc.add_curve_member((0, 0, 0), (4, 0, 0), category_id=7, type_id=1)
        # Shares the start point only
        doc.add_curve_member((10, 0, 0), (10, 4, 0), category_id=7, type_id=1)
        detector = DuplicateDetector(make_ctx(doc))
        assert not detector.exists_at_target(pipe, translation_matrix(10, 0))

    def test_reversed_curve_is_a_duplicate(self, make_ctx):
        doc = ModelDocument()
        pipe = doc.add_curve_member((0, 0, 0), (4, 0, 0), category_id=7, type_id=1)
        doc.add_curve_member((14, 0, 0), (10.005, 0, 0), category_id=7, type_id=1)
        detector = DuplicateDetector(make_ctx(doc))
        assert detector.exists_at_target(pipe, translation_matrix(10, 0))

    def test_search_half_width_is_configurable(self, translated_model, make_ctx):
        translated_model.add_point_member((12.05, 1, 0), category_id=5, type_id=50)
        payload = translated_model.get_member("payload")
        assert not DuplicateDetector(make_ctx(translated_model)).exists_at_target(payload, translation_matrix(10, 0))
        wide = ReplicationConfig(duplicate_search_half_width=0.1)
        assert DuplicateDetector(make_ctx(translated_model, wide)).exists_at_target(payload, translation_matrix(10, 0))


class TestClaim:
    """Tests for in-run placement claims."""

    def test_second_claim_on_same_spot_refused(self, translated_model, make_ctx):
        detector = DuplicateDetector(make_ctx(translated_model))
        payload = translated_model.get_member("payload")
        assert detector.claim(payload, translation_matrix(10, 0))
        assert not detector.claim(payload, translation_matrix(10, 0))
        assert detector.claim(payload, translation_matrix(20, 0))
