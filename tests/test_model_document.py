"""Tests for the in-memory host model."""

import numpy as np
import pytest

from assembly_replicator.cad_common import (
    BoundingBox, HostOperationFailure, ModelConfigurationError, TransactionFailure
)
from assembly_replicator.cad_transformations import reflection_matrix, translation_matrix
from assembly_replicator.model_document import ModelDocument
from assembly_replicator.model_entities import Region


@pytest.fixture
def document():
    doc = ModelDocument("Doc")
    doc.add_level("L0", 0.0)
    doc.add_level("L1", 4.0)
    doc.add_definition("D")
    inst = doc.add_instance("D", (0, 0, 4), identifier="inst")
    doc.add_wall((0, 0, 4), (6, 0, 4), height=3.0, category_id=1, type_id=1, identifier="w", instance=inst)
    doc.add_point_member((1, 1, 4), category_id=2, identifier="p", instance=inst)
    return doc


class TestRegistration:
    """Tests for entity creation and lookup."""

    def test_lookup_by_identifier_uuid_and_object(self, document):
        wall = document.get_member("w")
        assert document.get_member(wall.internal_id) is wall
        assert document.get_member(wall) is wall
        assert document.get_instance("w") is None

    def test_duplicate_identifier_rejected(self, document):
        assert document.add_point_member((0, 0, 0), identifier="w") is None
        assert document.add_level("L0") is None

    def test_unknown_definition_rejected(self, document):
        assert document.add_instance("Missing", (0, 0, 0)) is None

    def test_instance_membership_ordered(self, document):
        names = [m.user_identifier for m in document.get_instance_members("inst")]
        assert names == ["w", "p"]
        assert document.get_owner_instance("p").user_identifier == "inst"

    def test_member_belongs_to_one_instance(self, document):
        other = document.add_instance("D", (50, 0, 0), identifier="other")
        assert not document.add_member_to_instance("w", other)
        assert document.get_instance_member_ids(other) == []

    def test_region_elevation_defaults_to_level(self, document):
        region = document.add_region([(0, 0), (2, 0), (2, 2)], level="L1")
        assert region.elevation == 4.0
        assert isinstance(region, Region)

    def test_remove_member(self, document):
        assert document.remove_member("p")
        assert document.get_member("p") is None
        assert [m.user_identifier for m in document.get_instance_members("inst")] == ["w"]
        assert not document.remove_member("p")


class TestQueries:
    """Tests for bounding boxes, levels and search."""

    def test_instance_bounding_box_is_union(self, document):
        box = document.get_bounding_box("inst")
        assert (box.min_x, box.min_y, box.min_z, box.max_x, box.max_y, box.max_z) == (0, 0, 4, 6, 1, 7)

    def test_unknown_bounding_box_invalid(self, document):
        assert not document.get_bounding_box("nothing").is_valid()

    def test_instance_level_falls_back_to_nearest(self, document):
        assert document.get_instance_level("inst").user_identifier == "L1"

    def test_instance_level_prefers_member_level(self, document):
        document.set_level("p", "L0")
        assert document.get_instance_level("inst").user_identifier == "L0"

    def test_find_members_intersecting(self, document):
        found = document.find_members_intersecting(BoundingBox(0.9, 0.9, 3.9, 1.1, 1.1, 4.1))
        assert [m.user_identifier for m in found] == ["p"]
        assert document.find_members_intersecting(BoundingBox(0.9, 0.9, 3.9, 1.1, 1.1, 4.1), category_id=1) == []

    def test_set_comment_unknown_member(self, document):
        with pytest.raises(HostOperationFailure):
            document.set_comment("ghost", "x")
        with pytest.raises(HostOperationFailure):
            document.set_level("p", "L9")


class TestCopyMembers:
    """Tests for the bulk copy operation."""

    def test_copies_are_ordered_and_free(self, document):
        new_ids = document.copy_members(["p", "w"], translation_matrix(10, 0))
        p_copy, w_copy = (document.get_member(i) for i in new_ids)
        assert p_copy.location == pytest.approx((11, 1, 4))
        assert w_copy.start == pytest.approx((10, 0, 4))
        assert document.get_owner_instance(p_copy) is None
        assert p_copy.user_identifier.startswith("p_copy_")

    def test_mirrored_copy(self, document):
        new_id = document.copy_members(["w"], reflection_matrix('x', (10, 0, 0)))[0]
        assert document.get_member(new_id).end == pytest.approx((14, 0, 4))

    def test_unknown_member_copies_nothing(self, document):
        count = len(document.list_members())
        with pytest.raises(HostOperationFailure):
            document.copy_members(["p", "ghost"], translation_matrix(1, 0))
        assert len(document.list_members()) == count

    def test_bad_matrix_rejected(self, document):
        with pytest.raises(HostOperationFailure):
            document.copy_members(["p"], np.identity(3))


class TestTransactions:
    """Tests for snapshot transactions."""

    def test_commit_keeps_changes(self, document):
        with document.transaction("add"):
            document.add_point_member((5, 5, 5), identifier="new")
        assert document.get_member("new") is not None

    def test_exception_rolls_back(self, document):
        with pytest.raises(TransactionFailure):
            with document.transaction("broken"):
                document.add_point_member((5, 5, 5), identifier="new")
                document.set_comment("p", "changed")
                raise ValueError("boom")
        assert document.get_member("new") is None
        assert document.get_member("p").comment == ""
        assert not document.in_transaction

    def test_nested_transaction_refused(self, document):
        document.begin_transaction("outer")
        with pytest.raises(TransactionFailure):
            document.begin_transaction("inner")
        document.rollback_transaction()

    def test_commit_without_transaction(self, document):
        with pytest.raises(TransactionFailure):
            document.commit_transaction()


class TestPersistence:
    """Tests for pickle snapshots and validation."""

    def test_save_and_load_state(self, document, tmp_path):
        path = tmp_path / "state" / "doc.pkl"
        document.save_state(str(path))
        loaded = ModelDocument.load_state(str(path))
        assert loaded.model_name == "Doc"
        assert [m.user_identifier for m in loaded.get_instance_members("inst")] == ["w", "p"]

    def test_load_missing_state(self, tmp_path):
        assert ModelDocument.load_state(str(tmp_path / "absent.pkl")) is None

    def test_validate_detects_orphan_instance(self, document):
        document._instance_definition.clear()
        with pytest.raises(ModelConfigurationError):
            document.validate()
