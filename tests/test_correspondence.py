"""Tests for reference member selection and correspondence matching."""

import pytest

from assembly_replicator.correspondence import match_correspondences, select_reference_members
from assembly_replicator.model_document import ModelDocument


class TestSelectReferenceMembers:
    """Tests for select_reference_members."""

    def test_walls_preferred_over_points(self, translated_model, make_ctx):
        ctx = make_ctx(translated_model)
        reference = select_reference_members(ctx, translated_model.get_instance("unit_a"))
        members = [translated_model.get_member(item.member_id).user_identifier for item in reference.items]
        assert members == ["unit_a_wall0", "unit_a_wall1"]
        assert reference.is_sufficient
        assert reference.anchor == (0.0, 0.0, 0.0)

    def test_points_fill_in_when_walls_are_short(self, make_ctx):
        doc = ModelDocument()
        doc.add_definition("D")
        inst = doc.add_instance("D", (0, 0, 0), identifier="i")
        doc.add_wall((0, 0, 0), (4, 0, 0), category_id=1, type_id=1, instance=inst)
        doc.add_point_member((1, 1, 0), category_id=2, type_id=1, instance=inst)
        doc.add_point_member((2, 1, 0), category_id=2, type_id=2, instance=inst)
        reference = select_reference_members(make_ctx(doc), inst)
        assert len(reference) == 3

    def test_duplicate_signatures_collapse(self, make_ctx):
        doc = ModelDocument()
        doc.add_definition("D")
        inst = doc.add_instance("D", (0, 0, 0), identifier="i")
        doc.add_wall((0, 0, 0), (4, 0, 0), category_id=1, type_id=1, instance=inst)
        doc.add_wall((0, 2, 0), (4, 2, 0), category_id=1, type_id=1, instance=inst)
        reference = select_reference_members(make_ctx(doc), inst)
        assert len(reference) == 1
        assert not reference.is_sufficient

    def test_boxes_and_regions_never_selected(self, make_ctx):
        doc = ModelDocument()
        doc.add_definition("D")
        inst = doc.add_instance("D", (0, 0, 0), identifier="i")
        doc.add_box_member((0, 0, 0), (1, 1, 1), category_id=3, instance=inst)
        doc.add_region([(0, 0), (2, 0), (2, 2)], category_id=4, instance=inst)
        assert len(select_reference_members(make_ctx(doc), inst)) == 0


class TestMatchCorrespondences:
    """Tests for match_correspondences."""

    def test_matches_follow_reference_order(self, rotated_model, make_ctx):
        ctx = make_ctx(rotated_model)
        reference = select_reference_members(ctx, rotated_model.get_instance("unit_a"))
        matches = match_correspondences(ctx, reference, rotated_model.get_instance("unit_b"))
        assert [m.signature for m in matches] == [r.signature for r in reference.items]
        assert matches[0].point1 == pytest.approx((20.0, 0.0, 0.0))
        assert matches[0].point2 == pytest.approx((20.0, 5.0, 0.0))

    def test_unmatched_signatures_dropped(self, translated_model, make_ctx):
        ctx = make_ctx(translated_model)
        reference = select_reference_members(ctx, translated_model.get_instance("unit_a"))
        translated_model.remove_member("unit_b_wall1")
        matches = match_correspondences(ctx, reference, translated_model.get_instance("unit_b"))
        assert len(matches) == 1
        assert matches[0].signature == reference.items[0].signature

    def test_first_target_member_wins(self, translated_model, make_ctx):
        ctx = make_ctx(translated_model)
        reference = select_reference_members(ctx, translated_model.get_instance("unit_a"))
        # A second wall with wall0's signature, added after it
        translated_model.add_wall((50, 0, 0), (55, 0, 0), height=3.0, category_id=1, type_id=10,
                                  instance="unit_b")
        matches = match_correspondences(ctx, reference, translated_model.get_instance("unit_b"))
        assert matches[0].point1 == pytest.approx((10.0, 0.0, 0.0))
