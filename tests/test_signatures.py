"""Tests for member signature keys."""

from assembly_replicator.model_document import ModelDocument
from assembly_replicator.signatures import build_signature


class TestBuildSignature:
    """Tests for build_signature."""

    def test_wall_includes_length_and_height(self):
        doc = ModelDocument()
        wall = doc.add_wall((0, 0, 0), (3, 4, 0), height=2.5, category_id=1, type_id=7)
        assert build_signature(wall) == "Wall|1|7|L:5.000000|H:2.500000|"

    def test_point_member_has_no_length(self):
        doc = ModelDocument()
        point = doc.add_point_member((1, 2, 3), category_id=2, type_id=9, comment="Kitchen")
        assert build_signature(point) == "PointMember|2|9|Kitchen|"

    def test_missing_type_leaves_empty_field(self):
        doc = ModelDocument()
        curve = doc.add_curve_member((0, 0, 0), (1, 0, 0), category_id=3)
        assert build_signature(curve) == "CurveMember|3||L:1.000000|"

    def test_float_noise_below_precision_ignored(self):
        doc = ModelDocument()
        a = doc.add_wall((0, 0, 0), (5.0, 0, 0), category_id=1, type_id=1)
        b = doc.add_wall((10, 0, 0), (15.0000000001, 0, 0), category_id=1, type_id=1)
        assert build_signature(a) == build_signature(b)

    def test_position_does_not_matter(self):
        doc = ModelDocument()
        a = doc.add_wall((0, 0, 0), (0, 5, 0), category_id=1, type_id=1)
        b = doc.add_wall((40, 40, 0), (45, 40, 0), category_id=1, type_id=1)
        assert build_signature(a) == build_signature(b)

    def test_region_area_not_part_of_key(self):
        doc = ModelDocument()
        small = doc.add_region([(0, 0), (1, 0), (1, 1)], category_id=4, type_id=1)
        large = doc.add_region([(0, 0), (9, 0), (9, 9)], category_id=4, type_id=1)
        assert build_signature(small) == build_signature(large)

    def test_decimals_control_precision(self):
        doc = ModelDocument()
        wall = doc.add_wall((0, 0, 0), (1.24, 0, 0), category_id=1, type_id=1)
        assert build_signature(wall, decimals=1) == "Wall|1|1|L:1.2|"
