"""Pytest fixtures for assembly_replicator tests."""

import pytest

from assembly_replicator.cad_transformations import (
    apply_transform, combine_transformations, get_transformed_point, identity_matrix,
    reflection_matrix, rotation_z_matrix_deg, translation_matrix
)
from assembly_replicator.model_document import ModelDocument
from assembly_replicator.run_context import RunContext

# Template of one "Unit" assembly, anchored at the origin
UNIT_WALLS = [((0.0, 0.0, 0.0), (5.0, 0.0, 0.0)), ((0.0, 0.0, 0.0), (0.0, 3.0, 0.0))]
UNIT_WALL_HEIGHT = 3.0
UNIT_FIXTURE = (1.0, 1.0, 0.0)
PAYLOAD_LOCATION = (2.0, 1.0, 0.0)

WALL_CATEGORY, WALL_TYPE = 1, 10
FIXTURE_CATEGORY, FIXTURE_TYPE = 2, 20
PAYLOAD_CATEGORY, PAYLOAD_TYPE = 5, 50


def place_unit(document, definition, identifier, matrix, level=None, region_height=None):
    """Adds an instance of the unit template placed by matrix. Optionally owns a region over its footprint."""
    anchor = get_transformed_point((0.0, 0.0, 0.0), matrix)
    instance = document.add_instance(definition, anchor, identifier=identifier)
    for i, (start, end) in enumerate(UNIT_WALLS):
        new_start, new_end = apply_transform([start, end], matrix)
        document.add_wall(new_start, new_end, height=UNIT_WALL_HEIGHT, category_id=WALL_CATEGORY,
                          type_id=WALL_TYPE, identifier=f"{identifier}_wall{i}", instance=instance, level=level)
    document.add_point_member(get_transformed_point(UNIT_FIXTURE, matrix), category_id=FIXTURE_CATEGORY,
                              type_id=FIXTURE_TYPE, identifier=f"{identifier}_fixture", instance=instance,
                              level=level)
    if region_height is not None:
        corners = apply_transform([(0, 0, 0), (5, 0, 0), (5, 3, 0), (0, 3, 0)], matrix)
        document.add_region(corners, level=level, height=region_height, elevation=anchor[2],
                            identifier=f"{identifier}_region", instance=instance)
    return instance


def add_payload(document, location=PAYLOAD_LOCATION, identifier="payload"):
    return document.add_point_member(location, category_id=PAYLOAD_CATEGORY, type_id=PAYLOAD_TYPE,
                                     identifier=identifier)


def _two_unit_model(name, target_matrix):
    document = ModelDocument(name)
    document.add_definition("Unit")
    place_unit(document, "Unit", "unit_a", identity_matrix())
    place_unit(document, "Unit", "unit_b", target_matrix)
    add_payload(document)
    return document


@pytest.fixture
def translated_model():
    """Two Unit instances, the second translated by +10 along X."""
    return _two_unit_model("Translated", translation_matrix(10.0, 0.0))


@pytest.fixture
def mirrored_model():
    """Second instance mirrored about the Y-Z plane and placed at x=20."""
    return _two_unit_model("Mirrored", combine_transformations(translation_matrix(20.0, 0.0), reflection_matrix('x')))


@pytest.fixture
def rotated_model():
    """Second instance rotated 90 degrees counterclockwise and placed at x=20."""
    return _two_unit_model("Rotated", combine_transformations(translation_matrix(20.0, 0.0), rotation_z_matrix_deg(90)))


@pytest.fixture
def region_model():
    """
    Two Room instances at x=0 and x=100, each owning a region over its footprint,
    on level L1. A payload sits inside the first room's region.
    """
    document = ModelDocument("Regions")
    document.add_level("L1", 0.0)
    document.add_definition("Room")
    place_unit(document, "Room", "room_a", identity_matrix(), level="L1", region_height=3.0)
    place_unit(document, "Room", "room_b", translation_matrix(100.0, 0.0), level="L1", region_height=3.0)
    add_payload(document, location=(2.0, 1.0, 1.0))
    return document


@pytest.fixture
def nested_region_model():
    """A room owning its region, enclosed by a much larger apartment instance."""
    document = ModelDocument("Nested")
    document.add_definition("Room")
    document.add_definition("Apartment")
    room = place_unit(document, "Room", "room", identity_matrix(), region_height=3.0)
    apartment = document.add_instance("Apartment", (-10.0, -10.0, 0.0), identifier="apartment")
    document.add_wall((-10, -10, 0), (30, -10, 0), height=5.0, category_id=WALL_CATEGORY, type_id=WALL_TYPE,
                      identifier="apartment_wall0", instance=apartment)
    document.add_wall((-10, -10, 0), (-10, 30, 0), height=5.0, category_id=WALL_CATEGORY, type_id=WALL_TYPE,
                      identifier="apartment_wall1", instance=apartment)
    document.add_wall((30, 30, 0), (30, -10, 0), height=5.0, category_id=WALL_CATEGORY, type_id=WALL_TYPE,
                      identifier="apartment_wall2", instance=apartment)
    return document, room, apartment


@pytest.fixture
def make_ctx():
    """Factory for a RunContext over a document."""
    def _make(document, config=None):
        return RunContext(document, config)
    return _make
