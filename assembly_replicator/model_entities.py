"""
model_entities.py

Defines the core model entity classes (Level, AssemblyDefinition, AssemblyInstance
and the Member hierarchy).
Entities primarily hold their intrinsic attributes (geometry, classification, comment).
Relationships between entities (instance membership, definition of an instance,
level assignment) are managed centrally by the ModelDocument class, which passes
resolved names in when an entity builds its XML element.
"""

import xml.etree.ElementTree as ET
import json
import uuid
import math
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Tuple, Optional, Sequence

import numpy as np

from .cad_common import BoundingBox, ModelEntity, Point3, as_point3, midpoint
from .cad_transformations import apply_transform, get_transformed_point, identity_matrix

logger = logging.getLogger(__name__)

# --- XML Helpers ---

def format_point(point: Sequence[float]) -> str:
    """'x,y,z' (or 'x,y') using repr precision so values survive a round trip."""
    return ",".join(repr(float(v)) for v in point)

def parse_point(text: Optional[str]) -> Tuple[float, ...]:
    if not text:
        raise ValueError("Missing point text")
    return tuple(float(v) for v in text.split(","))

def _add_tag(element: ET.Element, entity: ModelEntity) -> None:
    tag_data = {"user_id": entity.user_identifier, "internal_id": str(entity.internal_id)}
    ET.SubElement(element, "Tag").text = json.dumps(tag_data, separators=(',', ':')) # Compact JSON


# --- Levels, Definitions and Instances ---

@dataclass(eq=False)
class Level(ModelEntity):
    """A named horizontal datum."""
    elevation: float = 0.0

    def to_xml_element(self) -> ET.Element:
        element = ET.Element("level", {"elevation": repr(float(self.elevation))})
        _add_tag(element, self)
        return element


@dataclass(eq=False)
class AssemblyDefinition(ModelEntity):
    """A reusable pattern of members. The user identifier doubles as its display name."""
    description: str = ""

    @property
    def name(self) -> str:
        return self.user_identifier

    def to_xml_element(self) -> ET.Element:
        element = ET.Element("definition", {"description": self.description})
        _add_tag(element, self)
        return element


@dataclass(eq=False)
class AssemblyInstance(ModelEntity):
    """
    One placement of an AssemblyDefinition.
    Holds only its anchor; the definition link and ordered member list are
    registered on the document.
    """
    anchor: Point3 = (0.0, 0.0, 0.0)

    def __post_init__(self):
        super().__post_init__()
        self.anchor = as_point3(self.anchor)

    def to_xml_element(self, definition_name: str, member_names: Sequence[str]) -> ET.Element:
        element = ET.Element("instance", {"definition": definition_name, "anchor": format_point(self.anchor)})
        _add_tag(element, self)
        for name in member_names:
            ET.SubElement(element, "member", {"ref": name})
        return element


# --- Members ---

@dataclass(eq=False)
class Member(ModelEntity, ABC):
    """
    Abstract Base Class for model members.
    Holds intrinsic geometry plus the classification attributes used to build
    signatures (category, type, comment).
    """
    category_id: int = 0
    type_id: Optional[int] = None       # None marks an invalid/unset type
    comment: str = ""
    level_id: Optional[uuid.UUID] = None

    @abstractmethod
    def get_bounding_box(self) -> BoundingBox:
        """Axis-aligned bounding box in world coordinates."""
        pass

    @abstractmethod
    def test_points(self) -> List[Point3]:
        """Characteristic points used for duplicate tests."""
        pass

    @abstractmethod
    def bake_geometry(self, transform_to_bake: np.ndarray) -> None:
        """
        Applies a transformation matrix directly to the member's geometry.
        Identity matrices leave the member untouched.
        """
        pass

    @abstractmethod
    def to_xml_element(self, level_name: Optional[str]) -> ET.Element:
        pass

    def _add_common_xml_attributes(self, element: ET.Element, level_name: Optional[str]) -> None:
        """Adds classification attributes and the identity Tag to a member's element."""
        element.set("category", str(self.category_id))
        if self.type_id is not None:
            element.set("type", str(self.type_id))
        if level_name:
            element.set("level", level_name)
        if self.comment:
            element.set("comment", self.comment)
        _add_tag(element, self)


@dataclass(eq=False)
class PointMember(Member):
    """A member located by a single point (fixtures, equipment, tags...)."""
    location: Point3 = (0.0, 0.0, 0.0)

    def __post_init__(self):
        super().__post_init__()
        self.location = as_point3(self.location)

    def get_bounding_box(self) -> BoundingBox:
        return BoundingBox.from_points([self.location])

    def test_points(self) -> List[Point3]:
        return [self.location]

    def bake_geometry(self, transform_to_bake: np.ndarray) -> None:
        if np.allclose(transform_to_bake, identity_matrix()):
            return
        self.location = get_transformed_point(self.location, transform_to_bake)

    def to_xml_element(self, level_name: Optional[str]) -> ET.Element:
        element = ET.Element("point")
        ET.SubElement(element, "p").text = format_point(self.location)
        self._add_common_xml_attributes(element, level_name)
        return element


@dataclass(eq=False)
class CurveMember(Member):
    """A member located by a straight curve between two endpoints."""
    start: Point3 = (0.0, 0.0, 0.0)
    end: Point3 = (0.0, 0.0, 0.0)

    def __post_init__(self):
        super().__post_init__()
        self.start = as_point3(self.start)
        self.end = as_point3(self.end)

    @property
    def length(self) -> float:
        return math.dist(self.start, self.end)

    def endpoints(self) -> Tuple[Point3, Point3]:
        return self.start, self.end

    def get_bounding_box(self) -> BoundingBox:
        return BoundingBox.from_points([self.start, self.end])

    def test_points(self) -> List[Point3]:
        return [self.start, self.end]

    def containment_points(self) -> List[Point3]:
        """Endpoints plus midpoint."""
        return [self.start, self.end, midpoint(self.start, self.end)]

    def bake_geometry(self, transform_to_bake: np.ndarray) -> None:
        if np.allclose(transform_to_bake, identity_matrix()):
            return
        # Endpoint order is preserved so a mirrored copy keeps start/end identity
        self.start, self.end = apply_transform([self.start, self.end], transform_to_bake)

    def _xml_tag(self) -> str:
        return "curve"

    def to_xml_element(self, level_name: Optional[str]) -> ET.Element:
        element = ET.Element(self._xml_tag())
        ET.SubElement(element, "start").text = format_point(self.start)
        ET.SubElement(element, "end").text = format_point(self.end)
        self._add_common_xml_attributes(element, level_name)
        return element


@dataclass(eq=False)
class Wall(CurveMember):
    """A wall-like curve member with an unconnected height above its curve."""
    height: Optional[float] = None

    def get_bounding_box(self) -> BoundingBox:
        box = super().get_bounding_box()
        if self.height and self.height > 0:
            return box.union(BoundingBox.from_points([
                (self.start[0], self.start[1], self.start[2] + self.height),
                (self.end[0], self.end[1], self.end[2] + self.height),
            ]))
        return box

    def _xml_tag(self) -> str:
        return "wall"

    def to_xml_element(self, level_name: Optional[str]) -> ET.Element:
        element = super().to_xml_element(level_name)
        if self.height is not None:
            element.set("height", repr(float(self.height)))
        return element


@dataclass(eq=False)
class BoxMember(Member):
    """A member known only by its bounding box (no usable point or curve locus)."""
    min_corner: Point3 = (0.0, 0.0, 0.0)
    max_corner: Point3 = (0.0, 0.0, 0.0)

    def __post_init__(self):
        super().__post_init__()
        self.min_corner = as_point3(self.min_corner)
        self.max_corner = as_point3(self.max_corner)

    def get_bounding_box(self) -> BoundingBox:
        return BoundingBox.from_points([self.min_corner, self.max_corner])

    def test_points(self) -> List[Point3]:
        return [self.get_bounding_box().center]

    def bake_geometry(self, transform_to_bake: np.ndarray) -> None:
        if np.allclose(transform_to_bake, identity_matrix()):
            return
        # The transformed box is re-fitted axis-aligned around all eight corners
        corners = apply_transform(self.get_bounding_box().corners(), transform_to_bake)
        box = BoundingBox.from_points(corners)
        self.min_corner, self.max_corner = box.min_point, box.max_point

    def to_xml_element(self, level_name: Optional[str]) -> ET.Element:
        element = ET.Element("box")
        ET.SubElement(element, "min").text = format_point(self.min_corner)
        ET.SubElement(element, "max").text = format_point(self.max_corner)
        self._add_common_xml_attributes(element, level_name)
        return element


@dataclass(eq=False)
class Region(Member):
    """
    A spatial region (room) bounded by a closed XY polygon, extruded from its
    base elevation by its height. An unbounded region (not enclosed) keeps its
    outline and area but reports zero volume.
    """
    boundary: List[Tuple[float, float]] = field(default_factory=list)
    elevation: float = 0.0
    height: float = 10.0
    bounded: bool = True

    def __post_init__(self):
        super().__post_init__()
        self.boundary = [(float(p[0]), float(p[1])) for p in self.boundary]

    @property
    def area(self) -> float:
        if len(self.boundary) < 3:
            return 0.0
        # Shoelace formula
        total = 0.0
        for (x1, y1), (x2, y2) in zip(self.boundary, self.boundary[1:] + self.boundary[:1]):
            total += x1 * y2 - x2 * y1
        return abs(total) / 2.0

    @property
    def volume(self) -> float:
        return self.area * self.height if self.bounded else 0.0

    def get_bounding_box(self) -> BoundingBox:
        if not self.boundary:
            return BoundingBox()
        pts = [(x, y, self.elevation) for x, y in self.boundary]
        pts += [(x, y, self.elevation + self.height) for x, y in self.boundary]
        return BoundingBox.from_points(pts)

    def test_points(self) -> List[Point3]:
        box = self.get_bounding_box()
        return [box.center] if box.is_valid() else []

    def contains_xy(self, x: float, y: float) -> bool:
        """Even-odd ray casting against the boundary polygon; edges count as inside."""
        pts = self.boundary
        if len(pts) < 3:
            return False
        inside = False
        for (x1, y1), (x2, y2) in zip(pts, pts[1:] + pts[:1]):
            if _on_segment(x, y, x1, y1, x2, y2):
                return True
            if (y1 > y) != (y2 > y):
                x_cross = x1 + (y - y1) * (x2 - x1) / (y2 - y1)
                if x < x_cross:
                    inside = not inside
        return inside

    def bake_geometry(self, transform_to_bake: np.ndarray) -> None:
        if np.allclose(transform_to_bake, identity_matrix()):
            return
        moved = apply_transform([(x, y, self.elevation) for x, y in self.boundary], transform_to_bake)
        self.boundary = [(p[0], p[1]) for p in moved]
        if moved:
            self.elevation = moved[0][2]

    def to_xml_element(self, level_name: Optional[str]) -> ET.Element:
        element = ET.Element("region", {
            "elevation": repr(float(self.elevation)),
            "height": repr(float(self.height)),
            "bounded": str(self.bounded).lower(),
        })
        pts_elem = ET.SubElement(element, "pts")
        for point in self.boundary:
            ET.SubElement(pts_elem, "p").text = format_point(point)
        self._add_common_xml_attributes(element, level_name)
        return element


def _on_segment(px: float, py: float, x1: float, y1: float, x2: float, y2: float, eps: float = 1e-9) -> bool:
    cross = (x2 - x1) * (py - y1) - (y2 - y1) * (px - x1)
    if abs(cross) > eps * max(1.0, math.hypot(x2 - x1, y2 - y1)):
        return False
    return min(x1, x2) - eps <= px <= max(x1, x2) + eps and min(y1, y2) - eps <= py <= max(y1, y2) + eps


def member_points(member: Member) -> Tuple[Point3, Point3]:
    """
    The two reference points of a member: curve endpoints, or a point member's
    location repeated. Box-only members fall back to their box corners.
    """
    if isinstance(member, CurveMember):
        return member.start, member.end
    if isinstance(member, PointMember):
        return member.location, member.location
    box = member.get_bounding_box()
    return box.min_point, box.max_point
