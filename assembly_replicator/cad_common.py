"""
cad_common.py

Common types, geometry helpers and exceptions shared across the replication framework.
Provides the 3D axis-aligned BoundingBox used for spatial queries, the base
ModelEntity class and the exception hierarchy raised by the host model and the
replication pipeline.
"""

import uuid
import math
import logging
from dataclasses import dataclass, field
from typing import Tuple, Sequence, List, Iterable

logger = logging.getLogger(__name__)

# --- Types ---

Point3 = Tuple[float, float, float]


def as_point3(values: Sequence[float]) -> Point3:
    """Coerce a 2- or 3-component sequence into an (x, y, z) float tuple."""
    if len(values) == 2:
        return (float(values[0]), float(values[1]), 0.0)
    if len(values) != 3:
        raise ValueError(f"Expected 2 or 3 coordinates, got {len(values)}: {values}")
    return (float(values[0]), float(values[1]), float(values[2]))


def midpoint(a: Point3, b: Point3) -> Point3:
    return ((a[0] + b[0]) / 2.0, (a[1] + b[1]) / 2.0, (a[2] + b[2]) / 2.0)


def distance(a: Point3, b: Point3) -> float:
    return math.sqrt((a[0] - b[0]) ** 2 + (a[1] - b[1]) ** 2 + (a[2] - b[2]) ** 2)


def points_close(a: Point3, b: Point3, tolerance: float) -> bool:
    return distance(a, b) <= tolerance


# --- Helper Classes ---

@dataclass(frozen=True)
class BoundingBox:
    """Represents an axis-aligned 3D bounding box. A default instance is invalid (empty)."""
    min_x: float = float('inf')
    min_y: float = float('inf')
    min_z: float = float('inf')
    max_x: float = float('-inf')
    max_y: float = float('-inf')
    max_z: float = float('-inf')

    @property
    def min_point(self) -> Point3:
        return (self.min_x, self.min_y, self.min_z)

    @property
    def max_point(self) -> Point3:
        return (self.max_x, self.max_y, self.max_z)

    @property
    def center(self) -> Point3:
        if not self.is_valid():
            logger.warning("Calculating center of an invalid BoundingBox.")
            return (0.0, 0.0, 0.0)
        return ((self.min_x + self.max_x) / 2, (self.min_y + self.max_y) / 2, (self.min_z + self.max_z) / 2)

    @property
    def volume(self) -> float:
        if not self.is_valid():
            return 0.0
        return (self.max_x - self.min_x) * (self.max_y - self.min_y) * (self.max_z - self.min_z)

    def is_valid(self) -> bool:
        return self.min_x <= self.max_x and self.min_y <= self.max_y and self.min_z <= self.max_z

    def union(self, other: 'BoundingBox') -> 'BoundingBox':
        if not other.is_valid():
            return self
        if not self.is_valid():
            return other
        return BoundingBox(
            min_x=min(self.min_x, other.min_x),
            min_y=min(self.min_y, other.min_y),
            min_z=min(self.min_z, other.min_z),
            max_x=max(self.max_x, other.max_x),
            max_y=max(self.max_y, other.max_y),
            max_z=max(self.max_z, other.max_z)
        )

    def expanded(self, tolerance: float) -> 'BoundingBox':
        """Returns a copy grown by tolerance on every side."""
        if not self.is_valid():
            return self
        return BoundingBox(
            self.min_x - tolerance, self.min_y - tolerance, self.min_z - tolerance,
            self.max_x + tolerance, self.max_y + tolerance, self.max_z + tolerance
        )

    def intersects(self, other: 'BoundingBox') -> bool:
        """Closed-interval overlap test on all three axes."""
        if not (self.is_valid() and other.is_valid()):
            return False
        return (self.min_x <= other.max_x and self.max_x >= other.min_x and
                self.min_y <= other.max_y and self.max_y >= other.min_y and
                self.min_z <= other.max_z and self.max_z >= other.min_z)

    def contains_point(self, point: Sequence[float]) -> bool:
        if not self.is_valid():
            return False
        x, y, z = point[0], point[1], point[2]
        return (self.min_x <= x <= self.max_x and
                self.min_y <= y <= self.max_y and
                self.min_z <= z <= self.max_z)

    def contains_box(self, other: 'BoundingBox') -> bool:
        return self.contains_point(other.min_point) and self.contains_point(other.max_point)

    def corners(self) -> List[Point3]:
        """The bottom four corners followed by the top four."""
        return [
            (x, y, z)
            for z in (self.min_z, self.max_z)
            for x, y in ((self.min_x, self.min_y), (self.max_x, self.min_y),
                         (self.max_x, self.max_y), (self.min_x, self.max_y))
        ]

    @staticmethod
    def from_points(points: Iterable[Sequence[float]]) -> 'BoundingBox':
        pts = [as_point3(p) for p in points]
        if not pts:
            return BoundingBox() # Invalid box
        return BoundingBox(
            min(p[0] for p in pts), min(p[1] for p in pts), min(p[2] for p in pts),
            max(p[0] for p in pts), max(p[1] for p in pts), max(p[2] for p in pts)
        )

    @staticmethod
    def around_point(point: Sequence[float], half_width: float) -> 'BoundingBox':
        x, y, z = as_point3(point)
        return BoundingBox(x - half_width, y - half_width, z - half_width,
                           x + half_width, y + half_width, z + half_width)


@dataclass
class ModelEntity:
    """Base class for all identifiable objects in a model."""
    internal_id: uuid.UUID = field(default_factory=uuid.uuid4)
    user_identifier: str = "" # User-friendly name/ID, unique within a document

    def __post_init__(self):
        # Provide a default user identifier if none is given
        if not self.user_identifier:
            self.user_identifier = f"{self.__class__.__name__}_{self.internal_id.hex[:6]}"

    def __hash__(self):
        # Entities are uniquely identified by their internal ID
        return hash(self.internal_id)

    def __eq__(self, other):
        if not isinstance(other, ModelEntity):
            return NotImplemented
        return self.internal_id == other.internal_id


# --- Exceptions ---

class ReplicatorError(Exception):
    """Base exception for replication framework errors."""
    pass

class ModelConfigurationError(ReplicatorError):
    """Error related to model setup or entity relationships."""
    pass

class UnderdeterminedTransform(ReplicatorError):
    """Too few matched correspondences to solve a transform for an instance."""
    pass

class NoReferenceElements(ReplicatorError):
    """A reference instance has fewer than two uniquely-signed usable members."""
    pass

class HostOperationFailure(ReplicatorError):
    """A host model operation (bulk copy, attribute write) failed."""
    pass

class TransactionFailure(ReplicatorError):
    """The enclosing model transaction was rolled back."""
    pass

class XmlParsingError(ReplicatorError):
    """Error parsing a model XML file."""
    pass

class XmlWritingError(ReplicatorError):
    """Error writing a model XML file."""
    pass
