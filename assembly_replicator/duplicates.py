"""
duplicates.py

Suppresses copies that would land on an equivalent member already present at the
target, which keeps repeated runs from stacking copies.

A payload is duplicated at a target when, around any of its transformed test points,
the host finds a same-category member of the same type; for curve members the
endpoints must also coincide, in either order. Placements planned earlier in the
same run are tracked as claims so two sources never fill the same spot.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .cad_common import BoundingBox, Point3, points_close
from .cad_transformations import apply_transform
from .model_entities import Member, CurveMember
from .run_context import RunContext

logger = logging.getLogger(__name__)

ClaimKey = Tuple[str, int, Optional[int]]


class DuplicateDetector:
    def __init__(self, ctx: RunContext):
        self.ctx = ctx
        self._claims: Dict[ClaimKey, List[List[Point3]]] = {}

    def transformed_points(self, payload: Member, matrix: np.ndarray) -> List[Point3]:
        return apply_transform(payload.test_points(), matrix)

    def _endpoints_match(self, points: Sequence[Point3], endpoints: Sequence[Point3]) -> bool:
        if len(points) != 2 or len(endpoints) != 2:
            return False
        tol = self.ctx.config.endpoint_tolerance
        p0, p1 = points
        e0, e1 = endpoints
        return ((points_close(p0, e0, tol) and points_close(p1, e1, tol)) or
                (points_close(p0, e1, tol) and points_close(p1, e0, tol)))

    def exists_at_target(self, payload: Member, matrix: np.ndarray) -> bool:
        points = self.transformed_points(payload, matrix)
        if not points:
            return False
        half_width = self.ctx.config.duplicate_search_half_width
        for point in points:
            search_box = BoundingBox.around_point(point, half_width)
            candidates = self.ctx.document.find_members_intersecting(
                search_box, payload.category_id, exclude=[payload.internal_id])
            for candidate in candidates:
                if candidate.type_id != payload.type_id:
                    continue
                if isinstance(payload, CurveMember) and isinstance(candidate, CurveMember):
                    if self._endpoints_match(points, candidate.endpoints()):
                        logger.debug(f"'{payload.user_identifier}' already present at target as '{candidate.user_identifier}'")
                        return True
                    continue
                logger.debug(f"'{payload.user_identifier}' already present at target as '{candidate.user_identifier}'")
                return True
        return False

    # --- In-run claims ---

    def _claim_key(self, payload: Member) -> ClaimKey:
        return (type(payload).__name__, payload.category_id, payload.type_id)

    def _same_placement(self, payload: Member, a: Sequence[Point3], b: Sequence[Point3]) -> bool:
        if isinstance(payload, CurveMember):
            return self._endpoints_match(a, b)
        tol = self.ctx.config.endpoint_tolerance
        return len(a) == len(b) and all(points_close(p, q, tol) for p, q in zip(a, b))

    def claim(self, payload: Member, matrix: np.ndarray) -> bool:
        """Registers a planned placement. False when an equivalent placement is already claimed."""
        points = self.transformed_points(payload, matrix)
        claimed = self._claims.setdefault(self._claim_key(payload), [])
        if any(self._same_placement(payload, points, other) for other in claimed):
            return False
        claimed.append(points)
        return True
