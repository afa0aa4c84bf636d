"""
containment.py

Decides which payload members lie inside an assembly instance.

Two tests are provided, one per replication variant:

* boundary containment: the payload must lie within the box spanned by the instance's
  boundary points and close to at least one of them;
* region containment: a payload test point must lie in the instance's vertical band
  and inside the XY outline of a region mapped to the instance.
"""

import uuid
import logging
from typing import List, Sequence

import numpy as np

from .cad_common import BoundingBox, Point3
from .model_entities import AssemblyInstance, Member, PointMember, CurveMember, Region
from .run_context import RunContext

logger = logging.getLogger(__name__)

MIN_BOUNDARY_POINTS = 3


def instance_boundary_points(ctx: RunContext, instance: AssemblyInstance) -> List[Point3]:
    """Point locations, curve endpoints plus quarter points, and box corners of the instance's members."""
    points: List[Point3] = []
    for member in ctx.document.get_instance_members(instance):
        if isinstance(member, PointMember):
            points.append(member.location)
        elif isinstance(member, CurveMember):
            start, end = np.asarray(member.start), np.asarray(member.end)
            for t in (0.0, 0.25, 0.5, 0.75, 1.0):
                points.append(tuple(float(v) for v in start + (end - start) * t))
        else:
            box = ctx.bounding_box(member)
            if box.is_valid():
                points += [box.min_point, box.max_point,
                           (box.min_x, box.max_y, box.min_z), (box.max_x, box.min_y, box.min_z)]
    return points


def _nearest_distance(boundary: np.ndarray, point: Sequence[float]) -> float:
    return float(np.min(np.linalg.norm(boundary - np.asarray(point, dtype=float), axis=1)))


def members_in_instance(ctx: RunContext, instance: AssemblyInstance, candidates: Sequence[Member]) -> List[Member]:
    """Candidates contained by the instance boundary, in candidate order. Instance members are never payload."""
    own = set(ctx.document.get_instance_member_ids(instance))
    candidates = [m for m in candidates if m.internal_id not in own]
    points = instance_boundary_points(ctx, instance)

    if len(points) < MIN_BOUNDARY_POINTS:
        box = ctx.bounding_box(instance).expanded(ctx.config.containment_fallback_tolerance)
        logger.debug(f"Instance '{instance.user_identifier}' has too few boundary points; using its bounding box.")
        return [m for m in candidates if any(box.contains_point(p) for p in ctx.containment_points(m))]

    region = BoundingBox.from_points(points).expanded(ctx.config.containment_tolerance)
    boundary = np.asarray(points, dtype=float)
    proximity = ctx.config.containment_proximity

    contained = []
    for member in candidates:
        if isinstance(member, PointMember):
            inside = (region.contains_point(member.location)
                      and _nearest_distance(boundary, member.location) < proximity)
        elif isinstance(member, CurveMember):
            inside = (region.contains_point(member.start) and region.contains_point(member.end)
                      and max(_nearest_distance(boundary, member.start),
                              _nearest_distance(boundary, member.end)) < proximity)
        else:
            box = ctx.bounding_box(member)
            inside = (box.is_valid() and region.contains_box(box)
                      and _nearest_distance(boundary, box.center) < proximity)
        if inside:
            contained.append(member)
    return contained


def members_in_instance_regions(ctx: RunContext, instance: AssemblyInstance, region_ids: Sequence[uuid.UUID],
                                candidates: Sequence[Member]) -> List[Member]:
    """Candidates with a test point inside one of the given regions and within the instance's Z band."""
    box = ctx.bounding_box(instance)
    regions = [ctx.document.get_member(rid) for rid in region_ids]
    regions = [r for r in regions if isinstance(r, Region)]
    if not box.is_valid() or not regions:
        return []
    z_low = box.min_z - ctx.config.instance_z_band
    z_high = box.max_z + ctx.config.instance_z_band

    contained = []
    for member in candidates:
        for x, y, z in ctx.containment_points(member):
            if z_low <= z <= z_high and any(r.contains_xy(x, y) for r in regions):
                contained.append(member)
                break
    return contained
