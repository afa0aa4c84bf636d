"""
region_mapper.py

Assigns each spatial region to at most one assembly instance.

Pass 1 uses declared membership: a region that is a member of an instance belongs
to it. Pass 2 handles the remaining regions by containment: a region belongs to an
instance whose bounding box, grown by a small tolerance, contains the region's box.
When several instances qualify, the most specific one wins, i.e. the lowest ratio of
instance box volume to region volume.
"""

import uuid
import logging
from typing import Dict, List, Sequence

from .model_entities import AssemblyInstance, Region
from .run_context import RunContext, RegionData

logger = logging.getLogger(__name__)


def specificity_score(ctx: RunContext, instance: AssemblyInstance, region: RegionData) -> float:
    """Lower is more specific. A region without volume divides by 1."""
    instance_volume = ctx.bounding_box(instance).volume
    region_volume = region.volume if region.volume > 0 else 1.0
    return instance_volume / region_volume


def _pick(ctx: RunContext, region: RegionData, candidates: List[AssemblyInstance]) -> AssemblyInstance:
    # min() keeps the first of equal scores, so input order breaks ties
    return min(candidates, key=lambda inst: specificity_score(ctx, inst, region))


def map_regions_to_instances(ctx: RunContext, instances: Sequence[AssemblyInstance]) -> Dict[uuid.UUID, uuid.UUID]:
    """Region id -> instance id for every region that could be placed."""
    regions = ctx.region_data()
    mapping: Dict[uuid.UUID, uuid.UUID] = {}

    # Pass 1: direct membership
    direct: Dict[uuid.UUID, List[AssemblyInstance]] = {}
    for instance in instances:
        for member in ctx.document.get_instance_members(instance):
            if isinstance(member, Region) and member.internal_id in regions:
                direct.setdefault(member.internal_id, []).append(instance)
    for region_id, candidates in direct.items():
        mapping[region_id] = _pick(ctx, regions[region_id], candidates).internal_id

    # Pass 2: spatial containment for regions pass 1 left unresolved
    tolerance = ctx.config.region_containment_tolerance
    expanded = [(inst, ctx.bounding_box(inst).expanded(tolerance)) for inst in instances]
    contained = 0
    for region_id, region in regions.items():
        if region_id in mapping:
            continue
        candidates = [inst for inst, box in expanded if box.contains_box(region.bbox)]
        if candidates:
            mapping[region_id] = _pick(ctx, region, candidates).internal_id
            contained += 1

    logger.info(f"Mapped {len(mapping)} of {len(regions)} region(s): {len(direct)} by membership, {contained} by containment")
    return mapping


def regions_by_instance(mapping: Dict[uuid.UUID, uuid.UUID]) -> Dict[uuid.UUID, List[uuid.UUID]]:
    """Inverts a region mapping, keeping region order."""
    grouped: Dict[uuid.UUID, List[uuid.UUID]] = {}
    for region_id, instance_id in mapping.items():
        grouped.setdefault(instance_id, []).append(region_id)
    return grouped
