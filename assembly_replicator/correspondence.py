"""
correspondence.py

Picks the members of a reference instance that anchor transform solving, and finds
their counterparts in another instance of the same definition by signature.

Selection prefers walls, then other curve members, then point members: longer,
more distinctive geometry gives a better-conditioned rotation. A later class is
only consulted while fewer than two signature-unique members have been collected.
Box-only members and regions have no usable locus and are never selected.
"""

import uuid
import logging
from dataclasses import dataclass, field
from typing import Dict, List

from .cad_common import Point3, midpoint
from .model_entities import AssemblyInstance, Member, Wall, CurveMember, PointMember, member_points
from .run_context import RunContext

logger = logging.getLogger(__name__)

MIN_REFERENCE_ITEMS = 2


@dataclass(frozen=True)
class CorrespondenceItem:
    member_id: uuid.UUID
    signature: str
    point1: Point3
    point2: Point3

    @property
    def midpoint(self) -> Point3:
        return midpoint(self.point1, self.point2)


@dataclass
class ReferenceSet:
    anchor: Point3
    items: List[CorrespondenceItem] = field(default_factory=list)

    @property
    def is_sufficient(self) -> bool:
        return len(self.items) >= MIN_REFERENCE_ITEMS

    def __len__(self) -> int:
        return len(self.items)


def _item_for(ctx: RunContext, member: Member) -> CorrespondenceItem:
    point1, point2 = member_points(member)
    return CorrespondenceItem(member.internal_id, ctx.signature(member), point1, point2)


def select_reference_members(ctx: RunContext, instance: AssemblyInstance) -> ReferenceSet:
    """
    Collects signature-unique reference items of an instance in priority order.
    Check ReferenceSet.is_sufficient before solving.
    """
    members = ctx.document.get_instance_members(instance)
    tiers = [
        [m for m in members if isinstance(m, Wall)],
        [m for m in members if isinstance(m, CurveMember) and not isinstance(m, Wall)],
        [m for m in members if isinstance(m, PointMember)],
    ]

    unique: Dict[str, CorrespondenceItem] = {}
    for tier in tiers:
        if len(unique) >= MIN_REFERENCE_ITEMS:
            break
        for member in tier:
            key = ctx.signature(member)
            if key not in unique:
                unique[key] = _item_for(ctx, member)

    reference = ReferenceSet(anchor=instance.anchor, items=list(unique.values()))
    logger.debug(f"Instance '{instance.user_identifier}': {len(reference)} reference item(s)")
    return reference


def match_correspondences(ctx: RunContext, reference: ReferenceSet,
                          instance: AssemblyInstance) -> List[CorrespondenceItem]:
    """
    Target items whose signature equals a reference item's, ordered like the
    reference list. The first target member carrying a signature wins.
    """
    wanted = {item.signature for item in reference.items}
    by_signature: Dict[str, CorrespondenceItem] = {}
    for member in ctx.document.get_instance_members(instance):
        key = ctx.signature(member)
        if key in wanted and key not in by_signature:
            by_signature[key] = _item_for(ctx, member)
    return [by_signature[item.signature] for item in reference.items if item.signature in by_signature]
