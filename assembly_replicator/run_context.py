"""
run_context.py

Request-scoped state for one replication run: the document, configuration and
report, plus memoized per-run derivations (signatures, bounding boxes, containment
test points, region data, instance levels and the instance spatial index).
A context is created per invocation and discarded afterwards; nothing is shared
between runs.
"""

import uuid
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .cad_common import BoundingBox, Point3
from .config import ReplicationConfig
from .diagnostics import RunReport
from .model_document import ModelDocument, Identifiable
from .model_entities import Member, CurveMember, PointMember, Region, AssemblyInstance, Level
from .signatures import build_signature
from .spatial_index import SpatialIndex

logger = logging.getLogger(__name__)

# Regions at or below this volume are treated as unbounded
UNBOUND_VOLUME = 0.001


@dataclass(frozen=True)
class RegionData:
    region_id: uuid.UUID
    level_z: float
    height: float
    min_z: float
    max_z: float
    bbox: BoundingBox
    volume: float

    @property
    def is_unbound(self) -> bool:
        return self.volume <= UNBOUND_VOLUME


class RunContext:
    def __init__(self, document: ModelDocument, config: Optional[ReplicationConfig] = None,
                 report: Optional[RunReport] = None):
        self.document = document
        self.config = config or ReplicationConfig()
        self.report = report or RunReport(self.config.max_reported_failures, self.config.max_skipped_details)

        self._signatures: Dict[uuid.UUID, str] = {}
        self._boxes: Dict[uuid.UUID, BoundingBox] = {}
        self._containment_points: Dict[uuid.UUID, List[Point3]] = {}
        self._instance_levels: Dict[uuid.UUID, Optional[Level]] = {}
        self._region_data: Optional[Dict[uuid.UUID, RegionData]] = None
        self._spatial_index: Optional[SpatialIndex] = None

    # --- Members ---

    def signature(self, member: Member) -> str:
        key = self._signatures.get(member.internal_id)
        if key is None:
            key = build_signature(member, self.config.signature_decimals)
            self._signatures[member.internal_id] = key
        return key

    def bounding_box(self, identifier: Identifiable) -> BoundingBox:
        """Cached bounding box of a member or instance."""
        entity = self.document.get_entity(identifier)
        if entity is None:
            return BoundingBox()
        box = self._boxes.get(entity.internal_id)
        if box is None:
            box = self.document.get_bounding_box(entity)
            self._boxes[entity.internal_id] = box
        return box

    def containment_points(self, member: Member) -> List[Point3]:
        """Point location; curve endpoints and midpoint; otherwise the box centre."""
        points = self._containment_points.get(member.internal_id)
        if points is None:
            if isinstance(member, PointMember):
                points = [member.location]
            elif isinstance(member, CurveMember):
                points = member.containment_points()
            else:
                box = self.bounding_box(member)
                points = [box.center] if box.is_valid() else []
            self._containment_points[member.internal_id] = points
        return points

    # --- Instances ---

    def instance_level(self, instance: AssemblyInstance) -> Optional[Level]:
        if instance.internal_id not in self._instance_levels:
            self._instance_levels[instance.internal_id] = self.document.get_instance_level(instance)
        return self._instance_levels[instance.internal_id]

    def spatial_index(self, instances: Optional[Sequence[AssemblyInstance]] = None) -> SpatialIndex:
        """Index over the given instances (all instances by default), built once per run."""
        if self._spatial_index is None:
            index = SpatialIndex(self.config.grid_size)
            for instance in instances if instances is not None else self.document.list_instances():
                index.insert(instance.internal_id, self.bounding_box(instance))
            logger.debug(f"Spatial index built: {len(index)} instance(s) in {index.cell_count} cell(s)")
            self._spatial_index = index
        return self._spatial_index

    # --- Regions ---

    def region_data(self) -> Dict[uuid.UUID, RegionData]:
        """Data for every region with positive area, keyed by region id."""
        if self._region_data is None:
            data: Dict[uuid.UUID, RegionData] = {}
            for region in self.document.list_regions():
                if region.area <= 0:
                    continue
                data[region.internal_id] = self._build_region_data(region)
            self._region_data = data
        return self._region_data

    def _build_region_data(self, region: Region) -> RegionData:
        level = self.document.get_level(region.level_id) if region.level_id else None
        level_z = level.elevation if level else region.elevation
        height = region.height if region.height > 0 else self.config.default_region_height
        min_z = region.elevation
        return RegionData(
            region_id=region.internal_id,
            level_z=level_z,
            height=height,
            min_z=min_z,
            max_z=min_z + height,
            bbox=self.bounding_box(region),
            volume=region.volume,
        )
