"""
spatial_index.py

Uniform XY grid over instance bounding boxes. Each instance is registered in every
cell its box overlaps; a query returns every instance registered in any cell the
query box overlaps. Results are a superset of the true overlaps, so callers re-check
boxes exactly.
"""

import math
import uuid
import logging
from typing import Dict, List, Tuple, Iterator

from .cad_common import BoundingBox

logger = logging.getLogger(__name__)

Cell = Tuple[int, int]


class SpatialIndex:
    def __init__(self, grid_size: float = 50.0):
        if grid_size <= 0:
            raise ValueError(f"grid_size must be positive, got {grid_size}")
        self.grid_size = float(grid_size)
        self._cells: Dict[Cell, List[uuid.UUID]] = {}
        self._boxes: Dict[uuid.UUID, BoundingBox] = {}

    def __len__(self) -> int:
        return len(self._boxes)

    def __contains__(self, item_id: uuid.UUID) -> bool:
        return item_id in self._boxes

    def cells_for(self, box: BoundingBox) -> Iterator[Cell]:
        """Every (gx, gy) cell overlapped by box. Invalid boxes overlap nothing."""
        if not box.is_valid():
            return
        gx0 = math.floor(box.min_x / self.grid_size)
        gx1 = math.floor(box.max_x / self.grid_size)
        gy0 = math.floor(box.min_y / self.grid_size)
        gy1 = math.floor(box.max_y / self.grid_size)
        for gx in range(gx0, gx1 + 1):
            for gy in range(gy0, gy1 + 1):
                yield (gx, gy)

    def insert(self, item_id: uuid.UUID, box: BoundingBox) -> None:
        if item_id in self._boxes:
            logger.debug(f"Item {item_id} already indexed; skipping.")
            return
        if not box.is_valid():
            logger.debug(f"Item {item_id} has no valid bounding box; not indexed.")
            return
        self._boxes[item_id] = box
        for cell in self.cells_for(box):
            self._cells.setdefault(cell, []).append(item_id)

    def query(self, box: BoundingBox) -> List[uuid.UUID]:
        """Candidate ids in first-seen order; no duplicates."""
        seen = set()
        result: List[uuid.UUID] = []
        for cell in self.cells_for(box):
            for item_id in self._cells.get(cell, ()):
                if item_id not in seen:
                    seen.add(item_id)
                    result.append(item_id)
        return result

    def query_intersecting(self, box: BoundingBox) -> List[uuid.UUID]:
        """Query followed by the exact bounding-box re-check."""
        return [item_id for item_id in self.query(box) if self._boxes[item_id].intersects(box)]

    @property
    def cell_count(self) -> int:
        return len(self._cells)
