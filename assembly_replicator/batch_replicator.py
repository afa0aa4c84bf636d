"""
batch_replicator.py

Executes pending copies. Copies sharing a transform (same fixed-precision matrix key)
are submitted to the host together and the new members are matched back to their
sources by position, then receive their comment and target level.

Host failures are contained to the transform group (or, with the per-member strategy,
to the single member) that raised them and are recorded on the run report.
"""

import uuid
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .cad_common import HostOperationFailure
from .cad_transformations import matrix_key
from .config import CopyStrategy
from .diagnostics import COPY_OPERATIONS, MEMBERS_COPIED
from .run_context import RunContext

logger = logging.getLogger(__name__)


@dataclass
class PendingCopy:
    payload_id: uuid.UUID
    matrix: np.ndarray
    target_instance_id: uuid.UUID
    source_instance_id: uuid.UUID
    comment: Optional[str] = None
    level_id: Optional[uuid.UUID] = None


@dataclass
class CopyGroup:
    key: str
    matrix: np.ndarray
    items: List[PendingCopy] = field(default_factory=list)

    def payload_ids(self) -> List[uuid.UUID]:
        """Distinct payload ids in first-seen order."""
        return list(dict.fromkeys(item.payload_id for item in self.items))


@dataclass
class BatchOutcome:
    copies: List[Tuple[PendingCopy, uuid.UUID]] = field(default_factory=list)
    groups: int = 0
    failed_groups: int = 0
    failed_members: int = 0

    @property
    def total_copied(self) -> int:
        return len({new_id for _, new_id in self.copies})


class BatchReplicator:
    def __init__(self, ctx: RunContext):
        self.ctx = ctx

    def group(self, pending: Sequence[PendingCopy]) -> List[CopyGroup]:
        groups: Dict[str, CopyGroup] = {}
        for item in pending:
            key = matrix_key(item.matrix, self.ctx.config.matrix_key_decimals)
            if key not in groups:
                groups[key] = CopyGroup(key, item.matrix)
            groups[key].items.append(item)
        return list(groups.values())

    def _copy_group(self, group: CopyGroup, payload_ids: List[uuid.UUID],
                    outcome: BatchOutcome) -> List[Optional[uuid.UUID]]:
        document = self.ctx.document
        report = self.ctx.report

        if self.ctx.config.copy_strategy is CopyStrategy.BATCHED:
            new_ids = document.copy_members(payload_ids, group.matrix)
            report.increment(COPY_OPERATIONS)
            if len(new_ids) != len(payload_ids):
                report.warn(f"Host returned {len(new_ids)} id(s) for {len(payload_ids)} copied member(s); "
                            f"only the first {min(len(new_ids), len(payload_ids))} are correlated.")
            return list(new_ids[:len(payload_ids)])

        new_ids: List[Optional[uuid.UUID]] = []
        for payload_id in payload_ids:
            try:
                copied = document.copy_members([payload_id], group.matrix)
                report.increment(COPY_OPERATIONS)
                new_ids.append(copied[0] if copied else None)
            except HostOperationFailure as e:
                outcome.failed_members += 1
                report.fail(f"Copy of member {payload_id} failed: {e}")
                new_ids.append(None)
        return new_ids

    def _apply_metadata(self, item: PendingCopy, new_id: uuid.UUID) -> None:
        document = self.ctx.document
        try:
            if item.comment is not None:
                document.set_comment(new_id, item.comment)
            if item.level_id is not None:
                document.set_level(new_id, item.level_id)
        except HostOperationFailure as e:
            self.ctx.report.fail(f"Could not update copied member {new_id}: {e}")

    def execute(self, pending: Sequence[PendingCopy]) -> BatchOutcome:
        outcome = BatchOutcome()
        report = self.ctx.report
        for group in self.group(pending):
            outcome.groups += 1
            payload_ids = group.payload_ids()
            try:
                new_ids = self._copy_group(group, payload_ids, outcome)
            except HostOperationFailure as e:
                outcome.failed_groups += 1
                report.fail(f"Copy of {len(payload_ids)} member(s) failed for transform {group.key}: {e}")
                continue

            by_payload = {pid: nid for pid, nid in zip(payload_ids, new_ids) if nid is not None}
            for item in group.items:
                new_id = by_payload.get(item.payload_id)
                if new_id is None:
                    continue
                self._apply_metadata(item, new_id)
                outcome.copies.append((item, new_id))
                report.record_target(item.target_instance_id)
            report.increment(MEMBERS_COPIED, len(by_payload))

        logger.info(f"Executed {len(pending)} pending copy(ies) in {outcome.groups} transform group(s); "
                    f"{outcome.total_copied} member(s) created, {outcome.failed_groups} group(s) failed")
        return outcome
