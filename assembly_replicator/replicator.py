"""
replicator.py

Runs a replication pass end to end inside a single document transaction.

Two variants decide where payload members come from:

* replicate_along_instances: the caller names the reference instances; payload
  members inside each one are copied to every other instance of its definition.
* replicate_by_regions: every instance whose mapped regions contain a payload acts
  as a source; candidate instances are narrowed with the spatial index and by
  elevation before the region test.

Both return a ReplicationResult carrying the result code, the number of members
created and the run report.
"""

import uuid
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .batch_replicator import BatchOutcome, BatchReplicator, PendingCopy
from .cad_common import BoundingBox, NoReferenceElements, TransactionFailure, UnderdeterminedTransform
from .config import ReplicationConfig
from .containment import members_in_instance, members_in_instance_regions
from .correspondence import ReferenceSet, match_correspondences, select_reference_members
from .diagnostics import (
    DEFINITIONS_PROCESSED, DUPLICATES_SUPPRESSED, INSTANCES_PROCESSED, PAYLOADS_CONSIDERED,
    PAYLOADS_MAPPED, RunReport
)
from .duplicates import DuplicateDetector
from .model_document import Identifiable, ModelDocument
from .model_entities import AssemblyDefinition, AssemblyInstance, Member
from .region_mapper import map_regions_to_instances, regions_by_instance
from .run_context import RunContext
from .transform_compositor import compose_transform, composition_method
from .transform_solver import solve_transform

logger = logging.getLogger(__name__)

# Skip reasons
NO_REFERENCE_ELEMENTS = "NoReferenceElements"
UNDERDETERMINED_TRANSFORM = "UnderdeterminedTransform"
SINGLE_INSTANCE_DEFINITION = "SingleInstanceDefinition"
ELEVATION_MISMATCH = "ElevationMismatch"
NO_DEFINITION = "NoDefinition"


class ResultCode(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ReplicationResult:
    code: ResultCode
    total_copied: int
    report: RunReport

    @property
    def succeeded(self) -> bool:
        return self.code is ResultCode.SUCCEEDED

    def summary(self) -> str:
        if self.code is ResultCode.SUCCEEDED:
            return self.report.summary()
        return f"Replication {self.code.value}; all changes were rolled back."


class Replicator:
    """Entry point for replication runs against a ModelDocument."""

    def __init__(self, document: ModelDocument, config: Optional[ReplicationConfig] = None):
        self.document = document
        self.config = config or ReplicationConfig()

    # --- Public API ---

    def replicate_along_instances(self, instance_ids: Sequence[Identifiable],
                                  payload_ids: Sequence[Identifiable]) -> ReplicationResult:
        """Copies the payload found inside each named instance to the other instances of its definition."""
        return self._run("Replicate along instances",
                         lambda ctx: self._along_instances(ctx, instance_ids, payload_ids))

    def replicate_by_regions(self, payload_ids: Sequence[Identifiable]) -> ReplicationResult:
        """Copies each payload from the instances whose regions contain it to the other instances of their definitions."""
        return self._run("Replicate by regions",
                         lambda ctx: self._by_regions(ctx, payload_ids))

    # --- Run wrapper ---

    def _run(self, name: str, body: Callable[[RunContext], BatchOutcome]) -> ReplicationResult:
        ctx = RunContext(self.document, self.config)
        logger.info(f"Starting '{name}'")
        code = ResultCode.SUCCEEDED
        total = 0
        try:
            with self.document.transaction(name):
                outcome = body(ctx)
            total = outcome.total_copied
        except TransactionFailure as e:
            code = ResultCode.FAILED
            ctx.report.fail(str(e))
        except KeyboardInterrupt:
            code = ResultCode.CANCELLED
            ctx.report.warn(f"'{name}' cancelled; changes rolled back")
        ctx.report.finish()
        result = ReplicationResult(code, total, ctx.report)
        logger.info(f"'{name}' {code.value}: {result.summary()}")
        return result

    # --- Shared steps ---

    def _resolve_payloads(self, ctx: RunContext, payload_ids: Sequence[Identifiable]) -> List[Member]:
        payloads: List[Member] = []
        seen = set()
        for identifier in payload_ids:
            member = self.document.get_member(identifier)
            if member is None:
                ctx.report.warn(f"Payload '{identifier}' is not a member of the model; ignored.")
                continue
            if member.internal_id not in seen:
                seen.add(member.internal_id)
                payloads.append(member)
        ctx.report.increment(PAYLOADS_CONSIDERED, len(payloads))
        return payloads

    def _solve_for_target(self, ctx: RunContext, reference: ReferenceSet,
                          target: AssemblyInstance) -> np.ndarray:
        matches = match_correspondences(ctx, reference, target)
        result = solve_transform(reference, matches, target.anchor, ctx.config)
        if result is None:
            raise UnderdeterminedTransform(f"{len(matches)} usable match(es) in '{target.user_identifier}'")
        if result.low_confidence:
            ctx.report.warn(f"Low-confidence transform for '{target.user_identifier}': {result.describe()}")
        matrix = compose_transform(result, reference.anchor, target.anchor, ctx.config)
        if ctx.config.verbose:
            ctx.report.add_transform_line(
                f"{target.user_identifier}: {result.describe()} [{composition_method(result, ctx.config)}]")
        return matrix

    def _plan_copies(self, ctx: RunContext, detector: DuplicateDetector, source: AssemblyInstance,
                     definition: AssemblyDefinition, payloads: Sequence[Member],
                     comment_for: Callable[[Member], str]) -> List[PendingCopy]:
        """Pending copies of payloads from source to every other instance of definition."""
        report = ctx.report
        with report.timed("reference selection"):
            reference = select_reference_members(ctx, source)
        if not reference.is_sufficient:
            raise NoReferenceElements(
                f"'{source.user_identifier}' has {len(reference)} uniquely-signed reference member(s)")

        pending: List[PendingCopy] = []
        for target in self.document.get_instances_of_definition(definition):
            if target.internal_id == source.internal_id:
                continue
            if abs(target.anchor[2] - source.anchor[2]) > ctx.config.max_anchor_elevation_delta:
                report.skip(ELEVATION_MISMATCH, instance=target.user_identifier, definition=definition.name)
                continue
            report.increment(INSTANCES_PROCESSED)
            try:
                with report.timed("transform solving"):
                    matrix = self._solve_for_target(ctx, reference, target)
            except UnderdeterminedTransform as e:
                report.skip(UNDERDETERMINED_TRANSFORM, instance=target.user_identifier, definition=definition.name)
                logger.debug(f"Skipping '{target.user_identifier}': {e}")
                continue

            level = ctx.instance_level(target)
            with report.timed("duplicate detection"):
                for payload in payloads:
                    if not ctx.config.allow_duplicates:
                        if detector.exists_at_target(payload, matrix) or not detector.claim(payload, matrix):
                            report.increment(DUPLICATES_SUPPRESSED)
                            continue
                    pending.append(PendingCopy(
                        payload_id=payload.internal_id,
                        matrix=matrix,
                        target_instance_id=target.internal_id,
                        source_instance_id=source.internal_id,
                        comment=comment_for(payload),
                        level_id=level.internal_id if level else None,
                    ))
        return pending

    def _execute(self, ctx: RunContext, pending: List[PendingCopy]) -> BatchOutcome:
        with ctx.report.timed("copying"):
            return BatchReplicator(ctx).execute(pending)

    # --- Variant: named reference instances ---

    def _along_instances(self, ctx: RunContext, instance_ids: Sequence[Identifiable],
                         payload_ids: Sequence[Identifiable]) -> BatchOutcome:
        report = ctx.report
        payloads = self._resolve_payloads(ctx, payload_ids)
        detector = DuplicateDetector(ctx)

        sources: List[Tuple[AssemblyInstance, List[Member]]] = []
        mapped = set()
        with report.timed("containment"):
            for identifier in instance_ids:
                instance = self.document.get_instance(identifier)
                if instance is None:
                    report.warn(f"Instance '{identifier}' not found; ignored.")
                    continue
                contained = members_in_instance(ctx, instance, payloads)
                if not contained:
                    report.warn(f"No payload members found inside '{instance.user_identifier}'.")
                    continue
                sources.append((instance, contained))
                mapped.update(m.internal_id for m in contained)
        report.increment(PAYLOADS_MAPPED, len(mapped))

        pending: List[PendingCopy] = []
        for source, contained in sources:
            definition = self.document.get_definition_of_instance(source)
            if definition is None:
                report.skip(NO_DEFINITION, definition=source.user_identifier)
                continue
            report.increment(DEFINITIONS_PROCESSED)
            for member in contained:
                self.document.set_comment(member, definition.name)
            try:
                pending += self._plan_copies(ctx, detector, source, definition, contained,
                                             lambda _member, name=definition.name: name)
            except NoReferenceElements as e:
                report.skip(NO_REFERENCE_ELEMENTS, definition=definition.name)
                report.warn(f"Definition '{definition.name}' skipped: {e}")
        return self._execute(ctx, pending)

    # --- Variant: region containment ---

    def _by_regions(self, ctx: RunContext, payload_ids: Sequence[Identifiable]) -> BatchOutcome:
        report = ctx.report
        config = ctx.config
        payloads = self._resolve_payloads(ctx, payload_ids)
        detector = DuplicateDetector(ctx)

        overall = BoundingBox()
        for payload in payloads:
            overall = overall.union(ctx.bounding_box(payload))
        if not overall.is_valid():
            report.warn("Payload members have no usable geometry; nothing to replicate.")
            return BatchOutcome()

        with report.timed("spatial indexing"):
            index = ctx.spatial_index(self.document.list_instances())
            nearby = [self.document.get_instance(i) for i in index.query_intersecting(overall)]

        with report.timed("region mapping"):
            regions = regions_by_instance(map_regions_to_instances(ctx, nearby))

        # Instances whose vertical extent is nowhere near the payload cannot contain it
        z_low = overall.min_z - config.elevation_filter_tolerance
        z_high = overall.max_z + config.elevation_filter_tolerance
        nearby = [inst for inst in nearby
                  if ctx.bounding_box(inst).max_z >= z_low and ctx.bounding_box(inst).min_z <= z_high]

        containing: List[Tuple[AssemblyInstance, List[Member]]] = []
        containers: Dict[uuid.UUID, List[AssemblyInstance]] = {}
        with report.timed("containment"):
            for instance in nearby:
                contained = members_in_instance_regions(
                    ctx, instance, regions.get(instance.internal_id, []), payloads)
                if not contained:
                    continue
                containing.append((instance, contained))
                for member in contained:
                    containers.setdefault(member.internal_id, []).append(instance)
        report.increment(PAYLOADS_MAPPED, len(containers))
        if not containing:
            report.warn("No payload member lies inside a region of any assembly instance.")
            return BatchOutcome()

        def comment_for(member: Member) -> str:
            instances = containers.get(member.internal_id, [])
            names = list(dict.fromkeys(
                d.name for d in (self.document.get_definition_of_instance(i) for i in instances) if d))
            parts = [", ".join(names)] if names else []
            if instances:
                parts.append(f"source id: {instances[0].user_identifier}")
            return ", ".join(parts)

        for member_id in containers:
            self.document.set_comment(member_id, comment_for(self.document.get_member(member_id)))

        by_definition: Dict[uuid.UUID, List[Tuple[AssemblyInstance, List[Member]]]] = {}
        for instance, contained in containing:
            definition = self.document.get_definition_of_instance(instance)
            if definition is None:
                report.skip(NO_DEFINITION, definition=instance.user_identifier)
                continue
            by_definition.setdefault(definition.internal_id, []).append((instance, contained))

        pending: List[PendingCopy] = []
        for definition_id, sources in by_definition.items():
            definition = self.document.get_definition(definition_id)
            if len(self.document.get_instances_of_definition(definition)) < 2:
                report.skip(SINGLE_INSTANCE_DEFINITION, definition=definition.name)
                continue
            report.increment(DEFINITIONS_PROCESSED)
            for source, contained in sources:
                try:
                    pending += self._plan_copies(ctx, detector, source, definition, contained, comment_for)
                except NoReferenceElements as e:
                    report.skip(NO_REFERENCE_ELEMENTS, definition=definition.name)
                    report.warn(f"Source '{source.user_identifier}' of '{definition.name}' skipped: {e}")
        return self._execute(ctx, pending)
