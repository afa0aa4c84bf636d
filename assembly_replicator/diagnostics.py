"""
diagnostics.py

Accumulates what happened during a replication run: counters, skip reasons, a
bounded sample of skipped instances and failures, phase timings and optional
per-instance transform lines. Renders a plain-text report and a one-line summary.
"""

import time
import logging
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, List, Optional, Iterator

logger = logging.getLogger(__name__)

# Counter names
DEFINITIONS_PROCESSED = "definitions_processed"
DEFINITIONS_SKIPPED = "definitions_skipped"
INSTANCES_PROCESSED = "instances_processed"
INSTANCES_SKIPPED = "instances_skipped"
DUPLICATES_SUPPRESSED = "duplicates_suppressed"
COPY_OPERATIONS = "copy_operations"
MEMBERS_COPIED = "members_copied"
PAYLOADS_CONSIDERED = "payloads_considered"
PAYLOADS_MAPPED = "payloads_mapped"
TARGET_INSTANCES = "target_instances"

_COUNTER_LABELS = [
    (PAYLOADS_CONSIDERED, "Payload members considered"),
    (PAYLOADS_MAPPED, "Payload members inside instances"),
    (DEFINITIONS_PROCESSED, "Definitions processed"),
    (DEFINITIONS_SKIPPED, "Definitions skipped"),
    (INSTANCES_PROCESSED, "Target instances processed"),
    (INSTANCES_SKIPPED, "Target instances skipped"),
    (DUPLICATES_SUPPRESSED, "Duplicates suppressed"),
    (COPY_OPERATIONS, "Copy operations"),
    (MEMBERS_COPIED, "Members copied"),
]


@dataclass(frozen=True)
class SkippedInstance:
    instance: str
    definition: str
    reason: str


class RunReport:
    def __init__(self, max_failures: int = 5, max_skipped_details: int = 10):
        self.max_failures = max_failures
        self.max_skipped_details = max_skipped_details
        self.counters: Counter = Counter()
        self.skip_reasons: Counter = Counter()
        self.skipped: List[SkippedInstance] = []
        self.failures: List[str] = []
        self.failure_count: int = 0
        self.warnings: List[str] = []
        self.timings: Dict[str, float] = {}
        self.transform_lines: List[str] = []
        self._target_instances: set = set()
        self._started = time.perf_counter()
        self.total_seconds: Optional[float] = None

    # --- Recording ---

    def increment(self, counter: str, amount: int = 1) -> None:
        self.counters[counter] += amount

    def count(self, counter: str) -> int:
        return self.counters[counter]

    def skip(self, reason: str, instance: str = "", definition: str = "") -> None:
        """Records a skipped instance (or definition, when instance is empty)."""
        self.skip_reasons[reason] += 1
        if instance:
            self.increment(INSTANCES_SKIPPED)
            if len(self.skipped) < self.max_skipped_details:
                self.skipped.append(SkippedInstance(instance, definition, reason))
        else:
            self.increment(DEFINITIONS_SKIPPED)
        logger.debug(f"Skipped {instance or definition}: {reason}")

    def fail(self, message: str) -> None:
        self.failure_count += 1
        if len(self.failures) < self.max_failures:
            self.failures.append(message)
        logger.error(message)

    def warn(self, message: str) -> None:
        self.warnings.append(message)
        logger.warning(message)

    def record_target(self, instance_id) -> None:
        """Marks an instance as having received at least one copy."""
        if instance_id not in self._target_instances:
            self._target_instances.add(instance_id)
            self.increment(TARGET_INSTANCES)

    def add_transform_line(self, line: str) -> None:
        self.transform_lines.append(line)

    @contextmanager
    def timed(self, phase: str) -> Iterator[None]:
        """Adds the wall time spent in the block to the phase's total."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.timings[phase] = self.timings.get(phase, 0.0) + (time.perf_counter() - start)

    def finish(self) -> None:
        self.total_seconds = time.perf_counter() - self._started

    # --- Rendering ---

    def summary(self) -> str:
        copied = self.count(MEMBERS_COPIED)
        parts = []
        if copied:
            parts.append(f"Copied {copied} member(s) into {self.count(TARGET_INSTANCES)} instance(s)")
        else:
            parts.append("No members were copied")
        if self.count(DUPLICATES_SUPPRESSED):
            parts.append(f"{self.count(DUPLICATES_SUPPRESSED)} duplicate(s) suppressed")
        skipped = self.count(INSTANCES_SKIPPED) + self.count(DEFINITIONS_SKIPPED)
        if skipped:
            parts.append(f"{skipped} skip(s)")
        if self.failure_count:
            parts.append(f"{self.failure_count} failure(s)")
        return "; ".join(parts) + "."

    def render(self) -> str:
        lines = ["=== Replication Report ===", ""]
        lines.append("Results:")
        for counter, label in _COUNTER_LABELS:
            lines.append(f"  {label}: {self.count(counter)}")

        if self.skip_reasons:
            lines += ["", "Skip reasons:"]
            for reason, count in self.skip_reasons.most_common():
                lines.append(f"  {reason}: {count}")
        if self.skipped:
            lines += ["", f"Skipped instances (first {self.max_skipped_details}):"]
            for item in self.skipped:
                lines.append(f"  {item.instance} [{item.definition}]: {item.reason}")
        if self.failures:
            lines += ["", f"Failures ({self.failure_count} total):"]
            lines += [f"  {message}" for message in self.failures]
        if self.warnings:
            lines += ["", "Warnings:"]
            lines += [f"  {message}" for message in self.warnings]
        if self.transform_lines:
            lines += ["", "Transforms:"]
            lines += [f"  {line}" for line in self.transform_lines]

        if self.timings:
            total = self.total_seconds if self.total_seconds is not None else sum(self.timings.values())
            lines += ["", f"Timing (total {total * 1000:.1f} ms):"]
            for phase, seconds in sorted(self.timings.items(), key=lambda kv: kv[1], reverse=True):
                share = (seconds / total * 100.0) if total > 0 else 0.0
                lines.append(f"  {phase}: {seconds * 1000:.1f} ms ({share:.0f}%)")

        lines += ["", self.summary()]
        return "\n".join(lines)
