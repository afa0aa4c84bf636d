"""Tests for run reports and configuration."""

import pytest

from assembly_replicator.config import CopyStrategy, ReplicationConfig
from assembly_replicator.diagnostics import (
    DEFINITIONS_SKIPPED, DUPLICATES_SUPPRESSED, INSTANCES_SKIPPED, MEMBERS_COPIED, RunReport
)


class TestRunReport:
    """Tests for RunReport."""

    def test_skip_counts_instances_and_definitions(self):
        report = RunReport()
        report.skip("UnderdeterminedTransform", instance="i1", definition="D")
        report.skip("SingleInstanceDefinition", definition="E")
        assert report.count(INSTANCES_SKIPPED) == 1
        assert report.count(DEFINITIONS_SKIPPED) == 1
        assert report.skipped[0].instance == "i1"

    def test_failures_are_capped(self):
        report = RunReport(max_failures=2)
        for i in range(5):
            report.fail(f"failure {i}")
        assert report.failure_count == 5
        assert report.failures == ["failure 0", "failure 1"]
        assert "Failures (5 total):" in report.render()

    def test_skipped_details_are_capped(self):
        report = RunReport(max_skipped_details=1)
        report.skip("ElevationMismatch", instance="a")
        report.skip("ElevationMismatch", instance="b")
        assert len(report.skipped) == 1
        assert report.skip_reasons["ElevationMismatch"] == 2

    def test_targets_counted_once(self):
        report = RunReport()
        report.increment(MEMBERS_COPIED, 3)
        for target in ("a", "a", "b"):
            report.record_target(target)
        assert report.summary() == "Copied 3 member(s) into 2 instance(s)."

    def test_summary_lists_problems(self):
        report = RunReport()
        report.increment(DUPLICATES_SUPPRESSED, 2)
        report.skip("NoReferenceElements", definition="D")
        report.fail("boom")
        assert report.summary() == "No members were copied; 2 duplicate(s) suppressed; 1 skip(s); 1 failure(s)."

    def test_timing_section(self):
        report = RunReport()
        with report.timed("copying"):
            pass
        report.finish()
        rendered = report.render()
        assert "Timing (total" in rendered
        assert "copying:" in rendered


class TestReplicationConfig:
    """Tests for ReplicationConfig."""

    def test_defaults(self):
        config = ReplicationConfig()
        assert config.grid_size == 50.0
        assert config.copy_strategy is CopyStrategy.BATCHED
        assert config.allow_duplicates is False

    def test_overrides_accept_strategy_names(self):
        config = ReplicationConfig.from_overrides(copy_strategy="per_member", grid_size=25)
        assert config.copy_strategy is CopyStrategy.PER_MEMBER
        assert config.grid_size == 25

    def test_unknown_override_rejected(self):
        with pytest.raises(ValueError, match="grid"):
            ReplicationConfig.from_overrides(grid=10)

    @pytest.mark.parametrize("field, value", [
        ("grid_size", 0), ("mirror_tolerance", -1.0), ("antiparallel_dot", 0.5),
    ])
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(ValueError):
            ReplicationConfig(**{field: value})

    def test_with_changes(self):
        config = ReplicationConfig().with_changes(verbose=True)
        assert config.verbose
        assert not ReplicationConfig().verbose
