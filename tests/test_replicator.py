"""End-to-end tests for replication runs."""

import pytest

from assembly_replicator.batch_replicator import BatchReplicator
from assembly_replicator.cad_transformations import identity_matrix, translation_matrix
from assembly_replicator.config import ReplicationConfig
from assembly_replicator.diagnostics import DUPLICATES_SUPPRESSED, MEMBERS_COPIED
from assembly_replicator.model_document import ModelDocument
from assembly_replicator.replicator import (
    ELEVATION_MISMATCH, NO_REFERENCE_ELEMENTS, SINGLE_INSTANCE_DEFINITION, Replicator, ResultCode
)

from conftest import PAYLOAD_CATEGORY, add_payload, place_unit


def _copies(document):
    return [m for m in document.list_members(PAYLOAD_CATEGORY) if m.user_identifier != "payload"]


class TestReplicateAlongInstances:
    """Tests for the named-reference-instance variant."""

    @pytest.mark.parametrize("model, expected", [
        ("translated_model", (12.0, 1.0, 0.0)),
        ("mirrored_model", (18.0, 1.0, 0.0)),
        ("rotated_model", (19.0, 2.0, 0.0)),
    ])
    def test_payload_lands_in_target(self, request, model, expected):
        document = request.getfixturevalue(model)
        result = Replicator(document).replicate_along_instances(["unit_a"], ["payload"])
        assert result.code is ResultCode.SUCCEEDED
        assert result.total_copied == 1
        copies = _copies(document)
        assert len(copies) == 1
        assert copies[0].location == pytest.approx(expected)
        assert copies[0].comment == "Unit"
        assert document.get_member("payload").comment == "Unit"

    def test_second_run_creates_nothing(self, translated_model):
        replicator = Replicator(translated_model)
        assert replicator.replicate_along_instances(["unit_a"], ["payload"]).total_copied == 1
        second = replicator.replicate_along_instances(["unit_a"], ["payload"])
        assert second.succeeded
        assert second.total_copied == 0
        assert second.report.count(DUPLICATES_SUPPRESSED) == 1
        assert len(_copies(translated_model)) == 1

    def test_allow_duplicates_copies_again(self, translated_model):
        replicator = Replicator(translated_model, ReplicationConfig(allow_duplicates=True))
        replicator.replicate_along_instances(["unit_a"], ["payload"])
        replicator.replicate_along_instances(["unit_a"], ["payload"])
        assert len(_copies(translated_model)) == 2

    def test_far_elevation_target_skipped(self, translated_model):
        place_unit(translated_model, "Unit", "unit_high", translation_matrix(0, 50, 500))
        result = Replicator(translated_model).replicate_along_instances(["unit_a"], ["payload"])
        assert result.total_copied == 1
        assert result.report.skip_reasons[ELEVATION_MISMATCH] == 1
        assert result.report.skipped[0].instance == "unit_high"

    def test_definition_without_reference_members_skipped(self):
        document = ModelDocument()
        document.add_definition("Bare")
        for x in (0, 10):
            inst = document.add_instance("Bare", (x, 0, 0), identifier=f"bare{x}")
            document.add_box_member((x, 0, 0), (x + 5, 5, 3), category_id=3, instance=inst)
        add_payload(document)
        result = Replicator(document).replicate_along_instances(["bare0"], ["payload"])
        assert result.succeeded
        assert result.total_copied == 0
        assert result.report.skip_reasons[NO_REFERENCE_ELEMENTS] == 1

    def test_payload_outside_instance_ignored(self, translated_model):
        add_payload(translated_model, location=(400, 400, 0), identifier="stray")
        result = Replicator(translated_model).replicate_along_instances(["unit_a"], ["stray"])
        assert result.total_copied == 0
        assert any("No payload members" in w for w in result.report.warnings)

    def test_unknown_identifiers_warned(self, translated_model):
        result = Replicator(translated_model).replicate_along_instances(["nope"], ["payload", "missing"])
        assert result.succeeded
        assert len(result.report.warnings) == 2

    def test_verbose_lists_transforms(self, rotated_model):
        result = Replicator(rotated_model, ReplicationConfig(verbose=True)).replicate_along_instances(
            ["unit_a"], ["payload"])
        assert len(result.report.transform_lines) == 1
        assert result.report.transform_lines[0].startswith("unit_b:")
        assert "Transforms:" in result.report.render()


class TestReplicateByRegions:
    """Tests for the region containment variant."""

    def test_copies_into_other_room(self, region_model):
        result = Replicator(region_model).replicate_by_regions(["payload"])
        assert result.succeeded
        assert result.total_copied == 1
        copy = _copies(region_model)[0]
        assert copy.location == pytest.approx((102.0, 1.0, 1.0))
        assert copy.comment == "Room, source id: room_a"
        assert copy.level_id == region_model.get_level("L1").internal_id
        assert region_model.get_member("payload").comment == "Room, source id: room_a"

    def test_rerun_is_idempotent(self, region_model):
        replicator = Replicator(region_model)
        replicator.replicate_by_regions(["payload"])
        second = replicator.replicate_by_regions(["payload"])
        assert second.total_copied == 0
        assert len(_copies(region_model)) == 1

    def test_single_instance_definition_skipped(self):
        document = ModelDocument()
        document.add_definition("Room")
        place_unit(document, "Room", "only_room", identity_matrix(), region_height=3.0)
        add_payload(document)
        result = Replicator(document).replicate_by_regions(["payload"])
        assert result.succeeded
        assert result.total_copied == 0
        assert result.report.skip_reasons[SINGLE_INSTANCE_DEFINITION] == 1

    def test_payload_outside_regions(self, region_model):
        add_payload(region_model, location=(50, 50, 1), identifier="stray")
        result = Replicator(region_model).replicate_by_regions(["stray"])
        assert result.succeeded
        assert result.total_copied == 0

    def test_payload_above_instance_band_not_contained(self, region_model):
        add_payload(region_model, location=(2, 1, 8), identifier="high")
        result = Replicator(region_model).replicate_by_regions(["high"])
        assert result.total_copied == 0


class TestTransactions:
    """Tests for rollback and cancellation."""

    def test_failure_rolls_everything_back(self, translated_model, monkeypatch):
        original = BatchReplicator.execute
        before = len(translated_model.list_members())

        def execute_then_fail(self, pending):
            original(self, pending)
            raise RuntimeError("disk full")

        monkeypatch.setattr(BatchReplicator, "execute", execute_then_fail)
        result = Replicator(translated_model).replicate_along_instances(["unit_a"], ["payload"])
        assert result.code is ResultCode.FAILED
        assert result.total_copied == 0
        assert len(translated_model.list_members()) == before
        assert translated_model.get_member("payload").comment == ""
        assert not translated_model.in_transaction
        assert "rolled back" in result.summary()

    def test_interrupt_cancels(self, translated_model, monkeypatch):
        def interrupted(self, pending):
            raise KeyboardInterrupt

        monkeypatch.setattr(BatchReplicator, "execute", interrupted)
        result = Replicator(translated_model).replicate_along_instances(["unit_a"], ["payload"])
        assert result.code is ResultCode.CANCELLED
        assert result.report.count(MEMBERS_COPIED) == 0
        assert _copies(translated_model) == []
