"""Tests for tracking-id resolution."""

from __future__ import annotations

import logging

import pytest

from kennel.models import ActualRecord, Record
from kennel.tracking import (
    MISSING_ID,
    NEW,
    TrackingMap,
    ValidationError,
    resolve,
    resolve_linked_tracking_ids,
)


def make_record(
    kennel_id: str,
    resource_type: str = "monitor",
    attributes: dict | None = None,
    id: int | str | None = None,
) -> Record:
    return Record(
        kennel_id=kennel_id,
        project_id="web",
        resource_type=resource_type,
        id=id,
        attributes=attributes or {},
    )


def make_actual(tracking_id: str | None, id: int | str, resource_type: str = "monitor") -> ActualRecord:
    return ActualRecord(resource_type=resource_type, id=id, tracking_id=tracking_id)


class TestTrackingMap:
    """Tests for building the tracking map."""

    def test_actuals_map_to_their_ids(self) -> None:
        tracking_map = TrackingMap.build([make_actual("web:cpu", 7)], [])

        assert tracking_map["web:cpu"] == 7

    def test_unmatched_records_map_to_new(self) -> None:
        tracking_map = TrackingMap.build([], [make_record("cpu")])

        assert tracking_map["web:cpu"] == NEW

    def test_existing_actual_wins_over_new(self) -> None:
        tracking_map = TrackingMap.build([make_actual("web:cpu", 7)], [make_record("cpu")])

        assert tracking_map["web:cpu"] == 7

    def test_explicit_id_recorded(self) -> None:
        """Records taking over an existing resource map to that resource."""
        tracking_map = TrackingMap.build([], [make_record("cpu", id=42)])

        assert tracking_map["web:cpu"] == 42

    def test_unmanaged_actuals_ignored(self) -> None:
        tracking_map = TrackingMap.build([make_actual(None, 7)], [])

        assert len(tracking_map) == 0

    def test_install_replaces_new(self) -> None:
        tracking_map = TrackingMap.build([], [make_record("cpu")])

        tracking_map.install("web:cpu", 99)

        assert tracking_map["web:cpu"] == 99


class TestResolve:
    """Tests for resolving a single reference."""

    def test_known_id(self) -> None:
        assert resolve("web:cpu", {"web:cpu": 7}) == 7

    def test_new_without_force_returns_missing_id(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="kennel.tracking"):
            assert resolve("web:cpu", {"web:cpu": NEW}, owner="web:dash") == MISSING_ID

        assert "the next run will link it properly" in caplog.text

    def test_quiet_skips_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="kennel.tracking"):
            assert resolve("web:cpu", {"web:cpu": NEW}, quiet=True) == MISSING_ID

        assert caplog.records == []

    def test_new_with_force_raises(self) -> None:
        with pytest.raises(ValidationError, match="will be created in the current run"):
            resolve("web:cpu", {"web:cpu": NEW}, force=True)

    @pytest.mark.parametrize("force", [True, False])
    def test_unknown_raises(self, force: bool) -> None:
        with pytest.raises(ValidationError, match="Unable to find web:gone"):
            resolve("web:gone", {}, force=force)

    def test_owner_prefixes_message(self) -> None:
        with pytest.raises(ValidationError, match=r"^web:slo Unable to find web:gone"):
            resolve("web:gone", {}, owner="web:slo")


class TestResolveLinkedTrackingIds:
    """Tests for rewriting references inside records."""

    def test_composite_query(self) -> None:
        record = make_record(
            "both",
            attributes={"type": "composite", "query": "%{web:cpu} && %{web:mem}"},
        )

        resolved = resolve_linked_tracking_ids(record, {"web:cpu": 1, "web:mem": 2})

        assert resolved.attributes["query"] == "1 && 2"

    def test_composite_query_pending_reference(self) -> None:
        record = make_record("both", attributes={"type": "composite", "query": "%{web:cpu} || 5"})

        resolved = resolve_linked_tracking_ids(record, {"web:cpu": NEW})

        assert resolved.attributes["query"] == f"{MISSING_ID} || 5"

    def test_non_composite_query_untouched(self) -> None:
        record = make_record("cpu", attributes={"type": "query alert", "query": "%{web:cpu}"})

        resolved = resolve_linked_tracking_ids(record, {})

        assert resolved.attributes["query"] == "%{web:cpu}"

    def test_dashboard_alert_ids_in_nested_groups(self) -> None:
        record = make_record(
            "overview",
            resource_type="dashboard",
            attributes={
                "widgets": [
                    {"definition": {"type": "alert_graph", "alert_id": "web:cpu"}},
                    {
                        "definition": {
                            "type": "group",
                            "widgets": [
                                {"definition": {"type": "alert_value", "alert_id": "web:mem"}}
                            ],
                        }
                    },
                ]
            },
        )

        resolved = resolve_linked_tracking_ids(record, {"web:cpu": 1, "web:mem": NEW})

        widgets = resolved.attributes["widgets"]
        assert widgets[0]["definition"]["alert_id"] == "1"
        assert widgets[1]["definition"]["widgets"][0]["definition"]["alert_id"] == str(MISSING_ID)

    def test_dashboard_numeric_alert_id_untouched(self) -> None:
        record = make_record(
            "overview",
            resource_type="dashboard",
            attributes={"widgets": [{"definition": {"alert_id": "123"}}]},
        )

        resolved = resolve_linked_tracking_ids(record, {})

        assert resolved.attributes["widgets"][0]["definition"]["alert_id"] == "123"

    def test_slo_monitor_ids_resolved(self) -> None:
        record = make_record("avail", resource_type="slo", attributes={"monitor_ids": ["web:cpu", 5]})

        resolved = resolve_linked_tracking_ids(record, {"web:cpu": 1})

        assert resolved.attributes["monitor_ids"] == [1, 5]

    def test_slo_monitor_ids_require_existing(self) -> None:
        """SLOs cannot point at a monitor that does not exist yet."""
        record = make_record("avail", resource_type="slo", attributes={"monitor_ids": ["web:cpu"]})

        with pytest.raises(ValidationError, match="will be created in the current run"):
            resolve_linked_tracking_ids(record, {"web:cpu": NEW})

    def test_input_record_untouched(self) -> None:
        attributes = {"widgets": [{"definition": {"alert_id": "web:cpu"}}]}
        record = make_record("overview", resource_type="dashboard", attributes=attributes)

        resolve_linked_tracking_ids(record, {"web:cpu": 1})

        assert record.attributes["widgets"][0]["definition"]["alert_id"] == "web:cpu"
