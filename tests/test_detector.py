"""Tests for conflict detection."""

from work_item_sync.conflict import ConflictDetector, compare_fields
from work_item_sync.db import session_scope
from work_item_sync.db.models import Conflict, SyncConfiguration

FIELDS = ["Title", "Priority", "State"]


class TestCompareFields:
    """Test the three-way field comparison."""

    def test_equal_values_are_skipped(self) -> None:
        result = compare_fields({"Title": "a"}, {"Title": "b"}, {"Title": "b"}, FIELDS)

        assert result.to_target == {}
        assert result.to_source == {}
        assert result.conflicts == []

    def test_without_base_source_wins(self) -> None:
        result = compare_fields(None, {"Title": "new", "Priority": 1}, {"Title": "old", "State": "Active"}, FIELDS)

        assert result.to_target == {"Title": "new", "Priority": 1}
        assert result.conflicts == []

    def test_source_change_goes_to_target(self) -> None:
        result = compare_fields({"Priority": 1}, {"Priority": 2}, {"Priority": 1}, FIELDS)

        assert result.to_target == {"Priority": 2}

    def test_target_change_goes_to_source(self) -> None:
        result = compare_fields({"Priority": 1}, {"Priority": 1}, {"Priority": 3}, FIELDS)

        assert result.to_source == {"Priority": 3}
        assert result.to_target == {}

    def test_unchanged_source_never_conflicts(self) -> None:
        base = {"Title": "a", "Priority": 1, "State": "New"}
        result = compare_fields(base, dict(base), {"Title": "b", "Priority": 5, "State": "Closed"}, FIELDS)

        assert result.conflicts == []
        assert result.to_source == {"Title": "b", "Priority": 5, "State": "Closed"}

    def test_both_changed_differently(self) -> None:
        result = compare_fields({"Priority": 1}, {"Priority": 2}, {"Priority": 3}, FIELDS)

        assert len(result.conflicts) == 1
        conflict = result.conflicts[0]
        assert (conflict.field_name, conflict.source_value, conflict.target_value, conflict.base_value) == (
            "Priority",
            2,
            3,
            1,
        )
        assert result.unsettled == {"Priority"}

    def test_none_counts_as_absent(self) -> None:
        result = compare_fields({"Title": None}, {"Title": None}, {}, FIELDS)

        assert result.to_target == {}
        assert result.conflicts == []

    def test_removed_source_value_is_not_propagated(self) -> None:
        result = compare_fields({"Title": "a"}, {}, {"Title": "a"}, FIELDS)

        assert result.to_target == {}
        assert result.conflicts == []

    def test_field_added_on_both_sides_conflicts_with_absent_base(self) -> None:
        result = compare_fields({}, {"State": "Active"}, {"State": "Closed"}, FIELDS)

        assert result.conflicts[0].base_value is None

    def test_pending_conflict_is_not_raised_again(self) -> None:
        result = compare_fields(
            {"Priority": 1},
            {"Priority": 2},
            {"Priority": 3},
            FIELDS,
            pending={"Priority": [(2, 3)]},
        )

        assert result.conflicts == []
        assert result.pending == ["Priority"]
        assert result.unsettled == {"Priority"}

    def test_new_values_raise_a_new_conflict(self) -> None:
        result = compare_fields(
            {"Priority": 1},
            {"Priority": 4},
            {"Priority": 3},
            FIELDS,
            pending={"Priority": [(2, 3)]},
        )

        assert [c.source_value for c in result.conflicts] == [4]

    def test_settled_conflict_is_respected(self) -> None:
        settled = {"Priority": [(2, (3, 3))]}

        result = compare_fields({"Priority": 1}, {"Priority": 2}, {"Priority": 3}, FIELDS, settled=settled)

        assert result.conflicts == []
        assert result.to_target == {}
        assert result.unsettled == set()


class TestConflictDetector:
    """Test detection against stored conflicts."""

    def _store(self, session_factory, config_id: int, **values) -> None:
        with session_scope(session_factory) as session:
            session.add(
                Conflict(
                    sync_config_id=config_id,
                    source_work_item_id="S-1",
                    target_work_item_id="T-1",
                    conflict_type="field_conflict",
                    field_name="Priority",
                    base_value=1,
                    **values,
                )
            )

    def test_pending(self, session_factory, sync_config: SyncConfiguration) -> None:
        self._store(session_factory, sync_config.id, source_value=2, target_value=3)
        detector = ConflictDetector()

        with session_scope(session_factory) as session:
            result = detector.detect(
                session, sync_config.id, "S-1", {"Priority": 2}, {"Priority": 3}, {"Priority": 1}, FIELDS
            )

        assert result.pending == ["Priority"]
        assert result.conflicts == []

    def test_resolved_value_settles_field(self, session_factory, sync_config: SyncConfiguration) -> None:
        self._store(
            session_factory,
            sync_config.id,
            source_value=2,
            target_value=3,
            status="resolved",
            resolved_value=7,
        )
        detector = ConflictDetector()

        with session_scope(session_factory) as session:
            result = detector.detect(
                session, sync_config.id, "S-1", {"Priority": 2}, {"Priority": 7}, {"Priority": 1}, FIELDS
            )

        assert result.conflicts == []
        assert result.to_target == {}

    def test_ignored_conflict_does_not_suppress(self, session_factory, sync_config: SyncConfiguration) -> None:
        self._store(session_factory, sync_config.id, source_value=2, target_value=3, status="ignored")
        detector = ConflictDetector()

        with session_scope(session_factory) as session:
            result = detector.detect(
                session, sync_config.id, "S-1", {"Priority": 2}, {"Priority": 3}, {"Priority": 1}, FIELDS
            )

        assert len(result.conflicts) == 1

    def test_build_field_conflicts(self, sync_config: SyncConfiguration) -> None:
        detector = ConflictDetector()
        result = compare_fields({"Priority": 1}, {"Priority": 2}, {"Priority": 3}, FIELDS)

        rows = detector.build_field_conflicts(sync_config.id, None, "S-1", "T-1", "Bug", result, None, None)

        assert len(rows) == 1
        assert rows[0].status == "unresolved"
        assert rows[0].conflict_type == "field_conflict"
        assert rows[0].work_item_type == "Bug"
        assert rows[0].details["source_revision"] is None
