"""Tests for diffing and conflict detection."""

from pygeelato.models import FileRecord
from pygeelato.sync.comparator import (
    ChangeType,
    build_changes,
    diff_against_state,
    diff_records,
    find_conflicts,
)
from pygeelato.sync.state import SyncState


def records(**hashes: str) -> list[FileRecord]:
    """Build records from keyword arguments, ``_`` standing for ``/``."""
    return [
        FileRecord(path=name.replace("_", "/"), hash=value)
        for name, value in hashes.items()
    ]


class TestDiffRecords:
    """Tests for diff_records."""

    def test_empty_sides(self):
        """Test that two empty sides give an empty diff."""
        result = diff_records([], [])
        assert result.is_empty
        assert result.to_dict() == {"added": [], "modified": [], "deleted": []}

    def test_identical_sides(self):
        local = records(meta_a="1", meta_b="2")
        assert diff_records(local, local).is_empty

    def test_classification(self):
        """Test added, modified and deleted classification."""
        local = records(meta_new="1", meta_same="2", meta_changed="3")
        remote = records(meta_same="2", meta_changed="x", meta_gone="4")

        result = diff_records(local, remote)

        assert result.added == ["meta/new"]
        assert result.modified == ["meta/changed"]
        assert result.deleted == ["meta/gone"]
        assert result.total == 3

    def test_partition_is_disjoint(self):
        """Test that each path lands in exactly one bucket."""
        local = records(a="1", b="2", c="3", d="4")
        remote = records(b="2", c="x", e="5", f="6")

        result = diff_records(local, remote)
        buckets = [set(result.added), set(result.modified), set(result.deleted)]

        assert not (buckets[0] & buckets[1])
        assert not (buckets[0] & buckets[2])
        assert not (buckets[1] & buckets[2])
        assert result.paths() == {"a", "c", "d", "e", "f"}

    def test_sorted_output(self):
        result = diff_records(records(z="1", a="1", m="1"), [])
        assert result.added == ["a", "m", "z"]


class TestDiffAgainstState:
    """Tests for diff_against_state."""

    def test_new_file_is_added(self):
        """Test a file unknown to the last sync."""
        local = [FileRecord(path="meta/User/User.columns.json", hash="hx")]
        result = diff_against_state(local, SyncState())
        assert result.added == ["meta/User/User.columns.json"]

    def test_modified_and_deleted(self):
        """Test changed and vanished files."""
        state = SyncState(files={"meta/a.json": "1", "meta/b.json": "2"})
        local = [FileRecord(path="meta/a.json", hash="changed")]

        result = diff_against_state(local, state)

        assert result.modified == ["meta/a.json"]
        assert result.deleted == ["meta/b.json"]


class TestBuildChanges:
    """Tests for build_changes."""

    def test_change_order_and_hashes(self):
        """Test that changes are added, then modified, then deleted."""
        state = SyncState(files={"m.json": "old", "d.json": "gone"})
        local = [
            FileRecord(path="m.json", hash="new"),
            FileRecord(path="a.json", hash="fresh"),
        ]

        changes = build_changes(local, state)

        assert [(c.type, c.path) for c in changes] == [
            (ChangeType.ADDED, "a.json"),
            (ChangeType.MODIFIED, "m.json"),
            (ChangeType.DELETED, "d.json"),
        ]
        assert changes[0].remote_hash is None
        assert changes[1].local_hash == "new"
        assert changes[1].remote_hash == "old"
        assert changes[2].local_hash == ""

    def test_no_changes(self):
        state = SyncState(files={"a.json": "1"})
        local = [FileRecord(path="a.json", hash="1")]
        assert build_changes(local, state) == []


class TestFindConflicts:
    """Tests for find_conflicts."""

    def test_both_sides_changed(self):
        """Test a path edited locally and remotely since the last sync."""
        state = SyncState(files={"a.json": "base"})
        local = [FileRecord(path="a.json", hash="mine")]
        remote = [FileRecord(path="a.json", hash="theirs")]

        [conflict] = find_conflicts(local, remote, state)

        assert conflict.path == "a.json"
        assert conflict.local_hash == "mine"
        assert conflict.remote_hash == "theirs"

    def test_one_side_changed(self):
        """Test that a change on only one side is not a conflict."""
        state = SyncState(files={"a.json": "base", "b.json": "base"})
        local = [
            FileRecord(path="a.json", hash="mine"),
            FileRecord(path="b.json", hash="base"),
        ]
        remote = [
            FileRecord(path="a.json", hash="base"),
            FileRecord(path="b.json", hash="theirs"),
        ]
        assert find_conflicts(local, remote, state) == []

    def test_same_change_on_both_sides(self):
        state = SyncState(files={"a.json": "base"})
        same = [FileRecord(path="a.json", hash="new")]
        assert find_conflicts(same, same, state) == []

    def test_added_on_both_sides(self):
        """Test a path created independently with different content."""
        local = [FileRecord(path="a.json", hash="mine")]
        remote = [FileRecord(path="a.json", hash="theirs")]
        assert len(find_conflicts(local, remote, SyncState())) == 1

    def test_deletions_are_not_conflicts(self):
        state = SyncState(files={"a.json": "base"})
        remote = [FileRecord(path="a.json", hash="theirs")]
        assert find_conflicts([], remote, state) == []
