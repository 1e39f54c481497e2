"""
Tests for SafeFileOps — mutations that never destroy data

These tests validate:
- Each operation records a version and an audit entry
- Preconditions (create on existing, move onto existing) are refused
- Archive moves files into a timestamped folder, keeping the bytes
- The bytes ever seen at a path remain recoverable
"""

import pytest

from little_helper.core.audit import AuditEventType, AuditFilter
from little_helper.core.file_ops import ActionKind, _free_name
from little_helper.errors import NotFound, OperationBlocked


def _file_ops_entries(env):
    return env.audit.query(AuditFilter(event_types={AuditEventType.FILE_OP}, oldest_first=True))


class TestCreateAndModify:
    """create / modify / write / append."""

    def test_create_records_version_one(self, helper_env, work_dir):
        """create writes the file, version 1 and a 'File created' entry."""
        path = work_dir / "sub" / "new.txt"

        action = helper_env.file_ops.create(path, b"hello", skill_id="test")

        assert action.kind == ActionKind.CREATED
        assert path.read_bytes() == b"hello"
        assert action.version.version_number == 1
        entries = _file_ops_entries(helper_env)
        assert entries[-1].action == "File created"
        assert entries[-1].skill_id == "test"

    def test_create_refuses_existing_path(self, helper_env, work_dir):
        """create never overwrites."""
        path = helper_env.write_file("exists.txt", "keep me")

        with pytest.raises(OperationBlocked):
            helper_env.file_ops.create(path, b"new")
        assert path.read_text() == "keep me"

    def test_modify_saves_untracked_bytes_first(self, helper_env, work_dir):
        """A file never versioned gets its current bytes saved before the change."""
        path = helper_env.write_file("untracked.txt", "original")

        helper_env.file_ops.modify(path, b"changed")

        versions = helper_env.versions.list_versions(path)
        assert len(versions) == 2
        assert helper_env.versions.read_version(path, 1) == b"original"
        assert path.read_bytes() == b"changed"

    def test_modify_missing_file_is_not_found(self, helper_env, work_dir):
        """modify requires the file to exist."""
        with pytest.raises(NotFound):
            helper_env.file_ops.modify(work_dir / "missing.txt", b"x")

    def test_write_unchanged_is_noop(self, helper_env, work_dir):
        """write with identical bytes adds no version and no audit entry."""
        path = work_dir / "same.txt"
        helper_env.file_ops.write(path, b"same")
        before = len(_file_ops_entries(helper_env))

        action = helper_env.file_ops.write(path, b"same")

        assert action.kind == ActionKind.UNCHANGED
        assert len(helper_env.versions.list_versions(path)) == 1
        assert len(_file_ops_entries(helper_env)) == before

    def test_append_adds_a_version(self, helper_env, work_dir):
        """append concatenates and versions the result."""
        path = work_dir / "log.txt"
        helper_env.file_ops.append(path, b"a")
        helper_env.file_ops.append(path, b"b")

        assert path.read_bytes() == b"ab"
        assert len(helper_env.versions.list_versions(path)) == 2


class TestMove:
    """move."""

    def test_move_links_history(self, helper_env, work_dir):
        """The destination carries the source's history plus a 'Moved from' version."""
        source = work_dir / "a.txt"
        helper_env.file_ops.create(source, b"data")
        dest = work_dir / "folder" / "b.txt"

        action = helper_env.file_ops.move(source, dest)

        assert action.kind == ActionKind.MOVED
        assert not source.exists()
        assert dest.read_bytes() == b"data"
        versions = helper_env.versions.list_versions(dest)
        assert len(versions) == 2
        assert versions[-1].description.startswith("Moved from")
        assert _file_ops_entries(helper_env)[-1].action.startswith("File moved from")

    def test_move_onto_existing_is_blocked(self, helper_env, work_dir):
        """The destination must not exist."""
        source = helper_env.write_file("a.txt", "a")
        dest = helper_env.write_file("b.txt", "b")

        with pytest.raises(OperationBlocked):
            helper_env.file_ops.move(source, dest)
        assert source.read_text() == "a"
        assert dest.read_text() == "b"

    def test_move_missing_source_is_not_found(self, helper_env, work_dir):
        """A missing source raises NotFound."""
        with pytest.raises(NotFound):
            helper_env.file_ops.move(work_dir / "nope.txt", work_dir / "x.txt")


class TestArchive:
    """archive and friends."""

    def test_archive_preserves_data(self, helper_env, work_dir):
        """Archive moves the file under <archive>/<timestamp>/ and audits it."""
        path = work_dir / "temp.txt"
        helper_env.file_ops.create(path, b"hello")

        action = helper_env.file_ops.archive(path)

        assert action.kind == ActionKind.ARCHIVED
        assert action.to_path.exists()
        assert action.to_path.read_bytes() == b"hello"
        assert action.to_path.parent.parent == helper_env.data_dir / "archive"
        assert not path.exists()
        entry = _file_ops_entries(helper_env)[-1]
        assert "archived" in entry.action
        assert entry.details["archived_to"] == str(action.to_path)

    def test_archive_to_named_folder(self, helper_env, work_dir):
        """archive_to places the file under <archive>/<subdir>/<timestamp>/."""
        path = helper_env.write_file("old.txt", "old")

        action = helper_env.file_ops.archive_to(path, "cleanup")

        assert action.to_path.name == "old.txt"
        assert action.to_path.parent.parent == helper_env.data_dir / "archive" / "cleanup"
        assert action.to_path.read_text() == "old"

    def test_same_name_archived_twice(self, helper_env, work_dir, monkeypatch):
        """Two files with one basename in the same second both land in the archive."""
        monkeypatch.setattr("little_helper.core.file_ops._stamp", lambda: "20260101_120000")
        first = helper_env.write_file("a/x.txt", "from a")
        second = helper_env.write_file("b/x.txt", "from b")

        one = helper_env.file_ops.archive(first)
        two = helper_env.file_ops.archive(second)

        folder = helper_env.data_dir / "archive" / "20260101_120000"
        assert one.to_path == folder / "x.txt"
        assert two.to_path == folder / "x (1).txt"
        assert one.to_path.read_text() == "from a"
        assert two.to_path.read_text() == "from b"

    def test_free_name_counts_up(self, tmp_path):
        """Taken names get the next free ' (n)' suffix."""
        (tmp_path / "x.txt").write_text("0")
        (tmp_path / "x (1).txt").write_text("1")
        assert _free_name(tmp_path, "x.txt") == tmp_path / "x (2).txt"
        assert _free_name(tmp_path, "y.txt") == tmp_path / "y.txt"

    def test_archive_missing_file_is_not_found(self, helper_env, work_dir):
        """Archiving a missing file raises NotFound."""
        with pytest.raises(NotFound):
            helper_env.file_ops.archive(work_dir / "missing.txt")

    def test_copy_refuses_existing_destination(self, helper_env, work_dir):
        """copy_file never overwrites."""
        source = helper_env.write_file("a.txt", "a")
        dest = helper_env.write_file("b.txt", "b")

        with pytest.raises(OperationBlocked):
            helper_env.file_ops.copy_file(source, dest)


class TestNoDataLoss:
    """Every byte sequence ever at a path stays recoverable."""

    def test_all_states_recoverable(self, helper_env, work_dir):
        """After create/modify/append/archive, all contents are in versions or the archive."""
        path = work_dir / "doc.txt"
        seen = set()

        helper_env.file_ops.create(path, b"one")
        seen.add(b"one")
        helper_env.file_ops.modify(path, b"two")
        seen.add(b"two")
        helper_env.file_ops.append(path, b"+")
        seen.add(b"two+")
        archived = helper_env.file_ops.archive(path)

        recoverable = {helper_env.versions.read_version(path, v.version_number)
                       for v in helper_env.versions.list_versions(path)}
        recoverable.add(archived.to_path.read_bytes())
        assert seen <= recoverable
