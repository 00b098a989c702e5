from __future__ import annotations

import os

import pytest

from MavenRepoCleaner.errors import NodeAccessError
from MavenRepoCleaner.filesystem import (
    FsspecNodeFilesystem,
    LocalNodeFilesystem,
    create_remote_retry_policy,
    filesystem_for,
)


class TestLocalNodeFilesystem:
    def test_listing_is_sorted_and_typed(self, tmp_path):
        (tmp_path / "b").mkdir()
        (tmp_path / "a.txt").write_text("x", encoding="utf-8")
        fs = LocalNodeFilesystem()

        entries = fs.list_dir(str(tmp_path))

        assert [(e.name, e.is_dir, e.is_file) for e in entries] == [
            ("a.txt", False, True),
            ("b", True, False),
        ]
        assert [e.name for e in fs.list_dirs(str(tmp_path))] == ["b"]

    def test_vanished_directory_lists_empty(self, tmp_path):
        assert LocalNodeFilesystem().list_dir(str(tmp_path / "gone")) == []

    def test_touch_with_backdated_mtime(self, tmp_path):
        fs = LocalNodeFilesystem()
        marker = str(tmp_path / ".cleanupMarker")
        fs.touch(marker, 1_000_000.0)
        stat = fs.stat(marker)
        assert stat is not None
        assert stat.mtime == pytest.approx(1_000_000.0)
        assert stat.atime == pytest.approx(1_000_000.0)

    def test_remove_missing_is_false(self, tmp_path):
        fs = LocalNodeFilesystem()
        assert fs.remove_file(str(tmp_path / "nope")) is False
        assert fs.remove_dir(str(tmp_path / "nope")) is False
        fs.remove_tree(str(tmp_path / "nope"))

    def test_remove_tree(self, tmp_path):
        target = tmp_path / "repo" / "a" / "b"
        target.mkdir(parents=True)
        (target / "f").write_bytes(b"1")
        LocalNodeFilesystem().remove_tree(str(tmp_path / "repo"))
        assert not (tmp_path / "repo").exists()

    def test_relative_uses_forward_slashes(self, tmp_path):
        fs = LocalNodeFilesystem()
        path = os.path.join(str(tmp_path), "com", "x", "lib-1.0.jar")
        assert fs.relative(path, str(tmp_path)) == "com/x/lib-1.0.jar"

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
    def test_symlinks_are_not_followed(self, tmp_path):
        real = tmp_path / "real"
        real.mkdir()
        (tmp_path / "link").symlink_to(real)
        entries = {e.name: e for e in LocalNodeFilesystem().list_dir(str(tmp_path))}
        assert not entries["link"].is_dir
        assert not entries["link"].is_file


class TestFsspecNodeFilesystem:
    def test_memory_backend(self, memory_fs):
        memory_fs.pipe("/node/job/.repository/a.jar", b"12345")
        fs = FsspecNodeFilesystem("memory://node")

        assert fs.base_path == "/node"
        assert [e.name for e in fs.list_dirs("/node")] == ["job"]
        entries = fs.list_dir("/node/job/.repository")
        assert [(e.name, e.size, e.is_file) for e in entries] == [("a.jar", 5, True)]
        assert entries[0].atime == entries[0].mtime
        assert fs.relative(entries[0].path, "/node/job") == ".repository/a.jar"

    def test_missing_paths(self, memory_fs):
        fs = FsspecNodeFilesystem("memory://node")
        assert fs.list_dir("/node/absent") == []
        assert fs.stat("/node/absent") is None
        assert fs.remove_file("/node/absent") is False
        fs.remove_tree("/node/absent")

    def test_touch_creates_marker(self, memory_fs):
        memory_fs.pipe("/node/job/.repository/a.jar", b"1")
        fs = FsspecNodeFilesystem("memory://node")
        fs.touch("/node/job/.repository/.cleanupMarker", 0.0)
        assert fs.exists("/node/job/.repository/.cleanupMarker")

    def test_remove_tree(self, memory_fs):
        memory_fs.pipe("/node/job/.repository/com/a.jar", b"1")
        fs = FsspecNodeFilesystem("memory://node")
        fs.remove_tree("/node/job/.repository")
        assert not memory_fs.exists("/node/job/.repository/com/a.jar")

    def test_transport_errors_retried_then_wrapped(self, memory_fs, monkeypatch):
        fs = FsspecNodeFilesystem(
            "memory://node",
            retry_policy=create_remote_retry_policy(max_attempts=3, max_wait_seconds=0.01),
        )
        attempts = []

        def flaky(path):
            attempts.append(path)
            raise ConnectionError("reset by peer")

        monkeypatch.setattr(fs.fs, "exists", flaky)

        with pytest.raises(NodeAccessError) as excinfo:
            fs.exists("/node/x")

        assert len(attempts) == 3
        assert excinfo.value.node == "memory://node"

    def test_transient_error_recovers(self, memory_fs, monkeypatch):
        memory_fs.pipe("/node/x", b"1")
        fs = FsspecNodeFilesystem(
            "memory://node",
            retry_policy=create_remote_retry_policy(max_attempts=3, max_wait_seconds=0.01),
        )
        real_exists = fs.fs.exists
        calls = []

        def flaky(path):
            calls.append(path)
            if len(calls) == 1:
                raise TimeoutError("slow node")
            return real_exists(path)

        monkeypatch.setattr(fs.fs, "exists", flaky)

        assert fs.exists("/node/x")
        assert len(calls) == 2


def test_filesystem_for():
    assert isinstance(filesystem_for("/var/lib/builds"), LocalNodeFilesystem)
    assert isinstance(filesystem_for("file:///var/lib/builds"), LocalNodeFilesystem)
    assert isinstance(filesystem_for("memory://node"), FsspecNodeFilesystem)
