"""Tests for device-side file access."""

from __future__ import annotations

import base64
import os

import pytest

from client.sentinel_client.files import (
    FileAccessError,
    delete_file,
    list_files,
    read_file_b64,
    resolve_shared,
)


@pytest.fixture
def shared(tmp_path):
    camera = tmp_path / "Camera"
    docs = tmp_path / "Documents"
    camera.mkdir()
    docs.mkdir()
    return camera, docs


def touch(path, content=b"x", mtime=None):
    path.write_bytes(content)
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


class TestListFiles:
    def test_newest_first(self, shared):
        camera, docs = shared
        touch(camera / "old.jpg", mtime=1_000)
        touch(docs / "new.pdf", mtime=3_000)
        touch(camera / "mid.jpg", mtime=2_000)

        files = list_files([str(camera), str(docs)])
        assert [f["name"] for f in files] == ["new.pdf", "mid.jpg", "old.jpg"]

    def test_entry_shape(self, shared):
        camera, _ = shared
        touch(camera / "a.jpg", b"hello", mtime=1_500)

        [entry] = list_files([str(camera)])
        assert entry["name"] == "a.jpg"
        assert entry["path"] == str((camera / "a.jpg").resolve())
        assert entry["size"] == 5
        assert entry["mtime"] == 1_500

    def test_capped(self, shared):
        camera, _ = shared
        for i in range(12):
            touch(camera / f"img{i}.jpg", mtime=1_000 + i)

        files = list_files([str(camera)], limit=5)
        assert len(files) == 5
        assert files[0]["name"] == "img11.jpg"

    def test_missing_directories_skipped(self, shared, tmp_path):
        camera, _ = shared
        touch(camera / "a.jpg")
        files = list_files([str(tmp_path / "nope"), str(camera)])
        assert [f["name"] for f in files] == ["a.jpg"]

    def test_not_recursive(self, shared):
        camera, _ = shared
        sub = camera / "album"
        sub.mkdir()
        touch(sub / "deep.jpg")
        touch(camera / "top.jpg")
        assert [f["name"] for f in list_files([str(camera)])] == ["top.jpg"]


class TestPathSafety:
    def test_inside_allowed(self, shared):
        camera, docs = shared
        path = touch(docs / "a.txt")
        assert resolve_shared(str(path), [str(camera), str(docs)]) == path.resolve()

    def test_outside_refused(self, shared, tmp_path):
        camera, _ = shared
        secret = touch(tmp_path / "secret.txt")
        with pytest.raises(FileAccessError):
            resolve_shared(str(secret), [str(camera)])

    def test_traversal_refused(self, shared, tmp_path):
        camera, _ = shared
        touch(tmp_path / "secret.txt")
        with pytest.raises(FileAccessError):
            resolve_shared(str(camera / ".." / "secret.txt"), [str(camera)])

    def test_sibling_prefix_refused(self, shared, tmp_path):
        camera, _ = shared
        sibling = tmp_path / "Camera2"
        sibling.mkdir()
        path = touch(sibling / "a.jpg")
        with pytest.raises(FileAccessError):
            resolve_shared(str(path), [str(camera)])


class TestReadDelete:
    def test_read_b64(self, shared):
        camera, _ = shared
        path = touch(camera / "a.jpg", b"\x00\x01binary")
        assert base64.b64decode(read_file_b64(str(path), [str(camera)])) == b"\x00\x01binary"

    def test_read_missing(self, shared):
        camera, _ = shared
        with pytest.raises(FileAccessError):
            read_file_b64(str(camera / "gone.jpg"), [str(camera)])

    def test_delete(self, shared):
        camera, _ = shared
        path = touch(camera / "a.jpg")
        delete_file(str(path), [str(camera)])
        assert not path.exists()

    def test_delete_missing(self, shared):
        camera, _ = shared
        with pytest.raises(FileAccessError):
            delete_file(str(camera / "gone.jpg"), [str(camera)])
