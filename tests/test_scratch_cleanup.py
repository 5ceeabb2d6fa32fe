from __future__ import annotations

import pytest

from pocket_ledger.core.scratch import ScratchSpace, discard, scratch_artifact


def test_scratch_space_removes_everything_on_success(tmp_path):
    with ScratchSpace(tmp_path) as scratch:
        written = scratch.write("upload", ".pdf", b"%PDF-1.4")
        nested = scratch.path / "pages"
        nested.mkdir()
        (nested / "page_1.jpg").write_bytes(b"x")
        assert written.exists()

    assert list(tmp_path.iterdir()) == []


def test_scratch_space_removes_everything_on_error(tmp_path):
    with pytest.raises(RuntimeError):
        with ScratchSpace(tmp_path) as scratch:
            scratch.write("upload", ".jpg", b"data")
            scratch.artifact("never-written", ".jpg")
            raise RuntimeError("stage failed")

    assert list(tmp_path.iterdir()) == []


def test_discard_is_idempotent(tmp_path):
    path = tmp_path / "file.jpg"
    path.write_bytes(b"x")

    discard(path)
    discard(path)
    discard(tmp_path / "never-existed")

    assert not path.exists()


def test_scratch_artifact_tolerates_early_removal(tmp_path):
    path = tmp_path / "tmp.jpg"
    with scratch_artifact(path):
        path.write_bytes(b"x")
        path.unlink()
    assert not path.exists()


def test_closed_scratch_space_has_no_path(tmp_path):
    with pytest.raises(RuntimeError):
        ScratchSpace(tmp_path).path
