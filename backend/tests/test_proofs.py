import logging
from pathlib import Path

from backend.services.proofs import purge_proof_artifacts, resolve_local_proof


def test_purge_removes_local_files_and_delegates_the_rest(tmp_path):
    proofs_dir = tmp_path / "proofs"
    proofs_dir.mkdir()
    relative = proofs_dir / "a.jpg"
    absolute = proofs_dir / "b.jpg"
    outside = tmp_path / "outside.jpg"
    for path in (relative, absolute, outside):
        path.write_bytes(b"jpeg")

    stats = purge_proof_artifacts(
        [
            "a.jpg",
            absolute.as_uri(),
            "https://cdn.example.com/proofs/c.jpg",
            "../outside.jpg",
            "missing.jpg",
        ],
        proofs_dir,
    )

    assert stats == {"removed": 2, "delegated": 2, "failed": 0}
    assert not relative.exists()
    assert not absolute.exists()
    assert outside.exists()


def test_resolve_local_proof_rejects_blank_and_remote(tmp_path):
    assert resolve_local_proof("", tmp_path) is None
    assert resolve_local_proof("s3://bucket/key.jpg", tmp_path) is None
    assert resolve_local_proof("day1/photo.jpg", tmp_path) == (tmp_path / "day1" / "photo.jpg").resolve()


def test_purge_keeps_going_when_a_file_cannot_be_removed(tmp_path, monkeypatch, caplog):
    proofs_dir = tmp_path / "proofs"
    proofs_dir.mkdir()
    stuck = proofs_dir / "stuck.jpg"
    loose = proofs_dir / "loose.jpg"
    for path in (stuck, loose):
        path.write_bytes(b"jpeg")

    real_unlink = Path.unlink

    def flaky_unlink(self, *args, **kwargs):
        if self.name == "stuck.jpg":
            raise PermissionError("read-only volume")
        return real_unlink(self, *args, **kwargs)

    monkeypatch.setattr(Path, "unlink", flaky_unlink)
    with caplog.at_level(logging.WARNING, logger="backend.services.proofs"):
        stats = purge_proof_artifacts(["stuck.jpg", "loose.jpg"], proofs_dir)

    assert stats == {"removed": 1, "delegated": 0, "failed": 1}
    assert stuck.exists()
    assert not loose.exists()
    assert any("stuck.jpg" in record.getMessage() for record in caplog.records if record.levelno == logging.WARNING)
