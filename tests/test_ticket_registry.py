import os
from pathlib import Path

import pytest

from pdf_merger.core.exceptions import ExpiredError, NotFoundError
from pdf_merger.services.sweeper import RetentionSweeper
from pdf_merger.services.ticket_registry import (
    MergedArtifact,
    TicketRegistry,
    is_valid_download_id,
)
from pdf_merger.storage.blob_store import FilesystemBlobStore
from pdf_merger.storage.session_store import SessionStore, new_session_id

CREATED = 1_700_000_000.0
EPS = 0.001


@pytest.fixture
def tickets(tmp_path):
    return TicketRegistry(SessionStore(tmp_path / "state"), FilesystemBlobStore(tmp_path / "merged"))


def _artifact(tickets, session_id, download_id="a" * 32):
    stored_name = f"{download_id}_merged_20240101_120000.pdf"
    path = tickets.blobs.put(session_id, stored_name, b"%PDF-1.4 merged")
    return MergedArtifact(
        download_id=download_id,
        filename="merged_20240101_120000.pdf",
        stored_name=stored_name,
        path=str(path),
        created_at=CREATED,
        source_file_count=2,
    )


def test_resolve_inside_window_succeeds_repeatedly(tickets):
    sid = new_session_id()
    artifact = _artifact(tickets, sid)
    assert tickets.issue(sid, artifact) == artifact.download_id

    for _ in range(3):
        assert tickets.resolve(sid, artifact.download_id, now=CREATED + 3600 - EPS) == artifact


def test_resolve_after_window_expires_and_deletes_file(tickets):
    sid = new_session_id()
    artifact = _artifact(tickets, sid)
    tickets.issue(sid, artifact)

    with pytest.raises(ExpiredError) as ctx:
        tickets.resolve(sid, artifact.download_id, now=CREATED + 3600 + EPS)
    assert ctx.value.status_code == 410
    assert not Path(artifact.path).exists()

    with pytest.raises(NotFoundError):
        tickets.resolve(sid, artifact.download_id, now=CREATED + 3600 + EPS)


def test_foreign_session_cannot_resolve(tickets):
    owner, other = new_session_id(), new_session_id()
    artifact = _artifact(tickets, owner)
    tickets.issue(owner, artifact)

    with pytest.raises(NotFoundError):
        tickets.resolve(other, artifact.download_id, now=CREATED)
    assert Path(artifact.path).exists()


def test_missing_backing_file_purges_ticket(tickets):
    sid = new_session_id()
    artifact = _artifact(tickets, sid)
    tickets.issue(sid, artifact)
    Path(artifact.path).unlink()

    with pytest.raises(NotFoundError):
        tickets.resolve(sid, artifact.download_id, now=CREATED)
    assert artifact.download_id not in tickets.sessions.load(sid, "merged")


def test_swept_artifact_reports_expired(tickets, tmp_path):
    sid = new_session_id()
    artifact = _artifact(tickets, sid)
    tickets.issue(sid, artifact)
    os.utime(artifact.path, (CREATED, CREATED))
    sweeper = RetentionSweeper(
        upload_root=tmp_path / "uploads",
        merged_root=tmp_path / "merged",
        scratch_root=tmp_path / "uploads" / "temp",
        expiry_seconds=3600,
        scratch_expiry_seconds=300,
    )
    later = CREATED + 3601

    assert sweeper.sweep(now=later).files_deleted == [artifact.path]

    with pytest.raises(ExpiredError):
        tickets.resolve(sid, artifact.download_id, now=later)
    with pytest.raises(NotFoundError):
        tickets.resolve(sid, artifact.download_id, now=later)


def test_discard_is_idempotent(tickets):
    sid = new_session_id()
    artifact = _artifact(tickets, sid)
    tickets.issue(sid, artifact)

    assert tickets.discard(sid, artifact.download_id) is True
    assert tickets.discard(sid, artifact.download_id) is False
    assert not Path(artifact.path).exists()


@pytest.mark.parametrize(
    "value, ok",
    [
        ("0123456789abcdef0123456789abcdef", True),
        ("0123456789ABCDEF0123456789ABCDEF", False),
        ("0123456789abcdef", False),
        ("0123456789abcdef0123456789abcdeg", False),
        ("../../../../etc/passwd0123456789a", False),
        (None, False),
    ],
)
def test_download_id_syntax(value, ok):
    assert is_valid_download_id(value) is ok
