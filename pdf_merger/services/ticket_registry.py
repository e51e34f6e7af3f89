"""Download tickets: bearer access to one merged PDF for a bounded window."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from pdf_merger.config import DEFAULT_FILE_EXPIRY_SECONDS
from pdf_merger.core.exceptions import ExpiredError, NotFoundError
from pdf_merger.core.utils import is_hex_token, short_id
from pdf_merger.storage.blob_store import FilesystemBlobStore
from pdf_merger.storage.session_store import SessionStore

logger = logging.getLogger(__name__)

MERGED_TABLE = "merged"
DOWNLOAD_ID_BYTES = 16
DOWNLOAD_ID_LENGTH = DOWNLOAD_ID_BYTES * 2


def is_valid_download_id(value: object) -> bool:
    """Syntactic check only: 32 lowercase hex characters."""
    return is_hex_token(value, DOWNLOAD_ID_LENGTH)


@dataclass(frozen=True)
class MergedArtifact:
    download_id: str
    filename: str
    stored_name: str
    path: str
    created_at: float
    source_file_count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MergedArtifact":
        return cls(
            download_id=str(data["download_id"]),
            filename=str(data["filename"]),
            stored_name=str(data["stored_name"]),
            path=str(data["path"]),
            created_at=float(data["created_at"]),
            source_file_count=int(data["source_file_count"]),
        )


class TicketRegistry:
    """Per-session table of merged artifacts keyed by download id.

    Tickets are not consumed on resolve: re-downloading inside the window
    keeps working until the artifact expires.
    """

    def __init__(
        self,
        sessions: SessionStore,
        blobs: FilesystemBlobStore,
        expiry_seconds: int = DEFAULT_FILE_EXPIRY_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.sessions = sessions
        self.blobs = blobs
        self.expiry_seconds = expiry_seconds
        self.clock = clock

    def issue(self, session_id: str, artifact: MergedArtifact) -> str:
        with self.sessions.edit(session_id, MERGED_TABLE) as table:
            table[artifact.download_id] = artifact.to_dict()
        logger.info(
            "[download %s] Ticket issued for %s (%d sources)",
            short_id(session_id), artifact.filename, artifact.source_file_count,
        )
        return artifact.download_id

    def resolve(self, session_id: str, download_id: str, now: Optional[float] = None) -> MergedArtifact:
        """Return the artifact, or raise NotFoundError / ExpiredError.

        Missing backing files and expired tickets are purged as a side effect.
        """
        now = self.clock() if now is None else now
        if not is_valid_download_id(download_id):
            raise NotFoundError.download_missing()

        raw = self.sessions.load(session_id, MERGED_TABLE).get(download_id)
        if raw is None:
            raise NotFoundError.download_missing()
        artifact = MergedArtifact.from_dict(raw)

        if now - artifact.created_at > self.expiry_seconds:
            logger.info("[download %s] Ticket %s expired", short_id(session_id), short_id(download_id))
            self.discard(session_id, download_id)
            raise ExpiredError.download_expired()

        if not self.blobs.exists(session_id, artifact.stored_name):
            logger.warning("[download %s] Backing file missing for %s", short_id(session_id), download_id)
            self._purge(session_id, download_id)
            raise NotFoundError("File not found")

        return artifact

    def discard(self, session_id: str, download_id: str) -> bool:
        """Delete the artifact file and its ticket; idempotent."""
        raw = self._purge(session_id, download_id)
        if raw is None:
            return False
        self.blobs.delete(session_id, MergedArtifact.from_dict(raw).stored_name)
        return True

    def _purge(self, session_id: str, download_id: str) -> Optional[Dict[str, Any]]:
        with self.sessions.edit(session_id, MERGED_TABLE) as table:
            return table.pop(download_id, None)

    def path_of(self, session_id: str, artifact: MergedArtifact) -> Path:
        return self.blobs.path_for(session_id, artifact.stored_name)
