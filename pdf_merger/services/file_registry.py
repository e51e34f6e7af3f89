"""Per-session registry of uploaded PDFs."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pdf_merger.config import DEFAULT_MAX_FILES_PER_SESSION, MAX_FILENAME_LENGTH
from pdf_merger.core.exceptions import NotFoundError, StorageError, ValidationError
from pdf_merger.core.utils import new_token, short_id
from pdf_merger.storage.blob_store import FilesystemBlobStore
from pdf_merger.storage.session_store import SessionStore

logger = logging.getLogger(__name__)

FILES_TABLE = "files"
FILE_ID_BYTES = 8

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_filename(name: str, max_length: int = MAX_FILENAME_LENGTH) -> str:
    """Replace characters outside ``[A-Za-z0-9._-]`` and bound the length."""
    safe = _UNSAFE_CHARS.sub("_", name or "")[:max_length]
    if not safe.strip("._"):
        return "document.pdf"
    return safe


@dataclass(frozen=True)
class UploadedFile:
    id: str
    original_name: str
    stored_name: str
    path: str
    size_bytes: int
    uploaded_at: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UploadedFile":
        return cls(
            id=str(data["id"]),
            original_name=str(data["original_name"]),
            stored_name=str(data["stored_name"]),
            path=str(data["path"]),
            size_bytes=int(data["size_bytes"]),
            uploaded_at=float(data["uploaded_at"]),
        )


class FileRegistry:
    """Maps opaque file ids to stored blobs, scoped to one session each."""

    def __init__(
        self,
        sessions: SessionStore,
        blobs: FilesystemBlobStore,
        max_files: int = DEFAULT_MAX_FILES_PER_SESSION,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.sessions = sessions
        self.blobs = blobs
        self.max_files = max_files
        self.clock = clock

    def put(self, session_id: str, original_name: str, data: bytes) -> UploadedFile:
        """Store an already validated upload and return its handle."""
        stored_name = None
        try:
            with self.sessions.edit(session_id, FILES_TABLE) as table:
                self._drop_missing(session_id, table)
                if len(table) >= self.max_files:
                    raise ValidationError.too_many_files(self.max_files)

                file_id = new_token(FILE_ID_BYTES)
                while file_id in table:
                    file_id = new_token(FILE_ID_BYTES)
                stored_name = f"{file_id}_{sanitize_filename(original_name)}"

                path = self.blobs.put(session_id, stored_name, data)
                entry = UploadedFile(
                    id=file_id,
                    original_name=original_name,
                    stored_name=stored_name,
                    path=str(path),
                    size_bytes=len(data),
                    uploaded_at=self.clock(),
                )
                table[file_id] = entry.to_dict()
        except StorageError:
            # Metadata could not be persisted; do not leave an orphaned blob.
            if stored_name:
                self.blobs.delete(session_id, stored_name)
            raise

        logger.info(
            "[upload %s] Stored %s as %s (%d bytes)",
            short_id(session_id), original_name, stored_name, entry.size_bytes,
        )
        return entry

    def get(self, session_id: str, file_id: str) -> UploadedFile:
        """Look up a file id in this session's own table only."""
        table = self.sessions.load(session_id, FILES_TABLE)
        raw = table.get(file_id) if isinstance(file_id, str) else None
        if raw is None:
            raise NotFoundError.files_missing()

        entry = UploadedFile.from_dict(raw)
        if not self.blobs.exists(session_id, entry.stored_name):
            logger.warning(
                "[upload %s] Blob for %s vanished; purging entry", short_id(session_id), file_id
            )
            self.take(session_id, file_id)
            raise NotFoundError.for_file(entry.original_name)
        return entry

    def list(self, session_id: str) -> List[UploadedFile]:
        with self.sessions.edit(session_id, FILES_TABLE) as table:
            self._drop_missing(session_id, table)
        entries = [UploadedFile.from_dict(raw) for raw in table.values()]
        return sorted(entries, key=lambda e: e.uploaded_at)

    def take(self, session_id: str, file_id: str) -> Optional[UploadedFile]:
        """Remove an entry and its blob in one locked step.

        Returns the removed entry, or None if it was already gone. Two callers
        racing on the same id get exactly one non-None result between them.
        """
        with self.sessions.edit(session_id, FILES_TABLE) as table:
            raw = table.pop(file_id, None)
            if raw is None:
                return None
            entry = UploadedFile.from_dict(raw)
            self.blobs.delete(session_id, entry.stored_name)
        return entry

    def remove(self, session_id: str, file_id: str) -> bool:
        """Idempotent delete; True if an entry existed."""
        removed = self.take(session_id, file_id)
        if removed is not None:
            logger.info("[upload %s] Removed %s", short_id(session_id), removed.stored_name)
        return removed is not None

    def _drop_missing(self, session_id: str, table: Dict[str, Any]) -> List[str]:
        """Drop entries whose blobs were reclaimed by the sweeper."""
        stale = [
            fid for fid, raw in table.items()
            if not self.blobs.exists(session_id, UploadedFile.from_dict(raw).stored_name)
        ]
        for fid in stale:
            table.pop(fid)
        if stale:
            logger.info("[upload %s] Dropped %d swept entries", short_id(session_id), len(stale))
        return stale

    def path_of(self, session_id: str, entry: UploadedFile) -> Path:
        return self.blobs.path_for(session_id, entry.stored_name)
