"""Merge pipeline: sweep, resolve uploads, concatenate, issue a ticket, consume sources."""

from __future__ import annotations

import functools
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from pdf_merger.config import RuntimeConfig
from pdf_merger.core.exceptions import ValidationError
from pdf_merger.core.utils import new_token, short_id
from pdf_merger.engine.concatenate import Normalizer, SourceDocument, concatenate
from pdf_merger.engine.ghostscript import normalize_pdf
from pdf_merger.services.file_registry import FileRegistry
from pdf_merger.services.sweeper import RetentionSweeper
from pdf_merger.services.ticket_registry import DOWNLOAD_ID_BYTES, MergedArtifact, TicketRegistry
from pdf_merger.storage.blob_store import FilesystemBlobStore
from pdf_merger.storage.session_store import SessionStore

logger = logging.getLogger(__name__)

MIN_MERGE_FILES = 2


def parse_file_ids(raw: object) -> List[str]:
    """Validate the caller-ordered list of file ids from a merge request."""
    if not isinstance(raw, (list, tuple)) or not raw:
        raise ValidationError("No files specified for merging")
    if not all(isinstance(item, str) and item for item in raw):
        raise ValidationError("File ids must be non-empty strings")
    if len(set(raw)) != len(raw):
        raise ValidationError("The same file was listed more than once")
    if len(raw) < MIN_MERGE_FILES:
        raise ValidationError(f"Please select at least {MIN_MERGE_FILES} PDF files to merge")
    return list(raw)


@dataclass
class MergeService:
    """Everything one merge needs, wired together explicitly."""

    sessions: SessionStore
    files: FileRegistry
    tickets: TicketRegistry
    merged_blobs: FilesystemBlobStore
    sweeper: RetentionSweeper
    scratch_root: Path
    normalizer: Optional[Normalizer] = None
    clock: Callable[[], float] = time.time

    def merge(self, session_id: str, file_ids: Sequence[str]) -> MergedArtifact:
        """Merge the session's uploads in the given order.

        On success the sources are deleted and a download ticket exists. On
        any failure the sources and the file registry are left untouched.
        """
        self.sweeper.sweep()
        file_ids = parse_file_ids(file_ids)

        with self.sessions.lock(session_id, "merge"):
            entries = [self.files.get(session_id, file_id) for file_id in file_ids]

            created_at = self.clock()
            download_id = new_token(DOWNLOAD_ID_BYTES)
            stamp = datetime.fromtimestamp(created_at).strftime("%Y%m%d_%H%M%S")
            filename = f"merged_{stamp}.pdf"
            stored_name = f"{download_id}_{filename}"
            output_path = self.merged_blobs.reserve(session_id, stored_name)

            logger.info(
                "[merge %s] Merging %d files -> %s", short_id(session_id), len(entries), filename
            )
            started = time.time()
            result = concatenate(
                [SourceDocument(e.original_name, self.files.path_of(session_id, e)) for e in entries],
                output_path,
                self.scratch_root,
                self.normalizer,
            )

            artifact = MergedArtifact(
                download_id=download_id,
                filename=filename,
                stored_name=stored_name,
                path=str(output_path),
                created_at=created_at,
                source_file_count=len(entries),
            )
            try:
                self.tickets.issue(session_id, artifact)
            except Exception:
                self.merged_blobs.delete(session_id, stored_name)
                raise

            for entry in entries:
                if self.files.take(session_id, entry.id) is None:
                    logger.warning(
                        "[merge %s] Source %s was already removed", short_id(session_id), entry.id
                    )

        logger.info(
            "[merge %s] Done in %.2fs: %d pages, ticket %s",
            short_id(session_id), time.time() - started, result.page_count, short_id(download_id),
        )
        return artifact


def build_merge_service(config: RuntimeConfig) -> MergeService:
    """Wire stores, registries, sweeper and normalizer from one config."""
    sessions = SessionStore(config.state_root)
    upload_blobs = FilesystemBlobStore(config.upload_root)
    merged_blobs = FilesystemBlobStore(config.merged_root)
    sweeper = RetentionSweeper(
        upload_root=config.upload_root,
        merged_root=config.merged_root,
        scratch_root=config.scratch_root,
        expiry_seconds=config.file_expiry_seconds,
        scratch_expiry_seconds=config.scratch_expiry_seconds,
        sessions=sessions,
    )
    normalizer = functools.partial(
        normalize_pdf,
        timeout=config.normalizer_timeout_seconds,
        gs_cmd=config.ghostscript_path,
    )
    return MergeService(
        sessions=sessions,
        files=FileRegistry(sessions, upload_blobs, max_files=config.max_files_per_session),
        tickets=TicketRegistry(sessions, merged_blobs, expiry_seconds=config.file_expiry_seconds),
        merged_blobs=merged_blobs,
        sweeper=sweeper,
        scratch_root=config.scratch_root,
        normalizer=normalizer,
    )
