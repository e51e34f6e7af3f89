"""Retention sweeper: deletes expired uploads, merged output and scratch copies.

Runs synchronously at the start of every merge request. ``sweep_forever`` can
also drive it from a daemon thread when a periodic interval is configured.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from pdf_merger.storage.session_store import SessionStore, is_valid_session_id

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    files_deleted: List[str] = field(default_factory=list)
    dirs_removed: List[str] = field(default_factory=list)
    sessions_discarded: List[str] = field(default_factory=list)

    @property
    def deleted_count(self) -> int:
        return len(self.files_deleted) + len(self.dirs_removed) + len(self.sessions_discarded)


def _inside(path: Path, root: Path) -> bool:
    try:
        path.resolve().relative_to(root.resolve())
        return True
    except (OSError, ValueError):
        return False


class RetentionSweeper:
    """Age-based cleanup of the per-session directory trees."""

    def __init__(
        self,
        upload_root: Path,
        merged_root: Path,
        scratch_root: Path,
        expiry_seconds: int,
        scratch_expiry_seconds: int,
        sessions: Optional[SessionStore] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.upload_root = Path(upload_root)
        self.merged_root = Path(merged_root)
        self.scratch_root = Path(scratch_root)
        self.expiry_seconds = expiry_seconds
        self.scratch_expiry_seconds = scratch_expiry_seconds
        self.sessions = sessions
        self.clock = clock
        self._lock = threading.Lock()

    def sweep(self, now: Optional[float] = None) -> SweepReport:
        """Delete everything older than its window. Safe to call repeatedly."""
        now = self.clock() if now is None else now
        report = SweepReport()
        with self._lock:
            self._sweep_flat(self.scratch_root, now - self.scratch_expiry_seconds, report)
            for root in (self.upload_root, self.merged_root):
                self._sweep_session_dirs(root, now - self.expiry_seconds, report)
            self._discard_idle_sessions(now - self.expiry_seconds, report)

        if report.deleted_count:
            logger.info(
                "[sweep] Removed %d files, %d directories, %d idle sessions",
                len(report.files_deleted), len(report.dirs_removed), len(report.sessions_discarded),
            )
        return report

    def _expired(self, path: Path, cutoff: float) -> bool:
        try:
            return path.lstat().st_mtime < cutoff
        except OSError:
            return False

    def _delete_file(self, path: Path, root: Path, report: SweepReport) -> None:
        if not _inside(path, root):
            logger.warning("[sweep] Skipping %s outside %s", path, root)
            return
        try:
            path.unlink()
            report.files_deleted.append(str(path))
            logger.debug("[sweep] Deleted %s", path.name)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"[sweep] Failed to delete {path}: {e}")

    def _sweep_flat(self, directory: Path, cutoff: float, report: SweepReport) -> None:
        if not directory.is_dir() or directory.is_symlink():
            return
        for entry in sorted(directory.iterdir()):
            if entry.is_symlink() or not entry.is_file():
                continue
            if self._expired(entry, cutoff):
                self._delete_file(entry, directory, report)

    def _sweep_session_dirs(self, root: Path, cutoff: float, report: SweepReport) -> None:
        if not root.is_dir() or root.is_symlink():
            return
        scratch = self.scratch_root.resolve()
        for session_dir in sorted(root.iterdir()):
            if session_dir.is_symlink() or not session_dir.is_dir():
                continue
            if session_dir.resolve() == scratch or not _inside(session_dir, root):
                continue

            self._sweep_flat(session_dir, cutoff, report)

            try:
                if not any(session_dir.iterdir()):
                    session_dir.rmdir()
                    report.dirs_removed.append(str(session_dir))
            except OSError as e:
                logger.error(f"[sweep] Failed to remove directory {session_dir}: {e}")

    def _discard_idle_sessions(self, cutoff: float, report: SweepReport) -> None:
        """Drop session tables once every file they pointed at is gone."""
        if self.sessions is None:
            return
        for session_id in self.sessions.session_ids():
            if not is_valid_session_id(session_id):
                continue
            if (self.upload_root / session_id).exists() or (self.merged_root / session_id).exists():
                continue
            last = self.sessions.last_activity(session_id)
            if last is not None and last < cutoff:
                self.sessions.discard(session_id)
                report.sessions_discarded.append(session_id)


def sweep_forever(sweeper: RetentionSweeper, interval_seconds: int, stop: Optional[threading.Event] = None) -> None:
    """Background loop; only used when a periodic interval is configured."""
    stop = stop or threading.Event()
    logger.info("[sweep] Periodic sweeper started (every %ss)", interval_seconds)
    while not stop.wait(interval_seconds):
        try:
            sweeper.sweep()
        except Exception as e:
            logger.exception(f"[sweep] Periodic sweep failed: {e}")

