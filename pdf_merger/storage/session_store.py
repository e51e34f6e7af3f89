"""Explicit per-session key/value tables.

Every component that needs session state receives a ``SessionStore`` and a
session id; nothing reads the web framework's session object directly. Each
session owns one small JSON document (``<state_root>/<session_id>.json``)
holding named tables such as ``files`` and ``merged``.
"""

from __future__ import annotations

import contextlib
import fcntl
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple

from pdf_merger.core.exceptions import StorageError
from pdf_merger.core.utils import is_hex_token, new_token, short_id
from pdf_merger.storage.blob_store import atomic_write_bytes

logger = logging.getLogger(__name__)

SESSION_ID_BYTES = 16
SESSION_ID_LENGTH = SESSION_ID_BYTES * 2
LOCK_SCOPES = ("state", "merge")


def new_session_id() -> str:
    return new_token(SESSION_ID_BYTES)


def is_valid_session_id(session_id: object) -> bool:
    return is_hex_token(session_id, SESSION_ID_LENGTH)


class SessionLock:
    """Re-entrant lock held across threads and worker processes.

    A thread ``RLock`` orders threads in this process; an exclusive
    ``flock`` on ``path`` orders gunicorn workers sharing the state directory.
    The file lock is taken by the outermost acquire only.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._rlock = threading.RLock()
        self._depth = 0
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._depth > 0

    def acquire(self) -> None:
        self._rlock.acquire()
        if self._depth == 0:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o600)
            except OSError as exc:
                self._rlock.release()
                logger.error("[session] Cannot open lock file %s: %s", self.path, exc)
                raise StorageError("Failed to lock session data", exc) from exc
            fcntl.flock(fd, fcntl.LOCK_EX)
            self._fd = fd
        self._depth += 1

    def release(self) -> None:
        self._depth -= 1
        if self._depth == 0 and self._fd is not None:
            fd, self._fd = self._fd, None
            try:
                fcntl.flock(fd, fcntl.LOCK_UN)
            finally:
                os.close(fd)
        self._rlock.release()

    def __enter__(self) -> "SessionLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()


class SessionStore:
    """JSON-file backed session tables with a lock per session."""

    def __init__(self, state_root: Path) -> None:
        self.state_root = Path(state_root)
        self._locks: Dict[Tuple[str, str], SessionLock] = {}
        self._locks_guard = threading.Lock()

    def _path(self, session_id: str) -> Path:
        if not is_valid_session_id(session_id):
            raise ValueError("Invalid session id")
        return self.state_root / f"{session_id}.json"

    def _lock_path(self, session_id: str, scope: str) -> Path:
        if scope not in LOCK_SCOPES:
            raise ValueError(f"Unknown lock scope: {scope}")
        if not is_valid_session_id(session_id):
            raise ValueError("Invalid session id")
        suffix = ".lock" if scope == "state" else f".{scope}.lock"
        return self.state_root / f"{session_id}{suffix}"

    def lock(self, session_id: str, scope: str = "state") -> SessionLock:
        """Per-session lock. ``state`` guards table read-modify-write;
        ``merge`` serializes whole merge runs of one session.
        """
        path = self._lock_path(session_id, scope)
        with self._locks_guard:
            lock = self._locks.get((session_id, scope))
            if lock is None:
                lock = SessionLock(path)
                self._locks[(session_id, scope)] = lock
            return lock

    def _read_document(self, session_id: str) -> Dict[str, Any]:
        path = self._path(session_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            logger.error("[session %s] Failed to read state: %s", short_id(session_id), exc)
            return {}
        try:
            doc = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("[session %s] Corrupt state file; starting fresh", short_id(session_id))
            return {}
        return doc if isinstance(doc, dict) else {}

    def _write_document(self, session_id: str, doc: Dict[str, Any]) -> None:
        path = self._path(session_id)
        try:
            self.state_root.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(doc, indent=2, sort_keys=True).encode("utf-8")
            atomic_write_bytes(path, payload)
        except OSError as exc:
            logger.error("[session %s] Failed to persist state: %s", short_id(session_id), exc)
            raise StorageError("Failed to save session data", exc) from exc

    def exists(self, session_id: str) -> bool:
        return is_valid_session_id(session_id) and self._path(session_id).is_file()

    def load(self, session_id: str, table: str) -> Dict[str, Any]:
        """Return a copy of ``table`` for the session (empty when absent)."""
        with self.lock(session_id):
            value = self._read_document(session_id).get(table)
            return dict(value) if isinstance(value, dict) else {}

    @contextlib.contextmanager
    def edit(self, session_id: str, table: str) -> Iterator[Dict[str, Any]]:
        """Lock the session, yield ``table`` for mutation, then persist it."""
        with self.lock(session_id):
            doc = self._read_document(session_id)
            current = doc.get(table)
            data: Dict[str, Any] = dict(current) if isinstance(current, dict) else {}
            before = json.dumps(data, sort_keys=True)
            yield data
            if json.dumps(data, sort_keys=True) != before:
                doc[table] = data
                self._write_document(session_id, doc)

    def last_activity(self, session_id: str) -> Optional[float]:
        """Mtime of the session document, or of its lock files if it has none."""
        candidates = [self._path(session_id)]
        if not candidates[0].exists():
            candidates = [self._lock_path(session_id, scope) for scope in LOCK_SCOPES]
        mtimes = []
        for path in candidates:
            try:
                mtimes.append(path.lstat().st_mtime)
            except OSError:
                continue
        return max(mtimes) if mtimes else None

    def discard(self, session_id: str) -> None:
        """Drop the session document, its lock files and in-memory locks."""
        with self.lock(session_id):
            self._path(session_id).unlink(missing_ok=True)
        with self._locks_guard:
            for scope in LOCK_SCOPES:
                lock = self._locks.get((session_id, scope))
                if lock is not None and lock.held:
                    continue
                self._locks.pop((session_id, scope), None)
                self._lock_path(session_id, scope).unlink(missing_ok=True)

    def session_ids(self) -> list[str]:
        """Sessions with a document or a leftover lock file on disk."""
        if not self.state_root.is_dir():
            return []
        found = set()
        for pattern in ("*.json", "*.lock"):
            for p in self.state_root.glob(pattern):
                stem = p.name.split(".", 1)[0]
                if is_valid_session_id(stem):
                    found.add(stem)
        return sorted(found)
