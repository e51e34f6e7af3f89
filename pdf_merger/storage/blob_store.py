"""Token-addressed blob storage.

Blobs live under ``<root>/<namespace>/<name>``. The namespace is a session
id and the name always starts with a random token, so callers never build
paths from user input. Only this module touches the directory layout; swap
``FilesystemBlobStore`` for another backend without changing the registries.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from pdf_merger.core.exceptions import StorageError

logger = logging.getLogger(__name__)


def _check_part(part: str) -> str:
    if not part or part in (".", "..") or part != Path(part).name or "\\" in part:
        raise ValueError(f"Invalid blob path component: {part!r}")
    return part


def atomic_write_bytes(target: Path, data: bytes) -> None:
    """Write ``data`` to ``target`` via a sibling temp file and ``os.replace``."""
    fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".tmp_", suffix=".part")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class FilesystemBlobStore:
    """Blob store backed by one directory tree."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def namespace_dir(self, namespace: str, create: bool = False) -> Path:
        directory = self.root / _check_part(namespace)
        if create:
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                logger.error("[storage] Failed to create %s: %s", directory, exc)
                raise StorageError("Failed to create upload directory", exc) from exc
        return directory

    def path_for(self, namespace: str, name: str) -> Path:
        return self.namespace_dir(namespace) / _check_part(name)

    def reserve(self, namespace: str, name: str) -> Path:
        """Return the path for a new blob, creating its namespace directory."""
        return self.namespace_dir(namespace, create=True) / _check_part(name)

    def put(self, namespace: str, name: str, data: bytes) -> Path:
        target = self.reserve(namespace, name)
        try:
            atomic_write_bytes(target, data)
        except OSError as exc:
            logger.error("[storage] Failed to write %s: %s", target, exc)
            raise StorageError.write_failed("uploaded file", exc) from exc
        return target

    def exists(self, namespace: str, name: str) -> bool:
        return self.path_for(namespace, name).is_file()

    def size(self, namespace: str, name: str) -> int:
        return self.path_for(namespace, name).stat().st_size

    def delete(self, namespace: str, name: str) -> bool:
        """Delete a blob. Missing blobs are not an error."""
        path = self.path_for(namespace, name)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.error("[storage] Failed to delete %s: %s", path, exc)
            return False
