"""Application configuration loading."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path

from pdf_merger.core.utils import env_float, env_int, new_token

logger = logging.getLogger(__name__)

MB = 1024 * 1024
DEFAULT_MAX_FILE_SIZE_MB = 50
DEFAULT_MAX_FILES_PER_SESSION = 50
DEFAULT_FILE_EXPIRY_SECONDS = 3600  # 1 hour, shared by uploads and merged output
DEFAULT_SCRATCH_EXPIRY_SECONDS = 300  # normalizer copies only live mid-request
DEFAULT_NORMALIZER_TIMEOUT_SECONDS = 120.0
MAX_FILENAME_LENGTH = 100


def resolve_storage_root() -> Path:
    """Resolve the base directory for uploads, merged output and state."""
    env_override = os.environ.get("STORAGE_ROOT")
    if env_override:
        return Path(env_override)
    return Path(__file__).resolve().parents[1] / "storage"


def _positive(name: str, value: float, default: float) -> float:
    if value <= 0:
        logger.warning("[settings] Non-positive %s=%s; using %s", name, value, default)
        return default
    return value


@dataclass(frozen=True)
class RuntimeConfig:
    """Runtime configuration values consumed by the Flask app and services."""

    storage_root: Path
    upload_root: Path
    merged_root: Path
    scratch_root: Path
    state_root: Path
    max_file_size_bytes: int = DEFAULT_MAX_FILE_SIZE_MB * MB
    max_files_per_session: int = DEFAULT_MAX_FILES_PER_SESSION
    file_expiry_seconds: int = DEFAULT_FILE_EXPIRY_SECONDS
    scratch_expiry_seconds: int = DEFAULT_SCRATCH_EXPIRY_SECONDS
    normalizer_timeout_seconds: float = DEFAULT_NORMALIZER_TIMEOUT_SECONDS
    sweep_interval_seconds: int = 0
    ghostscript_path: str | None = None
    secret_key: str = field(default="", repr=False)

    @property
    def max_content_length(self) -> int:
        # Leave headroom for multipart framing around a maximum-size file.
        return self.max_file_size_bytes + MB

    @property
    def max_file_size_mb(self) -> int:
        return int(self.max_file_size_bytes / MB)

    @classmethod
    def for_root(cls, storage_root: Path, **overrides) -> "RuntimeConfig":
        """Build a config whose directories all live under ``storage_root``."""
        storage_root = Path(storage_root)
        base = cls(
            storage_root=storage_root,
            upload_root=storage_root / "uploads",
            merged_root=storage_root / "merged",
            scratch_root=storage_root / "uploads" / "temp",
            state_root=storage_root / "state",
        )
        return replace(base, **overrides) if overrides else base


def load_runtime_config() -> RuntimeConfig:
    """Load runtime configuration from environment variables."""
    root = resolve_storage_root()
    upload_root = Path(os.environ.get("UPLOAD_FOLDER") or root / "uploads")
    secret_key = os.environ.get("SECRET_KEY")
    if not secret_key:
        logger.warning("[settings] SECRET_KEY not set; sessions will not survive a restart")
        secret_key = new_token(32)

    max_mb = _positive(
        "MAX_FILE_SIZE_MB",
        env_float("MAX_FILE_SIZE_MB", DEFAULT_MAX_FILE_SIZE_MB),
        DEFAULT_MAX_FILE_SIZE_MB,
    )

    return RuntimeConfig(
        storage_root=root,
        upload_root=upload_root,
        merged_root=Path(os.environ.get("MERGED_FOLDER") or root / "merged"),
        scratch_root=Path(os.environ.get("SCRATCH_FOLDER") or upload_root / "temp"),
        state_root=Path(os.environ.get("STATE_FOLDER") or root / "state"),
        max_file_size_bytes=int(max_mb * MB),
        max_files_per_session=int(_positive(
            "MAX_FILES_PER_SESSION",
            env_int("MAX_FILES_PER_SESSION", DEFAULT_MAX_FILES_PER_SESSION),
            DEFAULT_MAX_FILES_PER_SESSION,
        )),
        file_expiry_seconds=int(_positive(
            "FILE_EXPIRY_SECONDS",
            env_int("FILE_EXPIRY_SECONDS", DEFAULT_FILE_EXPIRY_SECONDS),
            DEFAULT_FILE_EXPIRY_SECONDS,
        )),
        scratch_expiry_seconds=int(_positive(
            "SCRATCH_EXPIRY_SECONDS",
            env_int("SCRATCH_EXPIRY_SECONDS", DEFAULT_SCRATCH_EXPIRY_SECONDS),
            DEFAULT_SCRATCH_EXPIRY_SECONDS,
        )),
        normalizer_timeout_seconds=_positive(
            "NORMALIZER_TIMEOUT_SECONDS",
            env_float("NORMALIZER_TIMEOUT_SECONDS", DEFAULT_NORMALIZER_TIMEOUT_SECONDS),
            DEFAULT_NORMALIZER_TIMEOUT_SECONDS,
        ),
        sweep_interval_seconds=max(0, env_int("SWEEP_INTERVAL_SECONDS", 0)),
        ghostscript_path=os.environ.get("GHOSTSCRIPT_PATH") or None,
        secret_key=secret_key,
    )
