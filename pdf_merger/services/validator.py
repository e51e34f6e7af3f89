"""Upload validation: size bound, content sniffing and PDF magic bytes.

Checks run in order and stop at the first failure. Nothing is written to
disk here; a rejected upload leaves no trace.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import BinaryIO, Optional

from pdf_merger.config import DEFAULT_MAX_FILE_SIZE_MB, MB
from pdf_merger.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
PDF_MAGIC = b"%PDF"
SNIFF_BYTES = 2048


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    reason: str = ""

    @classmethod
    def accepted(cls) -> "ValidationResult":
        return cls(ok=True)

    @classmethod
    def rejected(cls, reason: str) -> "ValidationResult":
        return cls(ok=False, reason=reason)


def sniff_mime_type(sample: bytes) -> str:
    """Detect a MIME type from leading bytes with libmagic."""
    # Lazily import so the app can start (and report) without libmagic present.
    import magic

    return magic.from_buffer(sample, mime=True)


def _read_sample(stream: BinaryIO) -> bytes:
    try:
        start = stream.tell()
    except (AttributeError, OSError):
        start = None
    sample = stream.read(SNIFF_BYTES) or b""
    if start is not None:
        stream.seek(start)
    return sample


def validate_upload(
    stream: BinaryIO,
    declared_size: int,
    declared_mime: Optional[str] = None,
    max_size_bytes: int = DEFAULT_MAX_FILE_SIZE_MB * MB,
) -> ValidationResult:
    """Decide whether an uploaded byte stream is plausibly a PDF.

    Args:
        stream: Seekable binary stream positioned at the start of the upload.
        declared_size: Size in bytes reported for the upload.
        declared_mime: Client-declared content type; logged, never trusted.
        max_size_bytes: Per-file size ceiling.

    Returns:
        ValidationResult with a user-facing reason when rejected.
    """
    if declared_size > max_size_bytes:
        limit_mb = max_size_bytes / MB
        return ValidationResult.rejected(f"File size exceeds {limit_mb:.0f}MB limit")

    sample = _read_sample(stream)
    if not sample:
        return ValidationResult.rejected("No file was uploaded")

    sniffed = sniff_mime_type(sample)
    if sniffed != PDF_MIME:
        logger.info("[upload] Rejected content type %s (declared %s)", sniffed, declared_mime)
        return ValidationResult.rejected("Invalid file type. Only PDF files are allowed.")

    if sample[:4] != PDF_MAGIC:
        return ValidationResult.rejected("Invalid PDF file format")

    return ValidationResult.accepted()


def raise_for_upload(
    stream: BinaryIO,
    declared_size: int,
    declared_mime: Optional[str] = None,
    max_size_bytes: int = DEFAULT_MAX_FILE_SIZE_MB * MB,
) -> None:
    """Like ``validate_upload`` but raise ``ValidationError`` on rejection."""
    result = validate_upload(stream, declared_size, declared_mime, max_size_bytes)
    if not result.ok:
        raise ValidationError(result.reason)
