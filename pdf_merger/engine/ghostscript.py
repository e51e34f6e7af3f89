"""Ghostscript normalization for PDFs whose streams PyPDF2 cannot decode.

Re-writes one file as a PDF 1.4 compatible copy in a scratch directory. This
is only ever a fallback: the concatenator calls it for a single input after
that input failed to open, then retries with the normalized copy.
"""

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from pdf_merger.config import DEFAULT_NORMALIZER_TIMEOUT_SECONDS
from pdf_merger.core.utils import new_token

logger = logging.getLogger(__name__)

GHOSTSCRIPT_NAMES = ("gs", "gswin64c", "gswin32c")
WELL_KNOWN_PATHS = (
    "/usr/bin/gs",
    "/usr/local/bin/gs",
    "/opt/homebrew/bin/gs",
    "/opt/local/bin/gs",
)


def _is_executable(path: str) -> bool:
    return os.path.isfile(path) and os.access(path, os.X_OK)


def get_ghostscript_command(override: Optional[str] = None) -> Optional[str]:
    """Locate a Ghostscript binary: explicit override, PATH, then install paths."""
    if override:
        if _is_executable(override):
            return override
        found = shutil.which(override)
        if found:
            return found
        logger.warning("[normalize] GHOSTSCRIPT_PATH=%s is not executable; searching PATH", override)

    for name in GHOSTSCRIPT_NAMES:
        found = shutil.which(name)
        if found:
            return found

    for path in WELL_KNOWN_PATHS:
        if _is_executable(path):
            return path
    return None


def build_normalize_command(gs_cmd: str, input_path: Path, output_path: Path) -> list[str]:
    """Fixed argument list; never passed through a shell."""
    return [
        gs_cmd,
        "-sDEVICE=pdfwrite",
        "-dCompatibilityLevel=1.4",
        "-dPDFSETTINGS=/prepress",
        "-dNOPAUSE",
        "-dBATCH",
        "-dQUIET",
        "-dSAFER",
        f"-sOutputFile={output_path}",
        str(input_path),
    ]


def translate_ghostscript_error(stderr: str, return_code: int) -> str:
    """Translate Ghostscript stderr to a short readable reason.

    Also logs the full stderr for debugging purposes.
    """
    logger.error(f"Ghostscript failed (exit code {return_code}). Full error:\n{stderr}")

    stderr_lower = (stderr or "").lower()

    if 'invalidfileaccess' in stderr_lower or 'password' in stderr_lower:
        return "PDF is password-protected or locked"
    if 'typecheck' in stderr_lower or 'rangecheck' in stderr_lower:
        return "PDF has corrupted internal data"
    if any(x in stderr_lower for x in ['undefined', 'ioerror', 'syntaxerror', 'eofread']):
        return "PDF is damaged or corrupted"
    return f"Ghostscript exit code {return_code}"


def normalize_pdf(
    input_path: Path,
    scratch_dir: Path,
    timeout: float = DEFAULT_NORMALIZER_TIMEOUT_SECONDS,
    gs_cmd: Optional[str] = None,
) -> Optional[Path]:
    """Re-encode ``input_path`` into a fresh scratch file.

    Args:
        input_path: Source PDF that failed to open.
        scratch_dir: Directory for the normalized copy.
        timeout: Hard wall-clock limit; the process is killed and reaped on expiry.
        gs_cmd: Ghostscript override (path or name), e.g. from GHOSTSCRIPT_PATH.

    Returns:
        Path of the normalized copy, or None when Ghostscript is unavailable
        or the conversion did not produce a non-empty file.
    """
    resolved = get_ghostscript_command(gs_cmd)
    if not resolved:
        logger.warning("[normalize] Ghostscript not installed; cannot normalize %s", input_path.name)
        return None

    if not input_path.exists():
        logger.error("[normalize] File not found: %s", input_path)
        return None

    try:
        scratch_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"[normalize] Cannot create scratch directory {scratch_dir}: {e}")
        return None

    output_path = scratch_dir / f"gs_{new_token(8)}.pdf"
    cmd = build_normalize_command(resolved, input_path, output_path)
    file_mb = input_path.stat().st_size / (1024 * 1024)
    logger.info(f"[normalize] Re-encoding {input_path.name} ({file_mb:.1f}MB) as PDF 1.4")

    try:
        # run() kills and waits for the child when the timeout fires.
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.error(f"[normalize] Timed out after {timeout:.0f}s on {input_path.name}")
        output_path.unlink(missing_ok=True)
        return None
    except OSError as e:
        logger.error(f"[normalize] Could not start Ghostscript: {e}")
        output_path.unlink(missing_ok=True)
        return None

    if result.returncode != 0:
        reason = translate_ghostscript_error(result.stderr, result.returncode)
        logger.warning(f"[normalize] {input_path.name}: {reason}")
        output_path.unlink(missing_ok=True)
        return None

    if not output_path.exists() or output_path.stat().st_size == 0:
        logger.warning(f"[normalize] {input_path.name}: output file not created")
        output_path.unlink(missing_ok=True)
        return None

    out_mb = output_path.stat().st_size / (1024 * 1024)
    logger.info(f"[normalize] {input_path.name}: {file_mb:.1f}MB -> {out_mb:.1f}MB")
    return output_path
