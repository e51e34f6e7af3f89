"""Page-level PDF concatenation with a per-file normalization fallback.

Every source page is re-created in the output at its own size: a blank page
with the source page's exact mediabox dimensions is appended and the source
content is stamped onto it at the origin. Nothing is scaled or re-flowed.

Opening a source yields a typed outcome instead of an exception so the merge
loop can branch on *why* a file failed:

- ``Opened``: parsed, every page's content stream decoded.
- ``UnsupportedEncoding``: structure is readable but a content stream uses a
  filter PyPDF2 cannot decode (``NotImplementedError``) or the compressed data
  does not inflate (``PdfStreamError``/``zlib.error``). Worth normalizing.
- ``MalformedDocument``: the file itself is unreadable, locked, or empty.
  Normalizing would not help; the request fails.
"""

from __future__ import annotations

import logging
import os
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, NamedTuple, Optional, Sequence, Union

from PyPDF2 import PdfReader, PdfWriter, Transformation
from PyPDF2.errors import DependencyError, PdfReadError, PdfStreamError
from PyPDF2.generic import ArrayObject

from pdf_merger.core.exceptions import MergeFailure, StorageError

logger = logging.getLogger(__name__)

PORTRAIT = "portrait"
LANDSCAPE = "landscape"

Normalizer = Callable[[Path, Path], Optional[Path]]


class SourceDocument(NamedTuple):
    name: str
    path: Path


@dataclass
class Opened:
    reader: PdfReader
    page_count: int


@dataclass
class UnsupportedEncoding:
    detail: str


@dataclass
class MalformedDocument:
    detail: str


OpenOutcome = Union[Opened, UnsupportedEncoding, MalformedDocument]


@dataclass(frozen=True)
class PageInfo:
    width: float
    height: float
    orientation: str


@dataclass
class ConcatResult:
    output_path: Path
    source_count: int
    pages: List[PageInfo] = field(default_factory=list)
    normalized: List[str] = field(default_factory=list)

    @property
    def page_count(self) -> int:
        return len(self.pages)


def page_orientation(width: float, height: float) -> str:
    """Landscape only when strictly wider than tall; squares are portrait."""
    return LANDSCAPE if width > height else PORTRAIT


def _describe(exc: BaseException) -> str:
    text = str(exc).strip()
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


def _decode_contents(page) -> None:
    """Force every content stream of ``page`` through its filters."""
    contents = page.get("/Contents")
    if contents is None:
        return
    contents = contents.get_object()
    streams = contents if isinstance(contents, ArrayObject) else [contents]
    for stream in streams:
        stream.get_object().get_data()


def open_page_source(path: Path) -> OpenOutcome:
    """Open ``path`` and decode every page's content stream."""
    try:
        reader = PdfReader(str(path), strict=False)
        if reader.is_encrypted:
            try:
                if not reader.decrypt(""):
                    return MalformedDocument("document is password-protected")
            except (DependencyError, NotImplementedError, PdfReadError) as exc:
                return MalformedDocument(f"document is encrypted ({_describe(exc)})")
        pages = reader.pages
        page_count = len(pages)
    except NotImplementedError as exc:
        # Cross-reference or object streams with an unsupported encoding.
        return UnsupportedEncoding(_describe(exc))
    except Exception as exc:
        # PyPDF2 surfaces broken structure through many exception types.
        return MalformedDocument(_describe(exc))

    if page_count == 0:
        return MalformedDocument("document has no pages")

    for index in range(page_count):
        try:
            _decode_contents(pages[index])
        except (NotImplementedError, PdfStreamError, zlib.error) as exc:
            return UnsupportedEncoding(f"page {index + 1}: {_describe(exc)}")
        except Exception as exc:
            return MalformedDocument(f"page {index + 1}: {_describe(exc)}")

    return Opened(reader=reader, page_count=page_count)


def _append_pages(writer: PdfWriter, reader: PdfReader, pages: List[PageInfo]) -> None:
    for source_page in reader.pages:
        box = source_page.mediabox
        width = float(box.width)
        height = float(box.height)
        left = float(box.left)
        bottom = float(box.bottom)

        writer.add_blank_page(width=width, height=height)
        # The writer stores a copy; edit the page it will actually write.
        target = writer.pages[-1]
        if left or bottom:
            target.merge_transformed_page(source_page, Transformation().translate(-left, -bottom))
        else:
            target.merge_page(source_page)

        rotation = int(source_page.get("/Rotate", 0) or 0) % 360
        if rotation:
            target.rotate(rotation)

        pages.append(PageInfo(width=width, height=height, orientation=page_orientation(width, height)))


def _open_with_fallback(
    source: SourceDocument,
    scratch_dir: Path,
    normalizer: Optional[Normalizer],
    scratch_files: List[Path],
    normalized: List[str],
) -> Opened:
    outcome = open_page_source(source.path)
    if isinstance(outcome, Opened):
        return outcome

    if isinstance(outcome, MalformedDocument):
        logger.warning("[merge] %s is unreadable: %s", source.name, outcome.detail)
        raise MergeFailure.damaged(source.name, outcome.detail)

    logger.info("[merge] %s needs normalization: %s", source.name, outcome.detail)
    converted = normalizer(source.path, scratch_dir) if normalizer else None
    if converted is None:
        raise MergeFailure.unsupported_compression(source.name, outcome.detail)
    scratch_files.append(converted)

    retried = open_page_source(converted)
    if not isinstance(retried, Opened):
        logger.warning("[merge] %s still unreadable after normalization: %s", source.name, retried.detail)
        raise MergeFailure.unsupported_compression(source.name, retried.detail)

    normalized.append(source.name)
    return retried


def concatenate(
    sources: Sequence[SourceDocument],
    output_path: Path,
    scratch_dir: Path,
    normalizer: Optional[Normalizer] = None,
) -> ConcatResult:
    """Concatenate ``sources`` in the given order into ``output_path``.

    Args:
        sources: Ordered documents; the order is used as-is.
        output_path: Final location of the merged PDF.
        scratch_dir: Where normalized copies may be written.
        normalizer: Called once per file whose streams cannot be decoded.

    Returns:
        ConcatResult describing every output page.

    Raises:
        MergeFailure: A source could not be opened, even after normalization.
        StorageError: The output could not be written.
    """
    if not sources:
        raise ValueError("No files specified for merging")

    writer = PdfWriter()
    result = ConcatResult(output_path=output_path, source_count=len(sources))
    scratch_files: List[Path] = []
    tmp_path = output_path.with_name(f".{output_path.name}.part")

    try:
        for source in sources:
            opened = _open_with_fallback(
                source, scratch_dir, normalizer, scratch_files, result.normalized
            )
            before = len(result.pages)
            try:
                _append_pages(writer, opened.reader, result.pages)
            except Exception as exc:
                raise MergeFailure.damaged(source.name, _describe(exc)) from exc
            logger.info(
                "[merge] Imported %d pages from %s", len(result.pages) - before, source.name
            )

        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "wb") as handle:
                writer.write(handle)
            os.replace(tmp_path, output_path)
        except OSError as exc:
            logger.error("[merge] Failed to write %s: %s", output_path, exc)
            raise StorageError.write_failed("merged PDF", exc) from exc
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        output_path.unlink(missing_ok=True)
        raise
    finally:
        for scratch in scratch_files:
            scratch.unlink(missing_ok=True)

    logger.info(
        "[merge] Wrote %s: %d pages from %d files (normalized: %s)",
        output_path.name, result.page_count, result.source_count,
        ", ".join(result.normalized) or "none",
    )
    return result
