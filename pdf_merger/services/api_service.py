"""Flask views for uploading, merging and downloading PDFs.

This module is the only place that touches ``flask.session``: it maps the
signed session cookie to an explicit session id and passes that id into the
registries. Everything below it is framework-agnostic.
"""

import logging
import sys
from typing import Any, Dict, Optional

from flask import current_app, jsonify, request, send_file, session
from werkzeug.exceptions import HTTPException, NotFound, RequestEntityTooLarge

from pdf_merger import bootstrap
from pdf_merger.config import RuntimeConfig
from pdf_merger.core.exceptions import (
    NotFoundError,
    PDFMergeError,
    StorageError,
    ValidationError,
)
from pdf_merger.core.utils import format_file_size, short_id
from pdf_merger.engine.ghostscript import get_ghostscript_command
from pdf_merger.services.merge_service import MergeService, build_merge_service
from pdf_merger.services.ticket_registry import is_valid_download_id
from pdf_merger.services.validator import raise_for_upload
from pdf_merger.storage.session_store import is_valid_session_id, new_session_id

# Config
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)

EXTENSION_KEY = "pdf_merger"
SESSION_KEY = "upload_id"
UPLOAD_FIELDS = ("pdf", "file")


def configure_app(app, config: RuntimeConfig) -> MergeService:
    """Attach config and the wired merge service to the Flask app."""
    app.config["MAX_CONTENT_LENGTH"] = config.max_content_length
    app.config["SECRET_KEY"] = config.secret_key
    app.config["SESSION_COOKIE_HTTPONLY"] = True
    app.config["SESSION_COOKIE_SAMESITE"] = "Lax"

    for directory in (config.upload_root, config.merged_root, config.scratch_root, config.state_root):
        directory.mkdir(parents=True, exist_ok=True)

    service = build_merge_service(config)
    app.extensions[EXTENSION_KEY] = {"config": config, "service": service}
    _log_effective_config(config)
    return service


def _log_effective_config(config: RuntimeConfig) -> None:
    logger.info(
        "Storage: uploads=%s merged=%s scratch=%s state=%s",
        config.upload_root.resolve(), config.merged_root.resolve(),
        config.scratch_root.resolve(), config.state_root.resolve(),
    )
    logger.info(
        "Limits: max_file=%dMB max_files=%d expiry=%ss scratch_expiry=%ss normalizer_timeout=%ss sweep_interval=%ss",
        config.max_file_size_mb, config.max_files_per_session, config.file_expiry_seconds,
        config.scratch_expiry_seconds, config.normalizer_timeout_seconds, config.sweep_interval_seconds,
    )
    gs = get_ghostscript_command(config.ghostscript_path)
    if gs:
        logger.info("Ghostscript normalizer: %s", gs)
    else:
        logger.warning("Ghostscript not found; compressed PDFs that PyPDF2 cannot read will be rejected")


def register_error_handlers(app) -> None:
    """Register HTTP and framework error handlers."""
    app.register_error_handler(PDFMergeError, handle_merge_error)
    app.register_error_handler(RequestEntityTooLarge, handle_large_file)
    app.register_error_handler(HTTPException, handle_http_exception)
    app.register_error_handler(Exception, handle_error)


def _service() -> MergeService:
    return current_app.extensions[EXTENSION_KEY]["service"]


def _config() -> RuntimeConfig:
    return current_app.extensions[EXTENSION_KEY]["config"]


def current_session_id(create: bool = False) -> Optional[str]:
    """Session id from the signed cookie, minted on demand."""
    session_id = session.get(SESSION_KEY)
    if is_valid_session_id(session_id):
        return session_id
    if not create:
        return None
    session_id = new_session_id()
    session[SESSION_KEY] = session_id
    logger.info("[session %s] New upload session", short_id(session_id))
    return session_id


def _require_session_id() -> str:
    session_id = current_session_id()
    if session_id is None:
        raise NotFoundError.session_missing()
    return session_id


def create_error_response(error: Exception, status_code: int = 500):
    """Create the standard ``{success: false, message}`` error response."""
    if isinstance(error, PDFMergeError):
        return jsonify({
            "success": False,
            "message": error.message,
            "error_type": error.error_type,
        }), status_code

    return jsonify({
        "success": False,
        "message": str(error),
        "error_type": "UnknownError",
    }), status_code


# Error handlers
def handle_merge_error(e: PDFMergeError):
    if isinstance(e, StorageError):
        logger.error("Storage failure on %s %s: %s", request.method, request.path, e.original_error or e)
    else:
        logger.info("%s on %s %s: %s", e.error_type, request.method, request.path, e.message)
    return create_error_response(e, e.status_code)


def handle_large_file(e):
    message = f"File size exceeds {_config().max_file_size_mb}MB limit"
    return jsonify({
        "success": False,
        "message": message,
        "error_type": "FileTooLarge",
    }), 413


def handle_http_exception(e):
    if isinstance(e, NotFound):
        logger.info("404 %s %s", request.method, request.path)
    else:
        logger.warning("HTTP %s on %s %s: %s", e.code, request.method, request.path, e.description)
    return jsonify({
        "success": False,
        "message": e.description or e.name,
        "error_type": e.name,
    }), e.code or 400


def handle_error(e):
    logger.exception("Unhandled error")
    return jsonify({
        "success": False,
        "message": "An unexpected error occurred. Please try again.",
        "error_type": "UnknownError",
    }), 500


# Routes
def index():
    """Describe the service; the upload UI is served separately."""
    return jsonify({
        "service": "pdf-merger",
        "endpoints": {
            "upload": "POST /upload (multipart field 'pdf')",
            "merge": "POST /merge {fileIds: [...]}",
            "download": "GET /download/<downloadId>",
            "files": "GET /files, DELETE /files/<fileId>",
        },
    })


def health():
    """Health check with storage and normalizer status."""
    config = _config()
    gs = get_ghostscript_command(config.ghostscript_path)
    return jsonify({
        "status": "ok",
        "storage": {
            "uploads": str(config.upload_root),
            "merged": str(config.merged_root),
            "scratch": str(config.scratch_root),
        },
        "ghostscript": gs or None,
        "normalizer_available": bool(gs),
        "max_file_size_mb": config.max_file_size_mb,
        "max_files_per_session": config.max_files_per_session,
        "file_expiry_seconds": config.file_expiry_seconds,
        "periodic_sweeper": bootstrap.is_bootstrapped(),
    })


def _file_payload(entry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "name": entry.original_name,
        "size": entry.size_bytes,
        "sizeFormatted": format_file_size(entry.size_bytes),
    }


def upload():
    """Accept one PDF per call as multipart form data."""
    storage = None
    for field_name in UPLOAD_FIELDS:
        storage = request.files.get(field_name)
        if storage is not None:
            break
    if storage is None or not storage.filename:
        raise ValidationError("No file was uploaded")

    stream = storage.stream
    stream.seek(0, 2)
    declared_size = stream.tell()
    stream.seek(0)

    raise_for_upload(stream, declared_size, storage.mimetype, _config().max_file_size_bytes)

    session_id = current_session_id(create=True)
    entry = _service().files.put(session_id, storage.filename, stream.read())

    return jsonify({
        "success": True,
        "message": "File uploaded successfully",
        "file": _file_payload(entry),
    })


def list_files():
    session_id = current_session_id()
    entries = _service().files.list(session_id) if session_id else []
    return jsonify({
        "success": True,
        "files": [_file_payload(entry) for entry in entries],
    })


def delete_file(file_id: str):
    """Remove one upload; removing an unknown id is not an error."""
    session_id = current_session_id()
    removed = bool(session_id) and _service().files.remove(session_id, file_id)
    return jsonify({
        "success": True,
        "message": "File removed" if removed else "File already removed",
    })


def merge():
    """Merge the listed uploads in the order given."""
    data = request.get_json(silent=True)
    file_ids = data.get("fileIds") if isinstance(data, dict) else None
    if not isinstance(file_ids, list) or not file_ids:
        raise ValidationError("No files specified for merging")

    session_id = _require_session_id()
    artifact = _service().merge(session_id, file_ids)

    return jsonify({
        "success": True,
        "message": "PDFs merged successfully",
        "downloadId": artifact.download_id,
        "filename": artifact.filename,
    })


def download(download_id: Optional[str] = None):
    """Stream a merged PDF for a ticket owned by this session."""
    if download_id is None:
        download_id = request.args.get("id")
    if not download_id:
        raise ValidationError("Missing download ID")
    if not is_valid_download_id(download_id):
        logger.warning("[download] Invalid download id rejected")
        raise ValidationError("Invalid download ID")

    session_id = current_session_id()
    if session_id is None:
        raise NotFoundError.download_missing()

    service = _service()
    artifact = service.tickets.resolve(session_id, download_id)
    path = service.tickets.path_of(session_id, artifact)
    try:
        size = service.merged_blobs.size(session_id, artifact.stored_name)
        response = send_file(
            path,
            mimetype="application/octet-stream",
            as_attachment=True,
            download_name=artifact.filename,
            conditional=False,
        )
    except FileNotFoundError:
        # Swept between lookup and send.
        logger.warning("[download %s] %s vanished before sending", short_id(session_id), artifact.filename)
        raise NotFoundError("File not found")
    logger.info(
        "[download %s] Serving %s (%s)",
        short_id(session_id), artifact.filename, format_file_size(size),
    )
    response.headers["Cache-Control"] = "private, max-age=0, must-revalidate"
    response.headers["Pragma"] = "public"
    response.headers["Expires"] = "0"
    return response
