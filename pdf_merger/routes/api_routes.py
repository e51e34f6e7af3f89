"""API routes."""

from flask import Blueprint

from pdf_merger.services import api_service

api_bp = Blueprint("api", __name__)

api_bp.add_url_rule(
    "/upload",
    endpoint="upload",
    view_func=api_service.upload,
    methods=["POST"],
)
api_bp.add_url_rule(
    "/files",
    endpoint="list_files",
    view_func=api_service.list_files,
    methods=["GET"],
)
api_bp.add_url_rule(
    "/files/<file_id>",
    endpoint="delete_file",
    view_func=api_service.delete_file,
    methods=["DELETE"],
)
api_bp.add_url_rule(
    "/merge",
    endpoint="merge",
    view_func=api_service.merge,
    methods=["POST"],
)
api_bp.add_url_rule(
    "/download",
    endpoint="download_query",
    view_func=api_service.download,
    methods=["GET"],
)
api_bp.add_url_rule(
    "/download/<download_id>",
    endpoint="download",
    view_func=api_service.download,
    methods=["GET"],
)
