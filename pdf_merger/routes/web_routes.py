"""Web and health routes."""

from flask import Blueprint

from pdf_merger.services import api_service

web_bp = Blueprint("web", __name__)


@web_bp.get("/")
def index():
    return api_service.index()


@web_bp.get("/health")
def health():
    return api_service.health()
