"""WSGI entry point for gunicorn (``gunicorn app:app``)."""

from pdf_merger import create_app

app = create_app()
