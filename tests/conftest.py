import pytest

from pdf_merger.config import RuntimeConfig
from pdf_merger.factory import create_app
from pdf_merger.services import validator
from pdf_merger.services.merge_service import build_merge_service


def _fake_sniff(sample: bytes) -> str:
    return "application/pdf" if sample.startswith(b"%PDF") else "text/plain"


@pytest.fixture
def config(tmp_path):
    return RuntimeConfig.for_root(tmp_path / "storage", secret_key="test-secret")


@pytest.fixture
def service(config):
    for directory in (config.upload_root, config.merged_root, config.scratch_root, config.state_root):
        directory.mkdir(parents=True, exist_ok=True)
    svc = build_merge_service(config)
    svc.normalizer = None
    return svc


@pytest.fixture
def fake_magic(monkeypatch):
    """Content sniffing without libmagic: PDF iff the bytes start with %PDF."""
    monkeypatch.setattr(validator, "sniff_mime_type", _fake_sniff)


@pytest.fixture
def app(config, fake_magic):
    flask_app = create_app(config)
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()
