import io
import time

import pytest

from pdf_fixtures import page_sizes, pdf_bytes
from pdf_merger.config import MB, RuntimeConfig
from pdf_merger.factory import create_app
from pdf_merger.services.api_service import EXTENSION_KEY

LETTER = (612.0, 792.0)
LANDSCAPE = (842.0, 595.0)


def _upload(client, data: bytes, name: str = "doc.pdf", field: str = "pdf"):
    return client.post(
        "/upload",
        data={field: (io.BytesIO(data), name)},
        content_type="multipart/form-data",
    )


def _upload_pdf(client, tmp_path, name, sizes):
    response = _upload(client, pdf_bytes(sizes, tmp_path, name), name)
    assert response.status_code == 200, response.get_json()
    return response.get_json()["file"]


def _merge(client, file_ids):
    return client.post("/merge", json={"fileIds": file_ids})


def test_index_and_health(client):
    assert client.get("/").get_json()["service"] == "pdf-merger"

    health = client.get("/health").get_json()
    assert health["status"] == "ok"
    assert set(health["storage"]) == {"uploads", "merged", "scratch"}
    assert health["max_file_size_mb"] == 50
    assert health["max_files_per_session"] == 50


def test_upload_returns_file_descriptor(client, tmp_path):
    data = pdf_bytes([LETTER], tmp_path, "report.pdf")
    response = _upload(client, data, "my report.pdf")

    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is True
    assert body["message"] == "File uploaded successfully"
    assert body["file"]["name"] == "my report.pdf"
    assert body["file"]["size"] == len(data)
    assert len(body["file"]["id"]) == 16
    assert body["file"]["sizeFormatted"].endswith(("B", "KB"))


def test_upload_accepts_file_field_alias(client, tmp_path):
    response = _upload(client, pdf_bytes([LETTER], tmp_path), "a.pdf", field="file")
    assert response.get_json()["success"] is True


def test_upload_rejects_non_pdf(client):
    response = _upload(client, b"just some text, not a document", "notes.pdf")

    assert response.status_code == 400
    body = response.get_json()
    assert body["success"] is False
    assert body["message"] == "Invalid file type. Only PDF files are allowed."


def test_upload_without_file(client):
    response = client.post("/upload", data={}, content_type="multipart/form-data")
    assert response.status_code == 400
    assert response.get_json()["message"] == "No file was uploaded"


def test_upload_size_limits(tmp_path, fake_magic):
    config = RuntimeConfig.for_root(tmp_path / "small", secret_key="s", max_file_size_bytes=MB)
    app = create_app(config)
    app.config["TESTING"] = True
    client = app.test_client()

    over_limit = b"%PDF-1.4\n" + b"0" * (MB + MB // 2)
    response = _upload(client, over_limit, "big.pdf")
    assert response.status_code == 400
    assert response.get_json()["message"] == "File size exceeds 1MB limit"

    way_over = b"%PDF-1.4\n" + b"0" * (3 * MB)
    response = _upload(client, way_over, "huge.pdf")
    assert response.status_code == 413
    assert response.get_json()["success"] is False


def test_list_and_delete_files(client, tmp_path):
    first = _upload_pdf(client, tmp_path, "a.pdf", [LETTER])
    second = _upload_pdf(client, tmp_path, "b.pdf", [LETTER])

    listed = client.get("/files").get_json()["files"]
    assert [f["id"] for f in listed] == [first["id"], second["id"]]

    assert client.delete(f"/files/{first['id']}").get_json()["success"] is True
    again = client.delete(f"/files/{first['id']}").get_json()
    assert again["success"] is True
    assert [f["id"] for f in client.get("/files").get_json()["files"]] == [second["id"]]


def test_list_without_session_is_empty(client):
    assert client.get("/files").get_json() == {"success": True, "files": []}


def test_merge_then_download(client, tmp_path):
    a = _upload_pdf(client, tmp_path, "a.pdf", [LETTER, LETTER])
    b = _upload_pdf(client, tmp_path, "b.pdf", [LANDSCAPE])

    response = _merge(client, [a["id"], b["id"]])
    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is True
    assert body["message"] == "PDFs merged successfully"
    assert body["filename"].startswith("merged_")

    download = client.get(f"/download/{body['downloadId']}")
    assert download.status_code == 200
    assert download.mimetype == "application/octet-stream"
    assert "attachment" in download.headers["Content-Disposition"]
    assert body["filename"] in download.headers["Content-Disposition"]
    assert int(download.headers["Content-Length"]) == len(download.data)
    assert download.data.startswith(b"%PDF")

    merged = tmp_path / "downloaded.pdf"
    merged.write_bytes(download.data)
    assert page_sizes(merged) == [LETTER, LETTER, LANDSCAPE]

    # Sources are consumed by a successful merge.
    assert client.get("/files").get_json()["files"] == []

    # Query-string form hits the same ticket.
    assert client.get(f"/download?id={body['downloadId']}").status_code == 200


def test_merge_validation(client, tmp_path):
    a = _upload_pdf(client, tmp_path, "a.pdf", [LETTER])

    assert client.post("/merge", json={}).status_code == 400
    single = _merge(client, [a["id"]])
    assert single.status_code == 400
    assert "at least 2" in single.get_json()["message"]


def test_merge_unknown_id(client, tmp_path):
    a = _upload_pdf(client, tmp_path, "a.pdf", [LETTER])

    response = _merge(client, [a["id"], "0123456789abcdef"])

    assert response.status_code == 404
    assert "not found" in response.get_json()["message"]
    assert len(client.get("/files").get_json()["files"]) == 1


def test_merge_without_session(client):
    response = _merge(client, ["0123456789abcdef", "fedcba9876543210"])
    assert response.status_code == 404
    assert "Session expired" in response.get_json()["message"]


@pytest.mark.parametrize("bad_id", ["abc", "../../etc/passwd", "Z" * 32])
def test_download_rejects_malformed_ids(client, bad_id):
    response = client.get("/download", query_string={"id": bad_id})
    assert response.status_code == 400
    assert response.get_json()["message"] == "Invalid download ID"


def test_download_requires_id(client):
    response = client.get("/download")
    assert response.status_code == 400
    assert response.get_json()["message"] == "Missing download ID"


def test_download_from_another_session_is_not_found(app, client, tmp_path):
    a = _upload_pdf(client, tmp_path, "a.pdf", [LETTER])
    b = _upload_pdf(client, tmp_path, "b.pdf", [LETTER])
    download_id = _merge(client, [a["id"], b["id"]]).get_json()["downloadId"]

    stranger = app.test_client()
    assert stranger.get(f"/download/{download_id}").status_code == 404

    _upload_pdf(stranger, tmp_path, "c.pdf", [LETTER])
    response = stranger.get(f"/download/{download_id}")
    assert response.status_code == 404
    assert response.get_json()["success"] is False


def test_expired_download_is_gone(app, client, tmp_path):
    a = _upload_pdf(client, tmp_path, "a.pdf", [LETTER])
    b = _upload_pdf(client, tmp_path, "b.pdf", [LETTER])
    download_id = _merge(client, [a["id"], b["id"]]).get_json()["downloadId"]

    tickets = app.extensions[EXTENSION_KEY]["service"].tickets
    tickets.clock = lambda: time.time() + 2 * 3600

    expired = client.get(f"/download/{download_id}")
    assert expired.status_code == 410
    assert expired.get_json()["success"] is False
    assert client.get(f"/download/{download_id}").status_code == 404


def test_artifact_swept_mid_download_is_not_found(app, client, tmp_path):
    a = _upload_pdf(client, tmp_path, "a.pdf", [LETTER])
    b = _upload_pdf(client, tmp_path, "b.pdf", [LETTER])
    download_id = _merge(client, [a["id"], b["id"]]).get_json()["downloadId"]

    tickets = app.extensions[EXTENSION_KEY]["service"].tickets
    resolve = tickets.resolve

    def resolve_then_sweep(session_id, did, now=None):
        artifact = resolve(session_id, did, now)
        tickets.path_of(session_id, artifact).unlink()
        return artifact

    tickets.resolve = resolve_then_sweep

    response = client.get(f"/download/{download_id}")
    assert response.status_code == 404
    assert response.get_json()["message"] == "File not found"
