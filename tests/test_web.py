import io
from urllib.parse import urlparse

import pytest

from securerelay.core.config import RelayConfig, UploadConfig
from securerelay.core.relay.service import FileRelay
from securerelay.web.app import create_app

PDF = b"%PDF-1.7 quarterly report"


@pytest.fixture
def app(relay):
    app = create_app(relay=relay, run_self_tests=False)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def upload(client, content=PDF, filename="report.pdf", passcode="s3cr3t"):
    data = {"file": (io.BytesIO(content), filename)}
    if passcode is not None:
        data["passcode"] = passcode
    return client.post("/upload", data=data, content_type="multipart/form-data")


def download_link(client, upload_id, passcode="s3cr3t"):
    return client.post(f"/download/{upload_id}", json={"passcode": passcode})


class TestUploadEndpoint:
    def test_upload(self, client, relay):
        response = upload(client)
        assert response.status_code == 201
        body = response.get_json()
        assert relay.records.find_by_id(body["id"]).original_filename == "report.pdf"
        assert body["expires_at"].startswith("2024-01-03T12:00:00")

    def test_missing_passcode(self, client):
        response = upload(client, passcode=None)
        assert response.status_code == 400
        assert response.get_json() == {"error": "File and passcode required", "code": "validation_error"}

    def test_missing_file(self, client):
        response = client.post("/upload", data={"passcode": "pw"}, content_type="multipart/form-data")
        assert response.status_code == 400

    def test_more_than_one_file(self, client):
        data = {
            "file": [(io.BytesIO(b"a"), "a.txt"), (io.BytesIO(b"b"), "b.txt")],
            "passcode": "pw",
        }
        response = client.post("/upload", data=data, content_type="multipart/form-data")
        assert response.status_code == 400

    def test_unsupported_format(self, client):
        response = upload(client, content=b"MZ", filename="setup.exe")
        assert response.status_code == 415
        body = response.get_json()
        assert body["code"] == "unsupported_format"
        assert "Allowed formats" in body["error"]

    def test_declared_content_type_must_be_allowed(self, client, records):
        data = {"file": (io.BytesIO(PDF), "report.pdf", "image/png"), "passcode": "s3cr3t"}
        response = client.post("/upload", data=data, content_type="multipart/form-data")
        assert response.status_code == 415
        body = response.get_json()
        assert body["code"] == "unsupported_format"
        assert "image/png" in body["error"]
        assert records.count() == 0

    def test_declared_content_type_with_parameters(self, client):
        data = {"file": (io.BytesIO(b"hello"), "notes.txt", "text/plain; charset=utf-8"), "passcode": "pw"}
        response = client.post("/upload", data=data, content_type="multipart/form-data")
        assert response.status_code == 201

    def test_upload_reads_expiry_without_a_second_lookup(self, client, records, monkeypatch):
        def unexpected_lookup(record_id):
            raise AssertionError("upload should not re-read its own record")

        monkeypatch.setattr(records, "find_by_id", unexpected_lookup)
        response = upload(client)
        assert response.status_code == 201
        assert response.get_json()["expires_at"].startswith("2024-01-03T12:00:00")

    def test_over_configured_limit(self, config, blobs, records, sealer, clock):
        small = RelayConfig(paths=config.paths, crypto=config.crypto, upload=UploadConfig(max_upload_bytes=8))
        relay = FileRelay(small, blobs, records, sealer=sealer, clock=clock)
        client = create_app(relay=relay, run_self_tests=False).test_client()

        response = upload(client, content=b"0123456789", filename="a.txt")
        assert response.status_code == 413
        assert response.get_json()["code"] == "payload_too_large"

    def test_request_body_over_hard_limit(self, config, blobs, records, sealer, clock):
        small = RelayConfig(paths=config.paths, crypto=config.crypto, upload=UploadConfig(max_upload_bytes=8))
        relay = FileRelay(small, blobs, records, sealer=sealer, clock=clock)
        client = create_app(relay=relay, run_self_tests=False).test_client()

        response = upload(client, content=b"x" * (2 * 1024 * 1024), filename="a.txt")
        assert response.status_code == 413
        assert response.get_json()["code"] == "payload_too_large"


class TestDownloadEndpoints:
    def test_full_flow(self, client):
        upload_id = upload(client).get_json()["id"]

        response = download_link(client, upload_id)
        assert response.status_code == 200
        body = response.get_json()
        assert body["filename"] == "report.pdf"
        assert "s3cr3t" not in body["downloadUrl"]

        file_response = client.get(urlparse(body["downloadUrl"]).path)
        assert file_response.status_code == 200
        assert file_response.data == PDF
        assert file_response.mimetype == "application/pdf"
        assert "attachment" in file_response.headers["Content-Disposition"]
        assert "report.pdf" in file_response.headers["Content-Disposition"]
        assert file_response.headers["Cache-Control"] == "no-store"

    def test_passcode_as_form_field(self, client):
        upload_id = upload(client).get_json()["id"]
        response = client.post(f"/download/{upload_id}", data={"passcode": "s3cr3t"})
        assert response.status_code == 200

    def test_wrong_passcode(self, client):
        upload_id = upload(client).get_json()["id"]
        response = download_link(client, upload_id, passcode="wrong")
        assert response.status_code == 403
        assert response.get_json() == {"error": "Invalid passcode", "code": "invalid_passcode"}

    def test_unknown_id(self, client):
        response = download_link(client, "does-not-exist")
        assert response.status_code == 404
        assert response.get_json()["code"] == "not_found"

    def test_missing_passcode(self, client):
        upload_id = upload(client).get_json()["id"]
        response = client.post(f"/download/{upload_id}", json={})
        assert response.status_code == 400

    @pytest.mark.parametrize("passcode", [123, ["s3cr3t"], {"value": "s3cr3t"}])
    def test_non_text_passcode(self, client, passcode):
        upload_id = upload(client).get_json()["id"]
        response = client.post(f"/download/{upload_id}", json={"passcode": passcode})
        assert response.status_code == 400
        assert response.get_json() == {"error": "Passcode must be text", "code": "validation_error"}

    def test_expired(self, client, clock):
        upload_id = upload(client).get_json()["id"]
        clock.advance(hours=48, seconds=1)
        response = download_link(client, upload_id)
        assert response.status_code == 410
        assert response.get_json() == {"error": "File expired", "code": "expired"}

    def test_expired_link(self, client, clock):
        upload_id = upload(client).get_json()["id"]
        url = download_link(client, upload_id).get_json()["downloadUrl"]
        clock.advance(minutes=30)
        response = client.get(urlparse(url).path)
        assert response.status_code == 410
        assert response.get_json()["code"] == "ticket_expired"

    def test_forged_link(self, client):
        response = client.get("/file/forged-ticket-value")
        assert response.status_code == 403
        assert response.get_json()["code"] == "invalid_ticket"


class TestAppWiring:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.get_json()["status"] == "healthy"
        assert response.get_json()["reaper"] == "stopped"

    def test_unknown_route_is_json(self, client):
        response = client.get("/nope")
        assert response.status_code == 404
        assert response.get_json()["code"] == "not_found"

    def test_cors_headers(self, client):
        response = client.get("/health")
        assert response.headers["Access-Control-Allow-Origin"] == "*"

    def test_startup_self_tests_run(self, relay):
        app = create_app(relay=relay)
        assert app.extensions["securerelay"] is relay

    def test_builds_relay_from_config(self, config):
        app = create_app(config, ticket_secret="a-configured-ticket-secret", run_self_tests=False)
        assert app.extensions["securerelay"].config is config
        assert config.paths.blob_dir.is_dir()
