# tests/test_resources_api.py
"""
End-to-end tests for the resource routes: upload, pay, download.
Storage and verification are mocked; encryption and the middleware are real.
"""
import base64
import hashlib
import json
import pytest
from unittest.mock import patch

import requests
from fastapi.testclient import TestClient

from app.main import app
from app.services.registry import get_registry
from app.services.storage_api import RemoteFile, UploadReceipt
from app.x402.audit import AuditEventType, read_audit_log
from app.x402.middleware import X_PAYMENT_HEADER, X_PAYMENT_RESPONSE_HEADER
from app.x402.models import PaymentProof, ProofPayload, VerificationResult
from app.x402.verifier import PaymentVerifier

client = TestClient(app)

PAYEE = "0x" + "aa" * 20
PAYER = "0x" + "bb" * 20


class AcceptAllVerifier(PaymentVerifier):
    def _check_payment(self, proof, option):
        return VerificationResult.accept(payer=PAYER)


class FakeStorage:
    """In-memory content-addressed store standing in for the storage node."""

    def __init__(self):
        self.objects = {}

    def upload(self, blob):
        handle = hashlib.sha256(blob).hexdigest()
        self.objects[handle] = blob
        return UploadReceipt(handle=handle, size=len(blob))

    def download(self, handle):
        if handle not in self.objects:
            raise FileNotFoundError(handle)
        return self.objects[handle]


@pytest.fixture
def storage():
    fake = FakeStorage()
    with patch("app.services.storage_gateway.storage_api.upload_bytes", side_effect=fake.upload), \
            patch("app.services.storage_gateway.storage_api.download_bytes", side_effect=fake.download):
        yield fake


@pytest.fixture
def verifier():
    stub = AcceptAllVerifier()
    with patch("app.x402.middleware.get_verifier", return_value=stub):
        yield stub


_tx_counter = iter(range(1, 10 ** 6))


def _paid_headers():
    tx_hash = "0x" + format(next(_tx_counter), "064x")
    proof = PaymentProof(payload=ProofPayload(transaction_hash=tx_hash, network="base-sepolia"))
    return {X_PAYMENT_HEADER: proof.encode_header()}


def _upload(body):
    return client.post("/upload", json=body, headers=_paid_headers())


def _message_body(**overrides):
    body = {"message": "hello", "name": "greeting", "description": "A greeting message",
            "priceUSDC": "10000", "payAddress": PAYEE}
    body.update(overrides)
    return body


class TestHealth:
    def test_root(self):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestUpload:
    """POST /upload"""

    def test_upload_requires_payment(self, storage, verifier):
        response = client.post("/upload", json=_message_body())
        assert response.status_code == 402
        assert storage.objects == {}

    def test_message_upload(self, storage, verifier):
        response = _upload(_message_body())

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["type"] == "message"
        assert body["filetype"] == "text/plain"
        assert body["size"] == 127
        assert body["priceUSDC"] == "10000"
        assert body["payAddress"] == PAYEE
        assert body["handle"] in storage.objects
        assert b"hello" not in storage.objects[body["handle"]]
        assert X_PAYMENT_RESPONSE_HEADER in response.headers

    def test_upload_registers_resource(self, storage, verifier):
        handle = _upload(_message_body()).json()["handle"]

        record = get_registry().get(handle)

        assert record.name == "greeting"
        assert record.price_atomic == "10000"
        assert record.pay_to_address == PAYEE

    def test_file_upload(self, storage, verifier):
        data = b"%PDF-1.4 fake pdf bytes"
        body = _message_body(message=None, file=base64.b64encode(data).decode(), filename="paper.pdf")

        response = _upload(body)

        assert response.status_code == 200
        assert response.json()["type"] == "application/pdf"
        assert response.json()["filename"] == "paper.pdf"

    def test_file_upload_explicit_mime_type(self, storage, verifier):
        body = _message_body(message=None, file=base64.b64encode(b"abc").decode(), filename="data.bin",
                             mimeType="application/x-custom")
        assert _upload(body).json()["filetype"] == "application/x-custom"

    def test_file_upload_requires_filename(self, storage, verifier):
        body = _message_body(message=None, file=base64.b64encode(b"abc").decode())
        response = _upload(body)
        assert response.status_code == 400
        assert response.json()["kind"] == "malformed-input"

    def test_file_upload_rejects_bad_base64(self, storage, verifier):
        body = _message_body(message=None, file="***", filename="x.txt")
        assert _upload(body).status_code == 400

    @patch("app.api.endpoints.resources.storage_api.fetch_remote_file")
    def test_url_upload(self, mock_fetch, storage, verifier):
        mock_fetch.return_value = RemoteFile(data=b"\x89PNG...", filename="logo.png", mime_type=None)
        body = _message_body(message=None, url="https://example.com/logo.png")

        response = _upload(body)

        assert response.status_code == 200
        assert response.json()["filename"] == "logo.png"
        assert response.json()["filetype"] == "image/png"

    @patch("app.api.endpoints.resources.storage_api.fetch_remote_file")
    def test_url_upload_fetch_failure(self, mock_fetch, storage, verifier):
        mock_fetch.side_effect = requests.exceptions.HTTPError("404")
        response = _upload(_message_body(message=None, url="https://example.com/missing"))
        assert response.status_code == 400

    @pytest.mark.parametrize("field", ["name", "description", "priceUSDC", "payAddress"])
    def test_missing_required_field(self, field, storage, verifier):
        body = _message_body()
        del body[field]

        response = _upload(body)

        assert response.status_code == 400
        assert response.json()["details"]["field"] == field
        assert storage.objects == {}

    def test_missing_content(self, storage, verifier):
        response = _upload(_message_body(message=None))
        assert response.status_code == 400
        assert "usage" in response.json()["details"]

    def test_multiple_contents_rejected(self, storage, verifier):
        response = _upload(_message_body(url="https://example.com/x"))
        assert response.status_code == 400

    def test_bad_price(self, storage, verifier):
        assert _upload(_message_body(priceUSDC="1.5")).status_code == 400

    def test_integer_price_accepted(self, storage, verifier):
        assert _upload(_message_body(priceUSDC=10000)).json()["priceUSDC"] == "10000"

    def test_storage_down_is_502(self, verifier):
        with patch("app.services.storage_gateway.storage_api.upload_bytes",
                   side_effect=requests.exceptions.ConnectionError("refused")):
            response = _upload(_message_body())
        assert response.status_code == 502
        assert response.json()["kind"] == "storage-unavailable"

    def test_missing_signing_key_is_500(self, storage, verifier, gateway_settings, monkeypatch):
        monkeypatch.setattr(gateway_settings, "SIGNING_KEY", None)
        response = _upload(_message_body())
        assert response.status_code == 500
        assert response.json()["kind"] == "configuration"

    def test_upload_is_audited(self, storage, verifier):
        handle = _upload(_message_body()).json()["handle"]
        events = read_audit_log(event_type=AuditEventType.RESOURCE_UPLOADED)
        assert events[-1]["data"]["handle"] == handle


class TestDownload:
    """GET /download"""

    def test_paid_round_trip(self, storage, verifier):
        handle = _upload(_message_body()).json()["handle"]

        challenge = client.get(f"/download?id={handle}")
        assert challenge.status_code == 402
        option = challenge.json()["accepts"][0]
        assert option["maxAmountRequired"] == "10000"
        assert option["payTo"] == PAYEE

        response = client.get(f"/download?id={handle}", headers=_paid_headers())

        assert response.status_code == 200
        body = response.json()
        assert body["content"] == "hello"
        assert body["format"] == "text"
        assert body["type"] == "message"
        assert body["name"] == "greeting"
        assert body["encrypted"] is True
        assert X_PAYMENT_RESPONSE_HEADER in response.headers

    def test_download_by_path(self, storage, verifier):
        handle = _upload(_message_body()).json()["handle"]
        response = client.get(f"/download/{handle}", headers=_paid_headers())
        assert response.json()["content"] == "hello"

    def test_path_handle_cannot_be_priced_by_query_id(self, storage, verifier):
        expensive = _upload(_message_body(message="secret", priceUSDC="1000000000")).json()["handle"]
        cheap = _upload(_message_body(message="cheap", payAddress="0x" + "cc" * 20, priceUSDC="1")).json()["handle"]

        challenge = client.get(f"/download/{expensive}?id={cheap}")
        option = challenge.json()["accepts"][0]
        assert option["maxAmountRequired"] == "1000000000"
        assert option["payTo"] == PAYEE

        response = client.get(f"/download/{expensive}?id={cheap}", headers=_paid_headers())
        assert response.json()["handle"] == expensive
        assert response.json()["content"] == "secret"

    def test_legacy_piece_cid_param(self, storage, verifier):
        handle = _upload(_message_body()).json()["handle"]
        response = client.get(f"/download?pieceCid={handle}", headers=_paid_headers())
        assert response.json()["content"] == "hello"

    def test_binary_file_round_trip(self, storage, verifier):
        data = bytes(range(256)) * 2
        body = _message_body(message=None, file=base64.b64encode(data).decode(), filename="blob.zip")
        handle = _upload(body).json()["handle"]

        response = client.get(f"/download/{handle}", headers=_paid_headers())

        body = response.json()
        assert body["format"] == "binary"
        assert base64.b64decode(body["content"]) == data
        assert body["type"] == "application/zip"
        assert body["filename"] == "blob.zip"

    def test_text_file_is_not_a_message(self, storage, verifier):
        body = _message_body(message=None, file=base64.b64encode(b"notes").decode(), filename="notes.txt")
        handle = _upload(body).json()["handle"]

        response = client.get(f"/download/{handle}", headers=_paid_headers())

        assert response.json()["format"] == "text"
        assert response.json()["type"] == "text/plain"

    def test_missing_id_is_400(self, storage, verifier):
        response = client.get("/download")
        assert response.status_code == 400
        assert response.json()["kind"] == "malformed-input"

    def test_unknown_handle_is_404(self, storage, verifier):
        response = client.get("/download?id=" + "00" * 32, headers=_paid_headers())
        assert response.status_code == 404
        assert response.json()["kind"] == "not-found"

    def test_unregistered_legacy_object(self, storage, verifier):
        storage.objects["legacy"] = b"stored before encryption"

        response = client.get("/download?id=legacy", headers=_paid_headers())

        body = response.json()
        assert body["content"] == "stored before encryption"
        assert body["encrypted"] is False
        assert "Failed to decrypt" in body["message"]

    def test_storage_down_is_502(self, verifier):
        with patch("app.services.storage_gateway.storage_api.download_bytes",
                   side_effect=requests.exceptions.ConnectionError("refused")):
            response = client.get("/download?id=abc", headers=_paid_headers())
        assert response.status_code == 502
        assert response.json()["kind"] == "storage-unavailable"

    def test_proof_cannot_be_reused_for_second_download(self, storage, verifier):
        handle = _upload(_message_body()).json()["handle"]
        headers = _paid_headers()

        assert client.get(f"/download?id={handle}", headers=headers).status_code == 200
        assert client.get(f"/download?id={handle}", headers=headers).status_code == 402

    def test_download_is_audited(self, storage, verifier):
        handle = _upload(_message_body()).json()["handle"]
        client.get(f"/download?id={handle}", headers=_paid_headers())
        events = read_audit_log(event_type=AuditEventType.RESOURCE_DOWNLOADED)
        assert events[-1]["data"] == {"handle": handle, "size": 5, "format": "text"}
