# tests/conftest.py
"""
Shared fixtures: every test runs against a configured gateway with a fresh
registry, a fresh verifier and its own audit and consumed-payment logs.
"""
import pytest

from app.core.config import settings
from app.services.registry import reset_registry
from app.x402.verifier import reset_verifier

TEST_SIGNING_KEY = "0x" + "11" * 32
TEST_BATCH_ID = "ab" * 32
OPERATOR_ADDRESS = "0x" + "0f" * 20
PAYEE_ADDRESS = "0x" + "aa" * 20
PAYER_ADDRESS = "0x" + "bb" * 20
TX_HASH = "0x" + "12" * 32


@pytest.fixture(autouse=True)
def gateway_settings(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "SIGNING_KEY", TEST_SIGNING_KEY)
    monkeypatch.setattr(settings, "STORAGE_POSTAGE_BATCH_ID", TEST_BATCH_ID)
    monkeypatch.setattr(settings, "STORAGE_MIN_OBJECT_SIZE", 127)
    monkeypatch.setattr(settings, "X402_ENABLED", True)
    monkeypatch.setattr(settings, "X402_NETWORK", "base-sepolia")
    monkeypatch.setattr(settings, "X402_PAY_TO_ADDRESS", OPERATOR_ADDRESS)
    monkeypatch.setattr(settings, "X402_UPLOAD_PRICE_USD", "0.01")
    monkeypatch.setattr(settings, "X402_DOWNLOAD_PRICE_USD", "0.01")
    monkeypatch.setattr(settings, "X402_MAX_TIMEOUT_SECONDS", 300)
    monkeypatch.setattr(settings, "X402_AUDIT_ENABLED", True)
    monkeypatch.setattr(settings, "X402_AUDIT_LOG_PATH", str(tmp_path / "x402_audit.jsonl"))
    monkeypatch.setattr(settings, "X402_AUDIT_API_KEY", None)
    monkeypatch.setattr(settings, "X402_CONSUMED_TX_PATH", str(tmp_path / "x402_consumed_tx.jsonl"))
    monkeypatch.setattr(settings, "REGISTRY_PATH", None)
    reset_registry()
    reset_verifier()
    yield settings
    reset_registry()
    reset_verifier()
