# tests/test_registry.py
"""
Tests for the local resource registry.
"""
import pytest

from app.services.registry import ResourceRecord, ResourceRegistry, get_registry, reset_registry

PAYEE = "0x" + "aa" * 20


def _record(handle="AbCd" * 16, **overrides):
    fields = dict(handle=handle, name="report", description="Quarterly report",
                  price_atomic="2000000", pay_to_address=PAYEE, filetype="application/pdf",
                  filename="report.pdf", size=4096)
    fields.update(overrides)
    return ResourceRecord(**fields)


class TestResourceRegistry:
    """Test in-memory behaviour."""

    def test_register_and_get(self):
        registry = ResourceRegistry()
        record = registry.register(_record())
        assert registry.get(record.handle) == record

    def test_lookup_is_case_insensitive(self):
        registry = ResourceRegistry()
        registry.register(_record(handle="ABCDEF"))
        assert registry.get("abcdef").name == "report"

    def test_unknown_handle_is_none(self):
        assert ResourceRegistry().get("missing") is None

    def test_re_register_replaces(self):
        registry = ResourceRegistry()
        registry.register(_record(price_atomic="1"))
        registry.register(_record(price_atomic="2"))
        assert len(registry.all()) == 1
        assert registry.all()[0].price_atomic == "2"

    def test_clear(self):
        registry = ResourceRegistry()
        registry.register(_record())
        registry.clear()
        assert registry.all() == []

    def test_uploaded_at_defaults(self):
        assert _record().uploaded_at


class TestRegistryPersistence:
    """Test JSON-lines persistence with REGISTRY_PATH."""

    def test_records_reload_from_file(self, tmp_path):
        path = tmp_path / "registry" / "resources.jsonl"
        ResourceRegistry(str(path)).register(_record(handle="h1"))
        ResourceRegistry(str(path)).register(_record(handle="h2", name="second"))

        reloaded = ResourceRegistry(str(path))

        assert reloaded.get("h1").name == "report"
        assert reloaded.get("h2").name == "second"

    def test_malformed_lines_skipped(self, tmp_path):
        path = tmp_path / "resources.jsonl"
        path.write_text("not json\n" + _record(handle="good").model_dump_json() + "\n\n")

        registry = ResourceRegistry(str(path))

        assert [r.handle for r in registry.all()] == ["good"]

    def test_missing_file_is_empty(self, tmp_path):
        assert ResourceRegistry(str(tmp_path / "nope.jsonl")).all() == []


class TestGlobalRegistry:
    """Test the process-wide singleton."""

    def test_singleton(self):
        assert get_registry() is get_registry()

    def test_reset_creates_new_instance(self):
        first = get_registry()
        first.register(_record())
        reset_registry()
        second = get_registry()
        assert second is not first
        assert second.all() == []

    def test_uses_registry_path_setting(self, gateway_settings, monkeypatch, tmp_path):
        path = tmp_path / "r.jsonl"
        path.write_text(_record(handle="persisted").model_dump_json() + "\n")
        monkeypatch.setattr(gateway_settings, "REGISTRY_PATH", str(path))
        reset_registry()
        assert get_registry().get("persisted") is not None
