# app/services/registry.py
"""
Local registry of uploaded resources.

Records the name, description, price and payee of each stored handle so the
download route can price a resource. Stands in for the on-chain registry;
when REGISTRY_PATH is set, records are persisted as JSON lines and reloaded
on startup.
"""
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from app.core.config import settings

logger = logging.getLogger(__name__)


class ResourceRecord(BaseModel):
    handle: str
    name: str
    description: str
    price_atomic: str = Field(..., description="Price in 6-decimal USDC atomic units")
    pay_to_address: str
    filetype: str = "application/octet-stream"
    filename: Optional[str] = None
    size: int = 0
    uploaded_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class ResourceRegistry:
    """Thread-safe handle -> ResourceRecord map with optional JSON-lines persistence."""

    def __init__(self, path: Optional[str] = None):
        self._path = Path(path) if path else None
        self._records: Dict[str, ResourceRecord] = {}
        self._lock = threading.Lock()
        if self._path is not None:
            self._load()

    @staticmethod
    def _key(handle: str) -> str:
        return handle.lower()

    def _load(self) -> None:
        if not self._path.exists():
            return
        with open(self._path, "r") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = ResourceRecord.model_validate_json(line)
                except ValueError as e:
                    logger.warning(f"Skipping malformed registry line {line_num}: {e}")
                    continue
                self._records[self._key(record.handle)] = record
        logger.info(f"Loaded {len(self._records)} resources from {self._path}")

    def _append(self, record: ResourceRecord) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "a") as f:
            f.write(record.model_dump_json() + "\n")

    def register(self, record: ResourceRecord) -> ResourceRecord:
        with self._lock:
            self._records[self._key(record.handle)] = record
            if self._path is not None:
                self._append(record)
        logger.info(f"Registered resource '{record.name}' at {record.handle} for {record.price_atomic} units")
        return record

    def get(self, handle: str) -> Optional[ResourceRecord]:
        with self._lock:
            return self._records.get(self._key(handle))

    def all(self) -> List[ResourceRecord]:
        with self._lock:
            return list(self._records.values())

    def clear(self) -> None:
        with self._lock:
            self._records.clear()


# Global registry instance
_registry: Optional[ResourceRegistry] = None
_registry_lock = threading.Lock()


def get_registry() -> ResourceRegistry:
    """Get the process-wide registry, creating it from settings on first use."""
    global _registry

    if _registry is None:
        with _registry_lock:
            if _registry is None:
                _registry = ResourceRegistry(settings.REGISTRY_PATH)

    return _registry


def reset_registry() -> None:
    """Drop the global registry (useful for testing)."""
    global _registry
    with _registry_lock:
        _registry = None
