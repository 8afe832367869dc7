"""Utilities for persisting market metadata to disk."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable, List

from citronus_client.config import get_config_dir

from .models import MarketMetadata


class MarketMetadataStore:
    """Persists :class:`MarketMetadata` entries to a JSON file."""

    def __init__(self, path: Path | None = None):
        self._path = Path(path) if path else get_config_dir() / "market_metadata.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def save(self, markets: Iterable[MarketMetadata]) -> None:
        """Write the provided metadata entries to disk; decimals are kept as strings."""
        payload: List[dict] = [m.to_payload() for m in markets]
        if payload:
            self._path.write_text(json.dumps(payload, indent=2, sort_keys=True))

    def load(self) -> List[MarketMetadata]:
        """Load persisted metadata if it exists, returning an empty list otherwise."""
        if not self._path.exists():
            return []

        data = json.loads(self._path.read_text())
        return [MarketMetadata.from_payload(item) for item in data]
