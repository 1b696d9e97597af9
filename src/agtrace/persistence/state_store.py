"""File-backed state stores — one JSON document per record.

Orders, KYC profiles and mirror mappings each live in their own
directory, one file per key, so every record is independently
retrievable and independently durable. Writes go to a temporary file
first and are moved into place with ``os.replace``.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Iterator
from urllib.parse import quote

from agtrace.models.mirror import MirrorMapping
from agtrace.models.order import Order
from agtrace.models.verification import VerificationProfile
from agtrace.persistence.memory import (
    InMemoryMirrorMappingStore,
    InMemoryOrderStore,
    InMemoryVerificationStore,
)


def _record_path(root: Path, key: str) -> Path:
    return root / (quote(key, safe="") + ".json")


def _write_json(path: Path, data: dict[str, Any]) -> None:
    # No temp file is created unless serialization succeeds
    text = json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False, default=str)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        f.write(text + "\n")
    os.replace(tmp, path)


def _read_all(root: Path) -> Iterator[dict[str, Any]]:
    for path in sorted(root.glob("*.json")):
        with path.open("r", encoding="utf-8") as f:
            yield json.load(f)


class FileOrderStore(InMemoryOrderStore):
    """Orders persisted as ``<root>/<order_id>.json``.

    Buyer, seller and payment indexes are rebuilt on load and then kept
    up to date on every write.
    """

    def __init__(self, root: Path) -> None:
        super().__init__()
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)
        for data in _read_all(self._root):
            self._index(Order.from_dict(data))

    def _persist_order(self, order: Order) -> None:
        _write_json(_record_path(self._root, order.order_id), order.to_dict())


class FileVerificationStore(InMemoryVerificationStore):
    """KYC profiles persisted as ``<root>/<user_id>.json``."""

    def __init__(self, root: Path) -> None:
        super().__init__()
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)
        for data in _read_all(self._root):
            profile = VerificationProfile.from_dict(data)
            self._profiles[profile.user_id] = profile

    def _persist_profile(self, profile: VerificationProfile) -> None:
        _write_json(_record_path(self._root, profile.user_id), profile.to_dict())


class FileMirrorMappingStore(InMemoryMirrorMappingStore):
    """Mirror mappings persisted as ``<root>/<local_id>.json``."""

    def __init__(self, root: Path) -> None:
        super().__init__()
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)
        for data in _read_all(self._root):
            mapping = MirrorMapping.from_dict(data)
            self._mappings[mapping.local_id] = mapping

    def _persist_mapping(self, mapping: MirrorMapping) -> None:
        _write_json(_record_path(self._root, mapping.local_id), mapping.to_dict())
