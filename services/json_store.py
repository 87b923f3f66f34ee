"""Lightweight helpers and wrapper class for JSON-backed local state."""

from __future__ import annotations

import json
from copy import deepcopy
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from filelock import FileLock, Timeout

from core.env import env_int
from core.logging import get_logger

logger = get_logger(__name__)

_LOCK_TIMEOUT = env_int("ENTITLEMENT_FILE_LOCK_TIMEOUT_SECONDS", 5, minimum=1)


class JsonStoreError(RuntimeError):
    """Raised when a JSON document cannot be locked or written."""


def ensure_parent_dir(path: Path) -> None:
    """Ensure ``path`` can be read/written by creating the parent dir."""
    path.parent.mkdir(parents=True, exist_ok=True)


def read_json_document(path: Path) -> Optional[Any]:
    """Return the JSON payload stored at ``path`` or ``None`` if missing/invalid."""
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Failed to read JSON document %s: %s", path, exc)
        return None


def write_json_document(path: Path, payload: Any) -> None:
    """Persist ``payload`` atomically by writing a sibling temp file first."""
    ensure_parent_dir(path)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    tmp_path.replace(path)


class JsonDocumentStore:
    """Cached JSON object on disk, guarded by a file lock across processes."""

    def __init__(self, path: Path, *, root_key: str) -> None:
        self._path = Path(path)
        self._root_key = root_key
        self._cache: Optional[Dict[str, Any]] = None

    def _lock(self) -> FileLock:
        ensure_parent_dir(self._path)
        return FileLock(str(self._path.parent / f"{self._path.name}.lock"), timeout=_LOCK_TIMEOUT)

    def load(self, *, reload: bool = False) -> Dict[str, Any]:
        """Return a copy of the mapping stored under ``root_key``."""
        if self._cache is not None and not reload:
            return deepcopy(self._cache)
        try:
            with self._lock():
                raw = read_json_document(self._path)
        except Timeout as exc:  # pragma: no cover - file lock contention
            raise JsonStoreError(f"{self._path} is locked; please retry.") from exc
        entries = raw.get(self._root_key) if isinstance(raw, dict) else None
        if entries is not None and not isinstance(entries, dict):
            logger.warning("Ignoring malformed %s in %s.", self._root_key, self._path)
            entries = None
        self._cache = dict(entries or {})
        return deepcopy(self._cache)

    def update(self, mutate: Callable[[Dict[str, Any]], None]) -> Dict[str, Any]:
        """Re-read the document under lock, apply ``mutate`` and write it back."""
        try:
            with self._lock():
                raw = read_json_document(self._path)
                entries = raw.get(self._root_key) if isinstance(raw, dict) else None
                current: Dict[str, Any] = dict(entries) if isinstance(entries, dict) else {}
                mutate(current)
                write_json_document(self._path, {self._root_key: current})
        except Timeout as exc:  # pragma: no cover - file lock contention
            raise JsonStoreError(f"{self._path} is locked; please retry.") from exc
        except OSError as exc:
            raise JsonStoreError(f"Failed to write {self._path}: {exc}") from exc
        self._cache = deepcopy(current)
        return deepcopy(current)


__all__ = [
    "JsonDocumentStore",
    "JsonStoreError",
    "ensure_parent_dir",
    "read_json_document",
    "write_json_document",
]
