"""YAML documents that are re-read only when their modification time advances."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

log = logging.getLogger(__name__)


class WatchedDocument:
    def __init__(self, path: Path) -> None:
        self.path = path
        self._mtime_ns: Optional[int] = None
        self._data: Dict[str, Any] = {}

    def load(self) -> Dict[str, Any]:
        try:
            mtime_ns = self.path.stat().st_mtime_ns
        except FileNotFoundError:
            if self._mtime_ns is not None:
                log.warning("Rule document %s disappeared; using empty rules.", self.path)
            self._mtime_ns = None
            self._data = {}
            return self._data

        if self._mtime_ns is not None and mtime_ns <= self._mtime_ns:
            return self._data

        try:
            raw = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            log.warning("Unable to read rule document %s: %s", self.path, exc)
            # keep serving the last good copy until the file changes again
            self._mtime_ns = mtime_ns
            return self._data

        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            log.warning("Rule document %s must contain a mapping at the root.", self.path)
            raw = {}
        self._data = raw
        self._mtime_ns = mtime_ns
        log.info("Loaded rule document %s (%d entries).", self.path, len(raw))
        return self._data

    def get_list(self, key: Optional[str]) -> Optional[List[str]]:
        """Return the named list as strings, or ``None`` if absent or malformed."""
        if not key:
            return None
        value = self.load().get(key)
        if value is None:
            return None
        if not isinstance(value, list):
            log.warning("Entry %r in %s is not a list.", key, self.path)
            return None
        return [str(item) for item in value if item is not None]
