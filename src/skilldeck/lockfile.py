from __future__ import annotations

import copy
import json
import logging
import threading
from pathlib import Path
from typing import Any

from .atomic import write_json_atomic
from .errors import RegistryReadError
from .models import LockEntry

logger = logging.getLogger(__name__)

LOCK_FILE_VERSION = 3


class LockFileStore:
    """
    The shared `.skill-lock.json` registry.

    The file format belongs to the external `skills` tool: only the `skills`
    map is touched here, every other top-level key (and every unknown key
    inside an entry) is written back as it was read.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._cached: dict[str, Any] | None = None

    @property
    def exists(self) -> bool:
        return self.path.is_file()

    def _read_unlocked(self) -> dict[str, Any]:
        if self._cached is not None:
            return self._cached
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise RegistryReadError(f"Lock file not found: {self.path}") from e
        except (OSError, ValueError) as e:
            raise RegistryReadError(f"Could not read lock file {self.path}: {e}") from e
        if not isinstance(raw, dict):
            raise RegistryReadError(f"Lock file {self.path} is not a JSON object")
        if not isinstance(raw.get("skills"), dict):
            raw["skills"] = {}
        self._cached = raw
        return raw

    def _write_unlocked(self, data: dict[str, Any]) -> None:
        write_json_atomic(self.path, data)
        self._cached = data

    def read(self) -> dict[str, Any]:
        """Return a copy of the whole document."""
        with self._lock:
            return copy.deepcopy(self._read_unlocked())

    def version(self) -> int | None:
        with self._lock:
            v = self._read_unlocked().get("version")
            return v if isinstance(v, int) else None

    def entries(self) -> dict[str, LockEntry]:
        with self._lock:
            skills = self._read_unlocked()["skills"]
            return {k: LockEntry.from_dict(v) for k, v in skills.items() if isinstance(v, dict)}

    def get_entry(self, skill_id: str) -> LockEntry | None:
        with self._lock:
            raw = self._read_unlocked()["skills"].get(skill_id)
            return LockEntry.from_dict(raw) if isinstance(raw, dict) else None

    def update_entry(self, skill_id: str, entry: LockEntry) -> None:
        with self._lock:
            data = copy.deepcopy(self._read_unlocked())
            data["skills"][skill_id] = entry.to_dict()
            self._write_unlocked(data)

    def remove_entry(self, skill_id: str) -> None:
        with self._lock:
            data = copy.deepcopy(self._read_unlocked())
            if data["skills"].pop(skill_id, None) is None:
                return
            self._write_unlocked(data)

    def invalidate_cache(self) -> None:
        with self._lock:
            self._cached = None

    def create_if_not_exists(self) -> bool:
        """Create an empty registry the external tool accepts. Returns True if created."""
        with self._lock:
            if self.path.exists():
                return False
            self._write_unlocked(
                {
                    "version": LOCK_FILE_VERSION,
                    "skills": {},
                    "dismissed": {},
                    "lastSelectedAgents": [],
                }
            )
            logger.info("Created lock file %s", self.path)
            return True
