from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

from .atomic import utc_now_iso, write_json_atomic
from .models import LinkedSkillInfo, RepoHistoryEntry

logger = logging.getLogger(__name__)

REPO_HISTORY_LIMIT = 20


class PrivateCache:
    """
    Engine-private state kept out of the shared lock file.

    - `skills`: skill id -> commit hash the local copy corresponds to
    - `linkedSkills`: provenance for skills linked to a repo by hand
    - `repoHistory`: recently scanned repositories, newest first

    Everything here can be re-derived, so a missing or corrupt file loads as
    empty state instead of failing.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._loaded = False
        self._hashes: dict[str, str] = {}
        self._linked: dict[str, LinkedSkillInfo] = {}
        self._history: list[RepoHistoryEntry] = []

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ValueError("cache file is not a JSON object")
            skills = raw.get("skills") or {}
            linked = raw.get("linkedSkills") or {}
            history = raw.get("repoHistory") or []
            self._hashes = {str(k): str(v) for k, v in skills.items() if isinstance(v, str)}
            self._linked = {str(k): LinkedSkillInfo.from_dict(v) for k, v in linked.items() if isinstance(v, dict)}
            self._history = [RepoHistoryEntry.from_dict(h) for h in history if isinstance(h, dict)]
        except (OSError, ValueError, AttributeError) as e:
            logger.warning("Ignoring unreadable cache %s: %s", self.path, e)
            self._hashes, self._linked, self._history = {}, {}, []

    def get_hash(self, skill_id: str) -> str | None:
        with self._lock:
            self._ensure_loaded()
            return self._hashes.get(skill_id)

    def set_hash(self, skill_id: str, commit_hash: str) -> None:
        with self._lock:
            self._ensure_loaded()
            self._hashes[skill_id] = commit_hash

    def remove_hash(self, skill_id: str) -> None:
        with self._lock:
            self._ensure_loaded()
            self._hashes.pop(skill_id, None)

    def get_linked_info(self, skill_id: str) -> LinkedSkillInfo | None:
        with self._lock:
            self._ensure_loaded()
            return self._linked.get(skill_id)

    def set_linked_info(self, skill_id: str, info: LinkedSkillInfo) -> None:
        with self._lock:
            self._ensure_loaded()
            self._linked[skill_id] = info

    def remove_linked_info(self, skill_id: str) -> None:
        with self._lock:
            self._ensure_loaded()
            self._linked.pop(skill_id, None)

    def all_linked_infos(self) -> dict[str, LinkedSkillInfo]:
        with self._lock:
            self._ensure_loaded()
            return dict(self._linked)

    def add_repo_history(self, source: str, source_url: str) -> None:
        with self._lock:
            self._ensure_loaded()
            key = source.casefold()
            history = [h for h in self._history if h.source.casefold() != key]
            history.insert(0, RepoHistoryEntry(source=source, source_url=source_url, scanned_at=utc_now_iso()))
            self._history = history[:REPO_HISTORY_LIMIT]

    def repo_history(self) -> list[RepoHistoryEntry]:
        with self._lock:
            self._ensure_loaded()
            return list(self._history)

    def save(self) -> None:
        with self._lock:
            self._ensure_loaded()
            payload: dict[str, object] = {"skills": dict(self._hashes)}
            if self._linked:
                payload["linkedSkills"] = {k: v.to_dict() for k, v in self._linked.items()}
            if self._history:
                payload["repoHistory"] = [h.to_dict() for h in self._history]
            write_json_atomic(self.path, payload)
