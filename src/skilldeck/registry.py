from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any

import httpx

from .agents import SKILL_MANIFEST
from .config import DEFAULT_REGISTRY_URL, DEFAULT_TIMEOUT_S
from .errors import (
    ManifestError,
    RegistryDecodeError,
    RegistryError,
    RegistryHTTPError,
    SkillContentNotFoundError,
)
from .manifest import parse_manifest

logger = logging.getLogger(__name__)

RAW_BASE_URL = "https://raw.githubusercontent.com"
GITHUB_API_URL = "https://api.github.com"
CONTENT_TTL_S = 10 * 60
BRANCHES = ("main", "master")


@dataclass(frozen=True)
class RegistrySkill:
    id: str
    skill_id: str
    name: str
    installs: int
    source: str
    installs_yesterday: int | None = None
    change: int | None = None

    @property
    def repo_url(self) -> str:
        return f"https://github.com/{self.source}"

    @property
    def formatted_installs(self) -> str:
        if self.installs >= 1_000_000:
            return f"{self.installs / 1_000_000:.1f}M"
        if self.installs >= 1_000:
            return f"{self.installs / 1_000:.1f}K"
        return str(self.installs)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "RegistrySkill":
        try:
            skill_id = raw["skillId"]
            source = raw["source"]
            name = raw["name"]
            installs = raw["installs"]
        except KeyError as e:
            raise RegistryDecodeError(f"Search result is missing {e.args[0]!r}") from e
        if not isinstance(installs, int) or not all(isinstance(v, str) for v in (skill_id, source, name)):
            raise RegistryDecodeError(f"Search result has unexpected types: {raw!r}")
        return cls(
            id=str(raw.get("id") or f"{source}/{skill_id}"),
            skill_id=skill_id,
            name=name,
            installs=installs,
            source=source,
            installs_yesterday=raw.get("installsYesterday"),
            change=raw.get("change"),
        )


def candidate_urls(source: str, skill_id: str) -> list[str]:
    """Raw SKILL.md locations for the flat and `skills/` monorepo layouts."""
    paths = (skill_id, f"skills/{skill_id}")
    return [f"{RAW_BASE_URL}/{source}/{branch}/{path}/{SKILL_MANIFEST}" for branch in BRANCHES for path in paths]


class RegistryClient:
    """
    Client for the public skills registry search API and for fetching a
    listed skill's SKILL.md straight from GitHub.
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_REGISTRY_URL,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        http: httpx.Client | None = None,
        clock=time.monotonic,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._http = http or httpx.Client(timeout=timeout_s, follow_redirects=True)
        self._clock = clock
        self._lock = threading.Lock()
        self._content_cache: dict[str, tuple[str, float]] = {}

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "RegistryClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _get(self, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._http.get(url, **kwargs)
        except httpx.HTTPError as e:
            raise RegistryError(f"Request failed: {e}") from e

    def search(self, query: str, *, limit: int = 50) -> list[RegistrySkill]:
        resp = self._get(f"{self.base_url}/api/search", params={"q": query, "limit": limit})
        if resp.status_code >= 400:
            raise RegistryHTTPError(resp.status_code, resp.text)
        try:
            payload = resp.json()
        except ValueError as e:
            raise RegistryDecodeError(f"Failed to decode search response: {e}") from e
        if not isinstance(payload, dict) or not isinstance(payload.get("skills"), list):
            raise RegistryDecodeError("Failed to decode search response: no skills list")
        return [RegistrySkill.from_dict(s) for s in payload["skills"] if isinstance(s, dict)]

    def fetch_skill_content(self, source: str, skill_id: str) -> str:
        """
        Return the SKILL.md text for `skill_id` in the GitHub repo `source`.

        Results are cached for ten minutes.
        """
        key = f"{source}/{skill_id}"
        now = self._clock()
        with self._lock:
            cached = self._content_cache.get(key)
            if cached is not None and now - cached[1] < CONTENT_TTL_S:
                return cached[0]

        content = None
        for url in candidate_urls(source, skill_id):
            content = self._fetch_raw(url)
            if content is not None:
                break
        if content is None:
            content = self._discover_via_contents_api(source, skill_id)
        if content is None:
            raise SkillContentNotFoundError(f"SKILL.md for {skill_id!r} not found in {source}")

        with self._lock:
            self._content_cache[key] = (content, self._clock())
        return content

    def clear_cache(self) -> None:
        with self._lock:
            self._content_cache.clear()

    def _fetch_raw(self, url: str) -> str | None:
        resp = self._get(url, headers={"Accept": "text/plain"})
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise RegistryHTTPError(resp.status_code, resp.text)
        try:
            return resp.content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise RegistryDecodeError("Response is not valid UTF-8 text") from e

    def _discover_via_contents_api(self, source: str, skill_id: str) -> str | None:
        # Last resort for repos whose folder name differs from the skill name:
        # list candidate directories and match on the manifest's `name`.
        for branch in BRANCHES:
            for parent in ("skills", ""):
                api_url = f"{GITHUB_API_URL}/repos/{source}/contents"
                if parent:
                    api_url += f"/{parent}"
                resp = self._get(
                    api_url,
                    params={"ref": branch},
                    headers={"Accept": "application/vnd.github.v3+json", "User-Agent": "skilldeck"},
                )
                if resp.status_code != 200:
                    continue
                try:
                    listing = resp.json()
                except ValueError:
                    continue
                if not isinstance(listing, list):
                    continue
                for item in listing:
                    if not isinstance(item, dict) or item.get("type") != "dir" or not item.get("name"):
                        continue
                    path = f"{parent}/{item['name']}" if parent else str(item["name"])
                    content = self._fetch_raw(f"{RAW_BASE_URL}/{source}/{branch}/{path}/{SKILL_MANIFEST}")
                    if content is not None and _names_skill(content, skill_id):
                        return content
        return None


def _names_skill(content: str, skill_id: str) -> bool:
    try:
        return parse_manifest(content).manifest.name == skill_id
    except ManifestError:
        return False
