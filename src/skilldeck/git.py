from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from .agents import SKILL_MANIFEST
from .errors import (
    CloneFailedError,
    GitCommandError,
    GitNotInstalledError,
    HashResolutionError,
    InvalidRepoURLError,
)
from .manifest import load_manifest_or_placeholder
from .models import SkillManifest

logger = logging.getLogger(__name__)

# Checked when `git` is not on PATH (GUI launchers often run with a bare PATH).
_FALLBACK_GIT_PATHS = ("/usr/bin/git", "/usr/local/bin/git", "/opt/homebrew/bin/git")

CLONE_PREFIX = "skilldeck-"


@dataclass(frozen=True)
class DiscoveredSkill:
    id: str
    folder_path: str
    skill_md_path: str
    manifest: SkillManifest
    body: str


def normalize_repo_url(value: str) -> tuple[str, str]:
    """
    Turn user input into `(clone_url, source)`.

    Accepts `owner/repo`, `owner/repo.git` or an https URL; the clone URL always
    ends in `.git` and `source` is `owner/repo` for GitHub URLs.
    """
    trimmed = value.strip()
    if not trimmed:
        raise InvalidRepoURLError(value)

    if trimmed.lower().startswith("https://"):
        source = trimmed
        prefix = "https://github.com/"
        if source.lower().startswith(prefix):
            source = source[len(prefix) :]
        source = source.rstrip("/")
        if source.endswith(".git"):
            source = source[: -len(".git")]
        repo_url = trimmed.rstrip("/")
        if not repo_url.endswith(".git"):
            repo_url += ".git"
        return repo_url, source

    parts = trimmed.split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise InvalidRepoURLError(value)
    owner, repo = parts
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    if not repo:
        raise InvalidRepoURLError(value)
    source = f"{owner}/{repo}"
    return f"https://github.com/{source}.git", source


def github_web_url(source_url: str) -> str | None:
    if "github.com" not in source_url.lower():
        return None
    url = source_url
    if url.endswith(".git"):
        url = url[: -len(".git")]
    return url.rstrip("/")


class GitClient:
    """
    Thin wrapper around the `git` binary.

    Subprocesses are independent and may run concurrently; only the resolved
    binary path is shared state.
    """

    def __init__(self, *, git_binary: str | None = None, timeout_s: float | None = None) -> None:
        self._configured_binary = git_binary
        self.timeout_s = timeout_s
        self._lock = threading.Lock()
        self._git_path: str | None = None

    def git_path(self) -> str:
        with self._lock:
            if self._git_path is None:
                self._git_path = self._find_git()
            return self._git_path

    def _find_git(self) -> str:
        if self._configured_binary:
            found = shutil.which(self._configured_binary)
            if found:
                return found
            raise GitNotInstalledError()
        found = shutil.which("git")
        if found:
            return found
        for candidate in _FALLBACK_GIT_PATHS:
            if os.access(candidate, os.X_OK):
                return candidate
        raise GitNotInstalledError()

    def is_available(self) -> bool:
        try:
            self.git_path()
        except GitNotInstalledError:
            return False
        return True

    def run(self, args: list[str], *, cwd: Path | None = None) -> str:
        git = self.git_path()
        env = dict(os.environ)
        # Never block on a credential prompt for private/missing repos.
        env["GIT_TERMINAL_PROMPT"] = "0"
        try:
            proc = subprocess.run(
                [git, *args],
                cwd=str(cwd) if cwd is not None else None,
                capture_output=True,
                text=True,
                check=False,
                env=env,
                timeout=self.timeout_s,
            )
        except FileNotFoundError as e:
            with self._lock:
                self._git_path = None
            raise GitNotInstalledError() from e
        except (OSError, subprocess.TimeoutExpired) as e:
            raise GitCommandError(args, str(e)) from e

        if proc.returncode != 0:
            message = (proc.stderr or "").strip() or (proc.stdout or "").strip()
            raise GitCommandError(args, message)
        return proc.stdout or ""

    def clone(self, url: str, *, shallow: bool) -> Path:
        """Clone into a fresh temporary directory. The caller owns cleanup."""
        target = Path(tempfile.mkdtemp(prefix=CLONE_PREFIX))
        args = ["clone"]
        if shallow:
            args += ["--depth", "1"]
        args += [url, str(target)]
        logger.debug("Cloning %s (shallow=%s) into %s", url, shallow, target)
        try:
            self.run(args)
        except GitCommandError as e:
            self.cleanup(target)
            raise CloneFailedError(args, e.output) from e
        except BaseException:
            self.cleanup(target)
            raise
        return target

    @contextmanager
    def cloned(self, url: str, *, shallow: bool) -> Iterator[Path]:
        repo_dir = self.clone(url, shallow=shallow)
        try:
            yield repo_dir
        finally:
            self.cleanup(repo_dir)

    def cleanup(self, repo_dir: Path) -> None:
        shutil.rmtree(repo_dir, ignore_errors=True)

    def commit_hash(self, repo_dir: Path) -> str:
        value = self.run(["rev-parse", "HEAD"], cwd=repo_dir).strip()
        if not value:
            raise HashResolutionError("Empty commit hash")
        return value

    def tree_hash(self, repo_dir: Path, path: str) -> str:
        """Tree hash of `path` at HEAD; changes whenever anything under it changes."""
        value = self.run(["rev-parse", f"HEAD:{path}"], cwd=repo_dir).strip()
        if not value:
            raise HashResolutionError(f"Empty hash for path: {path}")
        return value

    def find_commit_for_tree_hash(self, tree_hash: str, path: str, repo_dir: Path) -> str | None:
        """
        Walk the history of `path` newest-first and return the first commit at
        which `path` had `tree_hash`. Needs a full (non-shallow) clone.
        """
        log = self.run(["log", "--format=%H", "--", path or "."], cwd=repo_dir)
        for commit in (line.strip() for line in log.splitlines()):
            if not commit:
                continue
            try:
                value = self.run(["rev-parse", f"{commit}:{path}"], cwd=repo_dir).strip()
            except GitCommandError:
                # Path did not exist at this commit.
                continue
            if value == tree_hash:
                return commit
        return None

    def scan_skills_in_repo(self, repo_dir: Path) -> list[DiscoveredSkill]:
        """
        Find every SKILL.md in a checkout.

        Only `.git` is skipped; other hidden directories are searched because
        some ecosystems keep skills under e.g. `.claude/skills/`.
        """
        root = Path(repo_dir)
        discovered: list[DiscoveredSkill] = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if d != ".git")
            if SKILL_MANIFEST not in filenames:
                continue
            skill_dir = Path(dirpath)
            folder_path = skill_dir.relative_to(root).as_posix()
            if folder_path == ".":
                folder_path = ""
            skill_md_path = f"{folder_path}/{SKILL_MANIFEST}" if folder_path else SKILL_MANIFEST
            parsed = load_manifest_or_placeholder(skill_dir / SKILL_MANIFEST, fallback_name=skill_dir.name)
            discovered.append(
                DiscoveredSkill(
                    id=skill_dir.name,
                    folder_path=folder_path,
                    skill_md_path=skill_md_path,
                    manifest=parsed.manifest,
                    body=parsed.body,
                )
            )
        discovered.sort(key=lambda s: s.id.lower())
        return discovered
