from __future__ import annotations

import logging
import shutil
import threading
from collections.abc import Iterable
from pathlib import Path

from . import links
from .agents import AgentType, Layout
from .atomic import replace_directory, utc_now_iso, write_text_atomic
from .cache import PrivateCache
from .config import Config
from .detector import AgentDetector
from .errors import RegistryReadError, SkilldeckError, SkillNotFoundError
from .git import DiscoveredSkill, GitClient
from .lockfile import LockFileStore
from .manifest import serialize_manifest
from .models import (
    AgentStatus,
    LockEntry,
    RepoHistoryEntry,
    Skill,
    SkillManifest,
    UpdateCheckResult,
    UpdateState,
    UpdateStatus,
)
from .scanner import SkillScanner
from .updates import SOURCE_TYPE_GITHUB, UpdateCoordinator

logger = logging.getLogger(__name__)


class SkillManager:
    """
    Facade over the scanner, link store, registries and update checks.

    Skills and installations are projections rebuilt by `refresh()`; every
    write operation ends with a refresh. Writes and refreshes share one
    re-entrant lock so a write never observes a half-finished scan.
    """

    def __init__(
        self,
        layout: Layout | None = None,
        *,
        git: GitClient | None = None,
        lockfile: LockFileStore | None = None,
        cache: PrivateCache | None = None,
        detector: AgentDetector | None = None,
        max_parallel_clones: int = 4,
    ) -> None:
        self.layout = layout or Layout.default()
        self.git = git or GitClient()
        self.lockfile = lockfile or LockFileStore(self.layout.lock_path)
        self.cache = cache or PrivateCache(self.layout.cache_path)
        self.detector = detector or AgentDetector(self.layout)
        self.scanner = SkillScanner(self.layout)
        self.updates = UpdateCoordinator(self.git, self.lockfile, self.cache, max_workers=max_parallel_clones)

        self._op_lock = threading.RLock()
        self._skills: list[Skill] = []
        self._agents: list[AgentStatus] = []
        self._statuses: dict[str, UpdateStatus] = {}
        self._loaded = False

    @classmethod
    def from_config(cls, cfg: Config) -> "SkillManager":
        return cls(
            cfg.layout(),
            git=GitClient(git_binary=cfg.git_binary, timeout_s=cfg.git_timeout_s),
            max_parallel_clones=cfg.max_parallel_clones,
        )

    # -- read side -----------------------------------------------------------

    @property
    def skills(self) -> list[Skill]:
        with self._op_lock:
            if not self._loaded:
                self.refresh()
            return list(self._skills)

    @property
    def agents(self) -> list[AgentStatus]:
        with self._op_lock:
            if not self._loaded:
                self.refresh()
            return list(self._agents)

    def update_status(self, skill_id: str) -> UpdateStatus:
        with self._op_lock:
            return self._statuses.get(skill_id, UpdateStatus(state=UpdateState.NOT_CHECKED))

    def refresh(self) -> list[Skill]:
        with self._op_lock:
            skills = self.scanner.scan_all()

            if self.lockfile.exists:
                self.lockfile.invalidate_cache()
                try:
                    entries = self.lockfile.entries()
                except RegistryReadError as e:
                    logger.warning("%s", e)
                    entries = {}
                for skill in skills:
                    skill.lock_entry = entries.get(skill.id)

            linked = self.cache.all_linked_infos()
            for skill in skills:
                if skill.lock_entry is None and skill.id in linked:
                    skill.lock_entry = linked[skill.id].as_lock_entry()

            for skill in skills:
                status = self._statuses.get(skill.id)
                if status is not None:
                    _apply_status(skill, status)
                skill.local_commit_hash = self.cache.get_hash(skill.id)

            self._agents = self.detector.detect_all()
            self._skills = skills
            self._loaded = True
            logger.debug("Refreshed: %d skills", len(skills))
            return list(skills)

    def get_skill(self, skill_id: str) -> Skill:
        for skill in self.skills:
            if skill.id == skill_id:
                return skill
        raise SkillNotFoundError(f"Skill not found: {skill_id}")

    def skills_for(self, agent: AgentType) -> list[Skill]:
        return [s for s in self.skills if s.installation_for(agent) is not None]

    def search(self, query: str) -> list[Skill]:
        skills = self.skills
        if not query:
            return skills
        q = query.lower()

        def matches(s: Skill) -> bool:
            fields = [s.display_name, s.manifest.description]
            if s.lock_entry is not None:
                fields.append(s.lock_entry.source)
            if s.manifest.author:
                fields.append(s.manifest.author)
            return any(q in f.lower() for f in fields)

        return [s for s in skills if matches(s)]

    def repo_history(self) -> list[RepoHistoryEntry]:
        return self.cache.repo_history()

    # -- write side ----------------------------------------------------------

    def delete_skill(self, skill_id: str) -> None:
        """Remove every direct link, the canonical directory and all bookkeeping."""
        with self._op_lock:
            skill = self.get_skill(skill_id)
            for inst in skill.installations:
                if inst.is_symlink and not inst.is_inherited:
                    links.remove_link(skill.id, self.layout.skills_dir(inst.agent))

            canonical = skill.canonical_path
            if canonical.exists():
                shutil.rmtree(canonical)

            if skill.lock_entry is not None and not skill.lock_entry.linked and self.lockfile.exists:
                self.lockfile.remove_entry(skill.id)
            self.cache.remove_hash(skill.id)
            self.cache.remove_linked_info(skill.id)
            self.cache.save()
            self._statuses.pop(skill.id, None)
            logger.info("Deleted %s", skill.id)
            self.refresh()

    def save_skill(self, skill_id: str, manifest: SkillManifest, body: str) -> None:
        with self._op_lock:
            skill = self.get_skill(skill_id)
            write_text_atomic(skill.manifest_path, serialize_manifest(manifest, body))
            self.refresh()

    def assign_skill(self, skill_id: str, agent: AgentType) -> Path:
        with self._op_lock:
            skill = self.get_skill(skill_id)
            link = links.create_link(skill.canonical_path, self.layout.skills_dir(agent))
            logger.info("Linked %s into %s", skill.id, agent.value)
            self.refresh()
            return link

    def unassign_skill(self, skill_id: str, agent: AgentType) -> bool:
        with self._op_lock:
            skill = self.get_skill(skill_id)
            removed = links.remove_link(skill.id, self.layout.skills_dir(agent))
            self.refresh()
            return removed

    def toggle_assignment(self, skill_id: str, agent: AgentType) -> None:
        with self._op_lock:
            skill = self.get_skill(skill_id)
            inst = skill.installation_for(agent)
            if inst is not None and inst.is_inherited:
                # Comes from another agent's directory; nothing to toggle here.
                return
            if agent.is_shared_root and inst is not None and not inst.is_symlink:
                # The canonical copy itself.
                return
            if inst is not None:
                self.unassign_skill(skill_id, agent)
            else:
                self.assign_skill(skill_id, agent)

    def install_skill(
        self,
        repo_dir: Path,
        skill: DiscoveredSkill,
        *,
        repo_source: str,
        repo_url: str,
        target_agents: Iterable[AgentType],
    ) -> None:
        """Install one discovered skill from an already-cloned repository."""
        with self._op_lock:
            tree = self.git.tree_hash(repo_dir, skill.folder_path)
            commit = self.git.commit_hash(repo_dir)

            canonical = self.layout.shared_skills_dir / skill.id
            src = repo_dir / skill.folder_path if skill.folder_path else repo_dir
            replace_directory(src, canonical)

            self.cache.set_hash(skill.id, commit)
            self.cache.save()

            for agent in target_agents:
                if agent.is_shared_root:
                    continue
                try:
                    links.create_link(canonical, self.layout.skills_dir(agent))
                except (SkilldeckError, OSError) as e:
                    logger.warning("Could not link %s into %s: %s", skill.id, agent.value, e)

            self.lockfile.create_if_not_exists()
            now = utc_now_iso()
            existing = self.lockfile.get_entry(skill.id)
            entry = LockEntry(
                source=repo_source,
                source_type=SOURCE_TYPE_GITHUB,
                source_url=repo_url,
                skill_path=skill.skill_md_path,
                skill_folder_hash=tree,
                installed_at=now,
                updated_at=now,
                extra=dict(existing.extra) if existing is not None else {},
            )
            self.lockfile.update_entry(skill.id, entry)
            self._statuses.pop(skill.id, None)
            logger.info("Installed %s from %s", skill.id, repo_source)
            self.refresh()

    # -- updates -------------------------------------------------------------

    def check_for_update(self, skill_id: str) -> UpdateCheckResult:
        """User-triggered single check; failures are raised."""
        skill = self.get_skill(skill_id)
        entry = skill.lock_entry
        if entry is None:
            return UpdateCheckResult(has_update=False, remote_tree_hash=None, remote_commit_hash=None)

        self._set_status(skill_id, UpdateStatus(state=UpdateState.CHECKING))
        try:
            result = self.updates.check_skill(skill_id, entry)
        except (SkilldeckError, OSError) as e:
            self._set_status(skill_id, UpdateStatus.error(str(e)))
            raise
        local = self.cache.get_hash(skill_id)
        if result.has_update:
            status = UpdateStatus(
                state=UpdateState.HAS_UPDATE,
                remote_tree_hash=result.remote_tree_hash,
                remote_commit_hash=result.remote_commit_hash,
                local_commit_hash=local,
            )
        else:
            status = UpdateStatus(state=UpdateState.UP_TO_DATE, local_commit_hash=local)
        self._set_status(skill_id, status)
        return result

    def check_all_updates(self) -> dict[str, UpdateStatus]:
        """Check every skill with a source; per-skill failures become error statuses."""
        with self._op_lock:
            entries = {s.id: s.lock_entry for s in self.skills if s.lock_entry is not None}
            for skill_id in entries:
                self._statuses[skill_id] = UpdateStatus(state=UpdateState.CHECKING)

        statuses: dict[str, UpdateStatus] = {}
        try:
            # Clones run outside the operation lock so refreshes are not blocked.
            statuses = self.updates.check_all(entries)
        finally:
            with self._op_lock:
                for skill_id in entries:
                    status = statuses.get(skill_id)
                    if status is None:
                        current = self._statuses.get(skill_id)
                        if current is None or current.state is not UpdateState.CHECKING:
                            continue
                        status = UpdateStatus(state=UpdateState.NOT_CHECKED)
                    self._set_status(skill_id, status)
        return statuses

    def auto_check_updates(self) -> dict[str, UpdateStatus]:
        """Background variant of `check_all_updates`; never raises."""
        try:
            return self.check_all_updates()
        except (SkilldeckError, OSError) as e:
            logger.debug("Automatic update check failed: %s", e)
            return {}

    def update_skill(self, skill_id: str) -> LockEntry:
        with self._op_lock:
            skill = self.get_skill(skill_id)
            if skill.lock_entry is None:
                raise SkilldeckError(f"Skill {skill_id!r} has no source repository")
            updated = self.updates.apply_update(skill_id, skill.lock_entry, skill.canonical_path)
            self._statuses[skill_id] = UpdateStatus(state=UpdateState.NOT_CHECKED)
            self.refresh()
            return updated

    def link_skill_to_repository(self, skill_id: str, repo_input: str) -> None:
        with self._op_lock:
            skill = self.get_skill(skill_id)
            self.updates.link_to_repository(skill.id, skill.canonical_path, repo_input)
            self._statuses.pop(skill_id, None)
            self.refresh()

    def _set_status(self, skill_id: str, status: UpdateStatus) -> None:
        with self._op_lock:
            self._statuses[skill_id] = status
            for skill in self._skills:
                if skill.id == skill_id:
                    _apply_status(skill, status)


def _apply_status(skill: Skill, status: UpdateStatus) -> None:
    skill.has_update = status.state is UpdateState.HAS_UPDATE
    skill.remote_tree_hash = status.remote_tree_hash if skill.has_update else None
    skill.remote_commit_hash = status.remote_commit_hash if skill.has_update else None
    if status.local_commit_hash is not None:
        skill.local_commit_hash = status.local_commit_hash
