from __future__ import annotations

import logging
from collections.abc import Iterable
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from .agents import AgentType
from .errors import InvalidTransitionError, SkilldeckError
from .git import DiscoveredSkill, GitClient, normalize_repo_url

if TYPE_CHECKING:
    from .manager import SkillManager

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    AWAITING_INPUT = "awaiting-input"
    FETCHING = "fetching"
    SELECTING = "selecting"
    INSTALLING = "installing"
    COMPLETED = "completed"
    ERRORED = "errored"


class InstallFlow:
    """
    Clone a repository, let the caller pick skills, install them.

    awaiting-input -> fetching -> selecting -> installing -> completed, with
    errored reachable from the first three. Failures of individual skills
    while installing are counted, not fatal.
    """

    def __init__(self, manager: "SkillManager", *, git: GitClient | None = None) -> None:
        self.manager = manager
        self.git = git or manager.git
        self.phase = Phase.AWAITING_INPUT
        self.error_message: str | None = None
        self.repo_url = ""
        self.source = ""
        self.discovered: list[DiscoveredSkill] = []
        self.selected: set[str] = set()
        self.already_installed: set[str] = set()
        self.installed_count = 0
        self.failed: list[tuple[str, str]] = []
        self._repo_dir: Path | None = None

    def _require(self, *phases: Phase) -> None:
        if self.phase not in phases:
            allowed = ", ".join(p.value for p in phases)
            raise InvalidTransitionError(f"Cannot do that while {self.phase.value} (expected {allowed})")

    def _fail(self, message: str) -> None:
        self._discard_clone()
        self.phase = Phase.ERRORED
        self.error_message = message
        logger.info("Install flow failed: %s", message)

    def fetch(self, repo_input: str) -> list[DiscoveredSkill]:
        """Clone and scan; on success the flow is waiting for a selection."""
        self._require(Phase.AWAITING_INPUT)
        self.phase = Phase.FETCHING
        try:
            self.repo_url, self.source = normalize_repo_url(repo_input)
        except SkilldeckError as e:
            self._fail(str(e))
            return []
        if not self.git.is_available():
            self._fail("Git is not installed. Please install git first.")
            return []

        try:
            self._repo_dir = self.git.clone(self.repo_url, shallow=True)
        except (SkilldeckError, OSError) as e:
            self._fail(str(e))
            return []

        # Any failure from here on must not leave the clone behind.
        try:
            discovered = self.git.scan_skills_in_repo(self._repo_dir)
            if not discovered:
                self._fail("No skills found in this repository.")
                return []

            self.manager.cache.add_repo_history(self.source, self.repo_url)
            self.manager.cache.save()
            already_installed = {s.id for s in self.manager.skills}
        except (SkilldeckError, OSError) as e:
            self._fail(str(e))
            return []
        except BaseException as e:
            self._fail(str(e) or type(e).__name__)
            raise

        self.discovered = discovered
        self.already_installed = already_installed
        self.selected = {s.id for s in discovered if s.id not in self.already_installed}
        self.phase = Phase.SELECTING
        return list(discovered)

    def toggle(self, skill_id: str) -> None:
        self._require(Phase.SELECTING)
        if skill_id in self.selected:
            self.selected.discard(skill_id)
        elif any(s.id == skill_id for s in self.discovered):
            self.selected.add(skill_id)
        else:
            raise SkilldeckError(f"Skill {skill_id!r} is not in {self.source}")

    def select(self, skill_ids: Iterable[str]) -> None:
        """Replace the selection."""
        self._require(Phase.SELECTING)
        wanted = set(skill_ids)
        unknown = wanted - {s.id for s in self.discovered}
        if unknown:
            raise SkilldeckError(f"Not in {self.source}: {', '.join(sorted(unknown))}")
        self.selected = wanted

    def install_selected(self, target_agents: Iterable[AgentType] = (AgentType.CLAUDE_CODE,)) -> int:
        """Install every selected skill. Returns how many succeeded."""
        self._require(Phase.SELECTING)
        if not self.selected:
            raise InvalidTransitionError("No skills selected")
        if self._repo_dir is None:
            raise InvalidTransitionError("The repository clone is no longer available")

        agents = list(target_agents)
        self.phase = Phase.INSTALLING
        self.installed_count = 0
        self.failed = []
        try:
            for skill in self.discovered:
                if skill.id not in self.selected:
                    continue
                try:
                    self.manager.install_skill(
                        self._repo_dir,
                        skill,
                        repo_source=self.source,
                        repo_url=self.repo_url,
                        target_agents=agents,
                    )
                except (SkilldeckError, OSError) as e:
                    logger.warning("Skipping %s: %s", skill.id, e)
                    self.failed.append((skill.id, str(e)))
                    continue
                self.installed_count += 1
        finally:
            self._discard_clone()
        self.phase = Phase.COMPLETED
        return self.installed_count

    def cancel(self) -> None:
        """Drop the temporary clone and start over."""
        self._discard_clone()
        self.phase = Phase.AWAITING_INPUT
        self.error_message = None
        self.repo_url = ""
        self.source = ""
        self.discovered = []
        self.selected = set()
        self.already_installed = set()
        self.installed_count = 0
        self.failed = []

    reset = cancel

    def _discard_clone(self) -> None:
        if self._repo_dir is not None:
            self.git.cleanup(self._repo_dir)
            self._repo_dir = None
