from __future__ import annotations

import logging
import threading
from pathlib import Path

from . import links
from .agents import SKILL_MANIFEST, Layout
from .installations import find_installations
from .manifest import load_manifest_or_placeholder
from .models import ScopeKind, Skill, SkillScope

logger = logging.getLogger(__name__)


class SkillScanner:
    """
    Builds the deduplicated skill list from the canonical store and every
    agent directory. One scan runs at a time.
    """

    def __init__(self, layout: Layout) -> None:
        self.layout = layout
        self._lock = threading.Lock()

    def scan_all(self) -> list[Skill]:
        with self._lock:
            by_id: dict[str, Skill] = {}
            for skill in self.scan_directory(self.layout.shared_skills_dir, SkillScope.shared_global()):
                by_id[skill.id] = skill

            for agent in self.layout.linkable_agents():
                for skill in self.scan_directory(self.layout.skills_dir(agent), SkillScope.agent_local(agent)):
                    existing = by_id.get(skill.id)
                    if existing is None:
                        by_id[skill.id] = skill
                        continue
                    _merge_into(existing, skill)

            return sorted(by_id.values(), key=lambda s: s.display_name.lower())

    def scan_directory(self, directory: Path, scope: SkillScope) -> list[Skill]:
        if not directory.is_dir():
            return []
        try:
            entries = sorted(directory.iterdir(), key=lambda p: p.name)
        except OSError as e:
            logger.warning("Could not list %s: %s", directory, e)
            return []

        out: list[Skill] = []
        for entry in entries:
            if entry.name.startswith("."):
                continue
            try:
                skill = self._parse_skill_directory(entry, scope)
            except OSError as e:
                logger.warning("Skipping unreadable skill %s: %s", entry, e)
                continue
            if skill is not None:
                out.append(skill)
        return out

    def _parse_skill_directory(self, entry: Path, scope: SkillScope) -> Skill | None:
        name = entry.name
        canonical = links.resolve(entry) if links.is_link(entry) else entry
        manifest_path = canonical / SKILL_MANIFEST
        if not manifest_path.is_file():
            return None

        parsed = load_manifest_or_placeholder(manifest_path, fallback_name=name)
        return Skill(
            id=name,
            canonical_path=canonical,
            manifest=parsed.manifest,
            markdown_body=parsed.body,
            scope=scope,
            installations=find_installations(self.layout, name, canonical),
        )


def _merge_into(existing: Skill, other: Skill) -> None:
    # One row per agent: the first occurrence (canonical store first) wins.
    known = {inst.agent for inst in existing.installations}
    for inst in other.installations:
        if inst.agent not in known:
            existing.installations.append(inst)
            known.add(inst.agent)
    if existing.scope.kind is ScopeKind.AGENT_LOCAL and len(existing.installations) > 1:
        existing.scope = SkillScope.shared_global()
