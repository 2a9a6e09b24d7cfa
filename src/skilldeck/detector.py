from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from pathlib import Path

from .agents import SKILL_MANIFEST, AgentType, Layout
from .models import AgentStatus

logger = logging.getLogger(__name__)


class AgentDetector:
    """Reports which agents are installed and how many skills each one sees."""

    def __init__(self, layout: Layout, *, which: Callable[[str], str | None] = shutil.which) -> None:
        self.layout = layout
        self._which = which

    def detect_all(self) -> list[AgentStatus]:
        return [self.detect(agent) for agent in AgentType]

    def detect(self, agent: AgentType) -> AgentStatus:
        config_dir = self.layout.config_dir(agent)
        skills_dir = self.layout.skills_dir(agent)
        skills_exists = skills_dir.exists()
        return AgentStatus(
            agent=agent,
            is_installed=self._which(agent.detect_command) is not None,
            config_directory_exists=config_dir is not None and config_dir.exists(),
            skills_directory_exists=skills_exists,
            skill_count=count_skills(skills_dir) if skills_exists else 0,
        )


def count_skills(directory: Path) -> int:
    try:
        children = list(directory.iterdir())
    except OSError as e:
        logger.debug("Could not list %s: %s", directory, e)
        return 0
    return sum(
        1
        for child in children
        if not child.name.startswith(".") and child.is_dir() and (child / SKILL_MANIFEST).is_file()
    )
