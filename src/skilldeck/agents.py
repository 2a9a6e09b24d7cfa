from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .errors import SkilldeckError

SKILL_MANIFEST = "SKILL.md"
LOCK_FILENAME = ".skill-lock.json"
CACHE_FILENAME = ".skilldeck-cache.json"


class AgentType(str, Enum):
    CLAUDE_CODE = "claude-code"
    CODEX = "codex"
    GEMINI_CLI = "gemini-cli"
    COPILOT_CLI = "copilot-cli"
    OPENCODE = "opencode"
    ANTIGRAVITY = "antigravity"
    CURSOR = "cursor"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def detect_command(self) -> str:
        return _DETECT_COMMANDS[self]

    @property
    def skills_subpath(self) -> str:
        """Skills directory relative to the user's home directory."""
        return _SKILLS_SUBPATHS[self]

    @property
    def config_subpath(self) -> str | None:
        return _CONFIG_SUBPATHS[self]

    @property
    def is_shared_root(self) -> bool:
        # Codex reads the canonical store directly; it never gets a symlink.
        return self is AgentType.CODEX


_DISPLAY_NAMES = {
    AgentType.CLAUDE_CODE: "Claude Code",
    AgentType.CODEX: "Codex",
    AgentType.GEMINI_CLI: "Gemini CLI",
    AgentType.COPILOT_CLI: "Copilot CLI",
    AgentType.OPENCODE: "OpenCode",
    AgentType.ANTIGRAVITY: "Antigravity",
    AgentType.CURSOR: "Cursor",
}

_DETECT_COMMANDS = {
    AgentType.CLAUDE_CODE: "claude",
    AgentType.CODEX: "codex",
    AgentType.GEMINI_CLI: "gemini",
    AgentType.COPILOT_CLI: "gh",
    AgentType.OPENCODE: "opencode",
    AgentType.ANTIGRAVITY: "antigravity",
    AgentType.CURSOR: "cursor",
}

_SKILLS_SUBPATHS = {
    AgentType.CLAUDE_CODE: ".claude/skills",
    AgentType.CODEX: ".agents/skills",
    AgentType.GEMINI_CLI: ".gemini/skills",
    AgentType.COPILOT_CLI: ".copilot/skills",
    AgentType.OPENCODE: ".config/opencode/skills",
    AgentType.ANTIGRAVITY: ".gemini/antigravity/skills",
    AgentType.CURSOR: ".cursor/skills",
}

_CONFIG_SUBPATHS: dict[AgentType, str | None] = {
    AgentType.CLAUDE_CODE: ".claude",
    AgentType.CODEX: None,
    AgentType.GEMINI_CLI: ".gemini",
    AgentType.COPILOT_CLI: ".copilot",
    AgentType.OPENCODE: ".config/opencode",
    AgentType.ANTIGRAVITY: ".gemini/antigravity",
    AgentType.CURSOR: ".cursor",
}

# Other agents' skills directories that an agent also reads.
_ADDITIONAL_READABLE: dict[AgentType, tuple[AgentType, ...]] = {
    AgentType.COPILOT_CLI: (AgentType.CLAUDE_CODE,),
    AgentType.OPENCODE: (AgentType.CLAUDE_CODE, AgentType.CODEX),
    AgentType.CURSOR: (AgentType.CLAUDE_CODE,),
}


def parse_agent(value: str) -> AgentType:
    raw = value.strip().lower()
    for agent in AgentType:
        if raw in (agent.value, agent.display_name.lower(), agent.name.lower()):
            return agent
    choices = ", ".join(a.value for a in AgentType)
    raise SkilldeckError(f"Unknown agent {value!r}. Expected one of: {choices}")


@dataclass(frozen=True)
class Layout:
    """
    Home-anchored paths for every agent plus the shared store.

    All path lookups go through a Layout so the whole tree can be re-rooted
    (tests point `home` at a temporary directory).
    """

    home: Path

    @classmethod
    def default(cls) -> "Layout":
        return cls(home=Path.home())

    @property
    def shared_skills_dir(self) -> Path:
        return self.home / ".agents" / "skills"

    @property
    def lock_path(self) -> Path:
        return self.home / ".agents" / LOCK_FILENAME

    @property
    def cache_path(self) -> Path:
        return self.home / ".agents" / CACHE_FILENAME

    def skills_dir(self, agent: AgentType) -> Path:
        return self.home / agent.skills_subpath

    def config_dir(self, agent: AgentType) -> Path | None:
        sub = agent.config_subpath
        if sub is None:
            return None
        return self.home / sub

    def additional_readable_dirs(self, agent: AgentType) -> list[tuple[Path, AgentType]]:
        return [(self.skills_dir(src), src) for src in _ADDITIONAL_READABLE.get(agent, ())]

    def shared_root_agent(self) -> AgentType:
        return AgentType.CODEX

    def linkable_agents(self) -> list[AgentType]:
        return [a for a in AgentType if not a.is_shared_root]
