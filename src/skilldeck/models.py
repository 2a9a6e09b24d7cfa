from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .agents import SKILL_MANIFEST, AgentType

LOCK_ENTRY_FIELDS = (
    "source",
    "sourceType",
    "sourceUrl",
    "skillPath",
    "skillFolderHash",
    "installedAt",
    "updatedAt",
)


class ScopeKind(str, Enum):
    SHARED_GLOBAL = "global"
    AGENT_LOCAL = "local"
    PROJECT = "project"


@dataclass(frozen=True)
class SkillScope:
    kind: ScopeKind
    agent: AgentType | None = None
    project_path: Path | None = None

    @classmethod
    def shared_global(cls) -> "SkillScope":
        return cls(kind=ScopeKind.SHARED_GLOBAL)

    @classmethod
    def agent_local(cls, agent: AgentType) -> "SkillScope":
        return cls(kind=ScopeKind.AGENT_LOCAL, agent=agent)

    @classmethod
    def project(cls, path: Path) -> "SkillScope":
        return cls(kind=ScopeKind.PROJECT, project_path=path)

    @property
    def id(self) -> str:
        if self.kind is ScopeKind.AGENT_LOCAL and self.agent is not None:
            return f"local-{self.agent.value}"
        if self.kind is ScopeKind.PROJECT:
            return f"project-{self.project_path}"
        return "global"

    @property
    def display_name(self) -> str:
        if self.kind is ScopeKind.AGENT_LOCAL and self.agent is not None:
            return f"{self.agent.display_name} Local"
        if self.kind is ScopeKind.PROJECT:
            return "Project"
        return "Global"


@dataclass(frozen=True)
class SkillManifest:
    name: str
    description: str = ""
    license: str | None = None
    author: str | None = None
    version: str | None = None
    allowed_tools: str | None = None
    # Keys under `metadata:` other than author/version.
    metadata_extra: dict[str, Any] = field(default_factory=dict)
    # Unrecognised top-level front matter keys.
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def placeholder(cls, name: str) -> "SkillManifest":
        return cls(name=name, description="")


@dataclass(frozen=True)
class Installation:
    agent: AgentType
    path: Path
    is_symlink: bool
    is_inherited: bool = False
    inherited_from: AgentType | None = None

    @property
    def key(self) -> str:
        return f"{self.agent.value}-{self.path}"


@dataclass
class LockEntry:
    source: str
    source_type: str
    source_url: str
    skill_path: str
    skill_folder_hash: str
    installed_at: str
    updated_at: str
    # Keys this engine does not understand; written back untouched.
    extra: dict[str, Any] = field(default_factory=dict)
    # True when synthesized from the private cache's linked skills.
    linked: bool = False

    @property
    def folder_path(self) -> str:
        """Repository folder holding the skill (skillPath minus the manifest name)."""
        path = self.skill_path
        suffix = "/" + SKILL_MANIFEST
        if path.endswith(suffix):
            return path[: -len(suffix)]
        if path == SKILL_MANIFEST:
            return ""
        return path

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "LockEntry":
        extra = {k: v for k, v in raw.items() if k not in LOCK_ENTRY_FIELDS}
        return cls(
            source=str(raw.get("source", "")),
            source_type=str(raw.get("sourceType", "")),
            source_url=str(raw.get("sourceUrl", "")),
            skill_path=str(raw.get("skillPath", "")),
            skill_folder_hash=str(raw.get("skillFolderHash", "")),
            installed_at=str(raw.get("installedAt", "")),
            updated_at=str(raw.get("updatedAt", "")),
            extra=extra,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.extra)
        out.update(
            {
                "source": self.source,
                "sourceType": self.source_type,
                "sourceUrl": self.source_url,
                "skillPath": self.skill_path,
                "skillFolderHash": self.skill_folder_hash,
                "installedAt": self.installed_at,
                "updatedAt": self.updated_at,
            }
        )
        return out


@dataclass(frozen=True)
class LinkedSkillInfo:
    source: str
    source_type: str
    source_url: str
    skill_path: str
    skill_folder_hash: str
    linked_at: str

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "LinkedSkillInfo":
        return cls(
            source=str(raw.get("source", "")),
            source_type=str(raw.get("sourceType", "")),
            source_url=str(raw.get("sourceUrl", "")),
            skill_path=str(raw.get("skillPath", "")),
            skill_folder_hash=str(raw.get("skillFolderHash", "")),
            linked_at=str(raw.get("linkedAt", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "sourceType": self.source_type,
            "sourceUrl": self.source_url,
            "skillPath": self.skill_path,
            "skillFolderHash": self.skill_folder_hash,
            "linkedAt": self.linked_at,
        }

    def as_lock_entry(self) -> LockEntry:
        return LockEntry(
            source=self.source,
            source_type=self.source_type,
            source_url=self.source_url,
            skill_path=self.skill_path,
            skill_folder_hash=self.skill_folder_hash,
            installed_at=self.linked_at,
            updated_at=self.linked_at,
            linked=True,
        )


@dataclass(frozen=True)
class RepoHistoryEntry:
    source: str
    source_url: str
    scanned_at: str

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "RepoHistoryEntry":
        return cls(
            source=str(raw.get("source", "")),
            source_url=str(raw.get("sourceUrl", "")),
            scanned_at=str(raw.get("scannedAt", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"source": self.source, "sourceUrl": self.source_url, "scannedAt": self.scanned_at}


@dataclass
class Skill:
    id: str
    canonical_path: Path
    manifest: SkillManifest
    markdown_body: str
    scope: SkillScope
    installations: list[Installation] = field(default_factory=list)
    lock_entry: LockEntry | None = None
    has_update: bool = False
    remote_tree_hash: str | None = None
    remote_commit_hash: str | None = None
    local_commit_hash: str | None = None

    @property
    def manifest_path(self) -> Path:
        return self.canonical_path / SKILL_MANIFEST

    @property
    def display_name(self) -> str:
        return self.manifest.name or self.id

    @property
    def installed_agents(self) -> list[AgentType]:
        return [inst.agent for inst in self.installations]

    def installation_for(self, agent: AgentType) -> Installation | None:
        for inst in self.installations:
            if inst.agent is agent:
                return inst
        return None


class UpdateState(str, Enum):
    NOT_CHECKED = "not-checked"
    CHECKING = "checking"
    HAS_UPDATE = "has-update"
    UP_TO_DATE = "up-to-date"
    ERROR = "error"


@dataclass(frozen=True)
class UpdateStatus:
    state: UpdateState
    message: str | None = None
    remote_tree_hash: str | None = None
    remote_commit_hash: str | None = None
    local_commit_hash: str | None = None

    @classmethod
    def error(cls, message: str) -> "UpdateStatus":
        return cls(state=UpdateState.ERROR, message=message)


@dataclass(frozen=True)
class UpdateCheckResult:
    has_update: bool
    remote_tree_hash: str | None
    remote_commit_hash: str | None


@dataclass(frozen=True)
class AgentStatus:
    agent: AgentType
    is_installed: bool
    config_directory_exists: bool
    skills_directory_exists: bool
    skill_count: int
