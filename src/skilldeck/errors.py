from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


class SkilldeckError(RuntimeError):
    pass


class SkillNotFoundError(SkilldeckError):
    pass


class InvalidTransitionError(SkilldeckError):
    pass


# Filesystem / link errors. Each carries the offending path.


class LinkError(SkilldeckError):
    def __init__(self, message: str, path: Path) -> None:
        super().__init__(message)
        self.path = path


class SourceNotFoundError(LinkError):
    def __init__(self, path: Path) -> None:
        super().__init__(f"Skill source directory not found: {path}", path)


class TargetExistsError(LinkError):
    def __init__(self, path: Path) -> None:
        super().__init__(f"Target already exists: {path}", path)


class LinkRemovalError(LinkError):
    def __init__(self, path: Path, cause: OSError) -> None:
        super().__init__(f"Failed to remove symlink at {path}: {cause}", path)
        self.cause = cause


# Git errors.


class GitError(SkilldeckError):
    pass


class GitNotInstalledError(GitError):
    def __init__(self) -> None:
        super().__init__("Git is not installed. Please install git to use this feature.")


class GitCommandError(GitError):
    def __init__(self, args: list[str], output: str) -> None:
        super().__init__(f"git {' '.join(args)} failed: {output}" if output else f"git {' '.join(args)} failed")
        self.args_list = list(args)
        self.output = output


class CloneFailedError(GitCommandError):
    def __str__(self) -> str:
        return f"Failed to clone repository: {self.output}"


class InvalidRepoURLError(GitError):
    def __init__(self, value: str) -> None:
        super().__init__(f"Invalid repository URL: {value!r}. Expected <owner>/<repo> or an https:// URL.")
        self.value = value


class HashResolutionError(GitError):
    pass


class SkillNotFoundInRepoError(GitError):
    def __init__(self, skill_id: str) -> None:
        super().__init__(f"Skill {skill_id!r} not found in repository")
        self.skill_id = skill_id


# Manifest (SKILL.md) errors.


class ManifestError(SkilldeckError):
    pass


class NoFrontMatterError(ManifestError):
    def __init__(self) -> None:
        super().__init__("No YAML front matter found (missing opening --- delimiter)")


class UnterminatedFrontMatterError(ManifestError):
    def __init__(self) -> None:
        super().__init__("YAML front matter is not terminated (missing closing --- delimiter)")


class InvalidManifestError(ManifestError):
    pass


# Shared registry (lock file) errors.


class RegistryReadError(SkilldeckError):
    pass


# Remote skills registry (HTTP) errors.


class RegistryError(SkilldeckError):
    pass


@dataclass(frozen=True)
class RegistryHTTPError(RegistryError):
    status_code: int
    body: str

    def __str__(self) -> str:  # pragma: no cover
        return f"HTTP {self.status_code}: {self.body}"


class RegistryDecodeError(RegistryError):
    pass


class SkillContentNotFoundError(RegistryError):
    pass
