from ._version import __version__
from .agents import AgentType, Layout
from .errors import SkilldeckError
from .git import GitClient, normalize_repo_url
from .install_flow import InstallFlow, Phase
from .manager import SkillManager
from .registry import RegistryClient

__all__ = [
    "AgentType",
    "GitClient",
    "InstallFlow",
    "Layout",
    "Phase",
    "RegistryClient",
    "SkillManager",
    "SkilldeckError",
    "__version__",
    "normalize_repo_url",
]
