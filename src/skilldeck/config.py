from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any

from platformdirs import user_config_path

from .agents import Layout
from .atomic import write_json_atomic
from .errors import SkilldeckError

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_URL = "https://skills.sh"
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_DEBOUNCE_S = 0.5
DEFAULT_GIT_TIMEOUT_S = 300.0
DEFAULT_MAX_PARALLEL_CLONES = 4


@dataclass(frozen=True)
class Config:
    home: str | None = None  # defaults to the user's home directory
    git_binary: str | None = None  # e.g. "/usr/local/bin/git"
    registry_url: str = DEFAULT_REGISTRY_URL
    timeout_s: float = DEFAULT_TIMEOUT_S  # registry HTTP requests
    git_timeout_s: float | None = DEFAULT_GIT_TIMEOUT_S  # each git subprocess; None waits forever
    debounce_s: float = DEFAULT_DEBOUNCE_S
    max_parallel_clones: int = DEFAULT_MAX_PARALLEL_CLONES

    def layout(self) -> Layout:
        if self.home:
            return Layout(home=Path(self.home).expanduser())
        return Layout.default()


def config_path(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if env := os.getenv("SKILLDECK_CONFIG_PATH"):
        return Path(env).expanduser()
    return user_config_path("skilldeck") / "config.json"


def load_config(path_override: str | Path | None = None) -> Config:
    """Read the config file (if any), then apply environment overrides."""
    return apply_env(load_file_config(path_override))


def load_file_config(path_override: str | Path | None = None) -> Config:
    path = config_path(path_override)
    cfg = Config()
    if path.exists():
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise SkilldeckError(f"Could not read config {path}: {e}") from e
        if isinstance(raw, dict):
            allowed = {f.name for f in Config.__dataclass_fields__.values()}  # type: ignore[attr-defined]
            filtered: dict[str, Any] = {k: v for k, v in raw.items() if k in allowed}
            cfg = Config(**filtered)  # type: ignore[arg-type]
        else:
            logger.warning("Ignoring config %s: not a JSON object", path)
    return cfg


def apply_env(cfg: Config) -> Config:
    if home := os.getenv("SKILLDECK_HOME"):
        cfg = replace(cfg, home=home)
    if git := os.getenv("SKILLDECK_GIT"):
        cfg = replace(cfg, git_binary=git)
    return cfg


def save_config(cfg: Config, path_override: str | Path | None = None) -> Path:
    path = config_path(path_override)
    write_json_atomic(path, asdict(cfg))
    return path


def coerce_value(key: str, value: str) -> Any:
    """Convert a `config set` string into the field's type."""
    if key not in Config.__dataclass_fields__:  # type: ignore[attr-defined]
        raise SkilldeckError(f"Unknown config key: {key}")
    if key in ("home", "git_binary"):
        return value or None
    if key == "git_timeout_s" and not value:
        return None
    try:
        if key == "max_parallel_clones":
            n = int(value)
            if n < 1:
                raise ValueError("must be at least 1")
            return n
        if key in ("timeout_s", "debounce_s"):
            f = float(value)
            if f < 0:
                raise ValueError("must not be negative")
            return f
        if key == "git_timeout_s":
            f = float(value)
            if f <= 0:
                raise ValueError("must be positive")
            return f
    except ValueError as e:
        raise SkilldeckError(f"Invalid value for {key}: {value!r} ({e})") from e
    return value
