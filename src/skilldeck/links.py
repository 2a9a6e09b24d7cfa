from __future__ import annotations

import logging
import os
from pathlib import Path

from .errors import LinkRemovalError, SourceNotFoundError, TargetExistsError

logger = logging.getLogger(__name__)


def is_link(path: Path) -> bool:
    return os.path.islink(path)


def resolve(path: Path) -> Path:
    """
    Follow a chain of symlinks to the final physical path.

    One agent's directory may itself be a link into another agent's directory,
    which in turn links to the canonical store, so every hop is followed.
    Paths that are not links come back normalized (absolute, no `.`/`..`,
    no symlinked parents).
    """
    return Path(os.path.realpath(path))


def same_location(a: Path, b: Path) -> bool:
    return resolve(a) == resolve(b)


def create_link(source: Path, agent_root: Path) -> Path:
    """Link `agent_root/<source name>` to the canonical `source` directory."""
    if not source.exists():
        raise SourceNotFoundError(source)
    agent_root.mkdir(parents=True, exist_ok=True)

    target = agent_root / source.name
    # lexists: a dangling link still occupies the slot.
    if os.path.lexists(target):
        raise TargetExistsError(target)

    target.symlink_to(source, target_is_directory=True)
    logger.debug("Linked %s -> %s", target, source)
    return target


def remove_link(name: str, agent_root: Path) -> bool:
    """
    Remove the symlink `agent_root/<name>`.

    Anything that is not a link (a real directory, a local copy) is left alone.
    Returns True when a link was removed.
    """
    target = agent_root / name
    if not is_link(target):
        return False
    try:
        target.unlink()
    except OSError as e:
        raise LinkRemovalError(target, e) from e
    logger.debug("Removed link %s", target)
    return True
