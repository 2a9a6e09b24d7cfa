"""
Installation discovery.

For a skill named N whose canonical directory is C, three passes run in
order over one shared list:

1. direct: every agent except the shared-root agent, looking at
   `<agent skills dir>/N`;
2. inherited: agents without a direct row, looking at the directories of
   other agents they also read (first match wins);
3. shared root: the agent whose skills directory *is* the canonical store
   gets a single non-symlink row when `<shared root>/N` resolves to C.

A direct row always wins over an inherited one for the same agent.
"""

from __future__ import annotations

import logging
from pathlib import Path

from . import links
from .agents import Layout
from .models import Installation

logger = logging.getLogger(__name__)


def _exists(path: Path) -> bool:
    # Dangling links count as absent, matching how agents read the directory.
    try:
        return path.exists()
    except OSError:
        return False


def find_direct(layout: Layout, name: str, canonical: Path, found: list[Installation]) -> None:
    target = links.resolve(canonical)
    for agent in layout.linkable_agents():
        candidate = layout.skills_dir(agent) / name
        if not _exists(candidate):
            continue
        if links.is_link(candidate):
            if links.resolve(candidate) == target:
                found.append(Installation(agent=agent, path=candidate, is_symlink=True))
        else:
            # A private, unlinked copy in the agent's own directory.
            found.append(Installation(agent=agent, path=candidate, is_symlink=False))


def find_inherited(layout: Layout, name: str, canonical: Path, found: list[Installation]) -> None:
    target = links.resolve(canonical)
    direct = {inst.agent for inst in found}
    for agent in layout.linkable_agents():
        if agent in direct:
            continue
        for extra_dir, source_agent in layout.additional_readable_dirs(agent):
            candidate = extra_dir / name
            if not _exists(candidate):
                continue
            if links.resolve(candidate) != target:
                continue
            found.append(
                Installation(
                    agent=agent,
                    path=candidate,
                    is_symlink=links.is_link(candidate),
                    is_inherited=True,
                    inherited_from=source_agent,
                )
            )
            break


def find_shared_root(layout: Layout, name: str, canonical: Path, found: list[Installation]) -> None:
    agent = layout.shared_root_agent()
    candidate = layout.skills_dir(agent) / name
    if not _exists(candidate):
        return
    if links.resolve(candidate) == links.resolve(canonical):
        found.append(Installation(agent=agent, path=candidate, is_symlink=False))


def find_installations(layout: Layout, name: str, canonical: Path) -> list[Installation]:
    found: list[Installation] = []
    for step in (find_direct, find_inherited, find_shared_root):
        try:
            step(layout, name, canonical, found)
        except OSError as e:
            logger.debug("Installation lookup for %s failed in %s: %s", name, step.__name__, e)
    return found

