from __future__ import annotations

import json
import logging
import os
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def write_text_atomic(path: Path, text: str) -> None:
    """Write next to `path` and rename it over the target."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    try:
        tmp.write_text(text, encoding="utf-8")
        tmp.replace(path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def write_json_atomic(path: Path, data: Any) -> None:
    write_text_atomic(path, json.dumps(data, indent=2, sort_keys=True) + "\n")


def _discard(path: Path) -> None:
    if path.is_symlink():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path, ignore_errors=True)


def replace_directory(source: Path, dest: Path) -> None:
    """
    Replace `dest` with a copy of `source`.

    The copy is staged next to `dest`, the old directory is moved aside, and
    the staged copy is renamed into place. If the swap fails the old directory
    is restored.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    token = uuid.uuid4().hex[:8]
    staged = dest.with_name(f".{dest.name}.skilldeck-staging-{token}")
    backup = dest.with_name(f".{dest.name}.skilldeck-backup-{token}")

    had_existing = os.path.lexists(dest)
    try:
        shutil.copytree(source, staged, symlinks=True, ignore=shutil.ignore_patterns(".git"))
        if had_existing:
            dest.rename(backup)
        try:
            staged.rename(dest)
        except OSError:
            if had_existing and os.path.lexists(backup):
                backup.rename(dest)
            raise
    finally:
        _discard(staged)
        _discard(backup)
    logger.debug("Replaced %s from %s", dest, source)
