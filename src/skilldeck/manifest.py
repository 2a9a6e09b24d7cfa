from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .errors import InvalidManifestError, ManifestError, NoFrontMatterError, UnterminatedFrontMatterError
from .models import SkillManifest

logger = logging.getLogger(__name__)

DELIMITER = "---"

_KNOWN_KEYS = {"name", "description", "license", "metadata", "allowed-tools"}


@dataclass(frozen=True)
class ParsedManifest:
    manifest: SkillManifest
    body: str


def _split_front_matter(content: str) -> tuple[str, str]:
    trimmed = content.strip()
    if not trimmed.startswith(DELIMITER):
        raise NoFrontMatterError()
    rest = trimmed[len(DELIMITER) :]
    end = rest.find("\n" + DELIMITER)
    if end < 0:
        raise UnterminatedFrontMatterError()
    return rest[:end], rest[end + 1 + len(DELIMITER) :]


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float, bool)):
        return str(value)
    raise InvalidManifestError(f"Expected a string value, got {type(value).__name__}")


def parse_manifest(content: str) -> ParsedManifest:
    """
    Parse a SKILL.md document: a `---` delimited YAML block followed by markdown.

    Raises NoFrontMatterError, UnterminatedFrontMatterError or
    InvalidManifestError.
    """
    raw_yaml, body = _split_front_matter(content)
    try:
        data = yaml.safe_load(raw_yaml)
    except yaml.YAMLError as e:
        raise InvalidManifestError(f"Invalid YAML front matter: {e}") from e
    if not isinstance(data, dict):
        raise InvalidManifestError("YAML front matter must be a mapping")

    name = _opt_str(data.get("name"))
    if not name:
        raise InvalidManifestError("YAML front matter is missing required key 'name'")

    meta = data.get("metadata")
    if meta is not None and not isinstance(meta, dict):
        raise InvalidManifestError("'metadata' must be a mapping")
    meta = meta or {}

    manifest = SkillManifest(
        name=name,
        description=_opt_str(data.get("description")) or "",
        license=_opt_str(data.get("license")),
        author=_opt_str(meta.get("author")),
        version=_opt_str(meta.get("version")),
        allowed_tools=_opt_str(data.get("allowed-tools")),
        metadata_extra={k: v for k, v in meta.items() if k not in ("author", "version")},
        extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
    )
    return ParsedManifest(manifest=manifest, body=body.strip())


def parse_manifest_file(path: Path) -> ParsedManifest:
    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ManifestError(f"{path} is not valid UTF-8") from e
    return parse_manifest(content)


def load_manifest_or_placeholder(path: Path, *, fallback_name: str) -> ParsedManifest:
    """Parse `path`, degrading to a placeholder manifest on any read/parse failure."""
    try:
        return parse_manifest_file(path)
    except (ManifestError, OSError) as e:
        logger.debug("Could not parse %s: %s", path, e)
        return ParsedManifest(manifest=SkillManifest.placeholder(fallback_name), body="")


def serialize_manifest(manifest: SkillManifest, body: str) -> str:
    data: dict[str, Any] = {"name": manifest.name, "description": manifest.description}
    if manifest.license is not None:
        data["license"] = manifest.license
    if manifest.allowed_tools is not None:
        data["allowed-tools"] = manifest.allowed_tools
    meta: dict[str, Any] = {}
    if manifest.author is not None:
        meta["author"] = manifest.author
    if manifest.version is not None:
        meta["version"] = manifest.version
    meta.update(manifest.metadata_extra)
    if meta:
        data["metadata"] = meta
    for key, value in manifest.extra.items():
        data.setdefault(key, value)

    dumped = yaml.safe_dump(data, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return f"{DELIMITER}\n{dumped.strip()}\n{DELIMITER}\n{body}"
