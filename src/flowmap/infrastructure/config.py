"""Indexer configuration: ``.flowmap/config.yml`` or ``flowmap.yml``."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import yaml

from flowmap.errors import ConfigError
from flowmap.graph.edge_rules import DEFAULT_EDGE_RULES, EdgeRule, merge_edge_rules, parse_edge_rule
from flowmap.graph.import_resolver import DEFAULT_ALIASES
from flowmap.graph.model import DEFAULT_SCOPE_TAG

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

STATE_DIR = ".flowmap"

# Searched in order; the first existing file wins.
CONFIG_FILES: tuple[str, ...] = (f"{STATE_DIR}/config.yml", "flowmap.yml")

DEFAULT_EXCLUDE: tuple[str, ...] = (
    "node_modules/",
    "__pycache__/",
    ".venv/",
    "venv/",
    "dist/",
    "build/",
    "*.min.js",
)

DEFAULT_BINARY_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp", ".ico", ".tiff",
        ".pdf", ".zip", ".gz", ".tgz", ".bz2", ".xz", ".7z", ".tar", ".jar",
        ".woff", ".woff2", ".ttf", ".otf", ".eot",
        ".mp3", ".mp4", ".wav", ".ogg", ".mov", ".avi", ".webm",
        ".so", ".dylib", ".dll", ".exe", ".bin", ".o", ".a",
        ".pyc", ".pyo", ".class", ".wasm",
        ".sqlite", ".db",
    }
)

DEFAULT_MAX_FILE_SIZE = 1024 * 1024
DEFAULT_HARD_FILE_SIZE_LIMIT = 16 * 1024 * 1024
DEFAULT_STALE_LOCK_SECONDS = 3600

# camelCase spellings accepted for top-level keys.
_KEY_ALIASES: dict[str, str] = {
    "maxFileSize": "max_file_size",
    "hardFileSizeLimit": "hard_file_size_limit",
    "skipGenerated": "skip_generated",
    "binaryExtensions": "binary_extensions",
    "sourceRoots": "source_roots",
    "edgeRules": "edge_rules",
    "scopeTag": "scope_tag",
    "hashCheck": "hash_check",
    "staleLockSeconds": "stale_lock_seconds",
}


def default_workers() -> int:
    return max(1, min(8, os.cpu_count() or 1))


@dataclass(frozen=True)
class IndexerConfig:
    """Validated indexer settings.  Every field has a usable default."""

    include: tuple[str, ...] = ("*",)
    exclude: tuple[str, ...] = DEFAULT_EXCLUDE
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    hard_file_size_limit: int = DEFAULT_HARD_FILE_SIZE_LIMIT
    skip_generated: bool = True
    binary_extensions: frozenset[str] = DEFAULT_BINARY_EXTENSIONS
    categories: dict[str, str] = field(default_factory=dict)
    aliases: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_ALIASES))
    source_roots: tuple[str, ...] = ("src",)
    edge_rules: tuple[EdgeRule, ...] = DEFAULT_EDGE_RULES
    workers: int = field(default_factory=default_workers)
    scope_tag: str = DEFAULT_SCOPE_TAG
    hash_check: bool = False
    stale_lock_seconds: int = DEFAULT_STALE_LOCK_SECONDS
    source: str | None = None


def _str_list(key: str, value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"'{key}' must be a list of strings")
    return tuple(value)


def _str_map(key: str, value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be a mapping")
    return {str(k): str(v) for k, v in value.items()}


def _positive_int(key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"'{key}' must be a positive integer, got {value!r}")
    return value


def _bool(key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"'{key}' must be true or false, got {value!r}")
    return value


def _extension(value: str) -> str:
    value = value.strip().lower()
    return value if value.startswith(".") else f".{value}"


def config_from_dict(data: dict[str, Any], *, source: str | None = None) -> IndexerConfig:
    """Build an :class:`IndexerConfig` from a parsed mapping.

    Unknown keys are logged and ignored; invalid values raise
    :class:`~flowmap.errors.ConfigError`.
    """
    values: dict[str, Any] = {}
    for raw_key, value in data.items():
        key = _KEY_ALIASES.get(str(raw_key), str(raw_key))
        if value is None:
            continue
        if key in ("include", "exclude", "source_roots"):
            values[key] = _str_list(key, value)
        elif key in ("max_file_size", "hard_file_size_limit", "workers", "stale_lock_seconds"):
            values[key] = _positive_int(key, value)
        elif key in ("skip_generated", "hash_check"):
            values[key] = _bool(key, value)
        elif key == "binary_extensions":
            values[key] = frozenset(_extension(v) for v in _str_list(key, value))
        elif key in ("categories", "aliases"):
            values[key] = _str_map(key, value)
        elif key == "scope_tag":
            tag = str(value)
            if not tag or ":" in tag or "#" in tag:
                raise ConfigError(f"'scope_tag' must be non-empty without ':' or '#', got {tag!r}")
            values[key] = tag
        elif key == "edge_rules":
            if not isinstance(value, list):
                raise ConfigError("'edge_rules' must be a list of mappings")
            try:
                overrides = [parse_edge_rule(item) for item in value if isinstance(item, dict)]
            except ValueError as exc:
                raise ConfigError(str(exc)) from exc
            values[key] = merge_edge_rules(overrides)
        else:
            logger.warning("Ignoring unknown config key %r", raw_key)

    config = IndexerConfig(source=source, **values)
    if config.hard_file_size_limit < config.max_file_size:
        raise ConfigError("'hard_file_size_limit' must not be smaller than 'max_file_size'")
    return config


def find_config(project_root: Path) -> Path | None:
    for name in CONFIG_FILES:
        candidate = project_root / name
        if candidate.is_file():
            return candidate
    return None


def load_config(project_root: Path) -> IndexerConfig:
    """Load the project configuration, or defaults when there is none.

    Raises
    ------
    ConfigError
        The file exists but is not valid YAML or has invalid values.
    """
    path = find_config(project_root)
    if path is None:
        return IndexerConfig()

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if data is None:
        return IndexerConfig(source=str(path))
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")

    rel = path.relative_to(project_root).as_posix()
    logger.debug("Loaded config from %s", rel)
    return config_from_dict(data, source=rel)
