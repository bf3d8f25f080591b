"""YAML override file loader for `.forksync/overrides.yaml` inside the fork."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml

from forksync.core.config import validate_pattern
from forksync.core.overrides import OverridePolicy
from forksync.exceptions import ConfigError

logger = structlog.get_logger()

_KEYS = ("ignored", "pinned", "customized")


def load_override_file(path: Path) -> OverridePolicy:
    """Load override patterns from *path*.

    Returns an empty policy if the file is missing (expected for forks that
    configure overrides through the environment only). A file that exists but
    cannot be parsed, or holds an invalid pattern, is a configuration error.
    """
    if not path.is_file():
        return OverridePolicy()

    try:
        raw = yaml.safe_load(path.read_text())
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"cannot read override file {path}: {exc}") from exc

    if raw is None:
        return OverridePolicy()
    if not isinstance(raw, dict):
        raise ConfigError(f"override file {path} must contain a mapping")

    policy = OverridePolicy(**{key: _parse_list(raw, key, path) for key in _KEYS})
    logger.info(
        "override_file_loaded",
        path=str(path),
        ignored=len(policy.ignored),
        pinned=len(policy.pinned),
        customized=len(policy.customized),
    )
    return policy


def _parse_list(raw: dict[str, Any], key: str, path: Path) -> tuple[str, ...]:
    entries = raw.get(key) or []
    if not isinstance(entries, list):
        raise ConfigError(f"'{key}' in {path} must be a list")
    try:
        return tuple(validate_pattern(str(e)) for e in entries)
    except ValueError as exc:
        raise ConfigError(f"invalid pattern in {path}: {exc}") from exc
