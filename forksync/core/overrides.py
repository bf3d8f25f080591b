"""Override classifier: maps repository paths to a policy class.

Patterns are glob-like:

- ``path/to/file.ts`` matches that exact path
- ``dir/*`` matches files directly inside ``dir``
- ``dir/**`` matches everything below ``dir``
- ``?`` matches a single character
"""

import re
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict

OverrideStatus = Literal["ignored", "pinned", "customized", "none"]

_DOUBLE_STAR = "\x00"


class OverridePolicy(BaseModel):
    """Immutable set of override patterns, checked in precedence order."""

    model_config = ConfigDict(frozen=True)

    ignored: tuple[str, ...] = ()
    pinned: tuple[str, ...] = ()
    customized: tuple[str, ...] = ()

    def merged(self, other: "OverridePolicy") -> "OverridePolicy":
        """Combine two policies, keeping the first occurrence of each pattern."""
        return OverridePolicy(
            ignored=_dedupe(self.ignored + other.ignored),
            pinned=_dedupe(self.pinned + other.pinned),
            customized=_dedupe(self.customized + other.customized),
        )


class OverrideWarning(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["pinned-glob", "pinned-not-found", "single-level-glob"]
    pattern: str
    message: str


def is_glob(pattern: str) -> bool:
    return "*" in pattern or "?" in pattern


@lru_cache(maxsize=1024)
def _compile(pattern: str) -> re.Pattern[str]:
    escaped = re.sub(r"[-/\\^$+.()|\[\]{}]", lambda m: "\\" + m.group(0), pattern)
    escaped = escaped.replace("**", _DOUBLE_STAR)
    escaped = escaped.replace("*", "[^/]*")
    escaped = escaped.replace(_DOUBLE_STAR, ".*")
    escaped = escaped.replace("?", ".")
    return re.compile(f"^{escaped}$")


def match_pattern(path: str, pattern: str) -> bool:
    if not is_glob(pattern):
        return path == pattern
    return _compile(pattern).match(path) is not None


def _matches_any(path: str, patterns: tuple[str, ...]) -> bool:
    return any(match_pattern(path, p) for p in patterns)


def classify(path: str, policy: OverridePolicy) -> OverrideStatus:
    """Return the override class for *path*. Ignored wins over pinned over customized."""
    if _matches_any(path, policy.ignored):
        return "ignored"
    if _matches_any(path, policy.pinned):
        return "pinned"
    if _matches_any(path, policy.customized):
        return "customized"
    return "none"


def is_protected(status: OverrideStatus) -> bool:
    return status in ("pinned", "customized")


def find_ignored(paths: list[str], policy: OverridePolicy) -> list[str]:
    return [p for p in paths if _matches_any(p, policy.ignored)]


def validate_policy(policy: OverridePolicy, fork_path: Path) -> list[OverrideWarning]:
    """Flag patterns that are legal but probably not what the operator meant."""
    warnings: list[OverrideWarning] = []

    for pattern in policy.pinned + policy.customized:
        if is_glob(pattern):
            warnings.append(
                OverrideWarning(
                    kind="pinned-glob",
                    pattern=pattern,
                    message=f"pin contains glob pattern (use ignored): {pattern}",
                )
            )
        elif not (fork_path / pattern).exists():
            warnings.append(
                OverrideWarning(
                    kind="pinned-not-found",
                    pattern=pattern,
                    message=f"pin not found: {pattern}",
                )
            )

    for pattern in policy.ignored:
        if pattern.endswith("/*") and not pattern.endswith("/**"):
            warnings.append(
                OverrideWarning(
                    kind="single-level-glob",
                    pattern=pattern,
                    message=(
                        f'pattern uses "/*" (single level), use "/**" '
                        f"for recursive: {pattern}"
                    ),
                )
            )

    return warnings


def _dedupe(patterns: tuple[str, ...]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(patterns))
