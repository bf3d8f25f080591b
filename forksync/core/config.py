"""Unified configuration via pydantic-settings."""

from pathlib import Path, PurePosixPath
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from forksync.core.overrides import OverridePolicy


def validate_pattern(pattern: str) -> str:
    """Reject override patterns that could never match a repository path."""
    cleaned = pattern.strip()
    if not cleaned:
        raise ValueError("override pattern must not be empty")
    if cleaned.startswith("/") or PurePosixPath(cleaned).is_absolute():
        raise ValueError(f"override pattern must be relative: {cleaned}")
    if ".." in PurePosixPath(cleaned).parts:
        raise ValueError(f"override pattern must not contain '..': {cleaned}")
    return cleaned


class ForkSyncConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="FORKSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        frozen=True,
    )

    fork_path: Path = Field(default_factory=Path.cwd)

    # Upstream
    upstream_url: str | None = None
    upstream_remote: str = "forksync-upstream"
    upstream_branch: str = "main"
    upstream_ref: str | None = None

    # Overrides
    ignored_patterns: Annotated[list[str], NoDecode] = []
    pinned_patterns: Annotated[list[str], NoDecode] = []
    customized_patterns: Annotated[list[str], NoDecode] = []
    overrides_file: Path = Path(".forksync/overrides.yaml")

    # Squash
    sync_branch: str | None = None
    max_squash_previews: int = Field(default=10, ge=0)

    # Analysis
    analysis_concurrency: int = Field(default=10, ge=1)
    git_timeout_seconds: int = Field(default=120, ge=1)

    # Analysis log artifact
    write_log: bool = False
    log_output_dir: Path | None = None

    # Logging
    log_level: str = "INFO"
    log_dir: Path | None = None
    log_max_bytes: int = 10_485_760
    log_backup_count: int = 5

    @field_validator("fork_path")
    @classmethod
    def resolve_fork_path(cls, v: Path) -> Path:
        r = v.expanduser().resolve()
        if not r.is_dir():
            raise ValueError(f"fork directory does not exist: {r}")
        return r

    @field_validator(
        "ignored_patterns", "pinned_patterns", "customized_patterns", mode="before"
    )
    @classmethod
    def parse_patterns(cls, v: list[str] | str) -> list[str]:
        if isinstance(v, str):
            return [p.strip() for p in v.split(",") if p.strip()]
        return v

    @field_validator("ignored_patterns", "pinned_patterns", "customized_patterns")
    @classmethod
    def check_patterns(cls, v: list[str]) -> list[str]:
        return [validate_pattern(p) for p in v]

    @field_validator("upstream_remote", "upstream_branch")
    @classmethod
    def non_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @property
    def effective_upstream_ref(self) -> str:
        if self.upstream_ref:
            return self.upstream_ref
        return f"{self.upstream_remote}/{self.upstream_branch}"

    @property
    def resolved_overrides_file(self) -> Path:
        if self.overrides_file.is_absolute():
            return self.overrides_file
        return self.fork_path / self.overrides_file

    @property
    def resolved_log_output_dir(self) -> Path:
        return self.log_output_dir or self.fork_path

    def override_policy(self) -> OverridePolicy:
        """Policy from the patterns configured directly (env or constructor)."""
        return OverridePolicy(
            ignored=tuple(self.ignored_patterns),
            pinned=tuple(self.pinned_patterns),
            customized=tuple(self.customized_patterns),
        )
