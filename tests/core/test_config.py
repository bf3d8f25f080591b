"""Tests for ForkSyncConfig."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from forksync.core.config import ForkSyncConfig, validate_pattern


class TestForkSyncConfig:
    def test_default_values(self, tmp_path):
        config = ForkSyncConfig(fork_path=tmp_path)
        assert config.upstream_remote == "forksync-upstream"
        assert config.upstream_branch == "main"
        assert config.upstream_url is None
        assert config.max_squash_previews == 10
        assert config.analysis_concurrency == 10
        assert config.write_log is False
        assert config.log_level == "INFO"
        assert config.ignored_patterns == []

    def test_fork_path_resolved(self, tmp_path):
        config = ForkSyncConfig(fork_path=tmp_path)
        assert config.fork_path == tmp_path.resolve()
        assert config.fork_path.is_absolute()

    def test_fork_path_must_exist(self):
        with pytest.raises(ValueError, match="does not exist"):
            ForkSyncConfig(fork_path=Path("/nonexistent/directory/xyz"))

    def test_frozen(self, tmp_path):
        config = ForkSyncConfig(fork_path=tmp_path)
        with pytest.raises(ValidationError):
            config.upstream_branch = "develop"

    def test_effective_upstream_ref_default(self, tmp_path):
        config = ForkSyncConfig(fork_path=tmp_path, upstream_branch="develop")
        assert config.effective_upstream_ref == "forksync-upstream/develop"

    def test_effective_upstream_ref_explicit(self, tmp_path):
        config = ForkSyncConfig(fork_path=tmp_path, upstream_ref="template/main")
        assert config.effective_upstream_ref == "template/main"

    def test_patterns_from_csv_string(self, tmp_path):
        config = ForkSyncConfig(fork_path=tmp_path, ignored_patterns="docs/**, *.md ,")
        assert config.ignored_patterns == ["docs/**", "*.md"]

    def test_patterns_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("FORKSYNC_FORK_PATH", str(tmp_path))
        monkeypatch.setenv("FORKSYNC_PINNED_PATTERNS", "README.md,package.json")
        config = ForkSyncConfig()
        assert config.fork_path == tmp_path.resolve()
        assert config.pinned_patterns == ["README.md", "package.json"]

    def test_invalid_pattern_rejected(self, tmp_path):
        with pytest.raises(ValueError, match="relative"):
            ForkSyncConfig(fork_path=tmp_path, pinned_patterns=["/etc/passwd"])

    def test_parent_segment_rejected(self, tmp_path):
        with pytest.raises(ValueError, match=r"\.\."):
            ForkSyncConfig(fork_path=tmp_path, ignored_patterns=["../outside/**"])

    def test_empty_branch_rejected(self, tmp_path):
        with pytest.raises(ValueError, match="must not be empty"):
            ForkSyncConfig(fork_path=tmp_path, upstream_branch="  ")

    def test_concurrency_must_be_positive(self, tmp_path):
        with pytest.raises(ValueError):
            ForkSyncConfig(fork_path=tmp_path, analysis_concurrency=0)

    def test_resolved_overrides_file(self, tmp_path):
        config = ForkSyncConfig(fork_path=tmp_path)
        assert config.resolved_overrides_file == tmp_path.resolve() / ".forksync" / "overrides.yaml"

    def test_absolute_overrides_file_kept(self, tmp_path):
        target = tmp_path / "elsewhere.yaml"
        config = ForkSyncConfig(fork_path=tmp_path, overrides_file=target)
        assert config.resolved_overrides_file == target

    def test_log_output_dir_defaults_to_fork(self, tmp_path):
        config = ForkSyncConfig(fork_path=tmp_path)
        assert config.resolved_log_output_dir == tmp_path.resolve()

    def test_override_policy(self, tmp_path):
        config = ForkSyncConfig(
            fork_path=tmp_path,
            ignored_patterns=["docs/**"],
            pinned_patterns=["README.md"],
            customized_patterns=["src/theme.css"],
        )
        policy = config.override_policy()
        assert policy.ignored == ("docs/**",)
        assert policy.pinned == ("README.md",)
        assert policy.customized == ("src/theme.css",)


class TestValidatePattern:
    def test_strips_whitespace(self):
        assert validate_pattern("  src/**  ") == "src/**"

    def test_empty(self):
        with pytest.raises(ValueError, match="empty"):
            validate_pattern("   ")

    def test_glob_allowed(self):
        assert validate_pattern("**/*.lock") == "**/*.lock"
