"""Shared fixtures and an in-memory git service for testing."""

from __future__ import annotations

import os
from datetime import UTC, datetime
from pathlib import Path

import pytest

from forksync.core.config import ForkSyncConfig
from forksync.core.events import EventBus
from forksync.git.models import (
    CommitInfo,
    GitResult,
    HistoryEntry,
    MergeResult,
    TreeChange,
    WorktreeEntry,
)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Prevent .env file and shell env from leaking into tests."""
    monkeypatch.setitem(ForkSyncConfig.model_config, "env_file", None)
    for key in list(os.environ):
        if key.startswith("FORKSYNC_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def events():
    return EventBus()


def entry(change_id: str, day: int = 1) -> HistoryEntry:
    return HistoryEntry(id=change_id, timestamp=datetime(2024, 1, day, tzinfo=UTC))


class FakeGitService:
    """Records calls and answers queries from in-memory trees.

    ``trees`` maps a ref name to {path: blob hash}; ``histories`` maps
    (ref, path) to a newest-first list of change ids.
    """

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.repo_ok = True
        self.trees: dict[str, dict[str, str]] = {}
        self.histories: dict[tuple[str, str], list[str]] = {}
        self.refs: dict[str, str] = {"HEAD": "f" * 40, "forksync-upstream/main": "u" * 40}
        self.base: str | None = "b" * 40
        self.fetch_ok = True
        self.merge_result = MergeResult(success=True, message="Merged")
        self.conflicts: list[str] = []
        self.markers: list[str] = []
        self.worktrees: list[WorktreeEntry] = []
        self.worktree_files: dict[str, str] = {}
        self.removed: list[str] = []
        self.restored: list[str] = []
        self.staged: list[str] = []
        self.commit_count = 0
        self.subjects: list[str] = []
        self.staged_changes = True
        self.dirty: list[str] = []

    # queries

    async def is_repo(self, cwd: Path) -> bool:
        return self.repo_ok

    async def rev_parse(self, cwd: Path, ref: str) -> str | None:
        return self.refs.get(ref)

    async def merge_base(self, cwd: Path, a: str, b: str) -> str | None:
        return self.base

    async def tree_hashes(self, cwd: Path, ref: str) -> dict[str, str]:
        self.calls.append(("tree_hashes", ref))
        return dict(self.trees.get(ref, {}))

    async def blob_hash(self, cwd: Path, ref: str, path: str) -> str | None:
        return self.trees.get(ref, {}).get(path)

    async def changed_paths(self, cwd: Path, base: str, target: str) -> dict[str, TreeChange]:
        self.calls.append(("changed_paths", base, target))
        old = self.trees.get(base, {})
        new = self.trees.get(target, {})
        changes: dict[str, TreeChange] = {}
        for path in set(old) | set(new):
            if old.get(path) != new.get(path):
                changes[path] = TreeChange(
                    path=path, kind="modified", old_hash=old.get(path), new_hash=new.get(path)
                )
        return changes

    async def file_history(self, cwd: Path, ref: str, path: str) -> list[HistoryEntry]:
        self.calls.append(("file_history", ref, path))
        return [entry(i) for i in self.histories.get((ref, path), [])]

    async def last_change_ids(self, cwd: Path, ref: str) -> dict[str, str]:
        return {
            path: ids[0] for (r, path), ids in self.histories.items() if r == ref and ids
        }

    async def commit_info(self, cwd: Path, ref: str) -> CommitInfo:
        return CommitInfo(hash="u" * 40, short_hash="uuuuuuu", subject="Upstream tip", date="2 days ago")

    async def count_commits(self, cwd: Path, from_ref: str, to_ref: str) -> int:
        return self.commit_count

    async def recent_subjects(self, cwd: Path, from_ref: str, to_ref: str, limit: int) -> list[str]:
        return self.subjects[:limit]

    async def list_files(self, cwd: Path) -> list[str]:
        return sorted(self.worktree_files)

    async def conflict_files(self, cwd: Path) -> list[str]:
        return list(self.conflicts)

    async def conflict_markers(self, cwd: Path) -> list[str]:
        return list(self.markers)

    async def has_staged_changes(self, cwd: Path) -> bool:
        return self.staged_changes

    async def dirty_paths(self, cwd: Path) -> list[str]:
        self.calls.append(("dirty_paths", cwd))
        return list(self.dirty)

    # mutations

    async def ensure_remote(self, cwd: Path, name: str, url: str) -> GitResult:
        self.calls.append(("ensure_remote", name, url))
        return GitResult(success=True, message=f"Remote '{name}' added")

    async def fetch(self, cwd: Path, remote: str) -> GitResult:
        self.calls.append(("fetch", remote))
        if self.fetch_ok:
            return GitResult(success=True, message="Fetch successful")
        return GitResult(success=False, message="Fetch failed", details="could not resolve host")

    async def worktree_add(self, cwd: Path, path: Path, ref: str = "HEAD") -> None:
        self.calls.append(("worktree_add", path, ref))
        path.mkdir(parents=True, exist_ok=True)
        for name, content in self.worktree_files.items():
            target = path / name
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
        self.worktrees.append(WorktreeEntry(path=str(path), detached=True))

    async def worktree_remove(self, cwd: Path, path: Path) -> GitResult:
        self.calls.append(("worktree_remove", path))
        self.worktrees = [w for w in self.worktrees if Path(w.path) != path]
        return GitResult(success=True, message=f"Removed worktree {path}")

    async def worktree_list(self, cwd: Path) -> list[WorktreeEntry]:
        return list(self.worktrees)

    async def merge(self, cwd: Path, ref: str, **kwargs) -> MergeResult:
        self.calls.append(("merge", ref, kwargs))
        return self.merge_result

    async def checkout_side(self, cwd: Path, path: str, side: str) -> None:
        self.calls.append(("checkout_side", path, side))
        if path in self.conflicts:
            self.conflicts.remove(path)

    async def restore_paths(self, cwd: Path, ref: str, paths: list[str]) -> None:
        self.restored.extend(paths)

    async def remove_path(self, cwd: Path, path: str) -> None:
        self.removed.append(path)
        self.worktree_files.pop(path, None)
        if path in self.conflicts:
            self.conflicts.remove(path)
        (cwd / path).unlink(missing_ok=True)

    async def add_paths(self, cwd: Path, paths: list[str]) -> None:
        self.staged.extend(paths)

    async def add_all(self, cwd: Path) -> None:
        self.calls.append(("add_all",))


@pytest.fixture
def fake_git():
    return FakeGitService()


@pytest.fixture
def fork_dir(tmp_path):
    fork = tmp_path / "fork"
    fork.mkdir()
    return fork


@pytest.fixture
def config(fork_dir):
    return ForkSyncConfig(fork_path=fork_dir)
