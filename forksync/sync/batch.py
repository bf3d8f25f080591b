"""Whole-tree analysis from a handful of batch git queries.

Three ``ls-tree`` snapshots (merge-base, upstream, fork) and two
``diff-tree`` change sets replace one history query per file. Only files
that changed on some side go through the per-file history walk.
"""

import asyncio
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict

from forksync.core.overrides import OverridePolicy, OverrideStatus, classify, is_protected
from forksync.git.service import GitService
from forksync.sync.history import DEFAULT_CONCURRENCY, HistoryAnalyzer, compare_blobs
from forksync.sync.models import FileAnalysis, FileRef, SyncStatus
from forksync.sync.resolver import resolve_all

logger = structlog.get_logger()


class TreeSnapshot(BaseModel):
    """Tree contents at the three refs of one analysis run."""

    model_config = ConfigDict(frozen=True)

    base: dict[str, str]
    upstream: dict[str, str]
    fork: dict[str, str]
    upstream_changed: frozenset[str]
    fork_changed: frozenset[str]
    upstream_last_change: dict[str, str] = {}
    fork_last_change: dict[str, str] = {}

    def paths(self) -> list[str]:
        return sorted(set(self.upstream) | set(self.fork))


async def take_snapshot(
    git: GitService,
    repo_path: Path,
    base_ref: str,
    upstream_ref: str,
    fork_ref: str = "HEAD",
) -> TreeSnapshot:
    """Run the batch queries concurrently; they are read-only and independent."""
    (
        base,
        upstream,
        fork,
        upstream_changes,
        fork_changes,
        upstream_last,
        fork_last,
    ) = await asyncio.gather(
        git.tree_hashes(repo_path, base_ref),
        git.tree_hashes(repo_path, upstream_ref),
        git.tree_hashes(repo_path, fork_ref),
        git.changed_paths(repo_path, base_ref, upstream_ref),
        git.changed_paths(repo_path, base_ref, fork_ref),
        git.last_change_ids(repo_path, upstream_ref),
        git.last_change_ids(repo_path, fork_ref),
    )
    return TreeSnapshot(
        base=base,
        upstream=upstream,
        fork=fork,
        upstream_changed=frozenset(upstream_changes),
        fork_changed=frozenset(fork_changes),
        upstream_last_change=upstream_last,
        fork_last_change=fork_last,
    )


def classify_path(path: str, snapshot: TreeSnapshot, override: OverrideStatus) -> SyncStatus:
    """Sync status of one path, given where it changed since the merge-base.

    ``drifted`` marks unprotected fork-only edits; ``ahead`` is the protected
    equivalent.
    """
    in_upstream = path in snapshot.upstream
    in_fork = path in snapshot.fork
    upstream_changed = path in snapshot.upstream_changed
    fork_changed = path in snapshot.fork_changed
    protected = is_protected(override)

    if not upstream_changed and not fork_changed and in_upstream and in_fork:
        return "identical"
    if override == "ignored":
        return "ignored"

    if in_upstream and not in_fork:
        # Fork removed it; a pinned path keeps the removal.
        return "deleted" if protected else "behind"
    if in_fork and not in_upstream:
        if path in snapshot.base:
            # Upstream removed it.
            return "ahead" if protected else "behind"
        return "ahead"

    if snapshot.upstream[path] == snapshot.fork[path]:
        return "identical"
    if upstream_changed and fork_changed:
        return "pinned" if protected else "diverged"
    if fork_changed:
        return "ahead" if protected else "drifted"
    return "behind"


def build_analysis(
    path: str, snapshot: TreeSnapshot, policy: OverridePolicy
) -> FileAnalysis:
    upstream_hash = snapshot.upstream.get(path)
    fork_hash = snapshot.fork.get(path)
    upstream_file = (
        FileRef.build(path, upstream_hash, snapshot.upstream_last_change.get(path, ""))
        if upstream_hash
        else None
    )
    fork_file = (
        FileRef.build(path, fork_hash, snapshot.fork_last_change.get(path, ""))
        if fork_hash
        else None
    )
    override = classify(path, policy)
    return FileAnalysis(
        file_path=path,
        upstream_file=upstream_file,
        fork_file=fork_file,
        blob_status=compare_blobs(upstream_file, fork_file),
        override_status=override,
        sync_status=classify_path(path, snapshot, override),
    )


class BatchAnalyzer:
    """Classify every file between upstream and the fork, then resolve strategies."""

    def __init__(
        self,
        git: GitService,
        repo_path: Path,
        upstream_ref: str,
        policy: OverridePolicy,
        *,
        fork_ref: str = "HEAD",
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        self._git = git
        self._repo = repo_path
        self._upstream_ref = upstream_ref
        self._fork_ref = fork_ref
        self._policy = policy
        self._history = HistoryAnalyzer(
            git, repo_path, upstream_ref, fork_ref, concurrency=concurrency
        )

    async def analyze(self, base_ref: str) -> list[FileAnalysis]:
        snapshot = await take_snapshot(
            self._git, self._repo, base_ref, self._upstream_ref, self._fork_ref
        )
        analyses = [build_analysis(p, snapshot, self._policy) for p in snapshot.paths()]
        await self._history.summarize_all(analyses)
        resolve_all(analyses)
        logger.info(
            "batch_analysis_complete",
            files=len(analyses),
            changed_upstream=len(snapshot.upstream_changed),
            changed_fork=len(snapshot.fork_changed),
        )
        return analyses
