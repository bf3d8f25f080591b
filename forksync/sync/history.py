"""How one file relates between upstream and fork.

Blob comparison is a hash check and always runs first. History comparison
walks each side's change list only for files whose content differs:

- the shared ancestor is the newest fork change also present upstream
- ``changes_ahead`` / ``changes_behind`` are that ancestor's index in the
  fork / upstream list (the whole list length when no ancestor exists)
- coverage is the share of upstream change ids found in the fork's history

The fork ref must be a line that still carries upstream's individual
changes. Against a squashed line no ancestor is ever found and every file
looks unrelated.
"""

import asyncio
from collections.abc import Iterable
from pathlib import Path

import structlog

from forksync.core.overrides import OverridePolicy, classify
from forksync.git.service import GitService
from forksync.sync.models import (
    BlobStatus,
    ChangeEntry,
    CommitStatus,
    CommitSummary,
    FileAnalysis,
    FileRef,
    HistoryCoverage,
)

logger = structlog.get_logger()

DEFAULT_CONCURRENCY = 10

IDENTICAL_SUMMARY = CommitSummary(
    status="upToDate",
    changes_ahead=0,
    changes_behind=0,
    history_coverage="complete",
)


def compare_blobs(upstream: FileRef | None, fork: FileRef | None) -> BlobStatus:
    if upstream is None or fork is None:
        return "missing"
    if upstream.content_hash == fork.content_hash:
        return "identical"
    return "different"


def find_shared_ancestor(
    fork_history: list[ChangeEntry], upstream_ids: set[str]
) -> ChangeEntry | None:
    """First (newest) fork change that upstream also has."""
    return next((entry for entry in fork_history if entry.id in upstream_ids), None)


def history_coverage(upstream_ids: list[str], fork_ids: set[str]) -> HistoryCoverage:
    found = sum(1 for change_id in upstream_ids if change_id in fork_ids)
    if found == 0:
        return "unknown"
    if found == len(upstream_ids):
        return "complete"
    return "partial"


def _status_for(ahead: int, behind: int) -> CommitStatus:
    if ahead > 0 and behind == 0:
        return "ahead"
    if behind > 0 and ahead == 0:
        return "behind"
    if ahead > 0 and behind > 0:
        return "diverged"
    return "upToDate"


def summarize_history(
    upstream_history: list[ChangeEntry], fork_history: list[ChangeEntry]
) -> CommitSummary:
    """Compare two newest-first change lists for the same path."""
    upstream_ids = [e.id for e in upstream_history]
    fork_ids = {e.id for e in fork_history}
    coverage = history_coverage(upstream_ids, fork_ids)

    if not upstream_history and not fork_history:
        return CommitSummary(status="unknown", history_coverage=coverage)
    # A side with no history for the path never had the file: nothing to diverge from.
    if not fork_history:
        return CommitSummary(
            status="behind",
            changes_behind=len(upstream_history),
            history_coverage=coverage,
        )
    if not upstream_history:
        return CommitSummary(
            status="ahead",
            changes_ahead=len(fork_history),
            history_coverage=coverage,
        )

    ancestor = find_shared_ancestor(fork_history, set(upstream_ids))
    if ancestor is None:
        return CommitSummary(
            status="unrelated",
            changes_ahead=len(fork_history),
            changes_behind=len(upstream_history),
            history_coverage=coverage,
        )

    ahead = [e.id for e in fork_history].index(ancestor.id)
    behind = upstream_ids.index(ancestor.id)
    return CommitSummary(
        status=_status_for(ahead, behind),
        changes_ahead=ahead,
        changes_behind=behind,
        shared_ancestor_id=ancestor.id,
        last_synced_at=ancestor.timestamp,
        history_coverage=coverage,
    )


class HistoryAnalyzer:
    """Runs history comparisons against one pinned (upstream, fork) ref pair."""

    def __init__(
        self,
        git: GitService,
        repo_path: Path,
        upstream_ref: str,
        fork_ref: str = "HEAD",
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        self._git = git
        self._repo = repo_path
        self._upstream_ref = upstream_ref
        self._fork_ref = fork_ref
        self._semaphore = asyncio.Semaphore(concurrency)

    async def history(self, path: str) -> CommitSummary:
        upstream_raw, fork_raw = await asyncio.gather(
            self._git.file_history(self._repo, self._upstream_ref, path),
            self._git.file_history(self._repo, self._fork_ref, path),
        )
        return summarize_history(
            [ChangeEntry(id=e.id, timestamp=e.timestamp) for e in upstream_raw],
            [ChangeEntry(id=e.id, timestamp=e.timestamp) for e in fork_raw],
        )

    async def summarize(self, analysis: FileAnalysis) -> None:
        """Fill in commit_summary, skipping the history walk for identical blobs."""
        if analysis.blob_status == "identical":
            analysis.commit_summary = IDENTICAL_SUMMARY
            return
        async with self._semaphore:
            analysis.commit_summary = await self.history(analysis.file_path)

    async def summarize_all(self, analyses: Iterable[FileAnalysis]) -> None:
        """Fill commit summaries for many files through the bounded pool."""
        pending = list(analyses)
        await asyncio.gather(*(self.summarize(a) for a in pending))
        logger.debug("history_summarized", files=len(pending))

    async def analyze_path(self, path: str, policy: OverridePolicy) -> FileAnalysis:
        """Single-file mode: look up both blobs, then compare histories."""
        upstream_hash, fork_hash = await asyncio.gather(
            self._git.blob_hash(self._repo, self._upstream_ref, path),
            self._git.blob_hash(self._repo, self._fork_ref, path),
        )
        upstream_file = FileRef.build(path, upstream_hash) if upstream_hash else None
        fork_file = FileRef.build(path, fork_hash) if fork_hash else None
        analysis = FileAnalysis(
            file_path=path,
            upstream_file=upstream_file,
            fork_file=fork_file,
            blob_status=compare_blobs(upstream_file, fork_file),
            override_status=classify(path, policy),
        )
        await self.summarize(analysis)
        return analysis
