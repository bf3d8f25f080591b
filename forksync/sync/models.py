"""Data model for fork synchronization runs."""

from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from forksync.core.overrides import OverrideStatus
from forksync.git.models import CommitInfo

BlobStatus = Literal["identical", "different", "missing"]
CommitStatus = Literal["upToDate", "ahead", "behind", "diverged", "unrelated", "unknown"]
HistoryCoverage = Literal["complete", "partial", "unknown"]
StrategyAction = Literal[
    "keep-fork", "keep-upstream", "skip-upstream", "remove-from-fork", "manual", "unknown"
]
SyncStatus = Literal[
    "identical", "ahead", "drifted", "behind", "diverged", "pinned", "ignored", "deleted"
]

# Most urgent first; used to order the analysis log.
SEVERITY_ORDER: tuple[SyncStatus, ...] = (
    "behind",
    "diverged",
    "drifted",
    "ahead",
    "pinned",
    "ignored",
    "identical",
    "deleted",
)

_SHORT = 7


class FileRef(BaseModel):
    """One file's state at one ref."""

    model_config = ConfigDict(frozen=True)

    path: str
    content_hash: str
    short_content_hash: str
    last_change_id: str = ""
    short_change_id: str = ""

    @classmethod
    def build(cls, path: str, content_hash: str, last_change_id: str = "") -> "FileRef":
        return cls(
            path=path,
            content_hash=content_hash,
            short_content_hash=content_hash[:_SHORT],
            last_change_id=last_change_id,
            short_change_id=last_change_id[:_SHORT],
        )


class ChangeEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime


class CommitSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: CommitStatus
    changes_ahead: int = Field(default=0, ge=0)
    changes_behind: int = Field(default=0, ge=0)
    shared_ancestor_id: str | None = None
    last_synced_at: datetime | None = None
    history_coverage: HistoryCoverage = "unknown"


class MergeStrategy(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: StrategyAction
    reason: str


class FileAnalysis(BaseModel):
    """Everything known about one path in one analysis run.

    Built by the analyzer, then extended in place with the resolver's strategy.
    """

    model_config = ConfigDict(validate_assignment=True)

    file_path: str
    upstream_file: FileRef | None = None
    fork_file: FileRef | None = None
    blob_status: BlobStatus
    override_status: OverrideStatus = "none"
    commit_summary: CommitSummary | None = None
    merge_strategy: MergeStrategy | None = None
    sync_status: SyncStatus | None = None
    has_conflict: bool = False


class WorktreeSession(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: Path
    base_repo_path: Path
    registered_at: datetime


class SyncSummary(BaseModel):
    """Per-status file counts for one run."""

    model_config = ConfigDict(frozen=True)

    identical: int = 0
    ahead: int = 0
    drifted: int = 0
    behind: int = 0
    diverged: int = 0
    pinned: int = 0
    ignored: int = 0
    deleted: int = 0
    total: int = 0

    @classmethod
    def from_files(cls, files: list[FileAnalysis]) -> "SyncSummary":
        counts = Counter(f.sync_status for f in files if f.sync_status is not None)
        return cls(total=len(files), **{status: counts[status] for status in SEVERITY_ORDER})

    @property
    def changed(self) -> int:
        """Files the merge brings in from upstream."""
        return self.behind + self.diverged


class AnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    files: list[FileAnalysis]
    summary: SyncSummary
    upstream_commit: CommitInfo | None = None
    merge_base: str | None = None
    potential_conflicts: list[str] = []
    log_path: Path | None = None


class SyncResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    files: list[FileAnalysis]
    summary: SyncSummary
    unresolved_conflicts: list[str] = []
    applied: bool = False
    applied_paths: list[str] = []
    upstream_commit: CommitInfo | None = None
    merge_base: str | None = None
    log_path: Path | None = None


class SquashResult(BaseModel):
    """Staged squash of the sync line onto the target branch."""

    model_config = ConfigDict(frozen=True)

    commit_count: int
    message: str
    resolved_as_theirs: list[str] = []
