"""Data models for git command results."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict

ChangeKind = Literal["added", "deleted", "modified", "type-changed", "renamed", "copied"]


class GitResult(BaseModel):
    """Generic result from a git mutation operation."""

    model_config = ConfigDict(frozen=True)

    success: bool
    message: str
    details: str = ""


class MergeResult(BaseModel):
    """Result from a git merge; distinguishes a clean merge from conflicts."""

    model_config = ConfigDict(frozen=True)

    success: bool
    had_conflicts: bool = False
    conflicted_files: list[str] = []
    message: str
    details: str = ""


class TreeChange(BaseModel):
    """One path changed between two trees, from `git diff-tree -r`."""

    model_config = ConfigDict(frozen=True)

    path: str
    kind: ChangeKind
    old_hash: str | None = None
    new_hash: str | None = None


class HistoryEntry(BaseModel):
    """One line of `git log --format=%H|%aI`."""

    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime


class WorktreeEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    head: str | None = None
    detached: bool = False
    prunable: bool = False


class CommitInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    hash: str
    short_hash: str
    subject: str
    date: str
