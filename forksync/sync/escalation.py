"""Manual conflict escalation.

When policy cannot clear every conflict, the run waits for the operator to
fix the remaining files in the worktree, then re-scans. The wait is an
explicit loop: declining the prompt aborts the run, and running out of
rounds raises with whatever is still conflicted.
"""

import asyncio
from pathlib import Path
from typing import Protocol

import structlog

from forksync.core.events import EventBus
from forksync.exceptions import MergeAbortedError, UnresolvedConflictsError
from forksync.git.service import GitService

logger = structlog.get_logger()

DEFAULT_MAX_ROUNDS = 20


class ConflictPrompt(Protocol):
    async def confirm(self, message: str, *, default: bool = True) -> bool: ...


class ConsolePrompt:
    """Yes/no prompt on stdin, run off the event loop."""

    async def confirm(self, message: str, *, default: bool = True) -> bool:
        suffix = " [Y/n] " if default else " [y/N] "
        answer = await asyncio.to_thread(input, message + suffix)
        answer = answer.strip().lower()
        if not answer:
            return default
        return answer in ("y", "yes")


async def remaining_conflicts(git: GitService, worktree: Path) -> list[str]:
    """Unmerged paths plus files that still carry conflict markers."""
    unmerged, marked = await asyncio.gather(
        git.conflict_files(worktree), git.conflict_markers(worktree)
    )
    return unmerged + [p for p in marked if p not in unmerged]


async def escalate(
    git: GitService,
    worktree: Path,
    prompt: ConflictPrompt,
    events: EventBus,
    *,
    max_rounds: int = DEFAULT_MAX_ROUNDS,
) -> None:
    """Block until the operator clears every conflict in *worktree*."""
    for round_number in range(1, max_rounds + 1):
        conflicts = await remaining_conflicts(git, worktree)
        if not conflicts:
            logger.info("manual_conflicts_cleared", rounds=round_number - 1)
            return

        logger.info("manual_conflicts_pending", count=len(conflicts), round=round_number)
        await events.conflicts_pending(conflicts, worktree)
        async with events.paused():
            resolved = await prompt.confirm(
                f"{len(conflicts)} conflict(s) remain in {worktree}. "
                "Resolve them there, then continue?",
                default=True,
            )

        if not resolved:
            logger.warning("manual_resolution_aborted", remaining=len(conflicts))
            raise MergeAbortedError(
                f"Aborted with {len(conflicts)} unresolved conflict(s)"
            )
        await git.add_all(worktree)

    conflicts = await remaining_conflicts(git, worktree)
    if conflicts:
        raise UnresolvedConflictsError(conflicts)
