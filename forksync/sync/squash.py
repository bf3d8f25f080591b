"""Squash the sync line onto the target branch as one staged change."""

from pathlib import Path

import structlog

from forksync.exceptions import GitCommandError
from forksync.git.service import GitService
from forksync.sync.models import SquashResult

logger = structlog.get_logger()


def compose_squash_message(count: int, subjects: list[str], remote: str) -> str:
    """Header with the change count, recent subjects as bullets, then the overflow."""
    noun = "1 commit" if count == 1 else f"{count} commits"
    lines = [f"- {subject}" for subject in subjects]
    remaining = count - len(subjects)
    if remaining > 0:
        lines.append(f"- ... and {remaining} more")
    message = f"chore(sync): {noun} from {remote}"
    if lines:
        message += "\n\n" + "\n".join(lines)
    return message


async def squash(
    git: GitService,
    repo_path: Path,
    sync_ref: str,
    *,
    remote: str,
    max_previews: int,
) -> SquashResult | None:
    """Stage every change on *sync_ref* missing from the checkout, without committing.

    Returns None when there is nothing to squash. Conflicts take the sync
    line's side: its content was already resolved during the upstream merge.
    """
    count = await git.count_commits(repo_path, "HEAD", sync_ref)
    if count == 0:
        logger.info("squash_nothing_to_do", sync_ref=sync_ref)
        return None

    result = await git.merge(repo_path, sync_ref, squash=True, strategy_option="theirs")
    resolved: list[str] = []
    if result.had_conflicts:
        for path in result.conflicted_files:
            await git.checkout_side(repo_path, path, "theirs")
            resolved.append(path)
        logger.info("squash_conflicts_resolved_theirs", count=len(resolved))
    elif not result.success:
        raise GitCommandError("merge --squash", str(repo_path), 1, result.details)

    await git.add_all(repo_path)
    if not await git.has_staged_changes(repo_path):
        logger.info("squash_no_staged_changes", sync_ref=sync_ref)
        return None

    subjects = await git.recent_subjects(
        repo_path, "HEAD", sync_ref, min(max_previews, count)
    )
    message = compose_squash_message(count, subjects, remote)
    logger.info("squash_staged", commits=count, previews=len(subjects))
    return SquashResult(commit_count=count, message=message, resolved_as_theirs=resolved)
