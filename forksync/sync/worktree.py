"""Isolated worktree for one sync run.

The worktree lives in the system temp directory under a name derived from
the fork path, so it is stable across runs and a leftover from a crashed
run can be found and removed at the next start. A PID lock file next to it
keeps two runs from using the same worktree at once.
"""

import contextlib
import hashlib
import os
import shutil
import tempfile
from datetime import UTC, datetime
from pathlib import Path

import structlog

from forksync.exceptions import SyncInProgressError
from forksync.git.service import GitService
from forksync.sync.models import WorktreeSession

logger = structlog.get_logger()

_PREFIX = "forksync-"


def _repo_key(repo_path: Path) -> str:
    return hashlib.sha1(str(repo_path.resolve()).encode()).hexdigest()[:12]


def worktree_path_for(repo_path: Path, tmp_dir: Path | None = None) -> Path:
    base = tmp_dir or Path(tempfile.gettempdir())
    return base / f"{_PREFIX}{_repo_key(repo_path)}"


def lock_path_for(repo_path: Path, tmp_dir: Path | None = None) -> Path:
    return worktree_path_for(repo_path, tmp_dir).with_suffix(".lock")


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class RunLock:
    """Exclusive per-repository lock held as a file containing the owner PID.

    A lock whose owner is gone is reclaimed by renaming it aside first, so
    two runs reclaiming the same stale lock cannot delete each other's fresh
    one.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._held = False

    def acquire(self) -> None:
        for _ in range(2):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                owner = _read_pid(self.path)
                if owner is not None and _pid_alive(owner):
                    raise SyncInProgressError(
                        f"Another forksync run (pid {owner}) holds {self.path}"
                    ) from None
                self._reclaim(owner)
                continue
            with os.fdopen(fd, "w") as f:
                f.write(str(os.getpid()))
            self._held = True
            return
        raise SyncInProgressError(f"Could not acquire run lock {self.path}")

    def release(self) -> None:
        if not self._held:
            return
        with contextlib.suppress(FileNotFoundError):
            self.path.unlink()
        self._held = False

    def _reclaim(self, stale_owner: int | None) -> None:
        aside = self.path.with_name(f"{self.path.name}.{os.getpid()}.stale")
        try:
            os.replace(self.path, aside)
        except FileNotFoundError:
            # Another run reclaimed it first.
            return
        owner = _read_pid(aside)
        if owner != stale_owner and owner is not None and _pid_alive(owner):
            # Moved a lock taken after our read; hand it back.
            with contextlib.suppress(FileExistsError):
                os.link(aside, self.path)
            aside.unlink(missing_ok=True)
            raise SyncInProgressError(
                f"Another forksync run (pid {owner}) holds {self.path}"
            )
        aside.unlink(missing_ok=True)
        logger.warning("stale_run_lock_reclaimed", path=str(self.path), pid=stale_owner)


def _read_pid(path: Path) -> int | None:
    try:
        return int(path.read_text().strip())
    except (OSError, ValueError):
        return None


class WorktreeManager:
    """Creates, recovers and removes the run's worktree."""

    def __init__(
        self, git: GitService, repo_path: Path, tmp_dir: Path | None = None
    ) -> None:
        self._git = git
        self._repo = repo_path
        self.path = worktree_path_for(repo_path, tmp_dir)
        self.lock = RunLock(lock_path_for(repo_path, tmp_dir))

    async def recover(self) -> bool:
        """Remove a worktree left behind by a run that never cleaned up."""
        registered = {
            Path(entry.path).resolve() for entry in await self._git.worktree_list(self._repo)
        }
        target = self.path.resolve()
        if target not in registered and not self.path.exists():
            return False

        logger.warning("leftover_worktree_found", path=str(self.path))
        if target in registered:
            result = await self._git.worktree_remove(self._repo, self.path)
            if not result.success:
                logger.warning(
                    "leftover_worktree_remove_failed",
                    path=str(self.path),
                    details=result.details,
                )
        if self.path.exists():
            shutil.rmtree(self.path)
        return True

    async def create(self, ref: str = "HEAD") -> WorktreeSession:
        await self._git.worktree_add(self._repo, self.path, ref)
        session = WorktreeSession(
            path=self.path,
            base_repo_path=self._repo,
            registered_at=datetime.now(UTC),
        )
        logger.info("worktree_created", path=str(self.path), ref=ref)
        return session

    async def remove(self) -> None:
        """Remove the worktree registration and directory; safe to call twice."""
        result = await self._git.worktree_remove(self._repo, self.path)
        if not result.success and self.path.exists():
            logger.warning(
                "worktree_remove_failed", path=str(self.path), details=result.details
            )
        if self.path.exists():
            shutil.rmtree(self.path, ignore_errors=True)
        logger.info("worktree_removed", path=str(self.path))
