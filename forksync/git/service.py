"""Async wrapper for git CLI operations."""

import asyncio
import contextlib
import os
import re
from pathlib import Path
from typing import Literal

import structlog

from forksync.exceptions import ConfigError, GitCommandError
from forksync.git import parser
from forksync.git.models import (
    CommitInfo,
    GitResult,
    HistoryEntry,
    MergeResult,
    TreeChange,
    WorktreeEntry,
)

logger = structlog.get_logger()

_REF_RE = re.compile(r"^[a-zA-Z0-9._/\-~^@{}]+$")
_DEFAULT_TIMEOUT = 120
EMPTY_TREE = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"


def _check_ref(ref: str) -> str:
    if not ref or ref.startswith("-") or not _REF_RE.match(ref):
        raise ConfigError(f"Invalid git ref: {ref!r}")
    return ref


class GitService:
    """Async wrapper for git CLI operations.

    Read-only queries may run concurrently. Commands that mutate a working
    directory pass ``exclusive=True`` and are serialized per directory.
    """

    def __init__(self, timeout: int = _DEFAULT_TIMEOUT) -> None:
        self._timeout = timeout
        self._locks: dict[Path, asyncio.Lock] = {}

    # ── Queries ─────────────────────────────────────────────────────

    async def is_repo(self, cwd: Path) -> bool:
        """Check if cwd is inside a git repository."""
        code, _, _ = await self._run("rev-parse", "--is-inside-work-tree", cwd=cwd)
        return code == 0

    async def rev_parse(self, cwd: Path, ref: str) -> str | None:
        """Resolve *ref* to a commit id, or None if it does not exist."""
        code, stdout, _ = await self._run(
            "rev-parse", "--verify", "--quiet", f"{_check_ref(ref)}^{{commit}}", cwd=cwd
        )
        return (stdout.strip() or None) if code == 0 else None

    async def merge_base(self, cwd: Path, a: str, b: str) -> str | None:
        """Best common ancestor of two refs; None when histories are unrelated."""
        code, stdout, stderr = await self._run(
            "merge-base", _check_ref(a), _check_ref(b), cwd=cwd
        )
        if code == 0:
            return stdout.strip() or None
        # Exit 1 with no output means "no common ancestor", which is data.
        if code == 1 and not stderr.strip():
            return None
        raise GitCommandError("merge-base", str(cwd), code, stderr)

    async def tree_hashes(self, cwd: Path, ref: str) -> dict[str, str]:
        """All blob hashes at *ref* in one `ls-tree -r` call."""
        stdout = await self._checked("ls-tree", "-r", _check_ref(ref), cwd=cwd)
        return parser.parse_ls_tree(stdout)

    async def blob_hash(self, cwd: Path, ref: str, path: str) -> str | None:
        stdout = await self._checked("ls-tree", _check_ref(ref), "--", path, cwd=cwd)
        return parser.parse_ls_tree(stdout).get(path)

    async def changed_paths(
        self, cwd: Path, base: str, target: str
    ) -> dict[str, TreeChange]:
        """Paths whose content differs between two trees."""
        stdout = await self._checked(
            "diff-tree",
            "-r",
            "--no-commit-id",
            "--no-renames",
            _check_ref(base),
            _check_ref(target),
            cwd=cwd,
        )
        return parser.parse_diff_tree(stdout)

    async def file_history(self, cwd: Path, ref: str, path: str) -> list[HistoryEntry]:
        """Every change touching *path* on *ref*, newest first."""
        stdout = await self._checked(
            "log",
            f"--format={parser.HISTORY_FORMAT}",
            "--follow",
            _check_ref(ref),
            "--",
            path,
            cwd=cwd,
        )
        return parser.parse_history(stdout)

    async def last_change_ids(self, cwd: Path, ref: str) -> dict[str, str]:
        """Newest change id per path on *ref*, from a single log walk."""
        stdout = await self._checked(
            "log",
            f"--format={parser.LAST_CHANGE_FORMAT}",
            "--name-only",
            _check_ref(ref),
            cwd=cwd,
        )
        return parser.parse_last_change_ids(stdout)

    async def commit_info(self, cwd: Path, ref: str) -> CommitInfo:
        stdout = await self._checked(
            "log", "-1", f"--format={parser.COMMIT_INFO_FORMAT}", _check_ref(ref), cwd=cwd
        )
        info = parser.parse_commit_info(stdout)
        if info is None:
            raise GitCommandError("log -1", str(cwd), 0, f"no commit at {ref}")
        return info

    async def count_commits(self, cwd: Path, from_ref: str, to_ref: str) -> int:
        """Non-merge commits reachable from *to_ref* but not from *from_ref*."""
        stdout = await self._checked(
            "rev-list",
            "--count",
            "--no-merges",
            f"{_check_ref(from_ref)}..{_check_ref(to_ref)}",
            cwd=cwd,
        )
        return parser.parse_count(stdout)

    async def recent_subjects(
        self, cwd: Path, from_ref: str, to_ref: str, limit: int
    ) -> list[str]:
        if limit <= 0:
            return []
        stdout = await self._checked(
            "log",
            f"-{limit}",
            "--no-merges",
            "--format=%s",
            f"{_check_ref(from_ref)}..{_check_ref(to_ref)}",
            cwd=cwd,
        )
        return parser.parse_name_list(stdout)

    async def list_files(self, cwd: Path) -> list[str]:
        stdout = await self._checked("ls-files", cwd=cwd)
        return parser.parse_name_list(stdout)

    async def conflict_files(self, cwd: Path) -> list[str]:
        """List files with unresolved merge conflicts."""
        code, stdout, _ = await self._run(
            "diff", "--name-only", "--diff-filter=U", cwd=cwd
        )
        if code != 0:
            return []
        return parser.parse_name_list(stdout)

    async def conflict_markers(self, cwd: Path) -> list[str]:
        """Staged or unstaged files that still contain conflict markers."""
        paths: list[str] = []
        for extra in ((), ("--cached",)):
            # `diff --check` exits 2 when it finds problems; that is the signal.
            _, stdout, _ = await self._run("diff", "--check", *extra, cwd=cwd)
            for path in parser.parse_conflict_markers(stdout):
                if path not in paths:
                    paths.append(path)
        return paths

    async def dirty_paths(self, cwd: Path) -> list[str]:
        """Tracked and untracked paths with uncommitted changes."""
        stdout = await self._checked("status", "--porcelain", cwd=cwd)
        return parser.parse_status_porcelain(stdout)

    async def has_staged_changes(self, cwd: Path) -> bool:
        code, _, stderr = await self._run("diff", "--cached", "--quiet", cwd=cwd)
        if code in (0, 1):
            return code == 1
        raise GitCommandError("diff --cached", str(cwd), code, stderr)

    async def remote_url(self, cwd: Path, name: str) -> str | None:
        code, stdout, _ = await self._run("remote", "get-url", name, cwd=cwd)
        return (stdout.strip() or None) if code == 0 else None

    # ── Remotes ─────────────────────────────────────────────────────

    async def ensure_remote(self, cwd: Path, name: str, url: str) -> GitResult:
        """Add the remote, or point an existing one at *url*."""
        current = await self.remote_url(cwd, name)
        if current == url:
            return GitResult(success=True, message=f"Remote '{name}' up to date")
        action = "add" if current is None else "set-url"
        await self._checked("remote", action, name, url, cwd=cwd, exclusive=True)
        return GitResult(success=True, message=f"Remote '{name}' → {url}")

    async def fetch(self, cwd: Path, remote: str) -> GitResult:
        code, stdout, stderr = await self._run("fetch", remote, cwd=cwd, exclusive=True)
        output = stderr.strip() or stdout.strip()
        if code == 0:
            return GitResult(success=True, message="Fetch successful", details=output)
        return GitResult(success=False, message="Fetch failed", details=output)

    # ── Worktrees ───────────────────────────────────────────────────

    async def worktree_add(self, cwd: Path, path: Path, ref: str = "HEAD") -> None:
        """Check out a detached worktree, avoiding "already checked out" errors."""
        await self._checked(
            "worktree",
            "add",
            "--detach",
            str(path),
            _check_ref(ref),
            cwd=cwd,
            exclusive=True,
        )

    async def worktree_remove(self, cwd: Path, path: Path) -> GitResult:
        code, _, stderr = await self._run(
            "worktree", "remove", "--force", str(path), cwd=cwd, exclusive=True
        )
        await self._run("worktree", "prune", cwd=cwd, exclusive=True)
        if code == 0:
            return GitResult(success=True, message=f"Removed worktree {path}")
        return GitResult(
            success=False, message=f"Failed to remove worktree {path}", details=stderr.strip()
        )

    async def worktree_list(self, cwd: Path) -> list[WorktreeEntry]:
        stdout = await self._checked("worktree", "list", "--porcelain", cwd=cwd)
        return parser.parse_worktree_list(stdout)

    # ── Merging ─────────────────────────────────────────────────────

    async def merge(
        self,
        cwd: Path,
        ref: str,
        *,
        no_commit: bool = True,
        no_ff: bool = True,
        squash: bool = False,
        allow_unrelated: bool = False,
        strategy_option: str | None = None,
    ) -> MergeResult:
        """Merge *ref* into the checkout at cwd. Conflicts are data, not errors."""
        args = ["merge", _check_ref(ref), "--no-edit"]
        if squash:
            args.append("--squash")
        elif no_ff:
            args.append("--no-ff")
        if no_commit and not squash:
            args.append("--no-commit")
        if allow_unrelated:
            args.append("--allow-unrelated-histories")
        if strategy_option:
            args.extend(["-X", strategy_option])

        code, stdout, stderr = await self._run(*args, cwd=cwd, exclusive=True)
        if code == 0:
            return MergeResult(
                success=True,
                message=f"Merged '{ref}'",
                details=stdout.strip(),
            )

        conflicts = await self.conflict_files(cwd)
        if conflicts:
            return MergeResult(
                success=False,
                had_conflicts=True,
                conflicted_files=conflicts,
                message=f"Merge of '{ref}' has {len(conflicts)} conflict(s)",
                details=stdout.strip(),
            )
        return MergeResult(
            success=False,
            message=f"Failed to merge '{ref}'",
            details=stderr.strip() or stdout.strip(),
        )

    async def checkout_side(
        self, cwd: Path, path: str, side: Literal["ours", "theirs"]
    ) -> None:
        """Resolve a conflicted path by taking one side, then stage it.

        When the chosen side deleted the file, the resolution is a deletion.
        """
        code, _, stderr = await self._run(
            "checkout", f"--{side}", "--", path, cwd=cwd, exclusive=True
        )
        if code != 0:
            if f"does not have {'our' if side == 'ours' else 'their'} version" in stderr:
                await self.remove_path(cwd, path)
                return
            raise GitCommandError(f"checkout --{side}", str(cwd), code, stderr)
        await self.add_paths(cwd, [path])

    async def restore_paths(self, cwd: Path, ref: str, paths: list[str]) -> None:
        """Overwrite index and working copy of *paths* with their content at *ref*."""
        if not paths:
            return
        await self._checked(
            "checkout", _check_ref(ref), "--", *paths, cwd=cwd, exclusive=True
        )

    async def remove_path(self, cwd: Path, path: str) -> None:
        """Delete *path* from index and disk, pruning emptied parent directories."""
        await self._checked(
            "rm",
            "-f",
            "--ignore-unmatch",
            "--quiet",
            "--",
            path,
            cwd=cwd,
            exclusive=True,
        )
        full = cwd / path
        with contextlib.suppress(FileNotFoundError):
            full.unlink()
        _prune_empty_dirs(cwd, full.parent)

    async def add_paths(self, cwd: Path, paths: list[str]) -> None:
        if not paths:
            return
        await self._checked("add", "-A", "--", *paths, cwd=cwd, exclusive=True)

    async def add_all(self, cwd: Path) -> None:
        await self._checked("add", "-A", cwd=cwd, exclusive=True)

    # ── Execution ───────────────────────────────────────────────────

    async def _checked(
        self, *args: str, cwd: Path, exclusive: bool = False
    ) -> str:
        """Run a git command and raise GitCommandError on non-zero exit."""
        code, stdout, stderr = await self._run(*args, cwd=cwd, exclusive=exclusive)
        if code != 0:
            raise GitCommandError(" ".join(args[:2]), str(cwd), code, stderr)
        return stdout

    async def _run(
        self,
        *args: str,
        cwd: Path,
        exclusive: bool = False,
        timeout: int | None = None,
    ) -> tuple[int, str, str]:
        """Execute a git command via asyncio.create_subprocess_exec."""
        if not exclusive:
            return await self._exec(args, cwd, timeout or self._timeout)
        lock = self._locks.setdefault(cwd.resolve(), asyncio.Lock())
        async with lock:
            return await self._exec(args, cwd, timeout or self._timeout)

    async def _exec(
        self, args: tuple[str, ...], cwd: Path, timeout: int
    ) -> tuple[int, str, str]:
        if not cwd.is_dir():
            return 1, "", f"Directory does not exist: {cwd}"

        cmd = ("git", "-c", "core.quotepath=off", *args)
        logger.debug("git_exec", command=cmd, cwd=str(cwd))

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, "GIT_EDITOR": "true", "GIT_TERMINAL_PROMPT": "0"},
            )
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(), timeout=timeout
            )
            stdout = stdout_bytes.decode("utf-8", errors="replace")
            stderr = stderr_bytes.decode("utf-8", errors="replace")
            return proc.returncode or 0, stdout, stderr
        except TimeoutError:
            logger.warning("git_exec_timeout", command=cmd, timeout=timeout)
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            return 1, "", f"Command timed out after {timeout}s"
        except FileNotFoundError:
            return 1, "", "git is not installed or not in PATH"
        except OSError as e:
            logger.error("git_exec_error", command=cmd, error=str(e))
            return 1, "", str(e)


def _prune_empty_dirs(root: Path, directory: Path) -> None:
    """Remove empty directories from *directory* up to, not including, *root*."""
    root = root.resolve()
    current = directory.resolve()
    while current != root and root in current.parents:
        try:
            current.rmdir()
        except OSError:
            return
        current = current.parent
