"""Parsers for git command output.

Each function takes raw stdout from one git invocation and returns typed
data. They never run git themselves so they can be tested with literal
output samples.
"""

from pydantic import ValidationError

from forksync.git.models import (
    ChangeKind,
    CommitInfo,
    HistoryEntry,
    TreeChange,
    WorktreeEntry,
)

HISTORY_FORMAT = "%H|%aI"
LAST_CHANGE_FORMAT = "commit:%H"
COMMIT_INFO_FORMAT = "%H%n%h%n%s%n%ar"

_NULL_HASH = "0" * 40
_LAST_CHANGE_PREFIX = "commit:"

_KIND_BY_CODE: dict[str, ChangeKind] = {
    "A": "added",
    "D": "deleted",
    "M": "modified",
    "T": "type-changed",
    "R": "renamed",
    "C": "copied",
}


def parse_ls_tree(stdout: str) -> dict[str, str]:
    """Parse `git ls-tree -r <ref>` into {path: blob hash}.

    Line format: ``<mode> <type> <hash>\\t<path>``. Submodule entries
    (type ``commit``) are skipped.
    """
    hashes: dict[str, str] = {}
    for line in stdout.splitlines():
        if "\t" not in line:
            continue
        meta, path = line.split("\t", 1)
        parts = meta.split()
        if len(parts) != 3 or parts[1] != "blob":
            continue
        hashes[path] = parts[2]
    return hashes


def parse_diff_tree(stdout: str) -> dict[str, TreeChange]:
    """Parse `git diff-tree -r --no-commit-id <a> <b>` into {path: TreeChange}.

    Line format: ``:<mode> <mode> <old> <new> <status>\\t<path>`` and, for
    renames/copies, ``...R<score>\\t<old path>\\t<new path>`` keyed by the new path.
    """
    changes: dict[str, TreeChange] = {}
    for line in stdout.splitlines():
        if not line.startswith(":") or "\t" not in line:
            continue
        meta, *paths = line.split("\t")
        parts = meta[1:].split()
        if len(parts) != 5 or not paths:
            continue
        old_hash, new_hash, status = parts[2], parts[3], parts[4]
        kind = _KIND_BY_CODE.get(status[:1])
        if kind is None:
            continue
        path = paths[-1]
        changes[path] = TreeChange(
            path=path,
            kind=kind,
            old_hash=None if old_hash == _NULL_HASH else old_hash,
            new_hash=None if new_hash == _NULL_HASH else new_hash,
        )
    return changes


def parse_history(stdout: str) -> list[HistoryEntry]:
    """Parse `git log --format=%H|%aI` output, preserving newest-first order."""
    entries: list[HistoryEntry] = []
    for line in stdout.splitlines():
        line = line.strip()
        if not line:
            continue
        change_id, sep, timestamp = line.partition("|")
        if not sep:
            continue
        try:
            entries.append(HistoryEntry(id=change_id, timestamp=timestamp))
        except ValidationError:
            continue
    return entries


def parse_last_change_ids(stdout: str) -> dict[str, str]:
    """Parse `git log --format=commit:%H --name-only <ref>` into {path: newest id}.

    Log output is newest-first, so the first commit seen for a path wins.
    """
    last: dict[str, str] = {}
    current: str | None = None
    for line in stdout.splitlines():
        if line.startswith(_LAST_CHANGE_PREFIX):
            current = line[len(_LAST_CHANGE_PREFIX) :].strip()
            continue
        path = line.strip()
        if not path or current is None:
            continue
        last.setdefault(path, current)
    return last


def parse_worktree_list(stdout: str) -> list[WorktreeEntry]:
    """Parse `git worktree list --porcelain` blocks."""
    entries: list[WorktreeEntry] = []
    block: dict[str, str | bool] = {}

    def flush() -> None:
        if "path" in block:
            entries.append(WorktreeEntry(**block))  # type: ignore[arg-type]
        block.clear()

    for line in stdout.splitlines():
        if not line.strip():
            flush()
            continue
        key, _, value = line.partition(" ")
        if key == "worktree":
            flush()
            block["path"] = value
        elif key == "HEAD":
            block["head"] = value
        elif key == "detached":
            block["detached"] = True
        elif key == "prunable":
            block["prunable"] = True
    flush()
    return entries


def parse_name_list(stdout: str) -> list[str]:
    """Parse newline-separated paths (`--name-only`, `ls-files`)."""
    return [line for line in (raw.strip() for raw in stdout.splitlines()) if line]


def parse_conflict_markers(stdout: str) -> list[str]:
    """Paths reported by `git diff --check` as holding leftover conflict markers.

    Line format: ``<path>:<line>: leftover conflict marker``.
    """
    paths: list[str] = []
    for line in stdout.splitlines():
        if "conflict marker" not in line:
            continue
        path = line.split(":", 1)[0]
        if path and path not in paths:
            paths.append(path)
    return paths


def parse_commit_info(stdout: str) -> CommitInfo | None:
    """Parse `git log -1 --format=%H%n%h%n%s%n%ar`."""
    lines = stdout.strip().splitlines()
    if len(lines) < 4:
        return None
    return CommitInfo(hash=lines[0], short_hash=lines[1], subject=lines[2], date=lines[3])


def parse_count(stdout: str) -> int:
    """Parse `git rev-list --count` output; garbage counts as zero."""
    try:
        return max(int(stdout.strip()), 0)
    except ValueError:
        return 0


def parse_status_porcelain(stdout: str) -> list[str]:
    """Paths with uncommitted changes from `git status --porcelain`.

    Line format: ``XY <path>`` or ``XY <old> -> <new>`` for renames; the new
    path is reported.
    """
    paths: list[str] = []
    for line in stdout.splitlines():
        if len(line) < 4:
            continue
        path = line[3:]
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        paths.append(path.strip('"'))
    return paths
