"""Merge strategy resolver.

``resolve`` maps one FileAnalysis to the action the sync should take. Rules
are checked in order and the first match wins; every branch carries the
reason string shown to the operator.
"""

from forksync.core.overrides import is_protected
from forksync.sync.models import FileAnalysis, MergeStrategy


def _strategy(action, reason: str) -> MergeStrategy:
    return MergeStrategy(action=action, reason=reason)


def _heads_identical(analysis: FileAnalysis) -> bool:
    upstream, fork = analysis.upstream_file, analysis.fork_file
    if upstream is None or fork is None:
        return False
    if not upstream.last_change_id:
        return False
    return upstream.last_change_id == fork.last_change_id


def resolve(analysis: FileAnalysis) -> MergeStrategy:
    override = analysis.override_status
    summary = analysis.commit_summary
    status = summary.status if summary is not None else "unknown"

    if override == "ignored":
        return _strategy("skip-upstream", "file is ignored by policy")

    if status == "unknown" and _heads_identical(analysis):
        return _strategy("keep-fork", "HEADs identical")

    if analysis.blob_status == "identical":
        return _strategy("keep-fork", "blobs identical, no action needed")

    if is_protected(override):
        return _strategy("keep-fork", f"{override}: fork wins")

    if status == "ahead":
        if analysis.fork_file is None:
            return _strategy("remove-from-fork", "deleted in fork, propagate deletion")
        return _strategy("keep-fork", "fork is ahead")

    if status == "upToDate":
        return _strategy("keep-fork", "no divergence in history, content differs")

    if status == "behind":
        if analysis.fork_file is None:
            return _strategy("keep-upstream", "new file from upstream")
        return _strategy("keep-upstream", "fork behind, sync to upstream")

    if status in ("diverged", "unrelated"):
        return _strategy("manual", f"histories {status}, needs manual resolution")

    return _strategy("unknown", "could not determine a strategy")


def resolve_all(analyses: list[FileAnalysis]) -> None:
    """Attach a strategy to every analysis in place."""
    for analysis in analyses:
        analysis.merge_strategy = resolve(analysis)
