"""Worktree merge orchestrator.

One run walks these states::

    Init -> RemoteConfigured -> Fetched -> WorktreeCreated -> Merged
         -> ConflictsResolved -> Analyzed -> Applied | Discarded -> CleanedUp

The live checkout is only written in the Applied step. The worktree is
removed and the run lock released on every exit path.
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from forksync.core.events import EventBus
from forksync.core.override_file import load_override_file
from forksync.core.overrides import (
    OverridePolicy,
    classify,
    find_ignored,
    is_protected,
    validate_policy,
)
from forksync.exceptions import ConfigError, ConnectivityError, GitCommandError
from forksync.git.service import EMPTY_TREE, GitService
from forksync.sync.batch import BatchAnalyzer
from forksync.sync.escalation import escalate, remaining_conflicts
from forksync.sync.models import AnalysisResult, FileAnalysis, SyncResult, SyncSummary
from forksync.sync.report import write_analysis_log
from forksync.sync.worktree import WorktreeManager

if TYPE_CHECKING:
    from forksync.core.config import ForkSyncConfig
    from forksync.sync.escalation import ConflictPrompt

logger = structlog.get_logger()

# Statuses whose worktree content already matches the live checkout.
_UNCHANGED = frozenset({"identical", "ahead", "ignored"})


class SyncOrchestrator:
    def __init__(
        self,
        config: ForkSyncConfig,
        *,
        git: GitService | None = None,
        events: EventBus | None = None,
        prompt: ConflictPrompt | None = None,
        tmp_dir: Path | None = None,
    ) -> None:
        self._config = config
        self._git = git or GitService(timeout=config.git_timeout_seconds)
        self._events = events or EventBus()
        self._prompt = prompt
        self._worktrees = WorktreeManager(self._git, config.fork_path, tmp_dir)

    @property
    def events(self) -> EventBus:
        return self._events

    async def analyze(self) -> AnalysisResult:
        """Dry run: merge and classify in the worktree, touch nothing live."""
        result = await self._run(apply=False)
        return AnalysisResult(
            files=result.files,
            summary=result.summary,
            upstream_commit=result.upstream_commit,
            merge_base=result.merge_base,
            potential_conflicts=result.unresolved_conflicts,
            log_path=result.log_path,
        )

    async def sync(self) -> SyncResult:
        """Merge upstream and stage the result in the live checkout."""
        return await self._run(apply=True)

    def load_policy(self) -> OverridePolicy:
        policy = self._config.override_policy().merged(
            load_override_file(self._config.resolved_overrides_file)
        )
        for warning in validate_policy(policy, self._config.fork_path):
            logger.warning("override_warning", kind=warning.kind, pattern=warning.pattern)
        return policy

    # ── Run ─────────────────────────────────────────────────────────

    async def _run(self, *, apply: bool) -> SyncResult:
        config = self._config
        repo = config.fork_path
        upstream_ref = config.effective_upstream_ref
        policy = self.load_policy()

        if not await self._git.is_repo(repo):
            raise ConfigError(f"Not a git repository: {repo}")
        if apply:
            dirty = await self._git.dirty_paths(repo)
            if dirty:
                logger.warning("fork_not_clean", count=len(dirty), paths=dirty[:10])
                raise ConfigError(
                    f"Fork has {len(dirty)} uncommitted change(s). "
                    "Commit or stash them before syncing."
                )

        self._worktrees.lock.acquire()
        try:
            if await self._worktrees.recover():
                await self._events.step("Recovered", "removed leftover worktree")
            await self._prepare_upstream(repo, upstream_ref)

            upstream_commit = await self._git.commit_info(repo, upstream_ref)
            await self._events.step(
                "Upstream",
                f"{upstream_commit.short_hash} {upstream_commit.subject} "
                f"({upstream_commit.date})",
            )
            merge_base = await self._git.merge_base(repo, "HEAD", upstream_ref)
            if merge_base is None:
                logger.warning("unrelated_histories", upstream_ref=upstream_ref)

            try:
                session = await self._worktrees.create("HEAD")
                worktree = session.path
                await self._events.step("Worktree", str(worktree))

                conflicted = await self._merge(worktree, upstream_ref, merge_base is None)
                unresolved = await self._resolve_conflicts(worktree, conflicted, policy)
                await self._keep_fork_for_protected(worktree, policy)
                await self._sweep_ignored(worktree, policy)

                if unresolved and apply and self._prompt is not None:
                    await escalate(self._git, worktree, self._prompt, self._events)
                    unresolved = await remaining_conflicts(self._git, worktree)

                files = await self._analyze(repo, upstream_ref, merge_base, policy)
                for analysis in files:
                    analysis.has_conflict = analysis.file_path in conflicted
                summary = SyncSummary.from_files(files)
                await self._events.step("Analyzed", f"{summary.total} files")

                log_path = None
                if config.write_log:
                    log_path = write_analysis_log(
                        files, summary, config.resolved_log_output_dir
                    )

                applied_paths: list[str] = []
                if apply and not unresolved:
                    applied_paths = await self._apply(worktree, repo, files)
                    await self._events.step("Applied", f"{len(applied_paths)} files staged")
                elif apply:
                    logger.warning("sync_not_applied", unresolved=len(unresolved))
            finally:
                await self._worktrees.remove()
        finally:
            self._worktrees.lock.release()

        return SyncResult(
            files=files,
            summary=summary,
            unresolved_conflicts=unresolved,
            applied=apply and not unresolved,
            applied_paths=applied_paths,
            upstream_commit=upstream_commit,
            merge_base=merge_base,
            log_path=log_path,
        )

    # ── Steps ───────────────────────────────────────────────────────

    async def _prepare_upstream(self, repo: Path, upstream_ref: str) -> None:
        config = self._config
        if config.upstream_url:
            result = await self._git.ensure_remote(
                repo, config.upstream_remote, config.upstream_url
            )
            await self._events.step("Remote", result.message)
        if config.upstream_url or config.upstream_ref is None:
            fetched = await self._git.fetch(repo, config.upstream_remote)
            if not fetched.success:
                raise ConnectivityError(
                    f"Could not fetch '{config.upstream_remote}': {fetched.details}"
                )
            await self._events.step("Fetched", config.upstream_remote)
        if await self._git.rev_parse(repo, upstream_ref) is None:
            raise ConnectivityError(f"Upstream ref not found: {upstream_ref}")

    async def _merge(self, worktree: Path, upstream_ref: str, unrelated: bool) -> list[str]:
        result = await self._git.merge(worktree, upstream_ref, allow_unrelated=unrelated)
        if result.had_conflicts:
            await self._events.step("Merged", f"{len(result.conflicted_files)} conflict(s)")
            return result.conflicted_files
        if not result.success:
            raise GitCommandError("merge", str(worktree), 1, result.details)
        await self._events.step("Merged", "clean")
        return []

    async def _resolve_conflicts(
        self, worktree: Path, conflicted: list[str], policy: OverridePolicy
    ) -> list[str]:
        """Settle what the override policy can; return the rest."""
        unresolved: list[str] = []
        for path in conflicted:
            status = classify(path, policy)
            if status == "ignored":
                await self._git.remove_path(worktree, path)
                logger.info("conflict_resolved_removed", path=path)
            elif is_protected(status):
                await self._git.checkout_side(worktree, path, "ours")
                logger.info("conflict_resolved_ours", path=path, override=status)
            else:
                unresolved.append(path)
        if unresolved:
            await self._events.progress(f"{len(unresolved)} conflict(s) need manual resolution")
        return unresolved

    async def _keep_fork_for_protected(self, worktree: Path, policy: OverridePolicy) -> None:
        """Put back the fork's version of protected files the merge changed cleanly."""
        head = await self._git.tree_hashes(worktree, "HEAD")
        present = set(await self._git.list_files(worktree))
        protected = sorted(
            p for p in present | set(head) if is_protected(classify(p, policy))
        )
        await self._git.restore_paths(worktree, "HEAD", [p for p in protected if p in head])
        for path in protected:
            if path not in head and path in present:
                await self._git.remove_path(worktree, path)

    async def _sweep_ignored(self, worktree: Path, policy: OverridePolicy) -> None:
        """Drop ignored files that reached the worktree without a textual conflict."""
        files = sorted(set(await self._git.list_files(worktree)))
        ignored = find_ignored(files, policy)
        for path in ignored:
            await self._git.remove_path(worktree, path)
        if ignored:
            logger.info("ignored_files_removed", count=len(ignored))

    async def _analyze(
        self,
        repo: Path,
        upstream_ref: str,
        merge_base: str | None,
        policy: OverridePolicy,
    ) -> list[FileAnalysis]:
        analyzer = BatchAnalyzer(
            self._git,
            repo,
            upstream_ref,
            policy,
            concurrency=self._config.analysis_concurrency,
        )
        return await analyzer.analyze(merge_base or EMPTY_TREE)

    async def _apply(
        self, worktree: Path, repo: Path, files: list[FileAnalysis]
    ) -> list[str]:
        """Copy changed files from the worktree into the live checkout and stage them."""
        touched: list[str] = []
        for analysis in files:
            if analysis.sync_status is None or analysis.sync_status in _UNCHANGED:
                continue
            source = worktree / analysis.file_path
            dest = repo / analysis.file_path
            if analysis.sync_status == "deleted" or not source.exists():
                if not dest.exists() and not dest.is_symlink():
                    continue
                dest.unlink()
            else:
                dest.parent.mkdir(parents=True, exist_ok=True)
                if dest.is_symlink():
                    dest.unlink()
                shutil.copy2(source, dest, follow_symlinks=False)
            touched.append(analysis.file_path)
        await self._git.add_paths(repo, touched)
        logger.info("sync_applied", files=len(touched))
        return touched


async def analyze(config: ForkSyncConfig, **kwargs) -> AnalysisResult:
    return await SyncOrchestrator(config, **kwargs).analyze()


async def sync(config: ForkSyncConfig, **kwargs) -> SyncResult:
    return await SyncOrchestrator(config, **kwargs).sync()
