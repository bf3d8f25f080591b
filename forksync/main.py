"""CLI entry point for forksync."""

import argparse
import asyncio
import sys
from collections.abc import Sequence
from typing import Any

import structlog
from pydantic import ValidationError

from forksync.app import build_orchestrator, configure_logging
from forksync.core.config import ForkSyncConfig
from forksync.exceptions import ConfigError, ForkSyncError, MergeAbortedError
from forksync.git.service import GitService
from forksync.sync.escalation import ConsolePrompt
from forksync.sync.models import AnalysisResult, SyncResult
from forksync.sync.report import format_summary
from forksync.sync.squash import squash

logger = structlog.get_logger()

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="forksync",
        description="Keep a fork in sync with its upstream template.",
    )
    parser.add_argument("--fork-path", help="fork repository (default: cwd)")
    parser.add_argument("--upstream-url", help="URL of the upstream repository")
    parser.add_argument("--upstream-branch", help="upstream branch to sync from")
    parser.add_argument("--upstream-ref", help="explicit upstream ref, skips fetching")

    sub = parser.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", help="dry run: classify every file")
    analyze.add_argument("--log", action="store_true", help="write a full analysis log")

    sync = sub.add_parser("sync", help="merge upstream and stage the result")
    sync.add_argument("--log", action="store_true", help="write a full analysis log")
    sync.add_argument(
        "--no-prompt",
        action="store_true",
        help="do not wait for manual conflict resolution",
    )

    squash_cmd = sub.add_parser("squash", help="stage the sync branch as one change")
    squash_cmd.add_argument("--sync-branch", help="branch holding synced upstream history")
    return parser


def _config_overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {
        "fork_path": args.fork_path,
        "upstream_url": args.upstream_url,
        "upstream_branch": args.upstream_branch,
        "upstream_ref": args.upstream_ref,
        "sync_branch": getattr(args, "sync_branch", None),
    }
    if getattr(args, "log", False):
        overrides["write_log"] = True
    return {k: v for k, v in overrides.items() if v is not None}


def _print_result(result: AnalysisResult | SyncResult) -> None:
    if result.upstream_commit is not None:
        commit = result.upstream_commit
        print(f"Upstream at {commit.short_hash}: {commit.subject}")
    print(format_summary(result.summary))
    for analysis in result.files:
        if analysis.sync_status in ("behind", "diverged", "drifted"):
            strategy = analysis.merge_strategy
            reason = f" ({strategy.reason})" if strategy else ""
            print(f"  {analysis.sync_status:<9} {analysis.file_path}{reason}")
    if result.log_path is not None:
        print(f"Full analysis written to {result.log_path}")


async def _run_analyze(config: ForkSyncConfig) -> int:
    result = await build_orchestrator(config).analyze()
    _print_result(result)
    for path in result.potential_conflicts:
        print(f"  conflict  {path}")
    return EXIT_OK


async def _run_sync(config: ForkSyncConfig, *, interactive: bool) -> int:
    prompt = ConsolePrompt() if interactive else None
    result = await build_orchestrator(config, prompt=prompt).sync()
    _print_result(result)
    if result.unresolved_conflicts:
        print(f"{len(result.unresolved_conflicts)} conflict(s) need manual resolution:")
        for path in result.unresolved_conflicts:
            print(f"  {path}")
        print("Nothing was applied.")
        return EXIT_FAILURE
    print(f"Staged {len(result.applied_paths)} file(s). Review and commit when ready.")
    return EXIT_OK


async def _run_squash(config: ForkSyncConfig) -> int:
    if not config.sync_branch:
        raise ConfigError("squash needs a sync branch (--sync-branch or FORKSYNC_SYNC_BRANCH)")
    result = await squash(
        GitService(timeout=config.git_timeout_seconds),
        config.fork_path,
        config.sync_branch,
        remote=config.upstream_remote,
        max_previews=config.max_squash_previews,
    )
    if result is None:
        print("Nothing to squash.")
        return EXIT_OK
    print("Changes staged. Suggested commit message:\n")
    print(result.message)
    return EXIT_OK


async def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = ForkSyncConfig(**_config_overrides(args))
    except (ValidationError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    configure_logging(config)

    try:
        if args.command == "analyze":
            return await _run_analyze(config)
        if args.command == "sync":
            return await _run_sync(config, interactive=not args.no_prompt)
        return await _run_squash(config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except MergeAbortedError as e:
        print(f"Aborted: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except ForkSyncError as e:
        logger.error("run_failed", command=args.command, error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE


def run() -> None:
    sys.exit(asyncio.run(main()))
