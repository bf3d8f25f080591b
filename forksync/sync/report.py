"""Plain-text analysis log and console summary."""

from datetime import UTC, datetime
from pathlib import Path

import structlog

from forksync.sync.models import SEVERITY_ORDER, FileAnalysis, SyncSummary

logger = structlog.get_logger()

_RULE = "-" * 60
_RANK = {status: i for i, status in enumerate(SEVERITY_ORDER)}


def log_file_name(now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    return f"forksync.{now.strftime('%Y-%m-%dT%H-%M-%S')}.log"


def severity_key(analysis: FileAnalysis) -> tuple[int, str]:
    rank = _RANK.get(analysis.sync_status or "", len(SEVERITY_ORDER))
    return rank, analysis.file_path


def format_line(analysis: FileAnalysis) -> str:
    parts = [analysis.file_path, analysis.sync_status or "unknown"]

    summary = analysis.commit_summary
    if summary is not None:
        if summary.changes_ahead and summary.changes_behind:
            parts.append(f"+{summary.changes_ahead}/-{summary.changes_behind}")
        elif summary.changes_ahead:
            parts.append(f"+{summary.changes_ahead}")
        elif summary.changes_behind:
            parts.append(f"-{summary.changes_behind}")

    fork_id = analysis.fork_file.short_change_id if analysis.fork_file else ""
    upstream_id = analysis.upstream_file.short_change_id if analysis.upstream_file else ""
    if fork_id and upstream_id and fork_id != upstream_id:
        parts.append(f"({fork_id} -> {upstream_id})")
    elif fork_id or upstream_id:
        parts.append(f"({fork_id or upstream_id})")

    if summary is not None and summary.last_synced_at is not None:
        parts.append(f"synced {summary.last_synced_at.date().isoformat()}")

    if analysis.override_status != "none":
        parts.append(f"[{analysis.override_status}]")
    if analysis.merge_strategy is not None:
        parts.append(f"{analysis.merge_strategy.action}: {analysis.merge_strategy.reason}")
    if analysis.has_conflict:
        parts.append("CONFLICT")
    return " ".join(parts)


def format_summary(summary: SyncSummary) -> str:
    counts = ", ".join(
        f"{getattr(summary, status)} {status}"
        for status in SEVERITY_ORDER
        if getattr(summary, status)
    )
    return f"{summary.total} files: {counts}" if counts else f"{summary.total} files"


def write_analysis_log(
    files: list[FileAnalysis],
    summary: SyncSummary,
    output_dir: Path,
    *,
    now: datetime | None = None,
) -> Path:
    """Write every analyzed file, most urgent first, to a timestamped log."""
    now = now or datetime.now(UTC)
    path = output_dir / log_file_name(now)
    lines = [
        "forksync analysis log",
        f"Generated: {now.isoformat()}",
        _RULE,
        "",
        *(format_line(f) for f in sorted(files, key=severity_key)),
        "",
        _RULE,
        format_summary(summary),
        "End of analysis",
        "",
    ]
    path.write_text("\n".join(lines), encoding="utf-8")
    logger.info("analysis_log_written", path=str(path), files=len(files))
    return path
