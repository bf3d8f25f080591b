"""Bootstrap: logging setup and orchestrator wiring."""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from forksync.core.events import (
    CONFLICTS_PENDING,
    SYNC_PROGRESS,
    SYNC_STEP,
    Event,
    EventBus,
)
from forksync.git.service import GitService
from forksync.sync.orchestrator import SyncOrchestrator

if TYPE_CHECKING:
    from forksync.core.config import ForkSyncConfig
    from forksync.sync.escalation import ConflictPrompt

logger = structlog.get_logger()


def _resolve_against(path: Path, base: Path) -> Path:
    """Return *path* unchanged if absolute, otherwise resolve it against *base*."""
    return path if path.is_absolute() else base / path


def configure_logging(config: ForkSyncConfig) -> None:
    """Set up structlog with console output and optional rotating JSON file handler."""
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]

    root_logger = logging.getLogger()
    root_logger.setLevel(config.log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(),
        )
    )
    root_logger.addHandler(console_handler)

    if config.log_dir is not None:
        log_dir = _resolve_against(config.log_dir, config.fork_path)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_dir / "forksync.log",
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
        )
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.processors.JSONRenderer(),
            )
        )
        root_logger.addHandler(file_handler)

    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


async def _print_step(event: Event) -> None:
    detail = event.data.get("detail")
    label = event.data.get("label", "")
    print(f"  {label}: {detail}" if detail else f"  {label}")


async def _print_progress(event: Event) -> None:
    print(f"  ... {event.data.get('message', '')}")


async def _print_conflicts(event: Event) -> None:
    for path in event.data.get("conflicts", []):
        print(f"    ! {path}")


def build_orchestrator(
    config: ForkSyncConfig,
    *,
    prompt: ConflictPrompt | None = None,
    events: EventBus | None = None,
    git: GitService | None = None,
) -> SyncOrchestrator:
    """Wire a SyncOrchestrator whose progress is printed to the console."""
    if events is None:
        events = EventBus()
        events.subscribe(SYNC_STEP, _print_step)
        events.subscribe(SYNC_PROGRESS, _print_progress)
        events.subscribe(CONFLICTS_PENDING, _print_conflicts)

    orchestrator = SyncOrchestrator(
        config,
        git=git or GitService(timeout=config.git_timeout_seconds),
        events=events,
        prompt=prompt,
    )
    logger.debug(
        "orchestrator_built",
        fork_path=str(config.fork_path),
        upstream_ref=config.effective_upstream_ref,
    )
    return orchestrator
