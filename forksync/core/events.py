"""Progress events for the display layer.

The orchestrator reports each state it enters as a ``sync.step``; anything
shown while a step is running is a ``sync.progress``. While the run waits on
the operator, progress output is paused so the prompt is not overwritten.
"""

from collections.abc import AsyncIterator, Callable, Coroutine
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

logger = structlog.get_logger()

# Event name constants
SYNC_STEP = "sync.step"
SYNC_PROGRESS = "sync.progress"
PROGRESS_PAUSED = "progress.paused"
PROGRESS_RESUMED = "progress.resumed"
CONFLICTS_PENDING = "conflicts.pending"


class Event(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


EventHandler = Callable[[Event], Coroutine[Any, Any, None]]


class EventBus:
    """Fan-out of run events to async handlers; a failing handler never stops the run."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event_name, []).append(handler)

    async def emit(self, event: Event) -> None:
        for handler in self._handlers.get(event.name, []):
            try:
                await handler(event)
            except Exception:
                logger.exception(
                    "event_handler_error",
                    event_name=event.name,
                    handler_name=getattr(handler, "__name__", repr(handler)),
                )

    async def step(self, label: str, detail: str = "") -> None:
        await self.emit(Event(name=SYNC_STEP, data={"label": label, "detail": detail}))

    async def progress(self, message: str) -> None:
        await self.emit(Event(name=SYNC_PROGRESS, data={"message": message}))

    async def conflicts_pending(self, conflicts: list[str], worktree: Path) -> None:
        await self.emit(
            Event(
                name=CONFLICTS_PENDING,
                data={"conflicts": conflicts, "worktree": str(worktree)},
            )
        )

    @asynccontextmanager
    async def paused(self) -> AsyncIterator[None]:
        """Pause progress output for the body; resume even if it raises."""
        await self.emit(Event(name=PROGRESS_PAUSED))
        try:
            yield
        finally:
            await self.emit(Event(name=PROGRESS_RESUMED))
