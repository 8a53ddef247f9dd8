"""Progress reporting for import runs."""

import asyncio
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from plan_importer.domain.imports import ImportProgress, ImportStep, ProgressDetails

_logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ImportProgress], object]


@dataclass
class ProgressReporter:
    """Emit numbered progress events to an optional consumer.

    ``step_number`` increases by one per event and ``progress`` never goes
    down. Consumer failures are logged and never reach the pipeline; async
    consumers are scheduled and not awaited.
    """

    callback: ProgressCallback | None
    total_steps: int
    step_number: int = 0
    progress: float = 0.0
    _pending: set["asyncio.Future[object]"] = field(default_factory=set)

    def emit(
        self,
        step: ImportStep,
        progress: float,
        message: str,
        details: ProgressDetails | None = None,
    ) -> ImportProgress:
        """Record and dispatch a progress event."""
        self.step_number += 1
        self.progress = max(self.progress, min(100.0, max(0.0, progress)))
        self.total_steps = max(self.total_steps, self.step_number)
        event = ImportProgress(
            step=step,
            step_number=self.step_number,
            total_steps=self.total_steps,
            progress=self.progress,
            message=message,
            details=details,
        )
        self._dispatch(event)
        return event

    def drop_steps(self, count: int) -> None:
        """Lower the planned event count, e.g. when files fail."""
        self.total_steps = max(self.step_number, self.total_steps - count)

    def _dispatch(self, event: ImportProgress) -> None:
        if self.callback is None:
            return
        try:
            outcome = self.callback(event)
        except Exception:
            _logger.exception("Progress consumer failed on %s", event.step)
            return
        if inspect.isawaitable(outcome):
            future = asyncio.ensure_future(outcome)
            self._pending.add(future)
            future.add_done_callback(self._on_consumer_done)

    def _on_consumer_done(self, future: "asyncio.Future[object]") -> None:
        self._pending.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            _logger.error("Async progress consumer failed: %s", exc)
