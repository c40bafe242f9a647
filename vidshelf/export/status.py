from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]
StatusListener = Callable[["ProcessingStatus"], None]


@dataclass(slots=True, frozen=True)
class ProcessingStatus:
    """Snapshot of one run's progress as shown to a caller."""

    is_processing: bool = False
    progress: int = 0
    stage: str = ""
    log: str | None = None

    @property
    def is_done(self) -> bool:
        return not self.is_processing and self.progress == 100 and self.log is None

    @property
    def is_error(self) -> bool:
        return self.log is not None


class StatusTracker:
    """State machine behind ProcessingStatus: idle -> processing -> done | error.

    An instance is callable with `(percent, stage)` so it can be passed
    straight to the export orchestrator as its progress callback. Progress is
    clamped to 0..100 and never moves backwards within a run; updates outside
    a run are ignored.
    """

    def __init__(self) -> None:
        self._status = ProcessingStatus()
        self._listeners: list[StatusListener] = []

    @property
    def status(self) -> ProcessingStatus:
        return self._status

    def subscribe(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def start(self, stage: str = "starting") -> None:
        self._set(ProcessingStatus(is_processing=True, progress=0, stage=stage))

    def update(self, percent: int, stage: str) -> None:
        if not self._status.is_processing:
            logger.debug("Ignoring progress update outside a run: %s%% %s", percent, stage)
            return
        clamped = max(self._status.progress, min(100, max(0, int(percent))))
        self._set(replace(self._status, progress=clamped, stage=stage))

    def complete(self, stage: str = "export complete") -> None:
        self._set(ProcessingStatus(is_processing=False, progress=100, stage=stage))

    def fail(self, message: str, stage: str = "export failed") -> None:
        self._set(replace(self._status, is_processing=False, stage=stage, log=message))

    def reset(self) -> None:
        self._set(ProcessingStatus())

    def __call__(self, percent: int, stage: str) -> None:
        self.update(percent, stage)

    def _set(self, status: ProcessingStatus) -> None:
        self._status = status
        for listener in self._listeners:
            listener(status)
