"""Export progress event interfaces for observers and status displays."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import threading
import time
from typing import Any, Callable, Optional, Protocol


class ExportEventType(str, Enum):
    """Enumerates the different event categories emitted during an export."""

    EXPORT_STARTED = "export_started"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"
    STEP_PROGRESS = "step_progress"
    NOTICE = "notice"
    EXPORT_COMPLETED = "export_completed"


@dataclass(slots=True)
class ExportEvent:
    """Represents an event dispatched from the export pipeline."""

    type: ExportEventType
    message: str | None = None
    step: str | None = None
    data: dict[str, Any] | None = None
    timestamp: float = field(default_factory=time.time)

    def to_payload(self) -> dict[str, Any]:
        """Return a JSON-serialisable representation of the event."""

        payload: dict[str, Any] = {
            "type": self.type.value,
            "timestamp": self.timestamp,
        }
        if self.message is not None:
            payload["message"] = self.message
        if self.step is not None:
            payload["step"] = self.step
        if self.data:
            payload["data"] = self.data
        return payload


class ExportObserver(Protocol):
    """Protocol for consumers interested in export events."""

    def handle_event(self, event: ExportEvent) -> None:
        """Handle an export event dispatched by the pipeline."""
        raise NotImplementedError


ProgressCallback = Callable[[float, str], None]


class ProgressReporter:
    """Fan progress out to a callback and an observer.

    Progress never reaches ``1.0`` before :meth:`complete` is called, so a
    display never shows a finished export while the container is still being
    finalized.
    """

    CEILING = 0.99

    def __init__(
        self,
        callback: Optional[ProgressCallback] = None,
        observer: Optional[ExportObserver] = None,
    ) -> None:
        self._callback = callback
        self._observer = observer
        self._lock = threading.Lock()
        self.fraction = 0.0
        self.status = ""

    def set_status(self, status: str) -> None:
        with self._lock:
            self.status = status
        self._emit()

    def update(self, fraction: float) -> None:
        with self._lock:
            self.fraction = max(0.0, min(self.CEILING, float(fraction)))
        self._emit()

    def complete(self) -> None:
        with self._lock:
            self.fraction = 1.0
        self._emit()

    def notice(self, message: str) -> None:
        if self._observer is not None:
            self._observer.handle_event(ExportEvent(type=ExportEventType.NOTICE, message=message))

    def _emit(self) -> None:
        fraction, status = self.fraction, self.status
        if self._callback is not None:
            self._callback(fraction, status)
        if self._observer is not None:
            self._observer.handle_event(
                ExportEvent(
                    type=ExportEventType.STEP_PROGRESS,
                    message=status or None,
                    data={"progress": fraction},
                )
            )


__all__ = [
    "ExportEventType",
    "ExportEvent",
    "ExportObserver",
    "ProgressCallback",
    "ProgressReporter",
]
