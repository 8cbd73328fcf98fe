"""Export orchestration: strategy selection, fallback, single-flight and cancel."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from captionburn.config import OUTPUT_FPS
from captionburn.errors import (
    EncoderFault,
    ExportFailed,
    ExportInProgressError,
    PrimitiveUnavailable,
    UserCancelled,
)
from captionburn.helpers.formatting import Fore, Style
from captionburn.helpers.logging import emit_event, push_observer, reset_observer
from captionburn.interfaces.export import CancelToken, EncodeJob, ExportResult, ExportStrategy
from captionburn.interfaces.progress import (
    ExportEvent,
    ExportEventType,
    ExportObserver,
    ProgressCallback,
    ProgressReporter,
)
from captionburn.steps.captions import CaptionTrack
from captionburn.steps.export import FrameAccurateExporter
from captionburn.steps.realtime import RealtimeExporter
from captionburn.steps.source import MediaSource
from captionburn.style import StyleState

logger = logging.getLogger(__name__)

NOTICE_PRIMARY_UNAVAILABLE = (
    "Frame-accurate export is not supported on this system; "
    "recording in real time instead, which takes as long as the video."
)
NOTICE_PRIMARY_FAILED = "Frame-accurate export failed ({error}); retrying with real-time recording."
NOTICE_FORCED_REALTIME = "Real-time recording requested."


class ExportPipeline:
    """Runs one export at a time using the best available strategy.

    The primary strategy is probed first; when it reports itself unavailable
    the fallback runs with an informational notice. An :class:`EncoderFault`
    from the primary triggers exactly one fallback attempt; a failure there is
    terminal and surfaces as :class:`ExportFailed`. Cancellation is not a
    failure and yields a result with ``cancelled=True`` and no file.
    """

    def __init__(
        self,
        primary: Optional[ExportStrategy] = None,
        fallback: Optional[ExportStrategy] = None,
        *,
        observer: Optional[ExportObserver] = None,
    ) -> None:
        self.primary = primary if primary is not None else FrameAccurateExporter()
        self.fallback = fallback if fallback is not None else RealtimeExporter()
        self.observer = observer
        self._lock = threading.Lock()
        self._exporting = False
        self._cancel: Optional[CancelToken] = None

    @property
    def exporting(self) -> bool:
        with self._lock:
            return self._exporting

    def cancel(self) -> bool:
        """Request cancellation of the running export; ``False`` when idle."""
        with self._lock:
            if self._cancel is None:
                return False
            self._cancel.cancel()
            return True

    def export(
        self,
        source: MediaSource,
        track: CaptionTrack,
        style: StyleState,
        output_path: str | Path,
        *,
        progress: Optional[ProgressCallback] = None,
        fps: float = OUTPUT_FPS,
        force_realtime: bool = False,
        cancel: Optional[CancelToken] = None,
    ) -> ExportResult:
        """Export ``track`` burned onto ``source`` at ``output_path``.

        ``cancel`` lets a caller hold the token before the export starts, so a
        cancel requested while the source is still opening is not lost.
        """
        with self._lock:
            if self._exporting:
                raise ExportInProgressError("An export is already running")
            self._exporting = True
            cancel = self._cancel = cancel if cancel is not None else CancelToken()

        token = push_observer(self.observer)
        reporter = ProgressReporter(progress, self.observer)
        notices: list[str] = []

        def _notice(message: str) -> None:
            notices.append(message)
            reporter.notice(message)
            print(f"{Fore.YELLOW}[export]{Style.RESET_ALL} {message}")

        def _job() -> EncodeJob:
            return EncodeJob(source=source, track=track, style=frozen_style, output_path=Path(output_path), fps=fps)

        try:
            frozen_style = style.snapshot()
            track.layout_cache.invalidate()
            emit_event(ExportEvent(type=ExportEventType.EXPORT_STARTED, message=str(output_path)))

            strategy = self.primary
            if force_realtime:
                _notice(NOTICE_FORCED_REALTIME)
                strategy = self.fallback
            elif not self.primary.available(source):
                _notice(NOTICE_PRIMARY_UNAVAILABLE)
                strategy = self.fallback

            if cancel.cancelled:
                return self._cancelled(strategy, notices)

            try:
                path = strategy.export(_job(), reporter, cancel)
            except UserCancelled:
                return self._cancelled(strategy, notices)
            except (EncoderFault, PrimitiveUnavailable) as exc:
                if strategy is self.fallback:
                    raise ExportFailed(f"Export failed: {exc}", notices) from exc
                logger.warning("Primary export strategy failed: %s", exc)
                _notice(NOTICE_PRIMARY_FAILED.format(error=exc))
                strategy = self.fallback
                try:
                    path = strategy.export(_job(), reporter, cancel)
                except UserCancelled:
                    return self._cancelled(strategy, notices)
                except Exception as fallback_exc:
                    raise ExportFailed(f"Export failed: {fallback_exc}", notices) from fallback_exc
            except ExportInProgressError:
                raise
            except Exception as exc:
                raise ExportFailed(f"Export failed: {exc}", notices) from exc

            emit_event(
                ExportEvent(
                    type=ExportEventType.EXPORT_COMPLETED,
                    message=str(path),
                    data={"strategy": strategy.name, "notices": list(notices)},
                )
            )
            logger.info("Export finished via %s: %s", strategy.name, path)
            return ExportResult(path=path, strategy=strategy.name, notices=notices)
        except ExportFailed as exc:
            logger.error("%s", exc)
            raise
        finally:
            reset_observer(token)
            with self._lock:
                self._exporting = False
                self._cancel = None

    def _cancelled(self, strategy: ExportStrategy, notices: list[str]) -> ExportResult:
        logger.info("Export cancelled during %s", strategy.name)
        emit_event(
            ExportEvent(
                type=ExportEventType.EXPORT_COMPLETED,
                message="cancelled",
                data={"strategy": strategy.name, "cancelled": True},
            )
        )
        return ExportResult(path=None, strategy=strategy.name, notices=notices, cancelled=True)


__all__ = ["ExportPipeline", "ExportResult", "CancelToken"]
