"""Shared types for the export strategies and their orchestrator."""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, List, Optional, Protocol

from captionburn.config import (
    AUDIO_BITRATE,
    AUDIO_CHANNELS,
    AUDIO_CODEC,
    AUDIO_SAMPLE_RATE,
    KEYFRAME_INTERVAL_SECONDS,
    OUTPUT_FPS,
    VIDEO_BITRATE,
    VIDEO_CODEC,
)
from captionburn.errors import UserCancelled

if TYPE_CHECKING:
    from captionburn.interfaces.progress import ProgressReporter
    from captionburn.steps.captions import CaptionTrack
    from captionburn.steps.source import MediaSource
    from captionburn.style import StyleState


class CancelToken:
    """Cooperative cancellation flag checked at every suspension point."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise UserCancelled("Export cancelled")

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds, waking early on cancel."""
        return self._event.wait(timeout)


@dataclass
class EncodeJob:
    """Transient state for one export, owned by exactly one exporter."""

    source: "MediaSource"
    track: "CaptionTrack"
    style: "StyleState"
    output_path: Path
    fps: float = OUTPUT_FPS
    video_codec: str = VIDEO_CODEC
    video_bitrate: str = VIDEO_BITRATE
    audio_codec: str = AUDIO_CODEC
    audio_bitrate: str = AUDIO_BITRATE
    sample_rate: int = AUDIO_SAMPLE_RATE
    channels: int = AUDIO_CHANNELS
    keyframe_interval_seconds: float = KEYFRAME_INTERVAL_SECONDS
    progress: float = 0.0
    handles: List[Any] = field(default_factory=list)

    @property
    def duration(self) -> float:
        return float(self.source.duration)

    @property
    def frame_count(self) -> int:
        return max(0, int(math.ceil(self.duration * self.fps - 1e-9)))

    @property
    def keyframe_interval(self) -> int:
        return max(1, int(round(self.keyframe_interval_seconds * self.fps)))


@dataclass
class ExportResult:
    path: Optional[Path]
    strategy: str
    notices: List[str] = field(default_factory=list)
    cancelled: bool = False


class ExportStrategy(Protocol):
    """One way of producing the captioned video."""

    name: str

    def available(self, source: "MediaSource") -> bool:
        """Return ``True`` when this strategy can run on this host for ``source``."""
        raise NotImplementedError

    def export(self, job: EncodeJob, reporter: "ProgressReporter", cancel: CancelToken) -> Path:
        """Write ``job.output_path`` or raise; must leave no partial output behind."""
        raise NotImplementedError


__all__ = ["CancelToken", "EncodeJob", "ExportResult", "ExportStrategy"]
