"""Source video access for export: frame-accurate seeks and sequential playback."""

from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

import cv2
import numpy as np

from captionburn.errors import SeekError
from captionburn.helpers.media import AudioStreamMetadata, probe_audio_stream, probe_video_stream

# Guards floor(t * fps) against t = k / fps landing just below an integer
_INDEX_EPSILON = 1e-6


@dataclass(frozen=True)
class PlaybackState:
    """Everything an export may touch on the source and must put back."""

    position: float
    volume: float
    muted: bool


class MediaSource(Protocol):
    """What the exporters need from a source video."""

    path: Path
    width: int
    height: int
    fps: float
    duration: float
    position: float
    volume: float
    muted: bool

    @property
    def seekable(self) -> bool: ...

    @property
    def has_audio(self) -> bool: ...

    def seek(self, t: float) -> np.ndarray: ...

    def read(self) -> Optional[np.ndarray]: ...

    def snapshot(self) -> PlaybackState: ...

    def restore(self, state: PlaybackState) -> None: ...

    def close(self) -> None: ...


class VideoSource:
    """OpenCV-backed source video.

    :meth:`seek` decodes the frame displayed at a timestamp and blocks until it
    is available. Consecutive seeks one frame apart read sequentially instead of
    re-seeking the container, which keeps a full export linear in the frame
    count.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"Source video not found: {self.path}")
        self._cap = cv2.VideoCapture(str(self.path))
        if not self._cap.isOpened():
            raise SeekError(f"Unable to open source video: {self.path}")

        meta = probe_video_stream(self.path)
        self.width = int(meta.width or self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self.height = int(meta.height or self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self.fps = float(meta.frame_rate or self._cap.get(cv2.CAP_PROP_FPS) or 30.0)
        self.frame_count = max(0, int(self._cap.get(cv2.CAP_PROP_FRAME_COUNT)))
        if meta.duration:
            self.duration = float(meta.duration)
        elif self.frame_count:
            self.duration = self.frame_count / self.fps
        else:
            self.duration = 0.0
        self.audio: AudioStreamMetadata = probe_audio_stream(self.path)

        self.position = 0.0
        self.volume = 1.0
        self.muted = False
        self._next_index = 0
        self._last_index = -1
        self._last_frame: Optional[np.ndarray] = None

    @property
    def seekable(self) -> bool:
        return self._cap.isOpened() and self.frame_count > 0 and self.duration > 0

    @property
    def has_audio(self) -> bool:
        return self.audio.has_audio

    def frame_index(self, t: float) -> int:
        index = int(math.floor(max(0.0, t) * self.fps + _INDEX_EPSILON))
        if self.frame_count:
            index = min(index, self.frame_count - 1)
        return index

    def _decode(self) -> Optional[np.ndarray]:
        ok, frame = self._cap.read()
        if not ok or frame is None:
            return None
        return frame

    def seek(self, t: float) -> np.ndarray:
        """Return the frame shown at ``t`` seconds."""
        index = self.frame_index(t)
        if index == self._last_index and self._last_frame is not None:
            self.position = t
            return self._last_frame
        if index != self._next_index:
            if not self._cap.set(cv2.CAP_PROP_POS_FRAMES, index):
                raise SeekError(f"Seek to {t:.3f}s (frame {index}) failed")
        frame = self._decode()
        if frame is None:
            # containers often report one frame more than they decode
            if self._last_frame is not None and index == self._last_index + 1:
                self.position = t
                return self._last_frame
            raise SeekError(f"No frame decoded at {t:.3f}s (frame {index})")
        if frame.shape[0] != self.height or frame.shape[1] != self.width:
            frame = cv2.resize(frame, (self.width, self.height), interpolation=cv2.INTER_LINEAR)
        self._last_index = index
        self._last_frame = frame
        self._next_index = index + 1
        self.position = t
        return frame

    def read(self) -> Optional[np.ndarray]:
        """Return the next frame in playback order, or ``None`` at the end."""
        frame = self._decode()
        if frame is None:
            return None
        index = self._next_index
        self._last_index = index
        self._last_frame = frame
        self._next_index = index + 1
        self.position = index / self.fps
        return frame

    def snapshot(self) -> PlaybackState:
        return PlaybackState(position=self.position, volume=self.volume, muted=self.muted)

    def restore(self, state: PlaybackState) -> None:
        self.volume = state.volume
        self.muted = state.muted
        index = self.frame_index(state.position)
        if self._cap.isOpened() and index != self._next_index:
            self._cap.set(cv2.CAP_PROP_POS_FRAMES, index)
            self._next_index = index
            self._last_index = -1
            self._last_frame = None
        self.position = state.position

    def close(self) -> None:
        self._cap.release()

    def __enter__(self) -> "VideoSource":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def open_source(path: str | Path) -> VideoSource:
    return VideoSource(path)


__all__ = ["PlaybackState", "MediaSource", "VideoSource", "open_source"]
