"""Realtime fallback: play the source, caption each frame, and record the stream.

Used when the frame-accurate path is unavailable or fails. The source is
played at normal speed against a monotonic clock; every decoded frame is
captioned into an off-screen buffer and piped to an ffmpeg recorder that stamps
input frames with wall-clock time and merges in the source audio. The recorder
emits fragmented MP4 on stdout which is collected in memory and written out
once recording stops.
"""

from __future__ import annotations

import os
import subprocess
import threading
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, FrozenSet, IO, Iterator, List, Optional

import numpy as np

from captionburn.config import (
    AUDIO_BITRATE,
    AUDIO_CODEC,
    FFMPEG_BIN,
    OUTPUT_FPS,
    PLAYBACK_RATE,
    TIME_UPDATE_INTERVAL,
    VIDEO_BITRATE,
    VIDEO_CODEC,
)
from captionburn.errors import EncoderFault, ExportInProgressError, UserCancelled
from captionburn.helpers.formatting import Fore, Style
from captionburn.helpers.logging import log_timing
from captionburn.helpers.media import ffmpeg_available
from captionburn.interfaces.export import CancelToken, EncodeJob
from captionburn.interfaces.progress import ProgressReporter

from .encode import FfmpegProcess
from .export import STATUS_FINALIZING
from .overlay import OverlayRenderer
from .source import MediaSource, PlaybackState

STATUS_REALTIME = "Rendering (Real-time)..."


class RecorderState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    FINALIZING = "finalizing"
    DONE = "done"
    ERROR = "error"


_TRANSITIONS: Dict[RecorderState, FrozenSet[RecorderState]] = {
    RecorderState.IDLE: frozenset({RecorderState.RECORDING}),
    RecorderState.RECORDING: frozenset({RecorderState.FINALIZING, RecorderState.IDLE, RecorderState.ERROR}),
    RecorderState.FINALIZING: frozenset({RecorderState.DONE, RecorderState.IDLE, RecorderState.ERROR}),
    RecorderState.DONE: frozenset({RecorderState.IDLE}),
    RecorderState.ERROR: frozenset({RecorderState.IDLE}),
}


class PlaybackEventType(str, Enum):
    FRAME = "frame"
    TIME_UPDATE = "time_update"
    ENDED = "ended"


@dataclass(frozen=True)
class PlaybackEvent:
    type: PlaybackEventType
    time: float
    frame: Optional[np.ndarray] = None


class PlaybackDriver:
    """Plays a source from the start in real time and yields playback events.

    Each yielded event is a suspension point: the consumer does its work for
    the frame, and cancellation is checked before the next frame is decoded.
    ``clock`` and ``sleep`` are injectable so tests can run in virtual time.
    """

    def __init__(
        self,
        source: MediaSource,
        *,
        rate: float = PLAYBACK_RATE,
        time_update_interval: float = TIME_UPDATE_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], object]] = None,
    ) -> None:
        self.source = source
        self.rate = rate
        self.time_update_interval = time_update_interval
        self.clock = clock
        self.sleep = sleep

    def events(self, cancel: CancelToken) -> Iterator[PlaybackEvent]:
        sleep = self.sleep or cancel.wait
        source = self.source
        source.restore(PlaybackState(position=0.0, volume=source.volume, muted=source.muted))
        start = self.clock()
        last_update: Optional[float] = None
        while True:
            cancel.raise_if_cancelled()
            frame = source.read()
            media_time = source.position
            if frame is None or (source.duration > 0 and media_time >= source.duration):
                yield PlaybackEvent(PlaybackEventType.ENDED, source.duration)
                return
            delay = start + media_time / self.rate - self.clock()
            if delay > 0:
                sleep(delay)
                cancel.raise_if_cancelled()
            yield PlaybackEvent(PlaybackEventType.FRAME, media_time, frame)
            if last_update is None or media_time - last_update >= self.time_update_interval:
                last_update = media_time
                yield PlaybackEvent(PlaybackEventType.TIME_UPDATE, media_time)


def _collect(pipe: IO[bytes], chunks: List[bytes]) -> None:
    try:
        for chunk in iter(lambda: pipe.read(64 * 1024), b""):
            chunks.append(chunk)
    except (OSError, ValueError):
        pass


class StreamRecorder:
    """Records piped frames plus the source audio track as fragmented MP4."""

    def __init__(
        self,
        width: int,
        height: int,
        *,
        fps: float = OUTPUT_FPS,
        audio_source: Optional[Path] = None,
        codec: str = VIDEO_CODEC,
        bitrate: str = VIDEO_BITRATE,
        audio_codec: str = AUDIO_CODEC,
        audio_bitrate: str = AUDIO_BITRATE,
    ) -> None:
        self.width = width
        self.height = height
        self.fps = fps
        self.audio_source = audio_source
        self.codec = codec
        self.bitrate = bitrate
        self.audio_codec = audio_codec
        self.audio_bitrate = audio_bitrate
        self.chunks: List[bytes] = []
        self._proc: Optional[FfmpegProcess] = None
        self._collector: Optional[threading.Thread] = None

    def command(self) -> List[str]:
        cmd = [
            FFMPEG_BIN,
            "-hide_banner",
            "-loglevel",
            "error",
            "-use_wallclock_as_timestamps",
            "1",
            "-f",
            "rawvideo",
            "-pix_fmt",
            "bgr24",
            "-s",
            f"{self.width}x{self.height}",
            "-i",
            "pipe:0",
        ]
        if self.audio_source is not None:
            # channel layout follows the source; no downmix here
            cmd += ["-i", str(self.audio_source), "-map", "0:v:0", "-map", "1:a:0?"]
            cmd += ["-c:a", self.audio_codec, "-b:a", self.audio_bitrate]
        else:
            cmd += ["-an"]
        cmd += [
            "-vf",
            "pad=ceil(iw/2)*2:ceil(ih/2)*2",
            "-c:v",
            self.codec,
            "-b:v",
            self.bitrate,
            "-pix_fmt",
            "yuv420p",
            "-fps_mode",
            "cfr",
            "-r",
            f"{self.fps:g}",
            "-movflags",
            "frag_keyframe+empty_moov+default_base_moof",
            "-f",
            "mp4",
            "pipe:1",
        ]
        return cmd

    def start(self) -> "StreamRecorder":
        self.chunks = []
        self._proc = FfmpegProcess(self.command(), name="recorder", stdout=subprocess.PIPE).start()
        proc = self._proc.process
        assert proc is not None and proc.stdout is not None
        self._collector = threading.Thread(target=_collect, args=(proc.stdout, self.chunks), daemon=True)
        self._collector.start()
        return self

    def write_frame(self, frame: np.ndarray) -> None:
        if self._proc is None:
            raise EncoderFault("Recorder is not running")
        if frame.shape != (self.height, self.width, 3):
            raise EncoderFault(f"Recorder rejected frame of shape {frame.shape}")
        self._proc.write(np.ascontiguousarray(frame, dtype=np.uint8).data)

    def stop(self) -> int:
        """Stop recording and wait for the last fragment; returns bytes collected."""
        if self._proc is None:
            raise EncoderFault("Recorder is not running")
        self._proc.finish()
        if self._collector is not None:
            self._collector.join()
        return sum(len(c) for c in self.chunks)

    def assemble(self, output_path: str | Path) -> Path:
        if not self.chunks:
            raise EncoderFault("Recorder produced no data")
        out = Path(output_path)
        out.parent.mkdir(parents=True, exist_ok=True)
        tmp = out.with_name(f".{out.stem}.{uuid.uuid4().hex[:8]}.part{out.suffix or '.mp4'}")
        try:
            with open(tmp, "wb") as fh:
                for chunk in self.chunks:
                    fh.write(chunk)
            os.replace(tmp, out)
        finally:
            tmp.unlink(missing_ok=True)
        self.chunks = []
        return out

    def abort(self) -> None:
        if self._proc is not None:
            self._proc.kill()
        if self._collector is not None:
            self._collector.join(timeout=1)
        self.chunks = []


class RealtimeExporter:
    """Secondary export strategy driven by normal-speed playback.

    Takes as long as the video plays. Output timing follows the wall clock, so
    it is only as accurate as the host keeps up; the frame-accurate path is
    preferred whenever it is available.
    """

    name = "realtime"

    def __init__(
        self,
        *,
        recorder_factory: Callable[..., StreamRecorder] = StreamRecorder,
        driver_factory: Callable[..., PlaybackDriver] = PlaybackDriver,
        probe: Callable[[], bool] = ffmpeg_available,
    ) -> None:
        self._recorder_factory = recorder_factory
        self._driver_factory = driver_factory
        self._probe = probe
        self._state = RecorderState.IDLE
        self._lock = threading.Lock()
        self.history: List[RecorderState] = [RecorderState.IDLE]

    @property
    def state(self) -> RecorderState:
        return self._state

    def _transition(self, new_state: RecorderState) -> None:
        with self._lock:
            if new_state not in _TRANSITIONS[self._state]:
                raise RuntimeError(f"Invalid recorder transition {self._state.value} -> {new_state.value}")
            self._state = new_state
            self.history.append(new_state)

    def available(self, source: MediaSource) -> bool:
        return self._probe()

    def export(self, job: EncodeJob, reporter: ProgressReporter, cancel: CancelToken) -> Path:
        if self._state in (RecorderState.RECORDING, RecorderState.FINALIZING):
            raise ExportInProgressError("Realtime recorder is busy")
        if self._state is not RecorderState.IDLE:
            self._transition(RecorderState.IDLE)

        source = job.source
        saved = source.snapshot()
        renderer = OverlayRenderer(job.track.layout_cache)
        buffer = np.zeros((source.height, source.width, 3), dtype=np.uint8)
        recorder = self._recorder_factory(
            source.width,
            source.height,
            fps=job.fps,
            audio_source=source.path if source.has_audio else None,
            codec=job.video_codec,
            bitrate=job.video_bitrate,
            audio_codec=job.audio_codec,
            audio_bitrate=job.audio_bitrate,
        )
        driver = self._driver_factory(source)
        duration = job.duration

        print(f"{Fore.YELLOW}[realtime]{Style.RESET_ALL} recording {source.path} ({duration:.1f}s)")
        self._transition(RecorderState.RECORDING)
        reporter.set_status(STATUS_REALTIME)
        try:
            # captured audio must be audible regardless of the preview settings
            source.volume = 1.0
            source.muted = False
            recorder.start()
            with log_timing("Recording playback"):
                for event in driver.events(cancel):
                    if event.type is PlaybackEventType.FRAME and event.frame is not None:
                        np.copyto(buffer, event.frame)
                        renderer.render(buffer, event.time, job.track.active_at(event.time), job.style)
                        recorder.write_frame(buffer)
                    elif event.type is PlaybackEventType.TIME_UPDATE:
                        job.progress = event.time / duration if duration > 0 else 0.0
                        reporter.update(job.progress)
                    elif event.type is PlaybackEventType.ENDED:
                        break

            self._transition(RecorderState.FINALIZING)
            reporter.set_status(STATUS_FINALIZING)
            with log_timing("Finalizing recording"):
                recorder.stop()
                cancel.raise_if_cancelled()
                output = recorder.assemble(job.output_path)
            self._transition(RecorderState.DONE)
            reporter.complete()
            print(f"{Fore.GREEN}[realtime]{Style.RESET_ALL} wrote {output}")
            return output
        except UserCancelled:
            recorder.abort()
            self._transition(RecorderState.IDLE)
            print(f"{Fore.YELLOW}[realtime]{Style.RESET_ALL} cancelled")
            raise
        except BaseException:
            recorder.abort()
            self._transition(RecorderState.ERROR)
            raise
        finally:
            source.restore(saved)


__all__ = [
    "RecorderState",
    "PlaybackEventType",
    "PlaybackEvent",
    "PlaybackDriver",
    "StreamRecorder",
    "RealtimeExporter",
    "STATUS_REALTIME",
]
