"""ffmpeg-backed encoders and muxer for the frame-accurate export path.

Frames and samples are piped to ffmpeg over stdin. Writes block while the
encoder is busy, which is the only backpressure the exporter needs; stderr is
drained on a daemon thread so a chatty encoder can never stall the pipe.
"""

from __future__ import annotations

import math
import os
import subprocess
import threading
import uuid
from pathlib import Path
from typing import IO, List, Optional, Sequence

import numpy as np

from captionburn.config import (
    AUDIO_BITRATE,
    AUDIO_CHANNELS,
    AUDIO_CODEC,
    AUDIO_SAMPLE_RATE,
    FFMPEG_BIN,
    KEYFRAME_INTERVAL_SECONDS,
    VIDEO_BITRATE,
    VIDEO_CODEC,
)
from captionburn.errors import EncoderFault
from captionburn.helpers.formatting import Fore, Style

_STDERR_CAP = 32 * 1024  # keep last 32 KB of ffmpeg stderr


def _drain(pipe: IO[bytes], store: List[str]) -> None:
    """Drain ``pipe`` into ``store[0]``, capped to avoid unbounded memory use."""
    chunks: List[bytes] = []
    total = 0
    try:
        for chunk in iter(lambda: pipe.read(4096), b""):
            chunks.append(chunk)
            total += len(chunk)
            while total > _STDERR_CAP and chunks:
                total -= len(chunks.pop(0))
    except (OSError, ValueError):
        # pipe closed underneath us by kill()
        pass
    store[0] = b"".join(chunks).decode("utf-8", errors="replace")


def keyframe_interval_frames(fps: float, seconds: float = KEYFRAME_INTERVAL_SECONDS) -> int:
    return max(1, int(round(seconds * fps)))


class FfmpegProcess:
    """A running ffmpeg that consumes stdin, with stderr drained in the background."""

    def __init__(self, cmd: Sequence[str], *, name: str, stdout: int | IO[bytes] = subprocess.DEVNULL) -> None:
        self.cmd = list(cmd)
        self.name = name
        self._stdout = stdout
        self._proc: Optional[subprocess.Popen] = None
        self._stderr_store = [""]
        self._stderr_thread: Optional[threading.Thread] = None

    def start(self) -> "FfmpegProcess":
        print(f"{Fore.CYAN}FFMPEG ({self.name}):{Style.RESET_ALL} {' '.join(self.cmd)}")
        try:
            self._proc = subprocess.Popen(
                self.cmd,
                stdin=subprocess.PIPE,
                stdout=self._stdout,
                stderr=subprocess.PIPE,
                bufsize=0,
            )
        except OSError as exc:
            raise EncoderFault(f"Unable to start {self.name} encoder: {exc}") from exc
        self._stderr_thread = threading.Thread(
            target=_drain, args=(self._proc.stderr, self._stderr_store), daemon=True
        )
        self._stderr_thread.start()
        return self

    @property
    def process(self) -> Optional[subprocess.Popen]:
        return self._proc

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    @property
    def stderr_text(self) -> str:
        return self._stderr_store[0].strip()

    def _fault(self, message: str) -> EncoderFault:
        detail = self.stderr_text
        if detail:
            message = f"{message}: {detail.splitlines()[-1]}"
        return EncoderFault(message)

    def write(self, data: bytes | memoryview) -> None:
        if self._proc is None or self._proc.stdin is None:
            raise EncoderFault(f"{self.name} encoder is not running")
        try:
            self._proc.stdin.write(data)
        except (BrokenPipeError, OSError) as exc:
            self._reap()
            raise self._fault(f"{self.name} encoder rejected input ({exc.__class__.__name__})") from exc

    def _reap(self) -> None:
        if self._proc is None:
            return
        try:
            self._proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            self._proc.kill()
            self._proc.wait()
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=1)

    def finish(self) -> None:
        """Close stdin, wait for ffmpeg to flush, and fail on a nonzero exit."""
        if self._proc is None:
            return
        if self._proc.stdin is not None and not self._proc.stdin.closed:
            try:
                self._proc.stdin.close()
            except (BrokenPipeError, OSError):
                pass
        self._proc.wait()
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=5)
        if self._proc.returncode not in (0, None):
            raise self._fault(f"{self.name} encoder exited with code {self._proc.returncode}")

    def kill(self) -> None:
        if self._proc is None:
            return
        if self._proc.poll() is None:
            self._proc.kill()
        if self._proc.stdin is not None and not self._proc.stdin.closed:
            try:
                self._proc.stdin.close()
            except (BrokenPipeError, OSError):
                pass
        self._proc.wait()
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=1)


class VideoEncoder:
    """Encodes BGR frames at a fixed frame rate with periodic forced key frames.

    Each submitted frame must carry timestamp ``k / fps`` for the next ``k``;
    anything else is a non-monotonic or out-of-order submission and raises
    :class:`EncoderFault`.
    """

    def __init__(
        self,
        output_path: str | Path,
        width: int,
        height: int,
        fps: float,
        *,
        codec: str = VIDEO_CODEC,
        bitrate: str = VIDEO_BITRATE,
        keyframe_interval: Optional[int] = None,
    ) -> None:
        if width <= 0 or height <= 0 or fps <= 0:
            raise EncoderFault(f"Invalid video encoder configuration {width}x{height}@{fps}")
        self.output_path = Path(output_path)
        self.width = width
        self.height = height
        self.fps = fps
        self.codec = codec
        self.bitrate = bitrate
        self.keyframe_interval = keyframe_interval or keyframe_interval_frames(fps)
        self.frames_written = 0
        self.key_frame_timestamps: List[float] = []
        self._last_timestamp = -math.inf
        self._proc: Optional[FfmpegProcess] = None

    def command(self) -> List[str]:
        n = self.keyframe_interval
        return [
            FFMPEG_BIN,
            "-hide_banner",
            "-loglevel",
            "error",
            "-y",
            "-f",
            "rawvideo",
            "-pix_fmt",
            "bgr24",
            "-s",
            f"{self.width}x{self.height}",
            "-r",
            f"{self.fps:g}",
            "-i",
            "pipe:0",
            "-an",
            "-vf",
            "pad=ceil(iw/2)*2:ceil(ih/2)*2",
            "-c:v",
            self.codec,
            "-b:v",
            self.bitrate,
            "-pix_fmt",
            "yuv420p",
            "-g",
            str(n),
            "-force_key_frames",
            f"expr:eq(mod(n,{n}),0)",
            "-r",
            f"{self.fps:g}",
            str(self.output_path),
        ]

    def open(self) -> "VideoEncoder":
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        self._proc = FfmpegProcess(self.command(), name="video").start()
        return self

    def is_key_frame(self, index: int) -> bool:
        return index % self.keyframe_interval == 0

    def submit(self, frame: np.ndarray, timestamp: float) -> None:
        if self._proc is None:
            raise EncoderFault("Video encoder is not open")
        expected = self.frames_written / self.fps
        if timestamp <= self._last_timestamp or abs(timestamp - expected) > 0.5 / self.fps:
            raise EncoderFault(
                f"Frame timestamp {timestamp:.4f}s out of order (expected {expected:.4f}s)"
            )
        if frame.dtype != np.uint8 or frame.shape != (self.height, self.width, 3):
            raise EncoderFault(
                f"Frame rejected: got {frame.shape} {frame.dtype}, "
                f"expected ({self.height}, {self.width}, 3) uint8"
            )
        self._proc.write(np.ascontiguousarray(frame).data)
        if self.is_key_frame(self.frames_written):
            self.key_frame_timestamps.append(timestamp)
        self._last_timestamp = timestamp
        self.frames_written += 1

    def flush(self) -> Path:
        if self._proc is None:
            raise EncoderFault("Video encoder is not open")
        self._proc.finish()
        return self.output_path

    def abort(self) -> None:
        if self._proc is not None:
            self._proc.kill()
        self.output_path.unlink(missing_ok=True)


class AudioEncoder:
    """Encodes interleaved signed 16-bit PCM chunks with contiguous timestamps."""

    def __init__(
        self,
        output_path: str | Path,
        *,
        sample_rate: int = AUDIO_SAMPLE_RATE,
        channels: int = AUDIO_CHANNELS,
        codec: str = AUDIO_CODEC,
        bitrate: str = AUDIO_BITRATE,
    ) -> None:
        if sample_rate <= 0 or channels <= 0:
            raise EncoderFault(f"Invalid audio encoder configuration {sample_rate} Hz x{channels}")
        self.output_path = Path(output_path)
        self.sample_rate = sample_rate
        self.channels = channels
        self.codec = codec
        self.bitrate = bitrate
        self.samples_written = 0
        self._proc: Optional[FfmpegProcess] = None

    def command(self) -> List[str]:
        return [
            FFMPEG_BIN,
            "-hide_banner",
            "-loglevel",
            "error",
            "-y",
            "-f",
            "s16le",
            "-ar",
            str(self.sample_rate),
            "-ac",
            str(self.channels),
            "-i",
            "pipe:0",
            "-c:a",
            self.codec,
            "-b:a",
            self.bitrate,
            str(self.output_path),
        ]

    def open(self) -> "AudioEncoder":
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        self._proc = FfmpegProcess(self.command(), name="audio").start()
        return self

    @property
    def duration(self) -> float:
        return self.samples_written / self.sample_rate

    def submit(self, samples: np.ndarray, timestamp: float) -> None:
        """Encode one chunk; ``timestamp`` must equal the end of the previous chunk."""
        if self._proc is None:
            raise EncoderFault("Audio encoder is not open")
        if abs(timestamp - self.duration) > 1.0 / self.sample_rate:
            raise EncoderFault(
                f"Audio chunk at {timestamp:.4f}s is not contiguous (expected {self.duration:.4f}s)"
            )
        data = np.ascontiguousarray(samples, dtype="<i2")
        if data.size % self.channels:
            raise EncoderFault("Audio chunk does not contain whole sample frames")
        self._proc.write(data.tobytes())
        self.samples_written += data.size // self.channels

    def flush(self) -> Path:
        if self._proc is None:
            raise EncoderFault("Audio encoder is not open")
        self._proc.finish()
        return self.output_path

    def abort(self) -> None:
        if self._proc is not None:
            self._proc.kill()
        self.output_path.unlink(missing_ok=True)


def decode_audio(
    path: str | Path,
    *,
    sample_rate: int = AUDIO_SAMPLE_RATE,
    channels: int = AUDIO_CHANNELS,
) -> np.ndarray:
    """Decode the first audio track of ``path`` to interleaved int16 samples."""
    cmd = [
        FFMPEG_BIN,
        "-hide_banner",
        "-loglevel",
        "error",
        "-i",
        str(path),
        "-vn",
        "-map",
        "0:a:0",
        "-f",
        "s16le",
        "-acodec",
        "pcm_s16le",
        "-ac",
        str(channels),
        "-ar",
        str(sample_rate),
        "pipe:1",
    ]
    try:
        result = subprocess.run(cmd, check=True, capture_output=True)
    except FileNotFoundError as exc:
        raise EncoderFault(f"ffmpeg not found: {exc}") from exc
    except subprocess.CalledProcessError as exc:
        detail = (exc.stderr or b"").decode("utf-8", errors="replace").strip()
        raise EncoderFault(f"Audio decode failed: {detail or exc}") from exc
    return np.frombuffer(result.stdout, dtype="<i2")


class Muxer:
    """Combines encoded tracks into an MP4 and moves it into place atomically."""

    def __init__(self, output_path: str | Path) -> None:
        self.output_path = Path(output_path)

    def _temp_path(self) -> Path:
        return self.output_path.with_name(f".{self.output_path.stem}.{uuid.uuid4().hex[:8]}.part{self.output_path.suffix or '.mp4'}")

    def mux(self, video_path: str | Path, audio_path: str | Path | None = None) -> Path:
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._temp_path()
        cmd = [FFMPEG_BIN, "-hide_banner", "-loglevel", "error", "-y", "-i", str(video_path)]
        if audio_path is not None:
            cmd += ["-i", str(audio_path), "-map", "0:v:0", "-map", "1:a:0"]
        else:
            cmd += ["-map", "0:v:0"]
        cmd += ["-c", "copy", "-movflags", "+faststart", "-f", "mp4", str(tmp)]
        print(f"{Fore.CYAN}FFMPEG (mux):{Style.RESET_ALL} {' '.join(cmd)}")
        try:
            subprocess.run(cmd, check=True, capture_output=True)
        except (FileNotFoundError, subprocess.CalledProcessError) as exc:
            tmp.unlink(missing_ok=True)
            stderr = getattr(exc, "stderr", None) or b""
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise EncoderFault(f"Muxing failed: {detail or exc}") from exc
        os.replace(tmp, self.output_path)
        return self.output_path


__all__ = [
    "FfmpegProcess",
    "VideoEncoder",
    "AudioEncoder",
    "Muxer",
    "decode_audio",
    "keyframe_interval_frames",
]
