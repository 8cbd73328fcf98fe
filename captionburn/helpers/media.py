"""Media helper utilities for probing file metadata and the local ffmpeg build."""

from __future__ import annotations

import json
import shutil
import subprocess
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import FrozenSet, Optional

from captionburn.config import FFMPEG_BIN, FFPROBE_BIN


@dataclass(frozen=True)
class VideoStreamMetadata:
    """Lightweight metadata describing the primary video stream."""

    width: Optional[int]
    height: Optional[int]
    duration: Optional[float]
    frame_rate: Optional[float]


@dataclass(frozen=True)
class AudioStreamMetadata:
    """Primary audio stream of a media file, if it has one."""

    has_audio: bool
    channels: Optional[int] = None
    sample_rate: Optional[int] = None


_EMPTY_VIDEO = VideoStreamMetadata(width=None, height=None, duration=None, frame_rate=None)


def _parse_frame_rate(value: str | int | float | None) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        numeric = float(value)
        return numeric if numeric > 0 else None
    if isinstance(value, str):
        if "/" in value:
            numerator, denominator = value.split("/", 1)
            try:
                num = float(numerator)
                den = float(denominator)
            except ValueError:
                return None
            if den == 0 or num <= 0:
                return None
            return num / den
        try:
            numeric = float(value)
        except ValueError:
            return None
        return numeric if numeric > 0 else None
    return None


def _parse_positive_float(value: object) -> Optional[float]:
    if isinstance(value, (int, float, str)):
        try:
            numeric = float(value)
        except ValueError:
            return None
        return numeric if numeric > 0 else None
    return None


def _run_ffprobe(path: str | Path, args: list[str]) -> Optional[dict]:
    try:
        result = subprocess.run(
            [FFPROBE_BIN, "-v", "error", *args, "-of", "json", str(path)],
            check=True,
            text=True,
            capture_output=True,
        )
    except (FileNotFoundError, subprocess.CalledProcessError):
        return None
    try:
        payload = json.loads(result.stdout or "{}")
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


def probe_video_stream(path: str | Path) -> VideoStreamMetadata:
    """Return resolution, duration, and frame rate metadata for ``path``."""

    payload = _run_ffprobe(
        path,
        [
            "-select_streams",
            "v:0",
            "-show_entries",
            "stream=width,height,avg_frame_rate,r_frame_rate",
            "-show_entries",
            "format=duration",
        ],
    )
    if payload is None:
        return _EMPTY_VIDEO

    width: Optional[int] = None
    height: Optional[int] = None
    frame_rate: Optional[float] = None
    duration: Optional[float] = None

    streams = payload.get("streams")
    if isinstance(streams, list) and streams:
        stream = streams[0]
        if isinstance(stream, dict):
            raw_width = stream.get("width")
            raw_height = stream.get("height")
            width = int(raw_width) if isinstance(raw_width, (int, float)) else None
            height = int(raw_height) if isinstance(raw_height, (int, float)) else None
            frame_rate = _parse_frame_rate(stream.get("avg_frame_rate")) or _parse_frame_rate(
                stream.get("r_frame_rate")
            )

    fmt = payload.get("format")
    if isinstance(fmt, dict):
        duration = _parse_positive_float(fmt.get("duration"))

    return VideoStreamMetadata(width=width, height=height, duration=duration, frame_rate=frame_rate)


def probe_audio_stream(path: str | Path) -> AudioStreamMetadata:
    """Return whether ``path`` carries audio and, if so, its channel layout."""

    payload = _run_ffprobe(
        path,
        [
            "-select_streams",
            "a:0",
            "-show_entries",
            "stream=channels,sample_rate",
        ],
    )
    if payload is None:
        return AudioStreamMetadata(has_audio=False)
    streams = payload.get("streams")
    if not isinstance(streams, list) or not streams or not isinstance(streams[0], dict):
        return AudioStreamMetadata(has_audio=False)
    stream = streams[0]
    channels = stream.get("channels")
    rate = _parse_positive_float(stream.get("sample_rate"))
    return AudioStreamMetadata(
        has_audio=True,
        channels=int(channels) if isinstance(channels, int) else None,
        sample_rate=int(rate) if rate else None,
    )


def probe_key_frame_times(path: str | Path) -> list[float]:
    """Return presentation times of the key frames in the first video stream."""

    payload = _run_ffprobe(
        path,
        [
            "-select_streams",
            "v:0",
            "-skip_frame",
            "nokey",
            "-show_entries",
            "frame=pts_time,best_effort_timestamp_time",
        ],
    )
    if payload is None:
        return []
    times: list[float] = []
    for frame in payload.get("frames") or []:
        if not isinstance(frame, dict):
            continue
        raw = frame.get("pts_time", frame.get("best_effort_timestamp_time"))
        try:
            times.append(float(raw))
        except (TypeError, ValueError):
            continue
    return times


def ffmpeg_available() -> bool:
    """Return ``True`` when both ffmpeg and ffprobe can be found on ``PATH``."""

    return shutil.which(FFMPEG_BIN) is not None and shutil.which(FFPROBE_BIN) is not None


@lru_cache(maxsize=1)
def list_encoders() -> FrozenSet[str]:
    """Return the names of encoders compiled into the local ffmpeg build."""

    try:
        result = subprocess.run(
            [FFMPEG_BIN, "-hide_banner", "-encoders"],
            check=True,
            text=True,
            capture_output=True,
        )
    except (FileNotFoundError, subprocess.CalledProcessError):
        return frozenset()

    names = set()
    in_table = False
    for line in (result.stdout or "").splitlines():
        parts = line.split()
        if not in_table:
            # the legend above "------" uses the same flag column
            in_table = bool(parts) and parts[0].startswith("---")
            continue
        if len(parts) >= 2 and len(parts[0]) == 6 and parts[0][0] in "VAS":
            names.add(parts[1])
    return frozenset(names)


def encoder_available(name: str) -> bool:
    return name in list_encoders()


__all__ = [
    "VideoStreamMetadata",
    "AudioStreamMetadata",
    "probe_video_stream",
    "probe_audio_stream",
    "probe_key_frame_times",
    "ffmpeg_available",
    "list_encoders",
    "encoder_available",
]
