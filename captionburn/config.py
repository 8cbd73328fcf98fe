"""Central configuration for caption layout, rendering and export.

Sections are grouped by feature for easier editing. Values can be overridden
through environment variables or a ``.env`` file next to the working directory.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# ---------------------------------------
# External tools
# ---------------------------------------
FFMPEG_BIN = os.environ.get("FFMPEG_BIN", "ffmpeg")
FFPROBE_BIN = os.environ.get("FFPROBE_BIN", "ffprobe")

# ---------------------------------------
# Output encoding parameters
# ---------------------------------------
# Single fixed output frame rate for both export paths
OUTPUT_FPS: float = _env_float("OUTPUT_FPS", 30.0)
VIDEO_CODEC = os.environ.get("VIDEO_CODEC", "libx264")
VIDEO_BITRATE = os.environ.get("VIDEO_BITRATE", "4M")
AUDIO_CODEC = os.environ.get("AUDIO_CODEC", "aac")
AUDIO_BITRATE = os.environ.get("AUDIO_BITRATE", "128k")
AUDIO_SAMPLE_RATE: int = 48_000
# Mono downmix on the frame-accurate path
AUDIO_CHANNELS: int = 1
# Audio is re-encoded in blocks of this many seconds to bound peak memory
AUDIO_CHUNK_SECONDS: float = 1.0
# A key frame is forced at this spacing so the output stays seekable
KEYFRAME_INTERVAL_SECONDS: float = 2.0

# ---------------------------------------
# Caption layout and rendering
# ---------------------------------------
# Caption max width as ratio of frame width
LAYOUT_WIDTH_RATIO: float = 0.8
# Baseline-to-baseline distance as multiple of the font size
LINE_HEIGHT_RATIO: float = 1.2
# Captions with more words than this skip the balanced two-line search
LAYOUT_MAX_BALANCED_WORDS: int = 200
# Visual max-words value meaning "no limit"
MAX_VISUAL_WORDS_UNLIMITED: int = 100

# ---------------------------------------
# Realtime fallback recorder
# ---------------------------------------
# Seconds between playback time-update events
TIME_UPDATE_INTERVAL: float = 0.25
PLAYBACK_RATE: float = 1.0

# ---------------------------------------
# Output locations
# ---------------------------------------
_export_dir_override = os.environ.get("CAPTIONBURN_EXPORT_DIR")
if _export_dir_override:
    EXPORT_DIR = Path(_export_dir_override).expanduser().resolve()
else:
    EXPORT_DIR = Path.cwd() / "exports"


# ---------------------------------------
# Default caption style
# ---------------------------------------


@dataclass
class StyleDefaults:
    font: str = "Inter"
    font_size_pct: float = 5.0
    color: str = "#ffffff"
    background: bool = True
    background_color: str = "#000000"
    background_opacity_pct: float = 70.0
    position: str = "bottom"
    position_pct: float = 90.0
    animation: str = "none"
    max_visual_words: int = MAX_VISUAL_WORDS_UNLIMITED


DEFAULT_STYLE = StyleDefaults()

__all__ = [
    "FFMPEG_BIN",
    "FFPROBE_BIN",
    "OUTPUT_FPS",
    "VIDEO_CODEC",
    "VIDEO_BITRATE",
    "AUDIO_CODEC",
    "AUDIO_BITRATE",
    "AUDIO_SAMPLE_RATE",
    "AUDIO_CHANNELS",
    "AUDIO_CHUNK_SECONDS",
    "KEYFRAME_INTERVAL_SECONDS",
    "LAYOUT_WIDTH_RATIO",
    "LINE_HEIGHT_RATIO",
    "LAYOUT_MAX_BALANCED_WORDS",
    "MAX_VISUAL_WORDS_UNLIMITED",
    "TIME_UPDATE_INTERVAL",
    "PLAYBACK_RATE",
    "EXPORT_DIR",
    "DEFAULT_STYLE",
]
