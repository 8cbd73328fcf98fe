from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from .layout import LayoutCache

_TIMESTAMP = re.compile(r"^(\d{1,2}):(\d{2}):(\d{2})[,.](\d{1,3})$")
_BLOCK_SPLIT = re.compile(r"\n[ \t]*\n")


@dataclass
class CaptionSegment:
    """One timed unit of display text. ``text`` is the only field users edit."""

    id: int
    start: float
    end: float
    text: str

    def contains(self, t: float) -> bool:
        return self.start <= t <= self.end


def parse_timestamp(value: str) -> Optional[float]:
    """Return seconds for ``HH:MM:SS,mmm`` (or ``HH:MM:SS.mmm``), ``None`` when invalid."""
    m = _TIMESTAMP.match(value.strip())
    if not m:
        return None
    h, mi, s, ms = m.groups()
    if int(mi) >= 60 or int(s) >= 60:
        return None
    # "5" after the separator means 500 ms, not 5 ms
    millis = int(ms.ljust(3, "0"))
    return int(h) * 3600 + int(mi) * 60 + int(s) + millis / 1000.0


def format_timestamp(seconds: float) -> str:
    if seconds < 0:
        seconds = 0.0
    total_ms = int(round(seconds * 1000))
    h, rem = divmod(total_ms, 3_600_000)
    m, rem = divmod(rem, 60_000)
    s, ms = divmod(rem, 1000)
    return f"{h:02d}:{m:02d}:{s:02d},{ms:03d}"


def _iter_blocks(content: str) -> Iterator[List[str]]:
    normalized = content.replace("\ufeff", "").replace("\r\n", "\n").replace("\r", "\n")
    for chunk in _BLOCK_SPLIT.split(normalized.strip()):
        lines = [ln.strip() for ln in chunk.split("\n") if ln.strip()]
        if lines:
            yield lines


def _parse_block(lines: List[str]) -> Optional[CaptionSegment]:
    if len(lines) < 3:
        return None
    try:
        seg_id = int(lines[0])
    except ValueError:
        return None
    start_raw, sep, end_raw = lines[1].partition("-->")
    if not sep:
        return None
    start = parse_timestamp(start_raw)
    end = parse_timestamp(end_raw)
    if start is None or end is None or end <= start:
        return None
    text = " ".join(lines[2:]).strip()
    if not text:
        return None
    return CaptionSegment(id=seg_id, start=start, end=end, text=text)


def parse_srt(content: str) -> List[CaptionSegment]:
    """Parse SRT text into segments, silently dropping malformed blocks.

    Generation output is not guaranteed to be well formed, so parsing is
    best-effort: a block without an integer id, an ``start --> end`` line or
    any text is skipped rather than failing the whole document.
    """
    segments: List[CaptionSegment] = []
    for block in _iter_blocks(content):
        segment = _parse_block(block)
        if segment is not None:
            segments.append(segment)
    return segments


def serialize_srt(segments: Iterable[CaptionSegment]) -> str:
    """Inverse of :func:`parse_srt`, preserving the current sequence order."""
    return "\n\n".join(
        f"{s.id}\n{format_timestamp(s.start)} --> {format_timestamp(s.end)}\n{s.text}"
        for s in segments
    )


def serialize_vtt(segments: Iterable[CaptionSegment]) -> str:
    body = "\n\n".join(
        f"{format_timestamp(s.start).replace(',', '.')} --> "
        f"{format_timestamp(s.end).replace(',', '.')}\n{s.text}"
        for s in segments
    )
    return "WEBVTT\n\n" + body


def read_srt_file(path: str | Path) -> List[CaptionSegment]:
    """Read ``path`` and parse subtitles; a missing file yields no segments."""
    try:
        content = Path(path).read_text(encoding="utf-8")
    except OSError:
        return []
    return parse_srt(content)


def write_srt_file(segments: Iterable[CaptionSegment], path: str | Path) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(serialize_srt(segments) + "\n", encoding="utf-8")
    return out


class CaptionTrack:
    """The loaded caption set plus the layout cache scoped to it."""

    def __init__(self, segments: Optional[Iterable[CaptionSegment]] = None) -> None:
        self.segments: List[CaptionSegment] = list(segments or [])
        self.layout_cache = LayoutCache()

    @classmethod
    def from_srt(cls, content: str) -> "CaptionTrack":
        return cls(parse_srt(content))

    def load(self, content: str) -> List[CaptionSegment]:
        """Replace the whole set with the segments parsed from ``content``."""
        self.segments = parse_srt(content)
        self.layout_cache.invalidate()
        return self.segments

    def get(self, caption_id: int) -> Optional[CaptionSegment]:
        for seg in self.segments:
            if seg.id == caption_id:
                return seg
        return None

    def edit_text(self, caption_id: int, text: str) -> CaptionSegment:
        seg = self.get(caption_id)
        if seg is None:
            raise KeyError(caption_id)
        seg.text = text
        self.layout_cache.invalidate(caption_id)
        return seg

    def active_at(self, t: float) -> Optional[CaptionSegment]:
        for seg in self.segments:
            if seg.contains(t):
                return seg
        return None

    def to_srt(self) -> str:
        return serialize_srt(self.segments)

    def to_vtt(self) -> str:
        return serialize_vtt(self.segments)

    def __len__(self) -> int:
        return len(self.segments)

    def __iter__(self) -> Iterator[CaptionSegment]:
        return iter(self.segments)


__all__ = [
    "CaptionSegment",
    "CaptionTrack",
    "parse_timestamp",
    "format_timestamp",
    "parse_srt",
    "serialize_srt",
    "serialize_vtt",
    "read_srt_file",
    "write_srt_file",
]
