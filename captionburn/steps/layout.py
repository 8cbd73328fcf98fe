"""Caption line breaking under width and word-count constraints."""

from __future__ import annotations

import math
from dataclasses import dataclass
from itertools import accumulate
from typing import Callable, Dict, Hashable, List, Optional, Tuple

from captionburn.config import LAYOUT_MAX_BALANCED_WORDS

MeasureFn = Callable[[str], float]


@dataclass(frozen=True)
class LayoutResult:
    caption_id: int
    lines: Tuple[str, ...]


class _WidthTable:
    """Word widths measured once per call, with prefix sums for range widths."""

    def __init__(self, words: List[str], measure: MeasureFn) -> None:
        seen: Dict[str, float] = {}
        widths: List[float] = []
        for word in words:
            if word not in seen:
                seen[word] = float(measure(word))
            widths.append(seen[word])
        self.widths = widths
        self.space = float(measure(" "))
        self._prefix = [0.0, *accumulate(widths)]

    def range_width(self, start: int, end: int) -> float:
        """Width of words ``[start, end)`` joined by single spaces."""
        if start >= end:
            return 0.0
        return self._prefix[end] - self._prefix[start] + (end - start - 1) * self.space


def _balanced_split(table: _WidthTable, count: int, max_width: float, max_words: float) -> int:
    best = -1
    best_diff = math.inf
    for i in range(1, count):
        if i > max_words or count - i > max_words:
            continue
        w1 = table.range_width(0, i)
        w2 = table.range_width(i, count)
        if w1 <= max_width and w2 <= max_width:
            diff = abs(w1 - w2)
            if diff < best_diff:
                best_diff = diff
                best = i
    return best


def _greedy_wrap(words: List[str], table: _WidthTable, max_width: float, max_words: float) -> List[str]:
    lines: List[str] = []
    current: List[str] = []
    current_w = 0.0
    for word, w in zip(words, table.widths):
        if not current:
            # an over-wide word still lands here, alone on its line
            current = [word]
            current_w = w
            continue
        width_overflow = current_w + table.space + w > max_width
        count_overflow = len(current) >= max_words
        if width_overflow or count_overflow:
            lines.append(" ".join(current))
            current = [word]
            current_w = w
        else:
            current.append(word)
            current_w += table.space + w
    if current:
        lines.append(" ".join(current))
    return lines


def layout_lines(
    text: str,
    measure: MeasureFn,
    max_width: float,
    max_words: float = math.inf,
) -> List[str]:
    """Break ``text`` into display lines.

    Tries, in order: the whole text on one line, the most visually balanced
    two-line split (smallest width difference) where both lines satisfy the
    width and word limits, and finally greedy wrapping. A single word wider
    than ``max_width`` is placed on its own line instead of being cut.
    """
    words = text.split()
    if not words:
        return []
    if max_words < 1:
        max_words = 1
    table = _WidthTable(words, measure)
    count = len(words)

    if table.range_width(0, count) <= max_width and count <= max_words:
        return [text]

    if count <= LAYOUT_MAX_BALANCED_WORDS:
        split = _balanced_split(table, count, max_width, max_words)
        if split != -1:
            return [" ".join(words[:split]), " ".join(words[split:])]

    return _greedy_wrap(words, table, max_width, max_words)


class LayoutCache:
    """Computed lines per caption id.

    Every entry carries a stamp of the inputs it was computed from (style,
    frame geometry, caption text). A lookup with a different stamp misses, so
    a style change can never serve stale line breaks even before an explicit
    :meth:`invalidate`.
    """

    def __init__(self) -> None:
        self._entries: Dict[int, Tuple[Hashable, LayoutResult]] = {}

    def lookup(self, caption_id: int, stamp: Hashable) -> Optional[LayoutResult]:
        entry = self._entries.get(caption_id)
        if entry is None or entry[0] != stamp:
            return None
        return entry[1]

    def store(self, caption_id: int, stamp: Hashable, lines: List[str]) -> LayoutResult:
        result = LayoutResult(caption_id=caption_id, lines=tuple(lines))
        self._entries[caption_id] = (stamp, result)
        return result

    def invalidate(self, caption_id: Optional[int] = None) -> None:
        if caption_id is None:
            self._entries.clear()
        else:
            self._entries.pop(caption_id, None)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, caption_id: object) -> bool:
        return caption_id in self._entries


class LayoutEngine:
    """Binds a measure function and constraints to a :class:`LayoutCache`."""

    def __init__(
        self,
        measure: MeasureFn,
        max_width: float,
        max_words: float = math.inf,
        *,
        cache: Optional[LayoutCache] = None,
        stamp: Hashable = None,
    ) -> None:
        self.measure = measure
        self.max_width = max_width
        self.max_words = max_words
        self.cache = cache if cache is not None else LayoutCache()
        self.stamp = stamp

    def layout(self, text: str, caption_id: int) -> List[str]:
        key = (self.stamp, self.max_width, self.max_words, text)
        hit = self.cache.lookup(caption_id, key)
        if hit is not None:
            return list(hit.lines)
        lines = layout_lines(text, self.measure, self.max_width, self.max_words)
        return list(self.cache.store(caption_id, key, lines).lines)


__all__ = ["LayoutResult", "LayoutCache", "LayoutEngine", "layout_lines", "MeasureFn"]
