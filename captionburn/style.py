"""Caption appearance settings passed explicitly into rendering and export."""

from __future__ import annotations

import math
import re
import threading
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, Hashable

from captionburn.config import DEFAULT_STYLE, MAX_VISUAL_WORDS_UNLIMITED
from captionburn.custom_types.animation import POSITION_PRESETS, AnimationKind, CaptionPosition
from captionburn.errors import StyleValidationError

_HEX_COLOR = re.compile(r"^#?(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")

FONT_SIZE_RANGE = (2.0, 12.0)
POSITION_RANGE = (5.0, 95.0)
OPACITY_RANGE = (0.0, 100.0)
MAX_WORDS_RANGE = (1, MAX_VISUAL_WORDS_UNLIMITED)

# Fields whose change alters line breaking
_LAYOUT_FIELDS = ("font", "font_size_pct", "max_visual_words")

# Serializes updates against snapshots taken by export threads
_UPDATE_LOCK = threading.RLock()


def _check_range(name: str, value: float, bounds: tuple[float, float]) -> None:
    low, high = bounds
    if not (low <= value <= high):
        raise StyleValidationError(f"{name} must be between {low:g} and {high:g}, got {value!r}")


def _check_color(name: str, value: str) -> str:
    if not isinstance(value, str) or not _HEX_COLOR.match(value.strip()):
        raise StyleValidationError(f"{name} must be a hex color like #ffffff, got {value!r}")
    raw = value.strip().lstrip("#")
    if len(raw) == 3:
        raw = "".join(ch * 2 for ch in raw)
    return "#" + raw.lower()


@dataclass
class StyleState:
    """Visual style of burned-in captions.

    ``max_visual_words`` only governs display wrapping of already generated
    segments; it is unrelated to the words-per-segment limit used when the
    captions were generated. ``MAX_VISUAL_WORDS_UNLIMITED`` means no limit.

    Mutate through :meth:`update`, which validates and bumps :attr:`version`.
    """

    font: str = DEFAULT_STYLE.font
    font_size_pct: float = DEFAULT_STYLE.font_size_pct
    color: str = DEFAULT_STYLE.color
    background: bool = DEFAULT_STYLE.background
    background_color: str = DEFAULT_STYLE.background_color
    background_opacity_pct: float = DEFAULT_STYLE.background_opacity_pct
    position: CaptionPosition = CaptionPosition(DEFAULT_STYLE.position)
    position_pct: float = DEFAULT_STYLE.position_pct
    animation: AnimationKind = AnimationKind(DEFAULT_STYLE.animation)
    max_visual_words: int = DEFAULT_STYLE.max_visual_words
    version: int = field(default=0, compare=False)

    def __post_init__(self) -> None:
        self._validate()

    def _validate(self) -> None:
        if not isinstance(self.font, str) or not self.font.strip():
            raise StyleValidationError("font must be a non-empty string")
        _check_range("font_size_pct", float(self.font_size_pct), FONT_SIZE_RANGE)
        _check_range("position_pct", float(self.position_pct), POSITION_RANGE)
        _check_range("background_opacity_pct", float(self.background_opacity_pct), OPACITY_RANGE)
        if int(self.max_visual_words) != self.max_visual_words:
            raise StyleValidationError("max_visual_words must be an integer")
        _check_range("max_visual_words", int(self.max_visual_words), MAX_WORDS_RANGE)
        self.color = _check_color("color", self.color)
        self.background_color = _check_color("background_color", self.background_color)
        try:
            self.position = CaptionPosition(self.position)
            self.animation = AnimationKind(self.animation)
        except ValueError as exc:
            raise StyleValidationError(str(exc)) from exc
        self.max_visual_words = int(self.max_visual_words)
        self.background = bool(self.background)

    def update(self, **changes: Any) -> "StyleState":
        """Apply ``changes`` atomically; invalid values leave the style untouched."""
        known = {f.name for f in fields(self)} - {"version"}
        unknown = set(changes) - known
        if unknown:
            raise StyleValidationError(f"Unknown style field(s): {', '.join(sorted(unknown))}")
        merged = {**self.to_dict(), **changes}
        if "position" in changes and "position_pct" not in changes:
            try:
                preset = CaptionPosition(changes["position"])
            except ValueError as exc:
                raise StyleValidationError(str(exc)) from exc
            if preset in POSITION_PRESETS:
                merged["position_pct"] = POSITION_PRESETS[preset]
        candidate = StyleState(**merged)
        with _UPDATE_LOCK:
            for name in known:
                setattr(self, name, getattr(candidate, name))
            self.version += 1
        return self

    def snapshot(self) -> "StyleState":
        """Return a consistent copy that later updates do not touch."""
        with _UPDATE_LOCK:
            return replace(self)

    @property
    def effective_max_words(self) -> float:
        if self.max_visual_words >= MAX_VISUAL_WORDS_UNLIMITED:
            return math.inf
        return float(self.max_visual_words)

    @property
    def background_alpha(self) -> float:
        return self.background_opacity_pct / 100.0

    def layout_key(self) -> Hashable:
        """Inputs that affect line breaking, used to stamp layout cache entries."""
        return tuple(getattr(self, name) for name in _LAYOUT_FIELDS)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("version", None)
        data["position"] = self.position.value
        data["animation"] = self.animation.value
        return data


__all__ = ["StyleState", "FONT_SIZE_RANGE", "POSITION_RANGE", "OPACITY_RANGE", "MAX_WORDS_RANGE"]
