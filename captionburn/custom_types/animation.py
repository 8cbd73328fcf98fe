from __future__ import annotations

from enum import Enum


class AnimationKind(str, Enum):
    """Entrance/emphasis effect applied to the active caption."""

    NONE = "none"
    FADE = "fade"
    SLIDE = "slide"
    POP = "pop"
    BOUNCE = "bounce"
    GLOW = "glow"
    SHAKE = "shake"


class CaptionPosition(str, Enum):
    TOP = "top"
    BOTTOM = "bottom"
    CUSTOM = "custom"


# Vertical anchor (percent of frame height) applied by the presets
POSITION_PRESETS: dict[CaptionPosition, float] = {
    CaptionPosition.TOP: 10.0,
    CaptionPosition.BOTTOM: 90.0,
}


__all__ = ["AnimationKind", "CaptionPosition", "POSITION_PRESETS"]
