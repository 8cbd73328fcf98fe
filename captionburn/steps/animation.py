"""Time-based caption effects.

Each animation kind is a pure function of the seconds elapsed since the caption
became active, so any frame can be rendered in isolation regardless of seek
order. Offsets are fractions of the frame size; the renderer scales them.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from captionburn.custom_types.animation import AnimationKind

FADE_DURATION = 0.25
SLIDE_DURATION = 0.3
POP_DURATION = 0.3
BOUNCE_DURATION = 0.6
SHAKE_DURATION = 0.5

# One bounce unit as a fraction of frame height
BOUNCE_UNIT = 0.05
SLIDE_DISTANCE = 0.05
SHAKE_AMPLITUDE = 0.025


@dataclass(frozen=True)
class AnimationState:
    opacity: float = 1.0
    offset_x: float = 0.0  # fraction of frame width
    offset_y: float = 0.0  # fraction of frame height, positive is down
    scale: float = 1.0
    glow_radius: float = 0.0  # fraction of frame height

    @property
    def is_identity(self) -> bool:
        return self.offset_x == 0.0 and self.offset_y == 0.0 and self.scale == 1.0


IDENTITY = AnimationState()


def _progress(elapsed: float, duration: float) -> float:
    return max(0.0, min(1.0, elapsed / duration))


def _none(elapsed: float) -> AnimationState:
    return IDENTITY


def _fade(elapsed: float) -> AnimationState:
    return AnimationState(opacity=_progress(elapsed, FADE_DURATION))


def _slide(elapsed: float) -> AnimationState:
    p = _progress(elapsed, SLIDE_DURATION)
    return AnimationState(opacity=p, offset_y=(1.0 - p) * SLIDE_DISTANCE)


def _pop(elapsed: float) -> AnimationState:
    p = _progress(elapsed, POP_DURATION)
    return AnimationState(opacity=p, scale=0.5 + 0.5 * p)


def _bounce_units(p: float) -> float:
    # damped drop: -20 -> 0, rebound to -10, settle, rebound to -2, settle
    if p < 0.3:
        return -20.0 * (1.0 - p / 0.3)
    if p < 0.5:
        return -10.0 * ((p - 0.3) / 0.2)
    if p < 0.7:
        return -10.0 * (1.0 - (p - 0.5) / 0.2)
    if p < 0.9:
        return -2.0 * ((p - 0.7) / 0.2)
    if p < 1.0:
        return -2.0 * (1.0 - (p - 0.9) / 0.1)
    return 0.0


def _bounce(elapsed: float) -> AnimationState:
    p = _progress(elapsed, BOUNCE_DURATION)
    opacity = p / 0.3 if p < 0.3 else 1.0
    return AnimationState(opacity=opacity, offset_y=_bounce_units(p) * BOUNCE_UNIT)


def _glow(elapsed: float) -> AnimationState:
    pulse = (math.sin(max(0.0, elapsed) * 4.0) + 1.0) / 2.0
    return AnimationState(glow_radius=(5.0 + 15.0 * pulse) / 1000.0)


def _shake(elapsed: float) -> AnimationState:
    p = _progress(elapsed, SHAKE_DURATION)
    if p >= 1.0:
        return IDENTITY
    return AnimationState(offset_x=math.sin(p * 50.0) * SHAKE_AMPLITUDE * (1.0 - p))


_ANIMATIONS: Dict[AnimationKind, Callable[[float], AnimationState]] = {
    AnimationKind.NONE: _none,
    AnimationKind.FADE: _fade,
    AnimationKind.SLIDE: _slide,
    AnimationKind.POP: _pop,
    AnimationKind.BOUNCE: _bounce,
    AnimationKind.GLOW: _glow,
    AnimationKind.SHAKE: _shake,
}

# Seconds after which each animation rests at its steady state; glow never does
ANIMATION_DURATIONS: Dict[AnimationKind, Optional[float]] = {
    AnimationKind.NONE: 0.0,
    AnimationKind.FADE: FADE_DURATION,
    AnimationKind.SLIDE: SLIDE_DURATION,
    AnimationKind.POP: POP_DURATION,
    AnimationKind.BOUNCE: BOUNCE_DURATION,
    AnimationKind.GLOW: None,
    AnimationKind.SHAKE: SHAKE_DURATION,
}


def animation_state(kind: AnimationKind | str, elapsed: float) -> AnimationState:
    """Return the transform/opacity/glow for ``kind`` at ``elapsed`` seconds."""
    return _ANIMATIONS[AnimationKind(kind)](elapsed)


__all__ = [
    "AnimationState",
    "IDENTITY",
    "ANIMATION_DURATIONS",
    "animation_state",
]
