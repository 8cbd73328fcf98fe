import math

import pytest

from captionburn.custom_types.animation import AnimationKind, CaptionPosition
from captionburn.errors import StyleValidationError
from captionburn.style import StyleState


def test_defaults_match_editor() -> None:
    style = StyleState()
    assert style.font == "Inter"
    assert style.font_size_pct == 5.0
    assert style.color == "#ffffff"
    assert style.background is True
    assert style.background_color == "#000000"
    assert style.background_opacity_pct == 70.0
    assert style.position is CaptionPosition.BOTTOM
    assert style.position_pct == 90.0
    assert style.animation is AnimationKind.NONE
    assert style.max_visual_words == 100
    assert math.isinf(style.effective_max_words)


def test_update_bumps_version_and_normalises() -> None:
    style = StyleState()
    style.update(color="#ABC", animation="pop", max_visual_words=4)
    assert style.version == 1
    assert style.color == "#aabbcc"
    assert style.animation is AnimationKind.POP
    assert style.effective_max_words == 4.0


def test_position_presets() -> None:
    style = StyleState()
    style.update(position="top")
    assert style.position_pct == 10.0
    style.update(position="bottom")
    assert style.position_pct == 90.0
    style.update(position="custom", position_pct=42.0)
    assert style.position_pct == 42.0


@pytest.mark.parametrize(
    "changes",
    [
        {"font_size_pct": 1.0},
        {"font_size_pct": 13.0},
        {"position_pct": 2.0},
        {"background_opacity_pct": 101.0},
        {"max_visual_words": 0},
        {"color": "red"},
        {"animation": "wobble"},
        {"position": "middle"},
        {"font": ""},
        {"unknown": 1},
    ],
)
def test_invalid_updates_leave_style_untouched(changes: dict) -> None:
    style = StyleState()
    before = style.to_dict()
    with pytest.raises(StyleValidationError):
        style.update(**changes)
    assert style.to_dict() == before
    assert style.version == 0


def test_layout_key_tracks_layout_inputs_only() -> None:
    style = StyleState()
    key = style.layout_key()
    style.update(color="#ff0000", animation="fade")
    assert style.layout_key() == key
    style.update(font_size_pct=8)
    assert style.layout_key() != key


def test_snapshot_is_detached_from_later_updates() -> None:
    style = StyleState()
    style.update(animation="pop")
    frozen = style.snapshot()

    style.update(position="top", color="#00ff00")

    assert frozen.animation == AnimationKind.POP
    assert frozen.position_pct == 90.0
    assert frozen.color == "#ffffff"
    assert frozen.version == 1
    assert style.version == 2
