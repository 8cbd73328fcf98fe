"""Per-frame caption compositing with OpenCV.

All geometry is derived from the frame size, so the same style produces the
same relative look at any resolution. The caption is drawn into a horizontal
band around its anchor as premultiplied color plus alpha, transformed for the
active animation, and blended onto the frame in place.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import cv2
import numpy as np

from captionburn.config import LAYOUT_WIDTH_RATIO, LINE_HEIGHT_RATIO
from captionburn.style import StyleState

from .animation import AnimationState, animation_state
from .captions import CaptionSegment
from .layout import LayoutCache, LayoutEngine

# Font families offered by the editor, mapped onto the Hershey faces OpenCV ships
FONT_FACES: Dict[str, int] = {
    "inter": cv2.FONT_HERSHEY_SIMPLEX,
    "mukta": cv2.FONT_HERSHEY_DUPLEX,
    "tiro devanagari hindi": cv2.FONT_HERSHEY_TRIPLEX,
    "poppins": cv2.FONT_HERSHEY_DUPLEX,
    "sans-serif": cv2.FONT_HERSHEY_SIMPLEX,
    "serif": cv2.FONT_HERSHEY_TRIPLEX,
    "monospace": cv2.FONT_HERSHEY_PLAIN,
}
DEFAULT_FONT_FACE = cv2.FONT_HERSHEY_SIMPLEX

OUTLINE_COLOR: Tuple[int, int, int] = (0, 0, 0)
GLOW_COLOR: Tuple[int, int, int] = (255, 255, 255)
GLOW_STRENGTH = 0.8

PADDING_X_RATIO = 0.6
PADDING_Y_RATIO = 0.3
CORNER_RADIUS_RATIO = 0.4
BASELINE_LIFT_RATIO = 0.15
STROKE_RATIO = 0.08
MIN_STROKE = 2.0

# Extra rows above/below the caption box so animated offsets stay in the band
_BAND_MARGIN_RATIO = 0.15


def parse_hex_color(value: str | None, fallback: Tuple[int, int, int] = (0, 0, 0)) -> Tuple[int, int, int]:
    """Return ``#rrggbb`` (or ``#rgb``) as an OpenCV BGR tuple."""
    if not value:
        return fallback
    value = value.strip().lstrip('#')
    if len(value) == 3:
        value = ''.join(ch * 2 for ch in value)
    if len(value) != 6:
        return fallback
    try:
        r = int(value[0:2], 16)
        g = int(value[2:4], 16)
        b = int(value[4:6], 16)
    except ValueError:
        return fallback
    return (b, g, r)


@dataclass(frozen=True)
class CaptionFont:
    face: int
    pixel_size: int
    scale: float
    thickness: int

    def measure(self, text: str) -> float:
        (tw, _), _ = cv2.getTextSize(text, self.face, self.scale, self.thickness)
        return float(tw)


def resolve_font(family: str, pixel_size: int) -> CaptionFont:
    face = FONT_FACES.get(family.strip().lower(), DEFAULT_FONT_FACE)
    thickness = max(1, int(round(pixel_size / 10)))
    scale = cv2.getFontScaleFromHeight(face, max(1, pixel_size), thickness)
    return CaptionFont(face=face, pixel_size=pixel_size, scale=scale, thickness=thickness)


def stroke_width(font_size: float, style: StyleState) -> float:
    width = max(MIN_STROKE, font_size * STROKE_RATIO)
    # a dense panel already separates text from the picture
    if style.background and style.background_opacity_pct >= 50:
        width /= 2.0
    return width


def _fill_rounded_rect(mask: np.ndarray, x0: int, y0: int, x1: int, y1: int, radius: int) -> None:
    radius = max(0, min(radius, (x1 - x0) // 2, (y1 - y0) // 2))
    if radius == 0:
        cv2.rectangle(mask, (x0, y0), (x1, y1), 255, thickness=-1)
        return
    cv2.rectangle(mask, (x0 + radius, y0), (x1 - radius, y1), 255, thickness=-1)
    cv2.rectangle(mask, (x0, y0 + radius), (x1, y1 - radius), 255, thickness=-1)
    for cx, cy in (
        (x0 + radius, y0 + radius),
        (x1 - radius, y0 + radius),
        (x0 + radius, y1 - radius),
        (x1 - radius, y1 - radius),
    ):
        cv2.circle(mask, (cx, cy), radius, 255, thickness=-1, lineType=cv2.LINE_AA)


def _over(premul: np.ndarray, alpha: np.ndarray, color: Tuple[int, int, int], src_alpha: np.ndarray) -> None:
    """Composite a flat ``color`` with coverage ``src_alpha`` over the layer."""
    inv = 1.0 - src_alpha
    premul *= inv[..., None]
    premul += src_alpha[..., None] * np.asarray(color, dtype=np.float32)
    alpha *= inv
    alpha += src_alpha


class OverlayRenderer:
    """Draws the active caption onto BGR frames.

    The layout cache is shared with the caption track so edits and style
    changes invalidate line breaks computed here.
    """

    def __init__(self, layout_cache: Optional[LayoutCache] = None) -> None:
        self.layout_cache = layout_cache if layout_cache is not None else LayoutCache()

    def layout_engine(self, style: StyleState, width: int, height: int) -> Tuple[LayoutEngine, CaptionFont]:
        font_size = int(math.floor(height * style.font_size_pct / 100.0))
        font = resolve_font(style.font, font_size)
        engine = LayoutEngine(
            font.measure,
            LAYOUT_WIDTH_RATIO * width,
            style.effective_max_words,
            cache=self.layout_cache,
            stamp=(style.layout_key(), width, height),
        )
        return engine, font

    def render(
        self,
        frame: np.ndarray,
        timestamp: float,
        caption: Optional[CaptionSegment],
        style: StyleState,
    ) -> np.ndarray:
        """Composite ``caption`` onto ``frame`` for time ``timestamp`` and return it."""
        if caption is None:
            return frame
        height, width = frame.shape[:2]
        engine, font = self.layout_engine(style, width, height)
        if font.pixel_size < 1:
            return frame
        lines = engine.layout(caption.text, caption.id)
        if not lines:
            return frame
        state = animation_state(style.animation, timestamp - caption.start)
        if state.opacity <= 0.0:
            return frame

        size = float(font.pixel_size)
        line_height = LINE_HEIGHT_RATIO * size
        total_height = len(lines) * line_height
        center_x = width / 2.0
        center_y = height * style.position_pct / 100.0
        box_h = total_height + 2 * PADDING_Y_RATIO * size

        margin = int(math.ceil(_BAND_MARGIN_RATIO * height + state.glow_radius * height * 3))
        # the band must also cover where the offset moves the caption
        shift = state.offset_y * height
        band_top = max(0, int(math.floor(center_y - box_h / 2.0 + min(0.0, shift))) - margin)
        band_bottom = min(height, int(math.ceil(center_y + box_h / 2.0 + max(0.0, shift))) + margin)
        if band_bottom <= band_top:
            return frame
        band_h = band_bottom - band_top
        local_cy = center_y - band_top

        premul, alpha = self._draw_caption(lines, font, style, state, width, band_h, center_x, local_cy, height)
        premul, alpha = self._transform(premul, alpha, state, center_x, local_cy, width, height)

        alpha *= state.opacity
        premul *= state.opacity
        roi = frame[band_top:band_bottom].astype(np.float32)
        roi *= (1.0 - alpha)[..., None]
        roi += premul
        np.clip(roi, 0, 255, out=roi)
        frame[band_top:band_bottom] = roi.astype(np.uint8)
        return frame

    def _draw_caption(
        self,
        lines: list[str],
        font: CaptionFont,
        style: StyleState,
        state: AnimationState,
        width: int,
        band_h: int,
        center_x: float,
        center_y: float,
        frame_height: int,
    ) -> Tuple[np.ndarray, np.ndarray]:
        size = float(font.pixel_size)
        line_height = LINE_HEIGHT_RATIO * size
        total_height = len(lines) * line_height
        premul = np.zeros((band_h, width, 3), dtype=np.float32)
        alpha = np.zeros((band_h, width), dtype=np.float32)

        if style.background:
            max_line = max(font.measure(ln) for ln in lines)
            box_w = max_line + 2 * PADDING_X_RATIO * size
            box_h = total_height + 2 * PADDING_Y_RATIO * size
            x0 = int(round(center_x - box_w / 2.0))
            y0 = int(round(center_y - box_h / 2.0))
            mask = np.zeros((band_h, width), dtype=np.uint8)
            _fill_rounded_rect(mask, x0, y0, x0 + int(round(box_w)), y0 + int(round(box_h)), int(round(CORNER_RADIUS_RATIO * size)))
            _over(premul, alpha, parse_hex_color(style.background_color), mask.astype(np.float32) / 255.0 * style.background_alpha)

        stroke_mask = np.zeros((band_h, width), dtype=np.uint8)
        fill_mask = np.zeros((band_h, width), dtype=np.uint8)
        stroke_thickness = font.thickness + int(round(stroke_width(size, style)))
        baseline = center_y - total_height / 2.0 + line_height - BASELINE_LIFT_RATIO * line_height
        for ln in lines:
            x_text = int(round(center_x - font.measure(ln) / 2.0))
            origin = (x_text, int(round(baseline)))
            cv2.putText(stroke_mask, ln, origin, font.face, font.scale, 255, stroke_thickness, cv2.LINE_AA)
            cv2.putText(fill_mask, ln, origin, font.face, font.scale, 255, font.thickness, cv2.LINE_AA)
            baseline += line_height

        if state.glow_radius > 0:
            sigma = max(0.5, state.glow_radius * frame_height / 2.0)
            glow = cv2.GaussianBlur(fill_mask.astype(np.float32) / 255.0, (0, 0), sigma)
            _over(premul, alpha, GLOW_COLOR, np.clip(glow * GLOW_STRENGTH, 0.0, 1.0))
        _over(premul, alpha, OUTLINE_COLOR, stroke_mask.astype(np.float32) / 255.0)
        _over(premul, alpha, parse_hex_color(style.color, (255, 255, 255)), fill_mask.astype(np.float32) / 255.0)
        return premul, alpha

    @staticmethod
    def _transform(
        premul: np.ndarray,
        alpha: np.ndarray,
        state: AnimationState,
        anchor_x: float,
        anchor_y: float,
        width: int,
        height: int,
    ) -> Tuple[np.ndarray, np.ndarray]:
        if state.is_identity:
            return premul, alpha
        s = state.scale
        dx = state.offset_x * width
        dy = state.offset_y * height
        matrix = np.float32(
            [
                [s, 0.0, (1.0 - s) * anchor_x + dx],
                [0.0, s, (1.0 - s) * anchor_y + dy],
            ]
        )
        size = (premul.shape[1], premul.shape[0])
        premul = cv2.warpAffine(premul, matrix, size, flags=cv2.INTER_LINEAR, borderValue=(0, 0, 0))
        alpha = cv2.warpAffine(alpha, matrix, size, flags=cv2.INTER_LINEAR, borderValue=0)
        return premul, alpha


__all__ = [
    "FONT_FACES",
    "CaptionFont",
    "OverlayRenderer",
    "parse_hex_color",
    "resolve_font",
    "stroke_width",
]
