"""Exception types raised while styling, rendering and exporting captions."""

from __future__ import annotations


class CaptionBurnError(Exception):
    """Base class for errors raised by the caption export engine."""


class UserCancelled(CaptionBurnError):
    """The operator aborted an export. Not a failure."""


class PrimitiveUnavailable(CaptionBurnError):
    """Frame-accurate encode primitives are missing on this host."""


class EncoderFault(CaptionBurnError):
    """An encoder rejected its configuration or a submitted frame."""


class SeekError(EncoderFault):
    """The source could not produce the frame at the requested timestamp."""


class ExportInProgressError(CaptionBurnError):
    """A second export was requested while another one is still running."""


class ExportFailed(CaptionBurnError):
    """Both export strategies failed."""

    def __init__(self, message: str, notices: list[str] | None = None) -> None:
        super().__init__(message)
        self.notices = list(notices or [])


class StyleValidationError(ValueError):
    """A caption style value is outside its allowed range."""


__all__ = [
    "CaptionBurnError",
    "UserCancelled",
    "PrimitiveUnavailable",
    "EncoderFault",
    "SeekError",
    "ExportInProgressError",
    "ExportFailed",
    "StyleValidationError",
]
