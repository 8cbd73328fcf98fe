"""Burn timed captions into video with frame-accurate or real-time export."""

__version__ = "0.1.0"
