"""Tests for ffprobe/ffmpeg metadata parsing."""

import json
import subprocess
from types import SimpleNamespace

import pytest

from captionburn.helpers import media


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("30000/1001", 30000 / 1001),
        ("30/1", 30.0),
        ("0/0", None),
        ("25", 25.0),
        ("abc", None),
        (24, 24.0),
        (0, None),
        (None, None),
    ],
)
def test_parse_frame_rate(raw, expected) -> None:
    result = media._parse_frame_rate(raw)
    if expected is None:
        assert result is None
    else:
        assert result == pytest.approx(expected)


def _fake_run(stdout: str):
    calls = []

    def run(cmd, **kwargs):
        calls.append(cmd)
        return SimpleNamespace(stdout=stdout, returncode=0)

    return run, calls


def test_probe_video_stream_parses_payload(monkeypatch: pytest.MonkeyPatch) -> None:
    payload = {
        "streams": [{"width": 1280, "height": 720, "avg_frame_rate": "0/0", "r_frame_rate": "30/1"}],
        "format": {"duration": "12.5"},
    }
    run, calls = _fake_run(json.dumps(payload))
    monkeypatch.setattr(media.subprocess, "run", run)

    meta = media.probe_video_stream("clip.mp4")

    assert meta == media.VideoStreamMetadata(width=1280, height=720, duration=12.5, frame_rate=30.0)
    assert calls[0][-1] == "clip.mp4"
    assert "v:0" in calls[0]


def test_probe_video_stream_missing_ffprobe(monkeypatch: pytest.MonkeyPatch) -> None:
    def run(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(media.subprocess, "run", run)
    meta = media.probe_video_stream("clip.mp4")
    assert meta.width is None and meta.duration is None


def test_probe_audio_stream(monkeypatch: pytest.MonkeyPatch) -> None:
    run, _ = _fake_run(json.dumps({"streams": [{"channels": 2, "sample_rate": "44100"}]}))
    monkeypatch.setattr(media.subprocess, "run", run)
    assert media.probe_audio_stream("a.mp4") == media.AudioStreamMetadata(
        has_audio=True, channels=2, sample_rate=44100
    )

    run, _ = _fake_run(json.dumps({"streams": []}))
    monkeypatch.setattr(media.subprocess, "run", run)
    assert media.probe_audio_stream("silent.mp4").has_audio is False


def test_probe_audio_stream_failed_probe(monkeypatch: pytest.MonkeyPatch) -> None:
    def run(cmd, **kwargs):
        raise subprocess.CalledProcessError(1, cmd)

    monkeypatch.setattr(media.subprocess, "run", run)
    assert media.probe_audio_stream("broken.mp4").has_audio is False


def test_probe_key_frame_times_skips_bad_entries(monkeypatch: pytest.MonkeyPatch) -> None:
    frames = {"frames": [{"pts_time": "0.000000"}, {"pts_time": "N/A"}, {"pts_time": "2.000000"}, "junk"]}
    run, calls = _fake_run(json.dumps(frames))
    monkeypatch.setattr(media.subprocess, "run", run)

    assert media.probe_key_frame_times("out.mp4") == [0.0, 2.0]
    assert "nokey" in calls[0]


ENCODERS_OUTPUT = """Encoders:
 V..... = Video
 A..... = Audio
 ------
 V....D libx264              libx264 H.264 / AVC / MPEG-4 AVC
 V....D libvpx-vp9           libvpx VP9
 A....D aac                  AAC (Advanced Audio Coding)
 A....D libopus              libopus Opus
"""


def test_list_encoders_parses_table(monkeypatch: pytest.MonkeyPatch) -> None:
    run, _ = _fake_run(ENCODERS_OUTPUT)
    monkeypatch.setattr(media.subprocess, "run", run)
    media.list_encoders.cache_clear()
    try:
        names = media.list_encoders()
        assert {"libx264", "libvpx-vp9", "aac", "libopus"} <= names
        assert "=" not in names
        assert media.encoder_available("libx264")
        assert not media.encoder_available("libsvtav1")
    finally:
        media.list_encoders.cache_clear()


def test_list_encoders_without_ffmpeg(monkeypatch: pytest.MonkeyPatch) -> None:
    def run(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(media.subprocess, "run", run)
    media.list_encoders.cache_clear()
    try:
        assert media.list_encoders() == frozenset()
    finally:
        media.list_encoders.cache_clear()


def test_ffmpeg_available(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(media.shutil, "which", lambda name: f"/usr/bin/{name}")
    assert media.ffmpeg_available()
    monkeypatch.setattr(media.shutil, "which", lambda name: None if "probe" in name else "/usr/bin/ffmpeg")
    assert not media.ffmpeg_available()
