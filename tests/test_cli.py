"""Tests for the export command-line entry point."""

import pytest

from captionburn.cli import export_cli
from captionburn.cli.export_cli import main as export_main
from captionburn.errors import EncoderFault
from captionburn.pipeline import ExportPipeline

from fakes import FakeSource, FakeStrategy

SRT = """1
00:00:00,000 --> 00:00:01,000
Hello there

2
00:00:01,000 --> 00:00:02,000
General Kenobi
"""


@pytest.fixture
def files(tmp_path):
    video = tmp_path / "clip.mp4"
    video.write_bytes(b"")
    srt = tmp_path / "clip.srt"
    srt.write_text(SRT, encoding="utf-8")
    return video, srt, tmp_path / "out" / "clip_captioned.mp4"


def _install(monkeypatch, primary, fallback, opener=None):
    pipeline = ExportPipeline(primary, fallback)
    monkeypatch.setattr(export_cli, "_get_pipeline", lambda: pipeline)
    monkeypatch.setattr(
        export_cli, "_get_source_opener", lambda: opener or (lambda path: FakeSource())
    )
    return pipeline


def test_cli_exports_with_primary(monkeypatch, files, capsys):
    video, srt, out = files
    primary, fallback = FakeStrategy("frame_accurate"), FakeStrategy("realtime")
    _install(monkeypatch, primary, fallback)

    code = export_main([str(video), str(srt), "-o", str(out), "--animation", "fade"])

    assert code == 0
    assert out.read_bytes() == b"frame_accurate"
    assert fallback.calls == 0
    assert "Saved" in capsys.readouterr().out


def test_cli_realtime_flag_forces_fallback(monkeypatch, files, capsys):
    video, srt, out = files
    primary, fallback = FakeStrategy("frame_accurate"), FakeStrategy("realtime")
    _install(monkeypatch, primary, fallback)

    assert export_main([str(video), str(srt), "-o", str(out), "--realtime"]) == 0
    assert out.read_bytes() == b"realtime"
    assert primary.calls == 0
    assert "Real-time recording requested." in capsys.readouterr().out


def test_cli_writes_srt_copy(monkeypatch, files):
    video, srt, out = files
    _install(monkeypatch, FakeStrategy("frame_accurate"), FakeStrategy("realtime"))
    copy = out.parent / "copy.srt"

    assert export_main([str(video), str(srt), "-o", str(out), "--srt-out", str(copy)]) == 0
    assert "General Kenobi" in copy.read_text(encoding="utf-8")


def test_cli_rejects_invalid_style(monkeypatch, files, capsys):
    video, srt, out = files
    primary = FakeStrategy("frame_accurate")
    _install(monkeypatch, primary, FakeStrategy("realtime"))

    assert export_main([str(video), str(srt), "-o", str(out), "--font-size", "40"]) == 1
    assert primary.calls == 0
    assert "Invalid style" in capsys.readouterr().out


def test_cli_reports_terminal_failure(monkeypatch, files, capsys):
    video, srt, out = files
    _install(
        monkeypatch,
        FakeStrategy("frame_accurate", error=EncoderFault("x264 crashed")),
        FakeStrategy("realtime", error=EncoderFault("recorder crashed")),
    )

    assert export_main([str(video), str(srt), "-o", str(out)]) == 1
    assert not out.exists()
    assert "recorder crashed" in capsys.readouterr().out


def test_cli_keyboard_interrupt_exits_130(monkeypatch, files):
    video, srt, out = files
    pipeline = _install(
        monkeypatch,
        FakeStrategy("frame_accurate", error=KeyboardInterrupt()),
        FakeStrategy("realtime"),
    )

    assert export_main([str(video), str(srt), "-o", str(out)]) == 130
    assert not pipeline.exporting


def test_cli_unopenable_source(monkeypatch, files, capsys):
    video, srt, out = files

    def opener(path):
        raise OSError("no such file")

    _install(monkeypatch, FakeStrategy("frame_accurate"), FakeStrategy("realtime"), opener)

    assert export_main([str(video), str(srt), "-o", str(out)]) == 1
    assert "Unable to open" in capsys.readouterr().out
