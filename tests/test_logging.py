"""Tests for colored timing logs and export event dispatch."""

from typing import Iterator

import pytest

from captionburn.helpers import logging as log_helpers
from captionburn.helpers.formatting import Fore
from captionburn.interfaces.progress import ExportEvent, ExportEventType

from fakes import RecordingObserver


def _counter(vals: list[float]) -> Iterator[float]:
    for v in vals:
        yield v


def test_run_step_logs(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
) -> None:
    """``run_step`` should print colored messages with elapsed time."""
    times = _counter([0.0, 1.0])
    monkeypatch.setattr(log_helpers.time, "perf_counter", lambda: next(times))

    def fn() -> str:
        return "ok"

    assert log_helpers.run_step("STEP", fn) == "ok"
    out = capsys.readouterr().out
    assert Fore.CYAN in out
    assert Fore.GREEN in out
    assert "completed in" in out
    assert "1.00s" in out


def test_log_timing_context(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
) -> None:
    """``log_timing`` should log start/end with colors."""
    times = _counter([0.0, 1.0])
    monkeypatch.setattr(log_helpers.time, "perf_counter", lambda: next(times))

    with log_helpers.log_timing("WORK"):
        pass

    out = capsys.readouterr().out
    assert Fore.CYAN in out
    assert Fore.GREEN in out
    assert "completed" in out


def test_log_timing_reraises(capsys: pytest.CaptureFixture) -> None:
    with pytest.raises(RuntimeError):
        with log_helpers.log_timing("WORK"):
            raise RuntimeError("boom")
    out = capsys.readouterr().out
    assert Fore.RED in out
    assert "boom" in out


def test_run_step_emits_events_to_observer() -> None:
    observer = RecordingObserver()

    log_helpers.run_step("Encoding audio", lambda: None, step_id="audio", observer=observer)

    types = [event.type for event in observer.events]
    assert types == [ExportEventType.STEP_STARTED, ExportEventType.STEP_COMPLETED]
    assert all(event.step == "audio" for event in observer.events)
    assert "elapsed_seconds" in observer.events[-1].data


def test_run_step_failure_emits_failed_event() -> None:
    observer = RecordingObserver()

    def fail() -> None:
        raise ValueError("encoder died")

    with pytest.raises(ValueError):
        log_helpers.run_step("Encoding video", fail, observer=observer)

    last = observer.events[-1]
    assert last.type == ExportEventType.STEP_FAILED
    assert last.message == "encoder died"
    assert last.step == "Encoding video"


def test_context_observer_receives_events() -> None:
    observer = RecordingObserver()
    token = log_helpers.push_observer(observer)
    try:
        log_helpers.emit_event(ExportEvent(type=ExportEventType.EXPORT_STARTED, message="out.mp4"))
        log_helpers.run_step("Finalizing", lambda: 1)
    finally:
        log_helpers.reset_observer(token)

    log_helpers.emit_event(ExportEvent(type=ExportEventType.EXPORT_COMPLETED))

    assert [e.type for e in observer.events] == [
        ExportEventType.EXPORT_STARTED,
        ExportEventType.STEP_STARTED,
        ExportEventType.STEP_COMPLETED,
    ]


def test_event_payload_omits_empty_fields() -> None:
    event = ExportEvent(type=ExportEventType.NOTICE, message="hi", timestamp=5.0)
    assert event.to_payload() == {"type": "notice", "timestamp": 5.0, "message": "hi"}
