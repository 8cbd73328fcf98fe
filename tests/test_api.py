"""Tests for the FastAPI application exposing the caption workspace."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

import captionburn.app as app_module
from captionburn.pipeline import ExportPipeline

from fakes import FakeSource, FakeStrategy

SRT = """1
00:00:00,000 --> 00:00:01,500
Hello there

2
00:00:01,500 --> 00:00:03,000
general kenobi
"""


@pytest.fixture
def strategies():
    return FakeStrategy("frame_accurate"), FakeStrategy("realtime")


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, strategies) -> TestClient:
    primary, fallback = strategies
    workspace = app_module.Workspace(
        pipeline=ExportPipeline(primary, fallback),
        source_opener=lambda path: FakeSource(),
    )
    monkeypatch.setattr(app_module, "workspace", workspace)
    return TestClient(app_module.app)


def _wait_for_state(client: TestClient, *states: str, timeout: float = 2.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        body = client.get("/api/exports/current").json()
        if body["state"] in states or time.monotonic() > deadline:
            return body
        time.sleep(0.01)


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_load_list_and_edit_captions(client: TestClient) -> None:
    response = client.post("/api/captions", json={"srt": SRT})
    assert response.status_code == 201
    assert [c["id"] for c in response.json()] == [1, 2]

    response = client.patch("/api/captions/2", json={"text": "general grievous"})
    assert response.status_code == 200
    assert response.json()["text"] == "general grievous"
    assert response.json()["start"] == 1.5

    listed = client.get("/api/captions").json()
    assert listed[1]["text"] == "general grievous"

    assert client.patch("/api/captions/42", json={"text": "x"}).status_code == 404


def test_srt_and_vtt_download(client: TestClient) -> None:
    client.post("/api/captions", json={"srt": SRT})
    response = client.get("/api/captions/srt", params={"language": "hi"})
    assert response.status_code == 200
    assert 'filename="captions_hi.srt"' in response.headers["content-disposition"]
    assert response.text.startswith("1\n00:00:00,000 --> 00:00:01,500\nHello there")

    vtt = client.get("/api/captions/vtt")
    assert vtt.text.startswith("WEBVTT\n\n00:00:00.000 --> 00:00:01.500")


def test_style_get_and_patch(client: TestClient) -> None:
    style = client.get("/api/style").json()
    assert style["font"] == "Inter"
    assert style["position"] == "bottom"
    assert style["version"] == 0

    response = client.patch("/api/style", json={"position": "top", "animation": "glow", "color": "#f00"})
    assert response.status_code == 200
    body = response.json()
    assert body["position_pct"] == 10.0
    assert body["animation"] == "glow"
    assert body["color"] == "#ff0000"
    assert body["version"] == 1


def test_style_patch_validates_ranges(client: TestClient) -> None:
    assert client.patch("/api/style", json={"font_size_pct": 40}).status_code == 422
    assert client.patch("/api/style", json={"color": "blue"}).status_code == 422
    assert client.get("/api/style").json()["version"] == 0


def test_style_change_invalidates_layout_cache(client: TestClient) -> None:
    client.post("/api/captions", json={"srt": SRT})
    app_module.workspace.track.layout_cache.store(1, "stamp", ["Hello there"])
    client.patch("/api/style", json={"font_size_pct": 8})
    assert len(app_module.workspace.track.layout_cache) == 0


def test_export_requires_existing_source(client: TestClient, tmp_path: Path) -> None:
    response = client.post("/api/exports", json={"video_path": str(tmp_path / "missing.mp4")})
    assert response.status_code == 400


def test_export_runs_in_background(client: TestClient, tmp_path: Path) -> None:
    video = tmp_path / "in.mp4"
    video.write_bytes(b"")
    out = tmp_path / "out.mp4"
    response = client.post("/api/exports", json={"video_path": str(video), "output_path": str(out)})
    assert response.status_code == 202
    assert response.json()["state"] == "running"

    body = _wait_for_state(client, "done", "failed")
    assert body["state"] == "done"
    assert body["strategy"] == "frame_accurate"
    assert body["progress"] == 1.0
    assert body["output_path"] == str(out)
    assert out.exists()


def test_export_conflict_and_cancel(client: TestClient, strategies, tmp_path: Path) -> None:
    primary, _ = strategies
    primary.block = True
    video = tmp_path / "in.mp4"
    video.write_bytes(b"")
    payload = {"video_path": str(video), "output_path": str(tmp_path / "out.mp4")}

    assert client.post("/api/exports", json=payload).status_code == 202
    deadline = time.monotonic() + 2
    while not primary.started and time.monotonic() < deadline:
        time.sleep(0.005)

    assert client.post("/api/exports", json=payload).status_code == 409
    assert client.post("/api/exports/current/cancel").status_code == 200

    body = _wait_for_state(client, "cancelled", "failed", "done")
    assert body["state"] == "cancelled"
    assert not (tmp_path / "out.mp4").exists()
    assert client.post("/api/exports/current/cancel").status_code == 409


def test_export_fallback_notice_is_reported(client: TestClient, strategies, tmp_path: Path) -> None:
    primary, _ = strategies
    primary._available = False
    video = tmp_path / "in.mp4"
    video.write_bytes(b"")
    client.post("/api/exports", json={"video_path": str(video), "output_path": str(tmp_path / "o.mp4")})
    body = _wait_for_state(client, "done", "failed")
    assert body["strategy"] == "realtime"
    assert len(body["notices"]) == 1


def test_cancel_while_source_is_opening(monkeypatch: pytest.MonkeyPatch, strategies, tmp_path: Path) -> None:
    primary, fallback = strategies
    release = threading.Event()

    def slow_opener(path):
        release.wait(2)
        return FakeSource()

    workspace = app_module.Workspace(pipeline=ExportPipeline(primary, fallback), source_opener=slow_opener)
    monkeypatch.setattr(app_module, "workspace", workspace)
    client = TestClient(app_module.app)
    video = tmp_path / "in.mp4"
    video.write_bytes(b"")
    out = tmp_path / "out.mp4"

    assert client.post("/api/exports", json={"video_path": str(video), "output_path": str(out)}).status_code == 202
    assert client.post("/api/exports/current/cancel").status_code == 200
    release.set()

    body = _wait_for_state(client, "cancelled", "failed", "done")
    assert body["state"] == "cancelled"
    assert primary.calls == 0 and fallback.calls == 0
    assert not out.exists()
    assert not workspace.pipeline.exporting
