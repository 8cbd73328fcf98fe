"""FastAPI application exposing the caption editor and export over REST."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional

from fastapi import FastAPI, HTTPException, Query, Response, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, field_validator

from captionburn.config import EXPORT_DIR
from captionburn.custom_types.animation import AnimationKind, CaptionPosition
from captionburn.errors import ExportFailed, ExportInProgressError, StyleValidationError, UserCancelled
from captionburn.helpers.formatting import sanitize_filename, srt_download_name
from captionburn.interfaces.export import CancelToken
from captionburn.interfaces.progress import ExportEvent, ExportEventType
from captionburn.pipeline import ExportPipeline
from captionburn.steps.captions import CaptionSegment, CaptionTrack
from captionburn.steps.source import MediaSource, open_source
from captionburn.style import (
    FONT_SIZE_RANGE,
    MAX_WORDS_RANGE,
    OPACITY_RANGE,
    POSITION_RANGE,
    StyleState,
)

logger = logging.getLogger(__name__)

ExportState = Literal["idle", "running", "done", "failed", "cancelled"]


@dataclass
class ExportStatus:
    """Mutable status of the most recent export, shared with the worker thread."""

    state: ExportState = "idle"
    status_text: str = ""
    progress: float = 0.0
    notices: List[str] = field(default_factory=list)
    output_path: Optional[str] = None
    strategy: Optional[str] = None
    error: Optional[str] = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def reset(self) -> None:
        with self.lock:
            self.state = "running"
            self.status_text = ""
            self.progress = 0.0
            self.notices = []
            self.output_path = None
            self.strategy = None
            self.error = None

    def handle_event(self, event: ExportEvent) -> None:
        with self.lock:
            if event.type == ExportEventType.NOTICE and event.message:
                self.notices.append(event.message)
            elif event.type == ExportEventType.STEP_PROGRESS and event.data:
                self.progress = float(event.data.get("progress", self.progress))
                if event.message:
                    self.status_text = event.message

    def snapshot(self) -> Dict[str, Any]:
        with self.lock:
            return {
                "state": self.state,
                "status_text": self.status_text,
                "progress": self.progress,
                "notices": list(self.notices),
                "output_path": self.output_path,
                "strategy": self.strategy,
                "error": self.error,
            }


class Workspace:
    """The single in-process caption set, style and export slot."""

    def __init__(
        self,
        pipeline: Optional[ExportPipeline] = None,
        source_opener: Callable[[str | Path], MediaSource] = open_source,
    ) -> None:
        self.track = CaptionTrack()
        self.style = StyleState()
        self.status = ExportStatus()
        self.pipeline = pipeline if pipeline is not None else ExportPipeline(observer=self.status)
        if self.pipeline.observer is None:
            self.pipeline.observer = self.status
        self.source_opener = source_opener
        self.thread: Optional[threading.Thread] = None
        # held from acceptance so a cancel before the pipeline starts is kept
        self.cancel_token: Optional[CancelToken] = None

    def update_style(self, **changes: Any) -> StyleState:
        self.style.update(**changes)
        self.track.layout_cache.invalidate()
        return self.style


workspace = Workspace()

app = FastAPI(title="Caption Burn API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class CaptionModel(BaseModel):
    id: int
    start: float
    end: float
    text: str

    @classmethod
    def from_segment(cls, segment: CaptionSegment) -> "CaptionModel":
        return cls(id=segment.id, start=segment.start, end=segment.end, text=segment.text)


class LoadCaptionsRequest(BaseModel):
    """Payload replacing the caption set with parsed SRT text."""

    srt: str = Field(..., description="SRT-formatted caption text")


class EditCaptionRequest(BaseModel):
    text: str


class StyleModel(BaseModel):
    font: str
    font_size_pct: float
    color: str
    background: bool
    background_color: str
    background_opacity_pct: float
    position: CaptionPosition
    position_pct: float
    animation: AnimationKind
    max_visual_words: int
    version: int

    @classmethod
    def from_style(cls, style: StyleState) -> "StyleModel":
        return cls(**style.to_dict(), version=style.version)


class StyleUpdateRequest(BaseModel):
    """Partial style update; omitted fields keep their current value."""

    font: str | None = Field(default=None, min_length=1, max_length=64)
    font_size_pct: float | None = Field(default=None, ge=FONT_SIZE_RANGE[0], le=FONT_SIZE_RANGE[1])
    color: str | None = Field(default=None)
    background: bool | None = Field(default=None)
    background_color: str | None = Field(default=None)
    background_opacity_pct: float | None = Field(default=None, ge=OPACITY_RANGE[0], le=OPACITY_RANGE[1])
    position: CaptionPosition | None = Field(default=None)
    position_pct: float | None = Field(default=None, ge=POSITION_RANGE[0], le=POSITION_RANGE[1])
    animation: AnimationKind | None = Field(default=None)
    max_visual_words: int | None = Field(default=None, ge=MAX_WORDS_RANGE[0], le=MAX_WORDS_RANGE[1])

    @field_validator("color", "background_color")
    @classmethod
    def _strip_color(cls, value: str | None) -> str | None:
        return value.strip() if isinstance(value, str) else value


class ExportRequest(BaseModel):
    """Payload for starting an export of the loaded captions onto a video."""

    video_path: str = Field(..., min_length=1)
    output_path: str | None = Field(default=None)
    realtime: bool = Field(default=False)


class ExportStatusResponse(BaseModel):
    state: ExportState
    status_text: str
    progress: float
    notices: List[str]
    output_path: str | None = None
    strategy: str | None = None
    error: str | None = None


class HealthResponse(BaseModel):
    status: str


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok")


@app.post("/api/captions", response_model=List[CaptionModel], status_code=status.HTTP_201_CREATED)
async def load_captions(payload: LoadCaptionsRequest) -> List[CaptionModel]:
    """Replace the caption set with the segments parsed from ``payload.srt``."""

    segments = workspace.track.load(payload.srt)
    logger.info("Loaded %d caption segments", len(segments))
    return [CaptionModel.from_segment(seg) for seg in segments]


@app.get("/api/captions", response_model=List[CaptionModel])
async def list_captions() -> List[CaptionModel]:
    return [CaptionModel.from_segment(seg) for seg in workspace.track]


@app.get("/api/captions/srt")
async def download_srt(language: str = Query(default="en", max_length=32)) -> Response:
    """Return the edited captions as an SRT attachment."""

    filename = srt_download_name(language)
    return Response(
        content=workspace.track.to_srt(),
        media_type="application/x-subrip",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/api/captions/vtt")
async def download_vtt() -> Response:
    return Response(content=workspace.track.to_vtt(), media_type="text/vtt")


@app.patch("/api/captions/{caption_id}", response_model=CaptionModel)
async def edit_caption(caption_id: int, payload: EditCaptionRequest) -> CaptionModel:
    """Replace the text of one caption; timing is never edited here."""

    try:
        segment = workspace.track.edit_text(caption_id, payload.text)
    except KeyError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Caption not found")
    return CaptionModel.from_segment(segment)


@app.get("/api/style", response_model=StyleModel)
async def get_style() -> StyleModel:
    return StyleModel.from_style(workspace.style)


@app.patch("/api/style", response_model=StyleModel)
async def update_style(payload: StyleUpdateRequest) -> StyleModel:
    changes = payload.model_dump(exclude_none=True)
    try:
        workspace.update_style(**changes)
    except StyleValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return StyleModel.from_style(workspace.style)


def _default_output_path(video_path: Path) -> Path:
    return EXPORT_DIR / f"{sanitize_filename(video_path.stem)}_captioned.mp4"


@app.post(
    "/api/exports",
    response_model=ExportStatusResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_export(payload: ExportRequest) -> ExportStatusResponse:
    """Start exporting the loaded captions onto ``payload.video_path``."""

    video_path = Path(payload.video_path).expanduser()
    if not video_path.is_file():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The source video could not be found. Check the path and try again.",
        )
    if workspace.pipeline.exporting or workspace.status.state == "running":
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="An export is already running")

    output_path = Path(payload.output_path).expanduser() if payload.output_path else _default_output_path(video_path)
    workspace.status.reset()
    status_obj = workspace.status
    cancel = workspace.cancel_token = CancelToken()

    def runner() -> None:
        final_state: ExportState = "done"
        error: Optional[str] = None
        result = None
        try:
            cancel.raise_if_cancelled()
            source = workspace.source_opener(video_path)
            try:
                result = workspace.pipeline.export(
                    source,
                    workspace.track,
                    workspace.style,
                    output_path,
                    force_realtime=payload.realtime,
                    cancel=cancel,
                )
            finally:
                source.close()
            if result.cancelled:
                final_state = "cancelled"
        except UserCancelled:
            logger.info("Export of %s cancelled before it started", video_path)
            final_state = "cancelled"
        except ExportInProgressError as exc:
            final_state, error = "failed", str(exc)
        except ExportFailed as exc:
            final_state, error = "failed", str(exc)
        except Exception as exc:  # pragma: no cover - exercised in integration
            logger.exception("Export of %s failed", video_path)
            final_state, error = "failed", str(exc)
        with status_obj.lock:
            status_obj.state = final_state
            status_obj.error = error
            if result is not None:
                status_obj.strategy = result.strategy
                status_obj.output_path = str(result.path) if result.path else None
                if result.path:
                    status_obj.progress = 1.0

    accepted = ExportStatusResponse(**status_obj.snapshot())
    thread = threading.Thread(target=runner, name="caption-export", daemon=True)
    workspace.thread = thread
    thread.start()
    return accepted


@app.get("/api/exports/current", response_model=ExportStatusResponse)
async def export_status() -> ExportStatusResponse:
    return ExportStatusResponse(**workspace.status.snapshot())


@app.post("/api/exports/current/cancel", response_model=ExportStatusResponse)
async def cancel_export() -> ExportStatusResponse:
    """Request cancellation of the running export."""

    token = workspace.cancel_token
    if workspace.status.state == "running" and token is not None:
        token.cancel()
    elif not workspace.pipeline.cancel():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="No export is running")
    return ExportStatusResponse(**workspace.status.snapshot())


__all__ = ["app", "workspace", "Workspace", "ExportStatus"]
