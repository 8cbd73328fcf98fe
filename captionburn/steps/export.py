"""Frame-accurate export: seek, render and encode every output frame in order."""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path
from typing import Callable, Optional

import numpy as np

from captionburn.config import AUDIO_CHUNK_SECONDS, AUDIO_CODEC, VIDEO_CODEC
from captionburn.helpers.formatting import Fore, Style
from captionburn.helpers.logging import run_step
from captionburn.helpers.media import encoder_available, ffmpeg_available
from captionburn.interfaces.export import CancelToken, EncodeJob
from captionburn.interfaces.progress import ProgressReporter

from .encode import AudioEncoder, Muxer, VideoEncoder, decode_audio
from .overlay import OverlayRenderer
from .source import MediaSource

STATUS_INITIALIZING = "Initializing Fast Render..."
STATUS_AUDIO = "Processing Audio..."
STATUS_FRAMES = "Rendering Video Frames..."
STATUS_FINALIZING = "Finalizing..."


def _default_probe(source: MediaSource, video_codec: str, audio_codec: str) -> bool:
    if not ffmpeg_available():
        return False
    if not (encoder_available(video_codec) and encoder_available(audio_codec)):
        return False
    return bool(source.seekable)


class FrameAccurateExporter:
    """Primary export strategy.

    Audio is decoded in full and re-encoded in fixed chunks before any video is
    submitted. Video frames are then produced strictly one after another: the
    source is seeked to ``k / fps``, copied into a dedicated buffer, captioned
    and handed to the encoder before the next seek, so the encoder always sees
    increasing timestamps.
    """

    name = "frame_accurate"

    def __init__(
        self,
        *,
        video_encoder_factory: Callable[..., VideoEncoder] = VideoEncoder,
        audio_encoder_factory: Callable[..., AudioEncoder] = AudioEncoder,
        muxer_factory: Callable[[Path], Muxer] = Muxer,
        audio_decoder: Callable[..., np.ndarray] = decode_audio,
        probe: Callable[[MediaSource, str, str], bool] = _default_probe,
        video_codec: Optional[str] = None,
        audio_codec: Optional[str] = None,
    ) -> None:
        self._video_factory = video_encoder_factory
        self._audio_factory = audio_encoder_factory
        self._muxer_factory = muxer_factory
        self._audio_decoder = audio_decoder
        self._probe = probe
        self._video_codec = video_codec
        self._audio_codec = audio_codec

    def available(self, source: MediaSource) -> bool:
        return self._probe(source, self._video_codec or VIDEO_CODEC, self._audio_codec or AUDIO_CODEC)

    def export(self, job: EncodeJob, reporter: ProgressReporter, cancel: CancelToken) -> Path:
        source = job.source
        saved = source.snapshot()
        job.output_path.parent.mkdir(parents=True, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix=".captionburn-", dir=job.output_path.parent))
        renderer = OverlayRenderer(job.track.layout_cache)
        print(
            f"{Fore.CYAN}[export]{Style.RESET_ALL} {source.path} -> {job.output_path} "
            f"({job.frame_count} frames @ {job.fps:g} fps)"
        )
        try:
            reporter.set_status(STATUS_INITIALIZING)
            video = self._video_factory(
                workdir / "video.mp4",
                source.width,
                source.height,
                job.fps,
                codec=job.video_codec,
                bitrate=job.video_bitrate,
                keyframe_interval=job.keyframe_interval,
            )
            job.handles.append(video)
            video.open()

            audio_path: Optional[Path] = None
            if source.has_audio:
                audio = self._audio_factory(
                    workdir / "audio.m4a",
                    sample_rate=job.sample_rate,
                    channels=job.channels,
                    codec=job.audio_codec,
                    bitrate=job.audio_bitrate,
                )
                job.handles.append(audio)
                audio.open()
                reporter.set_status(STATUS_AUDIO)
                audio_path = run_step("Encoding audio", self._encode_audio, job, audio, cancel, step_id="audio")

            reporter.set_status(STATUS_FRAMES)
            run_step(
                "Rendering video frames",
                self._encode_frames,
                job,
                video,
                renderer,
                reporter,
                cancel,
                step_id="frames",
            )

            cancel.raise_if_cancelled()
            reporter.set_status(STATUS_FINALIZING)
            output = run_step("Finalizing", self._finalize, job, video, audio_path, step_id="finalize")
            reporter.complete()
            print(f"{Fore.GREEN}[export]{Style.RESET_ALL} wrote {output}")
            return output
        except BaseException:
            for handle in job.handles:
                handle.abort()
            raise
        finally:
            job.handles.clear()
            shutil.rmtree(workdir, ignore_errors=True)
            source.restore(saved)

    def _encode_audio(self, job: EncodeJob, audio: AudioEncoder, cancel: CancelToken) -> Optional[Path]:
        samples = self._audio_decoder(job.source.path, sample_rate=job.sample_rate, channels=job.channels)
        if samples.size == 0:
            audio.abort()
            return None
        chunk = max(1, int(AUDIO_CHUNK_SECONDS * job.sample_rate)) * job.channels
        for offset in range(0, samples.size, chunk):
            cancel.raise_if_cancelled()
            timestamp = (offset // job.channels) / job.sample_rate
            audio.submit(samples[offset : offset + chunk], timestamp)
        return audio.flush()

    def _encode_frames(
        self,
        job: EncodeJob,
        video: VideoEncoder,
        renderer: OverlayRenderer,
        reporter: ProgressReporter,
        cancel: CancelToken,
    ) -> int:
        source = job.source
        buffer = np.zeros((source.height, source.width, 3), dtype=np.uint8)
        duration = job.duration
        total = job.frame_count
        for k in range(total):
            cancel.raise_if_cancelled()
            t = k / job.fps
            frame = source.seek(t)
            np.copyto(buffer, frame)
            renderer.render(buffer, t, job.track.active_at(t), job.style)
            video.submit(buffer, t)
            job.progress = min(0.99, t / duration) if duration > 0 else 0.0
            reporter.update(job.progress)
        return total

    def _finalize(self, job: EncodeJob, video: VideoEncoder, audio_path: Optional[Path]) -> Path:
        video_path = video.flush()
        return self._muxer_factory(job.output_path).mux(video_path, audio_path)


__all__ = [
    "FrameAccurateExporter",
    "STATUS_INITIALIZING",
    "STATUS_AUDIO",
    "STATUS_FRAMES",
    "STATUS_FINALIZING",
]
