import argparse
from pathlib import Path

from tqdm import tqdm

from captionburn.config import DEFAULT_STYLE, EXPORT_DIR
from captionburn.custom_types.animation import AnimationKind, CaptionPosition
from captionburn.errors import CaptionBurnError, StyleValidationError
from captionburn.helpers.formatting import Fore, Style, sanitize_filename

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Burn SRT captions into a video")
    parser.add_argument("video_path", help="Path to the source video")
    parser.add_argument("srt_path", help="Path to the SRT captions")
    parser.add_argument("-o", "--output", help="Output MP4 path")
    parser.add_argument("--font", default=DEFAULT_STYLE.font, help="Caption font family")
    parser.add_argument(
        "--font-size", type=float, default=DEFAULT_STYLE.font_size_pct, help="Font size, percent of frame height"
    )
    parser.add_argument("--color", default=DEFAULT_STYLE.color, help="Caption text color (hex)")
    parser.add_argument(
        "--no-background", dest="background", action="store_false", help="Draw captions without a panel"
    )
    parser.add_argument("--background-color", default=DEFAULT_STYLE.background_color)
    parser.add_argument(
        "--background-opacity", type=float, default=DEFAULT_STYLE.background_opacity_pct, help="Panel opacity, 0-100"
    )
    parser.add_argument(
        "--position",
        choices=[p.value for p in CaptionPosition],
        default=DEFAULT_STYLE.position,
    )
    parser.add_argument(
        "--position-pct", type=float, default=None, help="Vertical anchor, percent of frame height"
    )
    parser.add_argument(
        "--animation",
        choices=[a.value for a in AnimationKind],
        default=DEFAULT_STYLE.animation,
    )
    parser.add_argument(
        "--max-words", type=int, default=DEFAULT_STYLE.max_visual_words, help="Max words per displayed line (100 = unlimited)"
    )
    parser.add_argument("--realtime", action="store_true", help="Force the real-time recorder")
    parser.add_argument("--srt-out", help="Also write the captions back out as SRT")
    return parser


def _build_style(args: argparse.Namespace):
    from captionburn.style import StyleState

    style = StyleState()
    changes = {
        "font": args.font,
        "font_size_pct": args.font_size,
        "color": args.color,
        "background": args.background,
        "background_color": args.background_color,
        "background_opacity_pct": args.background_opacity,
        "position": args.position,
        "animation": args.animation,
        "max_visual_words": args.max_words,
    }
    if args.position_pct is not None:
        changes["position_pct"] = args.position_pct
    return style.update(**changes)


def _get_pipeline():
    from captionburn.pipeline import ExportPipeline

    return ExportPipeline()


def _get_source_opener():
    from captionburn.steps.source import open_source

    return open_source


def main(argv: list[str] | None = None) -> int:
    from captionburn.steps.captions import CaptionTrack, read_srt_file, write_srt_file

    args = create_parser().parse_args(argv)
    video_path = Path(args.video_path)
    output = Path(args.output) if args.output else EXPORT_DIR / f"{sanitize_filename(video_path.stem)}_captioned.mp4"

    try:
        style = _build_style(args)
    except StyleValidationError as exc:
        print(f"{Fore.RED}Invalid style: {exc}{Style.RESET_ALL}")
        return EXIT_FAILED

    track = CaptionTrack(read_srt_file(args.srt_path))
    if not len(track):
        print(f"{Fore.YELLOW}No captions parsed from {args.srt_path}; exporting without overlay.{Style.RESET_ALL}")
    if args.srt_out:
        write_srt_file(track, args.srt_out)

    pipeline = _get_pipeline()
    bar = tqdm(total=100, desc="Exporting", unit="%")

    def _on_progress(fraction: float, status: str) -> None:
        if status:
            bar.set_description(status)
        target = int(fraction * 100)
        if target > bar.n:
            bar.update(target - bar.n)

    try:
        source = _get_source_opener()(video_path)
    except (OSError, CaptionBurnError) as exc:
        bar.close()
        print(f"{Fore.RED}Unable to open {video_path}: {exc}{Style.RESET_ALL}")
        return EXIT_FAILED

    try:
        result = pipeline.export(
            source,
            track,
            style,
            output,
            progress=_on_progress,
            force_realtime=args.realtime,
        )
    except KeyboardInterrupt:
        print(f"{Fore.YELLOW}Export cancelled.{Style.RESET_ALL}")
        return EXIT_CANCELLED
    except CaptionBurnError as exc:
        print(f"{Fore.RED}{exc}{Style.RESET_ALL}")
        return EXIT_FAILED
    finally:
        bar.close()
        source.close()

    for notice in result.notices:
        print(f"{Fore.YELLOW}{notice}{Style.RESET_ALL}")
    if result.cancelled:
        print(f"{Fore.YELLOW}Export cancelled.{Style.RESET_ALL}")
        return EXIT_CANCELLED
    print(f"{Fore.GREEN}Saved {result.path} ({result.strategy}){Style.RESET_ALL}")
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
