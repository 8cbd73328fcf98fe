from pathlib import Path

import pytest

from captionburn.steps.captions import (
    CaptionSegment,
    CaptionTrack,
    format_timestamp,
    parse_srt,
    parse_timestamp,
    read_srt_file,
    serialize_srt,
    serialize_vtt,
    write_srt_file,
)

SAMPLE = """1
00:00:00,000 --> 00:00:01,500
Hello there

2
00:00:01,500 --> 00:00:03,000
general
kenobi

7
00:01:02,250 --> 00:01:04,000
out of order id
"""


def test_parse_srt_basic() -> None:
    segs = parse_srt(SAMPLE)
    assert [s.id for s in segs] == [1, 2, 7]
    assert segs[0].start == 0.0
    assert segs[0].end == 1.5
    assert segs[1].text == "general kenobi"
    assert segs[2].start == pytest.approx(62.25)


def test_parse_srt_handles_crlf_and_bom() -> None:
    content = "\ufeff" + SAMPLE.replace("\n", "\r\n")
    segs = parse_srt(content)
    assert len(segs) == 3
    assert segs[1].text == "general kenobi"


def test_parse_srt_drops_malformed_blocks() -> None:
    content = """x
00:00:00,000 --> 00:00:01,000
bad id

2
00:00:01,000 00:00:02,000
no arrow

3
00:00:02,000 --> 00:00:03,000

4
00:00:05,000 --> 00:00:04,000
ends before start

5
00:00:aa,000 --> 00:00:04,000
bad stamp

6
00:00:06,000 --> 00:00:07,000
kept
"""
    segs = parse_srt(content)
    assert [s.id for s in segs] == [6]
    assert segs[0].text == "kept"


def test_parse_srt_keeps_parse_order() -> None:
    content = """2
00:00:05,000 --> 00:00:06,000
later

1
00:00:00,000 --> 00:00:01,000
earlier
"""
    assert [s.id for s in parse_srt(content)] == [2, 1]


def test_timestamp_accepts_dot_and_formats_comma() -> None:
    assert parse_timestamp("00:00:01.250") == pytest.approx(1.25)
    assert parse_timestamp("01:02:03,004") == pytest.approx(3723.004)
    assert parse_timestamp("00:00:01,5") == pytest.approx(1.5)
    assert parse_timestamp("00:61:00,000") is None
    assert parse_timestamp("nonsense") is None
    assert format_timestamp(3723.004) == "01:02:03,004"
    assert format_timestamp(1.2) == "00:00:01,200"


def test_srt_round_trip() -> None:
    segs = parse_srt(SAMPLE)
    again = parse_srt(serialize_srt(segs))
    assert again == segs


def test_serialize_srt_uses_blank_line_between_blocks() -> None:
    segs = [
        CaptionSegment(id=1, start=0.0, end=1.0, text="a"),
        CaptionSegment(id=3, start=1.0, end=2.0, text="b"),
    ]
    assert serialize_srt(segs) == (
        "1\n00:00:00,000 --> 00:00:01,000\na\n\n3\n00:00:01,000 --> 00:00:02,000\nb"
    )


def test_serialize_vtt() -> None:
    segs = [CaptionSegment(id=1, start=0.5, end=1.0, text="hi")]
    assert serialize_vtt(segs) == "WEBVTT\n\n00:00:00.500 --> 00:00:01.000\nhi"


def test_read_and_write_srt_file(tmp_path: Path) -> None:
    path = write_srt_file(parse_srt(SAMPLE), tmp_path / "nested" / "caps.srt")
    assert path.read_text(encoding="utf-8").endswith("\n")
    assert read_srt_file(path) == parse_srt(SAMPLE)
    assert read_srt_file(tmp_path / "missing.srt") == []


def test_track_active_at_is_inclusive_and_first_wins() -> None:
    track = CaptionTrack.from_srt(SAMPLE)
    assert track.active_at(0.0).id == 1
    # 1.5 is the end of #1 and the start of #2; sequence order decides
    assert track.active_at(1.5).id == 1
    assert track.active_at(2.0).id == 2
    assert track.active_at(10.0) is None


def test_track_edit_text_invalidates_layout() -> None:
    track = CaptionTrack.from_srt(SAMPLE)
    track.layout_cache.store(1, "stamp", ["Hello there"])
    track.layout_cache.store(2, "stamp", ["general kenobi"])
    track.edit_text(1, "Goodbye")
    assert track.get(1).text == "Goodbye"
    assert 1 not in track.layout_cache
    assert 2 in track.layout_cache
    with pytest.raises(KeyError):
        track.edit_text(99, "nope")


def test_track_load_replaces_segments_and_clears_cache() -> None:
    track = CaptionTrack.from_srt(SAMPLE)
    track.layout_cache.store(1, "stamp", ["x"])
    segs = track.load("5\n00:00:00,000 --> 00:00:01,000\nnew\n")
    assert [s.id for s in segs] == [5]
    assert len(track) == 1
    assert len(track.layout_cache) == 0
    assert track.to_srt().startswith("5\n")
