# tests/test_media_sync.py

import ffmpeg
import pytest

from errors import InputError, SyncError
from media_sync import (
    MediaSynchronizer,
    build_audio_filters,
    build_srt,
    format_srt_time,
    speed_factor,
)
from schemas import Caption, SyncOptions


@pytest.fixture
def video(workspace):
    path = workspace["ANIMATIONS_DIR"] / "clip.mp4"
    path.write_bytes(b"video")
    return "/animations/clip.mp4"


@pytest.fixture
def synchronizer(workspace):
    return MediaSynchronizer()


@pytest.mark.parametrize(
    "seconds, timecode",
    [
        (0, "00:00:00,000"),
        (65.25, "00:01:05,250"),
        (3661.999, "01:01:01,999"),
        (1.0004, "00:00:01,000"),
    ],
)
def test_format_srt_time(seconds, timecode):
    assert format_srt_time(seconds) == timecode


def test_build_srt():
    captions = [
        Caption(text="First idea", start_time=0, end_time=2.5),
        Caption(text="Second idea", startTime=2.5, endTime=4),
    ]
    assert build_srt(captions) == (
        "1\n00:00:00,000 --> 00:00:02,500\nFirst idea\n\n"
        "2\n00:00:02,500 --> 00:00:04,000\nSecond idea\n\n"
    )


def test_audio_filter_chain():
    options = SyncOptions(fade_in=True, fade_out=True, volume=0.8)
    assert build_audio_filters(options, 10.0) == [
        "volume=0.8",
        "afade=t=in:st=0:d=0.5",
        "afade=t=out:st=9.500:d=0.5",
    ]


def test_fade_out_never_starts_before_zero():
    options = SyncOptions(fade_in=False, fade_out=True)
    assert build_audio_filters(options, 0.2) == ["afade=t=out:st=0.000:d=0.5"]


def test_no_filters_at_unit_volume_without_fades():
    assert build_audio_filters(SyncOptions(fade_in=False, fade_out=False), 5.0) == []


def test_speed_factor():
    assert speed_factor(10, 5) == 2


def test_long_narration_loops_the_video(synchronizer):
    stream = synchronizer.build_sync_stream("v.mp4", "a.mp3", "out.mp4", 5.0, 8.0, SyncOptions())
    args = ffmpeg.compile(stream)

    assert args[args.index("-stream_loop") + 1] == "-1"
    assert "libx264" in args
    assert "-shortest" in args
    assert "afade=t=in:st=0:d=0.5,afade=t=out:st=7.500:d=0.5" in args


def test_short_narration_copies_and_trims_the_video(synchronizer):
    stream = synchronizer.build_sync_stream(
        "v.mp4", "a.mp3", "out.mp4", 10.0, 6.0, SyncOptions(fade_in=False, fade_out=False)
    )
    args = ffmpeg.compile(stream)

    assert "-stream_loop" not in args
    assert "-shortest" in args
    assert args[args.index("-c:v") + 1] == "copy"
    assert args[args.index("-c:a") + 1] == "aac"
    assert "-af" not in args


def test_sync_produces_public_url_and_removes_temp_audio(synchronizer, video, workspace, monkeypatch):
    durations = iter([5.0, 8.0])
    commands = []
    monkeypatch.setattr(synchronizer, "probe_duration", lambda path: next(durations))
    monkeypatch.setattr(synchronizer, "_run", lambda stream: commands.append(ffmpeg.compile(stream)))

    result = synchronizer.sync(video, b"mp3")

    assert result.success
    assert result.output_path.startswith("/animations/sync_")
    assert result.output_path.endswith("_final.mp4")
    assert "-stream_loop" in commands[0]
    assert list(workspace["TEMP_DIR"].iterdir()) == []


def test_sync_failure_is_reported_and_temp_audio_removed(synchronizer, video, workspace, monkeypatch):
    monkeypatch.setattr(synchronizer, "probe_duration", lambda path: 4.0)

    def fail(stream):
        raise SyncError("FFmpeg failed: Invalid data found when processing input")

    monkeypatch.setattr(synchronizer, "_run", fail)
    result = synchronizer.sync(video, b"mp3")

    assert not result.success
    assert "Invalid data" in result.error
    assert list(workspace["TEMP_DIR"].iterdir()) == []


@pytest.mark.parametrize("url", ["/../secret.mp4", "/animations/../../etc/passwd"])
def test_paths_outside_public_dir_are_rejected(synchronizer, workspace, url):
    with pytest.raises(InputError):
        synchronizer.resolve_video(url)


def test_missing_video_is_an_input_error(synchronizer):
    with pytest.raises(InputError) as excinfo:
        synchronizer.resolve_video("/animations/nope.mp4")
    assert "not found" in excinfo.value.message


def test_captions_are_burned_in_and_srt_removed(synchronizer, video, workspace, monkeypatch):
    seen = {}

    def fake_run(stream):
        args = ffmpeg.compile(stream)
        vf = args[args.index("-vf") + 1]
        srt_path = vf[len("subtitles="):vf.index(":force_style")]
        with open(srt_path, encoding="utf-8") as f:
            seen["srt"] = f.read()
        seen["vf"] = vf

    monkeypatch.setattr(synchronizer, "_run", fake_run)
    result = synchronizer.add_captions(video, [Caption(text="Hello", start_time=0, end_time=1)])

    assert result.success
    assert result.output_path.endswith("_captioned.mp4")
    assert "Hello" in seen["srt"]
    assert "FontName=Arial" in seen["vf"]
    assert list(workspace["TEMP_DIR"].iterdir()) == []


def test_retime_halves_playback_speed(synchronizer, video, monkeypatch):
    commands = []
    monkeypatch.setattr(synchronizer, "probe_duration", lambda path: 5.0)
    monkeypatch.setattr(synchronizer, "_run", lambda stream: commands.append(ffmpeg.compile(stream)))

    result = synchronizer.adjust_speed(video, 10.0)

    assert result.success
    assert result.output_path.endswith("_adjusted.mp4")
    assert "setpts=2.000000*PTS" in commands[0]


def test_retime_rejects_non_positive_target(synchronizer, video):
    with pytest.raises(InputError):
        synchronizer.adjust_speed(video, 0)


def test_probe_failure_is_a_sync_error(synchronizer, monkeypatch):
    def broken_probe(path, cmd="ffprobe"):
        raise ffmpeg.Error("ffprobe", b"", b"moov atom not found")

    monkeypatch.setattr(ffmpeg, "probe", broken_probe)
    with pytest.raises(SyncError) as excinfo:
        synchronizer.probe_duration("/tmp/clip.mp4")
    assert "moov atom not found" in excinfo.value.message


def test_retime_of_zero_length_video_is_reported(synchronizer, video, monkeypatch):
    monkeypatch.setattr(synchronizer, "probe_duration", lambda path: 0.0)
    monkeypatch.setattr(synchronizer, "_run", lambda stream: pytest.fail("ffmpeg should not run"))

    result = synchronizer.adjust_speed(video, 5.0)

    assert not result.success
    assert "no measurable duration" in result.error
