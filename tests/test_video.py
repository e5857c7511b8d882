import subprocess

import cv2
import pytest

import video
from config import config
from conftest import BODY_BGR, requires_ffmpeg
from layout import build_layout
from models import CompositionConfig, FitMode, OutputFormat, ScreenRect, TrimRange, VideoInfo
from preview import grab_frame
from video import (
    AssetUnreadableError,
    EncodeError,
    ExportCancelledError,
    ExportInProgressError,
    ExportSession,
    ExportSessionCreationError,
    InvalidTrimRangeError,
    NoVideoTrackError,
    _parse_rate,
    _progress_seconds,
    _rate_arg,
    _stream_rotation,
    build_ffmpeg_command,
    build_filter_graph,
    export_video,
    probe_video,
    resolve_trim,
)

PHONE_RECT = ScreenRect(10, 5, 80, 90)


@pytest.fixture
def small_phone(make_frame):
    """180x360 artwork, hole exactly {x:10, y:5, w:80, h:90}."""
    return make_frame(180, 360, hole=(18, 18, 162, 342))


def export_config(**kwargs):
    values = dict(canvas_width=180, screen_rect=PHONE_RECT, fit_mode=FitMode.FILL)
    values.update(kwargs)
    return CompositionConfig(**values)


def frame_count(path):
    cap = cv2.VideoCapture(str(path))
    try:
        return int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
    finally:
        cap.release()


# Trim

def test_resolve_trim_open_end_uses_duration():
    assert resolve_trim(TrimRange(2.0), 8.0) == TrimRange(2.0, 8.0)


def test_resolve_trim_tolerates_container_rounding():
    assert resolve_trim(TrimRange(0, 8.0005), 8.0) == TrimRange(0, 8.0)


@pytest.mark.parametrize("trim", [
    TrimRange(5, 5),
    TrimRange(6, 2),
    TrimRange(-1, 2),
    TrimRange(0, 9),
    TrimRange(9),
])
def test_invalid_trim_ranges(trim):
    with pytest.raises(InvalidTrimRangeError):
        resolve_trim(trim, 8.0)


# Probe helpers

@pytest.mark.parametrize("rate, expected", [
    ("30000/1001", 30000 / 1001),
    ("30/1", 30.0),
    ("0/0", 0.0),
    ("", 0.0),
    (None, 0.0),
    ("garbage", 0.0),
])
def test_parse_rate(rate, expected):
    assert _parse_rate(rate) == pytest.approx(expected)


def test_stream_rotation_sources():
    assert _stream_rotation({"side_data_list": [{"rotation": -90}]}) == 270
    assert _stream_rotation({"tags": {"rotate": "90"}}) == 90
    assert _stream_rotation({}) == 0


def test_rate_arg_keeps_ntsc_rates_exact():
    assert _rate_arg(30000 / 1001) == "30000/1001"
    assert _rate_arg(25.0) == "25"


def test_progress_seconds():
    assert _progress_seconds("out_time_us=2500000\n") == pytest.approx(2.5)
    assert _progress_seconds("out_time_ms=1000000") == pytest.approx(1.0)
    assert _progress_seconds("out_time_us=N/A") is None
    assert _progress_seconds("progress=continue") is None


def test_probe_missing_file(tmp_path):
    with pytest.raises(AssetUnreadableError):
        probe_video(str(tmp_path / "missing.mp4"))


def test_probe_without_ffprobe(tmp_path, monkeypatch):
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"\x00" * 16)
    monkeypatch.setattr(config, "FFPROBE_BIN", str(tmp_path / "no-ffprobe"))
    with pytest.raises(ExportSessionCreationError):
        probe_video(str(path))


# Command building

def test_filter_graph_layers_video_mask_and_frame(small_phone):
    layout = build_layout(export_config(), (320, 240), 0, small_phone)
    graph = build_filter_graph(layout, 30.0, 5.0)
    assert "color=c=black:s=180x360:r=30:d=5.000[bg]" in graph
    crop_x, crop_y, crop_w, crop_h = layout.source_window().crop
    x, y, w, h = layout.source_window().target
    assert f"crop={crop_w}:{crop_h}:{crop_x}:{crop_y}:exact=1,scale={w}:{h}" in graph
    assert f"overlay=x={x}:y={y}" in graph
    assert "[placed][mask]alphamerge[masked]" in graph
    assert "[base][2:v]overlay" in graph
    assert graph.endswith("[out]")


def test_filter_graph_scales_only_the_visible_window(small_phone):
    layout = build_layout(export_config(zoom=8.0), (1920, 1080), 0, small_phone)
    placed_w, placed_h, _, _ = layout.placed_pixels()
    graph = build_filter_graph(layout, 30.0, 1.0)
    _, _, w, h = layout.source_window().target
    assert f"scale={w}:{h}:" in graph
    assert f"scale={placed_w}:{placed_h}:" not in graph
    assert w <= 180 and h <= 360


def test_command_for_frame_and_audio(small_phone):
    layout = build_layout(export_config(), (320, 240), 0, small_phone)
    cmd = build_ffmpeg_command(
        "in.mp4", "out.mov", layout, TrimRange(2.0, 7.0), 30.0, OutputFormat.MOV, True, "mask.png", "frame.png",
    )
    assert cmd[0] == config.FFMPEG_BIN
    assert cmd[cmd.index("-ss") + 1] == "2.000"
    assert cmd[cmd.index("-t") + 1] == "5.000"
    assert "frame.png" in cmd and "mask.png" in cmd
    assert cmd[cmd.index("-c:a") + 1] == "copy"
    assert cmd[cmd.index("-f") + 1] == "mov"
    assert cmd[cmd.index("-preset") + 1] == config.VIDEO_PRESET
    assert cmd[-1] == "out.mov"
    assert "-an" not in cmd


def test_command_without_frame_or_audio():
    layout = build_layout(CompositionConfig(canvas_width=180, canvas_height=320), (320, 240))
    cmd = build_ffmpeg_command(
        "in.mp4", "out.mp4", layout, TrimRange(0, 1.0), 24.0, OutputFormat.MP4, False, "mask.png",
    )
    assert "-an" in cmd
    assert cmd.count("-loop") == 1
    graph = cmd[cmd.index("-filter_complex") + 1]
    assert "[2:v]" not in graph
    assert "[base]format=yuv420p" in graph


def test_export_missing_source_leaves_no_output(tmp_path):
    out = tmp_path / "out.mp4"
    with pytest.raises(AssetUnreadableError):
        export_video(str(tmp_path / "missing.mp4"), str(out), CompositionConfig())
    assert not out.exists()


@pytest.fixture
def known_source(tmp_path, monkeypatch):
    """A source path whose ffprobe result is fixed, so sessions run without ffmpeg up to the encoder."""
    path = tmp_path / "in.mp4"
    path.write_bytes(b"\x00" * 16)
    monkeypatch.setattr(
        video, "probe_video",
        lambda source: VideoInfo(path=source, width=320, height=240, duration=8.0, fps=30.0),
    )
    return str(path)


def test_destination_that_is_a_directory_fails_session_creation(tmp_path, known_source):
    out = tmp_path / "out.mp4"
    out.mkdir()
    with pytest.raises(ExportSessionCreationError):
        export_video(known_source, str(out), export_config(trim=TrimRange(0, 1)))
    assert out.is_dir()


def test_destination_under_a_regular_file_fails_session_creation(tmp_path, known_source):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")
    with pytest.raises(ExportSessionCreationError):
        export_video(known_source, str(blocker / "sub" / "out.mp4"), export_config(trim=TrimRange(0, 1)))
    assert blocker.read_text() == "not a directory"


def test_unusable_temp_dir_fails_session_creation(tmp_path, known_source, monkeypatch):
    blocker = tmp_path / "file"
    blocker.write_text("")
    monkeypatch.setattr(config, "TEMP_DIR", str(blocker / "tmp"))
    out = tmp_path / "out.mp4"
    with pytest.raises(ExportSessionCreationError):
        export_video(known_source, str(out), export_config(trim=TrimRange(0, 1)))
    assert not out.exists()


def test_cancel_before_run_stops_that_run(tmp_path, known_source, monkeypatch):
    out = tmp_path / "out.mp4"
    session = ExportSession(known_source, str(out), export_config(trim=TrimRange(0, 1)))
    session.cancel()
    with pytest.raises(ExportCancelledError):
        session.run()
    assert not out.exists()
    assert not session.is_running

    # The request was consumed: the next run gets as far as starting the encoder
    monkeypatch.setattr(config, "FFMPEG_BIN", str(tmp_path / "no-ffmpeg"))
    with pytest.raises(ExportSessionCreationError):
        session.run()


# End to end

@requires_ffmpeg
def test_probe_source(source_video):
    info = probe_video(str(source_video))
    assert info.natural_size == (320, 240)
    assert info.fps == pytest.approx(30.0)
    assert info.duration == pytest.approx(8.0, abs=0.1)
    assert info.has_audio
    assert info.rotation == 0


@requires_ffmpeg
def test_probe_text_file_is_unreadable(tmp_path):
    path = tmp_path / "notes.mp4"
    path.write_text("definitely not a video")
    with pytest.raises(AssetUnreadableError):
        probe_video(str(path))


@requires_ffmpeg
def test_probe_audio_only_has_no_video_track(tmp_path):
    path = tmp_path / "tone.m4a"
    subprocess.run(
        ["ffmpeg", "-y", "-loglevel", "error", "-f", "lavfi", "-i", "sine=duration=1", "-c:a", "aac", str(path)],
        check=True,
    )
    with pytest.raises(NoVideoTrackError):
        probe_video(str(path))


@requires_ffmpeg
def test_trimmed_export_duration(tmp_path, source_video, small_phone, fast_encode):
    out = tmp_path / "trimmed.mp4"
    progress = []
    cfg = export_config(trim=TrimRange(2.0, 7.0))
    export_video(str(source_video), str(out), cfg, frame=small_phone, progress=progress.append)

    info = probe_video(str(out))
    assert abs(info.duration - 5.0) <= info.frame_duration + 1e-3
    assert info.natural_size == (180, 360)
    assert info.has_audio
    assert progress[-1] == 1.0
    assert all(0.0 <= p <= 1.0 for p in progress)


@requires_ffmpeg
def test_exported_frame_keeps_video_inside_screen(tmp_path, source_video, small_phone, fast_encode):
    out = tmp_path / "masked.mp4"
    export_video(str(source_video), str(out), export_config(trim=TrimRange(0, 2.0)), frame=small_phone)

    image = grab_frame(str(out), 1.0)
    assert image.shape[:2] == (360, 180)
    for x, y in [(6, 180), (173, 180), (90, 6), (90, 353), (2, 2), (177, 357)]:
        assert all(abs(int(c) - b) <= 12 for c, b in zip(image[y, x], BODY_BGR)), (x, y, image[y, x])


@requires_ffmpeg
def test_exported_cut_corners_stay_black(tmp_path, source_video, make_frame, fast_encode):
    # Transparent outer corners are not part of the screen, even with video behind them
    cornered = make_frame(180, 360, hole=(18, 18, 162, 342), corners=10)
    out = tmp_path / "corners.mp4"
    cfg = export_config(trim=TrimRange(0, 2.0), fit_mode=FitMode.STRETCH, zoom=1.5)
    export_video(str(source_video), str(out), cfg, frame=cornered)

    image = grab_frame(str(out), 1.0)
    for x, y in [(3, 3), (176, 3), (3, 356), (176, 356)]:
        assert max(int(c) for c in image[y, x]) <= 16, (x, y, image[y, x])
    assert all(abs(int(c) - b) <= 12 for c, b in zip(image[180, 6], BODY_BGR))


@requires_ffmpeg
def test_export_is_idempotent(tmp_path, source_video, small_phone, fast_encode):
    cfg = export_config(trim=TrimRange(1.0, 3.0), fit_mode=FitMode.FIT, zoom=1.2)
    first = export_video(str(source_video), str(tmp_path / "a.mp4"), cfg, frame=small_phone)
    second = export_video(str(source_video), str(tmp_path / "b.mp4"), cfg, frame=small_phone)

    assert frame_count(first) == frame_count(second) > 0
    assert probe_video(first).duration == pytest.approx(probe_video(second).duration)


@requires_ffmpeg
def test_export_overwrites_existing_destination(tmp_path, source_video, fast_encode):
    out = tmp_path / "out.mov"
    out.write_bytes(b"stale")
    cfg = CompositionConfig(canvas_width=160, canvas_height=120, output_format=OutputFormat.MOV, trim=TrimRange(0, 1))
    export_video(str(source_video), str(out), cfg)
    assert probe_video(str(out)).natural_size == (160, 120)


@requires_ffmpeg
def test_cancel_removes_partial_output(tmp_path, source_video, small_phone, fast_encode):
    out = tmp_path / "cancelled.mp4"
    session = ExportSession(str(source_video), str(out), export_config(), frame=small_phone)
    session.progress = lambda fraction: session.cancel()

    with pytest.raises(ExportCancelledError):
        session.run()
    assert not out.exists()
    assert not session.is_running


@requires_ffmpeg
def test_second_run_while_exporting_is_rejected(tmp_path, source_video, small_phone, fast_encode):
    out = tmp_path / "busy.mp4"
    session = ExportSession(str(source_video), str(out), export_config(trim=TrimRange(0, 1)), frame=small_phone)
    rejected = []

    def reenter(fraction):
        try:
            session.run()
        except ExportInProgressError as e:
            rejected.append(e)

    session.progress = reenter
    session.run()
    assert rejected
    assert out.exists()


@requires_ffmpeg
def test_invalid_trim_against_source(tmp_path, source_video):
    out = tmp_path / "never.mp4"
    with pytest.raises(InvalidTrimRangeError):
        export_video(str(source_video), str(out), export_config(trim=TrimRange(5, 20)))
    assert not out.exists()


@requires_ffmpeg
def test_low_disk_space_fails_session_creation(tmp_path, source_video, monkeypatch):
    monkeypatch.setattr(config, "MIN_DISK_SPACE_GB", 10 ** 9)
    with pytest.raises(ExportSessionCreationError):
        export_video(str(source_video), str(tmp_path / "out.mp4"), export_config(trim=TrimRange(0, 1)))


@requires_ffmpeg
def test_encoder_failure_surfaces_stderr(tmp_path, source_video, monkeypatch):
    monkeypatch.setattr(config, "VIDEO_PRESET", "not-a-preset")
    out = tmp_path / "broken.mp4"
    with pytest.raises(EncodeError) as exc_info:
        export_video(str(source_video), str(out), export_config(trim=TrimRange(0, 1)))
    assert exc_info.value.stderr
    assert not out.exists()
