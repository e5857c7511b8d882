import pytest

from models import (
    CompositionConfig,
    ConfigValidationError,
    FitMode,
    OutputFormat,
    ScreenRect,
    TrimRange,
    VideoInfo,
)


def test_defaults_from_empty_surface():
    cfg = CompositionConfig.from_dict({})
    assert cfg == CompositionConfig()
    assert cfg.fit_mode is FitMode.FIT
    assert cfg.zoom == 1.0
    assert (cfg.offset_x, cfg.offset_y) == (0.0, 0.0)
    assert cfg.trim == TrimRange(0.0, None)
    assert cfg.output_format is OutputFormat.MP4
    assert (cfg.canvas_width, cfg.canvas_height) == (1080, 1920)
    assert cfg.screen_rect is None


def test_percent_fields_are_normalised():
    cfg = CompositionConfig.from_dict({
        "screenRect": {"x": 10, "y": 5, "w": 80, "h": 90},
        "fitMode": "Fill",
        "zoomPercent": 150,
        "offsetXPercent": -100,
        "offsetYPercent": 50,
        "trimStartSeconds": 2,
        "trimEndSeconds": 7.5,
        "outputFormat": "mov",
        "canvasWidth": 720,
        "canvasHeight": 1280,
    })
    assert cfg.screen_rect == ScreenRect(10, 5, 80, 90)
    assert cfg.fit_mode is FitMode.FILL
    assert cfg.zoom == pytest.approx(1.5)
    assert cfg.offset_x == pytest.approx(-1.0)
    assert cfg.offset_y == pytest.approx(0.5)
    assert cfg.trim == TrimRange(2.0, 7.5)
    assert cfg.output_format is OutputFormat.MOV
    assert (cfg.canvas_width, cfg.canvas_height) == (720, 1280)


def test_surface_round_trip():
    cfg = CompositionConfig(
        screen_rect=ScreenRect(6.5, 3, 87, 94),
        fit_mode=FitMode.STRETCH,
        zoom=0.5,
        offset_x=0.25,
        trim=TrimRange(1, 3),
    )
    assert CompositionConfig.from_dict(cfg.to_dict()) == cfg


def test_unknown_keys_are_rejected():
    with pytest.raises(ConfigValidationError, match="zoom"):
        CompositionConfig.from_dict({"zoom": 1.0})


@pytest.mark.parametrize("data, field", [
    ({"fitMode": "crop"}, "fitMode"),
    ({"outputFormat": "webm"}, "outputFormat"),
    ({"zoomPercent": "150"}, "zoomPercent"),
    ({"offsetXPercent": True}, "offsetXPercent"),
    ({"screenRect": {"x": 1, "y": 2}}, "screenRect"),
    ({"canvasWidth": 1}, "canvasWidth"),
])
def test_invalid_values_name_the_field(data, field):
    with pytest.raises(ConfigValidationError, match=field):
        CompositionConfig.from_dict(data)


def test_non_object_surface_is_rejected():
    with pytest.raises(ConfigValidationError):
        CompositionConfig.from_dict([1, 2, 3])


def test_config_is_immutable():
    cfg = CompositionConfig()
    with pytest.raises(AttributeError):
        cfg.zoom = 2.0
    updated = cfg.with_screen_rect(ScreenRect(1, 2, 3, 4))
    assert cfg.screen_rect is None
    assert updated.screen_rect == ScreenRect(1, 2, 3, 4)


def test_screen_rect_clamped_stays_inside_unit_square():
    rect = ScreenRect(-5, 90, 120, 30).clamped()
    assert rect == ScreenRect(0, 90, 100, 10)


def test_trim_duration():
    assert TrimRange(2, 7).duration == 5
    assert TrimRange(2).duration is None


def test_video_info_upright_size():
    info = VideoInfo(path="a.mov", width=1920, height=1080, duration=3, fps=30, rotation=90)
    assert info.natural_size == (1920, 1080)
    assert info.upright_size == (1080, 1920)
    assert info.frame_duration == pytest.approx(1 / 30)
    assert VideoInfo(path="b", width=2, height=2, duration=1, fps=0).frame_duration == 0.0
