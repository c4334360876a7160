import pytest

from conftest import OWNER
from exceptions import OutputInvalidError, ProcessFailedError, SourceNotFoundError, ValidationError
from services.clip_exporter import default_clip_name


@pytest.fixture
def clips(services):
    return services.clips


@pytest.fixture
def clip_runner(runner):
    runner.output_content = b"\x00\x00\x00\x18ftypisom clip bytes"
    runner.log_text = "video:10kB audio:2kB subtitle:0kB other streams:0kB global headers:0kB muxing overhead: 1.2%\n"
    return runner


def test_default_clip_name():
    assert default_clip_name("holiday", 12.7, 30.2) == "holiday_clip_12-30.mp4"


def test_export_writes_clip_next_to_source(clips, clip_runner, file_store, write_video):
    write_video("/Movies/holiday.mp4")

    result = clips.export(OWNER, "/Movies/holiday.mp4", 10, 25)

    assert result["path"] == "/Movies/clips/holiday_clip_10-25.mp4"
    assert result["size"] == len(clip_runner.output_content)
    local = file_store.local_path(OWNER, result["path"])
    assert local.read_bytes() == clip_runner.output_content
    assert not (local.parent / ".holiday_clip_10-25.mp4.partial").exists()

    cmd = clip_runner.calls[0][1]
    assert cmd[cmd.index("-ss") + 1] == "10.000"
    assert cmd[cmd.index("-t") + 1] == "15.000"
    assert cmd[cmd.index("-c") + 1] == "copy"


def test_export_with_custom_dir_and_name(clips, clip_runner, write_video):
    write_video("/Movies/holiday.mp4")
    result = clips.export(OWNER, "/Movies/holiday.mp4", 0, 5, export_dir="highlights/best", clip_filename="intro.mp4")
    assert result["path"] == "/Movies/highlights/best/intro.mp4"


@pytest.mark.parametrize("start,end", [(-1, 5), (5, 5), (10, 2)])
def test_export_rejects_bad_range(clips, write_video, start, end):
    write_video("/Movies/holiday.mp4")
    with pytest.raises(ValidationError):
        clips.export(OWNER, "/Movies/holiday.mp4", start, end)


@pytest.mark.parametrize("name", ["../escape.mp4", ".hidden.mp4", "a\\b.mp4"])
def test_export_rejects_bad_filename(clips, write_video, name):
    write_video("/Movies/holiday.mp4")
    with pytest.raises(ValidationError):
        clips.export(OWNER, "/Movies/holiday.mp4", 0, 5, clip_filename=name)


def test_export_missing_source(clips):
    with pytest.raises(SourceNotFoundError):
        clips.export(OWNER, "/Movies/missing.mp4", 0, 5)


def test_failed_export_leaves_nothing_behind(clips, clip_runner, file_store, write_video):
    write_video("/Movies/holiday.mp4")
    clip_runner.returncode = 1
    clip_runner.log_text = "holiday.mp4: Invalid data found when processing input\n"

    with pytest.raises(ProcessFailedError) as exc_info:
        clips.export(OWNER, "/Movies/holiday.mp4", 0, 5)

    assert "Invalid data found" in exc_info.value.output_tail
    clip_dir = file_store.local_path(OWNER, "/Movies/clips")
    assert list(clip_dir.iterdir()) == []


def test_empty_output_is_rejected(clips, clip_runner, write_video):
    write_video("/Movies/holiday.mp4")
    clip_runner.output_content = b""

    with pytest.raises(OutputInvalidError):
        clips.export(OWNER, "/Movies/holiday.mp4", 0, 5)
