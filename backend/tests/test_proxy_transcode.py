import threading

import pytest

from conftest import OWNER
from constants import ProgressModes, ProgressStatus
from domain.value_objects import CachePolicy
from exceptions import (
    OutputDirectoryUnavailableError,
    OutputInvalidError,
    ProcessFailedError,
    SourceNotReadableError,
)


@pytest.fixture
def executor(services):
    return services.executor


def test_proxy_generated_once_and_reused(executor, runner, write_video):
    source = write_video("/Movies/clip.mp4")

    first = executor.get_or_create_proxy(source)
    second = executor.get_or_create_proxy(source)

    assert runner.spawn_count == 1
    assert first.local_path == second.local_path
    assert first.local_path.name == f"{source.cache_key}.mp4"
    assert first.local_path.read_bytes().startswith(b"\x00\x00\x00\x18ftyp")


def test_force_regenerates(executor, runner, write_video):
    source = write_video("/Movies/clip.mp4")
    executor.get_or_create_proxy(source)
    executor.get_or_create_proxy(source, force=True)
    assert runner.spawn_count == 2


def test_concurrent_requests_spawn_one_transcode(executor, runner, write_video):
    source = write_video("/Movies/clip.mp4")
    runner.delay = 0.2
    results, errors = [], []

    def request_proxy():
        try:
            results.append(executor.get_or_create_proxy(source))
        except Exception as e:  # surfaced by the assertion below
            errors.append(e)

    threads = [threading.Thread(target=request_proxy) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert errors == []
    assert len(results) == 4
    assert runner.spawn_count == 1
    assert len({ref.local_path for ref in results}) == 1
    assert len(executor.key_locks) == 0


def test_invalid_output_is_never_published(executor, runner, services, write_video):
    source = write_video("/Movies/clip.mp4")
    runner.file_content = b"too small"

    with pytest.raises(OutputInvalidError):
        executor.get_or_create_proxy(source)

    assert not services.locator.proxy_path(source.cache_key).exists()
    assert not services.locator.proxy_partial_path(source.cache_key).exists()
    record = services.tracker.get_progress(source.cache_key, ProgressModes.PROXY)
    assert record.status == ProgressStatus.FAILED


def test_output_without_mp4_signature_is_rejected(executor, runner, services, write_video):
    source = write_video("/Movies/clip.mp4")
    runner.file_content = b"\x00" * 4096

    with pytest.raises(OutputInvalidError):
        executor.get_or_create_proxy(source)
    assert not services.locator.proxy_path(source.cache_key).exists()


def test_nonzero_exit_without_marker_fails(executor, runner, services, write_video):
    source = write_video("/Movies/clip.mp4")
    runner.returncode = 1
    runner.stderr_tail = "in.mp4: Invalid data found when processing input"

    with pytest.raises(ProcessFailedError) as exc_info:
        executor.get_or_create_proxy(source)

    assert "Invalid data found" in exc_info.value.output_tail
    assert not services.locator.proxy_partial_path(source.cache_key).exists()


def test_nonzero_exit_with_marker_succeeds(executor, runner, write_video):
    source = write_video("/Movies/clip.mp4")
    runner.returncode = 1
    runner.stderr_tail = "video:900kB audio:100kB muxing overhead: 0.3%"

    ref = executor.get_or_create_proxy(source)
    assert ref.local_path.is_file()


def test_missing_source_is_not_readable(executor, services, write_video, file_store):
    source = write_video("/Movies/clip.mp4")
    file_store.local_path(source.owner, source.path).unlink()

    with pytest.raises(SourceNotReadableError):
        executor.get_or_create_proxy(source)


def test_proxy_leaves_queued_hls_progress_alone(executor, services, write_video):
    source = write_video("/Movies/clip.mp4")
    services.generation.generate(OWNER, [source.path], CachePolicy())
    hls_log = services.progress_store.log_path(source.cache_key)
    hls_log.write_text("frame=10 fps=25 time=00:00:01.00 speed=1x\r")

    executor.get_or_create_proxy(source)

    hls = services.tracker.get_progress(source.cache_key)
    assert hls.status == ProgressStatus.PROCESSING
    assert hls.owner == OWNER
    assert hls_log.exists()
    proxy = services.tracker.get_progress(source.cache_key, ProgressModes.PROXY)
    assert proxy.status == ProgressStatus.COMPLETED
    assert proxy.message == "Proxy ready"


def test_hls_run_leaves_proxy_progress_alone(executor, services, write_video):
    source = write_video("/Movies/clip.mp4")
    executor.get_or_create_proxy(source)

    executor.generate_hls(source, CachePolicy())

    proxy_log = services.progress_store.log_path(source.cache_key, ProgressModes.PROXY)
    hls_log = services.progress_store.log_path(source.cache_key)
    assert proxy_log != hls_log
    assert services.tracker.get_progress(source.cache_key, ProgressModes.PROXY).message == "Proxy ready"
    assert services.tracker.get_progress(source.cache_key).message == "Cache generation completed"


def test_proxy_hit_without_record_is_reclaimed(executor, services, write_video):
    source = write_video("/Movies/clip.mp4")
    executor.get_or_create_proxy(source)
    services.progress_store.record_path(source.cache_key, ProgressModes.PROXY).unlink()

    executor.get_or_create_proxy(source)

    record = services.progress_store.load(source.cache_key, ProgressModes.PROXY)
    assert record.owner == OWNER
    assert record.status == ProgressStatus.COMPLETED


def test_unusable_proxy_dir_is_reported(executor, runner, services, write_video):
    source = write_video("/Movies/clip.mp4")
    proxy_dir = services.locator.proxy_path(source.cache_key).parent
    proxy_dir.rmdir()
    proxy_dir.write_bytes(b"not a directory")

    with pytest.raises(OutputDirectoryUnavailableError):
        executor.get_or_create_proxy(source)

    assert runner.spawn_count == 0
    record = services.tracker.get_progress(source.cache_key, ProgressModes.PROXY)
    assert record.status == ProgressStatus.FAILED
