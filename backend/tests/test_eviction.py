import os
import time

import pytest

from conftest import OWNER
from constants import ProgressModes, ProgressStatus
from services.artifact_server import ActiveStreamRegistry, ProxyEvictor

RETENTION = 2 * 3600


@pytest.fixture
def registry():
    return ActiveStreamRegistry()


@pytest.fixture
def evictor(tmp_path, registry):
    return ProxyEvictor(tmp_path / "proxy", RETENTION, registry)


def _proxy(evictor, name, age_seconds, now):
    evictor.proxy_dir.mkdir(parents=True, exist_ok=True)
    path = evictor.proxy_dir / name
    path.write_bytes(b"proxy")
    mtime = now - age_seconds
    os.utime(path, (mtime, mtime))
    return path


def test_expired_proxy_is_removed(evictor):
    now = time.time()
    old = _proxy(evictor, "a" * 32 + ".mp4", RETENTION + 60, now)
    fresh = _proxy(evictor, "b" * 32 + ".mp4", 60, now)

    removed = evictor.sweep(now)

    assert removed == [old]
    assert not old.exists()
    assert fresh.exists()


def test_streaming_proxy_is_kept(evictor, registry):
    now = time.time()
    old = _proxy(evictor, "a" * 32 + ".mp4", RETENTION + 60, now)
    registry.acquire(old)

    assert evictor.sweep(now) == []
    assert old.exists()

    registry.release(old)
    assert evictor.sweep(now) == [old]


def test_stale_partial_files_are_removed(evictor):
    now = time.time()
    partial = _proxy(evictor, "c" * 32 + ".mp4.part", RETENTION + 1, now)
    assert evictor.sweep(now) == [partial]


def test_unrelated_files_are_ignored(evictor):
    now = time.time()
    other = _proxy(evictor, "notes.txt", RETENTION * 10, now)
    assert evictor.sweep(now) == []
    assert other.exists()


def test_missing_proxy_dir(tmp_path, registry):
    assert ProxyEvictor(tmp_path / "absent", RETENTION, registry).sweep() == []


def test_stream_endpoint_sweeps_before_serving(client, services):
    key = "d" * 32
    path = services.locator.proxy_path(key)
    path.write_bytes(b"proxy bytes")
    services.progress_store.update(key, ProgressModes.PROXY, status=ProgressStatus.COMPLETED, owner=OWNER)
    old = time.time() - services.config.proxy_retention_seconds - 60
    os.utime(path, (old, old))

    response = client.get(f"/api/transcode/proxy-stream/{key}")

    assert response.status_code == 404
    assert not path.exists()
