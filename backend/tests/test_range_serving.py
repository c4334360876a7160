import asyncio

import pytest

from exceptions import ArtifactNotFoundError, RangeNotSatisfiableError
from services.artifact_server import (
    ActiveStreamRegistry,
    ArtifactServer,
    ProxyEvictor,
    cache_control_for,
    content_type_for,
    parse_range_header,
)

SIZE = 1000


@pytest.fixture
def artifact(tmp_path):
    path = tmp_path / "segment_000.ts"
    path.write_bytes(bytes(range(256)) * 3 + bytes(SIZE - 768))
    return path


@pytest.fixture
def server():
    return ArtifactServer(ActiveStreamRegistry(), chunk_size=64)


def _collect(server, path, start, length, request=None):
    async def run():
        return [chunk async for chunk in server.iter_file(path, start, length, request)]
    return b"".join(asyncio.run(run()))


@pytest.mark.parametrize("header,expected", [
    ("bytes=0-99", (0, 99)),
    ("bytes=100-", (100, SIZE - 1)),
    ("bytes=999-999", (999, 999)),
    (" bytes=0-0 ", (0, 0)),
])
def test_parse_valid_ranges(header, expected):
    assert parse_range_header(header, SIZE) == expected


@pytest.mark.parametrize("header", [
    "bytes=-500",
    "bytes=0-10,20-30",
    "bytes=1000-",
    "bytes=500-100",
    "bytes=0-1000",
    "items=0-10",
    "bytes=abc",
    "",
])
def test_parse_unsatisfiable_ranges(header):
    with pytest.raises(RangeNotSatisfiableError) as exc_info:
        parse_range_header(header, SIZE)
    assert exc_info.value.file_size == SIZE


def test_content_types_and_cache_control(tmp_path):
    assert content_type_for(tmp_path / "master.m3u8") == "application/vnd.apple.mpegurl"
    assert content_type_for(tmp_path / "segment_000.TS") == "video/mp2t"
    assert content_type_for(tmp_path / "proxy.mp4") == "video/mp4"
    assert content_type_for(tmp_path / "notes.txt") == "application/octet-stream"
    assert cache_control_for(tmp_path / "playlist.m3u8") == "public, max-age=300"
    assert "immutable" in cache_control_for(tmp_path / "segment_000.ts")


def test_plan_full_file(server, artifact):
    plan = server.plan(artifact)
    assert plan.status_code == 200
    assert plan.headers["Content-Length"] == str(SIZE)
    assert plan.headers["Accept-Ranges"] == "bytes"
    assert "Content-Range" not in plan.headers


def test_plan_partial(server, artifact):
    plan = server.plan(artifact, "bytes=100-199")
    assert plan.status_code == 206
    assert plan.headers["Content-Range"] == f"bytes 100-199/{SIZE}"
    assert plan.headers["Content-Length"] == "100"


def test_plan_missing_file(server, tmp_path):
    with pytest.raises(ArtifactNotFoundError):
        server.plan(tmp_path / "missing.ts")


def test_plan_empty_file(server, tmp_path):
    empty = tmp_path / "empty.ts"
    empty.write_bytes(b"")
    plan = server.plan(empty)
    assert plan.status_code == 200
    assert plan.headers["Content-Length"] == "0"


def test_iter_file_yields_exact_range(server, artifact):
    data = _collect(server, artifact, 100, 150)
    assert data == artifact.read_bytes()[100:250]
    assert len(server.registry) == 0


class _DisconnectingRequest:
    """Reports a disconnect after the first chunk"""

    def __init__(self):
        self.checks = 0

    async def is_disconnected(self):
        self.checks += 1
        return self.checks > 1


def test_iter_file_stops_and_releases_on_disconnect(server, artifact):
    data = _collect(server, artifact, 0, SIZE, _DisconnectingRequest())
    assert data == artifact.read_bytes()[:64]
    assert not server.registry.is_active(artifact)


def test_registry_counts_concurrent_streams(artifact):
    registry = ActiveStreamRegistry()
    registry.acquire(artifact)
    with registry.streaming(artifact):
        assert registry.is_active(artifact)
    assert registry.is_active(artifact)
    registry.release(artifact)
    assert not registry.is_active(artifact)


def _drain(response):
    async def run():
        return b"".join([chunk async for chunk in response.body_iterator])
    return asyncio.run(run())


def test_serve_protects_file_from_eviction_before_first_read(server, tmp_path):
    proxy_dir = tmp_path / "proxy"
    proxy_dir.mkdir()
    proxy = proxy_dir / ("a" * 32 + ".mp4")
    proxy.write_bytes(b"\x00\x00\x00\x18ftypisom" + bytes(500))
    evictor = ProxyEvictor(proxy_dir, 0, server.registry)

    response = server.serve(proxy, "bytes=0-99")
    assert evictor.sweep(now=proxy.stat().st_mtime + 3600) == []
    assert proxy.exists()

    assert _drain(response) == proxy.read_bytes()[:100]
    assert not server.registry.is_active(proxy)
    assert evictor.sweep(now=proxy.stat().st_mtime + 3600) == [proxy]


def test_serve_releases_registration_when_planning_fails(server, artifact, tmp_path):
    with pytest.raises(ArtifactNotFoundError):
        server.serve(tmp_path / "missing.ts")
    with pytest.raises(RangeNotSatisfiableError):
        server.serve(artifact, "bytes=5000-")
    assert len(server.registry) == 0
