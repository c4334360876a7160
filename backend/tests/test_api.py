from conftest import MP4_BYTES, OWNER
from constants import JobKinds, JobStates, NotificationEvents
from domain.value_objects import CachePolicy


def _publish_cache(file_store, cache_path, manifest="playlist.m3u8", owner=OWNER):
    directory = file_store.make_dirs(owner, cache_path)
    (directory / manifest).write_text("#EXTM3U\n#EXT-X-VERSION:3\n#EXT-X-ENDLIST\n")
    (directory / "segment_000.ts").write_bytes(bytes(range(256)) * 4)
    return directory


def test_health(client):
    assert client.get("/api/health").json()["status"] == "ok"


def test_owner_header_required(client):
    response = client.get("/api/cache/check", params={"path": "/a.mp4"}, headers={"X-User-Id": ""})
    assert response.status_code == 401


def test_invalid_owner_rejected(client):
    response = client.get("/api/cache/check", params={"path": "/a.mp4"}, headers={"X-User-Id": "../bob"})
    assert response.status_code == 400


# ---------------------------------------------------------------------------
# Generation and progress
# ---------------------------------------------------------------------------

def test_generate_queues_batch(client, services, write_video):
    write_video("/Movies/a.mp4")
    write_video("/Movies/b.mp4")

    response = client.post("/api/cache/generate", json={
        "files": ["/Movies/a.mp4", {"filename": "b.mp4", "directory": "/Movies"}],
        "policy": {"location": "home", "resolutions": ["480p"]},
    })

    assert response.status_code == 202
    body = response.json()
    assert len(body["jobs"]) == 2
    assert body["skipped"] == []

    progress = client.get("/api/cache/progress", params={"job_id": body["batch_id"]}).json()
    assert progress["status"] == "queued"
    assert progress["total"] == 2
    assert {f["job_id"] for f in progress["files"]} == {j["job_id"] for j in body["jobs"]}


def test_generate_same_file_twice_is_skipped(client, write_video):
    write_video("/Movies/a.mp4")
    client.post("/api/cache/generate", json={"files": ["/Movies/a.mp4"]})
    body = client.post("/api/cache/generate", json={"files": ["/Movies/a.mp4"]}).json()
    assert body["jobs"] == []
    assert body["skipped"][0]["reason"] == "already queued"


def test_generate_missing_file(client):
    response = client.post("/api/cache/generate", json={"files": ["/Movies/missing.mp4"]})
    assert response.status_code == 404


def test_generate_custom_location_requires_path(client, write_video):
    write_video("/Movies/a.mp4")
    response = client.post("/api/cache/generate", json={
        "files": ["/Movies/a.mp4"],
        "policy": {"location": "custom"},
    })
    assert response.status_code == 400


def test_generate_rejects_unknown_resolution(client, write_video):
    write_video("/Movies/a.mp4")
    response = client.post("/api/cache/generate", json={
        "files": ["/Movies/a.mp4"],
        "policy": {"resolutions": ["8k"]},
    })
    assert response.status_code == 422


def test_progress_by_cache_key(client, services, write_video):
    source = write_video("/Movies/a.mp4")

    assert client.get(f"/api/cache/progress/{source.cache_key}").json()["status"] == "not_found"

    services.executor.generate_hls(source, CachePolicy())
    body = client.get(f"/api/cache/progress/{source.cache_key}").json()
    assert body["status"] == "completed"
    assert body["progress"] == 100.0


def test_progress_of_other_owner_is_hidden(client, services, write_video):
    source = write_video("/Movies/a.mp4", owner="bob")
    services.executor.generate_hls(source, CachePolicy())
    url = f"/api/cache/progress/{source.cache_key}"

    assert client.get(url, headers={"X-User-Id": "bob"}).json()["status"] == "completed"
    assert client.get(url).json()["status"] == "not_found"


def test_progress_rejects_malformed_key(client):
    assert client.get("/api/cache/progress/not-a-key").status_code == 400


def test_batch_progress_unknown(client):
    assert client.get("/api/cache/progress", params={"job_id": "nope"}).status_code == 404


# ---------------------------------------------------------------------------
# Cache lookup and HLS serving
# ---------------------------------------------------------------------------

def test_check_without_cache(client, write_video):
    source = write_video("/Movies/clip.mp4")
    body = client.get("/api/cache/check", params={"path": "/Movies/clip.mp4"}).json()
    assert body == {"path": "/Movies/clip.mp4", "cache_key": source.cache_key, "exists": False, "artifact": None}


def test_check_finds_hls_cache(client, file_store, write_video):
    write_video("/Movies/clip.mp4")
    _publish_cache(file_store, "/Movies/.cached_hls/clip", "master.m3u8")

    body = client.get("/api/cache/check", params={"path": "/Movies/clip.mp4"}).json()

    assert body["exists"] is True
    assert body["artifact"]["kind"] == "hls"
    assert body["artifact"]["stream_url"] == "/api/cache/hls/Movies/.cached_hls/clip/master.m3u8"


def test_check_uses_registered_cache_locations(client, file_store, write_video):
    write_video("/Movies/clip.mp4")
    _publish_cache(file_store, "/Archive/.cached_hls/clip")

    assert client.get("/api/cache/check", params={"path": "/Movies/clip.mp4"}).json()["exists"] is False

    response = client.put("/api/settings/cache-locations", json={"locations": ["/Archive", "/Archive", " "]})
    assert response.json() == {"locations": ["/Archive"]}

    body = client.get("/api/cache/check", params={"path": "/Movies/clip.mp4"}).json()
    assert body["artifact"]["manifest_path"] == "/Archive/.cached_hls/clip/playlist.m3u8"


def test_serve_manifest(client, file_store):
    _publish_cache(file_store, "/Movies/.cached_hls/clip")

    response = client.get("/api/cache/hls/Movies/.cached_hls/clip/playlist.m3u8")

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/vnd.apple.mpegurl"
    assert response.headers["cache-control"] == "public, max-age=300"
    assert response.text.startswith("#EXTM3U")


def test_serve_segment_range(client, file_store):
    directory = _publish_cache(file_store, "/Movies/.cached_hls/clip")

    response = client.get("/api/cache/hls/Movies/.cached_hls/clip/segment_000.ts",
                          headers={"Range": "bytes=10-19"})

    assert response.status_code == 206
    assert response.headers["content-range"] == "bytes 10-19/1024"
    assert response.headers["content-length"] == "10"
    assert response.content == (directory / "segment_000.ts").read_bytes()[10:20]


def test_serve_unsatisfiable_range(client, file_store):
    _publish_cache(file_store, "/Movies/.cached_hls/clip")

    response = client.get("/api/cache/hls/Movies/.cached_hls/clip/segment_000.ts",
                          headers={"Range": "bytes=5000-"})

    assert response.status_code == 416
    assert response.headers["content-range"] == "bytes */1024"


def test_serve_refuses_files_outside_cache_dirs(client, file_store, write_video):
    write_video("/Movies/clip.mp4")
    _publish_cache(file_store, "/Movies/.cached_hls/clip", ".playlist.m3u8.partial")

    assert client.get("/api/cache/hls/Movies/clip.mp4").status_code == 404
    assert client.get("/api/cache/hls/Movies/.cached_hls/clip/.playlist.m3u8.partial").status_code == 404
    assert client.get("/api/cache/hls/Movies/.cached_hls/clip/missing.ts").status_code == 404


def test_serve_is_scoped_to_owner(client, file_store):
    _publish_cache(file_store, "/Movies/.cached_hls/clip", owner="bob")
    assert client.get("/api/cache/hls/Movies/.cached_hls/clip/playlist.m3u8").status_code == 404


def test_discover_lists_cache_state(client, file_store, write_video):
    write_video("/Movies/a.mp4")
    write_video("/Movies/b.mp4")
    _publish_cache(file_store, "/Movies/.cached_hls/a")

    body = client.get("/api/cache/discover", params={"directory": "/Movies"}).json()

    state = {video["path"]: video["has_cache"] for video in body["videos"]}
    assert state == {"/Movies/a.mp4": True, "/Movies/b.mp4": False}


# ---------------------------------------------------------------------------
# Proxy
# ---------------------------------------------------------------------------

def test_proxy_then_stream(client, runner, write_video):
    source = write_video("/Movies/clip.mp4")

    body = client.post("/api/transcode/proxy", json={"path": "/Movies/clip.mp4"}).json()
    assert body["kind"] == "proxy"
    assert body["stream_url"] == f"/api/transcode/proxy-stream/{source.cache_key}"

    client.post("/api/transcode/proxy", json={"path": "/Movies/clip.mp4"})
    assert runner.spawn_count == 1

    full = client.get(body["stream_url"])
    assert full.status_code == 200
    assert full.headers["content-type"] == "video/mp4"
    assert full.content == MP4_BYTES

    partial = client.get(body["stream_url"], headers={"Range": "bytes=0-9"})
    assert partial.status_code == 206
    assert partial.content == MP4_BYTES[:10]


def test_proxy_failure_returns_diagnostics(client, runner, write_video):
    write_video("/Movies/clip.mp4")
    runner.returncode = 1
    runner.stderr_tail = "Unknown encoder 'libx264'"

    response = client.post("/api/transcode/proxy", json={"path": "/Movies/clip.mp4"})

    assert response.status_code == 500
    assert "Unknown encoder" in response.json()["detail"]["output_tail"]


def test_proxy_stream_unknown_key(client):
    assert client.get("/api/transcode/proxy-stream/" + "e" * 32).status_code == 404
    assert client.get("/api/transcode/proxy-stream/bad").status_code == 400


def test_proxy_stream_of_other_owner_is_hidden(client, write_video):
    source = write_video("/Movies/clip.mp4", owner="bob")
    stream_url = client.post("/api/transcode/proxy", json={"path": "/Movies/clip.mp4"},
                             headers={"X-User-Id": "bob"}).json()["stream_url"]

    assert client.get(stream_url, headers={"X-User-Id": "bob"}).status_code == 200
    assert client.get(stream_url).status_code == 404
    assert source.cache_key in stream_url


def test_transcoder_status(client):
    body = client.get("/api/transcode/status").json()
    assert body["active_processes"] == []
    assert body["active_streams"] == 0
    assert "by_state" in body["queue"]


# ---------------------------------------------------------------------------
# Watches
# ---------------------------------------------------------------------------

def test_watch_lifecycle(client, write_video):
    write_video("/Shows/a.mp4")

    created = client.post("/api/watches", json={"directory": "Shows/", "policy": {"location": "home"}})
    assert created.status_code == 201
    watch = created.json()
    assert watch["directory"] == "/Shows"
    assert watch["cache_location"] == "home"
    assert watch["enabled"] is True

    assert [w["id"] for w in client.get("/api/watches").json()] == [watch["id"]]

    scan = client.post("/api/watches/scan").json()
    assert scan["jobs_enqueued"] == 1

    disabled = client.post(f"/api/watches/{watch['id']}/disable").json()
    assert disabled["enabled"] is False

    assert client.delete(f"/api/watches/{watch['id']}").status_code == 204
    assert client.get("/api/watches").json() == []


def test_watch_missing_directory(client):
    assert client.post("/api/watches", json={"directory": "/Nope"}).status_code == 404


def test_watch_of_other_owner_is_hidden(client, write_video):
    write_video("/Shows/a.mp4", owner="bob")
    created = client.post("/api/watches", json={"directory": "/Shows"}, headers={"X-User-Id": "bob"}).json()
    assert client.post(f"/api/watches/{created['id']}/disable").status_code == 404


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

def test_job_retry(client, services, write_video):
    write_video("/Movies/a.mp4")
    batch = client.post("/api/cache/generate", json={"files": ["/Movies/a.mp4"]}).json()
    job_id = batch["jobs"][0]["job_id"]

    assert client.post(f"/api/jobs/{job_id}/retry").status_code == 400

    claimed = services.queue.claim_next(JobKinds.HLS_GENERATE)
    services.queue.fail(claimed.id, "boom", "PROCESSING_ERROR")

    retried = client.post(f"/api/jobs/{job_id}/retry").json()
    assert retried["id"] != job_id
    assert retried["retries"] == 1
    assert retried["batch_id"] == batch["batch_id"]
    assert retried["state"] == JobStates.QUEUED

    progress = client.get(f"/api/cache/progress/{retried['cache_key']}").json()
    assert progress["status"] == "queued"
    assert progress["job_id"] == retried["id"]

    jobs = client.get("/api/jobs", params={"state": JobStates.FAILED}).json()
    assert [job["id"] for job in jobs] == [job_id]


def test_job_of_other_owner_is_hidden(client, services):
    job = services.queue.enqueue(JobKinds.HLS_GENERATE, {"path": "/a.mp4"}, "bob", "f" * 32)
    assert client.get(f"/api/jobs/{job.id}").status_code == 404
    assert client.get(f"/api/jobs/{job.id}", headers={"X-User-Id": "bob"}).status_code == 200


# ---------------------------------------------------------------------------
# Clips, settings, notifications
# ---------------------------------------------------------------------------

def test_clip_export(client, runner, write_video):
    write_video("/Movies/holiday.mp4")
    runner.output_content = b"clip bytes"

    response = client.post("/api/clips/export", json={"path": "/Movies/holiday.mp4", "start": 1.5, "end": 4})

    assert response.status_code == 200
    assert response.json()["path"] == "/Movies/clips/holiday_clip_1-4.mp4"


def test_clip_export_validates_range(client):
    response = client.post("/api/clips/export", json={"path": "/Movies/holiday.mp4", "start": 5, "end": 2})
    assert response.status_code == 422


def test_pause_setting(client):
    assert client.get("/api/settings").json() == {"pause_processing": False, "watch_enabled": True}
    assert client.put("/api/settings/pause", json={"paused": True}).json() == {"paused": True}
    assert client.get("/api/settings").json()["pause_processing"] is True


def test_cache_location_must_be_valid(client):
    response = client.put("/api/settings/cache-locations", json={"locations": ["/bad\x00path"]})
    assert response.status_code == 400


def test_notifications(client, services):
    services.notifier.notify(OWNER, NotificationEvents.CACHE_GENERATED, "/Movies/a.mp4", {"cache_key": "k"})
    services.notifier.notify("bob", NotificationEvents.CACHE_GENERATED, "/Movies/b.mp4")

    notifications = client.get("/api/notifications").json()
    assert len(notifications) == 1
    assert notifications[0]["payload"] == {"cache_key": "k"}

    assert client.post("/api/notifications/read", json={}).json() == {"updated": 1}
    assert client.get("/api/notifications", params={"unread_only": True}).json() == []
