import configparser
import sys

import pytest
from fastapi.testclient import TestClient

from cliptr.src.config import Settings
from web.app import create_app
from web.routes.capture_routes import read_log_from

from conftest import add_segments

URL = "https://cdn.example.com/live/index.m3u8"


@pytest.fixture
def settings(tmp_path):
    settings = Settings(tmp_path / "cliptr.conf")
    settings.library_dir = str(tmp_path / "library")
    settings.data_dir = str(tmp_path / "data")
    return settings


@pytest.fixture
def client(settings, runner):
    app = create_app(settings, runner=runner, engine_check=lambda: True, check_streams=False)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def services(client):
    return client.app.state.services


@pytest.fixture
def session_id(services):
    session_id = services.supervisor.start_capture(URL, display_name="api")
    add_segments(services.store.session_dir(session_id), 5)
    services.supervisor.stop_capture(session_id)
    return session_id


def _clip(client, session_id, start=50, end=130):
    response = client.post("/media/clips/create", json={
        "sessionId": session_id, "startTime": start, "endTime": end,
    })
    assert response.status_code == 200, response.text
    return response.json()["clipId"]


# --- Capture ---


def test_capture_lifecycle(client, runner):
    response = client.post("/capture/start", json={"sourceUrl": URL, "displayName": "live"})
    assert response.status_code == 200
    session_id = response.json()["sessionId"]

    status = client.get("/capture/status").json()
    assert status["count"] == 1
    assert status["activeCaptures"][0]["sessionId"] == session_id
    assert client.get(f"/capture/{session_id}/status").json()["status"] == "active"

    assert client.post("/capture/stop", json={"sessionId": session_id}).json() == {"success": True}
    assert client.get(f"/capture/{session_id}/status").json()["status"] == "completed"
    assert client.get("/capture/status").json()["count"] == 0
    assert "Starting capture" in client.get(f"/capture/{session_id}/logs").json()["logs"]


def test_capture_errors(client):
    response = client.post("/capture/start", json={})
    assert response.status_code == 400
    assert "error" in response.json()

    assert client.post("/capture/stop", json={}).status_code == 400
    assert client.post("/capture/stop", json={"sessionId": "0000000000000000"}).status_code == 404
    assert client.get("/capture/0000000000000000/status").status_code == 404


def test_capture_spawn_failure(client, runner, spawn_failure):
    runner.spawn_error = spawn_failure

    response = client.post("/capture/start", json={"sourceUrl": URL})

    assert response.status_code == 500
    assert "Could not launch ffmpeg" in response.json()["error"]


def test_log_tail_reads_only_new_text(tmp_path):
    log_path = tmp_path / "capture_logs.txt"
    assert read_log_from(log_path, 0) == ("", 0)

    log_path.write_text("[INFO] one\n")
    chunk, position = read_log_from(log_path, 0)
    assert chunk == "[INFO] one\n"

    with open(log_path, "a") as f:
        f.write("[INFO] two\n")
    chunk, position = read_log_from(log_path, position)
    assert chunk == "[INFO] two\n"
    assert read_log_from(log_path, position)[0] == ""


# --- Captures library ---


def test_captures_patch_and_delete(client, session_id):
    [capture] = client.get("/media/captures").json()
    assert capture["sessionId"] == session_id
    assert capture["status"] == "completed"

    patched = client.patch(f"/media/captures/{session_id}", json={"notes": "keep"})
    assert patched.json()["notes"] == "keep"
    assert client.patch(f"/media/captures/{session_id}", json={"status": "failed"}).status_code == 400

    assert client.delete(f"/media/captures/{session_id}").json() == {"success": True}
    assert client.get("/media/captures").json() == []
    assert client.delete(f"/media/captures/{session_id}").status_code == 404


# --- Clips ---


def test_clip_create_and_fetch(client, session_id):
    clip_id = _clip(client, session_id)

    clip = client.get(f"/media/clips/{clip_id}").json()
    assert clip["sessionId"] == session_id
    assert clip["duration"] == 80
    assert [c["clipId"] for c in client.get("/media/clips").json()] == [clip_id]

    download = client.get(f"/media/clips/{clip_id}/download")
    assert download.status_code == 200
    assert "attachment" in download.headers["content-disposition"]


def test_clip_range_errors(client, session_id):
    beyond = client.post("/media/clips/create", json={"sessionId": session_id, "startTime": 400, "endTime": 450})
    assert beyond.status_code == 416
    assert "error" in beyond.json()

    backwards = client.post("/media/clips/create", json={"sessionId": session_id, "startTime": 30, "endTime": 10})
    assert backwards.status_code == 400

    missing = client.post("/media/clips/create", json={"sessionId": session_id})
    assert missing.status_code == 400

    unknown = client.post("/media/clips/create", json={"sessionId": "0000000000000000", "startTime": 0, "endTime": 5})
    assert unknown.status_code == 404

    infinite = client.post(
        "/media/clips/create",
        content=f'{{"sessionId": "{session_id}", "startTime": 0, "endTime": Infinity}}',
        headers={"Content-Type": "application/json"},
    )
    assert infinite.status_code == 400
    assert client.get("/media/clips").json() == []


def test_clip_extraction_failure_reports_diagnostics(client, runner, session_id):
    runner.returncode = 1
    runner.stderr = "moov atom not found"

    response = client.post("/media/clips/create", json={"sessionId": session_id, "startTime": 0, "endTime": 5})

    assert response.status_code == 500
    assert response.json()["diagnostics"] == "moov atom not found"
    assert client.get("/media/clips").json() == []


def test_clip_streaming_ranges(client, runner, session_id):
    runner.output_bytes = bytes(range(100))
    clip_id = _clip(client, session_id)

    full = client.get(f"/media/clips/stream/{clip_id}")
    assert full.status_code == 200
    assert full.content == bytes(range(100))
    assert full.headers["accept-ranges"] == "bytes"

    partial = client.get(f"/media/clips/stream/{clip_id}", headers={"Range": "bytes=10-19"})
    assert partial.status_code == 206
    assert partial.headers["content-range"] == "bytes 10-19/100"
    assert partial.content == bytes(range(10, 20))

    suffix = client.get(f"/media/clips/stream/{clip_id}", headers={"Range": "bytes=-5"})
    assert suffix.status_code == 206
    assert suffix.content == bytes(range(95, 100))

    open_ended = client.get(f"/media/clips/stream/{clip_id}", headers={"Range": "bytes=90-"})
    assert open_ended.headers["content-range"] == "bytes 90-99/100"

    unsatisfiable = client.get(f"/media/clips/stream/{clip_id}", headers={"Range": "bytes=200-300"})
    assert unsatisfiable.status_code == 416
    assert unsatisfiable.headers["content-range"] == "bytes */100"


# --- Background jobs ---


def test_compilation_job(client, session_id):
    first = _clip(client, session_id, 0, 30)
    second = _clip(client, session_id, 60, 90)

    response = client.post("/media/compilations/create", json={"clipIds": [first, second], "name": "best of"})
    job_id = response.json()["jobId"]
    assert client.app.state.job_manager.get_job(job_id).wait(5)

    job = client.get(f"/media/jobs/{job_id}").json()
    assert job["status"] == "completed"
    assert job["result"]["clipIds"] == [first, second]
    assert job["result"]["duration"] == 60


def test_compilation_validation(client):
    assert client.post("/media/compilations/create", json={"clipIds": []}).status_code == 400
    assert client.post("/media/compilations/create", json={"clipIds": ["0000000000000000"]}).status_code == 404
    assert client.get("/media/jobs/nope").status_code == 404


def test_export_job_failure(client, runner, session_id):
    runner.returncode = 1
    runner.stderr = "disk full"

    job_id = client.post(f"/media/captures/{session_id}/export").json()["jobId"]
    assert client.app.state.job_manager.get_job(job_id).wait(5)

    job = client.get(f"/media/jobs/{job_id}").json()
    assert job["status"] == "failed"
    assert job["diagnostics"] == "disk full"


def test_history_and_favorites(client, session_id):
    [entry] = client.get("/media/history").json()
    assert entry["url"] == URL

    assert client.post("/media/history/favorite", json={"url": URL, "isFavorite": True}).json()["isFavorite"]
    assert client.post("/media/history/favorite", json={"url": "https://nope.example"}).status_code == 404


# --- Transcription ---


def test_transcription_flow(client, runner, session_id):
    assert client.post("/transcription/start", json={}).status_code == 400

    started = client.post("/transcription/start", json={"sessionId": session_id})
    assert started.json() == {"transcriptionId": session_id}
    assert client.post("/transcription/start", json={"sessionId": session_id}).status_code == 409
    assert client.get(f"/transcription/status/{session_id}").json()["status"] == "running"
    assert client.get(f"/transcription/{session_id}").status_code == 404

    runner.spawned[-1].write_transcript("hello from the api")

    assert client.get(f"/transcription/status/{session_id}").json()["status"] == "completed"
    assert client.get(f"/transcription/{session_id}").json()["text"] == "hello from the api"
    assert [t["id"] for t in client.get("/transcription/all").json()] == [session_id]

    clip_id = _clip(client, session_id, 0, 2)
    assert client.get(f"/transcription/clip/{clip_id}").json()["text"] == "hello from the api"

    results = client.post("/search/transcripts", json={"query": "API"}).json()
    assert results["count"] == 1


def test_transcription_without_engine(settings, runner, tmp_path):
    app = create_app(settings, runner=runner, engine_check=lambda: False, check_streams=False)
    with TestClient(app) as client:
        session_id = client.app.state.services.supervisor.start_capture(URL)
        client.app.state.services.supervisor.stop_capture(session_id)

        response = client.post("/transcription/start", json={"sessionId": session_id})

        assert response.status_code == 503
        assert client.get("/config/whisper/status").json()["installed"] is False


# --- Search ---


def test_search_validation(client):
    assert client.post("/search/transcripts", json={"query": ""}).status_code == 400
    assert client.post("/search/media", json={}).status_code == 400
    bad_date = client.post("/search/media", json={"query": "x", "filters": {"startDate": "soon"}})
    assert bad_date.status_code == 400


def test_media_search(client, session_id):
    results = client.post("/search/media", json={"query": "api", "filters": {"type": "capture"}}).json()
    assert [r["sessionId"] for r in results["results"]] == [session_id]


# --- Config ---


def test_config(client, settings):
    config = client.get("/config").json()
    assert config["whisper_model"] == "base"

    response = client.post("/config", json={"whisper_model": "small", "stop_timeout": "10"})
    assert response.status_code == 200
    assert response.json()["restartRequired"] is False
    assert client.app.state.services.coordinator.model == "small"
    assert client.app.state.services.supervisor.stop_timeout == 10.0

    client.post("/config", json={"whisper_language": "fr"})
    assert client.app.state.services.coordinator.language == "fr"
    assert config["python_bin"] == ""
    assert client.app.state.services.coordinator.python_bin == sys.executable

    saved = configparser.ConfigParser()
    saved.read(settings.path)
    assert saved.get("Whisper", "model") == "small"

    assert client.post("/config", json={"port": 8443}).json()["restartRequired"] is True
    assert client.post("/config", json={"bogus": 1}).status_code == 400
    assert client.post("/config", json={"whisper_model": "gigantic"}).status_code == 400
    assert client.post("/config", json={"segment_duration": 0}).status_code == 400
    assert client.post("/config", json={"segment_duration": "nan"}).status_code == 400
    assert client.post("/config", json={"stop_timeout": "inf"}).status_code == 400
    assert "installed" in client.get("/config/ffmpeg/status").json()
