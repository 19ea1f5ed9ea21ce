import sys
import threading
from pathlib import Path

import pytest

from cliptr.src.clips import ClipExtractor
from cliptr.src.errors import (
    AlreadyInProgress,
    InvalidArgument,
    NotFound,
    PreconditionFailed,
    ProcessFailed,
)
from cliptr.src.models import Clip, SpeechSegment, Transcript
from cliptr.src.transcription import TranscriptionCoordinator, derive_clip_transcript

SESSION_SEGMENTS = [
    {"id": 0, "start": 0.0, "end": 10.0, "text": "Hello and welcome"},
    {"id": 1, "start": 55.0, "end": 65.0, "text": "the middle part"},
    {"id": 2, "start": 200.0, "end": 210.0, "text": "much later"},
]


@pytest.fixture
def coordinator(store, runner):
    return TranscriptionCoordinator(store, runner, engine_check=lambda: True)


def _status(coordinator, tid):
    return coordinator.get_transcription_status(tid)["status"]


def test_requires_exactly_one_target(coordinator):
    with pytest.raises(InvalidArgument):
        coordinator.start_transcription()
    with pytest.raises(InvalidArgument):
        coordinator.start_transcription(session_id="a", clip_id="b")


def test_unknown_targets(coordinator):
    with pytest.raises(NotFound):
        coordinator.start_transcription(session_id="0000000000000000")
    with pytest.raises(NotFound):
        coordinator.start_transcription(clip_id="0000000000000000")


def test_engine_missing(store, runner, make_session):
    session, _ = make_session()
    coordinator = TranscriptionCoordinator(store, runner, engine_check=lambda: False)

    with pytest.raises(PreconditionFailed) as exc:
        coordinator.start_transcription(session_id=session.session_id)

    assert exc.value.status_code == 503
    assert _status(coordinator, session.session_id) == "not_found"


def test_engine_check_uses_worker_interpreter(store, runner):
    coordinator = TranscriptionCoordinator(store, runner)
    runner.create_output = False

    assert coordinator.engine_available()
    assert runner.runs[-1] == [sys.executable, "-c", "import whisper, cliptr.src.engine"]

    runner.returncode = 1
    assert not coordinator.engine_available()


def test_language_is_passed_to_engine(store, runner, make_session):
    session, _ = make_session()
    coordinator = TranscriptionCoordinator(store, runner, language="de", engine_check=lambda: True)

    coordinator.start_transcription(session_id=session.session_id)

    assert runner.spawned[-1].option("--language") == "de"


def test_session_transcription_lifecycle(store, runner, coordinator, make_session):
    session, session_dir = make_session(segments=3)
    sid = session.session_id

    assert coordinator.start_transcription(session_id=sid) == sid

    running = coordinator.get_transcription_status(sid)
    assert running["status"] == "running"
    assert running["type"] == "session"

    extract = runner.runs[-1]
    assert extract[extract.index("-ar") + 1] == "16000"
    assert runner.concat_lists[-1].count("file '") == 3
    engine = runner.spawned[-1]
    assert engine.args[1:3] == ["-m", "cliptr.src.engine"]
    assert engine.option("--model") == "base"

    engine.write_transcript("Hello world", segments=SESSION_SEGMENTS)

    assert _status(coordinator, sid) == "completed"
    transcript = coordinator.get_transcript(sid)
    assert transcript.text == "Hello world"
    assert len(transcript.segments) == 3
    assert transcript.model == "base"

    transcripts_dir = session_dir / "transcripts"
    assert (transcripts_dir / f"{sid}_transcript.txt").read_text() == "Hello world"
    assert (transcripts_dir / f"{sid}_transcript_index.json").exists()
    assert not (transcripts_dir / f"{sid}_audio.wav").exists()
    assert not (transcripts_dir / f"{sid}_transcript.partial.json").exists()


def test_second_request_while_running(coordinator, make_session):
    session, _ = make_session()
    coordinator.start_transcription(session_id=session.session_id)

    with pytest.raises(AlreadyInProgress) as exc:
        coordinator.start_transcription(session_id=session.session_id)
    assert exc.value.status_code == 409


def test_start_while_previous_run_is_finishing(store, runner, coordinator, make_session, monkeypatch):
    session, _ = make_session()
    sid = session.session_id
    coordinator.start_transcription(session_id=sid)
    entered, proceed = threading.Event(), threading.Event()
    clear_failure = store.clear_transcription_failure

    def slow_clear(*args):
        entered.set()
        proceed.wait(5)
        clear_failure(*args)

    monkeypatch.setattr(store, "clear_transcription_failure", slow_clear)
    finisher = threading.Thread(target=runner.spawned[-1].write_transcript, args=("first run",))
    finisher.start()
    assert entered.wait(5)

    with pytest.raises(AlreadyInProgress):
        coordinator.start_transcription(session_id=sid)
    assert _status(coordinator, sid) == "running"

    proceed.set()
    finisher.join(5)
    assert _status(coordinator, sid) == "completed"
    assert coordinator.start_transcription(session_id=sid) == sid


def test_failed_rerun_keeps_previous_transcript(runner, coordinator, make_session):
    session, _ = make_session()
    sid = session.session_id
    coordinator.start_transcription(session_id=sid)
    runner.spawned[-1].write_transcript("first version")

    coordinator.start_transcription(session_id=sid)
    engine = runner.spawned[-1]
    engine.stderr = "CUDA out of memory"
    engine.finish(1)

    status = coordinator.get_transcription_status(sid)
    assert status["status"] == "failed"
    assert "CUDA out of memory" in status["error"]
    assert status["hasTranscript"] is True
    assert coordinator.get_transcript(sid).text == "first version"

    coordinator.start_transcription(session_id=sid)
    runner.spawned[-1].write_transcript("second version")
    assert _status(coordinator, sid) == "completed"
    assert coordinator.get_transcript(sid).text == "second version"


def test_unreadable_engine_output(runner, coordinator, make_session):
    session, _ = make_session()
    coordinator.start_transcription(session_id=session.session_id)

    runner.spawned[-1].finish(0)

    status = coordinator.get_transcription_status(session.session_id)
    assert status["status"] == "failed"
    assert "Could not read Whisper output" in status["error"]
    assert status["hasTranscript"] is False


def test_audio_extraction_failure_releases_the_id(runner, coordinator, make_session):
    session, _ = make_session()
    runner.returncode = 1
    runner.stderr = "No audio stream"

    with pytest.raises(ProcessFailed) as exc:
        coordinator.start_transcription(session_id=session.session_id)

    assert exc.value.diagnostics == "No audio stream"
    assert session.session_id not in coordinator.running
    assert _status(coordinator, session.session_id) == "failed"
    assert runner.spawned == []


def test_session_without_segments(coordinator, make_session):
    session, _ = make_session(segments=0)

    with pytest.raises(NotFound):
        coordinator.start_transcription(session_id=session.session_id)
    assert session.session_id not in coordinator.running


def test_keep_audio(store, runner, make_session):
    session, session_dir = make_session()
    coordinator = TranscriptionCoordinator(store, runner, keep_audio=True, engine_check=lambda: True)
    coordinator.start_transcription(session_id=session.session_id)
    runner.spawned[-1].write_transcript()

    assert (session_dir / "transcripts" / f"{session.session_id}_audio.wav").exists()


def test_clip_transcription(store, runner, coordinator, make_session):
    session, session_dir = make_session()
    clip = ClipExtractor(store, runner).create_clip(session.session_id, 0, 30)

    coordinator.start_transcription(clip_id=clip.clip_id)
    assert coordinator.get_transcription_status(clip.clip_id)["type"] == "clip"
    runner.spawned[-1].write_transcript("clip words")

    assert (session_dir / "transcripts" / f"{clip.clip_id}_transcript.json").exists()
    assert coordinator.get_clip_transcript(clip.clip_id).text == "clip words"


def test_clip_transcript_derived_from_session(store, runner, coordinator, make_session):
    session, _ = make_session()
    coordinator.start_transcription(session_id=session.session_id)
    runner.spawned[-1].write_transcript("whole session", segments=SESSION_SEGMENTS)
    extractor = ClipExtractor(store, runner)
    clip = extractor.create_clip(session.session_id, 50, 130)
    quiet = extractor.create_clip(session.session_id, 100, 150)

    derived = coordinator.get_clip_transcript(clip.clip_id)

    assert derived.text == "the middle part"
    assert [(s.start, s.end) for s in derived.segments] == [(55.0, 65.0)]
    with pytest.raises(NotFound):
        coordinator.get_clip_transcript(quiet.clip_id)


def test_derive_clip_transcript_keeps_session_times():
    session_transcript = Transcript(
        transcription_id="s",
        text="",
        segments=[SpeechSegment.from_dict(s) for s in SESSION_SEGMENTS],
        language="en",
    )
    clip = Clip("c", "s", "clip", 5.0, 60.0, str(Path("/x/clips/c.mp4")), "")

    derived = derive_clip_transcript(clip, session_transcript)

    assert derived.transcription_id == "c"
    assert [s.text for s in derived.segments] == ["Hello and welcome", "the middle part"]
    assert derived.segments[1].start == 55.0
    assert derived.language == "en"


def test_status_of_unknown_id(coordinator):
    assert _status(coordinator, "nope") == "not_found"
    with pytest.raises(NotFound):
        coordinator.get_transcript("nope")


def test_list_transcripts(store, runner, coordinator, make_session):
    session, _ = make_session(display_name="Radio")
    coordinator.start_transcription(session_id=session.session_id)
    runner.spawned[-1].write_transcript("on air", segments=[])

    [entry] = store.list_transcripts()

    assert entry["id"] == session.session_id
    assert entry["type"] == "session"
    assert entry["name"] == "Radio"
    assert entry["text"] == "on air"
