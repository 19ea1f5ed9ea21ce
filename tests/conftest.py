import json
import subprocess
from concurrent.futures import Executor, Future
from pathlib import Path

import pytest

from cliptr.src.errors import ProcessFailed
from cliptr.src.metadata import FileMetadataStore
from cliptr.src.models import SessionStatus
from cliptr.src.segments import MANIFEST_NAME


class FakeProcess:
    """Stands in for ManagedProcess; the test decides when it exits."""

    def __init__(self, args, log_path=None):
        self.args = list(args)
        self.log_path = log_path
        self.done = Future()
        self.pid = 4242
        self.ignore_terminate = False
        self.terminated = False
        self.killed = False
        self.stderr = ""

    @property
    def running(self):
        return not self.done.done()

    def finish(self, code=0):
        if not self.done.done():
            self.done.set_result(code)

    def terminate(self):
        self.terminated = True
        if not self.ignore_terminate:
            self.finish(255)

    def kill(self):
        self.killed = True
        self.finish(-9)

    def stderr_tail(self):
        return self.stderr

    def option(self, flag):
        return self.args[self.args.index(flag) + 1]

    def write_transcript(self, text="hello world", segments=None, language="en"):
        """Write engine output the way ``cliptr.src.engine`` does, then exit 0."""
        segments = segments if segments is not None else [{"id": 0, "start": 0.0, "end": 2.5, "text": text}]
        Path(self.option("--output")).write_text(json.dumps({
            "text": text,
            "segments": segments,
            "language": language,
            "model": self.option("--model"),
        }))
        self.finish(0)


class FakeRunner:
    """Records commands instead of running FFmpeg or Whisper."""

    def __init__(self):
        self.spawned = []
        self.runs = []
        self.concat_lists = []
        self.spawn_error = None
        self.returncode = 0
        self.stderr = ""
        self.create_output = True
        self.output_bytes = b"\x00" * 64

    def spawn(self, args, log_path=None):
        if self.spawn_error is not None:
            raise self.spawn_error
        process = FakeProcess(args, log_path)
        self.spawned.append(process)
        return process

    def run(self, args, timeout=None):
        args = [str(a) for a in args]
        self.runs.append(args)
        if "concat" in args:
            self.concat_lists.append(Path(args[args.index("-i") + 1]).read_text())
        if self.create_output:
            Path(args[-1]).write_bytes(self.output_bytes)
        return subprocess.CompletedProcess(args, self.returncode, stdout="", stderr=self.stderr)


class InlineExecutor(Executor):
    """Runs submitted work immediately on the calling thread."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


def add_segments(session_dir, count, manifest=True):
    """Create ``count`` segment files (and FFmpeg's bare-name manifest)."""
    segments_dir = Path(session_dir) / "segments"
    segments_dir.mkdir(parents=True, exist_ok=True)
    names = []
    for index in range(count):
        name = f"segment_{index:03d}.ts"
        (segments_dir / name).write_bytes(b"ts" * 16)
        names.append(name)
    if manifest:
        (segments_dir / MANIFEST_NAME).write_text("\n".join(names) + "\n")
    return [segments_dir / n for n in names]


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def store(tmp_path):
    return FileMetadataStore(tmp_path / "library", tmp_path / "data")


@pytest.fixture
def make_session(store):
    """Create a finished session with ``segments`` segment files."""

    def _make(segments=5, display_name="streamer", source_url="https://example.com/live.m3u8",
              segment_duration=60):
        session_id = store.allocate_id()
        session, session_dir = store.create_session(
            session_id, source_url, display_name=display_name, segment_duration=segment_duration
        )
        add_segments(session_dir, segments)
        session = store.update_session(session_id, status=SessionStatus.COMPLETED)
        return session, session_dir

    return _make


@pytest.fixture
def spawn_failure():
    return ProcessFailed("Could not launch ffmpeg: not found")
