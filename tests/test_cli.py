import pytest
from click.testing import CliRunner

from cliptr.src.cli import cli, parse_duration
from cliptr.src.metadata import FileMetadataStore


@pytest.mark.parametrize("text,seconds", [
    ("60", 60),
    ("90.5", 90.5),
    ("5m", 300),
    ("1h", 3600),
    ("1h30m", 5400),
    ("2h15m30s", 8130),
    ("45s", 45),
])
def test_parse_duration(text, seconds):
    assert parse_duration(text) == seconds


@pytest.mark.parametrize("text", ["", "soon", "5x", "m5"])
def test_parse_duration_rejects_garbage(text):
    with pytest.raises(ValueError):
        parse_duration(text)


@pytest.fixture
def env(tmp_path, monkeypatch):
    monkeypatch.setenv("CLIPTR_CONF", str(tmp_path / "cliptr.conf"))
    monkeypatch.setenv("CLIPTR_LIBRARY_DIR", str(tmp_path / "library"))
    monkeypatch.setenv("CLIPTR_DATA_DIR", str(tmp_path / "data"))
    return FileMetadataStore(tmp_path / "library", tmp_path / "data")


def test_empty_library(env):
    result = CliRunner().invoke(cli, ["sessions"])

    assert result.exit_code == 0
    assert "No sessions captured yet." in result.output


def test_sessions_and_history(env):
    env.create_session("0123456789abcdef", "https://example.com/live.m3u8", display_name="late show")
    env.record_history("https://example.com/live.m3u8", "late show")
    runner = CliRunner()

    sessions = runner.invoke(cli, ["sessions"])
    assert "0123456789abcdef" in sessions.output
    assert "late show" in sessions.output

    history = runner.invoke(cli, ["history", "--favorites"])
    assert "No history." in history.output
    env.set_favorite("https://example.com/live.m3u8", True)
    history = runner.invoke(cli, ["history", "--favorites"])
    assert "https://example.com/live.m3u8" in history.output


def test_clip_unknown_session(env):
    result = CliRunner().invoke(cli, ["clip", "0000000000000000", "0", "10"])

    assert result.exit_code == 1
    assert "Session not found" in result.output


def test_transcribe_needs_a_target(env):
    result = CliRunner().invoke(cli, ["transcribe"])

    assert result.exit_code == 1
    assert "Exactly one of sessionId or clipId" in result.output
