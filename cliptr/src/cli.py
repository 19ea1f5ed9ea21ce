"""
Command-line interface for cliptr.

Captures streams in the foreground, lists the library, cuts clips and runs
transcriptions without the web service.
"""

import logging
import os
import re
import sys
import time
from typing import Optional

import click

from .config import WHISPER_MODELS, Settings, check_ffmpeg
from .errors import CliptrError
from .models import TranscriptionStatus
from .services import build_services


def parse_duration(duration_str: str) -> float:
    """
    Parse a duration string into seconds.

    Supports plain seconds ("60", "90.5"), minutes ("5m"), hours ("1h") and
    combinations ("1h30m", "2h15m30s").

    Raises:
        ValueError: If the string cannot be parsed.
    """
    duration_str = duration_str.strip()

    try:
        return float(duration_str)
    except ValueError:
        pass

    pattern = r'(?:(\d+)h)?(?:(\d+)m)?(?:(\d+(?:\.\d+)?)s)?$'
    match = re.match(pattern, duration_str, re.IGNORECASE)

    if not match or not any(match.groups()):
        raise ValueError(
            f"Invalid duration format: '{duration_str}'. "
            f"Use seconds (60), minutes (5m), hours (1h), or combos (1h30m)."
        )

    hours = int(match.group(1) or 0)
    minutes = int(match.group(2) or 0)
    seconds = float(match.group(3) or 0)

    return hours * 3600 + minutes * 60 + seconds


def setup_logging():
    level = logging.DEBUG if os.environ.get("CLIPTR_DEBUG") == "1" else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def fail(message: str):
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(1)


@click.group()
@click.version_option(version="1.0.0", prog_name="cliptr")
@click.pass_context
def cli(ctx):
    """
    cliptr - Capture live streams, cut clips and transcribe them.

    \b
    Examples:
        cliptr serve
        cliptr capture https://example.com/live.m3u8 --name mystream -d 1h
        cliptr clip 3f2a9c0e1b7d4a55 120 185 --name highlight
        cliptr transcribe --clip 9e1c2b3a4d5f6e70
    """
    setup_logging()
    ctx.obj = Settings()


@cli.command()
def serve():
    """Run the HTTPS web service."""
    from web.run import main as run_server
    run_server()


@cli.command()
@click.argument("url")
@click.option("-n", "--name", default=None, help="Display name for the stream.")
@click.option("-d", "--duration", default=None, help="Stop after this long (e.g. '90', '5m', '1h30m').")
@click.option("--segment-duration", type=float, default=None, help="Seconds per segment.")
@click.option("--auto-transcribe", is_flag=True, help="Transcribe the session when capture ends.")
@click.pass_obj
def capture(settings: Settings, url: str, name: Optional[str], duration: Optional[str],
            segment_duration: Optional[float], auto_transcribe: bool):
    """Capture URL in the foreground. Ctrl+C stops gracefully."""
    if not check_ffmpeg(settings.ffmpeg_bin)["installed"]:
        fail("FFmpeg not found. Install it first (e.g. brew install ffmpeg).")

    duration_seconds = None
    if duration:
        try:
            duration_seconds = parse_duration(duration)
        except ValueError as e:
            fail(str(e))

    services = build_services(settings)
    options = {"segmentDuration": segment_duration} if segment_duration else None
    try:
        session_id = services.supervisor.start_capture(
            url, display_name=name, transcode_options=options
        )
    except CliptrError as e:
        fail(str(e))

    click.echo(f"Session:  {session_id}")
    click.echo(f"URL:      {url}")
    click.echo(f"Duration: {duration or 'until stream ends'}")
    click.echo("Press Ctrl+C to stop.")

    try:
        finished = services.supervisor.active.wait_released(session_id, duration_seconds)
        if not finished:
            click.echo("Duration reached, stopping capture...")
            services.supervisor.stop_capture(session_id)
    except CliptrError as e:
        fail(str(e))
    except KeyboardInterrupt:
        click.echo("\nStopping capture...")
        try:
            services.supervisor.stop_capture(session_id)
        except CliptrError as e:
            fail(str(e))

    status = services.supervisor.get_capture_status(session_id)
    color = "green" if status["status"] == "completed" else "red"
    click.echo(click.style(f"Capture {status['status']} (exit code {status['exitCode']})", fg=color))
    if auto_transcribe and status["status"] == "completed":
        try:
            services.coordinator.start_transcription(session_id=session_id)
        except CliptrError as e:
            fail(str(e))
        _wait_for_transcription(services, session_id)


@cli.command()
@click.pass_obj
def sessions(settings: Settings):
    """List captured sessions, newest first."""
    services = build_services(settings)
    captures = services.store.list_sessions()
    if not captures:
        click.echo("No sessions captured yet.")
        return
    for c in captures:
        name = c.get("displayName") or "-"
        click.echo(f"  {c['sessionId']}  {c['status']:9}  {c['displaySize']:>10}  {name:20}  {c['sourceUrl']}")


@cli.command()
@click.pass_obj
def clips(settings: Settings):
    """List clips, newest first."""
    services = build_services(settings)
    all_clips = services.store.list_clips()
    if not all_clips:
        click.echo("No clips yet.")
        return
    for c in all_clips:
        click.echo(f"  {c['clipId']}  {c['startTime']:>8g}-{c['endTime']:<8g}  {c['name']}")


@cli.command()
@click.argument("session_id")
@click.argument("start", type=float)
@click.argument("end", type=float)
@click.option("-n", "--name", default=None, help="Clip name.")
@click.option("--reencode", is_flag=True, help="Re-encode instead of stream copy.")
@click.pass_obj
def clip(settings: Settings, session_id: str, start: float, end: float, name: Optional[str], reencode: bool):
    """Cut START..END seconds out of SESSION_ID."""
    services = build_services(settings)
    try:
        result = services.clips.create_clip(session_id, start, end, name=name, reencode=reencode)
    except CliptrError as e:
        diagnostics = getattr(e, "diagnostics", "")
        fail(f"{e}\n{diagnostics}" if diagnostics else str(e))
    click.echo(click.style(f"Clip created: {result.clip_id}", fg="green"))
    click.echo(f"  {result.path}")


@cli.command()
@click.option("--session", "session_id", default=None, help="Session to transcribe.")
@click.option("--clip", "clip_id", default=None, help="Clip to transcribe.")
@click.option("-m", "--model", type=click.Choice(WHISPER_MODELS, case_sensitive=False), default=None,
              help="Whisper model. Overrides cliptr.conf setting.")
@click.pass_obj
def transcribe(settings: Settings, session_id: Optional[str], clip_id: Optional[str],
               model: Optional[str]):
    """Transcribe a session or a clip with Whisper and wait for the result."""
    if model:
        settings.update(whisper_model=model)
    services = build_services(settings)
    try:
        transcription_id = services.coordinator.start_transcription(session_id=session_id, clip_id=clip_id)
    except CliptrError as e:
        fail(str(e))
    click.echo(f"Transcription started: {transcription_id}")
    _wait_for_transcription(services, transcription_id)


def _wait_for_transcription(services, transcription_id: str):
    status = services.coordinator.get_transcription_status(transcription_id)
    while status["status"] == TranscriptionStatus.RUNNING.value:
        time.sleep(2)
        status = services.coordinator.get_transcription_status(transcription_id)
    if status["status"] == TranscriptionStatus.COMPLETED.value:
        transcript = services.coordinator.get_transcript(transcription_id)
        click.echo(click.style("Transcription complete!", fg="green", bold=True))
        click.echo(f"  Language: {transcript.language or 'unknown'}")
        click.echo(f"  Words:    {transcript.word_count:,}")
        click.echo(f"  Segments: {len(transcript.segments)}")
    else:
        fail(status.get("error") or f"Transcription {status['status']}")


@cli.command()
@click.option("--favorites", is_flag=True, help="Only show favorites.")
@click.pass_obj
def history(settings: Settings, favorites: bool):
    """List previously captured URLs, most recently used first."""
    services = build_services(settings)
    entries = services.store.get_history()
    if favorites:
        entries = [e for e in entries if e["isFavorite"]]
    if not entries:
        click.echo("No history.")
        return
    for e in entries:
        star = "*" if e["isFavorite"] else " "
        click.echo(f"  {star} {e['useCount']:>3}x  {e['lastUsed']}  {e.get('displayName') or '-':20}  {e['url']}")


if __name__ == "__main__":
    cli()
