"""Wire the cliptr components together from Settings."""

import sys
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Optional

from .capture import CaptureSupervisor
from .clips import ClipExtractor
from .config import Settings
from .export import MediaExporter
from .metadata import FileMetadataStore
from .models import TranscodeOptions
from .process import ProcessRunner
from .search import SearchService
from .stream_status import StreamStatusChecker
from .transcription import TranscriptionCoordinator


@dataclass
class Services:
    store: FileMetadataStore
    supervisor: CaptureSupervisor
    clips: ClipExtractor
    exporter: MediaExporter
    coordinator: TranscriptionCoordinator
    search: SearchService
    stream_status: StreamStatusChecker


def build_services(settings: Settings, runner: Optional[ProcessRunner] = None,
                   executor: Optional[Executor] = None, engine_check=None) -> Services:
    runner = runner or ProcessRunner()
    store = FileMetadataStore(settings.library_dir, settings.data_dir)
    coordinator = TranscriptionCoordinator(
        store,
        runner,
        ffmpeg_bin=settings.ffmpeg_bin,
        python_bin=settings.python_bin,
        model=settings.whisper_model,
        language=settings.whisper_language or None,
        keep_audio=settings.keep_audio,
        engine_check=engine_check,
    )
    supervisor = CaptureSupervisor(
        store,
        runner,
        coordinator=coordinator,
        executor=executor,
        ffmpeg_bin=settings.ffmpeg_bin,
        stop_timeout=settings.stop_timeout,
        defaults=TranscodeOptions(
            segment_duration=settings.segment_duration,
            video_codec=settings.video_codec,
            audio_codec=settings.audio_codec,
        ),
    )
    return Services(
        store=store,
        supervisor=supervisor,
        clips=ClipExtractor(store, runner, ffmpeg_bin=settings.ffmpeg_bin),
        exporter=MediaExporter(store, runner, ffmpeg_bin=settings.ffmpeg_bin),
        coordinator=coordinator,
        search=SearchService(store),
        stream_status=StreamStatusChecker(store),
    )


def apply_settings(services: Services, settings: Settings) -> None:
    """Push changed runtime settings into live components."""
    services.coordinator.model = settings.whisper_model
    services.coordinator.language = settings.whisper_language or None
    services.coordinator.python_bin = settings.python_bin or sys.executable
    services.coordinator.keep_audio = settings.keep_audio
    services.supervisor.stop_timeout = settings.stop_timeout
    services.supervisor.defaults = TranscodeOptions(
        segment_duration=settings.segment_duration,
        video_codec=settings.video_codec,
        audio_codec=settings.audio_codec,
    )
    for component in (services.coordinator, services.supervisor, services.clips, services.exporter):
        component.ffmpeg_bin = settings.ffmpeg_bin
