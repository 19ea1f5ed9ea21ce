"""
Configuration manager for cliptr.

Settings live in ``conf/cliptr.conf`` (INI). Missing sections and keys fall
back to defaults, and the file is written with those defaults on first run.
``CLIPTR_CONF``, ``CLIPTR_LIBRARY_DIR`` and ``CLIPTR_DATA_DIR`` override the
file location and the two storage directories.

An empty ``[Whisper] python`` runs the engine under the interpreter running
cliptr, and an empty ``language`` lets Whisper detect it.
"""

import configparser
import logging
import os
import platform
import shutil
import subprocess
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent.parent.parent
CONF_DIR = BASE_DIR / "conf"
CONF_FILE = CONF_DIR / "cliptr.conf"

WHISPER_MODELS = ["tiny", "base", "small", "medium", "large", "large-v2", "large-v3"]

DEFAULTS = {
    "Directories": {
        "library_dir": str(BASE_DIR / "library"),
        "data_dir": str(BASE_DIR / "data"),
    },
    "Capture": {
        "segment_duration": "60",
        "video_codec": "copy",
        "audio_codec": "copy",
        "stop_timeout": "30",
    },
    "Whisper": {
        "model": "base",
        "language": "",
        "python": "",
        "keep_audio": "false",
    },
    "Tools": {
        "ffmpeg": "ffmpeg",
    },
    "Server": {
        "host": "0.0.0.0",
        "port": "30320",
    },
}


def conf_path() -> Path:
    return Path(os.environ.get("CLIPTR_CONF", CONF_FILE))


def load_config(path: Optional[Union[str, Path]] = None) -> configparser.ConfigParser:
    """Load the config file layered over the defaults."""
    config = configparser.ConfigParser()
    config.read_dict(DEFAULTS)
    path = Path(path) if path else conf_path()
    if path.exists():
        config.read(str(path))
    return config


def save_config(config: configparser.ConfigParser, path: Optional[Union[str, Path]] = None):
    """Save the config file."""
    path = Path(path) if path else conf_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        config.write(f)


def ensure_config(path: Optional[Union[str, Path]] = None) -> configparser.ConfigParser:
    """Load the config, creating the file with defaults if it does not exist."""
    path = Path(path) if path else conf_path()
    config = load_config(path)
    if not path.exists():
        save_config(config, path)
        logger.info(f"Created configuration file: {path}")
    return config


def check_ffmpeg(ffmpeg_bin: str = "ffmpeg") -> dict:
    """Report whether ffmpeg is installed, with an install hint if not."""
    path = shutil.which(ffmpeg_bin)
    if path is None:
        return {"installed": False, "path": None, "version": None, "hint": _install_hint()}
    try:
        result = subprocess.run([path, "-version"], capture_output=True, text=True, timeout=10)
        version = result.stdout.splitlines()[0] if result.stdout else None
    except (OSError, subprocess.TimeoutExpired):
        version = None
    return {"installed": True, "path": path, "version": version, "hint": None}


def _install_hint() -> str:
    system = platform.system().lower()
    if system == "darwin":
        return "brew install ffmpeg"
    if system == "windows":
        return "winget install ffmpeg"
    return "sudo apt install ffmpeg"


class Settings:
    """Mutable runtime settings stored in app.state.settings."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else conf_path()
        config = ensure_config(self.path)

        self.library_dir: str = os.environ.get("CLIPTR_LIBRARY_DIR") or config.get("Directories", "library_dir")
        self.data_dir: str = os.environ.get("CLIPTR_DATA_DIR") or config.get("Directories", "data_dir")
        self.segment_duration: float = config.getfloat("Capture", "segment_duration")
        self.video_codec: str = config.get("Capture", "video_codec")
        self.audio_codec: str = config.get("Capture", "audio_codec")
        self.stop_timeout: float = config.getfloat("Capture", "stop_timeout")
        self.whisper_model: str = config.get("Whisper", "model")
        self.whisper_language: str = config.get("Whisper", "language")
        self.python_bin: str = config.get("Whisper", "python")
        self.keep_audio: bool = config.getboolean("Whisper", "keep_audio")
        self.ffmpeg_bin: str = config.get("Tools", "ffmpeg")
        self.host: str = config.get("Server", "host")
        self.port: int = config.getint("Server", "port")

    def to_dict(self) -> dict:
        return {
            "library_dir": self.library_dir,
            "data_dir": self.data_dir,
            "segment_duration": self.segment_duration,
            "video_codec": self.video_codec,
            "audio_codec": self.audio_codec,
            "stop_timeout": self.stop_timeout,
            "whisper_model": self.whisper_model,
            "whisper_language": self.whisper_language,
            "python_bin": self.python_bin,
            "keep_audio": self.keep_audio,
            "ffmpeg_bin": self.ffmpeg_bin,
            "host": self.host,
            "port": self.port,
        }

    def update(self, **kwargs):
        for key, value in kwargs.items():
            if hasattr(self, key) and key != "path":
                setattr(self, key, value)

    def save(self):
        """Persist the current values back to the config file."""
        config = load_config(self.path)
        config.set("Directories", "library_dir", str(self.library_dir))
        config.set("Directories", "data_dir", str(self.data_dir))
        config.set("Capture", "segment_duration", str(self.segment_duration))
        config.set("Capture", "video_codec", self.video_codec)
        config.set("Capture", "audio_codec", self.audio_codec)
        config.set("Capture", "stop_timeout", str(self.stop_timeout))
        config.set("Whisper", "model", self.whisper_model)
        config.set("Whisper", "language", self.whisper_language)
        config.set("Whisper", "python", self.python_bin)
        config.set("Whisper", "keep_audio", str(self.keep_audio).lower())
        config.set("Tools", "ffmpeg", self.ffmpeg_bin)
        config.set("Server", "host", self.host)
        config.set("Server", "port", str(self.port))
        save_config(config, self.path)
