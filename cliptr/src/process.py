"""
External process runner.

Long-running children (ffmpeg captures, the Whisper worker) are launched with
``ProcessRunner.spawn`` and report completion through a
``concurrent.futures.Future`` resolved with the exit code. Short one-shot
commands (clip cuts, audio extraction) go through ``ProcessRunner.run``.
"""

import logging
import signal
import subprocess
import threading
from collections import deque
from concurrent.futures import Future
from datetime import datetime
from pathlib import Path
from typing import IO, List, Optional, Sequence, Union

from .errors import ProcessFailed

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def append_log(log_path: Optional[PathLike], level: str, message: str) -> None:
    """Append one ``[LEVEL] message`` line to a per-session log file."""
    if not log_path:
        return
    try:
        with open(log_path, "a", encoding="utf-8") as f:
            f.write(f"[{level}] {message}\n")
    except OSError as e:
        logger.warning(f"Could not write to log {log_path}: {e}")


class ManagedProcess:
    """A spawned child whose output is pumped into a log file.

    Attributes:
        args: The command line.
        done: Future resolved with the exit code once the process has exited
              and its output has been fully drained.
    """

    def __init__(self, popen: subprocess.Popen, args: Sequence[str],
                 log_path: Optional[PathLike] = None, tail_lines: int = 50):
        self._popen = popen
        self.args = list(args)
        self.started_at = datetime.now()
        self.done: Future = Future()
        self._tail: deque = deque(maxlen=tail_lines)
        self._log_lock = threading.Lock()
        self._log: Optional[IO[str]] = open(log_path, "a", encoding="utf-8") if log_path else None

        readers = [
            threading.Thread(target=self._pump, args=(popen.stdout, "STDOUT"), daemon=True),
            threading.Thread(target=self._pump, args=(popen.stderr, "STDERR"), daemon=True),
        ]
        for reader in readers:
            reader.start()
        threading.Thread(target=self._wait, args=(readers,), daemon=True).start()

    @property
    def pid(self) -> int:
        return self._popen.pid

    @property
    def running(self) -> bool:
        return not self.done.done()

    def terminate(self) -> None:
        """Ask the process to exit (SIGTERM)."""
        if self._popen.poll() is None:
            self._popen.send_signal(signal.SIGTERM)

    def kill(self) -> None:
        if self._popen.poll() is None:
            self._popen.kill()

    def stderr_tail(self) -> str:
        """Last lines written to stderr, for error reports."""
        return "\n".join(self._tail)

    def _write(self, line: str) -> None:
        with self._log_lock:
            if self._log is not None:
                self._log.write(line + "\n")
                self._log.flush()

    def _pump(self, stream, label: str) -> None:
        if stream is None:
            return
        for raw in iter(stream.readline, b""):
            line = raw.decode("utf-8", errors="replace").rstrip()
            if not line:
                continue
            if label == "STDERR":
                self._tail.append(line)
            self._write(f"[{label}] {line}")
        stream.close()

    def _wait(self, readers: List[threading.Thread]) -> None:
        code = self._popen.wait()
        for reader in readers:
            reader.join()
        self._write(f"[INFO] Process exited with code {code}")
        with self._log_lock:
            if self._log is not None:
                self._log.close()
                self._log = None
        self.done.set_result(code)


class ProcessRunner:
    """Launch external tools as child processes."""

    def spawn(self, args: Sequence[str], log_path: Optional[PathLike] = None) -> ManagedProcess:
        """
        Start a long-running process without waiting for it.

        Args:
            args: Command line, program first.
            log_path: Optional file receiving prefixed stdout/stderr lines.

        Returns:
            ManagedProcess whose ``done`` future resolves with the exit code.

        Raises:
            ProcessFailed: If the program cannot be launched.
        """
        logger.debug(f"Spawning: {' '.join(map(str, args))}")
        try:
            popen = subprocess.Popen(
                [str(a) for a in args],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise ProcessFailed(f"Could not launch {args[0]}: {e}")
        return ManagedProcess(popen, args, log_path=log_path)

    def run(self, args: Sequence[str], timeout: Optional[float] = None) -> subprocess.CompletedProcess:
        """
        Run a process to completion and capture its output.

        Raises:
            ProcessFailed: If the program cannot be launched or times out.
        """
        logger.debug(f"Running: {' '.join(map(str, args))}")
        try:
            return subprocess.run(
                [str(a) for a in args],
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ProcessFailed(f"{args[0]} timed out after {timeout}s", diagnostics=str(e.stderr or ""))
        except OSError as e:
            raise ProcessFailed(f"Could not launch {args[0]}: {e}")
