"""
FFmpeg process runner.

Spawns transcoder processes from argument lists, enforces a wall-clock
timeout, captures diagnostic output and keeps a registry of what is running
so the status endpoint can report it.

Two modes:
- run_to_log: output goes to a file (HLS segments), combined stdout+stderr
  is appended to the progress log
- run_to_file: output arrives on stdout and is streamed chunk-by-chunk into a
  destination file while a thread drains stderr into the progress log and a
  bounded tail buffer
"""
import os
import re
import subprocess
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List
import logging

from constants import TranscodeDefaults
from exceptions import (
    OutputDirectoryUnavailableError,
    SpawnFailedError,
    TranscodeTimeoutError,
)
from services.interfaces import IProcessRunner, RunResult
from utils.ffmpeg_helper import format_command, redact_command

logger = logging.getLogger(__name__)

_LINE_SPLIT_RE = re.compile(r'[\r\n]+')


def has_success_marker(text: str) -> bool:
    """True when the transcoder printed its final summary"""
    return any(marker in text for marker in TranscodeDefaults.SUCCESS_MARKERS)


def tail_lines(data: bytes, max_lines: int = TranscodeDefaults.STDERR_TAIL_LINES) -> str:
    """Last lines of captured output, splitting on both \\r and \\n"""
    text = data.decode('utf-8', errors='replace')
    lines = [line for line in _LINE_SPLIT_RE.split(text) if line.strip()]
    return '\n'.join(lines[-max_lines:])


def read_log_tail(log_path: Path, max_lines: int = TranscodeDefaults.STDERR_TAIL_LINES) -> str:
    """Tail of a log file; empty when the log does not exist"""
    try:
        with open(log_path, 'rb') as f:
            f.seek(0, os.SEEK_END)
            size = f.tell()
            f.seek(max(0, size - TranscodeDefaults.STDERR_TAIL_BYTES))
            return tail_lines(f.read(), max_lines)
    except OSError:
        return ""


class _TailBuffer:
    """Keeps only the last max_bytes written to it"""

    def __init__(self, max_bytes: int = TranscodeDefaults.STDERR_TAIL_BYTES):
        self.max_bytes = max_bytes
        self._buf = bytearray()
        self._lock = threading.Lock()

    def write(self, data: bytes) -> None:
        with self._lock:
            self._buf.extend(data)
            overflow = len(self._buf) - self.max_bytes
            if overflow > 0:
                del self._buf[:overflow]

    def getvalue(self) -> bytes:
        with self._lock:
            return bytes(self._buf)


class FFmpegRunner(IProcessRunner):
    """Runs transcoder processes; safe to share between threads"""

    def __init__(self):
        self._lock = threading.Lock()
        self._active: Dict[int, Dict[str, Any]] = {}

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def _register(self, process: subprocess.Popen, cmd: List[str], mode: str) -> None:
        with self._lock:
            self._active[process.pid] = {
                'pid': process.pid,
                'mode': mode,
                'command': redact_command(cmd),
                'started_at': datetime.utcnow().isoformat(),
                '_started': time.monotonic(),
            }

    def _unregister(self, process: subprocess.Popen) -> None:
        with self._lock:
            self._active.pop(process.pid, None)

    def active_processes(self) -> List[Dict[str, Any]]:
        now = time.monotonic()
        with self._lock:
            snapshot = list(self._active.values())
        return [
            {
                'pid': info['pid'],
                'mode': info['mode'],
                'command': info['command'],
                'started_at': info['started_at'],
                'elapsed_seconds': round(now - info['_started'], 1),
            }
            for info in snapshot
        ]

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    # ------------------------------------------------------------------
    # Spawning
    # ------------------------------------------------------------------

    def _spawn(self, cmd: List[str], **kwargs) -> subprocess.Popen:
        logger.info(f"Running transcoder: {format_command(cmd)}")
        try:
            return subprocess.Popen([str(arg) for arg in cmd], stdin=subprocess.DEVNULL, **kwargs)
        except OSError as e:
            logger.error(f"Failed to start transcoder: {e}")
            raise SpawnFailedError(
                f"Failed to start transcoder: {e}",
                command=redact_command(cmd),
            )

    @staticmethod
    def _kill(process: subprocess.Popen) -> None:
        if process.poll() is None:
            try:
                process.kill()
            except OSError:
                # Exited between poll and kill
                pass

    def run_to_log(self, cmd: List[str], log_path: Path, timeout: float) -> int:
        log_path = Path(log_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        with open(log_path, 'ab') as log_file:
            process = self._spawn(cmd, stdout=log_file, stderr=subprocess.STDOUT)
            self._register(process, cmd, 'log')
            try:
                try:
                    returncode = process.wait(timeout=timeout)
                except subprocess.TimeoutExpired:
                    logger.error(f"⏱️ Transcoder pid {process.pid} exceeded {timeout:.0f}s, killing")
                    self._kill(process)
                    process.wait()
                    log_file.flush()
                    raise TranscodeTimeoutError(
                        timeout,
                        command=redact_command(cmd),
                        output_tail=read_log_tail(log_path),
                    )
            finally:
                self._unregister(process)

        logger.info(f"Transcoder pid {process.pid} exited with code {returncode}")
        return returncode

    def run_to_file(self, cmd: List[str], dest: Path, log_path: Path, timeout: float) -> RunResult:
        dest = Path(dest)
        log_path = Path(log_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        tail = _TailBuffer()
        timed_out = threading.Event()

        try:
            out_file = open(dest, 'wb')
        except OSError as e:
            raise OutputDirectoryUnavailableError(str(dest.parent), str(e))

        with out_file, open(log_path, 'ab') as log_file:
            process = self._spawn(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
            self._register(process, cmd, 'stream')

            def drain_stderr():
                # Must run alongside the stdout loop or a full stderr pipe blocks ffmpeg
                for chunk in iter(lambda: process.stderr.read1(4096), b''):
                    tail.write(chunk)
                    try:
                        log_file.write(chunk)
                        log_file.flush()
                    except OSError as e:
                        logger.warning(f"Could not write transcoder log {log_path}: {e}")

            def on_timeout():
                timed_out.set()
                logger.error(f"⏱️ Transcoder pid {process.pid} exceeded {timeout:.0f}s, killing")
                self._kill(process)

            stderr_thread = threading.Thread(target=drain_stderr, name=f"ffmpeg-stderr-{process.pid}", daemon=True)
            timer = threading.Timer(timeout, on_timeout)
            timer.daemon = True
            stderr_thread.start()
            timer.start()

            bytes_written = 0
            try:
                for chunk in iter(lambda: process.stdout.read(TranscodeDefaults.STREAM_CHUNK_BYTES), b''):
                    out_file.write(chunk)
                    bytes_written += len(chunk)
                returncode = process.wait()
            except OSError as e:
                self._kill(process)
                process.wait()
                raise OutputDirectoryUnavailableError(str(dest.parent), str(e))
            finally:
                timer.cancel()
                stderr_thread.join(timeout=5)
                process.stdout.close()
                process.stderr.close()
                self._unregister(process)

        stderr_tail = tail_lines(tail.getvalue())

        if timed_out.is_set():
            raise TranscodeTimeoutError(timeout, command=redact_command(cmd), output_tail=stderr_tail)

        logger.info(f"Transcoder pid {process.pid} exited with code {returncode}, {bytes_written} bytes streamed")
        return RunResult(returncode=returncode, bytes_written=bytes_written, stderr_tail=stderr_tail)
