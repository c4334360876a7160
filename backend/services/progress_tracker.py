"""
Progress Tracker

Turns the free-text transcoder log into a structured ProgressRecord.

The log is re-parsed on every poll rather than followed incrementally: it is
append-only and may be read many times before the run ends. ffmpeg rewrites
its stats line with carriage returns, so the text is split on both \\r and \\n
and scanned from the end. The first line that carries a completion marker or
matches the stats-line shape decides the state.

Each cache key has two files per generation mode (hls, proxy) in the
progress directory, so a proxy request never touches a queued HLS job's state:
- <cache_key>.<mode>.json: the persisted ProgressRecord (written atomically)
- <cache_key>.<mode>.log:  the transcoder's combined output
"""
import json
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Iterable, List, Optional, Tuple
import logging

from constants import ProgressModes, ProgressStatus, TranscodeDefaults
from domain.entities import ProgressRecord

logger = logging.getLogger(__name__)

_LINE_SPLIT_RE = re.compile(r'[\r\n]+')
_DURATION_RE = re.compile(r'Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)')
_TIME_RE = re.compile(r'time=\s*(\d+):(\d{2}):(\d{2})(?:\.\d+)?')
_FRAME_RE = re.compile(r'frame=\s*(\d+)')
_FPS_RE = re.compile(r'fps=\s*(\d+(?:\.\d+)?)')
_SPEED_RE = re.compile(r'speed=\s*(\S+?x|N/A)')
_BITRATE_RE = re.compile(r'bitrate=\s*(\S+?/s|N/A)')
_SIZE_RE = re.compile(r'(?:^|\s)L?size=\s*(\S+)')

# Head holds the input's Duration header; tail holds the latest stats lines
_HEAD_BYTES = 64 * 1024
_TAIL_BYTES = 256 * 1024


def split_lines(text: str) -> List[str]:
    return [line for line in _LINE_SPLIT_RE.split(text) if line.strip()]


def parse_duration(text: str) -> float:
    """Input duration in seconds from the 'Duration:' header, 0 when unknown"""
    match = _DURATION_RE.search(text)
    if not match:
        return 0.0
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def parse_progress_line(line: str) -> Optional[dict]:
    """
    Extract stats from one ffmpeg progress line.

    Returns None unless the line has an elapsed time and a frame count or
    speed. Fields that are missing default to 0 / "N/A".
    """
    time_match = _TIME_RE.search(line)
    if not time_match:
        return None
    if 'frame=' not in line and 'speed=' not in line:
        return None

    hours, minutes, seconds = time_match.groups()
    frame_match = _FRAME_RE.search(line)
    fps_match = _FPS_RE.search(line)
    speed_match = _SPEED_RE.search(line)
    bitrate_match = _BITRATE_RE.search(line)
    size_match = _SIZE_RE.search(line)

    return {
        'frame': int(frame_match.group(1)) if frame_match else 0,
        'fps': float(fps_match.group(1)) if fps_match else 0.0,
        'time': f"{int(hours):02d}:{minutes}:{seconds}",
        'elapsed_seconds': int(hours) * 3600 + int(minutes) * 60 + int(seconds),
        'speed': speed_match.group(1) if speed_match else "N/A",
        'bitrate': bitrate_match.group(1) if bitrate_match else "N/A",
        'size': size_match.group(1) if size_match else "N/A",
    }


def parse_log(text: str, duration_seconds: Optional[float] = None) -> Optional[dict]:
    """
    Derive a progress snapshot from log text.

    Args:
        text: Log content (may be only the tail of the log)
        duration_seconds: Input duration; read from the text when omitted

    Returns:
        Dict with 'status', 'progress' and stats fields, or None when the log
        has neither a completion marker nor a progress line
    """
    if not text:
        return None
    if duration_seconds is None:
        duration_seconds = parse_duration(text)

    for line in reversed(split_lines(text)):
        if any(marker in line for marker in TranscodeDefaults.SUCCESS_MARKERS):
            return {'status': ProgressStatus.COMPLETED, 'progress': 100.0, 'message': 'Cache generation completed'}

        stats = parse_progress_line(line)
        if stats is None:
            continue

        elapsed = stats.pop('elapsed_seconds')
        progress = 0.0
        if duration_seconds and duration_seconds > 0:
            # 100 is reserved for the completion marker
            progress = round(min(99.0, elapsed / duration_seconds * 100.0), 1)
        stats.update({
            'status': ProgressStatus.PROCESSING,
            'progress': progress,
            'message': f"Transcoding {stats['time']} at {stats['speed']}",
        })
        return stats

    return None


class ProgressStore:
    """Persists ProgressRecords as one JSON file per cache key and mode"""

    def __init__(self, progress_dir: Path):
        self.progress_dir = Path(progress_dir)
        self.progress_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def record_path(self, cache_key: str, mode: str = ProgressModes.HLS) -> Path:
        return self.progress_dir / f"{cache_key}.{mode}.json"

    def log_path(self, cache_key: str, mode: str = ProgressModes.HLS) -> Path:
        return self.progress_dir / f"{cache_key}.{mode}.log"

    def load(self, cache_key: str, mode: str = ProgressModes.HLS) -> Optional[ProgressRecord]:
        path = self.record_path(cache_key, mode)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return ProgressRecord.from_dict(json.load(f))
        except FileNotFoundError:
            return None
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Ignoring unreadable progress record {path}: {e}")
            return None

    def save(self, record: ProgressRecord, mode: str = ProgressModes.HLS) -> None:
        """Write via temp file + rename so readers never see a torn record"""
        record.touch()
        path = self.record_path(record.cache_key, mode)
        fd, tmp_path = tempfile.mkstemp(dir=self.progress_dir, prefix=f".{record.cache_key}.{mode}.", suffix=".tmp")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(record.to_dict(), f)
            os.replace(tmp_path, path)
        except OSError:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def update(self, cache_key: str, mode: str = ProgressModes.HLS, **fields) -> ProgressRecord:
        """Load (or create), apply fields, save and return the record"""
        with self._lock:
            record = self.load(cache_key, mode) or ProgressRecord(cache_key=cache_key)
            for key, value in fields.items():
                setattr(record, key, value)
            self.save(record, mode)
            return record

    def reset_log(self, cache_key: str, mode: str = ProgressModes.HLS) -> Path:
        """Remove the log of a previous run so it cannot leak into the next one"""
        path = self.log_path(cache_key, mode)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        return path

    def read_log(self, cache_key: str, mode: str = ProgressModes.HLS) -> Tuple[str, str]:
        """(head, tail) of the log; both empty when there is no log"""
        path = self.log_path(cache_key, mode)
        try:
            with open(path, 'rb') as f:
                head = f.read(_HEAD_BYTES)
                f.seek(0, os.SEEK_END)
                size = f.tell()
                if size <= _HEAD_BYTES:
                    tail = head
                else:
                    f.seek(max(0, size - _TAIL_BYTES))
                    tail = f.read()
        except OSError:
            return "", ""
        return head.decode('utf-8', errors='replace'), tail.decode('utf-8', errors='replace')


class ProgressTracker:
    """Merges the parsed log with the persisted record"""

    def __init__(self, store: ProgressStore):
        self.store = store

    def get_progress(self, cache_key: str, mode: str = ProgressModes.HLS) -> ProgressRecord:
        """
        Current progress of a cache key in one mode (HLS by default). Never
        raises on malformed input.

        Merge rules:
        - a persisted terminal record (completed/failed) wins
        - otherwise the log decides when it has a completion marker or a stats line
        - otherwise the persisted record, or not_found
        """
        persisted = self.store.load(cache_key, mode)
        if persisted is not None and persisted.is_terminal:
            return persisted

        head, tail = self.store.read_log(cache_key, mode)
        snapshot = None
        if tail:
            try:
                snapshot = parse_log(tail, parse_duration(head) or parse_duration(tail))
            except (ValueError, TypeError) as e:
                logger.warning(f"Could not parse transcoder log for {cache_key}: {e}")

        if snapshot is None:
            return persisted or ProgressRecord.not_found(cache_key)

        record = persisted or ProgressRecord(cache_key=cache_key)
        for key, value in snapshot.items():
            setattr(record, key, value)
        return record

    def get_many(self, cache_keys: Iterable[str]) -> List[ProgressRecord]:
        return [self.get_progress(key) for key in cache_keys]


def summarize_batch(records: List[ProgressRecord]) -> dict:
    """Aggregate progress of the records of one batch"""
    counts = {status: 0 for status in (
        ProgressStatus.NOT_FOUND, ProgressStatus.QUEUED, ProgressStatus.PROCESSING,
        ProgressStatus.COMPLETED, ProgressStatus.FAILED,
    )}
    for record in records:
        counts[record.status] = counts.get(record.status, 0) + 1

    total = len(records)
    if total == 0:
        status = ProgressStatus.NOT_FOUND
    elif counts[ProgressStatus.FAILED] and counts[ProgressStatus.FAILED] + counts[ProgressStatus.COMPLETED] == total:
        status = ProgressStatus.FAILED
    elif counts[ProgressStatus.COMPLETED] == total:
        status = ProgressStatus.COMPLETED
    elif counts[ProgressStatus.PROCESSING] or counts[ProgressStatus.COMPLETED] or counts[ProgressStatus.FAILED]:
        status = ProgressStatus.PROCESSING
    else:
        status = ProgressStatus.QUEUED

    progress = round(sum(r.progress for r in records) / total, 1) if total else 0.0
    return {
        'status': status,
        'progress': progress,
        'total': total,
        'counts': counts,
    }
