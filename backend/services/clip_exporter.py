"""
Clip Exporter

Cuts a time range out of a source video without re-encoding (stream copy)
and saves it next to the source, in a sub-directory of the source's folder.
"""
import os
import posixpath
from pathlib import Path
from typing import Any, Dict, Optional
import logging

from config.engine_config import EngineConfig
from constants import CacheLayout
from exceptions import ProcessFailedError, OutputInvalidError, ValidationError
from services.interfaces import IFileStore, IProcessRunner
from utils.ffmpeg_helper import build_clip_command, get_ffmpeg_path, redact_command
from workers.ffmpeg_runner import has_success_marker, read_log_tail

logger = logging.getLogger(__name__)


def default_clip_name(stem: str, start: float, end: float) -> str:
    return f"{stem}_clip_{int(start)}-{int(end)}.mp4"


def _validate_filename(name: str) -> str:
    name = (name or '').strip()
    if not name or '/' in name or '\\' in name or '\0' in name or name.startswith('.'):
        raise ValidationError(f"Invalid clip filename: {name!r}", invalid_fields={"clip_filename": name})
    return name


class ClipExporter:
    """Lossless clip export into the owner's file store"""

    def __init__(self, config: EngineConfig, file_store: IFileStore, runner: IProcessRunner):
        self.config = config
        self.file_store = file_store
        self.runner = runner
        self.ffmpeg = get_ffmpeg_path(config.ffmpeg_path)
        self.log_dir = config.log_dir / "clips"

    def export(self, owner: str, source_path: str, start: float, end: float,
               export_dir: str = "clips", clip_filename: Optional[str] = None) -> Dict[str, Any]:
        """
        Export [start, end) of a source video.

        Args:
            owner: Owner of the source file
            source_path: Logical path of the source video
            start: Start time in seconds
            end: End time in seconds
            export_dir: Folder relative to the source's directory
            clip_filename: Output file name (default <stem>_clip_<start>-<end>.mp4)

        Returns:
            {"path", "size", "start", "end"}

        Raises:
            ValidationError: If the time range or file name is invalid
            SourceNotFoundError: If the source does not exist
            ProcessFailedError, OutputInvalidError, TranscodeTimeoutError
        """
        if start < 0 or end <= start:
            raise ValidationError(
                f"Invalid time range {start}-{end}",
                invalid_fields={"start": start, "end": end},
            )

        source = self.file_store.stat(owner, source_path)
        name = _validate_filename(clip_filename or default_clip_name(source.stem, start, end))

        target_dir = posixpath.join(source.directory, export_dir.strip('/') or '.')
        output_dir = self.file_store.make_dirs(owner, target_dir)
        logical_output = posixpath.normpath(posixpath.join(target_dir, name))
        final_path = output_dir / name
        partial_path = output_dir / CacheLayout.partial_name(name)

        input_path = self.file_store.local_path(owner, source.path)
        cmd = build_clip_command(self.ffmpeg, input_path, partial_path, start, end - start)

        self.log_dir.mkdir(parents=True, exist_ok=True)
        log_path = self.log_dir / f"{source.cache_key}_{int(start * 1000)}_{int(end * 1000)}.log"
        if log_path.exists():
            log_path.unlink()

        logger.info(f"✂️ Exporting clip {start:.3f}-{end:.3f}s of {source} -> {logical_output}")
        returncode = self.runner.run_to_log(cmd, log_path, self.config.clip_timeout_seconds)
        output = read_log_tail(log_path)

        if returncode != 0 and not has_success_marker(output):
            self._discard(partial_path)
            raise ProcessFailedError(returncode, command=redact_command(cmd), output_tail=output)
        if not partial_path.is_file() or partial_path.stat().st_size == 0:
            self._discard(partial_path)
            raise OutputInvalidError("Clip export produced no output", command=redact_command(cmd), output_tail=output)

        os.replace(partial_path, final_path)
        size = final_path.stat().st_size
        logger.info(f"✅ Clip exported: {logical_output} ({size} bytes)")
        return {"path": logical_output, "size": size, "start": start, "end": end}

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
