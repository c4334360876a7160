"""
FFmpeg Command Helper

Resolves the ffmpeg binary and builds the argument lists for every transcode
the engine runs. Commands are always lists handed straight to the process,
never shell strings.
"""
import re
import shutil
import logging
from pathlib import Path
from typing import List, Sequence

from constants import CacheLayout, ResolutionPresets, TranscodeDefaults

logger = logging.getLogger(__name__)

# Options whose value may carry credentials
_SECRET_OPTIONS = {'-headers', '-cookies', '-auth_type', '-password', '-passphrase'}
_URL_CREDENTIALS_RE = re.compile(r'(?P<scheme>[a-zA-Z][a-zA-Z0-9+.-]*://)[^/@\s:]+(?::[^/@\s]*)?@')


def get_ffmpeg_path(configured: str = "ffmpeg") -> str:
    """
    Resolve the ffmpeg binary.

    Args:
        configured: Absolute path or a name to look up on PATH

    Returns:
        Path to the binary; the configured value is returned unchanged when it
        cannot be resolved so that spawning fails with a clear error
    """
    if Path(configured).is_absolute():
        return configured
    found = shutil.which(configured)
    if found:
        return found
    logger.warning(f"ffmpeg binary '{configured}' not found on PATH")
    return configured


def redact_command(cmd: Sequence[str]) -> List[str]:
    """Copy of a command line with header values and URL credentials masked"""
    redacted = []
    mask_next = False
    for arg in cmd:
        arg = str(arg)
        if mask_next:
            redacted.append('***')
            mask_next = False
            continue
        if arg in _SECRET_OPTIONS:
            mask_next = True
        redacted.append(_URL_CREDENTIALS_RE.sub(r'\g<scheme>***@', arg))
    return redacted


def format_command(cmd: Sequence[str]) -> str:
    """Redacted command line for logs"""
    return ' '.join(redact_command(cmd))


def _scale_filter(height: int) -> str:
    # -2 keeps the width even, which libx264 requires
    return f"scale=-2:{height}"


def build_hls_command(ffmpeg: str, input_path: Path, output_dir: Path,
                      segment_duration: int = TranscodeDefaults.SEGMENT_DURATION_SECONDS) -> List[str]:
    """
    Single-rendition HLS.

    ffmpeg writes the playlist under its partial name; the executor renames
    it to playlist.m3u8 once the run has succeeded.
    """
    return [
        ffmpeg,
        "-hide_banner",
        "-nostdin",
        "-y",
        "-i", str(input_path),
        "-c:v", TranscodeDefaults.VIDEO_CODEC,
        "-preset", TranscodeDefaults.HLS_PRESET,
        "-c:a", TranscodeDefaults.AUDIO_CODEC,
        "-b:a", TranscodeDefaults.AUDIO_BITRATE,
        "-f", "hls",
        "-hls_time", str(segment_duration),
        "-hls_playlist_type", "vod",
        "-hls_segment_filename", str(output_dir / CacheLayout.SEGMENT_PATTERN),
        str(output_dir / CacheLayout.partial_name(CacheLayout.LEGACY_MANIFEST)),
    ]


def build_adaptive_hls_command(ffmpeg: str, input_path: Path, output_dir: Path, resolutions: Sequence[str],
                               segment_duration: int = TranscodeDefaults.SEGMENT_DURATION_SECONDS) -> List[str]:
    """
    One variant per resolution plus a master playlist.

    Variant streams are named after the resolution, so segments come out as
    segment_720p_000.ts and variant playlists as playlist_720p.m3u8.
    """
    names = [r for r in resolutions if ResolutionPresets.is_known(r)]
    count = len(names)

    split_labels = ''.join(f"[v{i}]" for i in range(count))
    filters = [f"[0:v]split={count}{split_labels}"]
    for i, name in enumerate(names):
        height = ResolutionPresets.PRESETS[name][0]
        filters.append(f"[v{i}]{_scale_filter(height)}[v{i}out]")

    cmd = [
        ffmpeg,
        "-hide_banner",
        "-nostdin",
        "-y",
        "-i", str(input_path),
        "-filter_complex", ';'.join(filters),
    ]

    for i, name in enumerate(names):
        _height, bitrate, maxrate, bufsize = ResolutionPresets.PRESETS[name]
        cmd.extend([
            "-map", f"[v{i}out]",
            f"-c:v:{i}", TranscodeDefaults.VIDEO_CODEC,
            f"-b:v:{i}", bitrate,
            f"-maxrate:v:{i}", maxrate,
            f"-bufsize:v:{i}", bufsize,
        ])
    for i in range(count):
        cmd.extend([
            "-map", "a:0?",
            f"-c:a:{i}", TranscodeDefaults.AUDIO_CODEC,
            f"-b:a:{i}", TranscodeDefaults.AUDIO_BITRATE,
            "-ac", "2",
        ])

    stream_map = ' '.join(f"v:{i},a:{i},name:{name}" for i, name in enumerate(names))
    cmd.extend([
        "-preset", TranscodeDefaults.HLS_PRESET,
        "-f", "hls",
        "-hls_time", str(segment_duration),
        "-hls_playlist_type", "vod",
        "-hls_flags", "independent_segments",
        "-hls_segment_filename", str(output_dir / CacheLayout.VARIANT_SEGMENT_PATTERN),
        "-master_pl_name", CacheLayout.partial_name(CacheLayout.MASTER_MANIFEST),
        "-var_stream_map", stream_map,
        str(output_dir / CacheLayout.VARIANT_PLAYLIST_PATTERN),
    ])
    return cmd


def build_proxy_command(ffmpeg: str, input_path: Path) -> List[str]:
    """480p fragmented MP4 written to stdout, tuned to start playback quickly"""
    return [
        ffmpeg,
        "-hide_banner",
        "-nostdin",
        "-i", str(input_path),
        "-vf", _scale_filter(TranscodeDefaults.PROXY_HEIGHT),
        "-c:v", TranscodeDefaults.VIDEO_CODEC,
        "-preset", TranscodeDefaults.PROXY_PRESET,
        "-tune", "zerolatency",
        "-profile:v", "baseline",
        "-level", "3.0",
        "-crf", str(TranscodeDefaults.PROXY_CRF),
        "-maxrate", TranscodeDefaults.PROXY_MAXRATE,
        "-bufsize", TranscodeDefaults.PROXY_BUFSIZE,
        "-pix_fmt", "yuv420p",
        "-c:a", TranscodeDefaults.AUDIO_CODEC,
        "-b:a", TranscodeDefaults.AUDIO_BITRATE,
        "-ar", "44100",
        "-ac", "2",
        "-threads", str(TranscodeDefaults.PROXY_THREADS),
        "-movflags", "frag_keyframe+empty_moov+default_base_moof",
        "-f", "mp4",
        "pipe:1",
    ]


def build_clip_command(ffmpeg: str, input_path: Path, output_path: Path, start: float, duration: float) -> List[str]:
    """Stream-copy a time range; cuts land on the nearest keyframe"""
    return [
        ffmpeg,
        "-hide_banner",
        "-nostdin",
        "-y",
        "-ss", f"{start:.3f}",
        "-i", str(input_path),
        "-t", f"{duration:.3f}",
        "-c", "copy",
        "-avoid_negative_ts", "make_zero",
        "-f", "mp4",
        str(output_path),
    ]
