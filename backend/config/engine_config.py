"""
Engine Configuration

Environment-driven configuration for the cache and transcode engine.
Every value has a default so the backend starts without any environment set.

Environment variables:
- HLS_ENGINE_DATA_DIR: database, logs, progress records and proxy cache root
- HLS_ENGINE_STORAGE_ROOT: root of the local file store (<root>/<owner>/files/...)
- HLS_ENGINE_FFMPEG: ffmpeg binary (path or name on PATH)
- HLS_ENGINE_PROXY_DIR: directory for on-demand proxy files
- HLS_ENGINE_PROXY_RETENTION_SECONDS: proxy files older than this are evicted
- HLS_ENGINE_TRANSCODE_TIMEOUT / HLS_ENGINE_PROXY_TIMEOUT / HLS_ENGINE_CLIP_TIMEOUT
- HLS_ENGINE_WATCH_INTERVAL: seconds between directory watcher scans
- HLS_ENGINE_MAX_CONCURRENT_JOBS: batch transcodes allowed at once
- HLS_ENGINE_ADAPTIVE_HLS: 'true' to emit one variant per requested resolution
- HLS_ENGINE_SUPPORTED_MIME_TYPES: comma separated list of watched MIME types
"""
import os
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Mapping, Optional, Tuple

from constants import ServeDefaults, WatchDefaults, TranscodeDefaults
from exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def _default_data_dir() -> Path:
    return Path.home() / ".local/share/hls-cache-engine"


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ('true', '1', 'yes')


def _as_int(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}", missing_keys=[key])
    if value <= 0:
        raise ConfigurationError(f"{key} must be positive, got {value}", missing_keys=[key])
    return value


@dataclass
class EngineConfig:
    """Runtime configuration of the engine"""

    data_dir: Path = field(default_factory=_default_data_dir)
    storage_root: Optional[Path] = None
    proxy_dir: Optional[Path] = None
    ffmpeg_path: str = "ffmpeg"

    proxy_retention_seconds: int = ServeDefaults.PROXY_RETENTION_SECONDS
    transcode_timeout_seconds: int = 6 * 3600
    proxy_timeout_seconds: int = 30 * 60
    clip_timeout_seconds: int = 10 * 60

    watch_interval_seconds: int = WatchDefaults.INTERVAL_SECONDS
    max_concurrent_jobs: int = 1
    adaptive_hls: bool = False
    segment_duration: int = TranscodeDefaults.SEGMENT_DURATION_SECONDS
    supported_mime_types: Tuple[str, ...] = WatchDefaults.SUPPORTED_MIME_TYPES

    def __post_init__(self):
        self.data_dir = Path(self.data_dir).expanduser()
        if self.storage_root is None:
            self.storage_root = self.data_dir / "storage"
        self.storage_root = Path(self.storage_root).expanduser()
        if self.proxy_dir is None:
            self.proxy_dir = self.data_dir / "proxy"
        self.proxy_dir = Path(self.proxy_dir).expanduser()

    @property
    def db_path(self) -> Path:
        return self.data_dir / "engine.db"

    @property
    def log_dir(self) -> Path:
        return self.data_dir / "logs"

    @property
    def progress_dir(self) -> Path:
        """Progress records (<cache_key>.json) and transcoder logs (<cache_key>.log)"""
        return self.data_dir / "progress"

    def ensure_directories(self) -> None:
        for directory in (self.data_dir, self.log_dir, self.progress_dir, self.proxy_dir, self.storage_root):
            directory.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'EngineConfig':
        """
        Build configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            EngineConfig instance

        Raises:
            ConfigurationError: If a numeric variable is malformed
        """
        env = os.environ if environ is None else environ

        config = cls(
            data_dir=Path(env.get('HLS_ENGINE_DATA_DIR') or _default_data_dir()),
            storage_root=Path(env['HLS_ENGINE_STORAGE_ROOT']) if env.get('HLS_ENGINE_STORAGE_ROOT') else None,
            proxy_dir=Path(env['HLS_ENGINE_PROXY_DIR']) if env.get('HLS_ENGINE_PROXY_DIR') else None,
            ffmpeg_path=env.get('HLS_ENGINE_FFMPEG') or "ffmpeg",
            proxy_retention_seconds=_as_int(env, 'HLS_ENGINE_PROXY_RETENTION_SECONDS', ServeDefaults.PROXY_RETENTION_SECONDS),
            transcode_timeout_seconds=_as_int(env, 'HLS_ENGINE_TRANSCODE_TIMEOUT', 6 * 3600),
            proxy_timeout_seconds=_as_int(env, 'HLS_ENGINE_PROXY_TIMEOUT', 30 * 60),
            clip_timeout_seconds=_as_int(env, 'HLS_ENGINE_CLIP_TIMEOUT', 10 * 60),
            watch_interval_seconds=_as_int(env, 'HLS_ENGINE_WATCH_INTERVAL', WatchDefaults.INTERVAL_SECONDS),
            max_concurrent_jobs=_as_int(env, 'HLS_ENGINE_MAX_CONCURRENT_JOBS', 1),
            adaptive_hls=_as_bool(env.get('HLS_ENGINE_ADAPTIVE_HLS', 'false')),
        )

        mime_types = env.get('HLS_ENGINE_SUPPORTED_MIME_TYPES')
        if mime_types:
            config.supported_mime_types = tuple(m.strip() for m in mime_types.split(',') if m.strip())

        if config.adaptive_hls:
            logger.info("✅ Adaptive HLS (one variant per resolution) ENABLED")
        else:
            logger.info("ℹ️  Adaptive HLS disabled, generating single-rendition caches")

        return config


@lru_cache(maxsize=1)
def get_engine_config() -> EngineConfig:
    """Process-wide configuration, read once from the environment"""
    config = EngineConfig.from_env()
    config.ensure_directories()
    return config
