"""
Application-wide constants and configuration keys.

This module centralizes all magic strings and numbers used throughout the application
to improve maintainability and reduce duplication.
"""
from enum import Enum


class FailureCategory(str, Enum):
    """
    Categorizes transcoder failures so users get an actionable message.

    Derived from the captured transcoder log by FailureClassifier.
    """

    SOURCE_MISSING = 'SOURCE_MISSING'          # Input vanished or path is wrong
    SOURCE_CORRUPT = 'SOURCE_CORRUPT'          # Input could not be decoded
    UNSUPPORTED_CODEC = 'UNSUPPORTED_CODEC'    # Encoder/decoder not available in this ffmpeg build
    STORAGE_PERMISSION = 'STORAGE_PERMISSION'  # Permission denied reading input or writing output
    STORAGE_SPACE = 'STORAGE_SPACE'            # Disk full while writing output
    TIMEOUT = 'TIMEOUT'                        # Wall-clock ceiling reached, process killed
    PROCESSING_ERROR = 'PROCESSING_ERROR'      # Anything else ffmpeg complained about
    UNKNOWN = 'UNKNOWN'

    @classmethod
    def is_input_problem(cls, category: 'FailureCategory') -> bool:
        """Check if the failure is caused by the source file rather than the server"""
        return category in [
            cls.SOURCE_MISSING,
            cls.SOURCE_CORRUPT,
        ]

    @classmethod
    def get_ui_label(cls, category: 'FailureCategory') -> str:
        """Get human-readable label for UI display"""
        labels = {
            cls.SOURCE_MISSING: "Source File Missing",
            cls.SOURCE_CORRUPT: "Corrupted Source File",
            cls.UNSUPPORTED_CODEC: "Unsupported Codec",
            cls.STORAGE_PERMISSION: "Permission Denied",
            cls.STORAGE_SPACE: "Insufficient Disk Space",
            cls.TIMEOUT: "Transcode Timed Out",
            cls.PROCESSING_ERROR: "Transcoding Error",
            cls.UNKNOWN: "Unknown Error",
        }
        return labels.get(category, "Unknown Error")

    @classmethod
    def get_recovery_hint(cls, category: 'FailureCategory') -> str:
        """Get recovery hint for UI display"""
        hints = {
            cls.SOURCE_MISSING: "Check that the video still exists",
            cls.SOURCE_CORRUPT: "Re-upload or replace the source file",
            cls.UNSUPPORTED_CODEC: "Install an ffmpeg build with the required codec",
            cls.STORAGE_PERMISSION: "Check folder permissions for the cache location",
            cls.STORAGE_SPACE: "Free up disk space and retry",
            cls.TIMEOUT: "Retry, or raise the transcode timeout for very long videos",
            cls.PROCESSING_ERROR: "Inspect the partial output and transcoder log, then retry",
            cls.UNKNOWN: "Retry the job",
        }
        return hints.get(category, "Retry the job")


class JobKinds:
    """Job kinds understood by the worker pool"""

    HLS_GENERATE = "HLS_GENERATE"

    ALL = (HLS_GENERATE,)


class JobStates:
    """Job queue states"""

    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    DONE = "DONE"
    FAILED = "FAILED"

    PENDING = (QUEUED, RUNNING)


class JobPriority:
    """Job priority constants.

    Higher values = processed first. The worker picks jobs with
    ORDER BY priority DESC, created_at ASC.
    """
    MANUAL_RETRY = 500
    MANUAL = 100
    AUTO_GENERATED = 0


class ProgressStatus:
    """Status values of a progress record"""

    NOT_FOUND = "not_found"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    TERMINAL = (COMPLETED, FAILED)


class ProgressModes:
    """Generation modes; each keeps its own progress record and log per cache key"""

    HLS = "hls"
    PROXY = "proxy"


class CacheLocations:
    """Where HLS caches are written"""

    RELATIVE = "relative"  # <video dir>/.cached_hls/<basename>/
    HOME = "home"          # /.cached_hls/<basename>/ in the owner's tree
    CUSTOM = "custom"      # <custom path>/.cached_hls/<basename>/

    ALL = (RELATIVE, HOME, CUSTOM)


class CacheLayout:
    """File and directory names of the on-disk cache layout"""

    CACHE_DIR_NAME = ".cached_hls"
    MASTER_MANIFEST = "master.m3u8"      # adaptive (preferred)
    LEGACY_MANIFEST = "playlist.m3u8"    # single rendition (legacy)
    SEGMENT_PATTERN = "segment_%03d.ts"
    VARIANT_SEGMENT_PATTERN = "segment_%v_%03d.ts"
    VARIANT_PLAYLIST_PATTERN = "playlist_%v.m3u8"

    # Partial names ffmpeg writes to before the manifest is published
    PARTIAL_PREFIX = "."
    PARTIAL_SUFFIX = ".partial"

    PROXY_EXTENSION = ".mp4"
    PROXY_PARTIAL_SUFFIX = ".part"

    @classmethod
    def partial_name(cls, manifest_name: str) -> str:
        return f"{cls.PARTIAL_PREFIX}{manifest_name}{cls.PARTIAL_SUFFIX}"


class ArtifactKinds:
    """Kinds of cache artifacts"""

    HLS = "hls"
    PROXY = "proxy"


class ContentTypes:
    """Content types of served artifacts, keyed by lower-case extension"""

    MANIFEST = "application/vnd.apple.mpegurl"
    SEGMENT = "video/mp2t"
    PROGRESSIVE = "video/mp4"
    FRAGMENT = "video/iso.segment"
    DEFAULT = "application/octet-stream"

    BY_EXTENSION = {
        ".m3u8": MANIFEST,
        ".ts": SEGMENT,
        ".mp4": PROGRESSIVE,
        ".m4s": FRAGMENT,
    }

    MANIFEST_EXTENSIONS = (".m3u8",)


class CacheControl:
    """Cache-Control header values"""

    IMMUTABLE = "public, max-age=31536000, immutable"  # segments, finished proxy files
    MANIFEST = "public, max-age=300"                   # playlists (5 minutes)


class ResolutionPresets:
    """Variant renditions: name -> (height, video bitrate, max rate, buffer size)"""

    PRESETS = {
        "1080p": (1080, "5000k", "5350k", "7500k"),
        "720p": (720, "2500k", "2675k", "3750k"),
        "480p": (480, "1000k", "1070k", "1500k"),
        "360p": (360, "600k", "642k", "900k"),
        "240p": (240, "400k", "428k", "600k"),
    }

    DEFAULT = ["720p", "480p", "240p"]

    @classmethod
    def is_known(cls, name: str) -> bool:
        return name in cls.PRESETS


class TranscodeDefaults:
    """Default values for transcoder invocations"""

    SEGMENT_DURATION_SECONDS = 6
    VIDEO_CODEC = "libx264"
    AUDIO_CODEC = "aac"
    AUDIO_BITRATE = "128k"
    HLS_PRESET = "fast"

    # Proxy (on-demand) rendition: 480p, tuned for speed over size
    PROXY_HEIGHT = 480
    PROXY_PRESET = "ultrafast"
    PROXY_CRF = 28
    PROXY_MAXRATE = "1200k"
    PROXY_BUFSIZE = "2400k"
    PROXY_THREADS = 3

    # Output validation
    MIN_OUTPUT_BYTES = 1024
    SIGNATURE_PROBE_BYTES = 32
    MP4_SIGNATURE = b"ftyp"

    # Diagnostic capture
    STDERR_TAIL_LINES = 40
    STDERR_TAIL_BYTES = 64 * 1024
    STREAM_CHUNK_BYTES = 64 * 1024

    # Summary tokens ffmpeg prints once output is finalized. Any of them
    # overrides a non-zero exit code (benign warnings can cause one).
    SUCCESS_MARKERS = ("muxing overhead:", "global headers:", "kb/s:")


class ServeDefaults:
    """Artifact serving configuration constants"""

    CHUNK_SIZE = 64 * 1024  # 64KB chunks
    PROXY_RETENTION_SECONDS = 2 * 3600  # 2 hours


class WatchDefaults:
    """Directory watcher configuration constants"""

    INTERVAL_SECONDS = 60 * 10  # 10 minutes
    SUPPORTED_MIME_TYPES = ("video/mp4", "video/quicktime")


class ServerConfig:
    """Server configuration constants"""

    HOST = "0.0.0.0"
    PORT = 8888

    @classmethod
    def url(cls) -> str:
        """Get the full server URL"""
        return f"http://{cls.HOST}:{cls.PORT}"


class SettingKeys:
    """Database setting keys used throughout the application"""

    PAUSE_PROCESSING = "pause_processing"
    WATCH_ENABLED = "watch_enabled"


class HTTPStatus:
    """HTTP status codes used throughout the application"""

    # Success
    OK = 200
    CREATED = 201
    ACCEPTED = 202
    NO_CONTENT = 204
    PARTIAL_CONTENT = 206

    # Client Errors
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    METHOD_NOT_ALLOWED = 405
    CONFLICT = 409
    REQUESTED_RANGE_NOT_SATISFIABLE = 416
    UNPROCESSABLE_ENTITY = 422

    # Server Errors
    INTERNAL_SERVER_ERROR = 500
    NOT_IMPLEMENTED = 501
    BAD_GATEWAY = 502
    SERVICE_UNAVAILABLE = 503
    GATEWAY_TIMEOUT = 504


class NotificationEvents:
    """Notification event types"""

    CACHE_GENERATED = "cache_generated"
    CACHE_FAILED = "cache_failed"
    WATCH_DISABLED = "watch_disabled"
