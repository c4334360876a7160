"""
Failure Classifier Service

Analyzes transcoder failures and classifies them into user-actionable categories.
The category drives the message shown in notifications and job errors.
"""
import logging
from typing import Optional

from constants import FailureCategory
from exceptions import (
    OutputDirectoryUnavailableError,
    SourceNotFoundError,
    SourceNotReadableError,
    SpawnFailedError,
    TranscodeError,
    TranscodeTimeoutError,
)

logger = logging.getLogger(__name__)


class FailureClassifier:
    """
    Classifies transcoder failures into categories.

    The classifier looks at the exception type first and then at the captured
    transcoder output, which is where ffmpeg explains what went wrong.
    """

    # Keywords that indicate specific failure types (matched lower-case)
    SOURCE_MISSING_KEYWORDS = [
        'no such file or directory', 'does not exist', 'not found'
    ]

    SOURCE_CORRUPT_KEYWORDS = [
        'invalid data found when processing input', 'moov atom not found',
        'error while decoding', 'corrupt', 'truncated', 'could not find codec parameters',
        'invalid nal unit', 'end of file'
    ]

    UNSUPPORTED_CODEC_KEYWORDS = [
        'unknown encoder', 'unknown decoder', 'encoder not found', 'decoder not found',
        'unsupported codec', 'no decoder', 'not currently supported'
    ]

    STORAGE_SPACE_KEYWORDS = [
        'no space left on device', 'disk full', 'quota exceeded', 'not enough space'
    ]

    STORAGE_PERMISSION_KEYWORDS = [
        'permission denied', 'operation not permitted', 'read-only file system'
    ]

    @classmethod
    def classify(cls, exception: Exception, output: Optional[str] = None) -> tuple[FailureCategory, str]:
        """
        Analyze a failure and return (category, cleaned_message)

        Args:
            exception: The exception that ended the transcode
            output: Captured transcoder output; defaults to the exception's tail

        Returns:
            Tuple of (FailureCategory, human-readable message)
        """
        if output is None and isinstance(exception, TranscodeError):
            output = exception.output_tail
        text = f"{exception}\n{output or ''}".lower()

        logger.debug(f"Classifying transcode failure: {str(exception)[:200]}")

        if isinstance(exception, TranscodeTimeoutError):
            return (FailureCategory.TIMEOUT, "Transcoding took too long and was stopped")

        if isinstance(exception, SourceNotFoundError):
            return (FailureCategory.SOURCE_MISSING, "Source video no longer exists")

        if isinstance(exception, SourceNotReadableError):
            return (FailureCategory.STORAGE_PERMISSION, "Source video cannot be read")

        if isinstance(exception, SpawnFailedError):
            return (FailureCategory.UNSUPPORTED_CODEC, "Transcoder could not be started - check the ffmpeg installation")

        if isinstance(exception, OutputDirectoryUnavailableError):
            if any(kw in text for kw in cls.STORAGE_SPACE_KEYWORDS):
                return (FailureCategory.STORAGE_SPACE, "Insufficient disk space for the cache")
            return (FailureCategory.STORAGE_PERMISSION, "Cache directory cannot be written")

        # Disk space first: a full disk often also produces decode/IO noise
        if any(kw in text for kw in cls.STORAGE_SPACE_KEYWORDS):
            return (FailureCategory.STORAGE_SPACE, "Insufficient disk space for the cache")

        if any(kw in text for kw in cls.STORAGE_PERMISSION_KEYWORDS):
            return (FailureCategory.STORAGE_PERMISSION, "Permission denied reading the video or writing the cache")

        if any(kw in text for kw in cls.UNSUPPORTED_CODEC_KEYWORDS):
            return (FailureCategory.UNSUPPORTED_CODEC, "The installed ffmpeg lacks a required codec")

        if any(kw in text for kw in cls.SOURCE_CORRUPT_KEYWORDS):
            return (FailureCategory.SOURCE_CORRUPT, "Source video appears to be corrupted or invalid")

        if any(kw in text for kw in cls.SOURCE_MISSING_KEYWORDS):
            return (FailureCategory.SOURCE_MISSING, "Source video could not be opened")

        if isinstance(exception, TranscodeError):
            return (FailureCategory.PROCESSING_ERROR, f"Transcoding failed: {str(exception)[:100]}")

        return (FailureCategory.UNKNOWN, str(exception)[:200])
