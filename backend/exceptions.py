"""
Custom exception classes for the application.

This module defines domain-specific exceptions that provide better error handling
and clearer error messages throughout the application.
"""


class ApplicationError(Exception):
    """Base exception for all application errors"""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(ApplicationError):
    """Raised when there's a configuration issue"""

    def __init__(self, message: str, missing_keys: list[str] | None = None):
        details = {"missing_keys": missing_keys} if missing_keys else {}
        super().__init__(message, details)


class ValidationError(ApplicationError):
    """Raised when validation fails"""

    def __init__(self, message: str, invalid_fields: dict | None = None):
        details = {"invalid_fields": invalid_fields} if invalid_fields else {}
        super().__init__(message, details)


class DatabaseError(ApplicationError):
    """Raised when database operations fail"""

    def __init__(self, operation: str, message: str):
        details = {"operation": operation}
        super().__init__(message, details)


# ---------------------------------------------------------------------------
# Lookup errors
# ---------------------------------------------------------------------------

class NotFoundError(ApplicationError):
    """Raised when a source file, artifact or record does not exist"""


class SourceNotFoundError(NotFoundError):
    """Raised when the source video does not exist in the owner's file store"""

    def __init__(self, owner: str, path: str):
        super().__init__(f"Video file not found: {path}", {"owner": owner, "path": path})


class ArtifactNotFoundError(NotFoundError):
    """Raised when a cached artifact does not exist"""

    def __init__(self, reference: str):
        super().__init__(f"Cached artifact not found: {reference}", {"reference": reference})


class PermissionDeniedError(ApplicationError):
    """Raised when the caller may not read or write a path"""


class SourceNotReadableError(PermissionDeniedError):
    """Raised when the source video exists but cannot be read"""

    def __init__(self, owner: str, path: str, reason: str | None = None):
        msg = f"Video file not accessible: {path}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg, {"owner": owner, "path": path})


# ---------------------------------------------------------------------------
# Transcode errors
# ---------------------------------------------------------------------------

class TranscodeError(ApplicationError):
    """
    Base class for transcoder failures.

    details always carries the redacted command line and the tail of the
    captured diagnostic output so a failure can be diagnosed without re-running.
    """

    def __init__(self, message: str, command: list[str] | None = None,
                 output_tail: str = "", **extra):
        details = {"command": command or [], "output_tail": output_tail}
        details.update(extra)
        super().__init__(message, details)

    @property
    def output_tail(self) -> str:
        return self.details.get("output_tail", "")


class SpawnFailedError(TranscodeError):
    """Raised when the transcoder subprocess could not be started"""


class ProcessFailedError(TranscodeError):
    """Raised when the transcoder exited non-zero without any success marker"""

    def __init__(self, returncode: int, command: list[str] | None = None, output_tail: str = ""):
        super().__init__(
            f"Transcoder failed with return code {returncode}",
            command=command,
            output_tail=output_tail,
            returncode=returncode,
        )


class OutputInvalidError(TranscodeError):
    """Raised when the transcoder produced output that fails validation"""


class OutputDirectoryUnavailableError(TranscodeError):
    """Raised when the cache output directory cannot be created or used"""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Cache directory unavailable: {path} - {reason}", path=path)


class TranscodeTimeoutError(TranscodeError):
    """Raised when the transcoder exceeded its wall-clock ceiling and was killed"""

    def __init__(self, timeout_seconds: float, command: list[str] | None = None, output_tail: str = ""):
        super().__init__(
            f"Transcoder timed out after {timeout_seconds:.0f}s",
            command=command,
            output_tail=output_tail,
            timeout_seconds=timeout_seconds,
        )


# ---------------------------------------------------------------------------
# Serving / watching errors
# ---------------------------------------------------------------------------

class RangeNotSatisfiableError(ApplicationError):
    """Raised when a Range header cannot be satisfied for a file"""

    def __init__(self, range_header: str, file_size: int):
        self.file_size = file_size
        super().__init__(
            f"Invalid range {range_header!r} for file size {file_size}",
            {"range": range_header, "file_size": file_size},
        )


class DirectoryGoneError(ApplicationError):
    """Raised when a watched directory no longer exists"""

    def __init__(self, owner: str, directory: str):
        super().__init__(
            f"Watched directory no longer exists: {directory}",
            {"owner": owner, "directory": directory},
        )
