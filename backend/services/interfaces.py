"""
Service Interfaces

Abstract base classes for the collaborators the engine consumes.
This allows for dependency injection and easier testing/mocking.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from domain.value_objects import SourceFile


class IFileStore(ABC):
    """
    Interface over an owner's file tree.

    Paths are logical and owner-relative ("/Movies/clip.mp4"). Implementations
    must refuse paths that escape the owner's root.
    """

    @abstractmethod
    def exists(self, owner: str, path: str) -> bool:
        pass

    @abstractmethod
    def is_dir(self, owner: str, path: str) -> bool:
        pass

    @abstractmethod
    def is_readable(self, owner: str, path: str) -> bool:
        pass

    @abstractmethod
    def stat(self, owner: str, path: str) -> SourceFile:
        """
        Snapshot a file.

        Raises:
            SourceNotFoundError: If the path does not exist or is a directory
        """
        pass

    @abstractmethod
    def list_dir(self, owner: str, path: str) -> List[str]:
        """Return child names of a directory (not recursive)"""
        pass

    @abstractmethod
    def make_dirs(self, owner: str, path: str) -> Path:
        """
        Create a directory (and parents) if absent.

        Returns:
            Local filesystem path of the directory

        Raises:
            OutputDirectoryUnavailableError: If the path exists and is not a directory
        """
        pass

    @abstractmethod
    def local_path(self, owner: str, path: str) -> Path:
        """Map a logical path to a local filesystem path (for the transcoder)"""
        pass


class IJobQueue(ABC):
    """
    Persistent at-least-once work queue.

    A claimed job that is never completed or failed is handed out again after
    a restart, so consumers must be idempotent.
    """

    @abstractmethod
    def enqueue(self, kind: str, payload: Dict[str, Any], owner: str, cache_key: str,
                batch_id: Optional[str] = None, priority: int = 0) -> Any:
        pass

    @abstractmethod
    def claim_next(self, kind: str) -> Optional[Any]:
        """Atomically move the next QUEUED job of a kind to RUNNING and return it"""
        pass

    @abstractmethod
    def complete(self, job_id: str) -> None:
        pass

    @abstractmethod
    def fail(self, job_id: str, error: str, failure_category: Optional[str] = None) -> None:
        pass

    @abstractmethod
    def has_pending(self, cache_key: str) -> bool:
        """True when a QUEUED or RUNNING job exists for the cache key"""
        pass

    @abstractmethod
    def get(self, job_id: str) -> Optional[Any]:
        pass


class INotificationSink(ABC):
    """Fire-and-forget user notifications. Implementations never raise."""

    @abstractmethod
    def notify(self, owner: str, event_type: str, subject: str, payload: Optional[Dict[str, Any]] = None) -> None:
        pass


class IProcessRunner(ABC):
    """Runs transcoder command lines (swappable in tests)"""

    @abstractmethod
    def run_to_log(self, cmd: List[str], log_path: Path, timeout: float) -> int:
        """
        Run to completion with combined stdout+stderr appended to log_path.

        Returns:
            Process exit code

        Raises:
            SpawnFailedError: If the process could not be started
            TranscodeTimeoutError: If the process was killed on timeout
        """
        pass

    @abstractmethod
    def run_to_file(self, cmd: List[str], dest: Path, log_path: Path, timeout: float) -> "RunResult":
        """Run with stdout streamed into dest and stderr captured to log_path"""
        pass

    @abstractmethod
    def active_processes(self) -> List[Dict[str, Any]]:
        pass


class RunResult:
    """Outcome of a streamed run"""

    def __init__(self, returncode: int, bytes_written: int, stderr_tail: str):
        self.returncode = returncode
        self.bytes_written = bytes_written
        self.stderr_tail = stderr_tail

    def __repr__(self) -> str:
        return f"RunResult(returncode={self.returncode}, bytes_written={self.bytes_written})"
