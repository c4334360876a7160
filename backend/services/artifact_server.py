"""
Artifact Server

Streams cached artifacts (HLS manifests and segments, proxy MP4 files) with
byte-range support, content types and caching headers, and evicts expired
proxy files.

Range handling:
- no Range header: 200 with the whole file
- "bytes=<start>-<end>" (end optional): 206 when 0 <= start <= end < size
- anything else: RangeNotSatisfiableError (416, Content-Range: bytes */size)
"""
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Dict, Iterator, List, Optional
import logging
import re

from fastapi import Request
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from constants import CacheControl, CacheLayout, ContentTypes, HTTPStatus, ServeDefaults
from exceptions import ArtifactNotFoundError, RangeNotSatisfiableError

logger = logging.getLogger(__name__)

_RANGE_RE = re.compile(r'^bytes=(\d+)-(\d*)$')

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Range",
    "Access-Control-Expose-Headers": "Content-Length, Content-Range, Accept-Ranges",
}


def parse_range_header(range_header: str, file_size: int) -> tuple[int, int]:
    """
    Parse a single-range header into inclusive (start, end).

    Raises:
        RangeNotSatisfiableError: If the header is malformed or outside the file
    """
    match = _RANGE_RE.match(range_header.strip()) if range_header else None
    if not match:
        raise RangeNotSatisfiableError(range_header, file_size)

    start = int(match.group(1))
    end = int(match.group(2)) if match.group(2) else file_size - 1

    if not (0 <= start <= end < file_size):
        raise RangeNotSatisfiableError(range_header, file_size)
    return start, end


def content_type_for(path: Path) -> str:
    return ContentTypes.BY_EXTENSION.get(Path(path).suffix.lower(), ContentTypes.DEFAULT)


def cache_control_for(path: Path) -> str:
    """Manifests may still be rewritten; everything else is content-addressed"""
    if Path(path).suffix.lower() in ContentTypes.MANIFEST_EXTENSIONS:
        return CacheControl.MANIFEST
    return CacheControl.IMMUTABLE


class ActiveStreamRegistry:
    """Reference counts of files currently being streamed"""

    def __init__(self):
        self._lock = threading.Lock()
        self._counts: Dict[str, int] = {}

    def acquire(self, path: Path) -> None:
        key = str(path)
        with self._lock:
            self._counts[key] = self._counts.get(key, 0) + 1

    def release(self, path: Path) -> None:
        key = str(path)
        with self._lock:
            remaining = self._counts.get(key, 0) - 1
            if remaining > 0:
                self._counts[key] = remaining
            else:
                self._counts.pop(key, None)

    def is_active(self, path: Path) -> bool:
        with self._lock:
            return str(path) in self._counts

    @contextmanager
    def streaming(self, path: Path) -> Iterator[None]:
        self.acquire(path)
        try:
            yield
        finally:
            self.release(path)

    def __len__(self) -> int:
        with self._lock:
            return len(self._counts)


@dataclass
class ServePlan:
    """What a response for a file and Range header will contain"""

    path: Path
    status_code: int
    start: int
    end: int
    file_size: int
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def content_length(self) -> int:
        return self.end - self.start + 1 if self.file_size else 0


class ArtifactServer:
    """Builds streaming responses for artifacts on the local disk"""

    def __init__(self, registry: Optional[ActiveStreamRegistry] = None, chunk_size: int = ServeDefaults.CHUNK_SIZE):
        self.registry = registry or ActiveStreamRegistry()
        self.chunk_size = chunk_size

    def plan(self, path: Path, range_header: Optional[str] = None,
             cache_control: Optional[str] = None) -> ServePlan:
        """
        Work out status and headers without touching file contents.

        Raises:
            ArtifactNotFoundError: If the file does not exist
            RangeNotSatisfiableError: If the Range header cannot be satisfied
        """
        path = Path(path)
        if not path.is_file():
            raise ArtifactNotFoundError(path.name)
        file_size = path.stat().st_size

        headers = {
            "Accept-Ranges": "bytes",
            "Cache-Control": cache_control or cache_control_for(path),
            **CORS_HEADERS,
        }

        if range_header:
            start, end = parse_range_header(range_header, file_size)
            headers["Content-Range"] = f"bytes {start}-{end}/{file_size}"
            plan = ServePlan(path, HTTPStatus.PARTIAL_CONTENT, start, end, file_size, headers)
        else:
            plan = ServePlan(path, HTTPStatus.OK, 0, max(file_size - 1, 0), file_size, headers)

        headers["Content-Length"] = str(plan.content_length)
        return plan

    def serve(self, path: Path, range_header: Optional[str] = None, request: Optional[Request] = None,
              cache_control: Optional[str] = None) -> StreamingResponse:
        """
        Stream a file. It is registered as active before it is stat'ed, so an
        eviction sweep cannot remove it between planning and the first read.
        """
        path = Path(path)
        self.registry.acquire(path)
        try:
            plan = self.plan(path, range_header, cache_control)
        except Exception:
            self.registry.release(path)
            raise
        logger.debug(f"Serving {plan.path.name} [{plan.status_code}] bytes {plan.start}-{plan.end}/{plan.file_size}")
        return StreamingResponse(
            self.iter_file(plan.path, plan.start, plan.content_length, request, registered=True),
            status_code=plan.status_code,
            media_type=content_type_for(plan.path),
            headers=plan.headers,
        )

    async def iter_file(self, path: Path, start: int, length: int, request: Optional[Request] = None,
                        registered: bool = False) -> AsyncIterator[bytes]:
        """
        Yield exactly length bytes from start.

        The file is registered as actively streamed for the lifetime of the
        generator, so eviction skips it, and the handle is closed as soon as
        the client goes away. With registered set, the caller already acquired
        the registry entry and this generator only releases it.
        """
        if not registered:
            self.registry.acquire(path)
        handle = None
        try:
            handle = await run_in_threadpool(open, path, 'rb')
            await run_in_threadpool(handle.seek, start)
            remaining = length
            while remaining > 0:
                if request is not None and await request.is_disconnected():
                    logger.debug(f"Client disconnected while streaming {path.name}")
                    break
                data = await run_in_threadpool(handle.read, min(self.chunk_size, remaining))
                if not data:
                    break
                remaining -= len(data)
                yield data
        finally:
            if handle is not None:
                handle.close()
            self.registry.release(path)


class ProxyEvictor:
    """Deletes proxy files (and stale partial files) past the retention window"""

    def __init__(self, proxy_dir: Path, retention_seconds: int, registry: ActiveStreamRegistry):
        self.proxy_dir = Path(proxy_dir)
        self.retention_seconds = retention_seconds
        self.registry = registry

    def _is_proxy_file(self, path: Path) -> bool:
        name = path.name
        return name.endswith(CacheLayout.PROXY_EXTENSION) or \
            name.endswith(CacheLayout.PROXY_EXTENSION + CacheLayout.PROXY_PARTIAL_SUFFIX)

    def sweep(self, now: Optional[float] = None) -> List[Path]:
        """
        Remove expired proxy files.

        Args:
            now: Reference time (epoch seconds); defaults to the current time

        Returns:
            Paths that were deleted
        """
        if not self.proxy_dir.is_dir():
            return []
        cutoff = (time.time() if now is None else now) - self.retention_seconds
        removed = []

        for path in self.proxy_dir.iterdir():
            if not path.is_file() or not self._is_proxy_file(path):
                continue
            try:
                if path.stat().st_mtime >= cutoff:
                    continue
            except FileNotFoundError:
                continue
            if self.registry.is_active(path):
                logger.debug(f"Skipping eviction of {path.name}: currently streaming")
                continue
            try:
                path.unlink()
                removed.append(path)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Failed to evict proxy file {path}: {e}")

        if removed:
            logger.info(f"🧹 Evicted {len(removed)} expired proxy file(s)")
        return removed
