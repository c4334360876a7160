"""
Directory Watcher

Periodically scans the directories registered for automatic HLS generation
and queues a batch job for every supported video that has no cache yet.

A scan is safe to repeat every interval: a video that already has a cache
costs one existence probe, and a video whose job is still pending is not
queued a second time. A registration whose directory has disappeared is
disabled for good; only re-registering enables it again.
"""
import posixpath
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterator, List, Optional, Sequence
import logging

from sqlalchemy.orm import Session

from constants import JobPriority, NotificationEvents
from domain.value_objects import CachePolicy, SourceFile
from exceptions import ApplicationError, DirectoryGoneError
from models import WatchRegistration, generate_uuid
from repositories.watch_repository import WatchRepository
from services.cache_locator import CacheLocator
from services.generation_service import GenerationService
from services.interfaces import IFileStore, IJobQueue, INotificationSink

logger = logging.getLogger(__name__)


def discover_videos(file_store: IFileStore, owner: str, directory: str,
                    mime_types: Sequence[str]) -> Iterator[SourceFile]:
    """
    Recursively yield videos of the given MIME types under a directory.

    Hidden directories (including .cached_hls) are not descended into and
    hidden files are skipped.
    """
    pending = [directory]
    while pending:
        current = pending.pop()
        for name in file_store.list_dir(owner, current):
            if name.startswith('.'):
                continue
            child = posixpath.join(current, name)
            try:
                if file_store.is_dir(owner, child):
                    pending.append(child)
                    continue
                source = file_store.stat(owner, child)
            except ApplicationError as e:
                # Removed between listing and stat, or a link out of the owner tree
                logger.debug(f"Skipping {child}: {e.message}")
                continue
            if source.mime_type in mime_types:
                yield source


@dataclass
class ScanResult:
    """Outcome of one scan pass"""

    registrations_scanned: int = 0
    registrations_disabled: int = 0
    files_seen: int = 0
    jobs_enqueued: int = 0
    batch_id: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "registrations_scanned": self.registrations_scanned,
            "registrations_disabled": self.registrations_disabled,
            "files_seen": self.files_seen,
            "jobs_enqueued": self.jobs_enqueued,
            "batch_id": self.batch_id,
            "errors": self.errors,
        }


class DirectoryWatcher:
    """Scans watch registrations and queues missing caches"""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        file_store: IFileStore,
        locator: CacheLocator,
        queue: IJobQueue,
        generation: GenerationService,
        mime_types: Sequence[str],
        notifier: Optional[INotificationSink] = None,
    ):
        self.session_factory = session_factory
        self.file_store = file_store
        self.locator = locator
        self.queue = queue
        self.generation = generation
        self.mime_types = tuple(mime_types)
        self.notifier = notifier

    def _has_cache(self, source: SourceFile, policy: CachePolicy) -> bool:
        if self.locator.find_existing(source) is not None:
            return True
        # The registration's own target may be a custom path that is not a mount
        target = self.locator.resolve(source, policy)
        return self.locator.published_manifest(source.owner, target) is not None

    def _check_directory(self, registration: WatchRegistration) -> None:
        if not self.file_store.is_dir(registration.owner, registration.directory):
            raise DirectoryGoneError(registration.owner, registration.directory)

    def scan_registration(self, repo: WatchRepository, registration: WatchRegistration,
                          result: ScanResult) -> None:
        """
        Scan one registration, updating result in place.

        Raises:
            DirectoryGoneError: If the watched directory no longer exists
        """
        self._check_directory(registration)
        policy = WatchRepository.policy_of(registration)

        for source in discover_videos(self.file_store, registration.owner, registration.directory, self.mime_types):
            result.files_seen += 1
            if self._has_cache(source, policy):
                continue
            if self.queue.has_pending(source.cache_key):
                continue
            if result.batch_id is None:
                result.batch_id = generate_uuid()
            job = self.generation.enqueue_source(source, policy, result.batch_id, JobPriority.AUTO_GENERATED)
            if job is not None:
                result.jobs_enqueued += 1

        repo.mark_scanned(registration)

    def scan_all(self, owner: Optional[str] = None) -> ScanResult:
        """
        Scan every enabled registration (optionally only one owner's).

        Returns:
            ScanResult with counts of what happened
        """
        result = ScanResult()
        db = self.session_factory()
        try:
            repo = WatchRepository(db)
            registrations = repo.get_enabled()
            if owner is not None:
                registrations = [r for r in registrations if r.owner == owner]

            for registration in registrations:
                result.registrations_scanned += 1
                try:
                    self.scan_registration(repo, registration, result)
                except DirectoryGoneError as e:
                    repo.disable(registration, datetime.utcnow())
                    # Release the write lock before the notifier opens its own session
                    db.commit()
                    result.registrations_disabled += 1
                    logger.warning(f"🚫 {e.message}; disabled watch {registration.id}")
                    if self.notifier is not None:
                        self.notifier.notify(registration.owner, NotificationEvents.WATCH_DISABLED,
                                             registration.directory, {"watch_id": registration.id})
                except ApplicationError as e:
                    result.errors.append(f"{registration.directory}: {e.message}")
                    logger.error(f"Invalid watch registration {registration.id}: {e.message}")
                db.commit()
        finally:
            db.close()

        logger.info(
            f"👀 Watch scan: {result.registrations_scanned} registrations, {result.files_seen} videos, "
            f"{result.jobs_enqueued} queued, {result.registrations_disabled} disabled"
        )
        return result
