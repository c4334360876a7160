"""
Generation Service

Turns a generate request (a list of source paths and a cache policy) into
queued HLS_GENERATE jobs that share one batch id.
"""
import logging
from typing import Any, Dict, List, Optional

from constants import JobKinds, JobPriority, ProgressStatus
from domain.value_objects import CachePolicy, SourceFile
from exceptions import ValidationError
from models import generate_uuid
from services.interfaces import IFileStore, IJobQueue
from services.progress_tracker import ProgressStore

logger = logging.getLogger(__name__)


class GenerationService:
    """Enqueues batch HLS generation"""

    def __init__(self, file_store: IFileStore, queue: IJobQueue, progress_store: ProgressStore):
        self.file_store = file_store
        self.queue = queue
        self.progress_store = progress_store

    def enqueue_source(self, source: SourceFile, policy: CachePolicy, batch_id: str,
                       priority: int = JobPriority.MANUAL) -> Optional[Any]:
        """
        Queue one source unless a job for its cache key is already pending.

        Returns:
            The queued job, or None when an equivalent job was already pending
        """
        cache_key = source.cache_key
        if self.queue.has_pending(cache_key):
            logger.info(f"Job for {source} ({cache_key}) already pending, not queuing again")
            return None

        job = self.queue.enqueue(
            JobKinds.HLS_GENERATE,
            {"path": source.path, "policy": policy.to_dict()},
            owner=source.owner,
            cache_key=cache_key,
            batch_id=batch_id,
            priority=priority,
        )
        # A log from an earlier run must not be read as this job's progress
        self.progress_store.reset_log(cache_key)
        self.progress_store.update(
            cache_key,
            status=ProgressStatus.QUEUED,
            owner=source.owner,
            progress=0.0,
            message="Waiting for a worker",
            error=None,
            job_id=job.id,
            started_at=None,
        )
        return job

    def generate(self, owner: str, paths: List[str], policy: CachePolicy,
                 priority: int = JobPriority.MANUAL) -> Dict[str, Any]:
        """
        Queue HLS generation for source files.

        Every path is checked before anything is queued, so a missing file
        rejects the whole request.

        Returns:
            {"batch_id", "jobs": [...], "skipped": [...]}

        Raises:
            ValidationError: If no paths were given
            SourceNotFoundError: If a path does not exist
        """
        if not paths:
            raise ValidationError("No video files given", invalid_fields={"files": []})

        sources = [self.file_store.stat(owner, path) for path in paths]

        batch_id = generate_uuid()
        queued, skipped = [], []
        for source in sources:
            job = self.enqueue_source(source, policy, batch_id, priority)
            entry = {"path": source.path, "cache_key": source.cache_key}
            if job is None:
                skipped.append({**entry, "reason": "already queued"})
            else:
                queued.append({**entry, "job_id": job.id})

        logger.info(f"📋 Batch {batch_id}: {len(queued)} queued, {len(skipped)} already pending for {owner}")
        return {"batch_id": batch_id, "jobs": queued, "skipped": skipped}
