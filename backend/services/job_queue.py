"""
Database Job Queue

Default IJobQueue on the jobs table. Delivery is at-least-once: a job
claimed by a worker that dies stays RUNNING until the next startup re-queues
it, so job handlers must tolerate running twice.

Every call uses its own short-lived session so the queue can be shared by
request handlers and worker threads. Returned jobs are detached snapshots.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from constants import JobPriority, JobStates
from database import SessionLocal
from exceptions import DatabaseError, NotFoundError, ValidationError
from models import Job, generate_uuid
from repositories.job_repository import JobRepository
from services.interfaces import IJobQueue

logger = logging.getLogger(__name__)

# Claim races are rare (one worker loop per kind); give up after a few misses
_MAX_CLAIM_ATTEMPTS = 5


class DatabaseJobQueue(IJobQueue):
    """IJobQueue backed by the jobs table"""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    @staticmethod
    def _detach(db: Session, job: Optional[Job]) -> Optional[Job]:
        if job is not None:
            db.refresh(job)
            db.expunge(job)
        return job

    def enqueue(self, kind: str, payload: Dict[str, Any], owner: str, cache_key: str,
                batch_id: Optional[str] = None, priority: int = JobPriority.MANUAL) -> Job:
        db = self.session_factory()
        try:
            job = Job(
                kind=kind,
                state=JobStates.QUEUED,
                owner=owner,
                cache_key=cache_key,
                batch_id=batch_id or generate_uuid(),
                priority=priority,
            )
            job.payload = payload
            JobRepository(db).create(job)
            db.commit()
            logger.info(f"📥 Queued {kind} job {job.id} for {owner} ({cache_key})")
            return self._detach(db, job)
        except SQLAlchemyError as e:
            db.rollback()
            raise DatabaseError("enqueue", str(e))
        finally:
            db.close()

    def claim_next(self, kind: str) -> Optional[Job]:
        db = self.session_factory()
        try:
            repo = JobRepository(db)
            for _ in range(_MAX_CLAIM_ATTEMPTS):
                candidate = repo.next_queued(kind)
                if candidate is None:
                    return None
                claimed = repo.try_claim(candidate.id)
                db.commit()
                if claimed:
                    return self._detach(db, candidate)
                logger.debug(f"Job {candidate.id} was claimed by another worker, retrying")
            return None
        finally:
            db.close()

    def complete(self, job_id: str) -> None:
        db = self.session_factory()
        try:
            job = JobRepository(db).get_by_id(job_id)
            if job is None:
                logger.warning(f"Cannot complete unknown job {job_id}")
                return
            job.state = JobStates.DONE
            job.error_message = None
            job.failure_category = None
            job.completed_at = datetime.utcnow()
            db.commit()
        finally:
            db.close()

    def fail(self, job_id: str, error: str, failure_category: Optional[str] = None) -> None:
        db = self.session_factory()
        try:
            job = JobRepository(db).get_by_id(job_id)
            if job is None:
                logger.warning(f"Cannot fail unknown job {job_id}")
                return
            job.state = JobStates.FAILED
            job.error_message = error
            job.failure_category = failure_category
            job.completed_at = datetime.utcnow()
            db.commit()
        finally:
            db.close()

    def heartbeat(self, job_id: str) -> None:
        db = self.session_factory()
        try:
            job = JobRepository(db).get_by_id(job_id)
            if job is not None:
                job.last_heartbeat = datetime.utcnow()
                db.commit()
        finally:
            db.close()

    def update_cache_key(self, job_id: str, cache_key: str) -> None:
        """Point a job at a new cache key (the source changed after it was queued)"""
        db = self.session_factory()
        try:
            job = JobRepository(db).get_by_id(job_id)
            if job is not None and job.cache_key != cache_key:
                job.cache_key = cache_key
                db.commit()
        finally:
            db.close()

    def has_pending(self, cache_key: str) -> bool:
        db = self.session_factory()
        try:
            return JobRepository(db).has_pending_for_cache_key(cache_key)
        finally:
            db.close()

    def get(self, job_id: str) -> Optional[Job]:
        db = self.session_factory()
        try:
            return self._detach(db, JobRepository(db).get_by_id(job_id))
        finally:
            db.close()

    def get_batch(self, batch_id: str) -> List[Job]:
        db = self.session_factory()
        try:
            jobs = JobRepository(db).get_by_batch(batch_id)
            for job in jobs:
                db.expunge(job)
            return jobs
        finally:
            db.close()

    def retry(self, job_id: str) -> Job:
        """
        Queue a fresh job for a failed one.

        Raises:
            NotFoundError: If the job does not exist
            ValidationError: If the job is not FAILED
        """
        db = self.session_factory()
        try:
            repo = JobRepository(db)
            job = repo.get_by_id(job_id)
            if job is None:
                raise NotFoundError(f"Job not found: {job_id}", {"job_id": job_id})
            if job.state != JobStates.FAILED:
                raise ValidationError(
                    f"Cannot retry job in state {job.state}. Only FAILED jobs can be retried.",
                    invalid_fields={"state": job.state},
                )
            if not repo.can_retry(job):
                raise ValidationError(
                    f"Job {job_id} already retried {job.retries} times",
                    invalid_fields={"retries": job.retries},
                )

            # Create new job (don't reuse the failed one)
            new_job = Job(
                kind=job.kind,
                state=JobStates.QUEUED,
                owner=job.owner,
                cache_key=job.cache_key,
                batch_id=job.batch_id,
                payload_json=job.payload_json,
                priority=JobPriority.MANUAL_RETRY,
                retries=job.retries + 1,
                max_retries=job.max_retries,
            )
            repo.create(new_job)
            db.commit()
            logger.info(f"🔁 Created retry job {new_job.id} for failed job {job_id}")
            return self._detach(db, new_job)
        finally:
            db.close()

    def reset_stale(self) -> int:
        """Re-queue RUNNING jobs left over from a previous process"""
        db = self.session_factory()
        try:
            count = JobRepository(db).reset_running_to_queued()
            db.commit()
            if count:
                logger.info(f"🔧 Re-queued {count} job(s) interrupted by the last shutdown")
            return count
        finally:
            db.close()

    def stats(self) -> Dict[str, Any]:
        db = self.session_factory()
        try:
            return JobRepository(db).get_queue_stats()
        finally:
            db.close()
