"""
Job repository for job-specific data access operations.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import func, update

from constants import JobStates
from models import Job as JobModel
from .base_repository import BaseRepository


class JobRepository(BaseRepository[JobModel]):
    """Repository for Job model operations."""

    def __init__(self, db: Session):
        super().__init__(db, JobModel)

    def get_by_state(self, state: str) -> List[JobModel]:
        """
        Get all jobs with a specific state.

        Args:
            state: Job state (QUEUED, RUNNING, DONE, FAILED)

        Returns:
            List of jobs in the specified state
        """
        return self.db.query(self.model).filter(
            self.model.state == state
        ).all()

    def get_by_batch(self, batch_id: str) -> List[JobModel]:
        """Jobs enqueued by one generate request, oldest first"""
        return self.db.query(self.model).filter(
            self.model.batch_id == batch_id
        ).order_by(self.model.created_at.asc()).all()

    def get_filtered(
        self,
        owner: Optional[str] = None,
        state: Optional[str] = None,
        kind: Optional[str] = None,
        limit: int = 100
    ) -> List[JobModel]:
        """
        Get jobs with optional filtering, newest first.

        Args:
            owner: Filter by owner
            state: Filter by job state
            kind: Filter by job kind
            limit: Maximum number of jobs

        Returns:
            List of matching jobs
        """
        query = self.db.query(self.model)

        if owner:
            query = query.filter(self.model.owner == owner)
        if state:
            query = query.filter(self.model.state == state)
        if kind:
            query = query.filter(self.model.kind == kind)

        return query.order_by(self.model.created_at.desc()).limit(limit).all()

    def has_pending_for_cache_key(self, cache_key: str) -> bool:
        """True when a QUEUED or RUNNING job exists for the cache key"""
        return self.db.query(self.model.id).filter(
            self.model.cache_key == cache_key,
            self.model.state.in_(JobStates.PENDING)
        ).first() is not None

    def next_queued(self, kind: str) -> Optional[JobModel]:
        """Highest priority QUEUED job of a kind (oldest first within a priority)"""
        return self.db.query(self.model).filter(
            self.model.state == JobStates.QUEUED,
            self.model.kind == kind
        ).order_by(self.model.priority.desc(), self.model.created_at.asc()).first()

    def try_claim(self, job_id: str) -> bool:
        """
        Conditionally move a job from QUEUED to RUNNING.

        The WHERE clause on state makes the claim atomic: when two workers race
        for the same job only one UPDATE matches a row.

        Returns:
            True if this caller claimed the job
        """
        now = datetime.utcnow()
        result = self.db.execute(
            update(self.model)
            .where(self.model.id == job_id, self.model.state == JobStates.QUEUED)
            .values(state=JobStates.RUNNING, started_at=now, last_heartbeat=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def reset_running_to_queued(self) -> int:
        """
        Re-queue every RUNNING job.

        Called at startup, when no worker can be holding a job, so anything
        still RUNNING was interrupted by a crash or shutdown.

        Returns:
            Number of jobs re-queued
        """
        result = self.db.execute(
            update(self.model)
            .where(self.model.state == JobStates.RUNNING)
            .values(state=JobStates.QUEUED, started_at=None, last_heartbeat=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def count_by_state(self, state: str) -> int:
        return self.db.query(self.model).filter(
            self.model.state == state
        ).count()

    def get_queue_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the job queue.

        Returns:
            Dictionary with counts by state
        """
        state_counts = self.db.query(
            self.model.state,
            func.count(self.model.id).label('count')
        ).group_by(self.model.state).all()

        by_state = {state: count for state, count in state_counts}
        return {
            "by_state": by_state,
            "total_queued": by_state.get(JobStates.QUEUED, 0),
            "total_running": by_state.get(JobStates.RUNNING, 0),
            "total_failed": by_state.get(JobStates.FAILED, 0),
            "total_done": by_state.get(JobStates.DONE, 0),
        }

    def can_retry(self, job: JobModel) -> bool:
        """
        Check if a failed job can be retried (hasn't exceeded max retries).

        Args:
            job: Job instance

        Returns:
            True if job can be retried, False otherwise
        """
        return job.state == JobStates.FAILED and job.retries < job.max_retries
