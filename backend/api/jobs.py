"""
Jobs and Queue API endpoints
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from database import get_db
from dependencies import EngineServices, get_current_owner, get_services
from repositories.job_repository import JobRepository
from schemas import JobOut
from constants import ProgressStatus
from exceptions import NotFoundError
from utils.error_handlers import handle_api_errors
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/jobs", response_model=List[JobOut])
def list_jobs(
    state: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    owner: str = Depends(get_current_owner),
    db: Session = Depends(get_db),
):
    """Jobs of the current user, newest first"""
    return JobRepository(db).get_filtered(owner=owner, state=state, limit=limit)


@router.get("/jobs/stats")
@handle_api_errors("Queue stats")
def queue_stats(services: EngineServices = Depends(get_services)):
    return services.queue.stats()


@router.get("/jobs/{job_id}", response_model=JobOut)
@handle_api_errors("Job lookup")
def get_job(
    job_id: str,
    owner: str = Depends(get_current_owner),
    services: EngineServices = Depends(get_services),
):
    job = services.queue.get(job_id)
    if job is None or job.owner != owner:
        raise NotFoundError(f"Job not found: {job_id}", {"job_id": job_id})
    return job


@router.post("/jobs/{job_id}/retry", response_model=JobOut)
@handle_api_errors("Job retry")
def retry_job(
    job_id: str,
    owner: str = Depends(get_current_owner),
    services: EngineServices = Depends(get_services),
):
    """Queue a fresh attempt of a FAILED job in the same batch"""
    job = services.queue.get(job_id)
    if job is None or job.owner != owner:
        raise NotFoundError(f"Job not found: {job_id}", {"job_id": job_id})

    new_job = services.queue.retry(job_id)
    services.progress_store.reset_log(new_job.cache_key)
    services.progress_store.update(
        new_job.cache_key,
        status=ProgressStatus.QUEUED,
        owner=new_job.owner,
        progress=0.0,
        message="Waiting for a worker",
        error=None,
        job_id=new_job.id,
    )
    return new_job
