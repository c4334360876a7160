"""
HLS Worker

Runs one claimed HLS_GENERATE job to completion on a worker thread.

The job payload holds the logical source path and the cache policy. The
source is stat'ed again when the job runs: if it changed after queueing, the
job is moved to the new cache key so progress is reported under the key a
client computes for the current file.
"""
import logging
from typing import Optional

from constants import FailureCategory, ProgressStatus
from domain.value_objects import CachePolicy
from exceptions import ApplicationError, SourceNotReadableError, TranscodeError, ValidationError
from models import Job
from services.failure_classifier import FailureClassifier
from services.interfaces import IFileStore, IJobQueue
from services.progress_tracker import ProgressStore
from services.transcode_executor import TranscodeExecutor

logger = logging.getLogger(__name__)


class HlsWorker:
    """Processes HLS_GENERATE jobs"""

    def __init__(self, queue: IJobQueue, file_store: IFileStore,
                 executor: TranscodeExecutor, progress_store: ProgressStore):
        self.queue = queue
        self.file_store = file_store
        self.executor = executor
        self.progress_store = progress_store

    def process_job(self, job: Job) -> bool:
        """
        Run a claimed job and mark it DONE or FAILED.

        Returns:
            True when the cache was generated (or already present)
        """
        payload = job.payload
        cache_key: Optional[str] = job.cache_key
        logger.info(f"▶️ Starting job {job.id} for {job.owner}:{payload.get('path')}")
        self.queue.heartbeat(job.id)

        try:
            path = payload.get("path")
            if not path:
                raise ValidationError(f"Job {job.id} has no source path", invalid_fields={"path": None})
            policy = CachePolicy.from_dict(payload.get("policy") or {})

            source = self.file_store.stat(job.owner, path)
            if source.cache_key != job.cache_key:
                logger.info(f"Source {source} changed since job {job.id} was queued, new key {source.cache_key}")
                self.queue.update_cache_key(job.id, source.cache_key)
                cache_key = source.cache_key

            self.executor.generate_hls(source, policy, job_id=job.id)
        except (TranscodeError, SourceNotReadableError) as e:
            # The executor already recorded and notified this failure
            self.fail_job(job, cache_key, e, notify=False)
            return False
        except ApplicationError as e:
            self.fail_job(job, cache_key, e)
            return False
        except Exception as e:
            logger.error(f"Job {job.id} crashed: {e}", exc_info=True)
            self.fail_job(job, cache_key, e)
            return False

        self.queue.complete(job.id)
        logger.info(f"✅ Job {job.id} completed")
        return True

    def fail_job(self, job: Job, cache_key: Optional[str], error: Exception, notify: bool = True) -> None:
        """
        Mark a job FAILED with the classified category of error.

        Unless notify is off, the progress record is set to failed and the
        owner gets a CACHE_FAILED notification.
        """
        category, message = FailureClassifier.classify(error)
        if notify:
            if cache_key:
                self.progress_store.update(
                    cache_key,
                    status=ProgressStatus.FAILED,
                    owner=job.owner,
                    message=message,
                    error=str(error),
                    job_id=job.id,
                )
            self.executor.notify_failure(job.owner, job.payload.get("path"), cache_key, error, job.id)
        self.queue.fail(job.id, message, category.value)
        logger.error(f"❌ Job {job.id} failed ({FailureCategory.get_ui_label(category)}): {message}")
