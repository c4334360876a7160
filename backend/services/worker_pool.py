import asyncio
from typing import Optional, Set
from constants import JobKinds, SettingKeys
from repositories.setting_repository import SettingRepository
from workers.hls_worker import HlsWorker
from models import Job
import logging

logger = logging.getLogger(__name__)

# Seconds between queue polls when there is nothing to do
IDLE_POLL_INTERVAL = 2.0
ERROR_BACKOFF = 5.0


class WorkerPool:
    """
    Runs queued HLS jobs and the periodic directory watcher.

    The dispatcher claims a job only once a slot of the semaphore is free, so
    at most max_concurrent_jobs transcodes run at a time. Each job runs on a
    thread through run_in_executor; ffmpeg itself is a subprocess.
    """

    def __init__(self):
        self.services = None
        self.semaphore: Optional[asyncio.Semaphore] = None

        self.dispatch_task = None
        self.watch_task = None
        self.job_tasks: Set[asyncio.Task] = set()

        self.running = False

    def _get_flag(self, key: str, default: bool) -> bool:
        """Read a boolean toggle from the settings table"""
        db = self.services.session_factory()
        try:
            return SettingRepository(db).get_bool(key, default)
        finally:
            db.close()

    async def _run_job(self, worker: HlsWorker, job: Job):
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, worker.process_job, job)
        except Exception as e:
            logger.error(f"HLS job {job.id} crashed: {e}", exc_info=True)
            try:
                await loop.run_in_executor(None, worker.fail_job, job, job.cache_key, e)
            except Exception as fail_error:
                logger.error(f"Could not mark job {job.id} failed: {fail_error}")
        finally:
            self.semaphore.release()

    async def _hls_dispatch_loop(self):
        """Continuously claim HLS_GENERATE jobs while a slot is free"""
        logger.info("HLS dispatch loop started")
        loop = asyncio.get_running_loop()
        worker = HlsWorker(
            self.services.queue,
            self.services.file_store,
            self.services.executor,
            self.services.progress_store,
        )

        while self.running:
            await self.semaphore.acquire()
            try:
                paused = await loop.run_in_executor(None, self._get_flag, SettingKeys.PAUSE_PROCESSING, False)
                job = None
                if not paused:
                    job = await loop.run_in_executor(None, self.services.queue.claim_next, JobKinds.HLS_GENERATE)
            except asyncio.CancelledError:
                self.semaphore.release()
                raise
            except Exception as e:
                self.semaphore.release()
                logger.error(f"HLS dispatch loop error: {e}", exc_info=True)
                await asyncio.sleep(ERROR_BACKOFF)
                continue

            if job is None:
                self.semaphore.release()
                await asyncio.sleep(IDLE_POLL_INTERVAL)
                continue

            task = asyncio.create_task(self._run_job(worker, job))
            self.job_tasks.add(task)
            task.add_done_callback(self.job_tasks.discard)

        logger.info("HLS dispatch loop stopped")

    async def _watch_loop(self):
        """Scan watched directories every watch_interval_seconds"""
        interval = self.services.config.watch_interval_seconds
        logger.info(f"Directory watcher loop started (every {interval}s)")
        loop = asyncio.get_running_loop()

        while self.running:
            try:
                enabled = await loop.run_in_executor(None, self._get_flag, SettingKeys.WATCH_ENABLED, True)
                if enabled:
                    await loop.run_in_executor(None, self.services.watcher.scan_all)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Directory watcher loop error: {e}", exc_info=True)
            await asyncio.sleep(interval)

        logger.info("Directory watcher loop stopped")

    async def start(self, services):
        """Start the dispatcher and the watcher"""
        if self.running:
            logger.warning("WorkerPool already running")
            return

        self.services = services
        self.semaphore = asyncio.Semaphore(services.config.max_concurrent_jobs)
        self.running = True
        logger.info(f"Starting WorkerPool ({services.config.max_concurrent_jobs} concurrent job(s))...")

        # Jobs a previous process was running are delivered again
        try:
            services.queue.reset_stale()
        except Exception as e:
            logger.error(f"Startup recovery failed: {e}")

        self.dispatch_task = asyncio.create_task(self._hls_dispatch_loop())
        self.watch_task = asyncio.create_task(self._watch_loop())

        logger.info("WorkerPool started - all workers running")

    async def stop(self):
        """Stop the loops; running transcodes are re-queued on next startup"""
        if not self.running:
            return

        logger.info("Stopping WorkerPool...")
        self.running = False

        tasks = [t for t in (self.dispatch_task, self.watch_task) if t is not None]
        tasks.extend(self.job_tasks)
        for task in tasks:
            if not task.done():
                task.cancel()

        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                logger.error(f"Worker task failed: {result}")

        if self.services.runner.active_count:
            logger.warning(f"🛑 {self.services.runner.active_count} transcoder process(es) still running at shutdown")

        logger.info("WorkerPool stopped")


# Global singleton
worker_pool = WorkerPool()
