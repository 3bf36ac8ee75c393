"""
Queue consumer: dequeue a tour job, run the assembly pipeline, record the outcome.

The worker is the only writer of a job's state, progress and result. Failed
jobs are recorded as failed and never retried here.
"""

import time
import asyncio
import logging
import threading
from typing import Callable, Optional

from .errors import QueueUnavailableError
from . import metrics
from .pipeline.models import TourJobData
from .pipeline.orchestrator import TourAssemblyService
from .queue import JobQueue, QueuedJob, RedisJobQueue

logger = logging.getLogger(__name__)

# Outcome writes outlive short Redis blips; the artifacts already exist.
OUTCOME_ATTEMPTS = 12
OUTCOME_RETRY_DELAY = 5.0


class TourWorker:

    def __init__(
        self,
        queue: RedisJobQueue,
        service: Optional[TourAssemblyService] = None,
        outcome_attempts: int = OUTCOME_ATTEMPTS,
        outcome_retry_delay: float = OUTCOME_RETRY_DELAY,
        sleep=time.sleep,
    ):
        self.queue = queue
        self.service = service or TourAssemblyService()
        self.outcome_attempts = outcome_attempts
        self.outcome_retry_delay = outcome_retry_delay
        self._sleep = sleep

    def _progress_reporter(self, job_id: str):
        def report(pct: int, stage: str):
            try:
                self.queue.update_progress(job_id, pct)
            except QueueUnavailableError:
                logger.warning(f"[{job_id}] could not record progress {pct}% ({stage})")
        return report

    def _record_outcome(self, write, job_id: str, value):
        """Persist completed/failed, retrying while the backend is unreachable."""
        for attempt in range(1, self.outcome_attempts + 1):
            try:
                write(job_id, value)
                return
            except QueueUnavailableError:
                if attempt == self.outcome_attempts:
                    raise
                logger.warning(
                    f"[{job_id}] could not record outcome (attempt {attempt}/{self.outcome_attempts}), "
                    f"retrying in {self.outcome_retry_delay:g}s"
                )
                metrics.inc_counter("jobs.outcome_retries")
                self._sleep(self.outcome_retry_delay)

    def process(self, job: QueuedJob) -> bool:
        """Run one job to completion or failure. Returns True on success."""
        logger.info(f"Processing tour job {job.job_id}")
        metrics.set_gauge("active_jobs", 1)
        try:
            data = TourJobData.model_validate(job.payload)
            result = asyncio.run(self.service.run(
                job.job_id,
                data.clips,
                data.property_info,
                on_progress=self._progress_reporter(job.job_id),
            ))
        except Exception as e:
            logger.error(f"Tour job {job.job_id} failed: {e}", exc_info=True)
            metrics.inc_counter("jobs.failed")
            metrics.record_error("worker", e, job.job_id)
            self._record_outcome(self.queue.fail, job.job_id, str(e) or type(e).__name__)
            return False
        finally:
            metrics.set_gauge("active_jobs", 0)

        self._record_outcome(self.queue.complete, job.job_id, result.model_dump())
        metrics.inc_counter("jobs.completed")
        logger.info(f"Finished tour job {job.job_id}")
        return True

    def run_once(self, timeout: float = 5) -> Optional[bool]:
        """Process at most one job. None means nothing was waiting."""
        self.queue.promote_delayed()
        job = self.queue.dequeue(timeout=timeout)
        if job is None:
            return None
        return self.process(job)


def consume_forever(
    queue_provider: Callable[[], JobQueue],
    stop_event: threading.Event,
    service: Optional[TourAssemblyService] = None,
    idle_wait: float = 5,
):
    """Background thread body. Waits out backend outages and keeps consuming."""
    logger.info("Queue consumer thread started")
    worker: Optional[TourWorker] = None

    while not stop_event.is_set():
        queue = queue_provider()
        if not isinstance(queue, RedisJobQueue):
            worker = None
            stop_event.wait(idle_wait)
            continue

        try:
            if worker is None:
                worker = TourWorker(queue, service)
                worker.queue.recover_stale_jobs()
            worker.run_once(timeout=idle_wait)
        except QueueUnavailableError:
            logger.warning(f"Queue backend unavailable, retrying in {idle_wait:g}s")
            worker = None
            stop_event.wait(idle_wait)
        except Exception as e:
            logger.error(f"Queue consumer loop error: {e}", exc_info=True)
            stop_event.wait(2)

    logger.info("Queue consumer thread stopped")
