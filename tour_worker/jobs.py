"""
Tour job orchestration: the front door between callers and the worker.

`enqueue` never waits for the pipeline. When the queue backend cannot take
the job, it still answers with a fabricated id (see queue.UnavailableJobQueue)
and every later status lookup for that id fails explicitly.
"""

import logging
from typing import Callable, Optional

from .errors import QueueUnavailableError
from . import metrics
from .pipeline.models import PropertyInfo, TourJobData, VideoClip, validate_clips, validate_property_info
from .queue import JobQueue, JobStatus, UnavailableJobQueue, get_job_queue

logger = logging.getLogger(__name__)


class TourJobOrchestrator:

    def __init__(self, queue_provider: Callable[[], JobQueue] = get_job_queue):
        self._queue_provider = queue_provider
        self._fallback = UnavailableJobQueue()

    def enqueue(
        self,
        clips: list[VideoClip],
        property_info: Optional[PropertyInfo],
        delay_seconds: int = 0,
    ) -> str:
        """Validate, persist as `waiting` (or `delayed`), return the job id."""
        validate_clips(clips)
        validate_property_info(property_info)

        payload = TourJobData(clips=clips, property_info=property_info).model_dump(by_alias=True)
        queue = self._queue_provider()
        try:
            job_id = queue.enqueue(payload, delay_seconds)
        except QueueUnavailableError:
            logger.warning("Queue backend went away, accepting job in fallback mode")
            queue = self._fallback
            job_id = queue.enqueue(payload, delay_seconds)

        metrics.inc_counter("jobs.enqueued" if queue.available else "jobs.fallback")

        logger.info(f"Tour job {job_id} accepted: {len(clips)} clip(s), {property_info.address!r}")
        return job_id

    def get_status(self, job_id: str) -> JobStatus:
        return self._queue_provider().get_status(job_id)
