"""
Error taxonomy for the tour worker.

  TourError
  ├── ValidationError            — malformed request, rejected before any work
  ├── GenerationError            — video generation service (Kie.ai)
  │   ├── GenerationSubmitError
  │   ├── GenerationFailed
  │   ├── GenerationResultMissing
  │   ├── GenerationTimeout
  │   └── GenerationFailedAfterRetries
  ├── DownloadError
  ├── StorageError
  ├── MediaStageError            — one pipeline stage failed (ffmpeg diagnostics attached)
  │   ├── ClipDownloadError
  │   ├── ConcatenationError
  │   └── PublishError
  └── JobQueueError
      ├── QueueUnavailableError
      ├── InvalidJobError
      └── JobNotFound
"""

from typing import Optional


class TourError(Exception):
    """Base class for everything this package raises on purpose."""


class ValidationError(TourError):
    pass


# ── Generation service ───────────────────────────────────────────────────────

class GenerationError(TourError):
    pass


class GenerationSubmitError(GenerationError):
    """Task creation was rejected. `payload` is the raw service response."""

    def __init__(self, message: str, payload=None):
        super().__init__(message)
        self.payload = payload


class GenerationFailed(GenerationError):
    def __init__(self, task_id: str, reason: str):
        super().__init__(f"Video generation failed for task {task_id}: {reason}")
        self.task_id = task_id
        self.reason = reason


class GenerationResultMissing(GenerationError):
    def __init__(self, task_id: str):
        super().__init__(f"Task {task_id} succeeded but returned no video URL")
        self.task_id = task_id


class GenerationTimeout(GenerationError):
    def __init__(self, task_id: str, seconds: float):
        super().__init__(f"Video generation for task {task_id} timed out after {seconds:g}s")
        self.task_id = task_id
        self.seconds = seconds


class GenerationFailedAfterRetries(GenerationError):
    def __init__(self, attempts: int, last_error: Exception):
        super().__init__(f"Failed to generate video after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


# ── Transfer ─────────────────────────────────────────────────────────────────

class DownloadError(TourError):
    def __init__(self, url: str, cause):
        super().__init__(f"Failed to download {url}: {cause}")
        self.url = url


class StorageError(TourError):
    pass


# ── Media pipeline ───────────────────────────────────────────────────────────

class MediaStageError(TourError):
    """A pipeline stage failed. `detail` holds the tool's stderr tail, if any."""

    def __init__(self, stage: str, message: str, detail: Optional[str] = None):
        text = f"[{stage}] {message}"
        if detail:
            text = f"{text}: {detail}"
        super().__init__(text)
        self.stage = stage
        self.detail = detail


class ClipDownloadError(MediaStageError):
    def __init__(self, order: int, url: str, cause):
        super().__init__("fetch", f"clip {order} could not be downloaded from {url}", str(cause))
        self.order = order
        self.url = url


class ConcatenationError(MediaStageError):
    def __init__(self, message: str, detail: Optional[str] = None, stage: str = "concatenate"):
        super().__init__(stage, message, detail)


class PublishError(MediaStageError):
    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__("publish", message, detail)


# ── Job queue ────────────────────────────────────────────────────────────────

class JobQueueError(TourError):
    pass


class QueueUnavailableError(JobQueueError):
    def __init__(self, message: str = "Video processing service unavailable. Please try again later."):
        super().__init__(message)


class InvalidJobError(JobQueueError):
    def __init__(self, job_id: str):
        super().__init__(f"Invalid job {job_id}. Please start a new video generation.")
        self.job_id = job_id


class JobNotFound(JobQueueError):
    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id
