"""
Durable tour job queue on Redis, with a degraded fallback.

Reliable-queue layout (BLMOVE, so a job is never in limbo):
  tourqueue:waiting        — pending job ids (list, FIFO)
  tourqueue:active         — in-flight job ids (list)
  tourqueue:delayed        — scheduled job ids (sorted set, score = ready time)
  tourqueue:job:{job_id}   — job record (hash, TTL JOB_TTL_SECONDS)

Lifecycle: waiting → active → completed | failed; `delayed` jobs are
promoted to waiting once due. Only the worker moves a job past waiting,
and `result` is present exactly when the state is completed.

Two implementations of the same capability:
  RedisJobQueue        — durable backend
  UnavailableJobQueue  — backend unreachable: accepts submissions with a
                         fabricated `mock-` id, fails every status lookup
"""

import os
import json
import time
import uuid
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional

import redis
from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError

from .errors import InvalidJobError, JobNotFound, QueueUnavailableError
from .pipeline.models import JobState

logger = logging.getLogger(__name__)

REDIS_URL = os.environ.get("REDIS_URL", "")

QUEUE_KEY = "tourqueue:waiting"
ACTIVE_KEY = "tourqueue:active"
DELAYED_KEY = "tourqueue:delayed"
JOB_PREFIX = "tourqueue:job:"
JOB_TTL = int(os.environ.get("JOB_TTL_SECONDS", "86400"))  # 24 hours

STALE_JOB_TIMEOUT = 3600  # an active job older than this belongs to a dead worker
MOCK_PREFIX = "mock-"


@dataclass
class JobStatus:
    job_id: str
    state: JobState
    progress: int = 0
    result: Optional[dict] = None
    failed_reason: Optional[str] = None


@dataclass
class QueuedJob:
    job_id: str
    payload: dict


def _str(value) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class JobQueue(ABC):
    """What the orchestrator needs from a queue backend."""

    available = True

    @abstractmethod
    def enqueue(self, payload: dict, delay_seconds: int = 0) -> str:
        ...

    @abstractmethod
    def get_status(self, job_id: str) -> JobStatus:
        ...


# ═════════════════════════════════════════════════════════════════════════════
# Fallback
# ═════════════════════════════════════════════════════════════════════════════

class UnavailableJobQueue(JobQueue):
    """
    Stand-in while Redis is unreachable. Submissions are accepted but never
    persisted, so their ids can never be looked up.
    """

    available = False

    def enqueue(self, payload: dict, delay_seconds: int = 0) -> str:
        job_id = f"{MOCK_PREFIX}{uuid.uuid4()}"
        logger.warning(f"Redis not connected. Job {job_id} accepted without persistence")
        return job_id

    def get_status(self, job_id: str) -> JobStatus:
        logger.error(f"Cannot retrieve job {job_id} - Redis not connected")
        raise QueueUnavailableError()


# ═════════════════════════════════════════════════════════════════════════════
# Redis
# ═════════════════════════════════════════════════════════════════════════════

class RedisJobQueue(JobQueue):

    def __init__(self, redis_client, job_ttl: int = JOB_TTL):
        self._redis = redis_client
        self.job_ttl = job_ttl

    @contextmanager
    def _backend(self):
        try:
            yield
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error(f"Redis unreachable: {e}")
            raise QueueUnavailableError() from e

    @staticmethod
    def _key(job_id: str) -> str:
        return f"{JOB_PREFIX}{job_id}"

    def _read(self, job_id: str) -> Optional[dict]:
        data = self._redis.hgetall(self._key(job_id))
        if not data:
            return None
        return {_str(k): _str(v) for k, v in data.items()}

    # ── Enqueue ──────────────────────────────────────────────────────────

    def enqueue(self, payload: dict, delay_seconds: int = 0) -> str:
        job_id = str(uuid.uuid4())
        now = time.time()
        record = {
            "id": job_id,
            "state": JobState.DELAYED.value if delay_seconds > 0 else JobState.WAITING.value,
            "progress": "0",
            "data": json.dumps(payload),
            "created_at": str(now),
        }

        with self._backend():
            pipe = self._redis.pipeline(transaction=True)
            pipe.hset(self._key(job_id), mapping=record)
            pipe.expire(self._key(job_id), self.job_ttl)
            if delay_seconds > 0:
                pipe.zadd(DELAYED_KEY, {job_id: now + delay_seconds})
            else:
                pipe.lpush(QUEUE_KEY, job_id)
            pipe.execute()

        logger.info(f"Enqueued job {job_id} ({record['state']})")
        return job_id

    # ── Status ───────────────────────────────────────────────────────────

    def get_status(self, job_id: str) -> JobStatus:
        if job_id.startswith(MOCK_PREFIX):
            logger.error(f"Invalid job ID {job_id} - fallback jobs are never persisted")
            raise InvalidJobError(job_id)

        with self._backend():
            record = self._read(job_id)
        if record is None:
            raise JobNotFound(job_id)

        state = JobState(record.get("state", JobState.WAITING.value))
        result = None
        if state is JobState.COMPLETED and record.get("result"):
            result = json.loads(record["result"])

        return JobStatus(
            job_id=job_id,
            state=state,
            progress=int(record.get("progress") or 0),
            result=result,
            failed_reason=record.get("failed_reason") if state is JobState.FAILED else None,
        )

    # ── Worker side ──────────────────────────────────────────────────────

    def promote_delayed(self) -> int:
        """Move delayed jobs whose time has come onto the waiting list."""
        promoted = 0
        with self._backend():
            due = self._redis.zrangebyscore(DELAYED_KEY, 0, time.time())
            for item in due:
                job_id = _str(item)
                # zrem is the claim; only one worker wins it
                if not self._redis.zrem(DELAYED_KEY, job_id):
                    continue
                if not self._redis.exists(self._key(job_id)):
                    # record expired while delayed; hset would revive an empty one
                    logger.warning(f"Dropped delayed job {job_id}: no record")
                    continue
                self._redis.hset(self._key(job_id), "state", JobState.WAITING.value)
                self._redis.lpush(QUEUE_KEY, job_id)
                promoted += 1
        if promoted:
            logger.info(f"Promoted {promoted} delayed job(s)")
        return promoted

    def dequeue(self, timeout: float = 5) -> Optional[QueuedJob]:
        """
        Atomically move the oldest waiting job onto the active list and mark
        it active. `timeout` 0 means don't block. Returns None when idle.
        """
        with self._backend():
            if timeout > 0:
                item = self._redis.blmove(QUEUE_KEY, ACTIVE_KEY, timeout, "RIGHT", "LEFT")
            else:
                item = self._redis.lmove(QUEUE_KEY, ACTIVE_KEY, "RIGHT", "LEFT")
            if item is None:
                return None

            job_id = _str(item)
            record = self._read(job_id)
            if record is None:
                # record expired while waiting
                self._redis.lrem(ACTIVE_KEY, 1, job_id)
                logger.warning(f"Dropped job {job_id}: no record")
                return None

            self._redis.hset(self._key(job_id), mapping={
                "state": JobState.ACTIVE.value,
                "started_at": str(time.time()),
            })

        logger.info(f"Dequeued job {job_id} → active")
        return QueuedJob(job_id=job_id, payload=json.loads(record.get("data") or "{}"))

    def update_progress(self, job_id: str, progress: int):
        with self._backend():
            self._redis.hset(self._key(job_id), "progress", str(int(progress)))

    def complete(self, job_id: str, result: dict):
        with self._backend():
            pipe = self._redis.pipeline(transaction=True)
            pipe.hset(self._key(job_id), mapping={
                "state": JobState.COMPLETED.value,
                "progress": "100",
                "result": json.dumps(result),
                "finished_at": str(time.time()),
            })
            pipe.expire(self._key(job_id), self.job_ttl)
            pipe.lrem(ACTIVE_KEY, 1, job_id)
            pipe.execute()
        logger.info(f"Job {job_id} completed")

    def fail(self, job_id: str, reason: str):
        with self._backend():
            pipe = self._redis.pipeline(transaction=True)
            pipe.hset(self._key(job_id), mapping={
                "state": JobState.FAILED.value,
                "failed_reason": (reason or "Unknown error")[:1000],
                "finished_at": str(time.time()),
            })
            pipe.hdel(self._key(job_id), "result")
            pipe.expire(self._key(job_id), self.job_ttl)
            pipe.lrem(ACTIVE_KEY, 1, job_id)
            pipe.execute()
        logger.error(f"Job {job_id} failed: {reason}")

    def recover_stale_jobs(self, stale_after: float = STALE_JOB_TIMEOUT) -> int:
        """
        Fail jobs a crashed worker left active. They are not re-run; the
        caller resubmits if they want another attempt.
        """
        recovered = 0
        now = time.time()
        with self._backend():
            active = [_str(item) for item in self._redis.lrange(ACTIVE_KEY, 0, -1)]

        for job_id in active:
            with self._backend():
                record = self._read(job_id)
            if record is None:
                with self._backend():
                    self._redis.lrem(ACTIVE_KEY, 1, job_id)
                continue

            started_at = float(record.get("started_at") or 0)
            if started_at and now - started_at > stale_after:
                self.fail(job_id, "Worker restarted while processing this job")
                recovered += 1

        if recovered:
            logger.warning(f"Failed {recovered} stale job(s) left by a previous worker")
        return recovered

    def queue_length(self) -> int:
        with self._backend():
            return self._redis.llen(QUEUE_KEY)

    def active_count(self) -> int:
        with self._backend():
            return self._redis.llen(ACTIVE_KEY)


# ═════════════════════════════════════════════════════════════════════════════
# Connection
# ═════════════════════════════════════════════════════════════════════════════

_redis_client = None


def get_redis():
    """Get or create a Redis client. Returns None if Redis is not configured or unreachable."""
    global _redis_client
    if _redis_client is None and REDIS_URL:
        client = redis.from_url(REDIS_URL, decode_responses=True, socket_connect_timeout=2)
        try:
            client.ping()
            logger.info(f"Redis connected: {REDIS_URL[:30]}...")
            _redis_client = client
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.warning(f"Redis connection failed: {e} — using unavailable-queue mode")
    return _redis_client


def get_job_queue() -> JobQueue:
    """Select the queue backend for this call."""
    r = get_redis()
    if r is None:
        return UnavailableJobQueue()
    return RedisJobQueue(r)
