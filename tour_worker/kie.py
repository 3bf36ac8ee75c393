"""
Kie.ai image-to-video client.

Hides the asynchronous task protocol of the generation service:

  POST {base}/jobs/createTask   {model, input: {prompt, image_urls, mode}}
       → {code, msg, data: {taskId}}
  GET  {base}/jobs/recordInfo?taskId=...
       → {code, msg, data: {state, resultJson?, failMsg?}}

`resultJson` is itself a JSON string: {"resultUrls": [...], "videoUrl"?: "..."}.
A `code` other than 200 is an application-level failure whatever the HTTP status.
"""

import os
import json
import time
import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

from .errors import (
    DownloadError,
    GenerationError,
    GenerationFailed,
    GenerationFailedAfterRetries,
    GenerationResultMissing,
    GenerationSubmitError,
    GenerationTimeout,
)
from . import metrics

logger = logging.getLogger(__name__)

KIE_API_KEY = os.environ.get("KIE_API_KEY", "")
KIE_API_URL = os.environ.get("KIE_API_URL", "https://api.kie.ai/api/v1")
KIE_MODEL = os.environ.get("KIE_MODEL", "grok-imagine/image-to-video")
KIE_MODE = os.environ.get("KIE_MODE", "normal")  # fun | normal | spicy

# ── Polling / retry configuration ────────────────────────────────────────────
POLL_INTERVAL = 10.0     # seconds between status checks
MAX_POLL_TIME = 300.0    # 5 minutes wall-clock ceiling per task
MAX_ATTEMPTS = 3         # full submit+poll cycles
RETRY_DELAY = 5.0        # seconds between cycles
DOWNLOAD_TIMEOUT = 120.0

# Service states. Anything not terminal keeps the poll loop going.
SUCCESS_STATES = {"success"}
FAILED_STATES = {"fail", "failed"}


@dataclass
class GenerationTask:
    """One polling response, normalised."""
    task_id: str
    state: str
    result_url: Optional[str] = None
    fail_reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in SUCCESS_STATES or self.state in FAILED_STATES


def _parse_result_url(result_json) -> Optional[str]:
    """Prefer `videoUrl`, fall back to the first `resultUrls` entry."""
    if not result_json:
        return None
    if isinstance(result_json, str):
        try:
            result_json = json.loads(result_json)
        except json.JSONDecodeError:
            logger.warning(f"Unparseable resultJson: {result_json[:200]}")
            return None
    if not isinstance(result_json, dict):
        return None

    video_url = result_json.get("videoUrl")
    if video_url:
        return video_url
    urls = result_json.get("resultUrls") or []
    if isinstance(urls, list) and urls:
        return urls[0] or None
    return None


class KieClient:
    """
    Usage:
        async with KieClient() as kie:
            url = await kie.generate_video(image_url, prompt)
            await kie.download_to_path(url, "/tmp/room.mp4")

    `sleep` and `clock` are injectable so the poll/retry schedule can be
    driven by a fake clock.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: str = KIE_MODEL,
        mode: str = KIE_MODE,
        poll_interval: float = POLL_INTERVAL,
        max_poll_time: float = MAX_POLL_TIME,
        max_attempts: int = MAX_ATTEMPTS,
        retry_delay: float = RETRY_DELAY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep=asyncio.sleep,
        clock=time.monotonic,
    ):
        api_key = (api_key if api_key is not None else KIE_API_KEY).strip()
        if not api_key:
            raise RuntimeError("KIE_API_KEY is not configured")

        self.model = model
        self.mode = mode
        self.poll_interval = poll_interval
        self.max_poll_time = max_poll_time
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self._sleep = sleep
        self._transport = transport
        self._clock = clock
        self._client = httpx.AsyncClient(
            base_url=(base_url or KIE_API_URL).rstrip("/"),
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=30,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    # ── Create ───────────────────────────────────────────────────────────

    async def submit(self, image_url: str, prompt: str) -> str:
        """Create a generation task and return its task id."""
        payload = {
            "model": self.model,
            "input": {
                "prompt": prompt,
                "image_urls": [image_url],
                "mode": self.mode,
            },
        }
        logger.info(f"Kie.ai createTask: model={self.model}, image={image_url}")

        try:
            response = await self._client.post("/jobs/createTask", json=payload)
        except httpx.HTTPError as e:
            raise GenerationSubmitError(f"Failed to create task: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = response.text

        if response.status_code >= 400:
            raise GenerationSubmitError(
                f"Kie.ai error ({response.status_code}): {body}", payload=body
            )
        if not isinstance(body, dict) or body.get("code") != 200:
            message = (body.get("msg") or body.get("message")) if isinstance(body, dict) else body
            raise GenerationSubmitError(f"Failed to create task: {message}", payload=body)

        task_id = (body.get("data") or {}).get("taskId")
        if not task_id:
            raise GenerationSubmitError(f"No taskId in response: {body}", payload=body)

        logger.info(f"Kie.ai task created: {task_id}")
        return task_id

    # ── Poll ─────────────────────────────────────────────────────────────

    async def get_task(self, task_id: str) -> GenerationTask:
        """
        Fetch one status record.

        Network and HTTP-level errors propagate as httpx exceptions (the
        poll loop treats them as transient). A non-200 `code` is terminal.
        """
        response = await self._client.get("/jobs/recordInfo", params={"taskId": task_id})
        response.raise_for_status()
        body = response.json()
        if not isinstance(body, dict):
            raise ValueError(f"Unexpected status payload: {body!r}")

        if body.get("code") != 200:
            raise GenerationFailed(task_id, body.get("msg") or body.get("message") or f"code {body.get('code')}")

        data = body.get("data") or {}
        state = (data.get("state") or "").lower()
        task = GenerationTask(task_id=task_id, state=state)
        if state in SUCCESS_STATES:
            task.result_url = _parse_result_url(data.get("resultJson"))
        elif state in FAILED_STATES:
            task.fail_reason = data.get("failMsg") or data.get("failCode") or "Unknown error"
        return task

    async def await_result(self, task_id: str) -> str:
        """Poll until the task succeeds, fails, or MAX_POLL_TIME elapses."""
        start = self._clock()
        polls = 0

        while self._clock() - start < self.max_poll_time:
            polls += 1
            try:
                task = await self.get_task(task_id)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"Poll #{polls} for task {task_id} errored, retrying: {e}")
                metrics.inc_counter("generation.poll_errors")
                await self._sleep(self.poll_interval)
                continue

            logger.info(f"Task {task_id} poll #{polls}: state={task.state or 'unknown'}")

            if task.state in SUCCESS_STATES:
                if not task.result_url:
                    raise GenerationResultMissing(task_id)
                return task.result_url

            if task.state in FAILED_STATES:
                raise GenerationFailed(task_id, task.fail_reason)

            await self._sleep(self.poll_interval)

        raise GenerationTimeout(task_id, self.max_poll_time)

    # ── Submit + poll with retries ───────────────────────────────────────

    async def generate_video(self, image_url: str, prompt: str) -> str:
        """
        Run submit + await_result, retrying the whole cycle up to
        `max_attempts` times with `retry_delay` seconds in between.
        """
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            logger.info(f"Generating video (attempt {attempt}/{self.max_attempts})")
            try:
                task_id = await self.submit(image_url, prompt)
                video_url = await self.await_result(task_id)
                logger.info(f"Video generated: {video_url}")
                return video_url
            except GenerationError as e:
                last_error = e
                logger.error(f"Generation attempt {attempt}/{self.max_attempts} failed: {e}")

            if attempt < self.max_attempts:
                metrics.inc_counter("generation.retries")
                logger.info(f"Retrying in {self.retry_delay:g}s...")
                await self._sleep(self.retry_delay)

        raise GenerationFailedAfterRetries(self.max_attempts, last_error) from last_error

    # ── Download ─────────────────────────────────────────────────────────

    async def download_to_path(self, url: str, destination) -> Path:
        """
        Stream `url` into `destination`. A partial file may be left behind
        on failure; the caller owns its cleanup.
        """
        return await download_to_path(url, destination, transport=self._transport)


async def download_to_path(url: str, destination, transport=None, timeout: float = DOWNLOAD_TIMEOUT) -> Path:
    """Stream a remote asset to a local file. Raises DownloadError."""
    destination = Path(destination)
    logger.info(f"Downloading {url} → {destination.name}")
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True, transport=transport) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                with open(destination, "wb") as fh:
                    async for chunk in response.aiter_bytes(chunk_size=64 * 1024):
                        fh.write(chunk)
    except (httpx.HTTPError, OSError) as e:
        raise DownloadError(url, e) from e
    return destination
