import os
import time
import logging
import threading
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI

load_dotenv()

from . import metrics
from .queue import RedisJobQueue, get_job_queue, get_redis
from .worker import consume_forever
from .pipeline.routes import generate_router, status_router

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

RUN_WORKER = os.environ.get("RUN_WORKER", "1") not in ("0", "false", "no")

_stop_event = threading.Event()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Tour worker starting up...")
    metrics.set_gauge("start_time", time.time())

    consumer = None
    if RUN_WORKER:
        if get_redis() is None:
            logger.warning("No Redis — submissions will be accepted in unavailable-queue mode")
        _stop_event.clear()
        consumer = threading.Thread(
            target=consume_forever, args=(get_job_queue, _stop_event), daemon=True,
        )
        consumer.start()
        logger.info("Queue consumer thread launched")
    yield
    logger.info("Tour worker shutting down...")
    _stop_event.set()
    if consumer is not None:
        consumer.join(timeout=10)


app = FastAPI(title="Home Video Tours Worker", lifespan=lifespan)
app.include_router(generate_router)
app.include_router(status_router)


@app.get("/health")
def health_check():
    queue = get_job_queue()
    return {
        "status": "ok",
        "queue": "redis" if queue.available else "unavailable",
        "kie_api_key_set": bool(os.environ.get("KIE_API_KEY")),
    }


@app.get("/metrics")
def metrics_endpoint():
    queue = get_job_queue()
    if isinstance(queue, RedisJobQueue):
        try:
            metrics.set_gauge("queue_depth", queue.queue_length())
            metrics.set_gauge("active_count", queue.active_count())
        except Exception as e:
            logger.warning(f"Could not read queue gauges: {e}")
    return metrics.get_snapshot()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run("tour_worker.main:app", host="0.0.0.0", port=port)
