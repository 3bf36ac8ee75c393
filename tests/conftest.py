import os

# Set before the package is imported; module-level config reads these once.
os.environ.setdefault("KIE_API_KEY", "test-kie-key")
os.environ["REDIS_URL"] = ""
os.environ["GEMINI_API_KEY"] = ""

import fakeredis
import pytest

from tour_worker import metrics
from tour_worker.pipeline.models import PropertyInfo, VideoClip
from tour_worker.queue import RedisJobQueue


@pytest.fixture(autouse=True)
def clear_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def redis_queue(redis_client) -> RedisJobQueue:
    return RedisJobQueue(redis_client, job_ttl=600)


@pytest.fixture
def clips() -> list[VideoClip]:
    return [
        VideoClip(url="https://cdn.example.com/clips/kitchen.mp4", order=1, duration=6),
        VideoClip(url="https://cdn.example.com/clips/front.mp4", order=0, duration=6),
    ]


@pytest.fixture
def property_info() -> PropertyInfo:
    return PropertyInfo(
        address="123 Main St, Springfield, IL",
        price="$450,000",
        agent_name="Jordan Lee",
        agent_company="Acme Realty",
        agent_phone="555-0100",
    )
