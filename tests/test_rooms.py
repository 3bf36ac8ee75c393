import re
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tour_worker.errors import DownloadError, GenerationFailedAfterRetries, GenerationTimeout, StorageError, ValidationError
from tour_worker.pipeline.media import VideoInfo
from tour_worker.pipeline.models import RoomVideoRequest
from tour_worker.pipeline.rooms import generate_room_clip

CLIP_KEY = re.compile(r"^videos/clips/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\.mp4$")


class FakeKie:
    """Generation succeeds immediately; the download writes a small file."""

    def __init__(self, video_url="https://tempfile.kie.ai/out.mp4", download_error=None):
        self.video_url = video_url
        self.download_error = download_error
        self.generate_video = AsyncMock(return_value=video_url)
        self.downloaded_to = None

    async def download_to_path(self, url, destination):
        self.downloaded_to = Path(destination)
        self.downloaded_to.write_bytes(b"partial")
        if self.download_error:
            raise self.download_error
        return self.downloaded_to


@pytest.fixture
def storage():
    store = MagicMock()
    store.upload_file.side_effect = lambda path, key, content_type=None: f"https://cdn.example.com/{key}"
    return store


@pytest.fixture
def video_info():
    info = VideoInfo(width=1920, height=1080, fps=24.0, duration=6.04, has_audio=False)
    with patch("tour_worker.pipeline.media.probe_video", return_value=info) as fake_probe:
        yield fake_probe


def _request(**overrides):
    fields = {"image_url": "https://img.example.com/kitchen.jpg", "order": 3, "prompt": "slow pan"}
    fields.update(overrides)
    return RoomVideoRequest(**fields)


@pytest.mark.asyncio
async def test_clip_generated_downloaded_measured_and_uploaded(storage, video_info, tmp_path):
    kie = FakeKie()

    clip = await generate_room_clip(_request(), kie, storage=storage, work_dir=tmp_path)

    kie.generate_video.assert_awaited_once_with("https://img.example.com/kitchen.jpg", "slow pan")
    video_info.assert_called_once_with(kie.downloaded_to)
    path, key, content_type = storage.upload_file.call_args.args
    assert path == kie.downloaded_to
    assert CLIP_KEY.match(key)
    assert content_type == "video/mp4"
    assert clip.url == f"https://cdn.example.com/{key}"
    assert clip.order == 3
    assert clip.duration == pytest.approx(6.04)
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_prompt_built_when_none_given(storage, video_info, tmp_path):
    kie = FakeKie()
    analyzer = MagicMock(return_value=None)

    await generate_room_clip(
        _request(prompt=None, order=0, filename="front.jpg"), kie,
        storage=storage, work_dir=tmp_path, analyzer=analyzer,
    )

    prompt = kie.generate_video.call_args.args[1]
    assert "LATERAL camera movement" in prompt


@pytest.mark.asyncio
async def test_local_file_removed_when_upload_fails(storage, video_info, tmp_path):
    storage.upload_file.side_effect = StorageError("bucket unreachable")
    kie = FakeKie()

    with pytest.raises(StorageError):
        await generate_room_clip(_request(), kie, storage=storage, work_dir=tmp_path)

    assert kie.downloaded_to is not None
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_partial_download_removed(storage, video_info, tmp_path):
    kie = FakeKie(download_error=DownloadError("https://tempfile.kie.ai/out.mp4", "connection reset"))

    with pytest.raises(DownloadError):
        await generate_room_clip(_request(), kie, storage=storage, work_dir=tmp_path)

    assert list(tmp_path.iterdir()) == []
    storage.upload_file.assert_not_called()


@pytest.mark.asyncio
async def test_generation_failure_leaves_nothing_behind(storage, video_info, tmp_path):
    kie = FakeKie()
    kie.generate_video.side_effect = GenerationFailedAfterRetries(3, GenerationTimeout("task-1", 300))

    with pytest.raises(GenerationFailedAfterRetries):
        await generate_room_clip(_request(), kie, storage=storage, work_dir=tmp_path)

    assert kie.downloaded_to is None
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_invalid_image_url_rejected_before_generation(storage, tmp_path):
    kie = FakeKie()

    with pytest.raises(ValidationError):
        await generate_room_clip(_request(image_url="file:///etc/passwd"), kie, storage=storage, work_dir=tmp_path)

    kie.generate_video.assert_not_awaited()
