"""
Per-room clip generation: photo → Kie.ai video → our storage.

  1. Pick a prompt (explicit, or built from vision / filename / position)
  2. Generate via Kie.ai (submit + poll, retried as a whole)
  3. Download, probe the duration, upload under videos/clips/
  4. Delete the local copy whatever happened
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from .. import prompts, vision
from ..kie import KieClient
from . import media
from .models import RoomVideoRequest, VideoClip, validate_url
from .orchestrator import WORK_DIR, Workspace
from .storage import clip_key, get_storage

logger = logging.getLogger(__name__)


async def resolve_prompt(request: RoomVideoRequest, analyzer=vision.analyze_room_image) -> str:
    if request.prompt:
        return request.prompt

    description = request.room_description
    category = prompts.detect_room_from_filename(request.filename).category

    if category is None or not description:
        analysis = await asyncio.to_thread(analyzer, request.image_url)
        if analysis is not None:
            category = category or analysis.category
            description = description or analysis.description or None

    return prompts.build_room_prompt(request.order, description, category)


async def generate_room_clip(
    request: RoomVideoRequest,
    kie: KieClient,
    storage=None,
    work_dir: Path = WORK_DIR,
    analyzer=vision.analyze_room_image,
) -> VideoClip:
    validate_url(request.image_url)
    storage = storage or get_storage()

    prompt = await resolve_prompt(request, analyzer)
    logger.info(f"Generating clip for room {request.order}")

    video_url = await kie.generate_video(request.image_url, prompt)

    workspace = Workspace(work_dir, f"room{request.order}")
    try:
        local_path = workspace.path("room")
        await kie.download_to_path(video_url, local_path)
        info = await asyncio.to_thread(media.probe_video, local_path)
        public_url = await asyncio.to_thread(storage.upload_file, local_path, clip_key(), "video/mp4")
    finally:
        workspace.cleanup()

    logger.info(f"Room {request.order} clip ready: {public_url} ({info.duration:.1f}s)")
    return VideoClip(url=public_url, order=request.order, duration=info.duration)
