"""
FastAPI routes for tour generation.

  POST /generate/room-video   — one room photo → clip (synchronous, minutes)
  POST /generate/full-tour    — enqueue tour assembly, returns {jobId}
  GET  /status/{jobId}        — {jobId, state, progress, result}
"""

import logging

from fastapi import APIRouter, HTTPException

from ..errors import (
    GenerationError,
    InvalidJobError,
    JobNotFound,
    QueueUnavailableError,
    TourError,
    ValidationError,
)
from ..jobs import TourJobOrchestrator
from ..kie import KieClient
from .models import (
    FullTourRequest,
    FullTourResponse,
    JobStatusResponse,
    RoomVideoRequest,
    RoomVideoResponse,
    TourResult,
)
from .rooms import generate_room_clip

logger = logging.getLogger(__name__)

generate_router = APIRouter(prefix="/generate", tags=["generate"])
status_router = APIRouter(prefix="/status", tags=["status"])

# Singleton orchestrator; the queue backend is picked per call
_orchestrator = TourJobOrchestrator()


@generate_router.post("/room-video", response_model=RoomVideoResponse)
async def room_video(request: RoomVideoRequest):
    """Generate, store and return one room clip."""
    try:
        async with KieClient() as kie:
            clip = await generate_room_clip(request, kie)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except GenerationError as e:
        logger.error(f"Room {request.order} generation failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    except TourError as e:
        logger.error(f"Room {request.order} clip failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    return RoomVideoResponse(video_url=clip.url, duration=clip.duration, order=clip.order)


@generate_router.post("/full-tour", response_model=FullTourResponse)
def full_tour(request: FullTourRequest):
    """Queue tour assembly; poll /status/{jobId} for the outcome."""
    try:
        job_id = _orchestrator.enqueue(request.clips, request.property_info, request.delay_seconds)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return FullTourResponse(job_id=job_id)


@status_router.get("/{job_id}", response_model=JobStatusResponse)
def job_status(job_id: str):
    try:
        status = _orchestrator.get_status(job_id)
    except JobNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidJobError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except QueueUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return JobStatusResponse(
        job_id=status.job_id,
        state=status.state,
        progress=status.progress,
        result=TourResult(**status.result) if status.result else None,
        failed_reason=status.failed_reason,
    )
