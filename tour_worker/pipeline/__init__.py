"""
Tour Assembly Pipeline

  Rooms — photo → Kie.ai clip → storage (one per room)
  Tours — clips → overlay → concat → end screen → compressed + vertical → storage

Routers live in `pipeline.routes`; they pull in the job queue, which itself
depends on this package's models.
"""

from .orchestrator import TourAssemblyService
from .models import JobState, PropertyInfo, TourResult, VideoClip

__all__ = [
    "TourAssemblyService",
    "JobState",
    "PropertyInfo",
    "TourResult",
    "VideoClip",
]
