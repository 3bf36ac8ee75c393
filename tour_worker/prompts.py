"""
Room prompt library — one rule table keyed by scene category.

  exterior  lateral slide only, never approach the building
  small     rotate in place, no zoom or dolly (bedrooms, bathrooms, offices)
  large     slow cinematic move through the space (kitchens, living rooms)

The category comes from vision analysis when available, then the filename,
then position (the first photo of a listing is the front exterior).
"""

import os
import re
from dataclasses import dataclass
from typing import Optional

VIDEO_DURATION = int(os.environ.get("VIDEO_DURATION", "6"))

EXTERIOR = "exterior"
SMALL = "small"
LARGE = "large"

_FABRIC_RULES = (
    "ONLY allow existing ceiling fans already visible in the source image to spin their blades slowly. "
    "Do NOT add ceiling fans or light fixtures that are not in the source image. "
    "Towels, curtains, and all fabrics remain completely still with no air movement. "
)

CATEGORY_RULES = {
    EXTERIOR: (
        "Exterior establishing shot with LATERAL camera movement only. "
        "Camera slides slowly left to right, moving PARALLEL to the building. "
        "DO NOT move the camera forward toward the building. DO NOT approach the house. "
        "Very slow, smooth slide over {duration} seconds. "
        "DO NOT enter any doorways, windows, or openings. Stay completely outside. "
        "Windows and doors remain opaque - do not show or create interior rooms. "
        "Trees, plants, grass remain completely still - no wind effect. "
        "No ceiling fans or other interior elements. "
    ),
    SMALL: (
        "Simulate a person standing still in the center of the room, slowly turning their head to look around. "
        "The camera rotates horizontally in place, left to right across the visible room, "
        "taking the full {duration} seconds. "
        "CRITICAL: Do NOT zoom in or out. Do NOT move the camera forward or backward. "
        "The camera position stays fixed - ONLY the viewing angle changes. "
        + _FABRIC_RULES
    ),
    LARGE: (
        "Smooth camera movement through the space. "
        "Camera can gently move forward or pan across the room to showcase the space. "
        "Slow, cinematic movement taking the full {duration} seconds. "
        "Professional real estate walkthrough feel. "
        + _FABRIC_RULES
    ),
}

COMMON_RULES = (
    "CRITICAL: Use ONLY elements visible in the source image. "
    "Do NOT add curtains, window treatments, furniture, or decorative elements. "
    "Do NOT create or imagine any elements not in the input image. "
    "Stop before revealing any area not visible in the input image. "
    "Maintain exact object positions and lighting from the input image."
)


# ── Filename detection ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class RoomDetection:
    room_type: str
    is_exterior: bool = False
    is_small_room: bool = False

    @property
    def category(self) -> Optional[str]:
        if self.room_type == "unknown":
            return None
        if self.is_exterior:
            return EXTERIOR
        return SMALL if self.is_small_room else LARGE


UNKNOWN_ROOM = RoomDetection("unknown")

# Checked in order; the first keyword hit wins. Keywords of three letters or
# fewer only match a whole word (den, not golden).
FILENAME_RULES = [
    (("front", "exterior", "curb"), RoomDetection("front_exterior", is_exterior=True)),
    (("back", "yard", "patio", "deck", "pool", "garden"), RoomDetection("back_exterior", is_exterior=True)),
    (("bath", "powder", "shower"), RoomDetection("bathroom", is_small_room=True)),
    (("bedroom", "bed", "master"), RoomDetection("bedroom", is_small_room=True)),
    (("office", "study", "den"), RoomDetection("office", is_small_room=True)),
    (("laundry", "closet", "pantry"), RoomDetection("utility", is_small_room=True)),
    (("kitchen",), RoomDetection("kitchen")),
    (("living", "family", "great", "lounge", "basement", "bonus", "game"), RoomDetection("living_room")),
    (("dining",), RoomDetection("dining_room")),
    (("garage",), RoomDetection("garage")),
]


def _keyword_matches(keyword: str, name: str, words: set) -> bool:
    if len(keyword) <= 3:
        return keyword in words
    return keyword in name


def detect_room_from_filename(filename: Optional[str]) -> RoomDetection:
    """e.g. front.jpg, backyard.png, bedroom1.jpg, masterbath.jpg"""
    name = (filename or "").lower()
    if not name:
        return UNKNOWN_ROOM
    words = set(re.findall(r"[a-z]+", name))
    for keywords, detection in FILENAME_RULES:
        if any(_keyword_matches(keyword, name, words) for keyword in keywords):
            return detection
    return UNKNOWN_ROOM


# ── Prompt building ──────────────────────────────────────────────────────────

def build_room_prompt(
    order: int = 0,
    room_description: Optional[str] = None,
    category: Optional[str] = None,
    duration: int = VIDEO_DURATION,
) -> str:
    """Compose the generation prompt for one room photo."""
    if category not in CATEGORY_RULES:
        category = EXTERIOR if order == 0 else LARGE

    prompt = ""
    if room_description:
        prompt += f"This scene contains: {room_description}. "
        prompt += "Keep all these elements in their exact positions. "
    prompt += CATEGORY_RULES[category].format(duration=duration)
    prompt += COMMON_RULES
    return prompt
