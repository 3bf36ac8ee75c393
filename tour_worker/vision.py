"""
Room photo analysis — Gemini Flash (vision) via REST.

Used only to pick a prompt category and a spatial description for a room
photo. Skipped (returns None) when no API key is configured.
"""

import os
import json
import base64
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from .prompts import EXTERIOR, LARGE, SMALL

logger = logging.getLogger(__name__)

GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY", "")
API_BASE = "https://generativelanguage.googleapis.com/v1beta"
VISION_MODEL = os.environ.get("VISION_MODEL", "gemini-2.0-flash")

ANALYSIS_PROMPT = """You analyze real estate listing photos for virtual tour video generation.

Return ONLY this JSON (no markdown):
{
  "room_type": "exterior front | exterior back | living room | kitchen | bedroom | bathroom | dining room | office | garage | other",
  "is_exterior": true/false,
  "is_small_room": true/false,
  "description": "one or two sentences naming every major object and where it sits (left wall, right wall, center, back wall)"
}

"is_small_room" is true for bedrooms, bathrooms, closets and small offices; false for
living rooms, kitchens, great rooms and all exterior shots. Use precise directional language."""


@dataclass
class RoomAnalysis:
    room_type: str
    is_exterior: bool
    is_small_room: bool
    description: str

    @property
    def category(self) -> str:
        if self.is_exterior:
            return EXTERIOR
        return SMALL if self.is_small_room else LARGE


def _guess_mime(url: str) -> str:
    lower = url.lower()
    if ".png" in lower:
        return "image/png"
    if ".webp" in lower:
        return "image/webp"
    return "image/jpeg"


def _as_bool(value) -> bool:
    """Models sometimes answer booleans as strings."""
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def _parse_json_response(text: str) -> dict:
    """Parse JSON from a model response, tolerating markdown code fences."""
    text = text.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        if "```" in text:
            block = text.split("```")[1]
            if block.startswith("json"):
                block = block[4:]
            return json.loads(block.strip())
        raise ValueError(f"Vision model returned invalid JSON: {text[:200]}")


def analyze_room_image(image_url: str, api_key: Optional[str] = None, transport=None) -> Optional[RoomAnalysis]:
    """
    Describe a room photo. Returns None when vision is not configured or
    the call fails; prompt building then falls back to filename/position rules.
    """
    api_key = api_key if api_key is not None else GEMINI_API_KEY
    if not api_key:
        logger.info("GEMINI_API_KEY not set, skipping vision analysis")
        return None

    try:
        with httpx.Client(timeout=60, follow_redirects=True, transport=transport) as client:
            image = client.get(image_url)
            image.raise_for_status()

            body = {
                "contents": [{"parts": [
                    {"inlineData": {
                        "mimeType": _guess_mime(image_url),
                        "data": base64.b64encode(image.content).decode(),
                    }},
                    {"text": ANALYSIS_PROMPT},
                ]}],
                "generationConfig": {"temperature": 0.1, "responseMimeType": "application/json"},
            }
            resp = client.post(
                f"{API_BASE}/models/{VISION_MODEL}:generateContent",
                params={"key": api_key},
                json=body,
            )
            resp.raise_for_status()

        text = resp.json()["candidates"][0]["content"]["parts"][0]["text"]
        data = _parse_json_response(text)
    except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
        logger.warning(f"Vision analysis failed for {image_url}: {e}")
        return None

    if not isinstance(data, dict):
        logger.warning(f"Vision analysis for {image_url} returned {type(data).__name__}, expected an object")
        return None

    return RoomAnalysis(
        room_type=str(data.get("room_type", "other")),
        is_exterior=_as_bool(data.get("is_exterior")),
        is_small_room=_as_bool(data.get("is_small_room")),
        description=str(data.get("description", "")).strip(),
    )
