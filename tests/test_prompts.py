from unittest.mock import MagicMock

import pytest

from tour_worker import prompts
from tour_worker.pipeline.models import RoomVideoRequest
from tour_worker.pipeline.rooms import resolve_prompt
from tour_worker.vision import RoomAnalysis, _parse_json_response


@pytest.mark.parametrize("filename, room_type, category", [
    ("front.jpg", "front_exterior", prompts.EXTERIOR),
    ("Backyard_2.PNG", "back_exterior", prompts.EXTERIOR),
    ("masterbath.jpg", "bathroom", prompts.SMALL),
    ("bedroom1.jpg", "bedroom", prompts.SMALL),
    ("kitchen.jpeg", "kitchen", prompts.LARGE),
    ("golden_kitchen.jpg", "kitchen", prompts.LARGE),
    ("wooden-floors-living.jpg", "living_room", prompts.LARGE),
    ("den_2.jpg", "office", prompts.SMALL),
    ("bed-3.jpg", "bedroom", prompts.SMALL),
    ("hidden_gem.jpg", "unknown", None),
    ("IMG_0042.jpg", "unknown", None),
    (None, "unknown", None),
])
def test_detect_room_from_filename(filename, room_type, category):
    detection = prompts.detect_room_from_filename(filename)

    assert detection.room_type == room_type
    assert detection.category == category


def test_first_photo_defaults_to_exterior_rules():
    prompt = prompts.build_room_prompt(order=0)

    assert "LATERAL camera movement" in prompt
    assert prompt.endswith(prompts.COMMON_RULES)


def test_later_photos_default_to_large_room_rules():
    assert "Smooth camera movement through the space" in prompts.build_room_prompt(order=3)


def test_description_and_duration_are_included():
    prompt = prompts.build_room_prompt(1, "a sofa on the left wall", prompts.SMALL, duration=10)

    assert prompt.startswith("This scene contains: a sofa on the left wall.")
    assert "taking the full 10 seconds" in prompt


# --- Prompt resolution ---

@pytest.mark.asyncio
async def test_explicit_prompt_wins():
    analyzer = MagicMock()

    prompt = await resolve_prompt(RoomVideoRequest(image_url="https://i/a.jpg", prompt="custom"), analyzer)

    assert prompt == "custom"
    analyzer.assert_not_called()


@pytest.mark.asyncio
async def test_vision_analysis_fills_category_and_description():
    analyzer = MagicMock(return_value=RoomAnalysis("bedroom", False, True, "bed against the back wall"))

    prompt = await resolve_prompt(RoomVideoRequest(image_url="https://i/a.jpg", order=4), analyzer)

    assert "bed against the back wall" in prompt
    assert "rotates horizontally in place" in prompt


@pytest.mark.asyncio
async def test_filename_category_kept_when_vision_unavailable():
    analyzer = MagicMock(return_value=None)
    request = RoomVideoRequest(image_url="https://i/a.jpg", order=0, filename="bathroom.jpg")

    prompt = await resolve_prompt(request, analyzer)

    assert "rotates horizontally in place" in prompt


def test_parse_json_response_tolerates_code_fences():
    text = '```json\n{"room_type": "kitchen", "is_exterior": false}\n```'

    assert _parse_json_response(text)["room_type"] == "kitchen"
