import json

import httpx
import pytest

from tour_worker import prompts
from tour_worker.vision import analyze_room_image


def _gemini_reply(payload):
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


def make_transport(reply, seen=None):
    def handler(request: httpx.Request):
        if request.url.host == "img.example.com":
            return httpx.Response(200, content=b"\xff\xd8jpeg")
        if seen is not None:
            seen.append(request)
        return reply
    return httpx.MockTransport(handler)


def test_analysis_parsed_into_room_analysis():
    seen = []
    reply = _gemini_reply({
        "room_type": "bedroom",
        "is_exterior": False,
        "is_small_room": True,
        "description": "bed against the back wall, window on the left",
    })

    analysis = analyze_room_image("https://img.example.com/b.jpg", api_key="k", transport=make_transport(reply, seen))

    assert analysis.room_type == "bedroom"
    assert analysis.category == prompts.SMALL
    assert analysis.description.startswith("bed against")
    body = json.loads(seen[0].content)
    assert body["contents"][0]["parts"][0]["inlineData"]["mimeType"] == "image/jpeg"
    assert seen[0].url.params["key"] == "k"


def test_string_booleans_are_read_as_booleans():
    reply = _gemini_reply({"room_type": "kitchen", "is_exterior": "false", "is_small_room": "False"})

    analysis = analyze_room_image("https://img.example.com/k.jpg", api_key="k", transport=make_transport(reply))

    assert analysis.is_exterior is False
    assert analysis.is_small_room is False
    assert analysis.category == prompts.LARGE


def test_no_api_key_skips_analysis():
    assert analyze_room_image("https://img.example.com/k.jpg", api_key="") is None


@pytest.mark.parametrize("reply", [
    httpx.Response(500, text="internal"),
    httpx.Response(200, json={"candidates": []}),
    _gemini_reply("this is not json"),
    _gemini_reply(["kitchen", "bedroom"]),
    _gemini_reply('"kitchen"'),
])
def test_failures_return_none(reply):
    assert analyze_room_image("https://img.example.com/k.jpg", api_key="k", transport=make_transport(reply)) is None


def test_unreachable_image_returns_none():
    transport = httpx.MockTransport(lambda request: httpx.Response(404))

    assert analyze_room_image("https://img.example.com/missing.jpg", api_key="k", transport=transport) is None
