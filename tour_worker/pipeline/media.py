"""
FFmpeg operations for tour assembly.

Every operation is one `ffmpeg` (or `ffprobe`) process started from an
argument list; no shell is involved. User-supplied text only ever reaches
ffmpeg inside a drawtext filter, after `escape_drawtext()`.
"""

import os
import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..errors import ConcatenationError, MediaStageError

logger = logging.getLogger(__name__)

FFMPEG_PATH = os.environ.get("FFMPEG_PATH", "ffmpeg")
FFPROBE_PATH = os.environ.get("FFPROBE_PATH", "ffprobe")
VIDEO_QUALITY = int(os.environ.get("VIDEO_QUALITY", "16"))  # libx264 CRF
FONT_FILE = os.environ.get("FFMPEG_FONT_FILE", "")
FFMPEG_TIMEOUT = int(os.environ.get("FFMPEG_TIMEOUT", "900"))

OVERLAY_SECONDS = 3
END_SCREEN_SECONDS = 3

COMPRESSED_BITRATE = "3M"
COMPRESSED_BUFSIZE = "6M"
VERTICAL_WIDTH = 1080
VERTICAL_HEIGHT = 1920

# Characters removed outright: quoting and escaping characters of the
# filtergraph syntax, plus control characters.
_STRIPPED_CHARS = {"\\", "'", '"', "`"}


@dataclass
class VideoInfo:
    width: int
    height: int
    fps: float
    duration: float
    has_audio: bool
    sample_rate: int = 44100
    channels: int = 2


# ── Process helpers ──────────────────────────────────────────────────────────

def run_ffmpeg(args: list[str], stage: str, error_cls=MediaStageError) -> None:
    """Run ffmpeg with `args`; raise `error_cls` tagged with `stage` on failure."""
    cmd = [FFMPEG_PATH, "-y", "-hide_banner", "-loglevel", "error", *args]
    logger.debug(f"[{stage}] {' '.join(cmd)}")

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=FFMPEG_TIMEOUT)
    except subprocess.TimeoutExpired as e:
        raise _stage_error(error_cls, stage, f"ffmpeg timed out after {FFMPEG_TIMEOUT}s") from e
    except (subprocess.SubprocessError, OSError) as e:
        raise _stage_error(error_cls, stage, f"ffmpeg could not be started: {e}") from e

    if result.returncode != 0:
        raise _stage_error(
            error_cls, stage, f"ffmpeg exited with code {result.returncode}",
            (result.stderr or "").strip()[-500:],
        )


def _stage_error(error_cls, stage: str, message: str, detail: Optional[str] = None):
    if error_cls is MediaStageError:
        return MediaStageError(stage, message, detail)
    return error_cls(message, detail, stage=stage)


def _parse_rate(rate: str) -> float:
    try:
        num, _, den = (rate or "0/0").partition("/")
        den_value = float(den or 1)
        return float(num) / den_value if den_value else 0.0
    except ValueError:
        return 0.0


def probe_video(path) -> VideoInfo:
    """Read dimensions, frame rate, duration and audio presence via ffprobe."""
    cmd = [
        FFPROBE_PATH, "-v", "error",
        "-show_entries", "stream=codec_type,width,height,r_frame_rate,sample_rate,channels:format=duration",
        "-of", "json",
        str(path),
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=60)
    except (subprocess.SubprocessError, OSError) as e:
        raise MediaStageError("probe", f"ffprobe failed for {Path(path).name}", str(e)) from e
    if result.returncode != 0:
        raise MediaStageError("probe", f"ffprobe failed for {Path(path).name}", result.stderr.strip()[-500:])

    try:
        data = json.loads(result.stdout or "{}")
    except json.JSONDecodeError as e:
        raise MediaStageError("probe", "ffprobe returned invalid JSON", str(e)) from e

    streams = data.get("streams", [])
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    audio = next((s for s in streams if s.get("codec_type") == "audio"), None)
    if video is None:
        raise MediaStageError("probe", f"no video stream in {Path(path).name}")

    return VideoInfo(
        width=int(video.get("width") or 0),
        height=int(video.get("height") or 0),
        fps=round(_parse_rate(video.get("r_frame_rate")), 3),
        duration=float((data.get("format") or {}).get("duration") or 0.0),
        has_audio=audio is not None,
        sample_rate=int((audio or {}).get("sample_rate") or 44100),
        channels=int((audio or {}).get("channels") or 2),
    )


# ── Text ─────────────────────────────────────────────────────────────────────

def escape_drawtext(text: str) -> str:
    """
    Make free-form text safe for a single-quoted drawtext `text=` value.

    Backslashes and quote characters are stripped, control characters become
    spaces. `:` gets one backslash (option level); `%` gets two, so the
    expansion pass inside drawtext still sees an escaped `%`.
    """
    cleaned = []
    for ch in text or "":
        if ch in _STRIPPED_CHARS:
            continue
        if ord(ch) < 32 or ord(ch) == 127:
            cleaned.append(" ")
        elif ch == ":":
            cleaned.append("\\:")
        elif ch == "%":
            # survives option parsing as \%, which drawtext reads as a literal %
            cleaned.append("\\\\%")
        else:
            cleaned.append(ch)
    return "".join(cleaned).strip()


def _drawtext(text: str, fontsize: int, x: str, y: str, enable: Optional[str] = None) -> str:
    options = [f"text='{escape_drawtext(text)}'", "fontcolor=white", f"fontsize={fontsize}", f"x={x}", f"y={y}"]
    if FONT_FILE:
        options.insert(0, f"fontfile='{FONT_FILE}'")
    if enable:
        options.append(f"enable='{enable}'")
    return "drawtext=" + ":".join(options)


# ── Operations ───────────────────────────────────────────────────────────────

def add_text_overlay(
    input_path,
    output_path,
    street_line: str,
    city_line: str,
    price: str,
    duration: int = OVERLAY_SECONDS,
) -> Path:
    """Burn a lower-left address/price box into the first `duration` seconds."""
    enable = f"between(t,0,{duration})"
    filters = [
        f"drawbox=x=40:y=ih-230:w=iw*0.55:h=190:color=black@0.55:t=fill:enable='{enable}'",
    ]
    lines = [(street_line, 44, "h-215"), (city_line, 32, "h-160"), (price, 40, "h-110")]
    for text, size, y in lines:
        if (text or "").strip():
            filters.append(_drawtext(text, size, "64", y, enable))

    run_ffmpeg([
        "-i", str(input_path),
        "-vf", ",".join(filters) + ",format=yuv420p",
        "-c:v", "libx264", "-preset", "slow", "-crf", str(VIDEO_QUALITY),
        "-c:a", "copy",
        str(output_path),
    ], stage="overlay")
    return Path(output_path)


def write_concat_list(clip_paths: list, list_path) -> Path:
    """Write an ffmpeg concat-demuxer list file."""
    lines = []
    for clip_path in clip_paths:
        escaped = str(Path(clip_path).resolve()).replace("\\", "/").replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    Path(list_path).write_text("\n".join(lines) + "\n", encoding="utf-8")
    return Path(list_path)


def ensure_concat_compatible(infos: list[VideoInfo], stage: str = "concatenate") -> None:
    """The concat demuxer needs identical geometry and frame rate across inputs."""
    if not infos:
        raise ConcatenationError("nothing to concatenate", stage=stage)
    reference = infos[0]
    for index, info in enumerate(infos[1:], start=2):
        if (info.width, info.height) != (reference.width, reference.height):
            raise ConcatenationError(
                f"input {index} is {info.width}x{info.height}, expected "
                f"{reference.width}x{reference.height}", stage=stage,
            )
        if abs(info.fps - reference.fps) > 0.01:
            raise ConcatenationError(
                f"input {index} runs at {info.fps} fps, expected {reference.fps}", stage=stage,
            )


def concatenate(list_path, output_path, stage: str = "concatenate") -> Path:
    run_ffmpeg([
        "-f", "concat", "-safe", "0",
        "-i", str(list_path),
        "-c:v", "libx264", "-preset", "slow", "-crf", str(VIDEO_QUALITY),
        "-c:a", "aac",
        "-vf", "format=yuv420p",
        str(output_path),
    ], stage=stage, error_cls=ConcatenationError)
    return Path(output_path)


def _channel_layout(channels: int) -> str:
    return {1: "mono", 2: "stereo"}.get(channels, f"{channels}c")


def render_end_screen(
    output_path,
    info: VideoInfo,
    agent_name: str,
    agent_company: str,
    agent_phone: str,
    duration: int = END_SCREEN_SECONDS,
) -> Path:
    """Render a solid title card matching `info`'s geometry, frame rate and audio layout."""
    fps = info.fps or 30
    size = f"{info.width}x{info.height}"
    lines = [t for t in (agent_name, agent_company, agent_phone) if (t or "").strip()]

    filters = []
    spacing = 70
    top = f"(h-{spacing * len(lines)})/2"
    for index, text in enumerate(lines):
        fontsize = 60 if index == 0 else 44
        filters.append(_drawtext(text, fontsize, "(w-text_w)/2", f"{top}+{index * spacing}"))
    filters.append("format=yuv420p")

    args = ["-f", "lavfi", "-i", f"color=c=black:s={size}:r={fps:g}:d={duration}"]
    if info.has_audio:
        silence = f"anullsrc=channel_layout={_channel_layout(info.channels)}:sample_rate={info.sample_rate}"
        args += ["-f", "lavfi", "-i", silence]
    args += ["-vf", ",".join(filters), "-t", str(duration),
             "-c:v", "libx264", "-preset", "slow", "-crf", str(VIDEO_QUALITY)]
    if info.has_audio:
        args += ["-c:a", "aac", "-shortest"]
    args.append(str(output_path))

    run_ffmpeg(args, stage="end_screen")
    return Path(output_path)


def compress(input_path, output_path) -> Path:
    """Bandwidth-limited copy for upload-capped destinations (MLS)."""
    run_ffmpeg([
        "-i", str(input_path),
        "-c:v", "libx264",
        "-b:v", COMPRESSED_BITRATE,
        "-maxrate", COMPRESSED_BITRATE,
        "-bufsize", COMPRESSED_BUFSIZE,
        "-c:a", "aac", "-b:a", "128k",
        "-vf", "format=yuv420p",
        str(output_path),
    ], stage="compress")
    return Path(output_path)


def make_vertical(input_path, output_path) -> Path:
    """9:16 letterboxed version: scale to fit, pad, never crop."""
    w, h = VERTICAL_WIDTH, VERTICAL_HEIGHT
    run_ffmpeg([
        "-i", str(input_path),
        "-c:v", "libx264", "-preset", "slow", "-crf", str(VIDEO_QUALITY),
        "-c:a", "aac",
        "-vf", f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
               f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2:black,format=yuv420p",
        str(output_path),
    ], stage="vertical")
    return Path(output_path)
