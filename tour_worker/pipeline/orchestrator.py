"""
TourAssemblyService — turns ordered room clips into the three tour artifacts.

Stages (strictly sequential; each consumes the previous stage's file):
  1. fetch       download every clip (concurrently)
  2. overlay     address + price box on the first clip        (if property info)
  3. concatenate join clips in ascending `order`
  4. end_screen  agent title card appended                     (if agent info)
  5. compress    3 Mbps copy for MLS uploads
  6. vertical    9:16 letterboxed copy
  7. publish     upload all three artifacts (concurrently)
  8. cleanup     delete every local file this run created, on every path
"""

import os
import uuid
import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional

from ..errors import ClipDownloadError, DownloadError, MediaStageError, PublishError, StorageError
from ..kie import download_to_path
from .. import metrics
from . import media
from .models import PropertyInfo, TourResult, VideoClip
from .storage import get_storage, tour_key

logger = logging.getLogger(__name__)

WORK_DIR = Path(os.environ.get("WORK_DIR", "uploads"))

ProgressCallback = Callable[[int, str], None]


class Workspace:
    """
    Tracks every local file a run creates. Names carry the run id plus a
    random suffix so concurrent runs can share one directory.
    """

    def __init__(self, work_dir: Path, run_id: str):
        self.work_dir = Path(work_dir)
        self.work_dir.mkdir(parents=True, exist_ok=True)
        self.run_id = run_id
        self._paths: list[Path] = []

    def path(self, label: str, suffix: str = ".mp4") -> Path:
        path = self.work_dir / f"{label}-{self.run_id}-{uuid.uuid4().hex[:8]}{suffix}"
        self._paths.append(path)
        return path

    @property
    def paths(self) -> list[Path]:
        return list(self._paths)

    def cleanup(self) -> int:
        """Delete every tracked file once. Failures are logged, not raised."""
        removed = 0
        paths, self._paths = self._paths, []
        for path in paths:
            try:
                if path.exists():
                    path.unlink()
                    removed += 1
            except OSError as e:
                logger.warning(f"Failed to clean up {path}: {e}")
        return removed


class TourAssemblyService:
    """
    Usage:
        service = TourAssemblyService()
        result = await service.run(job_id, clips, property_info, on_progress)
        result.horizontal, result.compressed, result.vertical
    """

    def __init__(self, storage=None, work_dir: Path = WORK_DIR, downloader=download_to_path):
        self._storage = storage
        self.work_dir = Path(work_dir)
        self._downloader = downloader

    @property
    def storage(self):
        if self._storage is None:
            self._storage = get_storage()
        return self._storage

    async def run(
        self,
        job_id: str,
        clips: list[VideoClip],
        property_info: Optional[PropertyInfo] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TourResult:
        def progress(pct: int, stage: str):
            logger.info(f"[{job_id}] {stage} ({pct}%)")
            if on_progress:
                on_progress(pct, stage)

        workspace = Workspace(self.work_dir, job_id)
        try:
            ordered = sorted(clips, key=lambda clip: clip.order)

            # ── 1. Fetch ─────────────────────────────────────────────
            progress(5, "fetch")
            with metrics.timed("fetch"):
                clip_paths = await self._fetch(ordered, workspace)

            # ── 2. Overlay ───────────────────────────────────────────
            if property_info and property_info.has_overlay:
                progress(20, "overlay")
                overlaid = workspace.path("overlay")
                await self._stage(
                    "overlay", media.add_text_overlay,
                    clip_paths[0], overlaid,
                    property_info.street_line, property_info.city_line, property_info.price,
                )
                clip_paths = [overlaid, *clip_paths[1:]]

            # ── 3. Concatenate ───────────────────────────────────────
            progress(35, "concatenate")
            horizontal = await self._concatenate(clip_paths, workspace)

            # ── 4. End screen ────────────────────────────────────────
            if property_info and property_info.has_agent:
                progress(50, "end_screen")
                horizontal = await self._append_end_screen(horizontal, property_info, workspace)

            # ── 5. Compress ──────────────────────────────────────────
            progress(65, "compress")
            compressed = workspace.path("compressed")
            await self._stage("compress", media.compress, horizontal, compressed)

            # ── 6. Vertical ──────────────────────────────────────────
            progress(75, "vertical")
            vertical = workspace.path("vertical")
            await self._stage("vertical", media.make_vertical, horizontal, vertical)

            # ── 7. Publish ───────────────────────────────────────────
            progress(85, "publish")
            with metrics.timed("publish"):
                urls = await self._publish(job_id, {
                    "horizontal": horizontal,
                    "compressed": compressed,
                    "vertical": vertical,
                })

            progress(100, "done")
            return TourResult(**urls)

        finally:
            # ── 8. Cleanup ───────────────────────────────────────────
            removed = workspace.cleanup()
            logger.info(f"[{job_id}] cleaned up {removed} local file(s)")

    # ── Stages ───────────────────────────────────────────────────────────

    async def _stage(self, stage: str, fn, *args):
        """Run one blocking ffmpeg operation off the event loop."""
        with metrics.timed(stage):
            try:
                return await asyncio.to_thread(fn, *args)
            except MediaStageError:
                raise
            except Exception as e:
                raise MediaStageError(stage, str(e)) from e

    async def _fetch(self, clips: list[VideoClip], workspace: Workspace) -> list[Path]:
        """Download all clips concurrently; the first failure aborts the rest."""
        targets = [workspace.path(f"clip{clip.order}") for clip in clips]
        tasks = [
            asyncio.create_task(self._download_clip(clip, target))
            for clip, target in zip(clips, targets)
        ]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _download_clip(self, clip: VideoClip, target: Path) -> Path:
        try:
            await self._downloader(clip.url, target)
        except DownloadError as e:
            raise ClipDownloadError(clip.order, clip.url, e) from e
        return target

    async def _concatenate(self, clip_paths: list[Path], workspace: Workspace) -> Path:
        infos = [await self._stage("concatenate", media.probe_video, path) for path in clip_paths]
        media.ensure_concat_compatible(infos)

        list_path = workspace.path("concat", ".txt")
        await self._stage("concatenate", media.write_concat_list, clip_paths, list_path)
        output = workspace.path("tour")
        await self._stage("concatenate", media.concatenate, list_path, output)
        return output

    async def _append_end_screen(self, horizontal: Path, info: PropertyInfo, workspace: Workspace) -> Path:
        video_info = await self._stage("end_screen", media.probe_video, horizontal)

        card = workspace.path("endcard")
        await self._stage(
            "end_screen", media.render_end_screen,
            card, video_info, info.agent_name, info.agent_company, info.agent_phone,
        )

        list_path = workspace.path("endlist", ".txt")
        await self._stage("end_screen", media.write_concat_list, [horizontal, card], list_path)
        output = workspace.path("tour-final")
        await self._stage("end_screen", media.concatenate, list_path, output, "end_screen")
        return output

    async def _publish(self, job_id: str, artifacts: dict[str, Path]) -> dict[str, str]:
        """
        Upload every artifact. If any upload fails the whole publish fails
        and the uploads that did succeed are deleted again.
        """
        keys = {variant: tour_key(job_id, variant) for variant in artifacts}
        results = await asyncio.gather(
            *(
                asyncio.to_thread(self.storage.upload_file, path, keys[variant], "video/mp4")
                for variant, path in artifacts.items()
            ),
            return_exceptions=True,
        )
        outcomes = dict(zip(artifacts, results))
        failures = {v: r for v, r in outcomes.items() if isinstance(r, BaseException)}

        if failures:
            for variant, result in outcomes.items():
                if variant in failures:
                    continue
                try:
                    self.storage.delete_object(keys[variant])
                except StorageError as e:
                    logger.warning(f"[{job_id}] could not roll back {keys[variant]}: {e}")
            first_variant, first_error = next(iter(failures.items()))
            raise PublishError(
                f"{len(failures)} of {len(artifacts)} uploads failed ({first_variant})",
                str(first_error),
            ) from first_error

        empty = [variant for variant, url in outcomes.items() if not url]
        if empty:
            raise PublishError(f"storage returned no URL for {', '.join(empty)}")
        return outcomes
