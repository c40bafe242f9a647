from __future__ import annotations

import asyncio
import http.client
import logging
import math
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Literal, Sequence

from vidshelf.config import DEFAULT_FONT_URL, ExportConfig
from vidshelf.engine.base import MediaEngine
from vidshelf.engine.provider import EngineProvider
from vidshelf.errors import ExportCancelled, ExportError
from vidshelf.export.commands import FONT_FILE, build_concat_args, build_concat_manifest, build_trim_args
from vidshelf.export.status import ProgressCallback
from vidshelf.library.fetch import fetch_bytes
from vidshelf.models import VideoClip

logger = logging.getLogger(__name__)

AssetHandle = str | Path
AssetResolver = Callable[[str], AssetHandle | None]
Fetcher = Callable[[AssetHandle], bytes]
ZeroEndPolicy = Literal["reject", "to_end"]

SCRATCH_DIR = "temp"
MANIFEST_NAME = "concat_list.txt"
MIME_TYPES = {"mp4": "video/mp4", "mkv": "video/x-matroska"}
FETCH_ERRORS = (OSError, http.client.HTTPException)
TRIM_BAND_START = 20
TRIM_BAND_WIDTH = 65


@dataclass(slots=True)
class ExportResult:
    """Merged output of one run; owns its bytes independently of the engine."""

    data: bytes
    filename: str
    mime_type: str
    clip_count: int
    skipped_clip_ids: list[str] = field(default_factory=list)

    def save(self, directory: str | Path) -> Path:
        target_dir = Path(directory)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / self.filename
        target.write_bytes(self.data)
        return target


class ExportOrchestrator:
    """Trim every queued clip through the media engine and concatenate the parts.

    Runs are serialized by an internal lock because all runs share one engine
    sandbox. Scratch entries created by a run are removed when it ends,
    whether it succeeds, fails or is cancelled.
    """

    def __init__(
        self,
        engine_provider: EngineProvider,
        *,
        fetch: Fetcher = fetch_bytes,
        font_source: AssetHandle = DEFAULT_FONT_URL,
        zero_end_policy: ZeroEndPolicy = "reject",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.engine_provider = engine_provider
        self.fetch = fetch
        self.font_source = font_source
        self.zero_end_policy = zero_end_policy
        self.clock = clock
        self._run_lock = asyncio.Lock()

    async def run(
        self,
        clips: Sequence[VideoClip],
        resolve_asset: AssetResolver,
        config: ExportConfig,
        on_progress: ProgressCallback | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ExportResult:
        async with self._run_lock:
            export_run = _ExportRun(
                orchestrator=self,
                clips=list(clips),
                resolve_asset=resolve_asset,
                config=config,
                on_progress=on_progress,
                cancel=cancel,
            )
            return await export_run.execute()


class _ExportRun:
    def __init__(
        self,
        *,
        orchestrator: ExportOrchestrator,
        clips: list[VideoClip],
        resolve_asset: AssetResolver,
        config: ExportConfig,
        on_progress: ProgressCallback | None,
        cancel: asyncio.Event | None,
    ) -> None:
        self.orchestrator = orchestrator
        self.clips = clips
        self.resolve_asset = resolve_asset
        self.config = config
        self.on_progress = on_progress
        self.cancel = cancel
        self.overlay_active = config.overlay_text
        self.skipped_clip_ids: list[str] = []
        self._engine: MediaEngine | None = None
        self._created: list[str] = []
        self._workspace_ready = False
        self._last_progress = 0

    @property
    def engine(self) -> MediaEngine:
        assert self._engine is not None
        return self._engine

    async def execute(self) -> ExportResult:
        self._report(2, "starting media engine")
        self._engine = await self.orchestrator.engine_provider.get()
        self._report(15, "media engine ready")

        try:
            return await self._process()
        finally:
            await self._cleanup()

    async def _process(self) -> ExportResult:
        self._check_cancelled("workspace preparation")
        self._report(16, "preparing scratch directory")
        await self._prepare_workspace()

        if self.overlay_active:
            self._report(18, "staging overlay font")
            await self._stage_font()

        total = len(self.clips)
        segments: list[str] = []
        for index, clip in enumerate(self.clips):
            self._check_cancelled(f"segment {index + 1}/{total}")
            self._report(
                TRIM_BAND_START + round(index / total * TRIM_BAND_WIDTH),
                f"trimming segment {index + 1}/{total}: {clip.source_title}",
            )
            segment = await self._trim_clip(index, clip)
            verb = "trimmed" if segment else "skipped"
            if segment:
                segments.append(segment)
            self._report(
                TRIM_BAND_START + round((index + 1) / total * TRIM_BAND_WIDTH),
                f"{verb} segment {index + 1}/{total}: {clip.source_title}",
            )

        if not segments:
            raise ExportError(f"None of the {total} queued clips could be exported; no output produced.")

        self._check_cancelled("concatenation")
        self._report(90, f"concatenating {len(segments)} segments")
        output_name = await self._concatenate(segments)

        self._report(98, "collecting output and cleaning up")
        data = await self.engine.read_file(output_name)
        await self._cleanup()

        self._report(100, "export complete")
        return ExportResult(
            data=data,
            filename=output_name,
            mime_type=MIME_TYPES[self.config.format],
            clip_count=len(segments),
            skipped_clip_ids=list(self.skipped_clip_ids),
        )

    async def _prepare_workspace(self) -> None:
        try:
            await self.engine.create_dir(SCRATCH_DIR)
        except FileExistsError:
            stale = [entry for entry in await self.engine.list_dir(SCRATCH_DIR) if not entry.is_dir]
            for entry in stale:
                await self._delete_quietly(f"{SCRATCH_DIR}/{entry.name}")
            if stale:
                logger.info("Purged %d stale scratch files from a previous run", len(stale))
        self._workspace_ready = True

    async def _stage_font(self) -> None:
        source = self.orchestrator.font_source
        try:
            font = await asyncio.to_thread(self.orchestrator.fetch, source)
            self._created.append(FONT_FILE)
            await self.engine.write_file(FONT_FILE, font)
        except (OSError, http.client.HTTPException, ValueError) as exc:
            logger.warning("Overlay font unavailable (%s); exporting without text overlay.", exc)
            self.overlay_active = False

    async def _trim_clip(self, index: int, clip: VideoClip) -> str | None:
        handle = self._resolve(clip)
        if handle is None:
            self.skipped_clip_ids.append(clip.id)
            return None

        window = self._trim_window(clip)
        if window is None:
            self.skipped_clip_ids.append(clip.id)
            return None
        start_time, end_time = window

        input_name = f"{SCRATCH_DIR}/input_src_{index}.mp4"
        output_name = f"{SCRATCH_DIR}/clip_part_{index}.mp4"

        try:
            source = await asyncio.to_thread(self.orchestrator.fetch, handle)
        except FETCH_ERRORS as exc:
            raise ExportError(f"Failed to read source video for clip {clip.id} ({handle}): {exc}") from exc

        self._created.append(input_name)
        await self.engine.write_file(input_name, source)
        del source

        args = build_trim_args(
            input_name=input_name,
            output_name=output_name,
            start_time=start_time,
            end_time=end_time,
            title=clip.source_title,
            config=self.config,
            overlay_active=self.overlay_active,
        )
        self._created.append(output_name)
        try:
            await self.engine.exec(args)
        finally:
            await self._delete_quietly(input_name)
            self._created.remove(input_name)

        return output_name

    async def _concatenate(self, segments: list[str]) -> str:
        self._created.append(MANIFEST_NAME)
        await self.engine.write_file(MANIFEST_NAME, build_concat_manifest(segments))

        output_name = f"output_final_{int(self.orchestrator.clock() * 1000)}.{self.config.format}"
        self._created.append(output_name)
        await self.engine.exec(build_concat_args(manifest_name=MANIFEST_NAME, output_name=output_name))
        return output_name

    def _resolve(self, clip: VideoClip) -> AssetHandle | None:
        try:
            handle = self.resolve_asset(clip.source_video_id)
        except KeyError:
            handle = None
        if handle is None:
            logger.warning(
                "Skipping clip %s: source video %s is not in the library",
                clip.id,
                clip.source_video_id,
            )
        return handle

    def _trim_window(self, clip: VideoClip) -> tuple[float, float | None] | None:
        if not (math.isfinite(clip.start_time) and math.isfinite(clip.end_time)):
            logger.warning(
                "Skipping clip %s: non-finite range %s-%s",
                clip.id,
                clip.start_time,
                clip.end_time,
            )
            return None

        start_time = max(0.0, float(clip.start_time))
        end_time = float(clip.end_time)

        if end_time == 0:
            if self.orchestrator.zero_end_policy == "to_end":
                return start_time, None
            logger.warning("Skipping clip %s: end time is 0 (source duration unknown?)", clip.id)
            return None

        if end_time <= start_time:
            logger.warning(
                "Skipping clip %s: empty range %.3f-%.3f",
                clip.id,
                clip.start_time,
                clip.end_time,
            )
            return None

        return start_time, end_time

    async def _cleanup(self) -> None:
        while self._created:
            await self._delete_quietly(self._created.pop())

        if self._workspace_ready:
            self._workspace_ready = False
            try:
                await self.engine.delete_dir(SCRATCH_DIR)
            except Exception as exc:
                logger.warning("Failed to remove scratch directory %s: %s", SCRATCH_DIR, exc)

    async def _delete_quietly(self, name: str) -> None:
        try:
            await self.engine.delete_file(name)
        except FileNotFoundError:
            logger.debug("Scratch file already gone: %s", name)
        except Exception as exc:
            logger.warning("Failed to delete scratch file %s: %s", name, exc)

    def _check_cancelled(self, stage: str) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise ExportCancelled(f"Export cancelled before {stage}.")

    def _report(self, percent: int, stage: str) -> None:
        percent = max(self._last_progress, min(100, percent))
        self._last_progress = percent
        logger.info("Export progress %d%%: %s", percent, stage)
        if self.on_progress is not None:
            self.on_progress(percent, stage)
