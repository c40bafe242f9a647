from __future__ import annotations

import asyncio
import functools
import json
import logging
import os
from pathlib import Path
from typing import Any

import typer

from vidshelf.config import ExportConfig, Settings, load_settings
from vidshelf.describe.metadata_drafter import draft_video_metadata
from vidshelf.engine.ffmpeg_engine import FfmpegEngine
from vidshelf.engine.provider import EngineProvider
from vidshelf.export.orchestrator import ExportOrchestrator, ExportResult
from vidshelf.export.status import ProcessingStatus, StatusTracker
from vidshelf.library.fetch import fetch_bytes
from vidshelf.library.nfo import generate_nfo
from vidshelf.library.probe import probe_media
from vidshelf.library.scan import scan_folder
from vidshelf.library.store import (
    add_collection,
    build_resolver,
    filter_videos,
    find_collection,
    find_video,
    load_clip_queue,
    load_library,
    merge_library,
    remove_collection,
    save_library,
)
from vidshelf.logging_config import configure_logging
from vidshelf.models import LibraryData, VideoClip

app = typer.Typer(help="Personal video library manager and clip exporter.")
config_app = typer.Typer(help="Configuration commands.")
library_app = typer.Typer(help="Library commands.")
collection_app = typer.Typer(help="Collection commands.")

app.add_typer(config_app, name="config")
app.add_typer(library_app, name="library")
library_app.add_typer(collection_app, name="collection")

logger = logging.getLogger(__name__)

CONFIG_OPTION = typer.Option(
    Path("configs/default.yaml"),
    "--config",
    "-c",
    envvar="VIDSHELF_CONFIG",
    help="Path to YAML configuration file.",
)


def _bootstrap(config_path: Path) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.logging)
    logger.debug("Loaded runtime settings from %s", config_path)
    return settings


def _build_orchestrator(settings: Settings) -> ExportOrchestrator:
    provider = EngineProvider(
        lambda: FfmpegEngine(
            ffmpeg_binary=settings.engine.ffmpeg_binary,
            workdir=settings.engine.workdir,
        )
    )
    return ExportOrchestrator(
        provider,
        fetch=functools.partial(fetch_bytes, timeout_seconds=settings.engine.fetch_timeout_seconds),
        font_source=settings.engine.font_url,
        zero_end_policy=settings.export.zero_end_policy,
    )


def _echo_status(status: ProcessingStatus) -> None:
    if status.is_error:
        typer.echo(f"[{status.progress:3d}%] {status.stage}: {status.log}", err=True)
    elif status.is_processing or status.is_done:
        typer.echo(f"[{status.progress:3d}%] {status.stage}", err=True)


@config_app.command("show")
def show_config(config_path: Path = CONFIG_OPTION) -> None:
    """Print resolved runtime configuration."""

    settings = _bootstrap(config_path)
    typer.echo(json.dumps(settings.model_dump(mode="json"), indent=2))


@library_app.command("scan")
def scan(
    folder: Path = typer.Argument(..., help="Folder to scan recursively for videos."),
    thumbnails: bool = typer.Option(False, help="Capture a thumbnail with ffmpeg when no sidecar image exists."),
    collection: str | None = typer.Option(None, "--collection", help="Collection id for newly added videos."),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Add new videos from a folder to the library snapshot."""

    settings = _bootstrap(config_path)
    library = load_library(settings.library.path)
    try:
        if collection is not None:
            find_collection(library, collection)
        added = scan_folder(
            folder,
            library,
            settings.library,
            probe=lambda path: _probe(path, settings),
            capture_thumbnails=thumbnails,
            ffmpeg_binary=settings.engine.ffmpeg_binary,
            collection_id=collection,
        )
    except KeyError as exc:
        typer.echo(f"Error: unknown collection id {collection}", err=True)
        raise typer.Exit(code=1) from exc
    except (FileNotFoundError, ValueError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    save_library(library, settings.library.path)
    typer.echo(
        json.dumps(
            {
                "added": len(added),
                "total": len(library.videos),
                "library_path": str(settings.library.path),
            },
            indent=2,
        )
    )


@library_app.command("list")
def list_videos(
    search: str = typer.Option("", "--search", "-s", help="Case-insensitive title substring."),
    tag: list[str] | None = typer.Option(None, "--tag", "-t", help="Keep videos carrying any of these tags."),
    collection: str | None = typer.Option(None, "--collection", help="Keep videos of this collection id."),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """List videos in the library snapshot."""

    settings = _bootstrap(config_path)
    library = load_library(settings.library.path)
    videos = filter_videos(library.videos, search=search, tags=tag or (), collection_id=collection)
    for video in videos:
        tags = ", ".join(video.tags)
        typer.echo(f"{video.id}\t{video.duration or '--:--'}\t{video.title}" + (f"\t[{tags}]" if tags else ""))


@library_app.command("import")
def import_snapshot(
    snapshot_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Library snapshot JSON to merge."),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Merge a snapshot into the library; videos whose id is already known are skipped."""

    settings = _bootstrap(config_path)
    library = load_library(settings.library.path)
    try:
        added = merge_library(library, load_library(snapshot_path))
    except (ValueError, KeyError) as exc:
        typer.echo(f"Error: invalid snapshot {snapshot_path}: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    save_library(library, settings.library.path)
    typer.echo(json.dumps({"added": len(added), "total": len(library.videos)}, indent=2))


@library_app.command("export")
def export_snapshot(
    destination: Path = typer.Argument(..., help="Where to write the snapshot JSON."),
    strip_urls: bool = typer.Option(True, "--strip-urls/--keep-urls", help="Blank video urls in the snapshot."),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Write a shareable copy of the library snapshot."""

    settings = _bootstrap(config_path)
    library = load_library(settings.library.path)
    written = save_library(library, destination, strip_urls=strip_urls)
    typer.echo(json.dumps({"snapshot_path": str(written), "videos": len(library.videos)}, indent=2))


@collection_app.command("add")
def collection_add(
    name: str = typer.Argument(..., help="Collection name."),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Create a collection."""

    settings = _bootstrap(config_path)
    library = load_library(settings.library.path)
    try:
        collection = add_collection(library, name)
    except ValueError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    save_library(library, settings.library.path)
    typer.echo(json.dumps({"id": collection.id, "name": collection.name}, indent=2, ensure_ascii=False))


@collection_app.command("remove")
def collection_remove(
    collection_id: str = typer.Argument(..., help="Collection id."),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Delete a collection; its videos stay in the library."""

    settings = _bootstrap(config_path)
    library = load_library(settings.library.path)
    try:
        removed = remove_collection(library, collection_id)
    except KeyError as exc:
        typer.echo(f"Error: unknown collection id {collection_id}", err=True)
        raise typer.Exit(code=1) from exc

    save_library(library, settings.library.path)
    typer.echo(f"Removed collection {removed.name} ({removed.id})")


@collection_app.command("list")
def collection_list(config_path: Path = CONFIG_OPTION) -> None:
    """List collections with their video counts."""

    settings = _bootstrap(config_path)
    library = load_library(settings.library.path)
    for collection in library.collections:
        count = sum(1 for video in library.videos if video.collection_id == collection.id)
        typer.echo(f"{collection.id}\t{count}\t{collection.name}")


@library_app.command("nfo")
def show_nfo(
    video_id: str = typer.Argument(..., help="Library video id."),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Print a Kodi-style NFO document for one video."""

    settings = _bootstrap(config_path)
    library = load_library(settings.library.path)
    try:
        video = find_video(library, video_id)
    except KeyError as exc:
        typer.echo(f"Error: unknown video id {video_id}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(generate_nfo(video))


@app.command()
def describe(
    video_id: str = typer.Argument(..., help="Library video id."),
    apply: bool = typer.Option(False, help="Write the drafted description and tags back to the library."),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Draft a description and tags for a video with the configured text model."""

    settings = _bootstrap(config_path)
    library = load_library(settings.library.path)
    try:
        video = find_video(library, video_id)
    except KeyError as exc:
        typer.echo(f"Error: unknown video id {video_id}", err=True)
        raise typer.Exit(code=1) from exc

    try:
        draft = draft_video_metadata(
            video.title,
            provider=settings.llm.provider,
            endpoint=settings.llm.endpoint,
            model=settings.llm.model,
            api_key=os.getenv(settings.llm.api_key_env),
            timeout_seconds=settings.llm.timeout_seconds,
            max_retries=settings.llm.max_retries,
        )
    except RuntimeError as exc:
        logger.error("Metadata drafting failed: %s", exc)
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    if apply:
        video.description = draft["description"] or video.description
        video.tags = sorted(set(video.tags) | set(draft["tags"]))
        save_library(library, settings.library.path)
    typer.echo(json.dumps({"id": video.id, **draft}, indent=2, ensure_ascii=False))


@app.command("export")
def export_queue(
    queue_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON array of clips to merge, in order."),
    output_dir: Path | None = typer.Option(None, "--output-dir", "-o", help="Directory for the merged video."),
    resolution: str | None = typer.Option(None, help="original, 1080p, 720p or 480p."),
    output_format: str | None = typer.Option(None, "--format", help="mp4 or mkv."),
    codec: str | None = typer.Option(None, help="libx264 or libx265 (used when re-encoding)."),
    overlay_text: bool | None = typer.Option(None, "--overlay-text/--no-overlay-text", help="Burn the source title into each segment."),
    font_size: int | None = typer.Option(None, help="Overlay font size."),
    font_opacity: float | None = typer.Option(None, help="Overlay opacity between 0 and 1."),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Trim every queued clip and merge the parts into one video."""

    settings = _bootstrap(config_path)
    overrides = {
        "resolution": resolution,
        "format": output_format,
        "codec": codec,
        "overlay_text": overlay_text,
        "font_size": font_size,
        "font_opacity": font_opacity,
    }
    tracker = StatusTracker()
    tracker.subscribe(_echo_status)

    try:
        export_config = ExportConfig.model_validate(
            {
                **settings.export.defaults.model_dump(),
                **{key: value for key, value in overrides.items() if value is not None},
            }
        )
        clips = load_clip_queue(queue_path)
        if not clips:
            typer.echo("Export queue is empty; nothing to do.", err=True)
            return

        library = load_library(settings.library.path)
        orchestrator = _build_orchestrator(settings)
        tracker.start("queued")
        result = asyncio.run(_run_export(orchestrator, clips, library, export_config, tracker))
        saved_path = result.save(output_dir or settings.export.output_dir)
    except (RuntimeError, ValueError) as exc:
        tracker.fail(str(exc))
        logger.error("Export failed: %s", exc)
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    tracker.complete(f"saved {saved_path.name}")
    typer.echo(
        json.dumps(
            {
                "status": "ok",
                "output_path": str(saved_path),
                "mime_type": result.mime_type,
                "clip_count": result.clip_count,
                "skipped_clip_ids": result.skipped_clip_ids,
            },
            indent=2,
        )
    )


async def _run_export(
    orchestrator: ExportOrchestrator,
    clips: list[VideoClip],
    library: LibraryData,
    export_config: ExportConfig,
    tracker: StatusTracker,
) -> ExportResult:
    try:
        return await orchestrator.run(clips, build_resolver(library), export_config, tracker)
    finally:
        await orchestrator.engine_provider.reset()


def _probe(path: Path, settings: Settings) -> dict[str, Any]:
    return probe_media(path, ffprobe_binary=settings.engine.ffprobe_binary)


if __name__ == "__main__":
    app()
