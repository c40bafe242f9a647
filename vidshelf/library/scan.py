from __future__ import annotations

import hashlib
import logging
import random
import subprocess
from pathlib import Path
from typing import Any, Callable

from vidshelf.config import LibrarySettings
from vidshelf.library.nfo import parse_nfo
from vidshelf.library.probe import probe_media
from vidshelf.models import LibraryData, VideoAsset

logger = logging.getLogger(__name__)

THUMBNAIL_WIDTH = 480
THUMBNAIL_HEIGHT = 270

Prober = Callable[[Path], dict[str, Any]]


def scan_folder(
    folder: str | Path,
    library: LibraryData,
    settings: LibrarySettings,
    *,
    probe: Prober | None = None,
    capture_thumbnails: bool = False,
    ffmpeg_binary: str = "ffmpeg",
    collection_id: str | None = None,
) -> list[VideoAsset]:
    """Add every video under `folder` that the library does not know yet.

    Same-stem `.nfo` sidecars fill title/description/tags and same-stem images
    become thumbnails. Probe failures are logged and leave duration empty.
    New assets join `collection_id` when given. Videos already in the library
    are matched by path and only get their url rebound.
    Returns the newly added assets; `library.videos` is extended in place.
    """

    root = Path(folder).expanduser().resolve()
    if not root.is_dir():
        raise FileNotFoundError(f"Folder not found: {root}")

    prober = probe or probe_media
    video_exts = {ext.lower() for ext in settings.video_extensions}
    image_exts = {ext.lower() for ext in settings.image_extensions}
    known = {video.path: video for video in library.videos if video.path}

    added: list[VideoAsset] = []
    for video_path in sorted(path for path in root.rglob("*") if path.is_file() and path.suffix.lower() in video_exts):
        existing = known.get(str(video_path))
        if existing is not None:
            existing.url = str(video_path)
            continue

        asset = VideoAsset(
            id=_asset_id(video_path),
            title=video_path.stem,
            url=str(video_path),
            path=str(video_path),
            file_size=format_file_size(video_path.stat().st_size),
            duration="00:00",
            collection_id=collection_id,
        )

        nfo_path = video_path.with_suffix(".nfo")
        if nfo_path.exists():
            fields = parse_nfo(nfo_path.read_text(encoding="utf-8", errors="replace"))
            for key, value in fields.items():
                setattr(asset, key, value)

        duration_seconds: float | None = None
        try:
            duration_seconds = prober(video_path).get("duration_seconds")
        except (RuntimeError, OSError, ValueError) as exc:
            logger.warning("Could not probe %s: %s", video_path, exc)
        if duration_seconds:
            asset.duration = format_duration(duration_seconds)

        sidecar_image = _find_sidecar_image(video_path, image_exts)
        if sidecar_image is not None:
            asset.thumbnail = str(sidecar_image)
        elif capture_thumbnails:
            asset.thumbnail = capture_thumbnail(
                video_path,
                Path(settings.thumbnail_dir) / f"{asset.id}.jpg",
                duration_seconds=duration_seconds,
                ffmpeg_binary=ffmpeg_binary,
            )

        library.videos.append(asset)
        added.append(asset)
        known[str(video_path)] = asset

    logger.info("Scanned %s: %d new videos", root, len(added))
    return added


def capture_thumbnail(
    video_path: Path,
    output_path: Path,
    *,
    duration_seconds: float | None,
    ffmpeg_binary: str = "ffmpeg",
) -> str | None:
    """Grab one frame between 10% and 90% of the duration; None when ffmpeg fails."""

    seek = random.uniform(duration_seconds * 0.1, duration_seconds * 0.9) if duration_seconds else 1.0
    output_path.parent.mkdir(parents=True, exist_ok=True)
    command = [
        ffmpeg_binary,
        "-v",
        "error",
        "-y",
        "-ss",
        f"{seek:.3f}",
        "-i",
        str(video_path),
        "-frames:v",
        "1",
        "-vf",
        f"scale={THUMBNAIL_WIDTH}:{THUMBNAIL_HEIGHT}",
        "-q:v",
        "5",
        str(output_path),
    ]
    try:
        subprocess.run(command, check=True, capture_output=True, text=True)
    except (FileNotFoundError, subprocess.CalledProcessError) as exc:
        logger.warning("Thumbnail capture failed for %s: %s", video_path, exc)
        return None
    return str(output_path)


def format_duration(seconds: float) -> str:
    total = int(round(seconds))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def format_file_size(size_bytes: int) -> str:
    return f"{size_bytes / (1024 * 1024):.2f} MB"


def _asset_id(video_path: Path) -> str:
    return hashlib.sha1(str(video_path).encode("utf-8")).hexdigest()[:12]


def _find_sidecar_image(video_path: Path, image_exts: set[str]) -> Path | None:
    for candidate in sorted(video_path.parent.iterdir()):
        if candidate.stem == video_path.stem and candidate.suffix.lower() in image_exts:
            return candidate
    return None
