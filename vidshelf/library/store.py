from __future__ import annotations

import json
import math
import uuid
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable

from vidshelf.models import Collection, LibraryData, VideoAsset, VideoClip

LIBRARY_VERSION = 1


def load_library(path: str | Path) -> LibraryData:
    """Load a library snapshot; a missing file is an empty library.

    Keys are accepted in snake_case or in the camelCase used by snapshots
    exported from the browser app.
    """

    library_path = Path(path)
    if not library_path.exists():
        return LibraryData(version=LIBRARY_VERSION)

    payload = json.loads(library_path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Library snapshot must be a JSON object.")

    collections = [
        Collection(id=str(row["id"]), name=str(row["name"]))
        for row in payload.get("collections", [])
    ]
    videos = [_video_from_row(idx, row) for idx, row in enumerate(payload.get("videos", []), start=1)]
    return LibraryData(version=int(payload.get("version", LIBRARY_VERSION)), collections=collections, videos=videos)


def save_library(library: LibraryData, path: str | Path, *, strip_urls: bool = False) -> Path:
    """Write a library snapshot; `strip_urls` blanks every video url."""

    library_path = Path(path)
    library_path.parent.mkdir(parents=True, exist_ok=True)
    payload = asdict(library)
    for video in payload["videos"]:
        video["created_at"] = video["created_at"].isoformat()
        if strip_urls:
            video["url"] = ""
    library_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    return library_path


def find_video(library: LibraryData, video_id: str) -> VideoAsset:
    for video in library.videos:
        if video.id == video_id:
            return video
    raise KeyError(video_id)


def build_resolver(library: LibraryData) -> Callable[[str], str | None]:
    """Map video ids to their byte-fetchable url; unknown ids resolve to None."""

    urls = {video.id: video.url for video in library.videos}
    return urls.get


def add_collection(library: LibraryData, name: str) -> Collection:
    clean_name = name.strip()
    if not clean_name:
        raise ValueError("Collection name must not be empty.")
    collection = Collection(id=uuid.uuid4().hex[:12], name=clean_name)
    library.collections.append(collection)
    return collection


def find_collection(library: LibraryData, collection_id: str) -> Collection:
    for collection in library.collections:
        if collection.id == collection_id:
            return collection
    raise KeyError(collection_id)


def remove_collection(library: LibraryData, collection_id: str) -> Collection:
    """Drop a collection; its videos stay in the library, unassigned."""

    collection = find_collection(library, collection_id)
    library.collections.remove(collection)
    for video in library.videos:
        if video.collection_id == collection_id:
            video.collection_id = None
    return collection


def filter_videos(
    videos: Iterable[VideoAsset],
    *,
    search: str = "",
    tags: Iterable[str] = (),
    collection_id: str | None = None,
) -> list[VideoAsset]:
    """Case-insensitive title search, any-of tag match, exact collection match."""

    needle = search.lower()
    wanted_tags = set(tags)
    return [
        video
        for video in videos
        if (collection_id is None or video.collection_id == collection_id)
        and needle in video.title.lower()
        and (not wanted_tags or wanted_tags.intersection(video.tags))
    ]


def merge_library(library: LibraryData, imported: LibraryData) -> list[VideoAsset]:
    """Fold an imported snapshot into `library`, skipping ids it already has.

    Returns the videos that were added.
    """

    known_collections = {collection.id for collection in library.collections}
    library.collections.extend(
        collection for collection in imported.collections if collection.id not in known_collections
    )

    known_videos = {video.id for video in library.videos}
    added = [video for video in imported.videos if video.id not in known_videos]
    library.videos.extend(added)
    return added


def load_clip_queue(path: str | Path) -> list[VideoClip]:
    """Load an ordered export queue from a JSON array of clip objects."""

    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, list):
        raise ValueError("Clip queue must be a JSON array.")

    clips: list[VideoClip] = []
    for idx, row in enumerate(payload, start=1):
        if not isinstance(row, dict):
            raise ValueError(f"Clip row {idx} must be an object.")
        try:
            clips.append(
                VideoClip(
                    id=str(row.get("id", f"clip_{idx}")),
                    source_video_id=str(_pick(row, "source_video_id", "sourceVideoId")),
                    source_title=str(_pick(row, "source_title", "sourceTitle", default="")),
                    start_time=float(_pick(row, "start_time", "startTime")),
                    end_time=float(_pick(row, "end_time", "endTime")),
                    thumbnail=row.get("thumbnail"),
                )
            )
        except KeyError as exc:
            raise ValueError(f"Clip row {idx} is missing field {exc}.") from exc
        if not (math.isfinite(clips[-1].start_time) and math.isfinite(clips[-1].end_time)):
            raise ValueError(f"Clip row {idx} has a non-finite start or end time.")
    return clips


def _video_from_row(idx: int, row: Any) -> VideoAsset:
    if not isinstance(row, dict):
        raise ValueError(f"Video row {idx} must be an object.")

    created_raw = _pick(row, "created_at", "createdAt", default=None)
    created_at = _parse_datetime(created_raw) if created_raw else datetime.now(timezone.utc)
    try:
        return VideoAsset(
            id=str(row["id"]),
            title=str(row["title"]),
            url=str(row["url"]),
            description=str(row.get("description") or ""),
            tags=[str(tag) for tag in row.get("tags", [])],
            path=row.get("path"),
            thumbnail=row.get("thumbnail"),
            duration=row.get("duration"),
            file_size=_pick(row, "file_size", "fileSize", default=None),
            created_at=created_at,
            type=row.get("type", "local"),
            collection_id=_pick(row, "collection_id", "collectionId", default=None),
            nfo_content=_pick(row, "nfo_content", "nfoContent", default=None),
        )
    except KeyError as exc:
        raise ValueError(f"Video row {idx} is missing field {exc}.") from exc


_MISSING = object()


def _pick(row: dict[str, Any], snake: str, camel: str, default: Any = _MISSING) -> Any:
    if snake in row:
        return row[snake]
    if camel in row:
        return row[camel]
    if default is _MISSING:
        raise KeyError(snake)
    return default


def _parse_datetime(raw_value: str) -> datetime:
    parsed = datetime.fromisoformat(raw_value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
