from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal


@dataclass(slots=True, frozen=True)
class VideoClip:
    """A labeled [start_time, end_time) range of a source video queued for export."""

    id: str
    source_video_id: str
    source_title: str
    start_time: float
    end_time: float
    thumbnail: str | None = None


@dataclass(slots=True)
class VideoAsset:
    """A video known to the library, addressed by id and a byte-fetchable url."""

    id: str
    title: str
    url: str
    description: str = ""
    tags: list[str] = field(default_factory=list)
    path: str | None = None
    thumbnail: str | None = None
    duration: str | None = None
    file_size: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    type: Literal["local", "remote"] = "local"
    collection_id: str | None = None
    nfo_content: str | None = None


@dataclass(slots=True)
class Collection:
    id: str
    name: str


@dataclass(slots=True)
class LibraryData:
    """Serializable library snapshot."""

    version: int = 1
    collections: list[Collection] = field(default_factory=list)
    videos: list[VideoAsset] = field(default_factory=list)
