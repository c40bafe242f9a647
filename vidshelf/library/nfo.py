from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from typing import Any
from xml.sax.saxutils import escape

from vidshelf.models import VideoAsset

logger = logging.getLogger(__name__)


def parse_nfo(text: str) -> dict[str, Any]:
    """Parse a Kodi-style NFO document into asset fields.

    Returns only the fields that were present. A document that is not valid
    XML yields an empty dict.
    """

    try:
        root = ET.fromstring(text)
    except ET.ParseError as exc:
        logger.warning("Error parsing NFO: %s", exc)
        return {}

    title = _first_text(root, "title", "originaltitle")
    plot = _first_text(root, "plot", "overview", "outline")
    tags = [
        element.text.strip()
        for element in [*root.iter("genre"), *root.iter("tag")]
        if element.text and element.text.strip()
    ]

    fields: dict[str, Any] = {"nfo_content": text}
    if title:
        fields["title"] = title
    if plot:
        fields["description"] = plot
    if tags:
        fields["tags"] = tags
    return fields


def generate_nfo(video: VideoAsset) -> str:
    """Render a `<movie>` NFO document for an asset."""

    title = escape(video.title)
    genres = "\n  ".join(f"<genre>{escape(tag)}</genre>" for tag in video.tags)
    return f"""<?xml version="1.0" encoding="UTF-8" standalone="yes" ?>
<movie>
  <title>{title}</title>
  <originaltitle>{title}</originaltitle>
  <plot>{escape(video.description or '')}</plot>
  <userrating>0</userrating>
  {genres}
  <dateadded>{video.created_at.isoformat()}</dateadded>
  <fileinfo>
    <streamdetails>
      <video>
        <durationinseconds>{escape(video.duration or '')}</durationinseconds>
      </video>
    </streamdetails>
  </fileinfo>
</movie>"""


def _first_text(root: ET.Element, *tags: str) -> str | None:
    for tag in tags:
        element = root.find(f".//{tag}")
        if element is not None and element.text and element.text.strip():
            return element.text.strip()
    return None
