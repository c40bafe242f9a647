from __future__ import annotations

from pathlib import Path
from urllib import request
from urllib.parse import unquote, urlparse

DEFAULT_FETCH_TIMEOUT_SECONDS = 30


def fetch_bytes(handle: str | Path, timeout_seconds: int = DEFAULT_FETCH_TIMEOUT_SECONDS) -> bytes:
    """Read the bytes behind an asset handle: a local path, a file:// url or an http(s) url."""

    if isinstance(handle, Path):
        return handle.expanduser().read_bytes()

    parsed = urlparse(handle)
    if parsed.scheme in ("http", "https"):
        with request.urlopen(handle, timeout=timeout_seconds) as response:
            return response.read()
    if parsed.scheme == "file":
        return Path(unquote(parsed.path)).read_bytes()
    return Path(handle).expanduser().read_bytes()
