from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import Any

SHARED_LIBRARY_MARKER = "error while loading shared libraries"


def probe_media(video_path: str | Path, ffprobe_binary: str = "ffprobe") -> dict[str, Any]:
    """Probe container/stream metadata for one video via ffprobe."""

    source_path = Path(video_path).expanduser().resolve()
    if not source_path.exists():
        raise FileNotFoundError(f"Video file not found: {source_path}")

    payload = _run_ffprobe(source_path, ffprobe_binary=ffprobe_binary)
    return _normalize_probe_payload(source_path, payload)


def _run_ffprobe(video_path: Path, ffprobe_binary: str = "ffprobe") -> dict[str, Any]:
    command = [
        ffprobe_binary,
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(video_path),
    ]

    try:
        completed = subprocess.run(
            command,
            check=True,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError as exc:
        raise RuntimeError(
            "ffprobe executable was not found. Install FFmpeg so ffprobe is available on PATH."
        ) from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        if SHARED_LIBRARY_MARKER in stderr:
            raise RuntimeError(
                "ffprobe is installed but failed to start because required shared libraries are missing. "
                f"ffprobe stderr: {stderr}"
            ) from exc
        details = f" ffprobe stderr: {stderr}" if stderr else ""
        raise RuntimeError(
            f"ffprobe failed while probing media file: {video_path}.{details}"
        ) from exc

    try:
        return json.loads(completed.stdout)
    except json.JSONDecodeError as exc:
        raise RuntimeError("ffprobe returned invalid JSON output.") from exc


def _normalize_probe_payload(video_path: Path, payload: dict[str, Any]) -> dict[str, Any]:
    format_entry = payload.get("format", {})
    video_streams = [stream for stream in payload.get("streams", []) if stream.get("codec_type") == "video"]
    primary = video_streams[0] if video_streams else {}

    return {
        "video_path": str(video_path),
        "format_name": format_entry.get("format_name"),
        "duration_seconds": _to_float(format_entry.get("duration")),
        "size_bytes": _to_int(format_entry.get("size")),
        "width": _to_int(primary.get("width")),
        "height": _to_int(primary.get("height")),
        "video_codec": primary.get("codec_name"),
        "tags": format_entry.get("tags", {}),
    }


def _to_float(raw_value: Any) -> float | None:
    if raw_value in (None, "N/A", ""):
        return None
    return float(raw_value)


def _to_int(raw_value: Any) -> int | None:
    if raw_value in (None, "N/A", ""):
        return None
    return int(raw_value)
