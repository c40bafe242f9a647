from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from vidshelf.config import ExportConfig

SCALE_HEIGHTS = {"1080p": 1080, "720p": 720, "480p": 480}
FONT_FILE = "font.ttf"
REENCODE_PRESET = "ultrafast"
REENCODE_CRF = "26"
AUDIO_CODEC = "aac"


def format_time(seconds: float) -> str:
    """Format seconds as HH:MM:SS.mmm for ffmpeg -ss/-to arguments.

    Milliseconds round half-up; negative input clamps to zero; hours are not
    wrapped at 24.
    """

    if seconds < 0:
        seconds = 0.0
    ms_total = int((Decimal(str(seconds)) * Decimal(1000)).to_integral_value(rounding=ROUND_HALF_UP))
    hours, rem = divmod(ms_total, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, ms = divmod(rem, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{ms:03d}"


def escape_drawtext_text(value: str) -> str:
    """Escape a title for drawtext's quoted text= option.

    The value is parsed twice, once by the filtergraph and once by the option
    parser. An apostrophe closes the quote, emits a quote escaped for both
    levels, and reopens.
    """

    return (
        value.replace("\\", "\\\\")
        .replace("'", "'\\\\\\''")
        .replace(":", "\\:")
        .replace("%", "\\%")
        .replace("\n", " ")
    )


def needs_reencode(config: ExportConfig, *, overlay_active: bool) -> bool:
    return overlay_active or config.resolution != "original"


def build_video_filters(config: ExportConfig, *, title: str, overlay_active: bool) -> list[str]:
    filters: list[str] = []
    height = SCALE_HEIGHTS.get(config.resolution)
    if height is not None:
        filters.append(f"scale=-2:{height}")
    if overlay_active:
        filters.append(
            f"drawtext=fontfile={FONT_FILE}:text='{escape_drawtext_text(title)}'"
            f":fontcolor=white:fontsize={config.font_size}:alpha={config.font_opacity}"
            ":x=20:y=20:shadowcolor=black:shadowx=2:shadowy=2"
        )
    return filters


def build_trim_args(
    *,
    input_name: str,
    output_name: str,
    start_time: float,
    end_time: float | None,
    title: str,
    config: ExportConfig,
    overlay_active: bool,
) -> list[str]:
    """Build the per-clip trim transform; `end_time=None` trims to the end of the source."""

    args = ["-ss", format_time(start_time)]
    if end_time is not None:
        args += ["-to", format_time(end_time)]
    args += ["-i", input_name]

    if needs_reencode(config, overlay_active=overlay_active):
        filters = build_video_filters(config, title=title, overlay_active=overlay_active)
        if filters:
            args += ["-vf", ",".join(filters)]
        args += ["-c:v", config.codec, "-preset", REENCODE_PRESET, "-crf", REENCODE_CRF, "-c:a", AUDIO_CODEC]
    else:
        args += ["-c", "copy"]

    args.append(output_name)
    return args


def build_concat_manifest(segment_names: list[str]) -> str:
    """Render a concat-demuxer list with one `file '<path>'` line per segment."""

    lines = []
    for name in segment_names:
        escaped = name.replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    return "\n".join(lines)


def build_concat_args(*, manifest_name: str, output_name: str) -> list[str]:
    return ["-f", "concat", "-safe", "0", "-i", manifest_name, "-c", "copy", output_name]
