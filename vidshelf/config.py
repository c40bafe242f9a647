from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = Path("configs/default.yaml")
ENV_PREFIX = "VIDSHELF_"
DEFAULT_FONT_URL = "https://raw.githubusercontent.com/google/fonts/main/apache/roboto/Roboto-Regular.ttf"


class EngineSettings(BaseModel):
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    workdir: Path | None = None
    font_url: str = DEFAULT_FONT_URL
    fetch_timeout_seconds: int = 30


class ExportConfig(BaseModel, frozen=True):
    """Options recognized by one export run."""

    resolution: Literal["original", "1080p", "720p", "480p"] = "original"
    format: Literal["mp4", "mkv"] = "mp4"
    codec: Literal["libx264", "libx265"] = "libx264"
    overlay_text: bool = False
    font_size: int = Field(default=24, gt=0)
    font_opacity: float = Field(default=0.8, ge=0.0, le=1.0)


class ExportSettings(BaseModel):
    defaults: ExportConfig = Field(default_factory=ExportConfig)
    zero_end_policy: Literal["reject", "to_end"] = "reject"
    output_dir: Path = Path("data/exports")


class LibrarySettings(BaseModel):
    path: Path = Path("data/library.json")
    thumbnail_dir: Path = Path("data/thumbnails")
    video_extensions: list[str] = Field(default_factory=lambda: [".mp4", ".mkv", ".ts", ".rmvb", ".avi", ".flv"])
    image_extensions: list[str] = Field(default_factory=lambda: [".jpg", ".jpeg", ".png", ".webp", ".bmp"])


class LLMSettings(BaseModel):
    provider: Literal["gemini", "ollama"] = "gemini"
    model: str = "gemini-3-flash-preview"
    endpoint: str = "https://generativelanguage.googleapis.com"
    api_key_env: str = "API_KEY"
    timeout_seconds: int = 45
    max_retries: int = 2


class LoggingSettings(BaseModel):
    level: str = "INFO"


class Settings(BaseModel):
    engine: EngineSettings = Field(default_factory=EngineSettings)
    export: ExportSettings = Field(default_factory=ExportSettings)
    library: LibrarySettings = Field(default_factory=LibrarySettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load typed settings from YAML with environment-variable overrides."""

    resolved_path = Path(
        config_path
        or os.getenv(f"{ENV_PREFIX}CONFIG")
        or DEFAULT_CONFIG_PATH
    )
    raw_config: dict[str, Any] = {}
    if resolved_path.exists():
        raw_config = yaml.safe_load(resolved_path.read_text(encoding="utf-8")) or {}
    data = Settings.model_validate(raw_config).model_dump(mode="python")

    for key, raw_value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        suffix = key[len(ENV_PREFIX) :]
        if suffix == "CONFIG":
            continue

        path = [part.lower() for part in suffix.split("__")]
        _apply_override(data, path, raw_value)

    return Settings.model_validate(data)


def _apply_override(data: dict[str, Any], path: list[str], raw_value: str) -> None:
    current: Any = data
    for segment in path[:-1]:
        if not isinstance(current, dict) or segment not in current:
            return
        current = current[segment]

    if not isinstance(current, dict):
        return

    final_key = path[-1]
    if final_key not in current:
        return

    current[final_key] = _coerce_value(raw_value, current[final_key])


def _coerce_value(raw_value: str, existing_value: Any) -> Any:
    if isinstance(existing_value, bool):
        return raw_value.lower() in {"1", "true", "yes", "on"}
    if isinstance(existing_value, int) and not isinstance(existing_value, bool):
        return int(raw_value)
    if isinstance(existing_value, float):
        return float(raw_value)
    if isinstance(existing_value, list | dict):
        return json.loads(raw_value)
    if isinstance(existing_value, Path):
        return Path(raw_value)
    return raw_value
