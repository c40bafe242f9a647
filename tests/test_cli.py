from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

import vidshelf.cli as cli
from vidshelf.config import load_settings
from vidshelf.errors import EngineExecError
from vidshelf.export.orchestrator import ExportResult
from vidshelf.library.store import load_library, save_library
from vidshelf.models import LibraryData, VideoAsset


class _StubProvider:
    def __init__(self) -> None:
        self.reset_calls = 0

    async def reset(self) -> None:
        self.reset_calls += 1


class _StubOrchestrator:
    def __init__(self, error: Exception | None = None) -> None:
        self.engine_provider = _StubProvider()
        self.error = error
        self.received: dict = {}

    async def run(self, clips, resolve_asset, config, on_progress=None, *, cancel=None) -> ExportResult:
        self.received = {
            "clip_ids": [clip.id for clip in clips],
            "resolved": [resolve_asset(clip.source_video_id) for clip in clips],
            "config": config,
        }
        on_progress(15, "media engine ready")
        if self.error is not None:
            raise self.error
        on_progress(100, "export complete")
        return ExportResult(data=b"merged", filename="output_final_1.mkv", mime_type="video/mkv", clip_count=len(clips))


def _write_config(tmp_path: Path) -> Path:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "library:\n"
        f"  path: {tmp_path / 'library.json'}\n"
        "export:\n"
        f"  output_dir: {tmp_path / 'exports'}\n",
        encoding="utf-8",
    )
    save_library(
        LibraryData(videos=[VideoAsset(id="v1", title="Harbour Walk", url="/videos/walk.mp4")]),
        tmp_path / "library.json",
    )
    return config_path


def _write_queue(tmp_path: Path, rows: list[dict]) -> Path:
    queue_path = tmp_path / "queue.json"
    queue_path.write_text(json.dumps(rows), encoding="utf-8")
    return queue_path


def test_export_command_saves_output_and_reports_progress(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = _write_config(tmp_path)
    queue_path = _write_queue(
        tmp_path,
        [{"id": "q1", "sourceVideoId": "v1", "sourceTitle": "Harbour Walk", "startTime": 1, "endTime": 4}],
    )
    stub = _StubOrchestrator()
    monkeypatch.setattr(cli, "_build_orchestrator", lambda _settings: stub)

    result = CliRunner().invoke(
        cli.app,
        ["export", str(queue_path), "--config", str(config_path), "--format", "mkv", "--resolution", "720p"],
    )

    assert result.exit_code == 0, result.output
    assert "[ 15%] media engine ready" in result.output
    assert '"status": "ok"' in result.output
    assert (tmp_path / "exports" / "output_final_1.mkv").read_bytes() == b"merged"
    assert stub.received["clip_ids"] == ["q1"]
    assert stub.received["resolved"] == ["/videos/walk.mp4"]
    assert stub.received["config"].format == "mkv"
    assert stub.received["config"].resolution == "720p"
    assert stub.engine_provider.reset_calls == 1


def test_export_command_prints_clean_error_without_traceback(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = _write_config(tmp_path)
    queue_path = _write_queue(
        tmp_path,
        [{"id": "q1", "sourceVideoId": "v1", "sourceTitle": "A", "startTime": 0, "endTime": 2}],
    )
    stub = _StubOrchestrator(error=EngineExecError("FFmpeg failed (exit 1):\nInvalid data found"))
    monkeypatch.setattr(cli, "_build_orchestrator", lambda _settings: stub)

    result = CliRunner().invoke(cli.app, ["export", str(queue_path), "--config", str(config_path)])

    assert result.exit_code == 1
    assert "Error: FFmpeg failed (exit 1)" in result.output
    assert "export failed" in result.output
    assert "Traceback" not in result.output
    assert stub.engine_provider.reset_calls == 1


def test_export_command_with_empty_queue_is_a_no_op(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = _write_config(tmp_path)
    queue_path = _write_queue(tmp_path, [])
    monkeypatch.setattr(
        cli,
        "_build_orchestrator",
        lambda _settings: (_ for _ in ()).throw(AssertionError("orchestrator should not be built")),
    )

    result = CliRunner().invoke(cli.app, ["export", str(queue_path), "--config", str(config_path)])

    assert result.exit_code == 0
    assert "nothing to do" in result.output


def test_export_command_rejects_invalid_option(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)
    queue_path = _write_queue(tmp_path, [])

    result = CliRunner().invoke(
        cli.app, ["export", str(queue_path), "--config", str(config_path), "--resolution", "4k"]
    )

    assert result.exit_code == 1
    assert "Error:" in result.output


def test_describe_command_applies_draft(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = _write_config(tmp_path)
    monkeypatch.setattr(
        cli,
        "draft_video_metadata",
        lambda title, **_kwargs: {"description": f"About {title}.", "tags": ["harbour", "walk"]},
    )

    result = CliRunner().invoke(cli.app, ["describe", "v1", "--apply", "--config", str(config_path)])

    assert result.exit_code == 0, result.output
    video = load_library(tmp_path / "library.json").videos[0]
    assert video.description == "About Harbour Walk."
    assert video.tags == ["harbour", "walk"]


def test_library_nfo_unknown_id_exits_cleanly(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)

    result = CliRunner().invoke(cli.app, ["library", "nfo", "missing", "--config", str(config_path)])

    assert result.exit_code == 1
    assert "unknown video id missing" in result.output


def test_build_orchestrator_passes_fetch_timeout(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("engine:\n  fetch_timeout_seconds: 7\n", encoding="utf-8")
    captured: dict = {}

    def _fake_fetch(handle, timeout_seconds=30):
        captured["handle"] = handle
        captured["timeout_seconds"] = timeout_seconds
        return b""

    monkeypatch.setattr(cli, "fetch_bytes", _fake_fetch)

    orchestrator = cli._build_orchestrator(load_settings(config_path))
    orchestrator.fetch("/videos/walk.mp4")

    assert captured == {"handle": "/videos/walk.mp4", "timeout_seconds": 7}


def test_collection_commands_and_scan_assignment(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)
    media = tmp_path / "media"
    media.mkdir()
    (media / "kitchen.mp4").write_bytes(b"data")
    runner = CliRunner()

    added = runner.invoke(cli.app, ["library", "collection", "add", "Food", "--config", str(config_path)])
    assert added.exit_code == 0, added.output
    collection_id = load_library(tmp_path / "library.json").collections[0].id

    unknown = runner.invoke(
        cli.app, ["library", "scan", str(media), "--collection", "nope", "--config", str(config_path)]
    )
    assert unknown.exit_code == 1
    assert "unknown collection id nope" in unknown.output

    scanned = runner.invoke(
        cli.app, ["library", "scan", str(media), "--collection", collection_id, "--config", str(config_path)]
    )
    assert scanned.exit_code == 0, scanned.output
    listing = runner.invoke(cli.app, ["library", "collection", "list", "--config", str(config_path)])
    assert f"{collection_id}\t1\tFood" in listing.output

    removed = runner.invoke(cli.app, ["library", "collection", "remove", collection_id, "--config", str(config_path)])
    assert removed.exit_code == 0, removed.output
    library = load_library(tmp_path / "library.json")
    assert library.collections == []
    assert [video.collection_id for video in library.videos] == [None, None]


def test_library_list_filters(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)
    save_library(
        LibraryData(
            videos=[
                VideoAsset(id="v1", title="Harbour Walk", url="/a.mp4", tags=["travel"], collection_id="c1"),
                VideoAsset(id="v2", title="Kitchen", url="/b.mp4", tags=["food"]),
            ]
        ),
        tmp_path / "library.json",
    )
    runner = CliRunner()

    by_search = runner.invoke(cli.app, ["library", "list", "--search", "harbour", "--config", str(config_path)])
    by_tag = runner.invoke(cli.app, ["library", "list", "--tag", "food", "--config", str(config_path)])
    by_collection = runner.invoke(cli.app, ["library", "list", "--collection", "c1", "--config", str(config_path)])

    assert "v1\t" in by_search.output
    assert "Kitchen" not in by_search.output
    assert "v2\t" in by_tag.output
    assert "Harbour" not in by_tag.output
    assert "v1\t" in by_collection.output
    assert "Kitchen" not in by_collection.output


def test_library_export_strips_urls_and_import_merges(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)
    shared = tmp_path / "shared.json"
    runner = CliRunner()

    exported = runner.invoke(cli.app, ["library", "export", str(shared), "--config", str(config_path)])
    assert exported.exit_code == 0, exported.output
    assert load_library(shared).videos[0].url == ""

    save_library(
        LibraryData(videos=[VideoAsset(id="v1", title="Dup", url=""), VideoAsset(id="v2", title="New", url="")]),
        shared,
    )
    imported = runner.invoke(cli.app, ["library", "import", str(shared), "--config", str(config_path)])

    assert imported.exit_code == 0, imported.output
    assert '"added": 1' in imported.output
    library = load_library(tmp_path / "library.json")
    assert [(video.id, video.title, video.url) for video in library.videos] == [
        ("v1", "Harbour Walk", "/videos/walk.mp4"),
        ("v2", "New", ""),
    ]
