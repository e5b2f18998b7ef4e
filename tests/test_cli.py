from __future__ import annotations

import json
from pathlib import Path

from click.testing import CliRunner

from media_pipeline.cli import cli
from tests._helpers.media import write_bytes_file


def _last_json(output: str) -> dict:
    # Log lines share stdout; the command's JSON document is the trailing block.
    start = output.rindex("\n{") + 1 if "\n{" in output else output.index("{")
    return json.loads(output[start:])


def test_ingest_without_processing_then_info(tmp_path: Path) -> None:
    f = write_bytes_file(tmp_path / "clip.mp4", 42)
    runner = CliRunner()
    r = runner.invoke(cli, ["ingest", str(f), "--owner", "u9", "--no-process"])
    assert r.exit_code == 0, r.output
    rec = _last_json(r.output)
    assert rec["status"] == "pending"
    assert rec["mime_type"] == "video/mp4"
    assert rec["owner_id"] == "u9"

    r = runner.invoke(cli, ["info", rec["id"]])
    assert r.exit_code == 0, r.output
    assert _last_json(r.output)["size_bytes"] == 42

    r = runner.invoke(cli, ["list"])
    assert rec["id"] in r.output


def test_ingest_processes_with_fallbacks(tmp_path: Path, monkeypatch) -> None:
    from media_pipeline.config import get_settings

    # No ffmpeg: metadata/thumbnail fall back, the item still completes.
    monkeypatch.setenv("FFMPEG_BIN", "/nonexistent/ffmpeg")
    monkeypatch.setenv("FFPROBE_BIN", "/nonexistent/ffprobe")
    get_settings.cache_clear()
    f = write_bytes_file(tmp_path / "clip.mp4", 10)
    r = CliRunner().invoke(cli, ["ingest", str(f), "--title", "Clip"])
    assert r.exit_code == 0, r.output
    rec = _last_json(r.output)
    assert rec["status"] == "completed"
    assert rec["duration_s"] == 0.0
    assert rec["thumbnail_path"] is None
    assert rec["title"] == "Clip"

    r = CliRunner().invoke(cli, ["reprocess", rec["id"]])
    assert r.exit_code == 0, r.output
    assert _last_json(r.output)["status"] == "completed"


def test_info_unknown_id() -> None:
    r = CliRunner().invoke(cli, ["info", "nope"])
    assert r.exit_code != 0
    assert "media not found" in r.output


def test_config_report() -> None:
    r = CliRunner().invoke(cli, ["config"])
    assert r.exit_code == 0
    rep = _last_json(r.output)
    assert rep["secrets"]["api_token"] == "UNSET"
