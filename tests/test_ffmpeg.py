from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest

from media_pipeline.jobs.models import MediaStatus
from media_pipeline.jobs.pipeline import MediaPipeline
from media_pipeline.jobs.store import register_media
from media_pipeline.stages.metadata import FALLBACK_METADATA, FFprobeMetadataExtractor
from media_pipeline.stages.thumbnail import FFmpegThumbnailGenerator
from media_pipeline.utils.ffmpeg_safe import FFmpegError, parse_ffprobe_json, run_ffmpeg
from tests._helpers.fakes import FakeAnalyzer, FakeThumbnailer, RecordingBroadcaster, new_store
from tests._helpers.media import ensure_tiny_mp4, write_bytes_file


def test_parse_ffprobe_prefers_first_video_stream() -> None:
    data = {
        "format": {"format_name": "mov,mp4", "duration": "12.480000", "bit_rate": "734112"},
        "streams": [
            {"codec_type": "audio", "codec_name": "aac"},
            {"codec_type": "video", "codec_name": "h264", "width": 1280, "height": 720},
            {"codec_type": "video", "codec_name": "mjpeg", "width": 10, "height": 10},
        ],
    }
    info = parse_ffprobe_json(data)
    assert info == {
        "format_name": "mov,mp4",
        "duration_s": 12.48,
        "width": 1280,
        "height": 720,
        "codec": "h264",
        "bitrate": 734112,
    }


def test_parse_ffprobe_tolerates_garbage() -> None:
    info = parse_ffprobe_json({"format": {"duration": "N/A"}, "streams": "nope"})
    assert info["duration_s"] == 0.0
    assert info["codec"] == "unknown"
    assert parse_ffprobe_json(None)["width"] == 0


def test_missing_binary_raises_ffmpeg_error() -> None:
    with pytest.raises(FFmpegError):
        run_ffmpeg(["/nonexistent/ffmpeg-binary", "-version"], timeout_s=5)


def test_extractor_falls_back_when_tool_fails(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    from media_pipeline.config import get_settings

    monkeypatch.setenv("FFPROBE_BIN", "/nonexistent/ffprobe-binary")
    get_settings.cache_clear()
    f = write_bytes_file(tmp_path / "junk.mp4", 100)
    assert FFprobeMetadataExtractor().extract(f) == FALLBACK_METADATA


def test_thumbnail_none_without_ffmpeg(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    from media_pipeline.config import get_settings

    monkeypatch.setenv("FFMPEG_BIN", "/nonexistent/ffmpeg-binary")
    get_settings.cache_clear()
    f = write_bytes_file(tmp_path / "junk.mp4", 100)
    assert FFmpegThumbnailGenerator(out_dir=tmp_path / "t").generate(f, "m1") is None


def test_real_metadata_and_thumbnail(tmp_path: Path) -> None:
    mp4 = ensure_tiny_mp4(tmp_path / "tiny.mp4", skip_message="ffmpeg/ffprobe not installed")
    meta = FFprobeMetadataExtractor().extract(mp4)
    assert meta.fallback is False
    assert (meta.width, meta.height) == (160, 90)
    assert meta.duration_s > 0
    thumb = FFmpegThumbnailGenerator(out_dir=tmp_path / "thumbs", width=64).generate(mp4, "m1")
    assert thumb is not None and thumb.name == "m1.jpg" and thumb.stat().st_size > 0


def _fake_tool(path: Path, stdout_octal: str, *, exit_code: int = 0) -> Path:
    # printf expands the octal escapes into raw (non-UTF-8) bytes.
    path.write_text(f"#!/bin/sh\nprintf '{stdout_octal}'\nexit {exit_code}\n", encoding="utf-8")
    path.chmod(0o755)
    return path


@pytest.mark.skipif(os.name == "nt", reason="needs a POSIX shell")
def test_metadata_output_with_invalid_utf8_tags(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    from media_pipeline.config import get_settings

    fake_ffprobe = _fake_tool(
        tmp_path / "ffprobe",
        '{"format":{"duration":"3.0","tags":{"title":"caf\\351"}},"streams":[]}',
    )
    monkeypatch.setenv("FFPROBE_BIN", str(fake_ffprobe))
    get_settings.cache_clear()
    f = write_bytes_file(tmp_path / "latin1.mp4", 100)
    meta = FFprobeMetadataExtractor().extract(f)
    assert meta.fallback is False
    assert meta.duration_s == 3.0


@pytest.mark.skipif(os.name == "nt", reason="needs a POSIX shell")
def test_pipeline_completes_when_metadata_tool_emits_invalid_utf8(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    from media_pipeline.config import get_settings

    # Non-UTF-8 stdout and a failing exit: still only a metadata fallback.
    fake_ffprobe = _fake_tool(tmp_path / "ffprobe", "\\377\\376garbage", exit_code=1)
    monkeypatch.setenv("FFPROBE_BIN", str(fake_ffprobe))
    get_settings.cache_clear()
    store = new_store(tmp_path)
    f = write_bytes_file(tmp_path / "clip.mp4", 100)
    item = register_media(store, file_path=f, mime_type="video/mp4")
    pipeline = MediaPipeline(
        store=store,
        broadcaster=RecordingBroadcaster(),
        extractor=FFprobeMetadataExtractor(),
        thumbnailer=FakeThumbnailer(None),
        analyzer=FakeAnalyzer(),
    )
    out = asyncio.run(pipeline.run(item.id))
    assert out is not None
    assert out.status == MediaStatus.completed
    assert out.duration_s == 0.0
    assert out.metadata["codec"] == "unknown"


@pytest.mark.skipif(os.name == "nt", reason="needs a POSIX shell")
def test_thumbnail_failure_with_invalid_utf8_stderr(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    from media_pipeline.config import get_settings

    ffmpeg = tmp_path / "ffmpeg"
    ffmpeg.write_text("#!/bin/sh\nprintf 'caf\\351' >&2\nexit 1\n", encoding="utf-8")
    ffmpeg.chmod(0o755)
    monkeypatch.setenv("FFMPEG_BIN", str(ffmpeg))
    get_settings.cache_clear()
    f = write_bytes_file(tmp_path / "clip.mp4", 100)
    assert FFmpegThumbnailGenerator(out_dir=tmp_path / "t").generate(f, "m1") is None
