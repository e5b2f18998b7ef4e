from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from media_pipeline.config import get_settings
from media_pipeline.ops.metrics import stage_fallbacks
from media_pipeline.utils.ffmpeg_safe import ffprobe_media_info
from media_pipeline.utils.log import logger


@dataclass(frozen=True, slots=True)
class MediaMetadata:
    duration_s: float = 0.0
    width: int = 0
    height: int = 0
    codec: str = "unknown"
    bitrate: int = 0
    fallback: bool = False


# Documented fallback: zero duration/dimensions, unknown codec.
FALLBACK_METADATA = MediaMetadata(fallback=True)


class MetadataExtractor(Protocol):
    """
    Never raises for collaborator failures: returns FALLBACK_METADATA instead.
    """

    def extract(self, file_path: Path) -> MediaMetadata: ...


class FFprobeMetadataExtractor:
    def __init__(self, *, timeout_s: int | None = None) -> None:
        self.timeout_s = int(timeout_s or get_settings().ffprobe_timeout_s)

    def extract(self, file_path: Path) -> MediaMetadata:
        try:
            info = ffprobe_media_info(Path(file_path), timeout_s=self.timeout_s)
        except Exception as ex:
            # Never fatal: any ffprobe failure yields the fallback.
            stage_fallbacks.labels(stage="extracting_metadata").inc()
            logger.warning("metadata_fallback", path=str(file_path), error=str(ex))
            return FALLBACK_METADATA
        return MediaMetadata(
            duration_s=float(info["duration_s"]),
            width=int(info["width"]),
            height=int(info["height"]),
            codec=str(info["codec"]),
            bitrate=int(info["bitrate"]),
        )
