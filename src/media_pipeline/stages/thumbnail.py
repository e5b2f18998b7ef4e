from __future__ import annotations

from pathlib import Path
from typing import Protocol

from media_pipeline.config import get_settings
from media_pipeline.ops.metrics import stage_fallbacks
from media_pipeline.utils.ffmpeg_safe import binary_available, extract_frame
from media_pipeline.utils.log import logger


def thumbnails_dir() -> Path:
    return (Path(get_settings().output_dir) / "thumbnails").resolve()


class ThumbnailGenerator(Protocol):
    """
    Returns the image path, or None when a thumbnail is unavailable. Never raises
    for collaborator failures.
    """

    def generate(self, file_path: Path, media_id: str, *, at: str | None = None) -> Path | None: ...


class FFmpegThumbnailGenerator:
    def __init__(
        self,
        *,
        out_dir: Path | None = None,
        timeout_s: int | None = None,
        width: int | None = None,
    ) -> None:
        s = get_settings()
        self.out_dir = Path(out_dir) if out_dir is not None else thumbnails_dir()
        self.timeout_s = int(timeout_s or s.thumbnail_timeout_s)
        self.width = int(width or s.thumbnail_width)
        self.default_at = str(s.thumbnail_at)

    def generate(self, file_path: Path, media_id: str, *, at: str | None = None) -> Path | None:
        if not binary_available(get_settings().ffmpeg_bin):
            stage_fallbacks.labels(stage="generating_thumbnail").inc()
            logger.warning("thumbnail_unavailable", media_id=media_id, reason="ffmpeg missing")
            return None
        dst = (self.out_dir / f"{Path(media_id).name}.jpg").resolve()
        try:
            return extract_frame(
                src=Path(file_path),
                dst=dst,
                at=at or self.default_at,
                width=self.width,
                timeout_s=self.timeout_s,
            )
        except Exception as ex:
            stage_fallbacks.labels(stage="generating_thumbnail").inc()
            logger.warning("thumbnail_unavailable", media_id=media_id, reason=str(ex))
            return None
