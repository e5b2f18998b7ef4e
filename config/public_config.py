from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_app_root() -> Path:
    """
    Default application root.

      - Docker: /app
      - Local/dev: current working directory
    """
    env = os.environ.get("APP_ROOT")
    if env:
        return Path(env).resolve()
    if Path("/app").exists():
        return Path("/app").resolve()
    return Path.cwd().resolve()


class PublicConfig(BaseSettings):
    """
    Non-sensitive config with safe defaults.

    Loaded from (in order):
      - process env
      - optional `.env` file
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- core paths ---
    app_root: Path = Field(default_factory=_default_app_root, alias="APP_ROOT")
    output_dir: Path = Field(
        default_factory=lambda: (Path.cwd() / "Output").resolve(), alias="MEDIA_OUTPUT_DIR"
    )
    log_dir: Path = Field(
        default_factory=lambda: (Path.cwd() / "logs").resolve(), alias="MEDIA_LOG_DIR"
    )
    # Runtime-only state directory (record DB). If unset, defaults to "<MEDIA_OUTPUT_DIR>/_state".
    state_dir: Path | None = Field(default=None, alias="MEDIA_STATE_DIR")
    media_db_name: str = Field(default="media.db", alias="MEDIA_DB_NAME")

    # --- tool binaries ---
    ffmpeg_bin: str = Field(default="ffmpeg", alias="FFMPEG_BIN")
    ffprobe_bin: str = Field(default="ffprobe", alias="FFPROBE_BIN")

    # --- collaborator ceilings ---
    ffprobe_timeout_s: int = Field(default=30, alias="MEDIA_FFPROBE_TIMEOUT_S")
    thumbnail_timeout_s: int = Field(default=60, alias="MEDIA_THUMBNAIL_TIMEOUT_S")
    thumbnail_at: str = Field(default="00:00:01", alias="MEDIA_THUMBNAIL_AT")
    thumbnail_width: int = Field(default=320, alias="MEDIA_THUMBNAIL_WIDTH")

    # --- content analyzer stub ---
    # Empty => nondeterministic. Tests pin a seed.
    analyzer_seed: int | None = Field(default=None, alias="MEDIA_ANALYZER_SEED")
    # Simulated per-checkpoint latency of the stub analyzer (0 disables).
    analyzer_delay_s: float = Field(default=0.0, alias="MEDIA_ANALYZER_DELAY_S")

    # --- scheduler / concurrency ---
    max_concurrency: int = Field(default=2, alias="MEDIA_MAX_CONCURRENCY")
    drain_timeout_sec: int = Field(default=120, alias="DRAIN_TIMEOUT_SEC")

    # --- realtime ---
    subscriber_queue_size: int = Field(default=256, alias="MEDIA_SUBSCRIBER_QUEUE_SIZE")

    # --- streaming ---
    stream_chunk_bytes: int = Field(default=1024 * 1024, alias="STREAM_CHUNK_BYTES")

    # --- web server ---
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    cors_origins: str = Field(default="", alias="CORS_ORIGINS")

    # --- logging ---
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_max_bytes: int = Field(default=5 * 1024 * 1024, alias="LOG_MAX_BYTES")
    log_backup_count: int = Field(default=3, alias="LOG_BACKUP_COUNT")

    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in (self.cors_origins or "").split(",") if o.strip()]
