from __future__ import annotations

import threading
from collections.abc import Iterable
from enum import Enum
from pathlib import Path
from typing import Any

from sqlitedict import SqliteDict  # type: ignore

from media_pipeline.config import get_settings
from media_pipeline.jobs.models import (
    MediaItem,
    MediaStatus,
    SensitivityResult,
    new_id,
    now_utc,
)
from media_pipeline.utils.log import logger


class MediaNotFound(KeyError):
    pass


def _to_raw(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, SensitivityResult):
        return value.to_dict()
    return value


class MediaStore:
    """
    Durable record store: one MediaItem document per ingested file.

    Every mutation is a read-modify-persist under a process-wide lock, scoped to one id.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        # Ensure the table exists up front.
        with self._media() as _db:
            pass

    def _media(self) -> SqliteDict:
        # Open/close per operation (safe + avoids cross-thread SQLite handle issues)
        return SqliteDict(str(self.db_path), tablename="media", autocommit=True)

    def put(self, item: MediaItem) -> None:
        with self._lock, self._media() as db:
            db[item.id] = item.to_dict()

    def get(self, id: str) -> MediaItem | None:
        with self._lock, self._media() as db:
            raw = db.get(id)
        if raw is None:
            return None
        return MediaItem.from_dict(raw)

    def require(self, id: str) -> MediaItem:
        item = self.get(id)
        if item is None:
            raise MediaNotFound(id)
        return item

    def update(self, id: str, **fields: Any) -> MediaItem | None:
        with self._lock, self._media() as db:
            raw = db.get(id)
            if raw is None:
                return None
            raw = dict(raw)
            raw.update({k: _to_raw(v) for k, v in fields.items()})
            raw["updated_at"] = now_utc()
            db[id] = raw
        return MediaItem.from_dict(raw)

    def update_if(
        self, id: str, *, expect: Iterable[MediaStatus], **fields: Any
    ) -> MediaItem | None:
        """
        Compare-and-set: apply `fields` only while the current status is in `expect`.
        Returns the updated item, or None when the status did not match.
        """
        allowed = {MediaStatus(s).value for s in expect}
        with self._lock, self._media() as db:
            raw = db.get(id)
            if raw is None:
                raise MediaNotFound(id)
            if str(raw.get("status")) not in allowed:
                return None
            raw = dict(raw)
            raw.update({k: _to_raw(v) for k, v in fields.items()})
            raw["updated_at"] = now_utc()
            db[id] = raw
        return MediaItem.from_dict(raw)

    def increment_views(self, id: str) -> int:
        with self._lock, self._media() as db:
            raw = db.get(id)
            if raw is None:
                raise MediaNotFound(id)
            raw = dict(raw)
            raw["views"] = int(raw.get("views") or 0) + 1
            db[id] = raw
        return int(raw["views"])

    def list(self, limit: int = 100, status: str | None = None) -> list[MediaItem]:
        with self._lock, self._media() as db:
            items = list(db.values())

        out = [MediaItem.from_dict(v) for v in items]
        if status:
            try:
                st = MediaStatus(status)
            except ValueError:
                return []
            out = [i for i in out if i.status == st]
        out.sort(key=lambda i: i.created_at, reverse=True)
        return out[:limit]

    def delete_if(self, id: str, *, expect: Iterable[MediaStatus]) -> MediaItem | None:
        """Remove the record while its status is in `expect`; returns what was removed."""
        allowed = {MediaStatus(s).value for s in expect}
        with self._lock, self._media() as db:
            raw = db.get(id)
            if raw is None:
                raise MediaNotFound(id)
            if str(raw.get("status")) not in allowed:
                return None
            del db[id]
        return MediaItem.from_dict(raw)


def register_media(
    store: MediaStore,
    *,
    file_path: str | Path,
    mime_type: str,
    size_bytes: int | None = None,
    owner_id: str = "",
    title: str = "",
) -> MediaItem:
    """
    Ingestion boundary: a file has arrived at `file_path`; create its record.

    `size_bytes` defaults to the on-disk size.
    """
    p = Path(file_path).resolve()
    if size_bytes is None:
        size_bytes = p.stat().st_size
    now = now_utc()
    item = MediaItem(
        id=new_id(),
        file_path=str(p),
        mime_type=str(mime_type or "application/octet-stream"),
        size_bytes=int(size_bytes),
        created_at=now,
        updated_at=now,
        owner_id=str(owner_id or ""),
        title=str(title or p.stem),
        message="Queued",
    )
    store.put(item)
    logger.info(
        "media_registered",
        media_id=item.id,
        owner_id=item.owner_id,
        mime_type=item.mime_type,
        size_bytes=item.size_bytes,
    )
    return item


def media_db_path() -> Path:
    """<state_dir>/<media_db_name>; state_dir defaults to <output_dir>/_state."""
    s = get_settings()
    out_root = Path(s.output_dir).resolve()
    state_root = Path(s.state_dir or (out_root / "_state")).resolve()
    return state_root / str(s.media_db_name or "media.db")
