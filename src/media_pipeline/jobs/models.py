from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class MediaStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class Stage(str, Enum):
    queued = "queued"
    extracting_metadata = "extracting_metadata"
    generating_thumbnail = "generating_thumbnail"
    analyzing_content = "analyzing_content"
    finalizing = "finalizing"
    done = "done"
    error = "error"


class Classification(str, Enum):
    safe = "safe"
    flagged = "flagged"
    pending = "pending"


# Forward order with the progress checkpoint reached on entering each stage.
STAGE_ORDER: tuple[Stage, ...] = (
    Stage.queued,
    Stage.extracting_metadata,
    Stage.generating_thumbnail,
    Stage.analyzing_content,
    Stage.finalizing,
    Stage.done,
)
STAGE_PROGRESS: dict[Stage, int] = {
    Stage.queued: 0,
    Stage.extracting_metadata: 10,
    Stage.generating_thumbnail: 30,
    Stage.analyzing_content: 50,
    Stage.finalizing: 90,
    Stage.done: 100,
}
TERMINAL_STAGES = frozenset({Stage.done, Stage.error})


def is_forward(prev: Stage, nxt: Stage) -> bool:
    """True when `nxt` is a legal successor of `prev` (next stage, or error)."""
    if prev in TERMINAL_STAGES:
        return False
    if nxt == Stage.error:
        return True
    return STAGE_ORDER.index(nxt) == STAGE_ORDER.index(prev) + 1


def now_utc() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


_SIZE_UNITS = ("Bytes", "KB", "MB", "GB")


def format_size(n: int) -> str:
    """Binary units, at most two decimals: 1536 -> '1.5 KB'."""
    n = max(0, int(n or 0))
    if n == 0:
        return "0 Bytes"
    i = 0
    while n >= 1024 ** (i + 1) and i < len(_SIZE_UNITS) - 1:
        i += 1
    return f"{round(n / 1024**i, 2):g} {_SIZE_UNITS[i]}"


def format_duration(seconds: float) -> str:
    """`h:mm:ss` past the hour, else `m:ss`."""
    total = max(0, int(seconds or 0))
    hrs, rem = divmod(total, 3600)
    mins, secs = divmod(rem, 60)
    if hrs:
        return f"{hrs}:{mins:02d}:{secs:02d}"
    return f"{mins}:{secs:02d}"


def stream_url(media_id: str) -> str:
    return f"/media/{media_id}"


def _enum_value(raw: Any, enum_cls: type[Enum], default: Enum) -> Enum:
    if isinstance(raw, enum_cls):
        return raw
    s = str(raw or "")
    if "." in s:
        s = s.split(".", 1)[1]
    try:
        return enum_cls(s)
    except ValueError:
        return default


@dataclass(slots=True)
class SensitivityResult:
    classification: Classification = Classification.pending
    confidence: int = 0
    flags: list[str] = field(default_factory=list)
    analyzed_at: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["classification"] = self.classification.value
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> SensitivityResult:
        dd = dict(d or {})
        flags = dd.get("flags") or []
        return cls(
            classification=_enum_value(
                dd.get("classification"), Classification, Classification.pending
            ),
            confidence=max(0, min(100, int(dd.get("confidence") or 0))),
            # Set semantics, stable order.
            flags=sorted({str(f) for f in flags}),
            analyzed_at=dd.get("analyzed_at"),
            details=dict(dd.get("details") or {}),
        )


@dataclass(slots=True)
class MediaItem:
    id: str
    file_path: str
    mime_type: str
    size_bytes: int
    created_at: str
    updated_at: str
    owner_id: str = ""
    title: str = ""
    status: MediaStatus = MediaStatus.pending
    stage: Stage = Stage.queued
    progress: int = 0
    message: str = ""
    processing_error: str | None = None
    duration_s: float = 0.0
    width: int = 0
    height: int = 0
    thumbnail_path: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    sensitivity: SensitivityResult = field(default_factory=SensitivityResult)
    views: int = 0

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        d["stage"] = self.stage.value
        d["sensitivity"] = self.sensitivity.to_dict()
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> MediaItem:
        dd = dict(d)
        dd.setdefault("owner_id", "")
        dd.setdefault("title", "")
        dd.setdefault("message", "")
        dd.setdefault("processing_error", None)
        dd.setdefault("metadata", {})
        dd.setdefault("views", 0)
        dd["status"] = _enum_value(dd.get("status"), MediaStatus, MediaStatus.pending)
        dd["stage"] = _enum_value(dd.get("stage"), Stage, Stage.queued)
        dd["sensitivity"] = SensitivityResult.from_dict(dd.get("sensitivity"))
        known = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in dd.items() if k in known})

    def public_info(self) -> dict[str, Any]:
        """Playback info exposed to players (no filesystem paths)."""
        return {
            "title": self.title,
            "duration_s": float(self.duration_s),
            "width": int(self.width),
            "height": int(self.height),
            "mime_type": self.mime_type,
            "size_bytes": int(self.size_bytes),
            "status": self.status.value,
            "stream_url": stream_url(self.id),
            "formatted_duration": format_duration(self.duration_s),
            "formatted_size": format_size(self.size_bytes),
        }

    def progress_event(self) -> dict[str, Any]:
        return {
            "type": "progress",
            "id": self.id,
            "status": self.status.value,
            "stage": self.stage.value,
            "progress": int(self.progress),
            "message": self.message,
        }
