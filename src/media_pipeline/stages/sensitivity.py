"""
Content-sensitivity analysis.

The pipeline depends only on `ContentAnalyzer.analyze(file_path)`. The shipped
`MockSensitivityAnalyzer` synthesizes results for demonstration; a real model is
plugged in by implementing `_analyze` on a `SensitivityAnalyzer` subclass (or any
object satisfying the protocol) and passing it to `MediaPipeline`.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any, Protocol

from media_pipeline.config import get_settings
from media_pipeline.jobs.models import Classification, SensitivityResult, now_utc
from media_pipeline.utils.log import logger

ProgressCallback = Callable[[int, str], None]

FLAGGED_KEYWORDS = ("violence", "explicit", "nsfw", "adult", "gore", "harmful")

FLAG_CATEGORIES = (
    "violence",
    "adult_content",
    "hate_speech",
    "harassment",
    "misinformation",
    "spam",
    "copyright",
    "other",
)


class ContentAnalyzer(Protocol):
    async def analyze(
        self, file_path: Path, *, on_progress: ProgressCallback | None = None
    ) -> SensitivityResult: ...


def pending_result(*, error: str) -> SensitivityResult:
    return SensitivityResult(
        classification=Classification.pending,
        confidence=0,
        flags=[],
        analyzed_at=now_utc(),
        details={"error": error},
    )


class SensitivityAnalyzer:
    """
    Base analyzer: internal errors never escape `analyze`; they become a `pending`
    classification carrying the error detail.
    """

    model_version = "base"

    async def analyze(
        self, file_path: Path, *, on_progress: ProgressCallback | None = None
    ) -> SensitivityResult:
        try:
            return await self._analyze(Path(file_path), on_progress)
        except Exception as ex:
            logger.warning(
                "sensitivity_analysis_failed",
                path=str(file_path),
                model_version=self.model_version,
                error=str(ex),
            )
            return pending_result(error=str(ex))

    async def _analyze(
        self, file_path: Path, on_progress: ProgressCallback | None
    ) -> SensitivityResult:
        raise NotImplementedError


class MockSensitivityAnalyzer(SensitivityAnalyzer):
    """
    Simulated analysis: ~85% safe, ~15% flagged with 1-2 random categories.
    File names containing a flagged keyword are always flagged.
    """

    model_version = "1.0.0-mock"

    CHECKPOINTS: tuple[tuple[int, str], ...] = (
        (55, "Extracting frames for analysis..."),
        (65, "Analyzing video frames..."),
        (75, "Running sensitivity detection..."),
        (85, "Analyzing audio content..."),
    )

    def __init__(self, *, seed: int | None = None, delay_s: float | None = None) -> None:
        s = get_settings()
        if seed is None:
            seed = s.analyzer_seed
        self._rng = random.Random(seed)
        self.delay_s = float(s.analyzer_delay_s if delay_s is None else delay_s)

    async def _analyze(
        self, file_path: Path, on_progress: ProgressCallback | None
    ) -> SensitivityResult:
        if not file_path.is_file():
            raise FileNotFoundError(f"media file not found: {file_path}")
        t0 = time.perf_counter()
        for pct, msg in self.CHECKPOINTS:
            if self.delay_s > 0:
                await asyncio.sleep(self.delay_s)
            if on_progress is not None:
                on_progress(pct, msg)

        rng = self._rng
        details: dict[str, Any] = {
            "frames_analyzed": 30 + rng.randrange(50),
            "audio_analyzed": True,
            "processing_time_ms": int((time.perf_counter() - t0) * 1000),
            "model_version": self.model_version,
        }
        name_hits = analyze_text(file_path.stem)
        if name_hits["is_flagged"]:
            flags = sorted(name_hits["flags"])
        elif rng.random() > 0.15:
            return SensitivityResult(
                classification=Classification.safe,
                confidence=85 + rng.randrange(15),
                flags=[],
                analyzed_at=now_utc(),
                details=details,
            )
        else:
            flags = sorted(rng.sample(FLAG_CATEGORIES, 1 + rng.randrange(2)))

        details["flag_details"] = [
            {
                "category": f,
                "confidence": 50 + rng.randrange(40),
                "timestamp": rng.randrange(100) / 10,
            }
            for f in flags
        ]
        return SensitivityResult(
            classification=Classification.flagged,
            confidence=60 + rng.randrange(30),
            flags=flags,
            analyzed_at=now_utc(),
            details=details,
        )


def analyze_text(text: str) -> dict[str, Any]:
    """Keyword screen for titles/descriptions."""
    lower = str(text or "").lower()
    found = [k for k in FLAGGED_KEYWORDS if k in lower]
    return {
        "is_flagged": bool(found),
        "flags": found,
        "confidence": 80 if found else 100,
    }


async def batch_analyze(
    analyzer: ContentAnalyzer, items: Iterable[tuple[str, Path]]
) -> list[dict[str, Any]]:
    """Analyze `(media_id, path)` pairs sequentially."""
    results: list[dict[str, Any]] = []
    for media_id, path in items:
        res = await analyzer.analyze(Path(path))
        results.append({"media_id": media_id, "result": res})
    return results
