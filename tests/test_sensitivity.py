from __future__ import annotations

import asyncio
from pathlib import Path

from media_pipeline.jobs.models import Classification
from media_pipeline.stages.sensitivity import (
    FLAG_CATEGORIES,
    MockSensitivityAnalyzer,
    analyze_text,
    batch_analyze,
)
from tests._helpers.media import write_bytes_file


def test_keyword_in_name_is_flagged(tmp_path: Path) -> None:
    f = write_bytes_file(tmp_path / "Gore-Compilation.mp4", 10)
    res = asyncio.run(MockSensitivityAnalyzer(seed=3).analyze(f))
    assert res.classification == Classification.flagged
    assert res.flags == ["gore"]
    assert 60 <= res.confidence < 90
    assert res.details["model_version"] == "1.0.0-mock"
    assert res.details["flag_details"][0]["category"] == "gore"


def test_seeded_results_are_reproducible(tmp_path: Path) -> None:
    files = [write_bytes_file(tmp_path / f"clip{i}.mp4", 10) for i in range(20)]

    def run(seed: int):
        a = MockSensitivityAnalyzer(seed=seed)
        out = []
        for f in files:
            r = asyncio.run(a.analyze(f))
            out.append((r.classification, r.confidence, tuple(r.flags)))
        return out

    first = run(11)
    assert first == run(11)
    for classification, confidence, flags in first:
        if classification == Classification.safe:
            assert 85 <= confidence <= 99
            assert flags == ()
        else:
            assert classification == Classification.flagged
            assert 1 <= len(flags) <= 2
            assert set(flags) <= set(FLAG_CATEGORIES)


def test_progress_checkpoints_are_reported(tmp_path: Path) -> None:
    f = write_bytes_file(tmp_path / "x.mp4", 10)
    seen: list[int] = []
    asyncio.run(MockSensitivityAnalyzer(seed=1).analyze(f, on_progress=lambda p, m: seen.append(p)))
    assert seen == [55, 65, 75, 85]


def test_missing_file_becomes_pending(tmp_path: Path) -> None:
    res = asyncio.run(MockSensitivityAnalyzer(seed=1).analyze(tmp_path / "nope.mp4"))
    assert res.classification == Classification.pending
    assert res.confidence == 0
    assert "not found" in res.details["error"]


def test_analyze_text() -> None:
    assert analyze_text("A calm walk in the park") == {
        "is_flagged": False,
        "flags": [],
        "confidence": 100,
    }
    hit = analyze_text("NSFW and Violence")
    assert hit["is_flagged"] is True
    assert hit["flags"] == ["violence", "nsfw"]
    assert hit["confidence"] == 80


def test_batch_analyze(tmp_path: Path) -> None:
    a = write_bytes_file(tmp_path / "a.mp4", 1)
    b = write_bytes_file(tmp_path / "harmful.mp4", 1)
    out = asyncio.run(batch_analyze(MockSensitivityAnalyzer(seed=2), [("a", a), ("b", b)]))
    assert [r["media_id"] for r in out] == ["a", "b"]
    assert out[1]["result"].classification == Classification.flagged
