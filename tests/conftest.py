from __future__ import annotations

import pytest

from media_pipeline.config import get_settings


@pytest.fixture(autouse=True)
def _test_env(
    tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch
) -> None:
    root = tmp_path_factory.mktemp("mp_test")
    (root / "Output").mkdir(parents=True, exist_ok=True)
    (root / "logs").mkdir(parents=True, exist_ok=True)
    (root / "_state").mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("APP_ROOT", str(root))
    monkeypatch.setenv("MEDIA_OUTPUT_DIR", str(root / "Output"))
    monkeypatch.setenv("MEDIA_LOG_DIR", str(root / "logs"))
    monkeypatch.setenv("MEDIA_STATE_DIR", str(root / "_state"))
    monkeypatch.setenv("MEDIA_ANALYZER_SEED", "7")
    monkeypatch.setenv("MEDIA_ANALYZER_DELAY_S", "0")
    monkeypatch.delenv("API_TOKEN", raising=False)
    monkeypatch.delenv("CORS_ORIGINS", raising=False)
    monkeypatch.delenv("ENV", raising=False)
    monkeypatch.delenv("STRICT_SECRETS", raising=False)
    get_settings.cache_clear()
