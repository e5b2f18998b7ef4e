from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from pydantic import SecretStr

from .public_config import PublicConfig
from .secret_config import SecretConfig


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class Settings:
    """
    Merged settings view (dot-access).

    Precedence:
      - secrets override public when names overlap
    """

    public: PublicConfig
    secret: SecretConfig

    def __getattr__(self, name: str) -> Any:
        if hasattr(self.secret, name):
            return getattr(self.secret, name)
        return getattr(self.public, name)

    def cors_origin_list(self) -> list[str]:
        return self.public.cors_origin_list()


def _is_production_env() -> bool:
    env = str(os.environ.get("ENV") or os.environ.get("APP_ENV") or "").strip().lower()
    return env in {"prod", "production"}


def _secret_value(secret: SecretStr | None) -> str:
    try:
        return secret.get_secret_value() if secret else ""
    except Exception:
        return ""


def _validate(s: Settings) -> None:
    """
    Hard-fail only in production (or STRICT_SECRETS=1); warn otherwise.
    """
    strict = bool(int(os.environ.get("STRICT_SECRETS", "0") or "0"))
    prod = _is_production_env()

    problems: list[str] = []
    token = _secret_value(s.secret.api_token)
    if token and len(token) < 16:
        problems.append("API_TOKEN")
    if int(s.public.max_concurrency) < 1:
        problems.append("MEDIA_MAX_CONCURRENCY")
    if prod:
        for o in s.public.cors_origin_list():
            if "*" in str(o):
                problems.append("CORS_ORIGINS")
                break

    if problems:
        if prod or strict:
            raise ConfigError(
                "Unsafe configuration detected: "
                + ", ".join(sorted(set(problems)))
                + ". Set them via environment variables or `.env.secrets`."
            )
        logging.getLogger("media_pipeline").warning(
            "config_problems_detected",
            extra={"problems": sorted(set(problems)), "production": prod},
        )


def get_safe_config_report() -> dict[str, Any]:
    """
    Deterministic, non-sensitive config report.

    - Public values are included (paths are stringified)
    - Secret values are NEVER included; only SET/UNSET markers
    """
    s = get_settings()

    pub_s: dict[str, Any] = {}
    for k, v in s.public.model_dump().items():
        pub_s[k] = str(v) if hasattr(v, "__fspath__") else v

    sec: dict[str, str] = {}
    for k in sorted(s.secret.model_fields.keys()):
        v = getattr(s.secret, k, None)
        if v is None:
            sec[k] = "UNSET"
        elif isinstance(v, SecretStr):
            sec[k] = "SET" if v.get_secret_value() else "UNSET"
        else:
            sec[k] = "SET" if str(v).strip() else "UNSET"

    return {"public": pub_s, "secrets": sec}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    s = Settings(public=PublicConfig(), secret=SecretConfig())
    _validate(s)
    return s
