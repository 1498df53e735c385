from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

_HERE = Path(__file__).resolve()
_PROJECT_ROOT = _HERE.parents[1]


def load_env() -> None:
    """Load the project-root .env (GEMINI_API_KEY etc.) without clobbering real env vars."""
    load_dotenv(_PROJECT_ROOT / ".env", override=False)


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _list_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    return tuple(v.strip() for v in raw.split(",") if v.strip())


@dataclass(frozen=True)
class Settings:
    render_timeout_ms: int = 30000
    ai_timeout_s: float = 20.0
    batch_max_urls: int = 10
    batch_workers: int = 4
    max_url_length: int = 2048
    playwright_concurrency: int = 1
    playwright_acquire_timeout_s: float = 0.25
    cors_origins: tuple[str, ...] = ("*",)
    rate_limit: str = "30/minute"
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-3-flash-preview"
    openrouter_api_key: str | None = None
    openrouter_model: str = "google/gemini-3-flash-preview"
    port: int = 4000

    @property
    def ai_provider(self) -> str | None:
        if self.gemini_api_key:
            return "gemini"
        if self.openrouter_api_key:
            return "openrouter"
        return None


def settings_from_env() -> Settings:
    return Settings(
        render_timeout_ms=max(1000, _int_env("SAFELINK_RENDER_TIMEOUT_MS", 30000)),
        ai_timeout_s=_float_env("SAFELINK_AI_TIMEOUT_S", 20.0),
        batch_max_urls=max(1, _int_env("SAFELINK_BATCH_MAX_URLS", 10)),
        batch_workers=max(1, _int_env("SAFELINK_BATCH_WORKERS", 4)),
        max_url_length=_int_env("SAFELINK_MAX_URL_LENGTH", 2048),
        playwright_concurrency=max(1, _int_env("PLAYWRIGHT_CONCURRENCY", 1)),
        playwright_acquire_timeout_s=_float_env("PLAYWRIGHT_ACQUIRE_TIMEOUT_S", 0.25),
        cors_origins=_list_env("SAFELINK_CORS_ORIGINS", ("*",)),
        rate_limit=os.getenv("SAFELINK_RATE_LIMIT", "30/minute"),
        gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-3-flash-preview"),
        openrouter_api_key=os.getenv("OPENROUTER_API_KEY") or None,
        openrouter_model=os.getenv("OPENROUTER_MODEL", "google/gemini-3-flash-preview"),
        port=_int_env("PORT", 4000),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    load_env()
    return settings_from_env()
