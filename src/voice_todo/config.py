# src/voice_todo/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time.
- Offline mode when no API key is configured.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "VTODO"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    console_enabled: bool

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    db_path: Path
    blobs_dir: Path

    # ---- LLM / speech-to-text ----
    openai_api_key: str | None
    openai_base_url: str | None
    llm_models: list[str]
    transcription_model: str
    transcription_language: str | None
    llm_connect_timeout_seconds: float
    llm_read_timeout_seconds: float

    # ---- Tasks / slots ----
    fallback_category: str
    initial_work_slots: int

    # ---- Microphone ----
    sample_rate: int
    channels: int

    @property
    def offline(self) -> bool:
        return not (self.openai_api_key or "").strip()

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "voice-todo")
        log_level = _env(_k("LOG_LEVEL"), "INFO")
        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/voice_todo"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "voice_todo.sqlite3")
        blobs_dir = _env_path(_k("BLOBS_DIR"), data_dir / "blobs")

        openai_api_key = _first_env(_k("OPENAI_API_KEY"), "OPENAI_API_KEY", default=None)
        # None -> the SDK default endpoint.
        openai_base_url = _first_env(_k("OPENAI_BASE_URL"), "OPENAI_BASE_URL", default=None)
        llm_models = _env_list(_k("LLM_MODELS"), ["gpt-4o-mini", "gpt-4o"])
        transcription_model = _env(_k("TRANSCRIPTION_MODEL"), "whisper-1")
        transcription_language = _first_env(_k("TRANSCRIPTION_LANGUAGE"), default=None)

        connect_timeout = _env_float(_k("LLM_CONNECT_TIMEOUT_SECONDS"), 5.0)
        read_timeout = _env_float(_k("LLM_READ_TIMEOUT_SECONDS"), 60.0)

        fallback_category = _env(_k("FALLBACK_CATEGORY"), "General").strip() or "General"
        initial_work_slots = max(0, _env_int(_k("INITIAL_WORK_SLOTS"), 1))

        sample_rate = _env_int(_k("SAMPLE_RATE"), 16000)
        channels = max(1, _env_int(_k("CHANNELS"), 1))

        return Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            data_dir=data_dir,
            db_path=db_path,
            blobs_dir=blobs_dir,
            openai_api_key=openai_api_key,
            openai_base_url=openai_base_url,
            llm_models=llm_models,
            transcription_model=transcription_model,
            transcription_language=transcription_language,
            llm_connect_timeout_seconds=connect_timeout,
            llm_read_timeout_seconds=max(read_timeout, connect_timeout),
            fallback_category=fallback_category,
            initial_work_slots=initial_work_slots,
            sample_rate=sample_rate,
            channels=channels,
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    """Process-wide settings, read from the environment on first use."""
    global _SETTINGS
    if _SETTINGS is None:
        load_dotenv(override=False)
        _SETTINGS = Settings.from_env()
    return _SETTINGS
