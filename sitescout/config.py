"""Application configuration loaded from config.yaml + environment variables."""

from __future__ import annotations

import os

import yaml
from pathlib import Path
from pydantic import Field
from pydantic_settings import BaseSettings

_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.yaml"


def _load_yaml() -> dict:
    if _CONFIG_PATH.exists():
        with open(_CONFIG_PATH) as f:
            return yaml.safe_load(f) or {}
    return {}


_yaml = _load_yaml()


class StreamingConfig(BaseSettings):
    ws_url: str = (
        "wss://generativelanguage.googleapis.com/ws/"
        "google.ai.generativelanguage.v1alpha.GenerativeService.BidiGenerateContent"
    )
    model: str = "gemini-2.5-flash-preview-native-audio-dialog"
    voice: str = "Aoede"
    response_modalities: list[str] = Field(default_factory=lambda: ["AUDIO", "TEXT"])
    handshake_timeout_s: float = 15.0
    max_reconnect_attempts: int = 3
    reconnect_delay_s: float = 2.0
    max_message_bytes: int = 16 * 1024 * 1024  # image frames


class PollingConfig(BaseSettings):
    api_url: str = "https://generativelanguage.googleapis.com/v1beta/models"
    model: str = "gemini-3-flash-preview"
    temperature: float = 0.4
    top_k: int = 32
    top_p: float = 0.95
    max_output_tokens: int = 256
    chat_temperature: float = 0.7
    chat_max_output_tokens: int = 512
    max_history_exchanges: int = 10
    request_timeout_s: float = 30.0


class HandoffConfig(BaseSettings):
    api_url: str = "https://generativelanguage.googleapis.com/v1beta/models"
    model: str = "gemini-3-pro-preview"
    temperature: float = 0.2
    top_k: int = 40
    top_p: float = 0.95
    max_output_tokens: int = 8192
    transcript_tail: int = 50
    request_timeout_s: float = 120.0
    # Optional wrap of the whole analyze() call; None leaves it unbounded.
    timeout_s: float | None = None


class CaptureConfig(BaseSettings):
    frames_per_second: float = 1.0
    jpeg_quality: int = 50
    snapshot_quality: int = 90
    max_width: int = 1280


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///data/sitescout.db"
    gemini_api_key: str = ""
    default_engine: str = "polling"  # streaming | polling
    streaming: StreamingConfig = Field(default_factory=StreamingConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    handoff: HandoffConfig = Field(default_factory=HandoffConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


def get_settings() -> Settings:
    """Build Settings by merging YAML defaults with env overrides."""
    y = _yaml
    overrides: dict = {
        "streaming": StreamingConfig(**y.get("streaming", {})),
        "polling": PollingConfig(**y.get("polling", {})),
        "handoff": HandoffConfig(**y.get("handoff", {})),
        "capture": CaptureConfig(**y.get("capture", {})),
    }
    # Environment wins over the YAML file for the deploy-specific values
    db_url = y.get("database", {}).get("url")
    if db_url and "DATABASE_URL" not in os.environ:
        overrides["database_url"] = db_url
    if y.get("default_engine") and "DEFAULT_ENGINE" not in os.environ:
        overrides["default_engine"] = y["default_engine"]
    return Settings(**overrides)
