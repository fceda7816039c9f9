from __future__ import annotations

import os
from pathlib import Path
from functools import lru_cache

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict


ROOT_DIR = Path(__file__).resolve().parent.parent.parent

# NARRATOR_CONFIG_DIR points an installed package at its settings.yaml and prompts
CONFIG_DIR = Path(os.environ.get("NARRATOR_CONFIG_DIR", ROOT_DIR / "config"))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # OpenAI-compatible vision API
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    vision_models: list[str] = ["gpt-4o", "gpt-4-turbo", "gpt-4o-mini"]
    vision_max_tokens: int = 150

    # Storage
    data_dir: str = "data"
    sessions_dir: str = "sessions"
    settings_file: str = "data/user-settings.json"
    database_url: str = "sqlite+aiosqlite:///data/narrator.db"

    # Capture loop
    autostart_capture: bool = False

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    def load_yaml_config(self) -> dict:
        settings_path = CONFIG_DIR / "settings.yaml"
        if settings_path.exists():
            with open(settings_path) as f:
                return yaml.safe_load(f) or {}
        return {}


@lru_cache
def get_settings() -> Settings:
    return Settings()
