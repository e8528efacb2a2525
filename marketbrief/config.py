"""Runtime settings for marketbrief.

Values come from the environment (``.env`` is loaded first) and can be
overridden per deployment with a YAML file.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"

# OpenAI-compatible endpoints for the supported LLM providers
LLM_PROVIDERS = {
    "gemini": {
        "base_url": "https://generativelanguage.googleapis.com/v1beta/openai/",
        "model": "gemini-1.5-flash",
        "key_env": "GEMINI_API_KEY",
    },
    "groq": {
        "base_url": "https://api.groq.com/openai/v1",
        "model": "llama-3.3-70b-versatile",
        "key_env": "GROQ_API_KEY",
    },
}


@dataclass
class Settings:
    database_url: str = "sqlite:///./marketbrief.db"

    llm_provider: str = "gemini"
    llm_api_key: Optional[str] = None
    llm_model: str = "gemini-1.5-flash"
    llm_base_url: str = LLM_PROVIDERS["gemini"]["base_url"]
    max_input_tokens: int = 4000
    max_total_tokens: int = 5500
    max_output_tokens: int = 1200
    temperature: float = 0.2

    news_window_days: int = 14
    news_hours_back: int = 336
    news_per_asset: int = 30
    default_timezone: str = "America/New_York"
    app_url: str = "http://localhost:3000"
    headline_cache_minutes: int = 30
    source_credibility: Dict[str, float] = field(default_factory=dict)

    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587
    email_sender: Optional[str] = None
    email_password: str = ""
    email_from_name: str = "Market Intelligence"


def _load_yaml_config(config_path: str) -> Dict[str, Any]:
    """Load YAML overrides; a missing or broken file yields an empty dict."""
    path = Path(config_path)
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not read config file {config_path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring config file {config_path}: top level must be a mapping")
        return {}
    return data


def _settings_from_env() -> Dict[str, Any]:
    provider = os.getenv("LLM_PROVIDER", "gemini").strip().lower()
    if provider not in LLM_PROVIDERS:
        logger.warning(f"Unknown LLM_PROVIDER '{provider}', using gemini")
        provider = "gemini"
    preset = LLM_PROVIDERS[provider]

    raw_password = os.getenv("EMAIL_PASSWORD", "")

    return {
        "database_url": os.getenv("DATABASE_URL", "sqlite:///./marketbrief.db"),
        "llm_provider": provider,
        "llm_api_key": os.getenv(preset["key_env"]),
        "llm_model": os.getenv("LLM_MODEL", preset["model"]),
        "llm_base_url": os.getenv("LLM_BASE_URL", preset["base_url"]),
        "default_timezone": os.getenv("DEFAULT_TIMEZONE", "America/New_York"),
        "app_url": os.getenv("APP_URL", "http://localhost:3000"),
        "smtp_server": os.getenv("SMTP_SERVER", "smtp.gmail.com"),
        "smtp_port": int(os.getenv("SMTP_PORT", "587")),
        "email_sender": os.getenv("EMAIL_SENDER"),
        # App passwords are often pasted with spaces
        "email_password": raw_password.strip().replace(" ", ""),
        "email_from_name": os.getenv("EMAIL_FROM_NAME", "Market Intelligence"),
    }


def get_settings(config_path: Optional[str] = None) -> Settings:
    """Build settings from the environment plus optional YAML overrides."""
    load_dotenv()

    values = _settings_from_env()
    config_path = config_path or os.getenv("MARKETBRIEF_CONFIG", DEFAULT_CONFIG_PATH)
    overrides = _load_yaml_config(config_path)

    known = {f.name for f in fields(Settings)}
    for key, value in overrides.items():
        if key in known:
            values[key] = value
        else:
            logger.warning(f"Unknown config key '{key}' in {config_path}")

    return Settings(**values)
