# core/config.py - Engine and AI provider configuration

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


@dataclass
class AiConfig:
    """Connection settings for the AI collaborator."""
    api_key: str = ""
    model: str = "gemini-2.5-flash"
    api_base: str = "https://generativelanguage.googleapis.com"
    temperature: float = 0.7
    timeout: int = 120


@dataclass
class EngineConfig:
    """Metering, retry and collaborator timeouts of the generation engine."""
    prompt_cost: int = 10
    max_attempts: int = 3
    backoff_base: float = 2.0
    max_jitter: float = 1.0
    learning_timeout: float = 5.0
    sync_timeout: float = 30.0
    log_level: str = "INFO"
    ai: AiConfig = field(default_factory=AiConfig)


class ConfigManager:
    """Loads configuration from an optional config.json, then the environment (.env included)."""

    ENV_OVERRIDES = {
        "SITEGEN_PROMPT_COST": ("prompt_cost", int),
        "SITEGEN_MAX_ATTEMPTS": ("max_attempts", int),
        "SITEGEN_LEARNING_TIMEOUT": ("learning_timeout", float),
        "SITEGEN_SYNC_TIMEOUT": ("sync_timeout", float),
        "SITEGEN_LOG_LEVEL": ("log_level", str),
    }

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = Path(config_dir) if config_dir else Path.home() / ".ava_sitegen"
        self.config_file = self.config_dir / "config.json"
        self.config = EngineConfig()

    def load(self) -> EngineConfig:
        """Load configuration from files and environment"""
        env_file = Path(".env")
        if env_file.exists():
            load_dotenv(env_file)

        if self.config_file.exists():
            with open(self.config_file, "r", encoding="utf-8") as f:
                self.config = self._from_dict(json.load(f))

        self._apply_environment()
        self._validate_config()
        return self.config

    def _from_dict(self, data: Dict[str, Any]) -> EngineConfig:
        engine_values = {k: v for k, v in data.get("engine", {}).items() if k != "ai"}
        ai_values = data.get("ai", {})
        # The API key is never read from config.json; it belongs in the environment.
        ai_values.pop("api_key", None)
        return EngineConfig(**engine_values, ai=AiConfig(**ai_values))

    def _apply_environment(self):
        for env_name, (attr, cast) in self.ENV_OVERRIDES.items():
            raw = os.getenv(env_name)
            if raw is None:
                continue
            try:
                setattr(self.config, attr, cast(raw))
            except ValueError:
                raise ValueError(f"Invalid value for {env_name}: {raw!r}")

        ai = self.config.ai
        ai.api_key = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY") or ai.api_key
        ai.model = os.getenv("GEMINI_MODEL", ai.model)
        ai.api_base = os.getenv("GOOGLE_API_BASE", ai.api_base)

    def _validate_config(self):
        """Validate configuration and log warnings for missing items"""
        if self.config.prompt_cost < 0:
            raise ValueError("prompt_cost must not be negative")
        if self.config.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not self.config.ai.api_key:
            logger.warning("No AI API key configured. Set GEMINI_API_KEY (or API_KEY) in your .env file.")

    def save(self):
        """Save configuration to config.json (without secrets)"""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        engine = asdict(self.config)
        ai = engine.pop("ai")
        ai.pop("api_key", None)
        with open(self.config_file, "w", encoding="utf-8") as f:
            json.dump({"engine": engine, "ai": ai, "version": "1.0.0"}, f, indent=2)
