# planflow/config.py
"""
Configuration management for planflow.
Uses TOML format for configuration files.
"""
import os
import sys
from pathlib import Path
from typing import List, Optional

# Reader (tomllib for >= 3.11, tomli for < 3.11)
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

import tomli_w
from pydantic import BaseModel, Field, ValidationError
from dotenv import load_dotenv

from planflow.constants import (
    CONFIG_FILE, GEMINI_MODEL, DEFAULT_BACKOFF_BASE,
    DEFAULT_MAX_ITERATIONS, HISTORY_LIMIT, CACHE_TTL_SECONDS,
)
from planflow.utils.logging import get_logger

logger = get_logger(__name__)


# --- Configuration Models ---

class ApiConfig(BaseModel):
    """Model client settings for the advisory collaborators."""
    gemini_api_key: Optional[str] = Field(None, description="Google Gemini API Key")
    gemini_model: str = Field(GEMINI_MODEL, description="Model used for advisory prompts")


class ExecutionConfig(BaseModel):
    """Tunables for the plan and step executors."""
    backoff_base: float = Field(DEFAULT_BACKOFF_BASE, ge=0, description="Retry backoff base in seconds, raised to the attempt index")
    default_max_iterations: int = Field(DEFAULT_MAX_ITERATIONS, ge=1, description="Loop bound when a loop does not declare one")
    history_limit: int = Field(HISTORY_LIMIT, ge=1, description="Number of past runs kept in the context history")
    cache_ttl_seconds: float = Field(CACHE_TTL_SECONDS, gt=0, description="Lifetime of context cache entries")
    max_execution_time_ms: Optional[int] = Field(None, ge=0, description="Default wall-clock budget for a run")


class SafetyConfig(BaseModel):
    """Thresholds for the deterministic safety rules."""
    bulk_target_limit: int = Field(10, ge=0, description="Maximum principals a single ban/kick may target")
    bulk_message_limit: int = Field(100, ge=0, description="Maximum messages a single deletion may remove")
    privileged_targets: List[str] = Field(default_factory=list, description="Principal ids that must never be targeted")
    advisory_enabled: bool = Field(False, description="Consult the model client after the rules pass")


class AppConfig(BaseModel):
    """Application configuration settings."""
    api: ApiConfig = Field(default_factory=ApiConfig, description="API configuration")
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig, description="Executor configuration")
    safety: SafetyConfig = Field(default_factory=SafetyConfig, description="Safety gate configuration")
    debug: bool = Field(False, description="Enable debug mode")


# --- Configuration Manager ---

class ConfigManager:
    """Manages the planflow configuration, stored as TOML."""

    def __init__(self, config_file: Path = CONFIG_FILE):
        self._config: AppConfig = AppConfig()
        self._config_file = Path(config_file)
        self._loaded = False
        self._logger = logger
        self._load_environment()

    def _load_environment(self) -> None:
        """Loads settings from environment variables and a .env file."""
        load_dotenv()
        gemini_api_key = os.getenv("GEMINI_API_KEY")
        if gemini_api_key:
            self._config.api.gemini_api_key = gemini_api_key
        if os.getenv("PLANFLOW_DEBUG", "").lower() in ("1", "true", "yes"):
            self._config.debug = True

    def load_config(self) -> AppConfig:
        """
        Loads configuration from the TOML config file.

        A missing file leaves the defaults in place. A malformed file is
        logged and the defaults plus environment are used instead.

        Returns:
            The active configuration.
        """
        self._loaded = True
        if not self._config_file.exists():
            self._logger.debug(f"Configuration file not found at '{self._config_file}'. Using defaults.")
            return self._config

        try:
            self._logger.debug(f"Loading configuration from: {self._config_file}")
            with open(self._config_file, "rb") as f:
                config_data = tomllib.load(f)

            self._config = AppConfig(**config_data)
            self._load_environment()

        except tomllib.TOMLDecodeError as e:
            self._logger.error(f"Error decoding TOML configuration file ({self._config_file}): {e}")
            self._reset()
        except ValidationError as e:
            self._logger.error(f"Invalid configuration in {self._config_file}: {e}")
            self._reset()
        except OSError as e:
            self._logger.error(f"I/O error accessing configuration file: {e}")
            self._reset()

        return self._config

    def _reset(self) -> None:
        self._logger.error("       Using default configuration and environment variables.")
        self._config = AppConfig()
        self._load_environment()

    def save_config(self) -> None:
        """Saves the current configuration to the config file (as TOML)."""
        # The API key stays in the environment, never on disk
        config_dict = self._config.model_dump(exclude_none=True)
        config_dict.get("api", {}).pop("gemini_api_key", None)

        self._config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self._config_file, "wb") as f:
            tomli_w.dump(config_dict, f)
        self._logger.info(f"Configuration saved to {self._config_file}")

    @property
    def config(self) -> AppConfig:
        """The active configuration, loaded from disk on first access."""
        if not self._loaded:
            self.load_config()
        return self._config


# --- Global Instance ---

config_manager = ConfigManager()
