"""Unified configuration manager for SongSmith.

YAML settings with dot-notation access, plus a .env priority chain for
provider credentials:
  1. Global ~/.songsmith/.env  (lowest priority)
  2. Local repo .env           (overrides global)
  3. Environment variables     (highest priority)
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

_config_instance: Optional["Config"] = None

DEFAULT_SETTINGS_PATH = Path(__file__).parent.parent.parent / "config" / "settings.yaml"
REPO_ROOT = Path(__file__).parent.parent.parent.parent


class ConfigurationError(RuntimeError):
    """A required setting or credential is missing. Fatal at startup."""


class Config:
    """Unified configuration with dot-notation access and env override."""

    def __init__(self, config_path: str):
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        with open(path) as f:
            self._data: dict = yaml.safe_load(f)
        if not isinstance(self._data, dict):
            raise ValueError(f"Config file must be a YAML mapping, got: {type(self._data)}")
        self._load_env()

    # ── private ──────────────────────────────────────────────────────────────

    def _load_env(self) -> None:
        """Load .env files in priority order (global → local)."""
        global_env = Path.home() / ".songsmith" / ".env"
        local_env = REPO_ROOT / ".env"
        if global_env.exists():
            load_dotenv(global_env, override=False)
        if local_env.exists():
            load_dotenv(local_env, override=False)

    # ── public ───────────────────────────────────────────────────────────────

    def get(self, key: str, default: Any = None) -> Any:
        """Dot-notation access into the YAML tree.

        Example::

            config.get("pipeline.video.timeout_seconds")   # 900
            config.get("providers.gemini.text_model")      # "gemini-2.5-flash"
            config.get("missing.key", "fallback")          # "fallback"
        """
        keys = key.split(".")
        val: Any = self._data
        for k in keys:
            if isinstance(val, dict) and k in val:
                val = val[k]
            else:
                return default
        return val

    def get_path(self, key: str) -> Path:
        """Return a config value as a Path, resolved against the repo root.

        Raises KeyError if the key does not exist.
        """
        val = self.get(key)
        if val is None:
            raise KeyError(f"Config key not found: {key}")
        path = Path(str(val)).expanduser()
        if not path.is_absolute():
            path = REPO_ROOT / path
        return path

    def get_env(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Return an environment variable value."""
        return os.environ.get(name, default)

    def require_env(self, name: str) -> str:
        """Return a required environment variable.

        Raises:
            ConfigurationError: If the variable is unset or empty.
        """
        value = os.environ.get(name, "")
        if not value:
            raise ConfigurationError(f"{name} environment variable not set.")
        return value


# ── module-level singleton ────────────────────────────────────────────────────


def get_config(config_path: Optional[str] = None) -> Config:
    """Return the singleton Config instance.

    On first call, ``config_path`` is required.  Subsequent calls may omit it
    and will return the existing instance.

    Raises:
        RuntimeError: If called before the singleton is initialised.
    """
    global _config_instance
    if _config_instance is None:
        if config_path is None:
            raise RuntimeError(
                "Config not yet initialised — call get_config(config_path) first."
            )
        _config_instance = Config(config_path)
    return _config_instance


def reset_config() -> None:
    """Clear the singleton (mainly for testing)."""
    global _config_instance
    _config_instance = None
