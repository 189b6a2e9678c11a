# configuration.py
"""
Stackmate – Configuration
=========================

Centralised runtime configuration loader.

Resolution order (later wins): built-in defaults, the YAML section for the
active environment, environment variables (``.env`` is loaded first), and
keyword overrides.
"""

from __future__ import annotations

import os
import types
from pathlib import Path
from typing import Any, Dict

import dotenv
import yaml

from .loggingconfig import setup_logging

logger = setup_logging("Configuration")


# --------------------------------------------------------------------------- #
# defaults                                                                    #
# --------------------------------------------------------------------------- #

_DEFAULTS: Dict[str, Any] = {
    # resilient HTTP
    "HTTP_MAX_RETRIES": 3,
    "HTTP_INITIAL_DELAY_MS": 1000,
    "HTTP_MAX_DELAY_MS": 10_000,
    "HTTP_BACKOFF_FACTOR": 2.0,
    "HTTP_RESPECT_RETRY_AFTER": True,
    "HTTP_LIMIT_CONCURRENCY": True,
    "HTTP_MAX_CONCURRENT": 4,
    "HTTP_MIN_GAP_MS": 120,
    "HTTP_TIMEOUT": 30.0,
    # tx polling
    "POLL_BASE_DELAY_MS": 1000,
    "POLL_STEP_MS": 300,
    "POLL_MAX_DELAY_MS": 6000,
    # recent-transaction store
    "TX_STORE_PATH": ".stackmate/storage.json",
    "TX_STORE_KEY": "stackmate:tx:recent",
    "TX_STORE_LIMIT": 10,
    "TX_SUCCESS_TTL": 3.0,
    # networks
    "API_URL_MAINNET": "https://api.hiro.so",
    "API_URL_TESTNET": "https://api.testnet.hiro.so",
    "EXPLORER_URL_MAINNET": "https://explorer.hiro.so",
    "EXPLORER_URL_TESTNET": "https://explorer.hiro.so/testnet",
    "DEV_MODE": False,
    "DEV_PROXY_URL": "http://localhost:5173",
    # contract identity, "ADDRESS.contract-name"
    "CONTRACT_TESTNET": "",
    "CONTRACT_MAINNET": "",
    # misc
    "CHAIN_INFO_TTL": 10,
    "LOG_LEVEL": "INFO",
}

_TRUTHY = {"1", "true", "yes", "on"}


# --------------------------------------------------------------------------- #
# helper                                                                      #
# --------------------------------------------------------------------------- #


def _coerce(key: str, value: Any) -> Any:
    """Cast a raw (usually string) value to the type of its default."""
    default = _DEFAULTS.get(key)
    if default is None or not isinstance(value, str):
        return value
    try:
        if isinstance(default, bool):
            return value.strip().lower() in _TRUTHY
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
    except ValueError:
        logger.warning("%s: cannot parse %r, keeping default %r", key, value, default)
        return default
    return value


# --------------------------------------------------------------------------- #
# main class                                                                  #
# --------------------------------------------------------------------------- #


class Configuration(types.SimpleNamespace):
    BASE_PATH: Path = Path(__file__).parent.parent  # project root

    # NB: kwargs allow tests to override env/file easily
    def __init__(
        self,
        env_path: str | Path = ".env",
        yaml_file: str | Path = "config.yaml",
        environment: str = "development",
        **overrides: Any,
    ) -> None:
        super().__init__()
        self._env_path = Path(env_path)
        self._yaml_file = Path(yaml_file)
        self._environment = environment
        self._overrides = dict(overrides)
        self._raw: Dict[str, Any] = {}
        self._load()

    # ------------------------------------------------------------------ #
    # public API                                                         #
    # ------------------------------------------------------------------ #

    def reload(self) -> None:
        """Hot reload from YAML/env; keeps existing object identity."""
        self._load()
        logger.info("Configuration reloaded successfully")

    def get_config_value(self, key: str, default: Any | None = None) -> Any:
        return getattr(self, key, default)

    # ------------------------------------------------------------------ #
    # internals                                                          #
    # ------------------------------------------------------------------ #

    def _load(self) -> None:
        dotenv.load_dotenv(self._env_path, override=False)

        # 1) defaults
        data: Dict[str, Any] = dict(_DEFAULTS)

        # 2) YAML
        if self._yaml_file.exists():
            try:
                yaml_data = yaml.safe_load(self._yaml_file.read_text()) or {}
                section = yaml_data.get(self._environment) or {}
                data.update({k: _coerce(k, v) for k, v in section.items()})
            except Exception as exc:
                logger.error("Config YAML parse error: %s", exc)

        # 3) environment
        for k in _DEFAULTS:
            if k in os.environ:
                data[k] = _coerce(k, os.environ[k])

        # 4) explicit kwargs
        data.update(self._overrides)

        self.__dict__.update(data)
        self._raw = data

        logger.debug("Configuration loaded (%d keys)", len(data))

    # ------------------------------------------------------------------ #
    # dunder helpers                                                     #
    # ------------------------------------------------------------------ #

    def __repr__(self) -> str:
        keys = ("API_URL_MAINNET", "API_URL_TESTNET", "DEV_MODE")
        preview = ", ".join(f"{k}={getattr(self, k, '')!s}" for k in keys)
        return f"<Configuration {preview} …>"
