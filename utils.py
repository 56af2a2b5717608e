"""Startup helpers: .env loading and config dump."""

from __future__ import annotations

import logging
from dataclasses import fields
from pathlib import Path
from typing import List, Sequence

from dotenv import load_dotenv

from config import AppConfig
from logger import LOGGER_NAME, mask_secret

log = logging.getLogger(LOGGER_NAME)

# AppConfig field -> environment variable, where the names differ.
_ENV_NAMES = {"upstream_api_key": "OPENAI_API_KEY"}
_SECRET_FIELDS = frozenset({"upstream_api_key"})


def load_env_files() -> List[Path]:
    """
    Load `.env` from the program directory, then from the working directory.

    Later files override earlier ones and the process environment. Returns the
    files that were read; logging is not configured yet when this runs.
    """
    candidates = dict.fromkeys([Path(__file__).resolve().parent / ".env", Path.cwd() / ".env"])
    loaded = []
    for path in candidates:
        if path.is_file() and load_dotenv(dotenv_path=path, override=True):
            loaded.append(path)
    return loaded


def dump_config(config: AppConfig, env_files: Sequence[Path] = ()) -> None:
    """Log the effective configuration at startup, secrets masked."""
    log.info("=== chat relay config ===")
    for path in env_files:
        log.info("env file: %s", path)
    if not env_files:
        log.info("env file: none")

    for f in fields(config):
        value = getattr(config, f.name)
        name = _ENV_NAMES.get(f.name, f.name.upper())
        if f.name in _SECRET_FIELDS:
            log.info("%s=%s (set=%s)", name, mask_secret(value) or "-", bool(value))
        elif isinstance(value, tuple):
            log.info("%s=%s", name, ",".join(value))
        else:
            log.info("%s=%s", name, value)

    log.info("upstream endpoint: %s%s", config.upstream_base_url, config.upstream_path)
    if config.rate_limit_per_minute == 0:
        log.info("rate limiting disabled")
    log.info("cwd: %s", Path.cwd())
