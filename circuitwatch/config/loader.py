"""Config loading entrypoint.

Responsibilities:
  * Load the raw JSON config file (optional).
  * Validate it against the bundled `schema.json` with jsonschema draft-07.
  * Overlay `CW_*` environment variables (a `.env` file is honoured via
    python-dotenv when present) and return a `TrackerSettings`.

Environment Flags:
  CW_CONFIG=path        -> config file used when no explicit path is given.
  CW_SKIP_DOTENV=1      -> do not read `.env`.

Public API:
  load_settings(path=None, env=None) -> TrackerSettings
"""
from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import jsonschema
from dotenv import load_dotenv

from circuitwatch.config.settings import SettingsError, TrackerSettings
from circuitwatch.utils.env_flags import is_truthy_env

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("schema.json")


class ConfigValidationError(SettingsError):
    """Raised when a config document fails schema validation or cannot be read."""


def _load_schema() -> dict[str, Any]:
    try:
        with SCHEMA_PATH.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except (OSError, json.JSONDecodeError) as e:  # pragma: no cover - packaging defect
        raise ConfigValidationError(f"Failed to load schema: {e}") from e


def validate_config(cfg: dict[str, Any]) -> dict[str, Any]:
    try:
        jsonschema.validate(instance=cfg, schema=_load_schema())
    except jsonschema.ValidationError as e:
        path = "/".join(str(p) for p in e.path)
        raise ConfigValidationError(f"Config schema validation error: {e.message} (path: {path})") from e
    return cfg


def load_config_file(path: str | os.PathLike[str]) -> dict[str, Any]:
    p = Path(path)
    try:
        with p.open("r", encoding="utf-8") as fh:
            raw = json.load(fh)
    except FileNotFoundError as e:
        raise ConfigValidationError(f"Config file not found: {p}") from e
    except json.JSONDecodeError as e:
        raise ConfigValidationError(f"Config file {p} is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigValidationError(f"Config file {p} must contain a JSON object")
    return validate_config(raw)


def load_settings(path: str | os.PathLike[str] | None = None,
                  env: Mapping[str, str] | None = None) -> TrackerSettings:
    if env is None:
        if not is_truthy_env("CW_SKIP_DOTENV"):
            load_dotenv(override=False)
        env = os.environ
    if path is None:
        path = env.get("CW_CONFIG") or None
    cfg: dict[str, Any] = {}
    if path is not None:
        cfg = load_config_file(path)
        logger.info("config_loaded path=%s sections=%s", path, ",".join(sorted(cfg)))
    settings = TrackerSettings.from_mapping(cfg).with_env(env)
    logger.debug("settings_resolved %s", " ".join(f"{k}={v}" for k, v in settings.summary().items()))
    return settings


__all__ = ["ConfigValidationError", "SCHEMA_PATH", "validate_config", "load_config_file", "load_settings"]
