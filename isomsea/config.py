"""Run configuration: JSON files plus command-line overrides."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from isomsea.core.types import MSEARequest
from isomsea.errors import ConfigurationError


def load_json_config(path: str | Path) -> dict[str, Any]:
    """Read a JSON object of run options.

    Raises `FileNotFoundError` for a missing file and `ConfigurationError`
    for a non-.json suffix, malformed JSON (with line/column) or a
    non-object root.
    """
    cfg = Path(path)
    if not cfg.exists():
        raise FileNotFoundError(f"Config file not found: {cfg}")
    if cfg.suffix.lower() != ".json":
        raise ConfigurationError(f"Cannot read run options from '{cfg}'. Use a .json config file.")

    text = cfg.read_text(encoding="utf-8")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(
            f"Malformed run config '{cfg}' (line {exc.lineno}, column {exc.colno}): {exc.msg}"
        ) from exc
    if not isinstance(payload, dict):
        raise ConfigurationError(
            f"Run config '{cfg}' expected a JSON object, got {type(payload).__name__}."
        )
    return payload


def load_request(path: str | Path, **overrides: Any) -> MSEARequest:
    """Validated `MSEARequest` from a config file; non-None overrides win."""
    options = load_json_config(path)
    for key, value in overrides.items():
        if value is not None:
            options[key] = value
    return MSEARequest.from_dict(options).validate()
