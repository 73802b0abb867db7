"""Packaged appbase defaults and the merge that sits under user config."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from docsink.config.models import AppbaseConfig

DEFAULTS_PATH = Path(__file__).parent / "defaults" / "appbase.yaml"

# Keys accepted under more than one spelling; the value is the field name.
_KEY_ALIASES = {"bulksize": "bulk_size"}


def load_defaults() -> dict[str, Any]:
    with DEFAULTS_PATH.open() as f:
        return yaml.safe_load(f)  # type: ignore[no-any-return]


def merge_configs(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Recursively deep-merge *overrides* into *base* (non-mutating)."""
    merged: dict[str, Any] = {**base}
    for key, value in overrides.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = value
    return merged


def normalize_keys(settings: dict[str, Any]) -> dict[str, Any]:
    """Rename aliased top-level keys to their field names.

    When both spellings are present the field name wins.
    """
    normalized = {k: v for k, v in settings.items() if k not in _KEY_ALIASES}
    for alias, field in _KEY_ALIASES.items():
        if alias in settings and field not in settings:
            normalized[field] = settings[alias]
    return normalized


def build_sink_config(overrides: dict[str, Any]) -> AppbaseConfig:
    """Build a validated AppbaseConfig from *overrides* on top of the defaults."""
    merged = merge_configs(load_defaults(), normalize_keys(overrides))
    return AppbaseConfig.model_validate(merged)
