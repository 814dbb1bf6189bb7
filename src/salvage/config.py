"""Locator configuration loaded from an optional config/locator.yaml."""

import logging
import os
from dataclasses import replace
from functools import lru_cache
from typing import Any, Dict, Iterable, Optional, Tuple

import yaml

from .models import SectionPattern

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "locator.yaml"


def _candidate_paths() -> Tuple[str, ...]:
    return (
        os.path.join("config", CONFIG_FILENAME),
        os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), "config", CONFIG_FILENAME),
    )


def load_locator_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load locator tuning from YAML.

    Looks in config/locator.yaml (working directory, then repo root) unless
    an explicit path is given.

    Returns:
        Config dict, or empty dict if no file exists or it cannot be read
    """
    paths = (path,) if path else _candidate_paths()

    for candidate in paths:
        if not os.path.exists(candidate):
            continue
        try:
            with open(candidate, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load locator config from {candidate}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring locator config {candidate}: top level must be a mapping")
            return {}
        return data

    return {}


def min_position_overrides(config: Dict[str, Any]) -> Dict[str, float]:
    """Extract valid ``min_position`` overrides, clamped to [0, 1]."""
    raw = config.get("min_position") or {}
    if not isinstance(raw, dict):
        logger.warning("locator config: 'min_position' must be a mapping; ignoring")
        return {}

    overrides: Dict[str, float] = {}
    for name, value in raw.items():
        try:
            overrides[str(name)] = max(0.0, min(1.0, float(value)))
        except (TypeError, ValueError):
            logger.warning(f"locator config: invalid min_position for '{name}': {value!r}")
    return overrides


def apply_min_position_overrides(
    patterns: Iterable[SectionPattern],
    overrides: Dict[str, float],
) -> Tuple[SectionPattern, ...]:
    """Return a new cascade with thresholds replaced by name."""
    return tuple(
        replace(p, min_position=overrides[p.name]) if p.name in overrides else p
        for p in patterns
    )


def warn_unknown_overrides(overrides: Dict[str, float], known: Iterable[str]) -> None:
    for name in sorted(set(overrides) - set(known)):
        logger.warning(f"locator config: unknown pattern '{name}'")


@lru_cache(maxsize=1)
def default_overrides() -> Dict[str, float]:
    """Overrides from the default config location, read once per process."""
    return min_position_overrides(load_locator_config())
