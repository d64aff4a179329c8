"""Overlay user settings on top of the built-in defaults."""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


def merge_settings(defaults: Dict[str, Any], overrides: Dict[str, Any], *, _path: str = "") -> Dict[str, Any]:
    """Return a deep copy of ``defaults`` with ``overrides`` applied.

    Blank YAML keys (``None``) keep the default. A scalar cannot replace a
    whole section; such entries are logged and skipped.
    """
    merged: Dict[str, Any] = copy.deepcopy(defaults)
    for key, value in overrides.items():
        dotted = f"{_path}{key}"
        if value is None:
            continue
        current = merged.get(key)
        if isinstance(current, dict):
            if isinstance(value, dict):
                merged[key] = merge_settings(current, value, _path=f"{dotted}.")
            else:
                logger.warning("Ignoring non-mapping value for settings section %s", dotted)
            continue
        merged[key] = copy.deepcopy(value)
    return merged
