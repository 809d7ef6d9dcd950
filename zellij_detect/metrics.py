from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict

from .util import ensure_state_dir, state_dir


logger = logging.getLogger("zellij_detect.metrics")


def _usage_path() -> Path:
    return state_dir() / "detect_usage.json"


def increment_usage(name: str, outcome: str) -> None:
    """Count one ``outcome`` (e.g. "matched", "timed_out", "not_found") for operation ``name``."""
    path = _usage_path()
    try:
        data: Dict[str, Dict[str, int]] = {}
        if path.exists():
            data = json.loads(path.read_text(encoding="utf-8"))
        entry = data.get(name, {})
        entry[outcome] = entry.get(outcome, 0) + 1
        data[name] = entry
        ensure_state_dir()
        path.write_text(json.dumps(data), encoding="utf-8")
    except (OSError, ValueError) as e:
        # counters are best-effort
        logger.debug(f"Could not record usage for {name}: {e}")


def get_usage() -> Dict[str, Dict[str, int]]:
    path = _usage_path()
    try:
        if path.exists():
            return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.debug(f"Could not read usage counters: {e}")
    return {}
