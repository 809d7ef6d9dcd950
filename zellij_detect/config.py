from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .util import default_tmp_dir, state_dir


logger = logging.getLogger("zellij_detect.config")

DEFAULT_MARKER = "<<<LLM_COMPLETE>>>"


@dataclass
class DetectionConfig:
    tmp_dir: Path = field(default_factory=default_tmp_dir)
    # Watch deadlines (ms)
    watch_timeout_min_ms: int = 100
    watch_timeout_max_ms: int = 300_000
    default_watch_timeout_ms: int = 30_000
    # Piped command deadlines (ms)
    pipe_timeout_min_ms: int = 1_000
    pipe_timeout_max_ms: int = 600_000
    default_pipe_timeout_ms: int = 30_000
    # Wrapper supervisory deadlines (ms)
    wrapper_timeout_min_ms: int = 1_000
    wrapper_timeout_max_ms: int = 3_600_000
    default_wrapper_timeout_ms: int = 60_000
    # Poll interval hint bounds (ms)
    poll_interval_min_ms: int = 100
    poll_interval_max_ms: int = 10_000
    max_pattern_length: int = 256
    max_buffer_bytes: int = 1024 * 1024
    file_poll_interval: float = 0.1
    retention_seconds: float = 86_400.0
    kill_grace_seconds: float = 5.0
    default_marker: str = DEFAULT_MARKER

    def __post_init__(self):
        self.tmp_dir = Path(self.tmp_dir)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DetectionConfig":
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in (data or {}).items() if k in known}
        unknown = sorted(set(data or {}) - known)
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")
        return cls(**kwargs)


def load_config(path: Optional[Path] = None) -> DetectionConfig:
    """Load settings from ``config.yaml`` in the state directory.

    A missing file yields the defaults. ``ZELLIJ_DETECT_TMP_DIR`` overrides
    ``tmp_dir`` from either source.
    """
    cfg_path = Path(path) if path else state_dir() / "config.yaml"
    data: Dict[str, Any] = {}
    if cfg_path.exists():
        data = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{cfg_path} must contain a mapping")
        logger.debug(f"Loaded config from {cfg_path}")
    env_tmp = os.environ.get("ZELLIJ_DETECT_TMP_DIR")
    if env_tmp:
        data["tmp_dir"] = env_tmp
    return DetectionConfig.from_dict(data)
