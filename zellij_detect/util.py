import os
import tempfile
from pathlib import Path


STATE_DIR_NAME = ".zellij-detect"


def project_root_from_cwd() -> Path:
    return Path(os.getcwd())


def state_dir() -> Path:
    p = os.environ.get("ZELLIJ_DETECT_STATE_DIR")
    if p:
        return Path(p)
    return project_root_from_cwd() / STATE_DIR_NAME


def ensure_state_dir() -> Path:
    state = state_dir()
    state.mkdir(parents=True, exist_ok=True)
    return state


def default_tmp_dir() -> Path:
    return Path(os.environ.get("ZELLIJ_DETECT_TMP_DIR") or tempfile.gettempdir())
