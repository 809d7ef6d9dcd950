import pytest


@pytest.fixture(autouse=True)
def isolated_dirs(tmp_path, monkeypatch):
    """Keep usage counters and generated artifacts inside the test's tmp_path."""
    state = tmp_path / "state"
    tmp = tmp_path / "tmp"
    tmp.mkdir()
    monkeypatch.setenv("ZELLIJ_DETECT_STATE_DIR", str(state))
    monkeypatch.setenv("ZELLIJ_DETECT_TMP_DIR", str(tmp))
    return tmp
