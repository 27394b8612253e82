"""Pytest configuration for all tests."""

import pytest


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Keep host TESTSPACE_* overrides out of tests and workspaces in tmp."""
    for name in ("TESTSPACE_GIT_INIT_TIMEOUT", "TESTSPACE_DEFAULT_TIMEOUT",
                 "TESTSPACE_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    base_dir = tmp_path / "workspaces"
    base_dir.mkdir()
    monkeypatch.setenv("TESTSPACE_BASE_DIR", str(base_dir))
    # Commits must not depend on the host's git configuration.
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", "/dev/null")
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    return base_dir
