"""Unit tests for settings, option helpers and logging configuration."""

import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from testspace.config import TestspaceSettings, configure_logging, get_settings
from testspace.errors import ConfigurationError
from testspace.options import (
    DEFAULT_ENVIRONMENTS,
    DEFAULT_TEMPLATE,
    WORKSPACE_NAME_PREFIX,
    generate_workspace_path,
    merge_options,
    with_caller,
    with_environments,
    with_path,
)


class TestSettings:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("TESTSPACE_BASE_DIR")
        settings = get_settings()
        assert settings.base_dir is None
        assert settings.git_init_timeout == 3.0
        assert settings.default_timeout is None
        assert settings.log_level == "WARNING"

    def test_reads_prefixed_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("TESTSPACE_BASE_DIR", str(tmp_path))
        monkeypatch.setenv("TESTSPACE_DEFAULT_TIMEOUT", "12.5")
        monkeypatch.setenv("TESTSPACE_LOG_LEVEL", "debug")
        settings = get_settings()
        assert settings.base_dir == str(tmp_path)
        assert settings.default_timeout == 12.5
        assert settings.log_level == "DEBUG"

    def test_relative_base_dir_is_rejected(self):
        with pytest.raises(ValidationError, match="absolute"):
            TestspaceSettings(base_dir="relative/dir")

    @pytest.mark.parametrize("field", ["git_init_timeout", "default_timeout"])
    def test_non_positive_timeouts_are_rejected(self, field):
        with pytest.raises(ValidationError, match="positive"):
            TestspaceSettings(**{field: 0})

    def test_unknown_log_level_is_rejected(self):
        with pytest.raises(ValidationError, match="unknown log level"):
            TestspaceSettings(log_level="LOUD")


class TestConfigureLogging:

    def test_sets_package_logger_level(self):
        package_logger = logging.getLogger("testspace")
        original = package_logger.level
        try:
            configure_logging("debug")
            assert package_logger.level == logging.DEBUG
        finally:
            package_logger.setLevel(original)

    def test_defaults_to_configured_level(self, monkeypatch):
        monkeypatch.setenv("TESTSPACE_LOG_LEVEL", "ERROR")
        package_logger = logging.getLogger("testspace")
        original = package_logger.level
        try:
            configure_logging()
            assert package_logger.level == logging.ERROR
        finally:
            package_logger.setLevel(original)


class TestOptions:

    def test_defaults_carry_git_identity_and_test_tick(self):
        merged = merge_options([])
        assert merged.environments == DEFAULT_ENVIRONMENTS
        assert merged.template == DEFAULT_TEMPLATE
        assert "test_tick ()" in merged.template
        assert merged.shell == ""

    def test_defaults_are_not_shared_between_merges(self):
        first = merge_options([with_environments("A=1")])
        second = merge_options([])
        assert "A=1" in first.environments
        assert "A=1" not in second.environments

    def test_generated_paths_are_unique(self, isolated_settings):
        first = generate_workspace_path()
        second = generate_workspace_path()
        assert first != second
        assert first.name.startswith(WORKSPACE_NAME_PREFIX)
        assert not first.exists()
        assert first.parent == isolated_settings.resolve()

    def test_explicit_base_dir_wins(self, tmp_path):
        assert generate_workspace_path(str(tmp_path)).parent == tmp_path.resolve()

    @pytest.mark.parametrize("entry", ["NOVALUE", "=value", ""])
    def test_malformed_environment_entries(self, entry):
        with pytest.raises(ConfigurationError):
            with_environments(entry)

    def test_empty_path_is_rejected(self):
        with pytest.raises(ConfigurationError):
            merge_options([with_path("")])

    def test_caller_entries(self, tmp_path):
        caller = tmp_path / "tests" / "test_repo.py"
        merged = merge_options([with_caller(caller)])
        assert merged.environments[-2:] == [
            f"CALLER={caller.resolve()}",
            f"CALLER_DIR={caller.resolve().parent}",
        ]

    def test_relative_path_is_made_absolute(self):
        merged = merge_options([with_path("relative-workspace")])
        assert merged.workspace_path == (Path.cwd() / "relative-workspace").resolve()
