"""Short-lived shell workspaces for test fixtures.

This package provisions isolated directories in which tests run shell
pipelines (mostly git) and inspect their output:
- Workspace creation with a fresh git root and an initial script
- A reusable shell template prepended to every script
- Blocking execution with captured stdout/stderr
- Streaming execution with stdin left open for the caller
- Deterministic teardown
"""

from testspace.config import TestspaceSettings, configure_logging, get_settings
from testspace.errors import (
    CleanupError,
    CommandCancelledError,
    ConfigurationError,
    ExecutionError,
    SpawnError,
    StdinClosedError,
    TestspaceError,
    WorkspaceProvisionError,
    WorkspaceStateError,
)
from testspace.options import (
    DEFAULT_ENVIRONMENTS,
    DEFAULT_TEMPLATE,
    CreateOption,
    CreateOptions,
    merge_options,
    with_caller,
    with_environments,
    with_path,
    with_shell,
    with_template,
)
from testspace.runner.command import CommandHandle, CommandResult
from testspace.state import WorkspaceState
from testspace.workspace import Workspace, create, open_workspace

__all__ = [
    "CleanupError",
    "CommandCancelledError",
    "CommandHandle",
    "CommandResult",
    "ConfigurationError",
    "CreateOption",
    "CreateOptions",
    "DEFAULT_ENVIRONMENTS",
    "DEFAULT_TEMPLATE",
    "ExecutionError",
    "SpawnError",
    "StdinClosedError",
    "TestspaceError",
    "TestspaceSettings",
    "Workspace",
    "WorkspaceProvisionError",
    "WorkspaceState",
    "WorkspaceStateError",
    "configure_logging",
    "create",
    "get_settings",
    "merge_options",
    "open_workspace",
    "with_caller",
    "with_environments",
    "with_path",
    "with_shell",
    "with_template",
]

__version__ = "0.1.0"
