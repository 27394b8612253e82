"""Shell command runner.

This package spawns shell children for workspaces:
- Blocking execution with captured stdout/stderr
- Streaming execution with stdin left open for the caller
- Deadline and task cancellation that kill the whole process group
"""

from testspace.runner.command import (
    SHELL_INTERPRETER,
    CommandHandle,
    CommandResult,
    build_environment,
    check_result,
    execute_command,
    shell_args,
    start_command,
)

__all__ = [
    "SHELL_INTERPRETER",
    "CommandHandle",
    "CommandResult",
    "build_environment",
    "check_result",
    "execute_command",
    "shell_args",
    "start_command",
]
