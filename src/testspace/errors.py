"""Exception hierarchy for workspace provisioning and command execution.

Every error raised by the package derives from TestspaceError so callers
can catch the whole family with a single clause. Errors that stem from a
finished child process carry whatever output was captured, because tests
routinely assert on the output of scripts that are expected to fail.

Error kinds:
- ConfigurationError: invalid options or an uncreatable workspace path
- SpawnError: the shell interpreter could not be started
- ExecutionError: the child exited with a non-zero status
- CommandCancelledError: the child was killed after its deadline expired
- StdinClosedError: a write reached a child that no longer reads stdin
- CleanupError: the workspace directory could not be removed
- WorkspaceStateError: an operation was attempted in the wrong state
- WorkspaceProvisionError: creation failed and the workspace was unwound
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from testspace.state import WorkspaceState
    from testspace.workspace import Workspace


class TestspaceError(Exception):
    """Base class for all testspace errors."""

    __test__ = False


class ConfigurationError(TestspaceError):
    """Raised when options are malformed or the workspace path is unusable."""

    pass


class SpawnError(TestspaceError):
    """Raised when the interpreter process could not be started.

    Attributes:
        command: The argument vector that failed to start.
    """

    def __init__(self, command: list[str], message: str):
        self.command = command
        super().__init__(f"Failed to start {command[0]}: {message}")


class ExecutionError(TestspaceError):
    """Raised when a child process exits with a non-zero status.

    Attributes:
        command: The script or argument vector that was executed.
        exit_code: Exit status reported by the child.
        stdout: Captured standard output.
        stderr: Captured standard error.
    """

    def __init__(self, command: str, exit_code: int, stdout: str, stderr: str):
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else ""
        message = f"Command exited with status {exit_code}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class CommandCancelledError(TestspaceError):
    """Raised when a child is killed because its deadline expired.

    Attributes:
        timeout: The deadline in seconds that was exceeded.
        stdout: Output captured before the child was killed.
        stderr: Error output captured before the child was killed.
    """

    def __init__(self, timeout: float, stdout: str = "", stderr: str = ""):
        self.timeout = timeout
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"Command cancelled after {timeout}s deadline")


class StdinClosedError(TestspaceError):
    """Raised when writing to a child whose standard input is gone."""

    pass


class CleanupError(TestspaceError):
    """Raised when a workspace directory cannot be removed.

    Attributes:
        path: The directory that could not be removed.
    """

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(message)


class WorkspaceStateError(TestspaceError):
    """Raised when a workspace operation is invalid in its current state.

    Attributes:
        from_state: The current lifecycle state.
        to_state: The state the operation required.
    """

    def __init__(
        self,
        from_state: "WorkspaceState",
        to_state: "WorkspaceState",
        message: Optional[str] = None,
    ):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            message
            or f"Invalid transition from {from_state.value} to {to_state.value}"
        )


class WorkspaceProvisionError(TestspaceError):
    """Raised when workspace creation fails.

    The workspace has already been removed from disk when this is raised,
    but the half-built object is attached so the output of the failed
    initial script can still be inspected.

    Attributes:
        workspace: The unwound workspace.
    """

    def __init__(self, workspace: "Workspace", message: str):
        self.workspace = workspace
        super().__init__(message)
