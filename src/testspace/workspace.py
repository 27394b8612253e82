"""Ephemeral workspaces for shell-driven test fixtures.

A Workspace owns one directory, one environment overlay and one shell
template. Every script executed in it is composed as
``template + "\\n" + script`` and run by /bin/sh with the directory as
its working directory.

Lifecycle:
- create() makes the directory (reusing it if present), runs
  ``git init`` so stray writes to a host checkout show up as changes in
  a nested repository, then runs the initial script. Any failure removes
  the directory again before WorkspaceProvisionError is raised.
- execute() / execute_with_stdin() run further scripts.
- cleanup() removes the directory; removing an absent directory is
  success.

A Workspace is single-owner. The last_* accessors hold the most recent
call only and are not safe to read while another call is in flight.
"""

import asyncio
import logging
import posixpath
import shutil
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Optional

from testspace.config import get_settings
from testspace.errors import (
    CleanupError,
    CommandCancelledError,
    ConfigurationError,
    TestspaceError,
    WorkspaceProvisionError,
    WorkspaceStateError,
)
from testspace.options import CreateOption, merge_options
from testspace.runner.command import (
    CommandHandle,
    CommandResult,
    check_result,
    execute_command,
    shell_args,
    start_command,
)
from testspace.state import WorkspaceState, is_valid_transition

logger = logging.getLogger(__name__)

WORKSPACE_DIR_PERMISSIONS = 0o755


class Workspace:
    """An isolated directory plus the state of its last execution.

    Attributes:
        path: Absolute workspace root.
        environment: KEY=VALUE overlay passed to every child.
        template: Shell snippet prepended to every script.
        shell: The initial script run during provisioning.
    """

    def __init__(
        self,
        path: Path,
        environment: Optional[List[str]] = None,
        template: str = "",
        shell: str = "",
        default_timeout: Optional[float] = None,
    ):
        self._path = path
        self._environment = list(environment or [])
        self._template = template
        self._shell = shell
        self._default_timeout = default_timeout
        self._state = WorkspaceState.UNINITIALIZED
        self._last_command = ""
        self._last_stdout = ""
        self._last_stderr = ""
        self._last_result: Optional[CommandResult] = None

    def __repr__(self) -> str:
        return f"Workspace(path={str(self._path)!r}, state={self._state.value})"

    @property
    def path(self) -> Path:
        return self._path

    @property
    def environment(self) -> List[str]:
        return list(self._environment)

    @property
    def template(self) -> str:
        return self._template

    @property
    def shell(self) -> str:
        return self._shell

    @property
    def state(self) -> WorkspaceState:
        return self._state

    @property
    def last_command(self) -> str:
        """The composed script of the most recent execution."""
        return self._last_command

    @property
    def last_stdout(self) -> str:
        return self._last_stdout

    @property
    def last_stderr(self) -> str:
        return self._last_stderr

    @property
    def last_result(self) -> Optional[CommandResult]:
        """Result of the most recent blocking execution, if it finished."""
        return self._last_result

    def transition(self, to_state: WorkspaceState) -> None:
        """Move to another lifecycle state.

        Raises:
            WorkspaceStateError: If the transition is not allowed.
        """
        if not is_valid_transition(self._state, to_state):
            raise WorkspaceStateError(self._state, to_state)
        logger.debug(
            "Workspace state transition",
            extra={
                "workspace": str(self._path),
                "from_state": self._state.value,
                "to_state": to_state.value,
            },
        )
        self._state = to_state

    def compose_script(self, script: str) -> str:
        """Prepend the template to a script."""
        return self._template + "\n" + script

    def get_path(self, sub_dir: str = "") -> Path:
        """Join a relative subdirectory onto the workspace root.

        Arguments that start with a parent-directory reference collapse
        to the root, and a leading slash is dropped so absolute arguments
        land under the root. This is a clamp against accidental escapes,
        not a sanitiser: symlinks inside the workspace are not resolved.

        Args:
            sub_dir: Relative path inside the workspace.

        Returns:
            The joined path.
        """
        normalized = posixpath.normpath(sub_dir or ".").lstrip("/")
        if normalized == ".." or normalized.startswith("../"):
            normalized = ""
        normalized = posixpath.normpath(normalized or ".")
        if normalized == ".":
            return self._path
        return self._path / normalized

    def _require_executable(self) -> None:
        if self._state not in (WorkspaceState.PROVISIONING, WorkspaceState.READY):
            raise WorkspaceStateError(
                self._state,
                WorkspaceState.READY,
                f"Cannot execute in workspace {self._path} "
                f"while it is {self._state.value}",
            )

    async def execute(
        self,
        script: str,
        *,
        timeout: Optional[float] = None,
        check: bool = True,
    ) -> CommandResult:
        """Run a script to completion inside the workspace.

        The last_* accessors are updated before any error is raised, so
        the output of a failing script can be inspected either from the
        exception or from the workspace.

        Args:
            script: Shell script; the template is prepended.
            timeout: Deadline in seconds; defaults to the configured
                default_timeout.
            check: Raise ExecutionError on a non-zero exit status. Pass
                False for scripts that are expected to fail and inspect
                ``result.success`` instead.

        Returns:
            CommandResult of the composed script.

        Raises:
            WorkspaceStateError: If the workspace was destroyed.
            SpawnError: If the shell could not be started.
            ExecutionError: If check is set and the script failed.
            CommandCancelledError: If the deadline expired.
        """
        self._require_executable()
        composed = self.compose_script(script)
        self._last_command = composed
        self._last_result = None
        effective_timeout = timeout if timeout is not None else self._default_timeout

        try:
            result = await execute_command(
                self._path,
                self._environment,
                *shell_args(composed),
                timeout=effective_timeout,
            )
        except CommandCancelledError as exc:
            self._last_stdout = exc.stdout
            self._last_stderr = exc.stderr
            raise

        self._last_result = result
        self._last_stdout = result.stdout
        self._last_stderr = result.stderr
        if check:
            check_result(result)
        return result

    async def execute_with_stdin(
        self, script: str, *, timeout: Optional[float] = None
    ) -> CommandHandle:
        """Start a script with its stdin open and return immediately.

        The caller must await ``handle.wait()`` (or use the handle in an
        ``async with`` block) to reap the child. Output of a streaming
        call is available on the handle's result, not on last_stdout.

        Args:
            script: Shell script; the template is prepended.
            timeout: Deadline in seconds after which the child is killed;
                defaults to the configured default_timeout.

        Returns:
            A live CommandHandle.

        Raises:
            WorkspaceStateError: If the workspace was destroyed.
            SpawnError: If the shell could not be started.
        """
        self._require_executable()
        composed = self.compose_script(script)
        self._last_command = composed
        return await start_command(
            self._path,
            self._environment,
            *shell_args(composed),
            enable_stdin=True,
            timeout=timeout if timeout is not None else self._default_timeout,
        )

    def cleanup(self) -> None:
        """Remove the workspace directory and everything inside it.

        Removing a directory that is already gone counts as success, so
        calling cleanup twice is safe.

        Raises:
            CleanupError: If the path is not absolute (which would target
                the current directory) or removal fails.
        """
        if not str(self._path) or not self._path.is_absolute():
            raise CleanupError(
                str(self._path),
                "The workspace path is invalid, please check and delete it manually",
            )

        if self._path.exists() or self._path.is_symlink():
            try:
                shutil.rmtree(self._path)
            except FileNotFoundError:
                pass
            except OSError as exc:
                raise CleanupError(
                    str(self._path), f"Failed to remove workspace {self._path}: {exc}"
                ) from exc
            logger.info("Removed workspace", extra={"workspace": str(self._path)})

        self.transition(WorkspaceState.DESTROYED)


def _create_workspace_directory(workspace_path: Path) -> None:
    """Create the workspace directory and any missing parents.

    Raises:
        ConfigurationError: If the directory cannot be created.
    """
    try:
        workspace_path.mkdir(
            mode=WORKSPACE_DIR_PERMISSIONS, parents=True, exist_ok=True
        )
    except OSError as exc:
        raise ConfigurationError(
            f"Failed to create workspace at {workspace_path}: {exc}"
        ) from exc


async def _initialize_git_root(workspace_path: Path, timeout: float) -> None:
    """Run ``git init`` in the workspace.

    Raises:
        SpawnError: If git is not installed.
        ExecutionError: If git init fails.
        CommandCancelledError: If git init exceeds the timeout.
    """
    result = await execute_command(
        workspace_path, None, "git", "init", "--quiet", ".", timeout=timeout
    )
    check_result(result)


def _unwind(workspace: Workspace) -> None:
    """Remove a half-provisioned workspace without masking the original error."""
    try:
        workspace.cleanup()
    except CleanupError:
        logger.exception(
            "Failed to remove workspace after provisioning error",
            extra={"workspace": str(workspace.path)},
        )


async def create(*options: CreateOption) -> Workspace:
    """Provision a new workspace.

    Args:
        *options: Option callables such as with_path() or with_shell().

    Returns:
        A ready Workspace. The output of the initial script is available
        through last_stdout / last_stderr.

    Raises:
        ConfigurationError: If an option is malformed.
        WorkspaceProvisionError: If any provisioning step failed; the
            directory has been removed and the original error is chained.
    """
    merged = merge_options(options)
    settings = get_settings()
    workspace = Workspace(
        path=merged.workspace_path,
        environment=merged.environments,
        template=merged.template,
        shell=merged.shell,
        default_timeout=settings.default_timeout,
    )
    workspace.transition(WorkspaceState.PROVISIONING)

    try:
        _create_workspace_directory(workspace.path)
        await _initialize_git_root(workspace.path, settings.git_init_timeout)
        if merged.shell:
            await workspace.execute(merged.shell)
    except TestspaceError as exc:
        logger.error(
            "Workspace provisioning failed: %s",
            exc,
            extra={"workspace": str(workspace.path)},
        )
        _unwind(workspace)
        raise WorkspaceProvisionError(
            workspace, f"Failed to provision workspace {workspace.path}: {exc}"
        ) from exc
    except asyncio.CancelledError:
        _unwind(workspace)
        raise
    except Exception:
        logger.exception(
            "Unexpected error while provisioning workspace",
            extra={"workspace": str(workspace.path)},
        )
        _unwind(workspace)
        raise

    workspace.transition(WorkspaceState.READY)
    logger.info("Created workspace", extra={"workspace": str(workspace.path)})
    return workspace


@asynccontextmanager
async def open_workspace(*options: CreateOption) -> AsyncIterator[Workspace]:
    """Create a workspace and remove it when the block exits.

    Example:
        >>> async with open_workspace(with_shell("git init --bare test.git")) as ws:
        ...     await ws.execute("git -C test.git rev-parse --is-bare-repository")
    """
    workspace = await create(*options)
    try:
        yield workspace
    finally:
        workspace.cleanup()
