"""Creation options for workspaces.

A workspace is configured through small option callables that are
applied, in order, to a CreateOptions value:

    workspace = await create(
        with_environments("K=v"),
        with_template("helper(){ echo hi; }"),
        with_shell("helper"),
    )

Path and initial shell follow last-write-wins. Environment entries and
template snippets accumulate.
"""

import os
import tempfile
import uuid
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Union

from pydantic import BaseModel, Field

from testspace.config import get_settings
from testspace.errors import ConfigurationError

# Git test-suite style fake clock. Each call advances the committer and
# author dates by 60 seconds so commit ids are reproducible.
DEFAULT_TEMPLATE = """\
test_tick () {
	if test -z "${test_tick+set}"
	then
		test_tick=1112911993
	else
		test_tick=$(($test_tick + 60))
	fi
	GIT_COMMITTER_DATE="$test_tick -0700"
	GIT_AUTHOR_DATE="$test_tick -0700"
	export GIT_COMMITTER_DATE GIT_AUTHOR_DATE
}"""

DEFAULT_ENVIRONMENTS: List[str] = [
    "GIT_AUTHOR_NAME=A U Thor",
    "GIT_AUTHOR_EMAIL=author@example.com",
    "GIT_COMMITTER_NAME=C O Mitter",
    "GIT_COMMITTER_EMAIL=committer@example.com",
]

WORKSPACE_NAME_PREFIX = "testspace-"


class CreateOptions(BaseModel):
    """Merged configuration for a single workspace.

    Attributes:
        workspace_path: Directory the workspace lives in.
        environments: Ordered KEY=VALUE overlay on the host environment.
        template: Shell snippet prepended to every script.
        shell: Script run once during provisioning.
    """

    workspace_path: Path
    environments: List[str] = Field(default_factory=list)
    template: str = ""
    shell: str = ""


CreateOption = Callable[[CreateOptions], None]


def generate_workspace_path(base_dir: Optional[str] = None) -> Path:
    """Generate a fresh, not yet created workspace directory name.

    Args:
        base_dir: Parent directory; the configured base_dir or the system
            temp directory when omitted.

    Returns:
        Absolute path of a directory that does not exist yet.
    """
    parent = base_dir or get_settings().base_dir or tempfile.gettempdir()
    return Path(parent).resolve() / f"{WORKSPACE_NAME_PREFIX}{uuid.uuid4().hex}"


def validate_environment_entry(entry: str) -> str:
    """Check that an environment entry has the KEY=VALUE shape.

    Raises:
        ConfigurationError: If the entry has no '=' or an empty key.
    """
    key, separator, _ = entry.partition("=")
    if not separator or not key:
        raise ConfigurationError(
            f"Environment entry must look like KEY=VALUE, got {entry!r}"
        )
    return entry


def with_path(path: Union[str, os.PathLike]) -> CreateOption:
    """Use a specific directory instead of a generated one."""

    def apply(options: CreateOptions) -> None:
        if not str(path):
            raise ConfigurationError("Workspace path cannot be empty")
        options.workspace_path = Path(path).resolve()

    return apply


def with_environments(*entries: str) -> CreateOption:
    """Append KEY=VALUE entries to the environment overlay."""
    validated = [validate_environment_entry(entry) for entry in entries]

    def apply(options: CreateOptions) -> None:
        options.environments.extend(validated)

    return apply


def with_template(template: str) -> CreateOption:
    """Append a snippet of helper definitions to the template."""

    def apply(options: CreateOptions) -> None:
        if options.template:
            options.template = options.template + "\n" + template
        else:
            options.template = template

    return apply


def with_shell(shell: str) -> CreateOption:
    """Set the script run once while the workspace is provisioned."""

    def apply(options: CreateOptions) -> None:
        options.shell = shell

    return apply


def with_caller(caller_file: Union[str, os.PathLike]) -> CreateOption:
    """Expose the creating test file to scripts as CALLER and CALLER_DIR.

    Scripts can then reach fixture files that live next to the test,
    e.g. ``cp "$CALLER_DIR/fixtures/repo.bundle" .``. Pass ``__file__``
    or pytest's ``request.path``.
    """
    caller_path = Path(caller_file).resolve()
    return with_environments(
        f"CALLER={caller_path}",
        f"CALLER_DIR={caller_path.parent}",
    )


def merge_options(options: Iterable[CreateOption]) -> CreateOptions:
    """Apply option callables in order on top of the defaults.

    Args:
        options: Option callables produced by the with_* helpers.

    Returns:
        The merged CreateOptions.
    """
    merged = CreateOptions(
        workspace_path=generate_workspace_path(),
        environments=list(DEFAULT_ENVIRONMENTS),
        template=DEFAULT_TEMPLATE,
    )
    for option in options:
        option(merged)
    return merged
