"""Workspace lifecycle states.

A workspace moves through a short, linear lifecycle:

    uninitialized → provisioning → ready → destroyed

Provisioning can fail straight into destroyed (the half-built directory
is unwound), and ready is the only state in which scripts may run.
Destroyed is terminal.
"""

from enum import Enum
from typing import Dict, List


class WorkspaceState(str, Enum):
    """Lifecycle states of a workspace.

    Attributes:
        UNINITIALIZED: Options merged, nothing on disk yet.
        PROVISIONING: Directory, git root and initial script being set up.
        READY: Scripts may be executed.
        DESTROYED: Directory removed; no further execution allowed.
    """

    UNINITIALIZED = "uninitialized"
    PROVISIONING = "provisioning"
    READY = "ready"
    DESTROYED = "destroyed"


# READY → READY is not listed: executing does not change the state.
VALID_TRANSITIONS: Dict[WorkspaceState, List[WorkspaceState]] = {
    WorkspaceState.UNINITIALIZED: [
        WorkspaceState.PROVISIONING,
        WorkspaceState.DESTROYED,
    ],
    WorkspaceState.PROVISIONING: [
        WorkspaceState.READY,
        WorkspaceState.DESTROYED,
    ],
    WorkspaceState.READY: [
        WorkspaceState.DESTROYED,
    ],
    # Cleanup is ensure-absence, so destroying twice is allowed.
    WorkspaceState.DESTROYED: [
        WorkspaceState.DESTROYED,
    ],
}


def is_valid_transition(
    from_state: WorkspaceState, to_state: WorkspaceState
) -> bool:
    """Check whether a lifecycle transition is allowed.

    Args:
        from_state: The current state.
        to_state: The requested state.

    Returns:
        True if the transition appears in VALID_TRANSITIONS.
    """
    return to_state in VALID_TRANSITIONS.get(from_state, [])
