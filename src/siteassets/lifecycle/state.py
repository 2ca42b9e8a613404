"""Asset lifecycle state machine.

Tracks one stored object through its lifecycle and enforces that every
transition is one-way.  There is no transition out of ``DELETED``.
"""

from __future__ import annotations

from siteassets.models import AssetState


class AssetStateMachine:
    """Finite state machine for a single stored object.

    Valid transitions::

        INGESTED_TEMP  -> CLAIMED | EXPIRED
        CLAIMED        -> INGESTED_SITE | FAILED
        EXPIRED        -> DELETED | FAILED
        INGESTED_SITE  -> DEREFERENCED | DUPLICATED | SITE_DELETED
        DUPLICATED     -> INGESTED_SITE | FAILED   (the new copy)
        DEREFERENCED   -> ORPHAN_SWEPT
        ORPHAN_SWEPT   -> DELETED | FAILED
        SITE_DELETED   -> DELETED | FAILED
        DELETED        -> (terminal)
        FAILED         -> (terminal)

    A copy is tracked by its own machine starting at ``DUPLICATED``; the
    original keeps its state.  ``FAILED`` means the step was abandoned and
    the object was left where it was.

    Parameters
    ----------
    path:
        The object's storage path, for diagnostics.
    state:
        Initial state.
    """

    VALID_TRANSITIONS: dict[AssetState, set[AssetState]] = {
        AssetState.INGESTED_TEMP: {AssetState.CLAIMED, AssetState.EXPIRED},
        AssetState.CLAIMED: {AssetState.INGESTED_SITE, AssetState.FAILED},
        AssetState.EXPIRED: {AssetState.DELETED, AssetState.FAILED},
        AssetState.INGESTED_SITE: {
            AssetState.DEREFERENCED,
            AssetState.DUPLICATED,
            AssetState.SITE_DELETED,
        },
        AssetState.DUPLICATED: {AssetState.INGESTED_SITE, AssetState.FAILED},
        AssetState.DEREFERENCED: {AssetState.ORPHAN_SWEPT},
        AssetState.ORPHAN_SWEPT: {AssetState.DELETED, AssetState.FAILED},
        AssetState.SITE_DELETED: {AssetState.DELETED, AssetState.FAILED},
        AssetState.DELETED: set(),
        AssetState.FAILED: set(),
    }

    def __init__(self, path: str, state: AssetState = AssetState.INGESTED_TEMP) -> None:
        self.path: str = path
        self.state: AssetState = state

    @property
    def is_terminal(self) -> bool:
        return not self.VALID_TRANSITIONS.get(self.state)

    def transition(self, new_state: AssetState) -> None:
        """Move to *new_state*.

        Raises
        ------
        ValueError
            If the transition from the current state is not allowed.
        """
        allowed = self.VALID_TRANSITIONS.get(self.state, set())
        if new_state not in allowed:
            raise ValueError(
                f"Invalid state transition: {self.state.value} -> {new_state.value} "
                f"for {self.path}. "
                f"Allowed transitions from {self.state.value}: "
                f"{{{', '.join(sorted(s.value for s in allowed))}}}"
            )
        self.state = new_state

    def walk(self, *states: AssetState) -> AssetState:
        """Apply several transitions in order and return the final state."""
        for state in states:
            self.transition(state)
        return self.state
