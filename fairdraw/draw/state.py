"""Contest lifecycle as a pure transition function."""

from __future__ import annotations

import enum

from ..errors import InvalidTransitionError, TerminalStateError


class ContestState(str, enum.Enum):
    OPEN = "open"
    COMMITTED = "committed"
    REVEALED = "revealed"
    FINALIZED = "finalized"


class ContestTransition(str, enum.Enum):
    CLOSE = "close"
    REVEAL = "reveal"
    FINALIZE = "finalize"


_TRANSITIONS: dict[tuple[ContestState, ContestTransition], ContestState] = {
    (ContestState.OPEN, ContestTransition.CLOSE): ContestState.COMMITTED,
    (ContestState.COMMITTED, ContestTransition.REVEAL): ContestState.REVEALED,
    (ContestState.REVEALED, ContestTransition.FINALIZE): ContestState.FINALIZED,
}


def transition(state: ContestState, event: ContestTransition) -> ContestState:
    """Return the state reached by applying ``event`` to ``state``.

    Raises
    ------
    TerminalStateError
        If ``state`` is :attr:`ContestState.FINALIZED`.
    InvalidTransitionError
        If ``event`` is not legal from ``state``.
    """
    state = ContestState(state)
    event = ContestTransition(event)
    if state is ContestState.FINALIZED:
        raise TerminalStateError("Contest is finalized; no further transitions allowed")
    try:
        return _TRANSITIONS[(state, event)]
    except KeyError as exc:
        raise InvalidTransitionError(
            f"Cannot apply '{event.value}' to a contest in state '{state.value}'"
        ) from exc


def accepts_joins(state: ContestState) -> bool:
    return ContestState(state) is ContestState.OPEN


__all__ = ["ContestTransition", "ContestState", "accepts_joins", "transition"]
