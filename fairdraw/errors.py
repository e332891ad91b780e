"""Exception hierarchy raised by the contest core."""

from __future__ import annotations


class ContestError(Exception):
    """Base class for every error raised by :mod:`fairdraw`."""


class ValidationError(ContestError, ValueError):
    """Bad input (non-positive prize count, duplicate join, ...).

    State is never modified when this is raised.
    """


class NoParticipantsError(ValidationError):
    """A draw was requested against an empty roster."""


class ContestNotFoundError(ValidationError):
    """No contest matches the supplied identifier."""


class PrizeNotFoundError(ValidationError):
    """No prize matches the supplied identifier for the participant."""


class RosterFrozenError(ContestError):
    """The roster was frozen by the commit; joins are no longer accepted."""


class TerminalStateError(ContestError):
    """The contest is finalized; no further transitions are possible."""


class InvalidTransitionError(ContestError):
    """The requested transition is not legal from the current state."""


class CommitVerificationError(ContestError):
    """The revealed value does not hash to the published commit.

    This is fatal for the draw: winners are never derived and the call must
    not be retried automatically.
    """


class InfrastructureError(ContestError):
    """Storage or lock unavailable. Safe to retry with backoff."""


__all__ = [
    "ContestError",
    "ValidationError",
    "NoParticipantsError",
    "ContestNotFoundError",
    "PrizeNotFoundError",
    "RosterFrozenError",
    "TerminalStateError",
    "InvalidTransitionError",
    "CommitVerificationError",
    "InfrastructureError",
]
