"""Deterministic winner selection from a verified commit/reveal pair."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from .commit_reveal import CommitRevealProtocol, DEFAULT_PROTOCOL, Digest, sha256_hex
from ..errors import NoParticipantsError, ValidationError


@dataclass(frozen=True)
class WinnerAssignment:
    """One drawn prize slot.

    Attributes
    ----------
    participant_id : str
        External identifier of the winning participant.
    position : int
        1-based prize position (1 is the top prize).
    prize_id : Optional[int]
        Identifier of the persisted :class:`~fairdraw.models.Prize`, filled in
        once the assignment has been stored.
    """

    participant_id: str
    position: int
    prize_id: Optional[int] = None


def select_winners(
    roster: Sequence[str],
    commit_hash: str,
    reveal_value: str,
    prize_count: int,
    protocol: Optional[CommitRevealProtocol] = None,
) -> list[WinnerAssignment]:
    """Draw ``min(prize_count, len(roster))`` distinct winners without replacement.

    Parameters
    ----------
    roster : Sequence[str]
        Frozen participant ids in roster (join) order. Order matters: the
        same ids in a different order produce a different draw.
    commit_hash : str
        Published commit hash.
    reveal_value : str
        Published reveal value. Callers are expected to have verified it
        against ``commit_hash`` first.
    prize_count : int
        Number of prize positions to fill.
    protocol : Optional[CommitRevealProtocol], default: None
        Protocol supplying ``derive_random``; the SHA-256 default is used when
        omitted.

    Returns
    -------
    list[WinnerAssignment]
        Assignments ordered by position.

    Raises
    ------
    ValidationError
        If ``prize_count`` is not positive or the roster contains duplicates.
    NoParticipantsError
        If the roster is empty.
    """

    if isinstance(prize_count, bool) or not isinstance(prize_count, int):
        raise ValidationError("prize_count must be an integer")
    if prize_count <= 0:
        raise ValidationError("prize_count must be a positive integer")
    if not roster:
        raise NoParticipantsError("Cannot draw winners from an empty roster")
    if len(set(roster)) != len(roster):
        raise ValidationError("roster must not contain duplicate participant ids")

    active_protocol = protocol or DEFAULT_PROTOCOL
    remaining = list(roster)
    winners: list[WinnerAssignment] = []
    for position in range(1, min(prize_count, len(roster)) + 1):
        idx = active_protocol.derive_random(
            commit_hash, reveal_value, salt=position, max_value=len(remaining)
        )
        winners.append(
            WinnerAssignment(participant_id=remaining.pop(idx), position=position)
        )
    return winners


def roster_digest(roster: Sequence[str], digest: Optional[Digest] = None) -> str:
    """Return the hash of the canonical roster (ids joined by newlines, in order).

    Published at commit time so observers can confirm the roster used by the
    draw is the one frozen by the commit.
    """
    canonical = "\n".join(roster)
    return (digest or sha256_hex)(canonical.encode("utf-8"))


__all__ = ["WinnerAssignment", "roster_digest", "select_winners"]
