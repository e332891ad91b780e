"""Session-level contest operations.

Every function validates its preconditions before touching any row, so a
raised error never leaves a transition half applied. Callers own the
transaction (see :class:`fairdraw.service.ContestService`).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .audit import (
    AuditEntries,
    AuditLog,
    COMMIT_PUBLISHED,
    CONTEST_CREATED,
    PARTICIPANT_JOINED,
    REVEAL_PUBLISHED,
    ROSTER_FROZEN,
    WINNERS_FINALIZED,
)
from .db.utils import dt_iso, utcnow
from .draw.commit_reveal import CommitRecord, CommitRevealProtocol, DEFAULT_PROTOCOL, RevealRecord
from .draw.scoring import ScoringFactors, validate_factors
from .draw.selection import WinnerAssignment, roster_digest, select_winners
from .draw.state import ContestState, ContestTransition, accepts_joins, transition
from .errors import (
    CommitVerificationError,
    ContestNotFoundError,
    InvalidTransitionError,
    NoParticipantsError,
    RosterFrozenError,
    ValidationError,
)
from .models import Contest, Participant, Prize
from .models.prize import build_prize_tiers

logger = logging.getLogger(__name__)

MAX_PARTICIPANT_KEY_LENGTH = 128


def _now(now: Optional[datetime]) -> datetime:
    if now is None:
        return utcnow()
    if now.tzinfo is None:
        raise ValidationError("now must be timezone-aware")
    return now.astimezone(timezone.utc)


def get_contest(session: Session, contest_id: int, *, for_update: bool = False) -> Contest:
    """Load a contest by id, optionally locking its row.

    Raises
    ------
    ContestNotFoundError
        If no contest has ``contest_id``.
    """

    stmt = select(Contest).where(Contest.id == contest_id)
    if for_update:
        stmt = stmt.with_for_update()
    contest = session.scalar(stmt)
    if contest is None:
        raise ContestNotFoundError(f"Contest {contest_id} does not exist")
    return contest


def create_contest(
    session: Session,
    slug: str,
    prize_count: int,
    *,
    end_date: Optional[datetime] = None,
    title: Optional[str] = None,
    prize_table: Optional[Sequence[Mapping[str, Any]]] = None,
    now: Optional[datetime] = None,
) -> Contest:
    """Create an OPEN contest with one prize tier per position.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session.
    slug : str
        Unique public identifier.
    prize_count : int
        Number of ranked prizes; must be positive.
    end_date : Optional[datetime], default: None
        Earliest close time. Defaults to the end of the current UTC month.
    title : Optional[str], default: None
        Display title.
    prize_table : Optional[Sequence[Mapping[str, Any]]], default: None
        Reward payloads by position (index 0 is position 1). Defaults to
        :data:`~fairdraw.models.prize.DEFAULT_PRIZE_TABLE`.
    now : Optional[datetime], default: None
        Creation time.

    Returns
    -------
    Contest
        The persisted contest.

    Raises
    ------
    ValidationError
        If the slug is empty or taken, or ``prize_count`` is not positive.
    """

    now = _now(now)
    slug = (slug or "").strip()
    if not slug:
        raise ValidationError("slug must not be empty")
    if isinstance(prize_count, bool) or not isinstance(prize_count, int) or prize_count <= 0:
        raise ValidationError("prize_count must be a positive integer")
    if end_date is not None and end_date.tzinfo is None:
        raise ValidationError("end_date must be timezone-aware")
    if Contest.get_by_slug(session, slug) is not None:
        raise ValidationError(f"Contest '{slug}' already exists")

    contest = Contest(
        slug=slug,
        title=title,
        prize_count=prize_count,
        end_date=end_date,
        starts_at=now,
    )
    contest.prize_tiers = build_prize_tiers(prize_count, prize_table)
    session.add(contest)
    session.flush()

    AuditLog(session, contest.id).append(
        CONTEST_CREATED,
        {
            "slug": contest.slug,
            "prize_count": contest.prize_count,
            "end_date": dt_iso(contest.end_date),
        },
        occurred_at=now,
    )
    logger.info("Contest %s created (%s prizes)", contest.slug, prize_count)
    return contest


def join_roster(
    session: Session,
    contest: Contest,
    participant_key: str,
    *,
    metrics_snapshot: Optional[Mapping[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Participant:
    """Add ``participant_key`` to the roster of an OPEN contest.

    Raises
    ------
    RosterFrozenError
        If the contest is no longer OPEN.
    ValidationError
        If the key is malformed, already joined, the contest has ended,
        ``now`` precedes the last audit entry or the metrics snapshot is
        invalid.
    """

    now = _now(now)
    if not accepts_joins(contest.state):
        raise RosterFrozenError(
            f"Contest {contest.slug} roster is frozen; joins are no longer accepted"
        )
    if contest.has_ended_at(now):
        raise ValidationError(f"Contest {contest.slug} has ended")
    audit = AuditLog(session, contest.id)
    audit.require_not_before(now)

    if not isinstance(participant_key, str):
        raise ValidationError("participant_key must be a string")
    key = participant_key.strip()
    if not key or len(key) > MAX_PARTICIPANT_KEY_LENGTH or any(c.isspace() for c in key):
        raise ValidationError(
            "participant_key must be 1-128 characters without whitespace"
        )

    existing = session.scalar(
        select(Participant.id).where(
            Participant.contest_id == contest.id,
            Participant.participant_key == key,
        )
    )
    if existing is not None:
        raise ValidationError(f"Participant '{key}' already joined contest {contest.slug}")

    snapshot = None
    if metrics_snapshot is not None:
        try:
            factors = ScoringFactors.from_snapshot(metrics_snapshot)
            validate_factors(factors)
            snapshot = factors.to_snapshot()
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid metrics snapshot: {exc}") from exc

    next_index = session.scalar(
        select(func.count(Participant.id)).where(Participant.contest_id == contest.id)
    )
    participant = Participant(
        contest_id=contest.id,
        participant_key=key,
        roster_index=int(next_index or 0),
        joined_at=now,
        metrics_snapshot=snapshot,
    )
    session.add(participant)
    session.flush()

    audit.append(
        PARTICIPANT_JOINED,
        {"participant_id": key, "roster_index": participant.roster_index},
        occurred_at=now,
    )
    return participant


def close_and_commit(
    session: Session,
    contest: Contest,
    secret_seed: str,
    *,
    now: Optional[datetime] = None,
    protocol: Optional[CommitRevealProtocol] = None,
) -> CommitRecord:
    """Close the contest, publish the commit hash and freeze the roster.

    Only the hash of ``secret_seed`` is stored or logged; the operator keeps
    the seed until :func:`reveal_and_finalize`.

    Raises
    ------
    TerminalStateError
        If the contest is already finalized.
    InvalidTransitionError
        If the contest is not OPEN or its end date has not been reached.
    NoParticipantsError
        If nobody joined.
    ValidationError
        If ``now`` precedes the last event in the audit log.
    """

    now = _now(now)
    protocol = protocol or DEFAULT_PROTOCOL
    next_state = transition(contest.state, ContestTransition.CLOSE)
    if not contest.has_ended_at(now):
        raise InvalidTransitionError(
            f"Contest {contest.slug} cannot be closed before {dt_iso(contest.end_date)}"
        )
    audit = AuditLog(session, contest.id)
    audit.require_not_before(now)

    roster = contest.roster_ids(session)
    if not roster:
        raise NoParticipantsError(f"Contest {contest.slug} has no participants")

    commit_hash = protocol.begin_commit(secret_seed)
    digest = roster_digest(roster, protocol.digest)

    contest.commit_hash = commit_hash
    contest.committed_at = now
    contest.roster_digest = digest
    contest.state = next_state

    audit.append(COMMIT_PUBLISHED, {"commit_hash": commit_hash}, occurred_at=now)
    audit.append(
        ROSTER_FROZEN,
        {"participant_count": len(roster), "roster_digest": digest},
        occurred_at=now,
    )
    session.flush()
    logger.info(
        "Contest %s committed with %s participants", contest.slug, len(roster)
    )
    return CommitRecord(commit_hash=commit_hash, created_at=now)


def reveal_contest(
    session: Session,
    contest: Contest,
    secret_seed: str,
    *,
    now: Optional[datetime] = None,
    protocol: Optional[CommitRevealProtocol] = None,
) -> RevealRecord:
    """Publish the reveal value after verifying it against the commit.

    Raises
    ------
    TerminalStateError
        If the contest is already finalized.
    InvalidTransitionError
        If the contest is not COMMITTED with a frozen roster.
    CommitVerificationError
        If the seed does not hash to the published commit. Fatal.
    ValidationError
        If ``now`` precedes the commit or any later audit entry.
    """

    now = _now(now)
    protocol = protocol or DEFAULT_PROTOCOL
    next_state = transition(contest.state, ContestTransition.REVEAL)
    if not contest.is_roster_frozen:
        raise InvalidTransitionError(f"Contest {contest.slug} roster is not frozen")
    audit = AuditLog(session, contest.id)
    audit.require_not_before(now)

    reveal_value = protocol.reveal(secret_seed)
    protocol.require_valid(contest.commit_hash, reveal_value)

    contest.reveal_value = reveal_value
    contest.revealed_at = now
    contest.state = next_state
    audit.append(
        REVEAL_PUBLISHED, {"reveal_value": reveal_value}, occurred_at=now
    )
    session.flush()
    return RevealRecord(reveal_value=reveal_value, revealed_at=now)


def finalize_contest(
    session: Session,
    contest: Contest,
    *,
    now: Optional[datetime] = None,
    protocol: Optional[CommitRevealProtocol] = None,
) -> list[WinnerAssignment]:
    """Derive winners for a REVEALED contest and create their prizes.

    The commit is verified again and the roster checked against the digest
    published at commit time before anything is written.

    Raises
    ------
    TerminalStateError
        If the contest is already finalized.
    InvalidTransitionError
        If the contest has not been revealed.
    CommitVerificationError
        If the stored reveal or roster no longer match what was committed.
    ValidationError
        If ``now`` precedes the reveal or any later audit entry.
    """

    now = _now(now)
    protocol = protocol or DEFAULT_PROTOCOL
    next_state = transition(contest.state, ContestTransition.FINALIZE)
    audit = AuditLog(session, contest.id)
    audit.require_not_before(now)
    protocol.require_valid(contest.commit_hash, contest.reveal_value)

    roster = contest.roster_ids(session)
    if roster_digest(roster, protocol.digest) != contest.roster_digest:
        logger.critical("Roster of contest %s differs from its frozen digest", contest.slug)
        raise CommitVerificationError(
            f"Roster of contest {contest.slug} does not match the committed roster digest"
        )

    winners = select_winners(
        roster, contest.commit_hash, contest.reveal_value, contest.prize_count, protocol
    )

    prizes = [
        Prize(
            contest_id=contest.id,
            position=winner.position,
            participant_key=winner.participant_id,
            reward_payload=contest.reward_for(winner.position),
            created_at=now,
        )
        for winner in winners
    ]
    session.add_all(prizes)
    session.flush()

    assignments = [
        WinnerAssignment(
            participant_id=prize.participant_key,
            position=prize.position,
            prize_id=prize.id,
        )
        for prize in prizes
    ]
    contest.state = next_state
    contest.finalized_at = now
    audit.append(
        WINNERS_FINALIZED,
        {
            "winners": [
                {
                    "participant_id": a.participant_id,
                    "position": a.position,
                    "prize_id": a.prize_id,
                }
                for a in assignments
            ]
        },
        occurred_at=now,
    )
    session.flush()
    logger.info("Contest %s finalized with %s winners", contest.slug, len(assignments))
    return assignments


def reveal_and_finalize(
    session: Session,
    contest: Contest,
    secret_seed: str,
    *,
    now: Optional[datetime] = None,
    protocol: Optional[CommitRevealProtocol] = None,
) -> list[WinnerAssignment]:
    """Reveal ``secret_seed`` and finalize the draw in one step.

    Server/scheduler use only; this must never be reachable by clients.
    """

    now = _now(now)
    reveal_contest(session, contest, secret_seed, now=now, protocol=protocol)
    return finalize_contest(session, contest, now=now, protocol=protocol)


def verify_draw(
    session: Session,
    contest: Contest,
    *,
    protocol: Optional[CommitRevealProtocol] = None,
) -> bool:
    """Re-derive a finalized draw from public material and compare it.

    Returns ``True`` only if the reveal matches the commit, the roster
    matches its digest and the stored prizes equal the re-derived winners.
    """

    protocol = protocol or DEFAULT_PROTOCOL
    if contest.state is not ContestState.FINALIZED:
        raise InvalidTransitionError(f"Contest {contest.slug} is not finalized")
    if not protocol.verify(contest.commit_hash, contest.reveal_value):
        return False

    roster = contest.roster_ids(session)
    if roster_digest(roster, protocol.digest) != contest.roster_digest:
        return False

    expected = [
        (w.participant_id, w.position)
        for w in select_winners(
            roster, contest.commit_hash, contest.reveal_value, contest.prize_count, protocol
        )
    ]
    stored = session.execute(
        select(Prize.participant_key, Prize.position)
        .where(Prize.contest_id == contest.id)
        .order_by(Prize.position.asc())
    ).all()
    return expected == [(row[0], row[1]) for row in stored]


def get_audit_log(session: Session, contest: Contest) -> AuditEntries:
    """Return the contest's audit entries as a lazy, restartable iterable."""

    return AuditLog(session, contest.id).entries()


__all__ = [
    "close_and_commit",
    "create_contest",
    "finalize_contest",
    "get_audit_log",
    "get_contest",
    "join_roster",
    "reveal_and_finalize",
    "reveal_contest",
    "verify_draw",
]
