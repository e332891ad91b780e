"""Server-side facade serializing contest operations per contest id."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from . import workflows
from .audit import AuditLog, COMMIT_VERIFICATION_FAILED
from .config import Settings, load_settings
from .db.utils import utcnow
from .draw.commit_reveal import CommitRecord, CommitRevealProtocol, DEFAULT_PROTOCOL
from .draw.scoring import DEFAULT_WEIGHTS, ScoreResult, ScoringFactors, ScoringWeights, compute_score
from .draw.selection import WinnerAssignment
from .draw.state import ContestState
from .errors import CommitVerificationError, InfrastructureError, PrizeNotFoundError
from .events import (
    ContestNotification,
    EventSink,
    LEADERBOARD_UPDATE,
    PRIZE_AVAILABLE,
    PRIZE_CLAIMED,
    RANK_CHANGE,
    WINNER_FINALIZED,
    publish,
)
from .leaderboard import FactorsProvider, LeaderboardEntry, build_leaderboard, rank_changes
from .ledger import PrizeLedger, RewardFulfiller
from .models import Contest, Participant, Prize

logger = logging.getLogger(__name__)


class ContestLockRegistry:
    """One in-process mutex per contest id."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}

    def _lock_for(self, contest_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(contest_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[contest_id] = lock
            return lock

    @contextmanager
    def hold(self, contest_id: int, timeout: float) -> Iterator[None]:
        """Hold the contest's lock, raising :class:`InfrastructureError` on timeout."""
        lock = self._lock_for(contest_id)
        if not lock.acquire(timeout=timeout):
            raise InfrastructureError(
                f"Timed out after {timeout}s waiting for contest {contest_id}"
            )
        try:
            yield
        finally:
            lock.release()


class AuditTrail:
    """Lazy, restartable view of a contest's audit log.

    Each iteration opens its own read session and yields serialized entries
    ordered by timestamp.
    """

    def __init__(self, session_factory: sessionmaker, contest_id: int) -> None:
        self._session_factory = session_factory
        self._contest_id = contest_id

    def __iter__(self) -> Iterator[dict[str, Any]]:
        try:
            with self._session_factory() as session:
                for entry in AuditLog(session, self._contest_id).entries():
                    yield entry.to_dict()
        except SQLAlchemyError as exc:
            raise InfrastructureError("Audit log storage is unavailable") from exc


class ContestService:
    """Exposed contest operations.

    Every mutating call takes the contest's lock, runs in its own
    transaction and commits before returning, so a commit is durable before
    any reveal can be attempted. Events are published after commit.

    Parameters
    ----------
    session_factory : sessionmaker
        Factory bound to the contest database.
    settings : Optional[Settings], default: None
        Runtime settings; loaded from the environment when omitted.
    locks : Optional[ContestLockRegistry], default: None
        Shared lock registry. Pass the same instance to every service that
        talks to the same database within a process.
    event_sink : Optional[EventSink], default: None
        Realtime transport hook.
    fulfiller : Optional[RewardFulfiller], default: None
        Reward-fulfillment hook used by :meth:`claim`.
    factors_provider : Optional[FactorsProvider], default: None
        Source of live scoring factors; join snapshots are used when omitted.
    weights : ScoringWeights, default: DEFAULT_WEIGHTS
        Leaderboard scoring weights.
    protocol : Optional[CommitRevealProtocol], default: None
        Commit-reveal protocol; SHA-256 when omitted.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        settings: Optional[Settings] = None,
        locks: Optional[ContestLockRegistry] = None,
        event_sink: Optional[EventSink] = None,
        fulfiller: Optional[RewardFulfiller] = None,
        factors_provider: Optional[FactorsProvider] = None,
        weights: ScoringWeights = DEFAULT_WEIGHTS,
        protocol: Optional[CommitRevealProtocol] = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or load_settings()
        self._locks = locks or ContestLockRegistry()
        self._event_sink = event_sink
        self._fulfiller = fulfiller
        self._factors_provider = factors_provider
        self._weights = weights
        self._protocol = protocol or DEFAULT_PROTOCOL
        self._last_leaderboards: dict[int, list[LeaderboardEntry]] = {}
        self._leaderboards_guard = threading.Lock()

    # -------- transactions --------
    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        try:
            with self._session_factory.begin() as session:
                yield session
        except SQLAlchemyError as exc:
            raise InfrastructureError("Contest storage is unavailable") from exc

    @contextmanager
    def _locked_contest(self, contest_id: int) -> Iterator[tuple[Session, Contest]]:
        with self._locks.hold(contest_id, self._settings.lock_timeout):
            with self._transaction() as session:
                contest = workflows.get_contest(session, contest_id, for_update=True)
                yield session, contest

    def _notify(self, name: str, contest_id: int, payload: Mapping[str, Any]) -> None:
        publish(self._event_sink, ContestNotification(name, contest_id, payload))

    # -------- contest lifecycle --------
    def create_contest(
        self,
        slug: str,
        *,
        prize_count: Optional[int] = None,
        end_date: Optional[datetime] = None,
        title: Optional[str] = None,
        prize_table: Optional[Sequence[Mapping[str, Any]]] = None,
        now: Optional[datetime] = None,
    ) -> Contest:
        with self._transaction() as session:
            return workflows.create_contest(
                session,
                slug,
                prize_count if prize_count is not None else self._settings.default_prize_count,
                end_date=end_date,
                title=title,
                prize_table=prize_table,
                now=now,
            )

    def join_roster(
        self,
        contest_id: int,
        participant_key: str,
        *,
        metrics_snapshot: Optional[Mapping[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Participant:
        with self._locked_contest(contest_id) as (session, contest):
            return workflows.join_roster(
                session,
                contest,
                participant_key,
                metrics_snapshot=metrics_snapshot,
                now=now,
            )

    def close_and_commit(
        self,
        contest_id: int,
        secret_seed: str,
        *,
        now: Optional[datetime] = None,
    ) -> CommitRecord:
        with self._locked_contest(contest_id) as (session, contest):
            return workflows.close_and_commit(
                session, contest, secret_seed, now=now, protocol=self._protocol
            )

    def reveal_and_finalize(
        self,
        contest_id: int,
        secret_seed: str,
        *,
        now: Optional[datetime] = None,
    ) -> list[WinnerAssignment]:
        """Reveal the seed, verify it and finalize the draw.

        A verification failure is recorded in the audit log in a separate
        transaction and re-raised; the contest stays COMMITTED.
        """
        try:
            with self._locked_contest(contest_id) as (session, contest):
                winners = workflows.reveal_and_finalize(
                    session, contest, secret_seed, now=now, protocol=self._protocol
                )
                rewards = {w.position: contest.reward_for(w.position) for w in winners}
        except CommitVerificationError:
            self._record_verification_failure(contest_id, now)
            raise

        with self._leaderboards_guard:
            self._last_leaderboards.pop(contest_id, None)
        for winner in winners:
            self._notify(
                WINNER_FINALIZED,
                contest_id,
                {"participant_id": winner.participant_id, "position": winner.position},
            )
            self._notify(
                PRIZE_AVAILABLE,
                contest_id,
                {
                    "participant_id": winner.participant_id,
                    "prize_id": winner.prize_id,
                    "position": winner.position,
                    "reward_payload": rewards[winner.position],
                },
            )
        return winners

    def _record_verification_failure(self, contest_id: int, now: Optional[datetime]) -> None:
        logger.error("Recording failed commit verification for contest %s", contest_id)
        with self._transaction() as session:
            contest = workflows.get_contest(session, contest_id)
            AuditLog(session, contest.id).append(
                COMMIT_VERIFICATION_FAILED,
                {"commit_hash": contest.commit_hash},
                occurred_at=now or utcnow(),
            )

    def verify_draw(self, contest_id: int) -> bool:
        with self._transaction() as session:
            contest = workflows.get_contest(session, contest_id)
            return workflows.verify_draw(session, contest, protocol=self._protocol)

    def get_audit_log(self, contest_id: int) -> AuditTrail:
        with self._transaction() as session:
            workflows.get_contest(session, contest_id)
        return AuditTrail(self._session_factory, contest_id)

    # -------- scoring --------
    def compute_score(
        self, factors: ScoringFactors, *, now: Optional[datetime] = None
    ) -> ScoreResult:
        return compute_score(factors, self._weights, now)

    def get_leaderboard(
        self,
        contest_id: int,
        *,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> list[LeaderboardEntry]:
        """Rank the contest's roster and publish leaderboard/rank-change events."""
        with self._transaction() as session:
            contest = workflows.get_contest(session, contest_id)
            participants = session.scalars(
                select(Participant)
                .where(Participant.contest_id == contest.id)
                .order_by(Participant.roster_index.asc())
            ).all()
            board = build_leaderboard(
                participants,
                factors_provider=self._factors_provider,
                weights=self._weights,
                now=now,
            )
            finalized = contest.state is ContestState.FINALIZED

        # The first board of a contest is a baseline, not a change. Finalized
        # contests are not tracked.
        with self._leaderboards_guard:
            if finalized:
                self._last_leaderboards.pop(contest_id, None)
                changes = []
            else:
                previous = self._last_leaderboards.get(contest_id)
                self._last_leaderboards[contest_id] = board
                changes = rank_changes(previous, board) if previous is not None else []
        for change in changes:
            self._notify(
                RANK_CHANGE,
                contest_id,
                {
                    "participant_id": change.participant_id,
                    "previous_rank": change.previous_rank,
                    "current_rank": change.current_rank,
                },
            )
        visible = board if limit is None else board[:limit]
        self._notify(
            LEADERBOARD_UPDATE,
            contest_id,
            {
                "entries": [
                    {
                        "rank": entry.rank,
                        "participant_id": entry.participant_id,
                        "total_score": entry.score.total_score,
                    }
                    for entry in visible
                ]
            },
        )
        return visible

    # -------- prizes --------
    def claim(
        self,
        participant_key: str,
        prize_id: int,
        *,
        now: Optional[datetime] = None,
    ) -> Prize:
        """Claim a prize. Retries return the stored record without re-crediting."""
        with self._transaction() as session:
            contest_id = session.scalar(select(Prize.contest_id).where(Prize.id == prize_id))
        if contest_id is None:
            raise PrizeNotFoundError(f"Prize {prize_id} does not exist")

        with self._locked_contest(contest_id) as (session, _contest):
            was_claimed = session.scalar(select(Prize.claimed).where(Prize.id == prize_id))
            prize = PrizeLedger(session, self._fulfiller).claim(
                participant_key, prize_id, now=now
            )

        if not was_claimed:
            self._notify(PRIZE_CLAIMED, contest_id, prize.to_dict())
        return prize

    def claimable_prizes(
        self, participant_key: str, contest_id: Optional[int] = None
    ) -> list[Prize]:
        with self._transaction() as session:
            return PrizeLedger(session).claimable(participant_key, contest_id)


__all__ = ["AuditTrail", "ContestLockRegistry", "ContestService"]
