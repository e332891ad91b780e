"""Leaderboard ranking built on :func:`fairdraw.draw.scoring.compute_score`."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional, Sequence

from .db.utils import utcnow
from .draw.scoring import DEFAULT_WEIGHTS, ScoreResult, ScoringFactors, ScoringWeights, compute_score
from .models import Participant

FactorsProvider = Callable[[str], ScoringFactors]


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    participant_id: str
    score: ScoreResult


@dataclass(frozen=True)
class RankChange:
    participant_id: str
    previous_rank: Optional[int]
    current_rank: int


def build_leaderboard(
    participants: Iterable[Participant],
    *,
    factors_provider: Optional[FactorsProvider] = None,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> list[LeaderboardEntry]:
    """Score and rank ``participants``.

    Factors come from ``factors_provider`` when given, otherwise from each
    participant's join-time metrics snapshot. Ties share a rank (1, 1, 3)
    and are listed in roster order.
    """

    if limit is not None and limit < 0:
        raise ValueError("limit must be non-negative when provided")
    now = now or utcnow()

    scored: list[tuple[int, str, ScoreResult]] = []
    for participant in participants:
        if factors_provider is not None:
            factors = factors_provider(participant.participant_key)
        else:
            factors = ScoringFactors.from_snapshot(participant.metrics_snapshot)
        result = compute_score(factors, weights, now)
        scored.append((participant.roster_index, participant.participant_key, result))

    scored.sort(key=lambda item: (-item[2].total_score, item[0]))

    entries: list[LeaderboardEntry] = []
    previous_score: Optional[int] = None
    rank = 0
    for idx, (_, key, result) in enumerate(scored, start=1):
        if result.total_score != previous_score:
            rank = idx
            previous_score = result.total_score
        entries.append(LeaderboardEntry(rank=rank, participant_id=key, score=result))

    if limit is not None:
        return entries[:limit]
    return entries


def rank_changes(
    previous: Sequence[LeaderboardEntry],
    current: Sequence[LeaderboardEntry],
) -> list[RankChange]:
    """Return participants whose rank differs between two leaderboards."""

    before = {entry.participant_id: entry.rank for entry in previous}
    changes: list[RankChange] = []
    for entry in current:
        old_rank = before.get(entry.participant_id)
        if old_rank != entry.rank:
            changes.append(
                RankChange(
                    participant_id=entry.participant_id,
                    previous_rank=old_rank,
                    current_rank=entry.rank,
                )
            )
    return changes


__all__ = ["FactorsProvider", "LeaderboardEntry", "RankChange", "build_leaderboard", "rank_changes"]
