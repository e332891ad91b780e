"""Algorithms behind the contest draw and leaderboard."""

from .commit_reveal import (
    CommitRecord,
    CommitRevealProtocol,
    DEFAULT_PROTOCOL,
    RevealRecord,
    generate_secret_seed,
)
from .scoring import (
    DEFAULT_WEIGHTS,
    ScoreResult,
    ScoringFactors,
    ScoringWeights,
    compute_score,
)
from .selection import WinnerAssignment, roster_digest, select_winners
from .state import ContestState, ContestTransition, transition

__all__ = [
    "CommitRecord",
    "CommitRevealProtocol",
    "ContestState",
    "ContestTransition",
    "DEFAULT_PROTOCOL",
    "DEFAULT_WEIGHTS",
    "RevealRecord",
    "ScoreResult",
    "ScoringFactors",
    "ScoringWeights",
    "WinnerAssignment",
    "compute_score",
    "generate_secret_seed",
    "roster_digest",
    "select_winners",
    "transition",
]
