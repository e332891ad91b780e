"""Multi-factor contest scoring for the live leaderboard.

Scores are never stored; they are recomputed from :class:`ScoringFactors`
whenever a leaderboard is requested. The winner draw does not use them.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from ..db.utils import utcnow
from ..errors import ValidationError

COOKIE_LOG_MULTIPLIER = 1000  # K1
ACHIEVEMENT_POINTS = 100  # K2
EFFICIENCY_SCALE = 10  # K3
ACTIVE_HOUR_POINTS = 50  # K4

STREAK_STEP = 0.05
MAX_STREAK_DAYS = 7
WEEKLY_MILESTONE_STEP = 0.05
MAX_WEEKLY_MILESTONES = 4


@dataclass(frozen=True)
class ScoringFactors:
    """Raw per-participant metrics supplied by the game-state service.

    Attributes
    ----------
    total_cookies : float
        Cumulative resource count.
    achievements : int
        Number of unlocked achievements.
    units : Mapping[str, int]
        Owned unit count per category (buildings).
    production_rate : float
        Resources produced per second.
    active_seconds : float
        Active play duration in seconds.
    interactions : int
        Click/interaction count.
    level : int
        Player level.
    daily_streak : int
        Consecutive days played up to the scoring day.
    """

    total_cookies: float = 0.0
    achievements: int = 0
    units: Mapping[str, int] = field(default_factory=dict)
    production_rate: float = 0.0
    active_seconds: float = 0.0
    interactions: int = 0
    level: int = 0
    daily_streak: int = 0

    @property
    def total_units(self) -> int:
        return sum(self.units.values())

    @classmethod
    def from_snapshot(cls, snapshot: Optional[Mapping[str, Any]]) -> "ScoringFactors":
        """Build factors from a metrics snapshot stored at join time.

        Both ``snake_case`` and the client's ``camelCase`` keys are accepted.
        Missing keys default to zero.
        """

        data = dict(snapshot or {})

        def pick(*keys: str, default: Any = 0) -> Any:
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return default

        units = pick("units", "buildings", default={})
        if not isinstance(units, Mapping):
            raise ValidationError("units must be a mapping of category to count")
        return cls(
            total_cookies=float(pick("total_cookies", "totalCookies")),
            achievements=int(pick("achievements", "achievementCount")),
            units={str(k): int(v) for k, v in units.items()},
            production_rate=float(pick("production_rate", "cookiesPerSecond")),
            active_seconds=float(pick("active_seconds", "activeTime", "totalActiveTime")),
            interactions=int(pick("interactions", "clicks")),
            level=int(pick("level")),
            daily_streak=int(pick("daily_streak", "dailyStreak")),
        )

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "total_cookies": self.total_cookies,
            "achievements": self.achievements,
            "units": dict(self.units),
            "production_rate": self.production_rate,
            "active_seconds": self.active_seconds,
            "interactions": self.interactions,
            "level": self.level,
            "daily_streak": self.daily_streak,
        }


@dataclass(frozen=True)
class ScoringWeights:
    """Relative weight of each scoring component."""

    cookies: float = 1.0
    achievements: float = 1.0
    efficiency: float = 1.0
    active_time: float = 1.0


DEFAULT_WEIGHTS = ScoringWeights()


@dataclass(frozen=True)
class ScoreResult:
    """Outcome of :func:`compute_score`.

    ``breakdown`` holds the floored per-component points and
    ``bonuses`` the multiplicative bonus fractions.
    """

    base_score: int
    bonuses: Mapping[str, float]
    total_score: int
    breakdown: Mapping[str, int]


def _clamp01(value: float) -> float:
    if value < 0.0:
        return 0.0
    if value > 1.0:
        return 1.0
    return value


def _require_non_negative(numbers: Mapping[str, float]) -> None:
    for name, value in numbers.items():
        if not math.isfinite(value) or value < 0:
            raise ValidationError(f"{name} must be a finite, non-negative number")


def validate_factors(factors: ScoringFactors) -> None:
    """Raise :class:`ValidationError` if any factor is negative or not finite."""
    numbers = {
        "total_cookies": factors.total_cookies,
        "achievements": factors.achievements,
        "production_rate": factors.production_rate,
        "active_seconds": factors.active_seconds,
        "interactions": factors.interactions,
        "level": factors.level,
        "daily_streak": factors.daily_streak,
    }
    numbers.update({f"units[{k}]": v for k, v in factors.units.items()})
    _require_non_negative(numbers)


def _validate(factors: ScoringFactors, weights: ScoringWeights) -> None:
    validate_factors(factors)
    _require_non_negative(
        {
            "weights.cookies": weights.cookies,
            "weights.achievements": weights.achievements,
            "weights.efficiency": weights.efficiency,
            "weights.active_time": weights.active_time,
        }
    )


def daily_streak_bonus(daily_streak: int) -> float:
    return min(daily_streak, MAX_STREAK_DAYS) * STREAK_STEP


def weekly_milestone_bonus(now: datetime) -> float:
    """Bonus stepped by the calendar week of the month ``now`` falls into (UTC)."""
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    completed_weeks = (now.day - 1) // 7
    return min(completed_weeks, MAX_WEEKLY_MILESTONES) * WEEKLY_MILESTONE_STEP


def compute_score(
    factors: ScoringFactors,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
    now: Optional[datetime] = None,
) -> ScoreResult:
    """Compute the leaderboard score for ``factors``.

    Parameters
    ----------
    factors : ScoringFactors
        Raw metrics of one participant.
    weights : ScoringWeights, default: DEFAULT_WEIGHTS
        Component weights.
    now : Optional[datetime], default: None
        Scoring time; only its day-of-month bucket matters. Defaults to the
        current UTC time.

    Returns
    -------
    ScoreResult
        Integer base and total scores plus the per-component breakdown.

    Raises
    ------
    ValidationError
        If any factor or weight is negative or not finite.
    """

    _validate(factors, weights)
    if now is None:
        now = utcnow()

    total_units = factors.total_units
    cookie_points = (
        math.log10(factors.total_cookies + 1) * COOKIE_LOG_MULTIPLIER * weights.cookies
    )
    achievement_points = factors.achievements * ACHIEVEMENT_POINTS * weights.achievements

    if factors.total_cookies > 0:
        efficiency = _clamp01(
            (factors.production_rate / max(total_units, 1))
            * (total_units / factors.total_cookies)
            * EFFICIENCY_SCALE
        )
    else:
        efficiency = 0.0
    efficiency_points = efficiency * ACHIEVEMENT_POINTS * weights.efficiency

    active_time_points = (
        (factors.active_seconds / 3600) * ACTIVE_HOUR_POINTS * weights.active_time
    )

    breakdown = {
        "cookies": int(math.floor(cookie_points)),
        "achievements": int(math.floor(achievement_points)),
        "efficiency": int(math.floor(efficiency_points)),
        "active_time": int(math.floor(active_time_points)),
    }
    base_score = sum(breakdown.values())

    bonuses = {
        "daily_streak": daily_streak_bonus(factors.daily_streak),
        "weekly_milestone": weekly_milestone_bonus(now),
    }
    # Rounded first so 0.05 steps cannot floor 105.0 down to 104.
    total_score = int(math.floor(round(base_score * (1 + sum(bonuses.values())), 9)))

    return ScoreResult(
        base_score=base_score,
        bonuses=bonuses,
        total_score=total_score,
        breakdown=breakdown,
    )


__all__ = [
    "DEFAULT_WEIGHTS",
    "ScoreResult",
    "ScoringFactors",
    "ScoringWeights",
    "compute_score",
    "daily_streak_bonus",
    "validate_factors",
    "weekly_milestone_bonus",
]
