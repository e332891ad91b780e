"""Events handed to the realtime transport."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from .db.utils import dt_iso, utcnow

logger = logging.getLogger(__name__)

LEADERBOARD_UPDATE = "leaderboard_update"
RANK_CHANGE = "rank_change"
WINNER_FINALIZED = "winner_finalized"
PRIZE_AVAILABLE = "prize_available"
PRIZE_CLAIMED = "prize_claimed"


@dataclass(frozen=True)
class ContestNotification:
    """A single event for the push/poll transport."""

    name: str
    contest_id: int
    payload: Mapping[str, Any] = field(default_factory=dict)
    emitted_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.name,
            "contest_id": self.contest_id,
            "payload": dict(self.payload),
            "emitted_at": dt_iso(self.emitted_at),
        }


EventSink = Callable[[ContestNotification], None]


def publish(sink: Optional[EventSink], notification: ContestNotification) -> None:
    """Deliver ``notification`` to ``sink``.

    Transport failures are logged and dropped: events are advisory and the
    contest state has already been committed when they are published.
    """
    if sink is None:
        return
    try:
        sink(notification)
    except Exception:
        logger.exception(
            "Failed to publish %s for contest %s", notification.name, notification.contest_id
        )


__all__ = [
    "ContestNotification",
    "EventSink",
    "LEADERBOARD_UPDATE",
    "PRIZE_AVAILABLE",
    "PRIZE_CLAIMED",
    "RANK_CHANGE",
    "WINNER_FINALIZED",
    "publish",
]
