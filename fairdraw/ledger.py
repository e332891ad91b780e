"""Idempotent prize claiming."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .audit import AuditLog, PRIZE_CLAIMED
from .db.utils import as_utc, dt_iso, utcnow
from .errors import PrizeNotFoundError, ValidationError
from .models import Prize

logger = logging.getLogger(__name__)

RewardFulfiller = Callable[[Prize], None]


class PrizeLedger:
    """Tracks claim status of awarded prizes.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session used for lookups and persistence.
    fulfiller : Optional[Callable[[Prize], None]], default: None
        Reward-fulfillment hook invoked exactly once per prize, on its first
        successful claim. If it raises, the prize stays unclaimed.
    """

    def __init__(self, session: Session, fulfiller: Optional[RewardFulfiller] = None) -> None:
        self._session = session
        self._fulfiller = fulfiller

    def claim(
        self,
        participant_key: str,
        prize_id: int,
        now: Optional[datetime] = None,
    ) -> Prize:
        """Claim ``prize_id`` on behalf of ``participant_key``.

        Repeating the call for an already claimed prize is a no-op that
        returns the stored record unchanged, so client retries never credit
        twice.

        Raises
        ------
        PrizeNotFoundError
            If the prize does not exist or was won by someone else.
        ValidationError
            If ``now`` precedes the finalization or any later audit entry.
        """

        if not participant_key:
            raise ValidationError("participant_key must not be empty")

        # Row lock serializes concurrent claims on backends that support it.
        prize = self._session.scalar(
            select(Prize).where(Prize.id == prize_id).with_for_update()
        )
        if prize is None or prize.participant_key != participant_key:
            raise PrizeNotFoundError(
                f"Prize {prize_id} not found for participant '{participant_key}'"
            )

        if prize.claimed:
            logger.info("Prize %s already claimed; returning existing record", prize.id)
            return prize

        claimed_at = as_utc(now) or utcnow()
        audit = AuditLog(self._session, prize.contest_id)
        audit.require_not_before(claimed_at)

        if self._fulfiller is not None:
            self._fulfiller(prize)

        prize.claimed = True
        prize.claimed_at = claimed_at
        audit.append(
            PRIZE_CLAIMED,
            {
                "prize_id": prize.id,
                "participant_id": prize.participant_key,
                "position": prize.position,
                "claimed_at": dt_iso(prize.claimed_at),
            },
            occurred_at=prize.claimed_at,
        )
        self._session.flush()
        logger.info("Prize %s claimed by %s", prize.id, participant_key)
        return prize

    def claimable(self, participant_key: str, contest_id: Optional[int] = None) -> list[Prize]:
        """Return unclaimed prizes won by ``participant_key``."""

        return Prize.for_participant(
            self._session, participant_key, contest_id=contest_id, unclaimed_only=True
        )

    def prizes_for(self, participant_key: str) -> list[Prize]:
        return Prize.for_participant(self._session, participant_key)


__all__ = ["PrizeLedger", "RewardFulfiller"]
