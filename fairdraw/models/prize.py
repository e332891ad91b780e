"""Database models for prize tiers and awarded prizes."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Mapping, Optional, Sequence

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    UniqueConstraint,
    select,
    text,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import Base, ID_TYPE
from ..db.types import UTCDateTime
from ..db.utils import dt_iso, utcnow

if TYPE_CHECKING:
    from .contest import Contest


# Monthly contest reward table, position 1 first.
DEFAULT_PRIZE_TABLE: tuple[Mapping[str, Any], ...] = (
    {"coins": 50000, "premium_invites": 10, "exclusive_upgrade": "contest_winner_1"},
    {"coins": 30000, "premium_invites": 5, "exclusive_upgrade": "contest_winner_2"},
    {"coins": 20000, "premium_invites": 3},
    {"coins": 10000, "premium_invites": 2},
    {"coins": 5000, "premium_invites": 1},
    {"coins": 3000},
    {"coins": 2000},
    {"coins": 1000},
    {"coins": 500},
    {"coins": 300},
)


def build_prize_tiers(
    prize_count: int,
    table: Optional[Sequence[Mapping[str, Any]]] = None,
) -> list["PrizeTier"]:
    """Return unsaved tiers for positions ``1..prize_count``.

    Positions beyond the end of ``table`` get an empty payload.
    """

    rewards = DEFAULT_PRIZE_TABLE if table is None else table
    tiers: list[PrizeTier] = []
    for position in range(1, prize_count + 1):
        payload = rewards[position - 1] if position <= len(rewards) else {}
        tiers.append(PrizeTier(position=position, reward_payload=dict(payload)))
    return tiers


class PrizeTier(Base):
    """Reward configured for one prize position of a contest."""

    __tablename__ = "contest_prize_tiers"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)

    contest_id: Mapped[int] = mapped_column(
        ID_TYPE,
        ForeignKey("contests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False)
    """1-based prize position."""

    reward_payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    """Opaque reward description handed to the fulfillment system."""

    contest: Mapped["Contest"] = relationship(back_populates="prize_tiers")

    __table_args__ = (
        UniqueConstraint("contest_id", "position", name="uq_prize_tier_position"),
    )

    def __init__(
        self,
        *,
        position: int,
        reward_payload: Optional[dict] = None,
        contest: Optional["Contest"] = None,
    ) -> None:
        self.position = position
        self.reward_payload = reward_payload or {}
        if contest is not None:
            self.contest = contest


class Prize(Base):
    """Prize awarded to a drawn winner. ``claimed`` flips to ``True`` exactly once."""

    __tablename__ = "contest_prizes"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Prize identifier used by claims."""

    contest_id: Mapped[int] = mapped_column(
        ID_TYPE,
        ForeignKey("contests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False)
    """Winning position (1 is the top prize)."""

    participant_key: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    """Winner's external participant id."""

    reward_payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    """Reward copied from the contest's tier at finalize time."""

    claimed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )

    claimed_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
    )

    contest: Mapped["Contest"] = relationship(back_populates="prizes")

    __table_args__ = (
        UniqueConstraint("contest_id", "position", name="uq_contest_prize_position"),
        UniqueConstraint(
            "contest_id", "participant_key", name="uq_contest_prize_participant"
        ),
        Index("ix_contest_prizes_claimed", "participant_key", "claimed"),
    )

    def __init__(
        self,
        *,
        position: int,
        participant_key: str,
        reward_payload: Optional[dict] = None,
        contest: Optional["Contest"] = None,
        contest_id: Optional[int] = None,
        created_at: Optional[datetime] = None,
    ) -> None:
        self.position = position
        self.participant_key = participant_key
        self.reward_payload = reward_payload or {}
        self.claimed = False
        self.claimed_at = None
        if contest is not None:
            self.contest = contest
        if contest_id is not None:
            self.contest_id = contest_id
        if created_at is not None:
            self.created_at = created_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Prize(id={id}, contest_id={cid}, position={pos}, participant={key}, claimed={claimed})>".format(
            id=self.id,
            cid=self.contest_id,
            pos=self.position,
            key=self.participant_key,
            claimed=self.claimed,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "contest_id": self.contest_id,
            "position": self.position,
            "participant_id": self.participant_key,
            "reward_payload": dict(self.reward_payload or {}),
            "claimed": self.claimed,
            "claimed_at": dt_iso(self.claimed_at),
        }

    @classmethod
    def for_participant(
        cls,
        session: Session,
        participant_key: str,
        *,
        contest_id: Optional[int] = None,
        unclaimed_only: bool = False,
    ) -> list["Prize"]:
        """Return prizes won by ``participant_key`` ordered by contest and position."""

        stmt = select(cls).where(cls.participant_key == participant_key)
        if contest_id is not None:
            stmt = stmt.where(cls.contest_id == contest_id)
        if unclaimed_only:
            stmt = stmt.where(cls.claimed.is_(False))
        stmt = stmt.order_by(cls.contest_id.asc(), cls.position.asc())
        return list(session.scalars(stmt).all())


__all__ = ["DEFAULT_PRIZE_TABLE", "Prize", "PrizeTier", "build_prize_tiers"]
