"""Database models for contests and their rosters."""

from __future__ import annotations

import calendar
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    Enum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    func,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import Base, ID_TYPE
from ..db.types import UTCDateTime
from ..db.utils import as_utc, utcnow
from ..draw.state import ContestState

if TYPE_CHECKING:
    from .audit import AuditLogEntry
    from .prize import Prize, PrizeTier


def end_of_month(now: Optional[datetime] = None) -> datetime:
    """Return the last second of ``now``'s calendar month in UTC."""

    now = as_utc(now) or utcnow()
    last_day = calendar.monthrange(now.year, now.month)[1]
    return datetime(now.year, now.month, last_day, 23, 59, 59, tzinfo=timezone.utc)


class Contest(Base):
    """A time-boxed contest with a committed, verifiable prize draw."""

    __tablename__ = "contests"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key."""

    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    """Stable public identifier, e.g. ``"monthly-2026-10"``."""

    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    """Optional human readable label."""

    starts_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
    )
    """When the contest opened for joins."""

    end_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    """Earliest time at which the contest may be closed and committed."""

    prize_count: Mapped[int] = mapped_column(Integer, nullable=False)
    """Number of ranked prize positions."""

    state: Mapped[ContestState] = mapped_column(
        Enum(
            ContestState,
            name="contest_state",
            native_enum=False,
            values_callable=lambda states: [s.value for s in states],
        ),
        nullable=False,
        default=ContestState.OPEN,
    )
    """Lifecycle state; only ever moves forward."""

    commit_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    """Published hash of the operator's secret seed."""

    committed_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )
    """When the commit was published and the roster frozen."""

    roster_digest: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    """SHA-256 of the canonical frozen roster."""

    reveal_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Disclosed secret seed; ``None`` until the reveal."""

    revealed_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )

    finalized_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    participants: Mapped[list["Participant"]] = relationship(
        back_populates="contest",
        cascade="all, delete-orphan",
        order_by="Participant.roster_index",
    )
    """Roster in join order."""

    prize_tiers: Mapped[list["PrizeTier"]] = relationship(
        back_populates="contest",
        cascade="all, delete-orphan",
        order_by="PrizeTier.position",
    )

    prizes: Mapped[list["Prize"]] = relationship(
        back_populates="contest",
        cascade="all, delete-orphan",
        order_by="Prize.position",
    )

    audit_entries: Mapped[list["AuditLogEntry"]] = relationship(
        back_populates="contest",
        order_by="AuditLogEntry.id",
        viewonly=True,
    )

    def __init__(
        self,
        *,
        slug: str,
        prize_count: int,
        end_date: Optional[datetime] = None,
        title: Optional[str] = None,
        starts_at: Optional[datetime] = None,
        state: ContestState = ContestState.OPEN,
    ) -> None:
        self.slug = slug
        self.title = title
        self.prize_count = prize_count
        self.end_date = end_date or end_of_month(starts_at)
        if starts_at is not None:
            self.starts_at = starts_at
        self.state = state

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Contest(id={id}, slug={slug}, state={state})>".format(
            id=self.id,
            slug=self.slug,
            state=self.state,
        )

    @classmethod
    def get_by_slug(cls, session: Session, slug: str) -> Optional["Contest"]:
        """Return the contest matching ``slug`` if it exists."""

        return session.scalar(select(cls).where(cls.slug == slug))

    @property
    def is_roster_frozen(self) -> bool:
        return self.state is not ContestState.OPEN and self.commit_hash is not None

    def has_ended_at(self, now: datetime) -> bool:
        return as_utc(now) >= as_utc(self.end_date)

    def roster_ids(self, session: Session) -> list[str]:
        """Return participant ids in roster order, read from the database."""

        stmt = (
            select(Participant.participant_key)
            .where(Participant.contest_id == self.id)
            .order_by(Participant.roster_index.asc())
        )
        return list(session.scalars(stmt).all())

    def reward_for(self, position: int) -> dict[str, Any]:
        """Return the configured reward payload for ``position`` (empty if none)."""

        for tier in self.prize_tiers:
            if tier.position == position:
                return dict(tier.reward_payload or {})
        return {}


class Participant(Base):
    """Roster entry of a contest. Immutable once the roster is frozen."""

    __tablename__ = "contest_participants"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)

    contest_id: Mapped[int] = mapped_column(
        ID_TYPE,
        ForeignKey("contests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    participant_key: Mapped[str] = mapped_column(String(128), nullable=False)
    """External participant identifier supplied by the participation API."""

    roster_index: Mapped[int] = mapped_column(Integer, nullable=False)
    """0-based join order; defines the roster order used by the draw."""

    joined_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
    )

    metrics_snapshot: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    """Scoring metrics captured at join time."""

    contest: Mapped["Contest"] = relationship(back_populates="participants")

    __table_args__ = (
        UniqueConstraint(
            "contest_id", "participant_key", name="uq_contest_participant_key"
        ),
        UniqueConstraint(
            "contest_id", "roster_index", name="uq_contest_participant_roster_index"
        ),
    )

    def __init__(
        self,
        *,
        participant_key: str,
        roster_index: int,
        contest: Optional["Contest"] = None,
        contest_id: Optional[int] = None,
        joined_at: Optional[datetime] = None,
        metrics_snapshot: Optional[dict] = None,
    ) -> None:
        self.participant_key = participant_key
        self.roster_index = roster_index
        if contest is not None:
            self.contest = contest
        if contest_id is not None:
            self.contest_id = contest_id
        if joined_at is not None:
            self.joined_at = joined_at
        self.metrics_snapshot = metrics_snapshot

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Participant(contest_id={cid}, key={key}, index={idx})>".format(
            cid=self.contest_id,
            key=self.participant_key,
            idx=self.roster_index,
        )


__all__ = ["Contest", "Participant", "end_of_month"]
