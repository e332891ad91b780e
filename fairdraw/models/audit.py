"""Append-only audit trail of contest protocol events."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import ForeignKey, Index, JSON, String, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, ID_TYPE
from ..db.types import UTCDateTime
from ..db.utils import dt_iso, utcnow

if TYPE_CHECKING:
    from .contest import Contest


class AuditLogEntry(Base):
    """One protocol event. Rows are inserted once and never updated or deleted."""

    __tablename__ = "contest_audit_log"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Monotonic sequence number; breaks ties between equal timestamps."""

    contest_id: Mapped[int] = mapped_column(
        ID_TYPE,
        ForeignKey("contests.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    occurred_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
    )

    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    """Event name, e.g. ``"commit_published"``."""

    data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    """Public event payload. Never contains unrevealed secrets."""

    contest: Mapped["Contest"] = relationship(back_populates="audit_entries")

    __table_args__ = (
        Index("ix_contest_audit_log_order", "contest_id", "occurred_at", "id"),
    )

    def __init__(
        self,
        *,
        contest_id: int,
        action: str,
        data: Optional[dict] = None,
        occurred_at: Optional[datetime] = None,
    ) -> None:
        self.contest_id = contest_id
        self.action = action
        self.data = data
        if occurred_at is not None:
            self.occurred_at = occurred_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<AuditLogEntry(id={id}, contest_id={cid}, action={action})>".format(
            id=self.id,
            cid=self.contest_id,
            action=self.action,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "contest_id": self.contest_id,
            "timestamp": dt_iso(self.occurred_at),
            "action": self.action,
            "data": self.data or {},
        }


@event.listens_for(AuditLogEntry, "before_update")
def _refuse_update(mapper, connection, target) -> None:
    raise PermissionError("Audit log entries are append-only and cannot be updated")


@event.listens_for(AuditLogEntry, "before_delete")
def _refuse_delete(mapper, connection, target) -> None:
    raise PermissionError("Audit log entries are append-only and cannot be deleted")


__all__ = ["AuditLogEntry"]
