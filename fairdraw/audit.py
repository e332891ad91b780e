"""Session-bound access to a contest's append-only audit log."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterator, Mapping, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .db.utils import as_utc, dt_iso, utcnow
from .errors import InfrastructureError, ValidationError
from .models import AuditLogEntry

logger = logging.getLogger(__name__)

CONTEST_CREATED = "contest_created"
PARTICIPANT_JOINED = "participant_joined"
COMMIT_PUBLISHED = "commit_published"
ROSTER_FROZEN = "roster_frozen"
REVEAL_PUBLISHED = "reveal_published"
COMMIT_VERIFICATION_FAILED = "commit_verification_failed"
WINNERS_FINALIZED = "winners_finalized"
PRIZE_CLAIMED = "prize_claimed"


class AuditEntries:
    """Lazy, restartable view over a contest's audit entries.

    Every iteration issues a fresh ordered query, so iterating twice yields
    the same entries plus anything appended in between.
    """

    def __init__(self, session: Session, contest_id: int, batch_size: int = 100) -> None:
        self._session = session
        self._contest_id = contest_id
        self._batch_size = batch_size

    def __iter__(self) -> Iterator[AuditLogEntry]:
        stmt = (
            select(AuditLogEntry)
            .where(AuditLogEntry.contest_id == self._contest_id)
            .order_by(AuditLogEntry.occurred_at.asc(), AuditLogEntry.id.asc())
            .execution_options(yield_per=self._batch_size)
        )
        try:
            result = self._session.scalars(stmt)
        except SQLAlchemyError as exc:
            raise InfrastructureError("Audit log storage is unavailable") from exc
        yield from result


class AuditLog:
    """Append-only audit log for one contest.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session; appended rows share its transaction.
    contest_id : int
        Persisted contest the entries belong to.
    """

    def __init__(self, session: Session, contest_id: int) -> None:
        if contest_id is None:
            raise ValueError("Contest must be persisted before writing audit entries")
        self._session = session
        self._contest_id = contest_id

    def append(
        self,
        action: str,
        data: Optional[Mapping[str, Any]] = None,
        *,
        occurred_at: Optional[datetime] = None,
    ) -> AuditLogEntry:
        """Insert a new entry and flush it.

        Raises
        ------
        ValidationError
            If ``occurred_at`` precedes the latest entry of the contest.
        InfrastructureError
            If the storage layer rejects the write.
        """

        occurred_at = as_utc(occurred_at) or utcnow()
        self.require_not_before(occurred_at)
        entry = AuditLogEntry(
            contest_id=self._contest_id,
            action=action,
            data=dict(data) if data is not None else None,
            occurred_at=occurred_at,
        )
        try:
            self._session.add(entry)
            self._session.flush()
        except SQLAlchemyError as exc:
            raise InfrastructureError("Audit log storage is unavailable") from exc
        logger.debug("Audit entry %s recorded for contest %s", action, self._contest_id)
        return entry

    def latest_occurred_at(self) -> Optional[datetime]:
        """Return the timestamp of the contest's most recent entry, if any."""
        stmt = select(func.max(AuditLogEntry.occurred_at)).where(
            AuditLogEntry.contest_id == self._contest_id
        )
        try:
            return as_utc(self._session.scalar(stmt))
        except SQLAlchemyError as exc:
            raise InfrastructureError("Audit log storage is unavailable") from exc

    def require_not_before(self, when: datetime) -> None:
        """Raise :class:`ValidationError` if ``when`` precedes the latest entry.

        Entries are read back ordered by timestamp, so an event stamped
        earlier than one already recorded would be reported out of order.
        """
        latest = self.latest_occurred_at()
        if latest is not None and as_utc(when) < latest:
            raise ValidationError(
                f"{dt_iso(when)} precedes the last recorded event of contest "
                f"{self._contest_id} at {dt_iso(latest)}"
            )

    def entries(self) -> AuditEntries:
        return AuditEntries(self._session, self._contest_id)


__all__ = [
    "AuditEntries",
    "AuditLog",
    "COMMIT_PUBLISHED",
    "COMMIT_VERIFICATION_FAILED",
    "CONTEST_CREATED",
    "PARTICIPANT_JOINED",
    "PRIZE_CLAIMED",
    "REVEAL_PUBLISHED",
    "ROSTER_FROZEN",
    "WINNERS_FINALIZED",
]
