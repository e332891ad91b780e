from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator

from .utils import as_utc


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime column that always round-trips as UTC.

    SQLite drops tzinfo on storage; values read back are re-tagged as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if dialect.name == "sqlite":
            return as_utc(value).replace(tzinfo=None)
        return as_utc(value)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        return as_utc(value)
