"""Database type compatibility layer for PostgreSQL and SQLite."""

from datetime import datetime, timezone
from typing import Any, Optional, Type

from sqlalchemy import DateTime, TypeDecorator


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetime on every backend.

    SQLite drops tzinfo on the way out; values are re-tagged as UTC so
    comparisons with aware datetimes keep working.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> Optional[datetime]:
        """Process value before binding to database."""
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Naive datetimes are not accepted; use UTC")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: Any, dialect: Any) -> Optional[datetime]:
        """Process value when loading from database."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def python_type(self) -> Type[datetime]:
        """Python type."""
        return datetime
