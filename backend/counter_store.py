"""Rate-limit counter storage backed by the ai_rate_limits table."""

from datetime import datetime
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from backend.exceptions import CounterStoreError
from backend.models import AIRateLimit, WindowType


class CounterStore(Protocol):
    """Counters keyed by (user_id, window_type, window_start)."""

    def get_count(self, user_id: str, window_type: WindowType, window_start: datetime) -> int:
        ...

    def increment(self, user_id: str, window_type: WindowType, window_start: datetime) -> int:
        ...


_UPSERT_BUILDERS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class SqlAlchemyCounterStore:
    """
    Counter store over SQLAlchemy sessions.

    Increments are a single INSERT ... ON CONFLICT DO UPDATE statement, so
    concurrent requests for the same window never lose a count.
    """

    def __init__(self, session_factory: sessionmaker):
        """
        Args:
            session_factory: Produces sessions bound to the application engine
        """
        self.session_factory = session_factory

    def get_count(self, user_id: str, window_type: WindowType, window_start: datetime) -> int:
        """Return the count for the window, 0 if no row exists."""
        try:
            with self.session_factory() as session:
                count = session.execute(
                    select(AIRateLimit.request_count).where(
                        AIRateLimit.user_id == user_id,
                        AIRateLimit.window_type == window_type,
                        AIRateLimit.window_start == window_start,
                    )
                ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise CounterStoreError(f"Failed to read {window_type.value} counter for {user_id}") from e
        return count or 0

    def increment(self, user_id: str, window_type: WindowType, window_start: datetime) -> int:
        """Create the window row at 1 or add 1 to it. Returns the new count."""
        try:
            with self.session_factory() as session, session.begin():
                stmt = self._upsert_statement(session, user_id, window_type, window_start)
                return session.execute(stmt).scalar_one()
        except SQLAlchemyError as e:
            raise CounterStoreError(f"Failed to increment {window_type.value} counter for {user_id}") from e

    @staticmethod
    def _upsert_statement(session: Session, user_id: str, window_type: WindowType, window_start: datetime):
        dialect = session.get_bind().dialect.name
        insert = _UPSERT_BUILDERS.get(dialect)
        if insert is None:
            raise CounterStoreError(f"Atomic counter upsert is not supported on '{dialect}'")

        stmt = insert(AIRateLimit).values(
            user_id=user_id,
            window_type=window_type,
            window_start=window_start,
            request_count=1,
        )
        return stmt.on_conflict_do_update(
            index_elements=["user_id", "window_type", "window_start"],
            set_={"request_count": AIRateLimit.request_count + 1},
        ).returning(AIRateLimit.request_count)
