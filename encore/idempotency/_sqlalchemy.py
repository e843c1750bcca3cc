"""
SQLAlchemy integration — idempotency store on any async database.

Usage:
    1. Declare a table with IdempotencyMixin:

        class IdempotencyTable(Base, IdempotencyMixin):
            __tablename__ = "idempotency"

    2. Create store:

        store = SQLAlchemyStore(session_factory, model=IdempotencyTable)

    3. Use:

        interceptor = (
            I.intercept(store)
            .response(OperationResult[PointsBalance])
            .build()
        )

Lock acquisition is a conditional UPDATE (row exists, unlocked or lock
expired) followed by INSERT ... ON CONFLICT DO NOTHING. Both are single
statements, so exactly one concurrent caller sees rowcount == 1.
"""

from datetime import datetime, timedelta
from typing import Any, cast

import structlog
from kungfu import Error, Ok, Result
from sqlalchemy import Boolean, DateTime, String, Text, and_, delete, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from encore.idempotency._types import StoreUnavailableError

logger = structlog.get_logger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# Idempotency Mixin — add to your SQLAlchemy model
# ═══════════════════════════════════════════════════════════════════════════════


class IdempotencyMixin:
    """
    Mixin for the idempotency table.

    Adds columns:
    - idempotency_key: dedup key (primary key)
    - locked / locked_until: the in-flight lock and its optional expiry
    - response / response_expires_at: committed response and its TTL
    """

    idempotency_key: Mapped[str] = mapped_column(String(255), primary_key=True)

    locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    locked_until: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    response: Mapped[str | None] = mapped_column(Text, nullable=True)

    response_expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


_INSERTS: dict[str, Any] = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _expiry(ttl: timedelta | None) -> datetime | None:
    return datetime.now() + ttl if ttl else None


# ═══════════════════════════════════════════════════════════════════════════════
# SQLAlchemy Store
# ═══════════════════════════════════════════════════════════════════════════════


class SQLAlchemyStore:
    """
    Idempotency store for SQLAlchemy models with IdempotencyMixin.

    Note: supports PostgreSQL and SQLite (ON CONFLICT dialects).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        model: type[IdempotencyMixin],
    ) -> None:
        """
        Args:
            session_factory: SQLAlchemy async session factory
            model: Mapped class with IdempotencyMixin
        """
        self._session_factory = session_factory
        self._model: Any = model

    def _insert(self, session: AsyncSession) -> Any:
        dialect = session.get_bind().dialect.name
        insert = _INSERTS.get(dialect)
        if insert is None:
            raise NotImplementedError(f"No ON CONFLICT support for dialect {dialect!r}")
        return insert(self._model)

    def _failure(self, operation: str, key: str, e: Exception) -> StoreUnavailableError:
        logger.error(
            "sqlalchemy_store_call_failed",
            store_operation=operation,
            idempotency_key=key,
            error_type=type(e).__name__,
        )
        return StoreUnavailableError(
            message=f"Failed to {operation}: {e}",
            operation=operation,
            key=key,
            cause=e,
        )

    async def try_lock(
        self, key: str, ttl: timedelta | None
    ) -> Result[bool, StoreUnavailableError]:
        """Lock existing free row, or insert a locked one."""
        model = self._model
        now = datetime.now()
        try:
            async with self._session_factory() as session:
                stmt = (
                    update(model)
                    .where(
                        model.idempotency_key == key,
                        or_(
                            model.locked.is_(False),
                            and_(
                                model.locked_until.is_not(None),
                                model.locked_until <= now,
                            ),
                        ),
                    )
                    .values(locked=True, locked_until=_expiry(ttl))
                    .execution_options(synchronize_session=False)
                )
                cursor = cast(CursorResult[Any], await session.execute(stmt))
                if cursor.rowcount > 0:
                    await session.commit()
                    return Ok(True)

                insert = (
                    self._insert(session)
                    .values(idempotency_key=key, locked=True, locked_until=_expiry(ttl))
                    .on_conflict_do_nothing(index_elements=["idempotency_key"])
                )
                cursor = cast(CursorResult[Any], await session.execute(insert))
                await session.commit()
                return Ok(cursor.rowcount > 0)

        except Exception as e:
            return Error(self._failure("try_lock", key, e))

    async def unlock(self, key: str) -> Result[bool, StoreUnavailableError]:
        model = self._model
        try:
            async with self._session_factory() as session:
                stmt = (
                    update(model)
                    .where(model.idempotency_key == key, model.locked.is_(True))
                    .values(locked=False, locked_until=None)
                    .execution_options(synchronize_session=False)
                )
                cursor = cast(CursorResult[Any], await session.execute(stmt))
                await session.commit()
                return Ok(cursor.rowcount > 0)

        except Exception as e:
            return Error(self._failure("unlock", key, e))

    async def get_cached(self, key: str) -> Result[str | None, StoreUnavailableError]:
        model = self._model
        try:
            async with self._session_factory() as session:
                stmt = select(model.response, model.response_expires_at).where(
                    model.idempotency_key == key
                )
                row = (await session.execute(stmt)).one_or_none()

                if row is None:
                    return Ok(None)

                response, expires_at = row
                if expires_at is not None and datetime.now() >= expires_at:
                    return Ok(None)

                return Ok(response)

        except Exception as e:
            return Error(self._failure("get_cached", key, e))

    async def set_cached(
        self, key: str, value: str, ttl: timedelta | None
    ) -> Result[None, StoreUnavailableError]:
        """Upsert committed response; lock columns are left alone."""
        try:
            async with self._session_factory() as session:
                expires_at = _expiry(ttl)
                stmt = (
                    self._insert(session)
                    .values(
                        idempotency_key=key,
                        locked=False,
                        response=value,
                        response_expires_at=expires_at,
                    )
                    .on_conflict_do_update(
                        index_elements=["idempotency_key"],
                        set_={"response": value, "response_expires_at": expires_at},
                    )
                )
                await session.execute(stmt)
                await session.commit()
                return Ok(None)

        except Exception as e:
            return Error(self._failure("set_cached", key, e))

    async def forget(self, key: str) -> Result[bool, StoreUnavailableError]:
        model = self._model
        try:
            async with self._session_factory() as session:
                stmt = (
                    delete(model)
                    .where(model.idempotency_key == key)
                    .execution_options(synchronize_session=False)
                )
                cursor = cast(CursorResult[Any], await session.execute(stmt))
                await session.commit()
                return Ok(cursor.rowcount > 0)

        except Exception as e:
            return Error(self._failure("forget", key, e))


__all__ = (
    "IdempotencyMixin",
    "SQLAlchemyStore",
)
