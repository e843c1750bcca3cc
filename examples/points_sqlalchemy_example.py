"""
Points over SQLAlchemy — locks and responses kept in a database table.

Run: uv run python examples/points_sqlalchemy_example.py
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from encore import idempotency as I
from examples._infra import Balance, FakeLedger, add_points, banner, run, show


# ═══════════════════════════════════════════════════════════════════════════════
# Database
# ═══════════════════════════════════════════════════════════════════════════════


class Base(DeclarativeBase):
    pass


class IdempotencyTable(Base, I.IdempotencyMixin):
    """One row per idempotency key: lock flag plus committed response."""

    __tablename__ = "points_idempotency"


async def create_database(
    url: str = "sqlite+aiosqlite:///:memory:",
) -> tuple[async_sessionmaker[AsyncSession], AsyncEngine]:
    """Create database and return (session_factory, engine)."""
    engine = create_async_engine(url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return async_sessionmaker(engine, expire_on_commit=False), engine


# ═══════════════════════════════════════════════════════════════════════════════
# Demo
# ═══════════════════════════════════════════════════════════════════════════════


async def main() -> None:
    banner("Points over SQLAlchemy")
    session_factory, engine = await create_database()
    ledger = FakeLedger()

    interceptor = (
        I.intercept(I.SQLAlchemyStore(session_factory, model=IdempotencyTable))
        .response(I.OperationResult[Balance])
        .policy(I.Policy().with_lock_ttl(minutes=1).with_release_on_failure())
        .build()
    )
    add = interceptor.wrap(ledger.add_points)

    print("\n1. Submit seq=db-1 twice:")
    show(await add(add_points("db-1")))
    show(await add(add_points("db-1")))

    print("\n2. Failure with release_on_failure, then retry (seq=db-2):")
    show(await add(add_points("db-2", points=0)))
    show(await add(add_points("db-2", points=20)))

    print(f"\nSummary: {ledger.calls} ledger calls, balance={ledger.balances['cus-1']}")
    await engine.dispose()


if __name__ == "__main__":
    run(main)
