"""
Points Example — one ledger mutation per seq.

Run: uv run python examples/points_example.py
"""

import asyncio

from encore import configure_logging
from encore import idempotency as I
from encore.config import EncoreSettings
from examples._infra import Balance, FakeLedger, add_points, banner, run, show


ledger = FakeLedger()

interceptor = (
    I.intercept(I.MemoryStore())
    .response(I.OperationResult[Balance])
    .policy(I.Policy().with_lock_ttl(seconds=30).with_result_ttl(hours=24))
    .build()
)

add = interceptor.wrap(ledger.add_points)


# ═══════════════════════════════════════════════════════════════════════════════
# Demo
# ═══════════════════════════════════════════════════════════════════════════════


async def main() -> None:
    configure_logging(EncoreSettings(log_json=False, log_level="WARNING"))
    banner("Points idempotency")

    # 1. First submission — executes, response cached
    print("\n1. First submission (seq=abc123):")
    show(await add(add_points("abc123")))

    # 2. Retry — replayed, ledger untouched
    print("\n2. Retry (seq=abc123):")
    show(await add(add_points("abc123")))
    print(f"   ledger calls: {ledger.calls} (no new call!)")

    # 3. Concurrent duplicate — rejected while the first is in flight
    print("\n3. Concurrent duplicate (seq=xyz):")
    ledger.delay = 0.1
    first, second = await asyncio.gather(add(add_points("xyz")), add(add_points("xyz")))
    ledger.delay = 0.01
    show(first)
    show(second)

    # 4. No seq — no protection, executes every time
    print("\n4. No seq, submitted twice:")
    show(await add(add_points(None)))
    show(await add(add_points(None)))

    # 5. Failure — lock stays held, same seq is rejected afterwards
    print("\n5. Failed operation, then retry (seq=bad-1):")
    show(await add(add_points("bad-1", points=0)))
    show(await add(add_points("bad-1", points=5)))

    # 6. Operator clears the stuck key
    print("\n6. After invalidate (seq=bad-1):")
    await interceptor.invalidate(add_points("bad-1"))
    show(await add(add_points("bad-1", points=5)))

    print(f"\nSummary: {ledger.calls} ledger calls, balance={ledger.balances['cus-1']}")


if __name__ == "__main__":
    run(main)
