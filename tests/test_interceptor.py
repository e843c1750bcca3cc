from __future__ import annotations

import asyncio

import pytest
from combinators import lift as L

from encore import idempotency as I
from encore._log import current_seq

from tests.helpers import (
    Ledger,
    LedgerDown,
    PointsBalance,
    RecordingStore,
    add_points,
    unwrap_error,
    unwrap_ok,
)

PointsResult = I.OperationResult[PointsBalance]


def _interceptor(store: I.Store, policy: I.Policy | None = None) -> I.Interceptor[PointsResult]:
    builder = I.intercept(store).response(PointsResult)
    if policy is not None:
        builder = builder.policy(policy)
    return builder.build()


# ═══════════════════════════════════════════════════════════════════════════════
# Execute → replay
# ═══════════════════════════════════════════════════════════════════════════════


async def test_first_call_executes_and_second_replays(interceptor, ledger: Ledger, store):
    request = add_points("abc123")

    first = unwrap_ok(await interceptor.invoke(request, ledger.add_points))
    second = unwrap_ok(await interceptor.invoke(request, ledger.add_points))

    assert ledger.calls == 1
    assert first.status == I.Status.OK
    assert first.seq == "abc123"
    assert first.data == PointsBalance("cus-1", 10)
    assert second == first
    assert isinstance(second.data, PointsBalance)
    assert not store.is_locked("addPoints-gift-abc123")


async def test_replay_ignores_changed_payload(interceptor, ledger: Ledger):
    await interceptor.invoke(add_points("abc123", points=10), ledger.add_points)
    replayed = unwrap_ok(
        await interceptor.invoke(add_points("abc123", points=999), ledger.add_points)
    )

    assert ledger.calls == 1
    assert replayed.data == PointsBalance("cus-1", 10)


async def test_distinct_seq_or_type_executes_again(interceptor, ledger: Ledger):
    await interceptor.invoke(add_points("s1"), ledger.add_points)
    await interceptor.invoke(add_points("s2"), ledger.add_points)
    await interceptor.invoke(add_points("s1", type="bonus"), ledger.add_points)

    assert ledger.calls == 3
    assert ledger.balances["cus-1"] == 30


# ═══════════════════════════════════════════════════════════════════════════════
# Duplicate in flight
# ═══════════════════════════════════════════════════════════════════════════════


async def test_concurrent_duplicate_is_rejected(interceptor, ledger: Ledger):
    ledger.gate = asyncio.Event()
    request = I.OperationRequest(name="redeem", type="", seq="xyz", payload=add_points("xyz").payload)

    async def first_call():
        return await interceptor.invoke(request, ledger.add_points)

    task = asyncio.create_task(first_call())
    await ledger.entered.wait()

    rejected = unwrap_ok(await interceptor.invoke(request, ledger.add_points))

    ledger.gate.set()
    executed = unwrap_ok(await task)

    assert ledger.calls == 1
    assert rejected.status == I.Status.DUPLICATE_IDEMPOTENT
    assert rejected.error == I.DUPLICATE_MESSAGE
    assert rejected.is_duplicate
    assert executed.status == I.Status.OK
    assert executed.seq == "xyz"


async def test_burst_of_duplicates_executes_once(interceptor, ledger: Ledger):
    ledger.gate = asyncio.Event()
    request = add_points("burst")

    async def call():
        return await interceptor.invoke(request, ledger.add_points)

    async def rejections_settled():
        while sum(t.done() for t in tasks) < 9:
            await asyncio.sleep(0.001)

    tasks = [asyncio.create_task(call()) for _ in range(10)]
    await ledger.entered.wait()
    await asyncio.wait_for(rejections_settled(), timeout=5)
    ledger.gate.set()
    responses = [unwrap_ok(r) for r in await asyncio.gather(*tasks)]

    assert ledger.calls == 1
    statuses = [r.status for r in responses]
    assert statuses.count(I.Status.OK) == 1
    assert statuses.count(I.Status.DUPLICATE_IDEMPOTENT) == 9


async def test_custom_rejection_factory_and_message(store, ledger: Ledger):
    await store.try_lock("addPoints-gift-held", None)
    interceptor = (
        I.intercept(store)
        .response(PointsResult)
        .policy(I.Policy().with_duplicate_message("already processing").with_duplicate_status(409))
        .reject(lambda status, message: I.OperationResult(status=status, error=f"[{message}]"))
        .build()
    )

    rejected = unwrap_ok(await interceptor.invoke(add_points("held"), ledger.add_points))

    assert ledger.calls == 0
    assert rejected.status == 409
    assert rejected.error == "[already processing]"
    assert store.is_locked("addPoints-gift-held")


# ═══════════════════════════════════════════════════════════════════════════════
# Blank seq
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.parametrize("seq", [None, "", "  "])
async def test_blank_seq_bypasses_the_store(recording: RecordingStore, ledger: Ledger, seq):
    interceptor = _interceptor(recording.as_store())
    request = add_points(seq)

    first = unwrap_ok(await interceptor.invoke(request, ledger.add_points))
    second = unwrap_ok(await interceptor.invoke(request, ledger.add_points))

    assert ledger.calls == 2
    assert recording.calls == []
    assert first.seq is None
    assert second.data == PointsBalance("cus-1", 20)


async def test_blank_seq_returns_operation_error_unchanged(recording: RecordingStore, ledger: Ledger):
    interceptor = _interceptor(recording.as_store())

    error = unwrap_error(await interceptor.invoke(add_points(None), ledger.reject_points))

    assert error == "ledger rejected the operation"
    assert recording.calls == []


# ═══════════════════════════════════════════════════════════════════════════════
# Operation failure
# ═══════════════════════════════════════════════════════════════════════════════


async def test_failed_operation_keeps_lock(interceptor, ledger: Ledger, store):
    request = add_points("fail-1")

    error = unwrap_error(await interceptor.invoke(request, ledger.reject_points))
    retry = unwrap_ok(await interceptor.invoke(request, ledger.add_points))

    assert error == "ledger rejected the operation"
    assert store.is_locked("addPoints-gift-fail-1")
    assert retry.status == I.Status.DUPLICATE_IDEMPOTENT
    assert ledger.calls == 1


async def test_raised_exception_propagates_and_keeps_lock(interceptor, ledger: Ledger, store):
    with pytest.raises(LedgerDown, match="connection lost"):
        await interceptor.invoke(add_points("boom"), ledger.crash)

    assert store.is_locked("addPoints-gift-boom")


async def test_release_on_failure_allows_retry(store, ledger: Ledger):
    interceptor = _interceptor(store, I.Policy().with_release_on_failure())
    request = add_points("retry-me")

    unwrap_error(await interceptor.invoke(request, ledger.reject_points))
    with pytest.raises(LedgerDown):
        await interceptor.invoke(request, ledger.crash)
    executed = unwrap_ok(await interceptor.invoke(request, ledger.add_points))

    assert not store.is_locked("addPoints-gift-retry-me")
    assert executed.status == I.Status.OK
    assert ledger.calls == 3


async def test_invalidate_clears_stuck_lock(interceptor, ledger: Ledger):
    request = add_points("stuck")
    unwrap_error(await interceptor.invoke(request, ledger.reject_points))

    assert unwrap_ok(await interceptor.invalidate(request)) is True
    executed = unwrap_ok(await interceptor.invoke(request, ledger.add_points))

    assert executed.status == I.Status.OK
    assert unwrap_ok(await interceptor.invalidate(add_points(None))) is False


async def test_invalidate_reports_store_failure(recording: RecordingStore, ledger: Ledger):
    recording.failing.add("forget")
    interceptor = _interceptor(recording.as_store())

    error = unwrap_error(await interceptor.invalidate(add_points("s1")))

    assert isinstance(error, I.StoreUnavailableError)
    assert error.operation == "forget"
    assert error.key == "addPoints-gift-s1"


# ═══════════════════════════════════════════════════════════════════════════════
# Store failure
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.parametrize("operation", ["get_cached", "try_lock"])
async def test_store_failure_before_execution(recording: RecordingStore, ledger: Ledger, operation):
    recording.failing.add(operation)
    interceptor = _interceptor(recording.as_store())

    error = unwrap_error(await interceptor.invoke(add_points("s1"), ledger.add_points))

    assert isinstance(error, I.StoreUnavailableError)
    assert error.operation == operation
    assert error.key == "addPoints-gift-s1"
    assert ledger.calls == 0


async def test_store_failure_on_commit(recording: RecordingStore, ledger: Ledger):
    recording.failing.add("set_cached")
    interceptor = _interceptor(recording.as_store())

    error = unwrap_error(await interceptor.invoke(add_points("s1"), ledger.add_points))

    assert isinstance(error, I.StoreUnavailableError)
    assert error.operation == "set_cached"
    assert ledger.calls == 1
    assert recording.calls == ["get_cached", "try_lock", "set_cached"]
    assert recording.inner.is_locked("addPoints-gift-s1")


async def test_store_call_sequence_on_success(recording: RecordingStore, ledger: Ledger):
    interceptor = _interceptor(recording.as_store())

    await interceptor.invoke(add_points("s1"), ledger.add_points)
    await interceptor.invoke(add_points("s1"), ledger.add_points)

    assert recording.calls == ["get_cached", "try_lock", "set_cached", "unlock", "get_cached"]


async def test_unreadable_cached_response(store, interceptor, ledger: Ledger):
    await store.set_cached("addPoints-gift-s1", "{not json", None)

    error = unwrap_error(await interceptor.invoke(add_points("s1"), ledger.add_points))

    assert isinstance(error, I.StoreUnavailableError)
    assert error.operation == "get_cached"
    assert ledger.calls == 0


# ═══════════════════════════════════════════════════════════════════════════════
# Surface
# ═══════════════════════════════════════════════════════════════════════════════


async def test_wrap_binds_operation(interceptor, ledger: Ledger):
    add = interceptor.wrap(ledger.add_points)

    await add(add_points("w1"))
    await add(add_points("w1"))

    assert add.__name__ == "add_points"
    assert ledger.calls == 1


async def test_current_seq_is_visible_inside_operation(interceptor, ledger: Ledger):
    await interceptor.invoke(add_points("ctx-1"), ledger.add_points)

    assert ledger.seen_seqs == ["ctx-1"]
    assert current_seq() is None


async def test_lazy_operation_from_combinators(interceptor):
    calls = 0

    def grant(request: I.OperationRequest[object]):
        async def impl() -> PointsResult:
            nonlocal calls
            calls += 1
            return I.OperationResult(data=PointsBalance("cus-9", 5))

        return L.catching_async(impl, on_error=str)

    request = I.OperationRequest(name="grant", seq="lazy-1")
    first = unwrap_ok(await interceptor.invoke(request, grant))
    second = unwrap_ok(await interceptor.invoke(request, grant))

    assert calls == 1
    assert first == second
    assert first.seq == "lazy-1"


async def test_custom_key_function(store, ledger: Ledger):
    interceptor = (
        I.intercept(store)
        .response(PointsResult)
        .key(lambda r: f"points:{r.payload.cus_id}:{r.seq}")
        .build()
    )

    await interceptor.invoke(add_points("k1"), ledger.add_points)

    assert unwrap_ok(await store.get_cached("points:cus-1:k1")) is not None


async def test_builder_defaults(ledger: Ledger):
    interceptor = I.intercept().build()

    first = unwrap_ok(await interceptor.invoke(add_points("d1"), ledger.add_points))
    second = unwrap_ok(await interceptor.invoke(add_points("d1"), ledger.add_points))

    assert isinstance(interceptor.store, I.MemoryStore)
    assert ledger.calls == 1
    assert second.seq == first.seq == "d1"
    assert second.data == {"cus_id": "cus-1", "available": 10}


async def test_one_shot_graph_run(store, ledger: Ledger):
    spec = I.InterceptionSpec(
        request=add_points("one-shot"),
        key="addPoints-gift-one-shot",
        operation=ledger.add_points,
        store=store,
        policy=I.Policy(),
        codec=I.JsonCodec(PointsResult),
        reject=I.reject_with_result,
    )

    response = unwrap_ok(await I.run_interception(spec))

    assert response.seq == "one-shot"
    assert unwrap_ok(await store.get_cached("addPoints-gift-one-shot")) is not None


@pytest.mark.parametrize("blank", ["", "   "])
async def test_blank_cached_value_counts_as_miss(store, interceptor, ledger: Ledger, blank):
    await store.set_cached("addPoints-gift-e1", blank, None)

    executed = unwrap_ok(await interceptor.invoke(add_points("e1"), ledger.add_points))

    assert ledger.calls == 1
    assert executed.seq == "e1"
    assert executed.data == PointsBalance("cus-1", 10)


def test_request_fields_follow_name_type_seq_order():
    request = I.OperationRequest("addPoints", "gift", "abc")

    assert request.type == "gift"
    assert request.seq == "abc"
    assert I.key_for(request) == "addPoints-gift-abc"
