from __future__ import annotations

import pytest
import structlog

from encore import idempotency as I

from tests.helpers import Ledger, PointsBalance, RecordingStore


@pytest.fixture
def ledger() -> Ledger:
    return Ledger()


@pytest.fixture
def store() -> I.MemoryStore:
    return I.MemoryStore()


@pytest.fixture
def recording() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def interceptor(store: I.MemoryStore) -> I.Interceptor[I.OperationResult[PointsBalance]]:
    return (
        I.intercept(store)
        .response(I.OperationResult[PointsBalance])
        .build()
    )


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
