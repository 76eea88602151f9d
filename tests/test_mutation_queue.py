# tests/test_mutation_queue.py
"""Tests for ordered, debounced counter write delivery."""

import asyncio
from collections import defaultdict
from datetime import UTC, datetime

import pytest

from countboard.core.errors import CounterError, DuplicateMutationError, TransientStoreError
from countboard.services.counters import AppendResult
from countboard.services.mutation_queue import (
    DeliveryFailure,
    MutationQueue,
    OptimisticValue,
    QueuedUpdate,
    ValueState,
)


class FakeBackend:
    """In-memory store that records the order and overlap of writes."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.stored: dict[int, float] = {}
        self.calls: list[tuple[int, float]] = []
        self.errors: dict[tuple[int, float], list[Exception]] = defaultdict(list)
        self.gates: dict[int, asyncio.Event] = {}
        self.in_flight: dict[int, int] = defaultdict(int)
        self.max_in_flight: dict[int, int] = defaultdict(int)
        self.fetches = 0

    def fail(self, counter_id: int, value: float, *errors: Exception) -> None:
        self.errors[(counter_id, value)].extend(errors)

    async def append_mutation(self, counter_id: int, value: float) -> AppendResult:
        self.in_flight[counter_id] += 1
        self.max_in_flight[counter_id] = max(
            self.max_in_flight[counter_id], self.in_flight[counter_id]
        )
        try:
            self.calls.append((counter_id, value))
            gate = self.gates.get(counter_id)
            if gate is not None:
                await gate.wait()
            await asyncio.sleep(self.delay)
            pending_errors = self.errors.get((counter_id, value))
            if pending_errors:
                raise pending_errors.pop(0)
            self.stored[counter_id] = value
            return AppendResult(accepted_value=value, timestamp=datetime.now(UTC))
        finally:
            self.in_flight[counter_id] -= 1

    async def fetch_counter_value(self, counter_id: int) -> float:
        self.fetches += 1
        return self.stored.get(counter_id, 0.0)


def make_queue(backend: FakeBackend, **kwargs) -> MutationQueue:
    kwargs.setdefault("debounce_seconds", 0.01)
    kwargs.setdefault("backoff_base_seconds", 0.0)
    kwargs.setdefault("backoff_max_seconds", 0.0)
    return MutationQueue(backend, **kwargs)


async def wait_for(predicate, timeout: float = 1.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


@pytest.mark.asyncio
async def test_writes_arrive_in_request_order() -> None:
    backend = FakeBackend(delay=0.001)
    queue = make_queue(backend)

    for value in (1.0, 2.0, 3.0, 4.0, 5.0):
        queue.request_update(7, value)
    await queue.drain()

    assert backend.calls == [(7, 1.0), (7, 2.0), (7, 3.0), (7, 4.0), (7, 5.0)]
    assert backend.stored[7] == 5.0
    assert queue.value(7) == OptimisticValue(5.0, ValueState.AUTHORITATIVE)


@pytest.mark.asyncio
async def test_local_value_updates_immediately() -> None:
    backend = FakeBackend()
    queue = make_queue(backend, debounce_seconds=10.0)
    queue.seed(7, 2.0)
    assert queue.value(7) == OptimisticValue(2.0, ValueState.AUTHORITATIVE)

    queue.request_update(7, 3.0)

    assert queue.value(7) == OptimisticValue(3.0, ValueState.PENDING)
    assert queue.pending(7) == (QueuedUpdate(7, 3.0),)
    assert backend.calls == []
    await queue.close()


@pytest.mark.asyncio
async def test_one_write_in_flight_per_counter() -> None:
    backend = FakeBackend(delay=0.01)
    queue = make_queue(backend, debounce_seconds=0.0)

    for value in range(1, 6):
        queue.request_update(7, float(value))
        await asyncio.sleep(0.003)
    await queue.drain()

    assert backend.max_in_flight[7] == 1
    assert [value for _, value in backend.calls] == [1.0, 2.0, 3.0, 4.0, 5.0]


@pytest.mark.asyncio
async def test_debounce_defers_delivery() -> None:
    backend = FakeBackend()
    queue = make_queue(backend, debounce_seconds=0.05)

    queue.request_update(7, 1.0)
    await asyncio.sleep(0.02)
    queue.request_update(7, 2.0)
    await asyncio.sleep(0.02)
    assert backend.calls == []

    await wait_for(lambda: backend.stored.get(7) == 2.0)
    assert backend.calls == [(7, 1.0), (7, 2.0)]


@pytest.mark.asyncio
async def test_counters_do_not_block_each_other() -> None:
    backend = FakeBackend()
    backend.gates[1] = asyncio.Event()
    queue = make_queue(backend)

    queue.request_update(1, 10.0)
    queue.request_update(2, 20.0)

    await wait_for(lambda: backend.stored.get(2) == 20.0)
    assert 1 not in backend.stored
    assert queue.value(2) == OptimisticValue(20.0, ValueState.AUTHORITATIVE)
    assert queue.value(1) == OptimisticValue(10.0, ValueState.PENDING)

    backend.gates[1].set()
    await queue.drain()
    assert backend.stored[1] == 10.0


@pytest.mark.asyncio
async def test_failure_abandons_rest_and_reconciles() -> None:
    backend = FakeBackend()
    backend.fail(7, 2.0, DuplicateMutationError("already recorded"))
    failures: list[DeliveryFailure] = []
    queue = make_queue(backend, on_failure=failures.append)

    for value in (1.0, 2.0, 3.0):
        queue.request_update(7, value)
    await queue.drain()

    assert backend.calls == [(7, 1.0), (7, 2.0)]
    assert queue.value(7) == OptimisticValue(1.0, ValueState.AUTHORITATIVE)
    assert len(failures) == 1
    failure = failures[0]
    assert failure.failed == QueuedUpdate(7, 2.0)
    assert failure.abandoned == (QueuedUpdate(7, 3.0),)
    assert failure.reconciled_value == 1.0
    assert isinstance(failure.error, DuplicateMutationError)
    assert queue.last_failure(7) is failure
    assert queue.pending(7) == ()


@pytest.mark.asyncio
async def test_unexpected_error_abandons_rest_and_reconciles() -> None:
    backend = FakeBackend()
    backend.fail(7, 2.0, ValueError("bad payload"))
    failures: list[DeliveryFailure] = []
    queue = make_queue(backend, on_failure=failures.append)

    for value in (1.0, 2.0, 3.0):
        queue.request_update(7, value)
    await queue.drain()

    assert backend.calls == [(7, 1.0), (7, 2.0)]
    assert backend.fetches == 1
    assert len(failures) == 1
    assert isinstance(failures[0].error, ValueError)
    assert failures[0].abandoned == (QueuedUpdate(7, 3.0),)
    assert queue.value(7) == OptimisticValue(1.0, ValueState.AUTHORITATIVE)


class BrokenReadBackend(FakeBackend):
    async def fetch_counter_value(self, counter_id: int) -> float:
        self.fetches += 1
        raise KeyError("value")


@pytest.mark.asyncio
async def test_unexpected_reconcile_error_still_reports_failure() -> None:
    backend = BrokenReadBackend()
    backend.fail(7, 1.0, CounterError("rejected"))
    failures: list[DeliveryFailure] = []
    queue = make_queue(backend, on_failure=failures.append)

    queue.request_update(7, 1.0)
    await queue.drain()

    assert backend.fetches == 1
    assert len(failures) == 1
    assert failures[0].reconciled_value is None
    assert queue.pending(7) == ()


@pytest.mark.asyncio
async def test_queue_recovers_after_failure() -> None:
    backend = FakeBackend()
    backend.fail(7, 1.0, CounterError("rejected"))
    queue = make_queue(backend)

    queue.request_update(7, 1.0)
    await queue.drain()
    assert queue.last_failure(7) is not None

    queue.request_update(7, 4.0)
    assert queue.last_failure(7) is None
    await queue.drain()

    assert backend.stored[7] == 4.0
    assert queue.value(7) == OptimisticValue(4.0, ValueState.AUTHORITATIVE)


@pytest.mark.asyncio
async def test_transient_errors_are_retried() -> None:
    backend = FakeBackend()
    backend.fail(7, 5.0, TransientStoreError("timeout"), TransientStoreError("timeout"))
    queue = make_queue(backend, max_attempts=3)

    queue.request_update(7, 5.0)
    await queue.drain()

    assert backend.calls == [(7, 5.0)] * 3
    assert backend.stored[7] == 5.0
    assert queue.last_failure(7) is None


@pytest.mark.asyncio
async def test_transient_errors_give_up_after_max_attempts() -> None:
    backend = FakeBackend()
    backend.stored[7] = 1.0
    backend.fail(7, 5.0, TransientStoreError("down"), TransientStoreError("down"))
    failures: list[DeliveryFailure] = []
    queue = make_queue(backend, max_attempts=2, on_failure=failures.append)

    queue.request_update(7, 5.0)
    await queue.drain()

    assert len(backend.calls) == 2
    assert isinstance(failures[0].error, TransientStoreError)
    assert queue.value(7) == OptimisticValue(1.0, ValueState.AUTHORITATIVE)


def test_backoff_is_capped() -> None:
    queue = MutationQueue(FakeBackend(), backoff_base_seconds=0.5, backoff_max_seconds=3.0)
    assert [queue._backoff_delay(n) for n in range(1, 6)] == [0.5, 1.0, 2.0, 3.0, 3.0]


@pytest.mark.asyncio
async def test_offline_requests_wait_for_connectivity() -> None:
    backend = FakeBackend()
    queue = make_queue(backend)
    queue.set_online(False)

    queue.request_update(7, 1.0)
    queue.request_update(7, 2.0)
    await asyncio.sleep(0.05)

    assert backend.calls == []
    assert queue.value(7) == OptimisticValue(2.0, ValueState.PENDING)

    queue.set_online(True)
    await queue.drain()
    assert backend.calls == [(7, 1.0), (7, 2.0)]
    assert queue.value(7) == OptimisticValue(2.0, ValueState.AUTHORITATIVE)


@pytest.mark.asyncio
async def test_drain_without_work_returns() -> None:
    queue = make_queue(FakeBackend())
    await asyncio.wait_for(queue.drain(), 0.5)


@pytest.mark.asyncio
async def test_close_drops_undelivered_updates() -> None:
    backend = FakeBackend()
    queue = make_queue(backend, debounce_seconds=10.0)

    queue.request_update(7, 1.0)
    await queue.close()
    await asyncio.sleep(0.02)

    assert backend.calls == []
    assert queue.pending(7) == ()


def test_request_update_requires_running_loop() -> None:
    queue = make_queue(FakeBackend())
    with pytest.raises(RuntimeError):
        queue.request_update(7, 1.0)
