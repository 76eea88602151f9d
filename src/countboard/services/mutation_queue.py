"""Ordered, debounced delivery of counter value changes.

Rapid requests against one counter (a user tapping +1 ten times in two
seconds) each become an independent durable write. This queue makes them
reach the store in the order they were issued, one at a time per counter,
while the local view reflects every request immediately.

Each counter id gets a lane, created lazily and dropped when idle: a FIFO
of pending updates, a debounce timer and at most one flush task. Lanes of
different counters never wait on each other.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from countboard.core.errors import CounterError, TransientStoreError
from countboard.core.settings import settings
from countboard.services.counters import AppendResult

logger = logging.getLogger(__name__)


class MutationBackend(Protocol):
    """Durable-write collaborator used by the queue."""

    async def append_mutation(self, counter_id: int, value: float) -> AppendResult: ...

    async def fetch_counter_value(self, counter_id: int) -> float: ...


class ValueState(str, Enum):
    """Whether the local value is confirmed by the store."""

    AUTHORITATIVE = "authoritative"
    PENDING = "optimistic-pending"


@dataclass(frozen=True)
class OptimisticValue:
    """Value shown locally for a counter."""

    value: float
    state: ValueState


@dataclass(frozen=True)
class QueuedUpdate:
    """One requested value change awaiting delivery."""

    counter_id: int
    requested_value: float


@dataclass(frozen=True)
class DeliveryFailure:
    """Reported when a counter's queue gives up on a write."""

    counter_id: int
    error: Exception
    failed: QueuedUpdate
    abandoned: tuple[QueuedUpdate, ...]
    reconciled_value: float | None


@dataclass
class _CounterLane:
    pending: deque[QueuedUpdate] = field(default_factory=deque)
    flushing: bool = False
    timer: asyncio.TimerHandle | None = None
    task: asyncio.Task[None] | None = None

    @property
    def idle(self) -> bool:
        return not self.pending and not self.flushing and self.timer is None


class MutationQueue:
    """Per-counter serialized delivery with optimistic local state."""

    def __init__(
        self,
        backend: MutationBackend,
        *,
        debounce_seconds: float | None = None,
        max_attempts: int | None = None,
        backoff_base_seconds: float | None = None,
        backoff_max_seconds: float | None = None,
        on_failure: Callable[[DeliveryFailure], None] | None = None,
    ) -> None:
        self.backend = backend
        self.debounce_seconds = (
            settings.mutation_debounce_seconds if debounce_seconds is None else debounce_seconds
        )
        self.max_attempts = max(1, max_attempts or settings.mutation_max_attempts)
        self.backoff_base_seconds = (
            settings.mutation_backoff_base_seconds
            if backoff_base_seconds is None
            else backoff_base_seconds
        )
        self.backoff_max_seconds = (
            settings.mutation_backoff_max_seconds
            if backoff_max_seconds is None
            else backoff_max_seconds
        )
        self.on_failure = on_failure
        self._lanes: dict[int, _CounterLane] = {}
        self._values: dict[int, OptimisticValue] = {}
        self._failures: dict[int, DeliveryFailure] = {}
        self._online = asyncio.Event()
        self._online.set()

    # --- local view -------------------------------------------------------------

    def value(self, counter_id: int) -> OptimisticValue | None:
        """Return the locally displayed value for a counter, if known."""
        return self._values.get(counter_id)

    def seed(self, counter_id: int, value: float) -> None:
        """Record a value read from the store as authoritative."""
        self._values[counter_id] = OptimisticValue(value, ValueState.AUTHORITATIVE)

    def last_failure(self, counter_id: int) -> DeliveryFailure | None:
        """Return the most recent delivery failure for a counter."""
        return self._failures.get(counter_id)

    def pending(self, counter_id: int) -> tuple[QueuedUpdate, ...]:
        """Return the updates still waiting for delivery, oldest first."""
        lane = self._lanes.get(counter_id)
        return tuple(lane.pending) if lane else ()

    # --- connectivity -------------------------------------------------------------

    @property
    def online(self) -> bool:
        return self._online.is_set()

    def set_online(self, online: bool) -> None:
        """Pause or resume delivery. Requests keep queuing while offline."""
        if online == self.online:
            return
        if online:
            logger.info("Connectivity restored; resuming %d counter queues", len(self._lanes))
            self._online.set()
        else:
            logger.info("Connectivity lost; deferring counter writes")
            self._online.clear()

    # --- submission ---------------------------------------------------------------

    def request_update(self, counter_id: int, new_value: float) -> None:
        """Show ``new_value`` now and queue its durable write.

        Fire-and-forget: failures surface later through ``on_failure`` and
        ``last_failure``. Must be called from a running event loop.
        """
        loop = asyncio.get_running_loop()
        self._values[counter_id] = OptimisticValue(new_value, ValueState.PENDING)
        self._failures.pop(counter_id, None)

        lane = self._lanes.setdefault(counter_id, _CounterLane())
        lane.pending.append(QueuedUpdate(counter_id, new_value))

        if lane.timer is not None:
            lane.timer.cancel()
        lane.timer = loop.call_later(self.debounce_seconds, self._on_debounce, counter_id)

    def _on_debounce(self, counter_id: int) -> None:
        lane = self._lanes.get(counter_id)
        if lane is None:
            return
        lane.timer = None
        if lane.idle:
            # A running flush already took everything this timer was for.
            del self._lanes[counter_id]
            return
        self._start_flush(counter_id, lane)

    def _start_flush(self, counter_id: int, lane: _CounterLane) -> None:
        if lane.flushing or not lane.pending:
            return
        lane.flushing = True
        lane.task = asyncio.get_running_loop().create_task(self._flush(counter_id, lane))

    # --- delivery -------------------------------------------------------------------

    async def _flush(self, counter_id: int, lane: _CounterLane) -> None:
        try:
            while lane.pending:
                await self._online.wait()
                update = lane.pending.popleft()
                try:
                    result = await self._deliver(update)
                except CounterError as exc:
                    await self._fail(counter_id, lane, update, exc)
                    return
                except Exception as exc:
                    logger.exception("Unexpected error writing counter %s", counter_id)
                    await self._fail(counter_id, lane, update, exc)
                    return
                self._acknowledge(counter_id, lane, result)
        finally:
            lane.flushing = False
            lane.task = None
            self._after_flush(counter_id, lane)

    async def _deliver(self, update: QueuedUpdate) -> AppendResult:
        attempt = 1
        while True:
            try:
                result = await self.backend.append_mutation(
                    update.counter_id, update.requested_value
                )
            except TransientStoreError as exc:
                if attempt >= self.max_attempts:
                    raise
                delay = self._backoff_delay(attempt)
                logger.warning(
                    "Transient failure writing counter %s (attempt %d/%d), retrying in %.2fs: %s",
                    update.counter_id,
                    attempt,
                    self.max_attempts,
                    delay,
                    exc,
                )
                attempt += 1
                await asyncio.sleep(delay)
                await self._online.wait()
                continue
            logger.debug(
                "Delivered value %s to counter %s", result.accepted_value, update.counter_id
            )
            return result

    def _backoff_delay(self, attempt: int) -> float:
        return min(self.backoff_base_seconds * (2 ** (attempt - 1)), self.backoff_max_seconds)

    def _acknowledge(self, counter_id: int, lane: _CounterLane, result: AppendResult) -> None:
        if lane.pending:
            # Newer requests are still queued; keep showing the latest one.
            return
        self._values[counter_id] = OptimisticValue(
            result.accepted_value, ValueState.AUTHORITATIVE
        )

    async def _fail(
        self,
        counter_id: int,
        lane: _CounterLane,
        failed: QueuedUpdate,
        error: Exception,
    ) -> None:
        abandoned = tuple(lane.pending)
        lane.pending.clear()
        if lane.timer is not None:
            lane.timer.cancel()
            lane.timer = None
        logger.warning(
            "Write of %s to counter %s failed; abandoning %d queued update(s): %s",
            failed.requested_value,
            counter_id,
            len(abandoned),
            error,
        )

        reconciled = await self._reconcile(counter_id, lane)
        failure = DeliveryFailure(
            counter_id=counter_id,
            error=error,
            failed=failed,
            abandoned=abandoned,
            reconciled_value=reconciled,
        )
        self._failures[counter_id] = failure
        if self.on_failure is not None:
            self.on_failure(failure)

    async def _reconcile(self, counter_id: int, lane: _CounterLane) -> float | None:
        try:
            value = await self.backend.fetch_counter_value(counter_id)
        except CounterError as exc:
            logger.error("Could not reconcile counter %s after failed write: %s", counter_id, exc)
            return None
        except Exception:
            logger.exception("Unexpected error reconciling counter %s", counter_id)
            return None
        if lane.pending:
            # The user issued new requests while we were re-reading; those win.
            logger.info(
                "Counter %s re-read as %s; newer local requests pending", counter_id, value
            )
            return value
        self._values[counter_id] = OptimisticValue(value, ValueState.AUTHORITATIVE)
        logger.info("Counter %s reconciled to authoritative value %s", counter_id, value)
        return value

    def _after_flush(self, counter_id: int, lane: _CounterLane) -> None:
        if lane.pending and lane.timer is None:
            # Requests arrived while the loop was winding down; nothing else
            # will start a flush for them.
            self._start_flush(counter_id, lane)
        elif lane.idle and self._lanes.get(counter_id) is lane:
            del self._lanes[counter_id]

    # --- lifecycle --------------------------------------------------------------------

    async def drain(self) -> None:
        """Deliver everything queued now, skipping debounce, and wait for it.

        Blocks while offline until connectivity returns.
        """
        while self._lanes:
            tasks: list[asyncio.Task[None]] = []
            for counter_id, lane in list(self._lanes.items()):
                if lane.timer is not None:
                    lane.timer.cancel()
                    lane.timer = None
                self._start_flush(counter_id, lane)
                if lane.task is not None:
                    tasks.append(lane.task)
                elif lane.idle:
                    self._lanes.pop(counter_id, None)
            if not tasks:
                break
            await asyncio.gather(*tasks)

    async def close(self) -> None:
        """Cancel timers and in-flight flushes without delivering what is left."""
        for lane in self._lanes.values():
            if lane.timer is not None:
                lane.timer.cancel()
                lane.timer = None
            if lane.task is not None:
                lane.task.cancel()
        tasks = [lane.task for lane in self._lanes.values() if lane.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._lanes.clear()
