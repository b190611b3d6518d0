# services/debounce.py
# Per-key debounced queues. Producers submit and return at once; a timer per key
# fires after `delay` seconds of quiet and hands the drained batch to on_flush.
from __future__ import annotations

import threading
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, Dict, Generic, Hashable, List, Optional, Protocol, TypeVar, Union

from _logging import log as _root_log

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")


class TimerHandle(Protocol):
    def start(self) -> None: ...
    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def thread_timer(delay: float, fn: Callable[[], None]) -> TimerHandle:
    t = threading.Timer(max(0.0, float(delay)), fn)
    t.daemon = True
    return t


class KeyState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    FLUSHING = "flushing"


class _Slot(Generic[T]):
    __slots__ = ("lock", "flush_lock", "queue", "timer", "generation", "flushing")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.flush_lock = threading.Lock()
        self.queue: Deque[T] = deque()
        self.timer: Optional[TimerHandle] = None
        self.generation = 0
        self.flushing = False

    def state(self) -> KeyState:
        if self.flushing:
            return KeyState.FLUSHING
        return KeyState.PENDING if self.timer is not None else KeyState.IDLE


class Debouncer(Generic[K, T]):
    """
    Idle -> Pending (timer armed) -> Flushing -> Idle, per key.

    - submit() while Pending replaces the timer, so the flush happens `delay`
      after the last event.
    - A flush drains the queue atomically; events arriving meanwhile stay
      queued and arm a fresh timer for the next cycle.
    - Flushes of one key never overlap; different keys are independent.
    """

    def __init__(
        self,
        name: str,
        on_flush: Callable[[K, List[T]], Any],
        *,
        delay: Union[float, Callable[[K], float]],
        timer_factory: Optional[TimerFactory] = None,
    ) -> None:
        self.name = name
        self.on_flush = on_flush
        self._delay = delay
        self._timer_factory: TimerFactory = timer_factory or thread_timer
        self._slots: Dict[K, _Slot[T]] = {}
        self._registry_lock = threading.Lock()
        self._stopped = False
        self._log = _root_log.child(name)

    def _slot(self, key: K) -> _Slot[T]:
        with self._registry_lock:
            slot = self._slots.get(key)
            if slot is None:
                slot = self._slots[key] = _Slot()
            return slot

    def delay_for(self, key: K) -> float:
        d = self._delay(key) if callable(self._delay) else self._delay
        try:
            return max(0.0, float(d))
        except (TypeError, ValueError):
            return 0.0

    # --- producer side -------------------------------------------------------

    def submit(self, key: K, item: T) -> None:
        if self._stopped:
            self._log.debug(f"{key}: debouncer stopped, event dropped")
            return
        slot = self._slot(key)
        delay = self.delay_for(key)
        with slot.lock:
            slot.queue.append(item)
            self._arm(key, slot, delay)
            size = len(slot.queue)
        self._log.debug(f"{key}: queued ({size} pending, flush in {delay:g}s)")

    def _arm(self, key: K, slot: _Slot[T], delay: float) -> None:
        # caller holds slot.lock
        if slot.timer is not None:
            slot.timer.cancel()
        slot.generation += 1
        gen = slot.generation
        slot.timer = self._timer_factory(delay, lambda: self._fire(key, gen))
        slot.timer.start()

    # --- consumer side -------------------------------------------------------

    def _fire(self, key: K, gen: int) -> None:
        slot = self._slot(key)
        with slot.lock:
            if gen != slot.generation:
                return
            slot.timer = None
        self._drain_and_flush(key, slot)

    def flush(self, key: K) -> int:
        """Flush key now, ignoring its timer. Returns the number of items handed over."""
        slot = self._slot(key)
        with slot.lock:
            if slot.timer is not None:
                slot.timer.cancel()
                slot.timer = None
            slot.generation += 1
        return self._drain_and_flush(key, slot)

    def flush_all(self) -> int:
        with self._registry_lock:
            keys = list(self._slots)
        return sum(self.flush(k) for k in keys)

    def _drain_and_flush(self, key: K, slot: _Slot[T]) -> int:
        with slot.flush_lock:
            with slot.lock:
                batch = list(slot.queue)
                slot.queue.clear()
                slot.flushing = True
            try:
                if batch:
                    self._log.info(f"{key}: flushing {len(batch)} change(s)")
                    self.on_flush(key, batch)
            except Exception as e:
                self._log.error(f"{key}: flush failed: {e}")
            finally:
                with slot.lock:
                    slot.flushing = False
            return len(batch)

    # --- introspection / lifecycle ------------------------------------------

    def state(self, key: K) -> KeyState:
        with self._registry_lock:
            slot = self._slots.get(key)
        if slot is None:
            return KeyState.IDLE
        with slot.lock:
            return slot.state()

    def pending(self, key: K) -> int:
        with self._registry_lock:
            slot = self._slots.get(key)
        if slot is None:
            return 0
        with slot.lock:
            return len(slot.queue)

    def stop(self, *, flush: bool = False) -> None:
        """Cancel every armed timer; optionally flush what is queued first."""
        if flush:
            self.flush_all()
        self._stopped = True
        with self._registry_lock:
            slots = list(self._slots.values())
        for slot in slots:
            with slot.lock:
                if slot.timer is not None:
                    slot.timer.cancel()
                    slot.timer = None
                slot.generation += 1
