"""Observers — side effects triggered by reactive state changes.

Unlike Derived (which is lazy and only evaluates on read), an Observer
eagerly re-runs its body whenever something it read changes. It has no
value and no cache.

Two flavors:
- observer(fn): runs fn immediately, re-runs when anything it read changes.
- reaction(data_fn, effect_fn): tracks data_fn only, calls effect_fn with the
  new value when data_fn's result changes. effect_fn runs isolated.

All state lives in _anchor; instances are thin handles holding an _id.
"""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from reactant import _anchor
from reactant._tracking import (
    begin_batch,
    discard,
    end_batch,
    enqueue,
    flush,
    pop_frame,
    push_frame,
)
from reactant.scope import isolate

T = TypeVar("T")

IDLE = "idle"
PENDING = "pending"
SUSPENDED = "suspended"
DESTROYED = "destroyed"

logger = logging.getLogger("reactant.observer")

_UNSET = object()


class Observer:
    """A reactive side effect that re-runs when its dependencies change.

    The body runs once on construction to establish dependencies. If that
    first run raises, the observer is destroyed and the error propagates.
    Later failures happen inside a flush and go to the error handler; the
    observer stays subscribed and tries again on the next change.

    The runtime keeps the observer alive until destroy() is called, whether
    or not the caller holds on to it.
    """

    __slots__ = ("_id", "_label", "__weakref__")

    def __init__(self, fn: Callable[[], None], *, label: str | None = None) -> None:
        self._id = _anchor.register(self)
        self._label = label or getattr(fn, "__name__", repr(fn))
        _anchor.bodies[self._id] = fn
        _anchor.dependencies[self._id] = set()
        _anchor.states[self._id] = IDLE
        _anchor.pinned[self._id] = self
        try:
            self._execute()
        except BaseException:
            self.destroy()
            raise

    @property
    def _fn(self) -> Callable[[], None]:
        return _anchor.bodies[self._id]

    @property
    def label(self) -> str:
        return self._label

    @property
    def suspended(self) -> bool:
        return _anchor.states.get(self._id) == SUSPENDED

    @property
    def destroyed(self) -> bool:
        return _anchor.states.get(self._id, DESTROYED) == DESTROYED

    def _execute(self) -> None:
        """Run the body under a fresh frame, re-tracking dependencies."""
        _anchor.unlink_all(self._id)
        _anchor.states[self._id] = IDLE

        begin_batch()
        try:
            token = push_frame(self._id)
            try:
                self._fn()
            finally:
                pop_frame(token)
        finally:
            end_batch()

    def _invalidate(self) -> None:
        """Called when a dependency changed. Queues at most once per pass."""
        if _anchor.states[self._id] != IDLE:
            return
        _anchor.states[self._id] = PENDING
        enqueue(self)

    def _run_pending(self) -> None:
        """Run now if queued. Skips observers stopped since queuing.

        Called by the scheduler, and by readers that cannot wait for it.
        """
        if _anchor.states.get(self._id) != PENDING:
            return
        discard(self)
        self._execute()

    def suspend(self) -> None:
        """Stop reacting. Drops all subscriptions until resume()."""
        if self.destroyed:
            return
        _anchor.unlink_all(self._id)
        discard(self)
        _anchor.states[self._id] = SUSPENDED
        logger.debug("Suspended %r", self)

    def resume(self) -> None:
        """Run again to re-establish dependencies after suspend()."""
        if not self.suspended:
            return
        _anchor.states[self._id] = PENDING
        enqueue(self)
        logger.debug("Resumed %r", self)
        flush()

    def destroy(self) -> None:
        """Stop this observer for good. Disconnects from all dependencies."""
        if self.destroyed:
            return
        _anchor.unlink_all(self._id)
        discard(self)
        _anchor.states[self._id] = DESTROYED
        _anchor.pinned.pop(self._id, None)
        logger.debug("Destroyed %r", self)

    def __repr__(self) -> str:
        state = _anchor.states.get(self._id, DESTROYED)
        return f"Observer({self._label!r}, {state})"


def observer(fn: Callable[[], None], *, label: str | None = None) -> Observer:
    """Run fn immediately, then re-run whenever anything it reads changes.

    Returns the Observer (call .destroy() to stop).

    Usage:
        counter = cell(0)
        log = []

        obs = observer(lambda: log.append(counter.get()))
        # log == [0], ran immediately

        counter.set(1)
        # log == [0, 1], re-ran because counter changed

        obs.destroy()
        counter.set(2)
        # log == [0, 1], stopped
    """
    return Observer(fn, label=label)


def reaction(
    data_fn: Callable[[], T],
    effect_fn: Callable[[T], None],
    *,
    fire_immediately: bool = False,
) -> Observer:
    """Track data_fn; call effect_fn when its result changes.

    Unlike observer(), effect_fn only fires when data_fn's *return value*
    changes, and nothing effect_fn reads becomes a dependency.

    Returns the underlying Observer (call .destroy() to stop).

    Usage:
        first = cell("Alice")
        last = cell("Smith")

        effects = []
        r = reaction(
            lambda: f"{first.get()} {last.get()}",
            effects.append,
        )
        # effects == [], data_fn ran to establish deps but the effect did not fire

        first.set("Bob")
        # effects == ["Bob Smith"]
    """
    last_value = _UNSET

    def track_and_fire() -> None:
        nonlocal last_value
        value = data_fn()
        if last_value is _UNSET:
            last_value = value
            if fire_immediately:
                isolate(effect_fn, value)
        elif value != last_value:
            last_value = value
            isolate(effect_fn, value)

    name = getattr(data_fn, "__name__", repr(data_fn))
    return Observer(track_and_fire, label=f"reaction({name})")
