"""Derived expressions — cached state computed from other reactive reads.

A Derived wraps a function. When read, it tracks which cells and derived
expressions the function reads and caches the result. When any of them
changes, the cache is invalidated and the invalidation is passed on to the
Derived's own readers right away. The function itself only runs again on
the next read.

A failed computation is never cached: the error goes to the reader and the
next read tries again.

All state lives in _anchor; instances are thin handles holding an _id.
"""

from __future__ import annotations

import weakref
from typing import Callable, Generic, TypeVar

from reactant import _anchor
from reactant._tracking import (
    begin_batch,
    end_batch,
    invalidate_subscribers,
    pop_frame,
    push_frame,
    track,
)
from reactant.cell import Cell
from reactant.errors import CircularDependencyError
from reactant.observer import Observer
from reactant.scope import isolate

T = TypeVar("T")

INVALID = "invalid"
COMPUTING = "computing"
CLEAN = "clean"
FAILED = "failed"

_UNSET = object()


class Derived(Generic[T]):
    """A lazily recomputed, cached value that tracks its own dependencies."""

    __slots__ = ("_id", "__weakref__")

    def __init__(self, fn: Callable[[], T]) -> None:
        self._id = _anchor.register(self)
        _anchor.bodies[self._id] = fn
        _anchor.cached_values[self._id] = _UNSET
        _anchor.states[self._id] = INVALID
        _anchor.dependencies[self._id] = set()

    @property
    def _fn(self) -> Callable[[], T]:
        return _anchor.bodies[self._id]

    @property
    def valid(self) -> bool:
        """True when read() would return the cache without running the body."""
        return _anchor.states[self._id] == CLEAN

    def read(self) -> T:
        """Return the value, recomputing first if anything upstream changed."""
        state = _anchor.states[self._id]
        if state == COMPUTING:
            raise CircularDependencyError(f"{self!r} read itself during evaluation")
        track(self._id)
        if state != CLEAN:
            return self._recompute()
        return _anchor.cached_values[self._id]

    def __call__(self) -> T:
        return self.read()

    def _recompute(self) -> T:
        """Run the body under a fresh frame, rebuilding dependencies."""
        _anchor.unlink_all(self._id)
        _anchor.states[self._id] = COMPUTING

        begin_batch()
        try:
            token = push_frame(self._id, derived=True)
            try:
                value = self._fn()
            except BaseException:
                _anchor.states[self._id] = FAILED
                _anchor.cached_values[self._id] = _UNSET
                raise
            finally:
                pop_frame(token)
            _anchor.cached_values[self._id] = value
            _anchor.states[self._id] = CLEAN
        finally:
            # Writes made by the body flush here, with the cache already settled.
            end_batch()
        return value

    def _invalidate(self) -> None:
        """Called when a dependency changed.

        Marks dirty and passes the invalidation on to our own readers.
        Already-dirty expressions have told their readers once; stop here.
        """
        if _anchor.states[self._id] == INVALID:
            return
        _anchor.states[self._id] = INVALID
        invalidate_subscribers(self._id)

    def dispose(self) -> None:
        """Disconnect from everything. The next read starts from scratch."""
        _anchor.unlink_all(self._id)
        for sub in _anchor.subscribers[self._id]:
            deps = _anchor.dependencies.get(sub)
            if deps is not None:
                deps.discard(self._id)
        _anchor.subscribers[self._id].clear()
        _anchor.states[self._id] = INVALID
        _anchor.cached_values[self._id] = _UNSET

    def __repr__(self) -> str:
        state = _anchor.states[self._id]
        val = _anchor.cached_values[self._id]
        shown = f"cached={val!r}" if state == CLEAN else state
        return f"Derived({getattr(self._fn, '__name__', self._fn)!r}, {shown})"


def derived(fn: Callable[[], T]) -> Derived[T]:
    """Decorator/factory to create a Derived from a function.

    Usage:
        price = cell(10)

        @derived
        def with_tax():
            return price.get() * 1.2

        with_tax()   # 12.0
        price.set(20)
        with_tax()   # 24.0
    """
    return Derived(fn)


class _Failure:
    """A source error held in place of a value until someone reads it."""

    __slots__ = ("error",)

    def __init__(self, error: Exception) -> None:
        self.error = error


class DropRepeats(Derived[T]):
    """A Derived that only changes when its source produces an unequal value.

    An internal observer re-reads the source on every change and writes an
    internal cell only when the value differs from the last one forwarded.
    Readers depend on that cell, so repeats never reach them.

    A read never waits for the flush: if the source changed and the internal
    observer is still queued, it runs first. A source error is held in the
    cell and raised to readers.
    """

    __slots__ = ("_observer",)

    def __init__(self, source: Callable[[], T] | Cell[T]) -> None:
        read_source = source.get if isinstance(source, Cell) else source
        latest: Cell = Cell(_UNSET)

        def forward() -> None:
            try:
                value = read_source()
            except Exception as exc:
                latest.set(_Failure(exc))
                return
            if value != isolate(latest.get):
                latest.set(value)

        def unwrap() -> T:
            value = latest.get()
            if isinstance(value, _Failure):
                raise value.error
            return value

        super().__init__(unwrap)
        self._observer = Observer(forward, label=f"drop_repeats({read_source!r})")
        weakref.finalize(self, self._observer.destroy)

    def read(self) -> T:
        # Catch up before registering the reader, so the reader is not
        # invalidated by our own forwarding write.
        self._observer._run_pending()
        return super().read()

    def destroy(self) -> None:
        """Stop following the source. The last forwarded value stays readable."""
        self._observer.destroy()


def drop_repeats(source: Callable[[], T] | Cell[T]) -> DropRepeats[T]:
    """Follow source, but only invalidate readers when its value changes.

    Usage:
        n = cell(1)
        parity = drop_repeats(derived(lambda: n.get() % 2))
        observer(lambda: log.append(parity()))
        n.set(3)   # parity still 1: the observer does not run
    """
    return DropRepeats(source)
