"""Value cells — state that tracks its readers.

When a Cell is read inside a Derived or Observer evaluation, the dependency
is registered automatically. When the Cell is written, every dependent is
invalidated before set() returns, and queued observers run once the
outermost write scope closes.

There is no equality check on write: every set() is a change. Use
drop_repeats() where readers should only hear about distinct values.

All state lives in _anchor; instances are thin handles holding an _id.
"""

from __future__ import annotations

from typing import Generic, Iterator, TypeVar

from reactant import _anchor
from reactant._tracking import (
    begin_batch,
    check_reentrant,
    end_batch,
    invalidate_subscribers,
    is_tracking,
    track,
)

T = TypeVar("T")
KT = TypeVar("KT")
VT = TypeVar("VT")

_MISSING = object()


class Cell(Generic[T]):
    """A single mutable value with automatic dependency tracking."""

    __slots__ = ("_id", "__weakref__")

    def __init__(self, value: T) -> None:
        self._id = _anchor.register(self)
        _anchor.values[self._id] = value

    def get(self) -> T:
        """Read the value. If inside a tracked evaluation, registers the dependency."""
        track(self._id)
        return _anchor.values[self._id]

    def set(self, value: T) -> None:
        """Replace the value and invalidate everything that read it.

        Raises ReentrantMutationError, without writing, if that would
        invalidate a derived expression that is being evaluated right now.
        """
        check_reentrant(self._id)
        begin_batch()
        try:
            _anchor.values[self._id] = value
            invalidate_subscribers(self._id)
        finally:
            end_batch()

    def __repr__(self) -> str:
        return f"Cell({_anchor.values[self._id]!r})"


def cell(initial: T) -> Cell[T]:
    """Create a Cell holding initial.

    Usage:
        count = cell(0)
        count.get()   # 0
        count.set(1)
    """
    return Cell(initial)


class CellDict(Generic[KT, VT]):
    """A dict of per-key cells.

    Reading one key only depends on that key. Iteration, len(), keys(),
    values() and items() also depend on the key set, which changes when a
    key is added or removed. A tracked read of a missing key still registers
    it, so a later insertion invalidates the reader; untracked reads of
    missing keys leave nothing behind.
    """

    __slots__ = ("_cells", "_keyset")

    def __init__(self, data: dict[KT, VT] | None = None) -> None:
        self._cells: dict[KT, Cell] = {}
        self._keyset: Cell[None] = Cell(None)
        if data:
            for key, value in data.items():
                self._cells[key] = Cell(value)

    def _cell(self, key: KT) -> Cell:
        c = self._cells.get(key)
        if c is None:
            c = self._cells[key] = Cell(_MISSING)
        return c

    def _read(self, key: KT) -> object:
        """Tracked read of one key. Placeholders only exist for readers."""
        c = self._cells.get(key)
        if c is None:
            if not is_tracking():
                return _MISSING
            c = self._cell(key)
        return c.get()

    def _prune(self, key: KT) -> None:
        """Forget a missing key once nothing depends on it."""
        c = self._cells.get(key)
        if (
            c is not None
            and _anchor.values[c._id] is _MISSING
            and not _anchor.subscribers[c._id]
        ):
            del self._cells[key]

    def _present(self) -> list[KT]:
        return [k for k, c in self._cells.items() if _anchor.values[c._id] is not _MISSING]

    # --- Read operations (track) ---

    def __getitem__(self, key: KT) -> VT:
        value = self._read(key)
        if value is _MISSING:
            raise KeyError(key)
        return value

    def get(self, key: KT, default: VT | None = None) -> VT | None:
        value = self._read(key)
        return default if value is _MISSING else value

    def __contains__(self, key: KT) -> bool:
        return self._read(key) is not _MISSING

    def __len__(self) -> int:
        self._keyset.get()
        return len(self._present())

    def __iter__(self) -> Iterator[KT]:
        self._keyset.get()
        return iter(self._present())

    def __bool__(self) -> bool:
        return len(self) > 0

    def keys(self) -> list[KT]:
        self._keyset.get()
        return self._present()

    def values(self) -> list[VT]:
        return [self._cells[k].get() for k in self.keys()]

    def items(self) -> list[tuple[KT, VT]]:
        return [(k, self._cells[k].get()) for k in self.keys()]

    # --- Write operations (invalidate) ---

    def __setitem__(self, key: KT, value: VT) -> None:
        c = self._cell(key)
        added = _anchor.values[c._id] is _MISSING
        begin_batch()
        try:
            c.set(value)
            if added:
                self._keyset.set(None)
        finally:
            end_batch()

    def __delitem__(self, key: KT) -> None:
        c = self._cells.get(key)
        if c is None or _anchor.values[c._id] is _MISSING:
            raise KeyError(key)
        begin_batch()
        try:
            c.set(_MISSING)
            self._keyset.set(None)
        finally:
            end_batch()
        self._prune(key)

    def pop(self, key: KT, *default: VT) -> VT:
        c = self._cells.get(key)
        if c is None or _anchor.values[c._id] is _MISSING:
            if default:
                return default[0]
            raise KeyError(key)
        value = _anchor.values[c._id]
        del self[key]
        return value

    def update(self, other: dict[KT, VT] | None = None, **kwargs: VT) -> None:
        """Write several keys; observers run once afterwards."""
        begin_batch()
        try:
            if other:
                for key, value in other.items():
                    self[key] = value
            for key, value in kwargs.items():
                self[key] = value
        finally:
            end_batch()

    def setdefault(self, key: KT, default: VT | None = None) -> VT:
        c = self._cell(key)
        if _anchor.values[c._id] is _MISSING:
            self[key] = default
        return c.get()

    def clear(self) -> None:
        begin_batch()
        try:
            for key in self._present():
                del self[key]
        finally:
            end_batch()
        for key in list(self._cells):
            self._prune(key)

    def __repr__(self) -> str:
        data = {k: _anchor.values[self._cells[k]._id] for k in self._present()}
        return f"CellDict({data!r})"
