"""Tests for Derived and drop_repeats."""

import gc

import pytest

from reactant import (
    CircularDependencyError,
    Derived,
    cell,
    derived,
    drop_repeats,
    observer,
    transaction,
)
from reactant import _anchor, _tracking


class TestDerived:
    def test_lazy_eval(self):
        call_count = 0
        c = cell(5)

        def fn():
            nonlocal call_count
            call_count += 1
            return c.get() * 2

        d = Derived(fn)
        assert call_count == 0  # not yet evaluated
        assert d.read() == 10
        assert call_count == 1

    def test_caches_until_dirty(self):
        call_count = 0
        c = cell(5)

        def fn():
            nonlocal call_count
            call_count += 1
            return c.get() * 2

        d = Derived(fn)
        first = d.read()
        second = d.read()
        assert first is second
        assert call_count == 1  # cached, no re-eval

    def test_double_and_reset(self):
        calls = []
        c = cell(10)

        def doubled():
            calls.append(1)
            return c.get() * 2

        d = derived(doubled)
        assert d.read() == 20
        c.set(5)
        assert d.read() == 10
        assert len(calls) == 2

    def test_callable(self):
        c = cell(3)
        d = derived(lambda: c.get() + 1)
        assert d() == 4

    def test_invalidation_is_lazy(self):
        calls = []
        c = cell(1)
        d = derived(lambda: calls.append(1) or c.get())
        d.read()
        c.set(2)
        assert not d.valid
        assert len(calls) == 1  # marked dirty, not recomputed

    def test_repeated_invalidation_recomputes_once(self):
        calls = []
        c = cell(1)
        d = derived(lambda: calls.append(1) or c.get())
        d.read()
        c.set(2)
        c.set(3)
        assert d.read() == 3
        assert len(calls) == 2

    def test_propagation_is_synchronous(self):
        c = cell(3)
        doubled = derived(lambda: c.get() * 2)
        quadrupled = derived(lambda: doubled.read() * 2)
        assert quadrupled.read() == 12
        assert quadrupled.valid
        c.set(5)
        assert not doubled.valid
        assert not quadrupled.valid
        assert quadrupled.read() == 20

    def test_dynamic_dependencies(self):
        """Switching branches drops the edge to the unread cell."""
        flag = cell(True)
        a = cell(1)
        b = cell(2)

        d = derived(lambda: a.get() if flag.get() else b.get())
        assert d.read() == 1

        flag.set(False)
        assert d.read() == 2
        a.set(100)
        assert d.valid  # no longer depends on a
        b.set(3)
        assert not d.valid
        assert d.read() == 3

    def test_failure_is_not_cached(self):
        calls = []
        c = cell(-1)

        def checked():
            calls.append(1)
            if c.get() < 0:
                raise ValueError("negative")
            return c.get()

        d = derived(checked)
        with pytest.raises(ValueError):
            d.read()
        assert not d.valid
        with pytest.raises(ValueError):
            d.read()
        assert len(calls) == 2

    def test_failure_still_hears_upstream_changes(self):
        c = cell(-1)

        def checked():
            if c.get() < 0:
                raise ValueError("negative")
            return c.get()

        d = derived(checked)
        log = []

        def show():
            try:
                log.append(d.read())
            except ValueError:
                log.append("error")

        observer(show)
        c.set(4)
        assert log == ["error", 4]

    def test_failure_leaves_no_frame(self):
        d = derived(lambda: 1 / 0)
        with pytest.raises(ZeroDivisionError):
            d.read()
        assert _tracking.current_frame.get() is None

    def test_self_read_is_circular(self):
        d = None

        def loop():
            return d.read() + 1

        d = derived(loop)
        with pytest.raises(CircularDependencyError):
            d.read()

    def test_dispose(self):
        c = cell(5)
        d = derived(lambda: c.get() * 2)
        d.read()
        d.dispose()
        assert d._id not in _anchor.subscribers[c._id]
        c.set(10)
        assert d.read() == 20  # re-evaluates from scratch

    def test_propagates_to_observers(self):
        c = cell(5)
        d = derived(lambda: c.get() * 2)
        log = []
        observer(lambda: log.append(d.read()))
        assert log == [10]
        c.set(10)
        assert log == [10, 20]

    def test_unreferenced_is_released(self):
        c = cell(1)
        d = derived(lambda: c.get())
        d.read()
        d_id = d._id
        assert d_id in _anchor.subscribers[c._id]
        del d
        gc.collect()
        assert d_id not in _anchor.subscribers[c._id]
        assert d_id not in _anchor.states

    def test_repr(self):
        c = cell(5)

        def doubled():
            return c.get() * 2

        d = derived(doubled)
        assert "invalid" in repr(d)
        d.read()
        assert "cached=10" in repr(d)


class TestDerivedDecorator:
    def test_decorator_factory(self):
        c = cell(7)

        @derived
        def doubled():
            return c.get() * 2

        assert doubled.read() == 14
        c.set(3)
        assert doubled.read() == 6


class TestDropRepeats:
    def test_follows_source(self):
        c = cell(1)
        d = drop_repeats(c)
        assert d.read() == 1
        c.set(2)
        assert d.read() == 2

    def test_repeats_do_not_reach_readers(self):
        n = cell(1)
        parity = drop_repeats(derived(lambda: n.get() % 2))
        log = []
        observer(lambda: log.append(parity()))
        assert log == [1]
        n.set(3)
        assert log == [1]
        n.set(4)
        assert log == [1, 0]

    def test_destroy_stops_following(self):
        c = cell(1)
        d = drop_repeats(c)
        d.destroy()
        c.set(2)
        assert d.read() == 1

    def test_read_inside_transaction_is_current(self):
        n = cell(1)
        p = drop_repeats(n)
        with transaction():
            n.set(2)
            assert p.read() == 2
        assert p.read() == 2

    def test_reader_queued_before_forwarding_sees_consistent_values(self):
        n = cell(1)
        k = cell(0)
        p = drop_repeats(lambda: n.get() + 0 * k.get())
        log = []
        observer(lambda: log.append((n.get(), p())))
        k.set(5)  # re-subscribes the forwarding observer behind the reader
        n.set(2)
        assert log == [(1, 1), (2, 2)]

    def test_source_error_reaches_reader(self):
        n = cell(1)

        def checked():
            if n.get() < 0:
                raise ValueError("negative")
            return n.get()

        p = drop_repeats(derived(checked))
        assert p.read() == 1
        n.set(-1)
        with pytest.raises(ValueError):
            p.read()
        n.set(2)
        assert p.read() == 2

    def test_source_error_reaches_observers(self):
        n = cell(1)
        p = drop_repeats(derived(lambda: 10 // n.get()))
        log = []

        def show():
            try:
                log.append(p())
            except ZeroDivisionError:
                log.append("error")

        observer(show)
        n.set(0)
        n.set(5)
        assert log == [10, "error", 2]
