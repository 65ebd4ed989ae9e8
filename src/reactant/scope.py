"""Scopes — isolation of reads and batching of writes.

isolate() runs code without registering dependencies: reads inside it
return current values but never cause the enclosing consumer to re-run.

Wrapping writes in an @action or `with transaction()` holds back the flush
until the outermost scope exits, so observers see all the writes at once
instead of one at a time.
"""

from __future__ import annotations

import functools
from contextlib import contextmanager
from typing import Callable, Iterator, ParamSpec, TypeVar

from reactant._tracking import begin_batch, end_batch, pop_frame, push_frame

P = ParamSpec("P")
R = TypeVar("R")


@contextmanager
def isolated() -> Iterator[None]:
    """Context manager: reads in the block register no dependencies.

    Usage:
        @observer
        def log_total():
            with isolated():
                seen = counter.get()   # not a dependency
            total.get()                # a dependency
    """
    token = push_frame(None)
    try:
        yield
    finally:
        pop_frame(token)


def isolate(fn: Callable[P, R], *args: P.args, **kwargs: P.kwargs) -> R:
    """Call fn with dependency registration suppressed and return its result.

    Usage:
        count.set(isolate(count.get) + 1)
    """
    with isolated():
        return fn(*args, **kwargs)


def action(fn: Callable[P, R]) -> Callable[P, R]:
    """Decorator: batch all cell writes inside fn.

    Observers only run after fn returns, not during.

    Usage:
        a = cell(0)
        b = cell(0)

        @action
        def swap():
            x, y = a.get(), b.get()
            a.set(y)
            b.set(x)
            # observers see both writes at once
    """

    @functools.wraps(fn)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        begin_batch()
        try:
            return fn(*args, **kwargs)
        finally:
            end_batch()

    return wrapper


@contextmanager
def transaction() -> Iterator[None]:
    """Context manager for batching writes.

    Usage:
        with transaction():
            a.set(1)
            b.set(2)
            # observers run here, after both are set
    """
    begin_batch()
    try:
        yield
    finally:
        end_batch()
