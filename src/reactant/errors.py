"""Reactant error hierarchy.

All reactant-specific errors inherit from ReactantError for easy catching.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from reactant.observer import Observer


class ReactantError(Exception):
    """Base error for all reactant operations."""


class ComputationError(ReactantError):
    """An observer body failed during a flush.

    The original exception is chained as __cause__. Derived expressions
    never wrap: their failures reach the reader unchanged.
    """

    def __init__(self, consumer: Observer, error: BaseException) -> None:
        super().__init__(f"{consumer!r} failed: {error!r}")
        self.consumer = consumer
        self.error = error


class ReentrantMutationError(ReactantError):
    """A cell write would invalidate a derived expression mid-evaluation."""


class CircularDependencyError(ReactantError):
    """A derived expression read itself while being evaluated."""


class UnboundedPropagationWarning(UserWarning):
    """A flush kept producing new work past the configured pass threshold.

    Advisory only. The flush is not stopped: breaking the cycle (usually by
    wrapping the read half of a read-then-write in isolate) is up to the
    caller.
    """
