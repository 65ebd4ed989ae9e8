"""Dependency tracking and scheduling — the heart of reactant.

Tracking: a linked stack of evaluation frames lives in a contextvar. When a
Derived or Observer executes it pushes a frame naming itself; any Cell.get()
or Derived.read() underneath registers an edge to the top frame. isolate()
pushes a barrier frame with no consumer, which suppresses registration.

Scheduling: Cell.set() invalidates subscribers synchronously. Derived
expressions only flip a dirty flag; observers are queued. Writes happen
inside a batch scope (every set(), every consumer execution, every
transaction), and when the outermost scope exits the queue is flushed FIFO,
pass by pass, until nothing is left.
"""

from __future__ import annotations

import contextvars
import logging
import warnings
from collections import deque
from typing import TYPE_CHECKING, Callable

from reactant import _anchor
from reactant.errors import (
    ComputationError,
    ReentrantMutationError,
    UnboundedPropagationWarning,
)

if TYPE_CHECKING:
    from reactant.observer import Observer

logger = logging.getLogger("reactant.scheduler")


class Frame:
    """One entry of the evaluation stack.

    consumer is None for an isolate barrier.
    """

    __slots__ = ("consumer", "derived", "parent")

    def __init__(self, consumer: int | None, derived: bool, parent: Frame | None) -> None:
        self.consumer = consumer
        self.derived = derived
        self.parent = parent


# Top of the evaluation stack for the running context.
current_frame: contextvars.ContextVar[Frame | None] = contextvars.ContextVar(
    "current_frame", default=None
)


def push_frame(consumer: int | None, *, derived: bool = False) -> contextvars.Token:
    return current_frame.set(Frame(consumer, derived, current_frame.get()))


def pop_frame(token: contextvars.Token) -> None:
    current_frame.reset(token)


def track(node_id: int) -> None:
    """Register node_id as a dependency of the top frame, if it tracks."""
    frame = current_frame.get()
    if frame is not None and frame.consumer is not None:
        _anchor.link(node_id, frame.consumer)


def is_tracking() -> bool:
    """True when a read right now would register a dependency."""
    frame = current_frame.get()
    return frame is not None and frame.consumer is not None


def evaluating_derived() -> set[int]:
    """Ids of derived expressions currently on the evaluation stack."""
    ids = set()
    frame = current_frame.get()
    while frame is not None:
        if frame.derived:
            ids.add(frame.consumer)
        frame = frame.parent
    return ids


def check_reentrant(node_id: int) -> None:
    """Refuse a write that would dirty a derived expression mid-evaluation.

    Walks the subscriber graph from node_id before anything is mutated.
    """
    active = evaluating_derived()
    if not active:
        return
    seen = {node_id}
    stack = [node_id]
    while stack:
        for sub in _anchor.subscribers.get(stack.pop(), ()):
            if sub in active:
                raise ReentrantMutationError(
                    f"writing {_anchor.nodes.get(node_id)!r} would invalidate "
                    f"{_anchor.nodes.get(sub)!r} during its own evaluation; "
                    "read the value under isolate() instead"
                )
            if sub not in seen:
                seen.add(sub)
                stack.append(sub)


def invalidate_subscribers(node_id: int) -> None:
    """Depth-first: every consumer of node_id is invalidated before return."""
    for sub in list(_anchor.subscribers.get(node_id, ())):
        node = _anchor.nodes.get(sub)
        if node is not None:
            node._invalidate()


# ─── Batching / flush ────────────────────────────────────────────────────────

# Batch depth counter. When > 0, flushing is deferred.
_batch_depth: int = 0

# True while a flush is draining the queue. Only one flush runs at a time.
_flushing: bool = False

# Observers awaiting a run, in enqueue order.
_pending: dict[int, Observer] = {}

_error_handler: Callable[[ComputationError], None] | None = None
_warning_threshold: int | None = 100


def begin_batch() -> None:
    """Enter a batching scope. Nested batches are supported."""
    global _batch_depth
    _batch_depth += 1


def end_batch() -> None:
    """Exit a batching scope. When the outermost scope exits, flush."""
    global _batch_depth
    _batch_depth -= 1
    if _batch_depth == 0:
        flush()


def enqueue(observer: Observer) -> None:
    _pending[observer._id] = observer


def discard(observer: Observer) -> None:
    _pending.pop(observer._id, None)


def flush() -> None:
    """Run pending observers until the queue is empty.

    Each pass runs a snapshot of the queue in enqueue order. Observers
    invalidated during a pass are queued for the next one. A no-op inside a
    batch scope or an ongoing flush: the enclosing one picks the work up.
    """
    global _flushing
    if _flushing or _batch_depth > 0 or not _pending:
        return

    _flushing = True
    passes = 0
    runs = 0
    warned = False
    logger.debug("Flush started: %d pending", len(_pending))
    try:
        while _pending:
            passes += 1
            if (
                not warned
                and _warning_threshold is not None
                and passes > _warning_threshold
            ):
                warned = True
                warnings.warn(
                    f"flush still producing work after {_warning_threshold} passes; "
                    "an observer may be writing a cell it depends on",
                    UnboundedPropagationWarning,
                    stacklevel=2,
                )
            batch = deque(_pending.values())
            _pending.clear()
            try:
                while batch:
                    observer = batch.popleft()
                    runs += 1
                    try:
                        observer._run_pending()
                    except Exception as exc:
                        _report(observer, exc)
            finally:
                if batch:
                    # Aborted mid-pass: the rest of this pass goes first next time.
                    leftover = {o._id: o for o in batch}
                    leftover.update(_pending)
                    _pending.clear()
                    _pending.update(leftover)
    finally:
        _flushing = False
    logger.debug("Flush finished: %d passes, %d runs", passes, runs)


def _report(observer: Observer, exc: Exception) -> None:
    error = ComputationError(observer, exc)
    error.__cause__ = exc
    if _error_handler is None:
        logger.exception("Observer %r failed", observer)
    else:
        _error_handler(error)


def set_error_handler(handler: Callable[[ComputationError], None] | None) -> None:
    """Route observer failures to handler instead of the log.

    The handler receives a ComputationError. If it raises, the flush stops
    and the exception reaches whoever triggered the flush; unrun observers
    stay queued. Pass None to go back to logging.
    """
    global _error_handler
    _error_handler = handler


def set_propagation_warning_threshold(passes: int | None) -> None:
    """Warn (UnboundedPropagationWarning) once a flush runs past this many passes.

    None disables the warning. The flush itself is never cut short.
    """
    global _warning_threshold
    _warning_threshold = passes


def get_pending_count() -> int:
    """Number of observers waiting to run. Useful for testing."""
    return len(_pending)
