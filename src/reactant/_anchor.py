"""Data anchor — plain Python tables that hold all reactive state.

Every Cell, Derived and Observer is a thin handle holding an integer _id.
Values, caches and both directions of every dependency edge live here,
keyed by id, so edges can be dropped and rebuilt wholesale on each
execution.

The registry maps ids back to handles weakly: the arena never keeps a cell
or derived expression alive. Observers are pinned until destroyed.
"""

import itertools
import weakref

# Cell state
values: dict[int, object] = {}

# Edges. node_id -> ids of consumers that read it (insertion-ordered, so
# invalidation order is subscription order), consumer_id -> ids it read.
subscribers: dict[int, dict[int, None]] = {}
dependencies: dict[int, set[int]] = {}

# Consumer state (Derived + Observer)
states: dict[int, str] = {}
cached_values: dict[int, object] = {}
bodies: dict[int, object] = {}  # consumer_id -> callable

# id -> handle, for dispatching invalidation by id
nodes: "weakref.WeakValueDictionary[int, object]" = weakref.WeakValueDictionary()

# Observers stay registered even when the caller drops the handle.
pinned: dict[int, object] = {}

_id_counter = itertools.count(1)


def new_id() -> int:
    return next(_id_counter)


def register(handle) -> int:
    """Allocate an id for handle and arrange for its rows to go with it."""
    node_id = new_id()
    nodes[node_id] = handle
    subscribers[node_id] = {}
    weakref.finalize(handle, release, node_id)
    return node_id


def link(node_id: int, consumer_id: int) -> None:
    subscribers[node_id][consumer_id] = None
    dependencies[consumer_id].add(node_id)


def unlink_all(consumer_id: int) -> None:
    """Drop every upstream edge of consumer_id."""
    deps = dependencies.get(consumer_id)
    if not deps:
        return
    for dep in deps:
        subs = subscribers.get(dep)
        if subs is not None:
            subs.pop(consumer_id, None)
    deps.clear()


def release(node_id: int) -> None:
    """Forget node_id entirely. Runs when its handle is collected."""
    unlink_all(node_id)
    for sub in subscribers.pop(node_id, ()):
        deps = dependencies.get(sub)
        if deps is not None:
            deps.discard(node_id)
    dependencies.pop(node_id, None)
    values.pop(node_id, None)
    states.pop(node_id, None)
    cached_values.pop(node_id, None)
    bodies.pop(node_id, None)
    pinned.pop(node_id, None)
