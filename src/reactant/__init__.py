"""reactant: cells, lazy derived expressions and observers with automatic dependency tracking."""

from importlib.metadata import version as _version

__version__ = _version("reactant")

from reactant._tracking import (
    flush,
    get_pending_count,
    set_error_handler,
    set_propagation_warning_threshold,
)
from reactant.errors import (
    ReactantError,
    ComputationError,
    ReentrantMutationError,
    CircularDependencyError,
    UnboundedPropagationWarning,
)
from reactant.cell import Cell, CellDict, cell
from reactant.scope import isolate, isolated, action, transaction
from reactant.observer import Observer, observer, reaction
from reactant.derived import Derived, DropRepeats, derived, drop_repeats

__all__ = [
    "Cell",
    "CellDict",
    "cell",
    "Derived",
    "DropRepeats",
    "derived",
    "drop_repeats",
    "Observer",
    "observer",
    "reaction",
    "isolate",
    "isolated",
    "action",
    "transaction",
    "flush",
    "get_pending_count",
    "set_error_handler",
    "set_propagation_warning_threshold",
    "ReactantError",
    "ComputationError",
    "ReentrantMutationError",
    "CircularDependencyError",
    "UnboundedPropagationWarning",
]
