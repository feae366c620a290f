"""Status transition graphs and the engine that enforces them."""

from fieldservice_core.transitions.engine import (
    StatusTransitionEngine,
    allowed_transitions,
    assert_transition,
    default_engine,
    get_transition_graphs,
)
from fieldservice_core.transitions.graph import (
    EntityKind,
    TransitionGraph,
    dump_transition_graphs,
    load_transition_graphs,
    parse_transition_graphs,
)

__all__ = [
    "EntityKind",
    "StatusTransitionEngine",
    "TransitionGraph",
    "allowed_transitions",
    "assert_transition",
    "default_engine",
    "dump_transition_graphs",
    "get_transition_graphs",
    "load_transition_graphs",
    "parse_transition_graphs",
]
