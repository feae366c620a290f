"""Status transition engine.

Pure decision procedure over the static transition graphs: no I/O and no
hidden state. Callers that mutate a status field must consult it before
persisting the new value and must treat a ``TransitionError`` as
"do not persist".
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from functools import lru_cache
from pathlib import Path

from fieldservice_core.errors import (
    InvalidTransitionError,
    StaleStatusError,
    UnknownEntityKindError,
    UnknownStatusError,
)
from fieldservice_core.transitions.graph import (
    DEFAULT_GRAPH_PATH,
    EntityKind,
    TransitionGraph,
    load_transition_graphs,
)


class StatusTransitionEngine:
    """Admit or reject status changes using per-kind transition graphs."""

    def __init__(self, graphs: Mapping[EntityKind, TransitionGraph]) -> None:
        self._graphs = graphs

    def graph(self, kind: EntityKind | str) -> TransitionGraph:
        """Return the graph for ``kind``.

        Raises:
            UnknownEntityKindError: If no graph is registered for the kind.
        """
        try:
            return self._graphs[EntityKind(kind)]
        except (ValueError, KeyError):
            raise UnknownEntityKindError(str(kind)) from None

    def _require_status(self, graph: TransitionGraph, status: str) -> None:
        if status not in graph:
            raise UnknownStatusError(graph.kind.value, status)

    def assert_transition(
        self, kind: EntityKind | str, from_status: str, to_status: str
    ) -> None:
        """Validate moving an entity from ``from_status`` to ``to_status``.

        Re-applying the current status is always admitted, even for a
        status the graph does not list, so that retried writes are safe.

        Raises:
            UnknownEntityKindError: Unknown entity kind.
            UnknownStatusError: A status of a real change is not part of
                the graph.
            InvalidTransitionError: No edge from ``from_status`` to ``to_status``.
        """
        graph = self.graph(kind)
        if from_status == to_status:
            return
        self._require_status(graph, from_status)
        self._require_status(graph, to_status)
        if to_status not in graph.edges[from_status]:
            raise InvalidTransitionError(graph.kind.value, from_status, to_status)

    def allowed_transitions(
        self, kind: EntityKind | str, status: str
    ) -> tuple[str, ...]:
        """Statuses reachable from ``status`` in one step."""
        graph = self.graph(kind)
        self._require_status(graph, status)
        return graph.edges[status]

    def is_terminal(self, kind: EntityKind | str, status: str) -> bool:
        return not self.allowed_transitions(kind, status)

    async def transition_status(
        self,
        kind: EntityKind | str,
        requested: str,
        *,
        load_current: Callable[[], Awaitable[str]],
        compare_and_set: Callable[[str, str], Awaitable[bool]],
    ) -> str:
        """Validate and persist a status change with a conditional write.

        ``load_current`` reads the stored status; ``compare_and_set`` must
        write ``to`` only if the stored status still equals ``from`` (a
        version column or ``UPDATE ... WHERE status = :from``) and report
        whether a row changed. The engine never retries: on a lost race
        the caller re-reads and decides.

        Returns:
            The status the entity was in before the change.

        Raises:
            TransitionError: The change is not allowed.
            StaleStatusError: The conditional write matched nothing.
        """
        current = await load_current()
        self.assert_transition(kind, current, requested)
        if current == requested:
            return current
        if not await compare_and_set(current, requested):
            raise StaleStatusError(self.graph(kind).kind.value, current, requested)
        return current


@lru_cache(maxsize=4)
def get_transition_graphs(
    path: Path = DEFAULT_GRAPH_PATH,
) -> Mapping[EntityKind, TransitionGraph]:
    """Graphs loaded once per path and shared by the whole process."""
    return load_transition_graphs(path)


def default_engine(path: Path | None = None) -> StatusTransitionEngine:
    return StatusTransitionEngine(get_transition_graphs(path or DEFAULT_GRAPH_PATH))


def assert_transition(
    kind: EntityKind | str, from_status: str, to_status: str
) -> None:
    """Module-level shortcut over the packaged graphs.

    Usage::

        assert_transition(EntityKind.JOB, job.status, payload.status)
    """
    default_engine().assert_transition(kind, from_status, to_status)


def allowed_transitions(kind: EntityKind | str, status: str) -> tuple[str, ...]:
    return default_engine().allowed_transitions(kind, status)
